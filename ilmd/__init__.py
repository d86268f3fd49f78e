"""
ILMD - Partition lifecycle execution daemon.

This package contains the execution orchestration engine that drains the
lifecycle work queue (compress, move, read-only, drop, truncate) in
checkpointed batches inside administrator-defined time windows.
"""

__version__ = "0.1.0"
