"""
Execution engine: window evaluation, the should-execute gate, batch
execution with checkpointing, action dispatch and the continuous loop.
"""
