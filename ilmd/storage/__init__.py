"""Persistence for schedules, the work queue, batch state and the execution log."""
