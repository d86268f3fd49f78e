"""Exception classes for the lifecycle execution engine."""


class ILMError(Exception):
    """Base exception for the execution engine."""

    def __init__(self, message: str = "An error occurred"):
        self.message = message
        super().__init__(self.message)


class ConfigurationError(ILMError):
    """Raised when engine or schedule configuration is unusable."""
    pass


class InvalidWindowError(ConfigurationError):
    """Raised when a day window is not in HH:MM-HH:MM format."""
    pass


class NotFoundError(ILMError):
    """Raised when a required record does not exist."""
    pass


class ScheduleNotFoundError(NotFoundError, ConfigurationError):
    """Raised when no enabled schedule matches the requested name."""

    def __init__(self, schedule_name: str):
        self.schedule_name = schedule_name
        super().__init__(f"Schedule '{schedule_name}' not found or disabled")


class QueueItemNotFoundError(NotFoundError):
    """Raised when a queue item cannot be loaded for dispatch."""

    def __init__(self, queue_id: int):
        self.queue_id = queue_id
        super().__init__(f"Queue item {queue_id} not found")


class PolicyNotFoundError(NotFoundError):
    """Raised when the policy owning a queue item is missing."""

    def __init__(self, policy_id: int):
        self.policy_id = policy_id
        super().__init__(f"Policy {policy_id} not found")


class ExecutorLoadError(ConfigurationError):
    """Raised when an action executor cannot be imported."""
    pass


class MergeNotImplementedError(ILMError, NotImplementedError):
    """Raised by the merge operation kind, which has no implementation yet."""

    def __init__(self, table_name: str, partition_name: str):
        super().__init__(
            f"Merging partition {partition_name} of {table_name} into a larger partition is not implemented"
        )


class BatchAlreadyRunningError(ILMError):
    """Raised when a schedule already holds a RUNNING batch."""

    def __init__(self, schedule_id: int, batch_id: str):
        self.schedule_id = schedule_id
        self.batch_id = batch_id
        super().__init__(f"Schedule {schedule_id} already has a RUNNING batch; {batch_id} not started")
