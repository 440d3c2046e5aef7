"""Exception hierarchy for the memory subsystem."""


class MemoryEngineError(Exception):
    """Base class for all memory engine failures."""


class MemoryNotReadyError(MemoryEngineError, RuntimeError):
    """An engine method was called before `initialize()` completed."""


class StorageQuotaExceededError(MemoryEngineError):
    """Durable key-value storage refused a write because it is full."""


class MemoryPersistenceError(MemoryEngineError):
    """A durable write failed and could not be recovered by pruning."""


class UnknownSpeakerError(MemoryEngineError, LookupError):
    """Speaker statistics were requested for a speaker with no memories."""

    def __init__(self, speaker: str):
        super().__init__(f"No memories found for speaker: {speaker}")
        self.speaker = speaker


class TaskNotFoundError(MemoryEngineError, KeyError):
    """A task operation referenced an id that is not a stored task."""

    def __init__(self, task_id: str):
        super().__init__(f"Task with ID {task_id} not found")
        self.task_id = task_id

    def __str__(self) -> str:
        return self.args[0]
