from .queue import BuildOutcome, BuildQueue, BuildQueueError, QueuedCrate

__all__ = ["BuildOutcome", "BuildQueue", "BuildQueueError", "QueuedCrate"]
