"""In-memory job state: checkpoints and dead letters."""

from .checkpoint import CheckpointRepository, CheckpointStore
from .dead_letter import DeadLetterRepository, DeadLetterStore

__all__ = [
    "CheckpointRepository",
    "CheckpointStore",
    "DeadLetterRepository",
    "DeadLetterStore",
]
