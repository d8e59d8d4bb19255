"""Data access repositories for the scripture index."""

from .checkpoints import CheckpointRepository
from .vectors import VectorRepository

__all__ = [
    "CheckpointRepository",
    "VectorRepository",
]
