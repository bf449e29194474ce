"""Repository subpackage: the job store and the tag store."""

from .jobs import JobRepository
from .tags import TagRepository

__all__ = [
    "JobRepository",
    "TagRepository",
]
