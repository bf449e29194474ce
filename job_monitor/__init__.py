"""Job Monitor - job lifecycle tracking and metric archiving for HPC clusters."""

__version__ = "0.1.0"

from .archive import FsArchive
from .config import JobMonitorConfig
from .database import Job, JobStatistic, Tag, get_engine, get_session_factory, init_db
from .errors import (
    ArchivalError, DuplicateJobError, InvalidTransitionError, JobMonitorError, NotFoundError,
    StoreError, ValidationError,
)
from .lifecycle import ArchivingTracker, JobLifecycle
from .repository import JobRepository, TagRepository
from .schema import JobSpec, JobState, MonitoringStatus, TagSpec

__all__ = [
    "ArchivalError",
    "ArchivingTracker",
    "DuplicateJobError",
    "FsArchive",
    "InvalidTransitionError",
    "Job",
    "JobLifecycle",
    "JobMonitorConfig",
    "JobMonitorError",
    "JobRepository",
    "JobSpec",
    "JobState",
    "JobStatistic",
    "MonitoringStatus",
    "NotFoundError",
    "StoreError",
    "Tag",
    "TagRepository",
    "TagSpec",
    "ValidationError",
    "get_engine",
    "get_session_factory",
    "init_db",
]
