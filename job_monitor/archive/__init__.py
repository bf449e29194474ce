"""Job archive subpackage."""

from .fs import ARCHIVE_VERSION, FsArchive, build_job_meta

__all__ = [
    "ARCHIVE_VERSION",
    "FsArchive",
    "build_job_meta",
]
