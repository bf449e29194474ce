"""Database subpackage for job_monitor.

Re-exports all public names from the models and session modules.
"""

from .models import (
    Base,
    Job,
    JobStatistic,
    Tag,
    job_tag,
)
from .session import (
    get_db_url,
    get_engine,
    get_session_factory,
    init_db,
    session_scope,
)

__all__ = [
    "Base",
    "Job",
    "JobStatistic",
    "Tag",
    "job_tag",
    "get_db_url",
    "get_engine",
    "get_session_factory",
    "init_db",
    "session_scope",
]
