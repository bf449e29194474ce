"""Read-side resolvers for job, tag and metric queries.

Each method answers one query field: ``jobs`` (filtered, sorted, paginated
list with a total count), ``job`` (one job by database id), ``tags`` (all
tags with usage counts) and ``job_metrics`` (time series of one job).

Metric data comes from the job archive once a job has been archived, and
from the cluster's live metric-data repository otherwise.
"""

import logging

from ..errors import ArchivalError
from ..schema import JobFilter, MonitoringStatus, OrderBy, PageRequest

logger = logging.getLogger(__name__)


def select_metrics(data: dict, metrics: list[str] | None, scopes: list[str] | None) -> dict:
    """Restrict a JobData mapping to the requested metrics and scopes."""
    result = {}
    for metric, by_scope in data.items():
        if metrics and metric not in metrics:
            continue
        kept = {s: v for s, v in by_scope.items() if not scopes or s in scopes}
        if kept:
            result[metric] = kept
    return result


class Resolver:
    """Answers read queries against the job store, tag store and archive.

    Args:
        job_repo: JobRepository
        tag_repo: TagRepository
        archive: FsArchive holding archived jobs
        archiver: MetricArchiver used to read live data of unarchived jobs
    """

    def __init__(self, job_repo, tag_repo, archive, archiver):
        self.job_repo = job_repo
        self.tag_repo = tag_repo
        self.archive = archive
        self.archiver = archiver

    def jobs(self, filters: JobFilter | None = None, page: PageRequest | None = None,
             order: OrderBy | None = None) -> dict:
        """Return ``{"items": [Job, ...], "count": <total matching>}``."""
        return {
            "items": self.job_repo.query_jobs(filters, page, order),
            "count": self.job_repo.count_jobs(filters),
        }

    def job(self, id: int):
        return self.job_repo.find_by_id(id)

    def tags(self, user: str | None = None) -> list[dict]:
        """Every tag with the number of jobs carrying it."""
        tags, counts = self.tag_repo.count_tags(user)
        return [{**t.to_dict(), "count": counts.get(t.tag_name, 0)} for t in tags]

    def job_metrics(self, id: int, metrics: list[str] | None = None,
                    scopes: list[str] | None = None) -> dict:
        """Return the JobData of job *id*, restricted to *metrics* and *scopes*.

        Raises:
            NotFoundError: No job with that id
            ArchivalError: Neither the archive nor the live backend has data
        """
        job = self.job_repo.find_by_id(id)
        status = job.monitoring
        if status == MonitoringStatus.ARCHIVING_SUCCESSFUL:
            logger.debug(f"loading metrics of job {id} from the archive")
            return select_metrics(self.archive.load_job_data(job), metrics, scopes)
        if status == MonitoringStatus.ARCHIVING_FAILED:
            raise ArchivalError(f"job {id} has no archived metric data (archiving failed)")
        return self.archiver.load_job_data(job, metrics, scopes)
