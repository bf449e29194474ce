"""Metric archiver: copy a finished job's metric data into the job archive."""

import logging

from ..archive import build_job_meta
from ..errors import ArchivalError
from ..schema import ClusterRegistry, MetricStatistics, MonitoringStatus
from ..utils import finite

logger = logging.getLogger(__name__)


def series_statistics(series: dict) -> tuple[float, float, float] | None:
    """Return (min, avg, max) for one series, computing it from the samples if needed."""
    stats = series.get("statistics") or {}
    if all(stats.get(k) is not None for k in ("min", "avg", "max")):
        return float(stats["min"]), float(stats["avg"]), float(stats["max"])
    samples = list(finite(series.get("data") or []))
    if not samples:
        return None
    return min(samples), sum(samples) / len(samples), max(samples)


def compute_statistics(data: dict, scope: str = "node") -> dict[str, MetricStatistics]:
    """Aggregate per-node series into one MetricStatistics per metric.

    avg is the mean of the node averages, min/max the extremes over all nodes.
    Metrics without any usable sample are left out.
    """
    statistics = {}
    for metric, scopes in data.items():
        scoped = scopes.get(scope)
        if not scoped:
            continue
        per_series = [s for s in map(series_statistics, scoped.get("series", [])) if s is not None]
        if not per_series:
            continue
        mins, avgs, maxs = zip(*per_series)
        statistics[metric] = MetricStatistics(
            unit=scoped.get("unit", ""),
            avg=sum(avgs) / len(avgs),
            min=min(mins),
            max=max(maxs),
        )
    return statistics


class MetricArchiver:
    """Fetch a job's metric data and write it to the job archive.

    Args:
        archive: FsArchive the data is written to
        clusters: ClusterRegistry with each cluster's metric list
        repositories: MetricDataRepositories to read from
        disable_archive: Compute statistics but write no archive files
    """

    def __init__(self, archive, clusters: ClusterRegistry, repositories, disable_archive: bool = False):
        self.archive = archive
        self.clusters = clusters
        self.repositories = repositories
        self.disable_archive = disable_archive

    def load_job_data(self, job, metrics: list[str] | None = None, scopes: list[str] | None = None) -> dict:
        """Fetch live metric data for *job* from its cluster's repository."""
        cluster = self.clusters.get(job.cluster)
        if cluster is None:
            raise ArchivalError(f"unknown cluster {job.cluster!r}")
        repository = self.repositories.get(job.cluster)
        if repository is None:
            raise ArchivalError(f"no metric data repository configured for cluster {job.cluster!r}")

        wanted = [m for m in cluster.metrics if metrics is None or m.name in metrics]
        return repository.load_data(job, wanted, scopes or ["node"])

    def archive_job(self, job) -> dict[str, MetricStatistics]:
        """Archive *job* and return its per-metric statistics.

        Raises:
            ArchivalError: If fetching the data or writing the archive fails
        """
        data = self.load_job_data(job)
        statistics = compute_statistics(data)

        if self.disable_archive:
            logger.debug(f"archive disabled; not writing files for job {job.job_id}")
            return statistics

        meta = build_job_meta(job, statistics=statistics)
        meta["monitoringStatus"] = MonitoringStatus.ARCHIVING_SUCCESSFUL.value
        self.archive.store_job(job, meta, data)
        return statistics
