"""Metric-data repository interface.

A metric-data repository is the external time-series backend a cluster's
node metrics are collected into.  job_monitor only reads from it, once when a
job is archived and on demand for jobs that are still running.

``load_data`` returns a JobData mapping::

    {
        "<metric>": {
            "<scope>": {
                "unit": "F/s",
                "timestep": 60,
                "series": [
                    {"hostname": "f0101", "data": [...],
                     "statistics": {"min": ..., "avg": ..., "max": ...}},
                    ...
                ],
            }
        }
    }
"""

from abc import ABC, abstractmethod

from ..schema import ClusterRegistry, MetricConfig


class MetricDataRepository(ABC):
    """Abstract base for a cluster's metric backend."""

    KIND: str = ""  # override in subclass

    @abstractmethod
    def load_data(self, job, metrics: list[MetricConfig], scopes: list[str]) -> dict:
        """Fetch the time series of *metrics* for the nodes and runtime of *job*.

        Raises:
            ArchivalError: If the backend cannot be reached or returns an error
        """
        ...

    def close(self) -> None:
        """Release network resources; the default does nothing."""


# Registry: metricDataRepository "kind" → MetricDataRepository subclass
REPOSITORY_KINDS: dict[str, type] = {}


def register_kind(cls):
    """Class decorator adding a MetricDataRepository subclass to REPOSITORY_KINDS."""
    REPOSITORY_KINDS[cls.KIND] = cls
    return cls


class MetricDataRepositories:
    """Per-cluster lookup of metric-data repositories."""

    def __init__(self, repositories: dict[str, MetricDataRepository] | None = None):
        self._repositories = dict(repositories or {})

    @classmethod
    def from_clusters(cls, clusters: ClusterRegistry) -> "MetricDataRepositories":
        """Instantiate the repository each cluster's config asks for.

        Clusters without a ``metricDataRepository`` entry are skipped.
        """
        repositories = {}
        for cluster in clusters:
            options = dict(cluster.metric_data_repository)
            if not options:
                continue
            kind = options.pop("kind", None)
            if kind not in REPOSITORY_KINDS:
                raise ValueError(
                    f"cluster {cluster.name}: unknown metricDataRepository kind {kind!r}. "
                    f"Must be one of: {sorted(REPOSITORY_KINDS)}"
                )
            repositories[cluster.name] = REPOSITORY_KINDS[kind](**options)
        return cls(repositories)

    def get(self, cluster: str) -> MetricDataRepository | None:
        return self._repositories.get(cluster)

    def __setitem__(self, cluster: str, repository: MetricDataRepository) -> None:
        self._repositories[cluster] = repository

    def close(self) -> None:
        for repository in self._repositories.values():
            repository.close()
