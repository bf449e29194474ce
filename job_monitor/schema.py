"""Domain types shared by the store, the coordinator and the API layer."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from .errors import InvalidTransitionError

# Two starts with the same jobId and cluster closer together than this are duplicates.
DUPLICATE_WINDOW_SECONDS = 86400


class JobState(str, Enum):
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"
    STOPPED = "stopped"
    TIMEOUT = "timeout"
    PREEMPTED = "preempted"
    OUT_OF_MEMORY = "out_of_memory"

    @classmethod
    def parse(cls, value) -> "JobState":
        """Return the member for *value*, raising ValueError for unknown states."""
        if isinstance(value, cls):
            return value
        try:
            return cls(value)
        except ValueError:
            raise ValueError(f"invalid job state: {value!r}") from None

    @property
    def is_terminal(self) -> bool:
        return self is not JobState.RUNNING


TERMINAL_STATES = frozenset(s for s in JobState if s.is_terminal)


class MonitoringStatus(str, Enum):
    """Whether (and how) a job's metric data made it into the archive.

    ``PENDING`` covers both "still running" and "archiving in progress".
    """

    DISABLED = "disabled"
    PENDING = "pending"
    ARCHIVING_FAILED = "archiving-failed"
    ARCHIVING_SUCCESSFUL = "archiving-successful"

    @classmethod
    def parse(cls, value) -> "MonitoringStatus":
        if isinstance(value, cls):
            return value
        try:
            return cls(value)
        except ValueError:
            raise ValueError(f"invalid monitoring status: {value!r}") from None

    def can_transition_to(self, target: "MonitoringStatus") -> bool:
        return target == self or target in MONITORING_TRANSITIONS[self]

    def check_transition(self, target: "MonitoringStatus") -> None:
        """Raise InvalidTransitionError unless ``self -> target`` is allowed."""
        if not self.can_transition_to(target):
            raise InvalidTransitionError(
                f"monitoring status cannot change from {self.value!r} to {target.value!r}"
            )


MONITORING_TRANSITIONS = {
    MonitoringStatus.PENDING: frozenset({
        MonitoringStatus.ARCHIVING_SUCCESSFUL,
        MonitoringStatus.ARCHIVING_FAILED,
    }),
    MonitoringStatus.ARCHIVING_SUCCESSFUL: frozenset({MonitoringStatus.ARCHIVING_FAILED}),
    MonitoringStatus.ARCHIVING_FAILED: frozenset(),
    MonitoringStatus.DISABLED: frozenset(),
}


@dataclass
class Resource:
    """One node allocated to a job."""
    hostname: str
    hwthreads: list[int] | None = None
    accelerators: list[str] | None = None

    def to_dict(self) -> dict:
        result = {"hostname": self.hostname}
        if self.hwthreads is not None:
            result["hwthreads"] = list(self.hwthreads)
        if self.accelerators is not None:
            result["accelerators"] = list(self.accelerators)
        return result


@dataclass(frozen=True)
class TagSpec:
    type: str
    name: str


@dataclass
class MetricStatistics:
    unit: str
    avg: float
    min: float
    max: float

    def to_dict(self) -> dict:
        return {"unit": self.unit, "avg": self.avg, "min": self.min, "max": self.max}


@dataclass
class JobSpec:
    """Everything a start request can say about a job.

    Unset fields take the defaults below; ``job_state`` stays RUNNING for
    every job created through a start request.
    """
    job_id: int | None = None
    cluster: str | None = None
    start_time: int | None = None
    user: str | None = None
    project: str | None = None
    sub_cluster: str | None = None
    partition: str | None = None
    array_job_id: int = 0
    num_nodes: int = 0
    num_hwthreads: int = 0
    num_acc: int = 0
    exclusive: int = 1
    smt: int = 1
    walltime: int = 0
    duration: int = 0
    job_state: JobState = JobState.RUNNING
    monitoring_status: MonitoringStatus = MonitoringStatus.PENDING
    resources: list[Resource] = field(default_factory=list)
    meta_data: dict[str, Any] = field(default_factory=dict)
    tags: list[TagSpec] = field(default_factory=list)


@dataclass
class JobFilter:
    """Filters understood by JobRepository.query_jobs()."""
    states: list[JobState] = field(default_factory=list)
    cluster: str | None = None
    start_time_from: int | None = None
    start_time_to: int | None = None
    user: str | None = None
    project: str | None = None
    job_id: int | None = None
    tags: list[int] = field(default_factory=list)


@dataclass
class PageRequest:
    items_per_page: int = 25
    page: int = 1

    @property
    def offset(self) -> int:
        return (self.page - 1) * self.items_per_page


@dataclass
class OrderBy:
    field: str = "start_time"
    descending: bool = True


# ---------------------------------------------------------------------------
# Cluster registry
# ---------------------------------------------------------------------------

@dataclass
class MetricConfig:
    name: str
    unit: str = ""
    scope: str = "node"
    timestep: int = 60

    @classmethod
    def from_dict(cls, data: dict) -> "MetricConfig":
        """Build from a clusters-file metric entry; unknown keys are ignored."""
        if not data.get("name"):
            raise ValueError(f"metric entry without a name: {data!r}")
        return cls(
            name=data["name"],
            unit=data.get("unit", ""),
            scope=data.get("scope", "node"),
            timestep=int(data.get("timestep", 60)),
        )


@dataclass
class ClusterConfig:
    name: str
    partitions: list[str] = field(default_factory=list)
    sub_clusters: list[str] = field(default_factory=list)
    metrics: list[MetricConfig] = field(default_factory=list)
    metric_data_repository: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: dict) -> "ClusterConfig":
        return cls(
            name=data["name"],
            partitions=list(data.get("partitions", [])),
            sub_clusters=list(data.get("subClusters", [])),
            metrics=[MetricConfig.from_dict(m) for m in data.get("metrics", [])],
            metric_data_repository=dict(data.get("metricDataRepository", {})),
        )


class ClusterRegistry:
    """Clusters this instance accepts jobs for."""

    def __init__(self, clusters=None):
        self._clusters: dict[str, ClusterConfig] = {}
        for c in clusters or []:
            self.add(c if isinstance(c, ClusterConfig) else ClusterConfig.from_dict(c))

    def add(self, cluster: ClusterConfig) -> None:
        self._clusters[cluster.name] = cluster

    def get(self, name: str) -> ClusterConfig | None:
        return self._clusters.get(name)

    def names(self) -> list[str]:
        return sorted(self._clusters)

    def __contains__(self, name) -> bool:
        return name in self._clusters

    def __iter__(self):
        return iter(self._clusters.values())

    def __len__(self) -> int:
        return len(self._clusters)
