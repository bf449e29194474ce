"""Wire models of the REST API.

Field names are camelCase on the wire (``jobId``, ``startTime``, ...) and
snake_case in Python.  Request bodies reject unknown fields.
"""

from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from ..schema import JobSpec, MonitoringStatus, Resource, TagSpec


class ApiModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="forbid")


class ApiTag(ApiModel):
    """A tag as sent by clients."""
    type: str = Field(min_length=1)
    name: str = Field(min_length=1)

    def to_spec(self) -> TagSpec:
        return TagSpec(type=self.type, name=self.name)


class ResourceModel(ApiModel):
    hostname: str
    hwthreads: list[int] | None = None
    accelerators: list[str] | None = None


class StartJobApiRequest(ApiModel):
    """Body of ``start_job``.

    Required fields are optional here so that a missing one is reported by
    the same checks that validate the rest of the job.
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
    job_state: str = "running"
    monitoring_status: str = MonitoringStatus.PENDING.value
    resources: list[ResourceModel] = Field(default_factory=list)
    meta_data: dict[str, Any] = Field(default_factory=dict)
    tags: list[ApiTag] = Field(default_factory=list)

    def to_spec(self) -> JobSpec:
        return JobSpec(
            job_id=self.job_id,
            cluster=self.cluster,
            start_time=self.start_time,
            user=self.user,
            project=self.project,
            sub_cluster=self.sub_cluster,
            partition=self.partition,
            array_job_id=self.array_job_id,
            num_nodes=self.num_nodes,
            num_hwthreads=self.num_hwthreads,
            num_acc=self.num_acc,
            exclusive=self.exclusive,
            smt=self.smt,
            walltime=self.walltime,
            duration=self.duration,
            job_state=self.job_state,
            monitoring_status=self.monitoring_status,
            resources=[Resource(**r.model_dump()) for r in self.resources],
            meta_data=dict(self.meta_data),
            tags=[t.to_spec() for t in self.tags],
        )


class StopJobApiRequest(ApiModel):
    stop_time: int
    job_state: str | None = None
    # Natural key; only read when stopping without a database id
    job_id: int | None = None
    cluster: str | None = None
    start_time: int | None = None


class DeleteJobApiRequest(ApiModel):
    job_id: int
    cluster: str | None = None
    start_time: int | None = None


class StartJobApiResponse(BaseModel):
    id: int


class DeleteJobApiResponse(BaseModel):
    msg: str


class TagView(BaseModel):
    id: int
    type: str
    name: str


class StatisticsView(BaseModel):
    unit: str
    avg: float
    min: float
    max: float


class JobView(BaseModel):
    """A job as returned by the API."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    id: int
    job_id: int
    user: str
    project: str | None = None
    cluster: str
    sub_cluster: str | None = None
    partition: str | None = None
    array_job_id: int = 0
    num_nodes: int
    num_hwthreads: int = 0
    num_acc: int = 0
    exclusive: int = 1
    smt: int = 1
    job_state: str
    monitoring_status: str
    start_time: int
    duration: int
    walltime: int = 0
    resources: list[dict[str, Any]] = Field(default_factory=list)
    meta_data: dict[str, Any] | None = None
    tags: list[TagView] = Field(default_factory=list)
    statistics: dict[str, StatisticsView] | None = None

    @classmethod
    def from_job(cls, job, with_metadata: bool = False) -> "JobView":
        """Build the view of a Job row.

        Statistics are only present once the job has been archived; metadata
        only when asked for.
        """
        statistics = None
        if job.monitoring == MonitoringStatus.ARCHIVING_SUCCESSFUL:
            statistics = {
                name: StatisticsView(**s.to_dict()) for name, s in job.statistics_dict().items()
            }
        return cls(
            id=job.id,
            job_id=job.job_id,
            user=job.user,
            project=job.project,
            cluster=job.cluster,
            sub_cluster=job.sub_cluster,
            partition=job.partition,
            array_job_id=job.array_job_id,
            num_nodes=job.num_nodes,
            num_hwthreads=job.num_hwthreads,
            num_acc=job.num_acc,
            exclusive=job.exclusive,
            smt=job.smt,
            job_state=job.job_state,
            monitoring_status=job.monitoring_status,
            start_time=job.start_time,
            duration=job.duration,
            walltime=job.walltime,
            resources=list(job.resources or []),
            meta_data=dict(job.meta_data or {}) if with_metadata else None,
            tags=[TagView(id=t.id, type=t.tag_type, name=t.tag_name) for t in job.tags],
            statistics=statistics,
        )

    def to_wire(self) -> dict:
        return self.model_dump(by_alias=True, exclude_none=True)
