"""SQLAlchemy ORM models for job records, tags and archived statistics."""

from sqlalchemy import (
    JSON, BigInteger, Column, Float, ForeignKey, ForeignKeyConstraint, Index, Integer, Table, Text,
    UniqueConstraint,
)
from sqlalchemy.orm import declarative_base, relationship

from ..schema import JobState, MetricStatistics, MonitoringStatus

Base = declarative_base()


# Many-to-many association between jobs and tags.  The composite primary key
# makes a repeated (job, tag) insert a no-op instead of a second row.
job_tag = Table(
    "jobtag",
    Base.metadata,
    Column("job_id", Integer, ForeignKey("job.id", ondelete="CASCADE"), primary_key=True),
    Column("tag_id", Integer, ForeignKey("tag.id", ondelete="CASCADE"), primary_key=True),
)


class Tag(Base):
    """A (type, name) label that can be attached to any number of jobs."""
    __tablename__ = "tag"
    id = Column(Integer, primary_key=True, autoincrement=True)
    tag_type = Column(Text, nullable=False)
    tag_name = Column(Text, nullable=False)

    __table_args__ = (
        UniqueConstraint("tag_type", "tag_name", name="uq_tag_type_name"),
    )

    def __repr__(self):
        return f"<Tag(id={self.id}, type='{self.tag_type}', name='{self.tag_name}')>"

    def to_dict(self):
        return {"id": self.id, "type": self.tag_type, "name": self.tag_name}


class Job(Base):
    """One recorded execution of a batch job on a cluster.

    The natural key is (job_id, cluster, start_time); ``id`` is the surrogate
    key handed out to API clients.
    """

    __tablename__ = "job"

    # Auto-incrementing primary key (scheduler job ids wrap around)
    id = Column(Integer, primary_key=True, autoincrement=True)

    # Scheduler-assigned job id
    job_id = Column(BigInteger, nullable=False, index=True)
    cluster = Column(Text, nullable=False)
    sub_cluster = Column(Text)
    partition = Column(Text)
    array_job_id = Column(BigInteger, default=0)

    user = Column(Text, nullable=False, index=True)
    project = Column(Text, index=True)

    # Timestamps and durations (unix seconds / seconds)
    start_time = Column(BigInteger, nullable=False, index=True)
    duration = Column(Integer, nullable=False, default=0)
    walltime = Column(Integer, nullable=False, default=0)

    # Status
    job_state = Column(Text, nullable=False, default=JobState.RUNNING.value, index=True)
    monitoring_status = Column(Text, nullable=False, default=MonitoringStatus.PENDING.value)

    # Resource allocation
    num_nodes = Column(Integer, nullable=False, default=0)
    num_hwthreads = Column(Integer, nullable=False, default=0)
    num_acc = Column(Integer, nullable=False, default=0)
    exclusive = Column(Integer, nullable=False, default=1)
    smt = Column(Integer, nullable=False, default=1)

    # List of {"hostname", "hwthreads", "accelerators"} dicts
    resources = Column(JSON, nullable=False, default=list)

    # Free-form metadata (jobScript, jobName, ...)
    meta_data = Column(JSON, nullable=False, default=dict)

    tags = relationship("Tag", secondary=job_tag, lazy="selectin", order_by="Tag.id")
    statistics = relationship(
        "JobStatistic",
        back_populates="job",
        lazy="selectin",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    __table_args__ = (
        UniqueConstraint("job_id", "cluster", "start_time", name="uq_job_natural_key"),
        Index("ix_job_cluster_start", "cluster", "start_time"),
        Index("ix_job_user_start", "user", "start_time"),
        Index("ix_job_state_start", "job_state", "start_time"),
    )

    def __repr__(self):
        return (
            f"<Job(id={self.id}, job_id={self.job_id}, cluster='{self.cluster}', "
            f"state='{self.job_state}')>"
        )

    @property
    def state(self) -> JobState:
        return JobState.parse(self.job_state)

    @property
    def monitoring(self) -> MonitoringStatus:
        return MonitoringStatus.parse(self.monitoring_status)

    def statistics_dict(self) -> dict[str, MetricStatistics]:
        return {s.metric: s.to_statistics() for s in self.statistics}

    def to_dict(self):
        """Convert job record to dictionary.

        Includes tags and statistics, which are not part of __table__.columns.
        """
        result = {c.name: getattr(self, c.name) for c in self.__table__.columns}
        result["tags"] = [t.to_dict() for t in self.tags]
        result["statistics"] = {k: v.to_dict() for k, v in self.statistics_dict().items()}
        return result


class JobStatistic(Base):
    """Per-metric statistics written once a job's archive has been created.

    Rows exist only for jobs whose monitoring status is archiving-successful.
    """

    __tablename__ = "job_statistics"

    job_id = Column(Integer, primary_key=True)
    metric = Column(Text, primary_key=True)
    unit = Column(Text, nullable=False, default="")
    avg = Column(Float, nullable=False, default=0.0)
    min = Column(Float, nullable=False, default=0.0)
    max = Column(Float, nullable=False, default=0.0)

    # Relationship back to Job
    job = relationship("Job", back_populates="statistics")

    __table_args__ = (ForeignKeyConstraint(["job_id"], ["job.id"], ondelete="CASCADE"),)

    def __repr__(self):
        return f"<JobStatistic(job_id={self.job_id}, metric='{self.metric}', avg={self.avg:.2f})>"

    def to_statistics(self) -> MetricStatistics:
        return MetricStatistics(unit=self.unit, avg=self.avg, min=self.min, max=self.max)
