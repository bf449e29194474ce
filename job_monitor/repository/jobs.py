"""Job store: persistence of job records.

Every public method runs in its own short transaction taken from the shared
session factory, so a JobRepository can be used from any number of request
and archiving threads at once.  Jobs handed back to callers are detached
from their session with tags and statistics already loaded.
"""

import logging
from contextlib import contextmanager

from sqlalchemy import case, or_, select
from sqlalchemy.exc import SQLAlchemyError

from ..database import Job, JobStatistic, job_tag, session_scope
from ..errors import InvalidTransitionError, NotFoundError, StoreError
from ..schema import JobFilter, JobSpec, JobState, MetricStatistics, MonitoringStatus, OrderBy, PageRequest
from ..utils import unix_now

logger = logging.getLogger(__name__)

# Columns a client may sort by (API field name → column)
SORTABLE_FIELDS = {
    "start_time": Job.start_time,
    "startTime": Job.start_time,
    "duration": Job.duration,
    "num_nodes": Job.num_nodes,
    "numNodes": Job.num_nodes,
    "job_id": Job.job_id,
    "jobId": Job.job_id,
    "id": Job.id,
}


class JobRepository:
    """SQL-backed store for Job rows."""

    def __init__(self, session_factory):
        self.session_factory = session_factory

    @contextmanager
    def _transaction(self, action: str):
        try:
            with session_scope(self.session_factory) as session:
                yield session
        except SQLAlchemyError as e:
            raise StoreError(f"{action} failed: {e}") from e

    @staticmethod
    def _get(session, id: int) -> Job:
        job = session.get(Job, id)
        if job is None:
            raise NotFoundError(f"no job with id {id}")
        return job

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    def find_by_id(self, id: int) -> Job:
        """Return the job with database id *id* or raise NotFoundError."""
        with self._transaction("finding job") as session:
            return self._get(session, id)

    def find_all(self, job_id: int, cluster: str | None = None, start_time: int | None = None) -> list[Job]:
        """Return every job matching the (partial) natural key, newest first."""
        with self._transaction("finding jobs") as session:
            q = session.query(Job).filter(Job.job_id == job_id)
            if cluster is not None:
                q = q.filter(Job.cluster == cluster)
            if start_time is not None:
                q = q.filter(Job.start_time == start_time)
            return q.order_by(Job.start_time.desc()).all()

    def find(self, job_id: int, cluster: str | None = None, start_time: int | None = None) -> Job:
        """Return the most recent job matching the natural key.

        Raises:
            NotFoundError: If no job matches
        """
        jobs = self.find_all(job_id, cluster, start_time)
        if not jobs:
            raise NotFoundError(
                f"no job with jobId={job_id}, cluster={cluster}, startTime={start_time}"
            )
        return jobs[0]

    def fetch_metadata(self, job: Job) -> dict:
        """Reload the job's metadata (job script etc.) from the store.

        The result is also assigned to ``job.meta_data``.
        """
        with self._transaction(f"fetching metadata of job {job.id}") as session:
            row = session.query(Job.meta_data).filter(Job.id == job.id).one_or_none()
            if row is None:
                raise NotFoundError(f"no job with id {job.id}")
        job.meta_data = dict(row.meta_data or {})
        return job.meta_data

    def update_metadata(self, job: Job, key: str, value) -> dict:
        """Set ``meta_data[key] = value`` for *job* and return the new dict."""
        with self._transaction(f"updating metadata of job {job.id}") as session:
            db_job = self._get(session, job.id)
            meta = dict(db_job.meta_data or {})
            meta[key] = value
            # Reassign so the JSON column is flagged dirty
            db_job.meta_data = meta
        job.meta_data = meta
        return meta

    # ------------------------------------------------------------------
    # Lifecycle writes
    # ------------------------------------------------------------------

    def start(self, spec: JobSpec) -> int:
        """Insert a new job row in state ``running`` and return its id.

        Tags in *spec* are not written here; see TagRepository.
        """
        job = Job(
            job_id=spec.job_id,
            cluster=spec.cluster,
            sub_cluster=spec.sub_cluster,
            partition=spec.partition,
            array_job_id=spec.array_job_id,
            user=spec.user,
            project=spec.project,
            start_time=spec.start_time,
            duration=0,
            walltime=spec.walltime,
            job_state=JobState.RUNNING.value,
            monitoring_status=MonitoringStatus.parse(spec.monitoring_status).value,
            num_nodes=spec.num_nodes,
            num_hwthreads=spec.num_hwthreads,
            num_acc=spec.num_acc,
            exclusive=spec.exclusive,
            smt=spec.smt,
            resources=[r.to_dict() for r in spec.resources],
            meta_data=dict(spec.meta_data),
        )
        with self._transaction("insert into database") as session:
            session.add(job)
            session.flush()
            return job.id

    def stop(self, id: int, duration: int, state: JobState, monitoring_status: MonitoringStatus) -> None:
        """Mark a running job as finished in a single UPDATE.

        The row is only touched while it is still ``running``, so two
        concurrent stops cannot both succeed.

        Raises:
            NotFoundError: If the job does not exist
            InvalidTransitionError: If the job is no longer running
        """
        with self._transaction(f"marking job {id} as stopped") as session:
            updated = (
                session.query(Job)
                .filter(Job.id == id, Job.job_state == JobState.RUNNING.value)
                .update(
                    {
                        Job.duration: duration,
                        Job.job_state: JobState.parse(state).value,
                        Job.monitoring_status: MonitoringStatus.parse(monitoring_status).value,
                    },
                    synchronize_session=False,
                )
            )
            if updated == 0:
                job = self._get(session, id)
                raise InvalidTransitionError(
                    f"job {id} is {job.job_state!r}; only running jobs can be stopped"
                )

    def update_monitoring_status(self, id: int, status: MonitoringStatus) -> None:
        """Advance the monitoring status of job *id*.

        Raises:
            NotFoundError: If the job does not exist
            InvalidTransitionError: If the state machine forbids the change
        """
        status = MonitoringStatus.parse(status)
        with self._transaction(f"updating monitoring status of job {id}") as session:
            job = self._get(session, id)
            job.monitoring.check_transition(status)
            job.monitoring_status = status.value

    def archive(self, id: int, status: MonitoringStatus, statistics: dict[str, MetricStatistics]) -> None:
        """Record the outcome of archiving: final monitoring status plus statistics."""
        status = MonitoringStatus.parse(status)
        with self._transaction(f"archiving job {id}") as session:
            job = self._get(session, id)
            job.monitoring.check_transition(status)
            job.monitoring_status = status.value
            job.statistics = [
                JobStatistic(metric=name, unit=s.unit, avg=s.avg, min=s.min, max=s.max)
                for name, s in sorted(statistics.items())
            ]

    def stop_jobs_exceeding_walltime(self, seconds: int, now: int | None = None) -> int:
        """Fail running jobs that overran their walltime by more than *seconds*.

        Such jobs were most likely never stopped by the submission system.
        Their monitoring status becomes archiving-failed since no metric
        data will be archived for them; jobs with monitoring disabled keep it.

        Returns:
            Number of jobs updated
        """
        if now is None:
            now = unix_now()
        with self._transaction("stopping jobs exceeding walltime") as session:
            count = (
                session.query(Job)
                .filter(
                    Job.job_state == JobState.RUNNING.value,
                    Job.walltime > 0,
                    (now - Job.start_time) > (Job.walltime + seconds),
                )
                .update(
                    {
                        Job.job_state: JobState.FAILED.value,
                        Job.monitoring_status: case(
                            (Job.monitoring_status == MonitoringStatus.DISABLED.value, Job.monitoring_status),
                            else_=MonitoringStatus.ARCHIVING_FAILED.value,
                        ),
                        Job.duration: 0,
                    },
                    synchronize_session=False,
                )
            )
        if count > 0:
            logger.info(f"{count} jobs have been marked as failed due to running too long")
        return count

    # ------------------------------------------------------------------
    # Deletion (never touches the job archive)
    # ------------------------------------------------------------------

    def delete_job_by_id(self, id: int) -> None:
        with self._transaction(f"deleting job {id}") as session:
            job = self._get(session, id)
            session.delete(job)
        logger.info(f"deleted job {id} from the database")

    def delete_jobs_before(self, start_time: int) -> int:
        """Delete all jobs that started before *start_time*; return how many."""
        with self._transaction("deleting jobs") as session:
            ids = select(Job.id).where(Job.start_time < start_time)
            session.execute(job_tag.delete().where(job_tag.c.job_id.in_(ids)))
            session.query(JobStatistic).filter(
                JobStatistic.job_id.in_(ids)
            ).delete(synchronize_session=False)
            count = (
                session.query(Job)
                .filter(Job.start_time < start_time)
                .delete(synchronize_session=False)
            )
        logger.info(f"deleted {count} jobs with startTime before {start_time}")
        return count

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    @staticmethod
    def _apply_filter(q, job_filter: JobFilter | None):
        if job_filter is None:
            return q
        if job_filter.states:
            q = q.filter(Job.job_state.in_([JobState.parse(s).value for s in job_filter.states]))
        if job_filter.cluster is not None:
            q = q.filter(Job.cluster == job_filter.cluster)
        if job_filter.start_time_from is not None:
            q = q.filter(Job.start_time >= job_filter.start_time_from)
        if job_filter.start_time_to is not None:
            q = q.filter(Job.start_time <= job_filter.start_time_to)
        if job_filter.user is not None:
            q = q.filter(Job.user == job_filter.user)
        if job_filter.project is not None:
            q = q.filter(Job.project == job_filter.project)
        if job_filter.job_id is not None:
            q = q.filter(or_(Job.job_id == job_filter.job_id, Job.array_job_id == job_filter.job_id))
        if job_filter.tags:
            tagged = select(job_tag.c.job_id).where(job_tag.c.tag_id.in_(job_filter.tags))
            q = q.filter(Job.id.in_(tagged))
        return q

    def query_jobs(
        self,
        job_filter: JobFilter | None = None,
        page: PageRequest | None = None,
        order: OrderBy | None = None,
    ) -> list[Job]:
        """Return jobs matching *job_filter*, sorted and paginated."""
        order = order or OrderBy()
        column = SORTABLE_FIELDS.get(order.field)
        if column is None:
            raise ValueError(f"invalid sorting field: {order.field!r}")

        with self._transaction("querying jobs") as session:
            q = self._apply_filter(session.query(Job), job_filter)
            q = q.order_by(column.desc() if order.descending else column.asc(), Job.id.desc())
            if page is not None and page.items_per_page > 0:
                q = q.offset(page.offset).limit(page.items_per_page)
            return q.all()

    def count_jobs(self, job_filter: JobFilter | None = None) -> int:
        with self._transaction("counting jobs") as session:
            return self._apply_filter(session.query(Job), job_filter).count()
