"""Job lifecycle coordinator.

Drives a job from ``running`` to a terminal state:

* ``start_job`` validates a job spec, rejects duplicates and inserts the row.
  The duplicate check and the insert run under one process-wide lock so two
  concurrent starts of the same job cannot both pass the check.
* ``stop_job`` persists the final state and duration synchronously, then hands
  archiving to a background thread.  The caller gets its answer as soon as
  the database update commits; archiving failures only show up in the job's
  monitoring status and in the server log.

Archiving threads are counted by an ArchivingTracker so that shutdown can wait
for them.  There is no retry and no way to cancel an archiving thread.
"""

import logging
import threading

from .errors import DuplicateJobError, InvalidTransitionError, NotFoundError, StoreError, ValidationError
from .schema import (
    DUPLICATE_WINDOW_SECONDS, ClusterRegistry, JobSpec, JobState, MonitoringStatus, TagSpec,
)

logger = logging.getLogger(__name__)


class ArchivingTracker:
    """Counts in-flight archiving threads so shutdown can wait for them."""

    def __init__(self):
        self._cond = threading.Condition()
        self._outstanding = 0

    @property
    def outstanding(self) -> int:
        with self._cond:
            return self._outstanding

    def add(self) -> None:
        with self._cond:
            self._outstanding += 1

    def done(self) -> None:
        with self._cond:
            if self._outstanding <= 0:
                raise RuntimeError("ArchivingTracker.done() called more often than add()")
            self._outstanding -= 1
            if self._outstanding == 0:
                self._cond.notify_all()

    def wait(self, timeout: float | None = None) -> bool:
        """Block until no archiving is in flight.

        Returns:
            True if everything finished, False if *timeout* expired first
        """
        with self._cond:
            return self._cond.wait_for(lambda: self._outstanding == 0, timeout)

    def dispatch(self, fn, *args, name: str | None = None) -> threading.Thread:
        """Run ``fn(*args)`` on a new daemon thread counted by this tracker."""
        def run():
            try:
                fn(*args)
            finally:
                self.done()

        self.add()
        thread = threading.Thread(target=run, name=name, daemon=True)
        try:
            thread.start()
        except RuntimeError:
            self.done()
            raise
        return thread


def sanity_checks(spec: JobSpec, clusters: ClusterRegistry) -> None:
    """Reject a start request that cannot describe a valid running job.

    Raises:
        ValidationError: Naming the first problem found
    """
    for name in ("job_id", "cluster", "user", "start_time"):
        if getattr(spec, name) in (None, ""):
            raise ValidationError(f"missing required field: {name}")

    if spec.start_time <= 0:
        raise ValidationError(f"invalid startTime: {spec.start_time}")

    cluster = clusters.get(spec.cluster)
    if cluster is None:
        raise ValidationError(f"unknown cluster: {spec.cluster!r}")
    if spec.partition and cluster.partitions and spec.partition not in cluster.partitions:
        raise ValidationError(f"unknown partition {spec.partition!r} on cluster {spec.cluster!r}")
    if spec.sub_cluster and cluster.sub_clusters and spec.sub_cluster not in cluster.sub_clusters:
        raise ValidationError(f"unknown subCluster {spec.sub_cluster!r} on cluster {spec.cluster!r}")

    if spec.num_nodes < 1:
        raise ValidationError(f"numNodes must be at least 1 (got {spec.num_nodes})")
    if spec.num_hwthreads < 0 or spec.num_acc < 0:
        raise ValidationError("numHwthreads and numAcc must not be negative")
    if spec.resources and len(spec.resources) != spec.num_nodes:
        raise ValidationError(
            f"numNodes is {spec.num_nodes} but {len(spec.resources)} resources were given"
        )
    if spec.exclusive not in (0, 1, 2):
        raise ValidationError(f"invalid exclusive value: {spec.exclusive}")

    if spec.walltime < 0:
        raise ValidationError(f"walltime must not be negative (got {spec.walltime})")
    if spec.duration < 0:
        raise ValidationError(f"duration must not be negative (got {spec.duration})")

    try:
        state = JobState.parse(spec.job_state)
        monitoring = MonitoringStatus.parse(spec.monitoring_status)
    except ValueError as e:
        raise ValidationError(str(e)) from None
    if state != JobState.RUNNING:
        raise ValidationError(f"new jobs must be running (got jobState {state.value!r})")
    if spec.duration != 0:
        raise ValidationError("a running job cannot have a duration")
    if monitoring not in (MonitoringStatus.PENDING, MonitoringStatus.DISABLED):
        raise ValidationError(f"invalid monitoringStatus for a new job: {monitoring.value!r}")


class JobLifecycle:
    """Coordinates job start, stop, tagging and deletion.

    Args:
        jobs: JobRepository
        tags: TagRepository
        archiver: MetricArchiver (anything with ``archive_job(job)``)
        clusters: ClusterRegistry used to validate start requests
        tracker: ArchivingTracker; a new one is created if omitted
    """

    def __init__(self, jobs, tags, archiver, clusters: ClusterRegistry, tracker: ArchivingTracker | None = None):
        self.jobs = jobs
        self.tags = tags
        self.archiver = archiver
        self.clusters = clusters
        self.tracker = tracker or ArchivingTracker()
        # Serialises the duplicate check and the insert of start_job()
        self.start_lock = threading.Lock()

    # ------------------------------------------------------------------
    # Start
    # ------------------------------------------------------------------

    def start_job(self, spec: JobSpec) -> int:
        """Record a new running job and return its database id.

        Raises:
            ValidationError: Invalid spec (nothing is written)
            DuplicateJobError: Same jobId and cluster started less than a day apart
            StoreError: Insert failed, or tagging failed after the insert.  In
                the latter case the job row stays in the database.
        """
        sanity_checks(spec, self.clusters)

        with self.start_lock:
            for existing in self.jobs.find_all(spec.job_id, spec.cluster):
                if abs(spec.start_time - existing.start_time) < DUPLICATE_WINDOW_SECONDS:
                    raise DuplicateJobError(
                        "a job with that jobId, cluster and startTime already exists: "
                        f"dbid: {existing.id}",
                        conflicting_id=existing.id,
                    )
            id = self.jobs.start(spec)

        for tag in spec.tags:
            try:
                self.tags.add_tag_or_create(id, tag.type, tag.name)
            except (StoreError, NotFoundError) as e:
                raise StoreError(f"adding tag to new job {id} failed: {e}") from e

        logger.info(
            f"new job (id: {id}): cluster={spec.cluster}, jobId={spec.job_id}, "
            f"user={spec.user}, startTime={spec.start_time}"
        )
        return id

    # ------------------------------------------------------------------
    # Stop
    # ------------------------------------------------------------------

    def stop_job_by_id(self, id: int, stop_time: int, state=None):
        return self.stop_job(self.jobs.find_by_id(id), stop_time, state)

    def stop_job_by_natural_key(self, job_id: int, cluster: str | None, start_time: int | None, stop_time: int, state=None):
        return self.stop_job(self.jobs.find(job_id, cluster, start_time), stop_time, state)

    def stop_job(self, job, stop_time: int, state=None):
        """Mark *job* as finished and start archiving it in the background.

        Args:
            job: Job as returned by the job store
            stop_time: Unix time the job ended
            state: Final JobState (default ``completed``)

        Returns:
            The updated job

        Raises:
            InvalidTransitionError: Job not running, stop_time not after
                start_time, or state not terminal
            StoreError: The update did not commit
        """
        if job is None:
            raise NotFoundError("job to stop does not exist")
        if job.state != JobState.RUNNING or stop_time is None or stop_time <= job.start_time:
            raise InvalidTransitionError(
                "stopTime must be larger than startTime and only running jobs can be stopped"
            )

        if state in (None, ""):
            state = JobState.COMPLETED
        try:
            state = JobState.parse(state)
        except ValueError as e:
            raise InvalidTransitionError(str(e)) from None
        if not state.is_terminal:
            raise InvalidTransitionError(f"invalid job state: {state.value!r} is not a final state")

        duration = stop_time - job.start_time
        self.jobs.stop(job.id, duration, state, job.monitoring)
        job.duration = duration
        job.job_state = state.value

        if job.monitoring == MonitoringStatus.DISABLED:
            return job

        logger.info(
            f"archiving job... (dbid: {job.id}): cluster={job.cluster}, jobId={job.job_id}, "
            f"user={job.user}, startTime={job.start_time}"
        )
        try:
            self.tracker.dispatch(self.archive_job, job, name=f"archive-{job.id}")
        except RuntimeError as e:
            raise StoreError(f"dispatching archiving of job {job.id} failed: {e}") from e
        return job

    def archive_job(self, job) -> None:
        """Archive a stopped job; runs on its own thread.

        Never raises: every failure is logged and, where possible, recorded
        as monitoring status ``archiving-failed``.
        """
        try:
            self.jobs.fetch_metadata(job)
        except Exception as e:
            logger.error(f"archiving job (dbid: {job.id}) failed: {e}")
            self._mark_failed(job)
            return

        try:
            statistics = self.archiver.archive_job(job)
        except Exception as e:
            logger.error(f"archiving job (dbid: {job.id}) failed: {e}")
            self._mark_failed(job)
            return

        try:
            self.jobs.archive(job.id, MonitoringStatus.ARCHIVING_SUCCESSFUL, statistics)
        except NotFoundError:
            logger.debug(f"job (dbid: {job.id}) was deleted while it was being archived")
            return
        except Exception as e:
            # Archive files exist but the database still says pending
            logger.error(f"archiving job (dbid: {job.id}) failed: {e}")
            return

        logger.info(f"archiving job (dbid: {job.id}) successful")

    def _mark_failed(self, job) -> None:
        try:
            self.jobs.update_monitoring_status(job.id, MonitoringStatus.ARCHIVING_FAILED)
        except NotFoundError:
            logger.debug(f"job (dbid: {job.id}) was deleted while it was being archived")
        except Exception as e:
            logger.error(f"recording failed archiving of job (dbid: {job.id}) failed: {e}")

    # ------------------------------------------------------------------
    # Tags and deletion
    # ------------------------------------------------------------------

    def tag_job(self, id: int, tags: list[TagSpec]):
        """Attach tags to job *id* (creating missing tags) and return the job."""
        self.jobs.find_by_id(id)
        for tag in tags:
            self.tags.add_tag_or_create(id, tag.type, tag.name)
        return self.jobs.find_by_id(id)

    def delete_job_by_id(self, id: int) -> None:
        self.jobs.delete_job_by_id(id)

    def delete_job(self, job_id: int, cluster: str | None = None, start_time: int | None = None) -> int:
        """Delete the job matching the natural key and return its database id."""
        job = self.jobs.find(job_id, cluster, start_time)
        self.jobs.delete_job_by_id(job.id)
        return job.id

    def delete_jobs_before(self, start_time: int) -> int:
        return self.jobs.delete_jobs_before(start_time)

    # ------------------------------------------------------------------
    # Shutdown
    # ------------------------------------------------------------------

    def shutdown(self, timeout: float | None = None) -> bool:
        """Wait for in-flight archiving to finish.

        Returns:
            True if all archiving finished, False if *timeout* expired first
        """
        outstanding = self.tracker.outstanding
        if outstanding:
            logger.info(f"waiting for {outstanding} archiving job(s) to finish")
        drained = self.tracker.wait(timeout)
        if not drained:
            logger.warning(
                f"shutdown timeout reached with {self.tracker.outstanding} archiving job(s) in flight"
            )
        return drained
