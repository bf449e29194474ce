"""Tag store: tags and their association with jobs.

Tags of a job whose metric data is already archived are mirrored into the
archive's meta.json, the one place where an archived job may still change.
"""

import logging
from contextlib import contextmanager

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from ..database import Job, Tag, job_tag, session_scope
from ..errors import ArchivalError, NotFoundError, StoreError
from ..schema import MonitoringStatus

logger = logging.getLogger(__name__)


class TagRepository:
    """SQL-backed store for tags.

    Args:
        session_factory: Shared sessionmaker
        archive: Job archive to keep in sync for archived jobs (optional)
    """

    def __init__(self, session_factory, archive=None):
        self.session_factory = session_factory
        self.archive = archive

    @contextmanager
    def _transaction(self, action: str):
        try:
            with session_scope(self.session_factory) as session:
                yield session
        except SQLAlchemyError as e:
            raise StoreError(f"{action} failed: {e}") from e

    # ------------------------------------------------------------------
    # Tags
    # ------------------------------------------------------------------

    def tag_id(self, tag_type: str, tag_name: str) -> int | None:
        """Return the id of the (type, name) tag, or None if it does not exist."""
        with self._transaction("looking up tag") as session:
            return (
                session.query(Tag.id)
                .filter(Tag.tag_type == tag_type, Tag.tag_name == tag_name)
                .scalar()
            )

    def create_tag(self, tag_type: str, tag_name: str) -> int:
        """Create a tag and return its id.

        If another request created the same tag concurrently, the existing
        id is returned instead.
        """
        try:
            with session_scope(self.session_factory) as session:
                tag = Tag(tag_type=tag_type, tag_name=tag_name)
                session.add(tag)
                session.flush()
                return tag.id
        except IntegrityError:
            existing = self.tag_id(tag_type, tag_name)
            if existing is None:
                raise StoreError(f"creating tag {tag_type}:{tag_name} failed")
            return existing
        except SQLAlchemyError as e:
            raise StoreError(f"creating tag {tag_type}:{tag_name} failed: {e}") from e

    def get_tags(self, job_id: int | None = None) -> list[Tag]:
        """Return all tags, or only those attached to job *job_id*."""
        with self._transaction("fetching tags") as session:
            q = session.query(Tag)
            if job_id is not None:
                q = q.join(job_tag, job_tag.c.tag_id == Tag.id).filter(job_tag.c.job_id == job_id)
            return q.order_by(Tag.id).all()

    def count_tags(self, user: str | None = None) -> tuple[list[Tag], dict[str, int]]:
        """Return all tags plus the number of jobs carrying each tag name.

        Args:
            user: Only count jobs of this user
        """
        with self._transaction("counting tags") as session:
            tags = session.query(Tag).order_by(Tag.id).all()
            q = (
                session.query(Tag.tag_name, func.count(job_tag.c.tag_id))
                .outerjoin(job_tag, job_tag.c.tag_id == Tag.id)
                .group_by(Tag.tag_name)
            )
            if user is not None:
                q = q.filter(job_tag.c.job_id.in_(select(Job.id).where(Job.user == user)))
            counts = {name: count for name, count in q.all()}
        return tags, counts

    # ------------------------------------------------------------------
    # Job associations
    # ------------------------------------------------------------------

    def add_tag(self, job_id: int, tag_id: int) -> list[Tag]:
        """Attach tag *tag_id* to job *job_id* and return the job's tags.

        Attaching a tag the job already carries is a no-op.
        """
        try:
            with session_scope(self.session_factory) as session:
                if session.get(Job, job_id) is None:
                    raise NotFoundError(f"no job with id {job_id}")
                if session.get(Tag, tag_id) is None:
                    raise NotFoundError(f"no tag with id {tag_id}")
                exists = session.execute(
                    select(job_tag.c.job_id).where(
                        job_tag.c.job_id == job_id, job_tag.c.tag_id == tag_id
                    )
                ).first()
                if exists is None:
                    session.execute(job_tag.insert().values(job_id=job_id, tag_id=tag_id))
        except IntegrityError:
            # Lost a race against an identical association
            logger.debug(f"tag {tag_id} already attached to job {job_id}")
        except SQLAlchemyError as e:
            raise StoreError(f"adding tag {tag_id} to job {job_id} failed: {e}") from e

        return self._sync_archive(job_id)

    def remove_tag(self, job_id: int, tag_id: int) -> list[Tag]:
        """Detach tag *tag_id* from job *job_id* and return the remaining tags."""
        with self._transaction(f"removing tag {tag_id} from job {job_id}") as session:
            if session.get(Job, job_id) is None:
                raise NotFoundError(f"no job with id {job_id}")
            session.execute(
                job_tag.delete().where(job_tag.c.job_id == job_id, job_tag.c.tag_id == tag_id)
            )
        return self._sync_archive(job_id)

    def add_tag_or_create(self, job_id: int, tag_type: str, tag_name: str) -> int:
        """Attach the (type, name) tag to a job, creating the tag if needed.

        Returns:
            The tag's id
        """
        tag_id = self.tag_id(tag_type, tag_name)
        if tag_id is None:
            tag_id = self.create_tag(tag_type, tag_name)
        self.add_tag(job_id, tag_id)
        return tag_id

    def _sync_archive(self, job_id: int) -> list[Tag]:
        """Return the job's tags, rewriting the archived copy if there is one."""
        with self._transaction(f"fetching job {job_id}") as session:
            job = session.get(Job, job_id)
            if job is None:
                raise NotFoundError(f"no job with id {job_id}")
        tags = list(job.tags)

        if self.archive is not None and job.monitoring == MonitoringStatus.ARCHIVING_SUCCESSFUL:
            try:
                self.archive.update_tags(job, tags)
            except ArchivalError as e:
                raise StoreError(f"updating archived tags of job {job_id} failed: {e}") from e
        return tags
