"""Tests for ORM models."""

import pytest
from sqlalchemy.exc import IntegrityError

from job_monitor.database import Job, JobStatistic, Tag, job_tag
from job_monitor.schema import JobState, MonitoringStatus


def _job(**overrides):
    fields = dict(job_id=123, cluster="fritz", start_time=1649723812, user="alice", num_nodes=1)
    fields.update(overrides)
    return Job(**fields)


class TestJobModel:
    """Tests for Job model."""

    def test_create_job(self, db_session):
        """Should create a job record with defaults for unset fields."""
        db_session.add(_job(resources=[{"hostname": "f0101"}]))
        db_session.commit()

        retrieved = db_session.query(Job).filter_by(job_id=123).first()
        assert retrieved is not None
        assert retrieved.user == "alice"
        assert retrieved.state == JobState.RUNNING
        assert retrieved.monitoring == MonitoringStatus.PENDING
        assert retrieved.duration == 0
        assert retrieved.resources == [{"hostname": "f0101"}]
        assert retrieved.meta_data == {}

    def test_natural_key_unique(self, db_session):
        """Same job_id + cluster + start_time should raise IntegrityError."""
        db_session.add(_job(user="alice"))
        db_session.commit()

        db_session.add(_job(user="bob"))
        with pytest.raises(IntegrityError):
            db_session.commit()

    def test_same_job_id_other_cluster(self, db_session):
        """The same scheduler id may exist on different clusters."""
        db_session.add_all([_job(cluster="fritz"), _job(cluster="alex")])
        db_session.commit()
        assert db_session.query(Job).filter_by(job_id=123).count() == 2

    def test_to_dict(self, db_session):
        job = _job()
        job.tags.append(Tag(tag_type="app", tag_name="lammps"))
        db_session.add(job)
        db_session.commit()

        d = job.to_dict()
        assert d["job_id"] == 123
        assert d["cluster"] == "fritz"
        assert d["tags"] == [{"id": job.tags[0].id, "type": "app", "name": "lammps"}]
        assert d["statistics"] == {}


class TestTagModel:
    """Tests for Tag model and the job/tag association."""

    def test_tag_unique(self, db_session):
        db_session.add(Tag(tag_type="app", tag_name="lammps"))
        db_session.commit()

        db_session.add(Tag(tag_type="app", tag_name="lammps"))
        with pytest.raises(IntegrityError):
            db_session.commit()

    def test_same_name_different_type(self, db_session):
        db_session.add_all([Tag(tag_type="app", tag_name="x"), Tag(tag_type="issue", tag_name="x")])
        db_session.commit()
        assert db_session.query(Tag).count() == 2

    def test_delete_job_removes_association(self, db_session):
        """Deleting a job drops its jobtag rows but keeps the tag."""
        job = _job()
        job.tags.append(Tag(tag_type="app", tag_name="lammps"))
        db_session.add(job)
        db_session.commit()

        db_session.delete(job)
        db_session.commit()

        assert db_session.query(Tag).count() == 1
        assert db_session.execute(job_tag.select()).fetchall() == []


class TestJobStatisticModel:
    """Tests for JobStatistic model."""

    def test_statistics_dict(self, db_session):
        job = _job(monitoring_status=MonitoringStatus.ARCHIVING_SUCCESSFUL.value)
        job.statistics = [
            JobStatistic(metric="flops_any", unit="F/s", avg=2.0, min=1.0, max=3.0),
        ]
        db_session.add(job)
        db_session.commit()

        stats = db_session.query(Job).one().statistics_dict()
        assert set(stats) == {"flops_any"}
        assert stats["flops_any"].avg == 2.0
        assert stats["flops_any"].unit == "F/s"

    def test_delete_job_cascades_statistics(self, db_session):
        job = _job()
        job.statistics = [JobStatistic(metric="mem_bw", unit="B/s", avg=1.0, min=0.5, max=2.0)]
        db_session.add(job)
        db_session.commit()

        db_session.delete(job)
        db_session.commit()
        assert db_session.query(JobStatistic).count() == 0
