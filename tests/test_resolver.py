"""Tests for the query resolver."""

import pytest

from job_monitor.errors import ArchivalError, NotFoundError
from job_monitor.graph import Resolver
from job_monitor.graph.resolver import select_metrics
from job_monitor.schema import JobFilter, MonitoringStatus, PageRequest


@pytest.fixture
def resolver(job_repo, tag_repo, archive, archiver):
    return Resolver(job_repo, tag_repo, archive, archiver)


def test_jobs_with_count(resolver, job_repo, make_spec):
    for i in range(3):
        job_repo.start(make_spec(job_id=i + 1, start_time=1000 + i))
    result = resolver.jobs(JobFilter(cluster="fritz"), PageRequest(items_per_page=2))
    assert result["count"] == 3
    assert [j.job_id for j in result["items"]] == [3, 2]


def test_job(resolver, job_repo, make_spec):
    id = job_repo.start(make_spec())
    assert resolver.job(id).id == id
    with pytest.raises(NotFoundError):
        resolver.job(id + 1)


def test_tags(resolver, job_repo, tag_repo, make_spec):
    tag_repo.add_tag_or_create(job_repo.start(make_spec()), "app", "lammps")
    assert resolver.tags() == [{"id": 1, "type": "app", "name": "lammps", "count": 1}]


def test_metrics_of_failed_archive(resolver, job_repo, make_spec):
    id = job_repo.start(make_spec())
    job_repo.update_monitoring_status(id, MonitoringStatus.ARCHIVING_FAILED)
    with pytest.raises(ArchivalError):
        resolver.job_metrics(id)


def test_select_metrics():
    data = {"a": {"node": 1, "core": 2}, "b": {"node": 3}}
    assert select_metrics(data, ["a"], None) == {"a": {"node": 1, "core": 2}}
    assert select_metrics(data, None, ["core"]) == {"a": {"core": 2}}
    assert select_metrics(data, None, None) == data
