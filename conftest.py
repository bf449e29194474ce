"""Root pytest configuration: fixtures shared by every test module."""

import pytest

from job_monitor.archive import FsArchive
from job_monitor.database import get_session_factory, init_db
from job_monitor.errors import ArchivalError
from job_monitor.lifecycle import JobLifecycle
from job_monitor.metricdata import MetricArchiver, MetricDataRepositories, MetricDataRepository
from job_monitor.repository import JobRepository, TagRepository
from job_monitor.schema import ClusterRegistry, JobSpec, Resource

START_TIME = 1649723812

CLUSTERS = [
    {
        "name": "fritz",
        "partitions": ["singlenode", "multinode"],
        "subClusters": ["main", "spr"],
        "metrics": [
            {"name": "flops_any", "unit": "F/s"},
            {"name": "mem_bw", "unit": "B/s"},
        ],
    },
    {"name": "alex"},
]


class FakeMetricRepository(MetricDataRepository):
    """Metric backend returning samples 1, 2, 3 for every node and metric."""

    KIND = "fake"

    def __init__(self):
        self.calls = []
        self.fail = False

    def load_data(self, job, metrics, scopes):
        self.calls.append(job.id)
        if self.fail:
            raise ArchivalError("metric backend unreachable")
        return {
            m.name: {
                "node": {
                    "unit": m.unit,
                    "timestep": m.timestep,
                    "series": [
                        {
                            "hostname": r["hostname"],
                            "data": [1.0, 2.0, 3.0],
                            "statistics": {"min": 1.0, "avg": 2.0, "max": 3.0},
                        }
                        for r in job.resources
                    ],
                }
            }
            for m in metrics
        }


@pytest.fixture
def engine(tmp_path):
    """SQLite database in a temporary directory (file-backed so threads share it)."""
    engine = init_db(f"sqlite:///{tmp_path / 'job.db'}")
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return get_session_factory(engine)


@pytest.fixture
def db_session(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def archive(tmp_path):
    archive = FsArchive(tmp_path / "job-archive")
    archive.init()
    return archive


@pytest.fixture
def clusters():
    return ClusterRegistry(CLUSTERS)


@pytest.fixture
def job_repo(session_factory):
    return JobRepository(session_factory)


@pytest.fixture
def tag_repo(session_factory, archive):
    return TagRepository(session_factory, archive)


@pytest.fixture
def metric_repo():
    return FakeMetricRepository()


@pytest.fixture
def archiver(archive, clusters, metric_repo):
    return MetricArchiver(archive, clusters, MetricDataRepositories({"fritz": metric_repo}))


@pytest.fixture
def lifecycle(job_repo, tag_repo, archiver, clusters):
    lifecycle = JobLifecycle(job_repo, tag_repo, archiver, clusters)
    yield lifecycle
    lifecycle.shutdown(timeout=5)


@pytest.fixture
def make_spec():
    """Factory for valid start specs; keyword arguments override fields."""
    def factory(**overrides):
        fields = dict(
            job_id=123,
            cluster="fritz",
            start_time=START_TIME,
            user="alice",
            project="abcd100",
            partition="singlenode",
            sub_cluster="main",
            num_nodes=1,
            num_hwthreads=72,
            walltime=3600,
            resources=[Resource(hostname="f0101")],
            meta_data={"jobName": "lammps", "jobScript": "#!/bin/bash\nsrun lmp"},
        )
        fields.update(overrides)
        return JobSpec(**fields)
    return factory


@pytest.fixture
def start_body():
    """A valid start_job request body as a client would send it."""
    return {
        "jobId": 123,
        "cluster": "fritz",
        "partition": "singlenode",
        "subCluster": "main",
        "user": "alice",
        "project": "abcd100",
        "startTime": START_TIME,
        "numNodes": 1,
        "numHwthreads": 72,
        "walltime": 3600,
        "resources": [{"hostname": "f0101", "hwthreads": list(range(72))}],
        "metaData": {"jobName": "lammps"},
        "tags": [{"type": "scheduler", "name": "slurm"}],
    }
