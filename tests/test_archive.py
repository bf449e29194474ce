"""Tests for the file-based job archive."""

import gzip
import json

import pytest

from job_monitor.archive import ARCHIVE_VERSION, FsArchive, build_job_meta
from job_monitor.errors import ArchivalError
from job_monitor.schema import MetricStatistics


@pytest.fixture
def job(job_repo, tag_repo, make_spec):
    id = job_repo.start(make_spec(job_id=1234567))
    tag_repo.add_tag_or_create(id, "app", "lammps")
    return job_repo.find_by_id(id)


class TestLayout:

    def test_init_writes_version(self, tmp_path):
        archive = FsArchive(tmp_path / "a")
        assert archive.init() == ARCHIVE_VERSION
        assert (tmp_path / "a" / "version.txt").read_text().strip() == str(ARCHIVE_VERSION)
        # Reopening an archive of the same version is fine
        assert FsArchive(tmp_path / "a").init() == ARCHIVE_VERSION

    def test_version_mismatch(self, tmp_path):
        (tmp_path / "version.txt").write_text("2\n")
        with pytest.raises(ArchivalError, match="version"):
            FsArchive(tmp_path).init()

    def test_job_dir(self, archive, job):
        assert archive.job_dir(job) == archive.root / "fritz" / "1234" / "567" / str(job.start_time)


class TestStoreAndLoad:

    def test_store_job(self, archive, job):
        stats = {"flops_any": MetricStatistics(unit="F/s", avg=2.0, min=1.0, max=3.0)}
        data = {"flops_any": {"node": {"unit": "F/s", "timestep": 60, "series": []}}}
        archive.store_job(job, build_job_meta(job, statistics=stats), data)

        assert archive.exists(job)
        meta = archive.load_job_meta(job)
        assert meta["jobId"] == 1234567
        assert meta["numNodes"] == 1
        assert meta["tags"][0]["name"] == "lammps"
        assert meta["metaData"]["jobName"] == "lammps"
        assert archive.load_job_data(job) == data
        assert archive.get_statistics(job) == stats

    def test_load_gzipped_data(self, archive, job):
        directory = archive.job_dir(job)
        directory.mkdir(parents=True)
        with gzip.open(directory / "data.json.gz", "wt") as f:
            json.dump({"mem_bw": {}}, f)
        assert archive.load_job_data(job) == {"mem_bw": {}}

    def test_load_missing(self, archive, job):
        assert not archive.exists(job)
        with pytest.raises(ArchivalError):
            archive.load_job_meta(job)
        with pytest.raises(ArchivalError):
            archive.load_job_data(job)

    def test_update_tags(self, archive, job, tag_repo):
        archive.store_job(job, build_job_meta(job), {})
        tag_repo.add_tag_or_create(job.id, "issue", "slow io")

        archive.update_tags(job, tag_repo.get_tags(job.id))
        names = [t["name"] for t in archive.load_job_meta(job)["tags"]]
        assert names == ["lammps", "slow io"]

    def test_iter_jobs(self, archive, job):
        archive.store_job(job, build_job_meta(job), {})
        assert [m["jobId"] for m in archive.iter_jobs()] == [1234567]
