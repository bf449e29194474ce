"""File-based job archive.

Each archived job lives in its own directory::

    <root>/<cluster>/<jobId // 1000>/<jobId % 1000 (3 digits)>/<startTime>/
        meta.json   job metadata, tags and per-metric statistics
        data.json   metric time series (data.json.gz is read as well)

``<root>/version.txt`` holds the archive layout version.  Archived files are
never rewritten, with one exception: the tag list in meta.json follows tag
changes made after archiving.
"""

import gzip
import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Iterator

from ..errors import ArchivalError
from ..schema import MetricStatistics

logger = logging.getLogger(__name__)

ARCHIVE_VERSION = 1


def build_job_meta(job, tags=None, statistics: dict[str, MetricStatistics] | None = None) -> dict:
    """Return the meta.json document for *job*.

    Args:
        job: Job ORM object
        tags: Tags to record (defaults to ``job.tags``)
        statistics: Per-metric statistics (defaults to the stored ones)
    """
    if tags is None:
        tags = job.tags
    if statistics is None:
        statistics = job.statistics_dict()
    return {
        "jobId": job.job_id,
        "user": job.user,
        "project": job.project,
        "cluster": job.cluster,
        "subCluster": job.sub_cluster,
        "partition": job.partition,
        "arrayJobId": job.array_job_id,
        "numNodes": job.num_nodes,
        "numHwthreads": job.num_hwthreads,
        "numAcc": job.num_acc,
        "exclusive": job.exclusive,
        "smt": job.smt,
        "jobState": job.job_state,
        "monitoringStatus": job.monitoring_status,
        "startTime": job.start_time,
        "duration": job.duration,
        "walltime": job.walltime,
        "resources": list(job.resources or []),
        "metaData": dict(job.meta_data or {}),
        "tags": [{"id": t.id, "type": t.tag_type, "name": t.tag_name} for t in tags],
        "statistics": {name: s.to_dict() for name, s in statistics.items()},
    }


def _write_json(path: Path, document) -> None:
    """Write *document* to *path* atomically (temp file + rename)."""
    fd, tmp = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.")
    try:
        with os.fdopen(fd, "w") as f:
            json.dump(document, f)
        os.replace(tmp, path)
    except BaseException:
        Path(tmp).unlink(missing_ok=True)
        raise


class FsArchive:
    """Job archive on a local (or network) filesystem."""

    def __init__(self, root: str | Path):
        self.root = Path(root)

    def init(self) -> int:
        """Create the archive root and check its layout version.

        Returns:
            The archive version

        Raises:
            ArchivalError: If an existing archive has a different version
        """
        version_file = self.root / "version.txt"
        try:
            self.root.mkdir(parents=True, exist_ok=True)
            if version_file.exists():
                version = int(version_file.read_text().strip())
                if version != ARCHIVE_VERSION:
                    raise ArchivalError(
                        f"unsupported job archive version {version} in {self.root} "
                        f"(expected {ARCHIVE_VERSION})"
                    )
            else:
                version_file.write_text(f"{ARCHIVE_VERSION}\n")
        except (OSError, ValueError) as e:
            raise ArchivalError(f"initialising job archive at {self.root} failed: {e}") from e
        return ARCHIVE_VERSION

    # ------------------------------------------------------------------
    # Layout
    # ------------------------------------------------------------------

    def job_dir(self, job) -> Path:
        job_id = int(job.job_id)
        return (
            self.root
            / job.cluster
            / str(job_id // 1000)
            / f"{job_id % 1000:03d}"
            / str(job.start_time)
        )

    def exists(self, job) -> bool:
        return (self.job_dir(job) / "meta.json").is_file()

    # ------------------------------------------------------------------
    # Read / write
    # ------------------------------------------------------------------

    def store_job(self, job, meta: dict, data: dict) -> Path:
        """Write meta.json and data.json for *job*; return the job directory."""
        directory = self.job_dir(job)
        try:
            directory.mkdir(parents=True, exist_ok=True)
            _write_json(directory / "data.json", data)
            _write_json(directory / "meta.json", meta)
        except OSError as e:
            raise ArchivalError(f"writing archive for job {job.job_id} failed: {e}") from e
        logger.debug(f"archived job {job.job_id} ({job.cluster}) to {directory}")
        return directory

    def load_job_meta(self, job) -> dict:
        path = self.job_dir(job) / "meta.json"
        try:
            with open(path) as f:
                return json.load(f)
        except (OSError, ValueError) as e:
            raise ArchivalError(f"loading {path} failed: {e}") from e

    def load_job_data(self, job) -> dict:
        directory = self.job_dir(job)
        plain, compressed = directory / "data.json", directory / "data.json.gz"
        try:
            if plain.is_file():
                with open(plain) as f:
                    return json.load(f)
            with gzip.open(compressed, "rt") as f:
                return json.load(f)
        except (OSError, ValueError) as e:
            raise ArchivalError(f"loading metric data of job {job.job_id} failed: {e}") from e

    def get_statistics(self, job) -> dict[str, MetricStatistics]:
        meta = self.load_job_meta(job)
        return {
            name: MetricStatistics(unit=s.get("unit", ""), avg=s["avg"], min=s["min"], max=s["max"])
            for name, s in meta.get("statistics", {}).items()
        }

    def update_tags(self, job, tags) -> None:
        """Replace the tag list in an archived job's meta.json."""
        meta = self.load_job_meta(job)
        meta["tags"] = [{"id": t.id, "type": t.tag_type, "name": t.tag_name} for t in tags]
        try:
            _write_json(self.job_dir(job) / "meta.json", meta)
        except OSError as e:
            raise ArchivalError(f"updating tags of archived job {job.job_id} failed: {e}") from e

    def iter_jobs(self) -> Iterator[dict]:
        """Yield the meta.json document of every archived job."""
        for path in sorted(self.root.glob("*/*/*/*/meta.json")):
            try:
                with open(path) as f:
                    yield json.load(f)
            except (OSError, ValueError) as e:
                logger.warning(f"skipping unreadable archive entry {path}: {e}")
