"""Configuration for the job_monitor service.

All env-var reading is centralised here.  Call load_dotenv() at import time
so the class attrs below pick up values from a .env file if present.

Supported database backends:
  sqlite (default):   a single .db file in JM_DATA_DIR
  postgres:           one database on a PostgreSQL server

Clusters, their partitions and metrics, and the metric-data repository each
cluster reads from are described by a JSON file named in JM_CLUSTERS_FILE:

  [
    {
      "name": "fritz",
      "partitions": ["singlenode", "multinode"],
      "subClusters": ["main", "spr"],
      "metrics": [{"name": "flops_any", "unit": "F/s"}, ...],
      "metricDataRepository": {"kind": "cc-metric-store", "url": "...", "token": "..."}
    }
  ]

Quickstart:
  Copy .env.example to .env and set JM_DB_BACKEND plus the appropriate vars.
"""

import json
import os
from pathlib import Path

from dotenv import find_dotenv, load_dotenv

# Load .env on import.  Calling this multiple times is harmless.
load_dotenv(find_dotenv())

# Default data directory (relative to project root)
_DEFAULT_DATA_DIR = Path(__file__).parent.parent / "data"


def _env_flag(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).lower() in ("true", "1", "yes")


class JobMonitorConfig:
    # ------------------------------------------------------------ Backend
    # "sqlite" or "postgres"
    DB_BACKEND = os.getenv("JM_DB_BACKEND", "sqlite").lower()

    # ------------------------------------------------------------ SQLite
    DATA_DIR = Path(os.getenv("JM_DATA_DIR", _DEFAULT_DATA_DIR))
    SQLITE_DB = os.getenv("JM_SQLITE_DB", "job.db")

    # ---------------------------------------------------------- PostgreSQL
    PG_HOST = os.getenv("JM_PG_HOST", "localhost")
    PG_PORT = int(os.getenv("JM_PG_PORT", "5432"))
    PG_USER = os.getenv("JM_PG_USER", "postgres")
    PG_PASSWORD = os.getenv("JM_PG_PASSWORD", "")
    PG_DB = os.getenv("JM_PG_DB", "job_monitor")
    PG_REQUIRE_SSL = _env_flag("JM_PG_REQUIRE_SSL")

    # ------------------------------------------------------------ Archive
    ARCHIVE_DIR = Path(os.getenv("JM_ARCHIVE_DIR", _DEFAULT_DATA_DIR / "job-archive"))
    # Keep all metric data in the metric-data repositories; never write archive files.
    DISABLE_ARCHIVE = _env_flag("JM_DISABLE_ARCHIVE")
    # Seconds to wait for in-flight archiving when the server shuts down.
    SHUTDOWN_TIMEOUT = float(os.getenv("JM_SHUTDOWN_TIMEOUT", "60"))

    # ------------------------------------------------------------ Clusters
    CLUSTERS_FILE = os.getenv("JM_CLUSTERS_FILE", "")

    # ------------------------------------------------------------ HTTP API
    ADDR = os.getenv("JM_ADDR", "127.0.0.1")
    PORT = int(os.getenv("JM_PORT", "8080"))
    DISABLE_AUTHENTICATION = _env_flag("JM_DISABLE_AUTHENTICATION")
    API_TOKENS_FILE = os.getenv("JM_API_TOKENS_FILE", "")
    # Directory for /machine_state/ files; the routes are disabled when empty.
    MACHINE_STATE_DIR = os.getenv("JM_MACHINE_STATE_DIR", "")

    # ------------------------------------------------------------ Logging
    LOG_LEVEL = os.getenv("JM_LOG_LEVEL", "INFO").upper()

    # ------------------------------------------------------------ Helpers
    @classmethod
    def sqlite_path(cls) -> Path:
        """Return the SQLite database path, honouring an absolute JM_SQLITE_DB."""
        path = Path(cls.SQLITE_DB)
        if path.is_absolute():
            return path
        return cls.DATA_DIR / path

    @classmethod
    def load_clusters(cls) -> list[dict]:
        """Read the cluster definitions from ``CLUSTERS_FILE``.

        Returns an empty list when no file is configured.
        """
        if not cls.CLUSTERS_FILE:
            return []
        with open(cls.CLUSTERS_FILE) as f:
            clusters = json.load(f)
        if not isinstance(clusters, list):
            raise ValueError(f"{cls.CLUSTERS_FILE}: expected a JSON list of clusters")
        return clusters

    @classmethod
    def load_api_tokens(cls) -> dict[str, dict]:
        """Read ``{token: {"username": ..., "roles": [...]}}`` from ``API_TOKENS_FILE``."""
        if not cls.API_TOKENS_FILE:
            return {}
        with open(cls.API_TOKENS_FILE) as f:
            return json.load(f)

    # ------------------------------------------------------------ Validate
    @classmethod
    def validate_postgres(cls):
        """Fail fast at startup if postgres backend is selected but credentials missing."""
        required = {
            "JM_PG_HOST": cls.PG_HOST,
            "JM_PG_USER": cls.PG_USER,
            "JM_PG_PASSWORD": cls.PG_PASSWORD,
        }
        missing = [k for k, v in required.items() if not v]
        if missing:
            raise EnvironmentError(
                "Missing required environment variables for postgres backend:\n"
                + "".join(f"  {k}\n" for k in missing)
                + "\nSee .env.example for a template."
            )
