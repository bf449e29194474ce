"""Database connection and session management.

Supports two backends, selected by the ``JM_DB_BACKEND`` environment variable
(or a ``.env`` file loaded via python-dotenv):

  sqlite (default):   a single .db file under ``DATA_DIR``
  postgres:           one database on a PostgreSQL server

See ``job_monitor/config.py`` for full configuration details.

The engine (and its connection pool) is shared by every request thread and
by the background archiving threads; each unit of work opens its own short
session from the factory returned by ``get_session_factory()``.
"""

from contextlib import contextmanager

from sqlalchemy import create_engine, event, text
from sqlalchemy.orm import sessionmaker

from ..config import JobMonitorConfig
from .models import Base


# ---------------------------------------------------------------------------
# SQLite helpers
# ---------------------------------------------------------------------------

def _set_sqlite_pragma(dbapi_conn, connection_record):
    """Configure SQLite for concurrent API use.

    Registered per-engine (not globally) inside get_engine() so that it only
    fires on SQLite connections and never on other database engines (e.g. PostgreSQL).

    - WAL mode: Allows concurrent readers during writes
    - synchronous=NORMAL: Faster writes with acceptable durability
    - busy_timeout: Wait for a competing writer instead of failing at once
    - foreign_keys: Enable foreign key constraints (ON DELETE CASCADE for tags/statistics)
    """
    cursor = dbapi_conn.cursor()
    cursor.execute("PRAGMA journal_mode=WAL")
    cursor.execute("PRAGMA synchronous=NORMAL")
    cursor.execute("PRAGMA busy_timeout=5000")
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def get_db_url() -> str:
    """Return the connection URL for display (password masked)."""
    config = JobMonitorConfig
    if config.DB_BACKEND == "postgres":
        return f"postgresql+psycopg2://{config.PG_USER}:***@{config.PG_HOST}:{config.PG_PORT}/{config.PG_DB}"
    return f"sqlite:///{config.sqlite_path()}"


def get_engine(url: str | None = None, echo: bool = False):
    """Create and return a SQLAlchemy engine.

    Args:
        url: Explicit database URL.  If None, the backend configured in
             ``JobMonitorConfig`` is used.
        echo: If True, log all SQL statements

    Returns:
        SQLAlchemy Engine instance
    """
    config = JobMonitorConfig

    if url is None and config.DB_BACKEND == "postgres":
        config.validate_postgres()
        connect_args = {}
        if config.PG_REQUIRE_SSL:
            connect_args["sslmode"] = "require"
        url = (
            f"postgresql+psycopg2://{config.PG_USER}:{config.PG_PASSWORD}"
            f"@{config.PG_HOST}:{config.PG_PORT}/{config.PG_DB}"
        )
        return create_engine(url, echo=echo, connect_args=connect_args, pool_pre_ping=True)

    if url is None:
        db_path = config.sqlite_path()
        db_path.parent.mkdir(parents=True, exist_ok=True)
        url = f"sqlite:///{db_path}"

    if url.startswith("sqlite"):
        engine = create_engine(url, echo=echo, connect_args={"check_same_thread": False})
        event.listen(engine, "connect", _set_sqlite_pragma)
        return engine

    return create_engine(url, echo=echo, pool_pre_ping=True)


def get_session_factory(engine=None):
    """Return a sessionmaker bound to *engine*.

    ``expire_on_commit=False`` keeps loaded attributes readable on objects
    handed back to callers after the session is closed.
    """
    if engine is None:
        engine = get_engine()
    return sessionmaker(bind=engine, expire_on_commit=False)


@contextmanager
def session_scope(session_factory):
    """Provide a transactional scope: commit on success, roll back on error."""
    session = session_factory()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


# ---------------------------------------------------------------------------
# Database initialisation
# ---------------------------------------------------------------------------

def _ensure_pg_database(config: type) -> None:
    """Create the PostgreSQL database if it does not exist.

    Connects to the ``postgres`` maintenance database with AUTOCOMMIT so that
    ``CREATE DATABASE`` can run outside a transaction.
    """
    admin_url = (
        f"postgresql+psycopg2://{config.PG_USER}:{config.PG_PASSWORD}"
        f"@{config.PG_HOST}:{config.PG_PORT}/postgres"
    )
    admin_engine = create_engine(admin_url, isolation_level="AUTOCOMMIT")
    try:
        with admin_engine.connect() as conn:
            result = conn.execute(
                text("SELECT 1 FROM pg_database WHERE datname = :db"),
                {"db": config.PG_DB},
            )
            if not result.fetchone():
                conn.execute(text(f"CREATE DATABASE {config.PG_DB}"))
    finally:
        admin_engine.dispose()


def init_db(url: str | None = None, echo: bool = False):
    """Initialize the database by creating all tables.

    For the PostgreSQL backend this also creates the database on the server
    if it does not already exist.

    Args:
        url: Explicit database URL, or None for the configured backend
        echo: If True, log all SQL statements

    Returns:
        Engine instance
    """
    if url is None and JobMonitorConfig.DB_BACKEND == "postgres":
        JobMonitorConfig.validate_postgres()
        _ensure_pg_database(JobMonitorConfig)
    engine = get_engine(url, echo=echo)
    Base.metadata.create_all(engine)
    return engine
