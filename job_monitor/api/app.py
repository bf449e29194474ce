"""FastAPI application factory."""

import logging
from contextlib import asynccontextmanager
from typing import Callable

from fastapi import FastAPI
from starlette.concurrency import run_in_threadpool

from ..archive import FsArchive
from ..config import JobMonitorConfig
from ..database import get_session_factory, init_db
from ..graph import Resolver
from ..lifecycle import JobLifecycle
from ..metricdata import MetricArchiver, MetricDataRepositories
from ..repository import JobRepository, TagRepository
from ..schema import ClusterRegistry
from . import rest
from .auth import Authentication, NoAuthentication, TokenAuthentication

logger = logging.getLogger(__name__)


def create_app(
    lifecycle: JobLifecycle,
    resolver: Resolver,
    auth: Authentication | None = None,
    config: type = JobMonitorConfig,
    on_shutdown: Callable[[], None] | None = None,
) -> FastAPI:
    """Build the API around already-constructed collaborators.

    Args:
        lifecycle: Coordinator for start/stop/tag/delete
        resolver: Read-side query resolver
        auth: Authorization collaborator (default: no authentication)
        config: Settings class; MACHINE_STATE_DIR and SHUTDOWN_TIMEOUT are read
        on_shutdown: Called after in-flight archiving has been waited for
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        yield
        drained = await run_in_threadpool(lifecycle.shutdown, config.SHUTDOWN_TIMEOUT)
        if not drained:
            logger.warning("shutting down with archiving still in progress")
        if on_shutdown is not None:
            on_shutdown()

    app = FastAPI(title="job-monitor", description="HPC job monitoring API", lifespan=lifespan)
    app.state.lifecycle = lifecycle
    app.state.resolver = resolver
    app.state.auth = auth or NoAuthentication()
    app.state.machine_state_dir = config.MACHINE_STATE_DIR or None

    rest.install_error_handlers(app)
    app.include_router(rest.router, prefix="/api")
    if app.state.machine_state_dir:
        app.include_router(rest.machine_state_router, prefix="/api")
    return app


def build_app_from_config(config: type = JobMonitorConfig) -> FastAPI:
    """Wire database, archive, metric backends and auth from *config*."""
    session_factory = get_session_factory(init_db())

    clusters = ClusterRegistry(config.load_clusters())
    if not len(clusters):
        logger.warning("no clusters configured; every start_job request will be rejected")

    archive = FsArchive(config.ARCHIVE_DIR)
    archive.init()
    repositories = MetricDataRepositories.from_clusters(clusters)
    archiver = MetricArchiver(archive, clusters, repositories, disable_archive=config.DISABLE_ARCHIVE)

    jobs = JobRepository(session_factory)
    tags = TagRepository(session_factory, archive)
    lifecycle = JobLifecycle(jobs, tags, archiver, clusters)
    resolver = Resolver(jobs, tags, archive, archiver)

    if config.DISABLE_AUTHENTICATION:
        logger.warning("authentication disabled; API requests are not checked")
        auth = NoAuthentication()
    else:
        auth = TokenAuthentication.from_dict(config.load_api_tokens())

    return create_app(lifecycle, resolver, auth, config, on_shutdown=repositories.close)
