"""Command-line interface for job-monitor."""

from datetime import datetime

import click
from rich.console import Console
from rich.table import Table

from .archive import FsArchive
from .config import JobMonitorConfig
from .database import get_db_url, get_session_factory, init_db
from .errors import JobMonitorError
from .log_config import get_logger, setup_logging
from .repository import JobRepository, TagRepository
from .schema import JobFilter, JobState, PageRequest

logger = get_logger(__name__)


def _format_time(ts) -> str:
    if not ts:
        return "-"
    return datetime.fromtimestamp(ts).strftime("%Y-%m-%d %H:%M:%S")


def _format_duration(seconds) -> str:
    if not seconds:
        return "-"
    hours, rest = divmod(int(seconds), 3600)
    return f"{hours}:{rest // 60:02d}:{rest % 60:02d}"


def _session_factory(ctx):
    if "session_factory" not in ctx.obj:
        ctx.obj["session_factory"] = get_session_factory(init_db(ctx.obj["db_url"]))
    return ctx.obj["session_factory"]


def _run(action, *args):
    """Call *action*, turning job_monitor errors into a clean CLI failure."""
    try:
        return action(*args)
    except JobMonitorError as e:
        raise click.ClickException(str(e)) from None


@click.group()
@click.option("--db-url", envvar="JM_DB_URL", default=None,
              help="SQLAlchemy URL (default: the configured backend).")
@click.option("--archive-dir", type=click.Path(file_okay=False), default=None,
              help=f"Job archive root (default: {JobMonitorConfig.ARCHIVE_DIR}).")
@click.option("--log-level", type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"]),
              default=JobMonitorConfig.LOG_LEVEL, show_default=True)
@click.pass_context
def cli(ctx, db_url, archive_dir, log_level):
    """Record and archive HPC jobs."""
    setup_logging(log_level)
    ctx.ensure_object(dict)
    ctx.obj["db_url"] = db_url
    ctx.obj["archive_dir"] = archive_dir or JobMonitorConfig.ARCHIVE_DIR


@cli.command("init-db")
@click.option("--echo", is_flag=True, help="Log every SQL statement.")
@click.pass_context
def init_db_cmd(ctx, echo):
    """Create the database tables and the job archive."""
    init_db(ctx.obj["db_url"], echo=echo)
    version = _run(FsArchive(ctx.obj["archive_dir"]).init)
    click.echo(f"Database ready: {ctx.obj['db_url'] or get_db_url()}")
    click.echo(f"Job archive ready: {ctx.obj['archive_dir']} (version {version})")


@cli.command()
@click.option("--host", default=JobMonitorConfig.ADDR, show_default=True)
@click.option("--port", type=int, default=JobMonitorConfig.PORT, show_default=True)
@click.pass_context
def serve(ctx, host, port):
    """Run the REST API server."""
    import uvicorn

    from .api import build_app_from_config

    app = build_app_from_config()
    logger.info(f"listening on {host}:{port}")
    uvicorn.run(app, host=host, port=port, log_level=ctx.parent.params["log_level"].lower())


@cli.command("list")
@click.option("-c", "--cluster", help="Only jobs on this cluster.")
@click.option("-s", "--state", "states", multiple=True,
              type=click.Choice([s.value for s in JobState]), help="Job state (repeatable).")
@click.option("-u", "--user", help="Only jobs of this user.")
@click.option("-n", "--limit", type=int, default=25, show_default=True, help="Jobs per page.")
@click.option("-p", "--page", type=int, default=1, show_default=True)
@click.pass_context
def list_jobs(ctx, cluster, states, user, limit, page):
    """List jobs, newest first."""
    jobs = JobRepository(_session_factory(ctx))
    job_filter = JobFilter(states=[JobState(s) for s in states], cluster=cluster, user=user)
    rows = _run(jobs.query_jobs, job_filter, PageRequest(items_per_page=limit, page=page))
    total = _run(jobs.count_jobs, job_filter)

    table = Table("ID", "Job ID", "Cluster", "User", "Start", "Duration", "Nodes", "State",
                  "Monitoring", "Tags", title=f"Jobs (page {page}, {total} total)")
    for job in rows:
        table.add_row(
            str(job.id),
            str(job.job_id),
            job.cluster,
            job.user,
            _format_time(job.start_time),
            _format_duration(job.duration),
            str(job.num_nodes),
            job.job_state,
            job.monitoring_status,
            ", ".join(f"{t.tag_type}:{t.tag_name}" for t in job.tags),
        )
    Console().print(table)


@cli.command("delete-before")
@click.argument("timestamp", type=int)
@click.option("-y", "--yes", is_flag=True, help="Do not ask for confirmation.")
@click.pass_context
def delete_before(ctx, timestamp, yes):
    """Delete every job that started before TIMESTAMP (unix seconds)."""
    if not yes:
        click.confirm(f"Delete all jobs started before {_format_time(timestamp)}?", abort=True)
    count = _run(JobRepository(_session_factory(ctx)).delete_jobs_before, timestamp)
    click.echo(f"Successfully deleted {count} jobs")


@cli.command()
@click.argument("id", type=int)
@click.argument("tag_type")
@click.argument("tag_name")
@click.pass_context
def tag(ctx, id, tag_type, tag_name):
    """Attach the tag TAG_TYPE:TAG_NAME to the job with database id ID."""
    tags = TagRepository(_session_factory(ctx), FsArchive(ctx.obj["archive_dir"]))
    tag_id = _run(tags.add_tag_or_create, id, tag_type, tag_name)
    click.echo(f"Tagged job {id} with {tag_type}:{tag_name} (tag id {tag_id})")


@cli.command("stop-exceeding-walltime")
@click.argument("seconds", type=int)
@click.pass_context
def stop_exceeding_walltime(ctx, seconds):
    """Fail running jobs that overran their walltime by more than SECONDS."""
    count = _run(JobRepository(_session_factory(ctx)).stop_jobs_exceeding_walltime, seconds)
    click.echo(f"Stopped {count} jobs exceeding their walltime")


def main():
    cli(obj={})


if __name__ == "__main__":
    main()
