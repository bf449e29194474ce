"""REST routes under ``/api``.

Handlers are plain ``def`` functions, so every request runs on its own worker
thread.  Each one translates the wire request into a JobLifecycle or Resolver
call and maps domain errors to HTTP statuses:

    ValidationError         400
    InvalidTransitionError  400
    AuthenticationError     401
    DuplicateJobError       422
    NotFoundError           422  (404 for tag_job)
    StoreError              500

Error bodies are ``{"status": <reason phrase>, "error": <message>}``.
"""

import logging
import re
from http import HTTPStatus
from pathlib import Path

from fastapi import APIRouter, Depends, FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import FileResponse, JSONResponse, Response
from starlette.exceptions import HTTPException as StarletteHTTPException

from ..errors import (
    AuthenticationError, DuplicateJobError, InvalidTransitionError, JobMonitorError, NotFoundError,
    StoreError, ValidationError,
)
from ..schema import JobFilter, JobState, OrderBy, PageRequest
from ..utils import parse_time_range, safe_int
from .auth import ROLE_API, User
from .schemas import (
    ApiTag, DeleteJobApiRequest, DeleteJobApiResponse, JobView, StartJobApiRequest,
    StartJobApiResponse, StopJobApiRequest,
)

logger = logging.getLogger(__name__)

ERROR_STATUS = {
    ValidationError: 400,
    InvalidTransitionError: 400,
    AuthenticationError: 401,
    DuplicateJobError: 422,
    NotFoundError: 422,
    StoreError: 500,
}

METRIC_SCOPES = ("node", "socket", "memoryDomain", "core", "hwthread", "accelerator")

JOB_QUERY_PARAMS = ("state", "cluster", "start-time", "page", "items-per-page", "with-metadata")

_NAME_RE = re.compile(r"^[A-Za-z0-9][A-Za-z0-9._-]*$")


# ----------------------------------------------------------------------------
# Errors
# ----------------------------------------------------------------------------

def error_response(status_code: int, message: str) -> JSONResponse:
    logger.warning(f"REST API: {message}")
    return JSONResponse(
        status_code=status_code,
        content={"status": HTTPStatus(status_code).phrase, "error": message},
    )


def status_for(error: JobMonitorError) -> int:
    for cls in type(error).__mro__:
        if cls in ERROR_STATUS:
            return ERROR_STATUS[cls]
    return 500


def install_error_handlers(app: FastAPI) -> None:
    """Render every handled error as ``{"status", "error"}``."""

    @app.exception_handler(JobMonitorError)
    async def _domain_error(request: Request, exc: JobMonitorError):
        return error_response(status_for(exc), str(exc))

    @app.exception_handler(StarletteHTTPException)
    async def _http_error(request: Request, exc: StarletteHTTPException):
        return error_response(exc.status_code, str(exc.detail))

    @app.exception_handler(RequestValidationError)
    async def _bad_request(request: Request, exc: RequestValidationError):
        problems = []
        for err in exc.errors():
            location = ".".join(str(p) for p in err.get("loc", ()) if p != "body")
            problems.append(f"{location}: {err.get('msg')}" if location else err.get("msg", ""))
        return error_response(400, "invalid request: " + "; ".join(problems))


# ----------------------------------------------------------------------------
# Dependencies
# ----------------------------------------------------------------------------

def current_user(request: Request) -> User | None:
    return request.app.state.auth.authenticate(request)


def require_api_role(user: User | None = Depends(current_user)) -> User | None:
    """Let the request through unless a known user lacks the ``api`` role."""
    if user is not None and not user.has_role(ROLE_API):
        raise HTTPException(status_code=403, detail=f"missing role: {ROLE_API!r}")
    return user


def get_lifecycle(request: Request):
    return request.app.state.lifecycle


def get_resolver(request: Request):
    return request.app.state.resolver


router = APIRouter(dependencies=[Depends(require_api_role)])


# ----------------------------------------------------------------------------
# Job lifecycle
# ----------------------------------------------------------------------------

@router.api_route("/jobs/start_job/", methods=["POST", "PUT"], status_code=201,
                  response_model=StartJobApiResponse)
def start_job(body: StartJobApiRequest, lifecycle=Depends(get_lifecycle)):
    """Add a new running job."""
    id = lifecycle.start_job(body.to_spec())
    return StartJobApiResponse(id=id)


@router.api_route("/jobs/stop_job/{id}", methods=["POST", "PUT"])
def stop_job_by_id(id: int, body: StopJobApiRequest, lifecycle=Depends(get_lifecycle)):
    """Stop the job with database id *id*; archiving continues in the background."""
    job = lifecycle.stop_job_by_id(id, body.stop_time, body.job_state)
    return JobView.from_job(job).to_wire()


@router.api_route("/jobs/stop_job/", methods=["POST", "PUT"])
def stop_job_by_request(body: StopJobApiRequest, lifecycle=Depends(get_lifecycle)):
    """Stop the job identified by jobId (plus cluster and startTime if given)."""
    if body.job_id is None:
        raise ValidationError("the field 'jobId' is required")
    job = lifecycle.stop_job_by_natural_key(
        body.job_id, body.cluster, body.start_time, body.stop_time, body.job_state
    )
    return JobView.from_job(job).to_wire()


@router.delete("/jobs/delete_job/{id}", response_model=DeleteJobApiResponse)
def delete_job_by_id(id: int, lifecycle=Depends(get_lifecycle)):
    lifecycle.delete_job_by_id(id)
    return DeleteJobApiResponse(msg=f"Successfully deleted job {id}")


@router.delete("/jobs/delete_job/", response_model=DeleteJobApiResponse)
def delete_job_by_request(body: DeleteJobApiRequest, lifecycle=Depends(get_lifecycle)):
    id = lifecycle.delete_job(body.job_id, body.cluster, body.start_time)
    return DeleteJobApiResponse(msg=f"Successfully deleted job {id}")


@router.delete("/jobs/delete_job_before/{ts}", response_model=DeleteJobApiResponse)
def delete_job_before(ts: int, lifecycle=Depends(get_lifecycle)):
    count = lifecycle.delete_jobs_before(ts)
    return DeleteJobApiResponse(msg=f"Successfully deleted {count} jobs")


@router.api_route("/jobs/tag_job/{id}", methods=["POST", "PATCH"])
def tag_job(id: int, tags: list[ApiTag], lifecycle=Depends(get_lifecycle)):
    """Attach tags to a job, creating tags that do not exist yet."""
    try:
        job = lifecycle.tag_job(id, [t.to_spec() for t in tags])
    except NotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e)) from None
    return JobView.from_job(job).to_wire()


# ----------------------------------------------------------------------------
# Queries
# ----------------------------------------------------------------------------

def parse_job_query(request: Request) -> tuple[JobFilter, PageRequest, bool]:
    """Turn the query string of ``GET /jobs/`` into a filter and a page.

    Raises:
        ValidationError: Unknown parameter or malformed value
    """
    job_filter = JobFilter()
    page = PageRequest()
    with_metadata = False

    for key, value in request.query_params.multi_items():
        if key not in JOB_QUERY_PARAMS:
            raise ValidationError(f"invalid query parameter: {key}")
        if key == "state":
            try:
                job_filter.states.append(JobState.parse(value))
            except ValueError:
                raise ValidationError("invalid query parameter value: state") from None
        elif key == "cluster":
            job_filter.cluster = value
        elif key == "start-time":
            try:
                job_filter.start_time_from, job_filter.start_time_to = parse_time_range(value)
            except ValueError:
                raise ValidationError("invalid query parameter value: startTime") from None
        elif key in ("page", "items-per-page"):
            number = safe_int(value)
            if number is None or number < 1:
                raise ValidationError(f"invalid query parameter value: {key}")
            if key == "page":
                page.page = number
            else:
                page.items_per_page = number
        elif key == "with-metadata":
            with_metadata = True

    return job_filter, page, with_metadata


@router.get("/jobs/")
def get_jobs(request: Request, resolver=Depends(get_resolver)):
    """List jobs, newest first, 25 per page unless asked otherwise."""
    job_filter, page, with_metadata = parse_job_query(request)
    result = resolver.jobs(job_filter, page, OrderBy(field="start_time", descending=True))
    return {
        "jobs": [JobView.from_job(j, with_metadata=with_metadata).to_wire() for j in result["items"]],
        "items": page.items_per_page,
        "page": page.page,
    }


@router.get("/jobs/metrics/{id}")
def get_job_metrics(id: int, request: Request, resolver=Depends(get_resolver)):
    """Return a job's metric data.

    Lookup failures are reported inside a 200 response as
    ``{"error": {"message": ...}}``; only a bad ``scope`` is a 400.
    """
    metrics = request.query_params.getlist("metric")
    scopes = request.query_params.getlist("scope")
    for scope in scopes:
        if scope not in METRIC_SCOPES:
            raise ValidationError(f"invalid metric scope: {scope!r}")

    try:
        data = resolver.job_metrics(id, metrics or None, scopes or None)
    except JobMonitorError as e:
        logger.info(f"REST API: metrics of job {id}: {e}")
        return {"error": {"message": str(e)}}

    job_metrics = [
        {"name": name, "scope": scope, "metric": metric}
        for name, by_scope in data.items()
        for scope, metric in by_scope.items()
    ]
    return {"data": {"jobMetrics": job_metrics}}


# ----------------------------------------------------------------------------
# Machine state (mounted only when a state directory is configured)
# ----------------------------------------------------------------------------

machine_state_router = APIRouter(dependencies=[Depends(current_user)])


def _machine_state_file(request: Request, cluster: str, host: str) -> Path:
    for name in (cluster, host):
        if not _NAME_RE.match(name):
            raise ValidationError(f"invalid cluster or host name: {name!r}")
    return Path(request.app.state.machine_state_dir) / cluster / f"{host}.json"


@machine_state_router.get("/machine_state/{cluster}/{host}")
def get_machine_state(cluster: str, host: str, request: Request):
    path = _machine_state_file(request, cluster, host)
    if not path.is_file():
        raise HTTPException(status_code=404, detail=f"no machine state for {cluster}/{host}")
    return FileResponse(path, media_type="application/json")


@machine_state_router.api_route("/machine_state/{cluster}/{host}", methods=["PUT", "POST"])
async def put_machine_state(cluster: str, host: str, request: Request):
    path = _machine_state_file(request, cluster, host)
    body = await request.body()
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(body)
    except OSError as e:
        raise StoreError(f"writing machine state {cluster}/{host} failed: {e}") from e
    return Response(status_code=201)
