"""Client for the cc-metric-store HTTP query API."""

import logging

import httpx

from ..errors import ArchivalError
from ..schema import MetricConfig
from .base import MetricDataRepository, register_kind

logger = logging.getLogger(__name__)


@register_kind
class CCMetricStore(MetricDataRepository):
    """Read node-level metric series from a cc-metric-store instance.

    Args:
        url: Base URL, e.g. ``http://localhost:8081``
        token: JWT sent as a bearer token
        timeout: Request timeout in seconds
    """

    KIND = "cc-metric-store"

    def __init__(self, url: str, token: str = "", timeout: float = 30.0, client: httpx.Client | None = None):
        self.url = url.rstrip("/")
        headers = {"Authorization": f"Bearer {token}"} if token else {}
        self._client = client or httpx.Client(base_url=self.url, headers=headers, timeout=timeout)

    def _hostnames(self, job) -> list[str]:
        return [r["hostname"] for r in (job.resources or [])]

    def load_data(self, job, metrics: list[MetricConfig], scopes: list[str]) -> dict:
        unsupported = [s for s in scopes if s != "node"]
        if unsupported:
            logger.debug(f"cc-metric-store: ignoring unsupported scopes {unsupported}")

        hosts = self._hostnames(job)
        queries = [{"metric": m.name, "hostname": h} for m in metrics for h in hosts]
        if not queries:
            return {}

        body = {
            "cluster": job.cluster,
            "from": job.start_time,
            "to": job.start_time + max(job.duration, 1),
            "with-stats": True,
            "with-data": True,
            "queries": queries,
        }
        try:
            response = self._client.post("/api/query/", json=body)
            response.raise_for_status()
            results = response.json()["results"]
        except (httpx.HTTPError, KeyError, ValueError) as e:
            raise ArchivalError(f"cc-metric-store query for job {job.job_id} failed: {e}") from e

        if len(results) != len(queries):
            raise ArchivalError(
                f"cc-metric-store returned {len(results)} results for {len(queries)} queries"
            )

        data: dict = {}
        for query, result in zip(queries, results):
            metric = next(m for m in metrics if m.name == query["metric"])
            # One entry per query since node-scope queries are not split by type
            series = result[0] if isinstance(result, list) else result
            if series.get("error"):
                logger.warning(
                    f"cc-metric-store: {query['metric']} on {query['hostname']}: {series['error']}"
                )
                continue
            scope = data.setdefault(metric.name, {}).setdefault(
                "node", {"unit": metric.unit, "timestep": metric.timestep, "series": []}
            )
            scope["series"].append({
                "hostname": query["hostname"],
                "data": series.get("data") or [],
                "statistics": {"min": series.get("min"), "avg": series.get("avg"), "max": series.get("max")},
            })
        return data

    def close(self) -> None:
        self._client.close()
