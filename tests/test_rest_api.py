"""Tests for the REST API (FastAPI TestClient)."""

from http import HTTPStatus

import pytest
from fastapi.testclient import TestClient

from job_monitor.api import NoAuthentication, TokenAuthentication, create_app
from job_monitor.config import JobMonitorConfig
from job_monitor.graph import Resolver
from job_monitor.schema import MonitoringStatus

START_TIME = 1649723812


@pytest.fixture
def resolver(job_repo, tag_repo, archive, archiver):
    return Resolver(job_repo, tag_repo, archive, archiver)


@pytest.fixture
def client(lifecycle, resolver):
    app = create_app(lifecycle, resolver, NoAuthentication())
    with TestClient(app) as client:
        yield client


def _start(client, body, **overrides):
    response = client.post("/api/jobs/start_job/", json={**body, **overrides})
    assert response.status_code == 201, response.text
    return response.json()["id"]


def _assert_error(response, status_code, fragment=""):
    assert response.status_code == status_code, response.text
    body = response.json()
    assert body["status"] == HTTPStatus(status_code).phrase
    assert fragment in body["error"]


class TestStartJob:

    def test_start(self, client, start_body, job_repo):
        id = _start(client, start_body)
        job = job_repo.find_by_id(id)
        assert job.job_id == 123
        assert job.resources[0]["hwthreads"] == list(range(72))
        assert [t.tag_name for t in job.tags] == ["slurm"]

    def test_put_works_too(self, client, start_body):
        assert client.put("/api/jobs/start_job/", json=start_body).status_code == 201

    def test_duplicate(self, client, start_body):
        first = _start(client, start_body)
        response = client.post("/api/jobs/start_job/", json={**start_body, "startTime": START_TIME + 88})
        _assert_error(response, 422, f"dbid: {first}")

    def test_unknown_field(self, client, start_body):
        response = client.post("/api/jobs/start_job/", json={**start_body, "color": "blue"})
        _assert_error(response, 400, "color")

    def test_malformed_json(self, client):
        response = client.post("/api/jobs/start_job/", content=b"{not json",
                               headers={"Content-Type": "application/json"})
        _assert_error(response, 400)

    @pytest.mark.parametrize("overrides, fragment", [
        ({"cluster": "nowhere"}, "unknown cluster"),
        ({"numNodes": 3}, "resources"),
        ({"jobState": "completed"}, "running"),
        ({"user": None}, "user"),
    ])
    def test_validation(self, client, start_body, job_repo, overrides, fragment):
        response = client.post("/api/jobs/start_job/", json={**start_body, **overrides})
        _assert_error(response, 400, fragment)
        assert job_repo.count_jobs() == 0


class TestStopJob:

    def test_stop_by_id(self, client, start_body, lifecycle):
        id = _start(client, start_body)
        response = client.post(f"/api/jobs/stop_job/{id}",
                               json={"stopTime": START_TIME + 3600, "jobState": "completed"})
        assert response.status_code == 200, response.text
        body = response.json()
        assert body["id"] == id
        assert body["jobState"] == "completed"
        assert body["duration"] == 3600
        assert lifecycle.tracker.wait(5)

    def test_stop_by_natural_key(self, client, start_body, lifecycle):
        id = _start(client, start_body)
        response = client.put("/api/jobs/stop_job/", json={
            "jobId": 123, "cluster": "fritz", "startTime": START_TIME,
            "stopTime": START_TIME + 60, "jobState": "failed",
        })
        assert response.status_code == 200, response.text
        assert response.json()["id"] == id
        assert response.json()["jobState"] == "failed"
        assert lifecycle.tracker.wait(5)

    def test_stop_by_request_needs_job_id(self, client):
        response = client.post("/api/jobs/stop_job/", json={"stopTime": START_TIME})
        _assert_error(response, 400, "jobId")

    def test_stop_missing_job(self, client):
        response = client.post("/api/jobs/stop_job/77", json={"stopTime": START_TIME})
        _assert_error(response, 422)

    def test_stop_before_start(self, client, start_body):
        id = _start(client, start_body)
        response = client.post(f"/api/jobs/stop_job/{id}", json={"stopTime": START_TIME - 5})
        _assert_error(response, 400, "stopTime")

    def test_stop_twice(self, client, start_body, lifecycle):
        id = _start(client, start_body)
        client.post(f"/api/jobs/stop_job/{id}", json={"stopTime": START_TIME + 60})
        response = client.post(f"/api/jobs/stop_job/{id}", json={"stopTime": START_TIME + 120})
        _assert_error(response, 400)
        assert lifecycle.tracker.wait(5)

    def test_stop_without_stop_time(self, client, start_body):
        id = _start(client, start_body)
        _assert_error(client.post(f"/api/jobs/stop_job/{id}", json={}), 400, "stopTime")


class TestScenario:

    def test_start_duplicate_stop_query(self, client, start_body, lifecycle):
        body = {**start_body, "jobId": 123000}
        id = _start(client, body)
        assert id == 1

        _assert_error(client.post("/api/jobs/start_job/", json={**body, "startTime": 1649723900}), 422)

        response = client.post(f"/api/jobs/stop_job/{id}",
                               json={"stopTime": START_TIME + 3600, "jobState": "completed"})
        assert response.status_code == 200
        assert response.json()["duration"] == 3600
        assert lifecycle.tracker.wait(5)

        response = client.get("/api/jobs/", params={"cluster": "fritz", "state": "completed"})
        assert response.status_code == 200
        jobs = response.json()["jobs"]
        assert [(j["id"], j["duration"]) for j in jobs] == [(id, 3600)]
        assert jobs[0]["monitoringStatus"] == MonitoringStatus.ARCHIVING_SUCCESSFUL.value
        assert jobs[0]["statistics"]["flops_any"]["avg"] == 2.0

    def test_delete_before(self, client, start_body):
        _start(client, start_body, jobId=1, startTime=1000)
        _start(client, start_body, jobId=2, startTime=2000)
        _start(client, start_body, jobId=3, startTime=START_TIME)

        response = client.delete(f"/api/jobs/delete_job_before/{START_TIME}")
        assert response.status_code == 200
        assert response.json() == {"msg": "Successfully deleted 2 jobs"}
        assert [j["jobId"] for j in client.get("/api/jobs/").json()["jobs"]] == [3]


class TestDelete:

    def test_delete_by_id(self, client, start_body):
        id = _start(client, start_body)
        response = client.delete(f"/api/jobs/delete_job/{id}")
        assert response.json() == {"msg": f"Successfully deleted job {id}"}
        _assert_error(client.delete(f"/api/jobs/delete_job/{id}"), 422)

    def test_delete_by_request(self, client, start_body):
        id = _start(client, start_body)
        response = client.request("DELETE", "/api/jobs/delete_job/",
                                  json={"jobId": 123, "cluster": "fritz", "startTime": START_TIME})
        assert response.status_code == 200
        assert response.json() == {"msg": f"Successfully deleted job {id}"}

    def test_delete_by_request_not_found(self, client):
        response = client.request("DELETE", "/api/jobs/delete_job/", json={"jobId": 5})
        _assert_error(response, 422)


class TestTagJob:

    def test_tag(self, client, start_body):
        id = _start(client, start_body)
        response = client.patch(f"/api/jobs/tag_job/{id}", json=[{"type": "app", "name": "lammps"}])
        assert response.status_code == 200, response.text
        tags = {(t["type"], t["name"]) for t in response.json()["tags"]}
        assert tags == {("scheduler", "slurm"), ("app", "lammps")}

    def test_tag_missing_job(self, client):
        response = client.post("/api/jobs/tag_job/99", json=[{"type": "app", "name": "lammps"}])
        _assert_error(response, 404)

    def test_tag_bad_body(self, client, start_body):
        id = _start(client, start_body)
        _assert_error(client.post(f"/api/jobs/tag_job/{id}", json={"type": "app"}), 400)


class TestGetJobs:

    def test_defaults(self, client, start_body):
        for i in range(30):
            _start(client, start_body, jobId=1000 + i, startTime=START_TIME + i)
        body = client.get("/api/jobs/").json()
        assert body["items"] == 25
        assert body["page"] == 1
        assert len(body["jobs"]) == 25
        assert body["jobs"][0]["jobId"] == 1029
        assert "metaData" not in body["jobs"][0]

    def test_paging_and_metadata(self, client, start_body):
        for i in range(3):
            _start(client, start_body, jobId=1000 + i, startTime=START_TIME + i)
        body = client.get("/api/jobs/", params={"items-per-page": 2, "page": 2, "with-metadata": "true"}).json()
        assert [j["jobId"] for j in body["jobs"]] == [1000]
        assert body["jobs"][0]["metaData"] == {"jobName": "lammps"}

    def test_start_time_range(self, client, start_body):
        _start(client, start_body, jobId=1, startTime=1000)
        _start(client, start_body, jobId=2, startTime=5000)
        body = client.get("/api/jobs/", params={"start-time": "4000-6000"}).json()
        assert [j["jobId"] for j in body["jobs"]] == [2]

    @pytest.mark.parametrize("params, fragment", [
        ({"color": "blue"}, "invalid query parameter: color"),
        ({"state": "exploded"}, "state"),
        ({"start-time": "yesterday"}, "startTime"),
        ({"page": "first"}, "page"),
    ])
    def test_bad_query(self, client, params, fragment):
        _assert_error(client.get("/api/jobs/", params=params), 400, fragment)


class TestJobMetrics:

    def test_live_metrics(self, client, start_body):
        id = _start(client, start_body)
        body = client.get(f"/api/jobs/metrics/{id}", params=[("metric", "mem_bw")]).json()
        metrics = body["data"]["jobMetrics"]
        assert [(m["name"], m["scope"]) for m in metrics] == [("mem_bw", "node")]
        assert metrics[0]["metric"]["series"][0]["hostname"] == "f0101"

    def test_archived_metrics(self, client, start_body, lifecycle):
        id = _start(client, start_body)
        client.post(f"/api/jobs/stop_job/{id}", json={"stopTime": START_TIME + 60})
        assert lifecycle.tracker.wait(5)

        body = client.get(f"/api/jobs/metrics/{id}").json()
        assert {m["name"] for m in body["data"]["jobMetrics"]} == {"flops_any", "mem_bw"}

    def test_error_envelope(self, client):
        response = client.get("/api/jobs/metrics/404")
        assert response.status_code == 200
        assert "404" in response.json()["error"]["message"]

    def test_bad_scope(self, client, start_body):
        id = _start(client, start_body)
        _assert_error(client.get(f"/api/jobs/metrics/{id}", params={"scope": "rack"}), 400, "scope")


class TestAuthorization:

    @pytest.fixture
    def secured(self, lifecycle, resolver):
        auth = TokenAuthentication.from_dict({
            "api-token": {"username": "scheduler", "roles": ["api"]},
            "user-token": {"username": "alice", "roles": ["user"]},
        })
        with TestClient(create_app(lifecycle, resolver, auth)) as client:
            yield client

    def test_missing_token(self, secured):
        _assert_error(secured.get("/api/jobs/"), 401)

    def test_unknown_token(self, secured):
        _assert_error(secured.get("/api/jobs/", headers={"X-Auth-Token": "guess"}), 401)

    def test_missing_role(self, secured):
        response = secured.get("/api/jobs/", headers={"Authorization": "Bearer user-token"})
        _assert_error(response, 403, "api")

    def test_api_role(self, secured, start_body):
        headers = {"X-Auth-Token": "api-token"}
        assert secured.post("/api/jobs/start_job/", json=start_body, headers=headers).status_code == 201
        assert secured.get("/api/jobs/", headers={"Authorization": "Bearer api-token"}).status_code == 200


class TestMachineState:

    def test_disabled_by_default(self, client):
        _assert_error(client.get("/api/machine_state/fritz/f0101"), 404)

    def test_put_and_get(self, lifecycle, resolver, tmp_path):
        class Config(JobMonitorConfig):
            MACHINE_STATE_DIR = str(tmp_path / "state")

        with TestClient(create_app(lifecycle, resolver, config=Config)) as client:
            _assert_error(client.get("/api/machine_state/fritz/f0101"), 404)

            response = client.put("/api/machine_state/fritz/f0101", content=b'{"load": 1.5}')
            assert response.status_code == 201
            assert (tmp_path / "state" / "fritz" / "f0101.json").read_bytes() == b'{"load": 1.5}'

            response = client.get("/api/machine_state/fritz/f0101")
            assert response.status_code == 200
            assert response.json() == {"load": 1.5}

            _assert_error(client.post("/api/machine_state/fritz/..hidden", content=b"{}"), 400)
