"""
Tests for GET / (service status and self healthcheck) and GET /health.

Healthcheck probes go through the same MockTransport as media downloads;
FakeRemote answers them with a configurable status per path.
"""

from ffmpeg_api.services.healthcheck import PROBE_HEADER
from ffmpeg_api.services.operations import OPERATIONS

OPERATION_NAMES = [op.name for op in OPERATIONS]


class TestHealth:
    def test_health(self, client):
        response = client.get("/health")

        assert response.status_code == 200
        assert response.json() == {"status": "healthy", "version": "2.1.0"}


class TestServiceStatus:
    def test_lists_every_operation_in_order(self, client, remote):
        response = client.get("/")

        assert response.status_code == 200
        data = response.json()
        assert data["service"] == "FFmpeg API"
        assert data["status"] == "ok"
        assert data["active_jobs"] == 0
        assert data["max_concurrent_jobs"] == 2
        assert [e["endpoint"] for e in data["endpoints"]] == OPERATION_NAMES
        # No probes without ?check=true
        assert remote.probe_requests == []

    def test_equalize_flagged_unimplemented(self, client):
        endpoints = {e["endpoint"]: e for e in client.get("/").json()["endpoints"]}

        assert endpoints["equalize"]["implemented"] is False
        assert endpoints["convert-audio"]["implemented"] is True
        assert endpoints["convert-audio"]["path"] == "/convert-audio"

    def test_html_format(self, client):
        response = client.get("/", params={"format": "html"})

        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/html")
        assert "<table" in response.text
        assert "convert-audio" in response.text
        assert "not implemented" in response.text


class TestSelfHealthcheck:
    def test_batched_probe_report(self, client, remote):
        remote.probe_statuses["/equalize"] = 501
        remote.probe_statuses["/merge"] = 400

        response = client.get("/", params={"check": "true"})

        assert response.status_code == 200
        data = response.json()
        assert [r["endpoint"] for r in data["endpoints"]] == OPERATION_NAMES
        results = {r["endpoint"]: r for r in data["endpoints"]}
        assert results["convert-audio"]["category"] == "success"
        assert results["merge"]["category"] == "expected-validation"
        assert results["equalize"]["category"] == "fault"
        # 501 from an unimplemented operation does not degrade the service
        assert data["status"] == "ok"
        assert len(remote.probe_requests) == len(OPERATIONS)

    def test_fault_on_implemented_operation_degrades(self, client, remote):
        remote.probe_statuses["/gif"] = 500

        data = client.get("/", params={"check": "true", "mode": "sequential"}).json()

        assert data["status"] == "degraded"
        gif = next(r for r in data["endpoints"] if r["endpoint"] == "gif")
        assert gif["status"] == 500
        assert gif["message"] == "Error (HTTP 500)"

    def test_probes_carry_token_and_sample_body(self, client, remote):
        client.get("/", params={"check": "true"})

        token = client.app.state.probe_token
        assert all(r.headers[PROBE_HEADER] == token for r in remote.probe_requests)
        paths = [r.url.path for r in remote.probe_requests]
        assert "/convert-audio" in paths
        convert = next(r for r in remote.probe_requests if r.url.path == "/convert-audio")
        assert convert.method == "POST"
        assert b"sample.mp4" in convert.content

    def test_probes_send_api_key(self, make_client, remote):
        client = make_client(api_key="s3cret")

        client.get("/", params={"check": "true"})

        assert remote.probe_requests
        assert all(r.headers["x-api-key"] == "s3cret" for r in remote.probe_requests)

    def test_probes_target_self_base_url(self, make_client, remote):
        client = make_client(self_base_url="http://api.internal:9000/")

        client.get("/", params={"check": "true"})

        assert {r.url.host for r in remote.probe_requests} == {"api.internal"}
        assert {r.url.port for r in remote.probe_requests} == {9000}

    def test_html_report(self, client, remote):
        remote.probe_statuses["/merge"] = 400

        response = client.get("/", params={"check": "true", "format": "html"})

        assert response.status_code == 200
        assert "Invalid request (probably missing input)" in response.text
