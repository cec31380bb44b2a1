"""Tests for the JSON health endpoint."""

import json
import urllib.error
import urllib.request

import pytest

from infra.healthcheck import HealthServer


def _get(server, path="/health"):
    url = f"http://127.0.0.1:{server.port}{path}"
    try:
        with urllib.request.urlopen(url, timeout=2) as response:
            return response.status, json.loads(response.read())
    except urllib.error.HTTPError as err:
        body = err.read()
        return err.code, json.loads(body) if body else None


@pytest.fixture
def serve():
    servers = []

    def _serve(provider):
        server = HealthServer(0, provider)
        server.start()
        servers.append(server)
        return server

    yield _serve
    for server in servers:
        server.stop()


def test_healthy_payload_returns_200(serve):
    server = serve(lambda: {"ok": True, "open_positions": 1})
    status, body = _get(server)
    assert status == 200
    assert body["open_positions"] == 1


def test_halted_payload_returns_503(serve):
    server = serve(lambda: {"ok": False, "halted": True})
    status, body = _get(server, "/healthz")
    assert status == 503
    assert body["halted"] is True


def test_provider_error_returns_500(serve):
    def broken():
        raise RuntimeError("ledger unavailable")

    status, body = _get(serve(broken))
    assert status == 500
    assert "ledger unavailable" in body["error"]


def test_unknown_path_returns_404(serve):
    status, body = _get(serve(lambda: {"ok": True}), "/metrics")
    assert status == 404
    assert body is None


def test_stop_is_idempotent():
    server = HealthServer(0, lambda: {"ok": True})
    server.start()
    assert server.running
    server.stop()
    server.stop()
    assert not server.running
    assert server.port is None
