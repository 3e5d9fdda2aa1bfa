import json
import threading
import time
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer

import pytest
import requests

from aequi.daimon import (
    DaimonClient,
    DashboardSyncResponse,
    DiscoverResponse,
    RegisterResponse,
    build_dashboard_sync_request,
    build_register_request,
    spawn_daimon_task,
)


class _Handler(BaseHTTPRequestHandler):
    def _handle(self):
        length = int(self.headers.get("Content-Length") or 0)
        raw = self.rfile.read(length) if length else b""
        body = json.loads(raw) if raw else None
        self.server.calls.append((self.command, self.path, body))
        status, payload = self.server.routes.get(
            (self.command, self.path), (404, {"error": "not found"})
        )
        data = json.dumps(payload).encode("utf-8")
        self.send_response(status)
        self.send_header("Content-Type", "application/json")
        self.send_header("Content-Length", str(len(data)))
        self.end_headers()
        self.wfile.write(data)

    do_GET = _handle
    do_POST = _handle

    def log_message(self, *args):
        pass


@pytest.fixture
def daimon_server():
    server = ThreadingHTTPServer(("127.0.0.1", 0), _Handler)
    server.routes = {}
    server.calls = []
    thread = threading.Thread(target=server.serve_forever, daemon=True)
    thread.start()
    host, port = server.server_address
    yield f"http://{host}:{port}", server
    server.shutdown()
    server.server_close()
    thread.join(timeout=5)


REGISTER_OK = (
    200,
    {"id": "abc-123", "name": "aequi", "status": "registered",
     "registered_at": "2026-03-10T00:00:00Z"},
)
SYNC_OK = (200, {"status": "ok", "snapshot_id": "snap-1", "agents_synced": 1})


def _wait_for(predicate, timeout=5.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.02)
    return predicate()


def test_client_creation():
    client = DaimonClient("http://localhost:8090")
    assert client.base_url == "http://localhost:8090"


def test_client_strips_trailing_slash():
    client = DaimonClient("http://localhost:8090/")
    assert client.base_url == "http://localhost:8090"


def test_register_request_serializes():
    req = build_register_request()
    text = json.dumps(req, separators=(",", ":"))
    assert '"name":"aequi"' in text
    assert '"memory_mb":512' in text
    assert req["capabilities"] == [
        "bookkeeping", "tax-estimation", "invoicing",
        "receipt-ocr", "bank-import", "mcp-server",
    ]
    assert req["metadata"]["tools_count"] == 24
    assert req["metadata"]["transport"] == "stdio"


def test_dashboard_sync_request_serializes():
    req = build_dashboard_sync_request("agent-1", "test-session", "2026-03-10T00:00:00Z")
    text = json.dumps(req, separators=(",", ":"))
    assert '"source":"aequi"' in text
    assert '"status":"running"' in text
    assert req["agents"][0]["current_task"] is None
    assert req["session"] == {"id": "test-session", "started_at": "2026-03-10T00:00:00Z"}
    assert req["metadata"] == {"agent_id": "agent-1"}


def test_dashboard_sync_request_defaults_started_at_to_now():
    req = build_dashboard_sync_request("agent-1", "s")
    assert req["session"]["started_at"].startswith("20")
    assert "T" in req["session"]["started_at"]


def test_discover_response_deserializes():
    data = json.loads('{"capabilities":["agents","rag"],"endpoints":{},"companion_services":{}}')
    resp = DiscoverResponse.from_dict(data)
    assert len(resp.capabilities) == 2


def test_discover_response_allows_missing_fields():
    resp = DiscoverResponse.from_dict({})
    assert resp.capabilities is None
    assert resp.endpoints is None


def test_register_response_deserializes():
    data = json.loads(
        '{"id":"abc-123","name":"aequi","status":"registered",'
        '"registered_at":"2026-03-10T00:00:00Z"}'
    )
    resp = RegisterResponse.from_dict(data)
    assert resp.id == "abc-123"
    assert resp.name == "aequi"


def test_register_response_missing_field_raises():
    with pytest.raises(ValueError):
        RegisterResponse.from_dict({"id": "abc-123", "name": "aequi"})


def test_dashboard_sync_response_deserializes():
    data = json.loads('{"status":"ok","snapshot_id":"snap-1","agents_synced":1}')
    resp = DashboardSyncResponse.from_dict(data)
    assert resp.status == "ok"
    assert resp.agents_synced == 1


def test_dashboard_sync_response_rejects_non_object():
    with pytest.raises(ValueError):
        DashboardSyncResponse.from_dict(["ok"])


def test_discover_over_http(daimon_server):
    url, server = daimon_server
    server.routes[("GET", "/v1/discover")] = (200, {"capabilities": ["agents", "rag"]})
    resp = DaimonClient(url + "/").discover()
    assert resp.capabilities == ["agents", "rag"]
    assert server.calls[0][:2] == ("GET", "/v1/discover")


def test_register_agent_over_http(daimon_server):
    url, server = daimon_server
    server.routes[("POST", "/v1/agents/register")] = REGISTER_OK
    resp = DaimonClient(url).register_agent()
    assert resp.id == "abc-123"
    method, path, body = server.calls[0]
    assert (method, path) == ("POST", "/v1/agents/register")
    assert body["resource_needs"] == {"memory_mb": 512, "cpu_cores": 1.0}


def test_dashboard_sync_over_http(daimon_server):
    url, server = daimon_server
    server.routes[("POST", "/v1/dashboard/sync")] = SYNC_OK
    resp = DaimonClient(url).dashboard_sync("abc-123", "sess-1")
    assert resp.snapshot_id == "snap-1"
    body = server.calls[0][2]
    assert body["session"]["id"] == "sess-1"
    assert body["metadata"]["agent_id"] == "abc-123"


def test_error_status_raises(daimon_server):
    url, server = daimon_server
    server.routes[("GET", "/v1/discover")] = (500, {"error": "boom"})
    with pytest.raises(requests.HTTPError):
        DaimonClient(url).discover()


def test_spawn_task_shuts_down_on_signal():
    shutdown = threading.Event()
    thread = spawn_daimon_task(shutdown, "http://127.0.0.1:1")
    time.sleep(0.2)
    shutdown.set()
    thread.join(timeout=5)
    assert not thread.is_alive()


def test_spawn_task_registers_and_syncs(daimon_server):
    url, server = daimon_server
    server.routes[("GET", "/v1/discover")] = (500, {"error": "down"})
    server.routes[("POST", "/v1/agents/register")] = REGISTER_OK
    server.routes[("POST", "/v1/dashboard/sync")] = SYNC_OK

    shutdown = threading.Event()
    thread = spawn_daimon_task(shutdown, url)
    synced = _wait_for(
        lambda: any(path == "/v1/dashboard/sync" for _, path, _ in list(server.calls))
    )
    shutdown.set()
    thread.join(timeout=5)

    assert synced
    assert not thread.is_alive()
    paths = [path for _, path, _ in server.calls]
    assert paths[:3] == ["/v1/discover", "/v1/agents/register", "/v1/dashboard/sync"]
    sync_body = next(body for _, path, body in server.calls if path == "/v1/dashboard/sync")
    assert sync_body["metadata"]["agent_id"] == "abc-123"