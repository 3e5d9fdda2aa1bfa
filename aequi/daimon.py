"""Client for the daimon agent orchestrator and its background sync task.

The task checks that daimon is reachable, registers this service as an
agent, and then sends a dashboard heartbeat at a fixed interval until
it is told to stop.
"""

from __future__ import annotations

import logging
import os
import threading
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Mapping

import requests

logger = logging.getLogger(__name__)

DEFAULT_DAIMON_URL = "http://127.0.0.1:8090"
DAIMON_URL_ENV = "AEQUI_DAIMON_URL"
SYNC_INTERVAL = 30.0
REGISTER_RETRY_DELAY = 10.0
MAX_REGISTER_RETRIES = 5
DEFAULT_TIMEOUT = 10.0

AGENT_NAME = "aequi"
AGENT_VERSION = "2026.3.13"
AGENT_PORT = 8060
TOOLS_COUNT = 24
CAPABILITIES = (
    "bookkeeping",
    "tax-estimation",
    "invoicing",
    "receipt-ocr",
    "bank-import",
    "mcp-server",
)


def _require_mapping(data: Any, kind: str) -> Mapping[str, Any]:
    if not isinstance(data, Mapping):
        raise ValueError(f"{kind}: expected a JSON object")
    return data


def _require_fields(data: Mapping[str, Any], kind: str, *names: str) -> None:
    missing = [name for name in names if name not in data]
    if missing:
        raise ValueError(f"{kind}: missing field(s) {', '.join(missing)}")


@dataclass(frozen=True)
class RegisterResponse:
    """Daimon's reply to an agent registration."""

    id: str
    name: str
    status: str
    registered_at: str

    @classmethod
    def from_dict(cls, data: Any) -> RegisterResponse:
        """Build from decoded JSON; raises ValueError on missing fields."""
        mapping = _require_mapping(data, "register response")
        _require_fields(mapping, "register response", "id", "name", "status", "registered_at")
        return cls(
            id=mapping["id"],
            name=mapping["name"],
            status=mapping["status"],
            registered_at=mapping["registered_at"],
        )


@dataclass(frozen=True)
class DashboardSyncResponse:
    """Daimon's reply to a dashboard heartbeat."""

    status: str
    snapshot_id: str | None = None
    agents_synced: int | None = None

    @classmethod
    def from_dict(cls, data: Any) -> DashboardSyncResponse:
        """Build from decoded JSON; raises ValueError on missing fields."""
        mapping = _require_mapping(data, "dashboard sync response")
        _require_fields(mapping, "dashboard sync response", "status")
        return cls(
            status=mapping["status"],
            snapshot_id=mapping.get("snapshot_id"),
            agents_synced=mapping.get("agents_synced"),
        )


@dataclass(frozen=True)
class DiscoverResponse:
    """Daimon's capabilities and the URLs of its companion services."""

    capabilities: list[str] | None = None
    endpoints: Any = None
    companion_services: Any = None

    @classmethod
    def from_dict(cls, data: Any) -> DiscoverResponse:
        """Build from decoded JSON; every field is optional."""
        mapping = _require_mapping(data, "discover response")
        capabilities = mapping.get("capabilities")
        return cls(
            capabilities=None if capabilities is None else list(capabilities),
            endpoints=mapping.get("endpoints"),
            companion_services=mapping.get("companion_services"),
        )


def build_register_request() -> dict[str, Any]:
    """Return the body that registers this service as a daimon agent."""
    return {
        "name": AGENT_NAME,
        "capabilities": list(CAPABILITIES),
        "resource_needs": {"memory_mb": 512, "cpu_cores": 1.0},
        "metadata": {
            "version": AGENT_VERSION,
            "port": AGENT_PORT,
            "transport": "stdio",
            "tools_count": TOOLS_COUNT,
        },
    }


def build_dashboard_sync_request(
    agent_id: str, session_id: str, started_at: str | None = None
) -> dict[str, Any]:
    """Return a dashboard heartbeat body; ``started_at`` defaults to now."""
    if started_at is None:
        started_at = datetime.now(timezone.utc).isoformat()
    return {
        "source": AGENT_NAME,
        "agents": [{"name": AGENT_NAME, "status": "running", "current_task": None}],
        "session": {"id": session_id, "started_at": started_at},
        "metrics": {"uptime_seconds": 0, "tools_available": TOOLS_COUNT},
        "metadata": {"agent_id": agent_id},
    }


class DaimonClient:
    """HTTP client for the daimon API.

    Network and HTTP status failures raise ``requests.RequestException``.
    """

    def __init__(self, base_url: str, timeout: float = DEFAULT_TIMEOUT) -> None:
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._session = requests.Session()

    def _url(self, path: str) -> str:
        return f"{self.base_url}{path}"

    def _get(self, path: str) -> Any:
        response = self._session.get(self._url(path), timeout=self.timeout)
        response.raise_for_status()
        return response.json()

    def _post(self, path: str, body: dict[str, Any]) -> Any:
        response = self._session.post(self._url(path), json=body, timeout=self.timeout)
        response.raise_for_status()
        return response.json()

    def discover(self) -> DiscoverResponse:
        """Fetch daimon's capabilities and companion service URLs."""
        return DiscoverResponse.from_dict(self._get("/v1/discover"))

    def register_agent(self) -> RegisterResponse:
        """Register this service as an agent with daimon."""
        return RegisterResponse.from_dict(
            self._post("/v1/agents/register", build_register_request())
        )

    def dashboard_sync(self, agent_id: str, session_id: str) -> DashboardSyncResponse:
        """Send one dashboard heartbeat."""
        return DashboardSyncResponse.from_dict(
            self._post("/v1/dashboard/sync", build_dashboard_sync_request(agent_id, session_id))
        )


def _register_with_retries(client: DaimonClient, shutdown: threading.Event) -> str | None:
    for attempt in range(1, MAX_REGISTER_RETRIES + 1):
        try:
            response = client.register_agent()
        except (requests.RequestException, ValueError) as exc:
            logger.warning(
                "daimon registration attempt %d/%d failed: %s",
                attempt,
                MAX_REGISTER_RETRIES,
                exc,
            )
            if attempt < MAX_REGISTER_RETRIES and shutdown.wait(REGISTER_RETRY_DELAY):
                return None
            continue
        logger.info("registered with daimon as agent '%s' (id=%s)", response.name, response.id)
        return response.id
    logger.warning(
        "could not register with daimon after %d attempts; daimon sync disabled",
        MAX_REGISTER_RETRIES,
    )
    return None


def _run(shutdown: threading.Event, daimon_url: str) -> None:
    client = DaimonClient(daimon_url)
    session_id = str(uuid.uuid4())

    try:
        discovered = client.discover()
        count = None if discovered.capabilities is None else len(discovered.capabilities)
        logger.info("daimon discover OK: %s capabilities", count)
    except (requests.RequestException, ValueError) as exc:
        logger.warning("daimon discover failed (will still attempt registration): %s", exc)

    agent_id = _register_with_retries(client, shutdown)
    if agent_id is None:
        return

    while not shutdown.is_set():
        try:
            response = client.dashboard_sync(agent_id, session_id)
            logger.debug("daimon sync OK: status=%s", response.status)
        except (requests.RequestException, ValueError) as exc:
            logger.warning("daimon sync failed: %s", exc)
        if shutdown.wait(SYNC_INTERVAL):
            break
    logger.info("daimon sync task shutting down")


def spawn_daimon_task(
    shutdown: threading.Event, daimon_url: str | None = None
) -> threading.Thread:
    """Start the daimon integration in a background thread and return it.

    The URL defaults to ``AEQUI_DAIMON_URL`` or the local default. The
    thread ends when ``shutdown`` is set or registration gives up.
    """
    if daimon_url is None:
        daimon_url = os.environ.get(DAIMON_URL_ENV, DEFAULT_DAIMON_URL)
    thread = threading.Thread(
        target=_run, args=(shutdown, daimon_url), name="daimon-sync", daemon=True
    )
    thread.start()
    return thread