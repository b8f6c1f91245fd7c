"""
HTTP client for node agents.

Each node runs an agent daemon that performs power, console, install and
backup operations for the servers it hosts.  ``HttpAgentClient`` wraps the
handful of endpoints the scheduler uses.  It never raises for remote
failures: every call returns an ``AgentResponse`` whose ``error`` explains
what went wrong, and the task executor decides what that means.

Architecture:
    ::

        HttpAgentClient(fqdn, port, scheme, token)
        │
        ├── power(uuid, signal)        POST /api/servers/{uuid}/power
        │     start/stop/restart → {"action": ..., "wait_seconds": 30}
        │     kill               → {"action": "kill", "wait_seconds": 60}
        ├── send_commands(uuid, cmds)  POST /api/servers/{uuid}/commands
        ├── install_server(uuid)       POST /api/servers/{uuid}/install
        ├── reinstall_server(uuid)     POST /api/servers/{uuid}/reinstall
        ├── create_backup(uuid, ...)   POST /api/servers/{uuid}/backup
        └── test_connection()          GET  /api/system

        HTTP status → error message
        ┌──────┬──────────────────────────────────────┐
        │ 401  │ Authentication failed: <remote msg>   │
        │ 403  │ Access forbidden: <remote msg>        │
        │ 404  │ Endpoint not found: <endpoint>        │
        │ 429  │ Rate limit exceeded: <remote msg>     │
        │ 500  │ Server error: <remote msg>            │
        │ else │ HTTP <code>: <remote msg>             │
        └──────┴──────────────────────────────────────┘
        transport failures → status_code 0,
        "Request timed out: ..." / "Connection failed: ..."

Examples:
    >>> with HttpAgentClient("node1.example.com", 8080, "https", token="secret") as agent:
    ...     response = agent.restart_server("9f1c0a52-...")
    ...     if not response.is_successful():
    ...         print(response.error)

Tags:
    agent, http, httpx, rpc-client, node-daemon

Doc-Types:
    - API Reference
"""

from __future__ import annotations

from typing import Any

import httpx

from nodesched.core.logging import get_logger
from nodesched.core.models import AgentResponse, Node, PowerSignal
from nodesched.core.settings import SchedulerSettings

logger = get_logger(__name__)

DEFAULT_WAIT_SECONDS = 30
KILL_WAIT_SECONDS = 60


class HttpAgentClient:
    """Synchronous client for one node agent.

    Args:
        fqdn: Agent host name
        port: Agent listen port
        scheme: ``http`` or ``https``
        token: Bearer token; no Authorization header when empty
        timeout: Per-request timeout in seconds
        retries: Connection retries handed to the httpx transport
        verify: Verify TLS certificates
        user_agent: User-Agent header value
        transport: Custom httpx transport (tests use ``httpx.MockTransport``)
    """

    def __init__(
        self,
        fqdn: str,
        port: int,
        scheme: str = "https",
        token: str | None = None,
        *,
        timeout: float = 30.0,
        retries: int = 0,
        verify: bool = True,
        user_agent: str = "node-scheduler/1.0",
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self.base_url = f"{scheme}://{fqdn.rstrip('/')}:{port}"

        headers = {
            "Accept": "application/json",
            "Content-Type": "application/json",
            "User-Agent": user_agent,
        }
        if token:
            headers["Authorization"] = f"Bearer {token}"

        if transport is None:
            transport = httpx.HTTPTransport(retries=retries, verify=verify)

        self._client = httpx.Client(
            base_url=self.base_url,
            headers=headers,
            timeout=timeout,
            transport=transport,
        )

    @classmethod
    def for_node(
        cls,
        node: Node,
        settings: SchedulerSettings,
        transport: httpx.BaseTransport | None = None,
    ) -> HttpAgentClient:
        """Build a client for ``node`` using the agent options in ``settings``."""
        return cls(
            node.fqdn,
            node.daemon_listen,
            node.scheme or "https",
            node.daemon_token,
            timeout=settings.agent_timeout,
            retries=settings.agent_retries,
            verify=settings.agent_verify_tls,
            user_agent=settings.agent_user_agent,
            transport=transport,
        )

    # === Power ===

    def power(self, server_uuid: str, signal: str | PowerSignal) -> AgentResponse:
        """Send a power signal (start, stop, restart, kill)."""
        action = PowerSignal(signal).value if not isinstance(signal, PowerSignal) else signal.value
        wait = KILL_WAIT_SECONDS if action == PowerSignal.KILL.value else DEFAULT_WAIT_SECONDS
        return self._post(
            f"/api/servers/{server_uuid}/power",
            {"action": action, "wait_seconds": wait},
        )

    def start_server(self, server_uuid: str) -> AgentResponse:
        return self.power(server_uuid, PowerSignal.START)

    def stop_server(self, server_uuid: str) -> AgentResponse:
        return self.power(server_uuid, PowerSignal.STOP)

    def restart_server(self, server_uuid: str) -> AgentResponse:
        return self.power(server_uuid, PowerSignal.RESTART)

    def kill_server(self, server_uuid: str) -> AgentResponse:
        return self.power(server_uuid, PowerSignal.KILL)

    # === Console / lifecycle ===

    def send_commands(self, server_uuid: str, commands: list[str]) -> AgentResponse:
        return self._post(f"/api/servers/{server_uuid}/commands", {"commands": list(commands)})

    def install_server(self, server_uuid: str) -> AgentResponse:
        return self._post(f"/api/servers/{server_uuid}/install")

    def reinstall_server(self, server_uuid: str) -> AgentResponse:
        return self._post(f"/api/servers/{server_uuid}/reinstall")

    # === Backups ===

    def create_backup(
        self,
        server_uuid: str,
        adapter: str,
        backup_uuid: str,
        ignore: str | None = None,
    ) -> AgentResponse:
        """Ask the agent to start a backup.

        Args:
            server_uuid: Server to back up
            adapter: Storage adapter name (e.g. ``wings``)
            backup_uuid: UUID of the local backup record
            ignore: JSON array string of ignored paths; omitted when empty
        """
        data: dict[str, Any] = {"adapter": adapter, "uuid": backup_uuid}
        if ignore:
            data["ignore"] = ignore
        return self._post(f"/api/servers/{server_uuid}/backup", data)

    # === Diagnostics ===

    def test_connection(self) -> bool:
        """True if the agent answers ``GET /api/system``."""
        return self._request("GET", "/api/system").is_successful()

    # === Lifecycle ===

    def close(self) -> None:
        self._client.close()

    def __enter__(self) -> HttpAgentClient:
        return self

    def __exit__(self, *args: Any) -> None:
        self.close()

    # === Internals ===

    def _post(self, endpoint: str, data: dict[str, Any] | None = None) -> AgentResponse:
        return self._request("POST", endpoint, data or {})

    def _request(
        self,
        method: str,
        endpoint: str,
        data: dict[str, Any] | None = None,
    ) -> AgentResponse:
        try:
            response = self._client.request(
                method,
                endpoint,
                json=data if method != "GET" else None,
            )
        except httpx.TimeoutException as e:
            logger.warning("agent_request_timeout", endpoint=endpoint, base_url=self.base_url)
            return AgentResponse(status_code=0, error=f"Request timed out: {e}")
        except httpx.HTTPError as e:
            logger.warning(
                "agent_request_failed", endpoint=endpoint, base_url=self.base_url, error=str(e)
            )
            return AgentResponse(status_code=0, error=f"Connection failed: {e}")

        payload = _decode_body(response)

        if response.status_code >= 400:
            error = _error_message(response.status_code, payload, endpoint)
            logger.warning(
                "agent_request_rejected",
                endpoint=endpoint,
                status_code=response.status_code,
                error=error,
            )
            return AgentResponse(status_code=response.status_code, data=payload, error=error)

        return AgentResponse(status_code=response.status_code, data=payload)


def _decode_body(response: httpx.Response) -> Any:
    if not response.content:
        return {}
    try:
        return response.json()
    except ValueError:
        return {}


def _error_message(status_code: int, payload: Any, endpoint: str) -> str:
    remote = "Unknown error"
    if isinstance(payload, dict) and payload.get("error"):
        remote = str(payload["error"])

    match status_code:
        case 401:
            return f"Authentication failed: {remote}"
        case 403:
            return f"Access forbidden: {remote}"
        case 404:
            return f"Endpoint not found: {endpoint}"
        case 429:
            return f"Rate limit exceeded: {remote}"
        case 500:
            return f"Server error: {remote}"
        case _:
            return f"HTTP {status_code}: {remote}"


__all__ = ["HttpAgentClient", "DEFAULT_WAIT_SECONDS", "KILL_WAIT_SECONDS"]
