"""Server health monitoring with bounded backoff and auto-disable."""
from __future__ import annotations

import asyncio
import time
from typing import Callable, Dict, Iterable, List, Optional, Protocol, Sequence

from toolrelay.core.logger import get_logger
from toolrelay.core.models import (
    ConnectionState,
    DeploymentType,
    RetryState,
    ServerDescriptor,
    ServerHealthStatus,
)


logger = get_logger(__name__)

DEFAULT_BACKOFF_INTERVALS_MS: Sequence[float] = (1000.0, 5000.0, 15000.0)


class ContainerInspector(Protocol):
    """Looks up the status of a managed server's container (e.g. ``running``)."""

    async def container_status(self, container_name: str) -> Optional[str]:
        ...


class ProbeClient(Protocol):
    async def connect(self) -> None:
        ...

    async def disconnect(self) -> None:
        ...


ProbeClientFactory = Callable[[ServerDescriptor], ProbeClient]
AutoDisabledHandler = Callable[[str], None]


class HealthMonitor:
    """Periodically probes servers and tracks their connection state.

    A failing server is retried once per entry in ``backoff_intervals_ms``;
    when the budget is spent it is auto-disabled until
    :meth:`reenable_server` is called. Probe failures never raise.
    """

    def __init__(
        self,
        *,
        container_inspector: Optional[ContainerInspector] = None,
        client_factory: Optional[ProbeClientFactory] = None,
        check_interval_s: float = 30.0,
        backoff_intervals_ms: Sequence[float] = DEFAULT_BACKOFF_INTERVALS_MS,
        on_auto_disabled: Optional[AutoDisabledHandler] = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._container_inspector = container_inspector
        self._client_factory = client_factory
        self._check_interval_s = check_interval_s
        self._backoff_intervals_ms = list(backoff_intervals_ms)
        self._on_auto_disabled = on_auto_disabled
        self._clock = clock
        self._health: Dict[str, ServerHealthStatus] = {}
        self._monitored: Dict[str, ServerDescriptor] = {}
        self._task: Optional[asyncio.Task[None]] = None

    @property
    def is_monitoring(self) -> bool:
        return self._task is not None and not self._task.done()

    def start_monitoring(self, servers: Iterable[ServerDescriptor]) -> None:
        """Track new servers and start the periodic check loop once."""
        for server in servers:
            self._monitored[server.id] = server
            if server.id not in self._health:
                self._initialize(server)

        if self._task is None or self._task.done():
            self._task = asyncio.get_running_loop().create_task(self._run())
            logger.info("Health monitoring started (interval %.0fs)", self._check_interval_s)

    def stop_monitoring(self) -> None:
        if self._task is not None:
            self._task.cancel()
            self._task = None
            logger.info("Health monitoring stopped")

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self._check_interval_s)
            await self.perform_health_checks(list(self._monitored.values()))

    def get_health_status(self, server_id: str) -> Optional[ServerHealthStatus]:
        return self._health.get(server_id)

    def get_all_health_statuses(self) -> List[ServerHealthStatus]:
        return list(self._health.values())

    def is_server_healthy(self, server_id: str) -> bool:
        status = self._health.get(server_id)
        return (
            status is not None
            and status.connection_state == ConnectionState.CONNECTED
            and status.auto_disabled_at is None
        )

    async def perform_health_checks(self, servers: Iterable[ServerDescriptor]) -> None:
        """Check every enabled server; used by the timer and for manual checks."""
        for server in servers:
            if not server.enabled:
                continue
            status = self._health.get(server.id) or self._initialize(server)
            try:
                await self._check_server(server, status)
            except Exception:  # noqa: BLE001
                logger.exception("Health check failed for server %s", server.name)
                self._handle_failure(server.id, status)

    def record_failure(self, server_id: str) -> None:
        """Count a failure reported from outside the check loop."""
        status = self._health.get(server_id)
        if status is None or status.auto_disabled_at is not None:
            return
        self._handle_failure(server_id, status)

    def reenable_server(self, server_id: str) -> None:
        status = self._health.get(server_id)
        if status is None:
            return
        status.consecutive_failures = 0
        status.retry_state.is_retrying = False
        status.retry_state.current_attempt = 0
        status.retry_state.next_retry_at = None
        status.auto_disabled_at = None
        logger.info("Server %s re-enabled", server_id)

    def _initialize(self, server: ServerDescriptor) -> ServerHealthStatus:
        status = ServerHealthStatus(
            server_id=server.id,
            consecutive_failures=server.failure_count,
            retry_state=RetryState(backoff_intervals=list(self._backoff_intervals_ms)),
        )
        self._health[server.id] = status
        return status

    async def _check_server(self, server: ServerDescriptor, status: ServerHealthStatus) -> None:
        if status.auto_disabled_at is not None:
            return
        retry = status.retry_state
        if retry.is_retrying and retry.next_retry_at is not None and self._clock() < retry.next_retry_at:
            return

        status.connection_state = ConnectionState.CONNECTING
        started = time.perf_counter()
        try:
            healthy = await self._probe(server)
        except Exception as exc:  # noqa: BLE001
            logger.debug("Probe for %s raised: %s", server.id, exc)
            healthy = False

        if healthy:
            status.ping_latency = (time.perf_counter() - started) * 1000
            self._handle_success(server, status)
        else:
            self._handle_failure(server.id, status)

    async def _probe(self, server: ServerDescriptor) -> bool:
        if server.deployment_type == DeploymentType.MANAGED:
            if not server.container_name:
                raise ValueError("Container name missing for managed server")
            if self._container_inspector is None:
                raise RuntimeError("No container inspector configured")
            state = await self._container_inspector.container_status(server.container_name)
            return state == "running"

        if self._client_factory is None:
            raise RuntimeError("No probe client factory configured")
        client = self._client_factory(server)
        await client.connect()
        await client.disconnect()
        return True

    def _handle_success(self, server: ServerDescriptor, status: ServerHealthStatus) -> None:
        recovered = status.consecutive_failures > 0
        status.connection_state = ConnectionState.CONNECTED
        status.last_ping_at = self._clock()
        status.consecutive_failures = 0
        status.retry_state.is_retrying = False
        status.retry_state.current_attempt = 0
        status.retry_state.next_retry_at = None
        status.auto_disabled_at = None
        if recovered:
            logger.info("Server %s recovered", server.name)

    def _handle_failure(self, server_id: str, status: ServerHealthStatus) -> None:
        status.connection_state = ConnectionState.ERROR
        status.consecutive_failures += 1

        retry = status.retry_state
        max_retries = len(retry.backoff_intervals)
        if retry.current_attempt < max_retries:
            backoff_ms = retry.backoff_intervals[retry.current_attempt]
            retry.is_retrying = True
            retry.current_attempt += 1
            retry.next_retry_at = self._clock() + backoff_ms / 1000
            logger.warning(
                "Server %s health check failed (attempt %d/%d). Retrying in %.0fms",
                server_id,
                retry.current_attempt,
                max_retries,
                backoff_ms,
            )
            return

        status.auto_disabled_at = self._clock()
        retry.is_retrying = False
        retry.next_retry_at = None
        logger.error("Server %s auto-disabled after %d failed attempts", server_id, retry.current_attempt)
        if self._on_auto_disabled is not None:
            self._on_auto_disabled(server_id)
