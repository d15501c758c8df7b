"""HTTP API for server health."""
from __future__ import annotations

from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel

from toolrelay.core.models import ServerHealthStatus
from toolrelay.runtime import get_health_monitor, get_mcp_registry
from toolrelay.services.health import HealthMonitor
from toolrelay.services.registry import MCPRegistry

router = APIRouter(prefix="/health/servers", tags=["health"])


class RetryStateResponse(BaseModel):
    is_retrying: bool
    current_attempt: int
    next_retry_at: Optional[float]
    backoff_intervals: List[float]


class HealthStatusResponse(BaseModel):
    server_id: str
    connection_state: str
    healthy: bool
    last_ping_at: Optional[float]
    ping_latency: Optional[float]
    consecutive_failures: int
    retry_state: RetryStateResponse
    auto_disabled_at: Optional[float]

    @classmethod
    def from_status(cls, health: ServerHealthStatus, healthy: bool) -> "HealthStatusResponse":
        retry = health.retry_state
        return cls(
            server_id=health.server_id,
            connection_state=health.connection_state.value,
            healthy=healthy,
            last_ping_at=health.last_ping_at,
            ping_latency=health.ping_latency,
            consecutive_failures=health.consecutive_failures,
            retry_state=RetryStateResponse(
                is_retrying=retry.is_retrying,
                current_attempt=retry.current_attempt,
                next_retry_at=retry.next_retry_at,
                backoff_intervals=list(retry.backoff_intervals),
            ),
            auto_disabled_at=health.auto_disabled_at,
        )


def _statuses(monitor: HealthMonitor) -> List[HealthStatusResponse]:
    return [
        HealthStatusResponse.from_status(health, monitor.is_server_healthy(health.server_id))
        for health in monitor.get_all_health_statuses()
    ]


@router.get("", response_model=List[HealthStatusResponse])
async def list_health(monitor: HealthMonitor = Depends(get_health_monitor)) -> List[HealthStatusResponse]:
    return _statuses(monitor)


@router.post("/check", response_model=List[HealthStatusResponse])
async def check_health(
    monitor: HealthMonitor = Depends(get_health_monitor),
    registry: MCPRegistry = Depends(get_mcp_registry),
) -> List[HealthStatusResponse]:
    await monitor.perform_health_checks(registry.list_servers())
    return _statuses(monitor)


@router.post("/{server_id}/reenable", status_code=status.HTTP_204_NO_CONTENT)
async def reenable_server(
    server_id: str,
    registry: MCPRegistry = Depends(get_mcp_registry),
) -> None:
    try:
        registry.reenable(server_id)
    except KeyError as exc:
        detail = exc.args[0] if exc.args else str(exc)
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=detail) from exc
