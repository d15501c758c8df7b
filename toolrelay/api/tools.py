"""HTTP API for tool discovery."""
from __future__ import annotations

from dataclasses import asdict
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, status
from pydantic import BaseModel, Field

from toolrelay.core.models import ToolDiscoverySnapshot
from toolrelay.runtime import get_discovery_cache
from toolrelay.services.discovery import ToolDiscoveryCache

router = APIRouter(prefix="/tools", tags=["tools"])


class ToolResponse(BaseModel):
    name: str
    description: str
    input_schema: Dict[str, Any]


class ServerToolsResponse(BaseModel):
    server_id: str
    server_name: str
    tools: List[ToolResponse]


class SnapshotResponse(BaseModel):
    mapping: Dict[str, Dict[str, str]]
    servers: List[ServerToolsResponse]

    @classmethod
    def from_snapshot(cls, snapshot: ToolDiscoverySnapshot) -> "SnapshotResponse":
        return cls(
            mapping={name: {"id": info.id, "name": info.name} for name, info in snapshot.mapping.items()},
            servers=[
                ServerToolsResponse(
                    server_id=server.server_id,
                    server_name=server.server_name,
                    tools=[
                        ToolResponse(
                            name=tool.name,
                            description=tool.description,
                            input_schema=tool.input_schema,
                        )
                        for tool in server.tools
                    ],
                )
                for server in snapshot.servers
            ],
        )


class InvalidateRequest(BaseModel):
    reason: str = Field("api", description="Recorded as the last invalidation reason")


class MetricsResponse(BaseModel):
    requests: int
    hits: int
    misses: int
    batched: int
    invalidations: int
    in_flight: bool
    last_updated_at: Optional[float]
    last_build_duration_ms: Optional[float]
    last_server_count: int
    last_tool_count: int
    last_error: Optional[str]
    last_invalidation_at: Optional[float]
    last_invalidation_reason: Optional[str]


@router.get("", response_model=SnapshotResponse)
async def get_tools(
    refresh: bool = False,
    cache: ToolDiscoveryCache = Depends(get_discovery_cache),
) -> SnapshotResponse:
    snapshot = await cache.get_snapshot(force_refresh=refresh)
    return SnapshotResponse.from_snapshot(snapshot)


@router.post("/invalidate", status_code=status.HTTP_204_NO_CONTENT)
async def invalidate_tools(
    request: Optional[InvalidateRequest] = None,
    cache: ToolDiscoveryCache = Depends(get_discovery_cache),
) -> None:
    cache.invalidate(request.reason if request else "api")


@router.get("/metrics", response_model=MetricsResponse)
async def get_metrics(cache: ToolDiscoveryCache = Depends(get_discovery_cache)) -> MetricsResponse:
    return MetricsResponse(**asdict(cache.get_metrics()))
