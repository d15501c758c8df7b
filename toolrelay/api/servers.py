"""HTTP API for the server registry."""
from __future__ import annotations

from typing import List, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from toolrelay.core.models import ServerDescriptor
from toolrelay.runtime import get_mcp_registry
from toolrelay.services.registry import MCPRegistry

router = APIRouter(prefix="/servers", tags=["servers"])


class ServerResponse(BaseModel):
    id: str
    name: str
    enabled: bool
    deployment_type: str
    container_name: Optional[str]
    failure_count: int
    auto_disabled: bool

    @classmethod
    def from_descriptor(cls, server: ServerDescriptor) -> "ServerResponse":
        return cls(
            id=server.id,
            name=server.name,
            enabled=server.enabled,
            deployment_type=server.deployment_type.value,
            container_name=server.container_name,
            failure_count=server.failure_count,
            auto_disabled=server.auto_disabled,
        )


@router.get("", response_model=List[ServerResponse])
async def list_servers(registry: MCPRegistry = Depends(get_mcp_registry)) -> List[ServerResponse]:
    return [ServerResponse.from_descriptor(server) for server in registry.list_servers()]
