"""FastAPI entry-point exposing tool orchestration controls."""
from __future__ import annotations

from contextlib import asynccontextmanager

from fastapi import FastAPI

from toolrelay.api.chat import router as chat_router
from toolrelay.api.executions import router as executions_router
from toolrelay.api.health import router as health_router
from toolrelay.api.servers import router as servers_router
from toolrelay.api.tools import router as tools_router
from toolrelay.config import config
from toolrelay.core.logger import configure_logging, get_logger
from toolrelay.runtime import get_discovery_cache, get_health_monitor, get_mcp_registry

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifecycle manager for FastAPI application."""
    configure_logging(config.log_level)
    registry = get_mcp_registry()
    monitor = get_health_monitor()
    monitor.start_monitoring(registry.list_servers())
    await get_discovery_cache().preload()
    logger.info("Tool relay started (%s)", config.environment)
    yield
    monitor.stop_monitoring()


app = FastAPI(title="Tool Relay", lifespan=lifespan)
app.include_router(servers_router)
app.include_router(tools_router)
app.include_router(executions_router)
app.include_router(health_router)
app.include_router(chat_router)


@app.get("/health")
async def health() -> dict:
    return {"status": "ok"}
