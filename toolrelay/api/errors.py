"""Translation of orchestration errors into HTTP responses."""
from __future__ import annotations

from typing import Dict, Type

from fastapi import HTTPException, status

from toolrelay.core.errors import (
    ExecutionLimitError,
    MCPError,
    ServerConnectionError,
    ServerNotAvailableError,
    ToolCancelledError,
    ToolNotFoundError,
    ToolTimeoutError,
    ValidationError,
)

_STATUS_BY_ERROR: Dict[Type[MCPError], int] = {
    ExecutionLimitError: status.HTTP_429_TOO_MANY_REQUESTS,
    ServerNotAvailableError: status.HTTP_503_SERVICE_UNAVAILABLE,
    ServerConnectionError: status.HTTP_503_SERVICE_UNAVAILABLE,
    ToolTimeoutError: status.HTTP_504_GATEWAY_TIMEOUT,
    ToolNotFoundError: status.HTTP_404_NOT_FOUND,
    ValidationError: status.HTTP_400_BAD_REQUEST,
    # Client closed request (nginx convention).
    ToolCancelledError: 499,
}


def to_http_exception(exc: MCPError) -> HTTPException:
    status_code = next(
        (code for error_type, code in _STATUS_BY_ERROR.items() if isinstance(exc, error_type)),
        status.HTTP_500_INTERNAL_SERVER_ERROR,
    )
    return HTTPException(status_code=status_code, detail=exc.to_dict())
