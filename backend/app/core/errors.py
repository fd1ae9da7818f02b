"""Lifecycle error taxonomy.

Engines raise these; the HTTP layer maps them to structured JSON bodies via
``lifecycle_error_handler``. A raised error always means nothing was changed:
engines build new snapshots and only return them on success.
"""

from __future__ import annotations

from typing import Any

from fastapi import Request
from fastapi.responses import JSONResponse


class LifecycleError(Exception):
    code = "lifecycle_error"
    status_code = 400

    def __init__(self, message: str, **context: Any) -> None:
        super().__init__(message)
        self.message = message
        self.context = context

    def to_detail(self) -> dict[str, Any]:
        detail: dict[str, Any] = {"code": self.code, "message": self.message}
        for key, value in self.context.items():
            detail[key] = getattr(value, "value", value)
        return detail


class IllegalTransition(LifecycleError):
    code = "illegal_transition"
    status_code = 409

    def __init__(
        self,
        *,
        entity_type: str,
        entity_id: str | None,
        current_status: Any,
        requested_status: Any,
        message: str | None = None,
    ) -> None:
        current = getattr(current_status, "value", current_status)
        requested = getattr(requested_status, "value", requested_status)
        super().__init__(
            message or f"Illegal {entity_type} transition: {current} -> {requested}",
            entity_type=entity_type,
            entity_id=entity_id,
            current_status=current,
            requested_status=requested,
        )
        self.current_status = current
        self.requested_status = requested


class PermissionDenied(LifecycleError):
    code = "permission_denied"
    status_code = 403


class PreconditionFailed(LifecycleError):
    code = "precondition_failed"
    status_code = 422


class NotFound(LifecycleError):
    code = "not_found"
    status_code = 404


class ConcurrentModification(LifecycleError):
    code = "concurrent_modification"
    status_code = 409


async def lifecycle_error_handler(request: Request, exc: LifecycleError) -> JSONResponse:
    logger = getattr(request.app.state, "logger", None)
    if logger:
        logger.info(
            "lifecycle_error",
            extra={
                "code": exc.code,
                "path": request.url.path,
                "method": request.method,
                "request_id": request.headers.get("x-request-id"),
            },
        )
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.to_detail()})
