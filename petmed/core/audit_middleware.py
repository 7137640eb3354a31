"""
Audit logging middleware.
Logs every mutating request against the medical-record panel endpoints.
"""
import logging
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request

logger = logging.getLogger(__name__)

PANEL_PATH_PREFIX = "/api/v1/pets"

ACTION_MAP = {
    "POST": "submit",
    "PUT": "update",
    "PATCH": "update",
    "DELETE": "delete",
}


class AuditMiddleware(BaseHTTPMiddleware):
    """Middleware that logs who touched which pet's medical-record panel."""

    async def dispatch(self, request: Request, call_next):
        response = await call_next(request)

        path = request.url.path
        if not path.startswith(PANEL_PATH_PREFIX) or request.method not in ACTION_MAP:
            return response

        # /api/v1/pets/{pet_id}/panels/{kind}/...
        parts = [p for p in path.split("/") if p]
        pet_id = parts[3] if len(parts) > 3 else "unknown"
        kind = parts[5] if len(parts) > 5 else "unknown"
        operation = "/".join(parts[6:]) or "panel"

        logger.info(
            "audit action=%s pet=%s kind=%s operation=%s status=%s client=%s",
            ACTION_MAP[request.method],
            pet_id,
            kind,
            operation,
            response.status_code,
            request.client.host if request.client else None,
        )
        return response
