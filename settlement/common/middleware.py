"""
Middleware for handling multi-tenancy
"""
from fastapi import Request, status
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware
from uuid import UUID
import logging

logger = logging.getLogger(__name__)


class TenantMiddleware(BaseHTTPMiddleware):
    """
    Extrae el tenant desde el query param tenantId o el header X-Tenant-ID
    y lo deja en request.state. Si no viene, la dependencia de tenant
    resuelve el store por defecto.
    """

    async def dispatch(self, request: Request, call_next):
        request.state.tenant_id = None
        raw_tenant = request.query_params.get("tenantId") or request.headers.get("X-Tenant-ID")

        if raw_tenant:
            try:
                request.state.tenant_id = UUID(raw_tenant)
            except ValueError:
                return JSONResponse(
                    status_code=status.HTTP_400_BAD_REQUEST,
                    content={"detail": {
                        "error": "Formato de tenant inválido. Debe ser un UUID",
                        "code": "INVALID_TENANT",
                    }},
                )
            logger.debug(f"Request to {request.url.path} with tenant_id: {request.state.tenant_id}")

        response = await call_next(request)

        if request.state.tenant_id is not None:
            response.headers["X-Tenant-ID"] = str(request.state.tenant_id)

        return response


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """
    Middleware to add security headers for production
    """

    async def dispatch(self, request: Request, call_next):
        response = await call_next(request)

        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "DENY"
        response.headers["Strict-Transport-Security"] = "max-age=31536000; includeSubDomains"
        response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"

        return response
