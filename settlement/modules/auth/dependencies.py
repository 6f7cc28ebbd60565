"""
Dependencias de autenticación para FastAPI.

La identidad viene del token Bearer (claim sub). Si el token trae tenant_id,
ese es el tenant y un tenantId / X-Tenant-ID distinto se rechaza con 403.
Sin claim se usa el query o header y, por último, el store por defecto.
"""
from typing import Optional
from uuid import UUID
from fastapi import Depends, Request
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy.orm import Session

from settlement.core.config import settings
from settlement.core.exceptions import ForbiddenError, UnauthorizedError, ValidationError
from settlement.database.database import get_db
from settlement.modules.auth.schemas import AuthContext
from settlement.modules.auth.utils import verify_token
from settlement.modules.stores.models import Store

security = HTTPBearer(auto_error=False)


def resolve_default_tenant(db: Session) -> UUID:
    """Obtener el tenant del store por defecto"""
    store = db.query(Store).filter(
        Store.slug == settings.DEFAULT_STORE_SLUG,
        Store.deleted_at.is_(None)
    ).first()
    if not store:
        raise ValidationError(
            "No se encontró store por defecto. Proporciona tenantId",
            code="TENANT_REQUIRED",
        )
    return store.id


class AuthDependencies:
    """Dependencias de autenticación reutilizables."""

    @staticmethod
    def get_auth_context(
        request: Request,
        credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
        db: Session = Depends(get_db)
    ) -> AuthContext:
        """
        Obtener contexto de autenticación completo con tenant.
        """
        if credentials is None or not credentials.credentials:
            raise UnauthorizedError()

        payload = verify_token(credentials.credentials)
        user_id = payload.get("sub")
        if user_id is None:
            raise UnauthorizedError("No autorizado. Token inválido", code="INVALID_TOKEN")

        try:
            user_uuid = UUID(str(user_id))
        except ValueError:
            raise UnauthorizedError("No autorizado. Token inválido", code="INVALID_TOKEN")

        requested_tenant = getattr(request.state, "tenant_id", None)
        tenant_id = None
        if payload.get("tenant_id"):
            try:
                tenant_id = UUID(str(payload["tenant_id"]))
            except ValueError:
                raise UnauthorizedError("No autorizado. Tenant inválido en token", code="INVALID_TOKEN")
            if requested_tenant is not None and requested_tenant != tenant_id:
                raise ForbiddenError("No tienes acceso a este store", code="TENANT_FORBIDDEN")
        if tenant_id is None:
            tenant_id = requested_tenant
        if tenant_id is None:
            tenant_id = resolve_default_tenant(db)

        return AuthContext(
            user_id=user_uuid,
            tenant_id=tenant_id,
            user_role=payload.get("user_role"),
        )
