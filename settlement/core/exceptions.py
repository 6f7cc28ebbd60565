"""
Taxonomía de errores del servicio de cobros.

Todas las excepciones de negocio extienden HTTPException para que FastAPI las
convierta directamente en respuestas con el código correcto. El cuerpo sigue
el formato {error, code, details, hint}.
"""
from typing import Any, Optional

from fastapi import HTTPException, status


class ServiceError(HTTPException):
    """Error base con código de negocio estable"""

    status_code_default = status.HTTP_500_INTERNAL_SERVER_ERROR
    code_default = "UNEXPECTED_ERROR"

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Any = None,
        hint: Optional[str] = None,
    ):
        self.message = message
        self.code = code or self.code_default
        self.details = details
        self.hint = hint
        detail = {"error": message, "code": self.code}
        if details is not None:
            detail["details"] = details
        if hint is not None:
            detail["hint"] = hint
        super().__init__(status_code=self.status_code_default, detail=detail)

    def __str__(self) -> str:
        return f"{self.code}: {self.message}"


class ValidationError(ServiceError):
    status_code_default = status.HTTP_400_BAD_REQUEST
    code_default = "VALIDATION_ERROR"


class UnauthorizedError(ServiceError):
    status_code_default = status.HTTP_401_UNAUTHORIZED
    code_default = "UNAUTHORIZED"

    def __init__(self, message: str = "No autorizado. Token Bearer requerido", **kwargs):
        super().__init__(message, **kwargs)
        self.headers = {"WWW-Authenticate": "Bearer"}


class ForbiddenError(ServiceError):
    status_code_default = status.HTTP_403_FORBIDDEN
    code_default = "FORBIDDEN"


class NotFoundError(ServiceError):
    status_code_default = status.HTTP_404_NOT_FOUND
    code_default = "NOT_FOUND"


class ConflictError(ServiceError):
    status_code_default = status.HTTP_409_CONFLICT
    code_default = "CONFLICT"


class GatewayError(ServiceError):
    """El procesador externo rechazó la operación o no respondió"""
    status_code_default = status.HTTP_502_BAD_GATEWAY
    code_default = "GATEWAY_ERROR"


class UnexpectedError(ServiceError):
    status_code_default = status.HTTP_500_INTERNAL_SERVER_ERROR
    code_default = "UNEXPECTED_ERROR"


class GatewayNotConfiguredError(UnexpectedError):
    code_default = "GATEWAY_NOT_CONFIGURED"
