"""
Registro explícito de gateways.

El mapeo proveedor → constructor se arma una sola vez al iniciar la
aplicación (build_gateway_registry) y se inyecta en los servicios que lo
necesitan. No hay registro global por efecto de import.
"""
import logging
from typing import Any, Callable, Dict, Mapping, Optional, Union

from settlement.core.exceptions import ValidationError
from settlement.modules.gateways.base import GatewayProvider, PaymentGateway
from settlement.modules.gateways.generic_qr import GenericQRGateway
from settlement.modules.gateways.mercadopago import MercadoPagoGateway

logger = logging.getLogger(__name__)

GatewayConstructor = Callable[..., PaymentGateway]


class GatewayNotRegisteredError(ValidationError):
    code_default = "GATEWAY_NOT_REGISTERED"


class GatewayRegistry:
    """Fábrica de gateways a partir de un mapeo inmutable"""

    def __init__(self, constructors: Mapping[GatewayProvider, GatewayConstructor]):
        self._constructors: Dict[GatewayProvider, GatewayConstructor] = dict(constructors)

    @property
    def providers(self):
        return tuple(self._constructors)

    def is_registered(self, provider: Union[GatewayProvider, str]) -> bool:
        try:
            return GatewayProvider(provider) in self._constructors
        except ValueError:
            return False

    def create(
        self,
        provider: Union[GatewayProvider, str],
        credentials: Optional[Mapping[str, Any]] = None,
        config: Optional[Mapping[str, Any]] = None,
    ) -> PaymentGateway:
        """Instancia el gateway del proveedor o falla si no está registrado"""
        try:
            key = GatewayProvider(provider)
        except ValueError:
            key = None

        constructor = self._constructors.get(key) if key else None
        if constructor is None:
            raise GatewayNotRegisteredError(
                f"Gateway provider '{provider}' no está registrado",
                details={"provider": str(provider), "registered": [p.value for p in self._constructors]},
            )
        return constructor(credentials or {}, config or {})


def build_gateway_registry() -> GatewayRegistry:
    registry = GatewayRegistry({
        GatewayProvider.MERCADOPAGO: MercadoPagoGateway,
        GatewayProvider.QR: GenericQRGateway,
    })
    logger.info(f"Gateways registrados: {[p.value for p in registry.providers]}")
    return registry
