from fastapi import Request

from settlement.modules.gateways.registry import GatewayRegistry


def get_gateway_registry(request: Request) -> GatewayRegistry:
    """Registro de gateways construido al iniciar la aplicación"""
    return request.app.state.gateway_registry
