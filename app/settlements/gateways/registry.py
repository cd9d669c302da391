"""
Gateway registry: resolves gateway names to adapter instances.

SETTLEMENTS_GATEWAYS maps each gateway name to the dotted path of its
adapter class. Adapters are stateless, so one instance per name is
cached. Tests replace an adapter with set_gateway() and restore the
configured ones with reset_gateways().

Usage:
    from settlements.gateways import get_gateway, set_gateway

    gateway = get_gateway(txn.gateway)

    # In tests
    set_gateway("stripe", fake_gateway)
"""

from __future__ import annotations

import logging

from django.conf import settings
from django.utils.module_loading import import_string

from settlements.exceptions import GatewayInvalidRequestError
from settlements.gateways.base import PaymentGateway

logger = logging.getLogger(__name__)

_gateways: dict[str, PaymentGateway] = {}


def get_gateway(name: str | None = None) -> PaymentGateway:
    """
    Return the adapter for a gateway name.

    Args:
        name: Gateway name (defaults to SETTLEMENTS_DEFAULT_GATEWAY)

    Raises:
        GatewayInvalidRequestError: If no adapter is configured for the name
    """
    name = name or getattr(settings, "SETTLEMENTS_DEFAULT_GATEWAY", "stripe")
    gateway = _gateways.get(name)
    if gateway is not None:
        return gateway

    path = getattr(settings, "SETTLEMENTS_GATEWAYS", {}).get(name)
    if not path:
        raise GatewayInvalidRequestError(
            f"No adapter configured for gateway '{name}'",
            error_code="GATEWAY_NOT_CONFIGURED",
            gateway=name,
        )

    gateway = import_string(path)()
    _gateways[name] = gateway
    logger.debug(f"Loaded gateway adapter {path} for '{name}'")
    return gateway


def set_gateway(name: str, gateway: PaymentGateway) -> None:
    """Install an adapter instance for a gateway name."""
    _gateways[name] = gateway


def reset_gateways() -> None:
    """Drop cached and injected adapters."""
    _gateways.clear()


__all__ = [
    "get_gateway",
    "reset_gateways",
    "set_gateway",
]
