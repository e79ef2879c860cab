"""Optional tunnels between transfer client and server."""

from typing import Optional, Union

from ..exceptions import ConfigurationError
from ..models import NamespacedNamePair, TransportType
from .base import (
    Transport,
    TransportOptions,
    connection_hostname,
    connection_port,
)
from .null import NullTransport
from .stunnel import StunnelTransport, discover_stunnel_transport


def new_transport(
    transport_type: Union[TransportType, str],
    namespaced_name_pair: NamespacedNamePair,
    options: Optional[TransportOptions] = None,
) -> Transport:
    """Construct the transport variant for transport_type."""
    try:
        transport_type = TransportType(transport_type)
    except ValueError:
        raise ConfigurationError(f"unknown transport type {transport_type!r}") from None
    if transport_type == TransportType.STUNNEL:
        return StunnelTransport(namespaced_name_pair, options)
    return NullTransport(namespaced_name_pair, options)


__all__ = [
    "NullTransport",
    "StunnelTransport",
    "Transport",
    "TransportOptions",
    "connection_hostname",
    "connection_port",
    "discover_stunnel_transport",
    "new_transport",
]
