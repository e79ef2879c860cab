"""
Transport base class.

A transport sits between a transfer's client and server. It contributes
side-car containers and volumes to both pods and decides where the transfer
client has to connect.
"""

import copy
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from ..cluster import ObjectStore
from ..endpoint import Endpoint
from ..models import NamespacedNamePair, TransportType

DEFAULT_STUNNEL_IMAGE = "quay.io/konveyor/rsync-transfer:latest"


@dataclass
class TransportOptions:
    """Tunnel settings supplied by the caller."""

    proxy_url: Optional[str] = None
    proxy_username: Optional[str] = None
    proxy_password: Optional[str] = None
    # verification is off unless explicitly enabled
    no_verify_ca: bool = True
    ca_verify_level: Optional[str] = None
    stunnel_client_image: str = DEFAULT_STUNNEL_IMAGE
    stunnel_server_image: str = DEFAULT_STUNNEL_IMAGE


class Transport(ABC):
    """Optional tunnel between transfer client and server."""

    transport_type: TransportType

    def __init__(
        self,
        namespaced_name_pair: NamespacedNamePair,
        options: Optional[TransportOptions] = None,
    ) -> None:
        self._namespaced_name_pair = namespaced_name_pair
        self._options = options or TransportOptions()
        self._ca = b""
        self._crt = b""
        self._key = b""
        self._port = 0
        self._exposed_port = 0
        self._direct = False
        self._server_containers: List[Dict[str, Any]] = []
        self._server_volumes: List[Dict[str, Any]] = []
        self._client_containers: List[Dict[str, Any]] = []
        self._client_volumes: List[Dict[str, Any]] = []

    @property
    def namespaced_name_pair(self) -> NamespacedNamePair:
        return self._namespaced_name_pair

    @property
    def options(self) -> TransportOptions:
        return self._options

    @property
    def ca(self) -> bytes:
        return self._ca

    @property
    def crt(self) -> bytes:
        return self._crt

    @property
    def key(self) -> bytes:
        return self._key

    @property
    def port(self) -> int:
        """Port the transfer client connects to when the transport is not direct."""
        return self._port

    @property
    def exposed_port(self) -> int:
        """Port the transfer server listens on behind the transport."""
        return self._exposed_port

    @property
    def direct(self) -> bool:
        return self._direct

    @property
    def server_containers(self) -> List[Dict[str, Any]]:
        return copy.deepcopy(self._server_containers)

    @property
    def server_volumes(self) -> List[Dict[str, Any]]:
        return copy.deepcopy(self._server_volumes)

    @property
    def client_containers(self) -> List[Dict[str, Any]]:
        return copy.deepcopy(self._client_containers)

    @property
    def client_volumes(self) -> List[Dict[str, Any]]:
        return copy.deepcopy(self._client_volumes)

    @abstractmethod
    def create_server(self, store: ObjectStore, prefix: str, endpoint: Endpoint) -> None:
        """Create or update the server-side objects in the destination cluster."""

    @abstractmethod
    def create_client(self, store: ObjectStore, prefix: str, endpoint: Endpoint) -> None:
        """Create or update the client-side objects in the source cluster."""


def connection_hostname(transport: Transport, endpoint: Endpoint) -> str:
    """Host the transfer client connects to."""
    if transport.direct:
        return endpoint.hostname
    return "localhost"


def connection_port(transport: Transport, endpoint: Endpoint) -> int:
    """Port the transfer client connects to."""
    if transport.direct:
        return endpoint.port
    return transport.port
