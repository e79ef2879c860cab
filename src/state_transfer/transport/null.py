"""Transport without a tunnel: the transfer client talks to the endpoint directly."""

from typing import Optional

from ..cluster import ObjectStore
from ..endpoint import Endpoint
from ..models import NamespacedNamePair, TransportType
from .base import Transport, TransportOptions


class NullTransport(Transport):
    transport_type = TransportType.NULL

    def __init__(
        self,
        namespaced_name_pair: NamespacedNamePair,
        options: Optional[TransportOptions] = None,
    ) -> None:
        super().__init__(namespaced_name_pair, options)
        self._direct = True

    def create_server(self, store: ObjectStore, prefix: str, endpoint: Endpoint) -> None:
        self._port = endpoint.port
        self._exposed_port = endpoint.port

    def create_client(self, store: ObjectStore, prefix: str, endpoint: Endpoint) -> None:
        self._port = endpoint.port
        self._exposed_port = endpoint.port
