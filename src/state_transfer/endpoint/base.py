"""
Endpoint base class and shared manifest builders.

An endpoint is the network entry point created in the destination cluster
that the transfer client connects to.
"""

import hashlib
import time
from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, List, Mapping, Optional

from ..cluster import Kind, ObjectStore, ignore_already_exists
from ..exceptions import ClusterAPIError, PartialCreationError
from ..labels import default_labels, validate_labels
from ..logging import logger
from ..models import EndpointType, NamespacedName

BACKEND_PORT = 6443
EDGE_BACKEND_PORT = 8080
ROUTED_EXPOSED_PORT = 443
MAX_HOSTNAME_PREFIX = 62


def routed_hostname(name: str, namespace: str, subdomain: Optional[str]) -> str:
    """
    Hostname for a routed endpoint: ``{name}-{namespace}.{subdomain}``.

    When the first DNS label would exceed 62 characters the namespace is
    replaced by its md5 digest. If that is still too long, as with the
    hashed rclone endpoint names, the whole prefix is hashed.
    """
    prefix = f"{name}-{namespace}"
    if len(prefix) > MAX_HOSTNAME_PREFIX:
        prefix = f"{name}-{hashlib.md5(namespace.encode('utf-8')).hexdigest()}"
    if len(prefix) > MAX_HOSTNAME_PREFIX:
        prefix = hashlib.md5(f"{name}-{namespace}".encode("utf-8")).hexdigest()
    if subdomain:
        return f"{prefix}.{subdomain}"
    return prefix


def service_manifest(
    namespaced_name: NamespacedName,
    labels: Mapping[str, str],
    selector: Mapping[str, str],
    service_type: str,
    port: int,
) -> Dict[str, Any]:
    return Kind.SERVICE.manifest(
        namespaced_name.name,
        namespaced_name.namespace,
        labels,
        spec={
            "type": service_type,
            "selector": dict(selector),
            "ports": [
                {
                    "name": namespaced_name.name,
                    "protocol": "TCP",
                    "port": port,
                    "targetPort": port,
                }
            ],
        },
    )


class Endpoint(ABC):
    """A destination-side network entry point."""

    endpoint_type: EndpointType

    def __init__(
        self,
        namespaced_name: NamespacedName,
        labels: Optional[Mapping[str, str]] = None,
    ) -> None:
        self._namespaced_name = namespaced_name
        self._labels = validate_labels(
            labels if labels is not None else default_labels()
        )
        self._hostname = ""
        self._port = 0
        self._exposed_port = 0

    @property
    def namespaced_name(self) -> NamespacedName:
        return self._namespaced_name

    @property
    def labels(self) -> Dict[str, str]:
        """Copy of the endpoint labels; services select pods by these."""
        return dict(self._labels)

    @property
    def hostname(self) -> str:
        return self._hostname

    @property
    def port(self) -> int:
        """Port the backing service forwards to inside the pod."""
        return self._port

    @property
    def exposed_port(self) -> int:
        """Port clients connect to from outside."""
        return self._exposed_port

    @abstractmethod
    def create(self, store: ObjectStore) -> None:
        """Create the backing objects in the destination cluster."""

    @abstractmethod
    def is_healthy(self, store: ObjectStore) -> bool:
        """Poll the live objects; may fill in hostname and ports."""

    def destroy(self, store: ObjectStore) -> None:
        """Teardown is left to the caller."""

    def _create_all(
        self, store: ObjectStore, builders: List[Callable[[], Dict[str, Any]]]
    ) -> None:
        # every object is attempted; failures are reported together
        errors: List[Exception] = []
        for build in builders:
            obj = build()
            try:
                ignore_already_exists(lambda: store.create(obj))
            except ClusterAPIError as e:
                errors.append(e)
        if errors:
            raise PartialCreationError(
                f"{self.endpoint_type.value} endpoint {self.namespaced_name}", errors
            )

    def __repr__(self) -> str:
        return (
            f"{type(self).__name__}({self.namespaced_name}, "
            f"hostname={self.hostname!r}, port={self.port}, "
            f"exposed_port={self.exposed_port})"
        )


def wait_for_healthy(
    endpoint: Endpoint,
    store: ObjectStore,
    interval: float = 5.0,
    sleep: Callable[[float], None] = time.sleep,
) -> Endpoint:
    """
    Block until the endpoint reports healthy.

    There is no deadline; callers needing one must impose it themselves.

    Args:
        endpoint: Endpoint to poll
        store: Destination cluster
        interval: Seconds between polls
        sleep: Sleep function, replaceable in tests

    Returns:
        Endpoint: The same endpoint, with hostname and ports populated
    """
    while not endpoint.is_healthy(store):
        logger.debug(
            f"Endpoint {endpoint.namespaced_name} not healthy yet",
            namespace=endpoint.namespaced_name.namespace,
            object_name=endpoint.namespaced_name.name,
        )
        sleep(interval)
    logger.info(
        f"Endpoint {endpoint.namespaced_name} is healthy",
        hostname=endpoint.hostname,
        exposed_port=endpoint.exposed_port,
    )
    return endpoint
