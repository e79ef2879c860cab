"""Destination-side network entry points."""

from typing import Mapping, Optional, Union

from ..cluster import ObjectStore
from ..exceptions import ConfigurationError
from ..models import EndpointType, NamespacedName, ServiceType
from .base import Endpoint, routed_hostname, wait_for_healthy
from .ingress import IngressEndpoint
from .local_service import LocalServiceEndpoint
from .route import RouteEndpoint
from .service import LoadBalancerEndpoint, ServiceEndpoint


def _endpoint_type(value: Union[EndpointType, str]) -> EndpointType:
    try:
        return EndpointType(value)
    except ValueError:
        raise ConfigurationError(f"unknown endpoint type {value!r}") from None


def new_endpoint(
    endpoint_type: Union[EndpointType, str],
    namespaced_name: NamespacedName,
    labels: Optional[Mapping[str, str]] = None,
    subdomain: Optional[str] = None,
    hostname: Optional[str] = None,
) -> Endpoint:
    """
    Construct the endpoint variant for endpoint_type.

    Args:
        endpoint_type: One of the EndpointType values
        namespaced_name: Name and namespace of the backing objects
        labels: Labels for the backing objects and service selector
        subdomain: Cluster apps domain, used by route and ingress endpoints
        hostname: Advertised hostname, used by ClusterIP and NodePort endpoints

    Raises:
        ConfigurationError: If the type is unknown
    """
    endpoint_type = _endpoint_type(endpoint_type)
    if endpoint_type in (EndpointType.EDGE, EndpointType.PASSTHROUGH):
        return RouteEndpoint(namespaced_name, endpoint_type, labels, subdomain)
    if endpoint_type == EndpointType.INGRESS:
        return IngressEndpoint(namespaced_name, labels, subdomain)
    if endpoint_type == EndpointType.LOAD_BALANCER:
        return LoadBalancerEndpoint(namespaced_name, labels)
    if endpoint_type == EndpointType.CLUSTER_IP:
        return ServiceEndpoint(namespaced_name, ServiceType.CLUSTER_IP, labels, hostname)
    if endpoint_type == EndpointType.NODE_PORT:
        return ServiceEndpoint(namespaced_name, ServiceType.NODE_PORT, labels, hostname)
    return LocalServiceEndpoint(namespaced_name, labels)


def discover_endpoint(
    endpoint_type: Union[EndpointType, str],
    store: ObjectStore,
    namespaced_name: NamespacedName,
    labels: Optional[Mapping[str, str]] = None,
) -> Optional[Endpoint]:
    """
    Hydrate an endpoint from objects that already exist, creating nothing.

    Returns:
        Optional[Endpoint]: None while the objects are not ready

    Raises:
        NotFoundError: If the backing object does not exist
        ConfigurationError: If the type cannot be discovered
    """
    endpoint_type = _endpoint_type(endpoint_type)
    if endpoint_type in (EndpointType.EDGE, EndpointType.PASSTHROUGH):
        return RouteEndpoint.discover(store, namespaced_name, labels)
    if endpoint_type == EndpointType.INGRESS:
        return IngressEndpoint.discover(store, namespaced_name, labels)
    if endpoint_type in (
        EndpointType.LOAD_BALANCER,
        EndpointType.CLUSTER_IP,
        EndpointType.NODE_PORT,
    ):
        return ServiceEndpoint.discover(store, namespaced_name, labels)
    endpoint = LocalServiceEndpoint(namespaced_name, labels)
    return endpoint if endpoint.is_healthy(store) else None


__all__ = [
    "Endpoint",
    "IngressEndpoint",
    "LoadBalancerEndpoint",
    "LocalServiceEndpoint",
    "RouteEndpoint",
    "ServiceEndpoint",
    "discover_endpoint",
    "new_endpoint",
    "routed_hostname",
    "wait_for_healthy",
]
