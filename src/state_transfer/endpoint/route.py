"""OpenShift Route endpoint."""

from typing import Any, Dict, Mapping, Optional

from ..cluster import Kind, ObjectStore
from ..exceptions import ConfigurationError
from ..models import EndpointType, NamespacedName
from .base import (
    BACKEND_PORT,
    EDGE_BACKEND_PORT,
    ROUTED_EXPOSED_PORT,
    Endpoint,
    routed_hostname,
    service_manifest,
)

ROUTE_TYPES = (EndpointType.EDGE, EndpointType.PASSTHROUGH)


class RouteEndpoint(Endpoint):
    """
    Route plus ClusterIP Service.

    Edge routes terminate TLS at the router and forward plain traffic to port
    8080; passthrough routes forward the TLS stream untouched to port 6443.
    Either way clients connect on 443.
    """

    def __init__(
        self,
        namespaced_name: NamespacedName,
        route_type: EndpointType,
        labels: Optional[Mapping[str, str]] = None,
        subdomain: Optional[str] = None,
    ) -> None:
        if route_type not in ROUTE_TYPES:
            raise ConfigurationError(
                f"unsupported route type {route_type!r}, expected edge or passthrough"
            )
        super().__init__(namespaced_name, labels)
        self.endpoint_type = route_type
        self.subdomain = subdomain
        self._port = EDGE_BACKEND_PORT if route_type == EndpointType.EDGE else BACKEND_PORT
        self._exposed_port = ROUTED_EXPOSED_PORT
        if subdomain:
            self._hostname = routed_hostname(
                namespaced_name.name, namespaced_name.namespace, subdomain
            )

    def create(self, store: ObjectStore) -> None:
        self._create_all(store, [self._service, self._route])

    def _service(self) -> Dict[str, Any]:
        return service_manifest(
            self.namespaced_name, self.labels, self.labels, "ClusterIP", self.port
        )

    def _route(self) -> Dict[str, Any]:
        if self.endpoint_type == EndpointType.EDGE:
            tls = {"termination": "edge", "insecureEdgeTerminationPolicy": "Allow"}
        else:
            tls = {"termination": "passthrough"}
        spec: Dict[str, Any] = {
            "to": {"kind": "Service", "name": self.namespaced_name.name},
            "port": {"targetPort": self.port},
            "tls": tls,
        }
        if self.hostname:
            spec["host"] = self.hostname
        return Kind.ROUTE.manifest(
            self.namespaced_name.name,
            self.namespaced_name.namespace,
            self.labels,
            spec=spec,
        )

    def is_healthy(self, store: ObjectStore) -> bool:
        route = store.get(
            Kind.ROUTE, self.namespaced_name.namespace, self.namespaced_name.name
        )
        host = route_host(route)
        if not host:
            return False
        self._hostname = host
        return True

    @classmethod
    def discover(
        cls,
        store: ObjectStore,
        namespaced_name: NamespacedName,
        labels: Optional[Mapping[str, str]] = None,
    ) -> Optional["RouteEndpoint"]:
        """
        Rebuild an endpoint from an existing, admitted Route.

        Returns:
            Optional[RouteEndpoint]: None when the Route is not admitted yet

        Raises:
            NotFoundError: If the Route does not exist
        """
        route = store.get(Kind.ROUTE, namespaced_name.namespace, namespaced_name.name)
        host = route_host(route)
        if not host:
            return None
        spec = route.get("spec") or {}
        termination = (spec.get("tls") or {}).get("termination")
        route_type = EndpointType.EDGE if termination == "edge" else EndpointType.PASSTHROUGH
        if labels is None:
            labels = (route.get("metadata") or {}).get("labels")
        endpoint = cls(namespaced_name, route_type, labels=labels)
        endpoint._hostname = host
        target_port = (spec.get("port") or {}).get("targetPort")
        if isinstance(target_port, int):
            endpoint._port = target_port
        return endpoint


def route_host(route: Dict[str, Any]) -> str:
    """Host of the first admitted router ingress, or "" if not admitted."""
    spec_host = (route.get("spec") or {}).get("host", "")
    for ingress in (route.get("status") or {}).get("ingress") or []:
        admitted = any(
            condition.get("type") == "Admitted" and condition.get("status") == "True"
            for condition in ingress.get("conditions") or []
        )
        if admitted:
            host = ingress.get("host") or spec_host
            if host:
                return host
    return ""
