"""Plain Service endpoints: ClusterIP, NodePort and LoadBalancer."""

from typing import Any, Dict, Mapping, Optional

from ..cluster import Kind, ObjectStore
from ..exceptions import ConfigurationError
from ..labels import merge_labels
from ..models import EndpointType, NamespacedName, ServiceType
from .base import BACKEND_PORT, Endpoint, service_manifest
from .ingress import load_balancer_address

HOSTNAME_LABEL = "hostname"

_ENDPOINT_TYPES = {
    ServiceType.CLUSTER_IP: EndpointType.CLUSTER_IP,
    ServiceType.NODE_PORT: EndpointType.NODE_PORT,
    ServiceType.LOAD_BALANCER: EndpointType.LOAD_BALANCER,
}


def _service_type(value: Any) -> ServiceType:
    try:
        return ServiceType(value)
    except ValueError:
        raise ConfigurationError(f"unsupported service type {value!r}") from None


class ServiceEndpoint(Endpoint):
    """
    A Service reached without a router in front of it.

    The hostname is learned from the live Service: the load-balancer address
    for LoadBalancer, the cluster IP for ClusterIP and NodePort. A ClusterIP
    Service labelled ``hostname`` advertises that name instead, for clusters
    where an external DNS name points at the cluster IP.
    """

    def __init__(
        self,
        namespaced_name: NamespacedName,
        service_type: ServiceType,
        labels: Optional[Mapping[str, str]] = None,
        hostname: Optional[str] = None,
    ) -> None:
        super().__init__(namespaced_name, labels)
        self.service_type = _service_type(service_type)
        self.endpoint_type = _ENDPOINT_TYPES[self.service_type]
        self._hostname = hostname or ""
        self._port = BACKEND_PORT
        self._exposed_port = BACKEND_PORT

    def create(self, store: ObjectStore) -> None:
        self._create_all(store, [self._service])

    def _service(self) -> Dict[str, Any]:
        labels = self.labels
        if self.hostname:
            labels = merge_labels(labels, {HOSTNAME_LABEL: self.hostname})
        return service_manifest(
            self.namespaced_name, labels, self.labels, self.service_type.value, self.port
        )

    def is_healthy(self, store: ObjectStore) -> bool:
        service = store.get(
            Kind.SERVICE, self.namespaced_name.namespace, self.namespaced_name.name
        )
        return self._hydrate(service)

    def _hydrate(self, service: Dict[str, Any]) -> bool:
        spec = service.get("spec") or {}
        service_type = _service_type(spec.get("type", self.service_type.value))
        ports = spec.get("ports") or []
        if ports:
            self._port = ports[0].get("port", self._port)
            self._exposed_port = self._port

        if service_type == ServiceType.LOAD_BALANCER:
            address = load_balancer_address(service)
            if not address:
                return False
            self._hostname = address
            return True

        cluster_ip = spec.get("clusterIP")
        if not cluster_ip or cluster_ip == "None":
            return False
        if service_type == ServiceType.CLUSTER_IP:
            labels = (service.get("metadata") or {}).get("labels") or {}
            self._hostname = labels.get(HOSTNAME_LABEL) or cluster_ip
            return True

        node_port = ports[0].get("nodePort") if ports else None
        if not node_port:
            return False
        self._hostname = cluster_ip
        self._exposed_port = node_port
        return True

    @classmethod
    def discover(
        cls,
        store: ObjectStore,
        namespaced_name: NamespacedName,
        labels: Optional[Mapping[str, str]] = None,
    ) -> Optional["ServiceEndpoint"]:
        """Rebuild an endpoint from an existing Service; None until it is ready."""
        service = store.get(Kind.SERVICE, namespaced_name.namespace, namespaced_name.name)
        spec = service.get("spec") or {}
        if labels is None:
            labels = dict((service.get("metadata") or {}).get("labels") or {})
            labels.pop(HOSTNAME_LABEL, None)
        endpoint = cls(
            namespaced_name, _service_type(spec.get("type", "ClusterIP")), labels=labels
        )
        if not endpoint._hydrate(service):
            return None
        return endpoint


class LoadBalancerEndpoint(ServiceEndpoint):
    """LoadBalancer Service; the hostname is whatever the cloud provider assigns."""

    def __init__(
        self,
        namespaced_name: NamespacedName,
        labels: Optional[Mapping[str, str]] = None,
    ) -> None:
        super().__init__(namespaced_name, ServiceType.LOAD_BALANCER, labels=labels)
