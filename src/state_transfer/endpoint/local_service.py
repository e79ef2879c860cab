"""In-cluster Service endpoint for transfers inside a single cluster."""

from typing import Any, Dict, Mapping, Optional

from ..cluster import Kind, ObjectStore
from ..models import EndpointType, NamespacedName
from .base import Endpoint, service_manifest

LOCAL_SERVICE_PORT = 2222


class LocalServiceEndpoint(Endpoint):
    """ClusterIP Service addressed by its cluster-local DNS name."""

    endpoint_type = EndpointType.LOCAL

    def __init__(
        self,
        namespaced_name: NamespacedName,
        labels: Optional[Mapping[str, str]] = None,
    ) -> None:
        super().__init__(namespaced_name, labels)
        self._hostname = (
            f"{namespaced_name.name}.{namespaced_name.namespace}.svc.cluster.local"
        )
        self._port = LOCAL_SERVICE_PORT
        self._exposed_port = LOCAL_SERVICE_PORT

    def create(self, store: ObjectStore) -> None:
        self._create_all(store, [self._service])

    def _service(self) -> Dict[str, Any]:
        return service_manifest(
            self.namespaced_name, self.labels, self.labels, "ClusterIP", self.port
        )

    def is_healthy(self, store: ObjectStore) -> bool:
        service = store.get(
            Kind.SERVICE, self.namespaced_name.namespace, self.namespaced_name.name
        )
        spec = service.get("spec") or {}
        cluster_ips = spec.get("clusterIPs") or (
            [spec["clusterIP"]] if spec.get("clusterIP") else []
        )
        return any(ip and ip != "None" for ip in cluster_ips)
