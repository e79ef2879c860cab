"""Ingress endpoint using the nginx ingress controller in TLS passthrough mode."""

from typing import Any, Dict, Mapping, Optional

from ..cluster import Kind, ObjectStore
from ..models import EndpointType, NamespacedName
from .base import (
    BACKEND_PORT,
    ROUTED_EXPOSED_PORT,
    Endpoint,
    routed_hostname,
    service_manifest,
)

SSL_PASSTHROUGH_ANNOTATION = "nginx.ingress.kubernetes.io/ssl-passthrough"


class IngressEndpoint(Endpoint):
    """NodePort Service fronted by an ssl-passthrough Ingress."""

    endpoint_type = EndpointType.INGRESS

    def __init__(
        self,
        namespaced_name: NamespacedName,
        labels: Optional[Mapping[str, str]] = None,
        subdomain: Optional[str] = None,
    ) -> None:
        super().__init__(namespaced_name, labels)
        self.subdomain = subdomain
        self._port = BACKEND_PORT
        self._exposed_port = ROUTED_EXPOSED_PORT
        if subdomain:
            self._hostname = routed_hostname(
                namespaced_name.name, namespaced_name.namespace, subdomain
            )

    def create(self, store: ObjectStore) -> None:
        self._create_all(store, [self._service, self._ingress])

    def _service(self) -> Dict[str, Any]:
        return service_manifest(
            self.namespaced_name, self.labels, self.labels, "NodePort", self.port
        )

    def _ingress(self) -> Dict[str, Any]:
        rule: Dict[str, Any] = {
            "http": {
                "paths": [
                    {
                        "path": "/",
                        "pathType": "Prefix",
                        "backend": {
                            "service": {
                                "name": self.namespaced_name.name,
                                "port": {"number": self.port},
                            }
                        },
                    }
                ]
            }
        }
        if self.hostname:
            rule["host"] = self.hostname
        ingress = Kind.INGRESS.manifest(
            self.namespaced_name.name,
            self.namespaced_name.namespace,
            self.labels,
            spec={"rules": [rule]},
        )
        ingress["metadata"]["annotations"] = {SSL_PASSTHROUGH_ANNOTATION: "true"}
        return ingress

    def is_healthy(self, store: ObjectStore) -> bool:
        ingress = store.get(
            Kind.INGRESS, self.namespaced_name.namespace, self.namespaced_name.name
        )
        address = load_balancer_address(ingress)
        if not address:
            return False
        if not self._hostname:
            self._hostname = address
        return True

    @classmethod
    def discover(
        cls,
        store: ObjectStore,
        namespaced_name: NamespacedName,
        labels: Optional[Mapping[str, str]] = None,
    ) -> Optional["IngressEndpoint"]:
        """Rebuild an endpoint from an existing Ingress; None until it has an address."""
        ingress = store.get(Kind.INGRESS, namespaced_name.namespace, namespaced_name.name)
        address = load_balancer_address(ingress)
        if not address:
            return None
        if labels is None:
            labels = (ingress.get("metadata") or {}).get("labels")
        endpoint = cls(namespaced_name, labels=labels)
        rules = (ingress.get("spec") or {}).get("rules") or []
        endpoint._hostname = (rules[0].get("host") if rules else None) or address
        return endpoint


def load_balancer_address(obj: Dict[str, Any]) -> str:
    """Hostname, or failing that IP, of the first load-balancer ingress in status."""
    ingresses = ((obj.get("status") or {}).get("loadBalancer") or {}).get("ingress") or []
    if not ingresses:
        return ""
    return ingresses[0].get("hostname") or ingresses[0].get("ip") or ""
