"""Unit tests for endpoints."""

import hashlib

import pytest

from state_transfer.cluster import Kind
from state_transfer.endpoint import (
    IngressEndpoint,
    LoadBalancerEndpoint,
    LocalServiceEndpoint,
    RouteEndpoint,
    ServiceEndpoint,
    discover_endpoint,
    new_endpoint,
    routed_hostname,
    wait_for_healthy,
)
from state_transfer.endpoint.route import route_host
from state_transfer.exceptions import (
    ClusterAPIError,
    ConfigurationError,
    NotFoundError,
    PartialCreationError,
    ValidationError,
)
from state_transfer.models import EndpointType, NamespacedName, ServiceType
from state_transfer.security import SecurityValidator

NN = NamespacedName("dest", "rsync-server")
LABELS = {"app": "crane2"}

ADMITTED = {
    "ingress": [
        {
            "host": "rsync-server-dest.apps.example.com",
            "conditions": [{"type": "Admitted", "status": "True"}],
        }
    ]
}


class TestRoutedHostname:
    """Test routed_hostname."""

    def test_short_name(self):
        """Test name, namespace and subdomain are joined."""
        assert routed_hostname("rsync-server", "dest", "apps.example.com") == (
            "rsync-server-dest.apps.example.com"
        )

    def test_without_subdomain(self):
        """Test only the prefix is returned without a subdomain."""
        assert routed_hostname("a", "b", None) == "a-b"

    def test_long_namespace_is_hashed(self):
        """Test a prefix over 62 characters replaces the namespace with its md5."""
        namespace = "n" * 60
        digest = hashlib.md5(namespace.encode()).hexdigest()
        assert routed_hostname("rsync-server", namespace, "apps") == f"rsync-server-{digest}.apps"

    def test_prefix_of_exactly_62_is_kept(self):
        """Test the namespace is kept at the 62 character boundary."""
        namespace = "n" * (62 - len("rsync-server-"))
        assert routed_hostname("rsync-server", namespace, None) == f"rsync-server-{namespace}"

    def test_long_name_and_namespace_hashed_together(self):
        """Test a hashed endpoint name with a long namespace still yields a valid label."""
        name = "rclone-" + hashlib.md5(b"data").hexdigest()
        namespace = "my-application-production"
        hostname = routed_hostname(name, namespace, "apps.example.com")
        first_label = hostname.split(".")[0]
        assert SecurityValidator.is_dns1123_label(first_label)
        assert first_label == hashlib.md5(f"{name}-{namespace}".encode()).hexdigest()
        assert routed_hostname(name, "other-application-production", None) != first_label


class TestRouteEndpoint:
    """Test RouteEndpoint."""

    def test_passthrough_ports(self):
        """Test passthrough routes forward to 6443 and expose 443."""
        endpoint = RouteEndpoint(NN, EndpointType.PASSTHROUGH, LABELS, "apps.example.com")
        assert endpoint.port == 6443
        assert endpoint.exposed_port == 443
        assert endpoint.hostname == "rsync-server-dest.apps.example.com"

    def test_edge_ports(self):
        """Test edge routes forward to 8080."""
        assert RouteEndpoint(NN, EndpointType.EDGE, LABELS).port == 8080

    def test_invalid_route_type(self):
        """Test only edge and passthrough are route types."""
        with pytest.raises(ConfigurationError):
            RouteEndpoint(NN, EndpointType.INGRESS, LABELS)

    def test_create_objects(self, store):
        """Test a ClusterIP Service and a Route are created."""
        RouteEndpoint(NN, EndpointType.EDGE, LABELS, "apps.example.com").create(store)
        service = store.stored(Kind.SERVICE, "dest", "rsync-server")
        assert service["spec"]["type"] == "ClusterIP"
        assert service["spec"]["selector"] == LABELS
        assert service["spec"]["ports"][0]["port"] == 8080
        route = store.stored(Kind.ROUTE, "dest", "rsync-server")
        assert route["spec"]["tls"] == {
            "termination": "edge",
            "insecureEdgeTerminationPolicy": "Allow",
        }
        assert route["spec"]["host"] == "rsync-server-dest.apps.example.com"
        assert route["spec"]["to"] == {"kind": "Service", "name": "rsync-server"}

    def test_route_without_subdomain_has_no_host(self, store):
        """Test the router picks the host when no subdomain is given."""
        RouteEndpoint(NN, EndpointType.PASSTHROUGH, LABELS).create(store)
        route = store.stored(Kind.ROUTE, "dest", "rsync-server")
        assert "host" not in route["spec"]
        assert route["spec"]["tls"] == {"termination": "passthrough"}

    def test_create_is_idempotent(self, store):
        """Test existing objects are left alone on a second create."""
        endpoint = RouteEndpoint(NN, EndpointType.PASSTHROUGH, LABELS)
        endpoint.create(store)
        endpoint.create(store)
        assert len(store.of_kind(Kind.ROUTE)) == 1

    def test_partial_creation(self, store):
        """Test every object is attempted and failures are reported together."""
        store.create_errors[Kind.SERVICE] = ClusterAPIError("denied", status=403)
        with pytest.raises(PartialCreationError) as exc_info:
            RouteEndpoint(NN, EndpointType.PASSTHROUGH, LABELS).create(store)
        assert len(exc_info.value.errors) == 1
        assert len(store.of_kind(Kind.ROUTE)) == 1

    def test_health_requires_admission(self, store):
        """Test the endpoint is healthy once the route is admitted."""
        endpoint = RouteEndpoint(NN, EndpointType.PASSTHROUGH, LABELS)
        endpoint.create(store)
        assert not endpoint.is_healthy(store)
        store.stored(Kind.ROUTE, "dest", "rsync-server")["status"] = ADMITTED
        assert endpoint.is_healthy(store)
        assert endpoint.hostname == "rsync-server-dest.apps.example.com"

    def test_route_host_ignores_unadmitted(self):
        """Test a router ingress that is not admitted is skipped."""
        route = {
            "spec": {"host": "h"},
            "status": {
                "ingress": [{"conditions": [{"type": "Admitted", "status": "False"}]}]
            },
        }
        assert route_host(route) == ""

    def test_discover(self, store):
        """Test an admitted route is rebuilt with its type and port."""
        RouteEndpoint(NN, EndpointType.EDGE, LABELS).create(store)
        store.stored(Kind.ROUTE, "dest", "rsync-server")["status"] = ADMITTED
        endpoint = RouteEndpoint.discover(store, NN)
        assert endpoint.endpoint_type == EndpointType.EDGE
        assert endpoint.port == 8080
        assert endpoint.labels == LABELS
        assert endpoint.hostname == "rsync-server-dest.apps.example.com"

    def test_discover_not_admitted(self, store):
        """Test discovery returns None before admission."""
        RouteEndpoint(NN, EndpointType.PASSTHROUGH, LABELS).create(store)
        assert RouteEndpoint.discover(store, NN) is None


class TestIngressEndpoint:
    """Test IngressEndpoint."""

    def test_create_objects(self, store):
        """Test a NodePort Service and an ssl-passthrough Ingress are created."""
        IngressEndpoint(NN, LABELS, "apps.example.com").create(store)
        service = store.stored(Kind.SERVICE, "dest", "rsync-server")
        assert service["spec"]["type"] == "NodePort"
        ingress = store.stored(Kind.INGRESS, "dest", "rsync-server")
        annotations = ingress["metadata"]["annotations"]
        assert annotations == {"nginx.ingress.kubernetes.io/ssl-passthrough": "true"}
        rule = ingress["spec"]["rules"][0]
        assert rule["host"] == "rsync-server-dest.apps.example.com"
        backend = rule["http"]["paths"][0]["backend"]["service"]
        assert backend == {"name": "rsync-server", "port": {"number": 6443}}

    def test_health_requires_address(self, store):
        """Test the ingress is healthy once it has a load-balancer address."""
        endpoint = IngressEndpoint(NN, LABELS)
        endpoint.create(store)
        assert not endpoint.is_healthy(store)
        store.stored(Kind.INGRESS, "dest", "rsync-server")["status"] = {
            "loadBalancer": {"ingress": [{"ip": "10.1.1.1"}]}
        }
        assert endpoint.is_healthy(store)
        assert endpoint.hostname == "10.1.1.1"
        assert endpoint.exposed_port == 443

    def test_discover_prefers_rule_host(self, store):
        """Test the rule host wins over the load-balancer address."""
        IngressEndpoint(NN, LABELS, "apps.example.com").create(store)
        store.stored(Kind.INGRESS, "dest", "rsync-server")["status"] = {
            "loadBalancer": {"ingress": [{"hostname": "lb.example.com"}]}
        }
        endpoint = IngressEndpoint.discover(store, NN)
        assert endpoint.hostname == "rsync-server-dest.apps.example.com"


class TestServiceEndpoint:
    """Test the plain Service endpoints."""

    def set_status(self, store, **spec):
        service = store.stored(Kind.SERVICE, "dest", "rsync-server")
        service["spec"].update(spec)
        return service

    def test_cluster_ip(self, store):
        """Test a ClusterIP endpoint advertises its cluster IP."""
        endpoint = ServiceEndpoint(NN, ServiceType.CLUSTER_IP, LABELS)
        endpoint.create(store)
        assert not endpoint.is_healthy(store)
        self.set_status(store, clusterIP="172.30.0.10")
        assert endpoint.is_healthy(store)
        assert endpoint.hostname == "172.30.0.10"
        assert endpoint.exposed_port == 6443

    def test_cluster_ip_hostname_label(self, store):
        """Test a given hostname is stored as a label and advertised."""
        endpoint = ServiceEndpoint(NN, ServiceType.CLUSTER_IP, LABELS, hostname="rsync.example.com")
        endpoint.create(store)
        service = self.set_status(store, clusterIP="172.30.0.10")
        assert service["metadata"]["labels"]["hostname"] == "rsync.example.com"
        assert service["spec"]["selector"] == LABELS
        assert endpoint.is_healthy(store)
        assert endpoint.hostname == "rsync.example.com"

    def test_node_port(self, store):
        """Test a NodePort endpoint exposes the allocated node port."""
        endpoint = new_endpoint("nodeport", NN, LABELS)
        endpoint.create(store)
        self.set_status(
            store,
            clusterIP="172.30.0.11",
            ports=[{"name": "rsync-server", "port": 6443, "nodePort": 31000}],
        )
        assert endpoint.is_healthy(store)
        assert endpoint.port == 6443
        assert endpoint.exposed_port == 31000

    def test_headless_service_not_healthy(self, store):
        """Test a headless Service never becomes healthy."""
        endpoint = ServiceEndpoint(NN, ServiceType.CLUSTER_IP, LABELS)
        endpoint.create(store)
        self.set_status(store, clusterIP="None")
        assert not endpoint.is_healthy(store)

    def test_load_balancer(self, store):
        """Test a LoadBalancer endpoint advertises the assigned address."""
        endpoint = LoadBalancerEndpoint(NN, LABELS)
        endpoint.create(store)
        assert store.stored(Kind.SERVICE, "dest", "rsync-server")["spec"]["type"] == "LoadBalancer"
        assert not endpoint.is_healthy(store)
        store.stored(Kind.SERVICE, "dest", "rsync-server")["status"] = {
            "loadBalancer": {"ingress": [{"hostname": "lb.example.com"}]}
        }
        assert endpoint.is_healthy(store)
        assert endpoint.hostname == "lb.example.com"

    def test_discover_drops_hostname_label(self, store):
        """Test discovered labels exclude the hostname label."""
        ServiceEndpoint(NN, ServiceType.CLUSTER_IP, LABELS, hostname="rsync.example.com").create(store)
        self.set_status(store, clusterIP="172.30.0.10")
        endpoint = ServiceEndpoint.discover(store, NN)
        assert endpoint.labels == LABELS
        assert endpoint.hostname == "rsync.example.com"

    def test_unsupported_service_type(self):
        """Test an unknown service type raises ConfigurationError."""
        with pytest.raises(ConfigurationError):
            ServiceEndpoint(NN, "ExternalName", LABELS)


class TestLocalServiceEndpoint:
    """Test LocalServiceEndpoint."""

    def test_cluster_local_hostname(self):
        """Test the hostname is the cluster-local service DNS name."""
        endpoint = LocalServiceEndpoint(NN, LABELS)
        assert endpoint.hostname == "rsync-server.dest.svc.cluster.local"
        assert endpoint.port == endpoint.exposed_port == 2222

    def test_healthy_with_cluster_ips(self, store):
        """Test the endpoint is healthy once a cluster IP is assigned."""
        endpoint = LocalServiceEndpoint(NN, LABELS)
        endpoint.create(store)
        assert not endpoint.is_healthy(store)
        store.stored(Kind.SERVICE, "dest", "rsync-server")["spec"]["clusterIPs"] = ["10.0.0.1"]
        assert endpoint.is_healthy(store)


class TestEndpointLabels:
    """Test label handling shared by all endpoints."""

    def test_default_labels(self):
        """Test endpoints default to the app=crane2 label."""
        assert LocalServiceEndpoint(NN).labels == {"app": "crane2"}

    def test_invalid_labels_rejected(self):
        """Test invalid labels fail at construction."""
        with pytest.raises(ValidationError):
            LocalServiceEndpoint(NN, {"app": "not valid!"})


class TestEndpointFactory:
    """Test new_endpoint and discover_endpoint."""

    @pytest.mark.parametrize(
        "endpoint_type,cls",
        [
            ("edge", RouteEndpoint),
            ("passthrough", RouteEndpoint),
            ("ingress", IngressEndpoint),
            ("loadbalancer", LoadBalancerEndpoint),
            ("clusterip", ServiceEndpoint),
            ("nodeport", ServiceEndpoint),
            (EndpointType.LOCAL, LocalServiceEndpoint),
        ],
    )
    def test_new_endpoint(self, endpoint_type, cls):
        """Test every endpoint type maps to its class."""
        endpoint = new_endpoint(endpoint_type, NN, LABELS, subdomain="apps.example.com")
        assert isinstance(endpoint, cls)
        assert endpoint.endpoint_type == EndpointType(endpoint_type)

    def test_unknown_type(self):
        """Test an unknown type raises ConfigurationError."""
        with pytest.raises(ConfigurationError, match="unknown endpoint type"):
            new_endpoint("gateway", NN)

    def test_discover_missing(self, store):
        """Test discovering a missing object raises NotFoundError."""
        with pytest.raises(NotFoundError):
            discover_endpoint("clusterip", store, NN)

    def test_discover_local(self, store):
        """Test a local endpoint is discovered once healthy."""
        LocalServiceEndpoint(NN, LABELS).create(store)
        assert discover_endpoint("local", store, NN, LABELS) is None
        store.stored(Kind.SERVICE, "dest", "rsync-server")["spec"]["clusterIP"] = "10.0.0.1"
        assert isinstance(discover_endpoint("local", store, NN, LABELS), LocalServiceEndpoint)


class TestWaitForHealthy:
    """Test wait_for_healthy."""

    def test_polls_until_healthy(self, store):
        """Test the endpoint is polled with the given interval until healthy."""
        endpoint = LocalServiceEndpoint(NN, LABELS)
        endpoint.create(store)
        sleeps = []

        def fake_sleep(seconds):
            sleeps.append(seconds)
            if len(sleeps) == 2:
                store.stored(Kind.SERVICE, "dest", "rsync-server")["spec"]["clusterIP"] = "10.0.0.1"

        assert wait_for_healthy(endpoint, store, interval=0.5, sleep=fake_sleep) is endpoint
        assert sleeps == [0.5, 0.5]

    def test_not_found_propagates(self, store):
        """Test a missing backing object is raised, not retried."""
        with pytest.raises(NotFoundError):
            wait_for_healthy(LocalServiceEndpoint(NN, LABELS), store, sleep=lambda _: None)
