"""Unit tests for transports."""

import base64

import pytest

from state_transfer.cluster import Kind
from state_transfer.endpoint import RouteEndpoint
from state_transfer.exceptions import ConfigurationError, NotFoundError
from state_transfer.models import EndpointType, NamespacedName, NamespacedNamePair, TransportType
from state_transfer.transport import (
    NullTransport,
    StunnelTransport,
    TransportOptions,
    connection_hostname,
    connection_port,
    discover_stunnel_transport,
    new_transport,
)
from state_transfer.transport.stunnel import render_client_config, render_server_config

PAIR = NamespacedNamePair(NamespacedName("src", "data"), NamespacedName("dest", "data"))


@pytest.fixture
def endpoint():
    return RouteEndpoint(
        NamespacedName("dest", "rsync-server"),
        EndpointType.PASSTHROUGH,
        {"app": "crane2"},
        "apps.example.com",
    )


class TestRenderConfig:
    """Test the stunnel.conf templates."""

    def test_server_config(self):
        """Test the server accepts on the endpoint port and forwards locally."""
        conf = render_server_config(6443, 2222)
        assert "accept = 6443" in conf
        assert "connect = localhost:2222" in conf
        assert "cert = /etc/stunnel/certs/tls.crt" in conf
        assert "TIMEOUTclose = 0" in conf

    def test_client_config_direct(self):
        """Test the client connects straight to the endpoint without a proxy."""
        conf = render_client_config(6443, "rsync.example.com", 443)
        assert "client = yes" in conf
        assert "accept = 6443" in conf
        assert "connect = rsync.example.com:443" in conf
        assert "protocol = connect" not in conf
        assert "verify" not in conf

    def test_client_config_proxy(self):
        """Test a proxy switches to HTTP CONNECT with credentials."""
        options = TransportOptions(
            proxy_url="http://proxy.example.com:3128",
            proxy_username="user",
            proxy_password="pass",
        )
        conf = render_client_config(6443, "rsync.example.com", 443, options)
        assert "protocol = connect" in conf
        assert "connect = proxy.example.com:3128" in conf
        assert "protocolHost = rsync.example.com:443" in conf
        assert "protocolUsername = user" in conf
        assert "protocolPassword = pass" in conf

    def test_client_config_proxy_default_port(self):
        """Test a proxy URL without a port uses the scheme default."""
        options = TransportOptions(proxy_url="proxy.example.com")
        conf = render_client_config(6443, "h", 443, options)
        assert "connect = proxy.example.com:80" in conf
        assert "protocolUsername" not in conf

    def test_client_config_invalid_proxy(self):
        """Test a proxy URL without a host is rejected."""
        with pytest.raises(ConfigurationError, match="invalid proxy url"):
            render_client_config(6443, "h", 443, TransportOptions(proxy_url="http://"))

    def test_client_config_verify(self):
        """Test CA verification adds the verify level and CA file."""
        options = TransportOptions(no_verify_ca=False)
        conf = render_client_config(6443, "h", 443, options)
        assert "verify = 2" in conf
        assert "CAfile = /etc/stunnel/certs/ca.crt" in conf
        options = TransportOptions(no_verify_ca=False, ca_verify_level="4")
        assert "verify = 4" in render_client_config(6443, "h", 443, options)


class TestStunnelTransport:
    """Test StunnelTransport."""

    def test_not_direct(self):
        """Test stunnel is not direct and listens on 2222 behind the tunnel."""
        transport = StunnelTransport(PAIR)
        assert not transport.direct
        assert transport.exposed_port == 2222
        assert transport.transport_type == TransportType.STUNNEL

    def test_create_server(self, store, endpoint, fake_tls):
        """Test the server config map, secret and side-car are created."""
        transport = StunnelTransport(PAIR)
        transport.create_server(store, "abc", endpoint)

        config = store.stored(Kind.CONFIG_MAP, "dest", "crane2-stunnel-server-config-abc")
        assert "accept = 6443" in config["data"]["stunnel.conf"]
        assert "connect = localhost:2222" in config["data"]["stunnel.conf"]
        assert config["metadata"]["labels"] == {
            "app": "crane2",
            "app.kubernetes.io/component": "stunnel",
        }
        secret = store.stored(Kind.SECRET, "dest", "crane2-stunnel-server-secret-abc")
        assert base64.b64decode(secret["data"]["tls.key"]) == b"KEY-PEM"
        assert base64.b64decode(secret["data"]["ca.crt"]) == b"CA-PEM"

        assert transport.port == 6443
        assert transport.crt == fake_tls.crt
        container = transport.server_containers[0]
        assert container["name"] == "stunnel"
        assert container["command"] == ["/bin/stunnel", "/etc/stunnel/stunnel.conf"]
        assert container["ports"][0]["containerPort"] == 6443
        assert [v["name"] for v in transport.server_volumes] == [
            "crane2-stunnel-server-config-abc",
            "crane2-stunnel-server-secret-abc",
        ]

    def test_create_server_without_prefix(self, store, endpoint, fake_tls):
        """Test an empty prefix leaves the base names alone."""
        StunnelTransport(PAIR).create_server(store, "", endpoint)
        store.stored(Kind.CONFIG_MAP, "dest", "crane2-stunnel-server-config")

    def test_create_server_updates_existing(self, store, endpoint, fake_tls):
        """Test a second run updates the existing objects."""
        transport = StunnelTransport(PAIR)
        transport.create_server(store, "abc", endpoint)
        transport.create_server(store, "abc", endpoint)
        assert ("update", "ConfigMap", "crane2-stunnel-server-config-abc") in store.calls
        assert len(store.of_kind(Kind.SECRET)) == 1

    def test_create_client(self, store, endpoint, fake_tls):
        """Test the client objects land in the source namespace."""
        transport = StunnelTransport(PAIR)
        transport.create_server(store, "abc", endpoint)
        transport.create_client(store, "abc", endpoint)

        config = store.stored(Kind.CONFIG_MAP, "src", "crane2-stunnel-client-config-abc")
        conf = config["data"]["stunnel.conf"]
        assert "accept = 6443" in conf
        assert "connect = rsync-server-dest.apps.example.com:443" in conf
        store.stored(Kind.SECRET, "src", "crane2-stunnel-client-secret-abc")
        assert "ports" not in transport.client_containers[0]

    def test_create_client_without_certificate(self, store, endpoint):
        """Test the client cannot be created before the server."""
        with pytest.raises(ConfigurationError, match="server certificate"):
            StunnelTransport(PAIR).create_client(store, "abc", endpoint)

    def test_containers_are_copies(self, store, endpoint, fake_tls):
        """Test callers cannot modify the transport's containers."""
        transport = StunnelTransport(PAIR)
        transport.create_server(store, "abc", endpoint)
        transport.server_containers[0]["name"] = "changed"
        assert transport.server_containers[0]["name"] == "stunnel"


class TestDiscoverStunnelTransport:
    """Test discover_stunnel_transport."""

    def test_discover(self, store_factory, endpoint, fake_tls):
        """Test a transport is rebuilt from existing objects."""
        source, destination = store_factory(), store_factory()
        created = StunnelTransport(PAIR)
        created.create_server(destination, "abc", endpoint)
        created.create_client(source, "abc", endpoint)

        transport = discover_stunnel_transport(source, destination, "abc", PAIR, endpoint)
        assert transport.crt == b"CA-PEM"
        assert transport.key == b"KEY-PEM"
        assert transport.port == 6443
        assert transport.server_containers == created.server_containers
        assert transport.client_containers == created.client_containers

    def test_discover_missing(self, store_factory, endpoint, fake_tls):
        """Test a missing object raises NotFoundError."""
        source, destination = store_factory(), store_factory()
        StunnelTransport(PAIR).create_server(destination, "abc", endpoint)
        with pytest.raises(NotFoundError):
            discover_stunnel_transport(source, destination, "abc", PAIR, endpoint)


class TestNullTransport:
    """Test NullTransport."""

    def test_direct(self, store, endpoint):
        """Test the null transport is direct and adds nothing."""
        transport = NullTransport(PAIR)
        transport.create_server(store, "abc", endpoint)
        transport.create_client(store, "abc", endpoint)
        assert transport.direct
        assert transport.port == transport.exposed_port == 6443
        assert transport.server_containers == []
        assert transport.client_volumes == []
        assert store.objects == {}


class TestConnectionRouting:
    """Test where the transfer client connects."""

    def test_direct_uses_endpoint(self, store, endpoint):
        """Test a direct transport connects to the endpoint."""
        transport = NullTransport(PAIR)
        transport.create_server(store, "abc", endpoint)
        assert connection_hostname(transport, endpoint) == "rsync-server-dest.apps.example.com"
        assert connection_port(transport, endpoint) == 6443

    def test_tunnel_uses_localhost(self, store, endpoint, fake_tls):
        """Test a tunnelled transport connects to the local side-car."""
        transport = StunnelTransport(PAIR)
        transport.create_server(store, "abc", endpoint)
        assert connection_hostname(transport, endpoint) == "localhost"
        assert connection_port(transport, endpoint) == 6443


class TestTransportFactory:
    """Test new_transport."""

    def test_new_transport(self):
        """Test both transport types are constructed."""
        assert isinstance(new_transport("stunnel", PAIR), StunnelTransport)
        assert isinstance(new_transport(TransportType.NULL, PAIR), NullTransport)

    def test_options_default(self):
        """Test default options skip CA verification."""
        assert new_transport("null", PAIR).options.no_verify_ca is True

    def test_unknown_transport(self):
        """Test an unknown type raises ConfigurationError."""
        with pytest.raises(ConfigurationError, match="unknown transport type"):
            new_transport("wireguard", PAIR)
