"""
stunnel transport.

The server side terminates TLS on the endpoint port and forwards to the
transfer server on localhost; the client side accepts plain connections on a
local port and opens the TLS connection to the endpoint. Both sides share one
self-signed certificate that also acts as its own CA.
"""

from typing import Any, Dict, List, Optional
from urllib.parse import urlparse

from ..cluster import (
    Kind,
    ObjectStore,
    create_or_update,
    decode_secret_data,
    encode_secret_data,
)
from ..endpoint import Endpoint
from ..exceptions import ConfigurationError
from ..labels import merge_labels
from ..logging import logger
from ..models import NamespacedNamePair, TransportType
from ..security import generate_ssl_cert
from ..templates import render
from .base import Transport, TransportOptions

STUNNEL_CONTAINER = "stunnel"
STUNNEL_CONFIG_KEY = "stunnel.conf"
STUNNEL_CONFIG_PATH = "/etc/stunnel/stunnel.conf"
STUNNEL_CERT_DIR = "/etc/stunnel/certs"
STUNNEL_EXPOSED_PORT = 2222
DEFAULT_CA_VERIFY_LEVEL = "2"

SERVER_CONFIG_NAME = "crane2-stunnel-server-config"
SERVER_SECRET_NAME = "crane2-stunnel-server-secret"
CLIENT_CONFIG_NAME = "crane2-stunnel-client-config"
CLIENT_SECRET_NAME = "crane2-stunnel-client-secret"

STUNNEL_LABELS = {"app.kubernetes.io/component": "stunnel"}


def resource_name(base: str, prefix: str) -> str:
    return f"{base}-{prefix}" if prefix else base


def _proxy_host(proxy_url: str) -> str:
    parsed = urlparse(proxy_url if "://" in proxy_url else f"http://{proxy_url}")
    if not parsed.hostname:
        raise ConfigurationError(f"invalid proxy url {proxy_url!r}")
    port = parsed.port or (443 if parsed.scheme == "https" else 80)
    return f"{parsed.hostname}:{port}"


def render_server_config(accept_port: int, connect_port: int) -> str:
    return render(
        "stunnel-server.conf.j2",
        accept_port=accept_port,
        connect_port=connect_port,
        cert_dir=STUNNEL_CERT_DIR,
    )


def render_client_config(
    accept_port: int,
    hostname: str,
    port: int,
    options: Optional[TransportOptions] = None,
) -> str:
    """
    Render the client side stunnel.conf.

    Args:
        accept_port: Local port the transfer client connects to
        hostname: Endpoint hostname
        port: Endpoint exposed port
        options: Proxy and verification settings
    """
    options = options or TransportOptions()
    verify_level = ""
    ca_file = ""
    if not options.no_verify_ca:
        verify_level = options.ca_verify_level or DEFAULT_CA_VERIFY_LEVEL
        ca_file = f"{STUNNEL_CERT_DIR}/ca.crt"
    return render(
        "stunnel-client.conf.j2",
        accept_port=accept_port,
        hostname=hostname,
        port=port,
        cert_dir=STUNNEL_CERT_DIR,
        proxy_host=_proxy_host(options.proxy_url) if options.proxy_url else "",
        proxy_username=options.proxy_username or "",
        proxy_password=options.proxy_password or "",
        verify_level=verify_level,
        ca_file=ca_file,
    )


def stunnel_container(
    image: str, config_name: str, secret_name: str, port: Optional[int] = None
) -> Dict[str, Any]:
    container: Dict[str, Any] = {
        "name": STUNNEL_CONTAINER,
        "image": image,
        "imagePullPolicy": "IfNotPresent",
        "command": ["/bin/stunnel", STUNNEL_CONFIG_PATH],
        "volumeMounts": [
            {
                "name": config_name,
                "mountPath": STUNNEL_CONFIG_PATH,
                "subPath": STUNNEL_CONFIG_KEY,
            },
            {"name": secret_name, "mountPath": STUNNEL_CERT_DIR},
        ],
    }
    if port:
        container["ports"] = [
            {"name": STUNNEL_CONTAINER, "protocol": "TCP", "containerPort": port}
        ]
    return container


def stunnel_volumes(config_name: str, secret_name: str) -> List[Dict[str, Any]]:
    return [
        {"name": config_name, "configMap": {"name": config_name}},
        {
            "name": secret_name,
            "secret": {
                "secretName": secret_name,
                "items": [
                    {"key": "tls.crt", "path": "tls.crt"},
                    {"key": "tls.key", "path": "tls.key"},
                    {"key": "ca.crt", "path": "ca.crt"},
                ],
            },
        },
    ]


class StunnelTransport(Transport):
    """TLS tunnel between the transfer client and server pods."""

    transport_type = TransportType.STUNNEL

    def __init__(
        self,
        namespaced_name_pair: NamespacedNamePair,
        options: Optional[TransportOptions] = None,
    ) -> None:
        super().__init__(namespaced_name_pair, options)
        self._exposed_port = STUNNEL_EXPOSED_PORT

    def create_server(self, store: ObjectStore, prefix: str, endpoint: Endpoint) -> None:
        """
        Generate TLS material and write the server config and certificate.

        The objects land in the destination namespace of the name pair and are
        updated in place when they already exist.
        """
        self._port = endpoint.port
        tls = generate_ssl_cert()
        self._ca, self._crt, self._key = tls.ca, tls.crt, tls.key

        namespace = self.namespaced_name_pair.destination.namespace
        config_name = resource_name(SERVER_CONFIG_NAME, prefix)
        secret_name = resource_name(SERVER_SECRET_NAME, prefix)
        labels = merge_labels(endpoint.labels, STUNNEL_LABELS)

        create_or_update(
            store,
            Kind.CONFIG_MAP.manifest(
                config_name,
                namespace,
                labels,
                data={
                    STUNNEL_CONFIG_KEY: render_server_config(
                        endpoint.port, self.exposed_port
                    )
                },
            ),
        )
        create_or_update(store, self._secret(secret_name, namespace, labels))
        logger.info(
            "Created stunnel server configuration",
            namespace=namespace,
            config_map=config_name,
        )

        self._server_containers = [
            stunnel_container(
                self.options.stunnel_server_image, config_name, secret_name, endpoint.port
            )
        ]
        self._server_volumes = stunnel_volumes(config_name, secret_name)

    def create_client(self, store: ObjectStore, prefix: str, endpoint: Endpoint) -> None:
        """
        Write the client config and a copy of the server certificate.

        Raises:
            ConfigurationError: If no certificate was generated or discovered
        """
        if not self.crt or not self.key:
            raise ConfigurationError(
                "stunnel client needs the server certificate; create or discover the server first"
            )
        if not self._port:
            self._port = endpoint.port

        namespace = self.namespaced_name_pair.source.namespace
        config_name = resource_name(CLIENT_CONFIG_NAME, prefix)
        secret_name = resource_name(CLIENT_SECRET_NAME, prefix)
        labels = merge_labels(endpoint.labels, STUNNEL_LABELS)

        create_or_update(
            store,
            Kind.CONFIG_MAP.manifest(
                config_name,
                namespace,
                labels,
                data={
                    STUNNEL_CONFIG_KEY: render_client_config(
                        self.port, endpoint.hostname, endpoint.exposed_port, self.options
                    )
                },
            ),
        )
        create_or_update(store, self._secret(secret_name, namespace, labels))
        logger.info(
            "Created stunnel client configuration",
            namespace=namespace,
            config_map=config_name,
        )

        self._client_containers = [
            stunnel_container(self.options.stunnel_client_image, config_name, secret_name)
        ]
        self._client_volumes = stunnel_volumes(config_name, secret_name)

    def _secret(
        self, name: str, namespace: str, labels: Dict[str, str]
    ) -> Dict[str, Any]:
        return Kind.SECRET.manifest(
            name,
            namespace,
            labels,
            type="Opaque",
            data=encode_secret_data(
                {"tls.crt": self.crt, "tls.key": self.key, "ca.crt": self.ca}
            ),
        )


def discover_stunnel_transport(
    source_store: ObjectStore,
    destination_store: ObjectStore,
    prefix: str,
    namespaced_name_pair: NamespacedNamePair,
    endpoint: Endpoint,
    options: Optional[TransportOptions] = None,
) -> StunnelTransport:
    """
    Rebuild a transport from the objects a previous run created.

    Raises:
        NotFoundError: If any of the four config maps and secrets is missing
    """
    source_ns = namespaced_name_pair.source.namespace
    destination_ns = namespaced_name_pair.destination.namespace
    client_config = resource_name(CLIENT_CONFIG_NAME, prefix)
    server_config = resource_name(SERVER_CONFIG_NAME, prefix)
    client_secret = resource_name(CLIENT_SECRET_NAME, prefix)
    server_secret = resource_name(SERVER_SECRET_NAME, prefix)

    source_store.get(Kind.CONFIG_MAP, source_ns, client_config)
    destination_store.get(Kind.CONFIG_MAP, destination_ns, server_config)
    source_store.get(Kind.SECRET, source_ns, client_secret)
    tls = decode_secret_data(
        destination_store.get(Kind.SECRET, destination_ns, server_secret)
    )

    transport = StunnelTransport(namespaced_name_pair, options)
    transport._crt = tls.get("tls.crt", b"")
    transport._key = tls.get("tls.key", b"")
    transport._ca = tls.get("ca.crt", transport._crt)
    transport._port = endpoint.port

    options = transport.options
    transport._server_containers = [
        stunnel_container(
            options.stunnel_server_image, server_config, server_secret, endpoint.port
        )
    ]
    transport._server_volumes = stunnel_volumes(server_config, server_secret)
    transport._client_containers = [
        stunnel_container(options.stunnel_client_image, client_config, client_secret)
    ]
    transport._client_volumes = stunnel_volumes(client_config, client_secret)
    return transport
