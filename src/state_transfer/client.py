"""
Main client class for state transfer operations.

This module wires configuration, the source and destination cluster stores
and the endpoint / transport / transfer families into the few calls a
migration needs.
"""

import time
from typing import Callable, List, Mapping, Optional, Sequence, Tuple, Union

from .cluster import Kind, KubeObjectStore, ObjectStore
from .config import AppConfig
from .endpoint import Endpoint, new_endpoint, wait_for_healthy
from .exceptions import ConfigurationError
from .labels import default_labels, merge_labels
from .logging import logger
from .models import (
    PVC,
    NamespacedName,
    NamespacedNamePair,
    PVCPair,
    PVCPairList,
    TransferType,
    TransportType,
)
from .quiesce import QuiesceController
from .transfer import (
    RsyncCommandOptions,
    RsyncTransferOptions,
    Transfer,
    TransferOptions,
    new_transfer,
)
from .transfer.blockrsync import BLOCKRSYNC_SERVER_NAME
from .transfer.rsync import RSYNC_SERVER_NAME
from .transport import Transport, TransportOptions, new_transport

INSTANCE_LABEL = "app.kubernetes.io/instance"

# (source claim name, destination claim name or None)
ClaimSpec = Tuple[str, Optional[str]]


def endpoint_name(transfer_type: TransferType, pvc_list: PVCPairList) -> str:
    """Name of the endpoint objects that front the server of a transfer."""
    if transfer_type == TransferType.RSYNC:
        return RSYNC_SERVER_NAME
    if transfer_type == TransferType.BLOCKRSYNC:
        return BLOCKRSYNC_SERVER_NAME
    return f"rclone-{pvc_list[0].label_safe_name}"


class StateTransferClient:
    """
    Main client for state transfer operations.

    Args:
        config (Optional[AppConfig]): Application configuration
        source_store (Optional[ObjectStore]): Store for the source cluster,
            built from the configuration on first use when omitted
        destination_store (Optional[ObjectStore]): Store for the destination
            cluster, built the same way
        sleep (Callable[[float], None]): Used between health polls

    Attributes:
        config (AppConfig): Current configuration
    """

    def __init__(
        self,
        config: Optional[AppConfig] = None,
        source_store: Optional[ObjectStore] = None,
        destination_store: Optional[ObjectStore] = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.config = config or AppConfig()
        self._source_store = source_store
        self._destination_store = destination_store
        self._sleep = sleep

    @property
    def source_store(self) -> ObjectStore:
        if self._source_store is None:
            self._source_store = self._build_store(
                "source", self.config.source_kubeconfig, self.config.source_context
            )
        return self._source_store

    @property
    def destination_store(self) -> ObjectStore:
        if self._destination_store is None:
            self._destination_store = self._build_store(
                "destination",
                self.config.destination_kubeconfig,
                self.config.destination_context,
            )
        return self._destination_store

    def _build_store(
        self, name: str, kubeconfig: Optional[str], context: Optional[str]
    ) -> ObjectStore:
        if self.config.in_cluster:
            return KubeObjectStore.in_cluster(name=name)
        return KubeObjectStore.from_kubeconfig(kubeconfig, context, name=name)

    def quiesce(self, namespace: str) -> List[str]:
        """Quiesce the workloads of a source namespace and wait for their pods."""
        controller = QuiesceController(
            self.source_store, self.config.quiesce_poll_interval, self._sleep
        )
        return controller.quiesce(namespace)

    def unquiesce(self, namespace: str) -> List[str]:
        """Restore the workloads of a source namespace."""
        controller = QuiesceController(
            self.source_store, self.config.quiesce_poll_interval, self._sleep
        )
        return controller.unquiesce(namespace)

    def load_pvc_list(
        self,
        source_namespace: str,
        destination_namespace: str,
        claims: Sequence[ClaimSpec],
    ) -> PVCPairList:
        """
        Read the named claims from both clusters and pair them.

        Args:
            source_namespace: Namespace of the source claims
            destination_namespace: Namespace of the destination claims
            claims: Source claim names, each with an optional destination name

        Returns:
            PVCPairList: Pairs in the given order

        Raises:
            NotFoundError: If a claim does not exist
        """
        pairs = []
        for source_name, destination_name in claims:
            source = PVC(
                self.source_store.get(
                    Kind.PERSISTENT_VOLUME_CLAIM, source_namespace, source_name
                )
            )
            destination = PVC(
                self.destination_store.get(
                    Kind.PERSISTENT_VOLUME_CLAIM,
                    destination_namespace,
                    destination_name or source_name,
                )
            )
            pairs.append(PVCPair.create(source, destination))
        return PVCPairList(pairs)

    def build_endpoint(
        self,
        namespaced_name: NamespacedName,
        endpoint_type: Optional[str] = None,
        labels: Optional[Mapping[str, str]] = None,
        hostname: Optional[str] = None,
    ) -> Endpoint:
        """Endpoint of the configured (or given) type, labelled per instance."""
        if labels is None:
            labels = merge_labels(
                default_labels(), {INSTANCE_LABEL: namespaced_name.name}
            )
        return new_endpoint(
            endpoint_type or self.config.endpoint_type,
            namespaced_name,
            labels,
            subdomain=self.config.subdomain,
            hostname=hostname,
        )

    def transport_options(self) -> TransportOptions:
        return TransportOptions(
            proxy_url=self.config.proxy_url,
            proxy_username=self.config.proxy_username,
            proxy_password=self.config.proxy_password,
            no_verify_ca=self.config.no_verify_ca,
            ca_verify_level=self.config.ca_verify_level,
            stunnel_client_image=self.config.stunnel_image,
            stunnel_server_image=self.config.stunnel_image,
        )

    def build_transport(
        self,
        namespaced_name_pair: NamespacedNamePair,
        transport_type: Optional[Union[TransportType, str]] = None,
    ) -> Transport:
        return new_transport(
            transport_type or self.config.transport_type,
            namespaced_name_pair,
            self.transport_options(),
        )

    def transfer_options(self, transfer_type: TransferType) -> TransferOptions:
        """Default options for a transfer type, with images from the configuration."""
        if transfer_type == TransferType.RSYNC:
            return RsyncTransferOptions(
                source_image=self.config.rsync_client_image,
                destination_image=self.config.rsync_server_image,
                command=RsyncCommandOptions.defaults(self.config.rsync_bandwidth_limit),
            )
        image = (
            self.config.rclone_image
            if transfer_type == TransferType.RCLONE
            else self.config.blockrsync_image
        )
        return TransferOptions(source_image=image, destination_image=image)

    def build_transfer(
        self,
        transfer_type: Union[TransferType, str],
        pvc_list: PVCPairList,
        endpoint: Optional[Endpoint] = None,
        transport: Optional[Transport] = None,
        options: Optional[TransferOptions] = None,
    ) -> Transfer:
        """
        Assemble a transfer, building the endpoint and transport it needs.

        The pair list is validated first so nothing is built from bad input.

        Raises:
            ValidationError: If the pair list is invalid
            ConfigurationError: If a type is unknown
        """
        try:
            transfer_type = TransferType(transfer_type)
        except ValueError:
            raise ConfigurationError(f"unknown transfer type {transfer_type!r}") from None
        pvc_list.validate()
        source_namespace = pvc_list.source_namespaces()[0]
        destination_namespace = pvc_list.destination_namespaces()[0]
        name = endpoint_name(transfer_type, pvc_list)
        if endpoint is None:
            endpoint = self.build_endpoint(NamespacedName(destination_namespace, name))
        if transport is None:
            transport = self.build_transport(
                NamespacedNamePair(
                    NamespacedName(source_namespace, name),
                    NamespacedName(destination_namespace, name),
                )
            )
        return new_transfer(
            transfer_type,
            pvc_list,
            transport,
            endpoint,
            options or self.transfer_options(transfer_type),
        )

    def start_transfer(self, transfer: Transfer) -> Transfer:
        """
        Create the server side, wait for the endpoint, then create the client side.

        The endpoint wait has no deadline.
        """
        transfer.create_server(self.destination_store)
        wait_for_healthy(
            transfer.endpoint,
            self.destination_store,
            interval=self.config.health_poll_interval,
            sleep=self._sleep,
        )
        transfer.create_client(self.source_store)
        logger.info(
            f"Started {transfer.transfer_type.value} transfer",
            source_namespace=transfer.source_namespace,
            destination_namespace=transfer.destination_namespace,
            hostname=transfer.endpoint.hostname,
            pvcs=len(transfer.pvc_list),
        )
        return transfer

    def is_server_healthy(self, transfer: Transfer) -> bool:
        return transfer.is_server_healthy(self.destination_store)
