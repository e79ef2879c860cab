"""
Transfer base class and helpers shared by the rsync, rclone and blockrsync
transfers.
"""

import copy
import shlex
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional

from ..cluster import Kind, ObjectStore
from ..endpoint import Endpoint
from ..exceptions import TransferError, ValidationError
from ..labels import merge_labels
from ..logging import logger
from ..models import PVCPairList, ResourceMetadata, TransferType
from ..security import generate_password
from ..transport import Transport, connection_hostname, connection_port

DEFAULT_USERNAME = "crane2"
PVC_LABEL = "pvc"


@dataclass
class PodSpecMutation:
    """Changes merged into every generated pod spec on one side."""

    node_selector: Dict[str, str] = field(default_factory=dict)
    node_name: Optional[str] = None
    service_account_name: Optional[str] = None
    security_context: Optional[Dict[str, Any]] = None
    tolerations: List[Dict[str, Any]] = field(default_factory=list)

    def apply(self, pod_spec: Dict[str, Any]) -> None:
        if self.node_selector:
            pod_spec["nodeSelector"] = merge_labels(
                pod_spec.get("nodeSelector"), self.node_selector
            )
        if self.node_name:
            pod_spec["nodeName"] = self.node_name
        if self.service_account_name:
            pod_spec["serviceAccountName"] = self.service_account_name
        if self.security_context is not None:
            pod_spec["securityContext"] = copy.deepcopy(self.security_context)
        if self.tolerations:
            pod_spec["tolerations"] = list(pod_spec.get("tolerations") or []) + copy.deepcopy(
                self.tolerations
            )


@dataclass
class ContainerMutation:
    """Changes merged into every generated container on one side."""

    security_context: Optional[Dict[str, Any]] = None
    resources: Optional[Dict[str, Any]] = None

    def apply(self, container: Dict[str, Any]) -> None:
        if self.security_context is not None:
            container["securityContext"] = copy.deepcopy(self.security_context)
        if self.resources is not None:
            container["resources"] = copy.deepcopy(self.resources)


@dataclass
class TransferOptions:
    """Options common to every transfer type."""

    source_pod_meta: ResourceMetadata = field(default_factory=ResourceMetadata)
    destination_pod_meta: ResourceMetadata = field(default_factory=ResourceMetadata)
    username: str = DEFAULT_USERNAME
    # generated per transfer when not given
    password: Optional[str] = None
    source_image: Optional[str] = None
    destination_image: Optional[str] = None
    source_pod_mutations: List[PodSpecMutation] = field(default_factory=list)
    destination_pod_mutations: List[PodSpecMutation] = field(default_factory=list)
    source_container_mutations: List[ContainerMutation] = field(default_factory=list)
    destination_container_mutations: List[ContainerMutation] = field(
        default_factory=list
    )

    def validation_errors(self) -> List[str]:
        errors = [f"source pod: {e}" for e in self.source_pod_meta.validation_errors()]
        errors.extend(
            f"destination pod: {e}" for e in self.destination_pod_meta.validation_errors()
        )
        if not self.username:
            errors.append("username must be non-empty")
        return errors


def apply_pod_mutations(
    pod_spec: Dict[str, Any],
    pod_mutations: List[PodSpecMutation],
    container_mutations: List[ContainerMutation],
) -> Dict[str, Any]:
    """Apply mutations in place to a pod spec and all of its containers."""
    for mutation in pod_mutations:
        mutation.apply(pod_spec)
    for container in pod_spec.get("containers") or []:
        for container_mutation in container_mutations:
            container_mutation.apply(container)
    return pod_spec


def object_metadata(
    meta: ResourceMetadata, *extra_labels: Optional[Mapping[str, str]]
) -> Dict[str, Any]:
    """Build ``metadata`` for a generated object from caller supplied metadata."""
    metadata: Dict[str, Any] = {"labels": merge_labels(meta.labels, *extra_labels)}
    if meta.annotations:
        metadata["annotations"] = dict(meta.annotations)
    if meta.owner_references:
        metadata["ownerReferences"] = [ref.to_dict() for ref in meta.owner_references]
    return metadata


def wait_for_file_command(command: List[str], done_file: str) -> List[str]:
    """
    Wrap a side-car command so it exits once done_file appears.

    Tunnel processes have no notion of the payload finishing, so the payload
    container touches a file on a shared emptyDir and the wrapper stops the
    side-car when it shows up.
    """
    return [
        "/bin/bash",
        "-c",
        f"{shlex.join(command)} & "
        f"while [ ! -f {shlex.quote(done_file)} ]; do sleep 1; done; exit 0",
    ]


def is_pod_healthy(pod: Dict[str, Any]) -> bool:
    """A pod is healthy when it is Running and every container is ready."""
    status = pod.get("status") or {}
    if status.get("phase") != "Running":
        return False
    statuses = status.get("containerStatuses") or []
    return bool(statuses) and all(s.get("ready") for s in statuses)


def are_filtered_pods_healthy(
    store: ObjectStore, namespace: str, labels: Mapping[str, str]
) -> bool:
    """
    Check every pod matching labels.

    Returns:
        bool: False when no pod matches, or any is pending or not ready

    Raises:
        TransferError: If a matching pod has failed
    """
    pods = store.list(Kind.POD, namespace, labels)
    if not pods:
        return False
    for pod in pods:
        if (pod.get("status") or {}).get("phase") == "Failed":
            name = (pod.get("metadata") or {}).get("name")
            raise TransferError(f"pod {name} failed", namespace)
    return all(is_pod_healthy(pod) for pod in pods)


class Transfer(ABC):
    """
    Server and client workloads copying the volumes of a PVC pair list.

    A transfer is built once per migration attempt: the password is generated
    at construction and the transport material when the server is created.
    """

    transfer_type: TransferType
    transport_prefix: str = ""

    def __init__(
        self,
        pvc_list: PVCPairList,
        transport: Transport,
        endpoint: Endpoint,
        options: Optional[TransferOptions] = None,
    ) -> None:
        self._pvc_list = pvc_list
        self._transport = transport
        self._endpoint = endpoint
        self._options = options or TransferOptions()
        self._username = self._options.username
        self._password = self._options.password or generate_password()

    @property
    def pvc_list(self) -> PVCPairList:
        return self._pvc_list

    @property
    def transport(self) -> Transport:
        return self._transport

    @property
    def endpoint(self) -> Endpoint:
        return self._endpoint

    @property
    def options(self) -> TransferOptions:
        return self._options

    @property
    def username(self) -> str:
        return self._username

    @property
    def password(self) -> str:
        return self._password

    @property
    def source_namespace(self) -> str:
        return self.pvc_list.source_namespaces()[0]

    @property
    def destination_namespace(self) -> str:
        return self.pvc_list.destination_namespaces()[0]

    @property
    def connection_hostname(self) -> str:
        return connection_hostname(self.transport, self.endpoint)

    @property
    def connection_port(self) -> int:
        return connection_port(self.transport, self.endpoint)

    @property
    def server_port(self) -> int:
        """Port the server workload listens on, behind the transport."""
        return self.transport.exposed_port

    def validate(self) -> None:
        """
        Check the pvc list and options before anything is created.

        Raises:
            ValidationError: Aggregate of every problem found
        """
        errors = self.pvc_list.validation_errors()
        errors.extend(self.options.validation_errors())
        if self.pvc_list:
            errors.extend(self.validation_errors())
        if errors:
            raise ValidationError(errors, validation_type=self.transfer_type.value)

    def validation_errors(self) -> List[str]:
        """Type specific checks, run after the generic ones."""
        return []

    def create_server(self, store: ObjectStore) -> None:
        """
        Create the destination side in a fixed order: configuration and
        secrets, transport server, server workload, endpoint.
        """
        self.validate()
        logger.info(
            f"Creating {self.transfer_type.value} server",
            namespace=self.destination_namespace,
            pvcs=len(self.pvc_list),
        )
        self.create_server_config(store)
        self.transport.create_server(store, self.transport_prefix, self.endpoint)
        self.create_server_workload(store)
        self.endpoint.create(store)

    def create_client(self, store: ObjectStore) -> None:
        """
        Create the source side: configuration and secrets, transport client,
        client workloads. The endpoint hostname must be known by now.
        """
        self.validate()
        if not self.endpoint.hostname:
            raise ValidationError(
                "endpoint hostname is unknown; wait for the endpoint to become healthy",
                validation_type="endpoint",
            )
        logger.info(
            f"Creating {self.transfer_type.value} client",
            namespace=self.source_namespace,
            hostname=self.endpoint.hostname,
        )
        self.create_client_config(store)
        self.transport.create_client(store, self.transport_prefix, self.endpoint)
        self.create_client_workload(store)

    def is_server_healthy(self, store: ObjectStore) -> bool:
        return are_filtered_pods_healthy(
            store, self.destination_namespace, self.endpoint.labels
        )

    @abstractmethod
    def create_server_config(self, store: ObjectStore) -> None:
        ...

    @abstractmethod
    def create_server_workload(self, store: ObjectStore) -> None:
        ...

    @abstractmethod
    def create_client_config(self, store: ObjectStore) -> None:
        ...

    @abstractmethod
    def create_client_workload(self, store: ObjectStore) -> None:
        ...

    def server_pod_metadata(self) -> Dict[str, Any]:
        # endpoint labels last: the service selects server pods by them
        return object_metadata(self.options.destination_pod_meta, self.endpoint.labels)

    def client_pod_metadata(self, pvc_id: str) -> Dict[str, Any]:
        return object_metadata(self.options.source_pod_meta, {PVC_LABEL: pvc_id})

    def finish_server_pod_spec(self, pod_spec: Dict[str, Any]) -> Dict[str, Any]:
        return apply_pod_mutations(
            pod_spec,
            self.options.destination_pod_mutations,
            self.options.destination_container_mutations,
        )

    def finish_client_pod_spec(self, pod_spec: Dict[str, Any]) -> Dict[str, Any]:
        return apply_pod_mutations(
            pod_spec,
            self.options.source_pod_mutations,
            self.options.source_container_mutations,
        )
