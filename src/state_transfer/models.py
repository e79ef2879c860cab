"""
Data models for state transfer operations.

This module defines the value types identifying the volumes being migrated,
how they are paired, and the metadata applied to generated workloads.
"""

import copy
import hashlib
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Iterator, List, Optional

from .exceptions import ValidationError
from .labels import label_errors
from .security import SecurityValidator

VM_DISK_CONTENT_TYPE_ANNOTATION = "cdi.kubevirt.io/storage.contentType"
VM_DISK_CONTENT_TYPE = "kubevirt"
MIXED_VOLUME_TYPES = "source and destination must be the same type of volume"


class EndpointType(Enum):
    """Endpoint variants."""

    EDGE = "edge"
    PASSTHROUGH = "passthrough"
    INGRESS = "ingress"
    LOAD_BALANCER = "loadbalancer"
    CLUSTER_IP = "clusterip"
    NODE_PORT = "nodeport"
    LOCAL = "local"


class ServiceType(Enum):
    """Kubernetes Service types supported by service endpoints."""

    CLUSTER_IP = "ClusterIP"
    NODE_PORT = "NodePort"
    LOAD_BALANCER = "LoadBalancer"


class TransportType(Enum):
    """Transport variants."""

    STUNNEL = "stunnel"
    NULL = "null"


class TransferType(Enum):
    """Transfer variants."""

    RSYNC = "rsync"
    RCLONE = "rclone"
    BLOCKRSYNC = "blockrsync"


class VolumeMode(Enum):
    """PersistentVolumeClaim volume modes."""

    FILESYSTEM = "Filesystem"
    BLOCK = "Block"


def label_safe(name: str) -> str:
    """Stable hash of a name that is always a legal label value."""
    return hashlib.md5(name.encode("utf-8")).hexdigest()


@dataclass(frozen=True)
class NamespacedName:
    """Namespace and name of a cluster object."""

    namespace: str
    name: str

    def __str__(self) -> str:
        return f"{self.namespace}/{self.name}"


@dataclass(frozen=True)
class NamespacedNamePair:
    """Names of matching objects on the source and destination side."""

    source: NamespacedName
    destination: NamespacedName

    @classmethod
    def create(
        cls, source: NamespacedName, destination: Optional[NamespacedName] = None
    ) -> "NamespacedNamePair":
        """Build a pair; a missing destination name or namespace defaults to the source's."""
        if destination is None:
            return cls(source, source)
        return cls(
            source,
            NamespacedName(
                namespace=destination.namespace or source.namespace,
                name=destination.name or source.name,
            ),
        )


class PVC:
    """A PersistentVolumeClaim taking part in a transfer."""

    def __init__(self, claim: Dict[str, Any]) -> None:
        self._claim = copy.deepcopy(claim)
        self._claim.setdefault("metadata", {})

    @property
    def claim(self) -> Dict[str, Any]:
        return copy.deepcopy(self._claim)

    @property
    def name(self) -> str:
        return self._claim["metadata"].get("name", "")

    @property
    def namespace(self) -> str:
        return self._claim["metadata"].get("namespace", "")

    @property
    def namespaced_name(self) -> NamespacedName:
        return NamespacedName(self.namespace, self.name)

    @property
    def label_safe_name(self) -> str:
        return label_safe(self.name)

    @property
    def volume_mode(self) -> VolumeMode:
        mode = (self._claim.get("spec") or {}).get("volumeMode")
        if mode == VolumeMode.BLOCK.value:
            return VolumeMode.BLOCK
        return VolumeMode.FILESYSTEM

    @property
    def is_block(self) -> bool:
        return self.volume_mode == VolumeMode.BLOCK

    @property
    def is_vm_disk(self) -> bool:
        annotations = self._claim["metadata"].get("annotations") or {}
        return annotations.get(VM_DISK_CONTENT_TYPE_ANNOTATION) == VM_DISK_CONTENT_TYPE

    @property
    def is_block_or_vm_disk(self) -> bool:
        return self.is_block or self.is_vm_disk

    def with_defaults(self, namespace: str, name: str) -> "PVC":
        """Return a copy whose empty name and namespace are filled in."""
        claim = self.claim
        metadata = claim["metadata"]
        if not metadata.get("namespace"):
            metadata["namespace"] = namespace
        if not metadata.get("name"):
            metadata["name"] = name
        return PVC(claim)

    def __repr__(self) -> str:
        return f"PVC({self.namespace}/{self.name})"


@dataclass(frozen=True)
class PVCPair:
    """A source claim and the destination claim it is copied into."""

    source: PVC
    destination: PVC

    @classmethod
    def create(cls, source: PVC, destination: Optional[PVC] = None) -> "PVCPair":
        """
        Pair two claims.

        Args:
            source: Claim in the source cluster
            destination: Claim in the destination cluster. Defaults to the source
                identity; an empty name or namespace is taken from the source.

        Returns:
            PVCPair: The pair
        """
        if destination is None:
            return cls(source, source)
        return cls(source, destination.with_defaults(source.namespace, source.name))

    @property
    def label_safe_name(self) -> str:
        return self.source.label_safe_name

    @property
    def is_mixed(self) -> bool:
        return self.source.is_block_or_vm_disk != self.destination.is_block_or_vm_disk


class PVCPairList:
    """Ordered list of claim pairs migrated in one transfer."""

    def __init__(self, pairs: Optional[List[PVCPair]] = None) -> None:
        self._pairs: List[PVCPair] = list(pairs or [])

    def __iter__(self) -> Iterator[PVCPair]:
        return iter(self._pairs)

    def __len__(self) -> int:
        return len(self._pairs)

    def __getitem__(self, index: int) -> PVCPair:
        return self._pairs[index]

    def source_namespaces(self) -> List[str]:
        """Distinct source namespaces in first-seen order."""
        return list(dict.fromkeys(pair.source.namespace for pair in self._pairs))

    def destination_namespaces(self) -> List[str]:
        """Distinct destination namespaces in first-seen order."""
        return list(dict.fromkeys(pair.destination.namespace for pair in self._pairs))

    def in_source_namespace(self, namespace: str) -> "PVCPairList":
        return PVCPairList([p for p in self._pairs if p.source.namespace == namespace])

    def in_destination_namespace(self, namespace: str) -> "PVCPairList":
        return PVCPairList(
            [p for p in self._pairs if p.destination.namespace == namespace]
        )

    def get_source_pvc(self, namespace: str, name: str) -> Optional[PVCPair]:
        for pair in self._pairs:
            if pair.source.namespace == namespace and pair.source.name == name:
                return pair
        return None

    def group_by_source_namespace(self) -> Dict[str, "PVCPairList"]:
        groups: Dict[str, List[PVCPair]] = {}
        for pair in self._pairs:
            groups.setdefault(pair.source.namespace, []).append(pair)
        return {ns: PVCPairList(pairs) for ns, pairs in groups.items()}

    def validation_errors(self) -> List[str]:
        """Collect every problem with this list without raising."""
        errors: List[str] = []
        if not self._pairs:
            return ["at least one PVC pair is required"]

        source_namespaces = self.source_namespaces()
        if len(source_namespaces) != 1:
            errors.append(
                f"exactly one source namespace is allowed, got {source_namespaces}"
            )
        destination_namespaces = self.destination_namespaces()
        if len(destination_namespaces) != 1:
            errors.append(
                "exactly one destination namespace is allowed, got "
                f"{destination_namespaces}"
            )

        for pair in self._pairs:
            for pvc in (pair.source, pair.destination):
                if not pvc.name:
                    errors.append(f"{pvc!r}: claim name is required")
                elif not SecurityValidator.is_label_value(pvc.label_safe_name):
                    errors.append(
                        f"{pvc!r}: label-safe name {pvc.label_safe_name!r} "
                        "is not a valid label value"
                    )
            if pair.is_mixed:
                errors.append(f"{pair.source!r} -> {pair.destination!r}: {MIXED_VOLUME_TYPES}")

        if len({pair.source.is_block_or_vm_disk for pair in self._pairs}) > 1:
            errors.append(
                "all pairs must be block or VM disk volumes, or all filesystem volumes"
            )
        return errors

    def validate(self) -> None:
        """
        Validate the list before any cluster mutation.

        Raises:
            ValidationError: Aggregate of every problem found
        """
        errors = self.validation_errors()
        if errors:
            raise ValidationError(errors, validation_type="pvc")


def _typed_pair_list(pairs: List[PVCPair], block: bool) -> PVCPairList:
    errors: List[str] = []
    for pair in pairs:
        if pair.is_mixed:
            errors.append(f"{pair.source!r} -> {pair.destination!r}: {MIXED_VOLUME_TYPES}")
        elif pair.source.is_block_or_vm_disk != block:
            kind = "block or VM disk" if block else "filesystem"
            errors.append(f"{pair.source!r}: not a {kind} volume")
    if errors:
        raise ValidationError(errors, validation_type="pvc")
    return PVCPairList(pairs)


def new_filesystem_pvc_pair_list(*pairs: PVCPair) -> PVCPairList:
    """Build a list that may only hold filesystem pairs."""
    return _typed_pair_list(list(pairs), block=False)


def new_block_or_vm_disk_pvc_pair_list(*pairs: PVCPair) -> PVCPairList:
    """Build a list that may only hold block or VM disk pairs."""
    return _typed_pair_list(list(pairs), block=True)


@dataclass(frozen=True)
class OwnerReference:
    """Owner reference stamped on generated workloads."""

    api_version: str
    kind: str
    name: str
    uid: str
    controller: Optional[bool] = None
    block_owner_deletion: Optional[bool] = None

    def validation_errors(self) -> List[str]:
        errors = []
        for attr in ("kind", "name", "uid"):
            if not getattr(self, attr):
                errors.append(f"owner reference {attr} is required")
        return errors

    def to_dict(self) -> Dict[str, Any]:
        ref: Dict[str, Any] = {
            "apiVersion": self.api_version,
            "kind": self.kind,
            "name": self.name,
            "uid": self.uid,
        }
        if self.controller is not None:
            ref["controller"] = self.controller
        if self.block_owner_deletion is not None:
            ref["blockOwnerDeletion"] = self.block_owner_deletion
        return ref


@dataclass
class ResourceMetadata:
    """Labels, annotations and owners applied to generated objects."""

    labels: Dict[str, str] = field(default_factory=dict)
    annotations: Dict[str, str] = field(default_factory=dict)
    owner_references: List[OwnerReference] = field(default_factory=list)

    def validation_errors(self) -> List[str]:
        errors = label_errors(self.labels)
        for ref in self.owner_references:
            errors.extend(ref.validation_errors())
        return errors
