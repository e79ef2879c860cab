"""Test configuration and fixtures for state-transfer."""

import copy
import itertools
import sys
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Tuple
from unittest.mock import patch

import pytest

# Add src to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from state_transfer.cluster import Kind, ObjectStore  # noqa: E402
from state_transfer.exceptions import (  # noqa: E402
    AlreadyExistsError,
    KindNotServedError,
    NotFoundError,
)
from state_transfer.security import TLSMaterial  # noqa: E402


class FakeObjectStore(ObjectStore):
    """In-memory object store with the same 404/409 behaviour as a cluster."""

    def __init__(self, not_served: Optional[List[Kind]] = None) -> None:
        self.objects: Dict[Tuple[Kind, str, str], Dict[str, Any]] = {}
        self.not_served = set(not_served or [])
        self.create_errors: Dict[Kind, Exception] = {}
        self.calls: List[Tuple[str, str, str]] = []
        self._suffix = itertools.count(1)

    def _check_served(self, kind: Kind) -> None:
        if kind in self.not_served:
            raise KindNotServedError(kind.kind, kind.api_version)

    def add(self, obj: Dict[str, Any]) -> Dict[str, Any]:
        """Seed an object without recording a call."""
        metadata = obj.setdefault("metadata", {})
        metadata.setdefault("resourceVersion", "1")
        key = (Kind.of(obj), metadata["namespace"], metadata["name"])
        self.objects[key] = copy.deepcopy(obj)
        return obj

    def create(self, obj: Dict[str, Any]) -> Dict[str, Any]:
        kind = Kind.of(obj)
        self._check_served(kind)
        if kind in self.create_errors:
            raise self.create_errors[kind]
        stored = copy.deepcopy(obj)
        metadata = stored.setdefault("metadata", {})
        if not metadata.get("name"):
            metadata["name"] = f"{metadata['generateName']}{next(self._suffix):05d}"
        key = (kind, metadata["namespace"], metadata["name"])
        if key in self.objects:
            raise AlreadyExistsError(kind.kind, key[1], key[2])
        metadata["resourceVersion"] = "1"
        self.objects[key] = stored
        self.calls.append(("create", kind.kind, metadata["name"]))
        return copy.deepcopy(stored)

    def get(self, kind: Kind, namespace: str, name: str) -> Dict[str, Any]:
        self._check_served(kind)
        try:
            return copy.deepcopy(self.objects[(kind, namespace, name)])
        except KeyError:
            raise NotFoundError(kind.kind, namespace, name) from None

    def update(self, obj: Dict[str, Any]) -> Dict[str, Any]:
        kind = Kind.of(obj)
        metadata = obj["metadata"]
        key = (kind, metadata["namespace"], metadata["name"])
        if key not in self.objects:
            raise NotFoundError(kind.kind, key[1], key[2])
        stored = copy.deepcopy(obj)
        version = int(self.objects[key]["metadata"].get("resourceVersion", "0"))
        stored["metadata"]["resourceVersion"] = str(version + 1)
        self.objects[key] = stored
        self.calls.append(("update", kind.kind, metadata["name"]))
        return copy.deepcopy(stored)

    def list(
        self,
        kind: Kind,
        namespace: str,
        labels: Optional[Mapping[str, str]] = None,
    ) -> List[Dict[str, Any]]:
        self._check_served(kind)
        items = []
        for (item_kind, item_ns, _), obj in self.objects.items():
            if item_kind != kind or item_ns != namespace:
                continue
            obj_labels = obj["metadata"].get("labels") or {}
            if labels and any(obj_labels.get(k) != v for k, v in labels.items()):
                continue
            items.append(copy.deepcopy(obj))
        return items

    def stored(self, kind: Kind, namespace: str, name: str) -> Dict[str, Any]:
        return self.objects[(kind, namespace, name)]

    def of_kind(self, kind: Kind) -> List[Dict[str, Any]]:
        return [obj for (k, _, _), obj in self.objects.items() if k == kind]


def make_claim(
    name: str,
    namespace: str = "src",
    block: bool = False,
    vm_disk: bool = False,
) -> Dict[str, Any]:
    claim: Dict[str, Any] = {
        "apiVersion": "v1",
        "kind": "PersistentVolumeClaim",
        "metadata": {"name": name, "namespace": namespace},
        "spec": {"volumeMode": "Block" if block else "Filesystem"},
    }
    if vm_disk:
        claim["metadata"]["annotations"] = {
            "cdi.kubevirt.io/storage.contentType": "kubevirt"
        }
    return claim


@pytest.fixture
def store():
    """Empty in-memory object store."""
    return FakeObjectStore()


@pytest.fixture
def claim_factory():
    """Build PersistentVolumeClaim manifests."""
    return make_claim


@pytest.fixture
def fake_tls():
    """Skip the slow RSA 4096 generation in transport tests."""
    material = TLSMaterial(ca=b"CA-PEM", crt=b"CA-PEM", key=b"KEY-PEM")
    with patch(
        "state_transfer.transport.stunnel.generate_ssl_cert", return_value=material
    ):
        yield material


@pytest.fixture
def store_factory():
    """Build stores with extra behaviour, such as kinds the cluster does not serve."""
    return FakeObjectStore
