"""
Cluster object store for state transfer operations.

Every interaction with a cluster goes through the small create / get /
update / list contract defined here. Objects are plain manifest dicts, the
same shape ``kubectl get -o yaml`` prints.
"""

import base64
import copy
from abc import ABC, abstractmethod
from enum import Enum
from typing import Any, Callable, Dict, List, Mapping, Optional, TypeVar

from kubernetes import client, config, dynamic
from kubernetes.client.rest import ApiException
from kubernetes.dynamic.exceptions import ResourceNotFoundError

from .exceptions import (
    AlreadyExistsError,
    ClusterAPIError,
    ConfigurationError,
    KindNotServedError,
    NotFoundError,
)
from .labels import merge_labels, selector_string
from .logging import logger

T = TypeVar("T")


class Kind(Enum):
    """Resource kinds the transfer code reads or writes."""

    POD = ("v1", "Pod")
    SERVICE = ("v1", "Service")
    CONFIG_MAP = ("v1", "ConfigMap")
    SECRET = ("v1", "Secret")
    PERSISTENT_VOLUME_CLAIM = ("v1", "PersistentVolumeClaim")
    DEPLOYMENT = ("apps/v1", "Deployment")
    STATEFUL_SET = ("apps/v1", "StatefulSet")
    REPLICA_SET = ("apps/v1", "ReplicaSet")
    DAEMON_SET = ("apps/v1", "DaemonSet")
    JOB = ("batch/v1", "Job")
    CRON_JOB = ("batch/v1", "CronJob")
    DEPLOYMENT_CONFIG = ("apps.openshift.io/v1", "DeploymentConfig")
    ROUTE = ("route.openshift.io/v1", "Route")
    INGRESS = ("networking.k8s.io/v1", "Ingress")

    @property
    def api_version(self) -> str:
        return self.value[0]

    @property
    def kind(self) -> str:
        return self.value[1]

    @classmethod
    def of(cls, obj: Mapping[str, Any]) -> "Kind":
        """Look up the Kind of a manifest from its apiVersion and kind."""
        key = (obj.get("apiVersion"), obj.get("kind"))
        for member in cls:
            if member.value == key:
                return member
        raise ConfigurationError(f"Unsupported resource kind {key[1]} ({key[0]})")

    def manifest(
        self,
        name: Optional[str],
        namespace: str,
        labels: Optional[Mapping[str, str]] = None,
        **fields: Any,
    ) -> Dict[str, Any]:
        """Skeleton manifest of this kind."""
        metadata: Dict[str, Any] = {"namespace": namespace}
        if name:
            metadata["name"] = name
        if labels:
            metadata["labels"] = dict(labels)
        obj: Dict[str, Any] = {
            "apiVersion": self.api_version,
            "kind": self.kind,
            "metadata": metadata,
        }
        obj.update(fields)
        return obj


def object_key(obj: Mapping[str, Any]) -> str:
    metadata = obj.get("metadata") or {}
    return f"{obj.get('kind')}/{metadata.get('namespace', '')}/{metadata.get('name', '')}"


class ObjectStore(ABC):
    """Create / get / update / list contract over cluster objects."""

    @abstractmethod
    def create(self, obj: Dict[str, Any]) -> Dict[str, Any]:
        """
        Create an object.

        Args:
            obj: Manifest to create. ``metadata.generateName`` is honoured.

        Returns:
            Dict[str, Any]: The object as stored by the cluster

        Raises:
            AlreadyExistsError: If an object with that name exists
            ClusterAPIError: On any other failure
        """

    @abstractmethod
    def get(self, kind: Kind, namespace: str, name: str) -> Dict[str, Any]:
        """
        Fetch a single object.

        Raises:
            NotFoundError: If the object does not exist
            ClusterAPIError: On any other failure
        """

    @abstractmethod
    def update(self, obj: Dict[str, Any]) -> Dict[str, Any]:
        """Replace an existing object."""

    @abstractmethod
    def list(
        self,
        kind: Kind,
        namespace: str,
        labels: Optional[Mapping[str, str]] = None,
    ) -> List[Dict[str, Any]]:
        """List objects of a kind in a namespace, filtered by equality labels."""


class KubeObjectStore(ObjectStore):
    """ObjectStore backed by the Kubernetes dynamic client."""

    def __init__(self, api_client: client.ApiClient, name: str = "cluster") -> None:
        self.name = name
        self.api_client = api_client
        self._dynamic: Optional[dynamic.DynamicClient] = None

    @classmethod
    def from_kubeconfig(
        cls,
        kubeconfig: Optional[str] = None,
        context: Optional[str] = None,
        name: str = "cluster",
    ) -> "KubeObjectStore":
        """Build a store from a kubeconfig file; None uses the default lookup."""
        try:
            api_client = config.new_client_from_config(
                config_file=kubeconfig, context=context
            )
        except config.ConfigException as e:
            raise ConfigurationError(f"Cannot load kubeconfig for {name}: {e}") from e
        return cls(api_client, name=name)

    @classmethod
    def in_cluster(cls, name: str = "cluster") -> "KubeObjectStore":
        """Build a store from the pod service account."""
        configuration = client.Configuration()
        try:
            config.load_incluster_config(client_configuration=configuration)
        except config.ConfigException as e:
            raise ConfigurationError(f"Cannot load in-cluster config: {e}") from e
        return cls(client.ApiClient(configuration), name=name)

    @property
    def dynamic_client(self) -> dynamic.DynamicClient:
        if self._dynamic is None:
            self._dynamic = dynamic.DynamicClient(self.api_client)
        return self._dynamic

    def _resource(self, kind: Kind) -> Any:
        try:
            return self.dynamic_client.resources.get(
                api_version=kind.api_version, kind=kind.kind
            )
        except ResourceNotFoundError as e:
            raise KindNotServedError(kind.kind, kind.api_version) from e

    def _translate(
        self, e: ApiException, kind: Kind, namespace: Optional[str], name: Optional[str]
    ) -> ClusterAPIError:
        if e.status == 404:
            return NotFoundError(kind.kind, namespace, name)
        # 409 is also returned for stale resourceVersion conflicts
        if e.status == 409 and "AlreadyExists" in str(e.body or ""):
            return AlreadyExistsError(kind.kind, namespace, name)
        return ClusterAPIError(
            str(e.reason or e),
            status=e.status,
            reason=e.reason,
            kind=kind.kind,
            namespace=namespace,
            name=name,
        )

    def create(self, obj: Dict[str, Any]) -> Dict[str, Any]:
        kind = Kind.of(obj)
        metadata = obj.get("metadata") or {}
        namespace = metadata.get("namespace")
        name = metadata.get("name") or metadata.get("generateName")
        logger.info(
            f"Creating {kind.kind} {namespace}/{name}",
            cluster=self.name,
            kind=kind.kind,
            namespace=namespace,
            object_name=name,
        )
        try:
            return self._resource(kind).create(body=obj, namespace=namespace).to_dict()
        except ApiException as e:
            raise self._translate(e, kind, namespace, name) from e

    def get(self, kind: Kind, namespace: str, name: str) -> Dict[str, Any]:
        try:
            return self._resource(kind).get(name=name, namespace=namespace).to_dict()
        except ApiException as e:
            raise self._translate(e, kind, namespace, name) from e

    def update(self, obj: Dict[str, Any]) -> Dict[str, Any]:
        kind = Kind.of(obj)
        metadata = obj.get("metadata") or {}
        namespace = metadata.get("namespace")
        name = metadata.get("name")
        logger.info(
            f"Updating {kind.kind} {namespace}/{name}",
            cluster=self.name,
            kind=kind.kind,
            namespace=namespace,
            object_name=name,
        )
        try:
            return self._resource(kind).replace(body=obj, namespace=namespace).to_dict()
        except ApiException as e:
            raise self._translate(e, kind, namespace, name) from e

    def list(
        self,
        kind: Kind,
        namespace: str,
        labels: Optional[Mapping[str, str]] = None,
    ) -> List[Dict[str, Any]]:
        kwargs: Dict[str, Any] = {"namespace": namespace}
        if labels:
            kwargs["label_selector"] = selector_string(labels)
        try:
            result = self._resource(kind).get(**kwargs).to_dict()
        except ApiException as e:
            raise self._translate(e, kind, namespace, None) from e
        items = result.get("items") or []
        # list responses omit apiVersion/kind on items
        for item in items:
            item.setdefault("apiVersion", kind.api_version)
            item.setdefault("kind", kind.kind)
        return items


def ignore_already_exists(fn: Callable[[], T]) -> Optional[T]:
    """Run fn, treating AlreadyExistsError as success."""
    try:
        return fn()
    except AlreadyExistsError as e:
        logger.debug(str(e), kind=e.kind, namespace=e.namespace, object_name=e.name)
        return None


def create_or_update(store: ObjectStore, obj: Dict[str, Any]) -> Dict[str, Any]:
    """
    Create obj, or bring an existing object of the same name in line with it.

    Labels are merged; ``data``, ``stringData``, ``binaryData`` and ``spec``
    are replaced. The live ``resourceVersion`` is kept so the update is not
    rejected as stale.
    """
    kind = Kind.of(obj)
    metadata = obj["metadata"]
    try:
        existing = store.get(kind, metadata["namespace"], metadata["name"])
    except NotFoundError:
        return store.create(obj)

    updated = copy.deepcopy(existing)
    updated_meta = updated.setdefault("metadata", {})
    updated_meta["labels"] = merge_labels(
        updated_meta.get("labels"), metadata.get("labels")
    )
    for section in ("data", "stringData", "binaryData", "spec"):
        if section in obj:
            updated[section] = copy.deepcopy(obj[section])
    return store.update(updated)


def encode_secret_data(data: Mapping[str, Any]) -> Dict[str, str]:
    """Base64 encode Secret values given as str or bytes."""
    encoded = {}
    for key, value in data.items():
        raw = value.encode("utf-8") if isinstance(value, str) else bytes(value)
        encoded[key] = base64.b64encode(raw).decode("ascii")
    return encoded


def decode_secret_data(secret: Mapping[str, Any]) -> Dict[str, bytes]:
    """Decode the ``data`` section of a Secret, including ``stringData`` if present."""
    decoded = {
        key: base64.b64decode(value)
        for key, value in (secret.get("data") or {}).items()
    }
    for key, value in (secret.get("stringData") or {}).items():
        decoded[key] = value.encode("utf-8")
    return decoded
