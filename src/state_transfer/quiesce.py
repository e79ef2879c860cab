"""
Quiesce and un-quiesce the workloads of a namespace.

Quiescing stops every workload controller from running pods so volumes can
be copied while nothing writes to them. The value each controller had before
is kept in an annotation on the controller itself and put back on
un-quiesce.
"""

import json
import time
from typing import Any, Callable, Dict, List, Optional

from .cluster import Kind, ObjectStore, object_key
from .exceptions import KindNotServedError
from .logging import logger

REPLICAS_ANNOTATION = "migration.openshift.io/preQuiesceReplicas"
SUSPEND_ANNOTATION = "migration.openshift.io/preQuiesceSuspend"
NODE_SELECTOR_ANNOTATION = "migration.openshift.io/preQuiesceNodeSelector"
QUIESCE_NODE_SELECTOR = "migration.openshift.io/quiesceDaemonSet"

QUIESCE_ORDER = [
    Kind.CRON_JOB,
    Kind.DEPLOYMENT_CONFIG,
    Kind.DEPLOYMENT,
    Kind.STATEFUL_SET,
    Kind.REPLICA_SET,
    Kind.DAEMON_SET,
    Kind.JOB,
]

# pods owned by these kinds must be gone before a transfer may start
QUIESCED_OWNER_KINDS = frozenset(
    {"ReplicationController", "StatefulSet", "ReplicaSet", "DaemonSet", "Job"}
)
TERMINAL_POD_PHASES = frozenset({"Succeeded", "Failed", "Unknown"})


def encode_replicas(replicas: int) -> str:
    return str(replicas)


def decode_replicas(value: Optional[str]) -> Optional[int]:
    """Stored replica count, or None when absent or not a non-negative integer."""
    if value is None:
        return None
    try:
        replicas = int(value.strip())
    except ValueError:
        return None
    return replicas if replicas >= 0 else None


def encode_suspend(suspend: bool) -> str:
    return "true" if suspend else "false"


def decode_suspend(value: Optional[str]) -> Optional[bool]:
    if value is None:
        return None
    lowered = value.strip().lower()
    if lowered == "true":
        return True
    if lowered == "false":
        return False
    return None


def encode_node_selector(node_selector: Optional[Dict[str, str]]) -> str:
    return json.dumps(dict(node_selector or {}), sort_keys=True)


def decode_node_selector(value: Optional[str]) -> Dict[str, str]:
    """Stored node selector; absent, empty or malformed values give ``{}``."""
    if not value:
        return {}
    try:
        decoded = json.loads(value)
    except ValueError:
        return {}
    if not isinstance(decoded, dict):
        return {}
    return {str(k): str(v) for k, v in decoded.items()}


def _annotations(obj: Dict[str, Any]) -> Dict[str, str]:
    metadata = obj.setdefault("metadata", {})
    if metadata.get("annotations") is None:
        metadata["annotations"] = {}
    return metadata["annotations"]


def _spec(obj: Dict[str, Any]) -> Dict[str, Any]:
    if obj.get("spec") is None:
        obj["spec"] = {}
    return obj["spec"]


def _pod_spec(obj: Dict[str, Any]) -> Dict[str, Any]:
    template = _spec(obj).setdefault("template", {})
    if template.get("spec") is None:
        template["spec"] = {}
    return template["spec"]


def _count(spec: Dict[str, Any], field: str) -> int:
    # the API server defaults an unset replicas / parallelism to 1
    value = spec.get(field)
    return 1 if value is None else int(value)


class QuiesceController:
    """
    Stops and restarts the workload controllers of a namespace.

    Every action is idempotent: quiescing an already quiesced object leaves
    its stored record alone, and un-quiescing only restores values that
    nobody changed in the meantime.
    """

    def __init__(
        self,
        store: ObjectStore,
        poll_interval: float = 5.0,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.store = store
        self.poll_interval = poll_interval
        self._sleep = sleep

    def quiesce(self, namespace: str) -> List[str]:
        """
        Quiesce every workload controller in namespace and wait until their
        pods are gone.

        Returns:
            List[str]: Keys of the objects that were changed

        Raises:
            ClusterAPIError: If listing or updating an object fails
        """
        logger.info(f"Quiescing namespace {namespace}", namespace=namespace)
        changed = self._apply(namespace, self.quiesce_object, "Quiesced")
        self.wait_for_pods_terminated(namespace)
        logger.info(
            f"Namespace {namespace} quiesced", namespace=namespace, changed=len(changed)
        )
        return changed

    def unquiesce(self, namespace: str) -> List[str]:
        """
        Restore every workload controller quiesced earlier.

        Returns:
            List[str]: Keys of the objects that were changed
        """
        logger.info(f"Un-quiescing namespace {namespace}", namespace=namespace)
        return self._apply(namespace, self.unquiesce_object, "Un-quiesced")

    def _apply(
        self,
        namespace: str,
        action: Callable[[Dict[str, Any]], bool],
        verb: str,
    ) -> List[str]:
        changed: List[str] = []
        for kind in QUIESCE_ORDER:
            try:
                objects = self.store.list(kind, namespace)
            except KindNotServedError as e:
                logger.warning(
                    f"Skipping {kind.kind}: not served by the cluster",
                    namespace=namespace,
                    kind=kind.kind,
                    api_version=e.api_version,
                )
                continue
            for obj in objects:
                if not action(obj):
                    continue
                self.store.update(obj)
                key = object_key(obj)
                logger.info(f"{verb} {key}", namespace=namespace, kind=kind.kind)
                changed.append(key)
        return changed

    def quiesce_object(self, obj: Dict[str, Any]) -> bool:
        """
        Quiesce one object in place.

        Returns:
            bool: True when obj was changed and must be written back
        """
        kind = Kind.of(obj)
        if kind == Kind.CRON_JOB:
            return self._suspend(obj)
        if kind == Kind.DAEMON_SET:
            return self._isolate(obj)
        if kind == Kind.JOB:
            return self._scale_down(obj, "parallelism")
        if kind == Kind.REPLICA_SET and (obj.get("metadata") or {}).get(
            "ownerReferences"
        ):
            # owned replica sets follow their deployment
            return False
        return self._scale_down(obj, "replicas")

    def unquiesce_object(self, obj: Dict[str, Any]) -> bool:
        """Un-quiesce one object in place; True when it must be written back."""
        kind = Kind.of(obj)
        if kind == Kind.CRON_JOB:
            return self._resume(obj)
        if kind == Kind.DAEMON_SET:
            return self._release(obj)
        if kind == Kind.JOB:
            return self._scale_up(obj, "parallelism")
        if kind == Kind.REPLICA_SET and (obj.get("metadata") or {}).get(
            "ownerReferences"
        ):
            return False
        return self._scale_up(obj, "replicas")

    def _scale_down(self, obj: Dict[str, Any], field: str) -> bool:
        spec = _spec(obj)
        current = _count(spec, field)
        if current == 0:
            return False
        _annotations(obj)[REPLICAS_ANNOTATION] = encode_replicas(current)
        spec[field] = 0
        return True

    def _scale_up(self, obj: Dict[str, Any], field: str) -> bool:
        annotations = _annotations(obj)
        if REPLICAS_ANNOTATION not in annotations:
            return False
        stored = annotations.pop(REPLICAS_ANNOTATION)
        restored = decode_replicas(stored)
        spec = _spec(obj)
        if restored is None:
            logger.warning(
                f"Dropping unreadable {REPLICAS_ANNOTATION} on {object_key(obj)}",
                value=stored,
            )
        elif _count(spec, field) == 0:
            spec[field] = restored
        return True

    def _suspend(self, obj: Dict[str, Any]) -> bool:
        spec = _spec(obj)
        if spec.get("suspend") is True:
            return False
        _annotations(obj)[SUSPEND_ANNOTATION] = encode_suspend(bool(spec.get("suspend")))
        spec["suspend"] = True
        return True

    def _resume(self, obj: Dict[str, Any]) -> bool:
        annotations = _annotations(obj)
        if SUSPEND_ANNOTATION not in annotations:
            return False
        previous = decode_suspend(annotations.pop(SUSPEND_ANNOTATION))
        spec = _spec(obj)
        if spec.get("suspend") is True:
            spec["suspend"] = bool(previous)
        return True

    def _isolate(self, obj: Dict[str, Any]) -> bool:
        pod_spec = _pod_spec(obj)
        node_selector = dict(pod_spec.get("nodeSelector") or {})
        if QUIESCE_NODE_SELECTOR in node_selector:
            return False
        _annotations(obj)[NODE_SELECTOR_ANNOTATION] = encode_node_selector(node_selector)
        node_selector[QUIESCE_NODE_SELECTOR] = "true"
        pod_spec["nodeSelector"] = node_selector
        return True

    def _release(self, obj: Dict[str, Any]) -> bool:
        annotations = _annotations(obj)
        if NODE_SELECTOR_ANNOTATION not in annotations:
            return False
        pod_spec = _pod_spec(obj)
        # the record stays until the quiesce selector is back in place
        if QUIESCE_NODE_SELECTOR not in (pod_spec.get("nodeSelector") or {}):
            return False
        previous = decode_node_selector(annotations.pop(NODE_SELECTOR_ANNOTATION))
        if previous:
            pod_spec["nodeSelector"] = previous
        else:
            pod_spec.pop("nodeSelector", None)
        return True

    def pods_terminated(self, namespace: str) -> bool:
        """True when no live pod in namespace is owned by a quiesced kind."""
        for pod in self.store.list(Kind.POD, namespace):
            if (pod.get("status") or {}).get("phase") in TERMINAL_POD_PHASES:
                continue
            owners = (pod.get("metadata") or {}).get("ownerReferences") or []
            if any(ref.get("kind") in QUIESCED_OWNER_KINDS for ref in owners):
                return False
        return True

    def wait_for_pods_terminated(self, namespace: str) -> None:
        """
        Poll until pods_terminated holds.

        There is no deadline; callers needing one must impose it themselves.
        """
        while not self.pods_terminated(namespace):
            logger.debug(
                f"Waiting for quiesced pods in {namespace} to terminate",
                namespace=namespace,
            )
            self._sleep(self.poll_interval)
