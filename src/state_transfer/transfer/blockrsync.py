"""
blockrsync transfer for raw block devices and VM disk images.

The server pod runs a proxy that fans incoming connections out to one
blockrsync target per claim. Each client pod runs a local proxy and a
blockrsync source reading the device (or disk image) of a single claim.
"""

from typing import Any, Dict, List

from ..cluster import Kind, ObjectStore
from ..models import PVC, PVCPair, TransferType
from .base import Transfer, wait_for_file_command

BLOCKRSYNC_IMAGE = "quay.io/awels/blockrsync:latest"
BLOCKRSYNC_SERVER_NAME = "blockrsync-server"
BLOCKRSYNC_CONTAINER = "blockrsync"
PROXY_CONTAINER = "proxy"
BLOCK_SIZE = 131072
PROXY_LISTEN_PORT = 9002
ZAP_LOG_LEVEL = 3

COMMUNICATION_VOLUME = "stunnel-communication"
COMMUNICATION_DIR = "/usr/share/stunnel-communication"
CONTROL_FILE = f"{COMMUNICATION_DIR}/blockrsync-done"

DISK_IMAGE = "disk.img"


def device_path(pvc_id: str) -> str:
    return f"/dev/{pvc_id}"


def mount_path(pvc_id: str) -> str:
    return f"/mnt/{pvc_id}"


def volume_source(pvc: PVC, pvc_id: str) -> str:
    """Device node for a block claim, disk image inside the mount otherwise."""
    if pvc.is_block:
        return device_path(pvc_id)
    return f"{mount_path(pvc_id)}/{DISK_IMAGE}"


def attach_claim(container: Dict[str, Any], pvc: PVC, pvc_id: str) -> None:
    """Attach a claim to a container as a device or a mount."""
    if pvc.is_block:
        container.setdefault("volumeDevices", []).append(
            {"name": pvc_id, "devicePath": device_path(pvc_id)}
        )
    else:
        container.setdefault("volumeMounts", []).append(
            {"name": pvc_id, "mountPath": mount_path(pvc_id)}
        )


class BlockrsyncTransfer(Transfer):
    """Block level copy of block or VM disk claims."""

    transfer_type = TransferType.BLOCKRSYNC
    transport_prefix = "block"

    @property
    def image(self) -> str:
        return self.options.destination_image or BLOCKRSYNC_IMAGE

    @property
    def client_image(self) -> str:
        return self.options.source_image or BLOCKRSYNC_IMAGE

    def validation_errors(self) -> List[str]:
        return [
            f"{pvc!r}: blockrsync only copies block or VM disk volumes"
            for pair in self.pvc_list
            for pvc in (pair.source, pair.destination)
            if not pvc.is_block_or_vm_disk
        ]

    # blockrsync authenticates nothing itself; the transport carries security
    def create_server_config(self, store: ObjectStore) -> None:
        pass

    def create_client_config(self, store: ObjectStore) -> None:
        pass

    def create_server_workload(self, store: ObjectStore) -> None:
        store.create(self.server_pod())

    def server_command(self) -> List[str]:
        command = [
            "/proxy",
            "--target",
            "--listen-port",
            str(self.server_port),
            "--blockrsync-path",
            "/blockrsync",
            "--control-file",
            CONTROL_FILE,
            "--block-size",
            str(BLOCK_SIZE),
        ]
        for pair in self.pvc_list:
            command.extend(["--identifier", pair.label_safe_name])
        return command

    def server_pod(self) -> Dict[str, Any]:
        communication_mount = {"name": COMMUNICATION_VOLUME, "mountPath": COMMUNICATION_DIR}
        server: Dict[str, Any] = {
            "name": BLOCKRSYNC_CONTAINER,
            "image": self.image,
            "imagePullPolicy": "Always",
            "command": self.server_command(),
            "ports": [
                {
                    "name": BLOCKRSYNC_CONTAINER,
                    "protocol": "TCP",
                    "containerPort": self.server_port,
                }
            ],
            "volumeMounts": [dict(communication_mount)],
        }
        env = []
        volumes: List[Dict[str, Any]] = []
        for pair in self.pvc_list:
            pvc_id = pair.label_safe_name
            attach_claim(server, pair.destination, pvc_id)
            # the target proxy resolves each identifier through this variable
            env.append(
                {"name": f"id-{pvc_id}", "value": volume_source(pair.destination, pvc_id)}
            )
            volumes.append(
                {
                    "name": pvc_id,
                    "persistentVolumeClaim": {"claimName": pair.destination.name},
                }
            )
        server["env"] = env

        containers = [server]
        for container in self.transport.server_containers:
            container["command"] = wait_for_file_command(container["command"], CONTROL_FILE)
            container.setdefault("volumeMounts", []).append(dict(communication_mount))
            containers.append(container)
        volumes.append({"name": COMMUNICATION_VOLUME, "emptyDir": {"medium": "Memory"}})

        pod_spec = self.finish_server_pod_spec(
            {
                "containers": containers,
                "volumes": volumes + self.transport.server_volumes,
                "restartPolicy": "Never",
            }
        )
        metadata = self.server_pod_metadata()
        metadata["name"] = BLOCKRSYNC_SERVER_NAME
        metadata["namespace"] = self.destination_namespace
        pod = Kind.POD.manifest(BLOCKRSYNC_SERVER_NAME, self.destination_namespace, spec=pod_spec)
        pod["metadata"] = metadata
        return pod

    def create_client_workload(self, store: ObjectStore) -> None:
        for pair in self.pvc_list:
            store.create(self.client_pod(pair))

    def client_pod(self, pair: PVCPair) -> Dict[str, Any]:
        pvc_id = pair.label_safe_name
        communication_mount = {"name": COMMUNICATION_VOLUME, "mountPath": COMMUNICATION_DIR}
        proxy = {
            "name": PROXY_CONTAINER,
            "image": self.client_image,
            "imagePullPolicy": "Always",
            "command": [
                "/proxy",
                "--source",
                "--target-address",
                self.connection_hostname,
                "--identifier",
                pvc_id,
                "--listen-port",
                str(PROXY_LISTEN_PORT),
                "--target-port",
                str(self.connection_port),
                "--control-file",
                CONTROL_FILE,
            ],
            "volumeMounts": [dict(communication_mount)],
        }
        blockrsync: Dict[str, Any] = {
            "name": BLOCKRSYNC_CONTAINER,
            "image": self.client_image,
            "imagePullPolicy": "Always",
            "command": [
                "/blockrsync",
                volume_source(pair.source, pvc_id),
                "--source",
                "--target-address",
                "localhost",
                "--port",
                str(PROXY_LISTEN_PORT),
                "--zap-log-level",
                str(ZAP_LOG_LEVEL),
                "--block-size",
                str(BLOCK_SIZE),
            ],
            "volumeMounts": [dict(communication_mount)],
        }
        attach_claim(blockrsync, pair.source, pvc_id)

        containers = [proxy, blockrsync]
        for container in self.transport.client_containers:
            container["command"] = wait_for_file_command(container["command"], CONTROL_FILE)
            container.setdefault("volumeMounts", []).append(dict(communication_mount))
            containers.append(container)

        volumes = [
            {"name": pvc_id, "persistentVolumeClaim": {"claimName": pair.source.name}},
            {"name": COMMUNICATION_VOLUME, "emptyDir": {"medium": "Memory"}},
        ] + self.transport.client_volumes

        pod_spec = self.finish_client_pod_spec(
            {"containers": containers, "volumes": volumes, "restartPolicy": "Never"}
        )
        metadata = self.client_pod_metadata(pvc_id)
        metadata["generateName"] = "blockrsync-"
        metadata["namespace"] = self.source_namespace
        pod = Kind.POD.manifest(None, self.source_namespace, spec=pod_spec)
        pod["metadata"] = metadata
        return pod
