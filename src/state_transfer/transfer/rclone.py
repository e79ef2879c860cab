"""
rclone transfer.

The server serves its claim over HTTP with basic auth; the client syncs from
it, sending the endpoint hostname as the Host header so a single shared
ingress can route many transfers by name. Only one claim pair per transfer.
"""

from typing import Any, Dict, List, Optional

from ..cluster import Kind, ObjectStore, create_or_update, encode_secret_data
from ..endpoint import Endpoint
from ..models import PVCPairList, TransferType
from ..templates import render
from ..transport import Transport
from .base import Transfer, TransferOptions

RCLONE_IMAGE = "quay.io/jmontleon/rclone-transfer:latest"
RCLONE_CONFIG_PREFIX = "crane2-rclone-config-"
RCLONE_SECRET_PREFIX = "crane2-rclone-secret-"
RCLONE_CLIENT_CONFIG_PREFIX = "crane2-rclone-client-config-"
RCLONE_CONFIG_KEY = "rclone.conf"
RCLONE_CONFIG_PATH = "/etc/rclone.conf"
RCLONE_PASSWORD_KEY = "password"


class RcloneTransfer(Transfer):
    """rclone HTTP server on the destination, rclone sync client on the source."""

    transfer_type = TransferType.RCLONE

    def __init__(
        self,
        pvc_list: PVCPairList,
        transport: Transport,
        endpoint: Endpoint,
        options: Optional[TransferOptions] = None,
    ) -> None:
        super().__init__(pvc_list, transport, endpoint, options)
        if len(pvc_list) == 1:
            self.transport_prefix = pvc_list[0].label_safe_name

    @property
    def pvc_id(self) -> str:
        return self.pvc_list[0].label_safe_name

    @property
    def server_name(self) -> str:
        return f"rclone-{self.pvc_id}"

    def validation_errors(self) -> List[str]:
        errors: List[str] = []
        if len(self.pvc_list) != 1:
            errors.append(
                f"rclone transfers exactly one PVC pair, got {len(self.pvc_list)}"
            )
        for pair in self.pvc_list:
            for pvc in (pair.source, pair.destination):
                if pvc.is_block:
                    errors.append(f"{pvc!r}: rclone cannot copy raw block volumes")
        return errors

    def create_server_config(self, store: ObjectStore) -> None:
        namespace = self.destination_namespace
        labels = self.endpoint.labels
        create_or_update(
            store,
            Kind.CONFIG_MAP.manifest(
                RCLONE_CONFIG_PREFIX + self.pvc_id,
                namespace,
                labels,
                data={RCLONE_CONFIG_KEY: render("rclone-server.conf.j2")},
            ),
        )
        create_or_update(
            store,
            Kind.SECRET.manifest(
                RCLONE_SECRET_PREFIX + self.pvc_id,
                namespace,
                labels,
                type="Opaque",
                data=encode_secret_data({RCLONE_PASSWORD_KEY: self.password}),
            ),
        )

    def create_server_workload(self, store: ObjectStore) -> None:
        store.create(self.server_deployment())

    def server_deployment(self) -> Dict[str, Any]:
        pair = self.pvc_list[0]
        config_name = RCLONE_CONFIG_PREFIX + self.pvc_id
        rclone = {
            "name": "rclone",
            "image": self.options.destination_image or RCLONE_IMAGE,
            "imagePullPolicy": "IfNotPresent",
            "command": [
                "/usr/bin/rclone",
                "serve",
                "http",
                "mnt:/mnt",
                "--user",
                self.username,
                "--config",
                RCLONE_CONFIG_PATH,
                "--addr",
                f":{self.server_port}",
            ],
            # rclone reads --pass from RCLONE_PASS
            "env": [
                {
                    "name": "RCLONE_PASS",
                    "valueFrom": {
                        "secretKeyRef": {
                            "name": RCLONE_SECRET_PREFIX + self.pvc_id,
                            "key": RCLONE_PASSWORD_KEY,
                        }
                    },
                }
            ],
            "ports": [
                {"name": "rclone", "protocol": "TCP", "containerPort": self.server_port}
            ],
            "volumeMounts": [
                {"name": "mnt", "mountPath": "/mnt"},
                {
                    "name": config_name,
                    "mountPath": RCLONE_CONFIG_PATH,
                    "subPath": RCLONE_CONFIG_KEY,
                },
            ],
        }
        volumes = [
            {
                "name": "mnt",
                "persistentVolumeClaim": {"claimName": pair.destination.name},
            },
            {"name": config_name, "configMap": {"name": config_name}},
        ]
        pod_spec = self.finish_server_pod_spec(
            {
                "containers": [rclone] + self.transport.server_containers,
                "volumes": volumes + self.transport.server_volumes,
            }
        )
        metadata = self.server_pod_metadata()
        owners = metadata.pop("ownerReferences", None)
        deployment = Kind.DEPLOYMENT.manifest(
            self.server_name,
            self.destination_namespace,
            metadata["labels"],
            spec={
                "replicas": 1,
                "selector": {"matchLabels": self.endpoint.labels},
                "template": {"metadata": metadata, "spec": pod_spec},
            },
        )
        if owners:
            deployment["metadata"]["ownerReferences"] = owners
        return deployment

    def client_config(self) -> str:
        return render(
            "rclone-client.conf.j2",
            username=self.username,
            password=self.password,
            hostname=self.connection_hostname,
            port=self.connection_port,
        )

    def create_client_config(self, store: ObjectStore) -> None:
        create_or_update(
            store,
            Kind.SECRET.manifest(
                RCLONE_CLIENT_CONFIG_PREFIX + self.pvc_id,
                self.source_namespace,
                self.options.source_pod_meta.labels,
                type="Opaque",
                data=encode_secret_data({RCLONE_CONFIG_KEY: self.client_config()}),
            ),
        )

    def create_client_workload(self, store: ObjectStore) -> None:
        store.create(self.client_pod())

    def client_pod(self) -> Dict[str, Any]:
        pair = self.pvc_list[0]
        config_name = RCLONE_CLIENT_CONFIG_PREFIX + self.pvc_id
        rclone = {
            "name": "rclone",
            "image": self.options.source_image or RCLONE_IMAGE,
            "imagePullPolicy": "IfNotPresent",
            "command": [
                "/usr/bin/rclone",
                "sync",
                "remote:/",
                "/mnt",
                "--config",
                RCLONE_CONFIG_PATH,
                "--http-headers",
                f"Host,{self.endpoint.hostname}",
            ],
            "volumeMounts": [
                {"name": "mnt", "mountPath": "/mnt"},
                {
                    "name": config_name,
                    "mountPath": RCLONE_CONFIG_PATH,
                    "subPath": RCLONE_CONFIG_KEY,
                },
            ],
        }
        volumes = [
            {"name": "mnt", "persistentVolumeClaim": {"claimName": pair.source.name}},
            {"name": config_name, "secret": {"secretName": config_name}},
        ]
        pod_spec = self.finish_client_pod_spec(
            {
                "containers": [rclone] + self.transport.client_containers,
                "volumes": volumes + self.transport.client_volumes,
                "restartPolicy": "OnFailure",
            }
        )
        metadata = self.client_pod_metadata(self.pvc_id)
        metadata["generateName"] = "rclone-"
        metadata["namespace"] = self.source_namespace
        pod = Kind.POD.manifest(None, self.source_namespace, spec=pod_spec)
        pod["metadata"] = metadata
        return pod
