"""
rsync transfer.

The destination runs an rsync daemon exposing one module, ``mnt``, with every
destination claim mounted below it. Each source claim gets its own client pod
that pushes the claim contents into its directory of that module.
"""

import shlex
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

from ..cluster import Kind, ObjectStore, create_or_update, encode_secret_data
from ..endpoint import Endpoint
from ..exceptions import ValidationError
from ..models import PVCPair, PVCPairList, TransferType
from ..security import SecurityValidator
from ..templates import render
from ..transport import Transport
from .base import Transfer, TransferOptions, wait_for_file_command

RSYNC_IMAGE = "quay.io/konveyor/rsync-transfer:latest"
RSYNC_SERVER_NAME = "rsync-server"
RSYNC_SERVER_CONFIG = "crane2-rsync-server-config"
RSYNC_SERVER_SECRET = "crane2-rsync-server-secret"
RSYNC_CLIENT_SECRET = "crane2-rsync-client-secret"
RSYNC_CONFIG_KEY = "rsyncd.conf"
RSYNC_CREDENTIALS_KEY = "credentials"
RSYNC_PASSWORD_KEY = "password"
RSYNC_SECRETS_DIR = "/etc/rsync-secret"
RSYNC_SECRETS_FILE = f"{RSYNC_SECRETS_DIR}/rsyncd.secrets"
RSYNC_COMMUNICATION_VOLUME = "rsync-communication"
RSYNC_COMMUNICATION_DIR = "/usr/share/rsync"
RSYNC_DONE_FILE = f"{RSYNC_COMMUNICATION_DIR}/rsync-client-container-done"
RSYNC_TRANSPORT_PREFIX = "fs"

STANDARD_INFO = ["COPY2", "DEL2", "REMOVE2", "SKIP2", "FLIST2", "PROGRESS2", "STATS2"]

# flag -> RsyncCommandOptions boolean attribute, in command line order
_BOOLEAN_FLAGS: List[Tuple[str, str]] = [
    ("--recursive", "recursive"),
    ("--links", "symlinks"),
    ("--perms", "permissions"),
    ("--times", "modification_times"),
    ("--devices", "devices"),
    ("--specials", "specials"),
    ("--owner", "owners"),
    ("--group", "groups"),
    ("--hard-links", "hard_links"),
    ("--partial", "partial"),
    ("--delete", "delete"),
    ("--human-readable", "human_readable"),
]


@dataclass
class RsyncCommandOptions:
    """
    Flags passed to the rsync client.

    ``bwlimit`` (KiB/s) is required and must be positive. ``info`` values
    look like ``PROGRESS2``; ``extras`` are passed through verbatim after
    validation.
    """

    recursive: bool = False
    symlinks: bool = False
    permissions: bool = False
    modification_times: bool = False
    devices: bool = False
    specials: bool = False
    owners: bool = False
    groups: bool = False
    hard_links: bool = False
    partial: bool = False
    delete: bool = False
    human_readable: bool = False
    bwlimit: Optional[int] = None
    log_file: str = ""
    info: List[str] = field(default_factory=list)
    extras: List[str] = field(default_factory=list)

    @classmethod
    def defaults(cls, bwlimit: int) -> "RsyncCommandOptions":
        return cls(bwlimit=bwlimit).archive_files().standard_progress()

    def archive_files(self) -> "RsyncCommandOptions":
        self.recursive = True
        self.symlinks = True
        self.permissions = True
        self.modification_times = True
        self.devices = True
        self.specials = True
        self.owners = True
        self.groups = True
        return self

    def preserve_ownership(self) -> "RsyncCommandOptions":
        self.owners = True
        self.groups = True
        return self

    def standard_progress(self) -> "RsyncCommandOptions":
        self.info = list(STANDARD_INFO)
        self.human_readable = True
        self.log_file = "/dev/stdout"
        return self

    def delete_destination(self) -> "RsyncCommandOptions":
        self.delete = True
        return self

    def validation_errors(self) -> List[str]:
        errors: List[str] = []
        if self.bwlimit is None:
            errors.append("bwlimit is required")
        elif self.bwlimit <= 0:
            errors.append(f"bwlimit must be positive, got {self.bwlimit}")
        for value in self.info:
            try:
                SecurityValidator.validate_rsync_info_flag(value)
            except ValidationError as e:
                errors.extend(e.errors)
        for extra in self.extras:
            try:
                SecurityValidator.validate_rsync_extra_flag(extra)
            except ValidationError as e:
                errors.extend(e.errors)
        return errors

    def as_flags(self) -> List[str]:
        """
        Render the options as rsync command line flags.

        Raises:
            ValidationError: If any option is invalid
        """
        errors = self.validation_errors()
        if errors:
            raise ValidationError(errors, validation_type="rsync")

        flags = [flag for flag, attr in _BOOLEAN_FLAGS if getattr(self, attr)]
        flags.append(f"--bwlimit={self.bwlimit}")
        if self.info:
            flags.append(f"--info={','.join(self.info)}")
        if self.log_file:
            flags.append(f"--log-file={self.log_file}")
        flags.extend(self.extras)
        return flags

    @classmethod
    def from_flags(cls, flags: List[str]) -> "RsyncCommandOptions":
        """Rebuild options from flags produced by as_flags; unknown flags become extras."""
        options = cls()
        for flag in flags:
            attr, value = parse_flag(flag)
            if attr == "extras":
                options.extras.append(value)
            else:
                setattr(options, attr, value)
        return options


def parse_flag(flag: str) -> Tuple[str, Any]:
    """
    Map one rsync flag back to the option it came from.

    Returns:
        Tuple[str, Any]: Attribute name on RsyncCommandOptions and its value
    """
    for known, attr in _BOOLEAN_FLAGS:
        if flag == known:
            return attr, True
    name, sep, value = flag.partition("=")
    if sep:
        if name == "--bwlimit":
            try:
                return "bwlimit", int(value)
            except ValueError:
                raise ValidationError(f"invalid bwlimit {value!r}", "rsync") from None
        if name == "--info":
            return "info", value.split(",")
        if name == "--log-file":
            return "log_file", value
    return "extras", flag


@dataclass
class RsyncTransferOptions(TransferOptions):
    command: RsyncCommandOptions = field(default_factory=RsyncCommandOptions)


class RsyncTransfer(Transfer):
    """rsync daemon on the destination, one rsync client pod per source claim."""

    transfer_type = TransferType.RSYNC
    transport_prefix = RSYNC_TRANSPORT_PREFIX

    def __init__(
        self,
        pvc_list: PVCPairList,
        transport: Transport,
        endpoint: Endpoint,
        options: Optional[RsyncTransferOptions] = None,
    ) -> None:
        super().__init__(pvc_list, transport, endpoint, options or RsyncTransferOptions())

    @property
    def command_options(self) -> RsyncCommandOptions:
        return getattr(self.options, "command", RsyncCommandOptions())

    def validation_errors(self) -> List[str]:
        errors = list(self.command_options.validation_errors())
        for pair in self.pvc_list:
            name = pair.label_safe_name
            if len(name) > SecurityValidator.LABEL_VALUE_MAX_LENGTH or any(
                c in name for c in ".\\"
            ):
                errors.append(f"{pair.source!r}: invalid label-safe name {name!r}")
            for pvc in (pair.source, pair.destination):
                if pvc.is_block:
                    errors.append(f"{pvc!r}: rsync cannot copy raw block volumes")
        return errors

    def rsyncd_config(self) -> str:
        return render(
            "rsyncd.conf.j2", username=self.username, secrets_file=RSYNC_SECRETS_FILE
        )

    def create_server_config(self, store: ObjectStore) -> None:
        namespace = self.destination_namespace
        labels = self.endpoint.labels
        create_or_update(
            store,
            Kind.CONFIG_MAP.manifest(
                RSYNC_SERVER_CONFIG,
                namespace,
                labels,
                data={RSYNC_CONFIG_KEY: self.rsyncd_config()},
            ),
        )
        create_or_update(
            store,
            Kind.SECRET.manifest(
                RSYNC_SERVER_SECRET,
                namespace,
                labels,
                type="Opaque",
                data=encode_secret_data(
                    {RSYNC_CREDENTIALS_KEY: f"{self.username}:{self.password}"}
                ),
            ),
        )

    def create_server_workload(self, store: ObjectStore) -> None:
        store.create(self.server_deployment())

    def server_deployment(self) -> Dict[str, Any]:
        volume_mounts: List[Dict[str, Any]] = [
            {
                "name": RSYNC_SERVER_CONFIG,
                "mountPath": f"/etc/{RSYNC_CONFIG_KEY}",
                "subPath": RSYNC_CONFIG_KEY,
            },
            {"name": RSYNC_SERVER_SECRET, "mountPath": RSYNC_SECRETS_DIR},
        ]
        volumes: List[Dict[str, Any]] = [
            {"name": RSYNC_SERVER_CONFIG, "configMap": {"name": RSYNC_SERVER_CONFIG}},
            {
                "name": RSYNC_SERVER_SECRET,
                "secret": {
                    "secretName": RSYNC_SERVER_SECRET,
                    "defaultMode": 0o600,
                    "items": [
                        {
                            "key": RSYNC_CREDENTIALS_KEY,
                            "path": "rsyncd.secrets",
                            "mode": 0o600,
                        }
                    ],
                },
            },
        ]
        for pair in self.pvc_list:
            volume_name = pair.label_safe_name
            volume_mounts.append(
                {"name": volume_name, "mountPath": f"/mnt/{volume_name}"}
            )
            volumes.append(
                {
                    "name": volume_name,
                    "persistentVolumeClaim": {"claimName": pair.destination.name},
                }
            )

        rsync = {
            "name": "rsync",
            "image": self.options.destination_image or RSYNC_IMAGE,
            "imagePullPolicy": "IfNotPresent",
            "command": [
                "/usr/bin/rsync",
                "--daemon",
                "--no-detach",
                f"--port={self.server_port}",
                "-vvv",
            ],
            "ports": [
                {"name": "rsyncd", "protocol": "TCP", "containerPort": self.server_port}
            ],
            "volumeMounts": volume_mounts,
        }
        pod_spec = self.finish_server_pod_spec(
            {
                "containers": [rsync] + self.transport.server_containers,
                "volumes": volumes + self.transport.server_volumes,
            }
        )
        metadata = self.server_pod_metadata()
        owners = metadata.pop("ownerReferences", None)
        deployment = Kind.DEPLOYMENT.manifest(
            RSYNC_SERVER_NAME,
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

    def create_client_config(self, store: ObjectStore) -> None:
        create_or_update(
            store,
            Kind.SECRET.manifest(
                RSYNC_CLIENT_SECRET,
                self.source_namespace,
                self.options.source_pod_meta.labels,
                type="Opaque",
                data=encode_secret_data({RSYNC_PASSWORD_KEY: self.password}),
            ),
        )

    def create_client_workload(self, store: ObjectStore) -> None:
        for pair in self.pvc_list:
            store.create(self.client_pod(pair))

    def client_command(self, pvc_id: str) -> List[str]:
        host = self.connection_hostname
        port = self.connection_port
        rsync = shlex.join(
            ["/usr/bin/rsync"]
            + self.command_options.as_flags()
            + ["/mnt/", f"rsync://{self.username}@{host}:{port}/mnt/{pvc_id}/"]
        )
        script = (
            f'trap "touch {RSYNC_DONE_FILE}" EXIT; '
            f"while ! nc -z {shlex.quote(host)} {port}; do sleep 1; done; "
            f"{rsync}"
        )
        return ["/bin/bash", "-c", script]

    def client_pod(self, pair: PVCPair) -> Dict[str, Any]:
        pvc_id = pair.label_safe_name
        communication_mount = {
            "name": RSYNC_COMMUNICATION_VOLUME,
            "mountPath": RSYNC_COMMUNICATION_DIR,
        }
        rsync = {
            "name": "rsync",
            "image": self.options.source_image or RSYNC_IMAGE,
            "imagePullPolicy": "IfNotPresent",
            "command": self.client_command(pvc_id),
            "env": [
                {
                    "name": "RSYNC_PASSWORD",
                    "valueFrom": {
                        "secretKeyRef": {
                            "name": RSYNC_CLIENT_SECRET,
                            "key": RSYNC_PASSWORD_KEY,
                        }
                    },
                }
            ],
            "volumeMounts": [{"name": pvc_id, "mountPath": "/mnt"}, communication_mount],
        }
        containers = [rsync]
        for container in self.transport.client_containers:
            container["command"] = wait_for_file_command(
                container["command"], RSYNC_DONE_FILE
            )
            container.setdefault("volumeMounts", []).append(dict(communication_mount))
            containers.append(container)

        volumes = [
            {"name": pvc_id, "persistentVolumeClaim": {"claimName": pair.source.name}},
            {"name": RSYNC_COMMUNICATION_VOLUME, "emptyDir": {"medium": "Memory"}},
        ] + self.transport.client_volumes

        pod_spec = self.finish_client_pod_spec(
            {"containers": containers, "volumes": volumes, "restartPolicy": "Never"}
        )
        metadata = self.client_pod_metadata(pvc_id)
        metadata["generateName"] = "rsync-"
        metadata["namespace"] = self.source_namespace
        pod = Kind.POD.manifest(None, self.source_namespace, spec=pod_spec)
        pod["metadata"] = metadata
        return pod
