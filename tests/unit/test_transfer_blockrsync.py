"""Unit tests for the blockrsync transfer."""

import pytest

from state_transfer.cluster import Kind
from state_transfer.endpoint import LocalServiceEndpoint, RouteEndpoint
from state_transfer.exceptions import ConfigurationError, ValidationError
from state_transfer.models import (
    PVC,
    EndpointType,
    NamespacedName,
    NamespacedNamePair,
    PVCPair,
    PVCPairList,
)
from state_transfer.transfer import BlockrsyncTransfer, TransferOptions, new_transfer
from state_transfer.transport import NullTransport, StunnelTransport

SERVER = NamespacedName("dest", "blockrsync-server")
NAME_PAIR = NamespacedNamePair(NamespacedName("src", "blockrsync-server"), SERVER)
LABELS = {"app": "crane2"}
CONTROL_FILE = "/usr/share/stunnel-communication/blockrsync-done"


@pytest.fixture
def pvc_list(claim_factory):
    return PVCPairList(
        [
            PVCPair.create(
                PVC(claim_factory("disk", block=True)),
                PVC(claim_factory("disk", "dest", block=True)),
            ),
            PVCPair.create(
                PVC(claim_factory("vm", vm_disk=True)),
                PVC(claim_factory("vm", "dest", vm_disk=True)),
            ),
        ]
    )


@pytest.fixture
def direct_transfer(store, pvc_list):
    endpoint = LocalServiceEndpoint(SERVER, LABELS)
    transport = NullTransport(NAME_PAIR)
    transport.create_server(store, "block", endpoint)
    return BlockrsyncTransfer(pvc_list, transport, endpoint)


class TestBlockrsyncValidation:
    """Test blockrsync validation."""

    def test_filesystem_rejected(self, claim_factory):
        """Test plain filesystem claims are refused."""
        pair = PVCPair.create(PVC(claim_factory("data")), PVC(claim_factory("data", "dest")))
        transfer = BlockrsyncTransfer(
            PVCPairList([pair]), NullTransport(NAME_PAIR), LocalServiceEndpoint(SERVER, LABELS)
        )
        with pytest.raises(ValidationError, match="only copies block or VM disk volumes"):
            transfer.validate()

    def test_block_and_vm_disk_accepted(self, direct_transfer):
        """Test block and VM disk claims validate together."""
        direct_transfer.validate()


class TestBlockrsyncServer:
    """Test the blockrsync server pod."""

    def test_server_command(self, direct_transfer, pvc_list):
        """Test the target proxy listens on the server port with one id per claim."""
        assert direct_transfer.server_command() == [
            "/proxy",
            "--target",
            "--listen-port",
            "2222",
            "--blockrsync-path",
            "/blockrsync",
            "--control-file",
            CONTROL_FILE,
            "--block-size",
            "131072",
            "--identifier",
            pvc_list[0].label_safe_name,
            "--identifier",
            pvc_list[1].label_safe_name,
        ]

    def test_server_pod(self, direct_transfer, pvc_list):
        """Test block claims become devices and VM disks become mounts."""
        pod = direct_transfer.server_pod()
        block_id = pvc_list[0].label_safe_name
        vm_id = pvc_list[1].label_safe_name
        assert pod["metadata"]["name"] == "blockrsync-server"
        assert pod["metadata"]["namespace"] == "dest"
        assert pod["metadata"]["labels"] == LABELS
        assert pod["spec"]["restartPolicy"] == "Never"
        server = pod["spec"]["containers"][0]
        assert server["imagePullPolicy"] == "Always"
        assert server["image"] == "quay.io/awels/blockrsync:latest"
        assert server["volumeDevices"] == [{"name": block_id, "devicePath": f"/dev/{block_id}"}]
        assert {"name": vm_id, "mountPath": f"/mnt/{vm_id}"} in server["volumeMounts"]
        assert server["env"] == [
            {"name": f"id-{block_id}", "value": f"/dev/{block_id}"},
            {"name": f"id-{vm_id}", "value": f"/mnt/{vm_id}/disk.img"},
        ]
        communication = {"name": "stunnel-communication", "emptyDir": {"medium": "Memory"}}
        assert communication in pod["spec"]["volumes"]

    def test_block_only_server_env(self, claim_factory):
        """Test a raw block claim still maps its identifier to the device node."""
        pair = PVCPair.create(
            PVC(claim_factory("disk", block=True)), PVC(claim_factory("disk", "dest", block=True))
        )
        transfer = new_transfer(
            "blockrsync",
            PVCPairList([pair]),
            NullTransport(NAME_PAIR),
            LocalServiceEndpoint(SERVER, LABELS),
        )
        pvc_id = pair.label_safe_name
        server = transfer.server_pod()["spec"]["containers"][0]
        assert server["env"] == [{"name": f"id-{pvc_id}", "value": f"/dev/{pvc_id}"}]

    def test_image_override(self, store, pvc_list):
        """Test the destination image option replaces the default image."""
        transfer = BlockrsyncTransfer(
            pvc_list,
            NullTransport(NAME_PAIR),
            LocalServiceEndpoint(SERVER, LABELS),
            TransferOptions(destination_image="example.com/blockrsync:1"),
        )
        assert transfer.server_pod()["spec"]["containers"][0]["image"] == "example.com/blockrsync:1"
        assert transfer.client_image == "quay.io/awels/blockrsync:latest"

    def test_create_server_creates_no_config(self, direct_transfer, store):
        """Test only the pod and the endpoint service are created."""
        direct_transfer.create_server(store)
        assert store.calls == [
            ("create", "Pod", "blockrsync-server"),
            ("create", "Service", "blockrsync-server"),
        ]

    def test_stunnel_side_car_waits_for_control_file(self, store, pvc_list, fake_tls):
        """Test the tunnel side-car stops once the proxy writes the control file."""
        endpoint = RouteEndpoint(SERVER, EndpointType.PASSTHROUGH, LABELS, "apps.example.com")
        transfer = BlockrsyncTransfer(pvc_list, StunnelTransport(NAME_PAIR), endpoint)
        transfer.create_server(store)
        pod = store.stored(Kind.POD, "dest", "blockrsync-server")
        stunnel = pod["spec"]["containers"][1]
        assert stunnel["command"][:2] == ["/bin/bash", "-c"]
        assert CONTROL_FILE in stunnel["command"][2]
        assert {"name": "stunnel-communication", "mountPath": "/usr/share/stunnel-communication"} in (
            stunnel["volumeMounts"]
        )
        store.stored(Kind.CONFIG_MAP, "dest", "crane2-stunnel-server-config-block")


class TestBlockrsyncClient:
    """Test the blockrsync client pods."""

    def test_block_client_pod(self, direct_transfer, pvc_list):
        """Test the client reads the raw device through the local proxy."""
        pair = pvc_list[0]
        pvc_id = pair.label_safe_name
        pod = direct_transfer.client_pod(pair)
        assert pod["metadata"]["generateName"] == "blockrsync-"
        assert pod["metadata"]["labels"] == {"pvc": pvc_id}
        proxy, blockrsync = pod["spec"]["containers"]
        assert proxy["command"] == [
            "/proxy",
            "--source",
            "--target-address",
            "blockrsync-server.dest.svc.cluster.local",
            "--identifier",
            pvc_id,
            "--listen-port",
            "9002",
            "--target-port",
            "2222",
            "--control-file",
            CONTROL_FILE,
        ]
        assert blockrsync["command"] == [
            "/blockrsync",
            f"/dev/{pvc_id}",
            "--source",
            "--target-address",
            "localhost",
            "--port",
            "9002",
            "--zap-log-level",
            "3",
            "--block-size",
            "131072",
        ]
        assert blockrsync["volumeDevices"] == [{"name": pvc_id, "devicePath": f"/dev/{pvc_id}"}]

    def test_vm_disk_client_pod(self, direct_transfer, pvc_list):
        """Test a VM disk is read from the disk image in its mount."""
        pair = pvc_list[1]
        pvc_id = pair.label_safe_name
        blockrsync = direct_transfer.client_pod(pair)["spec"]["containers"][1]
        assert blockrsync["command"][1] == f"/mnt/{pvc_id}/disk.img"
        assert {"name": pvc_id, "mountPath": f"/mnt/{pvc_id}"} in blockrsync["volumeMounts"]

    def test_create_client(self, direct_transfer, store):
        """Test one client pod is created per pair."""
        direct_transfer.create_client(store)
        assert len(store.of_kind(Kind.POD)) == 2
        assert all(call[1] == "Pod" for call in store.calls)


class TestNewTransfer:
    """Test the transfer factory."""

    def test_new_transfer(self, pvc_list):
        """Test transfer types map to their classes."""
        transfer = new_transfer(
            "blockrsync", pvc_list, NullTransport(NAME_PAIR), LocalServiceEndpoint(SERVER, LABELS)
        )
        assert isinstance(transfer, BlockrsyncTransfer)
        assert transfer.transport_prefix == "block"

    def test_rsync_needs_rsync_options(self, pvc_list):
        """Test rsync refuses options without command flags."""
        with pytest.raises(ConfigurationError, match="RsyncTransferOptions"):
            new_transfer(
                "rsync",
                pvc_list,
                NullTransport(NAME_PAIR),
                LocalServiceEndpoint(SERVER, LABELS),
                TransferOptions(),
            )

    def test_unknown_transfer(self, pvc_list):
        """Test an unknown transfer type raises ConfigurationError."""
        with pytest.raises(ConfigurationError, match="unknown transfer type"):
            new_transfer(
                "scp", pvc_list, NullTransport(NAME_PAIR), LocalServiceEndpoint(SERVER, LABELS)
            )
