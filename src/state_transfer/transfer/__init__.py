"""Data movers: server and client workloads for each transfer type."""

from typing import Optional, Union

from ..endpoint import Endpoint
from ..exceptions import ConfigurationError
from ..models import PVCPairList, TransferType
from ..transport import Transport
from .base import (
    ContainerMutation,
    PodSpecMutation,
    Transfer,
    TransferOptions,
    are_filtered_pods_healthy,
    is_pod_healthy,
)
from .blockrsync import BlockrsyncTransfer
from .rclone import RcloneTransfer
from .rsync import RsyncCommandOptions, RsyncTransfer, RsyncTransferOptions

_TRANSFERS = {
    TransferType.RSYNC: RsyncTransfer,
    TransferType.RCLONE: RcloneTransfer,
    TransferType.BLOCKRSYNC: BlockrsyncTransfer,
}


def new_transfer(
    transfer_type: Union[TransferType, str],
    pvc_list: PVCPairList,
    transport: Transport,
    endpoint: Endpoint,
    options: Optional[TransferOptions] = None,
) -> Transfer:
    """
    Construct the transfer variant for transfer_type.

    Raises:
        ConfigurationError: If transfer_type is unknown, or rsync is given
            options without rsync command flags
    """
    try:
        transfer_type = TransferType(transfer_type)
    except ValueError:
        raise ConfigurationError(f"unknown transfer type {transfer_type!r}") from None
    if (
        transfer_type == TransferType.RSYNC
        and options is not None
        and not isinstance(options, RsyncTransferOptions)
    ):
        raise ConfigurationError("rsync transfers need RsyncTransferOptions")
    return _TRANSFERS[transfer_type](pvc_list, transport, endpoint, options)


__all__ = [
    "BlockrsyncTransfer",
    "ContainerMutation",
    "PodSpecMutation",
    "RcloneTransfer",
    "RsyncCommandOptions",
    "RsyncTransfer",
    "RsyncTransferOptions",
    "Transfer",
    "TransferOptions",
    "are_filtered_pods_healthy",
    "is_pod_healthy",
    "new_transfer",
]
