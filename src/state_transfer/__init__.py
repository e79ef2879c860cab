"""State Transfer - migrate persistent volume claims between Kubernetes clusters."""

__version__ = "0.1.0"
__description__ = "PVC state transfer between Kubernetes clusters"

# Import main classes for easy access
from .client import StateTransferClient
from .config import AppConfig
from .endpoint import Endpoint, discover_endpoint, new_endpoint, wait_for_healthy
from .exceptions import (
    AlreadyExistsError,
    ClusterAPIError,
    ConfigurationError,
    KindNotServedError,
    NotFoundError,
    PartialCreationError,
    StateTransferError,
    TransferError,
    ValidationError,
)
from .models import (
    PVC,
    EndpointType,
    NamespacedName,
    NamespacedNamePair,
    PVCPair,
    PVCPairList,
    TransferType,
    TransportType,
)
from .quiesce import QuiesceController
from .transfer import Transfer, TransferOptions, new_transfer
from .transport import Transport, TransportOptions, new_transport

__all__ = [
    "__version__",
    "__description__",
    "StateTransferClient",
    "AppConfig",
    "Endpoint",
    "discover_endpoint",
    "new_endpoint",
    "wait_for_healthy",
    "AlreadyExistsError",
    "ClusterAPIError",
    "ConfigurationError",
    "KindNotServedError",
    "NotFoundError",
    "PartialCreationError",
    "StateTransferError",
    "TransferError",
    "ValidationError",
    "PVC",
    "EndpointType",
    "NamespacedName",
    "NamespacedNamePair",
    "PVCPair",
    "PVCPairList",
    "TransferType",
    "TransportType",
    "QuiesceController",
    "Transfer",
    "TransferOptions",
    "new_transfer",
    "Transport",
    "TransportOptions",
    "new_transport",
]
