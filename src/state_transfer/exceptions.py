"""
Custom exceptions for state transfer operations.

This module defines all custom exceptions used throughout the state transfer system.
"""

from typing import List, Optional, Sequence, Union


class StateTransferError(Exception):
    """Base exception for state transfer operations."""

    def __init__(self, message: str, error_code: int = 1000) -> None:
        super().__init__(message)
        self.error_code = error_code
        self.message = message


class ConfigurationError(StateTransferError):
    """Configuration-related errors."""

    def __init__(self, message: str) -> None:
        super().__init__(message, error_code=1001)


class ValidationError(StateTransferError):
    """Aggregate of every validation failure found in one pass."""

    def __init__(
        self, errors: Union[Sequence[str], str], validation_type: str = "general"
    ) -> None:
        if isinstance(errors, str):
            errors = [errors]
        self.errors: List[str] = list(errors)
        super().__init__(
            f"Validation error ({validation_type}): {'; '.join(self.errors)}",
            error_code=1002,
        )
        self.validation_type = validation_type


class ClusterAPIError(StateTransferError):
    """Cluster object-store errors."""

    def __init__(
        self,
        message: str,
        status: Optional[int] = None,
        reason: Optional[str] = None,
        kind: Optional[str] = None,
        namespace: Optional[str] = None,
        name: Optional[str] = None,
    ) -> None:
        target = "/".join(part for part in (kind, namespace, name) if part)
        prefix = f"Cluster API error on {target}" if target else "Cluster API error"
        super().__init__(f"{prefix}: {message}", error_code=1003)
        self.status = status
        self.reason = reason
        self.kind = kind
        self.namespace = namespace
        self.name = name


class NotFoundError(ClusterAPIError):
    """Object does not exist."""

    def __init__(
        self, kind: str, namespace: Optional[str], name: Optional[str]
    ) -> None:
        super().__init__(
            "not found",
            status=404,
            reason="NotFound",
            kind=kind,
            namespace=namespace,
            name=name,
        )


class AlreadyExistsError(ClusterAPIError):
    """Object already exists."""

    def __init__(
        self, kind: str, namespace: Optional[str], name: Optional[str]
    ) -> None:
        super().__init__(
            "already exists",
            status=409,
            reason="AlreadyExists",
            kind=kind,
            namespace=namespace,
            name=name,
        )


class KindNotServedError(ClusterAPIError):
    """The cluster does not serve the requested API group/kind."""

    def __init__(self, kind: str, api_version: str) -> None:
        super().__init__(
            f"{api_version} is not served by this cluster",
            status=404,
            reason="KindNotServed",
            kind=kind,
        )
        self.api_version = api_version


class PartialCreationError(StateTransferError):
    """Some sub-resources of a multi-object creation step failed."""

    def __init__(self, resource: str, errors: Sequence[Exception]) -> None:
        self.errors: List[Exception] = list(errors)
        details = "; ".join(str(e) for e in self.errors)
        super().__init__(
            f"Failed to create {resource}: {details}", error_code=1004
        )
        self.resource = resource


class TransferError(StateTransferError):
    """Data transfer errors."""

    def __init__(self, message: str, namespace: str) -> None:
        super().__init__(
            f"Transfer error in namespace {namespace}: {message}", error_code=1005
        )
        self.namespace = namespace
