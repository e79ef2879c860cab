"""Label helpers shared by endpoints, transports and transfers."""

from typing import Dict, List, Mapping, Optional

from .exceptions import ValidationError
from .security import SecurityValidator

DEFAULT_APP_LABEL = "crane2"


def default_labels() -> Dict[str, str]:
    """Return a fresh copy of the default label set."""
    return {"app": DEFAULT_APP_LABEL}


def merge_labels(*label_sets: Optional[Mapping[str, str]]) -> Dict[str, str]:
    """Merge label maps left to right into a new dict. Inputs are not modified."""
    merged: Dict[str, str] = {}
    for labels in label_sets:
        if labels:
            merged.update(labels)
    return merged


def label_errors(labels: Optional[Mapping[str, str]]) -> List[str]:
    errors: List[str] = []
    for key, value in (labels or {}).items():
        errors.extend(SecurityValidator.label_key_errors(key))
        if not SecurityValidator.is_label_value(value):
            errors.append(f"label {key!r}: invalid value {value!r}")
    return errors


def validate_labels(labels: Optional[Mapping[str, str]]) -> Dict[str, str]:
    """
    Validate a label map and return a copy of it.

    Args:
        labels: Label map to validate

    Returns:
        Dict[str, str]: Copy of the labels

    Raises:
        ValidationError: Listing every invalid key and value
    """
    errors = label_errors(labels)
    if errors:
        raise ValidationError(errors, validation_type="labels")
    return dict(labels or {})


def selector_string(labels: Mapping[str, str]) -> str:
    """Render a label map as a Kubernetes equality selector."""
    return ",".join(f"{key}={value}" for key, value in sorted(labels.items()))
