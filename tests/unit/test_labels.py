"""Unit tests for label helpers."""

import pytest

from state_transfer.exceptions import ValidationError
from state_transfer.labels import (
    default_labels,
    label_errors,
    merge_labels,
    selector_string,
    validate_labels,
)


class TestDefaultLabels:
    """Test the default label set."""

    def test_default_labels(self):
        """Test the default label set is app=crane2."""
        assert default_labels() == {"app": "crane2"}

    def test_default_labels_is_a_fresh_copy(self):
        """Test mutating the returned map does not leak into later calls."""
        labels = default_labels()
        labels["extra"] = "x"
        assert default_labels() == {"app": "crane2"}


class TestMergeLabels:
    """Test label merging."""

    def test_later_maps_win(self):
        """Test keys from later maps override earlier ones."""
        merged = merge_labels({"app": "crane2", "a": "1"}, None, {"a": "2"})
        assert merged == {"app": "crane2", "a": "2"}

    def test_inputs_not_modified(self):
        """Test the input maps are left untouched."""
        first = {"a": "1"}
        merge_labels(first, {"b": "2"})
        assert first == {"a": "1"}


class TestValidateLabels:
    """Test label validation."""

    def test_valid_labels_copied(self):
        """Test a valid map is returned as a copy."""
        labels = {"app": "crane2", "example.com/owner": "team-a"}
        result = validate_labels(labels)
        assert result == labels
        assert result is not labels

    def test_none_is_empty(self):
        """Test None validates to an empty map."""
        assert validate_labels(None) == {}

    def test_every_problem_reported(self):
        """Test bad keys and values are aggregated into one error."""
        with pytest.raises(ValidationError) as exc_info:
            validate_labels({"-bad": "ok", "good": "not valid!"})
        assert exc_info.value.validation_type == "labels"
        assert len(exc_info.value.errors) == 2

    def test_label_errors_without_raising(self):
        """Test label_errors lists problems as strings."""
        errors = label_errors({"app": "x" * 64})
        assert len(errors) == 1
        assert "invalid value" in errors[0]


class TestSelectorString:
    """Test selector rendering."""

    def test_selector_sorted(self):
        """Test selectors are rendered in key order."""
        assert selector_string({"b": "2", "app": "crane2"}) == "app=crane2,b=2"

    def test_empty_selector(self):
        """Test an empty map renders as an empty selector."""
        assert selector_string({}) == ""
