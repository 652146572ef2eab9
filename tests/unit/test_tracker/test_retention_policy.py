"""Unit tests for retention policy validation."""

import pytest
from pydantic import ValidationError

from shelfwatch.tracker.retention import RetentionPolicy, RetentionResult


class TestRetentionPolicy:
    """Tests for RetentionPolicy."""

    def test_default_keeps_everything(self) -> None:
        """Test the default policy prunes nothing."""
        assert RetentionPolicy().is_noop

    def test_one_period_is_enough(self) -> None:
        """Test a single period makes the policy active."""
        assert not RetentionPolicy(transition_days=30).is_noop

    @pytest.mark.parametrize("days", [0, -1])
    def test_period_must_be_positive(self, days: int) -> None:
        """Test zero or negative periods are rejected."""
        with pytest.raises(ValidationError):
            RetentionPolicy(snapshot_days=days)


class TestRetentionResult:
    """Tests for RetentionResult."""

    def test_total(self) -> None:
        """Test the total adds both tables."""
        result = RetentionResult(snapshots_pruned=4, transitions_pruned=2)
        assert result.total_pruned == 6
