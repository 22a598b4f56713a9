"""
Tests for background task helpers
"""

from datetime import date

import pytest

from wardtrack.exceptions import ValidationError
from wardtrack.modules.overdue import OverdueScanner
from wardtrack.tasks.overdue import summarize_report
from wardtrack.tasks.reconciliation import reconcile_collection_task


class TestOverdueSummary:
    def test_counts_and_plans(self, aggregate, clock):
        """Test counts and plans"""
        aggregate.schedule_review(date(2024, 1, 10))
        aggregate.schedule_procedure("Fasciotomy", date(2024, 1, 12))

        summary = summarize_report(OverdueScanner(clock).scan(aggregate.plan))

        assert summary["reviews"] == 1
        assert summary["procedures"] == 1
        assert summary["total"] == 2
        assert summary["plans"] == ["plan_test"]
        assert summary["as_of"] == "2024-01-15T09:00:00"


class TestReconcileTask:
    def test_unknown_collection_rejected(self):
        """Test unknown collection rejected"""
        with pytest.raises(ValidationError):
            reconcile_collection_task("wards")
