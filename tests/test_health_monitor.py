"""Tests for the per-target health monitor."""

from datetime import date, timedelta

import pytest

from dealer_crawl.layers.health_monitor import HealthMonitor
from dealer_crawl.models.records import AlertType
from dealer_crawl.models.target import Priority
from tests.conftest import make_run, make_target

TODAY = date(2026, 3, 10)


def history(*counts, slug="brighton-toyota"):
    """Runs on consecutive days before TODAY, newest first."""
    return [make_run(slug, TODAY - timedelta(days=i + 1), found) for i, found in enumerate(counts)]


@pytest.fixture
def monitor():
    return HealthMonitor()


class TestBaseline:
    def test_no_baseline_below_three_runs(self, monitor):
        assert monitor.baseline(history(100, 100)) is None

    def test_baseline_uses_seven_newest_runs(self, monitor):
        runs = history(10, 10, 10, 10, 10, 10, 10, 1000)
        assert monitor.baseline(runs) == pytest.approx(10)


class TestAlerts:
    def test_drop_below_half_of_baseline(self, monitor):
        result = monitor.check(make_target(), 40, 0, history(100, 100, 100))

        assert result.alert
        assert result.alert_type == AlertType.DROP_50PCT
        assert result.baseline_avg == pytest.approx(100)

    def test_exactly_half_is_not_a_drop(self, monitor):
        result = monitor.check(make_target(), 50, 0, history(100, 100, 100))
        assert not result.alert

    def test_insufficient_history_never_alerts_on_drop(self, monitor):
        result = monitor.check(make_target(), 1, 0, history(100, 100))

        assert not result.alert
        assert result.alert_type == AlertType.NONE
        assert result.baseline_avg is None

    def test_zero_found_on_anchor_wins_over_drop(self, monitor):
        result = monitor.check(make_target(is_anchor=True), 0, 0, history(100, 100, 100))
        assert result.alert_type == AlertType.ZERO_FOUND

    def test_zero_found_on_anchor_without_history(self, monitor):
        result = monitor.check(make_target(is_anchor=True), 0, 0, [])
        assert result.alert_type == AlertType.ZERO_FOUND

    def test_errors_on_high_priority_target(self, monitor):
        target = make_target(priority=Priority.HIGH)
        result = monitor.check(target, 0, 1, history(100, 100, 100))
        assert result.alert_type == AlertType.ERRORS

    def test_errors_on_normal_target_fall_through(self, monitor):
        result = monitor.check(make_target(), 0, 1, history(100, 100, 100))
        assert result.alert_type == AlertType.DROP_50PCT

    def test_zero_baseline_never_alerts(self, monitor):
        result = monitor.check(make_target(), 0, 0, history(0, 0, 0))
        assert not result.alert


class TestAnchorScenario:
    def test_healthy_anchor_run(self, monitor):
        result = monitor.check(make_target(is_anchor=True), 110, 0, history(100, 95, 105))

        assert not result.alert
        assert result.alert_type == AlertType.NONE
        assert result.baseline_avg == pytest.approx(100)
        assert result.history_runs == 3

    def test_same_anchor_finding_nothing(self, monitor):
        target = make_target(is_anchor=True, priority=Priority.HIGH)
        result = monitor.check(target, 0, 0, history(100, 95, 105))

        assert result.alert_type == AlertType.ZERO_FOUND
        assert result.baseline_avg == pytest.approx(100)
