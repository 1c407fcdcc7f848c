from datetime import timedelta

import pytest

from core.calculations.production_status import (
    AT_RISK,
    BLOCKED,
    IDLE,
    ON_CYCLE,
    classify_production,
    hours_running_today,
)


def test_ratio_between_bands_is_at_risk():
    status = classify_production(False, expected_per_hour=10.0, pieces_today=30, hours_running=4.0)

    assert status.status == AT_RISK
    assert status.ratio == pytest.approx(0.75)
    assert status.expected_pieces == pytest.approx(40.0)


@pytest.mark.parametrize("pieces, expected_status", [
    (34, ON_CYCLE),
    (40, ON_CYCLE),
    (50, ON_CYCLE),
    (24, AT_RISK),
    (23, BLOCKED),
    (0, BLOCKED),
])
def test_ratio_bands(pieces, expected_status):
    # 40 expected pieces: 0.85 -> 34, 0.60 -> 24
    assert classify_production(False, 10.0, pieces, 4.0).status == expected_status


def test_blockers_dominate_ratio():
    status = classify_production(True, expected_per_hour=10.0, pieces_today=100, hours_running=4.0)

    assert status.status == BLOCKED
    assert status.ratio is None


def test_unresolved_cycle_time_is_idle():
    assert classify_production(False, None, 30, 4.0).status == IDLE


def test_no_elapsed_time_is_on_cycle():
    status = classify_production(False, 10.0, 0, 0.0)

    assert status.status == ON_CYCLE
    assert status.ratio is None


def test_thresholds_are_overridable(settings):
    strict = settings.with_overrides(on_cycle_ratio=0.95, at_risk_ratio=0.80)

    assert classify_production(False, 10.0, 36, 4.0, strict).status == AT_RISK
    assert classify_production(False, 10.0, 36, 4.0, settings).status == ON_CYCLE


class TestHoursRunning:

    def test_job_started_today(self, now):
        assert hours_running_today(now - timedelta(hours=4), now) == pytest.approx(4.0)

    def test_clamped_to_day_start(self, now):
        day_start = now - timedelta(hours=12)

        assert hours_running_today(now - timedelta(days=2), now, day_start) == pytest.approx(12.0)

    def test_unknown_start(self, now):
        assert hours_running_today(None, now) == 0.0

    def test_future_start(self, now):
        assert hours_running_today(now + timedelta(minutes=5), now) == 0.0
