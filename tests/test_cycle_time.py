from datetime import timedelta

import pytest

from core.calculations.cycle_time import (
    SOURCE_ITEM_MASTER,
    SOURCE_LOG,
    SOURCE_WORK_ORDER,
    UNRESOLVED,
    latest_logged_cycle_time,
    resolve_cycle_time,
)
from core.models import ProductionLogRow, WorkOrderSummary


def _log(now, machine_id="m1", wo_id="wo1", seconds=None, minutes_ago=0):
    return ProductionLogRow(
        machine_id=machine_id,
        wo_id=wo_id,
        log_date=now.date(),
        logged_at=now - timedelta(minutes=minutes_ago),
        cycle_time_seconds=seconds,
    )


@pytest.fixture
def work_order():
    return WorkOrderSummary(wo_id="wo1", display_id="WO-0001", item_code="ITEM-1", cycle_time_seconds=60.0)


def test_log_tier_wins_over_everything(now, work_order):
    logs = [_log(now, seconds=45.0)]

    resolution = resolve_cycle_time("m1", work_order, logs, {"ITEM-1": 90.0})

    assert resolution.source == SOURCE_LOG
    assert resolution.seconds == 45.0
    assert resolution.expected_per_hour == pytest.approx(80.0)


def test_most_recent_log_is_used(now):
    logs = [
        _log(now, seconds=30.0, minutes_ago=5),
        _log(now, seconds=50.0, minutes_ago=60),
        _log(now, seconds=40.0, minutes_ago=10),
    ]

    assert latest_logged_cycle_time(logs, "m1", "wo1") == 30.0


def test_logs_for_other_pairs_are_ignored(now, work_order):
    logs = [
        _log(now, machine_id="m2", seconds=10.0),
        _log(now, wo_id="wo9", seconds=10.0),
    ]

    resolution = resolve_cycle_time("m1", work_order, logs, {})

    assert resolution.source == SOURCE_WORK_ORDER
    assert resolution.seconds == 60.0


def test_item_master_is_last_resort(now):
    work_order = WorkOrderSummary(wo_id="wo1", item_code="ITEM-1")

    resolution = resolve_cycle_time("m1", work_order, [], {"ITEM-1": 45.0})

    assert resolution.source == SOURCE_ITEM_MASTER
    assert resolution.expected_per_hour == pytest.approx(80.0)


def test_non_positive_values_do_not_count(now):
    work_order = WorkOrderSummary(wo_id="wo1", item_code="ITEM-1", cycle_time_seconds=0.0)
    logs = [_log(now, seconds=-5.0)]

    resolution = resolve_cycle_time("m1", work_order, logs, {"ITEM-1": 20.0})

    assert resolution.source == SOURCE_ITEM_MASTER


def test_unresolved_is_absent_not_zero():
    work_order = WorkOrderSummary(wo_id="wo1", item_code="ITEM-1")

    resolution = resolve_cycle_time("m1", work_order, [], {})

    assert resolution == UNRESOLVED
    assert resolution.seconds is None
    assert resolution.source is None
    assert resolution.expected_per_hour is None
    assert not resolution.is_resolved


def test_missing_work_order_still_uses_logs(now):
    logs = [_log(now, seconds=36.0)]

    resolution = resolve_cycle_time("m1", None, logs, {}, wo_id="wo1")

    assert resolution.source == SOURCE_LOG
    assert resolution.expected_per_hour == pytest.approx(100.0)
