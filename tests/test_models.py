import json
from datetime import date, datetime

import numpy as np
import pandas as pd
import pytest
import pytz

from core.models import (
    Machine,
    ProductionLogRow,
    WorkOrderSummary,
    is_missing,
    parse_downtime_events,
    to_flag,
    to_utc,
)


@pytest.mark.parametrize("value, missing", [
    (None, True),
    (np.nan, True),
    (pd.NaT, True),
    ("  ", True),
    ("x", False),
    (0, False),
    (False, False),
])
def test_is_missing(value, missing):
    assert is_missing(value) == missing


@pytest.mark.parametrize("value, flag", [
    (True, True),
    (False, False),
    ("passed", True),
    ("FAILED", False),
    ("t", True),
    ("pending", None),
    (None, None),
    (np.nan, None),
])
def test_to_flag(value, flag):
    assert to_flag(value) is flag


def test_naive_timestamps_are_taken_as_utc():
    assert to_utc(datetime(2024, 6, 10, 6, 30)) == datetime(2024, 6, 10, 6, 30, tzinfo=pytz.UTC)


def test_aware_timestamps_are_converted_to_utc():
    ist = pytz.timezone("Asia/Kolkata").localize(datetime(2024, 6, 10, 12, 0))

    assert to_utc(ist) == datetime(2024, 6, 10, 6, 30, tzinfo=pytz.UTC)


def test_downtime_events_from_json():
    raw = json.dumps([
        {"reason": "Tool change", "minutes": 12, "resolved": False},
        {"reason": "Power cut", "minutes": "5", "resolved": True},
        {"minutes": 3},
        "not an event",
    ])

    events = parse_downtime_events(raw)

    assert [e.reason for e in events] == ["Tool change", "Power cut", "Unknown Reason"]
    assert events[1].minutes == 5.0
    assert [e.resolved for e in events] == [False, True, False]


@pytest.mark.parametrize("raw", [None, np.nan, "", "{not json", json.dumps({"reason": "x"})])
def test_unusable_downtime_events(raw):
    assert parse_downtime_events(raw) == ()


def test_machine_defaults():
    machine = Machine.from_row({'machine_id': 7, 'name': None, 'status': ' RUNNING ', 'current_wo_id': np.nan})

    assert machine.machine_id == "7"
    assert machine.name == "Unknown"
    assert machine.status == "running"
    assert machine.current_wo_id is None


def test_work_order_summary():
    work_order = WorkOrderSummary.from_row({
        'wo_id': 'wo1',
        'quantity': '25',
        'due_date': pd.Timestamp("2024-06-09"),
        'qc_material_passed': True,
        'qc_first_piece_passed': False,
    })

    assert work_order.display_id == "wo1"
    assert work_order.quantity == 25.0
    assert work_order.due_date == date(2024, 6, 9)
    assert work_order.is_overdue(date(2024, 6, 10))
    assert work_order.has_failed_qc()


def test_undecided_qc_is_not_a_failure():
    assert not WorkOrderSummary(wo_id='wo1').has_failed_qc()


def test_log_row_unresolved_downtime():
    log = ProductionLogRow.from_row({
        'machine_id': 'm1',
        'wo_id': 'wo1',
        'log_date': '2024-06-10',
        'actual_quantity': None,
        'downtime_events': [{"reason": "Jam", "resolved": False}, {"reason": "Setup", "resolved": "true"}],
    })

    assert log.actual_quantity == 0.0
    assert log.log_date == date(2024, 6, 10)
    assert [e.reason for e in log.unresolved_downtime] == ["Jam"]
