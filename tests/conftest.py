from datetime import date, datetime, timedelta

import pandas as pd
import pytest
import pytz

from core.analysis.snapshot import FactSet
from core.models import (
    ASSIGNMENT_COLUMNS,
    BATCH_COLUMNS,
    ITEM_MASTER_COLUMNS,
    LOG_COLUMNS,
    MACHINE_COLUMNS,
    MAINTENANCE_COLUMNS,
    WORK_ORDER_COLUMNS,
)
from core.settings import EngineSettings

# 12:00 in Asia/Kolkata; the local production day started 2024-06-09 18:30 UTC
NOW = datetime(2024, 6, 10, 6, 30, tzinfo=pytz.UTC)
TODAY = date(2024, 6, 10)


def _frame(columns, rows, defaults=None):
    defaults = defaults or {}
    return pd.DataFrame([{**defaults, **row} for row in rows], columns=columns)


@pytest.fixture
def now():
    return NOW


@pytest.fixture
def hours_ago():
    def _hours_ago(hours):
        return NOW - timedelta(hours=hours)
    return _hours_ago


@pytest.fixture
def settings():
    return EngineSettings()


@pytest.fixture
def make_batches():
    def _make(rows):
        rows = [{'batch_id': f"b{i}", 'status': 'queued', **row} for i, row in enumerate(rows, start=1)]
        return _frame(BATCH_COLUMNS, rows)
    return _make


@pytest.fixture
def make_machines():
    def _make(rows):
        return _frame(MACHINE_COLUMNS, rows, {'status': 'idle', 'qc_status': 'passed'})
    return _make


@pytest.fixture
def make_work_orders():
    def _make(rows):
        return _frame(WORK_ORDER_COLUMNS, rows, {
            'quantity': 100,
            'due_date': date(2024, 6, 30),
            'qc_material_passed': True,
            'qc_first_piece_passed': True,
        })
    return _make


@pytest.fixture
def make_maintenance():
    def _make(rows):
        return _frame(MAINTENANCE_COLUMNS, rows)
    return _make


@pytest.fixture
def make_assignments():
    def _make(rows):
        return _frame(ASSIGNMENT_COLUMNS, rows, {'status': 'scheduled'})
    return _make


@pytest.fixture
def make_item_master():
    def _make(rows):
        return _frame(ITEM_MASTER_COLUMNS, rows)
    return _make


@pytest.fixture
def make_logs():
    def _make(rows):
        return _frame(LOG_COLUMNS, rows, {'log_date': TODAY, 'actual_quantity': 0, 'ok_quantity': 0})
    return _make


@pytest.fixture
def floor_facts(hours_ago, make_batches, make_machines, make_maintenance, make_assignments,
                make_work_orders, make_item_master, make_logs):
    """
    A small floor:
    - production holds 3 batches waiting 2h/10h/14h (quantities 100/50/200)
    - m1 runs wo1 for 4h at 10 pieces/h (item master) and logged 30 pieces
    - m2 is idle with 4 scheduled jobs, the oldest 5h old
    - m3 (cutting) has an open preventive maintenance event
    """
    return FactSet(
        batches=make_batches([
            {'wo_id': 'wo1', 'stage': 'production', 'quantity': 100, 'stage_entered_at': hours_ago(2)},
            {'wo_id': 'wo2', 'stage': 'production', 'quantity': 50, 'stage_entered_at': hours_ago(10)},
            {'wo_id': 'wo3', 'stage': 'production', 'quantity': 200, 'stage_entered_at': hours_ago(14)},
        ]),
        machines=make_machines([
            {'machine_id': 'm1', 'name': 'Lathe 1', 'status': 'running', 'stage': 'production',
             'current_wo_id': 'wo1', 'current_job_start': hours_ago(4)},
            {'machine_id': 'm2', 'name': 'Mill 2'},
            {'machine_id': 'm3', 'name': 'Saw 3', 'stage': 'cutting'},
        ]),
        maintenance=make_maintenance([
            {'machine_id': 'm3', 'reason': 'Preventive maintenance', 'start_time': hours_ago(1)},
        ]),
        assignments=make_assignments([
            {'machine_id': 'm2', 'wo_id': 'wo2', 'scheduled_start': hours_ago(5)},
            {'machine_id': 'm2', 'wo_id': 'wo3', 'scheduled_start': hours_ago(3)},
            {'machine_id': 'm2', 'wo_id': 'wo4', 'scheduled_start': hours_ago(2)},
            {'machine_id': 'm2', 'wo_id': 'wo5', 'scheduled_start': hours_ago(1)},
        ]),
        work_orders=make_work_orders([
            {'wo_id': 'wo1', 'display_id': 'WO-0001', 'item_code': 'ITEM-1'},
            {'wo_id': 'wo2', 'display_id': 'WO-0002'},
            {'wo_id': 'wo3', 'display_id': 'WO-0003'},
            {'wo_id': 'wo4', 'display_id': 'WO-0004'},
            {'wo_id': 'wo5', 'display_id': 'WO-0005'},
        ]),
        item_master=make_item_master([
            {'item_code': 'ITEM-1', 'cycle_time_seconds': 360},
        ]),
        logs=make_logs([
            {'machine_id': 'm1', 'wo_id': 'wo1', 'logged_at': hours_ago(1), 'actual_quantity': 30},
        ]),
    )
