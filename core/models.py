"""
Floor Fact Models

Column contracts for the DataFrames returned by the fact fetchers, and the
read-only record types the classifiers work on. Records are built once per
refresh cycle from DataFrame rows; missing values become None, never errors.
"""

import json
import logging
import math
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Dict, List, Optional, Tuple

import pandas as pd
import pytz

logger = logging.getLogger(__name__)

# One row per open production batch (ended_at IS NULL)
BATCH_COLUMNS = [
    'batch_id',
    'wo_id',
    'stage',
    'quantity',
    'stage_entered_at',
    'ended_at',
    'status',
    'external_process_type',
    'external_partner_id',
    'external_partner_name',
    'external_sent_at',
]

MACHINE_COLUMNS = [
    'machine_id',
    'name',
    'status',
    'stage',
    'current_wo_id',
    'current_job_start',
    'qc_status',
]

MAINTENANCE_COLUMNS = ['machine_id', 'reason', 'start_time', 'end_time']

ASSIGNMENT_COLUMNS = ['machine_id', 'wo_id', 'scheduled_start', 'status']

WORK_ORDER_COLUMNS = [
    'wo_id',
    'display_id',
    'item_code',
    'quantity',
    'due_date',
    'qc_material_passed',
    'qc_first_piece_passed',
    'cycle_time_seconds',
    'external_process_type',
]

ITEM_MASTER_COLUMNS = ['item_code', 'cycle_time_seconds']

LOG_COLUMNS = [
    'machine_id',
    'wo_id',
    'log_date',
    'logged_at',
    'cycle_time_seconds',
    'actual_quantity',
    'ok_quantity',
    'downtime_minutes',
    'downtime_events',
]

BATCH_TIMESTAMP_COLUMNS = ['stage_entered_at', 'ended_at', 'external_sent_at']


def empty_frame(columns: List[str]) -> pd.DataFrame:
    """DataFrame with the given column contract and no rows"""
    return pd.DataFrame(columns=columns)


def is_missing(value) -> bool:
    """True for None, NaN, NaT and empty strings"""
    if value is None:
        return True
    if isinstance(value, str):
        return not value.strip()
    if isinstance(value, float) and math.isnan(value):
        return True
    try:
        return bool(pd.isna(value))
    except (TypeError, ValueError):
        return False


def to_utc(value) -> Optional[datetime]:
    """Convert a DB/pandas timestamp to an aware UTC datetime (naive values are taken as UTC)"""
    if is_missing(value):
        return None
    try:
        ts = pd.Timestamp(value)
    except (ValueError, TypeError):
        logger.warning(f"Unparseable timestamp ignored: {value!r}")
        return None
    if ts.tzinfo is None:
        ts = ts.tz_localize(pytz.UTC)
    else:
        ts = ts.tz_convert(pytz.UTC)
    return ts.to_pydatetime()


def to_date(value) -> Optional[date]:
    if is_missing(value):
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    try:
        return pd.Timestamp(value).date()
    except (ValueError, TypeError):
        logger.warning(f"Unparseable date ignored: {value!r}")
        return None


def to_float(value, default: Optional[float] = None) -> Optional[float]:
    """Float conversion that tolerates Decimal, strings and missing values"""
    if is_missing(value):
        return default
    try:
        return float(value)
    except (ValueError, TypeError):
        return default


def to_flag(value) -> Optional[bool]:
    """Tri-state boolean: True, False or None (not yet decided)"""
    if is_missing(value):
        return None
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in ('true', 't', 'yes', 'y', '1', 'passed', 'pass'):
            return True
        if lowered in ('false', 'f', 'no', 'n', '0', 'failed', 'fail'):
            return False
        return None
    return bool(value)


def to_text(value) -> Optional[str]:
    if is_missing(value):
        return None
    return str(value)


@dataclass(frozen=True)
class Machine:
    machine_id: str
    name: str
    status: str = ""
    stage: Optional[str] = None
    current_wo_id: Optional[str] = None
    current_job_start: Optional[datetime] = None
    qc_status: Optional[str] = None

    @classmethod
    def from_row(cls, row: Dict) -> 'Machine':
        machine_id = to_text(row.get('machine_id')) or "unknown"
        return cls(
            machine_id=machine_id,
            name=to_text(row.get('name')) or "Unknown",
            status=(to_text(row.get('status')) or "").strip().lower(),
            stage=to_text(row.get('stage')),
            current_wo_id=to_text(row.get('current_wo_id')),
            current_job_start=to_utc(row.get('current_job_start')),
            qc_status=to_text(row.get('qc_status')),
        )


@dataclass(frozen=True)
class MaintenanceEvent:
    machine_id: str
    reason: str
    start_time: Optional[datetime]
    end_time: Optional[datetime] = None

    @property
    def is_active(self) -> bool:
        return self.end_time is None

    @classmethod
    def from_row(cls, row: Dict) -> 'MaintenanceEvent':
        return cls(
            machine_id=to_text(row.get('machine_id')) or "unknown",
            reason=to_text(row.get('reason')) or "",
            start_time=to_utc(row.get('start_time')),
            end_time=to_utc(row.get('end_time')),
        )


@dataclass(frozen=True)
class QueuedAssignment:
    machine_id: str
    wo_id: Optional[str]
    scheduled_start: Optional[datetime]
    status: str = "scheduled"

    @classmethod
    def from_row(cls, row: Dict) -> 'QueuedAssignment':
        return cls(
            machine_id=to_text(row.get('machine_id')) or "unknown",
            wo_id=to_text(row.get('wo_id')),
            scheduled_start=to_utc(row.get('scheduled_start')),
            status=(to_text(row.get('status')) or "scheduled").lower(),
        )


@dataclass(frozen=True)
class WorkOrderSummary:
    wo_id: str
    display_id: str = "Unknown"
    item_code: Optional[str] = None
    quantity: float = 0.0
    due_date: Optional[date] = None
    qc_material_passed: Optional[bool] = None
    qc_first_piece_passed: Optional[bool] = None
    cycle_time_seconds: Optional[float] = None
    external_process_type: Optional[str] = None

    def has_failed_qc(self) -> bool:
        """Explicit QC failure on material or first piece"""
        return self.qc_material_passed is False or self.qc_first_piece_passed is False

    def is_overdue(self, today: date) -> bool:
        return self.due_date is not None and self.due_date < today

    @classmethod
    def from_row(cls, row: Dict) -> 'WorkOrderSummary':
        wo_id = to_text(row.get('wo_id')) or "unknown"
        return cls(
            wo_id=wo_id,
            display_id=to_text(row.get('display_id')) or wo_id,
            item_code=to_text(row.get('item_code')),
            quantity=to_float(row.get('quantity'), 0.0),
            due_date=to_date(row.get('due_date')),
            qc_material_passed=to_flag(row.get('qc_material_passed')),
            qc_first_piece_passed=to_flag(row.get('qc_first_piece_passed')),
            cycle_time_seconds=to_float(row.get('cycle_time_seconds')),
            external_process_type=to_text(row.get('external_process_type')),
        )


@dataclass(frozen=True)
class DowntimeEvent:
    reason: str
    minutes: float = 0.0
    resolved: bool = False


def parse_downtime_events(raw) -> Tuple[DowntimeEvent, ...]:
    """
    Parse the downtime_events JSON column of a daily production log.

    Accepts a JSON string or an already decoded list of
    {"reason": ..., "minutes": ..., "resolved": ...} objects.
    """
    if raw is None or (not isinstance(raw, (list, tuple)) and is_missing(raw)):
        return ()

    events = raw
    if isinstance(raw, str):
        try:
            events = json.loads(raw)
        except json.JSONDecodeError:
            logger.warning(f"Could not decode downtime events: {raw!r}")
            return ()

    if not isinstance(events, (list, tuple)):
        return ()

    parsed = []
    for event in events:
        if not isinstance(event, dict):
            continue
        parsed.append(DowntimeEvent(
            reason=to_text(event.get('reason')) or "Unknown Reason",
            minutes=to_float(event.get('minutes'), 0.0),
            resolved=bool(to_flag(event.get('resolved'))),
        ))
    return tuple(parsed)


@dataclass(frozen=True)
class ProductionLogRow:
    machine_id: str
    wo_id: Optional[str]
    log_date: Optional[date]
    logged_at: Optional[datetime]
    cycle_time_seconds: Optional[float] = None
    actual_quantity: float = 0.0
    ok_quantity: float = 0.0
    downtime_minutes: float = 0.0
    downtime_events: Tuple[DowntimeEvent, ...] = field(default_factory=tuple)

    @property
    def unresolved_downtime(self) -> Tuple[DowntimeEvent, ...]:
        return tuple(e for e in self.downtime_events if not e.resolved)

    @classmethod
    def from_row(cls, row: Dict) -> 'ProductionLogRow':
        return cls(
            machine_id=to_text(row.get('machine_id')) or "unknown",
            wo_id=to_text(row.get('wo_id')),
            log_date=to_date(row.get('log_date')),
            logged_at=to_utc(row.get('logged_at')),
            cycle_time_seconds=to_float(row.get('cycle_time_seconds')),
            actual_quantity=to_float(row.get('actual_quantity'), 0.0),
            ok_quantity=to_float(row.get('ok_quantity'), 0.0),
            downtime_minutes=to_float(row.get('downtime_minutes'), 0.0),
            downtime_events=parse_downtime_events(row.get('downtime_events')),
        )


def records_from_frame(df: Optional[pd.DataFrame], record_type) -> list:
    """Build record objects from every row of a fetched DataFrame"""
    if df is None or df.empty:
        return []
    return [record_type.from_row(row) for row in df.to_dict('records')]
