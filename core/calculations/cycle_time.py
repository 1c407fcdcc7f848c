"""
Cycle Time Resolution

Resolves the effective cycle time of a (machine, work order) pair through an
ordered fallback chain and reports which tier answered:

1. log          - most recent cycle time logged for this machine + work order
2. work_order   - cycle time declared on the work order
3. item_master  - cycle time declared on the item master for the work order's item

Only positive values count. When no tier answers, the cycle time is absent
(None, not zero) and so is the expected output per hour.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Dict, Iterable, Optional

from core.models import ProductionLogRow, WorkOrderSummary

SOURCE_LOG = "log"
SOURCE_WORK_ORDER = "work_order"
SOURCE_ITEM_MASTER = "item_master"

RESOLUTION_ORDER = (SOURCE_LOG, SOURCE_WORK_ORDER, SOURCE_ITEM_MASTER)

_EPOCH = datetime(1970, 1, 1)


@dataclass(frozen=True)
class CycleTimeResolution:
    """Effective cycle time with provenance"""
    seconds: Optional[float] = None
    source: Optional[str] = None

    @property
    def is_resolved(self) -> bool:
        return self.seconds is not None

    @property
    def expected_per_hour(self) -> Optional[float]:
        if self.seconds is None:
            return None
        return 3600.0 / self.seconds

    def to_dict(self) -> Dict:
        return {
            'seconds': self.seconds,
            'source': self.source,
            'expected_per_hour': round(self.expected_per_hour, 4) if self.expected_per_hour is not None else None,
        }


UNRESOLVED = CycleTimeResolution()


def _positive(value) -> Optional[float]:
    if value is None:
        return None
    try:
        value = float(value)
    except (TypeError, ValueError):
        return None
    return value if value > 0 else None


def latest_logged_cycle_time(
    logs: Iterable[ProductionLogRow],
    machine_id: str,
    wo_id: str
) -> Optional[float]:
    """
    Most recent positive cycle time logged against this exact machine + work order.

    Rows are ordered by logged_at (rows without a timestamp sort first), then by
    their position, so the last row logged wins.
    """
    candidates = [
        (log.logged_at, index, log.cycle_time_seconds)
        for index, log in enumerate(logs)
        if log.machine_id == machine_id and log.wo_id == wo_id
        and _positive(log.cycle_time_seconds) is not None
    ]
    if not candidates:
        return None

    def _key(candidate):
        logged_at, index, _ = candidate
        stamp = logged_at.replace(tzinfo=None) if logged_at is not None else _EPOCH
        return (logged_at is not None, stamp, index)

    return float(max(candidates, key=_key)[2])


def resolve_cycle_time(
    machine_id: str,
    work_order: Optional[WorkOrderSummary],
    logs: Iterable[ProductionLogRow],
    item_master: Dict[str, float],
    wo_id: Optional[str] = None
) -> CycleTimeResolution:
    """
    Resolve the effective cycle time for a machine's work order.

    Args:
        machine_id: Machine running the job
        work_order: Work order summary (None when the reference could not be found)
        logs: Today's production log rows
        item_master: item_code -> cycle time seconds
        wo_id: Work order id, used when the summary itself is missing

    Returns:
        CycleTimeResolution; UNRESOLVED when every tier is empty

    Example:
        >>> res = resolve_cycle_time("m1", wo, logs, {"ITEM-1": 45})
        >>> res.source, res.expected_per_hour
        ('item_master', 80.0)
    """
    wo_id = work_order.wo_id if work_order is not None else wo_id
    if wo_id is None:
        return UNRESOLVED

    tiers = (
        (SOURCE_LOG, lambda: latest_logged_cycle_time(logs, machine_id, wo_id)),
        (SOURCE_WORK_ORDER, lambda: _positive(work_order.cycle_time_seconds) if work_order else None),
        (SOURCE_ITEM_MASTER, lambda: _positive(item_master.get(work_order.item_code))
            if work_order is not None and work_order.item_code else None),
    )

    for source, lookup in tiers:
        seconds = lookup()
        if seconds is not None:
            return CycleTimeResolution(seconds=seconds, source=source)

    return UNRESOLVED
