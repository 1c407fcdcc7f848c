"""
Blocking Reason Resolution

Stages get one headline reason, chosen by a priority-ordered rule table
(first satisfied rule wins):

    no work > maintenance > qc > overdue > capacity > none

Machines get the full ordered list of blockers, because operators need the
complete remediation checklist: machine QC failure, unmet material QC, unmet
first-piece QC, then every unresolved downtime event on today's log.
"""

import logging
from dataclasses import dataclass, asdict
from typing import Callable, Dict, Iterable, List, Mapping, Optional, Sequence, Set, Tuple

import pandas as pd

from core.calculations.readiness import categorize_status, is_qc_failure
from core.calculations.stages import StageMetric
from core.models import Machine, ProductionLogRow, WorkOrderSummary
from core.settings import EngineSettings

logger = logging.getLogger(__name__)

REASON_NONE = "none"
REASON_MAINTENANCE = "maintenance"
REASON_QC = "qc"
REASON_OVERDUE = "overdue"
REASON_CAPACITY = "capacity"

BLOCKER_MACHINE_QC = "machine_qc"
BLOCKER_MATERIAL_QC = "material_qc"
BLOCKER_FIRST_PIECE_QC = "first_piece_qc"
BLOCKER_DOWNTIME = "downtime"


@dataclass(frozen=True)
class BlockingReason:
    """Headline reason a stage is not progressing normally"""
    reason: str
    label: str
    count: int = 0

    def to_dict(self) -> Dict:
        return asdict(self)


@dataclass(frozen=True)
class StageBlockingInput:
    metric: StageMetric
    machines_under_maintenance: int = 0
    qc_failed_work_orders: int = 0
    capacity_wait_hours: float = 8.0


@dataclass(frozen=True)
class StageBlockingRule:
    """One (predicate, outcome) entry of the stage rule table"""
    name: str
    applies: Callable[[StageBlockingInput], bool]
    outcome: Callable[[StageBlockingInput], BlockingReason]


STAGE_BLOCKING_RULES: Tuple[StageBlockingRule, ...] = (
    StageBlockingRule(
        "no_work",
        lambda f: not f.metric.has_work,
        lambda f: BlockingReason(REASON_NONE, "No blocks", 0),
    ),
    StageBlockingRule(
        REASON_MAINTENANCE,
        lambda f: f.machines_under_maintenance > 0,
        lambda f: BlockingReason(REASON_MAINTENANCE, "Maintenance", f.machines_under_maintenance),
    ),
    StageBlockingRule(
        REASON_QC,
        lambda f: f.qc_failed_work_orders > 0,
        lambda f: BlockingReason(REASON_QC, "QC Hold", f.qc_failed_work_orders),
    ),
    StageBlockingRule(
        REASON_OVERDUE,
        lambda f: f.metric.overdue_count > 0,
        lambda f: BlockingReason(REASON_OVERDUE, "Overdue", f.metric.overdue_count),
    ),
    StageBlockingRule(
        REASON_CAPACITY,
        lambda f: f.metric.avg_wait_hours > f.capacity_wait_hours,
        lambda f: BlockingReason(REASON_CAPACITY, "Capacity", f.metric.batch_count),
    ),
    StageBlockingRule(
        REASON_NONE,
        lambda f: True,
        lambda f: BlockingReason(REASON_NONE, "Normal", 0),
    ),
)


def resolve_stage_blocking(
    facts: StageBlockingInput,
    rules: Sequence[StageBlockingRule] = STAGE_BLOCKING_RULES
) -> BlockingReason:
    """
    Evaluate the stage rule table top-down; the first satisfied rule wins.

    Args:
        facts: Stage metric plus maintenance/QC counts relevant to the stage
        rules: Rule table, STAGE_BLOCKING_RULES by default

    Returns:
        BlockingReason with reason tag, display label and count
    """
    for rule in rules:
        if rule.applies(facts):
            return rule.outcome(facts)
    return BlockingReason(REASON_NONE, "Normal", 0)


def machine_serves_stage(machine: Machine, stage: str, settings: EngineSettings) -> bool:
    """
    A machine with a stage (department) tag serves that stage; an untagged
    machine serves every machining stage in settings.machine_stages.
    """
    if machine.stage:
        return settings.normalize_stage(machine.stage) == stage
    return stage in settings.machine_stages


def count_machines_under_maintenance(
    stage: str,
    machines: Iterable[Machine],
    machines_with_open_maintenance: Set[str],
    settings: EngineSettings
) -> int:
    """Machines serving the stage that have an open maintenance event or a maintenance status"""
    count = 0
    for machine in machines:
        if not machine_serves_stage(machine, stage, settings):
            continue
        if (machine.machine_id in machines_with_open_maintenance
                or categorize_status(machine.status) == "maintenance"):
            count += 1
    return count


def count_qc_failed_work_orders(
    stage: str,
    prepared_batches: pd.DataFrame,
    work_orders: Mapping[str, WorkOrderSummary]
) -> int:
    """Distinct work orders with an open batch in the stage and an explicit QC failure"""
    if prepared_batches.empty:
        return 0
    wo_ids = prepared_batches.loc[prepared_batches['stage'] == stage, 'wo_id'].dropna().unique()
    failed = 0
    for wo_id in wo_ids:
        work_order = work_orders.get(str(wo_id))
        if work_order is not None and work_order.has_failed_qc():
            failed += 1
    return failed


def resolve_all_stage_blocking(
    metrics: List[StageMetric],
    prepared_batches: pd.DataFrame,
    machines: List[Machine],
    machines_with_open_maintenance: Set[str],
    work_orders: Mapping[str, WorkOrderSummary],
    settings: EngineSettings
) -> Dict[str, BlockingReason]:
    """Headline blocking reason for every stage, keyed by stage tag"""
    reasons = {}
    for metric in metrics:
        facts = StageBlockingInput(
            metric=metric,
            machines_under_maintenance=count_machines_under_maintenance(
                metric.stage, machines, machines_with_open_maintenance, settings
            ),
            qc_failed_work_orders=count_qc_failed_work_orders(metric.stage, prepared_batches, work_orders),
            capacity_wait_hours=settings.capacity_wait_hours,
        )
        reasons[metric.stage] = resolve_stage_blocking(facts)
    return reasons


@dataclass(frozen=True)
class Blocker:
    """One item on a machine's remediation checklist"""
    kind: str
    label: str

    def to_dict(self) -> Dict:
        return asdict(self)


def collect_machine_blockers(
    machine: Machine,
    work_order: Optional[WorkOrderSummary],
    today_logs: Iterable[ProductionLogRow]
) -> List[Blocker]:
    """
    Build the ordered blocker list for a machine.

    Every matching condition is appended:
    - machine QC flag failed
    - material QC not passed on the current job
    - first-piece QC not passed on the current job
    - each unresolved downtime event on today's log (one entry per distinct reason)

    Args:
        machine: Machine record
        work_order: Summary of the machine's current work order, if any
        today_logs: Today's log rows for this machine

    Returns:
        List of Blocker, empty when nothing blocks the machine
    """
    blockers = []

    if is_qc_failure(machine.qc_status):
        blockers.append(Blocker(BLOCKER_MACHINE_QC, "Machine QC failed"))

    if machine.current_wo_id is not None and work_order is not None:
        if work_order.qc_material_passed is not True:
            blockers.append(Blocker(BLOCKER_MATERIAL_QC, f"Material QC pending on {work_order.display_id}"))
        if work_order.qc_first_piece_passed is not True:
            blockers.append(Blocker(BLOCKER_FIRST_PIECE_QC, f"First piece QC pending on {work_order.display_id}"))

    seen = set()
    for log in today_logs:
        if log.machine_id != machine.machine_id:
            continue
        for event in log.unresolved_downtime:
            label = f"Downtime: {event.reason}"
            if label in seen:
                continue
            seen.add(label)
            blockers.append(Blocker(BLOCKER_DOWNTIME, label))

    return blockers
