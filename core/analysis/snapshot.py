"""
Floor Snapshot Assembly

Composes stage metrics, machine states and bottleneck ranking into one
immutable, timestamped snapshot per refresh cycle.

Everything here is a pure function of the facts fetched in one cycle plus the
cycle's wall-clock time: lookup maps are rebuilt from scratch every time and
nothing carries over between cycles. Lookup misses (a batch pointing at a work
order that was not returned, a machine running an unknown job) are soft
inconsistencies: they are recorded as warnings and rendered with defaults.
"""

import logging
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Dict, List, Optional, Tuple

import pandas as pd

from core.calculations.blocking import (
    Blocker,
    BlockingReason,
    collect_machine_blockers,
    resolve_all_stage_blocking,
)
from core.calculations.bottlenecks import (
    KIND_MACHINE,
    BottleneckCandidate,
    BottleneckEntry,
    rank_bottlenecks,
    rank_lookup,
    stage_candidate,
    top_bottlenecks,
)
from core.calculations.cycle_time import CycleTimeResolution, resolve_cycle_time
from core.calculations.production_status import (
    ProductionStatus,
    classify_production,
    hours_running_today,
)
from core.calculations.readiness import (
    ReadinessInput,
    classify_readiness,
    resolve_priority,
)
from core.calculations.stages import (
    ExternalProcessMetrics,
    PartnerMetrics,
    StageMetric,
    WipSummary,
    aggregate_external_processes,
    aggregate_partner_metrics,
    aggregate_stage_metrics,
    prepare_batches,
    summarize_wip,
)
from core.models import (
    ASSIGNMENT_COLUMNS,
    BATCH_COLUMNS,
    ITEM_MASTER_COLUMNS,
    LOG_COLUMNS,
    MACHINE_COLUMNS,
    MAINTENANCE_COLUMNS,
    WORK_ORDER_COLUMNS,
    Machine,
    MaintenanceEvent,
    ProductionLogRow,
    QueuedAssignment,
    WorkOrderSummary,
    empty_frame,
    records_from_frame,
    to_float,
)
from core.settings import EngineSettings
from core.time_windows.models import ensure_utc, production_day

logger = logging.getLogger(__name__)


@dataclass(frozen=True, eq=False)
class FactSet:
    """Raw facts fetched in one refresh cycle"""
    batches: pd.DataFrame = field(default_factory=lambda: empty_frame(BATCH_COLUMNS))
    machines: pd.DataFrame = field(default_factory=lambda: empty_frame(MACHINE_COLUMNS))
    maintenance: pd.DataFrame = field(default_factory=lambda: empty_frame(MAINTENANCE_COLUMNS))
    assignments: pd.DataFrame = field(default_factory=lambda: empty_frame(ASSIGNMENT_COLUMNS))
    work_orders: pd.DataFrame = field(default_factory=lambda: empty_frame(WORK_ORDER_COLUMNS))
    item_master: pd.DataFrame = field(default_factory=lambda: empty_frame(ITEM_MASTER_COLUMNS))
    logs: pd.DataFrame = field(default_factory=lambda: empty_frame(LOG_COLUMNS))


@dataclass(frozen=True)
class FloorLookups:
    """id -> record maps built once per cycle before classification"""
    machines: Tuple[Machine, ...]
    work_orders: Dict[str, WorkOrderSummary]
    item_master: Dict[str, float]
    open_maintenance: Dict[str, MaintenanceEvent]
    queues: Dict[str, Tuple[QueuedAssignment, ...]]
    logs_by_machine: Dict[str, Tuple[ProductionLogRow, ...]]


def _maintenance_sort_key(event: MaintenanceEvent):
    return (event.start_time is not None, event.start_time.timestamp() if event.start_time else 0.0, event.reason)


def build_lookups(facts: FactSet) -> FloorLookups:
    """Turn the fetched DataFrames into lookup maps keyed by id"""
    machines = sorted(records_from_frame(facts.machines, Machine), key=lambda m: m.machine_id)
    work_orders = {wo.wo_id: wo for wo in records_from_frame(facts.work_orders, WorkOrderSummary)}

    item_master = {}
    if facts.item_master is not None and not facts.item_master.empty:
        for row in facts.item_master.to_dict('records'):
            seconds = to_float(row.get('cycle_time_seconds'))
            if row.get('item_code') is not None and seconds is not None:
                item_master[str(row['item_code'])] = seconds

    # latest open event per machine
    open_maintenance = {}
    events = [e for e in records_from_frame(facts.maintenance, MaintenanceEvent) if e.is_active]
    for event in sorted(events, key=_maintenance_sort_key):
        open_maintenance[event.machine_id] = event

    queues: Dict[str, List[QueuedAssignment]] = {}
    for assignment in records_from_frame(facts.assignments, QueuedAssignment):
        queues.setdefault(assignment.machine_id, []).append(assignment)

    logs_by_machine: Dict[str, List[ProductionLogRow]] = {}
    for log in records_from_frame(facts.logs, ProductionLogRow):
        logs_by_machine.setdefault(log.machine_id, []).append(log)

    return FloorLookups(
        machines=tuple(machines),
        work_orders=work_orders,
        item_master=item_master,
        open_maintenance=open_maintenance,
        queues={k: tuple(v) for k, v in queues.items()},
        logs_by_machine={k: tuple(v) for k, v in logs_by_machine.items()},
    )


@dataclass(frozen=True)
class StageStatus:
    metric: StageMetric
    blocking: BlockingReason
    bottleneck_rank: int = 0
    bottleneck_score: Optional[float] = None

    def to_dict(self) -> Dict:
        data = self.metric.to_dict()
        data['blocking_reason'] = self.blocking.to_dict()
        data['bottleneck_rank'] = self.bottleneck_rank
        data['bottleneck_score'] = round(self.bottleneck_score, 4) if self.bottleneck_score is not None else None
        return data


@dataclass(frozen=True)
class MachineState:
    machine_id: str
    name: str
    readiness: str
    readiness_reason: str
    priority: str
    blockers: Tuple[Blocker, ...]
    cycle_time: CycleTimeResolution
    production: ProductionStatus
    current_wo_id: Optional[str] = None
    current_wo_display: Optional[str] = None
    queue_count: int = 0
    oldest_queue_age_hours: Optional[float] = None
    bottleneck_rank: int = 0

    @property
    def production_status(self) -> str:
        return self.production.status

    def to_dict(self) -> Dict:
        return {
            'machine_id': self.machine_id,
            'name': self.name,
            'readiness': self.readiness,
            'readiness_reason': self.readiness_reason,
            'priority': self.priority,
            'blockers': [b.to_dict() for b in self.blockers],
            'cycle_time': self.cycle_time.to_dict(),
            'production': self.production.to_dict(),
            'current_wo_id': self.current_wo_id,
            'current_wo_display': self.current_wo_display,
            'queue_count': self.queue_count,
            'oldest_queue_age_hours': (
                round(self.oldest_queue_age_hours, 4) if self.oldest_queue_age_hours is not None else None
            ),
            'bottleneck_rank': self.bottleneck_rank,
        }


@dataclass(frozen=True)
class FloorSnapshot:
    """One complete, immutable output of the engine for one refresh cycle"""
    generated_at: datetime
    stages: Tuple[StageStatus, ...]
    machines: Tuple[MachineState, ...]
    bottlenecks: Tuple[BottleneckEntry, ...]
    external_processes: Tuple[ExternalProcessMetrics, ...] = ()
    partners: Tuple[PartnerMetrics, ...] = ()
    wip_summary: Optional[WipSummary] = None
    warnings: Tuple[str, ...] = ()

    @property
    def stage_metrics(self) -> List[StageMetric]:
        return [s.metric for s in self.stages]

    def stage(self, tag: str) -> Optional[StageStatus]:
        for status in self.stages:
            if status.metric.stage == tag:
                return status
        return None

    def machine(self, machine_id: str) -> Optional[MachineState]:
        for state in self.machines:
            if state.machine_id == machine_id:
                return state
        return None

    def to_dict(self) -> Dict:
        """JSON-safe, deterministic representation"""
        return {
            'generated_at': self.generated_at.isoformat(),
            'stages': [s.to_dict() for s in self.stages],
            'machines': [m.to_dict() for m in self.machines],
            'bottlenecks': [b.to_dict() for b in self.bottlenecks],
            'external_processes': [p.to_dict() for p in self.external_processes],
            'partners': [p.to_dict() for p in self.partners],
            'wip_summary': self.wip_summary.to_dict() if self.wip_summary else None,
            'warnings': list(self.warnings),
        }


def _queue_age_hours(queue: Tuple[QueuedAssignment, ...], now: datetime) -> Optional[float]:
    starts = [a.scheduled_start for a in queue if a.scheduled_start is not None]
    if not queue:
        return None
    if not starts:
        return 0.0
    return max(0.0, (now - min(starts)).total_seconds() / 3600.0)


def derive_machine_state(
    machine: Machine,
    lookups: FloorLookups,
    now: datetime,
    day_start: datetime,
    settings: EngineSettings,
    warnings: List[str]
) -> MachineState:
    """Readiness, blockers, cycle time and production status for one machine"""
    queue = lookups.queues.get(machine.machine_id, ())
    logs = lookups.logs_by_machine.get(machine.machine_id, ())

    readiness = classify_readiness(ReadinessInput(
        machine=machine,
        active_maintenance=lookups.open_maintenance.get(machine.machine_id),
        queued_count=len(queue),
    ))

    work_order = None
    if machine.current_wo_id is not None:
        work_order = lookups.work_orders.get(machine.current_wo_id)
        if work_order is None:
            warnings.append(f"Machine {machine.machine_id} references unknown work order {machine.current_wo_id}")

    blockers = collect_machine_blockers(machine, work_order, logs)

    if machine.current_wo_id is not None:
        cycle_time = resolve_cycle_time(
            machine.machine_id, work_order, logs, lookups.item_master, wo_id=machine.current_wo_id
        )
        pieces_today = sum(log.actual_quantity for log in logs if log.wo_id == machine.current_wo_id)
    else:
        cycle_time = CycleTimeResolution()
        pieces_today = 0.0

    production = classify_production(
        has_blockers=bool(blockers),
        expected_per_hour=cycle_time.expected_per_hour,
        pieces_today=pieces_today,
        hours_running=hours_running_today(machine.current_job_start, now, day_start),
        settings=settings,
    )

    return MachineState(
        machine_id=machine.machine_id,
        name=machine.name,
        readiness=readiness.state,
        readiness_reason=readiness.reason,
        priority=resolve_priority(readiness.state, production.status),
        blockers=tuple(blockers),
        cycle_time=cycle_time,
        production=production,
        current_wo_id=machine.current_wo_id,
        current_wo_display=work_order.display_id if work_order is not None else (
            "Unknown" if machine.current_wo_id is not None else None
        ),
        queue_count=len(queue),
        oldest_queue_age_hours=_queue_age_hours(queue, now),
    )


def machine_candidate(state: MachineState, lookups: FloorLookups) -> BottleneckCandidate:
    """Machine queue as a bottleneck candidate: queue age x queued quantity + queue length"""
    queue = lookups.queues.get(state.machine_id, ())
    quantity = 0.0
    for assignment in queue:
        work_order = lookups.work_orders.get(assignment.wo_id) if assignment.wo_id else None
        quantity += work_order.quantity if work_order is not None else 0.0
    return BottleneckCandidate(
        kind=KIND_MACHINE,
        key=state.machine_id,
        label=state.name,
        avg_wait_hours=state.oldest_queue_age_hours or 0.0,
        total_quantity=quantity,
        batch_count=state.queue_count,
    )


def _soft_inconsistencies(facts: FactSet, lookups: FloorLookups) -> List[str]:
    warnings = []
    batch_wo_ids = facts.batches.get('wo_id') if facts.batches is not None else None
    if batch_wo_ids is not None and not batch_wo_ids.empty:
        missing = sorted({
            str(wo) for wo in batch_wo_ids.dropna().unique()
            if str(wo) not in lookups.work_orders
        })
        if missing:
            warnings.append(f"{len(missing)} open batch work order(s) not found: {', '.join(missing[:5])}")

    known_machines = {m.machine_id for m in lookups.machines}
    orphan_queues = sorted(k for k in lookups.queues if k not in known_machines)
    if orphan_queues:
        warnings.append(f"Assignments reference unknown machine(s): {', '.join(orphan_queues[:5])}")
    return warnings


def assemble_snapshot(
    facts: FactSet,
    now: datetime,
    settings: Optional[EngineSettings] = None
) -> FloorSnapshot:
    """
    Derive a complete floor snapshot from one cycle's facts.

    Args:
        facts: Everything fetched in this refresh cycle
        now: Wall-clock time of the cycle (same value for every derived entity)
        settings: Engine settings

    Returns:
        FloorSnapshot; identical inputs give an identical snapshot
    """
    settings = settings or EngineSettings()
    now = ensure_utc(now)
    day_start = production_day(now, settings.timezone).start

    lookups = build_lookups(facts)
    warnings = _soft_inconsistencies(facts, lookups)

    prepared = prepare_batches(facts.batches, facts.work_orders, now, settings)
    metrics = aggregate_stage_metrics(facts.batches, facts.work_orders, now, settings, prepared=prepared)

    open_maintenance_ids = set(lookups.open_maintenance)
    blocking = resolve_all_stage_blocking(
        metrics, prepared, list(lookups.machines), open_maintenance_ids, lookups.work_orders, settings
    )

    machine_states = [
        derive_machine_state(machine, lookups, now, day_start, settings, warnings)
        for machine in lookups.machines
    ]

    stage_candidates = [stage_candidate(m) for m in metrics]
    machine_candidates = [machine_candidate(s, lookups) for s in machine_states]

    stage_ranks = rank_lookup(rank_bottlenecks(stage_candidates, settings))
    machine_ranks = rank_lookup(rank_bottlenecks(machine_candidates, settings))
    combined = top_bottlenecks(rank_bottlenecks(stage_candidates + machine_candidates, settings))

    stages = tuple(
        StageStatus(
            metric=metric,
            blocking=blocking[metric.stage],
            bottleneck_rank=stage_ranks[metric.stage].rank if metric.stage in stage_ranks else 0,
            bottleneck_score=stage_ranks[metric.stage].score if metric.stage in stage_ranks else None,
        )
        for metric in metrics
    )

    machines = tuple(
        replace(
            state,
            bottleneck_rank=machine_ranks[state.machine_id].rank if state.machine_id in machine_ranks else 0,
        )
        for state in machine_states
    )

    for warning in warnings:
        logger.warning(warning)

    return FloorSnapshot(
        generated_at=now,
        stages=stages,
        machines=machines,
        bottlenecks=tuple(combined),
        external_processes=tuple(aggregate_external_processes(prepared, facts.work_orders)),
        partners=tuple(aggregate_partner_metrics(prepared, facts.work_orders)),
        wip_summary=summarize_wip(prepared, settings),
        warnings=tuple(warnings),
    )
