"""
Machine Readiness Classification

Derives one readiness state per machine per refresh from raw facts. There is
no stored transition history: every cycle is classified from scratch.

The evaluation order is an explicit rule table (first match wins):

1. active maintenance event  -> maintenance_due (reason mentions maintenance/service) or down
2. raw status is a fault      -> down
3. machine QC flag failed     -> qc_blocked
4. current work order         -> running
5. queued work, not running   -> setup_required
6. otherwise                  -> ready
"""

import logging
from dataclasses import dataclass
from typing import Callable, Optional, Sequence, Tuple

from core.models import Machine, MaintenanceEvent

logger = logging.getLogger(__name__)

READY = "ready"
RUNNING = "running"
SETUP_REQUIRED = "setup_required"
MAINTENANCE_DUE = "maintenance_due"
DOWN = "down"
QC_BLOCKED = "qc_blocked"

READINESS_STATES = (READY, RUNNING, SETUP_REQUIRED, MAINTENANCE_DUE, DOWN, QC_BLOCKED)

PRIORITY_CRITICAL = "critical"
PRIORITY_HIGH = "high"
PRIORITY_NORMAL = "normal"
PRIORITY_LOW = "low"

_FAULT_KEYWORDS = ("fault", "error", "fail", "down", "stop", "alarm", "breakdown")
_RUNNING_KEYWORDS = ("run", "active", "operat", "produc", "busy")
_MAINTENANCE_KEYWORDS = ("maint", "service")
_IDLE_KEYWORDS = ("idle", "standby", "ready", "available", "waiting")
_QC_FAILURE_KEYWORDS = ("fail", "reject", "hold", "blocked")


def categorize_status(status: str) -> str:
    """
    Categorize a raw machine status tag into "running", "fault", "maintenance",
    "idle" or "other" using keyword matching (case-insensitive).

    Args:
        status: Raw status tag from the machines table

    Returns:
        Category string
    """
    if not status or not isinstance(status, str):
        return "other"

    status_lower = status.lower()

    # fault keywords take precedence over run keywords ("run_fault")
    if any(keyword in status_lower for keyword in _FAULT_KEYWORDS):
        return "fault"

    if any(keyword in status_lower for keyword in _MAINTENANCE_KEYWORDS):
        return "maintenance"

    if any(keyword in status_lower for keyword in _RUNNING_KEYWORDS):
        return "running"

    if any(keyword in status_lower for keyword in _IDLE_KEYWORDS):
        return "idle"

    return "other"


def is_qc_failure(qc_status: Optional[str]) -> bool:
    """True when the machine's QC flag reports a failed or held check"""
    if not qc_status:
        return False
    qc_lower = str(qc_status).lower()
    return any(keyword in qc_lower for keyword in _QC_FAILURE_KEYWORDS)


def mentions_maintenance(reason: Optional[str]) -> bool:
    if not reason:
        return False
    reason_lower = reason.lower()
    return "maintenance" in reason_lower or "service" in reason_lower


@dataclass(frozen=True)
class ReadinessInput:
    """Facts about one machine needed for readiness"""
    machine: Machine
    active_maintenance: Optional[MaintenanceEvent] = None
    queued_count: int = 0


@dataclass(frozen=True)
class ReadinessResult:
    state: str
    reason: str
    rule: str


@dataclass(frozen=True)
class ReadinessRule:
    """One (predicate, outcome) entry of the readiness rule table"""
    name: str
    applies: Callable[[ReadinessInput], bool]
    outcome: Callable[[ReadinessInput], Tuple[str, str]]


def _maintenance_outcome(facts: ReadinessInput) -> Tuple[str, str]:
    reason = facts.active_maintenance.reason or "Open maintenance event"
    if mentions_maintenance(facts.active_maintenance.reason):
        return MAINTENANCE_DUE, reason
    return DOWN, reason


READINESS_RULES: Tuple[ReadinessRule, ...] = (
    ReadinessRule(
        "active_maintenance",
        lambda f: f.active_maintenance is not None and f.active_maintenance.is_active,
        _maintenance_outcome,
    ),
    ReadinessRule(
        "fault_status",
        lambda f: categorize_status(f.machine.status) == "fault",
        lambda f: (DOWN, "Machine fault reported"),
    ),
    ReadinessRule(
        "qc_failure",
        lambda f: is_qc_failure(f.machine.qc_status),
        lambda f: (QC_BLOCKED, "Machine QC failed"),
    ),
    ReadinessRule(
        "active_job",
        lambda f: f.machine.current_wo_id is not None,
        lambda f: (RUNNING, "Running current work order"),
    ),
    ReadinessRule(
        "queued_not_running",
        lambda f: f.queued_count > 0 and categorize_status(f.machine.status) != "running",
        lambda f: (SETUP_REQUIRED, f"{f.queued_count} job(s) queued, setup required"),
    ),
    ReadinessRule(
        "default",
        lambda f: True,
        lambda f: (READY, "Available"),
    ),
)


def classify_readiness(
    facts: ReadinessInput,
    rules: Sequence[ReadinessRule] = READINESS_RULES
) -> ReadinessResult:
    """
    Evaluate the rule table top-down and return the first matching outcome.

    Args:
        facts: Machine facts for this cycle
        rules: Rule table, READINESS_RULES by default

    Returns:
        ReadinessResult with state, human-readable reason and the rule name
    """
    for rule in rules:
        if rule.applies(facts):
            state, reason = rule.outcome(facts)
            return ReadinessResult(state=state, reason=reason, rule=rule.name)

    # tables without a catch-all rule
    return ReadinessResult(state=READY, reason="Available", rule="fallthrough")


@dataclass(frozen=True)
class PriorityRule:
    name: str
    applies: Callable[[str, str], bool]
    priority: str


PRIORITY_RULES: Tuple[PriorityRule, ...] = (
    PriorityRule(
        "stopped_or_blocked",
        lambda readiness, production: readiness in (DOWN, QC_BLOCKED) or production == "blocked",
        PRIORITY_CRITICAL,
    ),
    PriorityRule(
        "maintenance_or_at_risk",
        lambda readiness, production: readiness == MAINTENANCE_DUE or production == "at_risk",
        PRIORITY_HIGH,
    ),
    PriorityRule(
        "active",
        lambda readiness, production: readiness in (RUNNING, SETUP_REQUIRED),
        PRIORITY_NORMAL,
    ),
)


def resolve_priority(
    readiness: str,
    production_status: str,
    rules: Sequence[PriorityRule] = PRIORITY_RULES
) -> str:
    """Operator attention priority from readiness and production status (first match wins)"""
    for rule in rules:
        if rule.applies(readiness, production_status):
            return rule.priority
    return PRIORITY_LOW
