"""
Production Status Classification

Compares a machine's actual output today with what its cycle time says it
should have produced:

    ratio = pieces_today / (expected_per_hour * hours_running)

- blocked   any blocker present (dominates the ratio)
- idle      no expected-per-hour figure (cycle time unresolved)
- on_cycle  no expectation window yet (denominator <= 0) or ratio >= on_cycle_ratio
- at_risk   at_risk_ratio <= ratio < on_cycle_ratio
- blocked   ratio < at_risk_ratio
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Dict, Optional

from core.settings import EngineSettings
from core.time_windows.models import ensure_utc

ON_CYCLE = "on_cycle"
AT_RISK = "at_risk"
BLOCKED = "blocked"
IDLE = "idle"

PRODUCTION_STATUSES = (ON_CYCLE, AT_RISK, BLOCKED, IDLE)


@dataclass(frozen=True)
class ProductionStatus:
    status: str
    ratio: Optional[float] = None
    pieces_today: float = 0.0
    expected_pieces: Optional[float] = None
    hours_running: float = 0.0

    def to_dict(self) -> Dict:
        return {
            'status': self.status,
            'ratio': round(self.ratio, 4) if self.ratio is not None else None,
            'pieces_today': self.pieces_today,
            'expected_pieces': round(self.expected_pieces, 4) if self.expected_pieces is not None else None,
            'hours_running': round(self.hours_running, 4),
        }


def hours_running_today(
    job_start: Optional[datetime],
    now: datetime,
    day_start: Optional[datetime] = None
) -> float:
    """
    Hours the current job has been running within today's production day.

    Args:
        job_start: Job start timestamp (None when unknown)
        now: Wall-clock time of the refresh cycle
        day_start: Start of the local production day (UTC); the job start is
                   clamped to it so today's pieces meet today's hours

    Returns:
        Non-negative hours
    """
    if job_start is None:
        return 0.0
    start = ensure_utc(job_start)
    if day_start is not None:
        start = max(start, ensure_utc(day_start))
    return max(0.0, (ensure_utc(now) - start).total_seconds() / 3600.0)


def classify_ratio(ratio: float, settings: Optional[EngineSettings] = None) -> str:
    """Map an output ratio onto on_cycle / at_risk / blocked using the configured bands"""
    settings = settings or EngineSettings()
    if ratio >= settings.on_cycle_ratio:
        return ON_CYCLE
    if ratio >= settings.at_risk_ratio:
        return AT_RISK
    return BLOCKED


def classify_production(
    has_blockers: bool,
    expected_per_hour: Optional[float],
    pieces_today: float,
    hours_running: float,
    settings: Optional[EngineSettings] = None
) -> ProductionStatus:
    """
    Classify a machine's current run.

    Args:
        has_blockers: Whether the machine's blocker list is non-empty
        expected_per_hour: From the cycle-time resolution, None when unresolved
        pieces_today: Pieces produced today on the current job
        hours_running: Hours of running time to compare against
        settings: Ratio thresholds

    Returns:
        ProductionStatus

    Example:
        >>> classify_production(False, 10.0, 30, 4.0).status
        'at_risk'
    """
    pieces_today = float(pieces_today or 0.0)
    hours_running = float(hours_running or 0.0)

    if has_blockers:
        return ProductionStatus(BLOCKED, pieces_today=pieces_today, hours_running=hours_running)

    if expected_per_hour is None:
        return ProductionStatus(IDLE, pieces_today=pieces_today, hours_running=hours_running)

    expected_pieces = expected_per_hour * hours_running
    if expected_pieces <= 0:
        return ProductionStatus(
            ON_CYCLE,
            pieces_today=pieces_today,
            expected_pieces=expected_pieces,
            hours_running=hours_running
        )

    ratio = pieces_today / expected_pieces
    return ProductionStatus(
        classify_ratio(ratio, settings),
        ratio=ratio,
        pieces_today=pieces_today,
        expected_pieces=expected_pieces,
        hours_running=hours_running
    )
