"""
Engine Settings

Named, overridable thresholds used by the floor state derivation routines.
Defaults come from Config (environment); tests build instances directly.
"""

from dataclasses import dataclass, field, replace
from typing import Tuple

DEFAULT_STAGE_ORDER = ('cutting', 'production', 'quality', 'packing', 'dispatch', 'external')
DEFAULT_MACHINE_STAGES = ('cutting', 'production')

# Legacy stage tags still written by older screens
STAGE_ALIASES = {
    'qc': 'quality',
}


@dataclass(frozen=True)
class EngineSettings:
    """Thresholds and pipeline layout for one engine instance"""
    stage_order: Tuple[str, ...] = DEFAULT_STAGE_ORDER
    machine_stages: Tuple[str, ...] = DEFAULT_MACHINE_STAGES
    timezone: str = "Asia/Kolkata"

    # Blocking reasons
    capacity_wait_hours: float = 8.0

    # Bottleneck scoring: wait_hours * quantity + batch_count * weight
    bottleneck_threshold: float = 50.0
    bottleneck_batch_weight: float = 10.0

    # Production status ratio bands
    on_cycle_ratio: float = 0.85
    at_risk_ratio: float = 0.60

    # Raw fact fetch
    monitor_window_days: int = 90
    fetch_retries: int = 3
    fetch_backoff_seconds: float = 0.5
    fetch_backoff_max_seconds: float = 4.0

    stage_aliases: dict = field(default_factory=lambda: dict(STAGE_ALIASES), compare=False, hash=False)

    def __post_init__(self):
        self.validate()

    def validate(self) -> bool:
        """Reject settings that would make classification ambiguous"""
        if not self.stage_order:
            raise ValueError("stage_order cannot be empty")

        duplicates = sorted({s for s in self.stage_order if self.stage_order.count(s) > 1})
        if duplicates:
            raise ValueError(f"Duplicate stages in stage_order: {duplicates}")

        if self.at_risk_ratio > self.on_cycle_ratio:
            raise ValueError(
                f"at_risk_ratio ({self.at_risk_ratio}) must not exceed "
                f"on_cycle_ratio ({self.on_cycle_ratio})"
            )

        if self.fetch_retries < 1:
            raise ValueError("fetch_retries must be at least 1")

        return True

    def normalize_stage(self, stage) -> str:
        """Lower-case a raw stage tag and resolve legacy aliases"""
        if stage is None:
            return ""
        tag = str(stage).strip().lower()
        return self.stage_aliases.get(tag, tag)

    def with_overrides(self, **overrides) -> 'EngineSettings':
        return replace(self, **overrides)

    @classmethod
    def from_config(cls) -> 'EngineSettings':
        """Build settings from environment-driven Config"""
        from config import Config

        return cls(
            stage_order=tuple(Config.STAGE_ORDER),
            machine_stages=tuple(Config.MACHINE_STAGES),
            timezone=Config.TIMEZONE,
            capacity_wait_hours=Config.CAPACITY_WAIT_HOURS,
            bottleneck_threshold=Config.BOTTLENECK_THRESHOLD,
            bottleneck_batch_weight=Config.BOTTLENECK_BATCH_WEIGHT,
            on_cycle_ratio=Config.ON_CYCLE_RATIO,
            at_risk_ratio=Config.AT_RISK_RATIO,
            monitor_window_days=Config.MONITOR_WINDOW_DAYS,
            fetch_retries=Config.FETCH_RETRIES,
            fetch_backoff_seconds=Config.FETCH_BACKOFF_SECONDS,
            fetch_backoff_max_seconds=Config.FETCH_BACKOFF_MAX_SECONDS,
        )
