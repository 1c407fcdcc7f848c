"""
Floor State Refresh

Periodic refresh of the floor snapshot:

1. Fetch every raw fact for the cycle (bounded exponential backoff per fetch)
2. Assemble a complete snapshot from that one fact set
3. Publish it with a single reference swap

A failed fetch never publishes a partial snapshot. The previous snapshot is
kept, flagged degraded, and served until a later cycle succeeds. Cycles are
numbered when they start; a cycle that finishes after a newer one has already
published is discarded (last writer wins on the snapshot slot).
"""

import itertools
import logging
import threading
import time
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, List, Optional

import pytz

from core.analysis.snapshot import FactSet, FloorSnapshot, MachineState, assemble_snapshot
from core.calculations.bottlenecks import BottleneckEntry
from core.calculations.stages import StageMetric
from core.db.fetchers import DatabaseFactSource, FetchError
from core.settings import EngineSettings
from core.time_windows.models import ensure_utc, local_date, trailing_window

logger = logging.getLogger(__name__)


def utc_now() -> datetime:
    return datetime.now(pytz.UTC)


def backoff_delay(attempt: int, settings: EngineSettings) -> float:
    """Delay before retry number `attempt` (1-based), doubling up to the cap"""
    delay = settings.fetch_backoff_seconds * (2 ** (attempt - 1))
    return min(delay, settings.fetch_backoff_max_seconds)


def fetch_with_retry(
    fetch_name: str,
    fetch: Callable,
    settings: EngineSettings,
    *args,
    sleep: Callable[[float], None] = time.sleep
):
    """
    Call one fact fetcher, retrying with bounded exponential backoff.

    Args:
        fetch_name: Name used in logs and in the raised FetchError
        fetch: Fetcher callable
        settings: fetch_retries and backoff settings
        *args: Fetcher arguments
        sleep: Sleep function (injectable for tests)

    Returns:
        The fetcher's DataFrame

    Raises:
        FetchError: after settings.fetch_retries failed attempts
    """
    last_error = None
    for attempt in range(1, settings.fetch_retries + 1):
        try:
            return fetch(*args)
        except Exception as e:
            last_error = e if isinstance(e, FetchError) else FetchError(fetch_name, e)
            if attempt >= settings.fetch_retries:
                break
            delay = backoff_delay(attempt, settings)
            logger.warning(
                f"{fetch_name} failed (attempt {attempt}/{settings.fetch_retries}), "
                f"retrying in {delay:.2f}s: {e}"
            )
            sleep(delay)

    logger.error(f"{fetch_name} failed after {settings.fetch_retries} attempts: {last_error}")
    raise last_error


def _ids(*series) -> List[str]:
    ids = set()
    for values in series:
        if values is None:
            continue
        ids.update(str(v) for v in values.dropna().unique() if str(v).strip())
    return sorted(ids)


def collect_facts(
    source,
    now: datetime,
    settings: Optional[EngineSettings] = None,
    sleep: Callable[[float], None] = time.sleep
) -> FactSet:
    """
    Fetch every raw fact needed for one refresh cycle.

    Dependent fetches (maintenance, work orders, item master, logs) are keyed
    by ids taken from the earlier fetches of the same cycle.

    Args:
        source: Object exposing the fetch_* functions (DatabaseFactSource)
        now: Wall-clock time of the cycle
        settings: Engine settings
        sleep: Sleep function used between retries

    Returns:
        FactSet

    Raises:
        FetchError: when any fetch keeps failing
    """
    settings = settings or EngineSettings()
    now = ensure_utc(now)

    def _fetch(name, *args):
        return fetch_with_retry(name, getattr(source, name), settings, *args, sleep=sleep)

    window = trailing_window(now, settings.monitor_window_days)
    batches = _fetch('fetch_open_batches', window)
    machines = _fetch('fetch_machines')
    machine_ids = _ids(machines.get('machine_id'))

    maintenance = _fetch('fetch_active_maintenance', machine_ids)
    assignments = _fetch('fetch_queued_assignments', 'scheduled')

    wo_ids = _ids(batches.get('wo_id'), machines.get('current_wo_id'), assignments.get('wo_id'))
    work_orders = _fetch('fetch_work_orders', wo_ids)
    item_master = _fetch('fetch_item_master', _ids(work_orders.get('item_code')))
    logs = _fetch('fetch_today_logs', machine_ids, local_date(now, settings.timezone))

    return FactSet(
        batches=batches,
        machines=machines,
        maintenance=maintenance,
        assignments=assignments,
        work_orders=work_orders,
        item_master=item_master,
        logs=logs,
    )


@dataclass(frozen=True)
class Staleness:
    last_successful_refresh: Optional[datetime]
    degraded: bool
    error: Optional[str] = None

    def age_seconds(self, now: datetime) -> Optional[float]:
        if self.last_successful_refresh is None:
            return None
        return max(0.0, (ensure_utc(now) - self.last_successful_refresh).total_seconds())


@dataclass(frozen=True)
class PublishedSnapshot:
    """What consumers read: the last complete snapshot plus its staleness"""
    snapshot: Optional[FloorSnapshot]
    last_successful_refresh: Optional[datetime]
    degraded: bool = False
    error: Optional[str] = None
    cycle: int = 0

    @property
    def staleness(self) -> Staleness:
        return Staleness(self.last_successful_refresh, self.degraded, self.error)


class FloorStateView:
    """
    One periodically refreshed view of the floor (e.g. stage pipeline at 30s,
    machine panel at 10s). Readers never block on a refresh.
    """

    def __init__(
        self,
        name: str = "floor",
        source=None,
        settings: Optional[EngineSettings] = None,
        interval_seconds: float = 30.0,
        clock: Callable[[], datetime] = utc_now,
        sleep: Callable[[float], None] = time.sleep
    ):
        self.name = name
        self.source = source if source is not None else DatabaseFactSource()
        self.settings = settings or EngineSettings()
        self.interval_seconds = interval_seconds
        self.clock = clock
        self.sleep = sleep

        self._cycles = itertools.count(1)
        self._lock = threading.Lock()
        self._published = PublishedSnapshot(
            snapshot=None,
            last_successful_refresh=None,
            degraded=True,
            error="No successful refresh yet",
        )
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None

    @property
    def published(self) -> PublishedSnapshot:
        return self._published

    def _publish(self, candidate: PublishedSnapshot) -> PublishedSnapshot:
        with self._lock:
            if candidate.cycle < self._published.cycle:
                logger.info(
                    f"[{self.name}] Discarding result of cycle {candidate.cycle}; "
                    f"cycle {self._published.cycle} already published"
                )
                return self._published
            self._published = candidate
            return candidate

    def _publish_failure(self, cycle: int, error: Exception) -> PublishedSnapshot:
        """Keep the last good snapshot and flag it degraded"""
        with self._lock:
            current = self._published
            if cycle < current.cycle:
                return current
            self._published = PublishedSnapshot(
                snapshot=current.snapshot,
                last_successful_refresh=current.last_successful_refresh,
                degraded=True,
                error=str(error),
                cycle=cycle,
            )
            return self._published

    def refresh(self) -> PublishedSnapshot:
        """
        Run one refresh cycle and publish the outcome.

        Returns:
            The published state after this cycle
        """
        with self._lock:
            cycle = next(self._cycles)
        now = ensure_utc(self.clock())
        start = time.monotonic()

        try:
            facts = collect_facts(self.source, now, self.settings, sleep=self.sleep)
        except FetchError as e:
            logger.error(f"[{self.name}] Refresh cycle {cycle} failed, serving previous snapshot: {e}")
            return self._publish_failure(cycle, e)

        try:
            snapshot = assemble_snapshot(facts, now, self.settings)
        except Exception as e:
            logger.exception(f"[{self.name}] Refresh cycle {cycle} could not assemble a snapshot")
            return self._publish_failure(cycle, e)

        logger.info(
            f"[{self.name}] Cycle {cycle} assembled in {time.monotonic() - start:.2f}s: "
            f"{len(snapshot.machines)} machines, {len(snapshot.bottlenecks)} bottlenecks"
        )
        return self._publish(PublishedSnapshot(
            snapshot=snapshot,
            last_successful_refresh=now,
            degraded=False,
            cycle=cycle,
        ))

    def _run(self):
        while not self._stop_event.is_set():
            try:
                self.refresh()
            except Exception:
                logger.exception(f"[{self.name}] Unexpected error during refresh")
            self._stop_event.wait(self.interval_seconds)

    def start(self):
        """Start refreshing in a background thread"""
        if self._thread is not None and self._thread.is_alive():
            return
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._run, name=f"floor-refresh-{self.name}", daemon=True)
        self._thread.start()
        logger.info(f"[{self.name}] Refresh started every {self.interval_seconds}s")

    def stop(self, timeout: float = 5.0):
        self._stop_event.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None
        logger.info(f"[{self.name}] Refresh stopped")

    def get_stage_metrics(self) -> List[StageMetric]:
        """Metrics for every configured stage, zeroed before the first successful cycle"""
        snapshot = self._published.snapshot
        if snapshot is None:
            return [StageMetric(stage=stage) for stage in self.settings.stage_order]
        return snapshot.stage_metrics

    def get_machine_states(self) -> List[MachineState]:
        snapshot = self._published.snapshot
        return list(snapshot.machines) if snapshot is not None else []

    def get_bottlenecks(self) -> List[BottleneckEntry]:
        snapshot = self._published.snapshot
        return list(snapshot.bottlenecks) if snapshot is not None else []

    def get_staleness(self) -> Staleness:
        return self._published.staleness
