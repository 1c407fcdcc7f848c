"""
Stage Aggregation Functions

Folds open production batches into per-stage work-in-progress metrics.

Stage membership comes only from open batches: a work order may have several
open batches in different stages at once, so the work order's own "current
stage" field is never consulted here.
"""

import logging
from dataclasses import dataclass, asdict
from datetime import datetime
from typing import Dict, List, Optional, Tuple

import numpy as np
import pandas as pd

from core.models import BATCH_COLUMNS, WORK_ORDER_COLUMNS, to_date
from core.settings import EngineSettings
from core.time_windows.filters import coerce_utc_columns
from core.time_windows.models import ensure_utc, local_date

logger = logging.getLogger(__name__)

EXTERNAL_STAGE = 'external'
UNKNOWN_PROCESS = 'Unknown'
UNKNOWN_PARTNER_ID = 'unknown'
UNKNOWN_PARTNER_NAME = 'Unknown Partner'

# Stages that no longer count as internal work in progress
NON_INTERNAL_STAGES = ('external', 'dispatch')


@dataclass(frozen=True)
class StageMetric:
    """Per-stage metrics for one refresh cycle (all zero for an empty stage)"""
    stage: str
    batch_count: int = 0
    total_quantity: float = 0.0
    avg_wait_hours: float = 0.0
    in_queue: int = 0
    in_progress: int = 0
    overdue_count: int = 0

    @property
    def has_work(self) -> bool:
        return self.batch_count > 0

    def to_dict(self) -> Dict:
        data = asdict(self)
        data['avg_wait_hours'] = round(self.avg_wait_hours, 4)
        data['total_quantity'] = round(self.total_quantity, 4)
        data['has_work'] = self.has_work
        return data


@dataclass(frozen=True)
class PartnerMetrics:
    partner_id: str
    partner_name: str
    process_type: str
    batch_count: int
    total_quantity: float
    avg_wait_hours: float
    overdue_count: int

    def to_dict(self) -> Dict:
        data = asdict(self)
        data['avg_wait_hours'] = round(self.avg_wait_hours, 4)
        return data


@dataclass(frozen=True)
class ExternalProcessMetrics:
    process_type: str
    batch_count: int
    total_quantity: float
    avg_wait_hours: float
    overdue_count: int
    partners: Tuple[PartnerMetrics, ...] = ()

    def to_dict(self) -> Dict:
        return {
            'process_type': self.process_type,
            'batch_count': self.batch_count,
            'total_quantity': self.total_quantity,
            'avg_wait_hours': round(self.avg_wait_hours, 4),
            'overdue_count': self.overdue_count,
            'partners': [p.to_dict() for p in self.partners],
        }


@dataclass(frozen=True)
class WipSummary:
    total_batches: int
    internal_wip_quantity: float
    external_wip_quantity: float
    batches_by_stage: Tuple[Tuple[str, int], ...]

    def to_dict(self) -> Dict:
        return {
            'total_batches': self.total_batches,
            'internal_wip_quantity': self.internal_wip_quantity,
            'external_wip_quantity': self.external_wip_quantity,
            'batches_by_stage': dict(self.batches_by_stage),
        }


def normalize_batch_status(status) -> str:
    """
    Map raw batch status tags onto queued / in_progress / completed / other.

    Uses keyword matching so legacy spellings ("in_queue", "in-progress") land
    in the same bucket.
    """
    if not status or not isinstance(status, str):
        return "other"

    status_lower = status.strip().lower().replace('-', '_').replace(' ', '_')

    if 'queue' in status_lower or status_lower in ('pending', 'waiting'):
        return "queued"
    if 'progress' in status_lower or status_lower in ('running', 'active'):
        return "in_progress"
    if 'complete' in status_lower or status_lower == 'done':
        return "completed"
    return "other"


def _due_dates(work_orders_df: Optional[pd.DataFrame]) -> Dict[str, object]:
    if work_orders_df is None or work_orders_df.empty:
        return {}
    return {
        str(row['wo_id']): to_date(row.get('due_date'))
        for row in work_orders_df.to_dict('records')
        if row.get('wo_id') is not None
    }


def _wait_hours(timestamps: pd.Series, now: datetime) -> pd.Series:
    """Hours between each timestamp and now; NaN where the timestamp is missing"""
    now_ts = pd.Timestamp(ensure_utc(now))
    hours = (now_ts - timestamps).dt.total_seconds() / 3600.0
    # entries stamped slightly in the future (clock skew) count as no wait
    return hours.clip(lower=0.0)


def _mean_or_zero(values: pd.Series) -> float:
    values = values.dropna()
    return float(values.mean()) if not values.empty else 0.0


def prepare_batches(
    batches_df: pd.DataFrame,
    work_orders_df: Optional[pd.DataFrame],
    now: datetime,
    settings: EngineSettings
) -> pd.DataFrame:
    """
    Normalize open batches for aggregation.

    Adds columns: stage (normalized tag), status_bucket, wait_hours,
    external_wait_hours, due_date, overdue. Batches with an end timestamp are
    closed and dropped. Batches with a stage tag outside the configured
    pipeline are dropped and logged once per tag.

    Args:
        batches_df: Open batches (BATCH_COLUMNS)
        work_orders_df: Work order summaries (WORK_ORDER_COLUMNS), may be empty
        now: Wall-clock time of the refresh cycle
        settings: Engine settings (stage order, aliases, timezone)

    Returns:
        DataFrame restricted to known stages
    """
    if batches_df is None or batches_df.empty:
        df = pd.DataFrame(columns=BATCH_COLUMNS)
    else:
        df = batches_df.copy()
        for column in BATCH_COLUMNS:
            if column not in df.columns:
                df[column] = None

    df = coerce_utc_columns(df, ['stage_entered_at', 'ended_at', 'external_sent_at'])
    df = df[df['ended_at'].isna()].copy()
    df['stage'] = df['stage'].where(df['stage'].notna(), None).apply(settings.normalize_stage)
    df['quantity'] = pd.to_numeric(df['quantity'], errors='coerce').fillna(0.0).astype(float)

    known = df['stage'].isin(settings.stage_order)
    if not known.all():
        unknown_tags = sorted(set(df.loc[~known, 'stage']))
        for tag in unknown_tags:
            count = int((df['stage'] == tag).sum())
            logger.warning(f"Unknown stage tag '{tag}' on {count} open batches - excluded from stage metrics")
        df = df[known].copy()

    df['status_bucket'] = df['status'].apply(normalize_batch_status)
    df['wait_hours'] = _wait_hours(df['stage_entered_at'], now)
    sent_or_entered = df['external_sent_at'].fillna(df['stage_entered_at'])
    df['external_wait_hours'] = _wait_hours(sent_or_entered, now)

    due_dates = _due_dates(work_orders_df)
    today = local_date(now, settings.timezone)
    df['due_date'] = df['wo_id'].map(lambda wo: due_dates.get(str(wo)) if wo is not None else None)
    df['overdue'] = np.array(
        [due is not None and not pd.isna(due) and due < today for due in df['due_date']],
        dtype=bool
    )
    return df


def _metric_for(stage: str, group: pd.DataFrame) -> StageMetric:
    if group.empty:
        return StageMetric(stage=stage)

    return StageMetric(
        stage=stage,
        batch_count=int(len(group)),
        total_quantity=float(group['quantity'].sum()),
        avg_wait_hours=_mean_or_zero(group['wait_hours']),
        in_queue=int((group['status_bucket'] == 'queued').sum()),
        in_progress=int((group['status_bucket'] == 'in_progress').sum()),
        overdue_count=int(group['overdue'].sum()),
    )


def aggregate_stage_metrics(
    batches_df: pd.DataFrame,
    work_orders_df: Optional[pd.DataFrame],
    now: datetime,
    settings: Optional[EngineSettings] = None,
    prepared: Optional[pd.DataFrame] = None
) -> List[StageMetric]:
    """
    Compute one StageMetric per configured stage, in pipeline order.

    Every configured stage is present in the output even with no open batches.
    avg_wait_hours averages (now - stage_entered_at) over batches that have an
    entry timestamp; batches without one still count toward batch_count and
    total_quantity.

    Args:
        batches_df: Open batches (BATCH_COLUMNS)
        work_orders_df: Work order summaries for due dates
        now: Wall-clock time of the refresh cycle
        settings: Engine settings, defaults when omitted
        prepared: Output of prepare_batches, to avoid preparing twice

    Returns:
        List of StageMetric ordered as settings.stage_order

    Example:
        >>> metrics = aggregate_stage_metrics(batches_df, wo_df, now)
        >>> [m.stage for m in metrics]
        ['cutting', 'production', 'quality', 'packing', 'dispatch', 'external']
    """
    settings = settings or EngineSettings()
    df = prepared if prepared is not None else prepare_batches(batches_df, work_orders_df, now, settings)

    metrics = [_metric_for(stage, df[df['stage'] == stage]) for stage in settings.stage_order]
    logger.debug(f"Aggregated {len(df)} open batches into {len(metrics)} stages")
    return metrics


def _partner_metrics(process_type: str, group: pd.DataFrame) -> List[PartnerMetrics]:
    partners = []
    partner_ids = group['external_partner_id'].apply(
        lambda p: str(p) if p is not None and not pd.isna(p) else UNKNOWN_PARTNER_ID
    )
    for partner_id in sorted(partner_ids.unique()):
        partner_group = group[partner_ids == partner_id]
        names = partner_group['external_partner_name'].dropna()
        partners.append(PartnerMetrics(
            partner_id=partner_id,
            partner_name=str(names.iloc[0]) if not names.empty else UNKNOWN_PARTNER_NAME,
            process_type=process_type,
            batch_count=int(len(partner_group)),
            total_quantity=float(partner_group['quantity'].sum()),
            avg_wait_hours=_mean_or_zero(partner_group['external_wait_hours']),
            overdue_count=int(partner_group['overdue'].sum()),
        ))
    return partners


def _external_batches(prepared: pd.DataFrame, work_orders_df: Optional[pd.DataFrame]) -> pd.DataFrame:
    external = prepared[prepared['stage'] == EXTERNAL_STAGE].copy()
    wo_process = {}
    if work_orders_df is not None and not work_orders_df.empty:
        wo_process = {
            str(row['wo_id']): row.get('external_process_type')
            for row in work_orders_df.to_dict('records')
        }

    def _process(row) -> str:
        process = row.get('external_process_type')
        if process is None or pd.isna(process) or not str(process).strip():
            process = wo_process.get(str(row.get('wo_id')))
        if process is None or pd.isna(process) or not str(process).strip():
            return UNKNOWN_PROCESS
        return str(process)

    if external.empty:
        external['process_type'] = pd.Series(dtype=object)
    else:
        external['process_type'] = external.apply(_process, axis=1)
    return external


def aggregate_external_processes(
    prepared: pd.DataFrame,
    work_orders_df: Optional[pd.DataFrame] = None
) -> List[ExternalProcessMetrics]:
    """
    Break external-stage batches down by process type and partner.

    Wait time for external work is measured from the send date, falling back
    to the stage entry timestamp.

    Args:
        prepared: Output of prepare_batches
        work_orders_df: Work orders, used when a batch carries no process type

    Returns:
        List of ExternalProcessMetrics sorted by process type
    """
    external = _external_batches(prepared, work_orders_df)
    processes = []
    for process_type in sorted(external['process_type'].unique()):
        group = external[external['process_type'] == process_type]
        processes.append(ExternalProcessMetrics(
            process_type=process_type,
            batch_count=int(len(group)),
            total_quantity=float(group['quantity'].sum()),
            avg_wait_hours=_mean_or_zero(group['external_wait_hours']),
            overdue_count=int(group['overdue'].sum()),
            partners=tuple(_partner_metrics(process_type, group)),
        ))
    return processes


def aggregate_partner_metrics(
    prepared: pd.DataFrame,
    work_orders_df: Optional[pd.DataFrame] = None
) -> List[PartnerMetrics]:
    """
    Group all external batches by partner regardless of process type.

    Sorted by overdue count, then total quantity, both descending.
    """
    external = _external_batches(prepared, work_orders_df)
    partners = []
    if external.empty:
        return partners

    partner_ids = external['external_partner_id'].apply(
        lambda p: str(p) if p is not None and not pd.isna(p) else UNKNOWN_PARTNER_ID
    )
    for partner_id in sorted(partner_ids.unique()):
        group = external[partner_ids == partner_id]
        names = group['external_partner_name'].dropna()
        partners.append(PartnerMetrics(
            partner_id=partner_id,
            partner_name=str(names.iloc[0]) if not names.empty else UNKNOWN_PARTNER_NAME,
            process_type=str(group['process_type'].iloc[0]),
            batch_count=int(len(group)),
            total_quantity=float(group['quantity'].sum()),
            avg_wait_hours=_mean_or_zero(group['external_wait_hours']),
            overdue_count=int(group['overdue'].sum()),
        ))

    partners.sort(key=lambda p: (-p.overdue_count, -p.total_quantity, p.partner_id))
    return partners


def summarize_wip(prepared: pd.DataFrame, settings: Optional[EngineSettings] = None) -> WipSummary:
    """Totals across the pipeline: batch counts and internal/external quantities"""
    settings = settings or EngineSettings()
    internal = prepared[~prepared['stage'].isin(NON_INTERNAL_STAGES)]
    external = prepared[prepared['stage'] == EXTERNAL_STAGE]
    counts = prepared['stage'].value_counts()

    return WipSummary(
        total_batches=int(len(prepared)),
        internal_wip_quantity=float(internal['quantity'].sum()),
        external_wip_quantity=float(external['quantity'].sum()),
        batches_by_stage=tuple((stage, int(counts.get(stage, 0))) for stage in settings.stage_order),
    )
