"""
Formatting Utilities

Functions for formatting timestamps and durations, and for flattening floor
snapshots into DataFrames for display.
"""

import logging
from datetime import datetime
from typing import Iterable, Optional

import pandas as pd
import pytz
from dateutil import parser as dateutil_parser

logger = logging.getLogger(__name__)


def format_timestamp(iso_timestamp, timezone: Optional[str] = None) -> str:
    """
    Convert an ISO 8601 timestamp or datetime to readable format (YYYY-MM-DD HH:MM:SS).

    Args:
        iso_timestamp: ISO timestamp string, datetime object, or None
        timezone: Optional display timezone; aware values are converted to it

    Returns:
        Formatted timestamp string or empty string if invalid
    """
    if iso_timestamp is None or (not isinstance(iso_timestamp, datetime) and pd.isna(iso_timestamp)):
        return ""
    try:
        if isinstance(iso_timestamp, datetime):
            dt_obj = iso_timestamp
        else:
            dt_obj = dateutil_parser.parse(str(iso_timestamp))

        if timezone and dt_obj.tzinfo is not None:
            dt_obj = dt_obj.astimezone(pytz.timezone(timezone))
        return dt_obj.strftime("%Y-%m-%d %H:%M:%S")

    except (ValueError, OverflowError, pytz.UnknownTimeZoneError):
        return str(iso_timestamp) if iso_timestamp else ""


def format_hours(hours: Optional[float]) -> str:
    """
    Human readable duration: "45m", "3.5h", "2d 4h".

    Example:
        >>> format_hours(0.75)
        '45m'
    """
    if hours is None or pd.isna(hours):
        return "-"
    if hours < 1:
        return f"{round(hours * 60)}m"
    if hours < 24:
        return f"{hours:.1f}h"
    days = int(hours // 24)
    return f"{days}d {round(hours - days * 24)}h"


def format_age(seconds: Optional[float]) -> str:
    if seconds is None:
        return "never"
    if seconds < 60:
        return f"{int(seconds)}s ago"
    return f"{format_hours(seconds / 3600.0)} ago"


def stage_metrics_to_dataframe(stage_statuses: Iterable) -> pd.DataFrame:
    """Flatten StageStatus entries (metric + blocking + bottleneck) for a table"""
    rows = []
    for status in stage_statuses:
        metric = status.metric
        rows.append({
            'Stage': metric.stage.replace('_', ' ').title(),
            'Batches': metric.batch_count,
            'Quantity': metric.total_quantity,
            'Avg Wait': format_hours(metric.avg_wait_hours) if metric.has_work else "-",
            'In Queue': metric.in_queue,
            'In Progress': metric.in_progress,
            'Overdue': metric.overdue_count,
            'Blocking': status.blocking.label,
            'Bottleneck': f"#{status.bottleneck_rank}" if status.bottleneck_rank else "",
        })
    return pd.DataFrame(rows)


def machine_states_to_dataframe(machine_states: Iterable) -> pd.DataFrame:
    """Flatten MachineState entries for a table"""
    rows = []
    for state in machine_states:
        cycle = state.cycle_time
        rows.append({
            'Machine': state.name,
            'Readiness': state.readiness.replace('_', ' ').title(),
            'Reason': state.readiness_reason,
            'Priority': state.priority,
            'Work Order': state.current_wo_display or "",
            'Production': state.production_status.replace('_', ' ').title(),
            'Pieces Today': state.production.pieces_today,
            'Expected': round(state.production.expected_pieces, 1)
            if state.production.expected_pieces is not None else None,
            'Cycle Time (s)': cycle.seconds,
            'Cycle Source': cycle.source or "",
            'Queue': state.queue_count,
            'Oldest Queued': format_hours(state.oldest_queue_age_hours),
            'Blockers': "; ".join(b.label for b in state.blockers),
        })
    return pd.DataFrame(rows)


def external_processes_to_dataframe(processes: Iterable) -> pd.DataFrame:
    rows = []
    for process in processes:
        for partner in process.partners:
            rows.append({
                'Process': process.process_type,
                'Partner': partner.partner_name,
                'Batches': partner.batch_count,
                'Quantity': partner.total_quantity,
                'Avg Wait': format_hours(partner.avg_wait_hours),
                'Overdue': partner.overdue_count,
            })
    return pd.DataFrame(rows)
