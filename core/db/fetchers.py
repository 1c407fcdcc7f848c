"""
Floor Fact Fetching Module

Raw fact fetchers for the floor state engine. Each function runs one
parameterized query against the floor database and returns a DataFrame with
the column contract declared in core.models.

Unlike report fetchers, these raise FetchError on any datastore failure so the
refresh loop can tell "no rows" apart from "datastore unreachable".
"""

import logging
from datetime import date
from typing import List

import pandas as pd
import psycopg2

from core.models import (
    ASSIGNMENT_COLUMNS,
    BATCH_COLUMNS,
    BATCH_TIMESTAMP_COLUMNS,
    ITEM_MASTER_COLUMNS,
    LOG_COLUMNS,
    MACHINE_COLUMNS,
    MAINTENANCE_COLUMNS,
    WORK_ORDER_COLUMNS,
    empty_frame,
)
from core.time_windows.filters import coerce_utc_columns
from core.time_windows.models import TimeSegment
from .pool import get_floor_connection
from .queries import secure_query_builder

logger = logging.getLogger(__name__)


class FetchError(Exception):
    """A fact query could not be completed."""

    def __init__(self, fetch_name: str, cause: Exception):
        self.fetch_name = fetch_name
        self.cause = cause
        super().__init__(f"{fetch_name} failed: {cause}")


def _run_query(fetch_name: str, query: str, parameters: list, columns: List[str]) -> pd.DataFrame:
    """Execute a query and shape the rows into the declared column contract."""
    try:
        with get_floor_connection() as conn:
            with conn.cursor() as cursor:
                cursor.execute(query, parameters)
                data = cursor.fetchall()
    except (psycopg2.Error, ValueError) as e:
        logger.error(f"Error running {fetch_name}: {e}", exc_info=True)
        raise FetchError(fetch_name, e) from e

    df = pd.DataFrame(data, columns=columns)
    logger.info(f"{fetch_name}: fetched {len(df)} rows")
    return df


def fetch_open_batches(window: TimeSegment) -> pd.DataFrame:
    """
    Fetch open production batches inside the monitoring window.

    Args:
        window: Monitoring window (UTC)

    Returns:
        DataFrame with BATCH_COLUMNS; timestamp columns as UTC datetimes
    """
    query, parameters = secure_query_builder.build_open_batches_query(window.start, window.end)
    df = _run_query("fetch_open_batches", query, parameters, BATCH_COLUMNS)
    df['quantity'] = pd.to_numeric(df['quantity'], errors='coerce').fillna(0.0).astype(float)
    return coerce_utc_columns(df, BATCH_TIMESTAMP_COLUMNS)


def fetch_machines() -> pd.DataFrame:
    """Fetch all machines with status, current work order and QC flag."""
    query, parameters = secure_query_builder.build_machines_query()
    df = _run_query("fetch_machines", query, parameters, MACHINE_COLUMNS)
    return coerce_utc_columns(df, ['current_job_start'])


def fetch_active_maintenance(machine_ids: List[str]) -> pd.DataFrame:
    """
    Fetch maintenance events that have not ended for the given machines.

    Args:
        machine_ids: Machine ids from fetch_machines

    Returns:
        DataFrame with MAINTENANCE_COLUMNS
    """
    if not machine_ids:
        logger.info("No machine ids provided for maintenance query")
        return empty_frame(MAINTENANCE_COLUMNS)

    query, parameters = secure_query_builder.build_active_maintenance_query(machine_ids)
    df = _run_query("fetch_active_maintenance", query, parameters, MAINTENANCE_COLUMNS)
    return coerce_utc_columns(df, ['start_time', 'end_time'])


def fetch_queued_assignments(status: str = "scheduled") -> pd.DataFrame:
    """Fetch machine assignments in the given status (default: scheduled)."""
    try:
        query, parameters = secure_query_builder.build_queued_assignments_query(status)
    except ValueError as e:
        raise FetchError("fetch_queued_assignments", e) from e
    df = _run_query("fetch_queued_assignments", query, parameters, ASSIGNMENT_COLUMNS)
    return coerce_utc_columns(df, ['scheduled_start'])


def fetch_work_orders(wo_ids: List[str]) -> pd.DataFrame:
    """
    Fetch work order summaries (due date, QC flags, cycle time hint).

    Args:
        wo_ids: Work order ids referenced by batches, machines and assignments

    Returns:
        DataFrame with WORK_ORDER_COLUMNS
    """
    if not wo_ids:
        return empty_frame(WORK_ORDER_COLUMNS)

    query, parameters = secure_query_builder.build_work_orders_query(wo_ids)
    df = _run_query("fetch_work_orders", query, parameters, WORK_ORDER_COLUMNS)
    df['due_date'] = pd.to_datetime(df['due_date'], errors='coerce').dt.date
    return df


def fetch_item_master(item_codes: List[str]) -> pd.DataFrame:
    """Fetch item master cycle times for the given item codes."""
    if not item_codes:
        return empty_frame(ITEM_MASTER_COLUMNS)

    query, parameters = secure_query_builder.build_item_master_query(item_codes)
    return _run_query("fetch_item_master", query, parameters, ITEM_MASTER_COLUMNS)


def fetch_today_logs(machine_ids: List[str], log_date: date) -> pd.DataFrame:
    """
    Fetch daily production log rows of the given machines for one production day.

    Args:
        machine_ids: Machine ids from fetch_machines
        log_date: Local production date

    Returns:
        DataFrame with LOG_COLUMNS (cycle time, quantities, downtime)
    """
    if not machine_ids:
        return empty_frame(LOG_COLUMNS)

    query, parameters = secure_query_builder.build_today_logs_query(machine_ids, log_date)
    df = _run_query("fetch_today_logs", query, parameters, LOG_COLUMNS)
    return coerce_utc_columns(df, ['logged_at'])


class DatabaseFactSource:
    """Fact source backed by the floor database; the engine's default I/O boundary."""

    fetch_open_batches = staticmethod(fetch_open_batches)
    fetch_machines = staticmethod(fetch_machines)
    fetch_active_maintenance = staticmethod(fetch_active_maintenance)
    fetch_queued_assignments = staticmethod(fetch_queued_assignments)
    fetch_work_orders = staticmethod(fetch_work_orders)
    fetch_item_master = staticmethod(fetch_item_master)
    fetch_today_logs = staticmethod(fetch_today_logs)
