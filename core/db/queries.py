"""
Secure Query Builder Module

Parameterized query builders for the floor fact fetchers.
All identifiers are validated before being bound into a query; invalid ones
are dropped with a warning rather than failing the whole fetch.
"""

import logging
import re
from datetime import date, datetime
from typing import Iterable, List, Tuple, Any

logger = logging.getLogger(__name__)

_ID_PATTERN = re.compile(r'^[a-zA-Z0-9_-]{1,64}$')
_STATUS_PATTERN = re.compile(r'^[a-z_]{1,32}$')


class SecureQueryBuilder:
    """Secure query builder with parameterized queries and input validation."""

    @staticmethod
    def validate_identifier(identifier) -> bool:
        """
        Validate a record identifier (UUID, numeric id, item code).

        Args:
            identifier: Identifier to validate

        Returns:
            bool: True if it is safe to bind
        """
        if identifier is None:
            return False
        return bool(_ID_PATTERN.match(str(identifier)))

    def _validated(self, identifiers: Iterable, label: str) -> List[str]:
        validated = []
        for identifier in identifiers or []:
            if self.validate_identifier(identifier):
                validated.append(str(identifier))
            else:
                logger.warning(f"Invalid {label} filtered out: {identifier!r}")
        # stable order keeps query text identical between cycles
        return sorted(set(validated))

    def build_open_batches_query(self, window_start: datetime, window_end: datetime) -> Tuple[str, List[Any]]:
        """
        Build query for open production batches inside the monitoring window.

        Batches without a stage entry timestamp are included; they are still
        work in progress.

        Returns:
            Tuple[str, List[Any]]: (query_string, parameters)
        """
        query = """
            SELECT
                pb.id::text AS batch_id,
                pb.wo_id::text AS wo_id,
                pb.stage_type AS stage,
                COALESCE(pb.batch_quantity, 0) AS quantity,
                pb.stage_entered_at,
                pb.ended_at,
                pb.batch_status AS status,
                pb.external_process_type,
                pb.external_partner_id::text AS external_partner_id,
                ep.name AS external_partner_name,
                pb.external_sent_at
            FROM production_batches pb
            LEFT JOIN external_partners ep ON ep.id = pb.external_partner_id
            WHERE pb.ended_at IS NULL
              AND (pb.stage_entered_at IS NULL
                   OR pb.stage_entered_at BETWEEN %s AND %s)
            ORDER BY pb.id ASC;
        """
        return query, [window_start, window_end]

    def build_machines_query(self) -> Tuple[str, List[Any]]:
        """Build query for all machines with their current job reference."""
        query = """
            SELECT
                m.id::text AS machine_id,
                m.name,
                m.status,
                m.department AS stage,
                m.current_wo_id::text AS current_wo_id,
                m.current_job_start,
                m.qc_status
            FROM machines m
            ORDER BY m.id ASC;
        """
        return query, []

    def build_active_maintenance_query(self, machine_ids: List[str]) -> Tuple[str, List[Any]]:
        """
        Build query for maintenance events that are still open (end_time IS NULL).

        Args:
            machine_ids: Machines to include

        Returns:
            Tuple[str, List[Any]]: (query_string, parameters)
        """
        validated = self._validated(machine_ids, "machine id")
        base_query = """
            SELECT
                ml.machine_id::text AS machine_id,
                ml.downtime_reason AS reason,
                ml.start_time,
                ml.end_time
            FROM maintenance_logs ml
        """
        if not validated:
            return f"{base_query} WHERE 1=0;", []

        query = f"""{base_query}
            WHERE ml.end_time IS NULL
              AND ml.machine_id::text = ANY(%s)
            ORDER BY ml.machine_id ASC, ml.start_time DESC;
        """
        return query, [validated]

    def build_queued_assignments_query(self, status: str = "scheduled") -> Tuple[str, List[Any]]:
        """
        Build query for machine assignments in the given status.

        Raises:
            ValueError: If status is not a plain lower-case tag
        """
        if not status or not _STATUS_PATTERN.match(status):
            raise ValueError(f"Invalid assignment status: {status!r}")

        query = """
            SELECT
                a.machine_id::text AS machine_id,
                a.wo_id::text AS wo_id,
                a.scheduled_start,
                a.status
            FROM wo_machine_assignments a
            WHERE a.status = %s
            ORDER BY a.machine_id ASC, a.scheduled_start ASC;
        """
        return query, [status]

    def build_work_orders_query(self, wo_ids: List[str]) -> Tuple[str, List[Any]]:
        """Build query for work order summaries by id."""
        validated = self._validated(wo_ids, "work order id")
        base_query = """
            SELECT
                wo.id::text AS wo_id,
                wo.display_id,
                wo.item_code,
                COALESCE(wo.quantity, 0) AS quantity,
                wo.due_date,
                wo.qc_material_passed,
                wo.qc_first_piece_passed,
                wo.cycle_time_seconds,
                wo.external_process_type
            FROM work_orders wo
        """
        if not validated:
            return f"{base_query} WHERE 1=0;", []

        query = f"""{base_query}
            WHERE wo.id::text = ANY(%s)
            ORDER BY wo.id ASC;
        """
        return query, [validated]

    def build_item_master_query(self, item_codes: List[str]) -> Tuple[str, List[Any]]:
        """Build query for item master cycle times."""
        validated = self._validated(item_codes, "item code")
        base_query = """
            SELECT im.item_code, im.cycle_time_seconds
            FROM item_master im
        """
        if not validated:
            return f"{base_query} WHERE 1=0;", []

        query = f"""{base_query}
            WHERE im.item_code = ANY(%s)
            ORDER BY im.item_code ASC;
        """
        return query, [validated]

    def build_today_logs_query(self, machine_ids: List[str], log_date: date) -> Tuple[str, List[Any]]:
        """
        Build query for daily production logs of the given machines on one day.

        Args:
            machine_ids: Machines to include
            log_date: Local production date

        Returns:
            Tuple[str, List[Any]]: (query_string, parameters)
        """
        validated = self._validated(machine_ids, "machine id")
        base_query = """
            SELECT
                l.machine_id::text AS machine_id,
                l.wo_id::text AS wo_id,
                l.log_date,
                l.created_at AS logged_at,
                l.cycle_time_seconds,
                COALESCE(l.actual_quantity, 0) AS actual_quantity,
                COALESCE(l.ok_quantity, 0) AS ok_quantity,
                COALESCE(l.total_downtime_minutes, 0) AS downtime_minutes,
                l.downtime_events
            FROM daily_production_logs l
        """
        if not validated:
            return f"{base_query} WHERE 1=0;", []

        query = f"""{base_query}
            WHERE l.log_date = %s
              AND l.machine_id::text = ANY(%s)
            ORDER BY l.machine_id ASC, l.created_at ASC;
        """
        return query, [log_date, validated]


# Global secure query builder instance
secure_query_builder = SecureQueryBuilder()
