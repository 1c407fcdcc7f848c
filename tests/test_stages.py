"""
Stage aggregation tests: fixed stage order, wait averages, overdue counts,
external partner breakdown and WIP totals.
"""

from datetime import date

import pandas as pd
import pytest

from core.calculations.stages import (
    UNKNOWN_PARTNER_NAME,
    UNKNOWN_PROCESS,
    aggregate_external_processes,
    aggregate_partner_metrics,
    aggregate_stage_metrics,
    normalize_batch_status,
    prepare_batches,
    summarize_wip,
)
from core.models import BATCH_COLUMNS, WORK_ORDER_COLUMNS
from core.settings import DEFAULT_STAGE_ORDER


def _by_stage(metrics):
    return {m.stage: m for m in metrics}


class TestStageMetrics:

    def test_empty_input_yields_every_stage_in_order(self, now, settings):
        metrics = aggregate_stage_metrics(pd.DataFrame(columns=BATCH_COLUMNS), None, now, settings)

        assert [m.stage for m in metrics] == list(DEFAULT_STAGE_ORDER)
        for metric in metrics:
            assert metric.batch_count == 0
            assert metric.total_quantity == 0
            assert metric.avg_wait_hours == 0
            assert metric.in_queue == 0
            assert metric.in_progress == 0
            assert metric.overdue_count == 0
            assert not metric.has_work

    def test_production_wait_average(self, now, settings, hours_ago, make_batches):
        batches = make_batches([
            {'wo_id': 'wo1', 'stage': 'production', 'quantity': 100, 'stage_entered_at': hours_ago(2)},
            {'wo_id': 'wo2', 'stage': 'production', 'quantity': 50, 'stage_entered_at': hours_ago(10)},
            {'wo_id': 'wo3', 'stage': 'production', 'quantity': 200, 'stage_entered_at': hours_ago(14)},
        ])

        production = _by_stage(aggregate_stage_metrics(batches, None, now, settings))['production']

        assert production.batch_count == 3
        assert production.total_quantity == 350
        assert production.avg_wait_hours == pytest.approx(8.67, abs=0.01)

    def test_output_order_ignores_arrival_order(self, now, settings, hours_ago, make_batches):
        batches = make_batches([
            {'wo_id': 'wo1', 'stage': 'dispatch', 'quantity': 5, 'stage_entered_at': hours_ago(1)},
            {'wo_id': 'wo2', 'stage': 'cutting', 'quantity': 5, 'stage_entered_at': hours_ago(1)},
        ])

        metrics = aggregate_stage_metrics(batches, None, now, settings)

        assert [m.stage for m in metrics] == list(DEFAULT_STAGE_ORDER)

    def test_missing_entry_timestamp_excluded_from_average_only(self, now, settings, hours_ago, make_batches):
        batches = make_batches([
            {'wo_id': 'wo1', 'stage': 'packing', 'quantity': 10, 'stage_entered_at': hours_ago(4)},
            {'wo_id': 'wo2', 'stage': 'packing', 'quantity': 30, 'stage_entered_at': None},
        ])

        packing = _by_stage(aggregate_stage_metrics(batches, None, now, settings))['packing']

        assert packing.batch_count == 2
        assert packing.total_quantity == 40
        assert packing.avg_wait_hours == pytest.approx(4.0)

    def test_status_buckets(self, now, settings, hours_ago, make_batches):
        batches = make_batches([
            {'wo_id': 'wo1', 'stage': 'cutting', 'quantity': 1, 'stage_entered_at': hours_ago(1), 'status': 'in_queue'},
            {'wo_id': 'wo2', 'stage': 'cutting', 'quantity': 1, 'stage_entered_at': hours_ago(1), 'status': 'In Progress'},
            {'wo_id': 'wo3', 'stage': 'cutting', 'quantity': 1, 'stage_entered_at': hours_ago(1), 'status': 'queued'},
        ])

        cutting = _by_stage(aggregate_stage_metrics(batches, None, now, settings))['cutting']

        assert cutting.in_queue == 2
        assert cutting.in_progress == 1

    def test_overdue_uses_work_order_due_date(self, now, settings, hours_ago, make_batches, make_work_orders):
        batches = make_batches([
            {'wo_id': 'late', 'stage': 'quality', 'quantity': 1, 'stage_entered_at': hours_ago(1)},
            {'wo_id': 'today', 'stage': 'quality', 'quantity': 1, 'stage_entered_at': hours_ago(1)},
            {'wo_id': 'missing', 'stage': 'quality', 'quantity': 1, 'stage_entered_at': hours_ago(1)},
        ])
        work_orders = make_work_orders([
            {'wo_id': 'late', 'due_date': date(2024, 6, 9)},
            {'wo_id': 'today', 'due_date': date(2024, 6, 10)},
        ])

        quality = _by_stage(aggregate_stage_metrics(batches, work_orders, now, settings))['quality']

        assert quality.overdue_count == 1

    def test_qc_alias_lands_in_quality(self, now, settings, hours_ago, make_batches):
        batches = make_batches([
            {'wo_id': 'wo1', 'stage': 'QC', 'quantity': 7, 'stage_entered_at': hours_ago(1)},
        ])

        quality = _by_stage(aggregate_stage_metrics(batches, None, now, settings))['quality']

        assert quality.batch_count == 1
        assert quality.total_quantity == 7

    def test_unknown_stage_is_dropped_and_logged(self, now, settings, hours_ago, make_batches, caplog):
        batches = make_batches([
            {'wo_id': 'wo1', 'stage': 'painting', 'quantity': 5, 'stage_entered_at': hours_ago(1)},
            {'wo_id': 'wo2', 'stage': 'cutting', 'quantity': 5, 'stage_entered_at': hours_ago(1)},
        ])

        metrics = aggregate_stage_metrics(batches, None, now, settings)

        assert [m.stage for m in metrics] == list(DEFAULT_STAGE_ORDER)
        assert sum(m.batch_count for m in metrics) == 1
        assert "painting" in caplog.text

    def test_future_entry_timestamp_counts_as_no_wait(self, now, settings, hours_ago, make_batches):
        batches = make_batches([
            {'wo_id': 'wo1', 'stage': 'cutting', 'quantity': 5, 'stage_entered_at': hours_ago(-1)},
        ])

        cutting = _by_stage(aggregate_stage_metrics(batches, None, now, settings))['cutting']

        assert cutting.avg_wait_hours == 0.0

    def test_closed_batches_are_not_open_work(self, now, settings, hours_ago, make_batches):
        batches = make_batches([
            {'wo_id': 'wo1', 'stage': 'production', 'quantity': 10, 'status': 'completed',
             'stage_entered_at': hours_ago(2), 'ended_at': hours_ago(1)},
        ])

        production = _by_stage(aggregate_stage_metrics(batches, None, now, settings))['production']

        assert production.batch_count == 0
        assert production.total_quantity == 0
        assert production.avg_wait_hours == 0.0
        assert not production.has_work


@pytest.mark.parametrize("raw, bucket", [
    ("queued", "queued"),
    ("in-queue", "queued"),
    ("in_progress", "in_progress"),
    ("Running", "in_progress"),
    ("completed", "completed"),
    ("paused", "other"),
    (None, "other"),
])
def test_normalize_batch_status(raw, bucket):
    assert normalize_batch_status(raw) == bucket


class TestExternalBreakdown:

    @pytest.fixture
    def external_batches(self, hours_ago, make_batches):
        return make_batches([
            {'wo_id': 'wo1', 'stage': 'external', 'quantity': 40, 'stage_entered_at': hours_ago(30),
             'external_process_type': 'plating', 'external_partner_id': 'p1',
             'external_partner_name': 'Shine Platers', 'external_sent_at': hours_ago(20)},
            {'wo_id': 'wo2', 'stage': 'external', 'quantity': 60, 'stage_entered_at': hours_ago(10),
             'external_process_type': 'plating', 'external_partner_id': 'p2',
             'external_partner_name': 'Metro Coat'},
            {'wo_id': 'wo3', 'stage': 'external', 'quantity': 10, 'stage_entered_at': hours_ago(5)},
            {'wo_id': 'wo4', 'stage': 'production', 'quantity': 999, 'stage_entered_at': hours_ago(1)},
        ])

    def test_grouped_by_process_then_partner(self, now, settings, external_batches):
        prepared = prepare_batches(external_batches, None, now, settings)

        processes = {p.process_type: p for p in aggregate_external_processes(prepared)}

        assert set(processes) == {'plating', UNKNOWN_PROCESS}
        plating = processes['plating']
        assert plating.batch_count == 2
        assert plating.total_quantity == 100
        assert [p.partner_id for p in plating.partners] == ['p1', 'p2']
        # wait measured from the send date when present
        assert plating.partners[0].avg_wait_hours == pytest.approx(20.0)
        assert plating.partners[1].avg_wait_hours == pytest.approx(10.0)
        assert processes[UNKNOWN_PROCESS].partners[0].partner_name == UNKNOWN_PARTNER_NAME

    def test_process_type_falls_back_to_work_order(self, now, settings, external_batches):
        work_orders = pd.DataFrame([{'wo_id': 'wo3', 'external_process_type': 'anodizing'}],
                                   columns=WORK_ORDER_COLUMNS)
        prepared = prepare_batches(external_batches, work_orders, now, settings)

        processes = [p.process_type for p in aggregate_external_processes(prepared, work_orders)]

        assert processes == ['anodizing', 'plating']

    def test_partners_sorted_by_overdue_then_quantity(self, now, settings, external_batches, make_work_orders):
        work_orders = make_work_orders([
            {'wo_id': 'wo1', 'due_date': date(2024, 6, 1)},
            {'wo_id': 'wo2'},
            {'wo_id': 'wo3'},
        ])
        prepared = prepare_batches(external_batches, work_orders, now, settings)

        partners = aggregate_partner_metrics(prepared, work_orders)

        assert [p.partner_id for p in partners] == ['p1', 'p2', 'unknown']
        assert partners[0].overdue_count == 1

    def test_wip_summary_splits_internal_and_external(self, now, settings, external_batches):
        prepared = prepare_batches(external_batches, None, now, settings)

        summary = summarize_wip(prepared, settings)

        assert summary.total_batches == 4
        assert summary.internal_wip_quantity == 999
        assert summary.external_wip_quantity == 110
        assert dict(summary.batches_by_stage)['external'] == 3
