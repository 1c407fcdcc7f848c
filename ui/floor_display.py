"""
Floor Display Functions

UI components for the live floor view: stage pipeline, bottleneck strip,
machine panel and the staleness banner.
"""

import logging
from datetime import datetime
from typing import List, Optional

import streamlit as st

from core.analysis.refresh import PublishedSnapshot, Staleness
from core.analysis.snapshot import FloorSnapshot, MachineState
from core.calculations.bottlenecks import BottleneckEntry
from utils.formatting import (
    external_processes_to_dataframe,
    format_age,
    format_timestamp,
    machine_states_to_dataframe,
    stage_metrics_to_dataframe,
)

logger = logging.getLogger(__name__)

READINESS_ICONS = {
    'ready': '🟢',
    'running': '🔵',
    'setup_required': '🟡',
    'maintenance_due': '🟠',
    'down': '🔴',
    'qc_blocked': '🟣',
}

PRODUCTION_ICONS = {
    'on_cycle': '✅',
    'at_risk': '⚠️',
    'blocked': '⛔',
    'idle': '⏸️',
}


def render_staleness_banner(staleness: Staleness, now: datetime, timezone: Optional[str] = None):
    """
    Show when the data was last refreshed, and a warning when the view is
    serving a previous snapshot because the latest refresh failed.
    """
    age = format_age(staleness.age_seconds(now))
    last = format_timestamp(staleness.last_successful_refresh, timezone) or "never"

    if staleness.last_successful_refresh is None:
        st.warning(f"⏳ No floor data yet: {staleness.error}")
    elif staleness.degraded:
        st.warning(f"⚠️ Showing last good data from {last} ({age}). Latest refresh failed: {staleness.error}")
    else:
        st.caption(f"Last refreshed {last} ({age})")


def render_bottleneck_strip(bottlenecks: List[BottleneckEntry]):
    if not bottlenecks:
        st.success("✅ No significant bottlenecks")
        return

    cols = st.columns(len(bottlenecks))
    for col, entry in zip(cols, bottlenecks):
        with col:
            st.metric(
                f"Bottleneck #{entry.rank} ({entry.kind})",
                entry.label,
                f"score {entry.score:.0f}",
                delta_color="inverse"
            )


def render_stage_pipeline(snapshot: FloorSnapshot):
    """Stage table plus WIP totals and external partner breakdown"""
    st.subheader("🏭 Stage Pipeline")

    if snapshot.wip_summary is not None:
        col1, col2, col3 = st.columns(3)
        with col1:
            st.metric("Open Batches", snapshot.wip_summary.total_batches)
        with col2:
            st.metric("Internal WIP", f"{snapshot.wip_summary.internal_wip_quantity:,.0f}")
        with col3:
            st.metric("External WIP", f"{snapshot.wip_summary.external_wip_quantity:,.0f}")

    st.dataframe(stage_metrics_to_dataframe(snapshot.stages), use_container_width=True, hide_index=True)

    if snapshot.external_processes:
        with st.expander("🚚 External Processes", expanded=False):
            st.dataframe(
                external_processes_to_dataframe(snapshot.external_processes),
                use_container_width=True,
                hide_index=True
            )


def _machine_card(state: MachineState):
    icon = READINESS_ICONS.get(state.readiness, '⚪')
    production_icon = PRODUCTION_ICONS.get(state.production_status, '')
    st.markdown(f"**{icon} {state.name}**  \n{state.readiness_reason}")
    if state.current_wo_display:
        st.caption(f"{production_icon} {state.current_wo_display} · {state.production_status.replace('_', ' ')}")
    for blocker in state.blockers:
        st.error(blocker.label)


def render_machine_panel(snapshot: FloorSnapshot, cards_per_row: int = 4):
    """Machine cards ordered by priority, then the full table"""
    st.subheader("⚙️ Machines")

    if not snapshot.machines:
        st.info("No machines reported")
        return

    priority_order = {'critical': 0, 'high': 1, 'normal': 2, 'low': 3}
    ordered = sorted(snapshot.machines, key=lambda m: (priority_order.get(m.priority, 4), m.name))

    for start in range(0, len(ordered), cards_per_row):
        cols = st.columns(cards_per_row)
        for col, state in zip(cols, ordered[start:start + cards_per_row]):
            with col:
                _machine_card(state)

    with st.expander("📋 Machine Details", expanded=False):
        st.dataframe(machine_states_to_dataframe(ordered), use_container_width=True, hide_index=True)


def render_snapshot_warnings(snapshot: FloorSnapshot):
    if not snapshot.warnings:
        return
    with st.expander(f"ℹ️ Data warnings ({len(snapshot.warnings)})", expanded=False):
        for warning in snapshot.warnings:
            st.write(f"- {warning}")


def render_published(published: PublishedSnapshot, section: str, now: datetime, timezone: Optional[str] = None):
    """
    Render one view's published snapshot.

    Args:
        published: Output of FloorStateView.published
        section: "stages" or "machines"
        now: Current time, for the staleness age
        timezone: Display timezone
    """
    render_staleness_banner(published.staleness, now, timezone)

    snapshot = published.snapshot
    if snapshot is None:
        st.info("⏳ Waiting for the first successful refresh...")
        return

    if section == "stages":
        render_bottleneck_strip(list(snapshot.bottlenecks))
        render_stage_pipeline(snapshot)
        render_snapshot_warnings(snapshot)
    else:
        render_machine_panel(snapshot)
