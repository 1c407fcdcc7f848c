"""
Floor Operations Monitor - Main Application

Live view of the shop floor derived from the operations database:
- Stage pipeline: open batches per stage, blocking reasons, bottlenecks
- Machine panel: readiness, production status and blockers per machine

Both views refresh in the background and the page re-renders on a timer.
"""

import logging
from datetime import datetime

import pytz
import streamlit as st

from config import Config
from core.analysis.refresh import FloorStateView
from core.db.pool import get_pool
from core.settings import EngineSettings
from ui.floor_display import render_published
from utils.config import get_app_config, load_config, validate_config

# Configure logging
logging.basicConfig(
    level=getattr(logging, Config.LOG_LEVEL.upper(), logging.INFO),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

# Load configuration
load_config()

# Validate configuration
config_errors = validate_config()
if config_errors:
    st.error("❌ Configuration errors detected:")
    for error in config_errors:
        st.error(error)
    st.stop()

app_config = get_app_config()

try:
    engine_settings = EngineSettings.from_config()
except ValueError as e:
    st.error(f"❌ Invalid engine settings: {e}")
    st.stop()

# Streamlit page config
st.set_page_config(
    page_title="Floor Operations Monitor",
    layout="wide",
    initial_sidebar_state="collapsed"
)


@st.cache_resource
def get_views(settings: EngineSettings):
    """One background refresher per view, shared by every browser session"""
    stage_view = FloorStateView(
        name="stages",
        settings=settings,
        interval_seconds=app_config["stage_refresh_seconds"]
    )
    machine_view = FloorStateView(
        name="machines",
        settings=settings,
        interval_seconds=app_config["machine_refresh_seconds"]
    )
    stage_view.start()
    machine_view.start()
    logger.info("Floor views started")
    return stage_view, machine_view


stage_view, machine_view = get_views(engine_settings)

st.title("🏭 Floor Operations Monitor")

with st.sidebar:
    st.header("ℹ️ About")
    st.markdown(f"""
    **Refresh intervals**
    - Stage pipeline: every {app_config['stage_refresh_seconds']:.0f}s
    - Machines: every {app_config['machine_refresh_seconds']:.0f}s

    **Thresholds**
    - Capacity wait: {engine_settings.capacity_wait_hours:.0f}h
    - Bottleneck score: > {engine_settings.bottleneck_threshold:.0f}
    - On cycle: ≥ {engine_settings.on_cycle_ratio:.0%} of expected output
    - At risk: ≥ {engine_settings.at_risk_ratio:.0%} of expected output
    """)

    with st.expander("🗄️ Database"):
        db = get_pool()
        if st.button("Check connection"):
            if db.health_check():
                st.success("Floor database reachable")
            else:
                st.error("Floor database unreachable")
        st.json(db.get_stats())


@st.fragment(run_every=app_config["stage_refresh_seconds"])
def stage_section():
    render_published(stage_view.published, "stages", datetime.now(pytz.UTC), app_config["timezone"])


@st.fragment(run_every=app_config["machine_refresh_seconds"])
def machine_section():
    render_published(machine_view.published, "machines", datetime.now(pytz.UTC), app_config["timezone"])


stage_section()
st.divider()
machine_section()
