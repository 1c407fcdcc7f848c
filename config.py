"""
Configuration Management
Loads and validates environment variables
"""
import os
from dotenv import load_dotenv

load_dotenv()


def _csv(value: str) -> list:
    return [item.strip().lower() for item in value.split(",") if item.strip()]


class Config:
    """Application configuration"""

    # Application Settings
    TIMEZONE = os.getenv("TIMEZONE", "Asia/Kolkata")
    LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
    MONITOR_WINDOW_DAYS = int(os.getenv("MONITOR_WINDOW_DAYS", 90))

    # Pipeline
    STAGE_ORDER = _csv(os.getenv("STAGE_ORDER", "cutting,production,quality,packing,dispatch,external"))
    MACHINE_STAGES = _csv(os.getenv("MACHINE_STAGES", "cutting,production"))

    # Classification thresholds
    CAPACITY_WAIT_HOURS = float(os.getenv("CAPACITY_WAIT_HOURS", 8))
    BOTTLENECK_THRESHOLD = float(os.getenv("BOTTLENECK_THRESHOLD", 50))
    BOTTLENECK_BATCH_WEIGHT = float(os.getenv("BOTTLENECK_BATCH_WEIGHT", 10))
    ON_CYCLE_RATIO = float(os.getenv("ON_CYCLE_RATIO", 0.85))
    AT_RISK_RATIO = float(os.getenv("AT_RISK_RATIO", 0.60))

    # Refresh loops
    STAGE_REFRESH_SECONDS = float(os.getenv("STAGE_REFRESH_SECONDS", 30))
    MACHINE_REFRESH_SECONDS = float(os.getenv("MACHINE_REFRESH_SECONDS", 10))
    FETCH_RETRIES = int(os.getenv("FETCH_RETRIES", 3))
    FETCH_BACKOFF_SECONDS = float(os.getenv("FETCH_BACKOFF_SECONDS", 0.5))
    FETCH_BACKOFF_MAX_SECONDS = float(os.getenv("FETCH_BACKOFF_MAX_SECONDS", 4))
