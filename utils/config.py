"""
Environment Configuration

Reads the floor database connection and the refresh settings from the
environment (optionally seeded from a .env file).
"""

import os
from typing import Optional
from dotenv import load_dotenv

DATABASE_ENV = {
    "host": "FLOORDB_HOST",
    "port": "FLOORDB_PORT",
    "database": "FLOORDB_NAME",
    "user": "FLOORDB_USER",
    "password": "FLOORDB_PASS",
}


def load_config(env_path: Optional[str] = None) -> bool:
    """
    Seed os.environ from a .env file. Existing variables are not overridden.

    Returns:
        bool: True if a .env file was found
    """
    return load_dotenv(env_path) if env_path else load_dotenv()


def get_database_config() -> dict:
    """
    psycopg2 connection kwargs for the floor database.

    Port defaults to 5432 and sslmode to "prefer".

    Raises:
        ValueError: If host, database, user or password is unset
    """
    config = {key: os.getenv(env_name) for key, env_name in DATABASE_ENV.items()}
    config["port"] = config["port"] or "5432"

    missing = [DATABASE_ENV[key] for key, value in config.items() if not value]
    if missing:
        raise ValueError(f"Floor database settings missing: {missing}. Check the .env file.")

    config["sslmode"] = os.getenv("FLOORDB_SSLMODE", "prefer")
    config["connect_timeout"] = int(os.getenv("FLOORDB_CONNECT_TIMEOUT", "10"))
    config["application_name"] = "floor-monitor"
    return config


def get_app_config() -> dict:
    """Display timezone and the refresh interval of each view, in seconds."""
    return {
        "timezone": os.getenv("TIMEZONE", "Asia/Kolkata"),
        "stage_refresh_seconds": float(os.getenv("STAGE_REFRESH_SECONDS", "30")),
        "machine_refresh_seconds": float(os.getenv("MACHINE_REFRESH_SECONDS", "10")),
    }


def validate_config() -> list:
    """
    Collect configuration problems instead of failing on the first one.

    Returns:
        list: Human readable problems (empty if the configuration is usable)
    """
    problems = []

    try:
        get_database_config()
    except ValueError as e:
        problems.append(f"FLOOR: {e}")

    try:
        app_config = get_app_config()
    except ValueError as e:
        problems.append(f"REFRESH: {e}")
    else:
        for key in ("stage_refresh_seconds", "machine_refresh_seconds"):
            if app_config[key] <= 0:
                problems.append(f"REFRESH: {key} must be positive")

    return problems
