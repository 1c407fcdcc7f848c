from datetime import datetime

import pytest
import pytz

from core.analysis.snapshot import assemble_snapshot
from utils.formatting import (
    external_processes_to_dataframe,
    format_age,
    format_hours,
    format_timestamp,
    machine_states_to_dataframe,
    stage_metrics_to_dataframe,
)


@pytest.mark.parametrize("hours, text", [
    (None, "-"),
    (0.75, "45m"),
    (3.46, "3.5h"),
    (52.0, "2d 4h"),
])
def test_format_hours(hours, text):
    assert format_hours(hours) == text


def test_format_age():
    assert format_age(None) == "never"
    assert format_age(12.4) == "12s ago"
    assert format_age(5400) == "1.5h ago"


def test_format_timestamp_in_plant_timezone():
    moment = datetime(2024, 6, 10, 6, 30, tzinfo=pytz.UTC)

    assert format_timestamp(moment, "Asia/Kolkata") == "2024-06-10 12:00:00"
    assert format_timestamp("2024-06-10T06:30:00Z") == "2024-06-10 06:30:00"
    assert format_timestamp(None) == ""


def test_snapshot_tables(floor_facts, now, settings):
    snapshot = assemble_snapshot(floor_facts, now, settings)

    stages = stage_metrics_to_dataframe(snapshot.stages)
    machines = machine_states_to_dataframe(snapshot.machines)

    assert stages['Stage'].tolist()[:2] == ["Cutting", "Production"]
    assert stages.loc[1, 'Blocking'] == "Capacity"
    assert stages.loc[1, 'Bottleneck'] == "#1"
    assert machines['Machine'].tolist() == ["Lathe 1", "Mill 2", "Saw 3"]
    assert machines.loc[0, 'Cycle Source'] == "item_master"
    assert external_processes_to_dataframe(snapshot.external_processes).empty
