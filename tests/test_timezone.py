from datetime import datetime

import pytest
import pytz

from matchscheduler.errors import ValidationError
from matchscheduler.utils.slots import DAYS
from matchscheduler.utils.timezone import (
    ALL_HALF_HOUR_SLOTS,
    DISPLAY_TIME_SLOTS,
    GridLayout,
    base_to_local_display,
    build_grid_to_utc_map,
    build_utc_to_grid_map,
    format_slot_for_display,
    get_timezone,
    local_to_utc_slot,
    offset_minutes,
    timezone_label,
    to_utc,
    utc_to_local_slot,
)

WINTER = pytz.UTC.localize(datetime(2026, 1, 15, 12, 0))
SUMMER = pytz.UTC.localize(datetime(2026, 7, 15, 12, 0))

TIMEZONES = [
    "UTC",
    "Europe/Berlin",
    "Europe/Stockholm",
    "America/New_York",
    "America/Los_Angeles",
    "America/St_Johns",
    "Asia/Kolkata",
    "Asia/Kathmandu",
    "Australia/Adelaide",
    "Pacific/Chatham",
    "Pacific/Kiritimati",
]


def test_stockholm_offset_follows_dst():
    assert offset_minutes("Europe/Stockholm", WINTER) == 60
    assert offset_minutes("Europe/Stockholm", SUMMER) == 120


def test_non_hour_offsets():
    assert offset_minutes("Asia/Kolkata", WINTER) == 330
    assert offset_minutes("Asia/Kathmandu", WINTER) == 345


def test_monday_evening_in_new_york_is_tuesday_utc():
    position = local_to_utc_slot("mon", "1900", "America/New_York", WINTER)
    assert position.slot_id == "tue_0000"
    assert position.week_offset == 0


def test_sunday_night_in_new_york_wraps_into_next_week():
    position = local_to_utc_slot("sun", "21:00", "America/New_York", WINTER)
    assert position.slot_id == "mon_0200"
    assert position.week_offset == 1


def test_monday_early_in_berlin_falls_in_previous_utc_week():
    position = local_to_utc_slot("mon", "0000", "Europe/Berlin", WINTER)
    assert position.slot_id == "sun_2300"
    assert position.week_offset == -1


@pytest.mark.parametrize("timezone", TIMEZONES)
@pytest.mark.parametrize("reference", [WINTER, SUMMER])
def test_every_cell_round_trips(timezone, reference):
    for day in DAYS:
        for time in ALL_HALF_HOUR_SLOTS:
            utc = local_to_utc_slot(day, time, timezone, reference)
            back = utc_to_local_slot(utc.slot_id, timezone, reference)
            assert (back.day, back.time) == (day, time)


@pytest.mark.parametrize("timezone", TIMEZONES)
def test_grid_maps_are_inverse(timezone):
    grid_to_utc = build_grid_to_utc_map(timezone, WINTER)
    utc_to_grid = build_utc_to_grid_map(timezone, WINTER)
    assert len(grid_to_utc) == 7 * len(DISPLAY_TIME_SLOTS)
    for cell, utc in grid_to_utc.items():
        assert utc_to_grid[utc] == cell


def test_base_grid_in_berlin_winter():
    grid_to_utc = build_grid_to_utc_map(reference=WINTER)
    assert grid_to_utc["mon_2000"] == "mon_1900"
    assert grid_to_utc["sun_2300"] == "sun_2200"


def test_base_grid_in_berlin_summer():
    assert build_grid_to_utc_map(reference=SUMMER)["wed_2000"] == "wed_1800"


def test_format_slot_for_display():
    label = format_slot_for_display("tue_0000", "America/New_York", WINTER)
    assert label.day_label == "Monday"
    assert label.time_label == "19:00"
    assert label.full_label == "Monday at 19:00"


def test_base_to_local_display():
    assert base_to_local_display("2000", "America/New_York", WINTER) == "14:00"
    assert base_to_local_display("2000", "Europe/Berlin", WINTER) == "20:00"
    assert base_to_local_display("2300", "Asia/Kolkata", WINTER) == "03:30"


def test_timezone_label():
    assert timezone_label("Europe/Berlin", WINTER) == "CET (UTC+1)"
    assert timezone_label("Europe/Berlin", SUMMER) == "CEST (UTC+2)"
    assert timezone_label("Asia/Kolkata", WINTER) == "IST (UTC+5:30)"


def test_unknown_timezone_is_a_validation_error():
    with pytest.raises(ValidationError):
        get_timezone("Mars/Olympus_Mons")
    with pytest.raises(ValidationError):
        local_to_utc_slot("mon", "2000", "Mars/Olympus_Mons", WINTER)


def test_bad_local_input_is_rejected():
    with pytest.raises(ValidationError):
        local_to_utc_slot("xyz", "2000", "UTC", WINTER)
    with pytest.raises(ValidationError):
        local_to_utc_slot("mon", "2460", "UTC", WINTER)


@pytest.mark.parametrize("time", ["1915", "19:45", "1:900", "19:0:0", "190", "1900\n", ""])
def test_local_time_must_be_a_grid_half_hour(time):
    with pytest.raises(ValidationError):
        local_to_utc_slot("mon", time, "UTC", WINTER)


def test_utc_side_keeps_quarter_hours():
    position = utc_to_local_slot("tue_1945", "Asia/Kathmandu", WINTER)
    assert position.slot_id == "wed_0130"
    assert local_to_utc_slot("wed", "01:30", "Asia/Kathmandu", WINTER).slot_id == "tue_1945"


def test_to_utc_treats_naive_as_utc_unless_told_otherwise():
    naive = datetime(2026, 1, 15, 20, 0)
    assert to_utc(naive) == pytz.UTC.localize(naive)
    assert to_utc(naive, "Europe/Berlin").hour == 19


class TestGridLayout:
    def test_defaults_hide_early_rows(self):
        layout = GridLayout()
        assert layout.visible_time_slots() == [
            "1930", "2000", "2030", "2100", "2130", "2200", "2230", "2300",
        ]

    def test_at_least_four_rows_stay_visible(self):
        layout = GridLayout()
        assert not layout.set_hidden_time_slots(DISPLAY_TIME_SLOTS[:8])
        assert layout.set_hidden_time_slots(DISPLAY_TIME_SLOTS[:7])
        assert layout.visible_time_slots() == ["2130", "2200", "2230", "2300"]

    def test_extra_rows_are_merged_in_order(self):
        layout = GridLayout()
        layout.set_extra_time_slots(["1700", "2330", "bogus", "2000"])
        rows = layout.visible_time_slots()
        assert rows[0] == "1700"
        assert rows[-1] == "2330"
        assert "bogus" not in rows
        assert rows.count("2000") == 1
