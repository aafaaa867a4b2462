from datetime import date

from matchscheduler.services.blocked_slots import BlockedSlotTracker
from matchscheduler.storage.models import CANCELLED, COMPLETED, ScheduledMatch


def make_match(match_id, team_a, team_b, slot, week="2026-05", **kwargs):
    return ScheduledMatch(
        id=match_id,
        team_a_id=team_a,
        team_b_id=team_b,
        week_id=week,
        blocked_slot=slot,
        scheduled_date=date(2026, 1, 28),
        **kwargs,
    )


def test_upcoming_matches_block_both_teams():
    tracker = BlockedSlotTracker([make_match("m1", "a", "b", "wed_2000")])
    assert tracker.blocked_slots_for_team("a", "2026-05") == {"wed_2000"}
    assert tracker.blocked_slots_for_team("b", "2026-05") == {"wed_2000"}
    assert tracker.blocked_slots_for_team("c", "2026-05") == set()


def test_other_weeks_and_finished_matches_do_not_block():
    tracker = BlockedSlotTracker([
        make_match("m1", "a", "b", "wed_2000", week="2026-06"),
        make_match("m2", "a", "c", "thu_2000", status=COMPLETED),
        make_match("m3", "a", "d", "fri_2000", status=CANCELLED),
    ])
    assert tracker.blocked_slots_for_team("a", "2026-05") == set()


def test_blocked_teams_list_decides_not_the_team_ids():
    match = make_match("m1", "a", "b", "wed_2000", blocked_teams=["a"])
    tracker = BlockedSlotTracker([match])
    assert tracker.blocked_slots_for_team("a", "2026-05") == {"wed_2000"}
    assert tracker.blocked_slots_for_team("b", "2026-05") == set()


def test_buffer_adds_neighbouring_slots_without_wrapping():
    tracker = BlockedSlotTracker([
        make_match("m1", "a", "b", "wed_2000"),
        make_match("m2", "a", "c", "sun_2330"),
    ])
    assert tracker.blocked_slots_for_team("a", "2026-05", include_buffer=True) == {
        "wed_1930", "wed_2000", "wed_2030", "sun_2300", "sun_2330",
    }


def test_pair_is_union_of_both_teams():
    tracker = BlockedSlotTracker([
        make_match("m1", "a", "x", "mon_2000"),
        make_match("m2", "b", "y", "tue_2000"),
    ])
    assert tracker.blocked_slots_for_pair("a", "b", "2026-05") == {"mon_2000", "tue_2000"}
