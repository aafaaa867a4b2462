import asyncio
from datetime import date

import pytest

from matchscheduler.errors import ValidationError
from matchscheduler.services.blocked_slots import BlockedSlotTracker
from matchscheduler.services.comparison_engine import (
    ComparisonEngine,
    compute_matches,
    slot_match_info,
)
from matchscheduler.storage.models import AvailabilityRecord, MinFilter, RosterPlayer, ScheduledMatch, Team

WEEK = "2026-03"
SLOT = "wed_2000"


def team(team_id, players=5, **kwargs):
    roster = [RosterPlayer(user_id=f"{team_id}{i}", display_name=f"{team_id} {i}") for i in range(players)]
    return Team(id=team_id, name=f"Team {team_id}", tag=team_id.upper(), roster=roster, **kwargs)


def record(team_id, counts, week=WEEK):
    return AvailabilityRecord(
        team_id=team_id,
        week_id=week,
        slots={slot: [f"{team_id}{i}" for i in range(n)] for slot, n in counts.items()},
    )


def compare(user_counts, opponent_counts, filters=MinFilter(1, 1), opponent=None, matches=()):
    opponent = opponent or team("b")
    records = {
        ("a", WEEK): record("a", user_counts),
        (opponent.id, WEEK): record(opponent.id, opponent_counts),
    }
    return compute_matches("a", [opponent], [WEEK], records, filters, BlockedSlotTracker(matches))


def booked(slot, teams=("a", "z")):
    return ScheduledMatch(
        id="m1", team_a_id=teams[0], team_b_id=teams[1], week_id=WEEK,
        blocked_slot=slot, scheduled_date=date(2026, 1, 14),
    )


class TestComputeMatches:
    def test_threshold_on_both_sides(self):
        result = compare({SLOT: 4}, {SLOT: 3}, MinFilter(3, 3))
        assert slot_match_info(result, WEEK, SLOT).has_match

        result = compare({SLOT: 4}, {SLOT: 3}, MinFilter(3, 4))
        assert not slot_match_info(result, WEEK, SLOT).has_match

    def test_full_match_needs_four_on_both_sides(self):
        info = slot_match_info(compare({SLOT: 4}, {SLOT: 4}), WEEK, SLOT)
        assert info.has_match and info.is_full_match

        info = slot_match_info(compare({SLOT: 3}, {SLOT: 4}), WEEK, SLOT)
        assert info.has_match and not info.is_full_match

    def test_full_match_ignores_the_filter(self):
        info = slot_match_info(compare({SLOT: 4}, {SLOT: 4}, MinFilter(4, 4)), WEEK, SLOT)
        assert info.is_full_match
        info = slot_match_info(compare({SLOT: 3}, {SLOT: 3}, MinFilter(1, 1)), WEEK, SLOT)
        assert not info.is_full_match

    def test_blocked_slot_is_excluded_for_either_team(self):
        result = compare({SLOT: 4}, {SLOT: 4}, matches=[booked(SLOT, ("a", "z"))])
        assert not slot_match_info(result, WEEK, SLOT).has_match

        result = compare({SLOT: 4}, {SLOT: 4}, matches=[booked(SLOT, ("b", "z"))])
        assert not slot_match_info(result, WEEK, SLOT).has_match

        result = compare({SLOT: 4}, {SLOT: 4}, matches=[booked("thu_2000", ("a", "z"))])
        assert slot_match_info(result, WEEK, SLOT).has_match

    def test_opponent_hidden_from_comparison_is_skipped(self):
        result = compare({SLOT: 4}, {SLOT: 4}, opponent=team("b", hide_from_comparison=True))
        assert result.matches == {}

    def test_hidden_roster_names_are_anonymized(self):
        result = compare({SLOT: 2}, {SLOT: 3}, opponent=team("b", players=5, hide_roster_names=True))
        entry = slot_match_info(result, WEEK, SLOT).matches[0]
        assert entry.hide_roster_names
        assert [p.user_id for p in entry.available_players] == ["anon-0", "anon-1", "anon-2"]
        assert [p.user_id for p in entry.unavailable_players] == ["anon-u-0", "anon-u-1"]
        assert all(p.anonymous and p.display_name is None for p in entry.available_players)

    def test_visible_roster_is_split_by_availability(self):
        result = compare({SLOT: 2}, {SLOT: 2}, opponent=team("b", players=3))
        entry = slot_match_info(result, WEEK, SLOT).matches[0]
        assert [p.user_id for p in entry.available_players] == ["b0", "b1"]
        assert [p.user_id for p in entry.unavailable_players] == ["b2"]
        assert entry.available_players[0].display_name == "b 0"

    def test_missing_opponent_record_counts_as_empty(self):
        records = {("a", WEEK): record("a", {SLOT: 4})}
        result = compute_matches("a", [team("b")], [WEEK], records, MinFilter(1, 1), BlockedSlotTracker([]))
        assert result.matches == {}
        assert result.user_counts[(WEEK, SLOT)] == 4

    def test_team_without_roster_gets_empty_lists(self):
        result = compare({SLOT: 1}, {SLOT: 1}, opponent=team("b", players=0))
        entry = slot_match_info(result, WEEK, SLOT).matches[0]
        assert entry.available_players == []
        assert entry.unavailable_players == []
        assert entry.available_count == 1

    def test_several_opponents_accumulate_per_slot(self):
        records = {
            ("a", WEEK): record("a", {SLOT: 4}),
            ("b", WEEK): record("b", {SLOT: 2}),
            ("c", WEEK): record("c", {SLOT: 4}),
        }
        result = compute_matches(
            "a", [team("b"), team("c"), team("a")], [WEEK], records, MinFilter(1, 1), BlockedSlotTracker([])
        )
        info = slot_match_info(result, WEEK, SLOT)
        assert [m.team_id for m in info.matches] == ["b", "c"]
        assert info.is_full_match


@pytest.fixture
def engine(availability, teams, match_cache, clock, make_team):
    make_team("a", players=4)
    make_team("b", players=4)
    return ComparisonEngine(availability, teams, match_cache, clock=clock)


def test_engine_compares_the_two_visible_weeks(engine, fill_slot):
    fill_slot("a", "2026-03", SLOT, ["a-p1", "a-p2", "a-p3", "a-p4"])
    fill_slot("b", "2026-03", SLOT, ["b-p1", "b-p2", "b-p3", "b-p4"])
    fill_slot("a", "2026-04", "thu_2100", ["a-p1"])
    fill_slot("b", "2026-04", "thu_2100", ["b-p1"])

    state = asyncio.run(engine.start_comparison("a", ["b", "a"]))

    assert state.active
    assert state.weeks == ["2026-03", "2026-04"]
    assert state.opponent_team_ids == ["b"]
    assert engine.get_slot_match_info("2026-03", SLOT).is_full_match
    assert engine.get_slot_match_info("2026-04", "thu_2100").has_match


def test_engine_recomputes_on_filter_change(engine, fill_slot):
    fill_slot("a", WEEK, SLOT, ["a-p1", "a-p2"])
    fill_slot("b", WEEK, SLOT, ["b-p1", "b-p2"])
    asyncio.run(engine.start_comparison("a", ["b"]))
    assert engine.get_slot_match_info(WEEK, SLOT).has_match

    engine.set_filters(MinFilter(3, 1))
    assert not engine.get_slot_match_info(WEEK, SLOT).has_match


def test_engine_rejects_bad_filters(engine):
    with pytest.raises(ValidationError):
        asyncio.run(engine.start_comparison("a", ["b"], MinFilter(0, 1)))
    with pytest.raises(ValidationError):
        engine.set_filters(MinFilter(1, 5))


def test_engine_reacts_to_new_matches_and_availability(engine, fill_slot, match_cache):
    fill_slot("a", WEEK, SLOT, ["a-p1"])
    fill_slot("b", WEEK, SLOT, ["b-p1"])
    states = []
    engine.subscribe(states.append)
    asyncio.run(engine.start_comparison("a", ["b"]))
    assert engine.get_slot_match_info(WEEK, SLOT).has_match

    match_cache.update(booked(SLOT, ("b", "z")))
    assert not engine.get_slot_match_info(WEEK, SLOT).has_match

    fill_slot("a", WEEK, "fri_2000", ["a-p1"])
    fill_slot("b", WEEK, "fri_2000", ["b-p2"])
    assert engine.get_slot_match_info(WEEK, "fri_2000").has_match
    assert len(states) >= 4


def test_engine_navigation_moves_the_window(engine, fill_slot):
    fill_slot("a", "2026-05", SLOT, ["a-p1"])
    fill_slot("b", "2026-05", SLOT, ["b-p1"])
    asyncio.run(engine.start_comparison("a", ["b"]))
    assert not engine.get_slot_match_info("2026-05", SLOT).has_match

    asyncio.run(engine.set_anchor_week("2026-04"))
    assert engine.visible_weeks() == ["2026-04", "2026-05"]
    assert engine.get_slot_match_info("2026-05", SLOT).has_match


def test_user_team_info_and_end(engine, fill_slot):
    fill_slot("a", WEEK, SLOT, ["a-p1", "a-p3"])
    asyncio.run(engine.start_comparison("a", ["b"]))

    info = engine.get_user_team_info(WEEK, SLOT)
    assert [p.user_id for p in info.available_players] == ["a-p1", "a-p3"]
    assert [p.user_id for p in info.unavailable_players] == ["a-p2", "a-p4"]
    assert engine.get_user_team_info(WEEK, "mon_2000") is None

    engine.end_comparison()
    assert not engine.active
    assert engine.get_user_team_info(WEEK, SLOT) is None
    assert not engine.get_slot_match_info(WEEK, SLOT).has_match


def test_unsubscribe_stops_notifications(engine):
    states = []
    unsubscribe = engine.subscribe(states.append)
    unsubscribe()
    asyncio.run(engine.start_comparison("a", ["b"]))
    assert states == []


def test_close_detaches_from_the_feeds(engine, match_cache, availability):
    match_listeners = len(match_cache._listeners)
    availability_listeners = len(availability._listeners)
    asyncio.run(engine.start_comparison("a", ["b"]))

    engine.close()

    assert not engine.active
    assert len(match_cache._listeners) == match_listeners - 1
    assert len(availability._listeners) == availability_listeners - 1
    engine.close()
    assert len(match_cache._listeners) == match_listeners - 1


def test_failed_background_refresh_is_logged(engine, availability, fill_slot, monkeypatch, caplog):
    fill_slot("a", WEEK, SLOT, ["a-p1"])

    async def scenario():
        await engine.start_comparison("a", ["b"])

        async def unreachable(keys):
            raise RuntimeError("store unreachable")

        monkeypatch.setattr(availability, "load_many", unreachable)
        availability.invalidate("a", WEEK)
        for _ in range(3):
            await asyncio.sleep(0)

    asyncio.run(scenario())

    assert "Comparison refresh failed: store unreachable" in caplog.text
