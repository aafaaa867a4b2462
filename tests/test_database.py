from datetime import date, datetime

import pytest
import pytz

from matchscheduler.errors import SlotAlreadyBookedError, ValidationError
from matchscheduler.storage.models import (
    CANCELLED,
    EVENT_MATCH_SCHEDULED,
    EVENT_PROPOSAL_CREATED,
    EventRecord,
    MatchProposal,
    MinFilter,
    ScheduledMatch,
    SlotConfirmation,
    Template,
    UserProfile,
)

NOW = pytz.UTC.localize(datetime(2026, 1, 15, 12, 0))


def make_match(match_id, team_a="a", team_b="b", slot="wed_2000", **kwargs):
    return ScheduledMatch(
        id=match_id, team_a_id=team_a, team_b_id=team_b, week_id="2026-05",
        blocked_slot=slot, scheduled_date=date(2026, 1, 28), **kwargs,
    )


class TestAvailability:
    def test_first_write_creates_the_record(self, database):
        assert database.get_availability("a", "2026-05") is None
        record = database.save_slot_update("a", "2026-05", "wed_2000", "u1", "add", updated_at=NOW)
        assert record.slots == {"wed_2000": ["u1"]}
        assert database.get_availability("a", "2026-05").last_updated == NOW

    def test_add_is_idempotent_and_remove_drops_empty_slots(self, database):
        database.save_slot_update("a", "2026-05", "wed_2000", "u1", "add")
        database.save_slot_update("a", "2026-05", "wed_2000", "u1", "add")
        assert database.get_availability("a", "2026-05").slots == {"wed_2000": ["u1"]}

        database.save_slot_update("a", "2026-05", "wed_2000", "u1", "remove")
        assert database.get_availability("a", "2026-05").slots == {}

    def test_user_is_never_available_and_unavailable_at_once(self, database):
        database.save_slot_update("a", "2026-05", "wed_2000", "u1", "add")
        record = database.save_slot_update("a", "2026-05", "wed_2000", "u1", "unavailable")
        assert record.slots == {}
        assert record.unavailable == {"wed_2000": ["u1"]}

        record = database.save_slot_update("a", "2026-05", "wed_2000", "u1", "add")
        assert record.slots == {"wed_2000": ["u1"]}
        assert record.unavailable == {}

    def test_unknown_action(self, database):
        with pytest.raises(ValidationError):
            database.save_slot_update("a", "2026-05", "wed_2000", "u1", "maybe")


class TestScheduledMatches:
    def test_insert_refuses_a_booked_team(self, database):
        database.insert_scheduled_match(make_match("m1"))

        with pytest.raises(SlotAlreadyBookedError) as excinfo:
            database.insert_scheduled_match(make_match("m2", team_a="b", team_b="c"))

        assert excinfo.value.team_ids == ["b"]
        assert excinfo.value.slot_id == "wed_2000"
        assert database.get_scheduled_match("m2") is None

    def test_other_slot_or_cancelled_match_does_not_conflict(self, database):
        database.insert_scheduled_match(make_match("m1"))
        database.insert_scheduled_match(make_match("m2", slot="wed_2030"))

        cancelled = database.get_scheduled_match("m1")
        cancelled.status = CANCELLED
        database.update_scheduled_match(cancelled)
        database.insert_scheduled_match(make_match("m3"))

        assert database.get_scheduled_match("m3") is not None

    def test_failed_transaction_rolls_back(self, database):
        with pytest.raises(RuntimeError):
            with database.transaction():
                database.insert_scheduled_match(make_match("m1"))
                raise RuntimeError("abort")
        assert database.get_scheduled_match("m1") is None

    def test_round_trip_keeps_every_field(self, database):
        match = make_match(
            "m1", game_type="practice", team_a_roster=["a1"], team_b_roster=["b1", "b2"],
            external_ref="fixture_x", created_at=NOW,
            confirmed_by_a="a1", confirmed_by_b="b2", game_type_set_by="b2",
        )
        database.insert_scheduled_match(match)
        stored = database.get_scheduled_match("m1")
        assert stored.blocked_teams == ["a", "b"]
        assert stored.scheduled_date == date(2026, 1, 28)
        assert stored.team_b_roster == ["b1", "b2"]
        assert stored.created_at == NOW
        assert (stored.confirmed_by_a, stored.confirmed_by_b, stored.game_type_set_by) == ("a1", "b2", "b2")
        assert database.find_match_by_external_ref("fixture_x").id == "m1"


def test_proposal_round_trip(database):
    proposal = MatchProposal(
        id="p1", proposer_team_id="a", opponent_team_id="b", week_id="2026-05",
        min_filter=MinFilter(3, 4),
        proposer_confirmed_slots={"wed_2000": SlotConfirmation("a-p1", 3, "official")},
        expires_at=NOW,
    )
    database.save_proposal(proposal)

    stored = database.get_proposal("p1")
    assert stored.min_filter == MinFilter(3, 4)
    assert stored.proposer_confirmed_slots == {"wed_2000": SlotConfirmation("a-p1", 3, "official")}
    assert stored.opponent_confirmed_slots == {}
    assert database.find_active_proposal("b", "a", "2026-05").id == "p1"


def test_recurring_users_only(database):
    database.upsert_user(UserProfile("u1", template=Template(["mon_2000"], recurring=True)))
    database.upsert_user(UserProfile("u2", template=Template(["mon_2000"])))
    database.upsert_user(UserProfile("u3"))
    assert [u.id for u in database.get_users_with_recurring_templates()] == ["u1"]


def test_notification_bookkeeping(database):
    assert not database.is_notified("m1", "123")
    database.mark_notified("m1", "123", NOW)
    assert database.is_notified("m1", "123")
    assert not database.is_notified("m1", "456")


def test_events_are_filtered_and_kept_in_order(database):
    database.log_event(EventRecord(EVENT_PROPOSAL_CREATED, proposal_id="p1", team_ids=["a", "b"], user_id="a-p1"))
    database.log_event(EventRecord(
        EVENT_MATCH_SCHEDULED, proposal_id="p1", match_id="m1", team_ids=["a", "b"],
        user_id="b-p1", details={"slot_id": "wed_2000"}, created_at=NOW,
    ))
    database.log_event(EventRecord(EVENT_PROPOSAL_CREATED, proposal_id="p2"))

    events = database.get_events(proposal_id="p1")
    assert [e.type for e in events] == [EVENT_PROPOSAL_CREATED, EVENT_MATCH_SCHEDULED]
    assert events[0].id < events[1].id
    assert events[1].details == {"slot_id": "wed_2000"}
    assert events[1].team_ids == ["a", "b"]
    assert events[1].created_at == NOW
    assert [e.proposal_id for e in database.get_events(event_type=EVENT_PROPOSAL_CREATED)] == ["p1", "p2"]
    assert database.get_events(match_id="m1")[0].user_id == "b-p1"


def test_event_rolls_back_with_its_transaction(database):
    with pytest.raises(RuntimeError):
        with database.transaction():
            database.log_event(EventRecord(EVENT_PROPOSAL_CREATED, proposal_id="p1"))
            raise RuntimeError("abort")
    assert database.get_events() == []
