"""Tests for free-text slot resolution and the date/time reply contract."""

import json
from datetime import datetime, timezone

import pytest

from appointment_agent.oracle.datetime_parser import (
    DateRange,
    Moment,
    WeekRange,
    availability_window,
    parse_date_time,
    parse_date_time_reply,
)
from appointment_agent.slot_matching import (
    find_closest_to_start,
    looks_like_date_time,
    match_slot,
    parse_option_index,
    resolve_option,
)

from conftest import FIXED_NOW, ScriptedOracle, make_slot

SLOTS = [
    make_slot(1, "2026-02-05T10:00:00Z"),
    make_slot(2, "2026-02-05T13:30:00Z"),
    make_slot(3, "2026-02-06T09:00:00Z"),
]


# ── Option phrases ───────────────────────────────────────────────


class TestParseOptionIndex:
    @pytest.mark.parametrize(
        "text,expected",
        [
            ("option 2", 1),
            ("Option number 3", 2),
            ("option two", 1),
            ("the second one", 1),
            ("2nd", 1),
            ("3", 2),
            ("the 1st one please", 0),
            ("two", 1),
            ("number three", 2),
            ("option 0", -1),
            ("", -1),
            ("I'm not sure", -1),
        ],
    )
    def test_phrases(self, text, expected):
        assert parse_option_index(text) == expected

    def test_spoken_numbers_can_be_disabled(self):
        assert parse_option_index("four", spoken_numbers=False) == -1
        assert parse_option_index("option 4", spoken_numbers=False) == 3


class TestResolveOption:
    def test_bounded_by_count(self):
        assert resolve_option("option 3", 3) == 2
        assert resolve_option("option 4", 3) == -1
        assert resolve_option("option 1", 0) == -1

    def test_last_one(self):
        assert resolve_option("the last one", 3) == 2

    def test_time_is_not_an_option(self):
        assert looks_like_date_time("four pm")
        assert resolve_option("four pm", 5) == -1
        assert resolve_option("at 2 30", 5) == -1


class TestLooksLikeDateTime:
    @pytest.mark.parametrize(
        "text", ["10am", "at 3 p.m.", "tomorrow", "Friday morning", "February 6th", "6th of Feb", "9:30"]
    )
    def test_date_like(self, text):
        assert looks_like_date_time(text)

    @pytest.mark.parametrize("text", ["option 2", "yes", "the second one"])
    def test_not_date_like(self, text):
        assert not looks_like_date_time(text)


class TestFindClosest:
    def test_nearest_start(self):
        assert find_closest_to_start(SLOTS, "2026-02-05T13:00:00Z").slot_id == 2

    def test_first_wins_ties(self):
        slots = [make_slot(1, "2026-02-05T10:00:00Z"), make_slot(2, "2026-02-05T12:00:00Z")]
        assert find_closest_to_start(slots, "2026-02-05T11:00:00Z").slot_id == 1

    def test_bad_target(self):
        assert find_closest_to_start(SLOTS, "not a time") is None


# ── Matching against offered slots ───────────────────────────────


def moment(iso):
    return json.dumps({"kind": "moment", "isoUtc": iso})


class TestMatchSlot:
    @pytest.mark.asyncio
    async def test_option_needs_no_oracle(self):
        oracle = ScriptedOracle()
        match = await match_slot("option 3", SLOTS, oracle, "UTC", FIXED_NOW)
        assert match.kind == "index"
        assert match.slot.slot_id == 3
        assert oracle.calls == []

    @pytest.mark.asyncio
    async def test_out_of_range_option_is_none(self):
        match = await match_slot("option 7", SLOTS, ScriptedOracle(), "UTC", FIXED_NOW)
        assert match.kind == "none"

    @pytest.mark.asyncio
    async def test_moment_on_offered_day(self):
        oracle = ScriptedOracle({"datetime": [moment("2026-02-05T09:45:00Z")]})
        match = await match_slot("Thursday around ten", SLOTS, oracle, "UTC", FIXED_NOW)
        assert match.kind == "closest"
        assert match.slot.slot_id == 1

    @pytest.mark.asyncio
    async def test_moment_on_other_day(self):
        oracle = ScriptedOracle({"datetime": [moment("2026-02-09T14:00:00Z")]})
        match = await match_slot("Monday at 2pm", SLOTS, oracle, "UTC", FIXED_NOW)
        assert match.kind == "other_day"
        assert match.requested_date == "2026-02-09"
        assert match.slot is None

    @pytest.mark.asyncio
    async def test_range(self):
        oracle = ScriptedOracle({"datetime": [json.dumps({"kind": "range", "when": "next_week"})]})
        match = await match_slot("next week", SLOTS, oracle, "UTC", FIXED_NOW)
        assert match.kind == "range"
        assert match.parsed == WeekRange("next_week")

    @pytest.mark.asyncio
    async def test_local_day_in_org_timezone(self):
        # 02:00Z on the 6th is still the 5th in Chicago.
        slots = [make_slot(1, "2026-02-05T23:00:00Z"), make_slot(2, "2026-02-06T15:00:00Z")]
        oracle = ScriptedOracle({"datetime": [moment("2026-02-06T02:00:00Z")]})
        match = await match_slot("Thursday at 8pm", slots, oracle, "America/Chicago", FIXED_NOW)
        assert match.kind == "closest"
        assert match.slot.slot_id == 1

    @pytest.mark.asyncio
    async def test_context_passed_to_oracle(self):
        oracle = ScriptedOracle()
        await match_slot("10 am", SLOTS, oracle, "UTC", FIXED_NOW, context="On February 5th we have 10am")
        _, prompt = oracle.calls[0]
        assert "On February 5th we have 10am" in prompt


# ── Date/time reply contract ─────────────────────────────────────


class TestParseDateTimeReply:
    def test_week(self):
        assert parse_date_time_reply('{"kind": "range", "when": "this_week"}') == WeekRange("this_week")

    def test_date_range_swapped_into_order(self):
        reply = '{"kind": "range", "fromDate": "2026-02-10", "toDate": "2026-02-06"}'
        assert parse_date_time_reply(reply) == DateRange("2026-02-06", "2026-02-10")

    def test_moment_normalized(self):
        reply = '```json\n{"kind": "moment", "isoUtc": "2026-02-05T15:00:00.000Z"}\n```'
        assert parse_date_time_reply(reply) == Moment("2026-02-05T15:00:00Z")

    @pytest.mark.parametrize(
        "reply",
        [
            None,
            "",
            "INVALID",
            "tomorrow at 3",
            "[1, 2]",
            '{"kind": "range", "fromDate": "2026-02-30", "toDate": "2026-03-01"}',
            '{"kind": "range", "when": "last_week"}',
            '{"kind": "moment", "isoUtc": "soon"}',
            '{"kind": "later"}',
        ],
    )
    def test_unusable(self, reply):
        assert parse_date_time_reply(reply) is None

    @pytest.mark.asyncio
    async def test_blank_utterance_skips_oracle(self):
        oracle = ScriptedOracle()
        assert await parse_date_time(oracle, "  ", "UTC", FIXED_NOW) is None
        assert oracle.calls == []


class TestAvailabilityWindow:
    def test_default_is_this_week(self):
        assert availability_window(None, "UTC", FIXED_NOW) == ("2026-02-02", "2026-02-08")

    def test_next_week(self):
        assert availability_window(WeekRange("next_week"), "UTC", FIXED_NOW) == ("2026-02-09", "2026-02-15")

    def test_date_range(self):
        assert availability_window(DateRange("2026-02-06", "2026-02-10"), "UTC", FIXED_NOW) == (
            "2026-02-06",
            "2026-02-10",
        )

    def test_moment_is_its_local_day(self):
        window = availability_window(Moment("2026-02-06T02:30:00Z"), "America/Chicago", FIXED_NOW)
        assert window == ("2026-02-05", "2026-02-05")

    def test_week_computed_in_org_timezone(self):
        # Monday 03:00 UTC is still Sunday evening in Chicago.
        now = datetime(2026, 2, 9, 3, 0, tzinfo=timezone.utc)
        assert availability_window(None, "America/Chicago", now) == ("2026-02-02", "2026-02-08")
