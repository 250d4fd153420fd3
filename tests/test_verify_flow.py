"""Identity verification for callers the caller-ID lookup did not find, and
date-of-birth confirmation for callers it did."""

import pytest

from appointment_agent import verbiage

from conftest import CALLER_PHONE, make_slot, make_user


@pytest.fixture
def jane(backend):
    user = make_user(7, "Jane", "Doe", dob="1990-04-02", phone="+15559876543")
    backend.users.append(user)
    return user


async def ask_to_book(make_caller, oracle):
    caller = make_caller("call-verify-001")
    await caller.say("Hello")
    oracle.script("intent", "book")
    reply = await caller.say("I want to book an appointment")
    return caller, reply


class TestVerifyByName:
    @pytest.mark.asyncio
    async def test_unknown_caller_is_asked_if_current(self, make_caller, oracle, jane):
        caller, reply = await ask_to_book(make_caller, oracle)
        assert reply == verbiage.ASK_CURRENT_OR_FIRST
        assert caller.state.flow.kind == "verify_user"
        assert caller.state.flow.pending_route == "book_flow"

    @pytest.mark.asyncio
    async def test_name_and_dob_verify_then_book_same_turn(self, make_caller, oracle, backend, jane):
        backend.slots = [make_slot(1, "2026-02-05T10:00:00Z"), make_slot(2, "2026-02-05T11:00:00Z")]
        caller, _ = await ask_to_book(make_caller, oracle)

        reply = await caller.say("I'm a current patient")
        assert reply == verbiage.ASK_NAME

        reply = await caller.say("Jane Doe")
        assert reply == verbiage.ASK_DOB_CONFIRM
        # Found by name is not verified yet.
        assert caller.state.user_id is None
        assert caller.state.flow.candidate.id == 7

        datetime_calls = oracle.asked("datetime")
        reply = await caller.say("April 2nd 1990")

        assert caller.state.identity_confirmed
        assert caller.state.user_id == 7
        assert caller.last.path == ["verify_flow", "book_flow"]
        assert "On February 5th we have 10am, 11am." in reply
        # The date of birth is not read as a booking date.
        assert oracle.asked("datetime") == datetime_calls

    @pytest.mark.asyncio
    async def test_wrong_dob_falls_back_to_phone(self, make_caller, oracle, jane):
        caller, _ = await ask_to_book(make_caller, oracle)
        await caller.say("yes I am")
        await caller.say("Jane Doe")
        reply = await caller.say("January 1st 1970")

        assert verbiage.DOB_MISMATCH_TRY_PHONE in reply
        assert caller.state.flow.step == "ask_phone"
        assert caller.state.user_id is None

        reply = await caller.say("555 987 6543")
        assert caller.state.user_id == 7
        assert caller.state.identity_confirmed

    @pytest.mark.asyncio
    async def test_phone_of_someone_else_does_not_verify(self, make_caller, oracle, backend, jane):
        backend.users.append(make_user(8, "Other", "Person", phone="+15550001111"))
        caller, _ = await ask_to_book(make_caller, oracle)
        await caller.say("current patient")
        await caller.say("Jane Doe")
        await caller.say("January 1st 1970")
        reply = await caller.say("555 000 1111")

        assert caller.state.user_id is None
        assert caller.state.flow.step == "offer_register_or_transfer"
        assert verbiage.NOT_FOUND_OFFER_REGISTER_OR_TRANSFER in reply


class TestVerifyBySpelling:
    @pytest.mark.asyncio
    async def test_spelled_last_name_search(self, make_caller, oracle, backend, jane):
        caller, _ = await ask_to_book(make_caller, oracle)
        await caller.say("returning patient")

        reply = await caller.say("Jayne Dough")
        assert reply == verbiage.NAME_NOT_FOUND_ASK_SPELL

        reply = await caller.say("D O E")
        assert reply == "That's D-O-E, correct?"

        reply = await caller.say("yes")
        assert reply == verbiage.ASK_DOB_CONFIRM
        assert backend.called("search_users")[-1] == {"name": None, "fuzzy": "DOE"}

    @pytest.mark.asyncio
    async def test_not_found_offers_register(self, make_caller, oracle, jane):
        caller, _ = await ask_to_book(make_caller, oracle)
        await caller.say("returning patient")
        await caller.say("Nobody Known")
        await caller.say("X Y Z")
        reply = await caller.say("yes")
        assert reply.startswith("I searched for Xyz but didn't find a match.")

        reply = await caller.say("yes please")
        assert caller.last.path == ["verify_flow", "register_flow"]
        assert caller.state.flow.kind == "registration"

    @pytest.mark.asyncio
    async def test_declining_register_transfers(self, make_caller, oracle, jane):
        caller, _ = await ask_to_book(make_caller, oracle)
        await caller.say("returning patient")
        await caller.say("Nobody Known")
        await caller.say("X Y Z")
        await caller.say("yes")
        reply = await caller.say("no")
        assert reply == verbiage.TRANSFER_LOCATE_RECORD
        assert caller.state.should_transfer

    @pytest.mark.asyncio
    async def test_first_visit_goes_to_registration(self, make_caller, oracle, jane):
        caller, _ = await ask_to_book(make_caller, oracle)
        reply = await caller.say("this is my first visit")
        assert caller.state.flow.kind == "registration"
        assert verbiage.REGISTER_INTRO in reply


class TestConfirmIdentity:
    @pytest.mark.asyncio
    async def test_bare_yes_asks_for_dob(self, make_caller, known_caller):
        caller = make_caller("call-known-0001", CALLER_PHONE)
        await caller.say("Hello")
        reply = await caller.say("yes that's me")
        assert reply == verbiage.ASK_DOB_CONFIRM
        assert caller.state.current_step == "ask_dob"

    @pytest.mark.asyncio
    async def test_mismatched_dob_transfers(self, make_caller, known_caller):
        caller = make_caller("call-known-0001", CALLER_PHONE)
        await caller.say("Hello")
        reply = await caller.say("January 1st 1970")
        assert reply == verbiage.DOB_VERIFY_FAIL_TRANSFER
        assert caller.state.should_transfer
        assert not caller.state.identity_confirmed

    @pytest.mark.asyncio
    async def test_two_non_dates_end_the_call(self, make_caller, known_caller):
        caller = make_caller("call-known-0001", CALLER_PHONE)
        await caller.say("Hello")
        await caller.say("yes")
        await caller.say("I don't remember")
        reply = await caller.say("no idea")
        assert reply == verbiage.IDENTITY_FAILED_GOODBYE
        assert caller.state.call_ended
        assert caller.last.path == ["confirm_identity", "identity_failed_end"]

    @pytest.mark.asyncio
    async def test_mismatched_dob_clears_caller_id_match(self, make_caller, known_caller):
        caller = make_caller("call-known-0001", CALLER_PHONE)
        await caller.say("Hello")
        await caller.say("January 1st 1970")
        assert caller.state.user is None
        assert caller.state.user_id is None
        assert not caller.state.is_registered

    @pytest.mark.asyncio
    async def test_failed_dob_does_not_unlock_booking(self, make_caller, oracle, backend, known_caller):
        backend.slots = [make_slot(1, "2026-02-05T10:00:00Z")]
        caller = make_caller("call-known-0001", CALLER_PHONE)
        await caller.say("Hello")
        await caller.say("January 1st 1970")

        oracle.script("intent", "book")
        reply = await caller.say("I want to book an appointment")
        assert reply == verbiage.ASK_CURRENT_OR_FIRST
        assert caller.last.path == ["detect_intent", "verify_flow"]

        await caller.say("yes")
        assert backend.created_appointments == []
        assert not caller.state.identity_confirmed
