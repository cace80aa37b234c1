"""Tests for the reschedule flow."""

import pytest

from dental_desk.core.intelligence.confirmation import ConfirmationOutcome
from dental_desk.core.intelligence.session import BookingState
from dental_desk.core.scheduling.booking import BookingFlow
from dental_desk.core.scheduling.reschedule import RescheduleFlow, choose_appointment
from dental_desk.core.scheduling.treatments import Treatment
from dental_desk.infra.audit import STATUS_NEEDS_FOLLOW_UP
from tests.fakes import NOW, FakeCalendar, at, gap, recorded_events, recorded_types


class TestChooseAppointment:
    """Test picking one appointment from a list."""

    @pytest.fixture
    def candidates(self):
        calendar = FakeCalendar()
        first = calendar.add_appointment("Dr GeneralA", at(8, 14), at(8, 14, 30))
        second = calendar.add_appointment("Dr GeneralB", at(10, 9), at(10, 9, 30))
        return (first, second)

    @pytest.mark.parametrize(
        "message,index",
        [
            ("2", 1),
            ("#1", 0),
            ("option 2", 1),
            ("the second one", 1),
            ("first", 0),
            ("the last one", 1),
            ("thursday", 1),
            ("the one on tuesday", 0),
            ("the 2pm one", 0),
            ("the one with dr generalb", 1),
        ],
    )
    def test_choice(self, candidates, message, index):
        """Test number, ordinal, date, time and dentist choices."""
        assert choose_appointment(candidates, message, NOW) == candidates[index]

    @pytest.mark.parametrize("message", ["3", "the one on friday", "hmm", "fifth"])
    def test_no_choice(self, candidates, message):
        """Test replies that do not single out one appointment."""
        assert choose_appointment(candidates, message, NOW) is None


class TestRescheduleFlow:
    """Test RescheduleFlow."""

    @pytest.fixture
    def flow(self, calendar, detector, responses, audit_sink):
        """Create flow over the in-memory calendar."""
        booking = BookingFlow(calendar, detector, responses, audit_sink)
        return RescheduleFlow(booking, calendar, detector, responses, audit_sink)

    @pytest.fixture
    def monday_nine(self, calendar):
        """Existing Monday 09:00 cleaning with Dr GeneralB."""
        return calendar.add_appointment("Dr GeneralB", at(7, 9), at(7, 9, 30))

    @pytest.mark.asyncio
    async def test_start_single(self, flow, session, monday_nine):
        """Test one appointment is presented for confirmation."""
        session.provider = "Dr GeneralB"

        result = await flow.start(session)

        assert result.outcome == "presented"
        assert session.reschedule_pending
        assert session.appointment_to_reschedule == monday_nine
        assert session.pending.preserved_provider == "Dr GeneralB"

    @pytest.mark.asyncio
    async def test_start_not_found(self, flow, session, audit_sink):
        """Test nothing to reschedule."""
        result = await flow.start(session)

        assert result.outcome == "not_found"
        assert session.pending is None
        assert recorded_types(audit_sink) == ["reschedule_not_found"]

    @pytest.mark.asyncio
    async def test_new_slot_excludes_cancelled_and_honours_preference(
        self, flow, session, calendar, monday_nine
    ):
        """Test scenario: move Monday 09:00 with Dr GeneralB to Tuesday 14:00."""
        calendar.open_slots = [gap("Dr GeneralB", 8, (13, 0), (17, 0))]
        session.provider = "Dr GeneralB"
        session.date_time_text = "next Tuesday 14:00"
        await flow.start(session)

        result = await flow.handle_reply(session, "yes")

        assert result.outcome == "offered"
        assert result.message.startswith("I've cancelled your appointment on Monday, January 7 at 9:00 AM.")
        assert calendar.cancels == [monday_nine.event_id]
        assert session.selected_slot == gap("Dr GeneralB", 8, (14, 0), (14, 30))
        assert session.excluded_slot == monday_nine.slot
        assert session.reschedule.preserved_provider == "Dr GeneralB"
        assert session.state == BookingState.SLOT_OFFERED

    @pytest.mark.asyncio
    async def test_cancelled_interval_not_reoffered(self, flow, session, calendar, monday_nine):
        """Test the freed interval is skipped even when it best fits the preference."""
        calendar.open_slots = [gap("Dr GeneralB", 7, (9, 30), (11, 0))]
        session.provider = "Dr GeneralB"
        session.date_time_text = "this monday 9am"
        await flow.start(session)

        await flow.handle_reply(session, "yes")

        assert gap("Dr GeneralB", 7, (9, 0), (9, 30)) in calendar.open_slots
        assert session.selected_slot == gap("Dr GeneralB", 7, (9, 30), (10, 0))
        assert not session.selected_slot.overlaps(monday_nine.slot)

    @pytest.mark.asyncio
    async def test_commit_after_reschedule(self, flow, session, calendar, monday_nine, audit_sink):
        """Test the replacement booking commits and clears the exclusion."""
        calendar.open_slots = [gap("Dr GeneralB", 8, (13, 0), (17, 0))]
        session.provider = "Dr GeneralB"
        await flow.start(session)
        await flow.handle_reply(session, "yes")

        result = await flow._booking.handle_reply(session, "yes")

        assert result.outcome == "committed"
        assert session.reschedule is None
        assert session.excluded_slot is None
        assert recorded_types(audit_sink)[-1] == "appointment_rescheduled"

    @pytest.mark.asyncio
    async def test_multiple_appointments_asks_to_choose(self, flow, session, calendar, monday_nine):
        """Test disambiguation before anything is cancelled."""
        other = calendar.add_appointment("Dr GeneralA", at(9, 11), at(9, 11, 30))

        result = await flow.start(session)

        assert result.outcome == "choose"
        assert session.pending.awaiting_choice
        assert "1. Dr GeneralB, Monday, January 7 at 9:00 AM" in result.message
        assert "2. Dr GeneralA, Wednesday, January 9 at 11:00 AM" in result.message

        result = await flow.handle_reply(session, "2")

        assert result.outcome == "presented"
        assert session.appointment_to_reschedule == other
        assert calendar.cancels == []

    @pytest.mark.asyncio
    async def test_unclear_choice_repeats_list(self, flow, session, calendar, monday_nine):
        """Test an unclear pick keeps the choice open."""
        calendar.add_appointment("Dr GeneralA", at(9, 11), at(9, 11, 30))
        first = await flow.start(session)

        result = await flow.handle_reply(session, "hmm")

        assert result.outcome == "ambiguous"
        assert result.message == first.message
        assert session.pending.awaiting_choice

    @pytest.mark.asyncio
    async def test_choice_declined(self, flow, session, calendar, monday_nine):
        """Test backing out while choosing."""
        calendar.add_appointment("Dr GeneralA", at(9, 11), at(9, 11, 30))
        await flow.start(session)

        result = await flow.handle_reply(session, "never mind, no")

        assert result.outcome == "declined"
        assert session.pending is None

    @pytest.mark.asyncio
    async def test_declined_keeps_appointment(self, flow, session, calendar, monday_nine, detector):
        """Test declining leaves the old appointment alone."""
        await flow.start(session)
        detector.detect.return_value = ConfirmationOutcome.DECLINED

        result = await flow.handle_reply(session, "no")

        assert result.outcome == "declined"
        assert session.pending is None
        assert calendar.appointments == [monday_nine]

    @pytest.mark.asyncio
    async def test_cancel_failure(self, flow, session, calendar, monday_nine, audit_sink):
        """Test a refused cancel abandons the reschedule."""
        calendar.fail_cancel = True
        await flow.start(session)

        result = await flow.handle_reply(session, "yes")

        assert result.outcome == "cancel_failed"
        assert session.pending is None
        assert session.reschedule is None
        event = recorded_events(audit_sink)[-1]
        assert event.event_type.value == "reschedule_failed"
        assert event.status == STATUS_NEEDS_FOLLOW_UP

    @pytest.mark.asyncio
    async def test_asks_for_missing_detail_after_cancel(self, flow, session, calendar):
        """Test a filling reschedule asks for the tooth count before offering."""
        calendar.add_appointment("Dr GeneralA", at(7, 10), at(7, 10, 30), treatment="Filling")
        session.treatment = None
        await flow.start(session)

        result = await flow.handle_reply(session, "yes")

        assert result.outcome == "cancelled_old"
        assert result.message.endswith("How many teeth need fillings?")
        assert session.treatment == Treatment.FILLING
        assert session.pending is None
        assert session.excluded_slot is not None

    @pytest.mark.asyncio
    async def test_ineligible_provider_dropped(self, flow, session, calendar, monday_nine):
        """Test a braces dentist is not carried into a cleaning rebook."""
        calendar.open_slots = [gap("Dr GeneralA", 8, (9, 0), (10, 0))]
        session.provider = "Dr BracesA"
        await flow.start(session)

        result = await flow.handle_reply(session, "yes")

        assert result.outcome == "offered"
        assert session.selected_slot.provider == "Dr GeneralA"
        assert session.reschedule.preserved_provider is None

    @pytest.mark.asyncio
    async def test_reschedule_of_committed_booking(self, flow, session, calendar, monday_nine):
        """Test rescheduling the booking made earlier in this conversation."""
        session.booking_confirmed = True
        session.committed_appointment_id = monday_nine.appointment_id
        session.state = BookingState.COMMITTED
        await flow.start(session)

        await flow.handle_reply(session, "yes")

        assert not session.booking_confirmed
        assert session.committed_appointment_id is None
        assert "booking" in session.intents
