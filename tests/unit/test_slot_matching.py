"""Tests for the slot matching engine."""

import random
from datetime import date, time, timedelta

import pytest

from dental_desk.core.scheduling.calendar_client import AppointmentSlot
from dental_desk.core.scheduling.dates import DateTimePreference
from dental_desk.core.scheduling.matching import WorkingHours, select_slot, subtract
from dental_desk.core.scheduling.treatments import Treatment, required_minutes
from tests.fakes import at, gap

HOURS = WorkingHours(start_hour=9, end_hour=18, weekdays=frozenset(range(5)))


class TestSubtract:
    """Test removing an excluded interval from an open one."""

    def test_no_overlap(self):
        """Test disjoint intervals are untouched."""
        open_gap = gap("Dr GeneralA", 8, (9, 0), (10, 0))
        excluded = gap("Dr GeneralA", 8, (10, 0), (10, 30))

        assert subtract(open_gap, excluded) == [open_gap]

    def test_other_provider_ignored(self):
        """Test exclusion only applies to the same calendar."""
        open_gap = gap("Dr GeneralA", 8, (9, 0), (10, 0))
        excluded = gap("Dr GeneralB", 8, (9, 0), (10, 0))

        assert subtract(open_gap, excluded) == [open_gap]

    def test_split_in_two(self):
        """Test a hole in the middle leaves two pieces."""
        open_gap = gap("Dr GeneralA", 8, (9, 0), (12, 0))
        excluded = gap("Dr GeneralA", 8, (10, 0), (10, 30))

        assert subtract(open_gap, excluded) == [
            gap("Dr GeneralA", 8, (9, 0), (10, 0)),
            gap("Dr GeneralA", 8, (10, 30), (12, 0)),
        ]

    def test_fully_covered(self):
        """Test an interval inside the exclusion disappears."""
        open_gap = gap("Dr GeneralA", 8, (9, 0), (9, 30))

        assert subtract(open_gap, open_gap) == []


class TestWorkingHours:
    """Test working-hours containment."""

    def test_inside(self):
        """Test a weekday interval within opening hours."""
        assert HOURS.contains(gap("Dr GeneralA", 8, (9, 0), (18, 0)))

    @pytest.mark.parametrize(
        "slot",
        [
            gap("Dr GeneralA", 8, (8, 30), (9, 30)),
            gap("Dr GeneralA", 8, (17, 45), (18, 15)),
            gap("Dr GeneralA", 12, (10, 0), (11, 0)),  # Saturday
        ],
    )
    def test_outside(self, slot):
        """Test intervals crossing opening hours or on weekends."""
        assert not HOURS.contains(slot)


class TestSelectSlot:
    """Test select_slot."""

    @pytest.fixture
    def open_slots(self):
        """Open intervals across the week for every provider."""
        return [
            gap("Dr GeneralA", 8, (10, 0), (10, 30)),
            gap("Dr GeneralB", 8, (9, 0), (9, 20)),
            gap("Dr GeneralB", 8, (13, 0), (17, 0)),
            gap("Dr BracesA", 8, (9, 0), (9, 15)),
            gap("Dr BracesB", 9, (11, 0), (12, 0)),
        ]

    def test_earliest_without_preference(self, open_slots):
        """Test ASAP pick among eligible providers with enough time."""
        slot = select_slot(Treatment.CLEANING, open_slots, hours=HOURS)

        # GeneralB's 9:00 gap is only 20 minutes
        assert slot == gap("Dr GeneralA", 8, (10, 0), (10, 30))

    def test_slot_is_trimmed_to_duration(self, open_slots):
        """Test a long interval is cut to the treatment length."""
        slot = select_slot(Treatment.CONSULTATION, open_slots, provider="Dr GeneralB", hours=HOURS)

        assert slot == gap("Dr GeneralB", 8, (9, 0), (9, 15))

    def test_only_eligible_providers(self, open_slots):
        """Test braces maintenance never goes to a general dentist."""
        slot = select_slot(Treatment.BRACES_MAINTENANCE, open_slots, hours=HOURS)

        # BracesA needs 15 minutes and has them first
        assert slot == gap("Dr BracesA", 8, (9, 0), (9, 15))

    def test_provider_specific_duration(self, open_slots):
        """Test BracesB needs the longer braces slot."""
        slot = select_slot(
            Treatment.BRACES_MAINTENANCE, open_slots, provider="Dr BracesB", hours=HOURS
        )

        assert slot == gap("Dr BracesB", 9, (11, 0), (11, 45))

    def test_fixed_provider(self, open_slots):
        """Test a fixed provider excludes everyone else."""
        slot = select_slot(Treatment.CLEANING, open_slots, provider="Dr GeneralB", hours=HOURS)

        assert slot.provider == "Dr GeneralB"
        assert slot.start == at(8, 13)

    def test_ineligible_fixed_provider(self, open_slots):
        """Test nothing is offered when the fixed provider cannot do it."""
        assert select_slot(Treatment.CLEANING, open_slots, provider="Dr BracesA", hours=HOURS) is None

    def test_preferred_time_inside_long_gap(self, open_slots):
        """Test the start moves to the requested time within an interval."""
        preference = DateTimePreference(date=date(2030, 1, 8), time=time(14, 0))

        slot = select_slot(Treatment.CLEANING, open_slots, preference=preference, hours=HOURS)

        assert slot == gap("Dr GeneralB", 8, (14, 0), (14, 30))

    def test_preferred_time_near_gap_edge(self, open_slots):
        """Test the closest start within the hour is used."""
        preference = DateTimePreference(date=date(2030, 1, 8), time=time(9, 30))

        slot = select_slot(Treatment.CLEANING, open_slots, preference=preference, hours=HOURS)

        assert slot == gap("Dr GeneralA", 8, (10, 0), (10, 30))

    def test_preferred_time_late_in_gap(self):
        """Test a request near closing still fits the whole appointment."""
        open_slots = [gap("Dr GeneralA", 8, (15, 0), (17, 0))]
        preference = DateTimePreference(time=time(17, 0))

        slot = select_slot(Treatment.CLEANING, open_slots, preference=preference, hours=HOURS)

        assert slot == gap("Dr GeneralA", 8, (16, 30), (17, 0))

    def test_date_only_preference(self, open_slots):
        """Test missing time is a wildcard."""
        preference = DateTimePreference(date=date(2030, 1, 9))

        slot = select_slot(Treatment.CONSULTATION, open_slots + [
            gap("Dr GeneralA", 9, (16, 0), (16, 15)),
        ], preference=preference, hours=HOURS)

        assert slot == gap("Dr GeneralA", 9, (16, 0), (16, 15))

    def test_asap_fallback_when_preference_unmet(self, open_slots):
        """Test an unmatched preference falls back to the earliest slot."""
        preference = DateTimePreference(date=date(2030, 1, 10), time=time(9, 0))

        slot = select_slot(Treatment.CLEANING, open_slots, preference=preference, hours=HOURS)

        assert slot == gap("Dr GeneralA", 8, (10, 0), (10, 30))

    def test_none_when_nothing_fits(self):
        """Test no slot only when no interval is long enough."""
        open_slots = [gap("Dr GeneralA", 8, (9, 0), (9, 20))]

        assert select_slot(Treatment.CLEANING, open_slots, hours=HOURS) is None
        assert select_slot(Treatment.CLEANING, [], hours=HOURS) is None

    def test_filling_duration_scales(self):
        """Test three teeth need 60 minutes."""
        open_slots = [
            gap("Dr GeneralA", 8, (9, 0), (9, 45)),
            gap("Dr GeneralA", 8, (11, 0), (12, 0)),
        ]

        slot = select_slot(Treatment.FILLING, open_slots, unit_count=3, hours=HOURS)

        assert slot == gap("Dr GeneralA", 8, (11, 0), (12, 0))

    def test_excluded_interval_not_reoffered(self):
        """Test the just-cancelled slot is skipped even when preferred."""
        open_slots = [gap("Dr GeneralB", 7, (9, 0), (12, 0))]
        excluded = gap("Dr GeneralB", 7, (9, 0), (9, 30))
        preference = DateTimePreference(date=date(2030, 1, 7), time=time(9, 0))

        slot = select_slot(
            Treatment.CLEANING,
            open_slots,
            preference=preference,
            provider="Dr GeneralB",
            excluded=excluded,
            hours=HOURS,
        )

        assert slot == gap("Dr GeneralB", 7, (9, 30), (10, 0))
        assert not slot.overlaps(excluded)

    def test_idempotent(self, open_slots):
        """Test the same inputs always pick the same slot."""
        preference = DateTimePreference(time=time(15, 0))

        first = select_slot(Treatment.CLEANING, open_slots, preference=preference, hours=HOURS)
        second = select_slot(Treatment.CLEANING, list(open_slots), preference=preference, hours=HOURS)

        assert first == second

    def test_never_outside_hours_or_too_short(self):
        """Test random interval lists never yield an invalid slot."""
        rng = random.Random(7)
        providers = ["Dr GeneralA", "Dr GeneralB", "Dr BracesA", "Dr BracesB"]

        for _ in range(200):
            open_slots = []
            for _ in range(rng.randint(0, 6)):
                start = at(rng.randint(6, 13), rng.randint(6, 19), rng.choice([0, 15, 30, 45]))
                open_slots.append(
                    AppointmentSlot(
                        rng.choice(providers),
                        start,
                        start + timedelta(minutes=rng.choice([10, 15, 30, 45, 90, 240])),
                    )
                )
            treatment = rng.choice(list(Treatment))
            preference = DateTimePreference(time=time(rng.randint(7, 19), 0))

            slot = select_slot(
                treatment, open_slots, preference=preference, unit_count=2, hours=HOURS
            )

            if slot is not None:
                assert HOURS.contains(slot)
                assert slot.duration_minutes >= required_minutes(treatment, slot.provider, 2)
                assert any(g.contains(slot) for g in open_slots)
