"""Shared fixtures."""

from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from dental_desk.core.intelligence.confirmation import ConfirmationOutcome
from dental_desk.core.intelligence.session import Session
from dental_desk.core.scheduling.response import ResponseGenerator
from dental_desk.core.scheduling.treatments import Treatment
from tests.fakes import CONTACT, NOW, FakeCalendar, offline_claude


@pytest.fixture(autouse=True)
def frozen_now():
    """Pin the clinic clock to Monday 2030-01-07 08:00."""
    with patch("dental_desk.core.scheduling.dates.clinic_now", return_value=NOW):
        yield NOW


@pytest.fixture
def calendar():
    """Empty in-memory calendar."""
    return FakeCalendar()


@pytest.fixture
def audit_sink():
    """Audit logger double that keeps every recorded event."""
    sink = MagicMock()
    sink.record = AsyncMock()
    return sink


@pytest.fixture
def detector():
    """Confirmation detector double; set detect.return_value per test."""
    mock = MagicMock()
    mock.detect = AsyncMock(return_value=ConfirmationOutcome.CONFIRMED)
    return mock


@pytest.fixture
def responses():
    """Template-only response generator."""
    return ResponseGenerator(claude_client=offline_claude())


@pytest.fixture
def session():
    """Session with everything needed to offer a cleaning."""
    return Session(
        conversation_id="conv-1",
        contact_id=CONTACT,
        patient_name="Jane Doe",
        treatment=Treatment.CLEANING,
        intents=["booking"],
    )
