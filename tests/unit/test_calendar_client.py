"""Tests for the calendar service HTTP client."""

import json

import httpx
import pytest
from unittest.mock import AsyncMock, MagicMock

from dental_desk.core.scheduling.calendar_client import (
    Appointment,
    AppointmentSlot,
    CalendarClient,
    CalendarClientError,
    same_contact,
)
from tests.fakes import at, gap


def mock_response(status_code: int = 200, payload=None) -> MagicMock:
    response = MagicMock()
    response.status_code = status_code
    response.json.return_value = payload if payload is not None else {}
    response.raise_for_status = MagicMock()
    return response


def unreadable_response(status_code: int = 200) -> MagicMock:
    """A response whose body is empty or not JSON."""
    response = mock_response(status_code)
    response.json.side_effect = json.JSONDecodeError("Expecting value", "", 0)
    return response


class TestAppointmentSlot:
    """Test AppointmentSlot dataclass."""

    def test_from_dict(self):
        """Test creating from dict."""
        slot = AppointmentSlot.from_dict({
            "provider": "Dr GeneralA",
            "start": "2030-01-08T10:00:00Z",
            "end": "2030-01-08T11:00:00Z",
        })

        assert slot.provider == "Dr GeneralA"
        assert slot.start == at(8, 10)
        assert slot.duration_minutes == 60

    def test_from_dict_with_alternate_keys(self):
        """Test with alternate key names."""
        slot = AppointmentSlot.from_dict({
            "provider_name": "Dr GeneralB",
            "start_time": "2030-01-08T10:00:00+00:00",
            "end_time": "2030-01-08T10:30:00+00:00",
        })

        assert slot.provider == "Dr GeneralB"
        assert slot.duration_minutes == 30

    def test_contains_and_overlaps(self):
        """Test interval relations are per provider."""
        outer = gap("Dr GeneralA", 8, (9, 0), (12, 0))
        inner = gap("Dr GeneralA", 8, (10, 0), (10, 30))

        assert outer.contains(inner)
        assert not inner.contains(outer)
        assert outer.overlaps(inner)
        assert not outer.contains(gap("Dr GeneralB", 8, (10, 0), (10, 30)))

    def test_to_dict(self):
        """Test conversion to dict."""
        data = gap("Dr GeneralA", 8, (9, 0), (9, 30)).to_dict()

        assert data["provider"] == "Dr GeneralA"
        assert data["duration_minutes"] == 30


class TestSameContact:
    """Test contact comparison."""

    def test_formatting_ignored(self):
        """Test country code and punctuation do not matter."""
        assert same_contact("+1 (555) 000-1111", "5550001111")
        assert not same_contact("5550001111", "5550002222")
        assert not same_contact("", "5550001111")


class TestCalendarClient:
    """Test CalendarClient."""

    @pytest.fixture
    def client(self):
        """Create client with a provider calendar map."""
        return CalendarClient(
            base_url="http://test:8001",
            provider_calendars={"Dr GeneralA": "cal-a", "Dr GeneralB": "cal-b"},
        )

    @pytest.fixture
    def mock_httpx_client(self):
        """Create mock httpx client."""
        return AsyncMock()

    @pytest.mark.asyncio
    async def test_list_open_slots(self, client, mock_httpx_client):
        """Test open slots are parsed and sorted."""
        mock_httpx_client.post = AsyncMock(return_value=mock_response(200, {
            "slots": [
                {"provider": "Dr GeneralB", "start": "2030-01-08T13:00:00Z", "end": "2030-01-08T14:00:00Z"},
                {"provider": "Dr GeneralA", "start": "2030-01-08T09:00:00Z", "end": "2030-01-08T10:00:00Z"},
                {"provider": "Dr GeneralA", "start": "not a date", "end": "2030-01-08T10:00:00Z"},
            ]
        }))
        client._client = mock_httpx_client

        slots = await client.list_open_slots("Cleaning", ["Dr GeneralA", "Dr GeneralB"])

        assert [s.provider for s in slots] == ["Dr GeneralA", "Dr GeneralB"]
        payload = mock_httpx_client.post.call_args.kwargs["json"]
        assert payload["treatment"] == "Cleaning"
        assert payload["providers"][0] == {"name": "Dr GeneralA", "calendar_id": "cal-a"}

    @pytest.mark.asyncio
    async def test_list_open_slots_error(self, client, mock_httpx_client):
        """Test read failures raise CalendarClientError."""
        mock_httpx_client.post = AsyncMock(side_effect=httpx.ConnectError("refused"))
        client._client = mock_httpx_client

        with pytest.raises(CalendarClientError):
            await client.list_open_slots("Cleaning", ["Dr GeneralA"])

    @pytest.mark.asyncio
    @pytest.mark.parametrize("response", [unreadable_response(200), mock_response(200, "busy")])
    async def test_list_open_slots_unreadable_body(self, client, mock_httpx_client, response):
        """Test a body that is not a slot list is a read failure."""
        mock_httpx_client.post = AsyncMock(return_value=response)
        client._client = mock_httpx_client

        with pytest.raises(CalendarClientError):
            await client.list_open_slots("Cleaning", ["Dr GeneralA"])

    @pytest.mark.asyncio
    async def test_commit_success(self, client, mock_httpx_client):
        """Test a created event returns its id."""
        mock_httpx_client.post = AsyncMock(return_value=mock_response(201, {"id": "evt-123"}))
        client._client = mock_httpx_client

        result = await client.commit(
            "cal-a",
            gap("Dr GeneralA", 8, (10, 0), (10, 30)),
            patient_name="Jane Doe",
            treatment="Cleaning",
            contact="5550001111",
        )

        assert result.success
        assert result.appointment_id == "evt-123"
        url = mock_httpx_client.post.call_args.args[0]
        payload = mock_httpx_client.post.call_args.kwargs["json"]
        assert url == "/api/calendars/cal-a/events"
        assert payload["summary"] == "##AI Booked## Dr GeneralA Jane Doe Cleaning 5550001111"

    @pytest.mark.asyncio
    async def test_commit_rejected(self, client, mock_httpx_client):
        """Test a rejected write is a failed result, not an exception."""
        mock_httpx_client.post = AsyncMock(return_value=mock_response(
            409, {"error_code": "slot_taken", "message": "Interval no longer free"}
        ))
        client._client = mock_httpx_client

        result = await client.commit(
            "cal-a", gap("Dr GeneralA", 8, (10, 0), (10, 30)), "Jane Doe", "Cleaning", "5550001111"
        )

        assert not result.success
        assert result.error_code == "slot_taken"

    @pytest.mark.asyncio
    async def test_commit_created_with_empty_body(self, client, mock_httpx_client):
        """Test a 201 without a readable body still reports the event as created."""
        mock_httpx_client.post = AsyncMock(return_value=unreadable_response(201))
        client._client = mock_httpx_client

        result = await client.commit(
            "cal-a", gap("Dr GeneralA", 8, (10, 0), (10, 30)), "Jane Doe", "Cleaning", "5550001111"
        )

        assert result.success
        assert result.appointment_id is None

    @pytest.mark.asyncio
    async def test_commit_connection_error(self, client, mock_httpx_client):
        """Test connection errors are a failed result."""
        mock_httpx_client.post = AsyncMock(side_effect=httpx.ConnectError("refused"))
        client._client = mock_httpx_client

        result = await client.commit(
            "cal-a", gap("Dr GeneralA", 8, (10, 0), (10, 30)), "Jane Doe", "Cleaning", "5550001111"
        )

        assert not result.success
        assert result.error_code == "connection_error"

    @pytest.mark.asyncio
    async def test_cancel(self, client, mock_httpx_client):
        """Test event deletion."""
        mock_httpx_client.delete = AsyncMock(return_value=mock_response(204))
        client._client = mock_httpx_client

        result = await client.cancel("cal-a", "evt-123")

        assert result.success
        mock_httpx_client.delete.assert_called_once_with("/api/calendars/cal-a/events/evt-123")

    @pytest.mark.asyncio
    async def test_cancel_rejected(self, client, mock_httpx_client):
        """Test a refused delete."""
        mock_httpx_client.delete = AsyncMock(return_value=mock_response(404, {"message": "gone"}))
        client._client = mock_httpx_client

        result = await client.cancel("cal-a", "evt-123")

        assert not result.success
        assert result.message == "gone"

    @pytest.mark.asyncio
    async def test_find_by_contact(self, client, mock_httpx_client):
        """Test only the caller's appointments come back, soonest first."""
        mock_httpx_client.get = AsyncMock(return_value=mock_response(200, {
            "appointments": [
                {
                    "id": "appt-2", "event_id": "evt-2", "calendar_id": "cal-b",
                    "provider": "Dr GeneralB", "start": "2030-01-10T09:00:00Z",
                    "end": "2030-01-10T09:30:00Z", "contact": "+15550001111",
                },
                {
                    "id": "appt-1", "event_id": "evt-1", "calendar_id": "cal-a",
                    "provider": "Dr GeneralA", "start": "2030-01-08T09:00:00Z",
                    "end": "2030-01-08T09:30:00Z", "contact": "555-000-1111",
                },
                {
                    "id": "appt-3", "event_id": "evt-3", "calendar_id": "cal-a",
                    "provider": "Dr GeneralA", "start": "2030-01-09T09:00:00Z",
                    "end": "2030-01-09T09:30:00Z", "contact": "5559999999",
                },
            ]
        }))
        client._client = mock_httpx_client

        appointments = await client.find_by_contact("(555) 000-1111")

        assert [a.appointment_id for a in appointments] == ["appt-1", "appt-2"]
        assert isinstance(appointments[0], Appointment)
        assert mock_httpx_client.get.call_args.kwargs["params"]["contact"] == "5550001111"

    @pytest.mark.asyncio
    async def test_find_by_contact_without_digits(self, client, mock_httpx_client):
        """Test an unusable contact skips the request."""
        client._client = mock_httpx_client

        assert await client.find_by_contact("anonymous") == []
        mock_httpx_client.get.assert_not_called()

    @pytest.mark.asyncio
    async def test_find_by_contact_error(self, client, mock_httpx_client):
        """Test lookup failures raise CalendarClientError."""
        response = mock_response(500)
        response.raise_for_status = MagicMock(side_effect=httpx.HTTPStatusError(
            "server error", request=MagicMock(), response=MagicMock()
        ))
        mock_httpx_client.get = AsyncMock(return_value=response)
        client._client = mock_httpx_client

        with pytest.raises(CalendarClientError):
            await client.find_by_contact("5550001111")

    @pytest.mark.asyncio
    async def test_find_by_contact_unreadable_body(self, client, mock_httpx_client):
        mock_httpx_client.get = AsyncMock(return_value=unreadable_response(200))
        client._client = mock_httpx_client

        with pytest.raises(CalendarClientError):
            await client.find_by_contact("5550001111")

    def test_calendar_for(self, client):
        """Test provider to calendar mapping."""
        assert client.calendar_for("Dr GeneralA") == "cal-a"
        assert client.calendar_for("Dr BracesA") is None
