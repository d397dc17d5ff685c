"""Shared test fixtures and helpers."""

from datetime import datetime, timezone

import httpx
import pytest

from teleconsult import booking_hooks, reminders, triggers, whatsapp
from teleconsult.config import settings
from teleconsult.store import MemoryStore, set_store

PHONE = "+221770000001"
NOW = datetime(2025, 9, 21, 20, 0, tzinfo=timezone.utc)


@pytest.fixture(autouse=True)
def quiet_settings(monkeypatch):
    """No outbound network and a fixed, DST-free timezone for every test."""
    monkeypatch.setattr(settings, "tz", "Africa/Dakar")
    monkeypatch.setattr(settings, "site_url", "https://app.example.sn/")
    monkeypatch.setattr(settings, "wa_token", "")
    monkeypatch.setattr(settings, "wa_phone_number_id", "")
    monkeypatch.setattr(settings, "twilio_account_sid", "")
    monkeypatch.setattr(settings, "twilio_auth_token", "")
    monkeypatch.setattr(settings, "twilio_phone_number", "")
    monkeypatch.setattr(settings, "phone_index_secret", "test-secret")
    monkeypatch.setattr(settings, "paydunya_master_key", "")
    monkeypatch.setattr(settings, "enforce_app_check", False)
    for name in ("confirmed", "cancelled", "rescheduled", "reminder", "startnow"):
        monkeypatch.setattr(settings, f"wa_template_{name}", "")


@pytest.fixture(autouse=True)
def store():
    """A fresh memory store without triggers."""
    mem = MemoryStore()
    set_store(mem)
    yield mem
    set_store(None)


@pytest.fixture
def wired_store(store):
    """The memory store with document triggers attached."""
    triggers.install(store)
    return store


@pytest.fixture
def sent(monkeypatch):
    """Record (phone, Message) for every notification instead of dispatching it."""
    calls = []

    def _record(phone, message, *args, **kwargs):
        calls.append((phone, message))
        return "sms"

    monkeypatch.setattr(booking_hooks, "send_via_preferred_channel", _record)
    monkeypatch.setattr(reminders, "send_via_preferred_channel", _record)
    return calls


class GraphRecorder:
    """Mock Graph API: answers with queued status codes and records requests."""

    def __init__(self):
        self.statuses: list[int] = []
        self.requests: list[httpx.Request] = []
        self.sleeps: list[float] = []

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        status = self.statuses.pop(0) if self.statuses else 200
        return httpx.Response(status, json={"messages": [{"id": "wamid.1"}]})


@pytest.fixture
def graph(monkeypatch):
    recorder = GraphRecorder()
    monkeypatch.setattr(settings, "wa_token", "token-123")
    monkeypatch.setattr(settings, "wa_phone_number_id", "1055")
    monkeypatch.setattr(whatsapp, "_transport", httpx.MockTransport(recorder.handler))
    monkeypatch.setattr(whatsapp, "_sleep", recorder.sleeps.append)
    return recorder


def make_booking(**fields) -> dict:
    booking = {
        "status": "confirmed",
        "patientId": "pat-1",
        "patientPhone": PHONE,
        "patientName": "Awa Ndiaye",
        "professionalId": "pro-1",
        "professionalName": "Dr Diop",
    }
    booking.update(fields)
    return booking
