"""Join-time gate for room tokens."""

from datetime import timedelta

import pytest

from teleconsult.join import join_info

from conftest import NOW, make_booking

ENDS = NOW + timedelta(minutes=30)


@pytest.fixture
def token(store):
    store.set("bookings", "b1", make_booking(startsAt=NOW, endsAt=ENDS))
    store.set("roomLinks", "tok-123", {"bookingId": "b1"})
    return "tok-123"


def test_unknown_token_is_invalid():
    assert join_info("nonexistent-token", now=NOW) == {"status": "invalid"}


def test_empty_token_is_invalid():
    assert join_info("", now=NOW) == {"status": "invalid"}
    assert join_info(None, now=NOW) == {"status": "invalid"}


def test_ok_at_start(token):
    assert join_info(token, now=NOW) == {
        "status": "ok",
        "bookingId": "b1",
        "roomPath": "/room/b1",
    }


def test_too_early(token):
    result = join_info(token, now=NOW - timedelta(minutes=1))
    assert result == {
        "status": "too_early",
        "startsAtHuman": "dimanche 21 septembre 2025 à 20:00",
        "professionalName": "Dr Diop",
    }


def test_grace_period_after_end(token):
    assert join_info(token, now=ENDS + timedelta(minutes=30))["status"] == "ok"


def test_finished_after_grace(token):
    assert join_info(token, now=ENDS + timedelta(minutes=31)) == {"status": "finished"}


def test_unconfirmed_booking_is_invalid(store, token):
    store.set("bookings", "b1", {"status": "cancelled"}, merge=True)
    assert join_info(token, now=NOW) == {"status": "invalid"}


def test_missing_timestamps_is_invalid(store):
    store.set("bookings", "b2", make_booking())
    store.set("roomLinks", "tok-2", {"bookingId": "b2"})
    assert join_info("tok-2", now=NOW) == {"status": "invalid"}


def test_link_without_booking_is_invalid(store):
    store.set("roomLinks", "tok-3", {"bookingId": "gone"})
    assert join_info("tok-3", now=NOW) == {"status": "invalid"}


def test_does_not_write(store, token):
    before = store.get("bookings", "b1")
    join_info(token, now=NOW)
    assert store.get("bookings", "b1") == before
