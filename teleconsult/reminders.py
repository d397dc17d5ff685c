"""
Reminder scanners, run by the scheduler on a fixed cadence.

Each scan queries confirmed bookings whose startsAt falls in a window that
is wider than the job interval, so a late or skipped tick still catches the
booking. The notify.sent.<flag> claim keeps repeated matches from sending
twice.

  reminder5m   [now+5m,   now+7m)       every minute
  startNow     [now-30s,  now+2m)       every minute
  reminder24h  [now+24h,  now+24h+5m)   every 5 minutes
  reminder1h   [now+60m,  now+65m)      every 5 minutes
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

from teleconsult import bookings, rooms
from teleconsult.bookings import (
    CONFIRMED,
    as_datetime,
    flags_patch,
    humanize,
    notify_sent,
    professional_label,
    split_date_time,
)
from teleconsult.config import settings
from teleconsult.dispatcher import Message, send_via_preferred_channel
from teleconsult.store import get_store

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ReminderWindow:
    flag: str
    label: str
    start: timedelta
    end: timedelta
    interval_minutes: int
    build: Callable[[dict, str], Message]
    notify_professional: bool = False
    requires_phone: bool = True


def _brand() -> str:
    return f"[{settings.brand}]"


def _reminder_variables(booking: dict, link: str) -> list[str]:
    date_str, time_str = split_date_time(booking["startsAt"])
    return [professional_label(booking), date_str, time_str, link]


def _five_minutes(booking: dict, link: str) -> Message:
    pro = professional_label(booking)
    return Message(
        text=(
            f"{_brand()} Rappel: votre consultation avec {pro} commence dans 5 min "
            f"({humanize(booking['startsAt'])}). Lien: {link}"
        ),
        template_name=settings.wa_template_reminder,
        variables=_reminder_variables(booking, link),
    )


def _start_now(booking: dict, link: str) -> Message:
    pro = professional_label(booking)
    return Message(
        text=(
            f"{_brand()} C'est l'heure ! Votre consultation avec {pro} commence. "
            f"Rejoignez la salle: {link}"
        ),
        template_name=settings.wa_template_startnow,
        variables=[pro, link],
    )


def _day_before(booking: dict, link: str) -> Message:
    pro = professional_label(booking)
    return Message(
        text=(
            f"{_brand()} Rappel J-1: votre consultation avec {pro} est prévue "
            f"{humanize(booking['startsAt'])}. Lien: {link}"
        ),
        template_name=settings.wa_template_reminder,
        variables=_reminder_variables(booking, link),
    )


def _hour_before(booking: dict, link: str) -> Message:
    pro = professional_label(booking)
    return Message(
        text=(
            f"{_brand()} Rappel J-1h: votre consultation avec {pro} commence dans 1 heure "
            f"({humanize(booking['startsAt'])}). Lien: {link}"
        ),
        template_name=settings.wa_template_reminder,
        variables=_reminder_variables(booking, link),
    )


WINDOWS: dict[str, ReminderWindow] = {
    w.flag: w
    for w in (
        ReminderWindow(
            bookings.REMINDER_5M, "T-5",
            timedelta(minutes=5), timedelta(minutes=7), 1, _five_minutes,
        ),
        ReminderWindow(
            bookings.START_NOW, "H-0",
            timedelta(seconds=-30), timedelta(minutes=2), 1, _start_now,
        ),
        ReminderWindow(
            bookings.REMINDER_24H, "J-1",
            timedelta(hours=24), timedelta(hours=24, minutes=5), 5, _day_before,
            notify_professional=True, requires_phone=False,
        ),
        ReminderWindow(
            bookings.REMINDER_1H, "J-1h",
            timedelta(minutes=60), timedelta(minutes=65), 5, _hour_before,
            notify_professional=True, requires_phone=False,
        ),
    )
}


def due_bookings(window: ReminderWindow, now: datetime) -> list[tuple[str, dict]]:
    store = get_store()
    return store.find(bookings.COLLECTION, [
        ("status", "==", CONFIRMED),
        ("startsAt", ">=", now + window.start),
        ("startsAt", "<", now + window.end),
    ])


def scan_reminders(flag: str, now: Optional[datetime] = None) -> int:
    """Run one scan for the given reminder flag. Returns how many bookings were notified."""
    window = WINDOWS[flag]
    now = now or datetime.now(timezone.utc)
    matches = due_bookings(window, now)
    logger.info("[%s] Found %d bookings to check", window.label, len(matches))

    sent = 0
    for booking_id, booking in matches:
        if notify_sent(booking, window.flag):
            logger.debug("[%s] Already notified: %s", window.label, booking_id)
            continue
        try:
            if _remind(window, booking_id, booking):
                sent += 1
        except Exception:
            logger.exception("[%s] Error processing booking %s", window.label, booking_id)

    logger.info("[%s] Reminder check completed, %d sent", window.label, sent)
    return sent


def _remind(window: ReminderWindow, booking_id: str, booking: dict) -> bool:
    phone = rooms.booking_phone(booking)
    if not phone and window.requires_phone:
        logger.warning("[%s] No phone found for booking %s", window.label, booking_id)
        return False

    store = get_store()

    def _claim(current: Optional[dict]) -> Optional[dict]:
        if current is None or notify_sent(current, window.flag):
            return None
        patch = flags_patch(**{window.flag: True})
        patch["updatedAt"] = store.server_timestamp()
        return patch

    if store.transact(bookings.COLLECTION, booking_id, _claim) is None:
        return False

    try:
        if window.notify_professional:
            _notify_professional(booking_id, booking)
        if phone:
            link = rooms.join_link(rooms.ensure_room_token(booking_id))
            send_via_preferred_channel(phone, window.build(booking, link))
    except Exception:
        store.set(bookings.COLLECTION, booking_id, flags_patch(**{window.flag: False}), merge=True)
        raise

    logger.info("[%s] Reminder sent for booking %s", window.label, booking_id)
    return True


def _notify_professional(booking_id: str, booking: dict) -> None:
    """Queue an email reminder for the professional through the notifications bridge."""
    if not booking.get("professionalId"):
        return
    patient = booking.get("patientName") or "patient"
    date_str, time_str = split_date_time(as_datetime(booking["startsAt"]))
    store = get_store()
    store.add("notifications", {
        "userId": booking["professionalId"],
        "userType": "professional",
        "type": "appointment_reminder_pro",
        "title": f"Rappel - RDV {patient}",
        "message": f"Rappel de rendez-vous avec {patient}.",
        "data": {
            "bookingId": booking_id,
            "patientName": patient,
            "date": date_str,
            "time": time_str,
            "redirectPath": "/professional/dashboard",
        },
        "channels": ["email"],
        "read": False,
        "createdAt": store.server_timestamp(),
    })
