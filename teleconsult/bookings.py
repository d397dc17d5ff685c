"""
Booking document helpers shared by the triggers, the reminder scanners and
the join gate.

Booking documents are written by the web front-end; this service only reads
them, derives startsAt/endsAt and flips the notify.sent.* flags.
"""

from __future__ import annotations

import zoneinfo
from datetime import datetime, timedelta, timezone
from typing import Any, Optional

from teleconsult.config import settings
from teleconsult.store import field_value

COLLECTION = "bookings"

PENDING = "pending"
CONFIRMED = "confirmed"
CANCELLED = "cancelled"

# notify.sent.* flags
INITIAL = "initial"
CANCELLED_SENT = "cancelled"
RESCHEDULED = "rescheduled"
REMINDER_5M = "reminder5m"
START_NOW = "startNow"
REMINDER_24H = "reminder24h"
REMINDER_1H = "reminder1h"

# Reminder flags re-armed by a reschedule and disarmed by a cancellation
REMINDER_FLAGS = (REMINDER_5M, START_NOW, REMINDER_24H, REMINDER_1H)

DEFAULT_DURATION_MINUTES = 30

_WEEKDAYS_FR = ["lundi", "mardi", "mercredi", "jeudi", "vendredi", "samedi", "dimanche"]
_MONTHS_FR = [
    "janvier", "février", "mars", "avril", "mai", "juin",
    "juillet", "août", "septembre", "octobre", "novembre", "décembre",
]


def local_tz() -> zoneinfo.ZoneInfo:
    return zoneinfo.ZoneInfo(settings.tz)


def notify_sent(doc: Optional[dict], flag: str) -> bool:
    return bool(field_value(doc, f"notify.sent.{flag}"))


def flags_patch(**flags: Any) -> dict:
    """Build a merge patch for notify.sent.* flags."""
    return {"notify": {"sent": dict(flags)}}


def professional_label(doc: dict) -> str:
    return doc.get("professionalName") or "votre professionnel"


def as_datetime(value: Any) -> Optional[datetime]:
    """Coerce a stored timestamp (datetime or ISO string) to an aware datetime."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        dt = value
    elif isinstance(value, str):
        dt = datetime.fromisoformat(value.replace("Z", "+00:00"))
    else:
        raise TypeError(f"Unsupported timestamp value: {value!r}")
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def to_starts_ends(doc: dict) -> tuple[Optional[datetime], Optional[datetime]]:
    """
    Derive startsAt/endsAt from the UI fields date ("YYYY-MM-DD"),
    startTime/endTime ("HH:mm") and duration (minutes), in the platform
    timezone. Returns (None, None) when date or startTime is missing.
    """
    date_str = doc.get("date")
    start_time = doc.get("startTime")
    if not date_str or not start_time:
        return None, None

    tz = local_tz()
    start = datetime.fromisoformat(f"{date_str}T{start_time}").replace(tzinfo=tz)
    end_time = doc.get("endTime")
    if end_time:
        end = datetime.fromisoformat(f"{date_str}T{end_time}").replace(tzinfo=tz)
    else:
        try:
            duration = float(doc.get("duration") or DEFAULT_DURATION_MINUTES)
        except (TypeError, ValueError):
            duration = DEFAULT_DURATION_MINUTES
        if duration != duration or duration in (float("inf"), float("-inf")):
            duration = DEFAULT_DURATION_MINUTES
        end = start + timedelta(minutes=duration)

    return start.astimezone(timezone.utc), end.astimezone(timezone.utc)


def split_date_time(value: Any) -> tuple[str, str]:
    """("dimanche 21 septembre 2025", "20:00") in the platform timezone."""
    dt = as_datetime(value).astimezone(local_tz())
    date_str = f"{_WEEKDAYS_FR[dt.weekday()]} {dt.day} {_MONTHS_FR[dt.month - 1]} {dt.year}"
    return date_str, dt.strftime("%H:%M")


def humanize(value: Any) -> str:
    """"dimanche 21 septembre 2025 à 20:00" in the platform timezone."""
    date_str, time_str = split_date_time(value)
    return f"{date_str} à {time_str}"
