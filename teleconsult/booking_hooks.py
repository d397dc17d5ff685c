"""
Booking write trigger: classify the transition carried by a write and send
the matching patient notification at most once.

Transitions (at most one per write):
  - confirmed:   status becomes "confirmed" (or the booking is created confirmed)
  - cancelled:   status becomes "cancelled" on an existing booking
  - rescheduled: booking stays confirmed and startsAt changes

Each notification is guarded by a notify.sent.* flag that is claimed with a
compare-and-set on the booking document before anything is sent.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Callable, Optional

from teleconsult import bookings, rooms
from teleconsult.bookings import (
    CANCELLED,
    CONFIRMED,
    REMINDER_FLAGS,
    as_datetime,
    flags_patch,
    humanize,
    notify_sent,
    professional_label,
    split_date_time,
)
from teleconsult.config import settings
from teleconsult.dispatcher import Message, send_via_preferred_channel
from teleconsult.store import deep_merge, field_value, get_store

logger = logging.getLogger(__name__)

TRANSITION_CONFIRMED = "confirmed"
TRANSITION_CANCELLED = "cancelled"
TRANSITION_RESCHEDULED = "rescheduled"


def classify_transition(before: Optional[dict], after: Optional[dict]) -> Optional[str]:
    if after is None:
        return None
    before_status = (before or {}).get("status")
    after_status = after.get("status")

    if after_status == CONFIRMED and before_status != CONFIRMED:
        # Re-confirmed after a cancellation at a new time
        if notify_sent(after, bookings.INITIAL) and _start_changed(before, after):
            return TRANSITION_RESCHEDULED
        return TRANSITION_CONFIRMED
    if before is not None and before_status != CANCELLED and after_status == CANCELLED:
        return TRANSITION_CANCELLED
    if after_status == CONFIRMED and _start_changed(before, after):
        return TRANSITION_RESCHEDULED
    return None


def _start_changed(before: Optional[dict], after: dict) -> bool:
    if before is None:
        return False
    old_start = as_datetime(before.get("startsAt"))
    new_start = as_datetime(after.get("startsAt"))
    return bool(old_start and new_start and old_start != new_start)


def on_booking_written(
    booking_id: str, before: Optional[dict], after: Optional[dict]
) -> Optional[str]:
    """
    Entry point for bookings/{id} writes. Returns the transition that was
    notified, or None. Errors are logged and never propagate.
    """
    transition = classify_transition(before, after)
    if transition is None:
        return None

    logger.info(
        "Booking %s: %s -> %s (%s)",
        booking_id, (before or {}).get("status"), after.get("status"), transition,
    )
    handler = _HANDLERS[transition]
    try:
        return transition if handler(booking_id, after) else None
    except Exception:
        logger.exception("Error processing booking %s", booking_id)
        return None


# ---------------------------------------------------------------------------
# Flag claims
# ---------------------------------------------------------------------------


def _claim(booking_id: str, already_sent: Callable[[dict], bool], patch: dict) -> bool:
    """Atomically apply patch unless already_sent(current booking) holds."""
    store = get_store()

    def _apply(current: Optional[dict]) -> Optional[dict]:
        if current is None or already_sent(current):
            return None
        return deep_merge({"updatedAt": store.server_timestamp()}, patch)

    return store.transact(bookings.COLLECTION, booking_id, _apply) is not None


def _release(booking_id: str, flag: str) -> None:
    get_store().set(bookings.COLLECTION, booking_id, flags_patch(**{flag: False}), merge=True)
    logger.info("Released notify.sent.%s on booking %s", flag, booking_id)


def _send_claimed(booking_id: str, flag: str, phone: str, build: Callable[[], Message]) -> None:
    try:
        send_via_preferred_channel(phone, build())
    except Exception:
        _release(booking_id, flag)
        raise


# ---------------------------------------------------------------------------
# Transitions
# ---------------------------------------------------------------------------


def _handle_confirmed(booking_id: str, after: dict) -> bool:
    if notify_sent(after, bookings.INITIAL):
        logger.info("Confirmation already notified for %s", booking_id)
        return False

    patch = flags_patch(**{bookings.INITIAL: True})
    starts_at, ends_at = bookings.to_starts_ends(after)
    if starts_at and not after.get("startsAt"):
        patch["startsAt"] = starts_at
    if ends_at and not after.get("endsAt"):
        patch["endsAt"] = ends_at

    if not _claim(booking_id, lambda doc: notify_sent(doc, bookings.INITIAL), patch):
        return False

    try:
        token = rooms.ensure_room_token(booking_id)
        phone = rooms.booking_phone(after)
    except Exception:
        _release(booking_id, bookings.INITIAL)
        raise

    if not phone:
        logger.warning("No patient phone for confirmed booking %s", booking_id)
        return True

    when = as_datetime(after.get("startsAt")) or starts_at or datetime.now(timezone.utc)
    link = rooms.join_link(token)
    pro = professional_label(after)
    date_str, time_str = split_date_time(when)
    message = Message(
        text=f"[{settings.brand}] RDV confirmé avec {pro} le {humanize(when)}. Lien: {link}",
        template_name=settings.wa_template_confirmed,
        variables=[pro, date_str, time_str, link],
    )
    try:
        send_via_preferred_channel(phone, message)
    except Exception:
        logger.exception("Confirmation message failed for booking %s", booking_id)
    return True


def _handle_cancelled(booking_id: str, after: dict) -> bool:
    if notify_sent(after, bookings.CANCELLED_SENT):
        logger.info("Cancellation already notified for %s", booking_id)
        return False

    phone = rooms.booking_phone(after)
    if not phone:
        logger.warning("No patient phone for cancelled booking %s", booking_id)
        return False

    patch = flags_patch(
        **{bookings.CANCELLED_SENT: True},
        **{flag: False for flag in REMINDER_FLAGS},
    )
    if not _claim(booking_id, lambda doc: notify_sent(doc, bookings.CANCELLED_SENT), patch):
        return False

    pro = professional_label(after)

    def build() -> Message:
        return Message(
            text=(
                f"[{settings.brand}] Votre consultation avec {pro} a été annulée. "
                "Pour reprogrammer, contactez votre professionnel."
            ),
            template_name=settings.wa_template_cancelled,
            variables=[pro],
        )

    _send_claimed(booking_id, bookings.CANCELLED_SENT, phone, build)
    logger.info("Cancellation notification sent for %s", booking_id)
    return True


def _rescheduled_to(doc: dict, starts_at: datetime) -> bool:
    if not notify_sent(doc, bookings.RESCHEDULED):
        return False
    previous = field_value(doc, "notify.rescheduledTo")
    # Bookings flagged before rescheduledTo existed count as sent
    return previous is None or as_datetime(previous) == starts_at


def _handle_rescheduled(booking_id: str, after: dict) -> bool:
    starts_at = as_datetime(after["startsAt"])
    if _rescheduled_to(after, starts_at):
        logger.info("Reschedule already notified for %s", booking_id)
        return False

    phone = rooms.booking_phone(after)
    if not phone:
        logger.warning("No patient phone for rescheduled booking %s", booking_id)
        return False

    patch = flags_patch(
        **{bookings.RESCHEDULED: True},
        **{flag: False for flag in REMINDER_FLAGS},
    )
    patch["notify"]["rescheduledTo"] = starts_at
    if not _claim(booking_id, lambda doc: _rescheduled_to(doc, starts_at), patch):
        return False

    pro = professional_label(after)

    def build() -> Message:
        link = rooms.join_link(rooms.ensure_room_token(booking_id))
        when = humanize(starts_at)
        return Message(
            text=(
                f"[{settings.brand}] Votre consultation avec {pro} "
                f"a été reprogrammée au {when}. Lien: {link}"
            ),
            template_name=settings.wa_template_rescheduled,
            variables=[pro, when, link],
        )

    _send_claimed(booking_id, bookings.RESCHEDULED, phone, build)
    logger.info("Reschedule notification sent for %s", booking_id)
    return True


_HANDLERS: dict[str, Callable[[str, dict], bool]] = {
    TRANSITION_CONFIRMED: _handle_confirmed,
    TRANSITION_CANCELLED: _handle_cancelled,
    TRANSITION_RESCHEDULED: _handle_rescheduled,
}
