"""
Bridge from notifications/{id} to the mail collection consumed by the
email-sending extension. Only professional and admin notifications are
mailed; the mail document id is the notification id, and the notification's
"emailed" flag keeps a notification from being mailed twice.
"""

from __future__ import annotations

import html
import logging
from typing import Optional

from teleconsult.config import settings
from teleconsult.store import get_store

logger = logging.getLogger(__name__)

COLLECTION = "notifications"
MAIL_COLLECTION = "mail"

APPOINTMENT_TYPES = {
    "appointment_request",
    "appointment_confirmed",
    "appointment_reminder_pro",
    "appointment_cancelled",
    "appointment_modified",
}
WITHDRAWAL_TYPES = {"withdrawal_request", "withdrawal_status_update"}


def _data(n: dict) -> dict:
    return n.get("data") or {}


def _from_admin(n: dict) -> bool:
    data = _data(n)
    return data.get("fromType") == "admin" or data.get("fromUserType") == "admin"


def build_subject(n: dict) -> str:
    data = _data(n)
    when = f"{data.get('date', '')} à {data.get('time', '')}"
    kind = n.get("type")

    if kind == "appointment":
        return f"Nouveau rendez-vous le {when}"
    if kind == "appointment_request":
        return f"Nouvelle demande de rendez-vous le {when}"
    if kind == "appointment_confirmed":
        return f"Rendez-vous confirmé le {when}"
    if kind == "appointment_reminder_pro":
        return (
            f"Rappel - RDV {data.get('patientName', 'patient')} "
            f"({data.get('date', '')} {data.get('time', '')})"
        )
    if kind == "appointment_cancelled":
        return f"Rendez-vous annulé le {when}"
    if kind == "appointment_modified":
        return f"Rendez-vous modifié le {when}"
    if kind == "message":
        if _from_admin(n):
            return f"Message de l'administration {settings.brand}"
        return f"Nouveau message de {data.get('fromName') or 'un patient'}"
    if kind == "withdrawal_request":
        return n.get("title") or "Demande de retrait"
    if kind == "withdrawal_status_update":
        return n.get("title") or "Mise à jour de votre retrait"
    if kind == "withdrawal":
        return "Mise à jour de votre retrait"
    if kind == "professional_approval":
        return n.get("title") or "Mise à jour de votre compte professionnel"
    return n.get("title") or f"Notification {settings.brand}"


def _title(n: dict) -> str:
    kind = n.get("type")
    if kind == "message" and _from_admin(n):
        return f"Message de l'administration {settings.brand}"
    if kind in WITHDRAWAL_TYPES:
        return n.get("title") or "Notification de retrait"
    if kind in APPOINTMENT_TYPES:
        return n.get("title") or "Notification de rendez-vous"
    return n.get("title") or "Notification"


def build_html(n: dict) -> str:
    title = html.escape(_title(n))
    body = html.escape(n.get("message") or "")
    redirect = _data(n).get("redirectPath")
    cta = (
        f'<p><a href="{settings.mail_site_url}{html.escape(redirect)}" '
        'style="background-color:#0d9488;color:white;padding:10px 20px;'
        'text-decoration:none;border-radius:5px;display:inline-block;">Ouvrir</a></p>'
        if redirect
        else ""
    )
    return (
        '<div style="font-family:Arial,sans-serif;max-width:600px;margin:0 auto;padding:20px;">'
        f'<h2 style="color:#0d9488;border-bottom:2px solid #0d9488;padding-bottom:10px;">{title}</h2>'
        f'<p style="font-size:16px;line-height:1.6;color:#333;">{body}</p>'
        f"{cta}"
        '<p style="color:#64748b;font-size:12px;margin-top:30px;border-top:1px solid #eee;'
        f'padding-top:15px;">{settings.brand} - Plateforme de télémédecine</p>'
        "</div>"
    )


def build_text(n: dict) -> str:
    return f"{_title(n)}\n\n{n.get('message') or ''}"


def _recipient(n: dict) -> Optional[tuple[str, str, bool]]:
    """(email, display name, email enabled) or None when the profile is missing."""
    store = get_store()
    if n.get("userType") == "admin":
        user = store.get("users", n["userId"])
        if user is None:
            logger.warning("Admin user doc not found: %s", n["userId"])
            return None
        return user.get("email") or "", user.get("name") or f"Administrateur {settings.brand}", True

    pro = store.get("professionals", n["userId"])
    if pro is None:
        logger.warning("Professional doc not found: %s", n["userId"])
        return None
    prefs = (((pro.get("settings") or {}).get("notifications") or {}).get("email") or {})
    enabled = prefs.get("enabled", True)
    email = pro.get("email") or pro.get("contactEmail") or ""
    return email, pro.get("name") or f"Professionnel {settings.brand}", bool(enabled)


def on_notification_created(notification_id: str, n: Optional[dict]) -> Optional[str]:
    """Write the mail document for a new notification. Returns the mail doc id when queued."""
    if not n:
        return None
    if n.get("emailed") is True or n.get("status") == "deleted":
        return None
    if n.get("userType") and n["userType"] not in ("professional", "admin"):
        return None
    if not n.get("userId"):
        return None

    recipient = _recipient(n)
    if recipient is None:
        return None
    to, name, enabled = recipient

    store = get_store()
    if not to:
        store.set(COLLECTION, notification_id, {"emailed": False, "emailSkipped": "missing_email"}, merge=True)
        return None
    if not enabled:
        store.set(COLLECTION, notification_id, {"emailed": False, "emailSkipped": "opted_out"}, merge=True)
        return None

    store.set(MAIL_COLLECTION, notification_id, {
        "to": to,
        "toName": name,
        "from": settings.mail_from,
        "replyTo": settings.mail_reply_to,
        "headers": {
            "X-Notification-ID": notification_id,
            "List-Unsubscribe": f"<mailto:{settings.mail_reply_to}?subject=unsubscribe>",
        },
        "message": {
            "subject": build_subject(n),
            "html": build_html(n),
            "text": build_text(n),
        },
        "createdAt": store.server_timestamp(),
    })
    store.set(COLLECTION, notification_id, {
        "emailed": True,
        "emailedAt": store.server_timestamp(),
        "mailDocId": notification_id,
    }, merge=True)
    logger.info("Notification %s mailed to %s", notification_id, to)
    return notification_id
