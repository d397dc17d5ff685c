"""
Payment provider IPN (Instant Payment Notification) ingestion.

  - PayTech: a completed sale carries the booking details in custom_field and
    creates the booking as confirmed and paid.
  - PayDunya: the invoice number ("INV-<bookingId>") identifies an existing
    booking, which is confirmed when the invoice is completed.

Confirming a booking here triggers the regular confirmation notification
through the bookings write trigger.
"""

from __future__ import annotations

import hmac
import json
import logging
from typing import Any, Optional

from teleconsult import bookings
from teleconsult.bookings import CONFIRMED
from teleconsult.config import settings
from teleconsult.store import get_store

logger = logging.getLogger(__name__)

COMPLETED_STATUSES = {"COMPLETED", "completed", "success"}


class PaymentError(Exception):
    status_code = 400


class InvalidPayload(PaymentError):
    pass


class Unauthorized(PaymentError):
    status_code = 401


def _first(req: dict, *keys: str) -> Any:
    for key in keys:
        value = req.get(key)
        if value not in (None, ""):
            return value
    return None


def _price(value: Any, default: Any = 0) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        try:
            return float(default or 0)
        except (TypeError, ValueError):
            return 0.0


# ---------------------------------------------------------------------------
# PayTech
# ---------------------------------------------------------------------------


def normalize_paytech(req: dict) -> dict:
    """PayTech sends the same fields under several names depending on context."""
    return {
        "type_event": _first(req, "type_event", "typeEvent", "event_type"),
        "ref_command": _first(req, "ref_command", "refCommand", "reference"),
        "item_price": _first(req, "item_price", "itemPrice", "amount"),
        "payment_method": _first(req, "payment_method", "paymentMethod", "method"),
        "custom_field": _first(req, "custom_field", "customField", "custom_data"),
    }


def _custom_data(raw: Any) -> dict:
    if isinstance(raw, dict):
        return raw
    try:
        parsed = json.loads(raw or "{}")
    except (TypeError, ValueError) as exc:
        logger.warning("[PAYTECH IPN] Unparseable custom_field: %s", exc)
        return {}
    return parsed if isinstance(parsed, dict) else {}


def handle_paytech_ipn(req: dict) -> dict:
    payment = normalize_paytech(req)
    if not (payment["type_event"] and payment["ref_command"] and payment["item_price"]):
        logger.error("[PAYTECH IPN] Missing required fields; available: %s", sorted(req))
        raise InvalidPayload("Missing required fields")

    custom = _custom_data(payment["custom_field"])
    booking_id = custom.get("booking_id")
    logger.info(
        "[PAYTECH IPN] %s ref=%s amount=%s booking=%s",
        payment["type_event"], payment["ref_command"], payment["item_price"], booking_id,
    )

    store = get_store()
    if payment["type_event"] == "sale_complete" and booking_id:
        booking = {
            "patientId": custom.get("patientId"),
            "professionalId": custom.get("professionalId"),
            "patientName": custom.get("patientName"),
            "professionalName": custom.get("professionalName"),
            "date": custom.get("date"),
            "startTime": custom.get("startTime"),
            "endTime": custom.get("endTime"),
            "type": custom.get("type"),
            "duration": 60,
            "price": _price(payment["item_price"], custom.get("price")),
            "status": CONFIRMED,
            "paymentStatus": "paid",
            "paymentRef": payment["ref_command"],
            "paymentAmount": payment["item_price"],
            "paymentMethod": payment["payment_method"],
            "paidAt": store.server_timestamp(),
            "createdAt": store.server_timestamp(),
        }
        # Fields missing from custom_field keep their checkout values
        store.set(
            bookings.COLLECTION, booking_id,
            {k: v for k, v in booking.items() if v is not None},
            merge=True,
        )
        logger.info("[PAYTECH IPN] Booking %s confirmed", booking_id)

        user_id = custom.get("user_id")
        if user_id:
            store.add("notifications", {
                "userId": user_id,
                "type": "payment_success",
                "title": "Paiement confirmé",
                "message": (
                    f"Votre paiement de {payment['item_price']} XOF via "
                    f"{payment['payment_method']} a été confirmé. "
                    "Votre consultation est confirmée."
                ),
                "bookingId": booking_id,
                "read": False,
                "createdAt": store.server_timestamp(),
            })

    store.add("payment_logs", {
        **{k: v for k, v in payment.items() if k != "custom_field"},
        "customData": custom,
        "receivedAt": store.server_timestamp(),
        "source": "paytech_ipn",
    })
    return {"success": True, "message": "IPN processed successfully"}


# ---------------------------------------------------------------------------
# PayDunya
# ---------------------------------------------------------------------------


def _check_token(received: Optional[str]) -> None:
    expected = settings.paydunya_master_key
    if not expected:
        logger.warning("[PAYDUNYA IPN] PAYDUNYA_MASTER_KEY not configured, token not checked")
        return
    if not received or not hmac.compare_digest(str(received), expected):
        raise Unauthorized("Unauthorized")


def handle_paydunya_ipn(body: dict, header_token: Optional[str] = None) -> dict:
    _check_token(header_token or body.get("token") or body.get("master_key"))

    invoice = body.get("invoice") or {}
    custom = body.get("custom_data") or {}
    invoice_number = invoice.get("invoice_number") or body.get("invoice_number")
    booking_id = (
        (invoice_number.replace("INV-", "") if invoice_number else None)
        or body.get("booking_id")
        or custom.get("booking_id")
    )

    store = get_store()
    payment = {
        "token": body.get("token"),
        "status": invoice.get("status") or body.get("status"),
        "transactionId": body.get("transaction_id") or body.get("token"),
        "amount": invoice.get("amount") or body.get("amount"),
        "currency": invoice.get("currency") or body.get("currency") or "XOF",
        "customerName": invoice.get("customer_name") or body.get("customer_name"),
        "customerPhone": invoice.get("customer_phone") or body.get("customer_phone"),
        "customerEmail": invoice.get("customer_email") or body.get("customer_email"),
        "paymentMethod": body.get("payment_method"),
        "bookingId": booking_id,
        "professionalId": body.get("professional_id") or custom.get("professional_id"),
        "patientId": body.get("patient_id") or custom.get("patient_id"),
        "rawData": body,
        "createdAt": store.server_timestamp(),
        "updatedAt": store.server_timestamp(),
    }
    payment_id = store.add("payments", payment)
    logger.info("[PAYDUNYA IPN] Payment %s stored (status %s)", payment_id, payment["status"])

    completed = payment["status"] in COMPLETED_STATUSES
    if completed and booking_id:
        if store.get(bookings.COLLECTION, booking_id) is None:
            logger.error("[PAYDUNYA IPN] Booking %s not found", booking_id)
        else:
            store.set(bookings.COLLECTION, booking_id, {
                "status": CONFIRMED,
                "paymentStatus": "completed",
                "paymentId": payment_id,
                "paidAt": store.server_timestamp(),
                "updatedAt": store.server_timestamp(),
            }, merge=True)
            logger.info("[PAYDUNYA IPN] Booking %s confirmed", booking_id)
    else:
        logger.info(
            "[PAYDUNYA IPN] Not completed or no booking id: %s %s",
            payment["status"], booking_id,
        )

    if completed and payment["professionalId"]:
        store.add("notifications", {
            "userId": payment["professionalId"],
            "type": "payment_received",
            "title": "Paiement reçu",
            "message": (
                f"Nouveau paiement reçu de {payment['customerName']} - "
                f"{payment['amount']} {payment['currency']}"
            ),
            "data": {
                "paymentId": payment_id,
                "bookingId": booking_id,
                "amount": payment["amount"],
                "currency": payment["currency"],
            },
            "read": False,
            "createdAt": store.server_timestamp(),
        })

    return {
        "success": True,
        "message": "Payment notification received and processed",
        "paymentId": payment_id,
    }
