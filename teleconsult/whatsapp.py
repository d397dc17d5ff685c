"""WhatsApp Cloud API client (text and template messages)."""

from __future__ import annotations

import logging
import re
import time
from typing import Optional

import httpx

from teleconsult.config import settings

logger = logging.getLogger(__name__)

GRAPH_BASE_URL = "https://graph.facebook.com"
RETRY_STATUSES = {429, 500, 502, 503, 504}

# Replaced in tests to avoid real sleeps and network
_sleep = time.sleep
_transport: Optional[httpx.BaseTransport] = None


def _headers() -> dict:
    return {
        "Authorization": f"Bearer {settings.wa_token}",
        "Content-Type": "application/json",
    }


def _configured() -> bool:
    return bool(settings.wa_token and settings.wa_phone_number_id)


def digits_from_e164(e164: str) -> str:
    return re.sub(r"\D+", "", (e164 or "").lstrip("+"))


def post_graph(path: str, body: dict, retries: Optional[int] = None) -> httpx.Response:
    """
    POST to the Graph API, retrying 429/5xx responses with exponential
    backoff (http_backoff_ms * 2**attempt). Any other status is returned
    as-is on the first attempt.
    """
    retries = settings.http_retries if retries is None else retries
    url = f"{GRAPH_BASE_URL}/{settings.wa_api_version}/{path}"
    with httpx.Client(
        timeout=settings.http_timeout_seconds, transport=_transport
    ) as client:
        attempt = 0
        while True:
            resp = client.post(url, headers=_headers(), json=body)
            if resp.is_success:
                return resp
            if resp.status_code in RETRY_STATUSES and attempt < retries:
                delay_ms = settings.http_backoff_ms * 2 ** attempt
                logger.warning(
                    "Graph API %s returned %d, retrying in %d ms",
                    path, resp.status_code, delay_ms,
                )
                _sleep(delay_ms / 1000)
                attempt += 1
                continue
            return resp


def _send(to_e164: str, payload: dict, label: str) -> bool:
    if not _configured():
        logger.info("[WA] Config missing, skipping WhatsApp %s", label)
        return False
    body = {"messaging_product": "whatsapp", "to": digits_from_e164(to_e164), **payload}
    try:
        resp = post_graph(f"{settings.wa_phone_number_id}/messages", body)
    except httpx.HTTPError as exc:
        logger.error("[WA %s] Error sending to %s: %s", label, to_e164, exc)
        return False
    if resp.is_success:
        logger.info("[WA %s] Sent to %s", label, to_e164)
        return True
    logger.error("[WA %s] Failed: %d %s", label, resp.status_code, resp.text)
    return False


def send_text(to_e164: str, body: str) -> bool:
    """Send a free-text message. Returns True on success, False otherwise."""
    return _send(
        to_e164,
        {"type": "text", "text": {"body": body, "preview_url": True}},
        "text",
    )


def send_template(to_e164: str, template_name: str, variables: list[str]) -> bool:
    """Send an approved template with positional body variables."""
    components = (
        [{
            "type": "body",
            "parameters": [{"type": "text", "text": str(v)} for v in variables],
        }]
        if variables
        else []
    )
    return _send(
        to_e164,
        {
            "type": "template",
            "template": {
                "name": template_name,
                "language": {"code": settings.wa_template_language},
                "components": components,
            },
        },
        "template",
    )
