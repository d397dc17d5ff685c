"""
Notification dispatcher: an ordered chain of delivery channels.

    WhatsApp template -> WhatsApp free text -> SMS

Each channel reports success or failure; the first success stops the chain.
Channels never raise for delivery failures.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Optional, Protocol, Sequence

from teleconsult import sms, whatsapp

logger = logging.getLogger(__name__)


@dataclass
class Message:
    text: str = ""
    template_name: str = ""
    variables: list[str] = field(default_factory=list)

    def fallback_text(self) -> str:
        if self.text:
            return self.text
        return f"Template: {self.template_name} with variables: {', '.join(self.variables)}"


class Channel(Protocol):
    name: str

    def attempt(self, phone: str, message: Message) -> bool: ...


class WhatsAppTemplateChannel:
    name = "whatsapp_template"

    def attempt(self, phone: str, message: Message) -> bool:
        if not message.template_name:
            return False
        return whatsapp.send_template(phone, message.template_name, message.variables)


class WhatsAppTextChannel:
    name = "whatsapp_text"

    def attempt(self, phone: str, message: Message) -> bool:
        if not message.text:
            return False
        return whatsapp.send_text(phone, message.text)


class SmsChannel:
    name = "sms"

    def attempt(self, phone: str, message: Message) -> bool:
        return sms.send_sms(phone, message.fallback_text())


DEFAULT_CHANNELS: tuple[Channel, ...] = (
    WhatsAppTemplateChannel(),
    WhatsAppTextChannel(),
    SmsChannel(),
)


def send_via_preferred_channel(
    phone: str,
    message: Message,
    channels: Sequence[Channel] = DEFAULT_CHANNELS,
) -> Optional[str]:
    """Try each channel in order; return the name of the one that delivered."""
    for channel in channels:
        if channel.attempt(phone, message):
            logger.info("Notification to %s delivered via %s", phone, channel.name)
            return channel.name
    logger.warning("All channels failed for %s", phone)
    return None
