"""SMS and WhatsApp delivery through the Twilio Messages REST API."""

import logging
import re
from typing import Protocol

import httpx

from src.errors import InputValidationError, UpstreamFailure
from src.notifications.channels.base import ChannelSender
from src.notifications.dtos import Channel, RenderedMessage

logger = logging.getLogger(__name__)

TWILIO_MESSAGES_URL = "https://api.twilio.com/2010-04-01/Accounts/{account_sid}/Messages.json"

E164_PATTERN = re.compile(r"^\+[1-9]\d{1,14}$")


class TwilioConfig(Protocol):
    twilio_account_sid: str
    twilio_auth_token: str
    twilio_phone_number: str
    twilio_messaging_service_sid: str
    twilio_whatsapp_number: str
    default_country_code: str


def format_phone(phone: str, default_country_code: str = "+1") -> str:
    """Normalise a phone number to E.164.

    Numbers already in E.164 pass through. Otherwise the digits are kept and
    the default country code is prepended unless they already start with it.
    """
    cleaned = phone.strip()
    if E164_PATTERN.match(cleaned):
        return cleaned

    digits = re.sub(r"\D", "", cleaned)
    country_digits = re.sub(r"\D", "", default_country_code)
    formatted = f"+{digits}" if digits.startswith(country_digits) else f"+{country_digits}{digits}"
    if not E164_PATTERN.match(formatted):
        raise InputValidationError(f"Invalid phone number: {phone}")
    return formatted


class TwilioSender(ChannelSender):
    def __init__(
        self,
        config: TwilioConfig,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self._config = config
        self._transport = transport

    def _sender_fields(self) -> dict[str, str]:
        raise NotImplementedError

    def _address(self, phone: str) -> str:
        return format_phone(phone, self._config.default_country_code)

    async def send(self, message: RenderedMessage, destination: str) -> str:
        if not self._config.twilio_account_sid or not self._config.twilio_auth_token:
            raise UpstreamFailure("Twilio credentials not configured")

        form = {"To": self._address(destination), "Body": message.text, **self._sender_fields()}
        url = TWILIO_MESSAGES_URL.format(account_sid=self._config.twilio_account_sid)
        try:
            async with httpx.AsyncClient(transport=self._transport) as client:
                response = await client.post(
                    url,
                    data=form,
                    auth=(self._config.twilio_account_sid, self._config.twilio_auth_token),
                )
                response.raise_for_status()
        except httpx.HTTPStatusError as e:
            logger.warning(f"Twilio rejected {self.channel.value} to {destination}: {e.response.text}")
            raise UpstreamFailure(f"Twilio error: {e.response.status_code}") from e
        except httpx.HTTPError as e:
            raise UpstreamFailure(f"Twilio unreachable: {e}") from e

        sid = response.json().get("sid")
        if not sid:
            raise UpstreamFailure("Twilio returned no message sid")
        return sid


class TwilioSmsSender(TwilioSender):
    channel = Channel.SMS

    def _sender_fields(self) -> dict[str, str]:
        if self._config.twilio_phone_number:
            return {"From": self._config.twilio_phone_number}
        if self._config.twilio_messaging_service_sid:
            return {"MessagingServiceSid": self._config.twilio_messaging_service_sid}
        raise UpstreamFailure("Twilio sender not configured")


class TwilioWhatsAppSender(TwilioSender):
    channel = Channel.WHATSAPP

    def _address(self, phone: str) -> str:
        return f"whatsapp:{format_phone(phone, self._config.default_country_code)}"

    def _sender_fields(self) -> dict[str, str]:
        number = self._config.twilio_whatsapp_number or self._config.twilio_phone_number
        if not number:
            raise UpstreamFailure("Twilio WhatsApp sender not configured")
        if not number.startswith("whatsapp:"):
            number = f"whatsapp:{number}"
        return {"From": number}
