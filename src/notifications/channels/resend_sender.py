import logging
from typing import Protocol

import httpx

from src.errors import UpstreamFailure
from src.notifications.channels.base import ChannelSender
from src.notifications.dtos import Channel, RenderedMessage

logger = logging.getLogger(__name__)

RESEND_EMAILS_URL = "https://api.resend.com/emails"


class ResendEmailConfig(Protocol):
    resend_api_key: str
    emails_from: str


class ResendEmailSender(ChannelSender):
    channel = Channel.EMAIL

    def __init__(
        self,
        config: ResendEmailConfig,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self._config = config
        self._transport = transport

    async def send(self, message: RenderedMessage, destination: str) -> str:
        payload = {
            "from": self._config.emails_from,
            "to": [destination],
            "subject": message.subject,
            "text": message.text,
        }
        if message.html:
            payload["html"] = message.html

        try:
            async with httpx.AsyncClient(transport=self._transport) as client:
                response = await client.post(
                    RESEND_EMAILS_URL,
                    headers={
                        "Authorization": f"Bearer {self._config.resend_api_key}",
                        "Content-Type": "application/json",
                    },
                    json=payload,
                )
                response.raise_for_status()
        except httpx.HTTPStatusError as e:
            logger.warning(f"Resend rejected email to {destination}: {e.response.text}")
            raise UpstreamFailure(f"Email provider error: {e.response.status_code}") from e
        except httpx.HTTPError as e:
            raise UpstreamFailure(f"Email provider unreachable: {e}") from e

        resend_email_id = response.json().get("id")
        if not resend_email_id:
            raise UpstreamFailure("Email provider returned no message id")
        return resend_email_id
