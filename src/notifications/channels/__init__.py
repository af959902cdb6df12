from src.config.settings import settings
from src.notifications.channels.base import ChannelSender
from src.notifications.channels.resend_sender import ResendEmailSender
from src.notifications.channels.smtp_sender import SMTPEmailSender
from src.notifications.channels.twilio_sender import (
    TwilioSmsSender,
    TwilioWhatsAppSender,
    format_phone,
)
from src.notifications.dtos import Channel


def get_email_sender() -> ChannelSender:
    if settings.resend_api_key:
        return ResendEmailSender(config=settings)
    return SMTPEmailSender()


def get_channel_senders() -> dict[Channel, ChannelSender]:
    return {
        Channel.EMAIL: get_email_sender(),
        Channel.SMS: TwilioSmsSender(config=settings),
        Channel.WHATSAPP: TwilioWhatsAppSender(config=settings),
    }


__all__ = [
    "ChannelSender",
    "format_phone",
    "get_channel_senders",
    "get_email_sender",
]
