import asyncio
import smtplib
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from email.utils import make_msgid

from src.config.settings import settings
from src.errors import UpstreamFailure
from src.notifications.channels.base import ChannelSender
from src.notifications.dtos import Channel, RenderedMessage


class SMTPEmailSender(ChannelSender):
    """Fallback email sender when no Resend API key is configured."""

    channel = Channel.EMAIL

    def __init__(self):
        self.host = settings.smtp_host
        self.port = settings.smtp_port
        self.username = settings.smtp_user
        self.password = settings.smtp_password
        self.from_address = settings.emails_from

    def _create_message(self, message: RenderedMessage, to_address: str) -> MIMEMultipart:
        msg = MIMEMultipart("alternative")
        msg["Subject"] = message.subject
        msg["From"] = self.from_address
        msg["To"] = to_address
        msg["Message-ID"] = make_msgid()

        msg.attach(MIMEText(message.text, "plain"))
        if message.html:
            msg.attach(MIMEText(message.html, "html"))

        return msg

    def _send(self, msg: MIMEMultipart) -> None:
        with smtplib.SMTP(self.host, self.port) as server:
            if self.username and self.password:
                server.starttls()
                server.login(self.username, self.password)
            server.send_message(msg)

    async def send(self, message: RenderedMessage, destination: str) -> str:
        msg = self._create_message(message, destination)
        try:
            await asyncio.to_thread(self._send, msg)
        except (smtplib.SMTPException, OSError) as e:
            raise UpstreamFailure(f"SMTP delivery failed: {e}") from e
        return msg["Message-ID"]
