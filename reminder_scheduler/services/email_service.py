import asyncio
import smtplib
import ssl
import threading
from email.message import EmailMessage
from email.utils import make_msgid
from typing import Any, Callable, Optional

from reminder_scheduler.config.settings import Settings
from reminder_scheduler.utils.errors import ConfigurationError, TransportError
from reminder_scheduler.utils.logging import get_logger

logger = get_logger()


def _resolve(future: asyncio.Future, result: Any, error: Optional[BaseException]) -> None:
    if future.done():
        return
    if error is not None:
        future.set_exception(error)
    else:
        future.set_result(result)


async def run_in_daemon_thread(func: Callable[..., Any], *args: Any) -> Any:
    """
    Run a blocking call on a daemon thread and await its result.

    Unlike ``asyncio.to_thread`` the thread does not belong to the loop's
    default executor, so neither ``asyncio.run`` nor interpreter exit joins
    it. A shutdown never waits for an SMTP conversation still in progress.
    """
    loop = asyncio.get_running_loop()
    future = loop.create_future()

    def runner() -> None:
        result, error = None, None
        try:
            result = func(*args)
        except BaseException as e:
            error = e
        try:
            loop.call_soon_threadsafe(_resolve, future, result, error)
        except RuntimeError:
            # Loop closed while the call was running, nobody is waiting
            return

    threading.Thread(target=runner, name="smtp-worker", daemon=True).start()
    return await future


class EmailService:
    """
    SMTP transport for outbound reminders.

    The blocking smtplib calls run on a daemon thread so the scheduler loop
    keeps serving its other coroutines while a message is in flight.
    """

    def __init__(self, settings: Settings):
        self.settings = settings

    def validate(self) -> None:
        """Raise ConfigurationError when host or credentials are missing."""
        missing = [
            name
            for name in ("EMAIL_HOST", "EMAIL_USER", "EMAIL_PASS")
            if not getattr(self.settings, name)
        ]
        if missing:
            raise ConfigurationError(
                f"Email service requires {', '.join(missing)} to be set",
                error_code="EMAIL_CONFIG_MISSING",
            )

    async def verify(self) -> None:
        """Open a connection and authenticate, like a dry run of a send."""
        self.validate()
        try:
            await run_in_daemon_thread(self._verify_sync)
        except (smtplib.SMTPException, OSError) as e:
            raise TransportError(
                f"Failed to verify SMTP connection: {e}", error_code="SMTP_VERIFY_FAILED"
            ) from e
        logger.info(
            "SMTP connection verified",
            host=self.settings.EMAIL_HOST,
            port=self.settings.EMAIL_PORT,
        )

    async def send_message(self, to: str, subject: str, text: str, html: str) -> None:
        """Deliver one message. Raises TransportError on any failure."""
        if not to or "@" not in to:
            raise TransportError(f"Invalid email address: {to}", error_code="INVALID_RECIPIENT")

        self.validate()
        message = self.build_message(to, subject, text, html)
        try:
            await run_in_daemon_thread(self._send_sync, message)
        except (smtplib.SMTPException, OSError) as e:
            raise TransportError(
                f"Error sending email to {to}: {e}", error_code="SMTP_SEND_FAILED"
            ) from e

    def build_message(self, to: str, subject: str, text: str, html: str) -> EmailMessage:
        message = EmailMessage()
        message["From"] = self.settings.EMAIL_FROM
        message["To"] = to
        message["Subject"] = subject
        message["Message-ID"] = make_msgid()
        message.set_content(text)
        message.add_alternative(html or text, subtype="html")
        return message

    def _connect(self) -> smtplib.SMTP:
        host = self.settings.EMAIL_HOST
        port = self.settings.EMAIL_PORT
        timeout = self.settings.EMAIL_TIMEOUT_SECONDS
        context = ssl.create_default_context()

        if self.settings.EMAIL_SECURE:
            server = smtplib.SMTP_SSL(host, port, timeout=timeout, context=context)
        else:
            server = smtplib.SMTP(host, port, timeout=timeout)

        # The caller's with block only owns the connection once we return
        try:
            if not self.settings.EMAIL_SECURE:
                server.ehlo()
                if server.has_extn("starttls"):
                    server.starttls(context=context)
                    server.ehlo()
            server.login(self.settings.EMAIL_USER, self.settings.EMAIL_PASS)
        except BaseException:
            server.close()
            raise
        return server

    def _verify_sync(self) -> None:
        with self._connect() as server:
            server.noop()

    def _send_sync(self, message: EmailMessage) -> None:
        with self._connect() as server:
            server.send_message(message)
