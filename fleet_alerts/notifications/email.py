"""
SMTP email gateway.

Sends multipart (text + HTML) alert emails. The gateway is enabled only
when the feature flag is on and every SMTP setting is present; otherwise
``send_email`` is a logged no-op returning False. Blocking smtplib calls
run in a worker thread so the event loop is never blocked.
"""

import asyncio
import html as html_lib
import re
import smtplib
import ssl
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from email.utils import formataddr
from typing import List, Optional, Sequence, Union

import structlog

from fleet_alerts.config.models import EmailConfig
from fleet_alerts.errors import ConfigurationError

logger = structlog.get_logger(__name__)

IMPLICIT_TLS_PORT = 465

_BR_RE = re.compile(r"<br\s*/?>", re.IGNORECASE)
_P_CLOSE_RE = re.compile(r"</p>", re.IGNORECASE)
_TAG_RE = re.compile(r"<[^>]+>")
_STYLE_RE = re.compile(r"<(style|script)[^>]*>.*?</\1>", re.IGNORECASE | re.DOTALL)


def html_to_text(html: str) -> str:
    """
    Derive a plain-text body from an HTML email.

    Args:
        html: HTML markup.

    Returns:
        str: Text with line breaks kept and tags removed.

    Example:
        >>> html_to_text("<p>Hola&nbsp;<b>mundo</b></p>")
        'Hola mundo'
    """
    text = _STYLE_RE.sub("", html)
    text = _BR_RE.sub("\n", text)
    text = _P_CLOSE_RE.sub("\n\n", text)
    text = _TAG_RE.sub("", text)
    text = text.replace("&nbsp;", " ")
    text = html_lib.unescape(text)
    return text.strip()


class EmailGateway:
    """
    Multipart email sender over SMTP.

    Attributes:
        config: SMTP settings.
        enabled: Whether sends are attempted.

    Example:
        >>> gateway = EmailGateway(EmailConfig(enabled=False))
        >>> gateway.enabled
        False
    """

    def __init__(self, config: EmailConfig) -> None:
        self.config = config
        self.enabled = False

        try:
            self._check_config()
        except ConfigurationError as e:
            if config.enabled:
                logger.warning("email_gateway_disabled", reason=str(e))
            else:
                logger.info("email_gateway_disabled", reason=str(e))
            return

        self.enabled = True
        logger.info(
            "email_gateway_configured",
            host=config.smtp_host,
            port=config.smtp_port,
            user=config.smtp_user,
        )

    def _check_config(self) -> None:
        if not self.config.enabled:
            raise ConfigurationError("email alerts disabled by feature flag")
        missing = self.config.missing_settings
        if missing:
            raise ConfigurationError(f"missing SMTP settings: {', '.join(missing)}")

    @property
    def sender(self) -> str:
        """Formatted From header."""
        return formataddr((self.config.from_name, self.config.smtp_user or ""))

    def build_message(
        self,
        recipients: Sequence[str],
        subject: str,
        html: str,
        text: Optional[str] = None,
    ) -> MIMEMultipart:
        """
        Build the multipart/alternative message.

        Args:
            recipients: Destination addresses.
            subject: Subject line.
            html: HTML body.
            text: Plain-text body, derived from the HTML when omitted.

        Returns:
            MIMEMultipart: Message with a text part followed by the HTML part.
        """
        message = MIMEMultipart("alternative")
        message["From"] = self.sender
        message["To"] = ", ".join(recipients)
        message["Subject"] = subject
        message.attach(MIMEText(text if text is not None else html_to_text(html), "plain", "utf-8"))
        message.attach(MIMEText(html, "html", "utf-8"))
        return message

    async def send_email(
        self,
        to: Union[str, Sequence[str]],
        subject: str,
        html: str,
        text: Optional[str] = None,
    ) -> bool:
        """
        Send an email.

        Args:
            to: One address or a list of addresses.
            subject: Subject line.
            html: HTML body.
            text: Optional plain-text body.

        Returns:
            bool: True if the SMTP server accepted the message.
        """
        recipients: List[str] = [to] if isinstance(to, str) else list(to)

        if not self.enabled:
            logger.info("email_disabled", subject=subject, recipients=len(recipients))
            return False

        if not recipients:
            logger.warning("email_no_recipients", subject=subject)
            return False

        message = self.build_message(recipients, subject, html, text)

        try:
            await asyncio.to_thread(self._deliver, recipients, message)
        except (smtplib.SMTPException, OSError) as e:
            logger.error(
                "email_send_failed",
                subject=subject,
                recipients=recipients,
                error=str(e),
                error_type=type(e).__name__,
            )
            return False

        logger.info("email_sent", subject=subject, recipients=recipients)
        return True

    def _deliver(self, recipients: List[str], message: MIMEMultipart) -> None:
        host = self.config.smtp_host or ""
        port = self.config.smtp_port or 0
        timeout = self.config.timeout_seconds
        context = ssl.create_default_context()

        if port == IMPLICIT_TLS_PORT:
            with smtplib.SMTP_SSL(host, port, timeout=timeout, context=context) as server:
                self._login_and_send(server, recipients, message)
            return

        with smtplib.SMTP(host, port, timeout=timeout) as server:
            server.ehlo()
            if server.has_extn("starttls"):
                server.starttls(context=context)
                server.ehlo()
            self._login_and_send(server, recipients, message)

    def _login_and_send(
        self,
        server: smtplib.SMTP,
        recipients: List[str],
        message: MIMEMultipart,
    ) -> None:
        server.login(self.config.smtp_user or "", self.config.smtp_password or "")
        server.sendmail(self.config.smtp_user or "", recipients, message.as_string())


def create_email_gateway(config: EmailConfig) -> EmailGateway:
    """Factory function to create an EmailGateway."""
    return EmailGateway(config)
