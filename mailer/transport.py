"""
Mail transports.

A transport hands one HTML message to the outside world and returns its
Message-ID. SmtpTransport talks to a real server; ConsoleTransport logs the
message instead, for development and tests.

Every delivery failure surfaces as TransportError, carrying the SMTP reply
code when the server gave one so the worker can tell a busy server (4xx) from
a rejected recipient (5xx).
"""

import smtplib
from email.mime.text import MIMEText
from email.utils import formatdate, make_msgid, parseaddr

from shared.log import create_logger
from validation.errors import TransportError

log_trace, log_debug, log_info, log_warn, log_error = create_logger("Mailer")


class MailTransport:
    """Base class: deliver an HTML email and return its Message-ID."""

    def __init__(self, sender: str):
        self.sender = sender

    def _build_message(self, to: str, subject: str, html: str) -> MIMEText:
        msg = MIMEText(html, 'html', 'utf-8')
        msg['Subject'] = subject
        msg['From'] = self.sender
        msg['To'] = to
        msg['Date'] = formatdate(localtime=True)
        domain = parseaddr(self.sender)[1].rpartition('@')[2] or None
        msg['Message-ID'] = make_msgid(domain=domain)
        return msg

    def send(self, to: str, subject: str, html: str) -> str:
        raise NotImplementedError


class SmtpTransport(MailTransport):
    """
    Deliver over SMTP.

    Args:
        host, port: Server address (465 with use_ssl, 587 for STARTTLS)
        username, password: Login credentials; login is skipped when empty
        sender: From header
        use_ssl: Implicit TLS (SMTP_SSL) instead of STARTTLS
        timeout: Socket timeout in seconds
    """

    def __init__(
        self,
        host: str,
        port: int,
        username: str,
        password: str,
        sender: str,
        use_ssl: bool = True,
        timeout: float = 30.0,
    ):
        super().__init__(sender)
        self.host = host
        self.port = port
        self.username = username
        self.password = password
        self.use_ssl = use_ssl
        self.timeout = timeout

    def _connect(self) -> smtplib.SMTP:
        if self.use_ssl:
            return smtplib.SMTP_SSL(self.host, self.port, timeout=self.timeout)
        server = smtplib.SMTP(self.host, self.port, timeout=self.timeout)
        server.starttls()
        return server

    def send(self, to: str, subject: str, html: str) -> str:
        msg = self._build_message(to, subject, html)
        try:
            # New connection per message, closed on exit
            with self._connect() as server:
                if self.username and self.password:
                    server.login(self.username, self.password)
                server.send_message(msg)
        except smtplib.SMTPResponseException as e:
            detail = e.smtp_error.decode(errors="replace") if isinstance(e.smtp_error, bytes) else e.smtp_error
            raise TransportError(f"SMTP {e.smtp_code}: {detail}", smtp_code=e.smtp_code) from e
        except smtplib.SMTPRecipientsRefused as e:
            codes = [code for code, _ in e.recipients.values()]
            raise TransportError(f"Recipient refused: {to}", smtp_code=codes[0] if codes else None) from e
        except (smtplib.SMTPException, OSError) as e:
            raise TransportError(str(e) or type(e).__name__) from e

        log_debug(f"Sent '{subject}' to {to} via {self.host}:{self.port}")
        return msg['Message-ID']


class ConsoleTransport(MailTransport):
    """Log messages instead of sending them; keeps the last few for inspection."""

    def __init__(self, sender: str = "Feedback App <noreply@example.com>", keep: int = 50):
        super().__init__(sender)
        self.keep = keep
        self.outbox: list[dict] = []

    def send(self, to: str, subject: str, html: str) -> str:
        msg = self._build_message(to, subject, html)
        message_id = msg['Message-ID']
        log_info(f"[console mail] {message_id} to={to} subject={subject!r} ({len(html)} chars)")
        self.outbox.append({'message_id': message_id, 'to': to, 'subject': subject, 'html': html})
        del self.outbox[:-self.keep]
        return message_id


def build_transport(settings) -> MailTransport:
    """Create the transport selected by settings.mail_provider."""
    if settings.mail_provider == "smtp":
        return SmtpTransport(
            host=settings.smtp_host,
            port=settings.smtp_port,
            username=settings.smtp_username,
            password=settings.smtp_password,
            sender=settings.mail_from,
            use_ssl=settings.smtp_use_ssl,
            timeout=settings.smtp_timeout,
        )
    return ConsoleTransport(sender=settings.mail_from)
