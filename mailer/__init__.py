"""
Outbound mail: OTP template rendering and the transports that deliver it.
"""

from mailer.templates import OTP_SUBJECT, render_otp_email
from mailer.transport import ConsoleTransport, MailTransport, SmtpTransport, build_transport

__all__ = [
    'OTP_SUBJECT',
    'render_otp_email',
    'MailTransport',
    'SmtpTransport',
    'ConsoleTransport',
    'build_transport',
]
