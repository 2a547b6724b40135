"""
send-otp-email handler.

Renders the verification email for {email, username, otp} and hands it to the
mail transport. A retry re-sends the same message; nothing else is written, so
a duplicate send is the only effect of running twice.
"""

from mailer.templates import OTP_SUBJECT, render_otp_email
from mailer.transport import MailTransport
from shared.log import create_logger
from validation.errors import TransportError

log_trace, log_debug, log_info, log_warn, log_error = create_logger("Email")


def make_send_otp_email(transport: MailTransport):
    """Build the send-otp-email handler bound to a transport."""

    def send_otp_email(payload: dict, ctx) -> dict:
        ctx.update_progress(10)
        email = payload['email']
        username = payload['username']
        otp = payload['otp']
        ctx.update_progress(30)

        log_debug(f"Sending OTP email to {email} (job {ctx.job_id})")
        html = render_otp_email(username, str(otp))
        ctx.update_progress(60)

        try:
            message_id = transport.send(email, OTP_SUBJECT, html)
        except TransportError as e:
            raise TransportError(f"Failed to send email: {e}", smtp_code=e.smtp_code) from e

        ctx.update_progress(100)
        log_info(f"Email sent successfully: {message_id}")
        return {'success': True, 'messageId': message_id}

    return send_otp_email
