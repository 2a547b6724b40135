"""
Email templates.

Rendering is deterministic: the same username and code always produce the same
HTML, so a retried job sends an identical message.
"""

from jinja2 import Template

OTP_SUBJECT = "Verification Code for Feedback App"

OTP_HTML = """
<div style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto;">
  <h2>Hello {{ username }},</h2>
  <p>Thank you for registering. Please use the following verification code to complete your registration:</p>
  <div style="background-color: #f4f4f4; padding: 10px; text-align: center; font-size: 24px; font-weight: bold; margin: 20px 0;">
    {{ otp }}
  </div>
  <p>If you did not request this code, please ignore this email.</p>
  <p>This code will expire in {{ expiry_minutes }} minutes.</p>
</div>
"""

_otp_template = Template(OTP_HTML, autoescape=True)


def render_otp_email(username: str, otp: str, expiry_minutes: int = 10) -> str:
    """Render the verification email body. Username and code are HTML-escaped."""
    return _otp_template.render(username=username, otp=otp, expiry_minutes=expiry_minutes)
