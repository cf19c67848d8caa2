"""
Email module for the Weather Alert service.

Renders HTML bodies for alert, welcome and test emails and delivers them
one message per SMTP session.
"""

import html
import logging
import smtplib
from email.message import EmailMessage
from typing import Optional, Tuple

from .errors import TransportError
from .models import Preference, User, WeatherReading, utc_now

logger = logging.getLogger(__name__)

DEFAULT_SMTP_TIMEOUT = 30
IMPLICIT_TLS_PORT = 465

_STYLE = """
    body { font-family: Arial, sans-serif; line-height: 1.6; color: #333; }
    .container { max-width: 600px; margin: 0 auto; padding: 20px; }
    .header { background: #4a5fc1; color: white; padding: 30px; border-radius: 10px 10px 0 0; }
    .content { background: #f4f4f4; padding: 30px; border-radius: 0 0 10px 10px; }
    .alert-box { background: #fff3cd; border-left: 4px solid #ffc107; padding: 15px; margin: 20px 0; }
    .footer { text-align: center; margin-top: 20px; color: #666; font-size: 12px; }
    td { padding: 4px 12px 4px 0; }
"""


def _page(header: str, content: str, footer: str) -> str:
    return f"""<html>
<head><style>{_STYLE}</style></head>
<body>
  <div class="container">
    <div class="header">{header}</div>
    <div class="content">{content}</div>
    <div class="footer"><p>{footer}</p></div>
  </div>
</body>
</html>"""


def _threshold(value: Optional[int]) -> str:
    return "not set" if value is None else f"{value}°C"


def render_alert_email(
    user: User,
    reading: WeatherReading,
    preference: Preference,
    alert_type: str,
    message: str
) -> Tuple[str, str]:
    """Build subject and HTML body for one matched alert."""
    city = html.escape(reading.city)
    subject = f"Weather Alert for {reading.city}: {alert_type}"

    rows = [
        ("Temperature", f"{reading.temperature:.1f}°C"),
        ("Feels like", f"{reading.feels_like:.1f}°C"),
        ("Conditions", f"{reading.conditions} ({reading.description})"),
        ("Humidity", f"{reading.humidity}%"),
        ("Wind", f"{reading.wind_speed} m/s"),
        ("Pressure", f"{reading.pressure} hPa"),
        ("Observed at", reading.fetched_at),
    ]
    table = "".join(
        f"<tr><td><strong>{label}</strong></td><td>{html.escape(value)}</td></tr>"
        for label, value in rows
    )

    content = f"""
      <h2>Alert for {city}, {html.escape(reading.country)}</h2>
      <div class="alert-box"><strong>Alert Message:</strong><br/>{html.escape(message)}</div>
      <table>{table}</table>
      <p><strong>Your thresholds:</strong> minimum {_threshold(preference.min_temp)},
         maximum {_threshold(preference.max_temp)}</p>
      <p>This alert was triggered based on your weather preferences.</p>"""

    body = _page(
        "<h1>Weather Alert System</h1><p>Your personalized weather notification</p>",
        content,
        f"Sent to {html.escape(user.email)}. Update your preferences to change these alerts.",
    )
    return subject, body


def render_welcome_email(city: str, country: str) -> Tuple[str, str]:
    content = f"""
      <h2>Thank you for registering!</h2>
      <p><strong>Your Location:</strong> {html.escape(city)}, {html.escape(country)}</p>
      <p>We'll monitor the weather in your area and email you when it matches your preferences.</p>
      <ul>
        <li>Set your temperature thresholds (min/max)</li>
        <li>Choose conditions to be alerted about (rain, snow, storms)</li>
      </ul>"""
    body = _page(
        "<h1>Welcome!</h1><p>You're now registered for weather alerts</p>",
        content,
        "Weather Alert System - Stay informed, stay prepared",
    )
    return "Welcome to Weather Alert System!", body


def render_test_email(to: str) -> Tuple[str, str]:
    subject = "Weather Alert Test"
    content = f"""
      <h2>Email Configuration Test</h2>
      <p>If you're reading this, your email configuration is working correctly.</p>
      <ul>
        <li>Recipient: {html.escape(to)}</li>
        <li>Time: {utc_now()}</li>
      </ul>"""
    return subject, _page("<h1>Weather Alert System</h1>", content, "Test message")


class EmailClient:
    """SMTP client. Stateless between calls: one connection per message."""

    def __init__(
        self,
        host: str,
        port: int,
        username: str,
        password: str,
        sender: Optional[str] = None,
        timeout: int = DEFAULT_SMTP_TIMEOUT
    ):
        self.host = host
        self.port = port
        self.username = username
        self._password = password
        self.sender = sender or username
        self.timeout = timeout
        logger.info(f"Email client configured for {host}:{port}")

    def _open(self) -> smtplib.SMTP:
        if self.port == IMPLICIT_TLS_PORT:
            return smtplib.SMTP_SSL(self.host, self.port, timeout=self.timeout)
        smtp = smtplib.SMTP(self.host, self.port, timeout=self.timeout)
        smtp.starttls()
        return smtp

    def send(self, to: str, subject: str, html_body: str) -> None:
        """
        Send one HTML message.

        Raises:
            TransportError: on connection, authentication or delivery failure.
        """
        try:
            message = EmailMessage()
            message["From"] = self.sender
            message["To"] = to
            message["Subject"] = subject
            message.set_content("This message requires an HTML capable mail client.")
            message.add_alternative(html_body, subtype="html")
        except ValueError as e:
            # Header values containing line breaks are rejected by the email package
            raise TransportError(f"Cannot build email to {to!r}: {e}") from e

        try:
            with self._open() as smtp:
                smtp.login(self.username, self._password)
                smtp.send_message(message)
        except smtplib.SMTPAuthenticationError as e:
            raise TransportError(f"SMTP authentication failed: {e}") from e
        except (smtplib.SMTPException, OSError) as e:
            raise TransportError(f"Failed to send email to {to}: {e}") from e

        logger.info(f"Email sent to: {to}")

    def send_welcome(self, to: str, city: str, country: str) -> None:
        subject, body = render_welcome_email(city, country)
        self.send(to, subject, body)

    def send_test(self, to: str) -> None:
        subject, body = render_test_email(to)
        self.send(to, subject, body)
