"""
Notification gateway for FleetRelay.

SMS: Twilio.
Email: Resend (preferred) or SendGrid (legacy fallback).

IMPORTANT: No method of the gateway should ever raise. All errors are caught,
logged and returned as a failed ``NotificationResult`` so that a notification
failure never rolls back a state transition that already happened.

Sends are synchronous and bounded by ``EXTERNAL_TIMEOUT_SECONDS``; webhook and
sweep invocations are short-lived units of work, so there is no background
thread to hand them to.
"""
import html
import logging
from dataclasses import dataclass
from typing import Optional

from fleetrelay.services.templates import get_template, render
from fleetrelay.utils.helpers import format_phone

logger = logging.getLogger(__name__)


@dataclass
class NotificationResult:
    success: bool
    message_id: Optional[str] = None
    error: Optional[str] = None


class NotificationGateway:
    """Templated SMS and email delivery."""

    def __init__(self, twilio_account_sid='', twilio_auth_token='', twilio_phone_number='',
                 resend_api_key='', sendgrid_api_key='', email_from='', email_from_name='',
                 timeout=10):
        self.twilio_account_sid = twilio_account_sid
        self.twilio_auth_token = twilio_auth_token
        self.twilio_phone_number = twilio_phone_number
        self.resend_api_key = resend_api_key
        self.sendgrid_api_key = sendgrid_api_key
        self.email_from = email_from
        self.email_from_name = email_from_name
        self.timeout = timeout
        self._twilio_client = None

    @classmethod
    def from_config(cls, config):
        return cls(
            twilio_account_sid=config.get('TWILIO_ACCOUNT_SID', ''),
            twilio_auth_token=config.get('TWILIO_AUTH_TOKEN', ''),
            twilio_phone_number=config.get('TWILIO_PHONE_NUMBER', ''),
            resend_api_key=config.get('RESEND_API_KEY', ''),
            sendgrid_api_key=config.get('SENDGRID_API_KEY', ''),
            email_from=config.get('EMAIL_FROM', ''),
            email_from_name=config.get('EMAIL_FROM_NAME', ''),
            timeout=config.get('EXTERNAL_TIMEOUT_SECONDS', 10),
        )

    # -----------------------------------------------------------------------
    # Twilio SMS
    # -----------------------------------------------------------------------
    def _get_twilio(self):
        """Lazily initialise the Twilio REST client."""
        if self._twilio_client is None and self.twilio_account_sid and self.twilio_auth_token:
            try:
                from twilio.rest import Client
                from twilio.http.http_client import TwilioHttpClient
                self._twilio_client = Client(
                    self.twilio_account_sid,
                    self.twilio_auth_token,
                    http_client=TwilioHttpClient(timeout=self.timeout),
                )
            except Exception:
                logger.exception("Failed to initialise Twilio client")
        return self._twilio_client

    def send_sms(self, to_phone, template, variables=None):
        """Render ``template`` and send it by SMS. Never raises."""
        try:
            formatted = format_phone(to_phone)
            if not formatted:
                logger.warning("send_sms called with empty/invalid phone: %r", to_phone)
                return NotificationResult(success=False, error='invalid phone')

            _, body = render(get_template(template), variables)

            client = self._get_twilio()
            if not client or not self.twilio_phone_number:
                logger.info("[SMS-DEV] To %s: %s", formatted, body)
                return NotificationResult(success=True)

            msg = client.messages.create(
                body=body,
                from_=self.twilio_phone_number,
                to=formatted,
            )
            logger.info("SMS sent to %s (SID: %s)", formatted, msg.sid)
            return NotificationResult(success=True, message_id=msg.sid)
        except Exception as e:
            logger.exception("Failed to send SMS to %s", to_phone)
            return NotificationResult(success=False, error=str(e))

    # -----------------------------------------------------------------------
    # Email
    # -----------------------------------------------------------------------
    def send_email(self, to_email, template, variables=None):
        """Render ``template`` and send it by email. Never raises."""
        try:
            if not to_email:
                return NotificationResult(success=False, error='missing recipient')

            subject, body = render(get_template(template), variables)
            html_content = '<p>{}</p>'.format(html.escape(body))

            if self.resend_api_key:
                return self._send_email_resend(to_email, subject, html_content)
            if self.sendgrid_api_key:
                return self._send_email_sendgrid(to_email, subject, html_content)

            logger.info("[EMAIL-DEV] To %s: %s: %s", to_email, subject, body[:120])
            return NotificationResult(success=True)
        except Exception as e:
            logger.exception("Failed to send email to %s", to_email)
            return NotificationResult(success=False, error=str(e))

    def _send_email_resend(self, to_email, subject, html_content):
        """Send via the Resend API."""
        try:
            import resend
            resend.api_key = self.resend_api_key

            params = {
                "from": "{} <{}>".format(self.email_from_name, self.email_from),
                "to": [to_email],
                "subject": subject,
                "html": html_content,
            }
            response = resend.Emails.send(params)
            logger.info("Email sent via Resend to %s (id: %s)", to_email, response.get("id"))
            return NotificationResult(success=True, message_id=response.get("id"))
        except Exception as e:
            logger.exception("Resend email failed for %s", to_email)
            return NotificationResult(success=False, error=str(e))

    def _send_email_sendgrid(self, to_email, subject, html_content):
        """Send via SendGrid."""
        try:
            from sendgrid import SendGridAPIClient
            from sendgrid.helpers.mail import Mail

            message = Mail(
                from_email=(self.email_from, self.email_from_name),
                to_emails=to_email,
                subject=subject,
                html_content=html_content,
            )
            response = SendGridAPIClient(self.sendgrid_api_key).send(message)
            message_id = response.headers.get('X-Message-Id') if response.headers else None
            logger.info("Email sent via SendGrid to %s (status: %s)", to_email, response.status_code)
            return NotificationResult(success=True, message_id=message_id)
        except Exception as e:
            logger.exception("SendGrid email failed for %s", to_email)
            return NotificationResult(success=False, error=str(e))

    # -----------------------------------------------------------------------
    # Operator channel
    # -----------------------------------------------------------------------
    def notify_operators(self, admin_emails, operator_phone, template, variables=None):
        """Email every admin and text the operator phone. Returns all results."""
        results = []
        for email in admin_emails or []:
            results.append(self.send_email(email, template, variables))
        if operator_phone:
            results.append(self.send_sms(operator_phone, template, variables))
        if not results:
            logger.warning("No operator channel configured for %s alert",
                           get_template(template).name)
        return results
