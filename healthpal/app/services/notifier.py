"""
Email and SMS adapters.

Both channels report {"success": bool, ...} and never raise on delivery
problems; an unconfigured channel reports success=False and logs a warning.
"""

import asyncio
import logging
import smtplib
from email.message import EmailMessage
from typing import Any, Dict, Optional

import httpx

from healthpal.app.core.config import Settings

logger = logging.getLogger(__name__)


class EmailSender:
    """SMTP sender; the blocking smtplib session runs in a worker thread."""

    def __init__(
        self,
        host: Optional[str],
        port: int = 587,
        user: Optional[str] = None,
        password: Optional[str] = None,
        sender: str = "noreply@healthpal.io",
        timeout: float = 5.0,
    ):
        self.host = host
        self.port = port
        self.user = user
        self.password = password
        self.sender = sender
        self.timeout = timeout

    @property
    def configured(self) -> bool:
        return bool(self.host)

    def _send_sync(self, to: str, subject: str, html: str) -> None:
        message = EmailMessage()
        message["From"] = self.sender
        message["To"] = to
        message["Subject"] = subject
        message.set_content("This message requires an HTML capable mail client.")
        message.add_alternative(html, subtype="html")

        with smtplib.SMTP(self.host, self.port, timeout=self.timeout) as server:
            server.ehlo()
            if server.has_extn("starttls"):
                server.starttls()
                server.ehlo()
            if self.user and self.password:
                server.login(self.user, self.password)
            server.send_message(message)

    async def send_email(self, to: str, subject: str, html: str) -> Dict[str, Any]:
        if not self.configured:
            logger.warning("Email not sent to %s: email service not configured", to)
            return {"success": False, "skipped": True, "error": "Email service not configured"}

        try:
            await asyncio.to_thread(self._send_sync, to, subject, html)
        except (smtplib.SMTPException, OSError) as e:
            logger.error("Email send failed to %s: %s", to, e)
            return {"success": False, "error": str(e)}

        logger.info("Email sent to %s: %s", to, subject)
        return {"success": True}


class SmsSender:
    """Twilio Messages REST API client."""

    def __init__(
        self,
        account_sid: Optional[str],
        auth_token: Optional[str],
        from_number: str,
        timeout: float = 5.0,
        base_url: str = "https://api.twilio.com/2010-04-01",
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.account_sid = account_sid
        self.auth_token = auth_token
        self.from_number = from_number
        self._timeout = timeout
        self._base = base_url.rstrip("/")
        self._transport = transport

    @property
    def configured(self) -> bool:
        return bool(self.account_sid and self.auth_token)

    async def send_sms(self, phone: str, message: str) -> Dict[str, Any]:
        if not self.configured:
            logger.warning("SMS not sent to %s: Twilio not configured", phone)
            return {"success": False, "skipped": True, "error": "Twilio not configured"}

        url = f"{self._base}/Accounts/{self.account_sid}/Messages.json"
        try:
            async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
                r = await client.post(
                    url,
                    auth=(self.account_sid, self.auth_token),
                    data={"To": phone, "From": self.from_number, "Body": message},
                )
                r.raise_for_status()
                body = r.json()
        except httpx.HTTPError as e:
            logger.error("SMS send failed to %s: %s", phone, e)
            return {"success": False, "error": str(e)}

        logger.info("SMS sent to %s: %s", phone, body.get("sid"))
        return {"success": True, "message_id": body.get("sid"), "status": body.get("status")}


class Notifier:
    """
    Notification sender used by the dispatcher.

    Holds the HealthPal message templates on top of the raw channels.
    """

    def __init__(self, email: EmailSender, sms: SmsSender):
        self.email = email
        self.sms = sms

    async def send_email(self, to: str, subject: str, html: str) -> Dict[str, Any]:
        return await self.email.send_email(to, subject, html)

    async def send_sms(self, phone: str, message: str) -> Dict[str, Any]:
        return await self.sms.send_sms(phone, message)

    async def send_donation_confirmation_email(
        self, to: str, donor_name: str, amount, patient_name: str, receipt_url: Optional[str] = None
    ) -> Dict[str, Any]:
        receipt = f'<p><a href="{receipt_url}">View Receipt</a></p>' if receipt_url else ""
        html = f"""
            <h2>Thank You for Your Donation!</h2>
            <p>Hi {donor_name},</p>
            <p>We received your generous donation of <strong>${amount}</strong> to help
            <strong>{patient_name}</strong> with their medical treatment.</p>
            <div style="background-color: #f0f0f0; padding: 15px; border-radius: 5px;">
              <p><strong>Donation Amount:</strong> ${amount}</p>
              <p><strong>Donation Status:</strong> Completed</p>
              {receipt}
            </div>
            <p>Best regards,<br>HealthPal Team</p>
        """
        return await self.send_email(to, "Donation Confirmed - Thank You!", html)

    async def send_donation_confirmation_sms(self, phone: str, amount, patient_name: str) -> Dict[str, Any]:
        message = (
            f"HealthPal: Your donation of ${amount} to help {patient_name} has been confirmed. "
            "Thank you for your generosity!"
        )
        return await self.send_sms(phone, message)

    async def send_sponsorship_funded_email(
        self, to: str, patient_name: str, treatment_type: str, total_raised
    ) -> Dict[str, Any]:
        html = f"""
            <h2>Great News! Your Sponsorship is Fully Funded!</h2>
            <p>Hi {patient_name},</p>
            <p>Your <strong>{treatment_type}</strong> sponsorship has reached its goal!</p>
            <div style="background-color: #f0f0f0; padding: 15px; border-radius: 5px;">
              <p><strong>Total Raised:</strong> ${total_raised}</p>
              <p><strong>Status:</strong> Fully Funded</p>
            </div>
            <p>The HealthPal team will now work with you to process your treatment.</p>
            <p>With gratitude,<br>HealthPal Team</p>
        """
        return await self.send_email(to, "Your Sponsorship is Fully Funded!", html)

    async def send_consultation_booking_email(
        self, to: str, full_name: str, doctor_name: str, consultation_date: str, consultation_id: int
    ) -> Dict[str, Any]:
        html = f"""
            <h2>Consultation Booked!</h2>
            <p>Hi {full_name},</p>
            <p>Your consultation has been booked with <strong>Dr. {doctor_name}</strong>.</p>
            <div style="background-color: #f0f0f0; padding: 15px; border-radius: 5px;">
              <p><strong>Date &amp; Time:</strong> {consultation_date}</p>
              <p><strong>Consultation ID:</strong> {consultation_id}</p>
            </div>
            <p>Best regards,<br>HealthPal Team</p>
        """
        return await self.send_email(to, "Consultation Confirmed", html)


def build_notifier(settings: Settings) -> Notifier:
    return Notifier(
        email=EmailSender(
            host=settings.smtp_host,
            port=settings.smtp_port,
            user=settings.smtp_user,
            password=settings.smtp_password,
            sender=settings.email_from,
            timeout=settings.adapter_timeout_seconds,
        ),
        sms=SmsSender(
            account_sid=settings.twilio_account_sid,
            auth_token=settings.twilio_auth_token,
            from_number=settings.twilio_from_number,
            timeout=settings.adapter_timeout_seconds,
        ),
    )
