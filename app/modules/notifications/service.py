import logging
import re
import smtplib
from email.message import EmailMessage
from typing import Any, Dict, List, Optional

import httpx

from app.config import settings
from app.core.http import http_client

logger = logging.getLogger(__name__)

TWOFACTOR_BASE_URL = "https://2factor.in"


class NotificationError(Exception):
    """A provider refused or failed to deliver a message."""

    def __init__(self, message: str, provider: Optional[str] = None):
        super().__init__(message)
        self.provider = provider


def normalize_phone(phone: Optional[str], country_code: str = "91") -> str:
    """Digits only; 10-digit national numbers get the country code prefix."""
    digits = re.sub(r"\D+", "", phone or "")
    if not digits:
        return ""
    if len(digits) == 10:
        return f"{country_code}{digits}"
    return digits


class NotificationService:
    """Email (SMTP), SMS (2Factor) and WhatsApp (Superfone) delivery."""

    def __init__(self, http_client: Optional[httpx.Client] = None):
        self._http = http_client

    # Email

    @property
    def email_configured(self) -> bool:
        return bool(settings.smtp_host and settings.smtp_user and settings.smtp_password)

    def send_email(self, to: str, subject: str, html: str, text: Optional[str] = None) -> Dict[str, Any]:
        if not self.email_configured:
            raise NotificationError("SMTP is not configured", provider="smtp")

        msg = EmailMessage()
        msg["Subject"] = subject
        msg["From"] = settings.smtp_from
        msg["To"] = to
        msg.set_content(text or re.sub(r"<[^>]+>", "", html))
        msg.add_alternative(html, subtype="html")

        try:
            with smtplib.SMTP(settings.smtp_host, settings.smtp_port, timeout=settings.http_timeout) as server:
                server.ehlo()
                if settings.smtp_use_tls:
                    server.starttls()
                    server.ehlo()
                server.login(settings.smtp_user, settings.smtp_password)
                server.send_message(msg)
        except (smtplib.SMTPException, OSError) as e:
            logger.error(f"SMTP send to {to} failed: {e}")
            raise NotificationError(f"Email send failed: {e}", provider="smtp")

        logger.info(f"Email sent to {to}: {subject}")
        return {"success": True, "provider": "smtp"}

    # SMS

    def send_sms_otp(self, phone: str, code: str) -> Dict[str, Any]:
        """2Factor OTP endpoint: /API/V1/{key}/SMS/{phone}/{otp}/{template}"""
        if not settings.twofactor_api_key:
            raise NotificationError("Missing TWOFACTOR_API_KEY", provider="2factor")
        if not re.fullmatch(r"\d{4}", code or ""):
            raise NotificationError("2Factor requires exactly 4-digit OTP for SMS delivery", provider="2factor")
        mobile = normalize_phone(phone)
        if not mobile:
            raise NotificationError(f"Invalid recipient number: {phone}", provider="2factor")

        url = f"{TWOFACTOR_BASE_URL}/API/V1/{settings.twofactor_api_key}/SMS/{mobile}/{code}/{settings.twofactor_otp_template}"
        try:
            with http_client(self._http) as client:
                response = client.get(url)
            body = response.json()
        except (httpx.HTTPError, ValueError) as e:
            logger.error(f"2Factor request failed for {mobile}: {e}")
            raise NotificationError(f"SMS send failed: {e}", provider="2factor")

        if response.status_code != 200 or body.get("Status") != "Success":
            detail = body.get("Details") or f"HTTP {response.status_code}"
            logger.error(f"2Factor rejected OTP for {mobile}: {detail}")
            raise NotificationError(str(detail), provider="2factor")

        logger.info(f"SMS OTP sent to {mobile}")
        return {"success": True, "provider": "2factor", "provider_message_id": body.get("Details")}

    # WhatsApp

    def _superfone_headers(self) -> Dict[str, str]:
        if not settings.superfone_api_key:
            raise NotificationError("Superfone credentials not configured", provider="superfone")
        headers = {
            "x-api-key": settings.superfone_api_key,
            "Accept": "application/json",
            "Content-Type": "application/json",
        }
        if settings.superfone_cookie:
            cookie = settings.superfone_cookie
            headers["Cookie"] = cookie if "connect.sid=" in cookie else f"connect.sid={cookie}"
        return headers

    def _post_whatsapp(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        headers = self._superfone_headers()
        recipient = normalize_phone(payload.get("recipient"))
        if not recipient:
            raise NotificationError("Invalid recipient number", provider="superfone")
        payload = {**payload, "recipient": recipient}
        try:
            with http_client(self._http) as client:
                response = client.post(f"{settings.superfone_api_url}/messages", json=payload, headers=headers)
        except httpx.HTTPError as e:
            logger.error(f"Superfone request failed for {recipient}: {e}")
            raise NotificationError(f"WhatsApp send failed: {e}", provider="superfone")
        if response.status_code not in (200, 201):
            logger.error(f"Superfone rejected message for {recipient}: {response.status_code} {response.text}")
            raise NotificationError(f"WhatsApp send failed: HTTP {response.status_code}", provider="superfone")
        try:
            data = response.json()
        except ValueError:
            data = {}
        return {
            "success": True,
            "provider": "superfone-whatsapp",
            "provider_message_id": data.get("messageId") or data.get("id"),
        }

    def send_whatsapp_template(
        self,
        phone: str,
        template_name: str,
        components: Optional[List[Dict[str, Any]]] = None,
        language: str = "en"
    ) -> Dict[str, Any]:
        result = self._post_whatsapp({
            "templateName": template_name,
            "language": language,
            "recipient": phone,
            "components": components or [],
            "type": "template",
        })
        logger.info(f"WhatsApp template {template_name} sent to {phone}")
        return result

    def send_whatsapp_text(self, phone: str, message: str) -> Dict[str, Any]:
        return self._post_whatsapp({"recipient": phone, "message": message, "type": "text"})

    def send_whatsapp_otp(self, phone: str, code: str) -> Dict[str, Any]:
        parameters = [{"type": "text", "text": code}]
        return self.send_whatsapp_template(
            phone,
            settings.superfone_otp_template,
            components=[
                {"type": "body", "parameters": parameters},
                {"type": "button", "sub_type": "url", "index": 0, "parameters": parameters},
            ],
        )

    def notify_best_effort(self, channel: str, **kwargs) -> bool:
        """Send without failing the caller; errors are logged."""
        try:
            if channel == "email":
                self.send_email(**kwargs)
            elif channel == "whatsapp":
                self.send_whatsapp_text(**kwargs)
            else:
                raise NotificationError(f"Unsupported channel: {channel}")
            return True
        except NotificationError as e:
            logger.warning(f"Best-effort {channel} notification failed: {e}")
            return False
