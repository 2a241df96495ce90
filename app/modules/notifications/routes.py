from fastapi import APIRouter, Depends, HTTPException
from app.core.dependencies import require_admin
from app.modules.notifications.schemas import (
    TestEmailRequest, WhatsAppTextRequest, WhatsAppTemplateRequest, DeliveryResponse
)
from app.modules.notifications.service import NotificationService, NotificationError
from app.modules.notifications.templates import message_email
from typing import Dict

router = APIRouter(prefix="/notifications", tags=["notifications"])


def get_notification_service() -> NotificationService:
    return NotificationService()


@router.post("/email/test", response_model=DeliveryResponse)
async def send_test_email(
    body: TestEmailRequest,
    current: Dict = Depends(require_admin),
    service: NotificationService = Depends(get_notification_service)
):
    """Send a test email through the configured SMTP server"""
    try:
        return service.send_email(body.to, body.subject, message_email(body.message), text=body.message)
    except NotificationError as e:
        raise HTTPException(status_code=503, detail=str(e))


@router.post("/whatsapp/text", response_model=DeliveryResponse)
async def send_whatsapp_text(
    body: WhatsAppTextRequest,
    current: Dict = Depends(require_admin),
    service: NotificationService = Depends(get_notification_service)
):
    """Send a free-form WhatsApp message"""
    try:
        return service.send_whatsapp_text(body.phone, body.message)
    except NotificationError as e:
        raise HTTPException(status_code=502, detail=str(e))


@router.post("/whatsapp/template", response_model=DeliveryResponse)
async def send_whatsapp_template(
    body: WhatsAppTemplateRequest,
    current: Dict = Depends(require_admin),
    service: NotificationService = Depends(get_notification_service)
):
    """Send a WhatsApp template message with positional body parameters"""
    components = []
    if body.parameters:
        components.append({
            "type": "body",
            "parameters": [{"type": "text", "text": str(p)} for p in body.parameters]
        })
    try:
        return service.send_whatsapp_template(body.phone, body.template_name, components, body.language)
    except NotificationError as e:
        raise HTTPException(status_code=502, detail=str(e))
