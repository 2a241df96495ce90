from pydantic import BaseModel, EmailStr
from typing import Optional


class TestEmailRequest(BaseModel):
    to: EmailStr
    subject: Optional[str] = "TecBunny Store SMTP test"
    message: Optional[str] = "SMTP delivery is working."


class WhatsAppTextRequest(BaseModel):
    phone: str
    message: str


class WhatsAppTemplateRequest(BaseModel):
    phone: str
    template_name: str
    language: str = "en"
    parameters: Optional[list] = None


class DeliveryResponse(BaseModel):
    success: bool
    provider: Optional[str] = None
    provider_message_id: Optional[str] = None
