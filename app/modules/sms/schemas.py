from pydantic import BaseModel, Field
from typing import Optional, Dict, Any


class SmsSettings(BaseModel):
    autoReply: Optional[bool] = None
    greetingMessage: Optional[str] = None
    fallbackMessage: Optional[str] = None
    maxResponseLength: Optional[int] = Field(None, ge=1)
    rateLimit: Optional[int] = Field(None, ge=1)


class SmsConfigCreate(BaseModel):
    provider: Optional[str] = None
    # Provider credentials in the dashboard's naming, e.g. {"accountSid", "authToken", "phoneNumber"} for Twilio
    config: Dict[str, Optional[str]] = Field(default_factory=dict)
    settings: Optional[SmsSettings] = None


class SmsConfigUpdate(BaseModel):
    config: Optional[Dict[str, Optional[str]]] = None
    settings: Optional[SmsSettings] = None
    isActive: Optional[bool] = None


class SmsConfigResponse(BaseModel):
    """Stored configuration without provider secrets."""
    id: str
    agent_id: str
    provider: str
    is_active: bool
    webhook_url: Optional[str] = None
    twilio_phone_number: Optional[str] = None
    msg91_sender_id: Optional[str] = None
    textlocal_sender: Optional[str] = None
    auto_reply_enabled: Optional[bool] = None
    greeting_message: Optional[str] = None
    fallback_message: Optional[str] = None
    max_response_length: Optional[int] = None
    rate_limit_per_number: Optional[int] = None
    total_messages_received: Optional[int] = None
    total_messages_sent: Optional[int] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None


class SmsConfigSummary(BaseModel):
    id: str
    webhook_url: str
    provider: str


class SmsConfigCreated(BaseModel):
    success: bool = True
    config: SmsConfigSummary
    message: str


class SmsTestRequest(BaseModel):
    testType: str = "connection"
    testPhoneNumber: Optional[str] = None


class SmsTestResponse(BaseModel):
    success: bool = True
    message: str
    provider: Optional[str] = None
    details: Optional[Dict[str, Any]] = None
    messageSid: Optional[str] = None
    phoneNumber: Optional[str] = None


class IncomingSms(BaseModel):
    phone_number: str
    body: str
    message_sid: Optional[str] = None
    country_code: Optional[str] = None


class SmsWebhookResponse(BaseModel):
    success: bool = True
    message: str
    responseTime: Optional[int] = None
    apiKeySource: Optional[str] = None
