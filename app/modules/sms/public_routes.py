import json

from fastapi import APIRouter, Depends, Request
from app.database.supabase_client import get_service_supabase
from app.modules.sms.schemas import SmsWebhookResponse
from app.modules.sms.service import SmsService, parse_incoming_sms
from supabase import Client

router = APIRouter(prefix="/sms", tags=["sms"])


def get_sms_webhook_service(supabase: Client = Depends(get_service_supabase)) -> SmsService:
    return SmsService(supabase)


async def read_payload(request: Request) -> dict:
    """Form fields (Twilio) or a JSON object (MSG91, TextLocal, Gupshup); {} when unreadable."""
    content_type = request.headers.get("content-type", "")
    if "application/x-www-form-urlencoded" in content_type or "multipart/form-data" in content_type:
        form = await request.form()
        return {k: v for k, v in form.items() if isinstance(v, str)}
    raw = await request.body()
    try:
        body = json.loads(raw) if raw else {}
    except ValueError:
        return {}
    return body if isinstance(body, dict) else {}


@router.post("/webhook/{webhook_secret}", response_model=SmsWebhookResponse)
async def receive_sms(
    webhook_secret: str,
    request: Request,
    service: SmsService = Depends(get_sms_webhook_service)
):
    """Inbound SMS from the provider; the agent's reply is sent back by SMS"""
    config = service.get_active_config_by_secret(webhook_secret)
    incoming = parse_incoming_sms(config["provider"], await read_payload(request))
    return service.handle_incoming(config, incoming)
