import json

from fastapi import APIRouter, Depends, Request
from app.database.supabase_client import get_service_supabase
from app.core.rate_limit import get_client_ip
from app.modules.webhooks.invoker import InvocationRequest, WebhookInvoker
from app.modules.webhooks.schemas import WebhookInvokeResponse
from supabase import Client

router = APIRouter(prefix="/webhooks", tags=["webhooks"])


def get_webhook_invoker(supabase: Client = Depends(get_service_supabase)) -> WebhookInvoker:
    return WebhookInvoker(supabase)


@router.post("/{key}", response_model=WebhookInvokeResponse)
async def invoke_webhook(
    key: str,
    request: Request,
    invoker: WebhookInvoker = Depends(get_webhook_invoker)
):
    """Public webhook endpoint: send {"message", "sessionId"?} and get the agent's reply"""
    raw = await request.body()
    try:
        body = json.loads(raw) if raw else None
    except ValueError:
        body = None
    if body is not None and not isinstance(body, dict):
        body = None
    return invoker.invoke(key, InvocationRequest(
        method=request.method,
        headers=dict(request.headers),
        ip_address=get_client_ip(request),
        user_agent=request.headers.get("user-agent", "unknown"),
        body=body,
    ))
