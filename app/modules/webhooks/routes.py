from fastapi import APIRouter, Depends, Query, Request, Response
from app.database.supabase_client import get_supabase
from app.modules.webhooks.schemas import (
    WebhookCreate, WebhookUpdate, WebhookBulkAction, WebhookListResponse, WebhookResponse,
    InvocationListResponse, WebhookStatsResponse
)
from app.modules.webhooks.service import WebhookService
from app.core.cache import with_cache
from app.core.dependencies import get_current_user_id, get_owned_agent
from supabase import Client
from typing import Dict, Optional

router = APIRouter(tags=["webhooks"])


def get_webhook_service(supabase: Client = Depends(get_supabase)) -> WebhookService:
    return WebhookService(supabase)


@router.get("/agents/{agent_id}/webhook", response_model=WebhookListResponse)
async def list_webhooks(
    agent_id: str,
    response: Response,
    current_user: Dict = Depends(get_current_user_id),
    service: WebhookService = Depends(get_webhook_service),
    supabase: Client = Depends(get_supabase)
):
    """List an agent's webhooks"""
    agent = get_owned_agent(agent_id, current_user["id"], supabase, columns="id, name, user_id")
    with_cache(response, "private, max-age=10")
    return service.list_webhooks(agent)


@router.post("/agents/{agent_id}/webhook", response_model=WebhookResponse, status_code=201)
async def create_webhook(
    agent_id: str,
    webhook: WebhookCreate,
    current_user: Dict = Depends(get_current_user_id),
    service: WebhookService = Depends(get_webhook_service),
    supabase: Client = Depends(get_supabase)
):
    """Create a webhook (key, URL and optional bearer token are generated)"""
    get_owned_agent(agent_id, current_user["id"], supabase, columns="id, user_id")
    return service.create_webhook(agent_id, webhook)


@router.patch("/agents/{agent_id}/webhook")
async def bulk_update_webhooks(
    agent_id: str,
    body: WebhookBulkAction,
    current_user: Dict = Depends(get_current_user_id),
    service: WebhookService = Depends(get_webhook_service),
    supabase: Client = Depends(get_supabase)
):
    """Activate or deactivate all of an agent's webhooks"""
    get_owned_agent(agent_id, current_user["id"], supabase, columns="id, user_id")
    return service.bulk_update(agent_id, body.action)


@router.get("/agents/{agent_id}/webhook/stats", response_model=WebhookStatsResponse)
async def webhook_stats(
    agent_id: str,
    response: Response,
    current_user: Dict = Depends(get_current_user_id),
    service: WebhookService = Depends(get_webhook_service),
    supabase: Client = Depends(get_supabase)
):
    get_owned_agent(agent_id, current_user["id"], supabase, columns="id, user_id")
    with_cache(response, "private, max-age=30")
    return service.get_stats(agent_id)


@router.get("/agent-webhooks/{webhook_id}", response_model=WebhookResponse)
async def get_webhook(
    webhook_id: str,
    response: Response,
    current_user: Dict = Depends(get_current_user_id),
    service: WebhookService = Depends(get_webhook_service)
):
    webhook = service.get_owned_webhook(webhook_id, current_user["id"])
    with_cache(response, "private, max-age=10")
    return WebhookResponse(webhook=webhook)


@router.patch("/agent-webhooks/{webhook_id}", response_model=WebhookResponse)
async def update_webhook(
    webhook_id: str,
    update: WebhookUpdate,
    current_user: Dict = Depends(get_current_user_id),
    service: WebhookService = Depends(get_webhook_service)
):
    webhook = service.get_owned_webhook(webhook_id, current_user["id"])
    return service.update_webhook(webhook, update)


@router.delete("/agent-webhooks/{webhook_id}")
async def delete_webhook(
    webhook_id: str,
    current_user: Dict = Depends(get_current_user_id),
    service: WebhookService = Depends(get_webhook_service)
):
    service.get_owned_webhook(webhook_id, current_user["id"])
    return service.delete_webhook(webhook_id)


@router.post("/agent-webhooks/{webhook_id}/regenerate", response_model=WebhookResponse)
async def regenerate_webhook(
    webhook_id: str,
    current_user: Dict = Depends(get_current_user_id),
    service: WebhookService = Depends(get_webhook_service)
):
    """Issue a new key and token; the previous ones are invalidated"""
    webhook = service.get_owned_webhook(webhook_id, current_user["id"])
    return service.regenerate_keys(webhook)


@router.get("/agent-webhooks/{webhook_id}/invocations", response_model=InvocationListResponse)
async def list_invocations(
    webhook_id: str,
    request: Request,
    response: Response,
    limit: int = 50,
    offset: int = 0,
    sort: str = "desc",
    status: Optional[str] = None,
    current_user: Dict = Depends(get_current_user_id),
    service: WebhookService = Depends(get_webhook_service)
):
    """Invocation log, paginated"""
    service.get_owned_webhook(webhook_id, current_user["id"])
    result = service.list_invocations(webhook_id, request.url.path, limit, offset, sort, status)
    with_cache(response, "private, max-age=5")
    response.headers["X-Total-Count"] = str(result.pagination.total)
    return result
