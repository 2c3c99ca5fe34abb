from fastapi import APIRouter, Depends, Query, Response
from app.database.supabase_client import get_supabase
from app.modules.chat.schemas import (
    ChatRequest, ChatResponse, ChatHistoryResponse, ChatClearResponse, SandboxRequest, SandboxResponse
)
from app.modules.chat.service import ChatService
from app.core.cache import with_cache
from app.core.dependencies import get_current_user_id, get_optional_user, get_owned_agent
from supabase import Client
from typing import Dict, Optional

router = APIRouter(prefix="/agents", tags=["chat"])


def get_chat_service(supabase: Client = Depends(get_supabase)) -> ChatService:
    return ChatService(supabase)


@router.post("/{agent_id}/chat", response_model=ChatResponse)
async def send_message(
    agent_id: str,
    request: ChatRequest,
    response: Response,
    current_user: Optional[Dict] = Depends(get_optional_user),
    service: ChatService = Depends(get_chat_service)
):
    """Send a message to an agent and get its reply"""
    body, headers = service.send_message(agent_id, request, current_user["id"] if current_user else None)
    response.headers.update(headers)
    return body


@router.get("/{agent_id}/chat", response_model=ChatHistoryResponse)
async def get_history(
    agent_id: str,
    response: Response,
    sessionId: Optional[str] = None,
    limit: int = Query(50, ge=1),
    service: ChatService = Depends(get_chat_service)
):
    """Conversation history for one session, newest first"""
    history = service.get_history(agent_id, sessionId, limit)
    with_cache(response, "private, max-age=10")
    response.headers["X-Total-Count"] = str(history.count)
    return history


@router.delete("/{agent_id}/chat", response_model=ChatClearResponse)
async def clear_history(
    agent_id: str,
    sessionId: Optional[str] = None,
    service: ChatService = Depends(get_chat_service)
):
    return service.clear_history(agent_id, sessionId)


@router.post("/{agent_id}/sandbox_testing", response_model=SandboxResponse)
async def sandbox_message(
    agent_id: str,
    request: SandboxRequest,
    response: Response,
    current_user: Dict = Depends(get_current_user_id),
    service: ChatService = Depends(get_chat_service),
    supabase: Client = Depends(get_supabase)
):
    """Try an agent out without saving the conversation"""
    agent = get_owned_agent(agent_id, current_user["id"], supabase)
    body, headers = service.sandbox_message(agent, request)
    response.headers.update(headers)
    return body
