from fastapi import APIRouter, Depends, File, Form, UploadFile
from app.database.supabase_client import get_supabase
from app.modules.knowledge.schemas import (
    KnowledgeUploadResponse, KnowledgeListResponse, KnowledgeStatsResponse, KnowledgeContentUpdate,
    KnowledgeInstructionRequest, KnowledgeSearchRequest, KnowledgeSearchResponse, UrlSummaryRequest, UrlSummaryResponse
)
from app.modules.knowledge.service import KnowledgeService
from app.core.dependencies import get_current_user_id, get_optional_user, get_owned_agent
from supabase import Client
from typing import Dict, Optional

router = APIRouter(prefix="/agents", tags=["knowledge"])
scrape_router = APIRouter(tags=["knowledge"])


def get_knowledge_service(supabase: Client = Depends(get_supabase)) -> KnowledgeService:
    return KnowledgeService(supabase)


@router.post("/{agent_id}/knowledge/upload", response_model=KnowledgeUploadResponse)
async def upload_knowledge(
    agent_id: str,
    type: Optional[str] = Form(None),
    file: Optional[UploadFile] = File(None),
    url: Optional[str] = Form(None),
    name: Optional[str] = Form(None),
    current_user: Dict = Depends(get_current_user_id),
    service: KnowledgeService = Depends(get_knowledge_service),
    supabase: Client = Depends(get_supabase)
):
    """Add a file (PDF, TXT, MD) or web page to the agent's knowledge base"""
    get_owned_agent(agent_id, current_user["id"], supabase, columns="id, user_id")
    data = await file.read() if file is not None else None
    return service.upload_source(
        agent_id,
        type,
        filename=file.filename if file is not None else None,
        content_type=file.content_type if file is not None else None,
        data=data,
        url=url,
        name=name,
    )


@router.get("/{agent_id}/knowledge", response_model=KnowledgeListResponse)
async def list_knowledge(
    agent_id: str,
    current_user: Dict = Depends(get_current_user_id),
    service: KnowledgeService = Depends(get_knowledge_service),
    supabase: Client = Depends(get_supabase)
):
    """List knowledge sources with vector statistics"""
    get_owned_agent(agent_id, current_user["id"], supabase, columns="id, user_id")
    return service.list_sources(agent_id)


@router.post("/{agent_id}/knowledge/search", response_model=KnowledgeSearchResponse)
async def search_knowledge(
    agent_id: str,
    request: KnowledgeSearchRequest,
    current_user: Optional[Dict] = Depends(get_optional_user),
    service: KnowledgeService = Depends(get_knowledge_service)
):
    """Semantic search over the agent's knowledge (owner or public agent)"""
    return service.search(agent_id, request, current_user["id"] if current_user else None)


@router.get("/{agent_id}/knowledge/search", response_model=KnowledgeStatsResponse)
async def knowledge_stats(
    agent_id: str,
    current_user: Dict = Depends(get_current_user_id),
    service: KnowledgeService = Depends(get_knowledge_service),
    supabase: Client = Depends(get_supabase)
):
    get_owned_agent(agent_id, current_user["id"], supabase, columns="id, user_id")
    return service.get_stats(agent_id)


@router.put("/{agent_id}/knowledge/{source_id}", response_model=KnowledgeUploadResponse)
async def update_knowledge(
    agent_id: str,
    source_id: str,
    update: KnowledgeContentUpdate,
    current_user: Dict = Depends(get_current_user_id),
    service: KnowledgeService = Depends(get_knowledge_service),
    supabase: Client = Depends(get_supabase)
):
    """Replace a source's content and rebuild its vectors"""
    get_owned_agent(agent_id, current_user["id"], supabase, columns="id, user_id")
    return service.update_source(agent_id, source_id, update.content, update.name)


@router.delete("/{agent_id}/knowledge/{source_id}")
async def delete_knowledge(
    agent_id: str,
    source_id: str,
    current_user: Dict = Depends(get_current_user_id),
    service: KnowledgeService = Depends(get_knowledge_service),
    supabase: Client = Depends(get_supabase)
):
    get_owned_agent(agent_id, current_user["id"], supabase, columns="id, user_id")
    return service.delete_source(agent_id, source_id)


@router.post("/{agent_id}/knowledge-update")
async def add_instruction(
    agent_id: str,
    request: KnowledgeInstructionRequest,
    current_user: Dict = Depends(get_current_user_id),
    service: KnowledgeService = Depends(get_knowledge_service),
    supabase: Client = Depends(get_supabase)
):
    """Convert owner instructions into a structured knowledge entry"""
    agent = get_owned_agent(
        agent_id, current_user["id"], supabase, columns="id, user_id, api_key_id, use_platform_key"
    )
    return service.add_instruction(agent, request.instructions)


@scrape_router.post("/url-scrape_summarize", response_model=UrlSummaryResponse)
async def summarize_url(
    body: UrlSummaryRequest,
    current_user: Dict = Depends(get_current_user_id),
    service: KnowledgeService = Depends(get_knowledge_service)
):
    """Scrape a page and return its readable text plus a cleaned-up version for training"""
    return service.summarize_url(body.url)
