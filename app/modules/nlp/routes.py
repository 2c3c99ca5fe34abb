from fastapi import APIRouter, Depends
from app.database.supabase_client import get_supabase
from app.modules.nlp.schemas import (
    NlpParseRequest, NlpParseResponse, NlpCreateAgentRequest, NlpCreateAgentResponse
)
from app.modules.nlp.service import NlpService
from app.core.dependencies import get_current_user_id
from supabase import Client
from typing import Dict

router = APIRouter(prefix="/nlp", tags=["nlp"])


def get_nlp_service(supabase: Client = Depends(get_supabase)) -> NlpService:
    return NlpService(supabase)


@router.post("/parse", response_model=NlpParseResponse)
async def parse_description(
    body: NlpParseRequest,
    current_user: Dict = Depends(get_current_user_id),
    service: NlpService = Depends(get_nlp_service)
):
    """Turn a plain-language description into a validated agent configuration"""
    return service.parse(body, current_user["id"])


@router.post("/create-agent", response_model=NlpCreateAgentResponse)
async def create_agent_from_request(
    body: NlpCreateAgentRequest,
    current_user: Dict = Depends(get_current_user_id),
    service: NlpService = Depends(get_nlp_service)
):
    """Create an agent from a parsed NLP request plus optional customizations"""
    return service.create_agent(body, current_user["id"])
