from fastapi import APIRouter, Depends
from app.database.supabase_client import get_supabase
from app.modules.sms.schemas import (
    SmsConfigCreate, SmsConfigUpdate, SmsConfigResponse, SmsConfigCreated, SmsTestRequest, SmsTestResponse
)
from app.modules.sms.service import SmsService
from app.core.dependencies import get_current_user_id, get_owned_agent
from supabase import Client
from typing import Dict

router = APIRouter(prefix="/agents", tags=["sms"])


def get_sms_service(supabase: Client = Depends(get_supabase)) -> SmsService:
    return SmsService(supabase)


@router.get("/{agent_id}/sms-config", response_model=SmsConfigResponse)
async def get_sms_config(
    agent_id: str,
    current_user: Dict = Depends(get_current_user_id),
    service: SmsService = Depends(get_sms_service),
    supabase: Client = Depends(get_supabase)
):
    """SMS bot configuration without provider secrets"""
    get_owned_agent(agent_id, current_user["id"], supabase, columns="id, user_id")
    return service.get_safe_config(agent_id)


@router.post("/{agent_id}/sms-config", response_model=SmsConfigCreated, status_code=201)
async def create_sms_config(
    agent_id: str,
    body: SmsConfigCreate,
    current_user: Dict = Depends(get_current_user_id),
    service: SmsService = Depends(get_sms_service),
    supabase: Client = Depends(get_supabase)
):
    """Connect an SMS provider; the config starts inactive and gets a secret webhook URL"""
    agent = get_owned_agent(agent_id, current_user["id"], supabase, columns="id, user_id, name")
    return service.create_config(agent, body)


@router.put("/{agent_id}/sms-config")
async def update_sms_config(
    agent_id: str,
    body: SmsConfigUpdate,
    current_user: Dict = Depends(get_current_user_id),
    service: SmsService = Depends(get_sms_service),
    supabase: Client = Depends(get_supabase)
):
    get_owned_agent(agent_id, current_user["id"], supabase, columns="id, user_id")
    return service.update_config(agent_id, body)


@router.delete("/{agent_id}/sms-config")
async def delete_sms_config(
    agent_id: str,
    current_user: Dict = Depends(get_current_user_id),
    service: SmsService = Depends(get_sms_service),
    supabase: Client = Depends(get_supabase)
):
    get_owned_agent(agent_id, current_user["id"], supabase, columns="id, user_id")
    return service.delete_config(agent_id)


@router.post("/{agent_id}/sms-config/test", response_model=SmsTestResponse)
async def test_sms_config(
    agent_id: str,
    body: SmsTestRequest,
    current_user: Dict = Depends(get_current_user_id),
    service: SmsService = Depends(get_sms_service),
    supabase: Client = Depends(get_supabase)
):
    """Check the provider credentials ("connection") or send a real test SMS ("message")"""
    agent = get_owned_agent(agent_id, current_user["id"], supabase, columns="id, user_id, name")
    return service.run_test(agent, body)
