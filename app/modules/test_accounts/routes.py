from fastapi import APIRouter, Depends, Response
from app.database.supabase_client import get_supabase
from app.modules.test_accounts.schemas import (
    TestAccountCreate, TestAccountUpdate, TestAccountListResponse, TestAccountCreateResponse,
    TestAccountResponse
)
from app.modules.test_accounts.service import TestAccountService
from app.core.cache import with_cache
from app.core.dependencies import get_current_user_id, get_owned_agent
from supabase import Client
from typing import Dict

router = APIRouter(prefix="/agents", tags=["test-accounts"])


def get_test_account_service(supabase: Client = Depends(get_supabase)) -> TestAccountService:
    return TestAccountService(supabase)


@router.get("/{agent_id}/test-accounts", response_model=TestAccountListResponse)
async def list_test_accounts(
    agent_id: str,
    response: Response,
    current_user: Dict = Depends(get_current_user_id),
    service: TestAccountService = Depends(get_test_account_service),
    supabase: Client = Depends(get_supabase)
):
    """List an agent's test accounts with links and usage stats"""
    get_owned_agent(agent_id, current_user["id"], supabase, columns="id, user_id")
    with_cache(response, "private, max-age=10")
    return service.list_accounts(agent_id)


@router.post("/{agent_id}/test-accounts", response_model=TestAccountCreateResponse, status_code=201)
async def create_test_account(
    agent_id: str,
    data: TestAccountCreate,
    current_user: Dict = Depends(get_current_user_id),
    service: TestAccountService = Depends(get_test_account_service),
    supabase: Client = Depends(get_supabase)
):
    """Create a test account and optionally email the invitation"""
    agent = get_owned_agent(agent_id, current_user["id"], supabase, columns="id, name, user_id")
    return service.create_account(agent, current_user, data)


@router.get("/{agent_id}/test-accounts/{account_id}", response_model=TestAccountResponse)
async def get_test_account(
    agent_id: str,
    account_id: str,
    current_user: Dict = Depends(get_current_user_id),
    service: TestAccountService = Depends(get_test_account_service)
):
    """Test account detail with session stats"""
    return service.get_account(agent_id, account_id, current_user["id"])


@router.patch("/{agent_id}/test-accounts/{account_id}", response_model=TestAccountResponse)
async def update_test_account(
    agent_id: str,
    account_id: str,
    data: TestAccountUpdate,
    current_user: Dict = Depends(get_current_user_id),
    service: TestAccountService = Depends(get_test_account_service)
):
    return service.update_account(agent_id, account_id, current_user["id"], data)


@router.delete("/{agent_id}/test-accounts/{account_id}")
async def delete_test_account(
    agent_id: str,
    account_id: str,
    current_user: Dict = Depends(get_current_user_id),
    service: TestAccountService = Depends(get_test_account_service)
):
    """Delete a test account with its sessions, analytics and invitations"""
    return service.delete_account(agent_id, account_id, current_user["id"])
