from fastapi import APIRouter, Depends, HTTPException, Request, Response
from app.config import settings
from app.core.cache import with_cache
from app.core.rate_limit import check_rate_limit, get_client_ip, rate_limit_headers
from app.database.supabase_client import get_service_supabase
from app.modules.test_accounts.schemas import PublicTestAccountResponse, TestAction
from app.modules.test_accounts.sessions import ClientInfo, TestSessionService
from supabase import Client
from typing import Dict

router = APIRouter(prefix="/test", tags=["test-accounts"])


def get_test_session_service(supabase: Client = Depends(get_service_supabase)) -> TestSessionService:
    return TestSessionService(supabase)


def public_rate_limit(request: Request, response: Response) -> Dict[str, str]:
    result = check_rate_limit(f"test-api:{get_client_ip(request)}", settings.public_rate_limit, 60)
    headers = rate_limit_headers(result)
    if not result.allowed:
        raise HTTPException(
            status_code=429,
            detail="Too many requests. Please try again later.",
            headers=headers
        )
    response.headers.update(headers)
    return headers


@router.get("/{access_token}", response_model=PublicTestAccountResponse)
async def validate_test_link(
    access_token: str,
    response: Response,
    _: Dict = Depends(public_rate_limit),
    service: TestSessionService = Depends(get_test_session_service)
):
    """Validate a test link; the first visit activates an invited account"""
    result = service.validate(access_token)
    with_cache(response, "private, max-age=30")
    return result


@router.post("/{access_token}")
async def test_link_action(
    access_token: str,
    action: TestAction,
    request: Request,
    _: Dict = Depends(public_rate_limit),
    service: TestSessionService = Depends(get_test_session_service)
):
    """start_session, send_message or end_session for a test link"""
    client = ClientInfo(
        ip_address=get_client_ip(request),
        user_agent=request.headers.get("user-agent"),
    )
    return service.handle_action(access_token, action, client)
