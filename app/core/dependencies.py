"""
Core dependencies for route protection and agent ownership checks
"""

from fastapi import Depends, HTTPException, Security, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from app.database.supabase_client import get_supabase, fetch_single
from app.modules.auth.service import AuthService
from supabase import Client
from typing import Optional, Dict, Any
import logging

logger = logging.getLogger(__name__)

security = HTTPBearer()
optional_security = HTTPBearer(auto_error=False)


def get_auth_service(supabase: Client = Depends(get_supabase)) -> AuthService:
    return AuthService(supabase)


def get_current_user_id(
    credentials: HTTPAuthorizationCredentials = Security(security),
    auth_service: AuthService = Depends(get_auth_service)
) -> dict:
    """Extract current user info from JWT token"""
    token = credentials.credentials
    user_data = auth_service.get_current_user(token)
    return user_data


def get_optional_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Security(optional_security),
    auth_service: AuthService = Depends(get_auth_service)
) -> Optional[dict]:
    """Current user when a valid bearer token is sent, otherwise None (public widgets)."""
    if credentials is None:
        return None
    try:
        return auth_service.get_current_user(credentials.credentials)
    except HTTPException:
        return None


def get_owned_agent(agent_id: str, user_id: str, supabase: Client, columns: str = "*") -> Dict[str, Any]:
    """Return the agent row if it belongs to user_id, else 404."""
    agent = fetch_single(
        supabase.table("agents")
        .select(columns)
        .eq("id", agent_id)
        .eq("user_id", user_id)
    )
    if not agent:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Agent not found or access denied"
        )
    return agent


def get_agent(agent_id: str, supabase: Client, columns: str = "*") -> Optional[Dict[str, Any]]:
    return fetch_single(supabase.table("agents").select(columns).eq("id", agent_id))
