import logging
from typing import Any, Dict, Optional

import httpx
from openai import OpenAI

from app.config import settings

logger = logging.getLogger(__name__)

_CLIENTS: Dict[str, OpenAI] = {}


class MissingAPIKeyError(Exception):
    pass


def get_openai_client(api_key: str = None) -> OpenAI:
    """One OpenAI client per key; defaults to the platform key."""
    key = api_key or settings.openai_api_key
    if not key:
        raise MissingAPIKeyError("No OpenAI API key available")
    if key not in _CLIENTS:
        _CLIENTS[key] = OpenAI(api_key=key)
    return _CLIENTS[key]


def reset_openai_clients() -> None:
    _CLIENTS.clear()


class ApiKeyResolution:
    def __init__(self, api_key: str, source: str, provider: str = "openai"):
        self.api_key = api_key
        self.source = source  # "user" or "platform"
        self.provider = provider

    @property
    def is_platform(self) -> bool:
        return self.source == "platform"


def _platform_key(reason: str) -> ApiKeyResolution:
    if not settings.openai_api_key:
        raise MissingAPIKeyError("No API key available. Please configure your API key in settings.")
    logger.info(f"Using platform API key ({reason})")
    return ApiKeyResolution(settings.openai_api_key, "platform")


def decrypt_user_key(key_id: str) -> Optional[str]:
    """Ask the api-keys edge function for the plaintext of a stored user key."""
    if not settings.supabase_service_role_key:
        return None
    try:
        response = httpx.get(
            f"{settings.supabase_url}/functions/v1/api-keys",
            params={"action": "decrypt", "keyId": key_id},
            headers={"Authorization": f"Bearer {settings.supabase_service_role_key}"},
            timeout=10.0,
        )
    except httpx.HTTPError as e:
        logger.warning(f"Key decryption request failed: {e}")
        return None
    if response.status_code != 200:
        logger.warning(f"Key decryption failed with status {response.status_code}")
        return None
    return response.json().get("apiKey")


def resolve_api_key(supabase, agent: Dict[str, Any]) -> ApiKeyResolution:
    """User key when the agent has an active one that decrypts, else the platform key."""
    if agent.get("use_platform_key") or not agent.get("api_key_id"):
        return _platform_key("agent configured for platform key")
    result = supabase.table("user_api_keys")\
        .select("id, provider, is_active")\
        .eq("id", agent["api_key_id"])\
        .eq("user_id", agent.get("user_id"))\
        .eq("is_active", True)\
        .execute()
    if not result.data:
        return _platform_key("user key not found")
    key_row = result.data[0]
    api_key = decrypt_user_key(key_row["id"])
    if not api_key:
        return _platform_key("decryption failed")
    provider = key_row.get("provider") or "openai"
    if provider != "openai":
        raise MissingAPIKeyError(f"Provider {provider} not yet supported. Please use OpenAI.")
    return ApiKeyResolution(api_key, "user", provider)
