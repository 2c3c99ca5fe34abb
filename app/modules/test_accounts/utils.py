import math
import re
from datetime import timedelta
from typing import Any, Dict, Optional

from email_validator import EmailNotValidError, validate_email

from app.config import settings
from app.core.dates import parse_timestamp, utc_now

_MOBILE = re.compile(r"mobile|android|iphone|ipad|ipod")
# Checked in order; chrome user agents also contain "safari"
_BROWSERS = (("edg", "Edge"), ("opr", "Opera"), ("opera", "Opera"), ("firefox", "Firefox"),
             ("chrome", "Chrome"), ("safari", "Safari"))


def test_link(access_token: str) -> str:
    return f"{settings.app_url.rstrip('/')}/test/{access_token}"


def expiration_date(days: int = 30) -> str:
    return (utc_now() + timedelta(days=days)).isoformat()


def is_valid_email(email: Optional[str]) -> bool:
    if not email:
        return False
    try:
        validate_email(email, check_deliverability=False)
    except EmailNotValidError:
        return False
    return True


def parse_device_info(user_agent: Optional[str]) -> Dict[str, str]:
    if not user_agent:
        return {"device_type": "unknown", "browser": "unknown"}
    ua = user_agent.lower()
    if _MOBILE.search(ua):
        device_type = "tablet" if "ipad" in ua else "mobile"
    elif "tablet" in ua:
        device_type = "tablet"
    else:
        device_type = "desktop"
    browser = next((name for token, name in _BROWSERS if token in ua), "unknown")
    return {"device_type": device_type, "browser": browser}


def expiry_fields(account: Dict[str, Any]) -> Dict[str, Any]:
    """testLink, isExpired and daysUntilExpiry for an account row"""
    expires = parse_timestamp(account.get("expires_at"))
    now = utc_now()
    return {
        "testLink": test_link(account["access_token"]),
        "isExpired": bool(expires and expires < now),
        "daysUntilExpiry": math.ceil((expires - now).total_seconds() / 86400) if expires else None,
    }
