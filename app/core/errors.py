from datetime import datetime, timezone
from typing import Any, Dict, Optional

from fastapi import HTTPException
from fastapi.responses import JSONResponse

from app.config import settings


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def error_body(message: str, details: Any = None) -> Dict[str, Any]:
    body = {"error": message, "timestamp": utc_now_iso()}
    if details is not None and not settings.is_production:
        body["details"] = details
    return body


def error_response(message: str, status_code: int = 500, details: Any = None,
                   headers: Optional[Dict[str, str]] = None) -> JSONResponse:
    """Standard error envelope; details are withheld in production."""
    return JSONResponse(status_code=status_code, content=error_body(message, details), headers=headers)


def http_error_content(exc: HTTPException) -> Dict[str, Any]:
    """Dict details are passed through so callers can attach codes and validation errors."""
    if isinstance(exc.detail, dict):
        content = {"timestamp": utc_now_iso(), **exc.detail}
        content.setdefault("error", "Request failed")
        return content
    return {"error": exc.detail, "detail": exc.detail, "timestamp": utc_now_iso()}
