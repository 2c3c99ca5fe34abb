"""Common plumbing for third-party integrations: HTTP, client-side rate limiting, errors, webhooks."""
import json
import logging
import time
from collections import deque
from typing import Any, Callable, Dict, Iterable, Optional, Tuple

import httpx

from app.core.dates import utc_now

logger = logging.getLogger(__name__)


class IntegrationError(Exception):
    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class BaseIntegration:
    base_url: Optional[str] = None
    # Public operations callable through IntegrationManager.execute
    actions: Tuple[str, ...] = ()
    max_requests = 100
    window_seconds = 60
    timeout = 30.0

    def __init__(self, config: Optional[Dict[str, Any]] = None, http_client: Optional[httpx.Client] = None):
        self.config = config or {}
        self.credentials: Optional[Dict[str, Any]] = None
        self.http = http_client or httpx.Client(timeout=self.timeout)
        self._requests: deque = deque()

    def initialize(self, credentials: Dict[str, Any]) -> "BaseIntegration":
        self.credentials = credentials
        return self

    def close(self) -> None:
        self.http.close()

    def __enter__(self) -> "BaseIntegration":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    def test_connection(self, credentials: Dict[str, Any]) -> Dict[str, Any]:
        raise NotImplementedError("test_connection() must be implemented by subclass")

    def get_auth_headers(self) -> Dict[str, str]:
        return {}

    def require_credentials(self) -> Dict[str, Any]:
        if not self.credentials:
            raise IntegrationError("Credentials not initialized")
        return self.credentials

    def make_request(self, method: str = "GET", endpoint: str = "", headers: Optional[Dict[str, str]] = None,
                     body: Any = None, params: Optional[Dict[str, Any]] = None) -> Any:
        """Authenticated request; returns parsed JSON (or text) and raises IntegrationError on failure."""
        self.check_rate_limit()
        url = endpoint if endpoint.startswith("http") or not self.base_url else f"{self.base_url}{endpoint}"
        request_headers = {"Content-Type": "application/json", **self.get_auth_headers(), **(headers or {})}
        content = None
        if body is not None and method.upper() != "GET":
            content = body if isinstance(body, str) else json.dumps(body)
        try:
            response = self.http.request(method, url, headers=request_headers, content=content, params=params)
            self.track_request()
            if "application/json" in response.headers.get("content-type", ""):
                data = response.json()
            else:
                data = response.text
            if response.is_error:
                raise IntegrationError(
                    f"API request failed: {response.status_code} {response.reason_phrase} - {json.dumps(data)}",
                    status_code=response.status_code,
                )
            return data
        except (IntegrationError, httpx.HTTPError) as e:
            logger.error(f"Integration request error ({method} {endpoint}): {e}")
            raise self.handle_error(e) from e

    def handle_error(self, error: Exception) -> IntegrationError:
        message = str(error)
        status_code = getattr(error, "status_code", None)
        lowered = message.lower()
        if "rate limit" in lowered or status_code == 429:
            return IntegrationError("Rate limit exceeded. Please try again later.", status_code)
        if "unauthorized" in lowered or status_code == 401:
            return IntegrationError("Authentication failed. Please check your credentials.", status_code)
        if status_code == 404:
            return IntegrationError("Resource not found.", status_code)
        if isinstance(error, IntegrationError):
            return error
        return IntegrationError(message, status_code)

    def check_rate_limit(self) -> None:
        """Sliding window over this instance's own requests."""
        window_start = time.monotonic() - self.window_seconds
        while self._requests and self._requests[0] <= window_start:
            self._requests.popleft()
        if len(self._requests) >= self.max_requests:
            raise IntegrationError(
                f"Rate limit exceeded: {self.max_requests} requests per {self.window_seconds} seconds"
            )

    def track_request(self) -> None:
        self._requests.append(time.monotonic())

    @staticmethod
    def validate_required_fields(data: Dict[str, Any], required: Iterable[str]) -> None:
        missing = [field for field in required if data.get(field) in (None, "", [])]
        if missing:
            raise IntegrationError(f"Missing required fields: {', '.join(missing)}")

    @staticmethod
    def format_success_response(data: Any) -> Dict[str, Any]:
        return {"success": True, "data": data, "timestamp": utc_now().isoformat()}

    @staticmethod
    def format_error_response(error: Exception) -> Dict[str, Any]:
        return {
            "success": False,
            "error": str(error) or "Unknown error occurred",
            "timestamp": utc_now().isoformat(),
        }

    @staticmethod
    def retry_request(fn: Callable[[], Any], max_retries: int = 3, delay: float = 1.0,
                      sleep: Callable[[float], None] = time.sleep) -> Any:
        """Call fn until it succeeds, waiting delay * 2**attempt between tries; re-raises the last error."""
        last_error: Optional[Exception] = None
        for attempt in range(max_retries):
            try:
                return fn()
            except Exception as e:
                last_error = e
                if attempt < max_retries - 1:
                    sleep(delay * (2 ** attempt))
        raise last_error

    def parse_webhook_payload(self, body: Any, headers: Optional[Dict[str, str]] = None) -> Any:
        if isinstance(body, (str, bytes)):
            try:
                return json.loads(body)
            except ValueError:
                raise IntegrationError("Invalid webhook payload") from None
        return body

    def verify_webhook_signature(self, payload: Any, signature: str, secret: str) -> bool:
        raise NotImplementedError("verify_webhook_signature() must be implemented by subclass")


def digits_only(value: Any) -> str:
    return "".join(ch for ch in str(value) if ch.isdigit())
