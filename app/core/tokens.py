import secrets
import string
import time

_ALPHABET = string.ascii_letters + string.digits

WEBHOOK_KEY_PREFIX = "wh_"
AUTH_TOKEN_PREFIX = "sk_"
TEST_TOKEN_PREFIX = "test_"
INVITATION_TOKEN_PREFIX = "inv_"


def generate_key(prefix: str, length: int) -> str:
    return prefix + "".join(secrets.choice(_ALPHABET) for _ in range(length))


def generate_webhook_key() -> str:
    return generate_key(WEBHOOK_KEY_PREFIX, 32)


def generate_auth_token() -> str:
    return generate_key(AUTH_TOKEN_PREFIX, 48)


def generate_test_token() -> str:
    return generate_key(TEST_TOKEN_PREFIX, 20)


def generate_invitation_token() -> str:
    return generate_key(INVITATION_TOKEN_PREFIX, 20)


def generate_session_id(prefix: str = "test") -> str:
    """e.g. test-1718000000000-k3j9x0a1b"""
    suffix = "".join(secrets.choice(string.ascii_lowercase + string.digits) for _ in range(9))
    return f"{prefix}-{int(time.time() * 1000)}-{suffix}"


def generate_sms_webhook_secret() -> str:
    """64 hex chars; the whole secret is the webhook path segment."""
    return secrets.token_hex(32)
