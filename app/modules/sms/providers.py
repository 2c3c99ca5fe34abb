"""SMS gateways used by the SMS bot: Twilio (global), MSG91, TextLocal and Gupshup (India).

Each provider reads its credentials from an agent_sms_config row. Sending
and connection checks never raise; failures come back as
{"success": False, "error": ...} so the webhook can record them.
"""
import base64
import logging
from typing import Any, Dict, Optional, Type
from urllib.parse import urlencode

import httpx

from app.modules.integrations.base import BaseIntegration, IntegrationError, digits_only

logger = logging.getLogger(__name__)

FORM_HEADERS = {"Content-Type": "application/x-www-form-urlencoded"}
INDIAN_PROVIDERS = ("msg91", "textlocal", "gupshup")


class SmsProvider(BaseIntegration):
    name = ""
    required: tuple = ()

    def __init__(self, config: Dict[str, Any], http_client: Optional[httpx.Client] = None):
        super().__init__(config, http_client)
        self.initialize(config)

    def send(self, to: str, message: str) -> Dict[str, Any]:
        try:
            self._require_config()
            return self._send(to, message)
        except IntegrationError as e:
            logger.error(f"{self.name} SMS error: {e}")
            return {"success": False, "error": str(e)}

    def test_connection(self, credentials: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        if credentials:
            self.initialize(credentials)
        try:
            return self._test_connection()
        except IntegrationError as e:
            return {"success": False, "error": str(e)}

    def _send(self, to: str, message: str) -> Dict[str, Any]:
        raise NotImplementedError

    def _test_connection(self) -> Dict[str, Any]:
        raise NotImplementedError

    def _require_config(self) -> None:
        if any(not self.credentials.get(field) for field in self.required):
            raise IntegrationError(f"Missing {self.display_name} configuration")

    @property
    def display_name(self) -> str:
        return self.name.capitalize()

    def request_json(self, method: str, endpoint: str, **kwargs) -> Dict[str, Any]:
        data = self.make_request(method, endpoint, **kwargs)
        return data if isinstance(data, dict) else {}

    def post_form(self, url: str, fields: Dict[str, Any]) -> Dict[str, Any]:
        return self.request_json("POST", url, headers=FORM_HEADERS, body=urlencode(fields))


class TwilioSmsProvider(SmsProvider):
    name = "twilio"
    base_url = "https://api.twilio.com/2010-04-01"
    required = ("twilio_account_sid", "twilio_auth_token", "twilio_phone_number")

    def get_auth_headers(self) -> Dict[str, str]:
        pair = f"{self.credentials.get('twilio_account_sid')}:{self.credentials.get('twilio_auth_token')}"
        return {"Authorization": f"Basic {base64.b64encode(pair.encode()).decode()}"}

    def _send(self, to: str, message: str) -> Dict[str, Any]:
        data = self.post_form(f"/Accounts/{self.credentials['twilio_account_sid']}/Messages.json", {
            "From": self.credentials["twilio_phone_number"],
            "To": to,
            "Body": message,
        })
        return {"success": True, "messageSid": data.get("sid"), "status": data.get("status")}

    def _test_connection(self) -> Dict[str, Any]:
        data = self.request_json("GET", f"/Accounts/{self.credentials.get('twilio_account_sid')}.json")
        return {
            "success": True,
            "details": {"accountStatus": data.get("status"), "friendlyName": data.get("friendly_name")},
        }


class Msg91SmsProvider(SmsProvider):
    name = "msg91"
    base_url = "https://api.msg91.com/api"
    required = ("msg91_auth_key", "msg91_sender_id")

    @property
    def display_name(self) -> str:
        return "MSG91"

    def get_auth_headers(self) -> Dict[str, str]:
        return {"authkey": self.credentials.get("msg91_auth_key") or ""}

    def _send(self, to: str, message: str) -> Dict[str, Any]:
        data = self.request_json("POST", "/v5/flow/", body={
            "sender": self.credentials["msg91_sender_id"],
            "route": self.credentials.get("msg91_route") or "transactional",
            "recipients": [{"mobiles": digits_only(to), "var": message}],
        })
        return {
            "success": True,
            "messageSid": data.get("request_id") or data.get("message_id"),
            "status": data.get("type"),
        }

    def _test_connection(self) -> Dict[str, Any]:
        balance = self.make_request("POST", "/balance.php", body={"authkey": self.credentials.get("msg91_auth_key")})
        return {"success": True, "details": {"balance": balance}}


class TextLocalSmsProvider(SmsProvider):
    name = "textlocal"
    base_url = "https://api.textlocal.in"
    required = ("textlocal_api_key", "textlocal_sender")

    @property
    def display_name(self) -> str:
        return "TextLocal"

    @staticmethod
    def _first_error(data: Dict[str, Any], default: str) -> str:
        errors = data.get("errors") or []
        return errors[0].get("message", default) if errors else default

    def _send(self, to: str, message: str) -> Dict[str, Any]:
        data = self.post_form("/send/", {
            "apikey": self.credentials["textlocal_api_key"],
            "sender": self.credentials["textlocal_sender"],
            "numbers": digits_only(to),
            "message": message,
        })
        if data.get("status") != "success":
            return {"success": False, "error": self._first_error(data, "Unknown error")}
        messages = data.get("messages") or [{}]
        return {"success": True, "messageSid": messages[0].get("id"), "status": "sent"}

    def _test_connection(self) -> Dict[str, Any]:
        data = self.post_form("/balance/", {"apikey": self.credentials.get("textlocal_api_key")})
        if data.get("status") != "success":
            return {"success": False, "error": self._first_error(data, "Connection failed")}
        return {"success": True, "details": {"balance": data.get("balance")}}


class GupshupSmsProvider(SmsProvider):
    name = "gupshup"
    base_url = "https://enterprise.smsgupshup.com"
    required = ("gupshup_api_key", "gupshup_app_id")

    def _send(self, to: str, message: str) -> Dict[str, Any]:
        data = self.post_form("/GatewayAPI/rest", {
            "method": "SendMessage",
            "send_to": digits_only(to),
            "msg": message,
            "msg_type": "TEXT",
            "userid": self.credentials["gupshup_app_id"],
            "auth_scheme": "plain",
            "password": self.credentials["gupshup_api_key"],
            "v": "1.1",
            "format": "json",
        })
        result = data.get("response") or {}
        if result.get("status") != "success":
            return {"success": False, "error": result.get("details") or "Unknown error"}
        return {"success": True, "messageSid": result.get("id"), "status": "sent"}

    def _test_connection(self) -> Dict[str, Any]:
        # No balance endpoint; only the credential shape can be checked without sending
        if any(not self.credentials.get(field) for field in self.required):
            return {"success": False, "error": "Missing credentials"}
        return {"success": True, "details": {"message": "Credentials format valid. Send a test SMS to fully verify."}}


SMS_PROVIDERS: Dict[str, Type[SmsProvider]] = {
    "twilio": TwilioSmsProvider,
    "msg91": Msg91SmsProvider,
    "textlocal": TextLocalSmsProvider,
    "gupshup": GupshupSmsProvider,
}


def _with_provider(config: Dict[str, Any], http_client: Optional[httpx.Client], call) -> Dict[str, Any]:
    cls = SMS_PROVIDERS.get(config.get("provider"))
    if cls is None:
        return {"success": False, "error": f"Unsupported provider: {config.get('provider')}"}
    provider = cls(config, http_client)
    try:
        return call(provider)
    finally:
        # injected clients belong to the caller
        if http_client is None:
            provider.close()


def send_sms(config: Dict[str, Any], to: str, message: str,
             http_client: Optional[httpx.Client] = None) -> Dict[str, Any]:
    return _with_provider(config, http_client, lambda provider: provider.send(to, message))


def check_provider_connection(config: Dict[str, Any], http_client: Optional[httpx.Client] = None) -> Dict[str, Any]:
    return _with_provider(config, http_client, lambda provider: provider.test_connection())


def format_phone_number(phone_number: str, provider: str) -> str:
    """Strip to digits and "+"; bare 10-digit numbers get +91 for the Indian gateways."""
    cleaned = "".join(ch for ch in phone_number if ch.isdigit() or ch == "+")
    if not cleaned.startswith("+") and provider in INDIAN_PROVIDERS and len(cleaned) == 10:
        cleaned = "+91" + cleaned
    return cleaned
