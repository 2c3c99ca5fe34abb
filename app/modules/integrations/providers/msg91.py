"""MSG91 SMS, OTP and WhatsApp messaging (India)."""
from typing import Any, Dict, List, Optional

from app.modules.integrations.base import BaseIntegration, IntegrationError, digits_only

WHATSAPP_OUTBOUND = "/whatsapp/whatsapp-outbound-message/"


class Msg91Integration(BaseIntegration):
    base_url = "https://api.msg91.com/api/v5"
    actions = (
        "send_sms", "send_otp", "verify_otp", "resend_otp", "send_whatsapp", "send_whatsapp_media",
        "get_balance", "get_sms_report",
    )

    def test_connection(self, credentials: Dict[str, Any]) -> Dict[str, Any]:
        try:
            self.initialize(credentials)
            balance = self.get_balance()
            return {"success": True, "message": "Connection successful", "balance": balance["data"]}
        except IntegrationError as e:
            return {"success": False, "message": str(e)}

    def get_auth_headers(self) -> Dict[str, str]:
        return {"authkey": self.require_credentials().get("authKey") or ""}

    @property
    def auth_key(self) -> str:
        return self.require_credentials().get("authKey") or ""

    def send_sms(self, params: Dict[str, Any]) -> Dict[str, Any]:
        self.validate_required_fields(params, ["to", "message"])
        recipients = params["to"] if isinstance(params["to"], list) else [params["to"]]
        payload = {
            "sender": params.get("senderId") or self.require_credentials().get("senderId"),
            "route": params.get("route", "transactional"),
            "country": "91",
            "sms": [{"message": params["message"], "to": [digits_only(n)]} for n in recipients],
            "unicode": 1 if params.get("unicode") else 0,
        }
        return self.format_success_response(self.make_request("POST", "/flow", body=payload))

    def send_otp(self, params: Dict[str, Any]) -> Dict[str, Any]:
        self.validate_required_fields(params, ["mobile", "templateId"])
        payload = {
            "template_id": params["templateId"],
            "mobile": digits_only(params["mobile"]),
            "authkey": self.auth_key,
        }
        if params.get("otp"):
            payload["otp"] = params["otp"]
        else:
            payload["otp_length"] = params.get("otpLength", 6)
            payload["otp_expiry"] = params.get("otpExpiry", 5)
        return self.format_success_response(self.make_request("POST", "/otp", body=payload))

    def verify_otp(self, params: Dict[str, Any]) -> Dict[str, Any]:
        self.validate_required_fields(params, ["mobile", "otp"])
        payload = {"authkey": self.auth_key, "mobile": digits_only(params["mobile"]), "otp": params["otp"]}
        return self.format_success_response(self.make_request("POST", "/otp/verify", body=payload))

    def resend_otp(self, params: Dict[str, Any]) -> Dict[str, Any]:
        self.validate_required_fields(params, ["mobile"])
        query = {
            "authkey": self.auth_key,
            "mobile": digits_only(params["mobile"]),
            "retrytype": params.get("retryType", "voice"),
        }
        return self.format_success_response(self.make_request("POST", "/otp/retry", params=query))

    def send_whatsapp(self, params: Dict[str, Any]) -> Dict[str, Any]:
        self.validate_required_fields(params, ["to", "templateId"])
        payload = {
            "integrated_number": self.require_credentials().get("whatsappNumber"),
            "content_type": "template",
            "payload": {
                "to": digits_only(params["to"]),
                "type": "template",
                "template": {
                    "name": params["templateId"],
                    "language": {"code": "en", "policy": "deterministic"},
                    "components": self.build_whatsapp_components(params.get("variables") or {}),
                },
            },
        }
        return self.format_success_response(self.make_request("POST", WHATSAPP_OUTBOUND, body=payload))

    def send_whatsapp_media(self, params: Dict[str, Any]) -> Dict[str, Any]:
        self.validate_required_fields(params, ["to", "type", "url"])
        media_type = params["type"]
        payload = {
            "integrated_number": self.require_credentials().get("whatsappNumber"),
            "content_type": "media",
            "payload": {
                "to": digits_only(params["to"]),
                "type": media_type,
                media_type: {"link": params["url"], "caption": params.get("caption", "")},
            },
        }
        return self.format_success_response(self.make_request("POST", WHATSAPP_OUTBOUND, body=payload))

    def get_balance(self, params: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        return self.format_success_response(self.make_request("GET", "/balance", params={"authkey": self.auth_key}))

    def get_sms_report(self, params: Dict[str, Any]) -> Dict[str, Any]:
        self.validate_required_fields(params, ["requestId"])
        endpoint = f"/report/{params['requestId']}"
        return self.format_success_response(self.make_request("GET", endpoint, params={"authkey": self.auth_key}))

    @staticmethod
    def build_whatsapp_components(variables: Dict[str, Any]) -> List[Dict[str, Any]]:
        components = []
        for section in ("header", "body"):
            if variables.get(section):
                components.append({
                    "type": section,
                    "parameters": [{"type": "text", "text": v} for v in variables[section].values()],
                })
        if variables.get("buttons"):
            components.append({
                "type": "button",
                "sub_type": "url",
                "index": 0,
                "parameters": [{"type": "text", "text": variables["buttons"]}],
            })
        return components

    def parse_webhook_payload(self, body: Any, headers: Optional[Dict[str, str]] = None) -> Dict[str, Any]:
        payload = super().parse_webhook_payload(body, headers)
        return {
            "eventType": payload.get("type") or "delivery_report",
            "requestId": payload.get("request_id"),
            "mobile": payload.get("mobile"),
            "status": payload.get("status"),
            "deliveryTime": payload.get("delivery_time"),
            "errorCode": payload.get("error_code"),
            "errorMessage": payload.get("error_message"),
            "rawPayload": payload,
        }
