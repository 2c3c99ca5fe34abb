"""WhatsApp Business Cloud API (Meta Graph API)."""
import hashlib
import hmac
import json
from typing import Any, Dict, Optional

from app.modules.integrations.base import BaseIntegration, IntegrationError, digits_only


class WhatsAppOfficialIntegration(BaseIntegration):
    base_url = "https://graph.facebook.com/v18.0"
    max_requests = 80
    actions = (
        "send_text_message", "send_template_message", "send_media_message", "send_interactive_message",
        "send_location", "mark_as_read", "get_phone_number_info", "get_message_templates",
        "create_message_template", "get_media_url",
    )

    def test_connection(self, credentials: Dict[str, Any]) -> Dict[str, Any]:
        try:
            self.initialize(credentials)
            self.get_phone_number_info()
            return {"success": True, "message": "Connection successful"}
        except IntegrationError as e:
            return {"success": False, "message": str(e)}

    def get_auth_headers(self) -> Dict[str, str]:
        return {"Authorization": f"Bearer {self.require_credentials().get('accessToken')}"}

    def _messages_endpoint(self) -> str:
        return f"/{self.require_credentials().get('phoneNumberId')}/messages"

    def _send(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        body = {"messaging_product": "whatsapp", **payload}
        return self.format_success_response(self.make_request("POST", self._messages_endpoint(), body=body))

    def send_text_message(self, params: Dict[str, Any]) -> Dict[str, Any]:
        self.validate_required_fields(params, ["to", "text"])
        return self._send({
            "recipient_type": "individual",
            "to": digits_only(params["to"]),
            "type": "text",
            "text": {"preview_url": params.get("previewUrl", False), "body": params["text"]},
        })

    def send_template_message(self, params: Dict[str, Any]) -> Dict[str, Any]:
        self.validate_required_fields(params, ["to", "templateName", "language"])
        return self._send({
            "to": digits_only(params["to"]),
            "type": "template",
            "template": {
                "name": params["templateName"],
                "language": {"code": params.get("language", "en")},
                "components": params.get("components", []),
            },
        })

    def send_media_message(self, params: Dict[str, Any]) -> Dict[str, Any]:
        self.validate_required_fields(params, ["to", "type", "mediaUrl"])
        media = {"link": params["mediaUrl"]}
        if params.get("caption"):
            media["caption"] = params["caption"]
        media_type = params["type"]
        return self._send({"to": digits_only(params["to"]), "type": media_type, media_type: media})

    def send_interactive_message(self, params: Dict[str, Any]) -> Dict[str, Any]:
        self.validate_required_fields(params, ["to", "interactiveType", "body"])
        interactive_type = params["interactiveType"]
        buttons = params.get("buttons") or []
        interactive: Dict[str, Any] = {"type": interactive_type, "body": {"text": params["body"]}}
        if params.get("header"):
            interactive["header"] = {"type": "text", "text": params["header"]}
        if params.get("footer"):
            interactive["footer"] = {"text": params["footer"]}
        if interactive_type == "button":
            interactive["action"] = {"buttons": [
                {"type": "reply", "reply": {"id": b.get("id") or f"btn_{i}", "title": b.get("title")}}
                for i, b in enumerate(buttons)
            ]}
        elif interactive_type == "list":
            interactive["action"] = {
                "button": buttons[0].get("title") if buttons else "Select",
                "sections": params.get("sections") or [],
            }
        return self._send({"to": digits_only(params["to"]), "type": "interactive", "interactive": interactive})

    def send_location(self, params: Dict[str, Any]) -> Dict[str, Any]:
        self.validate_required_fields(params, ["to", "latitude", "longitude"])
        return self._send({
            "to": digits_only(params["to"]),
            "type": "location",
            "location": {
                "latitude": str(params["latitude"]),
                "longitude": str(params["longitude"]),
                "name": params.get("name", ""),
                "address": params.get("address", ""),
            },
        })

    def mark_as_read(self, params: Dict[str, Any]) -> Dict[str, Any]:
        self.validate_required_fields(params, ["messageId"])
        return self._send({"status": "read", "message_id": params["messageId"]})

    def get_phone_number_info(self, params: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        endpoint = f"/{self.require_credentials().get('phoneNumberId')}"
        return self.format_success_response(self.make_request("GET", endpoint))

    def get_message_templates(self, params: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        endpoint = f"/{self.require_credentials().get('businessAccountId')}/message_templates"
        return self.format_success_response(self.make_request("GET", endpoint))

    def create_message_template(self, params: Dict[str, Any]) -> Dict[str, Any]:
        self.validate_required_fields(params, ["name", "category", "language", "components"])
        endpoint = f"/{self.require_credentials().get('businessAccountId')}/message_templates"
        body = {k: params[k] for k in ("name", "category", "language", "components")}
        return self.format_success_response(self.make_request("POST", endpoint, body=body))

    def get_media_url(self, params: Dict[str, Any]) -> Dict[str, Any]:
        self.validate_required_fields(params, ["mediaId"])
        return self.format_success_response(self.make_request("GET", f"/{params['mediaId']}"))

    def parse_webhook_payload(self, body: Any, headers: Optional[Dict[str, str]] = None) -> Optional[Dict[str, Any]]:
        payload = super().parse_webhook_payload(body, headers)
        try:
            value = payload["entry"][0]["changes"][0]["value"]
        except (KeyError, IndexError, TypeError):
            return None
        if value.get("messages"):
            message = value["messages"][0]
            media = message.get("image") or message.get("video") or message.get("document") or {}
            return {
                "eventType": "message_received",
                "messageId": message.get("id"),
                "from": message.get("from"),
                "timestamp": message.get("timestamp"),
                "type": message.get("type"),
                "text": (message.get("text") or {}).get("body"),
                "mediaId": media.get("id"),
                "location": message.get("location"),
                "interactive": message.get("interactive"),
                "rawPayload": payload,
            }
        if value.get("statuses"):
            status = value["statuses"][0]
            return {
                "eventType": "message_status",
                "messageId": status.get("id"),
                "status": status.get("status"),
                "timestamp": status.get("timestamp"),
                "recipientId": status.get("recipient_id"),
                "errors": status.get("errors"),
                "rawPayload": payload,
            }
        return {"eventType": "unknown", "rawPayload": payload}

    def verify_webhook_signature(self, payload: Any, signature: str, secret: str) -> bool:
        """X-Hub-Signature-256 style: "sha256=" + hex HMAC of the raw body."""
        raw = payload if isinstance(payload, (str, bytes)) else json.dumps(payload, separators=(",", ":"))
        raw = raw.encode() if isinstance(raw, str) else raw
        expected = "sha256=" + hmac.new(secret.encode(), raw, hashlib.sha256).hexdigest()
        return hmac.compare_digest(expected, signature or "")
