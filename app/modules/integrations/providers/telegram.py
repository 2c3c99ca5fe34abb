"""Telegram Bot API."""
from typing import Any, Dict, List, Optional

from app.modules.integrations.base import BaseIntegration, IntegrationError


class TelegramIntegration(BaseIntegration):
    base_url = "https://api.telegram.org"
    actions = (
        "get_me", "send_message", "send_photo", "send_document", "send_video", "send_location",
        "send_poll", "edit_message_text", "delete_message", "get_chat", "get_chat_member",
        "answer_callback_query", "set_webhook", "delete_webhook", "get_webhook_info",
    )

    def test_connection(self, credentials: Dict[str, Any]) -> Dict[str, Any]:
        try:
            self.initialize(credentials)
            me = self.get_me()
            return {"success": True, "message": f"Connected as @{me['data'].get('username')}", "botInfo": me["data"]}
        except IntegrationError as e:
            return {"success": False, "message": str(e)}

    def _call(self, method: str, payload: Optional[Dict[str, Any]] = None,
              params: Optional[Dict[str, Any]] = None, error: str = "Request failed") -> Dict[str, Any]:
        token = self.require_credentials().get("botToken")
        if not token:
            raise IntegrationError("Missing required fields: botToken")
        http_method = "POST" if payload is not None else "GET"
        data = self.make_request(http_method, f"/bot{token}/{method}", body=payload, params=params)
        if not isinstance(data, dict) or not data.get("ok"):
            description = data.get("description") if isinstance(data, dict) else None
            raise IntegrationError(description or error)
        return self.format_success_response(data.get("result"))

    @staticmethod
    def _drop_none(payload: Dict[str, Any]) -> Dict[str, Any]:
        return {k: v for k, v in payload.items() if v is not None}

    def get_me(self, params: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        return self._call("getMe", error="Failed to get bot info")

    def send_message(self, params: Dict[str, Any]) -> Dict[str, Any]:
        self.validate_required_fields(params, ["chatId", "text"])
        return self._call("sendMessage", self._drop_none({
            "chat_id": params["chatId"],
            "text": params["text"],
            "parse_mode": params.get("parseMode"),
            "disable_web_page_preview": params.get("disableWebPagePreview", False),
            "disable_notification": params.get("disableNotification", False),
            "reply_to_message_id": params.get("replyToMessageId"),
            "reply_markup": params.get("replyMarkup"),
        }), error="Failed to send message")

    def _send_media(self, method: str, field: str, params: Dict[str, Any]) -> Dict[str, Any]:
        self.validate_required_fields(params, ["chatId", field])
        return self._call(method, self._drop_none({
            "chat_id": params["chatId"],
            field: params[field],
            "caption": params.get("caption"),
            "parse_mode": params.get("parseMode"),
            "disable_notification": params.get("disableNotification", False),
            "reply_to_message_id": params.get("replyToMessageId"),
            "reply_markup": params.get("replyMarkup"),
        }), error=f"Failed to send {field}")

    def send_photo(self, params: Dict[str, Any]) -> Dict[str, Any]:
        return self._send_media("sendPhoto", "photo", params)

    def send_document(self, params: Dict[str, Any]) -> Dict[str, Any]:
        return self._send_media("sendDocument", "document", params)

    def send_video(self, params: Dict[str, Any]) -> Dict[str, Any]:
        return self._send_media("sendVideo", "video", params)

    def send_location(self, params: Dict[str, Any]) -> Dict[str, Any]:
        self.validate_required_fields(params, ["chatId", "latitude", "longitude"])
        return self._call("sendLocation", {
            "chat_id": params["chatId"],
            "latitude": params["latitude"],
            "longitude": params["longitude"],
        }, error="Failed to send location")

    def send_poll(self, params: Dict[str, Any]) -> Dict[str, Any]:
        self.validate_required_fields(params, ["chatId", "question", "options"])
        return self._call("sendPoll", {
            "chat_id": params["chatId"],
            "question": params["question"],
            "options": params["options"],
            "is_anonymous": params.get("isAnonymous", True),
            "type": params.get("type", "regular"),
            "allows_multiple_answers": params.get("allowsMultipleAnswers", False),
        }, error="Failed to send poll")

    def edit_message_text(self, params: Dict[str, Any]) -> Dict[str, Any]:
        self.validate_required_fields(params, ["chatId", "messageId", "text"])
        return self._call("editMessageText", self._drop_none({
            "chat_id": params["chatId"],
            "message_id": params["messageId"],
            "text": params["text"],
            "parse_mode": params.get("parseMode"),
            "reply_markup": params.get("replyMarkup"),
        }), error="Failed to edit message")

    def delete_message(self, params: Dict[str, Any]) -> Dict[str, Any]:
        self.validate_required_fields(params, ["chatId", "messageId"])
        return self._call("deleteMessage", {"chat_id": params["chatId"], "message_id": params["messageId"]},
                          error="Failed to delete message")

    def get_chat(self, params: Dict[str, Any]) -> Dict[str, Any]:
        self.validate_required_fields(params, ["chatId"])
        return self._call("getChat", params={"chat_id": params["chatId"]}, error="Failed to get chat")

    def get_chat_member(self, params: Dict[str, Any]) -> Dict[str, Any]:
        self.validate_required_fields(params, ["chatId", "userId"])
        return self._call("getChatMember", params={"chat_id": params["chatId"], "user_id": params["userId"]},
                          error="Failed to get chat member")

    def answer_callback_query(self, params: Dict[str, Any]) -> Dict[str, Any]:
        self.validate_required_fields(params, ["callbackQueryId"])
        return self._call("answerCallbackQuery", self._drop_none({
            "callback_query_id": params["callbackQueryId"],
            "text": params.get("text"),
            "show_alert": params.get("showAlert", False),
        }), error="Failed to answer callback query")

    def set_webhook(self, params: Dict[str, Any]) -> Dict[str, Any]:
        self.validate_required_fields(params, ["url"])
        return self._call("setWebhook", self._drop_none({
            "url": params["url"],
            "max_connections": params.get("maxConnections", 40),
            "allowed_updates": params.get("allowedUpdates"),
        }), error="Failed to set webhook")

    def delete_webhook(self, params: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        return self._call("deleteWebhook", {}, error="Failed to delete webhook")

    def get_webhook_info(self, params: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        return self._call("getWebhookInfo", error="Failed to get webhook info")

    @staticmethod
    def create_inline_keyboard(buttons: List[List[Dict[str, Any]]]) -> Dict[str, Any]:
        return {"inline_keyboard": [
            [{"text": b.get("text"), "callback_data": b.get("callbackData"), "url": b.get("url")} for b in row]
            for row in buttons
        ]}

    @staticmethod
    def create_reply_keyboard(buttons: List[List[Dict[str, Any]]], resize: bool = True,
                              one_time: bool = False, selective: bool = False) -> Dict[str, Any]:
        return {
            "keyboard": [
                [{"text": b.get("text"), "request_contact": b.get("requestContact"),
                  "request_location": b.get("requestLocation")} for b in row]
                for row in buttons
            ],
            "resize_keyboard": resize,
            "one_time_keyboard": one_time,
            "selective": selective,
        }

    def parse_webhook_payload(self, body: Any, headers: Optional[Dict[str, str]] = None) -> Dict[str, Any]:
        update = super().parse_webhook_payload(body, headers)
        if update.get("message"):
            message = update["message"]
            return {
                "eventType": "message",
                "updateId": update.get("update_id"),
                "messageId": message.get("message_id"),
                "from": message.get("from"),
                "chat": message.get("chat"),
                "date": message.get("date"),
                "text": message.get("text"),
                "photo": message.get("photo"),
                "document": message.get("document"),
                "video": message.get("video"),
                "location": message.get("location"),
                "rawPayload": update,
            }
        if update.get("callback_query"):
            query = update["callback_query"]
            return {
                "eventType": "callback_query",
                "updateId": update.get("update_id"),
                "id": query.get("id"),
                "from": query.get("from"),
                "message": query.get("message"),
                "data": query.get("data"),
                "rawPayload": update,
            }
        return {"eventType": "unknown", "updateId": update.get("update_id"), "rawPayload": update}
