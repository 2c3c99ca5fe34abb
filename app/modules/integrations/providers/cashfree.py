"""Cashfree payment gateway (UPI, cards, netbanking, wallets)."""
import base64
import hashlib
import hmac
from datetime import timedelta
from typing import Any, Dict, Optional

from app.core.dates import utc_now
from app.modules.integrations.base import BaseIntegration, IntegrationError

PRODUCTION_URL = "https://api.cashfree.com/pg"
SANDBOX_URL = "https://sandbox.cashfree.com/pg"
API_VERSION = "2023-08-01"


class CashfreeIntegration(BaseIntegration):
    base_url = SANDBOX_URL
    actions = (
        "create_order", "get_order_details", "get_payment_details", "create_refund",
        "get_refund_details", "get_settlements", "create_upi_link",
    )

    def initialize(self, credentials: Dict[str, Any]) -> "CashfreeIntegration":
        super().initialize(credentials)
        self.base_url = PRODUCTION_URL if credentials.get("environment") == "production" else SANDBOX_URL
        return self

    def test_connection(self, credentials: Dict[str, Any]) -> Dict[str, Any]:
        try:
            self.initialize(credentials)
            self.get_order_details({"orderId": "test"})
        except IntegrationError as e:
            # 404 means authentication worked and the order does not exist
            if e.status_code != 404:
                return {"success": False, "message": str(e)}
        return {"success": True, "message": "Connection successful"}

    def get_auth_headers(self) -> Dict[str, str]:
        credentials = self.require_credentials()
        return {
            "x-client-id": credentials.get("appId") or "",
            "x-client-secret": credentials.get("secretKey") or "",
            "x-api-version": API_VERSION,
        }

    def create_order(self, params: Dict[str, Any]) -> Dict[str, Any]:
        self.validate_required_fields(params, ["orderId", "orderAmount", "customerPhone"])
        payload = {
            "order_id": params["orderId"],
            "order_amount": params["orderAmount"],
            "order_currency": params.get("orderCurrency", "INR"),
            "customer_details": {
                "customer_id": params["customerPhone"],
                "customer_name": params.get("customerName", ""),
                "customer_email": params.get("customerEmail", ""),
                "customer_phone": params["customerPhone"],
            },
            "order_meta": {
                "return_url": params.get("returnUrl"),
                "notify_url": params.get("notifyUrl"),
                "payment_methods": "upi,cc,dc,nb,wallet",
            },
            "order_note": params.get("orderNote", ""),
        }
        return self.format_success_response(self.make_request("POST", "/orders", body=payload))

    def get_order_details(self, params: Dict[str, Any]) -> Dict[str, Any]:
        self.validate_required_fields(params, ["orderId"])
        return self.format_success_response(self.make_request("GET", f"/orders/{params['orderId']}"))

    def get_payment_details(self, params: Dict[str, Any]) -> Dict[str, Any]:
        self.validate_required_fields(params, ["orderId", "cfPaymentId"])
        endpoint = f"/orders/{params['orderId']}/payments/{params['cfPaymentId']}"
        return self.format_success_response(self.make_request("GET", endpoint))

    def create_refund(self, params: Dict[str, Any]) -> Dict[str, Any]:
        self.validate_required_fields(params, ["orderId", "refundAmount"])
        payload = {
            "refund_amount": params["refundAmount"],
            "refund_id": params.get("refundId") or f"refund_{int(utc_now().timestamp() * 1000)}",
            "refund_note": params.get("refundNote", ""),
        }
        endpoint = f"/orders/{params['orderId']}/refunds"
        return self.format_success_response(self.make_request("POST", endpoint, body=payload))

    def get_refund_details(self, params: Dict[str, Any]) -> Dict[str, Any]:
        self.validate_required_fields(params, ["orderId", "refundId"])
        endpoint = f"/orders/{params['orderId']}/refunds/{params['refundId']}"
        return self.format_success_response(self.make_request("GET", endpoint))

    def get_settlements(self, params: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        params = params or {}
        query = {}
        if params.get("startDate"):
            query["start_date"] = params["startDate"]
        if params.get("endDate"):
            query["end_date"] = params["endDate"]
        return self.format_success_response(self.make_request("GET", "/settlements", params=query))

    def create_upi_link(self, params: Dict[str, Any]) -> Dict[str, Any]:
        self.validate_required_fields(params, ["orderId", "orderAmount", "customerPhone"])
        expiry = utc_now() + timedelta(hours=params.get("linkExpiry", 24))
        payload = {
            "link_id": f"link_{params['orderId']}",
            "link_amount": params["orderAmount"],
            "link_currency": "INR",
            "link_purpose": params.get("linkPurpose") or f"Payment for order {params['orderId']}",
            "customer_details": {
                "customer_phone": params["customerPhone"],
                "customer_email": params.get("customerEmail", ""),
                "customer_name": params.get("customerName", ""),
            },
            "link_expiry_time": expiry.isoformat(),
            "link_meta": {"return_url": params.get("returnUrl"), "notify_url": params.get("notifyUrl")},
        }
        return self.format_success_response(self.make_request("POST", "/links", body=payload))

    def verify_webhook_signature(self, payload: Dict[str, Any], signature: str, secret: str) -> bool:
        """base64 HMAC-SHA256 over order id + order amount + event time."""
        order = (payload.get("data") or {}).get("order") or {}
        message = f"{order.get('order_id', '')}{order.get('order_amount', '')}{payload.get('event_time', '')}"
        digest = hmac.new(secret.encode(), message.encode(), hashlib.sha256).digest()
        return hmac.compare_digest(base64.b64encode(digest).decode(), signature or "")

    def parse_webhook_payload(self, body: Any, headers: Optional[Dict[str, str]] = None) -> Dict[str, Any]:
        payload = super().parse_webhook_payload(body, headers)
        data = payload.get("data") or {}
        order = data.get("order") or {}
        payment = data.get("payment") or {}
        return {
            "eventType": payload.get("type"),
            "orderId": order.get("order_id"),
            "orderAmount": order.get("order_amount"),
            "orderStatus": order.get("order_status"),
            "paymentStatus": payment.get("payment_status"),
            "paymentMethod": payment.get("payment_group"),
            "cfPaymentId": payment.get("cf_payment_id"),
            "timestamp": payload.get("event_time"),
            "rawPayload": payload,
        }
