"""Shiprocket shipping and courier aggregation (India)."""
import time
from typing import Any, Dict, Optional

from app.core.dates import utc_now
from app.modules.integrations.base import BaseIntegration, IntegrationError

# Tokens are valid for 10 days; refresh a day early
TOKEN_TTL_SECONDS = 9 * 24 * 60 * 60

CREATE_ORDER_FIELDS = (
    "orderDate", "pickupLocation", "billingCustomerName", "billingAddress", "billingCity",
    "billingPincode", "billingState", "billingCountry", "billingPhone", "orderItems",
    "paymentMethod", "subTotal",
)
# shipping_* field -> billing_* fallback
SHIPPING_FALLBACKS = (
    ("customer_name", "CustomerName"), ("last_name", "LastName"), ("address", "Address"),
    ("address_2", "Address2"), ("city", "City"), ("pincode", "Pincode"), ("country", "Country"),
    ("state", "State"), ("email", "Email"), ("phone", "Phone"),
)


class ShiprocketIntegration(BaseIntegration):
    base_url = "https://apiv2.shiprocket.in/v1/external"
    actions = (
        "create_order", "track_shipment", "get_order_details", "generate_awb", "generate_pickup",
        "check_serviceability", "cancel_shipment", "get_shipping_label", "get_wallet_balance",
        "get_pickup_locations",
    )

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.token: Optional[str] = None
        self.token_expiry = 0.0

    def initialize(self, credentials: Dict[str, Any]) -> "ShiprocketIntegration":
        super().initialize(credentials)
        self.token = None
        self.token_expiry = 0.0
        return self

    def test_connection(self, credentials: Dict[str, Any]) -> Dict[str, Any]:
        try:
            self.initialize(credentials)
            self.authenticate()
            return {"success": True, "message": "Connection successful"}
        except IntegrationError as e:
            return {"success": False, "message": str(e)}

    def authenticate(self) -> str:
        if self.token and time.time() < self.token_expiry:
            return self.token
        credentials = self.require_credentials()
        response = self.http.post(
            f"{self.base_url}/auth/login",
            json={"email": credentials.get("email"), "password": credentials.get("password")},
        )
        if response.is_error:
            raise IntegrationError("Authentication failed", status_code=response.status_code)
        self.token = response.json().get("token")
        self.token_expiry = time.time() + TOKEN_TTL_SECONDS
        return self.token

    def get_auth_headers(self) -> Dict[str, str]:
        return {"Authorization": f"Bearer {self.authenticate()}"}

    def create_order(self, params: Dict[str, Any]) -> Dict[str, Any]:
        self.validate_required_fields(params, CREATE_ORDER_FIELDS)
        payload = {
            "order_id": params.get("orderId") or f"ORDER_{int(utc_now().timestamp() * 1000)}",
            "order_date": params["orderDate"],
            "pickup_location": params["pickupLocation"],
            "channel_id": params.get("channelId", ""),
            "comment": params.get("comment", ""),
            "billing_customer_name": params["billingCustomerName"],
            "billing_last_name": params.get("billingLastName", ""),
            "billing_address": params["billingAddress"],
            "billing_address_2": params.get("billingAddress2", ""),
            "billing_city": params["billingCity"],
            "billing_pincode": params["billingPincode"],
            "billing_state": params["billingState"],
            "billing_country": params["billingCountry"],
            "billing_email": params.get("billingEmail", ""),
            "billing_phone": params["billingPhone"],
            "shipping_is_billing": params.get("shippingIsBilling", True),
            "order_items": params["orderItems"],
            "payment_method": params["paymentMethod"],
            "shipping_charges": 0,
            "giftwrap_charges": 0,
            "transaction_charges": 0,
            "total_discount": 0,
            "sub_total": params["subTotal"],
            "length": params.get("length", 10),
            "breadth": params.get("breadth", 10),
            "height": params.get("height", 10),
            "weight": params.get("weight", 0.5),
        }
        for field, suffix in SHIPPING_FALLBACKS:
            payload[f"shipping_{field}"] = params.get(f"shipping{suffix}") or params.get(f"billing{suffix}", "")
        return self.format_success_response(self.make_request("POST", "/orders/create/adhoc", body=payload))

    def track_shipment(self, params: Dict[str, Any]) -> Dict[str, Any]:
        self.validate_required_fields(params, ["shipmentId"])
        endpoint = f"/courier/track/shipment/{params['shipmentId']}"
        return self.format_success_response(self.make_request("GET", endpoint))

    def get_order_details(self, params: Dict[str, Any]) -> Dict[str, Any]:
        self.validate_required_fields(params, ["orderId"])
        return self.format_success_response(self.make_request("GET", f"/orders/show/{params['orderId']}"))

    def generate_awb(self, params: Dict[str, Any]) -> Dict[str, Any]:
        self.validate_required_fields(params, ["shipmentId", "courierId"])
        payload = {"shipment_id": params["shipmentId"], "courier_id": params["courierId"]}
        return self.format_success_response(self.make_request("POST", "/courier/assign/awb", body=payload))

    def generate_pickup(self, params: Dict[str, Any]) -> Dict[str, Any]:
        self.validate_required_fields(params, ["shipmentId"])
        payload = {"shipment_id": [params["shipmentId"]]}
        return self.format_success_response(self.make_request("POST", "/courier/generate/pickup", body=payload))

    def check_serviceability(self, params: Dict[str, Any]) -> Dict[str, Any]:
        self.validate_required_fields(params, ["pickupPincode", "deliveryPincode"])
        query = {
            "pickup_postcode": params["pickupPincode"],
            "delivery_postcode": params["deliveryPincode"],
            "cod": 1 if params.get("cod") else 0,
            "weight": params.get("weight", 0.5),
        }
        return self.format_success_response(self.make_request("GET", "/courier/serviceability", params=query))

    def cancel_shipment(self, params: Dict[str, Any]) -> Dict[str, Any]:
        self.validate_required_fields(params, ["orderId"])
        return self.format_success_response(
            self.make_request("POST", "/orders/cancel", body={"ids": [params["orderId"]]})
        )

    def get_shipping_label(self, params: Dict[str, Any]) -> Dict[str, Any]:
        self.validate_required_fields(params, ["shipmentId"])
        payload = {"shipment_id": [params["shipmentId"]]}
        return self.format_success_response(self.make_request("POST", "/courier/generate/label", body=payload))

    def get_wallet_balance(self, params: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        return self.format_success_response(self.make_request("GET", "/settings/company/wallet/balance"))

    def get_pickup_locations(self, params: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        return self.format_success_response(self.make_request("GET", "/settings/company/pickup"))

    def parse_webhook_payload(self, body: Any, headers: Optional[Dict[str, str]] = None) -> Dict[str, Any]:
        payload = super().parse_webhook_payload(body, headers)
        return {
            "eventType": "tracking_update",
            "orderId": payload.get("order_id"),
            "shipmentId": payload.get("shipment_id"),
            "awb": payload.get("awb"),
            "status": payload.get("current_status"),
            "currentStatusId": payload.get("current_status_id"),
            "currentStatusType": payload.get("current_status_type"),
            "currentStatusBody": payload.get("current_status_body"),
            "courierName": payload.get("courier_name"),
            "deliveryDate": payload.get("delivered_date"),
            "timestamp": payload.get("scan_datetime"),
            "rawPayload": payload,
        }
