from fastapi import APIRouter, Depends
from app.database.supabase_client import get_supabase
from app.modules.account.schemas import (
    NotificationPreferences, NotificationPreferencesResponse, PasswordUpdateRequest, BillingResponse,
    PaymentMethodCreate, PaymentMethodDelete, UsageResponse, SubscriptionUpgradeRequest,
    SubscriptionCancelResponse
)
from app.modules.account.service import AccountSettingsService
from app.modules.auth.service import AuthService
from app.core.dependencies import get_current_user_id, get_auth_service
from supabase import Client
from typing import Dict

router = APIRouter(prefix="/settings", tags=["settings"])


def get_account_settings_service(supabase: Client = Depends(get_supabase)) -> AccountSettingsService:
    return AccountSettingsService(supabase)


@router.get("/notifications", response_model=NotificationPreferencesResponse)
async def get_notification_preferences(
    current_user: Dict = Depends(get_current_user_id),
    service: AccountSettingsService = Depends(get_account_settings_service)
):
    """Get notification preferences (defaults when never saved)"""
    return service.get_notification_preferences(current_user["id"])


@router.put("/notifications", response_model=NotificationPreferencesResponse)
async def update_notification_preferences(
    preferences: NotificationPreferences,
    current_user: Dict = Depends(get_current_user_id),
    service: AccountSettingsService = Depends(get_account_settings_service)
):
    """Replace notification preferences"""
    return service.update_notification_preferences(current_user["id"], preferences)


@router.put("/password")
async def update_password(
    request: PasswordUpdateRequest,
    current_user: Dict = Depends(get_current_user_id),
    auth_service: AuthService = Depends(get_auth_service)
):
    """Change password after verifying the current one"""
    auth_service.change_password(
        current_user["id"], current_user["email"], request.currentPassword, request.newPassword
    )
    return {"success": True, "message": "Password updated successfully"}


@router.get("/billing", response_model=BillingResponse)
async def get_billing(
    current_user: Dict = Depends(get_current_user_id),
    service: AccountSettingsService = Depends(get_account_settings_service)
):
    """Payment methods and billing history"""
    return service.get_billing(current_user["id"])


@router.post("/billing/payment-methods")
async def add_payment_method(
    request: PaymentMethodCreate,
    current_user: Dict = Depends(get_current_user_id),
    service: AccountSettingsService = Depends(get_account_settings_service)
):
    return service.add_payment_method(current_user["id"], request.cardData)


@router.delete("/billing/payment-methods")
async def remove_payment_method(
    request: PaymentMethodDelete,
    current_user: Dict = Depends(get_current_user_id),
    service: AccountSettingsService = Depends(get_account_settings_service)
):
    return service.remove_payment_method(current_user["id"], request.cardId)


@router.get("/subscription/usage", response_model=UsageResponse)
async def get_usage(
    current_user: Dict = Depends(get_current_user_id),
    service: AccountSettingsService = Depends(get_account_settings_service)
):
    """Usage for the current calendar month against the tier limits (-1 = unlimited)"""
    return service.get_usage(current_user["id"])


@router.post("/subscription/cancel", response_model=SubscriptionCancelResponse)
async def cancel_subscription(
    current_user: Dict = Depends(get_current_user_id),
    service: AccountSettingsService = Depends(get_account_settings_service)
):
    """Cancel a paid subscription; takes effect after 30 days"""
    return service.cancel_subscription(current_user["id"])


@router.post("/subscription/upgrade")
async def upgrade_subscription(
    request: SubscriptionUpgradeRequest,
    current_user: Dict = Depends(get_current_user_id),
    service: AccountSettingsService = Depends(get_account_settings_service)
):
    """Switch plan (free | pro | enterprise)"""
    return service.upgrade_subscription(current_user["id"], request.planId)
