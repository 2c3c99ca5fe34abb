from pydantic import BaseModel, Field
from typing import Optional, List, Dict, Any, Literal


class NotificationPreferences(BaseModel):
    emailNotifications: bool = True
    agentAlerts: bool = True
    workflowAlerts: bool = True
    weeklyReport: bool = False
    marketingEmails: bool = False
    updated_at: Optional[str] = None


class NotificationPreferencesResponse(BaseModel):
    success: bool = True
    preferences: NotificationPreferences


class PasswordUpdateRequest(BaseModel):
    currentPassword: str = Field(..., min_length=1)
    newPassword: str = Field(..., min_length=1)


class BillingResponse(BaseModel):
    success: bool = True
    paymentMethods: List[Dict[str, Any]]
    billingHistory: List[Dict[str, Any]]


class PaymentMethodCreate(BaseModel):
    cardData: Dict[str, Any]


class PaymentMethodDelete(BaseModel):
    cardId: str


class UsageMetric(BaseModel):
    used: int
    limit: int


class UsagePeriod(BaseModel):
    start: str
    end: str


class UsageResponse(BaseModel):
    success: bool = True
    tier: str
    agents: UsageMetric
    conversations: UsageMetric
    apiCredits: UsageMetric
    creditsRemaining: int
    period: UsagePeriod


class SubscriptionUpgradeRequest(BaseModel):
    planId: Literal["free", "pro", "enterprise"]


class SubscriptionCancelResponse(BaseModel):
    success: bool = True
    message: str
    effectiveDate: str
