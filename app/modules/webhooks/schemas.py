from pydantic import BaseModel
from typing import Optional, List, Dict, Any, Literal


class WebhookCreate(BaseModel):
    name: Optional[str] = None
    description: Optional[str] = None
    requires_auth: bool = False
    rate_limit: Optional[int] = None
    allowed_origins: Optional[Any] = None
    is_active: Optional[bool] = None


class WebhookUpdate(BaseModel):
    name: Optional[str] = None
    description: Optional[str] = None
    is_active: Optional[bool] = None
    rate_limit: Optional[int] = None
    allowed_origins: Optional[List[str]] = None
    requires_auth: Optional[bool] = None


class WebhookBulkAction(BaseModel):
    action: Optional[Literal["activate", "deactivate"]] = None


class WebhookListResponse(BaseModel):
    webhooks: List[Dict[str, Any]]
    count: int
    agentId: str
    agentName: Optional[str] = None


class WebhookResponse(BaseModel):
    webhook: Dict[str, Any]
    message: Optional[str] = None
    warning: Optional[str] = None


class Pagination(BaseModel):
    total: int
    limit: int
    offset: int
    currentPage: int
    totalPages: int
    hasNextPage: bool
    hasPrevPage: bool
    nextUrl: Optional[str] = None
    prevUrl: Optional[str] = None


class InvocationListResponse(BaseModel):
    invocations: List[Dict[str, Any]]
    pagination: Pagination
    filters: Dict[str, Optional[str]]


class WebhookStats(BaseModel):
    webhookId: str
    webhookName: Optional[str] = None
    isActive: bool
    totalInvocations: int = 0
    successful: int = 0
    failed: int = 0
    successRate: float = 0
    errorRate: float = 0
    avgResponseTime: int = 0
    last24h: int = 0
    last7d: int = 0
    last30d: int = 0


class OverallWebhookStats(BaseModel):
    totalWebhooks: int = 0
    activeWebhooks: int = 0
    inactiveWebhooks: int = 0
    totalInvocations: int = 0
    totalSuccessful: int = 0
    totalFailed: int = 0
    avgSuccessRate: float = 0
    avgResponseTime: int = 0
    last24hTotal: int = 0
    last7dTotal: int = 0
    last30dTotal: int = 0


class WebhookStatsResponse(BaseModel):
    overall: OverallWebhookStats
    webhooks: List[WebhookStats]
    generatedAt: str


class WebhookInvokeResponse(BaseModel):
    response: str
    sessionId: str
    tokensUsed: int
    responseTimeMs: int
    timestamp: str
