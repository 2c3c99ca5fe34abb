from pydantic import BaseModel, Field
from typing import Optional, Dict, Any, List


class AnalyticsEventCreate(BaseModel):
    event_type: str = Field(..., min_length=1)
    event_data: Dict[str, Any] = Field(default_factory=dict)
    tokens_used: int = 0
    success: bool = True


class AnalyticsMetrics(BaseModel):
    total_events: int
    successful_events: int
    total_tokens: int
    event_types: Dict[str, int]
    avg_tokens: int


class AnalyticsListResponse(BaseModel):
    success: bool = True
    analytics: List[Dict[str, Any]]
    metrics: AnalyticsMetrics
    count: int


class AnalyticsEventResponse(BaseModel):
    success: bool = True
    analytics: Dict[str, Any]


class AnalyticsCleanupResponse(BaseModel):
    success: bool = True
    message: str
