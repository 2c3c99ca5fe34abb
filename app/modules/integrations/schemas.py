from pydantic import BaseModel, Field
from typing import Any, Dict, List, Optional


class IntegrationInfo(BaseModel):
    type: str
    category: str
    displayName: str


class IntegrationListResponse(BaseModel):
    integrations: List[IntegrationInfo]


class IntegrationActionsResponse(BaseModel):
    type: str
    actions: List[str]


class IntegrationTestRequest(BaseModel):
    credentials: Dict[str, Any] = Field(default_factory=dict)


class IntegrationExecuteRequest(BaseModel):
    action: str
    config: Dict[str, Any] = Field(default_factory=dict)
    params: Dict[str, Any] = Field(default_factory=dict)


class IntegrationResult(BaseModel):
    success: bool
    data: Optional[Any] = None
    error: Optional[str] = None
    message: Optional[str] = None
    timestamp: Optional[str] = None

    model_config = {"extra": "allow"}
