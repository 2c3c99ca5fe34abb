from pydantic import BaseModel, Field
from typing import Optional, List, Dict, Any


class AgentCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    description: Optional[str] = None
    purpose: Optional[str] = None
    domain: Optional[str] = None
    tone: str = "friendly"
    persona: Optional[str] = None
    interface: Optional[str] = None
    model: str = "gpt-4o-mini"
    temperature: float = Field(0.7, ge=0, le=2)
    max_tokens: int = Field(1000, ge=1, le=16000)
    system_prompt: Optional[str] = None
    tools: List[str] = Field(default_factory=list)
    services: List[str] = Field(default_factory=list)
    settings: Dict[str, Any] = Field(default_factory=dict)
    is_public: bool = False
    use_platform_key: bool = True
    api_key_id: Optional[str] = None


class AgentUpdate(BaseModel):
    name: Optional[str] = None
    description: Optional[str] = None
    purpose: Optional[str] = None
    is_active: Optional[bool] = None
    settings: Optional[Dict[str, Any]] = None


class AgentUpdateResponse(BaseModel):
    agent: Dict[str, Any]
    message: str


class AgentListResponse(BaseModel):
    agents: List[Dict[str, Any]]


class AgentDependencies(BaseModel):
    webhooks: List[Dict[str, Any]]
    workflows: List[Dict[str, Any]]
    knowledgeSources: List[Dict[str, Any]]
    testAccounts: List[Dict[str, Any]]
    bookings: List[Dict[str, Any]]
    conversationsCount: int
    analyticsCount: int
    calendar: Optional[Dict[str, Any]] = None
    smsConfig: Optional[Dict[str, Any]] = None
    hasActiveDependencies: bool
