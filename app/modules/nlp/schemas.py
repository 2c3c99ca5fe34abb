from pydantic import BaseModel, Field
from typing import Optional, List, Dict, Any


class NlpParseRequest(BaseModel):
    description: Optional[str] = None
    useAI: bool = True


class NlpParseResponse(BaseModel):
    success: bool = True
    requestId: str
    config: Dict[str, Any]
    matchedTemplate: Optional[Dict[str, Any]] = None
    parsingMethod: str
    tokensUsed: int = 0
    confidence: float


class NlpCustomizations(BaseModel):
    name: Optional[str] = None
    domain: Optional[str] = None
    tone: Optional[str] = None
    interface: Optional[str] = None
    services: List[str] = Field(default_factory=list)
    createWebhook: bool = False

    model_config = {"extra": "allow"}


class NlpCreateAgentRequest(BaseModel):
    requestId: Optional[str] = None
    customizations: NlpCustomizations = Field(default_factory=NlpCustomizations)


class NlpCreatedAgent(BaseModel):
    id: str
    name: str
    description: Optional[str] = None
    domain: Optional[str] = None
    interface: Optional[str] = None
    services: List[str] = Field(default_factory=list)
    sandbox_url: Optional[str] = None
    config: Dict[str, Any]


class NlpCreateAgentResponse(BaseModel):
    success: bool = True
    agent: NlpCreatedAgent
