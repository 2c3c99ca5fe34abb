from pydantic import BaseModel, Field
from typing import Optional, List, Dict, Any


class ChatRequest(BaseModel):
    message: Optional[str] = None
    sessionId: Optional[str] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)
    useKnowledgeBase: bool = True
    knowledgeSearchThreshold: float = 0.7
    knowledgeResultLimit: int = 3


class KnowledgeSourceUsed(BaseModel):
    name: str
    relevance: str
    preview: str


class KnowledgeUsage(BaseModel):
    searchPerformed: bool
    sourcesFound: int
    sources: List[KnowledgeSourceUsed]


class BookingContextSummary(BaseModel):
    isBookingFlow: bool
    isComplete: bool
    confidence: float
    bookingCreated: Optional[bool] = None
    bookingId: Optional[str] = None
    externalUrl: Optional[str] = None
    bookingError: Optional[str] = None
    extractedData: Dict[str, Any]


class ChatResponse(BaseModel):
    response: str
    conversationId: Optional[str] = None
    tokensUsed: int
    responseTimeMs: int
    agentId: str
    timestamp: str
    apiKeySource: str
    knowledge: KnowledgeUsage
    bookingContext: Optional[BookingContextSummary] = None


class ChatHistoryResponse(BaseModel):
    conversations: List[Dict[str, Any]]
    count: int
    sessionId: str


class ChatClearResponse(BaseModel):
    success: bool = True
    deleted: int
    sessionId: str


class SandboxRequest(BaseModel):
    message: Optional[str] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)


class SandboxResponse(BaseModel):
    response: str
    agentId: str
    tokensUsed: int
    responseTimeMs: int
    apiKeySource: str
    metadata: Dict[str, Any]
