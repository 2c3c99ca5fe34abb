from pydantic import BaseModel, Field
from typing import Optional, List, Dict, Any


class TestAccountPermissions(BaseModel):
    can_view_history: bool = False
    can_export_data: bool = False
    can_reset_session: bool = True


class TestAccountCreate(BaseModel):
    name: Optional[str] = None
    email: Optional[str] = None
    maxSessions: Optional[int] = None
    maxMessagesPerSession: Optional[int] = None
    expiresInDays: Optional[int] = None
    permissions: Optional[TestAccountPermissions] = None
    notes: Optional[str] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)
    sendEmail: bool = True


class TestAccountUpdate(BaseModel):
    name: Optional[str] = None
    status: Optional[str] = None
    is_active: Optional[bool] = None
    expires_at: Optional[str] = None
    max_sessions: Optional[int] = None
    max_messages_per_session: Optional[int] = None
    permissions: Optional[Dict[str, Any]] = None
    notes: Optional[str] = None
    metadata: Optional[Dict[str, Any]] = None


class AgentTestStats(BaseModel):
    totalTestAccounts: int = 0
    activeAccounts: int = 0
    totalSessions: int = 0
    totalMessages: int = 0
    totalTokens: int = 0
    avgRating: float = 0


class TestAccountStats(BaseModel):
    totalSessions: int = 0
    activeSessions: int = 0
    completedSessions: int = 0
    totalMessages: int = 0
    totalTokens: int = 0
    avgResponseTime: int = 0
    avgRating: float = 0
    totalRatings: int = 0


class TestAccountListResponse(BaseModel):
    testAccounts: List[Dict[str, Any]]
    stats: AgentTestStats
    count: int


class TestAccountCreateResponse(BaseModel):
    testAccount: Dict[str, Any]
    invitation: Optional[Dict[str, Any]] = None
    emailSent: bool
    emailError: Optional[str] = None
    message: str


class TestAccountResponse(BaseModel):
    testAccount: Dict[str, Any]
    message: Optional[str] = None


class TestAction(BaseModel):
    action: Optional[str] = None
    sessionId: Optional[str] = None
    message: Optional[str] = None
    rating: Optional[int] = Field(None, ge=1, le=5)
    feedback: Optional[str] = None


class PublicTestAccount(BaseModel):
    id: str
    name: str
    agentName: Optional[str] = None
    agentDescription: Optional[str] = None
    agentPersona: Optional[str] = None
    agentTone: Optional[str] = None
    maxMessagesPerSession: Optional[int] = None
    permissions: Optional[Dict[str, Any]] = None
    remainingSessions: int


class PublicTestAccountResponse(BaseModel):
    testAccount: PublicTestAccount
    message: str = "Valid test link"
