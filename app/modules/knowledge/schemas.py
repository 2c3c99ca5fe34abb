from pydantic import BaseModel, Field
from typing import Optional, List, Dict, Any


class KnowledgeSourceSummary(BaseModel):
    id: str
    name: str
    type: Optional[str] = None
    vectorCount: int = 0
    chunkCount: Optional[int] = None
    status: Optional[str] = None
    createdAt: Optional[str] = None
    processedAt: Optional[str] = None


class KnowledgeStats(BaseModel):
    totalVectors: int
    sourceCount: int
    sourceStats: Dict[str, int]


class KnowledgeUploadResponse(BaseModel):
    success: bool = True
    knowledgeSource: KnowledgeSourceSummary


class KnowledgeListResponse(BaseModel):
    success: bool = True
    sources: List[KnowledgeSourceSummary]
    statistics: KnowledgeStats


class KnowledgeStatsResponse(BaseModel):
    success: bool = True
    statistics: KnowledgeStats


class KnowledgeContentUpdate(BaseModel):
    content: str = Field(..., min_length=1)
    name: Optional[str] = None


class KnowledgeInstructionRequest(BaseModel):
    instructions: str = Field(..., min_length=1)


class KnowledgeSearchRequest(BaseModel):
    query: str = Field(..., min_length=1)
    limit: int = Field(5, ge=1)
    threshold: float = Field(0.7, ge=0, le=1)


class KnowledgeSearchResult(BaseModel):
    content: str
    similarity: Optional[float] = None
    metadata: Optional[Dict[str, Any]] = None
    sourceId: Optional[str] = None


class KnowledgeSearchResponse(BaseModel):
    success: bool = True
    query: str
    results: List[KnowledgeSearchResult]
    count: int


class UrlSummaryRequest(BaseModel):
    url: Optional[str] = None


class UrlSummaryResponse(BaseModel):
    url: str
    content: str
    summary: str
