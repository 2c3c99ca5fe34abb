import json
import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional

import openai
from fastapi import HTTPException
from supabase import Client

from app.config import settings
from app.core.ai import MissingAPIKeyError, get_openai_client, resolve_api_key
from app.core.dependencies import get_agent
from app.database.supabase_client import fetch_single
from app.modules.knowledge.processor import ALLOWED_FILE_TYPES, DocumentProcessor, DocumentProcessingError
from app.modules.knowledge.schemas import (
    KnowledgeSourceSummary, KnowledgeUploadResponse, KnowledgeListResponse, KnowledgeStats,
    KnowledgeStatsResponse, KnowledgeSearchRequest, KnowledgeSearchResponse, KnowledgeSearchResult, UrlSummaryResponse
)
from app.modules.knowledge.vector_store import VectorStore

logger = logging.getLogger(__name__)

MAX_SEARCH_RESULTS = 20
INSTRUCTION_SYSTEM_PROMPT = (
    "Convert user instructions into clear, structured knowledge entries. "
    "Return ONLY the knowledge content, no meta-commentary."
)
# Roughly 2k tokens of page text
MAX_SUMMARY_INPUT_CHARS = 6000
REFINEMENT_INSTRUCTIONS = """You are a content refinement system.
You will be given raw text scraped from a website. It may contain menus, ads, boilerplate,
duplicate sections or formatting issues.

Your job is to:
1. Remove irrelevant content such as navigation links, ads, disclaimers, cookie notices or repeated text.
2. Keep only the meaningful body content (headings, paragraphs, lists, FAQs, descriptions).
3. Rewrite it in clear, concise language while keeping the original meaning.
4. Preserve factual information, numbers and domain-specific terms.
5. Keep the heading hierarchy, with body text under the right heading.
6. Use bullet points and short paragraphs where they help readability.

Do not invent new information. Do not add commentary or opinions."""


def source_name(source: Dict[str, Any]) -> str:
    return source.get("file_name") or source.get("source_url") or "Unknown Source"


class KnowledgeService:
    def __init__(self, supabase: Client, vector_store: VectorStore = None):
        self.supabase = supabase
        self.vectors = vector_store or VectorStore(supabase)

    def upload_source(self, agent_id: str, source_type: Optional[str], filename: Optional[str] = None,
                      content_type: Optional[str] = None, data: Optional[bytes] = None,
                      url: Optional[str] = None, name: Optional[str] = None) -> KnowledgeUploadResponse:
        try:
            if source_type == "file":
                if data is None:
                    raise HTTPException(status_code=400, detail="No file provided")
                DocumentProcessor.validate_file(content_type, len(data))
                processed = DocumentProcessor.process_file(data, content_type)
                db_type = ALLOWED_FILE_TYPES[content_type]
                display_name = name or filename
                metadata = {**processed["metadata"], "fileName": filename, "fileSize": len(data),
                            "fileType": content_type}
            elif source_type == "url":
                if not url:
                    raise HTTPException(status_code=400, detail="No URL provided")
                if not url.startswith(("http://", "https://")):
                    raise HTTPException(status_code=400, detail="Invalid URL format")
                processed = DocumentProcessor.process_website(url)
                db_type = "url"
                display_name = url
                metadata = {**processed["metadata"], "url": url}
            else:
                raise HTTPException(status_code=400, detail='Invalid source type. Must be "file" or "url"')
        except DocumentProcessingError as e:
            raise HTTPException(status_code=400, detail=str(e))

        if not processed.get("text"):
            raise HTTPException(status_code=500, detail="Failed to extract content from source")

        source = self._create_source(agent_id, {
            "source_type": db_type,
            "source_url": display_name if db_type == "url" else None,
            "file_name": display_name if db_type != "url" else None,
            "content": processed["text"],
            "summary": json.dumps(metadata),
            "status": "processing",
        })
        result = self._vectorise(agent_id, source["id"], processed["text"], metadata)
        return KnowledgeUploadResponse(knowledgeSource=KnowledgeSourceSummary(
            id=source["id"],
            name=display_name,
            type=db_type,
            vectorCount=result["vectorCount"],
            chunkCount=result["chunkCount"],
            status="completed",
        ))

    def add_instruction(self, agent: Dict[str, Any], instructions: str) -> Dict[str, Any]:
        """Turn free-form owner instructions into a knowledge entry with the agent's API key"""
        try:
            key = resolve_api_key(self.supabase, agent)
            completion = get_openai_client(key.api_key).chat.completions.create(
                model="gpt-4o-mini",
                messages=[
                    {"role": "system", "content": INSTRUCTION_SYSTEM_PROMPT},
                    {"role": "user", "content": f"NEW INSTRUCTION:\n{instructions}\n\n"
                                                "Convert this into a clear knowledge base entry."},
                ],
                max_tokens=1000,
                temperature=0.3,
            )
        except MissingAPIKeyError:
            raise HTTPException(
                status_code=500,
                detail={"error": "Failed to initialize AI service. Please configure your API key.",
                        "errorCode": "API_KEY_ERROR"}
            )
        except openai.AuthenticationError:
            raise HTTPException(status_code=401, detail={"error": "Invalid API key", "errorCode": "INVALID_API_KEY"})

        content = (completion.choices[0].message.content or "").strip()
        if not content:
            raise HTTPException(status_code=500, detail="Failed to generate knowledge content")

        metadata = {
            "type": "user_instruction",
            "instruction": instructions,
            "api_key_source": key.source,
        }
        source = self._create_source(agent["id"], {
            "source_type": "instruction",
            "file_name": f"Instruction: {instructions[:50]}...",
            "content": content,
            "summary": json.dumps({**metadata, "created_at": datetime.now(timezone.utc).isoformat()}),
            "status": "processing",
        })
        result = self._vectorise(agent["id"], source["id"], content, {**metadata, "fileName": source["file_name"]})
        return {
            "success": True,
            "agentId": agent["id"],
            "apiKeySource": key.source,
            "knowledgeSource": {
                "id": source["id"],
                "vectorCount": result["vectorCount"],
                "chunkCount": result["chunkCount"],
                "content": content[:200] + "...",
            },
        }

    def list_sources(self, agent_id: str) -> KnowledgeListResponse:
        try:
            result = self.supabase.table("knowledge_sources")\
                .select("*")\
                .eq("agent_id", agent_id)\
                .order("created_at", desc=True)\
                .execute()
            sources = [
                KnowledgeSourceSummary(
                    id=s["id"],
                    name=source_name(s),
                    type=s.get("source_type"),
                    vectorCount=s.get("vector_count") or 0,
                    status=s.get("status"),
                    createdAt=s.get("created_at"),
                    processedAt=s.get("processed_at"),
                )
                for s in result.data or []
            ]
            stats = self.vectors.get_knowledge_stats(agent_id)
            return KnowledgeListResponse(sources=sources, statistics=KnowledgeStats(**stats))
        except Exception as e:
            logger.error(f"Error fetching knowledge sources for agent {agent_id}: {e}")
            raise HTTPException(status_code=500, detail="Failed to fetch knowledge sources")

    def delete_source(self, agent_id: str, source_id: str) -> Dict[str, Any]:
        self._get_source(agent_id, source_id)
        try:
            self.vectors.delete_knowledge_source(source_id)
            self.supabase.table("knowledge_sources")\
                .delete()\
                .eq("id", source_id)\
                .eq("agent_id", agent_id)\
                .execute()
        except Exception as e:
            logger.error(f"Error deleting knowledge source {source_id}: {e}")
            raise HTTPException(status_code=500, detail="Failed to delete knowledge source")
        return {"success": True, "message": "Knowledge source deleted successfully"}

    def update_source(self, agent_id: str, source_id: str, content: str,
                      name: Optional[str] = None) -> KnowledgeUploadResponse:
        source = self._get_source(agent_id, source_id)
        cleaned = DocumentProcessor.clean_text(content)
        if not cleaned:
            raise HTTPException(status_code=400, detail="Content cannot be empty")

        updates = {"content": cleaned, "status": "processing", "error_message": None}
        if name:
            updates["source_url" if source.get("source_type") == "url" else "file_name"] = name
        self.supabase.table("knowledge_sources").update(updates).eq("id", source_id).execute()

        try:
            result = self.vectors.update_knowledge_source(agent_id, source_id, cleaned,
                                                          {"fileName": name or source_name(source)})
        except Exception as e:
            self._mark_failed(source_id, e)
            raise HTTPException(
                status_code=500,
                detail={"error": "Failed to process knowledge vectors", "details": str(e)}
            )
        self._mark_completed(source_id, result["vectorCount"])
        return KnowledgeUploadResponse(knowledgeSource=KnowledgeSourceSummary(
            id=source_id,
            name=name or source_name(source),
            type=source.get("source_type"),
            vectorCount=result["vectorCount"],
            chunkCount=result["chunkCount"],
            status="completed",
        ))

    def search(self, agent_id: str, request: KnowledgeSearchRequest,
               user_id: Optional[str] = None) -> KnowledgeSearchResponse:
        agent = get_agent(agent_id, self.supabase, columns="id, user_id, is_public")
        if not agent:
            raise HTTPException(status_code=404, detail="Agent not found")
        if agent.get("user_id") != user_id and not agent.get("is_public"):
            raise HTTPException(status_code=403, detail="Unauthorized access to agent")
        try:
            rows = self.vectors.search(agent_id, request.query, min(request.limit, MAX_SEARCH_RESULTS),
                                       request.threshold)
        except Exception as e:
            logger.error(f"Error searching knowledge base for agent {agent_id}: {e}")
            raise HTTPException(status_code=500, detail="Failed to search knowledge base")
        results = [
            KnowledgeSearchResult(
                content=row["content"],
                similarity=row.get("similarity"),
                metadata=row.get("metadata"),
                sourceId=row.get("knowledge_source_id"),
            )
            for row in rows
        ]
        return KnowledgeSearchResponse(query=request.query, results=results, count=len(results))

    def summarize_url(self, url: Optional[str]) -> UrlSummaryResponse:
        """Scrape a page and have the platform model rewrite it as clean, structured training text."""
        if not url:
            raise HTTPException(status_code=400, detail="Missing URL parameter")
        try:
            html = DocumentProcessor.fetch_page(url)
        except DocumentProcessingError as e:
            logger.error(f"Error scraping {url}: {e}")
            raise HTTPException(status_code=500, detail=str(e))

        content = DocumentProcessor.extract_readable_text(html)
        if not content:
            raise HTTPException(status_code=404, detail="No readable content found")
        content = content[:MAX_SUMMARY_INPUT_CHARS]

        try:
            completion = get_openai_client().chat.completions.create(
                model=settings.default_chat_model,
                messages=[
                    {"role": "system", "content": REFINEMENT_INSTRUCTIONS},
                    {"role": "user", "content": f"Clean up the following content:\n\n{content}"},
                ],
                max_tokens=500,
                temperature=0.3,
            )
        except MissingAPIKeyError as e:
            raise HTTPException(status_code=500, detail={"error": str(e), "errorCode": "API_KEY_ERROR"})
        except openai.OpenAIError as e:
            logger.error(f"Error summarising {url}: {e}")
            raise HTTPException(status_code=500, detail=str(e))

        summary = (completion.choices[0].message.content if completion.choices else None) \
            or "Summary could not be generated."
        return UrlSummaryResponse(url=url, content=content, summary=summary)

    def get_stats(self, agent_id: str) -> KnowledgeStatsResponse:
        try:
            return KnowledgeStatsResponse(statistics=KnowledgeStats(**self.vectors.get_knowledge_stats(agent_id)))
        except Exception as e:
            logger.error(f"Error fetching knowledge stats for agent {agent_id}: {e}")
            raise HTTPException(status_code=500, detail="Failed to fetch knowledge statistics")

    def _get_source(self, agent_id: str, source_id: str) -> Dict[str, Any]:
        source = fetch_single(
            self.supabase.table("knowledge_sources")
            .select("*")
            .eq("id", source_id)
            .eq("agent_id", agent_id)
        )
        if not source:
            raise HTTPException(status_code=404, detail="Knowledge source not found")
        return source

    def _create_source(self, agent_id: str, row: Dict[str, Any]) -> Dict[str, Any]:
        try:
            result = self.supabase.table("knowledge_sources").insert({**row, "agent_id": agent_id}).execute()
        except Exception as e:
            logger.error(f"Error creating knowledge source for agent {agent_id}: {e}")
            raise HTTPException(status_code=500, detail="Failed to create knowledge source record")
        if not result.data:
            raise HTTPException(status_code=500, detail="Failed to create knowledge source record")
        return result.data[0]

    def _vectorise(self, agent_id: str, source_id: str, text: str, metadata: Dict[str, Any]) -> Dict[str, Any]:
        try:
            result = self.vectors.process_knowledge_source(agent_id, source_id, text, metadata)
        except Exception as e:
            logger.error(f"Error processing vectors for source {source_id}: {e}")
            self._discard_vectors(source_id)
            self._mark_failed(source_id, e)
            raise HTTPException(
                status_code=500,
                detail={"error": "Failed to process knowledge vectors", "details": str(e)}
            )
        self._mark_completed(source_id, result["vectorCount"])
        return result

    def _mark_completed(self, source_id: str, vector_count: int) -> None:
        self.supabase.table("knowledge_sources").update({
            "status": "completed",
            "vector_count": vector_count,
            "processed_at": datetime.now(timezone.utc).isoformat(),
        }).eq("id", source_id).execute()

    def _discard_vectors(self, source_id: str) -> None:
        """Drop vectors from batches stored before a later batch failed."""
        try:
            self.vectors.delete_knowledge_source(source_id)
        except Exception as e:
            logger.warning(f"Could not remove partial vectors for knowledge source {source_id}: {e}")

    def _mark_failed(self, source_id: str, error: Exception) -> None:
        try:
            self.supabase.table("knowledge_sources").update({
                "status": "failed",
                "error_message": str(error),
            }).eq("id", source_id).execute()
        except Exception as e:
            logger.warning(f"Could not mark knowledge source {source_id} as failed: {e}")
