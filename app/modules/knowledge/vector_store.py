import logging
from typing import Any, Dict, List, Optional

from openai import OpenAI
from supabase import Client

from app.config import settings
from app.core.ai import get_openai_client
from app.modules.knowledge.processor import DocumentProcessor

logger = logging.getLogger(__name__)

EMBEDDING_BATCH_SIZE = 10


class VectorStore:
    """Chunks, embeds and searches knowledge in the knowledge_vectors table (pgvector)."""

    def __init__(self, supabase: Client, client: Optional[OpenAI] = None):
        self.supabase = supabase
        self._client = client

    @property
    def client(self) -> OpenAI:
        if self._client is None:
            self._client = get_openai_client()
        return self._client

    def generate_embeddings(self, texts: List[str]) -> List[List[float]]:
        response = self.client.embeddings.create(
            model=settings.embedding_model,
            input=texts,
            dimensions=settings.embedding_dimensions,
        )
        return [item.embedding for item in response.data]

    def generate_embedding(self, text: str) -> List[float]:
        return self.generate_embeddings([text])[0]

    def process_knowledge_source(self, agent_id: str, source_id: str, content: str,
                                 metadata: Dict[str, Any] = None) -> Dict[str, Any]:
        config = DocumentProcessor.get_chunk_config(len(content))
        chunks = DocumentProcessor.chunk_text(content, config["chunk_size"], config["overlap"])
        logger.info(f"Processing {len(chunks)} chunks for source {source_id}")

        stored = 0
        for i in range(0, len(chunks), EMBEDDING_BATCH_SIZE):
            batch = chunks[i:i + EMBEDDING_BATCH_SIZE]
            embeddings = self.generate_embeddings(batch)
            rows = [
                {
                    "agent_id": agent_id,
                    "knowledge_source_id": source_id,
                    "content": chunk,
                    "embedding": embeddings[idx],
                    "metadata": {**(metadata or {}), "chunk_index": i + idx, "total_chunks": len(chunks)},
                }
                for idx, chunk in enumerate(batch)
            ]
            result = self.supabase.table("knowledge_vectors").insert(rows).execute()
            stored += len(result.data or [])

        return {"success": True, "vectorCount": stored, "chunkCount": len(chunks)}

    def search(self, agent_id: str, query: str, limit: int = 5, threshold: float = 0.7) -> List[Dict[str, Any]]:
        embedding = self.generate_embedding(query)
        result = self.supabase.rpc("search_knowledge_vectors", {
            "p_agent_id": agent_id,
            "p_query_embedding": embedding,
            "p_match_threshold": threshold,
            "p_match_count": limit,
        }).execute()
        return result.data or []

    def delete_knowledge_source(self, source_id: str) -> None:
        self.supabase.table("knowledge_vectors").delete().eq("knowledge_source_id", source_id).execute()

    def update_knowledge_source(self, agent_id: str, source_id: str, content: str,
                                metadata: Dict[str, Any] = None) -> Dict[str, Any]:
        self.delete_knowledge_source(source_id)
        return self.process_knowledge_source(agent_id, source_id, content, metadata)

    def get_knowledge_stats(self, agent_id: str) -> Dict[str, Any]:
        result = self.supabase.table("knowledge_vectors")\
            .select("knowledge_source_id")\
            .eq("agent_id", agent_id)\
            .execute()
        source_stats: Dict[str, int] = {}
        for row in result.data or []:
            source_stats[row["knowledge_source_id"]] = source_stats.get(row["knowledge_source_id"], 0) + 1
        return {
            "totalVectors": len(result.data or []),
            "sourceCount": len(source_stats),
            "sourceStats": source_stats,
        }
