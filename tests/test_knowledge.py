"""
ai-spot-backend - Knowledge Base Tests
======================================

Document processing, the vector store and the /agents/{id}/knowledge routes.
"""

from unittest.mock import MagicMock, patch

import httpx
import pytest

from app.core.ai import ApiKeyResolution
from app.modules.knowledge import processor
from app.modules.knowledge import service as knowledge_service
from app.modules.knowledge.processor import DocumentProcessingError, DocumentProcessor
from app.modules.knowledge.vector_store import VectorStore


def fake_embeddings(texts):
    return [[0.1, 0.2, 0.3] for _ in texts]


@pytest.fixture
def embeddings():
    with patch.object(VectorStore, "generate_embeddings", side_effect=fake_embeddings) as mock:
        yield mock


@pytest.fixture
def source(fake_supabase, agent):
    return fake_supabase.seed("knowledge_sources", {
        "id": "ks-1",
        "agent_id": agent["id"],
        "source_type": "text",
        "file_name": "faq.txt",
        "content": "Old content.",
        "status": "completed",
        "vector_count": 2,
    })[0]


# =============================================================================
# Document processing
# =============================================================================

class TestDocumentProcessor:
    """Validation, extraction and chunking."""

    def test_validate_file(self):
        assert DocumentProcessor.validate_file("application/pdf", 1024) is True

        with pytest.raises(DocumentProcessingError, match="10MB"):
            DocumentProcessor.validate_file("text/plain", 11 * 1024 * 1024)
        with pytest.raises(DocumentProcessingError, match="Unsupported file type"):
            DocumentProcessor.validate_file("image/png", 10)

    def test_process_text_cleans_content(self):
        result = DocumentProcessor.process_text(b"Hello   world\x00\n\n!")

        assert result["text"] == "Hello world !"
        assert result["metadata"] == {"wordCount": 3, "characterCount": 13}

    def test_unreadable_pdf(self):
        with pytest.raises(DocumentProcessingError, match="Failed to process PDF"):
            DocumentProcessor.process_pdf(b"definitely not a pdf")

    def test_process_website_keeps_visible_text(self):
        html = (
            "<html><head><title> Acme FAQ </title><script>var x = 1;</script></head>"
            "<body><nav>Home | About</nav><p>Refunds take five days.</p><footer>(c) Acme</footer></body></html>"
        )
        response = httpx.Response(200, text=html, request=httpx.Request("GET", "https://acme.test/faq"))

        with patch.object(processor.httpx, "get", return_value=response):
            result = DocumentProcessor.process_website("https://acme.test/faq")

        assert result["text"] == "Refunds take five days."
        assert result["metadata"]["title"] == "Acme FAQ"
        assert result["metadata"]["url"] == "https://acme.test/faq"

    def test_process_website_http_error(self):
        response = httpx.Response(404, request=httpx.Request("GET", "https://acme.test/missing"))

        with patch.object(processor.httpx, "get", return_value=response):
            with pytest.raises(DocumentProcessingError, match="Failed to process website"):
                DocumentProcessor.process_website("https://acme.test/missing")

    def test_chunk_prefers_sentence_end(self):
        text = "A" * 800 + ". " + "B" * 500

        chunks = DocumentProcessor.chunk_text(text, chunk_size=1000, overlap=200)

        assert chunks[0] == "A" * 800 + "."
        assert chunks[-1].endswith("B" * 500)

    def test_chunks_overlap_and_cover_text(self):
        text = " ".join(f"word{i}" for i in range(600))

        chunks = DocumentProcessor.chunk_text(text, chunk_size=500, overlap=100)

        assert len(chunks) > 1
        assert all(len(c) <= 500 for c in chunks)
        assert chunks[-1].endswith("word599")
        assert chunks[1].split()[0] in chunks[0]

    def test_empty_text(self):
        assert DocumentProcessor.chunk_text("") == []
        assert DocumentProcessor.estimate_tokens("") == 0
        assert DocumentProcessor.estimate_tokens("abcde") == 2

    @pytest.mark.parametrize("length,expected", [
        (4999, {"chunk_size": 1000, "overlap": 100}),
        (5000, {"chunk_size": 1500, "overlap": 200}),
        (20000, {"chunk_size": 2000, "overlap": 300}),
    ])
    def test_chunk_config(self, length, expected):
        assert DocumentProcessor.get_chunk_config(length) == expected


class TestVectorStore:
    """Embedding batches and the pgvector search RPC."""

    def test_embeds_in_batches(self, fake_supabase):
        client = MagicMock()
        client.embeddings.create.side_effect = lambda **kw: MagicMock(
            data=[MagicMock(embedding=[0.0]) for _ in kw["input"]]
        )
        store = VectorStore(fake_supabase, client=client)
        text = " ".join(f"sentence number {i}." for i in range(800))

        result = store.process_knowledge_source("agent-1", "ks-1", text, {"fileName": "big.txt"})

        assert result["vectorCount"] == result["chunkCount"]
        assert result["chunkCount"] > 10
        assert client.embeddings.create.call_count == -(-result["chunkCount"] // 10)
        vectors = fake_supabase.rows("knowledge_vectors")
        assert vectors[0]["metadata"] == {"fileName": "big.txt", "chunk_index": 0,
                                          "total_chunks": result["chunkCount"]}

    def test_search_calls_rpc(self, fake_supabase, embeddings):
        fake_supabase.rpc_results["search_knowledge_vectors"] = [{"content": "hit", "similarity": 0.8}]

        rows = VectorStore(fake_supabase).search("agent-1", "refunds", limit=3, threshold=0.5)

        assert rows == [{"content": "hit", "similarity": 0.8}]
        name, params = fake_supabase.rpc_calls[0]
        assert name == "search_knowledge_vectors"
        assert params["p_match_count"] == 3
        assert params["p_match_threshold"] == 0.5
        assert params["p_query_embedding"] == [0.1, 0.2, 0.3]


# =============================================================================
# Routes
# =============================================================================

class TestUpload:
    """POST /agents/{id}/knowledge/upload"""

    URL = "/api/v1/agents/agent-1/knowledge/upload"

    def test_text_file(self, client, fake_supabase, agent, embeddings):
        response = client.post(self.URL, data={"type": "file"},
                               files={"file": ("faq.txt", b"Refunds take five days.", "text/plain")})

        assert response.status_code == 200
        summary = response.json()["knowledgeSource"]
        assert summary["name"] == "faq.txt"
        assert summary["type"] == "text"
        assert summary["chunkCount"] == 1
        assert summary["status"] == "completed"
        row = fake_supabase.rows("knowledge_sources")[0]
        assert row["status"] == "completed"
        assert row["vector_count"] == 1
        assert fake_supabase.rows("knowledge_vectors")[0]["knowledge_source_id"] == row["id"]

    def test_url_source(self, client, fake_supabase, agent, embeddings):
        scraped = {"success": True, "text": "We ship worldwide.", "metadata": {"title": "Shipping"}}
        with patch.object(knowledge_service.DocumentProcessor, "process_website", return_value=scraped):
            response = client.post(self.URL, data={"type": "url", "url": "https://acme.test/shipping"})

        assert response.status_code == 200
        row = fake_supabase.rows("knowledge_sources")[0]
        assert row["source_type"] == "url"
        assert row["source_url"] == "https://acme.test/shipping"
        assert row["file_name"] is None

    @pytest.mark.parametrize("data,files,error", [
        ({"type": "file"}, {"file": ("x.png", b"png", "image/png")}, "Unsupported file type. Allowed: PDF, TXT, MD"),
        ({"type": "file"}, None, "No file provided"),
        ({"type": "url", "url": "ftp://acme.test"}, None, "Invalid URL format"),
        ({"type": "video"}, None, 'Invalid source type. Must be "file" or "url"'),
    ])
    def test_rejections(self, client, agent, data, files, error):
        response = client.post(self.URL, data=data, files=files)

        assert response.status_code == 400
        assert response.json()["error"] == error

    def test_vector_failure_marks_source(self, client, fake_supabase, agent):
        with patch.object(VectorStore, "generate_embeddings", side_effect=RuntimeError("quota exceeded")):
            response = client.post(self.URL, data={"type": "file"},
                                   files={"file": ("faq.txt", b"Some text.", "text/plain")})

        assert response.status_code == 500
        assert response.json()["error"] == "Failed to process knowledge vectors"
        row = fake_supabase.rows("knowledge_sources")[0]
        assert row["status"] == "failed"
        assert row["error_message"] == "quota exceeded"

    def test_failed_batch_discards_stored_vectors(self, client, fake_supabase, agent):
        calls = []

        def embed_first_batch_only(texts):
            calls.append(len(texts))
            if len(calls) > 1:
                raise RuntimeError("quota exceeded")
            return fake_embeddings(texts)

        content = "".join(f"Refund policy sentence number {i} applies to every order. " for i in range(800))
        with patch.object(VectorStore, "generate_embeddings", side_effect=embed_first_batch_only):
            response = client.post(self.URL, data={"type": "file"},
                                   files={"file": ("policy.txt", content.encode(), "text/plain")})

        assert response.status_code == 500
        assert calls[0] == 10
        assert fake_supabase.rows("knowledge_vectors") == []
        assert fake_supabase.rows("knowledge_sources")[0]["status"] == "failed"

    def test_owner_only(self, client, agent):
        agent["user_id"] = "someone-else"

        response = client.post(self.URL, data={"type": "file"},
                               files={"file": ("faq.txt", b"text", "text/plain")})

        assert response.status_code == 404


class TestManageSources:
    """Listing, statistics, updates and deletion."""

    def test_list_with_statistics(self, client, fake_supabase, source):
        fake_supabase.seed("knowledge_vectors",
                           {"agent_id": "agent-1", "knowledge_source_id": "ks-1", "content": "a"},
                           {"agent_id": "agent-1", "knowledge_source_id": "ks-1", "content": "b"})

        response = client.get("/api/v1/agents/agent-1/knowledge")

        data = response.json()
        assert data["sources"][0]["name"] == "faq.txt"
        assert data["sources"][0]["vectorCount"] == 2
        assert data["statistics"] == {"totalVectors": 2, "sourceCount": 1, "sourceStats": {"ks-1": 2}}

    def test_stats_route(self, client, fake_supabase, source):
        response = client.get("/api/v1/agents/agent-1/knowledge/search")

        assert response.json()["statistics"]["totalVectors"] == 0

    def test_update_rebuilds_vectors(self, client, fake_supabase, source, embeddings):
        fake_supabase.seed("knowledge_vectors", {"agent_id": "agent-1", "knowledge_source_id": "ks-1",
                                                 "content": "Old content."})

        response = client.put("/api/v1/agents/agent-1/knowledge/ks-1",
                              json={"content": "New   content.", "name": "faq-v2.txt"})

        assert response.status_code == 200
        assert response.json()["knowledgeSource"]["name"] == "faq-v2.txt"
        assert source["content"] == "New content."
        assert source["file_name"] == "faq-v2.txt"
        assert source["status"] == "completed"
        assert [v["content"] for v in fake_supabase.rows("knowledge_vectors")] == ["New content."]

    def test_update_missing_source(self, client, agent):
        response = client.put("/api/v1/agents/agent-1/knowledge/nope", json={"content": "x"})

        assert response.status_code == 404

    def test_delete(self, client, fake_supabase, source):
        fake_supabase.seed("knowledge_vectors", {"agent_id": "agent-1", "knowledge_source_id": "ks-1"})

        response = client.delete("/api/v1/agents/agent-1/knowledge/ks-1")

        assert response.json() == {"success": True, "message": "Knowledge source deleted successfully"}
        assert fake_supabase.rows("knowledge_sources") == []
        assert fake_supabase.rows("knowledge_vectors") == []


class TestSearch:
    """POST /agents/{id}/knowledge/search"""

    URL = "/api/v1/agents/agent-1/knowledge/search"

    @pytest.fixture
    def hits(self, fake_supabase):
        fake_supabase.rpc_results["search_knowledge_vectors"] = [{
            "content": "Refunds take five days.",
            "similarity": 0.87,
            "metadata": {"fileName": "faq.txt"},
            "knowledge_source_id": "ks-1",
        }]

    def test_owner_search(self, client, fake_supabase, agent, embeddings, hits):
        response = client.post(self.URL, json={"query": "refunds", "limit": 50})

        data = response.json()
        assert data["count"] == 1
        assert data["results"][0]["sourceId"] == "ks-1"
        assert fake_supabase.rpc_calls[0][1]["p_match_count"] == 20

    def test_private_agent_is_hidden_from_others(self, anon_client, agent, embeddings, hits):
        response = anon_client.post(self.URL, json={"query": "refunds"})

        assert response.status_code == 403

    def test_public_agent(self, anon_client, agent, embeddings, hits):
        agent["is_public"] = True

        response = anon_client.post(self.URL, json={"query": "refunds"})

        assert response.status_code == 200

    def test_unknown_agent(self, anon_client, fake_supabase):
        response = anon_client.post("/api/v1/agents/missing/knowledge/search", json={"query": "refunds"})

        assert response.status_code == 404


class TestInstructions:
    """POST /agents/{id}/knowledge-update"""

    URL = "/api/v1/agents/agent-1/knowledge-update"

    def test_instruction_becomes_knowledge(self, client, fake_supabase, agent, openai_client, embeddings):
        with patch.object(knowledge_service, "resolve_api_key", return_value=ApiKeyResolution("sk-u", "user")), \
                patch.object(knowledge_service, "get_openai_client", return_value=openai_client):
            response = client.post(self.URL, json={"instructions": "We are closed on public holidays"})

        assert response.status_code == 200
        data = response.json()
        assert data["apiKeySource"] == "user"
        assert data["knowledgeSource"]["content"].startswith("Hello from the agent")
        row = fake_supabase.rows("knowledge_sources")[0]
        assert row["source_type"] == "instruction"
        assert row["file_name"] == "Instruction: We are closed on public holidays..."
        assert openai_client.chat.completions.create.call_args.kwargs["temperature"] == 0.3

    def test_without_api_key(self, client, agent):
        response = client.post(self.URL, json={"instructions": "Be nice"})

        assert response.status_code == 500
        assert response.json()["errorCode"] == "API_KEY_ERROR"


class TestUrlSummary:
    """POST /url-scrape_summarize"""

    URL = "/api/v1/url-scrape_summarize"
    PAGE = (
        "<html><body><nav><a href='/'>Home</a></nav><h1>Shipping</h1>"
        "<p>We ship   worldwide.</p><ul><li>Free over $50</li></ul><div>Cookie banner</div></body></html>"
    )

    def _page(self, html=PAGE, status=200):
        return httpx.Response(status, text=html, request=httpx.Request("GET", "https://acme.test/shipping"))

    def test_summary(self, client, openai_client):
        with patch.object(processor.httpx, "get", return_value=self._page()), \
                patch.object(knowledge_service, "get_openai_client", return_value=openai_client):
            response = client.post(self.URL, json={"url": "https://acme.test/shipping"})

        assert response.status_code == 200
        assert response.json() == {
            "url": "https://acme.test/shipping",
            "content": "Shipping We ship worldwide. Free over $50",
            "summary": "Hello from the agent",
        }
        kwargs = openai_client.chat.completions.create.call_args.kwargs
        assert kwargs["temperature"] == 0.3
        assert kwargs["messages"][1]["content"].endswith("Shipping We ship worldwide. Free over $50")

    def test_long_pages_are_truncated(self, client, openai_client):
        html = "<p>" + "word " * 3000 + "</p>"
        with patch.object(processor.httpx, "get", return_value=self._page(html)), \
                patch.object(knowledge_service, "get_openai_client", return_value=openai_client):
            response = client.post(self.URL, json={"url": "https://acme.test/long"})

        assert len(response.json()["content"]) == knowledge_service.MAX_SUMMARY_INPUT_CHARS

    def test_uses_scraper_api_when_configured(self, client, openai_client, monkeypatch):
        monkeypatch.setattr(processor.settings, "scraper_api_key", "scraper-key")
        with patch.object(processor.httpx, "get", return_value=self._page()) as get, \
                patch.object(knowledge_service, "get_openai_client", return_value=openai_client):
            client.post(self.URL, json={"url": "https://acme.test/shipping"})

        assert get.call_args.args[0] == processor.SCRAPER_API_URL
        assert get.call_args.kwargs["params"]["url"] == "https://acme.test/shipping"
        assert get.call_args.kwargs["params"]["api_key"] == "scraper-key"

    def test_missing_url(self, client):
        response = client.post(self.URL, json={})

        assert response.status_code == 400
        assert response.json()["error"] == "Missing URL parameter"

    def test_no_readable_content(self, client):
        with patch.object(processor.httpx, "get", return_value=self._page("<div>only divs</div>")):
            response = client.post(self.URL, json={"url": "https://acme.test/empty"})

        assert response.status_code == 404
        assert response.json()["error"] == "No readable content found"

    def test_fetch_failure(self, client):
        with patch.object(processor.httpx, "get", return_value=self._page(status=503)):
            response = client.post(self.URL, json={"url": "https://acme.test/down"})

        assert response.status_code == 500
        assert response.json()["error"].startswith("Failed to process website")

    def test_requires_login(self, anon_client):
        assert anon_client.post(self.URL, json={"url": "https://acme.test"}).status_code in (401, 403)
