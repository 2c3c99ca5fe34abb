"""Text extraction and chunking for knowledge sources."""
import io
import logging
import math
import re
from datetime import datetime, timezone
from typing import Any, Dict, List

import httpx
from bs4 import BeautifulSoup
from langchain_text_splitters import RecursiveCharacterTextSplitter
from pypdf import PdfReader

from app.config import settings

logger = logging.getLogger(__name__)

ALLOWED_FILE_TYPES = {
    "application/pdf": "pdf",
    "text/plain": "text",
    "text/markdown": "text",
}
MAX_FILE_SIZE_MB = 10
# Sentence ends first, then words, then characters
SENTENCE_SEPARATORS = [". ", "? ", "! ", " ", ""]
SCRAPER_API_URL = "http://api.scraperapi.com"
READABLE_TAGS = ["p", "h1", "h2", "h3", "li"]

_CONTROL_CHARS = re.compile(r"[\x00-\x08\x0B\x0C\x0E-\x1F\x7F]")
_WHITESPACE = re.compile(r"\s+")


class DocumentProcessingError(Exception):
    pass


class DocumentProcessor:
    @staticmethod
    def validate_file(content_type: str, size: int, max_size_mb: int = MAX_FILE_SIZE_MB) -> bool:
        if size > max_size_mb * 1024 * 1024:
            raise DocumentProcessingError(f"File size exceeds {max_size_mb}MB limit")
        if content_type not in ALLOWED_FILE_TYPES:
            raise DocumentProcessingError("Unsupported file type. Allowed: PDF, TXT, MD")
        return True

    @classmethod
    def process_file(cls, data: bytes, content_type: str) -> Dict[str, Any]:
        if content_type == "application/pdf":
            return cls.process_pdf(data)
        if content_type in ("text/plain", "text/markdown"):
            return cls.process_text(data)
        raise DocumentProcessingError(f"Unsupported file type: {content_type}")

    @classmethod
    def process_pdf(cls, data: bytes) -> Dict[str, Any]:
        try:
            reader = PdfReader(io.BytesIO(data))
            raw = "\n\n".join(page.extract_text() or "" for page in reader.pages)
        except Exception as e:
            raise DocumentProcessingError(f"Failed to process PDF: {e}") from e
        text = cls.clean_text(raw)
        metadata = cls._text_metadata(text)
        metadata["pageCount"] = len(reader.pages)
        return {"success": True, "text": text, "metadata": metadata}

    @classmethod
    def process_text(cls, data: bytes) -> Dict[str, Any]:
        text = cls.clean_text(data.decode("utf-8", errors="replace"))
        return {"success": True, "text": text, "metadata": cls._text_metadata(text)}

    @staticmethod
    def fetch_page(url: str) -> str:
        """Page HTML, through ScraperAPI when a key is configured."""
        try:
            if settings.scraper_api_key:
                response = httpx.get(
                    SCRAPER_API_URL,
                    params={"api_key": settings.scraper_api_key, "url": url, "render": "false", "country_code": "us"},
                    timeout=settings.scraper_api_timeout_seconds,
                )
            else:
                response = httpx.get(
                    url,
                    headers={"User-Agent": settings.scrape_user_agent},
                    timeout=settings.scrape_timeout_seconds,
                    follow_redirects=True,
                )
            response.raise_for_status()
        except httpx.HTTPError as e:
            raise DocumentProcessingError(f"Failed to process website: {e}") from e
        return response.text

    @classmethod
    def process_website(cls, url: str) -> Dict[str, Any]:
        """Fetch a page and keep its visible text."""
        soup = BeautifulSoup(cls.fetch_page(url), "html.parser")
        for element in soup(["script", "style", "nav", "footer", "header", "noscript"]):
            element.decompose()
        title = soup.title.string.strip() if soup.title and soup.title.string else url
        text = cls.clean_text((soup.body or soup).get_text(separator=" ", strip=True))

        metadata = cls._text_metadata(text)
        metadata.update({
            "url": url,
            "title": title,
            "scrapedAt": datetime.now(timezone.utc).isoformat(),
        })
        return {"success": True, "text": text, "metadata": metadata}

    @classmethod
    def extract_readable_text(cls, html: str) -> str:
        """Headings, paragraphs and list items only, joined into one line."""
        soup = BeautifulSoup(html, "html.parser")
        parts = [element.get_text() for element in soup.find_all(READABLE_TAGS)]
        return cls.clean_text(" ".join(parts))

    @staticmethod
    def clean_text(text: str) -> str:
        if not text:
            return ""
        text = _WHITESPACE.sub(" ", text)
        return _CONTROL_CHARS.sub("", text).strip()

    @staticmethod
    def chunk_text(text: str, chunk_size: int = 1000, overlap: int = 200) -> List[str]:
        """Split into overlapping chunks, preferring to end on a sentence, then on a word."""
        if not text:
            return []
        splitter = RecursiveCharacterTextSplitter(
            chunk_size=chunk_size,
            chunk_overlap=overlap,
            separators=SENTENCE_SEPARATORS,
            keep_separator="end",
            length_function=len,
            is_separator_regex=False,
        )
        return [chunk for chunk in splitter.split_text(text) if chunk]

    @staticmethod
    def estimate_tokens(text: str) -> int:
        if not text:
            return 0
        return math.ceil(len(text) / 4)

    @staticmethod
    def get_chunk_config(text_length: int) -> Dict[str, int]:
        if text_length < 5000:
            return {"chunk_size": 1000, "overlap": 100}
        if text_length < 20000:
            return {"chunk_size": 1500, "overlap": 200}
        return {"chunk_size": 2000, "overlap": 300}

    @staticmethod
    def _text_metadata(text: str) -> Dict[str, Any]:
        return {"wordCount": len(text.split()), "characterCount": len(text)}
