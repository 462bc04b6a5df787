"""
Vector Store Infrastructure
============================

In-memory knowledge-base index for retrieval-augmented triage.

Markdown files are split into paragraph-packed chunks, embedded once on first
use and ranked by cosine similarity against the query embedding.
"""

import asyncio
import hashlib
import math
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Sequence

from openai import AsyncOpenAI, OpenAIError

from src.config import Settings, settings as default_settings
from src.core import VectorStoreException
from src.shared.infrastructure.logging import get_logger, log_latency

logger = get_logger(__name__)

_TOKEN_RE = re.compile(r"[a-z0-9]+")
_PARAGRAPH_RE = re.compile(r"\n\s*\n")


@dataclass
class Document:
    """A chunk of a knowledge-base file with its embedding."""
    id: str
    text: str
    embedding: List[float]


@dataclass(frozen=True)
class RetrievedChunk:
    """Result from a knowledge-base search."""
    id: str
    score: float
    text: str

    def to_dict(self) -> dict:
        return {"id": self.id, "score": self.score, "text": self.text}


class IEmbedder(ABC):
    """Interface for text embedding backends."""

    @abstractmethod
    async def embed(self, text: str) -> List[float]:
        """Return the embedding vector of ``text``."""


class OpenAIEmbedder(IEmbedder):
    """Embeddings from an OpenAI-compatible endpoint."""

    def __init__(
        self,
        api_key: str,
        model: str,
        base_url: Optional[str] = None,
        client: Optional[AsyncOpenAI] = None
    ):
        self._client = client or AsyncOpenAI(api_key=api_key, base_url=base_url)
        self._model = model

    async def embed(self, text: str) -> List[float]:
        try:
            response = await self._client.embeddings.create(model=self._model, input=text)
        except OpenAIError as e:
            raise VectorStoreException(f"Embedding generation failed: {str(e)}") from e
        return list(response.data[0].embedding)


class HashingEmbedder(IEmbedder):
    """
    Deterministic bag-of-words embedder.

    Tokens are hashed into a fixed number of buckets and the vector is
    L2-normalised. Used when no embedding endpoint is configured.
    """

    def __init__(self, dimension: int = 384):
        self._dimension = dimension

    async def embed(self, text: str) -> List[float]:
        vector = [0.0] * self._dimension
        for token in _TOKEN_RE.findall(text.lower()):
            digest = hashlib.sha256(token.encode()).digest()
            bucket = int.from_bytes(digest[:4], "big") % self._dimension
            sign = 1.0 if digest[4] & 1 else -1.0
            vector[bucket] += sign
        norm = math.sqrt(sum(v * v for v in vector))
        if norm == 0:
            return vector
        return [v / norm for v in vector]


def cosine(a: Sequence[float], b: Sequence[float]) -> float:
    """Cosine similarity; 0 for zero vectors."""
    dot = sum(x * y for x, y in zip(a, b))
    norm_a = math.sqrt(sum(x * x for x in a))
    norm_b = math.sqrt(sum(y * y for y in b))
    return dot / (norm_a * norm_b + 1e-12)


def chunk_text(text: str, max_chars: int = 900) -> List[str]:
    """
    Pack blank-line separated paragraphs into chunks.

    A chunk grows paragraph by paragraph until adding the next one would
    exceed ``max_chars``. A single oversize paragraph becomes its own chunk.
    """
    chunks: List[str] = []
    buffer = ""
    for paragraph in _PARAGRAPH_RE.split(text):
        if len(f"{buffer}\n\n{paragraph}") > max_chars:
            if buffer.strip():
                chunks.append(buffer.strip())
            buffer = paragraph
        else:
            buffer = f"{buffer}\n\n{paragraph}" if buffer else paragraph
    if buffer.strip():
        chunks.append(buffer.strip())
    return chunks


class KnowledgeBase:
    """
    Lazily built index over ``*.md`` files in one directory.

    The index is built once per instance; concurrent first calls share the
    same build.
    """

    def __init__(
        self,
        kb_dir: Path,
        embedder: IEmbedder,
        chunk_max_chars: int = 900
    ):
        self._kb_dir = Path(kb_dir)
        self._embedder = embedder
        self._chunk_max_chars = chunk_max_chars
        self._documents: Optional[List[Document]] = None
        self._lock = asyncio.Lock()

    @classmethod
    def from_settings(cls, settings: Optional[Settings] = None) -> "KnowledgeBase":
        settings = settings or default_settings
        if settings.embedding_api_key:
            embedder: IEmbedder = OpenAIEmbedder(
                api_key=settings.embedding_api_key,
                model=settings.embedding_model,
                base_url=settings.embedding_base_url
            )
        else:
            embedder = HashingEmbedder(settings.embedding_dimension)
        return cls(settings.kb_dir, embedder, settings.kb_chunk_max_chars)

    async def initialize(self) -> None:
        """Load, chunk and embed every knowledge file."""
        if self._documents is not None:
            return
        async with self._lock:
            if self._documents is not None:
                return
            if not self._kb_dir.is_dir():
                raise VectorStoreException(f"Knowledge base directory not found: {self._kb_dir}")

            documents: List[Document] = []
            files = sorted(self._kb_dir.glob("*.md"))
            with log_latency(logger, "knowledge_base_load", files=len(files)):
                for path in files:
                    content = path.read_text(encoding="utf-8")
                    for index, chunk in enumerate(chunk_text(content, self._chunk_max_chars)):
                        documents.append(Document(
                            id=f"{path.name}#{index}",
                            text=chunk,
                            embedding=await self._embedder.embed(chunk)
                        ))
            self._documents = documents

    async def get_document_count(self) -> int:
        await self.initialize()
        return len(self._documents)

    async def retrieve(self, query: str, k: int = 4) -> List[RetrievedChunk]:
        """
        Rank chunks against ``query``.

        Returns:
            At most ``k`` chunks, highest cosine score first, scores rounded
            to four decimals.
        """
        await self.initialize()
        query_embedding = await self._embedder.embed(query)

        scored = sorted(
            ((cosine(query_embedding, doc.embedding), doc) for doc in self._documents),
            key=lambda pair: pair[0],
            reverse=True
        )
        return [
            RetrievedChunk(id=doc.id, score=round(score, 4), text=doc.text)
            for score, doc in scored[:max(k, 0)]
        ]


__all__ = [
    "Document",
    "HashingEmbedder",
    "IEmbedder",
    "KnowledgeBase",
    "OpenAIEmbedder",
    "RetrievedChunk",
    "chunk_text",
    "cosine",
]
