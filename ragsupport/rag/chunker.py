"""Document chunking for the RAG pipeline.

Token counts are estimated as ``ceil(len(text) / chars_per_token)``. This is
an approximation of the embedding model's tokenizer, not an exact match: for
dense scripts such as Hangul or Han characters one character is often one
or more real tokens, so ``chars_per_token`` should be recalibrated per
deployment when content is mostly non-Latin.
"""

from __future__ import annotations

import hashlib
import math
import re
from dataclasses import dataclass
from typing import Any

from pydantic import Field

from ragsupport.common.errors import InvalidInputError
from ragsupport.common.logging import LoggerMixin
from ragsupport.common.models import BaseModel
from ragsupport.rag.documents import Document


PARAGRAPH_SEPARATOR = "\n\n"
SENTENCE_SEPARATOR = " "


def estimate_tokens(text: str, chars_per_token: int = 4) -> int:
    """Approximate token count of a text.

    Args:
        text: Text to measure
        chars_per_token: Characters assumed per token

    Returns:
        Estimated token count (rounded up)
    """
    return math.ceil(len(text) / chars_per_token)


class ChunkConfig(BaseModel):
    """Configuration for document chunking."""

    max_tokens: int = Field(default=1024, gt=0, description="Token budget per chunk")
    overlap_tokens: int = Field(default=120, ge=0, description="Tokens carried into the next chunk")
    chars_per_token: int = Field(default=4, gt=0, description="Token estimate divisor")


class KnowledgeChunk(BaseModel):
    """A chunk of a document, the unit of retrieval."""

    chunk_id: str = Field(description="Unique chunk ID")
    document_id: str = Field(description="Parent document ID")
    chunk_index: int = Field(ge=0, description="Index within document")
    content: str = Field(description="Chunk content")
    token_count: int = Field(description="Approximate token count")
    metadata: dict[str, Any] = Field(default_factory=dict)


@dataclass(frozen=True)
class ChunkSpan:
    """Chunk text plus the length of the overlap prefix it starts with."""

    text: str
    overlap: int


class TextChunker(LoggerMixin):
    """Paragraph-first chunker with character overlap.

    Paragraphs are packed into a chunk while the estimate stays within the
    budget. When a chunk closes, the next one is seeded with the tail of the
    closed chunk so adjacent chunks share context across the cut. Paragraphs
    larger than the budget are split on sentence boundaries instead.
    """

    PARAGRAPH_BREAK = re.compile(r"\n\s*\n")

    # Whitespace after terminal punctuation, or directly after CJK full stops
    SENTENCE_BREAK = re.compile(r"(?<=[.!?])\s+|(?<=[。！？])\s*")

    def __init__(self, config: ChunkConfig | None = None) -> None:
        """Initialize the chunker.

        Args:
            config: Chunking configuration
        """
        self.config = config or ChunkConfig()

    def chunk(
        self,
        text: str,
        max_tokens: int | None = None,
        overlap_tokens: int | None = None,
    ) -> list[str]:
        """Split text into overlapping chunks.

        Args:
            text: Raw text
            max_tokens: Token budget per chunk
            overlap_tokens: Tokens of overlap between adjacent chunks

        Returns:
            Ordered list of non-empty chunk texts
        """
        return [span.text for span in self.split(text, max_tokens, overlap_tokens)]

    def split(
        self,
        text: str,
        max_tokens: int | None = None,
        overlap_tokens: int | None = None,
    ) -> list[ChunkSpan]:
        """Split text into chunks, reporting each chunk's overlap prefix.

        Args:
            text: Raw text
            max_tokens: Token budget per chunk
            overlap_tokens: Tokens of overlap between adjacent chunks

        Returns:
            Ordered list of chunk spans
        """
        max_tokens = self.config.max_tokens if max_tokens is None else max_tokens
        overlap_tokens = self.config.overlap_tokens if overlap_tokens is None else overlap_tokens

        if max_tokens <= 0:
            raise InvalidInputError("max_tokens must be positive")
        if overlap_tokens < 0 or overlap_tokens >= max_tokens:
            raise InvalidInputError("overlap_tokens must be in [0, max_tokens)")

        if not text or not text.strip():
            return []

        builder = _ChunkBuilder(
            budget_chars=max_tokens * self.config.chars_per_token,
            overlap_chars=overlap_tokens * self.config.chars_per_token,
        )

        for paragraph in self.PARAGRAPH_BREAK.split(text):
            paragraph = paragraph.strip()
            if not paragraph:
                continue

            if len(paragraph) <= builder.budget_chars:
                builder.add(paragraph, PARAGRAPH_SEPARATOR)
                continue

            # Oversized paragraph: fall back to sentences
            separator = PARAGRAPH_SEPARATOR
            for sentence in self._split_sentences(paragraph):
                builder.add(sentence, separator)
                separator = SENTENCE_SEPARATOR

        return builder.finish()

    def chunk_document(
        self,
        document: Document,
        max_tokens: int | None = None,
        overlap_tokens: int | None = None,
    ) -> list[KnowledgeChunk]:
        """Chunk a document into chunk records.

        Args:
            document: Source document
            max_tokens: Token budget per chunk
            overlap_tokens: Tokens of overlap between adjacent chunks

        Returns:
            List of chunk records ordered by index
        """
        texts = self.chunk(document.content, max_tokens, overlap_tokens)
        total_chunks = len(texts)

        self.logger.info(
            "chunking_document",
            document_id=document.id,
            content_length=len(document.content),
            chunks=total_chunks,
        )

        return [
            KnowledgeChunk(
                chunk_id=self._generate_chunk_id(document.id, i, text),
                document_id=document.id,
                chunk_index=i,
                content=text,
                token_count=estimate_tokens(text, self.config.chars_per_token),
                metadata={
                    "chunk_index": i,
                    "total_chunks": total_chunks,
                    "document_title": document.title,
                    "source_url": document.source_url,
                },
            )
            for i, text in enumerate(texts)
        ]

    def _split_sentences(self, paragraph: str) -> list[str]:
        """Split a paragraph into sentences."""
        return [s.strip() for s in self.SENTENCE_BREAK.split(paragraph) if s and s.strip()]

    def _generate_chunk_id(self, document_id: str, index: int, content: str) -> str:
        """Generate unique chunk ID."""
        hash_input = f"{document_id}:{index}:{content[:100]}"
        return f"{document_id}-chunk-{hashlib.md5(hash_input.encode()).hexdigest()[:8]}"

    def estimate_chunks(self, content_length: int) -> int:
        """Estimate number of chunks for given content length.

        Args:
            content_length: Length of content in characters

        Returns:
            Estimated number of chunks
        """
        budget = self.config.max_tokens * self.config.chars_per_token
        step = budget - self.config.overlap_tokens * self.config.chars_per_token
        if content_length <= budget:
            return 1
        return 1 + math.ceil((content_length - budget) / step)


class _ChunkBuilder:
    """Accumulates units into chunks under a character budget."""

    def __init__(self, budget_chars: int, overlap_chars: int) -> None:
        self.budget_chars = budget_chars
        self.overlap_chars = overlap_chars
        self.spans: list[ChunkSpan] = []
        self._current = ""
        self._seed_length = 0
        self._has_body = False

    def add(self, unit: str, separator: str) -> None:
        candidate = self._join(self._current, unit, separator)

        if self._has_body and len(candidate) > self.budget_chars:
            self._close()
            candidate = self._join(self._current, unit, separator)

        if not self._has_body and len(candidate) > self.budget_chars:
            # Shrink the overlap seed so seed plus unit still fits
            room = self.budget_chars - len(unit) - len(separator)
            seed = self._current[-room:].lstrip() if room > 0 else ""
            self._current = seed
            self._seed_length = len(seed)
            candidate = self._join(seed, unit, separator)

        self._current = candidate
        self._has_body = True

    def finish(self) -> list[ChunkSpan]:
        if self._has_body:
            self._close()
        return self.spans

    def _close(self) -> None:
        text = self._current.strip()
        if text:
            self.spans.append(ChunkSpan(text=text, overlap=self._seed_length))

        seed = text[-self.overlap_chars:].lstrip() if self.overlap_chars > 0 else ""
        self._current = seed
        self._seed_length = len(seed)
        self._has_body = False

    @staticmethod
    def _join(current: str, unit: str, separator: str) -> str:
        return f"{current}{separator}{unit}" if current else unit
