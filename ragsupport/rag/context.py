"""Prompt context assembly from ranked chunks."""

from __future__ import annotations

from pydantic import Field

from ragsupport.common.logging import LoggerMixin
from ragsupport.common.models import BaseModel
from ragsupport.rag.chunker import estimate_tokens
from ragsupport.rag.vector_store import RetrievedChunk


CONTEXT_SEPARATOR = "\n\n---\n\n"


class ContextConfig(BaseModel):
    """Configuration for context assembly."""

    max_tokens: int = Field(default=3000, gt=0, description="Token budget for the context block")
    chars_per_token: int = Field(default=4, gt=0)
    separator: str = Field(default=CONTEXT_SEPARATOR)


class AssembledContext(BaseModel):
    """A prompt-ready context block."""

    text: str = Field(default="", description="Labelled context text")
    included: int = Field(default=0, description="Chunks included")
    dropped: int = Field(default=0, description="Lower-ranked chunks left out")
    truncated: bool = Field(default=False, description="Whether the top chunk was cut to fit")
    token_count: int = Field(default=0)

    @property
    def is_empty(self) -> bool:
        return not self.text


class ContextAssembler(LoggerMixin):
    """Formats ranked chunks into one size-bounded block.

    Chunks keep their rank order and each carries a provenance label.
    When the block is over budget the lowest-ranked chunks go first; if the
    top chunk alone is too large it is truncated instead of dropped.
    """

    def __init__(self, config: ContextConfig | None = None) -> None:
        self.config = config or ContextConfig()

    @staticmethod
    def label(position: int, chunk: RetrievedChunk) -> str:
        """Provenance label for a chunk at a 1-based rank position."""
        title = chunk.source_title or "Untitled"
        total = chunk.metadata.get("total_chunks")
        where = f"chunk {chunk.chunk_index + 1}/{total}" if total else f"chunk {chunk.chunk_index + 1}"
        return f"[{position}] {title} ({where})"

    def assemble(
        self,
        chunks: list[RetrievedChunk],
        max_tokens: int | None = None,
    ) -> AssembledContext:
        """Assemble ranked chunks into a context block.

        Args:
            chunks: Chunks in rank order, most relevant first
            max_tokens: Token budget overriding the configured one

        Returns:
            Assembled context with inclusion counts
        """
        if not chunks:
            return AssembledContext()

        max_tokens = self.config.max_tokens if max_tokens is None else max_tokens
        budget_chars = max_tokens * self.config.chars_per_token
        separator = self.config.separator

        blocks = [
            f"{self.label(i, chunk)}\n{chunk.content.strip()}"
            for i, chunk in enumerate(chunks, start=1)
        ]

        included: list[str] = []
        size = 0
        for block in blocks:
            added = len(block) + (len(separator) if included else 0)
            if size + added > budget_chars:
                break
            included.append(block)
            size += added

        truncated = False
        if not included:
            included = [blocks[0][:budget_chars].rstrip()]
            truncated = True

        text = separator.join(included)
        dropped = len(blocks) - len(included)

        if dropped or truncated:
            self.logger.info(
                "context_trimmed",
                included=len(included),
                dropped=dropped,
                truncated=truncated,
                budget_tokens=max_tokens,
            )

        return AssembledContext(
            text=text,
            included=len(included),
            dropped=dropped,
            truncated=truncated,
            token_count=estimate_tokens(text, self.config.chars_per_token),
        )


def build_prompt(instruction: str, context: AssembledContext | str) -> str:
    """Join a task instruction with a reference context section.

    Args:
        instruction: Task instruction
        context: Assembled context or raw context text

    Returns:
        Prompt text; the context section is omitted when empty
    """
    text = context.text if isinstance(context, AssembledContext) else context
    instruction = instruction.strip()
    if not text:
        return instruction
    return f"{instruction}\n\n## Reference Context\n\n{text}"
