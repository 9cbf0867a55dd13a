"""Concrete batch tasks shipped with the service."""

from __future__ import annotations

from datetime import datetime
from typing import Callable

from pydantic import Field

from ragsupport.common.errors import InvalidInputError, ParseError
from ragsupport.common.logging import LoggerMixin
from ragsupport.common.models import BaseModel, utcnow
from ragsupport.generation.orchestrator import GenerationOrchestrator
from ragsupport.generation.parser import Parsed
from ragsupport.rag.documents import DocumentRepository

from .processor import BatchTask


DEFAULT_SUMMARY_INSTRUCTION = (
    "Summarize the reference document for a learner. Respond with a JSON object "
    'holding "summary" (two or three sentences), "key_points" (a list of short '
    'strings) and "example" (one sentence that uses the main idea).'
)


class DocumentSummaryConfig(BaseModel):
    """Configuration for bulk document summaries."""

    instruction: str = Field(default=DEFAULT_SUMMARY_INSTRUCTION, min_length=1)
    output_key: str = Field(
        default="generated_summary",
        min_length=1,
        description="Metadata key the parsed output is stored under",
    )
    max_context_chars: int = Field(
        default=12000,
        gt=0,
        description="Document content beyond this length is not sent to the model",
    )


class DocumentSummaryTask(BatchTask, LoggerMixin):
    """Generates structured content for stored documents.

    Items are document IDs. A document counts as done once its metadata
    holds a non-empty value under ``output_key``, so a failed item stays
    selectable on the next invocation. Output that cannot be parsed is a
    failure and nothing is written.
    """

    name = "summarize_documents"

    def __init__(
        self,
        documents: DocumentRepository,
        orchestrator: GenerationOrchestrator,
        config: DocumentSummaryConfig | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        """Initialize the task.

        Args:
            documents: Repository holding the documents and their output
            orchestrator: Generation orchestrator
            config: Task configuration
            clock: UTC clock for the generation timestamp
        """
        self.documents = documents
        self.orchestrator = orchestrator
        self.config = config or DocumentSummaryConfig()
        self._clock = clock

    async def is_done(self, item_id: str) -> bool:
        document = await self.documents.get(item_id)
        return document is not None and bool(document.metadata.get(self.config.output_key))

    async def process(self, item_id: str) -> None:
        document = await self.documents.get(item_id)
        if document is None:
            raise InvalidInputError(f"Document {item_id} not found")

        outcome = await self.orchestrator.generate(
            document.content[: self.config.max_context_chars],
            self.config.instruction,
        )
        if not isinstance(outcome, Parsed):
            raise ParseError(f"unparseable model output for {item_id}: {outcome.reason}")

        metadata = dict(document.metadata)
        metadata[self.config.output_key] = outcome.value
        metadata[f"{self.config.output_key}_at"] = self._clock().isoformat()

        if not await self.documents.update(document.model_copy(update={"metadata": metadata})):
            raise InvalidInputError(f"Document {item_id} was deleted during generation")

        self.logger.info(
            "document_summary_stored",
            document_id=item_id,
            fields=sorted(outcome.value),
        )
