"""Retrieval-augmented generation with response caching."""

from __future__ import annotations

from enum import Enum
from typing import Any

from pydantic import Field

from ragsupport.cache import ResponseCache, TTLPolicy, make_cache_key
from ragsupport.common.errors import PipelineError
from ragsupport.common.logging import LoggerMixin
from ragsupport.common.models import BaseModel
from ragsupport.rag.context import AssembledContext, ContextAssembler, build_prompt
from ragsupport.rag.retriever import KnowledgeRetriever
from ragsupport.rag.vector_store import RetrievedChunk

from .llm import LLMClient
from .parser import ParseOutcome, Parsed, parse_model_output


DEFAULT_SYSTEM_PROMPT = (
    "Answer using the reference context when it is relevant. "
    "Respond with a single JSON object."
)


class PipelineStage(str, Enum):
    """Per-request pipeline states."""

    PENDING = "pending"
    CACHE_CHECK = "cache_check"
    HIT = "hit"
    MISS = "miss"
    RETRIEVE = "retrieve"
    RERANK = "rerank"
    ASSEMBLE = "assemble"
    GENERATE = "generate"
    PARSE = "parse"
    CACHE_WRITE = "cache_write"
    DONE = "done"
    FAILED = "failed"


class SourceRef(BaseModel):
    """Provenance of a chunk used as context."""

    document_id: str
    source_title: str = ""
    chunk_index: int = 0
    score: float = 0.0


class PipelineRequest(BaseModel):
    """A cached retrieval-augmented generation request."""

    query: str = Field(min_length=1, description="Query used for retrieval")
    instruction: str = Field(min_length=1, description="Task instruction for the model")
    scope: str = Field(default="rag-generate", description="Cache scope")
    params: dict[str, Any] = Field(
        default_factory=dict,
        description="Output-affecting parameters folded into the cache key",
    )
    ttl_seconds: int = Field(
        default=int(TTLPolicy.GENERATED.total_seconds()),
        gt=0,
        description="Cache TTL for this call site",
    )
    threshold: float | None = Field(default=None)
    count: int | None = Field(default=None, gt=0)
    top_n: int | None = Field(default=None, gt=0)
    use_cache: bool = Field(default=True)
    require_context: bool = Field(
        default=True,
        description="Fail when retrieval fails instead of generating without context",
    )
    cache_unparsed: bool = Field(default=False, description="Also cache raw-text fallbacks")
    case_insensitive: bool = Field(default=False, description="Lower-case text in the cache key")


class PipelineResult(BaseModel):
    """Outcome of a pipeline run."""

    value: dict[str, Any] | None = Field(default=None, description="Parsed structured answer")
    raw_text: str = Field(default="", description="Raw model output")
    parsed: bool = Field(default=False)
    cached: bool = Field(default=False)
    stages: list[PipelineStage] = Field(default_factory=list)
    sources: list[SourceRef] = Field(default_factory=list)

    @property
    def answer(self) -> Any:
        """Structured answer, or the raw text when parsing failed."""
        return self.value if self.parsed else self.raw_text


class GenerationOrchestrator(LoggerMixin):
    """Assembles a prompt, calls the model and parses its answer."""

    def __init__(
        self,
        llm: LLMClient,
        system_prompt: str = DEFAULT_SYSTEM_PROMPT,
    ) -> None:
        self.llm = llm
        self.system_prompt = system_prompt

    async def complete(
        self,
        prompt_context: AssembledContext | str,
        task_instruction: str,
    ) -> str:
        """Call the model with the instruction and context; returns raw text."""
        prompt = build_prompt(task_instruction, prompt_context)
        return await self.llm.complete(self.system_prompt, prompt)

    async def generate(
        self,
        prompt_context: AssembledContext | str,
        task_instruction: str,
    ) -> ParseOutcome:
        """Generate a structured result.

        Args:
            prompt_context: Assembled reference context
            task_instruction: Task instruction

        Returns:
            ``Parsed`` result, or ``Unparsed`` with the raw model text

        Raises:
            ExternalServiceError: If the model call fails
        """
        text = await self.complete(prompt_context, task_instruction)
        outcome = parse_model_output(text)

        if not isinstance(outcome, Parsed):
            self.logger.warning("model_output_unparsed", reason=outcome.reason)
        return outcome


class RAGPipeline(LoggerMixin):
    """Cache check, retrieval, rerank, assembly, generation and cache write.

    Rerank and parse failures degrade in place. A retrieval failure fails
    the run with ``PipelineError`` unless the request allows generating
    without context. Model call failures propagate unchanged so callers see
    the transient or permanent classification.
    """

    def __init__(
        self,
        retriever: KnowledgeRetriever,
        orchestrator: GenerationOrchestrator,
        cache: ResponseCache | None = None,
        assembler: ContextAssembler | None = None,
    ) -> None:
        """Initialize the pipeline.

        Args:
            retriever: Knowledge retriever
            orchestrator: Generation orchestrator
            cache: Response cache; caching is skipped without one
            assembler: Context assembler
        """
        self.retriever = retriever
        self.orchestrator = orchestrator
        self.cache = cache
        self.assembler = assembler or ContextAssembler()

    def cache_key(self, request: PipelineRequest) -> str:
        """Cache key covering the query, the instruction and every output-affecting knob."""
        return make_cache_key(
            request.scope,
            {"query": request.query, "instruction": request.instruction},
            params={
                **request.params,
                "threshold": request.threshold,
                "count": request.count,
                "top_n": request.top_n,
            },
            case_insensitive=request.case_insensitive,
        )

    async def run(self, request: PipelineRequest) -> PipelineResult:
        """Run the pipeline for one request.

        Args:
            request: Pipeline request

        Returns:
            Pipeline result with the stage trail

        Raises:
            PipelineError: If retrieval fails and context is required
            ExternalServiceError: If the model call fails
        """
        stages = [PipelineStage.PENDING]
        use_cache = self.cache is not None and request.use_cache
        cache_key = None

        if use_cache:
            stages.append(PipelineStage.CACHE_CHECK)
            cache_key = self.cache_key(request)
            cached = await self.cache.get(cache_key, request.scope)
            if cached is not None:
                stages += [PipelineStage.HIT, PipelineStage.DONE]
                return PipelineResult(**cached, cached=True, stages=stages)
            stages.append(PipelineStage.MISS)

        stages.append(PipelineStage.RETRIEVE)
        try:
            candidates = await self.retriever.retrieve_candidates(
                request.query, request.threshold, request.count
            )
        except Exception as e:
            if request.require_context:
                stages.append(PipelineStage.FAILED)
                self.logger.error("pipeline_failed", stage=PipelineStage.RETRIEVE.value, error=str(e))
                raise PipelineError(PipelineStage.RETRIEVE.value, e) from e
            self.logger.warning("retrieval_degraded", error=str(e))
            candidates = []

        stages.append(PipelineStage.RERANK)
        ranked = await self._rerank(request, candidates)

        stages.append(PipelineStage.ASSEMBLE)
        context = self.assembler.assemble(ranked)

        stages.append(PipelineStage.GENERATE)
        try:
            text = await self.orchestrator.complete(context, request.instruction)
        except Exception as e:
            stages.append(PipelineStage.FAILED)
            self.logger.error("pipeline_failed", stage=PipelineStage.GENERATE.value, error=str(e))
            raise

        stages.append(PipelineStage.PARSE)
        outcome = parse_model_output(text)
        parsed = isinstance(outcome, Parsed)
        if not parsed:
            self.logger.warning("model_output_unparsed", reason=outcome.reason)

        result = PipelineResult(
            value=outcome.value if parsed else None,
            raw_text=outcome.raw,
            parsed=parsed,
            sources=[
                SourceRef(
                    document_id=chunk.document_id,
                    source_title=chunk.source_title,
                    chunk_index=chunk.chunk_index,
                    score=chunk.relevance,
                )
                for chunk in ranked[:context.included]
            ],
        )

        if use_cache:
            stages.append(PipelineStage.CACHE_WRITE)
            if parsed or request.cache_unparsed:
                await self.cache.put(
                    cache_key,
                    request.scope,
                    result.model_dump(mode="json", include={"value", "raw_text", "parsed", "sources"}),
                    request.ttl_seconds,
                    params={"query": request.query, **request.params},
                )

        stages.append(PipelineStage.DONE)
        result.stages = stages

        self.logger.info(
            "pipeline_completed",
            scope=request.scope,
            parsed=parsed,
            sources=len(result.sources),
        )
        return result

    async def _rerank(
        self,
        request: PipelineRequest,
        candidates: list[RetrievedChunk],
    ) -> list[RetrievedChunk]:
        top_n = request.top_n or self.retriever.config.top_n
        try:
            return await self.retriever.rerank_candidates(request.query, candidates, top_n)
        except Exception as e:
            self.logger.warning("rerank_degraded", error=str(e))
            return candidates[:top_n]
