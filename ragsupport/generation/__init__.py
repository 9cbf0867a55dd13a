"""Generation on top of retrieved context."""

from .llm import LLMClient, LLMConfig
from .orchestrator import (
    GenerationOrchestrator,
    PipelineRequest,
    PipelineResult,
    PipelineStage,
    RAGPipeline,
    SourceRef,
)
from .parser import Parsed, ParseOutcome, Unparsed, extract_json_object, parse_model_output
from .translator import CachedTranslator

__all__ = [
    "LLMClient",
    "LLMConfig",
    "GenerationOrchestrator",
    "PipelineRequest",
    "PipelineResult",
    "PipelineStage",
    "RAGPipeline",
    "SourceRef",
    "Parsed",
    "ParseOutcome",
    "Unparsed",
    "extract_json_object",
    "parse_model_output",
    "CachedTranslator",
]
