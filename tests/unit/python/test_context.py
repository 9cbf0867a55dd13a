"""Unit tests for context assembly."""

import pytest

from ragsupport.rag.context import (
    CONTEXT_SEPARATOR,
    AssembledContext,
    ContextAssembler,
    ContextConfig,
    build_prompt,
)
from ragsupport.rag.vector_store import RetrievedChunk


def ranked(*contents: str, title: str = "Guide") -> list[RetrievedChunk]:
    return [
        RetrievedChunk(
            chunk_id=f"c{i}",
            document_id="d",
            source_title=title,
            content=content,
            chunk_index=i,
            score=0.9,
            metadata={"total_chunks": len(contents)},
        )
        for i, content in enumerate(contents)
    ]


@pytest.fixture
def assembler() -> ContextAssembler:
    return ContextAssembler()


class TestContextAssembler:
    """Tests for ContextAssembler."""

    def test_empty_input(self, assembler):
        context = assembler.assemble([])

        assert context.is_empty
        assert context.included == 0

    def test_labels_carry_provenance(self, assembler):
        context = assembler.assemble(ranked("First part.", "Second part."))

        blocks = context.text.split(CONTEXT_SEPARATOR)
        assert blocks == [
            "[1] Guide (chunk 1/2)\nFirst part.",
            "[2] Guide (chunk 2/2)\nSecond part.",
        ]
        assert context.included == 2
        assert context.dropped == 0
        assert not context.truncated

    def test_label_without_total(self):
        chunk = RetrievedChunk(chunk_id="c", document_id="d", content="x", chunk_index=4, score=0.5)

        assert ContextAssembler.label(3, chunk) == "[3] Untitled (chunk 5)"

    def test_drops_lowest_ranked_first(self, assembler):
        chunks = ranked("a" * 80, "b" * 80, "c" * 80)

        context = assembler.assemble(chunks, max_tokens=60)

        assert context.included == 2
        assert context.dropped == 1
        assert "a" * 80 in context.text
        assert "b" * 80 in context.text
        assert "c" * 80 not in context.text
        assert len(context.text) <= 60 * 4

    def test_truncates_oversized_top_chunk(self, assembler):
        chunks = ranked("x" * 1000, "short")

        context = assembler.assemble(chunks, max_tokens=50)

        assert context.truncated
        assert context.included == 1
        assert context.dropped == 1
        assert context.text.startswith("[1] Guide (chunk 1/2)\n")
        assert len(context.text) <= 50 * 4

    def test_configured_budget(self):
        assembler = ContextAssembler(ContextConfig(max_tokens=10, chars_per_token=2))

        context = assembler.assemble(ranked("y" * 100))

        assert context.truncated
        assert len(context.text) <= 20
        assert context.token_count == (len(context.text) + 1) // 2


class TestBuildPrompt:
    """Tests for build_prompt."""

    def test_appends_context_section(self):
        prompt = build_prompt("Answer the question.", AssembledContext(text="[1] Guide\nBody"))

        assert prompt == "Answer the question.\n\n## Reference Context\n\n[1] Guide\nBody"

    def test_empty_context_leaves_instruction(self):
        assert build_prompt("  Answer.  ", AssembledContext()) == "Answer."
        assert build_prompt("Answer.", "") == "Answer."
