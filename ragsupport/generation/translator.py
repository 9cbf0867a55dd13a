"""Cached machine translation."""

from __future__ import annotations

import json

from ragsupport.cache import ResponseCache, TTLPolicy, make_cache_key
from ragsupport.common.errors import InvalidInputError
from ragsupport.common.logging import LoggerMixin

from .llm import LLMClient
from .parser import Parsed, parse_model_output


TRANSLATION_SCOPE = "auto-translate"
SEGMENTS_SCOPE = "auto-translate-segments"

TRANSLATION_SYSTEM_PROMPT = """You are a professional localization engine for a language learning web app.

Rules:
- Output MUST be valid JSON: {"translation":"..."}
- Translate naturally for UI, marketing and legal content.
- Keep emojis and proper nouns as-is.
- Do not add extra fields.
- Preserve line breaks when helpful.
"""

SEGMENTS_SYSTEM_PROMPT = """You are a professional localization engine for a language learning web app.

Rules:
- Output MUST be valid JSON: {"translations":["...", "..."]}
- Return exactly one translation per input segment, in the same order.
- Keep emojis and proper nouns as-is.
- Do not add extra fields.
"""


class CachedTranslator(LoggerMixin):
    """Translates text through the model with a year-long cache.

    The same input and language pair always yields the same translation,
    so results are cached under the ``TRANSLATION`` TTL.
    """

    def __init__(
        self,
        llm: LLMClient,
        cache: ResponseCache | None = None,
    ) -> None:
        """Initialize the translator.

        Args:
            llm: Generative model client
            cache: Response cache; caching is skipped without one
        """
        self.llm = llm
        self.cache = cache

    async def translate(
        self,
        text: str,
        source_language: str,
        target_language: str,
    ) -> tuple[str, bool]:
        """Translate a text.

        Args:
            text: Text to translate
            source_language: Source language code
            target_language: Target language code

        Returns:
            Tuple of translation and whether it came from the cache
        """
        if not text or not text.strip():
            return "", False

        _require_languages(source_language, target_language)
        if source_language == target_language:
            return text, False

        params = {"source_language": source_language, "target_language": target_language}
        cache_key = make_cache_key(TRANSLATION_SCOPE, text, params)

        if self.cache is not None:
            cached = await self.cache.get(cache_key, TRANSLATION_SCOPE)
            if cached is not None and cached.get("translation"):
                return cached["translation"], True

        prompt = f"Translate from {source_language} to {target_language}.\n\nTEXT:\n{text}"
        raw = await self.llm.complete(TRANSLATION_SYSTEM_PROMPT, prompt)

        outcome = parse_model_output(raw)
        translation = ""
        if isinstance(outcome, Parsed):
            translation = str(outcome.value.get("translation") or "").strip()
        if not translation:
            self.logger.warning("translation_unparsed", source=source_language, target=target_language)
            translation = raw.strip()

        if self.cache is not None:
            await self.cache.put(
                cache_key,
                TRANSLATION_SCOPE,
                {"translation": translation, **params},
                TTLPolicy.TRANSLATION,
                params=params,
            )

        return translation, False

    async def translate_segments(
        self,
        segments: list[str],
        source_language: str,
        target_language: str,
    ) -> tuple[list[str], bool]:
        """Translate an ordered list of segments in one call.

        The segment list is keyed canonically as a whole. When the model
        does not return one translation per segment, each segment is
        translated on its own.

        Args:
            segments: Segments to translate
            source_language: Source language code
            target_language: Target language code

        Returns:
            Tuple of translations in input order and whether they came from the cache
        """
        if not segments:
            return [], False

        _require_languages(source_language, target_language)
        if source_language == target_language:
            return list(segments), False

        params = {
            "source_language": source_language,
            "target_language": target_language,
            "segments": len(segments),
        }
        cache_key = make_cache_key(SEGMENTS_SCOPE, segments, params)

        if self.cache is not None:
            cached = await self.cache.get(cache_key, SEGMENTS_SCOPE)
            if cached is not None and len(cached.get("translations", [])) == len(segments):
                return cached["translations"], True

        prompt = (
            f"Translate each segment from {source_language} to {target_language}.\n\n"
            f"SEGMENTS:\n{json.dumps(segments, ensure_ascii=False)}"
        )
        raw = await self.llm.complete(SEGMENTS_SYSTEM_PROMPT, prompt)

        outcome = parse_model_output(raw)
        translations = outcome.value.get("translations") if isinstance(outcome, Parsed) else None

        if not isinstance(translations, list) or len(translations) != len(segments):
            self.logger.warning(
                "segment_translation_mismatch",
                segments=len(segments),
                returned=len(translations) if isinstance(translations, list) else None,
            )
            translations = [
                (await self.translate(segment, source_language, target_language))[0]
                for segment in segments
            ]
        else:
            translations = [str(t) for t in translations]

        if self.cache is not None:
            await self.cache.put(
                cache_key,
                SEGMENTS_SCOPE,
                {"translations": translations, **params},
                TTLPolicy.TRANSLATION,
                params=params,
            )

        return translations, False


def _require_languages(source_language: str, target_language: str) -> None:
    if not source_language or not target_language:
        raise InvalidInputError("source_language and target_language are required")
