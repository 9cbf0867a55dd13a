"""Unit tests for cached translation."""

import json

import pytest

from ragsupport.cache.keys import TTLPolicy, make_cache_key
from ragsupport.common.errors import InvalidInputError
from ragsupport.generation.translator import SEGMENTS_SCOPE, TRANSLATION_SCOPE, CachedTranslator

from conftest import FakeChatAPI, make_llm


def reply(translation: str) -> str:
    return json.dumps({"translation": translation}, ensure_ascii=False)


class TestCachedTranslator:
    """Tests for CachedTranslator.translate."""

    @pytest.mark.asyncio
    async def test_miss_then_hit(self, response_cache):
        api = FakeChatAPI([reply("안녕하세요")])
        translator = CachedTranslator(make_llm(api), response_cache)

        first = await translator.translate("Hello", "en", "ko")
        second = await translator.translate("Hello", "en", "ko")

        assert first == ("안녕하세요", False)
        assert second == ("안녕하세요", True)
        assert len(api.calls) == 1
        assert api.prompts[0] == "Translate from en to ko.\n\nTEXT:\nHello"

    @pytest.mark.asyncio
    async def test_cached_for_a_year(self, response_cache, clock):
        translator = CachedTranslator(make_llm(FakeChatAPI([reply("Hola")])), response_cache)

        await translator.translate("Hello", "en", "es")

        key = make_cache_key(TRANSLATION_SCOPE, "Hello", {"source_language": "en", "target_language": "es"})
        entry = await response_cache.lookup(key, TRANSLATION_SCOPE)
        assert entry.expires_at == clock() + TTLPolicy.TRANSLATION
        assert entry.response["translation"] == "Hola"

    @pytest.mark.asyncio
    async def test_language_pair_in_key(self, response_cache):
        api = FakeChatAPI([reply("Hola"), reply("Bonjour")])
        translator = CachedTranslator(make_llm(api), response_cache)

        assert (await translator.translate("Hello", "en", "es"))[0] == "Hola"
        assert (await translator.translate("Hello", "en", "fr"))[0] == "Bonjour"
        assert len(api.calls) == 2

    @pytest.mark.asyncio
    async def test_empty_text(self, chat_api):
        translator = CachedTranslator(make_llm(chat_api))

        assert await translator.translate("  ", "en", "ko") == ("", False)
        assert chat_api.calls == []

    @pytest.mark.asyncio
    async def test_same_language_passthrough(self, chat_api):
        translator = CachedTranslator(make_llm(chat_api))

        assert await translator.translate("Hello", "en", "en") == ("Hello", False)
        assert chat_api.calls == []

    @pytest.mark.asyncio
    async def test_missing_language(self, chat_api):
        translator = CachedTranslator(make_llm(chat_api))

        with pytest.raises(InvalidInputError):
            await translator.translate("Hello", "", "ko")

    @pytest.mark.asyncio
    async def test_unparsed_reply_falls_back_to_raw_text(self, response_cache):
        api = FakeChatAPI(["  Bonjour  "])
        translator = CachedTranslator(make_llm(api), response_cache)

        assert await translator.translate("Hello", "en", "fr") == ("Bonjour", False)
        assert await translator.translate("Hello", "en", "fr") == ("Bonjour", True)


class TestTranslateSegments:
    """Tests for CachedTranslator.translate_segments."""

    @pytest.mark.asyncio
    async def test_batch_translation_cached(self, response_cache):
        api = FakeChatAPI([json.dumps({"translations": ["하나", "둘"]}, ensure_ascii=False)])
        translator = CachedTranslator(make_llm(api), response_cache)

        first = await translator.translate_segments(["One", "Two"], "en", "ko")
        second = await translator.translate_segments(["One", "Two"], "en", "ko")

        assert first == (["하나", "둘"], False)
        assert second == (["하나", "둘"], True)
        assert len(api.calls) == 1

    @pytest.mark.asyncio
    async def test_segment_order_in_key(self, response_cache):
        api = FakeChatAPI([
            json.dumps({"translations": ["1", "2"]}),
            json.dumps({"translations": ["2", "1"]}),
        ])
        translator = CachedTranslator(make_llm(api), response_cache)

        await translator.translate_segments(["One", "Two"], "en", "ko")
        result, cached = await translator.translate_segments(["Two", "One"], "en", "ko")

        assert not cached
        assert result == ["2", "1"]

    @pytest.mark.asyncio
    async def test_count_mismatch_translates_each_segment(self, response_cache):
        api = FakeChatAPI([
            json.dumps({"translations": ["only one"]}),
            reply("하나"),
            reply("둘"),
        ])
        translator = CachedTranslator(make_llm(api), response_cache)

        result = await translator.translate_segments(["One", "Two"], "en", "ko")

        assert result == (["하나", "둘"], False)
        assert len(api.calls) == 3

        key = make_cache_key(
            SEGMENTS_SCOPE,
            ["One", "Two"],
            {"source_language": "en", "target_language": "ko", "segments": 2},
        )
        assert (await response_cache.get(key, SEGMENTS_SCOPE))["translations"] == ["하나", "둘"]

    @pytest.mark.asyncio
    async def test_empty_and_same_language(self, chat_api):
        translator = CachedTranslator(make_llm(chat_api))

        assert await translator.translate_segments([], "en", "ko") == ([], False)
        assert await translator.translate_segments(["a"], "ko", "ko") == (["a"], False)
        assert chat_api.calls == []
