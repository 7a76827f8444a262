"""Tests for the etymology service."""
from __future__ import annotations

import json

import pytest

from sat_practice.errors import GenerationError, ResponseParseError
from sat_practice.etymology import SAT_WORDS, analyze_word, random_word


class FakeLLM:
    def __init__(self, response: str = "", error: Exception | None = None):
        self.response = response
        self.error = error
        self.prompts: list[str] = []

    async def generate(self, prompt: str, temperature: float = 0.7, system: str | None = None) -> str:
        self.prompts.append(prompt)
        if self.error is not None:
            raise self.error
        return self.response

    def name(self) -> str:
        return "fake-llm"


UBIQUITOUS = {
    "word": "ubiquitous",
    "definition": "Present everywhere at the same time",
    "roots": [{"root": "ubique", "origin": "Latin", "meaning": "everywhere"}],
    "usage": "Smartphones have become ubiquitous.",
}


class TestRandomWord:
    def test_embedded_list(self):
        assert [w.word for w in SAT_WORDS] == [
            "deconstruct", "benevolent", "metamorphosis", "circumnavigate",
        ]

    def test_always_from_list(self):
        words = {random_word().word for _ in range(200)}
        assert words <= {w.word for w in SAT_WORDS}
        assert len(words) > 1

    def test_entries_complete(self):
        for w in SAT_WORDS:
            assert w.definition and w.usage
            assert all(r.origin in ("Latin", "Greek") for r in w.roots)


class TestAnalyzeWord:
    @pytest.mark.asyncio
    async def test_parses_response(self):
        llm = FakeLLM(json.dumps(UBIQUITOUS))
        result = await analyze_word(llm, "ubiquitous")
        assert result.word == "ubiquitous"
        assert result.roots[0].meaning == "everywhere"
        assert '"ubiquitous"' in llm.prompts[0]

    @pytest.mark.asyncio
    async def test_blank_word(self):
        llm = FakeLLM()
        with pytest.raises(ValueError, match="Word parameter is required"):
            await analyze_word(llm, "   ")
        assert llm.prompts == []

    @pytest.mark.asyncio
    async def test_provider_failure(self):
        with pytest.raises(GenerationError):
            await analyze_word(FakeLLM(error=RuntimeError("timeout")), "ubiquitous")

    @pytest.mark.asyncio
    async def test_malformed_response(self):
        with pytest.raises(ResponseParseError):
            await analyze_word(FakeLLM('{"word": "ubiquitous"}'), "ubiquitous")
