"""Tests for prompt templates and formatting."""
from __future__ import annotations

import pytest

from sat_practice.prompts import (
    PROMPTS,
    build_etymology_prompt,
    build_question_prompt,
)


class TestQuestionPrompts:
    @pytest.mark.parametrize("question_type", ["reading", "writing", "math", "vocabulary"])
    def test_schema_and_rules(self, question_type):
        prompt = build_question_prompt(question_type, "hard")
        assert "hard difficulty" in prompt
        for key in ('"question"', '"options"', '"correctAnswer"', '"explanation"'):
            assert key in prompt
        assert "no markdown code fences" in prompt
        assert "{" in prompt and "{{" not in prompt

    def test_reading_mentions_passage(self):
        prompt = build_question_prompt("reading")
        assert "Passage:" in prompt
        assert "Cross Text" in prompt
        assert "medium difficulty" in prompt

    def test_vocabulary_requests_etymology(self):
        prompt = build_question_prompt("vocabulary")
        assert '"etymology"' in prompt
        assert '"roots"' in prompt

    def test_unknown_type_falls_back_to_reading(self):
        assert build_question_prompt("history") == build_question_prompt("reading")

    def test_distinct_templates(self):
        assert len(set(PROMPTS.values())) == len(PROMPTS)


class TestEtymologyPrompt:
    def test_contains_word(self):
        prompt = build_etymology_prompt("ubiquitous")
        assert '"ubiquitous"' in prompt
        assert '"origin"' in prompt
        assert "without any markdown" in prompt

    def test_quotes_neutralised(self):
        prompt = build_etymology_prompt('say "hi"')
        assert "say 'hi'" in prompt
