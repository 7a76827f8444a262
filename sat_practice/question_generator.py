"""Orchestrate the LLM to generate SAT practice questions."""
from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING

from sat_practice.completion import complete
from sat_practice.parsing import parse_questions
from sat_practice.prompts import build_question_prompt

if TYPE_CHECKING:
    from sat_practice.models import Question
    from sat_practice.providers.base import LLMProvider

_log = logging.getLogger("sat_practice.qgen")


async def generate_from_prompt(llm: LLMProvider, prompt: str) -> list[Question]:
    """Run an already-built instruction string through completion and parsing."""
    response = await complete(llm, prompt)
    return parse_questions(response)


async def generate_questions(
    llm: LLMProvider,
    question_type: str,
    difficulty: str = "medium",
) -> list[Question]:
    """Generate one batch (usually a single question) of *question_type*."""
    _log.info("Generate %s (%s)", question_type, difficulty)
    prompt = build_question_prompt(question_type, difficulty)
    return await generate_from_prompt(llm, prompt)


async def generate_many(
    llm: LLMProvider,
    question_type: str,
    count: int,
    difficulty: str = "medium",
) -> list[Question]:
    """Fan out *count* independent requests and join them all.

    No partial success: if any request fails, the whole batch raises.
    """
    if count <= 0:
        return []
    _log.info("Batch: %d × %s (%s)", count, question_type, difficulty)
    results = await asyncio.gather(
        *(generate_questions(llm, question_type, difficulty) for _ in range(count))
    )
    questions = [q for batch in results for q in batch]
    _log.info("Batch: %d questions from %d requests", len(questions), count)
    return questions
