"""Single-shot calls to the configured completion endpoint."""
from __future__ import annotations

import logging
import time
from typing import TYPE_CHECKING

from sat_practice.errors import GenerationError
from sat_practice.prompts import ETYMOLOGY_SYSTEM_ROLE, QUESTION_SYSTEM_ROLE

if TYPE_CHECKING:
    from sat_practice.providers.base import LLMProvider

_log = logging.getLogger("sat_practice.llm")

# Open-ended question writing vs. factual lookups
QUESTION_TEMPERATURE = 0.7
ETYMOLOGY_TEMPERATURE = 0.3


async def complete(
    llm: LLMProvider,
    prompt: str,
    *,
    system: str = QUESTION_SYSTEM_ROLE,
    temperature: float = QUESTION_TEMPERATURE,
) -> str:
    """Send exactly one request and return the raw text payload.

    Any provider failure, and any empty payload, surfaces as
    :class:`GenerationError`. There is no retry.
    """
    temperature = max(0.0, min(1.0, temperature))
    t0 = time.monotonic()
    try:
        text = await llm.generate(prompt, temperature=temperature, system=system)
    except Exception as e:
        _log.warning("Completion via %s failed: %s", llm.name(), e)
        raise GenerationError("generation failed") from e
    elapsed = time.monotonic() - t0
    if not text or not text.strip():
        _log.warning("Completion via %s returned an empty payload", llm.name())
        raise GenerationError("generation failed")
    _log.info("Completion via %s: %d chars in %.1fs", llm.name(), len(text), elapsed)
    return text


async def complete_etymology(llm: LLMProvider, prompt: str) -> str:
    return await complete(
        llm, prompt, system=ETYMOLOGY_SYSTEM_ROLE, temperature=ETYMOLOGY_TEMPERATURE,
    )
