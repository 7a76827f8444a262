"""Word etymology lookups and the embedded random-word list."""
from __future__ import annotations

import logging
import random
from typing import TYPE_CHECKING

from sat_practice.completion import complete_etymology
from sat_practice.models import Etymology, WordRoot
from sat_practice.parsing import parse_etymology
from sat_practice.prompts import build_etymology_prompt

if TYPE_CHECKING:
    from sat_practice.providers.base import LLMProvider

_log = logging.getLogger("sat_practice.etymology")

SAT_WORDS: list[Etymology] = [
    Etymology(
        word="deconstruct",
        definition="To break down into constituent parts; to analyze critically",
        roots=[
            WordRoot("de-", "Latin", "down, off, away"),
            WordRoot("construct", "Latin", "to build, to pile up"),
        ],
        usage="The literary critic deconstructed the novel to reveal its underlying themes.",
    ),
    Etymology(
        word="benevolent",
        definition="Kind, generous, and caring about others",
        roots=[
            WordRoot("bene-", "Latin", "good, well"),
            WordRoot("vol", "Latin", "to wish"),
        ],
        usage="The benevolent donor provided funds for the new children's hospital.",
    ),
    Etymology(
        word="metamorphosis",
        definition="A complete change of physical form or substance",
        roots=[
            WordRoot("meta-", "Greek", "change, beyond"),
            WordRoot("morph", "Greek", "form, shape"),
        ],
        usage="The caterpillar's metamorphosis into a butterfly is a remarkable process.",
    ),
    Etymology(
        word="circumnavigate",
        definition="To travel all the way around something, especially by ship",
        roots=[
            WordRoot("circum-", "Latin", "around"),
            WordRoot("navig", "Latin", "to sail"),
        ],
        usage="Magellan's expedition was the first to circumnavigate the globe.",
    ),
]


def random_word() -> Etymology:
    """Pick one of the embedded SAT words uniformly; never calls the model."""
    return random.choice(SAT_WORDS)


async def analyze_word(llm: LLMProvider, word: str) -> Etymology:
    word = word.strip()
    if not word:
        raise ValueError("Word parameter is required")
    _log.info("Etymology lookup: %s", word)
    response = await complete_etymology(llm, build_etymology_prompt(word))
    return parse_etymology(response)
