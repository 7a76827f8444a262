"""Turn untrusted model output into validated records or explicit failures.

Model text goes through three stages: fence stripping, ``json.loads`` into an
untyped value, then schema validation into :class:`Question` /
:class:`Etymology`.  A batch that does not parse at all is rejected outright;
individual candidates that parse but fail validation are logged and dropped;
a batch with no survivors is its own failure.
"""
from __future__ import annotations

import json
import logging
import re

from sat_practice.errors import NoValidQuestionsError, ResponseParseError
from sat_practice.models import Etymology, Question, WordRoot

_log = logging.getLogger("sat_practice.parse")

_FENCE_RE = re.compile(r"^\s*```[a-zA-Z]*[ \t]*\n?(.*?)\n?\s*```\s*$", re.DOTALL)
_LETTER_RE = re.compile(r"^\(?([A-Da-d])\)?[).:]?$")
_OPTION_LABEL_RE = re.compile(r"^\(?([A-Da-d])[).:]")

OPTION_COUNT = 4
ROOT_FIELDS = ("root", "origin", "meaning")


def strip_code_fences(text: str) -> str:
    """Remove an enclosing ```` ``` ```` / ```` ```json ```` fence, if any."""
    text = text.strip()
    m = _FENCE_RE.match(text)
    if m:
        return m.group(1).strip()
    return text


def _loads(text: str):
    cleaned = strip_code_fences(text)
    try:
        return json.loads(cleaned)
    except json.JSONDecodeError as e:
        _log.warning("Unparseable model output: %s", e)
        _log.debug("Raw response: %.300s", text)
        raise ResponseParseError("Failed to generate valid questions") from e


def _flatten(value, depth: int = 0) -> list:
    """Flatten nested lists and decode JSON-string elements, dropping nulls."""
    if depth > 10:
        return []
    if value is None:
        return []
    if isinstance(value, list):
        out: list = []
        for item in value:
            out.extend(_flatten(item, depth + 1))
        return out
    if isinstance(value, str):
        try:
            decoded = json.loads(strip_code_fences(value))
        except json.JSONDecodeError:
            _log.warning("Dropping candidate: string element is not JSON: %.80r", value)
            return []
        return _flatten(decoded, depth + 1)
    return [value]


def normalize_candidates(parsed) -> list:
    """Coerce a parsed value into a flat list of question candidates."""
    if isinstance(parsed, dict) and "questions" in parsed:
        parsed = parsed["questions"]
    return _flatten(parsed)


def _resolve_correct_answer(answer, options: list[str]) -> str | None:
    """Map the model's correctAnswer onto one of *options*.

    Accepts the option text verbatim, or a bare letter (``"B"``, ``"(B)"``,
    ``"B)"``) pointing at a labelled option.
    """
    if not isinstance(answer, str):
        return None
    answer = answer.strip()
    if answer in options:
        return answer
    stripped = [o.strip() for o in options]
    if answer in stripped:
        return options[stripped.index(answer)]
    m = _LETTER_RE.match(answer)
    if m:
        letter = m.group(1).upper()
        for opt in options:
            lm = _OPTION_LABEL_RE.match(opt.strip())
            if lm and lm.group(1).upper() == letter:
                return opt
        return options["ABCD".index(letter)]
    return None


def validate_question(data) -> str | None:
    """Return ``None`` if *data* is a usable question, else the reason it isn't.

    On success ``data["correctAnswer"]`` is normalised in place to the exact
    option string.
    """
    if not isinstance(data, dict):
        return f"expected object, got {type(data).__name__}"
    q = data.get("question")
    if not isinstance(q, str) or not q.strip():
        return "question must be a non-empty string"
    options = data.get("options")
    if not isinstance(options, list) or len(options) != OPTION_COUNT:
        n = len(options) if isinstance(options, list) else type(options).__name__
        return f"options must be list of {OPTION_COUNT} (got {n})"
    if not all(isinstance(o, str) for o in options):
        return "options must all be strings"
    if data.get("correctAnswer") is None:
        return "missing correctAnswer"
    if data.get("explanation") is None:
        return "missing explanation"
    resolved = _resolve_correct_answer(data["correctAnswer"], options)
    if resolved is None:
        return f"correctAnswer {data['correctAnswer']!r} is not one of the options"
    data["correctAnswer"] = resolved
    return None


def validate_etymology(data) -> str | None:
    if not isinstance(data, dict):
        return f"expected object, got {type(data).__name__}"
    for key in ("word", "definition", "usage"):
        if not isinstance(data.get(key), str) or not data[key].strip():
            return f"{key} must be a non-empty string"
    roots = data.get("roots")
    if not isinstance(roots, list):
        return "roots must be a list"
    for i, r in enumerate(roots):
        if not isinstance(r, dict):
            return f"roots[{i}]: expected object"
        missing = [k for k in ROOT_FIELDS if not isinstance(r.get(k), str)]
        if missing:
            return f"roots[{i}]: missing {', '.join(missing)}"
    return None


def _to_etymology(data: dict) -> Etymology:
    return Etymology(
        word=data["word"].strip(),
        definition=data["definition"].strip(),
        roots=[WordRoot(r["root"], r["origin"], r["meaning"]) for r in data["roots"]],
        usage=data["usage"].strip(),
    )


def _to_question(data: dict) -> Question:
    etymology = None
    raw_ety = data.get("etymology")
    if raw_ety is not None:
        reason = validate_etymology(raw_ety)
        if reason:
            _log.warning("Dropping invalid etymology attachment: %s", reason)
        else:
            etymology = _to_etymology(raw_ety)
    return Question(
        question=data["question"],
        options=list(data["options"]),
        correct_answer=data["correctAnswer"],
        explanation=str(data["explanation"]),
        etymology=etymology,
    )


def parse_questions(text: str) -> list[Question]:
    """Parse a completion payload into validated questions.

    Raises :class:`ResponseParseError` when the payload is not structured
    data and :class:`NoValidQuestionsError` when nothing survives validation.
    """
    candidates = normalize_candidates(_loads(text))
    questions: list[Question] = []
    for i, cand in enumerate(candidates):
        reason = validate_question(cand)
        if reason:
            _log.warning("Invalid question format [%d]: %s", i, reason)
            continue
        questions.append(_to_question(cand))
    if not questions:
        raise NoValidQuestionsError("No valid questions generated")
    _log.info("Parsed %d/%d valid questions", len(questions), len(candidates))
    return questions


def parse_etymology(text: str) -> Etymology:
    data = _loads(text)
    reason = validate_etymology(data)
    if reason:
        _log.warning("Invalid etymology: %s", reason)
        raise ResponseParseError(f"invalid etymology: {reason}")
    return _to_etymology(data)
