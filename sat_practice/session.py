"""In-memory state machine for one practice run.

A session moves ``loading → active → completed``; while active, the current
question is either unanswered or answered (explanation shown).  Finite
sessions stop after a fixed number of questions and hand themselves to the
``on_complete`` hook exactly once.  Infinite sessions keep a small buffer of
questions ahead of the cursor, topped up by a detached prefetch task whose
failures are queued as notifications instead of being raised.
"""
from __future__ import annotations

import asyncio
import logging
import time
import uuid
from collections.abc import Awaitable, Callable
from dataclasses import dataclass

from sat_practice.errors import NoSelectionError, SessionStateError
from sat_practice.models import Question

_log = logging.getLogger("sat_practice.session")

MODES = ("finite", "infinite")
DEFAULT_TIME_LIMIT = 150
PREFETCH_THRESHOLD = 2  # fetch more when fewer than this many remain ahead

FetchMore = Callable[[int], Awaitable[list[Question]]]
OnComplete = Callable[["PracticeSession"], Awaitable[None]]


@dataclass
class AnswerResult:
    selected: str
    correct: bool
    correct_answer: str
    explanation: str
    time_spent: int

    def to_dict(self) -> dict:
        return {
            "selected": self.selected,
            "correct": self.correct,
            "correctAnswer": self.correct_answer,
            "explanation": self.explanation,
            "timeSpent": self.time_spent,
        }


class PracticeSession:
    def __init__(
        self,
        question_type: str,
        mode: str = "finite",
        *,
        question_count: int = 5,
        fetch_more: FetchMore | None = None,
        on_complete: OnComplete | None = None,
        time_limit: int = DEFAULT_TIME_LIMIT,
        batch_size: int = 2,
        test_id: str | None = None,
        user_id: str | None = None,
    ):
        if mode not in MODES:
            raise ValueError(f"Unknown mode: {mode}")
        self.id = uuid.uuid4().hex
        self.question_type = question_type
        self.mode = mode
        self.question_count = question_count
        self.fetch_more = fetch_more
        self.on_complete = on_complete
        self.time_limit = time_limit
        self.batch_size = batch_size
        self.test_id = test_id
        self.user_id = user_id

        self.status = "loading"
        self.queue: list[Question] = []
        self.index = 0
        self.answered = False
        self.selected: str | None = None
        self.excluded: set[str] = set()
        self.time_left = time_limit
        self.last_result: AnswerResult | None = None

        self.total_questions = 0
        self.correct_answers = 0
        self.duration = 0

        self.last_active = time.monotonic()
        self._notifications: list[str] = []
        self._prefetch_task: asyncio.Task | None = None
        self._countdown_task: asyncio.Task | None = None

    # ── Queries ───────────────────────────────────────────────────────────

    @property
    def completed(self) -> bool:
        return self.status == "completed"

    @property
    def current_question(self) -> Question | None:
        if self.status != "active" or self.index >= len(self.queue):
            return None
        return self.queue[self.index]

    @property
    def prefetching(self) -> bool:
        return self._prefetch_task is not None and not self._prefetch_task.done()

    @property
    def score(self) -> int:
        if not self.total_questions:
            return 0
        return round(self.correct_answers / self.total_questions * 100)

    def _finite_limit(self) -> int:
        return min(self.question_count, len(self.queue))

    # ── Transitions ───────────────────────────────────────────────────────

    def load(self, questions: list[Question]) -> None:
        if self.status != "loading" or self.queue:
            raise SessionStateError("session already loaded")
        self.queue = list(questions)
        if not self.queue:
            self._maybe_prefetch()
            return
        self.status = "active"
        self._reset_question_state()
        _log.info("Session %s: %s/%s with %d questions",
                  self.id, self.question_type, self.mode, len(self.queue))
        self._maybe_prefetch()

    def select(self, option: str) -> None:
        q = self._require_unanswered()
        if option not in q.options:
            raise ValueError(f"Not an option for this question: {option!r}")
        self.selected = option

    def toggle_exclusion(self, option: str) -> bool:
        """Mark/unmark *option* as ruled out. Returns the new excluded flag."""
        q = self.current_question
        if q is None:
            raise SessionStateError("no active question")
        if option not in q.options:
            raise ValueError(f"Not an option for this question: {option!r}")
        if option in self.excluded:
            self.excluded.discard(option)
            return False
        self.excluded.add(option)
        return True

    def submit_answer(self, selected: str | None = None) -> AnswerResult:
        q = self._require_unanswered()
        choice = selected if selected is not None else self.selected
        if not choice:
            raise NoSelectionError("Please select an answer")

        correct = choice == q.correct_answer
        time_spent = self.time_limit - self.time_left
        self.selected = choice
        self.total_questions += 1
        if correct:
            self.correct_answers += 1
        self.duration += time_spent
        self.answered = True
        self.last_result = AnswerResult(
            selected=choice,
            correct=correct,
            correct_answer=q.correct_answer,
            explanation=q.explanation,
            time_spent=time_spent,
        )
        _log.info("Session %s: answer %d %s (%d/%d)", self.id, self.index + 1,
                  "correct" if correct else "wrong", self.correct_answers, self.total_questions)
        return self.last_result

    async def advance(self) -> str:
        """Move to the next question, or complete the session. Returns the new status."""
        if self.status == "completed":
            raise SessionStateError("session already completed")
        if self.status == "loading":
            # Cursor is waiting on a prefetch; kick another if the last one died
            self._maybe_prefetch()
            return self.status
        if not self.answered:
            raise SessionStateError("answer the current question first")

        next_index = self.index + 1
        if self.mode == "finite" and next_index >= self._finite_limit():
            await self._complete()
            return self.status

        self.index = next_index
        self._reset_question_state()
        if self.index >= len(self.queue):
            # Advanced into a region the prefetch hasn't filled yet
            self.status = "loading"
        self._maybe_prefetch()
        return self.status

    def tick(self, seconds: int = 1) -> int:
        """Count the active question's timer down. Display only; never submits."""
        if self.status == "active" and not self.answered:
            self.time_left = max(0, self.time_left - seconds)
        return self.time_left

    async def run_countdown(self) -> None:
        while self.status != "completed":
            await asyncio.sleep(1)
            self.tick()

    def start_countdown(self) -> None:
        if self._countdown_task is None or self._countdown_task.done():
            self._countdown_task = asyncio.create_task(self.run_countdown())

    def close(self) -> None:
        """Abandon the session: stop background tasks, no durable save."""
        for task in (self._prefetch_task, self._countdown_task):
            if task is not None and not task.done():
                task.cancel()

    async def wait_for_prefetch(self) -> None:
        """Wait until no prefetch is running, including any it chained."""
        while self.prefetching:
            await asyncio.gather(self._prefetch_task, return_exceptions=True)

    def touch(self) -> None:
        self.last_active = time.monotonic()

    def idle_for(self) -> float:
        return time.monotonic() - self.last_active

    def notify(self, message: str) -> None:
        self._notifications.append(message)

    def drain_notifications(self) -> list[str]:
        out, self._notifications = self._notifications, []
        return out

    # ── Internals ─────────────────────────────────────────────────────────

    def _require_unanswered(self) -> Question:
        q = self.current_question
        if q is None:
            raise SessionStateError(f"no active question (session is {self.status})")
        if self.answered:
            raise SessionStateError("question already answered")
        return q

    def _reset_question_state(self) -> None:
        self.answered = False
        self.selected = None
        self.excluded = set()
        self.time_left = self.time_limit
        self.last_result = None

    def _maybe_prefetch(self) -> None:
        if self.mode != "infinite" or self.fetch_more is None or self.prefetching:
            return
        if self.index < len(self.queue) - PREFETCH_THRESHOLD:
            return
        _log.info("Session %s: prefetching %d questions at %d/%d",
                  self.id, self.batch_size, self.index + 1, len(self.queue))
        self._prefetch_task = asyncio.create_task(self._prefetch(self.batch_size))

    async def _prefetch(self, count: int) -> None:
        try:
            questions = await self.fetch_more(count)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            _log.warning("Session %s: prefetch failed: %s", self.id, e)
            self.notify(f"Failed to generate more questions: {e}")
            return
        self.queue.extend(questions)
        _log.info("Session %s: queue now %d", self.id, len(self.queue))
        if self.status == "loading" and self.index < len(self.queue):
            self.status = "active"
            self._reset_question_state()
        # The cursor may have moved while this fetch ran
        self._prefetch_task = None
        if questions:
            self._maybe_prefetch()

    async def _complete(self) -> None:
        self.status = "completed"
        if self._countdown_task is not None and not self._countdown_task.done():
            self._countdown_task.cancel()
        _log.info("Session %s complete: %d/%d correct in %ds",
                  self.id, self.correct_answers, self.total_questions, self.duration)
        if self.on_complete is None:
            return
        try:
            await self.on_complete(self)
        except Exception as e:
            # State stays completed; the failure is only reported
            _log.warning("Session %s: saving failed: %s", self.id, e)
            self.notify(f"Failed to save progress: {e}")

    # ── Serialisation ─────────────────────────────────────────────────────

    def to_record(self) -> dict:
        """Fields persisted for a finished session."""
        return {
            "question_type": self.question_type,
            "mode": self.mode,
            "total_questions": self.total_questions,
            "correct_answers": self.correct_answers,
            "duration": self.duration,
            "completed": self.completed,
            "score": self.score,
        }

    def snapshot(self) -> dict:
        data: dict = {
            "session_id": self.id,
            "status": self.status,
            "mode": self.mode,
            "question_type": self.question_type,
            "test_id": self.test_id,
            "index": self.index,
            "queue_length": len(self.queue),
            "question_count": self.question_count if self.mode == "finite" else None,
            "total_questions": self.total_questions,
            "correct_answers": self.correct_answers,
            "duration": self.duration,
            "score": self.score,
            "time_left": self.time_left,
            "answered": self.answered,
            "selected": self.selected,
            "excluded": sorted(self.excluded),
            "prefetching": self.prefetching,
        }
        if self.mode == "finite" and self.status != "completed":
            data["remaining"] = max(0, self._finite_limit() - self.index - 1)
        q = self.current_question
        if q is not None:
            qd = q.to_dict()
            qd["passage"] = q.passage
            qd["prompt"] = q.prompt
            if not self.answered:
                qd.pop("correctAnswer", None)
                qd.pop("explanation", None)
            data["question"] = qd
        if self.last_result is not None:
            data["result"] = self.last_result.to_dict()
        return data
