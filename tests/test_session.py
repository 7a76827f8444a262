"""Tests for the practice session state machine."""
from __future__ import annotations

import asyncio

import pytest

from sat_practice.errors import GenerationError, NoSelectionError, SessionStateError
from sat_practice.models import Question
from sat_practice.session import PracticeSession

RIGHT = "B) the second"
WRONG = "A) the first"


def _q(n: int) -> Question:
    return Question(
        question=f"Question {n}?",
        options=["A) the first", RIGHT, "C) the third", "D) the fourth"],
        correct_answer=RIGHT,
        explanation=f"Because {n}.",
    )


class GatedFetcher:
    """fetch_more stand-in that blocks until released."""

    def __init__(self, error: Exception | None = None):
        self.gate = asyncio.Event()
        self.error = error
        self.calls: list[int] = []

    async def __call__(self, count: int) -> list[Question]:
        self.calls.append(count)
        await self.gate.wait()
        if self.error is not None:
            raise self.error
        return [_q(100 + len(self.calls) * 10 + i) for i in range(count)]


class TestConstruction:
    def test_unknown_mode(self):
        with pytest.raises(ValueError):
            PracticeSession("reading", "sprint")

    def test_starts_loading(self):
        s = PracticeSession("reading")
        assert s.status == "loading"
        assert s.current_question is None

    @pytest.mark.asyncio
    async def test_load_activates(self, sample_questions):
        s = PracticeSession("reading")
        s.load(sample_questions)
        assert s.status == "active"
        assert s.current_question is sample_questions[0]
        assert s.time_left == 150

    @pytest.mark.asyncio
    async def test_load_twice_rejected(self, sample_questions):
        s = PracticeSession("reading")
        s.load(sample_questions)
        with pytest.raises(SessionStateError):
            s.load(sample_questions)


class TestAnswering:
    @pytest.mark.asyncio
    async def test_no_selection(self):
        s = PracticeSession("reading")
        s.load([_q(1)])
        with pytest.raises(NoSelectionError):
            s.submit_answer()
        assert s.total_questions == 0
        assert not s.answered

    @pytest.mark.asyncio
    async def test_correct_answer_counts(self):
        s = PracticeSession("reading")
        s.load([_q(1), _q(2)])
        s.select(RIGHT)
        result = s.submit_answer()
        assert result.correct
        assert result.explanation == "Because 1."
        assert (s.correct_answers, s.total_questions) == (1, 1)

    @pytest.mark.asyncio
    async def test_wrong_answer_counts_total_only(self):
        s = PracticeSession("reading")
        s.load([_q(1), _q(2)])
        result = s.submit_answer(WRONG)
        assert not result.correct
        assert result.correct_answer == RIGHT
        assert (s.correct_answers, s.total_questions) == (0, 1)

    @pytest.mark.asyncio
    async def test_exact_match_only(self):
        q = Question("Q?", ["yes", "Yes", "no", "maybe"], "yes", "e")
        s = PracticeSession("reading")
        s.load([q])
        assert not s.submit_answer("Yes").correct

    @pytest.mark.asyncio
    async def test_second_submit_rejected(self):
        s = PracticeSession("reading")
        s.load([_q(1), _q(2)])
        s.submit_answer(RIGHT)
        with pytest.raises(SessionStateError):
            s.submit_answer(RIGHT)
        assert s.total_questions == 1

    @pytest.mark.asyncio
    async def test_select_unknown_option(self):
        s = PracticeSession("reading")
        s.load([_q(1)])
        with pytest.raises(ValueError):
            s.select("E) nope")

    @pytest.mark.asyncio
    async def test_time_spent_from_timer(self):
        s = PracticeSession("reading")
        s.load([_q(1), _q(2)])
        s.tick(30)
        result = s.submit_answer(RIGHT)
        assert result.time_spent == 30
        assert s.duration == 30


class TestExclusionsAndTimer:
    @pytest.mark.asyncio
    async def test_toggle_exclusion(self):
        s = PracticeSession("reading")
        s.load([_q(1)])
        assert s.toggle_exclusion(WRONG) is True
        assert WRONG in s.excluded
        assert s.toggle_exclusion(WRONG) is False
        assert WRONG not in s.excluded

    @pytest.mark.asyncio
    async def test_exclusions_reset_on_advance(self):
        s = PracticeSession("reading")
        s.load([_q(1), _q(2)])
        s.toggle_exclusion(WRONG)
        s.submit_answer(RIGHT)
        await s.advance()
        assert s.excluded == set()

    @pytest.mark.asyncio
    async def test_tick_floors_at_zero_without_submitting(self):
        s = PracticeSession("reading", time_limit=3)
        s.load([_q(1)])
        for _ in range(10):
            s.tick()
        assert s.time_left == 0
        assert not s.answered
        assert s.total_questions == 0

    @pytest.mark.asyncio
    async def test_tick_stops_once_answered(self):
        s = PracticeSession("reading")
        s.load([_q(1), _q(2)])
        s.submit_answer(RIGHT)
        s.tick(10)
        assert s.time_left == 150

    @pytest.mark.asyncio
    async def test_timer_resets_per_question(self):
        s = PracticeSession("reading")
        s.load([_q(1), _q(2)])
        s.tick(40)
        s.submit_answer(RIGHT)
        await s.advance()
        assert s.time_left == 150

    @pytest.mark.asyncio
    async def test_close_cancels_countdown(self):
        s = PracticeSession("reading")
        s.load([_q(1)])
        s.start_countdown()
        task = s._countdown_task
        s.close()
        with pytest.raises(asyncio.CancelledError):
            await task

    def test_touch_resets_idle_clock(self):
        s = PracticeSession("reading")
        s.last_active -= 120
        assert s.idle_for() >= 120
        s.touch()
        assert s.idle_for() < 120


class TestFiniteMode:
    @pytest.mark.asyncio
    async def test_five_rounds_complete_once(self, sample_questions):
        saved = []

        async def on_complete(session):
            saved.append(session.to_record())

        s = PracticeSession("reading", "finite", question_count=5, on_complete=on_complete)
        s.load(sample_questions)
        for i in range(5):
            assert s.status == "active"
            s.submit_answer(RIGHT if i % 2 == 0 else WRONG)
            await s.advance()

        assert s.completed
        assert len(saved) == 1
        assert saved[0]["total_questions"] == 5
        assert saved[0]["correct_answers"] == 3
        assert saved[0]["score"] == 60

        with pytest.raises(SessionStateError):
            await s.advance()
        assert len(saved) == 1

    @pytest.mark.asyncio
    async def test_short_queue_completes_early(self):
        s = PracticeSession("math", "finite", question_count=5)
        s.load([_q(1), _q(2), _q(3)])
        for _ in range(3):
            s.submit_answer(RIGHT)
            await s.advance()
        assert s.completed
        assert s.total_questions == 3

    @pytest.mark.asyncio
    async def test_advance_requires_answer(self):
        s = PracticeSession("reading")
        s.load([_q(1), _q(2)])
        with pytest.raises(SessionStateError):
            await s.advance()

    @pytest.mark.asyncio
    async def test_save_failure_becomes_notification(self):
        async def on_complete(session):
            raise RuntimeError("disk full")

        s = PracticeSession("reading", question_count=1, on_complete=on_complete)
        s.load([_q(1)])
        s.submit_answer(RIGHT)
        await s.advance()
        assert s.completed
        notes = s.drain_notifications()
        assert notes == ["Failed to save progress: disk full"]
        assert s.drain_notifications() == []

    @pytest.mark.asyncio
    async def test_finite_never_prefetches(self):
        fetcher = GatedFetcher()
        s = PracticeSession("reading", "finite", question_count=2, fetch_more=fetcher)
        s.load([_q(1), _q(2)])
        assert not s.prefetching
        assert fetcher.calls == []


class TestInfiniteMode:
    @pytest.mark.asyncio
    async def test_prefetch_near_end_of_queue(self):
        fetcher = GatedFetcher()
        s = PracticeSession("writing", "infinite", fetch_more=fetcher, batch_size=2)
        s.load([_q(i) for i in range(4)])
        assert not s.prefetching

        s.submit_answer(RIGHT)
        await s.advance()
        assert not s.prefetching  # index 1 of 4

        s.submit_answer(RIGHT)
        await s.advance()
        assert s.prefetching  # index 2 of 4
        await asyncio.sleep(0)
        assert fetcher.calls == [2]

        fetcher.gate.set()
        await s.wait_for_prefetch()
        assert len(s.queue) == 6
        assert not s.prefetching

    @pytest.mark.asyncio
    async def test_prefetch_rechecks_after_landing(self):
        fetcher = GatedFetcher()
        s = PracticeSession("writing", "infinite", fetch_more=fetcher, batch_size=2)
        s.load([_q(1), _q(2)])
        await asyncio.sleep(0)
        assert fetcher.calls == [2]

        # Cursor runs past the queue while the first fetch is still out
        s.submit_answer(RIGHT)
        await s.advance()
        s.submit_answer(RIGHT)
        assert await s.advance() == "loading"
        assert fetcher.calls == [2]

        fetcher.gate.set()
        await s.wait_for_prefetch()
        # Index 2 of 4 is within the threshold again, so a second batch follows
        assert fetcher.calls == [2, 2]
        assert len(s.queue) == 6
        assert s.status == "active"
        assert s.current_question is s.queue[2]

    @pytest.mark.asyncio
    async def test_no_duplicate_prefetch(self):
        fetcher = GatedFetcher()
        s = PracticeSession("writing", "infinite", fetch_more=fetcher)
        s.load([_q(1), _q(2)])
        s.submit_answer(RIGHT)
        await s.advance()
        await asyncio.sleep(0)
        assert fetcher.calls == [2]
        fetcher.gate.set()
        await s.wait_for_prefetch()

    @pytest.mark.asyncio
    async def test_loading_until_prefetch_lands(self):
        fetcher = GatedFetcher()
        s = PracticeSession("writing", "infinite", fetch_more=fetcher)
        s.load([_q(1)])
        s.submit_answer(RIGHT)
        status = await s.advance()
        assert status == "loading"
        assert s.current_question is None
        with pytest.raises(SessionStateError):
            s.submit_answer(RIGHT)

        fetcher.gate.set()
        await s.wait_for_prefetch()
        assert s.status == "active"
        assert s.current_question is s.queue[1]
        assert s.total_questions == 1

    @pytest.mark.asyncio
    async def test_prefetch_failure_is_notified(self):
        fetcher = GatedFetcher(error=GenerationError("generation failed"))
        s = PracticeSession("writing", "infinite", fetch_more=fetcher)
        s.load([_q(1), _q(2)])
        fetcher.gate.set()
        await s.wait_for_prefetch()

        assert s.status == "active"
        assert len(s.queue) == 2
        assert s.drain_notifications() == [
            "Failed to generate more questions: generation failed"
        ]

    @pytest.mark.asyncio
    async def test_infinite_never_completes(self):
        fetcher = GatedFetcher()
        fetcher.gate.set()
        s = PracticeSession("writing", "infinite", fetch_more=fetcher, question_count=2)
        s.load([_q(1), _q(2)])
        for _ in range(4):
            await s.wait_for_prefetch()
            s.submit_answer(RIGHT)
            await s.advance()
        assert not s.completed
        assert s.total_questions == 4
        await s.wait_for_prefetch()


class TestSnapshot:
    @pytest.mark.asyncio
    async def test_hides_answer_until_submitted(self):
        s = PracticeSession("reading")
        s.load([Question("Passage: Once.\nQuestion: Why?", ["a", "b", "c", "d"], "a", "e")])
        snap = s.snapshot()
        assert "correctAnswer" not in snap["question"]
        assert "explanation" not in snap["question"]
        assert snap["question"]["passage"] == "Once."
        assert snap["question"]["prompt"] == "Why?"
        assert "result" not in snap

        s.submit_answer("a")
        snap = s.snapshot()
        assert snap["question"]["correctAnswer"] == "a"
        assert snap["result"]["correct"] is True

    @pytest.mark.asyncio
    async def test_remaining_in_finite_mode(self, sample_questions):
        s = PracticeSession("reading", question_count=3)
        s.load(sample_questions)
        assert s.snapshot()["remaining"] == 2
        assert s.snapshot()["question_count"] == 3
