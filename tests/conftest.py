"""Shared test fixtures."""
from __future__ import annotations

import pytest

from sat_practice.db import Database
from sat_practice.models import Etymology, Question, WordRoot


def _question(n: int) -> Question:
    return Question(
        question=f"Passage: A short passage number {n}.\nQuestion: What is the answer to {n}?",
        options=["A) the first", "B) the second", "C) the third", "D) the fourth"],
        correct_answer="B) the second",
        explanation=f"Explanation for question {n}.",
    )


@pytest.fixture
def tmp_db(tmp_path):
    """Create a fresh temporary database."""
    db = Database(tmp_path / "test.db")
    yield db
    db.close()


@pytest.fixture
def sample_question():
    return _question(1)


@pytest.fixture
def sample_questions():
    return [_question(i) for i in range(1, 6)]


@pytest.fixture
def sample_etymology():
    return Etymology(
        word="benevolent",
        definition="Kind, generous, and caring about others",
        roots=[WordRoot("bene-", "Latin", "good, well"), WordRoot("vol", "Latin", "to wish")],
        usage="The benevolent donor provided funds for the new children's hospital.",
    )


@pytest.fixture
def user_db(tmp_db):
    """A database with one profile already set up."""
    tmp_db.upsert_user("user-1", {
        "firstName": "Ada",
        "lastName": "Lovelace",
        "gradeLevel": "11",
        "email": "ada@example.com",
    })
    return tmp_db
