from __future__ import annotations

from dataclasses import dataclass, field

QUESTION_TYPES = ("reading", "writing", "math", "vocabulary")
DIFFICULTIES = ("easy", "medium", "hard")


@dataclass
class WordRoot:
    root: str
    origin: str
    meaning: str

    def to_dict(self) -> dict:
        return {"root": self.root, "origin": self.origin, "meaning": self.meaning}


@dataclass
class Etymology:
    word: str
    definition: str
    roots: list[WordRoot]
    usage: str

    def to_dict(self) -> dict:
        return {
            "word": self.word,
            "definition": self.definition,
            "roots": [r.to_dict() for r in self.roots],
            "usage": self.usage,
        }

    @classmethod
    def from_dict(cls, data: dict) -> Etymology:
        return cls(
            word=data["word"],
            definition=data["definition"],
            roots=[WordRoot(r["root"], r["origin"], r["meaning"]) for r in data.get("roots", [])],
            usage=data["usage"],
        )


@dataclass
class Question:
    question: str  # may embed "Passage: ... Question: ..."
    options: list[str]
    correct_answer: str
    explanation: str
    etymology: Etymology | None = None

    @property
    def passage(self) -> str | None:
        """Reading passage text, when the prompt embeds one."""
        if "Passage:" not in self.question:
            return None
        return self.question.split("Question:")[0].replace("Passage:", "", 1).strip()

    @property
    def prompt(self) -> str:
        if "Question:" in self.question:
            return self.question.split("Question:", 1)[1].strip()
        return self.question

    def to_dict(self) -> dict:
        d = {
            "question": self.question,
            "options": list(self.options),
            "correctAnswer": self.correct_answer,
            "explanation": self.explanation,
        }
        if self.etymology is not None:
            d["etymology"] = self.etymology.to_dict()
        return d

    @classmethod
    def from_dict(cls, data: dict) -> Question:
        ety = data.get("etymology")
        return cls(
            question=data["question"],
            options=list(data["options"]),
            correct_answer=data["correctAnswer"],
            explanation=data["explanation"],
            etymology=Etymology.from_dict(ety) if ety else None,
        )


@dataclass
class PracticeTestConfig:
    title: str
    question_type: str = "reading"
    number_of_questions: int = 5

    def to_dict(self) -> dict:
        return {
            "title": self.title,
            "questionType": self.question_type,
            "numberOfQuestions": self.number_of_questions,
        }

    @classmethod
    def from_dict(cls, data: dict) -> PracticeTestConfig:
        return cls(
            title=str(data.get("title") or ""),
            question_type=data.get("questionType", "reading"),
            number_of_questions=int(data.get("numberOfQuestions", 5)),
        )


@dataclass
class PracticeTestProgress:
    current_question: int = 0
    correct_answers: int = 0
    completed: bool = False

    def to_dict(self) -> dict:
        return {
            "currentQuestion": self.current_question,
            "correctAnswers": self.correct_answers,
            "completed": self.completed,
        }

    @classmethod
    def from_dict(cls, data: dict) -> PracticeTestProgress:
        return cls(
            current_question=int(data.get("currentQuestion", 0)),
            correct_answers=int(data.get("correctAnswers", 0)),
            completed=bool(data.get("completed", False)),
        )


@dataclass
class PracticeTest:
    id: str
    user_id: str
    created_at: str
    status: str  # generating | ready | in-progress | completed | failed
    config: PracticeTestConfig
    questions: list[Question] = field(default_factory=list)
    progress: PracticeTestProgress = field(default_factory=PracticeTestProgress)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "userId": self.user_id,
            "createdAt": self.created_at,
            "status": self.status,
            "config": self.config.to_dict(),
            "questions": [q.to_dict() for q in self.questions],
            "progress": self.progress.to_dict(),
        }
