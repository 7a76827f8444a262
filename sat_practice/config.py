from __future__ import annotations

import json
import os
from dataclasses import dataclass
from pathlib import Path

CONFIG_PATH = Path(__file__).resolve().parent.parent / "config.json"

DEFAULTS = {
    "llm_provider": "openai",
    "llm_model": "gpt-4o",
    "ollama_url": "http://localhost:11434",
    "db_path": "sat_practice.db",
    "default_difficulty": "medium",
    "question_time_limit": 150,
    "finite_question_count": 5,
    "infinite_batch_size": 2,
    "progress_increment": 2,
    "session_idle_timeout": 1800,
}

# Provider -> environment variable that must hold its API key
API_KEY_ENV = {
    "openai": "OPENAI_API_KEY",
    "anthropic": "ANTHROPIC_API_KEY",
}


@dataclass
class Settings:
    llm_provider: str = DEFAULTS["llm_provider"]
    llm_model: str = DEFAULTS["llm_model"]
    ollama_url: str = DEFAULTS["ollama_url"]
    db_path: str = DEFAULTS["db_path"]
    default_difficulty: str = DEFAULTS["default_difficulty"]
    question_time_limit: int = DEFAULTS["question_time_limit"]
    finite_question_count: int = DEFAULTS["finite_question_count"]
    infinite_batch_size: int = DEFAULTS["infinite_batch_size"]
    progress_increment: int = DEFAULTS["progress_increment"]
    session_idle_timeout: int = DEFAULTS["session_idle_timeout"]

    @property
    def project_root(self) -> Path:
        return Path(__file__).resolve().parent.parent

    @property
    def db_full_path(self) -> Path:
        return self.project_root / self.db_path

    def api_key(self) -> str | None:
        env = API_KEY_ENV.get(self.llm_provider)
        if env is None:
            return None
        return os.environ.get(env) or None

    def to_dict(self) -> dict:
        return {
            "llm_provider": self.llm_provider,
            "llm_model": self.llm_model,
            "ollama_url": self.ollama_url,
            "db_path": self.db_path,
            "default_difficulty": self.default_difficulty,
            "question_time_limit": self.question_time_limit,
            "finite_question_count": self.finite_question_count,
            "infinite_batch_size": self.infinite_batch_size,
            "progress_increment": self.progress_increment,
            "session_idle_timeout": self.session_idle_timeout,
        }


def load_settings() -> Settings:
    if CONFIG_PATH.exists():
        raw = json.loads(CONFIG_PATH.read_text())
        known = {f.name for f in Settings.__dataclass_fields__.values()}
        filtered = {k: v for k, v in raw.items() if k in known}
        settings = Settings(**filtered)
    else:
        settings = Settings()
    # Environment wins over config.json for the provider choice
    if os.environ.get("SAT_PRACTICE_LLM_PROVIDER"):
        settings.llm_provider = os.environ["SAT_PRACTICE_LLM_PROVIDER"]
    if os.environ.get("SAT_PRACTICE_DB_PATH"):
        settings.db_path = os.environ["SAT_PRACTICE_DB_PATH"]
    return settings


def save_settings(settings: Settings) -> None:
    CONFIG_PATH.write_text(json.dumps(settings.to_dict(), indent=4) + "\n")
