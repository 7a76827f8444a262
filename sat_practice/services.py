"""Construct the shared database and LLM handles once per process."""
from __future__ import annotations

import logging
from dataclasses import dataclass

from sat_practice.config import API_KEY_ENV, Settings
from sat_practice.db import Database
from sat_practice.errors import ConfigError
from sat_practice.providers.base import LLMProvider

_log = logging.getLogger("sat_practice.services")


@dataclass
class Services:
    settings: Settings
    db: Database
    llm: LLMProvider

    def close(self) -> None:
        self.db.close()


def build_llm(settings: Settings) -> LLMProvider:
    provider = settings.llm_provider
    if provider == "ollama":
        from sat_practice.providers.llm_ollama import OllamaProvider
        return OllamaProvider(base_url=settings.ollama_url, model=settings.llm_model)
    if provider not in API_KEY_ENV:
        raise ConfigError(f"Unknown LLM provider: {provider}")
    api_key = settings.api_key()
    if not api_key:
        raise ConfigError(f"{API_KEY_ENV[provider]} is not set")
    if provider == "openai":
        from sat_practice.providers.llm_openai import OpenAIProvider
        return OpenAIProvider(api_key=api_key, model=settings.llm_model)
    from sat_practice.providers.llm_anthropic import AnthropicProvider
    return AnthropicProvider(api_key=api_key, model=settings.llm_model)


def init_services(settings: Settings) -> Services:
    """Build the process-wide handles; raises ConfigError on bad configuration."""
    llm = build_llm(settings)
    db = Database(settings.db_full_path)
    migrated = db.migrate_legacy_questions()
    _log.info("Services ready: %s, db=%s (%d tests migrated)",
              llm.name(), settings.db_full_path, migrated)
    return Services(settings=settings, db=db, llm=llm)
