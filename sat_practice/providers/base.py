from __future__ import annotations

from abc import ABC, abstractmethod


class LLMProvider(ABC):
    @abstractmethod
    async def generate(self, prompt: str, temperature: float = 0.7, system: str | None = None) -> str:
        ...

    @abstractmethod
    def name(self) -> str:
        ...
