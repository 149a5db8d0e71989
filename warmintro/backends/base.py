from abc import ABC, abstractmethod
from typing import Type
from pydantic import BaseModel


class LLMBackend(ABC):
    """Abstract base class for LLM provider backends.

    Implementations may raise provider errors; callers decide how to degrade.
    """

    @abstractmethod
    def extract_contact(
        self, raw_text: str, system_prompt: str, response_schema: Type[BaseModel]
    ) -> dict:
        """Extract structured contact fields from raw text."""
        pass

    @abstractmethod
    def parse_query(
        self, query: str, system_prompt: str, response_schema: Type[BaseModel]
    ) -> dict:
        """Turn a free-text search query into a structured filter."""
        pass

    @abstractmethod
    def write_message(
        self, context: str, system_prompt: str, response_schema: Type[BaseModel]
    ) -> dict:
        """Draft a short introduction message (subject and body)."""
        pass
