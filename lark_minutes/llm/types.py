"""LLM data types."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Generic, TypeVar

T = TypeVar("T")


@dataclass
class LLMMessage:
    role: str  # "user", "assistant"
    content: str


@dataclass
class LLMResponse:
    content: str = ""
    stop_reason: str | None = None
    input_tokens: int = 0
    output_tokens: int = 0


@dataclass
class StructuredOutput(Generic[T]):
    data: T
    raw: str
    attempts: int = 1
    input_tokens: int = 0
    output_tokens: int = 0
