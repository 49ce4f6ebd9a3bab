"""Claude access for minutes generation."""

from lark_minutes.llm.client import ClaudeApiError, ClaudeClient, ClaudeParseError, extract_json
from lark_minutes.llm.types import LLMMessage, LLMResponse, StructuredOutput

__all__ = [
    "ClaudeApiError",
    "ClaudeClient",
    "ClaudeParseError",
    "LLMMessage",
    "LLMResponse",
    "StructuredOutput",
    "extract_json",
]
