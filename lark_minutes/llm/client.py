"""Claude client with retrying calls and validated JSON output."""

from __future__ import annotations

import asyncio
import json
import random
import re
from typing import Any, TypeVar

import tiktoken
from anthropic import APIConnectionError, APIError, APIStatusError, AsyncAnthropic, RateLimitError
from pydantic import BaseModel, ValidationError

from lark_minutes.config import LLMConfig
from lark_minutes.llm.types import LLMMessage, LLMResponse, StructuredOutput
from lark_minutes.utils.logging import get_logger

log = get_logger(__name__)

M = TypeVar("M", bound=BaseModel)

_CODE_BLOCK_RE = re.compile(r"```(?:json)?\s*([\s\S]*?)\s*```")

_JSON_INSTRUCTION = """You must respond with valid JSON only. No markdown, no code blocks, no explanations.
Your response must conform to this JSON schema:
{schema}

Respond with the JSON object directly."""


class ClaudeApiError(Exception):
    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class ClaudeParseError(Exception):
    def __init__(self, message: str, raw: str = "") -> None:
        super().__init__(message)
        self.raw = raw


def extract_json(text: str) -> Any:
    """Pull a JSON value out of a model reply.

    Tries the whole text, then a fenced code block, then the outermost
    object, then the outermost array.
    """
    candidates = [text.strip()]

    match = _CODE_BLOCK_RE.search(text)
    if match:
        candidates.append(match.group(1))

    for open_ch, close_ch in (("{", "}"), ("[", "]")):
        start, end = text.find(open_ch), text.rfind(close_ch)
        if start != -1 and end > start:
            candidates.append(text[start : end + 1])

    for candidate in candidates:
        try:
            return json.loads(candidate)
        except json.JSONDecodeError:
            continue
    raise ClaudeParseError("No valid JSON found in response", raw=text)


class ClaudeClient:
    def __init__(self, config: LLMConfig, client: AsyncAnthropic | None = None) -> None:
        self._config = config
        # Empty key falls back to ANTHROPIC_API_KEY
        self._client = client or AsyncAnthropic(api_key=config.api_key or None)
        self._model = config.model
        self._tokenizer: tiktoken.Encoding | None = None

    @property
    def model(self) -> str:
        return self._model

    async def close(self) -> None:
        await self._client.close()

    def count_tokens(self, text: str) -> int:
        # cl100k only approximates Claude's tokenizer
        if self._tokenizer is None:
            self._tokenizer = tiktoken.get_encoding("cl100k_base")
        return len(self._tokenizer.encode(text))

    async def complete(
        self,
        messages: list[LLMMessage],
        system: str | None = None,
        temperature: float | None = None,
        max_tokens: int | None = None,
    ) -> LLMResponse:
        if not messages:
            raise ClaudeApiError("At least one message is required")
        kwargs = self._build_kwargs(messages, system, temperature, max_tokens)
        response = await self._call_with_retry(kwargs)
        return self._parse_response(response)

    async def generate_structured(
        self,
        messages: list[LLMMessage],
        schema: type[M],
        system: str | None = None,
        max_tokens: int | None = None,
        parse_retries: int | None = None,
    ) -> StructuredOutput[M]:
        """Ask for JSON matching ``schema``, re-asking on parse or schema failure.

        API errors are raised immediately; only bad output is retried.
        """
        retries = self._config.parse_retries if parse_retries is None else parse_retries
        instruction = _JSON_INSTRUCTION.format(
            schema=json.dumps(schema.model_json_schema(), ensure_ascii=False)
        )
        full_system = f"{system}\n\n{instruction}" if system else instruction

        input_tokens = output_tokens = 0
        last_error: ClaudeParseError | None = None
        for attempt in range(retries + 1):
            response = await self.complete(messages, system=full_system, max_tokens=max_tokens)
            input_tokens += response.input_tokens
            output_tokens += response.output_tokens
            try:
                data = schema.model_validate(extract_json(response.content))
            except ClaudeParseError as e:
                last_error = e
            except ValidationError as e:
                last_error = ClaudeParseError(
                    f"Schema validation failed: {e.error_count()} error(s)", raw=response.content
                )
            else:
                return StructuredOutput(
                    data=data,
                    raw=response.content,
                    attempts=attempt + 1,
                    input_tokens=input_tokens,
                    output_tokens=output_tokens,
                )
            log.warning("structured_output_invalid", attempt=attempt, error=str(last_error))

        assert last_error is not None
        raise last_error

    def _build_kwargs(
        self,
        messages: list[LLMMessage],
        system: str | None,
        temperature: float | None,
        max_tokens: int | None,
    ) -> dict[str, Any]:
        kwargs: dict[str, Any] = {
            "model": self._model,
            "messages": [{"role": m.role, "content": m.content} for m in messages],
            "max_tokens": max_tokens or self._config.max_tokens,
            "temperature": temperature if temperature is not None else self._config.temperature,
        }
        if system:
            kwargs["system"] = system
        return kwargs

    async def _call_with_retry(self, kwargs: dict[str, Any], max_retries: int = 3) -> Any:
        for attempt in range(max_retries + 1):
            try:
                return await self._client.messages.create(**kwargs)
            except RateLimitError as e:
                if attempt == max_retries:
                    raise ClaudeApiError(f"Rate limited: {e}", status_code=429) from e
                wait = (2 ** attempt) + random.uniform(0, 1)
                log.warning("rate_limited", attempt=attempt, wait=wait)
                await asyncio.sleep(wait)
            except APIStatusError as e:
                if attempt == max_retries or e.status_code < 500:
                    raise ClaudeApiError(
                        f"API request failed: {e}", status_code=e.status_code
                    ) from e
                wait = (2 ** attempt) + random.uniform(0, 1)
                log.warning("api_error_retry", status=e.status_code, attempt=attempt)
                await asyncio.sleep(wait)
            except APIConnectionError as e:
                if attempt == max_retries:
                    raise ClaudeApiError(f"Connection failed: {e}") from e
                wait = (2 ** attempt) + random.uniform(0, 1)
                log.warning("api_connection_retry", attempt=attempt)
                await asyncio.sleep(wait)
            except APIError as e:
                raise ClaudeApiError(f"API request failed: {e}") from e

    def _parse_response(self, response: Any) -> LLMResponse:
        result = LLMResponse(
            stop_reason=response.stop_reason,
            input_tokens=response.usage.input_tokens,
            output_tokens=response.usage.output_tokens,
        )
        for block in response.content:
            if block.type == "text":
                result.content += block.text
        if not result.content:
            raise ClaudeApiError("No text content in response")
        return result
