"""Structured minutes generation from a transcript using Claude."""

from __future__ import annotations

import re
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Protocol

from lark_minutes.llm import ClaudeApiError, ClaudeParseError, LLMMessage, StructuredOutput
from lark_minutes.minutes.prompts import (
    Language,
    MinutesOutput,
    OutputActionItem,
    OutputSpeaker,
    OutputTopic,
    build_user_prompt,
    get_system_prompt,
)
from lark_minutes.models import (
    ActionItem,
    DecisionItem,
    Minutes,
    MinutesMetadata,
    Speaker,
    TopicSegment,
    Transcript,
    TranscriptSegment,
)
from lark_minutes.utils.logging import get_logger

log = get_logger(__name__)

_DATE_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")


class MinutesGenerationError(Exception):
    """Codes: INVALID_INPUT, CLAUDE_API_ERROR, PARSE_ERROR, UNKNOWN_ERROR."""

    def __init__(self, message: str, code: str, cause: BaseException | None = None) -> None:
        super().__init__(message)
        self.code = code
        self.cause = cause


@dataclass(frozen=True)
class MeetingInfo:
    id: str
    title: str
    date: str  # YYYY-MM-DD
    attendees: list[Speaker] = field(default_factory=list)


@dataclass(frozen=True)
class MinutesGenerationInput:
    transcript: Transcript
    meeting: MeetingInfo
    language: Language | None = None
    max_tokens: int | None = None


@dataclass(frozen=True)
class TokenUsage:
    input_tokens: int = 0
    output_tokens: int = 0


@dataclass(frozen=True)
class MinutesGenerationResult:
    minutes: Minutes
    processing_time_ms: int
    usage: TokenUsage


class StructuredLLM(Protocol):
    @property
    def model(self) -> str: ...

    def count_tokens(self, text: str) -> int: ...

    async def generate_structured(
        self,
        messages: list[LLMMessage],
        schema: type[MinutesOutput],
        system: str | None = None,
        max_tokens: int | None = None,
        parse_retries: int | None = None,
    ) -> StructuredOutput[MinutesOutput]: ...


# ---------------------------------------------------------------------------
# Transcript formatting
# ---------------------------------------------------------------------------

def format_timestamp(ms: int) -> str:
    if ms < 0:
        return "00:00:00"
    total = ms // 1000
    return f"{total // 3600:02d}:{total % 3600 // 60:02d}:{total % 60:02d}"


def format_segment(segment: TranscriptSegment) -> str:
    return f"[{format_timestamp(segment.start_time)}] {segment.speaker.name}: {segment.text}"


def format_transcript(transcript: Transcript) -> str:
    return "\n".join(format_segment(s) for s in transcript.segments)


# ---------------------------------------------------------------------------
# Output transformation
# ---------------------------------------------------------------------------

def _speaker(raw: OutputSpeaker, speaker_id: str) -> Speaker:
    return Speaker(id=speaker_id, name=raw.name, lark_user_id=raw.lark_user_id)


def _topic(raw: OutputTopic, index: int) -> TopicSegment:
    return TopicSegment(
        id=f"topic_{index}",
        title=raw.title,
        start_time=raw.start_time,
        end_time=raw.end_time,
        summary=raw.summary,
        key_points=list(raw.key_points),
        speakers=[_speaker(s, f"speaker_{i}") for i, s in enumerate(raw.speakers or [])],
    )


def _action_item(raw: OutputActionItem, index: int) -> ActionItem:
    return ActionItem(
        id=f"act_{index}",
        content=raw.content,
        priority=raw.priority,
        assignee=_speaker(raw.assignee, f"assignee_{index}") if raw.assignee else None,
        due_date=raw.due_date,
    )


def calculate_duration(topics: list[TopicSegment]) -> int:
    if not topics:
        return 0
    return max(t.end_time for t in topics) - min(t.start_time for t in topics)


def calculate_confidence(output: MinutesOutput) -> float:
    """Completeness score in [0, 1].

    Summary counts for 1 (half if short), topics for 1.5 (the extra half only
    when every topic has key points), decisions or actions for 0.5.
    """
    score = 0.0
    if len(output.summary) > 50:
        score += 1
    elif output.summary:
        score += 0.5

    if output.topics:
        score += 1
        if all(t.key_points for t in output.topics):
            score += 0.5

    if output.decisions or output.action_items:
        score += 0.5

    return min(1.0, score / 3.0)


def to_minutes(
    output: MinutesOutput,
    meeting: MeetingInfo,
    model: str,
    processing_time_ms: int,
) -> Minutes:
    now = datetime.now(timezone.utc)
    topics = [_topic(t, i) for i, t in enumerate(output.topics)]
    return Minutes(
        id=f"min_{meeting.id}_{int(now.timestamp() * 1000)}",
        meeting_id=meeting.id,
        title=meeting.title,
        date=meeting.date,
        duration=calculate_duration(topics),
        summary=output.summary,
        topics=topics,
        decisions=[
            DecisionItem(id=f"dec_{i}", content=d.content, context=d.context, decided_at=d.decided_at)
            for i, d in enumerate(output.decisions)
        ],
        action_items=[_action_item(a, i) for i, a in enumerate(output.action_items)],
        attendees=[_speaker(s, f"speaker_{i}") for i, s in enumerate(output.attendees or [])],
        metadata=MinutesMetadata(
            generated_at=now.isoformat(),
            model=model,
            processing_time_ms=processing_time_ms,
            confidence=calculate_confidence(output),
        ),
    )


# ---------------------------------------------------------------------------
# Generator
# ---------------------------------------------------------------------------

class MinutesGenerator:
    def __init__(
        self,
        llm: StructuredLLM,
        language: Language = "ja",
        max_tokens: int = 8000,
        parse_retries: int = 2,
        max_transcript_tokens: int = 150_000,
    ) -> None:
        self._llm = llm
        self._language = language
        self._max_tokens = max_tokens
        self._parse_retries = parse_retries
        self._max_transcript_tokens = max_transcript_tokens

    async def generate_minutes(self, request: MinutesGenerationInput) -> MinutesGenerationResult:
        start = time.monotonic()
        transcript_text = self._validate(request)
        meeting = request.meeting
        language = request.language or self._language

        try:
            system = get_system_prompt(language)
            prompt = build_user_prompt(
                transcript=transcript_text,
                title=meeting.title,
                date=meeting.date,
                attendees=[a.name for a in meeting.attendees],
                language=language,
            )
            output = await self._llm.generate_structured(
                [LLMMessage(role="user", content=prompt)],
                MinutesOutput,
                system=system,
                max_tokens=request.max_tokens or self._max_tokens,
                parse_retries=self._parse_retries,
            )
        except ClaudeApiError as e:
            raise MinutesGenerationError(f"Claude API error: {e}", "CLAUDE_API_ERROR", e) from e
        except ClaudeParseError as e:
            raise MinutesGenerationError(
                f"Failed to parse Claude response: {e}", "PARSE_ERROR", e
            ) from e
        except Exception as e:
            raise MinutesGenerationError(
                f"Unexpected error during minutes generation: {e}", "UNKNOWN_ERROR", e
            ) from e

        elapsed = int((time.monotonic() - start) * 1000)
        minutes = to_minutes(output.data, meeting, self._llm.model, elapsed)
        log.info(
            "minutes_generated",
            meeting_id=meeting.id,
            topics=len(minutes.topics),
            decisions=len(minutes.decisions),
            action_items=len(minutes.action_items),
            attempts=output.attempts,
            elapsed_ms=elapsed,
        )
        return MinutesGenerationResult(
            minutes=minutes,
            processing_time_ms=elapsed,
            usage=TokenUsage(output.input_tokens, output.output_tokens),
        )

    def _validate(self, request: MinutesGenerationInput) -> str:
        """Check the input and return the formatted transcript text."""
        meeting = request.meeting
        if request.transcript.is_empty:
            raise MinutesGenerationError("Transcript must have at least one segment", "INVALID_INPUT")
        if not meeting.id.strip():
            raise MinutesGenerationError("Meeting ID is required", "INVALID_INPUT")
        if not meeting.title.strip():
            raise MinutesGenerationError("Meeting title is required", "INVALID_INPUT")
        if not _DATE_RE.match(meeting.date):
            raise MinutesGenerationError(
                "Meeting date is required and must be in YYYY-MM-DD format", "INVALID_INPUT"
            )

        text = format_transcript(request.transcript)
        tokens = self._llm.count_tokens(text)
        if tokens > self._max_transcript_tokens:
            raise MinutesGenerationError(
                f"Transcript too long ({tokens} tokens, limit {self._max_transcript_tokens})",
                "INVALID_INPUT",
            )
        return text
