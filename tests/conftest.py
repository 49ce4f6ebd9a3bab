"""Shared fakes for pipeline tests."""

from __future__ import annotations

from typing import Any

import pytest

from lark_minutes.minutes.generator import (
    MinutesGenerationInput,
    MinutesGenerationResult,
    TokenUsage,
)
from lark_minutes.models import Minutes, MinutesMetadata, Speaker, Transcript, TranscriptSegment
from lark_minutes.webhooks.models import MeetingEndedEvent, WebhookHeader, WebhookPayload


def make_transcript(meeting_id: str = "m1", segments: int = 1) -> Transcript:
    return Transcript(
        meeting_id=meeting_id,
        segments=tuple(
            TranscriptSegment(
                id=f"s{i}",
                start_time=i * 1000,
                end_time=i * 1000 + 900,
                speaker=Speaker(id="u1", name="Tanaka"),
                text=f"line {i}",
            )
            for i in range(segments)
        ),
    )


def make_payload(
    event_id: str = "e1",
    meeting_id: str = "m1",
    end_time: int = 1700000000,
    topic: str | None = None,
) -> WebhookPayload:
    return WebhookPayload(
        header=WebhookHeader(event_id=event_id),
        event=MeetingEndedEvent(
            meeting_id=meeting_id,
            end_time=end_time,
            host_user_id="u1",
            topic=topic,
        ),
    )


class FakeTranscripts:
    """Returns queued responses in order; the last one repeats."""

    def __init__(self, *responses: Transcript | Exception) -> None:
        self._responses = list(responses) or [make_transcript()]
        self.calls: list[tuple[str, str]] = []

    async def get_transcript(self, access_token: str, meeting_id: str) -> Transcript:
        self.calls.append((access_token, meeting_id))
        index = min(len(self.calls) - 1, len(self._responses) - 1)
        response = self._responses[index]
        if isinstance(response, Exception):
            raise response
        return response

    async def has_transcript(self, access_token: str, meeting_id: str) -> bool:
        return True


class FakeGenerator:
    def __init__(self, error: Exception | None = None) -> None:
        self.error = error
        self.inputs: list[MinutesGenerationInput] = []

    async def generate_minutes(self, request: MinutesGenerationInput) -> MinutesGenerationResult:
        self.inputs.append(request)
        if self.error is not None:
            raise self.error
        meeting = request.meeting
        minutes = Minutes(
            id=f"min_{meeting.id}_1",
            meeting_id=meeting.id,
            title=meeting.title,
            date=meeting.date,
            duration=0,
            summary="summary",
            metadata=MinutesMetadata(
                generated_at="2024-01-01T00:00:00+00:00",
                model="fake",
                processing_time_ms=1,
                confidence=1.0,
            ),
        )
        return MinutesGenerationResult(minutes=minutes, processing_time_ms=1, usage=TokenUsage())


class SleepRecorder:
    def __init__(self) -> None:
        self.calls: list[int] = []

    async def __call__(self, ms: int) -> None:
        self.calls.append(ms)


@pytest.fixture
def sleeper() -> SleepRecorder:
    return SleepRecorder()


@pytest.fixture
def no_jitter() -> dict[str, Any]:
    return {"max_retries": 3, "initial_delay_ms": 100, "max_delay_ms": 100_000, "jitter": False}
