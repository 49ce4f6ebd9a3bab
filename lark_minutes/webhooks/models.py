"""Lark webhook payload models and processing results."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field


class EventType(str, Enum):
    MEETING_ENDED = "vc.meeting.meeting_ended_v1"
    TRANSCRIPT_READY = "vc.meeting.transcript_ready_v1"
    RECORDING_READY = "vc.meeting.recording_ready_v1"


class ProcessingState(str, Enum):
    COMPLETED = "completed"
    SKIPPED = "skipped"
    FAILED = "failed"


# ---------------------------------------------------------------------------
# Wire payload
# ---------------------------------------------------------------------------

class WebhookHeader(BaseModel):
    event_id: str = Field(min_length=1)
    token: str = ""
    create_time: str = ""
    event_type: str = ""
    tenant_key: str | None = None
    app_id: str | None = None


class MeetingEndedEvent(BaseModel):
    model_config = ConfigDict(frozen=True)

    type: Literal["vc.meeting.meeting_ended_v1"] = EventType.MEETING_ENDED.value
    meeting_id: str = Field(min_length=1)
    end_time: int = Field(gt=0)  # epoch seconds
    host_user_id: str = Field(min_length=1)
    topic: str | None = None
    duration: int | None = Field(default=None, ge=0)
    participant_count: int | None = Field(default=None, ge=0)


class TranscriptReadyEvent(BaseModel):
    model_config = ConfigDict(frozen=True)

    type: Literal["vc.meeting.transcript_ready_v1"] = EventType.TRANSCRIPT_READY.value
    meeting_id: str = Field(min_length=1)
    transcript_id: str = Field(min_length=1)
    ready_time: int = Field(gt=0)


class RecordingReadyEvent(BaseModel):
    model_config = ConfigDict(frozen=True)

    type: Literal["vc.meeting.recording_ready_v1"] = EventType.RECORDING_READY.value
    meeting_id: str = Field(min_length=1)
    recording_id: str = Field(min_length=1)
    ready_time: int = Field(gt=0)


class GenericEvent(BaseModel):
    """Any event type this service does not act on."""
    model_config = ConfigDict(extra="allow", frozen=True)

    type: str


WebhookEvent = Union[MeetingEndedEvent, TranscriptReadyEvent, RecordingReadyEvent, GenericEvent]

_EVENT_MODELS: dict[str, type[BaseModel]] = {
    EventType.MEETING_ENDED.value: MeetingEndedEvent,
    EventType.TRANSCRIPT_READY.value: TranscriptReadyEvent,
    EventType.RECORDING_READY.value: RecordingReadyEvent,
}


class WebhookPayload(BaseModel):
    header: WebhookHeader
    event: WebhookEvent
    schema_version: str | None = Field(default=None, alias="schema")

    model_config = ConfigDict(populate_by_name=True)

    @classmethod
    def parse(cls, data: dict[str, Any]) -> WebhookPayload:
        """Validate a decoded body, choosing the event model by ``event.type``.

        Raises ``pydantic.ValidationError`` (a ``ValueError``) on bad input.
        """
        raw_event = data.get("event")
        event: Any = raw_event
        if isinstance(raw_event, dict):
            event_type = raw_event.get("type")
            # Non-string types fall through to GenericEvent, which rejects them
            model = (
                _EVENT_MODELS.get(event_type, GenericEvent)
                if isinstance(event_type, str)
                else GenericEvent
            )
            event = model.model_validate(raw_event)
        return cls.model_validate({**data, "event": event})


class UrlVerificationChallenge(BaseModel):
    challenge: str = Field(min_length=1)
    token: str = Field(min_length=1)
    type: Literal["url_verification"]


# ---------------------------------------------------------------------------
# Processing results
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class WebhookProcessingResult:
    state: ProcessingState
    event_id: str
    duration_ms: int
    meeting_id: str | None = None
    error: str | None = None
    error_code: str | None = None
    completed_at: str = ""

    def __post_init__(self) -> None:
        if not self.completed_at:
            object.__setattr__(
                self, "completed_at", datetime.now(timezone.utc).isoformat()
            )

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "state": self.state.value,
            "event_id": self.event_id,
            "duration_ms": self.duration_ms,
            "completed_at": self.completed_at,
        }
        if self.meeting_id is not None:
            data["meeting_id"] = self.meeting_id
        if self.error is not None:
            data["error"] = self.error
            data["error_code"] = self.error_code
        return data


@dataclass(frozen=True)
class MeetingEndedContext:
    """What callbacks learn about the meeting an outcome belongs to."""
    event_id: str
    meeting_id: str
    host_user_id: str
    end_time: int
    topic: str | None = None
    participant_count: int | None = None

    @classmethod
    def from_event(cls, event_id: str, event: MeetingEndedEvent) -> MeetingEndedContext:
        return cls(
            event_id=event_id,
            meeting_id=event.meeting_id,
            host_user_id=event.host_user_id,
            end_time=event.end_time,
            topic=event.topic,
            participant_count=event.participant_count,
        )
