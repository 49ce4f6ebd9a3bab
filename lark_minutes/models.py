"""Typed transcript and minutes models shared across the pipeline."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import Any


@dataclass(frozen=True)
class Speaker:
    id: str
    name: str
    lark_user_id: str | None = None


@dataclass(frozen=True)
class TranscriptSegment:
    id: str
    start_time: int  # ms from meeting start
    end_time: int
    speaker: Speaker
    text: str
    confidence: float = 0.0

    @property
    def duration(self) -> int:
        return self.end_time - self.start_time


@dataclass(frozen=True)
class Transcript:
    meeting_id: str
    segments: tuple[TranscriptSegment, ...] = ()
    language: str = ""

    @property
    def is_empty(self) -> bool:
        return len(self.segments) == 0

    @property
    def total_duration(self) -> int:
        return max((s.end_time for s in self.segments), default=0)

    @property
    def speakers(self) -> list[Speaker]:
        """Unique speakers in order of first appearance."""
        seen: dict[str, Speaker] = {}
        for segment in self.segments:
            seen.setdefault(segment.speaker.id, segment.speaker)
        return list(seen.values())


@dataclass
class TopicSegment:
    id: str
    title: str
    start_time: int
    end_time: int
    summary: str
    key_points: list[str] = field(default_factory=list)
    speakers: list[Speaker] = field(default_factory=list)


@dataclass
class DecisionItem:
    id: str
    content: str
    context: str
    decided_at: int


@dataclass
class ActionItem:
    id: str
    content: str
    priority: str  # "high", "medium", "low"
    status: str = "pending"
    assignee: Speaker | None = None
    due_date: str | None = None


@dataclass
class MinutesMetadata:
    generated_at: str
    model: str
    processing_time_ms: int
    confidence: float


@dataclass
class Minutes:
    id: str
    meeting_id: str
    title: str
    date: str
    duration: int
    summary: str
    metadata: MinutesMetadata
    topics: list[TopicSegment] = field(default_factory=list)
    decisions: list[DecisionItem] = field(default_factory=list)
    action_items: list[ActionItem] = field(default_factory=list)
    attendees: list[Speaker] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Minutes:
        def speaker(raw: dict[str, Any] | None) -> Speaker | None:
            return Speaker(**raw) if raw else None

        return cls(
            id=data["id"],
            meeting_id=data["meeting_id"],
            title=data["title"],
            date=data["date"],
            duration=data["duration"],
            summary=data["summary"],
            metadata=MinutesMetadata(**data["metadata"]),
            topics=[
                TopicSegment(
                    **{k: v for k, v in t.items() if k != "speakers"},
                    speakers=[Speaker(**s) for s in t.get("speakers", [])],
                )
                for t in data.get("topics", [])
            ],
            decisions=[DecisionItem(**d) for d in data.get("decisions", [])],
            action_items=[
                ActionItem(
                    **{k: v for k, v in a.items() if k != "assignee"},
                    assignee=speaker(a.get("assignee")),
                )
                for a in data.get("action_items", [])
            ],
            attendees=[Speaker(**s) for s in data.get("attendees", [])],
        )
