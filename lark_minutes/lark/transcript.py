"""Meeting transcript retrieval from Lark VC."""

from __future__ import annotations

from typing import Any

from lark_minutes.lark.client import LarkApiError, LarkClient
from lark_minutes.models import Speaker, Transcript, TranscriptSegment
from lark_minutes.utils.logging import get_logger

log = get_logger(__name__)

TRANSCRIPT_PATH = "/open-apis/vc/v1/meetings/{meeting_id}/transcript"

# Meeting not found, resource not found, transcript not available
NOT_FOUND_CODES = frozenset({99991663, 99991664, 99991672})


class TranscriptNotFoundError(LarkApiError):
    def __init__(self, meeting_id: str, message: str | None = None, code: int = 404) -> None:
        super().__init__(message or f"Transcript not found for meeting: {meeting_id}", code=code)
        self.meeting_id = meeting_id


def _parse_segment(raw: dict[str, Any]) -> TranscriptSegment:
    speaker = raw.get("speaker") or {}
    return TranscriptSegment(
        id=str(raw.get("segment_id", "")),
        start_time=int(raw.get("start_time", 0)),
        end_time=int(raw.get("end_time", 0)),
        speaker=Speaker(
            id=str(speaker.get("user_id", "")),
            name=speaker.get("name", ""),
        ),
        text=raw.get("text", ""),
        confidence=float(raw.get("confidence") or 0.0),
    )


def parse_transcript(meeting_id: str, data: dict[str, Any]) -> Transcript:
    segments = sorted(
        (_parse_segment(s) for s in data.get("segments") or []),
        key=lambda s: s.start_time,
    )
    return Transcript(
        meeting_id=data.get("meeting_id") or meeting_id,
        segments=tuple(segments),
        language=data.get("language") or "",
    )


class TranscriptService:
    def __init__(self, client: LarkClient) -> None:
        self._client = client

    async def get_transcript(self, access_token: str, meeting_id: str) -> Transcript:
        """Fetch a transcript. Raises ``TranscriptNotFoundError`` if Lark has none."""
        path = TRANSCRIPT_PATH.format(meeting_id=meeting_id)
        try:
            data = await self._client.get(path, access_token)
        except LarkApiError as e:
            if e.code in NOT_FOUND_CODES or e.status_code == 404:
                raise TranscriptNotFoundError(meeting_id, str(e), code=e.code) from e
            raise

        if not data:
            raise TranscriptNotFoundError(meeting_id)

        transcript = parse_transcript(meeting_id, data)
        log.debug("transcript_fetched", meeting_id=meeting_id, segments=len(transcript.segments))
        return transcript

    async def has_transcript(self, access_token: str, meeting_id: str) -> bool:
        try:
            await self.get_transcript(access_token, meeting_id)
        except TranscriptNotFoundError:
            return False
        return True
