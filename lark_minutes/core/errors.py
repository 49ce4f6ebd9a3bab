"""Errors raised while turning a webhook event into minutes."""

from __future__ import annotations

from enum import Enum


class ProcessingErrorCode(str, Enum):
    MISSING_ACCESS_TOKEN = "MISSING_ACCESS_TOKEN"
    TRANSCRIPT_NOT_READY = "TRANSCRIPT_NOT_READY"
    GENERATION_FAILED = "GENERATION_FAILED"


class WebhookProcessingError(Exception):
    def __init__(
        self,
        message: str,
        code: ProcessingErrorCode,
        event_id: str,
        meeting_id: str | None = None,
        cause: BaseException | None = None,
    ) -> None:
        super().__init__(message)
        self.code = code
        self.event_id = event_id
        self.meeting_id = meeting_id
        self.cause = cause

    @classmethod
    def missing_access_token(cls, event_id: str, meeting_id: str | None = None) -> WebhookProcessingError:
        return cls(
            "Access token is required for processing",
            ProcessingErrorCode.MISSING_ACCESS_TOKEN,
            event_id,
            meeting_id,
        )

    @classmethod
    def transcript_not_ready(
        cls, event_id: str, meeting_id: str, cause: BaseException | None = None
    ) -> WebhookProcessingError:
        return cls(
            f"Transcript not ready for meeting {meeting_id}",
            ProcessingErrorCode.TRANSCRIPT_NOT_READY,
            event_id,
            meeting_id,
            cause,
        )

    @classmethod
    def generation_failed(
        cls, event_id: str, meeting_id: str, cause: BaseException
    ) -> WebhookProcessingError:
        return cls(
            f"Minutes generation failed: {cause}",
            ProcessingErrorCode.GENERATION_FAILED,
            event_id,
            meeting_id,
            cause,
        )


class TranscriptEmptyError(Exception):
    """The transcript fetch succeeded but returned no segments yet."""

    def __init__(self, meeting_id: str) -> None:
        super().__init__(f"Transcript is empty for meeting {meeting_id}")
        self.meeting_id = meeting_id
