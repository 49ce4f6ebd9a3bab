"""Webhook event processing: dedup, transcript polling, minutes generation."""

from __future__ import annotations

import inspect
import time
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Protocol, Union

from lark_minutes.core.dedup import DEFAULT_MAX_EVENTS, ProcessedEventCache
from lark_minutes.core.errors import TranscriptEmptyError, WebhookProcessingError
from lark_minutes.core.retry import RetryConfig, Sleeper, always_retry, retry, sleep_ms
from lark_minutes.minutes.generator import (
    MeetingInfo,
    MinutesGenerationInput,
    MinutesGenerationResult,
)
from lark_minutes.models import Transcript
from lark_minutes.utils.logging import get_logger
from lark_minutes.webhooks.models import (
    MeetingEndedContext,
    MeetingEndedEvent,
    ProcessingState,
    RecordingReadyEvent,
    TranscriptReadyEvent,
    WebhookPayload,
    WebhookProcessingResult,
)

log = get_logger(__name__)

DEFAULT_TRANSCRIPT_READY_DELAY_MS = 30_000


class TranscriptSource(Protocol):
    async def get_transcript(self, access_token: str, meeting_id: str) -> Transcript: ...

    async def has_transcript(self, access_token: str, meeting_id: str) -> bool: ...


class MinutesGeneratorLike(Protocol):
    async def generate_minutes(self, request: MinutesGenerationInput) -> MinutesGenerationResult: ...


OnMinutesGenerated = Callable[
    [MeetingEndedContext, MinutesGenerationResult], Union[Awaitable[None], None]
]
OnProcessingFailed = Callable[[MeetingEndedContext, Exception], Union[Awaitable[None], None]]


def _utc_date(epoch_seconds: float) -> str:
    return datetime.fromtimestamp(epoch_seconds, tz=timezone.utc).strftime("%Y-%m-%d")


class WebhookEventProcessor:
    """Turns Lark meeting events into generated minutes.

    ``process_event`` never raises: every failure ends up in the returned
    ``WebhookProcessingResult``. ``trigger_minutes_generation`` is the manual
    entry point and raises instead.

    One success and one failure callback can be registered; registering again
    replaces the previous one. Callback errors are logged and do not change
    the result.
    """

    def __init__(
        self,
        transcripts: TranscriptSource,
        generator: MinutesGeneratorLike,
        transcript_ready_delay_ms: int = DEFAULT_TRANSCRIPT_READY_DELAY_MS,
        transcript_retry: RetryConfig | dict[str, Any] | None = None,
        default_access_token: str | None = None,
        max_cached_events: int = DEFAULT_MAX_EVENTS,
        sleep: Sleeper = sleep_ms,
    ) -> None:
        self._transcripts = transcripts
        self._generator = generator
        self._transcript_ready_delay_ms = transcript_ready_delay_ms
        self._retry_config = RetryConfig.merged(transcript_retry)
        self._default_access_token = default_access_token or None
        self._processed = ProcessedEventCache(max_cached_events)
        self._sleep = sleep
        self._on_generated: OnMinutesGenerated | None = None
        self._on_failed: OnProcessingFailed | None = None

    @property
    def retry_config(self) -> RetryConfig:
        return self._retry_config

    # ------------------------------------------------------------------
    # Callback registration
    # ------------------------------------------------------------------

    def on_minutes_generated(self, callback: OnMinutesGenerated) -> None:
        self._on_generated = callback

    def on_processing_failed(self, callback: OnProcessingFailed) -> None:
        self._on_failed = callback

    # ------------------------------------------------------------------
    # Dedup cache
    # ------------------------------------------------------------------

    def has_processed_event(self, event_id: str) -> bool:
        return event_id in self._processed

    def clear_processed_events_cache(self) -> None:
        self._processed.clear()
        log.info("processed_events_cleared")

    # ------------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------------

    async def process_event(
        self, payload: WebhookPayload, access_token: str | None = None
    ) -> WebhookProcessingResult:
        start = time.monotonic()
        event_id = payload.header.event_id
        event = payload.event

        # Admission happens before the first await
        if not self._processed.admit(event_id):
            log.info("event_skipped", event_id=event_id, reason="duplicate")
            return WebhookProcessingResult(
                state=ProcessingState.SKIPPED,
                event_id=event_id,
                duration_ms=_elapsed_ms(start),
            )

        log.info("event_admitted", event_id=event_id, event_type=event.type)

        if isinstance(event, MeetingEndedEvent):
            return await self._handle_meeting_ended(
                event, event_id, access_token or self._default_access_token, start
            )

        if isinstance(event, (TranscriptReadyEvent, RecordingReadyEvent)):
            log.info("event_acknowledged", event_id=event_id, meeting_id=event.meeting_id)
            meeting_id: str | None = event.meeting_id
        else:
            log.info("event_ignored", event_id=event_id, event_type=event.type)
            meeting_id = None

        return WebhookProcessingResult(
            state=ProcessingState.COMPLETED,
            event_id=event_id,
            meeting_id=meeting_id,
            duration_ms=_elapsed_ms(start),
        )

    async def trigger_minutes_generation(
        self,
        meeting_id: str,
        access_token: str | None = None,
        wait_for_transcript: bool = True,
        title: str | None = None,
    ) -> MinutesGenerationResult:
        """Generate minutes for ``meeting_id`` directly, bypassing dedup.

        With ``wait_for_transcript=False`` the transcript is fetched exactly
        once with no delay. Errors propagate to the caller.
        """
        event_id = f"manual:{meeting_id}"
        token = access_token or self._default_access_token
        if token is None:
            raise WebhookProcessingError.missing_access_token(event_id, meeting_id)

        log.info("manual_trigger", meeting_id=meeting_id, wait_for_transcript=wait_for_transcript)
        if wait_for_transcript:
            transcript = await self.wait_for_transcript(meeting_id, token, event_id)
        else:
            transcript = await self._transcripts.get_transcript(token, meeting_id)

        meeting = MeetingInfo(
            id=meeting_id,
            title=title or f"Meeting {meeting_id}",
            date=_utc_date(time.time()),
        )
        return await self._generate(transcript, meeting, event_id)

    # ------------------------------------------------------------------
    # Pipeline stages
    # ------------------------------------------------------------------

    async def wait_for_transcript(
        self, meeting_id: str, access_token: str, event_id: str
    ) -> Transcript:
        """Sleep for the ready delay, then poll until a non-empty transcript appears.

        Empty transcripts and fetch errors are both retried. Raises
        ``TRANSCRIPT_NOT_READY`` once the retry budget is spent.
        """
        await self._sleep(self._transcript_ready_delay_ms)

        async def fetch() -> Transcript:
            transcript = await self._transcripts.get_transcript(access_token, meeting_id)
            if transcript.is_empty:
                raise TranscriptEmptyError(meeting_id)
            return transcript

        def on_retry(attempt: int, error: BaseException, delay_ms: int) -> None:
            log.info(
                "transcript_retry",
                meeting_id=meeting_id,
                attempt=attempt,
                delay_ms=delay_ms,
                error=str(error),
            )

        result = await retry(
            fetch,
            config=self._retry_config,
            should_retry=always_retry,
            on_retry=on_retry,
            operation_name=f"fetch_transcript:{meeting_id}",
            sleep=self._sleep,
        )
        if not result.success or result.data is None:
            log.warning(
                "transcript_not_ready",
                meeting_id=meeting_id,
                attempts=result.attempts,
                error=str(result.error),
            )
            raise WebhookProcessingError.transcript_not_ready(event_id, meeting_id, result.error)
        return result.data

    async def _generate(
        self, transcript: Transcript, meeting: MeetingInfo, event_id: str
    ) -> MinutesGenerationResult:
        try:
            return await self._generator.generate_minutes(
                MinutesGenerationInput(transcript=transcript, meeting=meeting)
            )
        except Exception as e:
            raise WebhookProcessingError.generation_failed(event_id, meeting.id, e) from e

    async def _handle_meeting_ended(
        self,
        event: MeetingEndedEvent,
        event_id: str,
        access_token: str | None,
        start: float,
    ) -> WebhookProcessingResult:
        context = MeetingEndedContext.from_event(event_id, event)

        try:
            if access_token is None:
                raise WebhookProcessingError.missing_access_token(event_id, event.meeting_id)

            transcript = await self.wait_for_transcript(event.meeting_id, access_token, event_id)
            meeting = MeetingInfo(
                id=event.meeting_id,
                title=event.topic or f"Meeting {event.meeting_id}",
                date=_utc_date(event.end_time),
            )
            result = await self._generate(transcript, meeting, event_id)
        except Exception as e:
            code = e.code.value if isinstance(e, WebhookProcessingError) else None
            log.error(
                "event_failed",
                event_id=event_id,
                meeting_id=event.meeting_id,
                error=str(e),
                code=code,
            )
            await self._notify(self._on_failed, context, e)
            return WebhookProcessingResult(
                state=ProcessingState.FAILED,
                event_id=event_id,
                meeting_id=event.meeting_id,
                duration_ms=_elapsed_ms(start),
                error=str(e),
                error_code=code,
            )

        await self._notify(self._on_generated, context, result)
        log.info(
            "event_completed",
            event_id=event_id,
            meeting_id=event.meeting_id,
            minutes_id=result.minutes.id,
        )
        return WebhookProcessingResult(
            state=ProcessingState.COMPLETED,
            event_id=event_id,
            meeting_id=event.meeting_id,
            duration_ms=_elapsed_ms(start),
        )

    async def _notify(
        self,
        callback: Callable[[MeetingEndedContext, Any], Awaitable[None] | None] | None,
        context: MeetingEndedContext,
        outcome: Any,
    ) -> None:
        if callback is None:
            return
        try:
            ret = callback(context, outcome)
            if inspect.isawaitable(ret):
                await ret
        except Exception:
            log.exception("callback_error", event_id=context.event_id, meeting_id=context.meeting_id)


def _elapsed_ms(start: float) -> int:
    return int((time.monotonic() - start) * 1000)
