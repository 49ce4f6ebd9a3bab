"""lark-minutes entry point: wires the pipeline and runs the webhook server."""

from __future__ import annotations

import asyncio
import json
import signal
import sys
from typing import Any, Awaitable, Callable

import click

from lark_minutes.config import Settings, load_settings
from lark_minutes.core.processor import MinutesGeneratorLike, TranscriptSource, WebhookEventProcessor
from lark_minutes.lark.client import LarkClient
from lark_minutes.lark.notification import NotificationSender
from lark_minutes.lark.transcript import TranscriptService
from lark_minutes.llm import ClaudeClient
from lark_minutes.minutes.generator import MinutesGenerationResult, MinutesGenerator
from lark_minutes.storage.minutes_store import MinutesRepository, create_repository
from lark_minutes.utils.logging import get_logger, setup_logging
from lark_minutes.webhooks.models import MeetingEndedContext
from lark_minutes.webhooks.server import WebhookServer

log = get_logger(__name__)


class MinutesApp:
    """Owns every long-lived client and the processor built on top of them."""

    def __init__(
        self,
        settings: Settings,
        transcripts: TranscriptSource | None = None,
        generator: MinutesGeneratorLike | None = None,
        repository: MinutesRepository | None = None,
        notifier: NotificationSender | None = None,
    ) -> None:
        self.settings = settings
        self.lark = LarkClient(settings.lark)
        self.llm = ClaudeClient(settings.llm)
        if repository is None:
            repository = create_repository(settings.storage.backend, settings.get_db_path())
        self.repository: MinutesRepository = repository
        self.notifier = notifier or NotificationSender(self.lark, language=settings.llm.language)
        self.generator: MinutesGeneratorLike = generator or MinutesGenerator(
            self.llm,
            language=settings.llm.language,
            max_tokens=settings.llm.max_tokens,
            parse_retries=settings.llm.parse_retries,
            max_transcript_tokens=settings.llm.max_transcript_tokens,
        )
        pipeline = settings.pipeline
        self.processor = WebhookEventProcessor(
            transcripts or TranscriptService(self.lark),
            self.generator,
            transcript_ready_delay_ms=pipeline.transcript_ready_delay_ms,
            transcript_retry=pipeline.transcript_retry,
            default_access_token=pipeline.default_access_token or None,
        )
        self.processor.on_minutes_generated(self._on_minutes_generated)
        self.processor.on_processing_failed(self._on_processing_failed)
        self.server = WebhookServer(
            settings.webhook,
            settings.lark,
            self.processor,
            token_provider=self.access_token,
        )

    async def access_token(self) -> str:
        if self.settings.lark.app_id:
            return await self.lark.get_app_access_token()
        return self.settings.pipeline.default_access_token

    async def start(self, serve: bool = True) -> None:
        log.info("lark_minutes_starting", model=self.llm.model, storage=self.settings.storage.backend)
        await self.repository.start()
        if serve:
            await self.server.start()
        log.info("lark_minutes_ready")

    async def stop(self) -> None:
        log.info("lark_minutes_stopping")
        await self.server.stop()
        await self.repository.stop()
        await self.lark.close()
        await self.llm.close()
        log.info("lark_minutes_stopped")

    async def _on_minutes_generated(
        self, context: MeetingEndedContext, result: MinutesGenerationResult
    ) -> None:
        await self.repository.save(result.minutes)
        log.info(
            "minutes_saved",
            meeting_id=context.meeting_id,
            minutes_id=result.minutes.id,
            host_user_id=context.host_user_id,
            processing_time_ms=result.processing_time_ms,
            input_tokens=result.usage.input_tokens,
            output_tokens=result.usage.output_tokens,
        )
        await self._notify_host(context, self.notifier.notify_minutes_ready, result.minutes)

    async def _on_processing_failed(self, context: MeetingEndedContext, error: Exception) -> None:
        log.error(
            "meeting_processing_failed",
            meeting_id=context.meeting_id,
            host_user_id=context.host_user_id,
            end_time=context.end_time,
            topic=context.topic,
            error=str(error),
            error_type=type(error).__name__,
        )
        await self._notify_host(context, self.notifier.notify_processing_failed, error)

    async def _notify_host(
        self,
        context: MeetingEndedContext,
        send: Callable[[str, MeetingEndedContext, Any], Awaitable[str]],
        outcome: Any,
    ) -> None:
        """Message the meeting host. Failures are logged and never propagate."""
        if not self.settings.pipeline.notify_host:
            return
        try:
            access_token = await self.access_token()
            if not access_token:
                log.warning(
                    "notification_skipped", meeting_id=context.meeting_id, reason="no access token"
                )
                return
            await send(access_token, context, outcome)
        except Exception:
            log.exception(
                "notification_failed",
                meeting_id=context.meeting_id,
                host_user_id=context.host_user_id,
            )


async def serve(settings: Settings) -> None:
    app = MinutesApp(settings)

    loop = asyncio.get_running_loop()
    stop_event = asyncio.Event()

    def _signal_handler() -> None:
        log.info("shutdown_signal")
        stop_event.set()

    if sys.platform != "win32":
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(sig, _signal_handler)

    await app.start()

    try:
        if sys.platform == "win32":
            while not stop_event.is_set():
                await asyncio.sleep(1)
        else:
            await stop_event.wait()
    except KeyboardInterrupt:
        pass
    finally:
        await app.stop()


async def generate(
    settings: Settings, meeting_id: str, token: str | None, wait: bool, title: str | None
) -> MinutesGenerationResult:
    app = MinutesApp(settings)
    await app.start(serve=False)
    try:
        access_token = token or await app.access_token()
        result = await app.processor.trigger_minutes_generation(
            meeting_id,
            access_token=access_token or None,
            wait_for_transcript=wait,
            title=title,
        )
        await app.repository.save(result.minutes)
        return result
    finally:
        await app.stop()


def _load(config_path: str | None, log_level: str | None) -> Settings:
    overrides: dict[str, Any] = {"log_level": log_level} if log_level else {}
    settings = load_settings(config_path, overrides)
    setup_logging(level=settings.log_level, json_output=settings.log_json)
    return settings


@click.group()
def cli() -> None:
    """Generate meeting minutes from Lark meetings with Claude."""


@cli.command("serve")
@click.option("--config", "config_path", default=None, help="Path to config YAML file")
@click.option("--log-level", default=None, help="Log level (DEBUG, INFO, WARNING, ERROR)")
def serve_command(config_path: str | None, log_level: str | None) -> None:
    """Run the Lark webhook server."""
    settings = _load(config_path, log_level)
    asyncio.run(serve(settings))


@cli.command("generate")
@click.argument("meeting_id")
@click.option("--config", "config_path", default=None, help="Path to config YAML file")
@click.option("--log-level", default=None, help="Log level (DEBUG, INFO, WARNING, ERROR)")
@click.option("--token", default=None, help="Lark access token (defaults to the app token)")
@click.option("--title", default=None, help="Meeting title used in the minutes")
@click.option("--no-wait", is_flag=True, help="Fetch the transcript once instead of polling")
@click.option("--json", "as_json", is_flag=True, help="Print the full minutes as JSON")
def generate_command(
    meeting_id: str,
    config_path: str | None,
    log_level: str | None,
    token: str | None,
    title: str | None,
    no_wait: bool,
    as_json: bool,
) -> None:
    """Generate minutes for MEETING_ID right now."""
    settings = _load(config_path, log_level)
    try:
        result = asyncio.run(generate(settings, meeting_id, token, not no_wait, title))
    except Exception as e:
        log.error("generate_failed", meeting_id=meeting_id, error=str(e))
        raise click.ClickException(str(e)) from e

    minutes = result.minutes
    if as_json:
        click.echo(json.dumps(minutes.to_dict(), ensure_ascii=False, indent=2))
        return
    click.echo(f"{minutes.title} ({minutes.date})  id={minutes.id}")
    click.echo(minutes.summary)
    for item in minutes.action_items:
        owner = item.assignee.name if item.assignee else "unassigned"
        click.echo(f"  - [{item.priority}] {item.content} ({owner})")


if __name__ == "__main__":
    cli()
