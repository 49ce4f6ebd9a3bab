"""Webhook HTTP server using aiohttp."""

from __future__ import annotations

import asyncio
from datetime import datetime, timezone
from typing import Awaitable, Callable

from aiohttp import web

from lark_minutes.config import LarkConfig, WebhookConfig
from lark_minutes.core.processor import WebhookEventProcessor
from lark_minutes.utils.logging import get_logger
from lark_minutes.webhooks.handlers import (
    ChallengeRequest,
    RejectedRequest,
    process_webhook_request,
)
from lark_minutes.webhooks.models import EventType, WebhookPayload

log = get_logger(__name__)

TokenProvider = Callable[[], Awaitable[str]]


class WebhookServer:
    """Receives Lark events and hands them to the processor in the background.

    Lark expects a reply within a few seconds, so every accepted event is
    answered immediately and processed in a tracked task.
    """

    def __init__(
        self,
        config: WebhookConfig,
        lark: LarkConfig,
        processor: WebhookEventProcessor,
        token_provider: TokenProvider | None = None,
    ) -> None:
        self._config = config
        self._lark = lark
        self._processor = processor
        self._token_provider = token_provider
        self._runner: web.AppRunner | None = None
        self._tasks: set[asyncio.Task[None]] = set()

    @property
    def path(self) -> str:
        path = self._config.path
        return path if path.startswith("/") else f"/{path}"

    @property
    def pending(self) -> int:
        return len(self._tasks)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        if not self._lark.encrypt_key and not self._config.skip_signature_verification:
            log.warning(
                "webhook_no_encrypt_key",
                msg="No encrypt key configured; all event deliveries will be rejected.",
            )
        app = self.build_app()
        self._runner = web.AppRunner(app)
        await self._runner.setup()
        site = web.TCPSite(self._runner, self._config.bind, self._config.port)
        await site.start()
        log.info(
            "webhook_server_started",
            bind=self._config.bind,
            port=self._config.port,
            path=self.path,
        )

    async def stop(self, timeout: float = 10.0) -> None:
        if self._runner is not None:
            await self._runner.cleanup()
            self._runner = None
        await self.drain(timeout)
        log.info("webhook_server_stopped")

    async def drain(self, timeout: float | None = None) -> None:
        """Wait for in-flight processing, cancelling whatever outlives ``timeout``."""
        if not self._tasks:
            return
        done, pending = await asyncio.wait(set(self._tasks), timeout=timeout)
        for task in pending:
            task.cancel()
        if pending:
            log.warning("webhook_tasks_cancelled", count=len(pending))
            await asyncio.gather(*pending, return_exceptions=True)

    # ------------------------------------------------------------------
    # App construction
    # ------------------------------------------------------------------

    def build_app(self) -> web.Application:
        app = web.Application()
        app.router.add_post(self.path, self._handle_webhook)
        app.router.add_get(self.path, self._handle_health)
        return app

    # ------------------------------------------------------------------
    # Request handling
    # ------------------------------------------------------------------

    async def _handle_webhook(self, request: web.Request) -> web.Response:
        body = await request.read()

        result = process_webhook_request(
            body,
            request.headers,
            encrypt_key=self._lark.encrypt_key,
            verification_token=self._lark.verification_token,
            skip_signature_verification=self._config.skip_signature_verification,
        )

        if isinstance(result, ChallengeRequest):
            log.info("webhook_challenge")
            return web.json_response({"challenge": result.challenge})

        if isinstance(result, RejectedRequest):
            log.warning("webhook_rejected", status=result.status, reason=result.message)
            return web.json_response(
                {"success": False, "error": result.message}, status=result.status
            )

        payload = result.payload
        log.info(
            "webhook_received",
            event_id=payload.header.event_id,
            event_type=payload.event.type,
        )
        self._schedule(payload)

        return web.json_response(
            {
                "success": True,
                "event_id": payload.header.event_id,
                "message": "Event received and queued for processing",
            }
        )

    async def _handle_health(self, request: web.Request) -> web.Response:
        configured = bool(self._lark.encrypt_key and self._lark.verification_token)
        if not configured:
            return web.json_response(
                {"status": "unhealthy", "error": "Webhook not configured"}, status=503
            )
        return web.json_response(
            {
                "status": "healthy",
                "endpoint": self.path,
                "supported_events": [EventType.MEETING_ENDED.value],
                "pending": self.pending,
                "timestamp": datetime.now(timezone.utc).isoformat(),
            }
        )

    # ------------------------------------------------------------------
    # Background processing
    # ------------------------------------------------------------------

    def _schedule(self, payload: WebhookPayload) -> None:
        task = asyncio.create_task(self._process(payload))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _process(self, payload: WebhookPayload) -> None:
        event_id = payload.header.event_id
        try:
            token = await self._token_provider() if self._token_provider else None
        except Exception:
            log.exception("access_token_unavailable", event_id=event_id)
            token = None

        result = await self._processor.process_event(payload, token)
        log.info("event_processed", **result.to_dict())
