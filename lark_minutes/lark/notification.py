"""Plain-text Lark IM messages telling a meeting host how processing went."""

from __future__ import annotations

import json

from lark_minutes.lark.client import LarkClient
from lark_minutes.minutes.prompts import Language
from lark_minutes.models import Minutes
from lark_minutes.utils.logging import get_logger
from lark_minutes.webhooks.models import MeetingEndedContext

log = get_logger(__name__)

SEND_MESSAGE_PATH = "/open-apis/im/v1/messages"

_MINUTES_READY = {
    "ja": "議事録を作成しました: {title} ({date})\n\n{summary}\n\nアクションアイテム: {count}件",
    "en": "Minutes are ready: {title} ({date})\n\n{summary}\n\nAction items: {count}",
}

_PROCESSING_FAILED = {
    "ja": "議事録を作成できませんでした: {title}\n理由: {error}",
    "en": "Minutes could not be generated for {title}\nReason: {error}",
}


def format_minutes_ready(minutes: Minutes, language: Language = "ja") -> str:
    text = _MINUTES_READY[language].format(
        title=minutes.title,
        date=minutes.date,
        summary=minutes.summary,
        count=len(minutes.action_items),
    )
    lines = [text]
    for item in minutes.action_items:
        owner = f" ({item.assignee.name})" if item.assignee else ""
        lines.append(f"- [{item.priority}] {item.content}{owner}")
    return "\n".join(lines)


def format_processing_failed(
    context: MeetingEndedContext, error: BaseException, language: Language = "ja"
) -> str:
    return _PROCESSING_FAILED[language].format(
        title=context.topic or f"Meeting {context.meeting_id}",
        error=error,
    )


class NotificationSender:
    """Sends text messages to users by ``open_id``."""

    def __init__(self, client: LarkClient, language: Language = "ja") -> None:
        self._client = client
        self._language = language

    async def send_text(self, access_token: str, open_id: str, text: str) -> str:
        """Send ``text`` to ``open_id``. Returns the Lark message id."""
        body = await self._client.request(
            "POST",
            SEND_MESSAGE_PATH,
            access_token=access_token,
            params={"receive_id_type": "open_id"},
            json={
                "receive_id": open_id,
                "msg_type": "text",
                # Lark expects the content object serialized as a string
                "content": json.dumps({"text": text}, ensure_ascii=False),
            },
        )
        message_id = (body.get("data") or {}).get("message_id", "")
        log.info("notification_sent", receive_id=open_id, message_id=message_id)
        return message_id

    async def notify_minutes_ready(
        self, access_token: str, context: MeetingEndedContext, minutes: Minutes
    ) -> str:
        return await self.send_text(
            access_token,
            context.host_user_id,
            format_minutes_ready(minutes, self._language),
        )

    async def notify_processing_failed(
        self, access_token: str, context: MeetingEndedContext, error: BaseException
    ) -> str:
        return await self.send_text(
            access_token,
            context.host_user_id,
            format_processing_failed(context, error, self._language),
        )
