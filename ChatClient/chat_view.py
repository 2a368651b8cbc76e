import logging
from contextlib import aclosing
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Optional

import httpx

from ChatClient.api import ApiError, ChatApiClient

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Notice:
    title: str
    description: str


# Raised for an in-band `{error}` event or a stream that ends before `done`
class StreamAborted(Exception):
    pass


class ChatView:
    """State of one open conversation, as a chat window would hold it.

    ``send`` streams a reply into ``streaming_content`` and reconciles with the
    server afterwards; while it runs ``input_enabled`` is False so the same
    view never issues overlapping sends.
    """

    def __init__(self, api: ChatApiClient, conversation_id: int, *, on_update: Optional[Callable[["ChatView"], None]] = None):
        self.api = api
        self.conversation_id = conversation_id
        self.on_update = on_update
        self.conversation: Optional[dict] = None
        self.messages: list[dict] = []
        self.conversations: list[dict] = []
        self.streaming_content = ""
        self.is_streaming = False
        self.notices: list[Notice] = []

    @property
    def input_enabled(self) -> bool:
        return not self.is_streaming

    @property
    def character(self) -> Optional[dict]:
        return (self.conversation or {}).get("character")

    def _emit(self) -> None:
        if self.on_update is not None:
            self.on_update(self)

    async def load(self) -> None:
        self.conversation = await self.api.get_conversation(self.conversation_id)
        self.messages = list(self.conversation.get("messages") or [])
        self._emit()

    async def refresh_conversations(self) -> None:
        self.conversations = await self.api.list_conversations()
        self._emit()

    def _append_optimistic(self, content: str) -> None:
        self.messages.append(
            {
                "id": -(len(self.messages) + 1),
                "conversationId": self.conversation_id,
                "role": "user",
                "content": content,
                "createdAt": datetime.now(timezone.utc).isoformat(),
            }
        )

    def _end_stream(self) -> None:
        self.is_streaming = False
        self.streaming_content = ""

    async def send(self, content: str) -> bool:
        text = (content or "").strip()
        if not text or self.is_streaming:
            return False

        self.is_streaming = True
        self.streaming_content = ""
        self._append_optimistic(text)
        self._emit()

        full_response = ""
        try:
            async with aclosing(self.api.stream_message(self.conversation_id, text)) as events:
                async for event in events:
                    if event.get("content"):
                        full_response += event["content"]
                        self.streaming_content = full_response
                        self._emit()
                    if event.get("done"):
                        break
                    if event.get("error"):
                        raise StreamAborted(str(event["error"]))
                else:
                    raise StreamAborted("Stream ended before completion")
        except (StreamAborted, ApiError, httpx.HTTPError) as exc:
            logger.warning("chat.send.failed: conv=%s error=%s", self.conversation_id, exc)
            self._end_stream()
            await self._reload_after_failure()
            self.notices.append(Notice("Message failed", "Something went wrong. Please try again."))
            self._emit()
            return False

        # The reply is saved at this point; a failed refetch is not a failed send
        self._end_stream()
        try:
            await self.load()
            await self.refresh_conversations()
        except (ApiError, httpx.HTTPError) as exc:
            logger.warning("chat.refresh.failed: conv=%s error=%s", self.conversation_id, exc)
            self.notices.append(Notice("Could not refresh", "Your message was sent. Reload to see the latest messages."))
            self._emit()
        return True

    # The user turn may already be persisted; the server copy wins
    async def _reload_after_failure(self) -> None:
        try:
            await self.load()
        except (ApiError, httpx.HTTPError) as exc:
            logger.warning("chat.reload.failed: conv=%s error=%s", self.conversation_id, exc)

    def render(self) -> list[str]:
        name = (self.character or {}).get("name") or "Assistant"
        lines = []
        for msg in self.messages:
            speaker = "You" if msg.get("role") == "user" else name
            lines.append(f"{speaker}: {msg.get('content', '')}")
        if self.is_streaming:
            if self.streaming_content:
                lines.append(f"{name}: {self.streaming_content}▌")
            else:
                lines.append(f"{name} is typing...")
        for notice in self.notices:
            lines.append(f"! {notice.title}: {notice.description}")
        return lines
