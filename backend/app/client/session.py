"""Chat session - client side of the relay.

Holds the local conversation, sends it on every turn, and assembles the
assistant's reply from either a streamed or a batch response.
"""

from __future__ import annotations

import logging
from collections.abc import Callable

import httpx

from app.core.sse import SSE_MEDIA_TYPE, SSEDecoder, SSERecord
from app.schemas.chat import ChatMessage

logger = logging.getLogger(__name__)

DEFAULT_GREETING = "New session started."


class ChatRequestError(Exception):
    """The relay answered with a non-success status."""


def _error_reason(response: httpx.Response) -> str:
    try:
        data = response.json()
    except ValueError:
        data = None
    if isinstance(data, dict):
        reason = data.get("error") or data.get("detail")
        if isinstance(reason, str) and reason:
            return reason
    return response.text.strip() or response.reason_phrase or "API error"


class ChatSession:
    """One user's conversation with the relay.

    Only one turn runs at a time: `submit()` is ignored while a reply is in
    flight. The greeting is a local notice and is never sent to the server.
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        url: str = "/api/chat",
        stream: bool = True,
        on_delta: Callable[[str], None] | None = None,
        greeting: str | None = DEFAULT_GREETING,
    ):
        self.client = client
        self.url = url
        self.stream = stream
        self.on_delta = on_delta
        self.messages: list[ChatMessage] = []
        if greeting:
            self.messages.append(ChatMessage(role="system", content=greeting))
        self._local_count = len(self.messages)
        self.is_loading = False
        self.in_flight = False
        self._in_progress: ChatMessage | None = None

    @property
    def in_progress(self) -> ChatMessage | None:
        """The assistant message currently being extended, if any."""
        return self._in_progress

    def history(self) -> list[dict]:
        """The conversation as sent to the relay (local notices excluded)."""
        return [m.model_dump() for m in self.messages[self._local_count:]]

    async def submit(self, text: str) -> ChatMessage | None:
        """Send one user turn; returns the assistant message it produced."""
        text = text.strip()
        if not text or self.in_flight:
            return None

        self.messages.append(ChatMessage(role="user", content=text))
        self.in_flight = True
        self.is_loading = True
        try:
            return await self._send()
        except (httpx.HTTPError, ChatRequestError, ValueError) as e:
            logger.warning("Chat turn failed: %s", e)
            return self._append("assistant", f"Error: {e}")
        finally:
            self._in_progress = None
            self.is_loading = False
            self.in_flight = False

    async def _send(self) -> ChatMessage:
        params = {"stream": "1"} if self.stream else None
        headers = {"Accept": SSE_MEDIA_TYPE if self.stream else "application/json"}

        async with self.client.stream(
            "POST", self.url, json={"messages": self.history()}, params=params, headers=headers
        ) as response:
            content_type = response.headers.get("content-type", "")
            if response.is_success and content_type.startswith(SSE_MEDIA_TYPE):
                return await self._read_stream(response)

            await response.aread()
            if not response.is_success:
                raise ChatRequestError(_error_reason(response))
            data = response.json()
            reply = data.get("reply") if isinstance(data, dict) else None
            return self._append("assistant", reply or "")

    async def _read_stream(self, response: httpx.Response) -> ChatMessage:
        message = self._append("assistant", "")
        self._in_progress = message
        decoder = SSEDecoder()

        async for chunk in response.aiter_bytes():
            for record in decoder.feed(chunk):
                if not self._apply(record, message):
                    return message
        return message

    def _apply(self, record: SSERecord, message: ChatMessage) -> bool:
        """Apply one record to the in-progress reply. False ends the turn."""
        if record.is_terminal:
            return False
        if record.is_error:
            message.content += f"\n\nError: {record.text}"
            return False

        fragment = record.text
        if fragment:
            message.content += fragment
            # First token arrived
            self.is_loading = False
            if self.on_delta:
                self.on_delta(fragment)
        return True

    def _append(self, role: str, content: str) -> ChatMessage:
        message = ChatMessage(role=role, content=content)
        self.messages.append(message)
        return message
