"""Chat operations via transport."""

from __future__ import annotations

import contextlib
import logging
from dataclasses import dataclass
from typing import Any

from ..errors import StreamDeliveryError
from ..events import ChunkEvent, ErrorEvent, LogEvent, MetaEvent
from ..transport import RequestSpec, StreamHandle, StreamSpec, Transport
from ..types import BranchResult, ChatMessagesPayload, ChatReply, ChatSummary

logger = logging.getLogger(__name__)


def _chat_list(data: Any) -> list[ChatSummary]:
    # The networked backend wraps the list as {"chats": [...]}, IPC returns it bare
    if isinstance(data, dict):
        data = data.get("chats") or []
    if not isinstance(data, list):
        raise ValueError(f"expected a list of chats, got {type(data).__name__}")
    return [ChatSummary.model_validate(item) for item in data]


@dataclass
class ChatAPI:
    """Chat operations.

    Usage:
        handle = client.chat.send("Hello", provider_id=2)
        reply = await client.chat.collect(handle)
        print(reply.chat_id, reply.text)
    """

    _transport: Transport

    def send(
        self,
        prompt: str,
        *,
        chat_id: int | None = None,
        provider_id: int | None = None,
        regen_message_id: int | None = None,
        stream: bool = True,
        debug: bool = False,
    ) -> StreamHandle:
        """Start a chat exchange.

        Args:
            prompt: User input
            chat_id: Continue this chat (a new chat is created if None)
            provider_id: Provider to answer with (backend default if None)
            regen_message_id: Regenerate this assistant message instead
            stream: Request incremental chunks
            debug: Request verbose log events

        Returns:
            Handle yielding the stream events; nothing is sent until it is
            iterated
        """
        return self._transport.stream(
            StreamSpec(
                prompt=prompt,
                chat_id=chat_id,
                provider_id=provider_id,
                regen_message_id=regen_message_id,
                stream=stream,
                debug=debug,
            )
        )

    async def collect(self, handle: StreamHandle) -> ChatReply:
        """Consume a whole stream into a ChatReply.

        Raises:
            StreamDeliveryError: If the backend sends an error event. The
                stream is cancelled and the text received so far is kept
                on the exception.
        """
        reply = ChatReply()
        parts: list[str] = []

        async with contextlib.aclosing(handle.events) as events:  # type: ignore[type-var]
            async for event in events:
                if isinstance(event, MetaEvent):
                    reply.chat_id = event.chat_id
                elif isinstance(event, ChunkEvent):
                    parts.append(event.text)
                elif isinstance(event, LogEvent):
                    reply.logs.append(event.message)
                elif isinstance(event, ErrorEvent):
                    handle.cancel()
                    raise StreamDeliveryError(event.message, partial="".join(parts))

        reply.text = "".join(parts)
        return reply

    async def list_chats(self) -> list[ChatSummary]:
        """List stored chats."""
        return await self._transport.request(RequestSpec("GET", "/chats", parse=_chat_list))

    async def get_messages(self, chat_id: int) -> ChatMessagesPayload:
        """Get the messages of a chat."""
        return await self._transport.request(
            RequestSpec(
                "GET",
                f"/chats/{chat_id}/messages",
                parse=ChatMessagesPayload.model_validate,
            )
        )

    async def delete_chat(self, chat_id: int) -> list[ChatSummary]:
        """Delete a chat. Returns the remaining chats."""
        logger.debug(f"Deleting chat {chat_id}")
        return await self._transport.request(
            RequestSpec("DELETE", f"/chats/{chat_id}", parse=_chat_list)
        )

    async def branch_chat(
        self,
        chat_id: int,
        *,
        until_message_id: int | None = None,
        title: str | None = None,
    ) -> BranchResult:
        """Copy a chat into a new one.

        Args:
            chat_id: Chat to branch
            until_message_id: Last message to copy (all messages if None)
            title: Title of the new chat (backend default if None)
        """
        body: dict[str, Any] = {}
        if until_message_id is not None:
            body["until_message_id"] = until_message_id
        if title is not None:
            body["title"] = title

        return await self._transport.request(
            RequestSpec(
                "POST",
                f"/chats/{chat_id}/branch",
                body=body,
                parse=BranchResult.model_validate,
            )
        )

    async def rename_chat(self, chat_id: int, title: str) -> ChatSummary:
        """Rename a chat."""
        return await self._transport.request(
            RequestSpec(
                "PUT",
                f"/chats/{chat_id}",
                body={"title": title},
                parse=ChatSummary.model_validate,
            )
        )
