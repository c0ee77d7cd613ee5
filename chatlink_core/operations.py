"""Gated domain operations over the ready Capability Client.

Each method passes the readiness gate (via ``ConnectionManager.call``) and
shapes the sidecar's raw records into API responses. Raw records use the
sidecar's field names (``id`` is the serialized identifier).
"""

from __future__ import annotations

import asyncio
import base64
import logging
import mimetypes
import time
from pathlib import Path
from typing import TYPE_CHECKING, Any

from .errors import ChatlinkRequestError

if TYPE_CHECKING:
    from .manager import ConnectionManager

_LOGGER = logging.getLogger(__name__)

CONTACT_SUFFIX = "@c.us"
GROUP_SUFFIX = "@g.us"
CONTEXT_WINDOW = 100


def contact_chat_id(number: str) -> str:
    """Normalize a phone number into a direct-chat id."""
    return number if CONTACT_SUFFIX in number else number + CONTACT_SUFFIX


def recipient_chat_id(to: str) -> str:
    """Normalize a send target; group ids are kept as given."""
    if CONTACT_SUFFIX in to or GROUP_SUFFIX in to:
        return to
    return to + CONTACT_SUFFIX


def short_message_id(serialized_id: str) -> str:
    """Return the trailing id segment of a serialized message id."""
    return serialized_id.rsplit("_", 1)[-1]


def _participant_count(chat: dict[str, Any]) -> int:
    return len(chat.get("participants") or [])


def _last_message(
    chat: dict[str, Any], *, include_from_me: bool = True
) -> dict[str, Any] | None:
    last = chat.get("lastMessage")
    if not last:
        return None
    shaped = {"body": last.get("body"), "timestamp": last.get("timestamp")}
    if include_from_me:
        shaped["fromMe"] = last.get("fromMe")
    return shaped


def filter_contacts(
    contacts: list[dict[str, Any]], query: str, limit: int
) -> list[dict[str, Any]]:
    """Match contacts by name, push name or number."""
    needle = query.lower()
    matched = []
    for contact in contacts:
        name = (contact.get("name") or "").lower()
        number = contact.get("number") or ""
        pushname = (contact.get("pushname") or "").lower()
        if needle in name or query in number or needle in pushname:
            matched.append(
                {
                    "id": contact.get("id"),
                    "name": contact.get("name"),
                    "pushname": contact.get("pushname"),
                    "number": contact.get("number"),
                    "isBlocked": contact.get("isBlocked"),
                    "isGroup": contact.get("isGroup"),
                }
            )
    return matched[:limit]


def filter_messages(
    messages: list[dict[str, Any]],
    *,
    message_type: str | None = None,
    from_me: bool | None = None,
) -> list[dict[str, Any]]:
    filtered = messages
    if message_type:
        filtered = [m for m in filtered if m.get("type") == message_type]
    if from_me is not None:
        filtered = [m for m in filtered if bool(m.get("fromMe")) is from_me]
    return filtered


def shape_message(message: dict[str, Any]) -> dict[str, Any]:
    return {
        "id": message.get("id"),
        "body": message.get("body"),
        "type": message.get("type"),
        "timestamp": message.get("timestamp"),
        "fromMe": message.get("fromMe"),
        "author": message.get("author"),
        "hasMedia": message.get("hasMedia"),
        "isForwarded": message.get("isForwarded"),
        "isStarred": message.get("isStarred"),
    }


def message_context(
    messages: list[dict[str, Any]], message_id: str, before: int, after: int
) -> dict[str, Any]:
    """Slice the messages surrounding ``message_id``.

    Raises:
        ChatlinkRequestError: 404 if the message is not among ``messages``.
    """
    index = next(
        (i for i, m in enumerate(messages) if m.get("id") == message_id), None
    )
    if index is None:
        raise ChatlinkRequestError(404, "Message not found")

    start = max(0, index - before)
    end = min(len(messages), index + after + 1)
    context = [
        {
            "id": m.get("id"),
            "body": m.get("body"),
            "type": m.get("type"),
            "timestamp": m.get("timestamp"),
            "fromMe": m.get("fromMe"),
            "isTarget": m.get("id") == message_id,
        }
        for m in messages[start:end]
    ]
    return {"context": context, "targetMessageIndex": index - start}


def _require(**values: Any) -> None:
    missing = [name for name, value in values.items() if not value]
    if missing:
        names = " and ".join(missing)
        verb = "parameters are" if len(missing) > 1 else "parameter is"
        raise ChatlinkRequestError(400, f"{names} {verb} required")


class MessagingService:
    """Domain operations exposed by the HTTP API."""

    def __init__(self, manager: ConnectionManager, downloads_dir: Path) -> None:
        self._manager = manager
        self.downloads_dir = Path(downloads_dir)

    async def search_contacts(self, query: str | None, limit: int = 50) -> dict[str, Any]:
        if not query or not query.strip():
            raise ChatlinkRequestError(400, "Query parameter is required")
        contacts = await self._manager.call("get_contacts")
        matched = filter_contacts(contacts or [], query, limit)
        return {"contacts": matched, "count": len(matched)}

    async def list_messages(
        self,
        chat_id: str | None,
        limit: int = 20,
        message_type: str | None = None,
        from_me: bool | None = None,
    ) -> dict[str, Any]:
        _require(chatId=chat_id)
        chat = await self._manager.call("get_chat", chat_id=chat_id)
        messages = await self._manager.call(
            "fetch_messages", chat_id=chat_id, limit=limit
        )
        filtered = filter_messages(
            messages or [], message_type=message_type, from_me=from_me
        )
        return {
            "messages": [shape_message(m) for m in filtered],
            "chatInfo": {
                "id": chat.get("id"),
                "name": chat.get("name"),
                "isGroup": chat.get("isGroup"),
                "participantCount": _participant_count(chat),
            },
        }

    async def get_direct_chat_by_contact(self, number: str | None) -> dict[str, Any]:
        _require(number=number)
        chat = await self._manager.call("get_chat", chat_id=contact_chat_id(number))
        return {
            "id": chat.get("id"),
            "name": chat.get("name"),
            "isGroup": chat.get("isGroup"),
            "isMuted": chat.get("isMuted"),
            "unreadCount": chat.get("unreadCount"),
            "lastMessage": _last_message(chat),
        }

    async def get_contact_chats(self, number: str | None) -> dict[str, Any]:
        _require(number=number)
        target_id = contact_chat_id(number)
        chats = await self._manager.call("get_chats")

        relevant = []
        for chat in chats or []:
            participants = chat.get("participants")
            if chat.get("isGroup") and isinstance(participants, list):
                if not any(p.get("id") == target_id for p in participants):
                    continue
            elif chat.get("id") != target_id:
                continue
            relevant.append(
                {
                    "id": chat.get("id"),
                    "name": chat.get("name"),
                    "isGroup": chat.get("isGroup"),
                    "participantCount": _participant_count(chat),
                    "unreadCount": chat.get("unreadCount"),
                    "lastMessage": _last_message(chat, include_from_me=False),
                }
            )
        return {"chats": relevant, "count": len(relevant)}

    async def get_last_interaction(self, number: str | None) -> dict[str, Any]:
        _require(number=number)
        messages = await self._manager.call(
            "fetch_messages", chat_id=contact_chat_id(number), limit=1
        )
        if not messages:
            return {"message": "No messages found"}
        last = messages[0]
        return {
            "id": last.get("id"),
            "body": last.get("body"),
            "type": last.get("type"),
            "timestamp": last.get("timestamp"),
            "fromMe": last.get("fromMe"),
            "hasMedia": last.get("hasMedia"),
        }

    async def get_message_context(
        self,
        chat_id: str | None,
        message_id: str | None,
        before: int = 5,
        after: int = 5,
    ) -> dict[str, Any]:
        _require(chatId=chat_id, messageId=message_id)
        messages = await self._manager.call(
            "fetch_messages", chat_id=chat_id, limit=CONTEXT_WINDOW
        )
        return message_context(messages or [], message_id, before, after)

    async def send_message(
        self, to: str | None, message: str | None, options: dict[str, Any] | None = None
    ) -> dict[str, Any]:
        _require(to=to, message=message)
        sent = await self._manager.call(
            "send_message",
            chat_id=recipient_chat_id(to),
            content=message,
            options=options or {},
        )
        return {
            "id": sent.get("id"),
            "timestamp": sent.get("timestamp"),
            "ack": sent.get("ack"),
            "body": sent.get("body"),
        }

    async def send_file(
        self, to: str | None, file_path: str | None, caption: str | None = None
    ) -> dict[str, Any]:
        _require(to=to, filePath=file_path)
        media = await self._load_media(Path(file_path), "File not found")
        options: dict[str, Any] = {}
        if caption:
            options["caption"] = caption
        sent = await self._manager.call(
            "send_media", chat_id=recipient_chat_id(to), media=media, options=options
        )
        return {
            "id": sent.get("id"),
            "timestamp": sent.get("timestamp"),
            "hasMedia": sent.get("hasMedia"),
        }

    async def send_audio_message(
        self, to: str | None, audio_path: str | None
    ) -> dict[str, Any]:
        _require(to=to, audioPath=audio_path)
        media = await self._load_media(Path(audio_path), "Audio file not found")
        sent = await self._manager.call(
            "send_media",
            chat_id=recipient_chat_id(to),
            media=media,
            options={"sendAudioAsVoice": True},
        )
        return {
            "id": sent.get("id"),
            "timestamp": sent.get("timestamp"),
            "type": sent.get("type"),
        }

    async def download_media(
        self, chat_id: str | None, message_id: str | None
    ) -> dict[str, Any]:
        _require(chatId=chat_id, messageId=message_id)
        await asyncio.to_thread(self.downloads_dir.mkdir, parents=True, exist_ok=True)

        messages = await self._manager.call(
            "fetch_messages", chat_id=chat_id, limit=CONTEXT_WINDOW
        )
        message = next(
            (m for m in messages or [] if m.get("id") == message_id), None
        )
        if message is None:
            raise ChatlinkRequestError(404, "Message not found")
        if not message.get("hasMedia"):
            raise ChatlinkRequestError(400, "Message has no media")

        media = await self._manager.call(
            "download_media", chat_id=chat_id, message_id=message_id
        )
        mimetype = media.get("mimetype") or "application/octet-stream"
        extension = mimetype.split("/")[1] if "/" in mimetype else ""
        extension = extension.split(";")[0] or "bin"
        data = base64.b64decode(media.get("data") or "")

        filename = f"{short_message_id(message_id)}_{int(time.time() * 1000)}.{extension}"
        path = self.downloads_dir / filename
        await asyncio.to_thread(path.write_bytes, data)
        _LOGGER.info("Downloaded media %s (%d bytes)", filename, len(data))

        return {
            "path": str(path),
            "filename": filename,
            "mimetype": mimetype,
            "size": len(data),
        }

    async def get_chats(self, limit: int = 50, unread_only: bool = False) -> dict[str, Any]:
        chats = await self._manager.call("get_chats")
        filtered = chats or []
        if unread_only:
            filtered = [c for c in filtered if (c.get("unreadCount") or 0) > 0]

        shaped = [
            {
                "id": chat.get("id"),
                "name": chat.get("name"),
                "isGroup": chat.get("isGroup"),
                "isReadOnly": chat.get("isReadOnly"),
                "unreadCount": chat.get("unreadCount"),
                "timestamp": chat.get("timestamp"),
                "lastMessage": _last_message(chat),
            }
            for chat in filtered[:limit]
        ]
        return {"chats": shaped, "count": len(shaped)}

    async def _load_media(self, path: Path, missing_message: str) -> dict[str, Any]:
        """Read an attachment and encode it for the sidecar."""
        if not await asyncio.to_thread(path.is_file):
            raise ChatlinkRequestError(404, missing_message)
        data = await asyncio.to_thread(path.read_bytes)
        mimetype, _ = mimetypes.guess_type(path.name)
        return {
            "mimetype": mimetype or "application/octet-stream",
            "data": base64.b64encode(data).decode("ascii"),
            "filename": path.name,
        }
