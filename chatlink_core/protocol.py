"""Frame builders and parsers for the capability sidecar protocol.

Frames are JSON envelopes. The gateway sends ``command`` frames; the sidecar
answers each with a ``result`` frame carrying the command's ``msg_id`` and
pushes ``event`` frames for lifecycle changes.
"""

from __future__ import annotations

import time
import uuid
from dataclasses import dataclass
from typing import Any

from .events import (
    AuthFailure,
    Authenticated,
    CapabilityEvent,
    Disconnected,
    LoadingScreen,
    QrReceived,
    Ready,
)

PROTOCOL_VERSION = 1

MSG_COMMAND = "command"
MSG_RESULT = "result"
MSG_EVENT = "event"


@dataclass(frozen=True, slots=True)
class CommandResult:
    """Parsed ``result`` frame."""

    msg_id: str
    ok: bool
    data: Any = None
    error: str | None = None


def build_envelope(
    *,
    client_id: str,
    msg_type: str,
    body: dict[str, Any],
    msg_id: str | None = None,
    timestamp_ms: int | None = None,
) -> dict[str, Any]:
    """Build a canonical envelope for sidecar frames.

    Args:
        client_id: Fixed client identity the session data is keyed by.
        msg_type: Frame type ("command", "result", "event").
        body: JSON-serializable body.
        msg_id: Optional caller-supplied identifier. Generated when omitted.
        timestamp_ms: Optional epoch milliseconds override.
    """
    return {
        "v": PROTOCOL_VERSION,
        "type": msg_type,
        "msg_id": msg_id or str(uuid.uuid4()),
        "client_id": client_id,
        "ts": timestamp_ms if timestamp_ms is not None else int(time.time() * 1000),
        "body": body,
    }


def build_command(
    *,
    client_id: str,
    operation: str,
    params: dict[str, Any] | None = None,
    msg_id: str | None = None,
) -> dict[str, Any]:
    """Construct a command frame for ``operation``."""
    if not operation:
        raise ValueError("operation is required for command frames")
    return build_envelope(
        client_id=client_id,
        msg_type=MSG_COMMAND,
        msg_id=msg_id,
        body={"op": operation, "params": params or {}},
    )


def _body(frame: dict[str, Any]) -> dict[str, Any]:
    body = frame.get("body")
    if not isinstance(body, dict):
        raise ValueError("frame body must be an object")
    return body


def parse_result(frame: dict[str, Any]) -> CommandResult:
    """Parse a ``result`` frame.

    Raises ValueError if the frame is not a well-formed result.
    """
    if frame.get("type") != MSG_RESULT:
        raise ValueError(f"expected result frame, got {frame.get('type')!r}")
    body = _body(frame)
    msg_id = body.get("msg_id") or frame.get("msg_id")
    if not isinstance(msg_id, str) or not msg_id:
        raise ValueError("result frame is missing msg_id")
    ok = bool(body.get("ok", False))
    error = body.get("error")
    if not ok and not error:
        error = "Capability command failed"
    return CommandResult(msg_id=msg_id, ok=ok, data=body.get("data"), error=error)


def parse_event(frame: dict[str, Any]) -> CapabilityEvent:
    """Decode an ``event`` frame into a tagged capability event.

    Raises ValueError for unknown events or missing arguments.
    """
    if frame.get("type") != MSG_EVENT:
        raise ValueError(f"expected event frame, got {frame.get('type')!r}")
    body = _body(frame)
    name = body.get("event")
    args = body.get("args") or {}
    if not isinstance(args, dict):
        raise ValueError("event args must be an object")

    if name == "qr":
        code = args.get("code")
        if not isinstance(code, str) or not code:
            raise ValueError("qr event requires a code")
        return QrReceived(code=code)
    if name == "authenticated":
        return Authenticated()
    if name == "ready":
        return Ready()
    if name == "auth_failure":
        return AuthFailure(message=str(args.get("message", "")))
    if name == "disconnected":
        return Disconnected(reason=str(args.get("reason", "")))
    if name == "loading_screen":
        try:
            percent = int(args.get("percent", 0))
        except (TypeError, ValueError) as err:
            raise ValueError("loading_screen percent must be an integer") from err
        return LoadingScreen(percent=percent, message=str(args.get("message", "")))

    raise ValueError(f"unknown capability event: {name!r}")
