"""HTTP API routes for the gateway."""

from __future__ import annotations

import functools
import json
import logging
from collections.abc import Awaitable, Callable
from datetime import UTC, datetime
from typing import Any

from aiohttp import web

from .errors import ChatlinkRequestError, NotReadyError
from .manager import ConnectionManager
from .operations import MessagingService

_LOGGER = logging.getLogger(__name__)

MANAGER_KEY = web.AppKey("manager", ConnectionManager)
SERVICE_KEY = web.AppKey("service", MessagingService)

Handler = Callable[[web.Request], Awaitable[web.StreamResponse]]


def _timestamp() -> str:
    return datetime.now(tz=UTC).isoformat()


def _ack(message: str) -> web.Response:
    return web.json_response({"message": message, "timestamp": _timestamp()})


# =============================================================================
# Middleware
# =============================================================================


def _add_cors_headers(headers: Any) -> None:
    headers["Access-Control-Allow-Origin"] = "*"
    headers["Access-Control-Allow-Methods"] = "GET, POST, OPTIONS"
    headers["Access-Control-Allow-Headers"] = "Content-Type, Authorization"


@web.middleware
async def cors_middleware(request: web.Request, handler: Handler) -> web.StreamResponse:
    """Add CORS headers and answer preflight requests."""
    if request.method == "OPTIONS":
        response: web.StreamResponse = web.Response(status=204)
    else:
        try:
            response = await handler(request)
        except web.HTTPException as e:
            _add_cors_headers(e.headers)
            raise

    _add_cors_headers(response.headers)
    return response


@web.middleware
async def error_middleware(request: web.Request, handler: Handler) -> web.StreamResponse:
    """Map gateway errors onto JSON responses."""
    try:
        return await handler(request)
    except web.HTTPException:
        raise
    except NotReadyError as err:
        return web.json_response(err.rejected.to_dict(), status=err.rejected.status)
    except ChatlinkRequestError as err:
        return web.json_response({"error": str(err)}, status=err.status)
    except Exception as err:
        _LOGGER.exception("API error on %s %s", request.method, request.path)
        return web.json_response(
            {
                "error": "Internal server error",
                "message": str(err),
                "timestamp": _timestamp(),
            },
            status=500,
        )


def gated(handler: Handler) -> Handler:
    """Reject the request with the gate payload unless the client is ready."""

    @functools.wraps(handler)
    async def wrapper(request: web.Request) -> web.StreamResponse:
        request.app[MANAGER_KEY].gate.require()
        return await handler(request)

    return wrapper


# =============================================================================
# Parameter helpers
# =============================================================================


def _int_param(params: Any, name: str, default: int) -> int:
    value = params.get(name)
    if value is None or value == "":
        return default
    try:
        return int(value)
    except (TypeError, ValueError) as err:
        raise ChatlinkRequestError(400, f"{name} must be an integer") from err


def _flag(params: Any, name: str) -> bool | None:
    value = params.get(name)
    if value is None:
        return None
    return str(value).lower() == "true"


async def _json_body(request: web.Request) -> dict[str, Any]:
    try:
        body = await request.json()
    except (json.JSONDecodeError, UnicodeDecodeError) as err:
        raise ChatlinkRequestError(400, "Request body must be valid JSON") from err
    if not isinstance(body, dict):
        raise ChatlinkRequestError(400, "Request body must be a JSON object")
    return body


# =============================================================================
# Status and admin handlers
# =============================================================================


async def health(request: web.Request) -> web.Response:
    """Detailed lifecycle status."""
    return web.json_response(request.app[MANAGER_KEY].status.to_dict())


async def restart(request: web.Request) -> web.Response:
    request.app[MANAGER_KEY].request_restart()
    return _ack("Client restart initiated")


async def clean_session(request: web.Request) -> web.Response:
    request.app[MANAGER_KEY].request_clean_session()
    return _ack("Session cleaned and client reinitialization scheduled")


@gated
async def logout(request: web.Request) -> web.Response:
    await request.app[MANAGER_KEY].logout()
    return _ack("Logged out successfully")


async def qr_code(request: web.Request) -> web.Response:
    status = request.app[MANAGER_KEY].status
    if status.is_ready:
        return web.json_response({"message": "Client already authenticated"})
    return web.json_response({"qrCode": status.qr_payload})


# =============================================================================
# Domain handlers
# =============================================================================


@gated
async def search_contacts(request: web.Request) -> web.Response:
    body = await _json_body(request)
    result = await request.app[SERVICE_KEY].search_contacts(
        body.get("query"), _int_param(body, "limit", 50)
    )
    return web.json_response(result)


@gated
async def list_messages(request: web.Request) -> web.Response:
    query = request.query
    result = await request.app[SERVICE_KEY].list_messages(
        query.get("chatId"),
        limit=_int_param(query, "limit", 20),
        message_type=query.get("type"),
        from_me=_flag(query, "fromMe"),
    )
    return web.json_response(result)


@gated
async def get_direct_chat_by_contact(request: web.Request) -> web.Response:
    service = request.app[SERVICE_KEY]
    return web.json_response(
        await service.get_direct_chat_by_contact(request.query.get("number"))
    )


@gated
async def get_contact_chats(request: web.Request) -> web.Response:
    service = request.app[SERVICE_KEY]
    return web.json_response(await service.get_contact_chats(request.query.get("number")))


@gated
async def get_last_interaction(request: web.Request) -> web.Response:
    service = request.app[SERVICE_KEY]
    return web.json_response(
        await service.get_last_interaction(request.query.get("number"))
    )


@gated
async def get_message_context(request: web.Request) -> web.Response:
    query = request.query
    result = await request.app[SERVICE_KEY].get_message_context(
        query.get("chatId"),
        query.get("messageId"),
        before=_int_param(query, "before", 5),
        after=_int_param(query, "after", 5),
    )
    return web.json_response(result)


@gated
async def send_message(request: web.Request) -> web.Response:
    body = await _json_body(request)
    result = await request.app[SERVICE_KEY].send_message(
        body.get("to"), body.get("message"), body.get("options") or {}
    )
    return web.json_response(result)


@gated
async def send_file(request: web.Request) -> web.Response:
    body = await _json_body(request)
    result = await request.app[SERVICE_KEY].send_file(
        body.get("to"), body.get("filePath"), body.get("caption")
    )
    return web.json_response(result)


@gated
async def send_audio_message(request: web.Request) -> web.Response:
    body = await _json_body(request)
    result = await request.app[SERVICE_KEY].send_audio_message(
        body.get("to"), body.get("audioPath")
    )
    return web.json_response(result)


@gated
async def download_media(request: web.Request) -> web.Response:
    query = request.query
    result = await request.app[SERVICE_KEY].download_media(
        query.get("chatId"), query.get("messageId")
    )
    return web.json_response(result)


@gated
async def get_chats(request: web.Request) -> web.Response:
    query = request.query
    result = await request.app[SERVICE_KEY].get_chats(
        limit=_int_param(query, "limit", 50),
        unread_only=bool(_flag(query, "unreadOnly")),
    )
    return web.json_response(result)


def setup_routes(app: web.Application) -> None:
    """Register status, admin and domain routes."""
    app.router.add_get("/health", health)
    app.router.add_get("/qr", qr_code)
    app.router.add_post("/restart", restart)
    app.router.add_post("/clean-session", clean_session)
    app.router.add_post("/logout", logout)

    app.router.add_post("/search_contacts", search_contacts)
    app.router.add_get("/list_messages", list_messages)
    app.router.add_get("/get_direct_chat_by_contact", get_direct_chat_by_contact)
    app.router.add_get("/get_contact_chats", get_contact_chats)
    app.router.add_get("/get_last_interaction", get_last_interaction)
    app.router.add_get("/get_message_context", get_message_context)
    app.router.add_post("/send_message", send_message)
    app.router.add_post("/send_file", send_file)
    app.router.add_post("/send_audio_message", send_audio_message)
    app.router.add_get("/download_media", download_media)
    app.router.add_get("/get_chats", get_chats)
