"""
aiohttp HTTP surface for the chat relay.

Exposes, under a configurable prefix (default ``/chat``):

* ``POST {prefix}/``       buffered chat, JSON in / JSON out
* ``POST {prefix}/stream`` SSE streaming chat
* ``GET  {prefix}/health`` driver health check

``register_routes`` mounts the handlers on an existing ``web.Application`` so
the relay can live inside a larger aiohttp service; ``create_app`` builds a
stand-alone application.
"""

from __future__ import annotations

import asyncio
import json
import logging
import time
import uuid
from collections.abc import Mapping
from typing import Any

from aiohttp import web
from aiohttp.web_request import Request
from aiohttp.web_response import Response, StreamResponse

from chatrelay.core import telemetry
from chatrelay.core.chatbot import Chatbot
from chatrelay.core.exceptions import ChatbotError, ErrorKind
from chatrelay.core.logger_setup import bind_log_context
from chatrelay.core.options import AskOption, with_client_ip, with_context_map, with_history
from chatrelay.history.backends import ConversationStore
from chatrelay.streaming.sink import AiohttpSink

_log = logging.getLogger(__name__)

CHATBOT_KEY = web.AppKey("chatbot", Chatbot)
STORE_KEY = web.AppKey("conversation_store", ConversationStore)

CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Methods": "POST, OPTIONS",
    "Access-Control-Allow-Headers": "Content-Type",
}

HEALTH_TIMEOUT = 5.0

MSG_INVALID_JSON = "Invalid JSON request"
MSG_MESSAGE_REQUIRED = "Message is required"
MSG_RATE_LIMITED = "Rate limit exceeded"
MSG_TIMEOUT = "Request timeout"
MSG_FAILED = "Failed to process request"

# Context keys the HTTP layer owns; callers cannot smuggle them through the body.
_RESERVED_CONTEXT = frozenset({"client_ip", "conversation_id"})


class _BadRequest(Exception):
    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


# ---------------------------------------------------------------------------+
#  helpers                                                                   +
# ---------------------------------------------------------------------------+


def strip_port(addr: str) -> str:
    """Drop a trailing ``:port`` from *addr* (IPv6 literals keep their colons)."""
    addr = addr.strip()
    if addr.startswith("["):
        end = addr.find("]")
        return addr[1:end] if end != -1 else addr
    if addr.count(":") == 1:
        return addr.rsplit(":", 1)[0]
    return addr


def client_ip(request: Request) -> str:
    """First ``X-Forwarded-For`` hop, else ``X-Real-IP``, else the peer address."""
    forwarded = request.headers.get("X-Forwarded-For", "")
    if forwarded:
        first = forwarded.split(",")[0].strip()
        if first:
            return first
    real_ip = request.headers.get("X-Real-IP", "").strip()
    if real_ip:
        return real_ip
    return strip_port(request.remote or "")


def _json(payload: Mapping[str, Any], status: int = 200) -> Response:
    return web.json_response(dict(payload), status=status, headers=CORS_HEADERS)


def _failure(message: str, status: int) -> Response:
    return _json({"success": False, "error": message}, status=status)


def status_for(exc: ChatbotError) -> tuple[int, str]:
    """Map a chat failure onto the buffered endpoint's (status, public message)."""
    if exc.kind is ErrorKind.RATE_LIMITED:
        return 429, MSG_RATE_LIMITED
    if exc.kind is ErrorKind.TIMEOUT:
        return 408, MSG_TIMEOUT
    if exc.kind in (ErrorKind.INVALID_INPUT, ErrorKind.FILTER_BLOCKED):
        return 400, exc.message
    if exc.kind is ErrorKind.STREAMING_UNSUPPORTED:
        return 501, exc.message
    return 500, MSG_FAILED


async def _parse_body(request: Request) -> tuple[str, dict[str, Any]]:
    try:
        body = await request.json()
    except (json.JSONDecodeError, UnicodeDecodeError, ValueError):
        raise _BadRequest(MSG_INVALID_JSON) from None
    if not isinstance(body, dict):
        raise _BadRequest(MSG_INVALID_JSON)
    message = body.get("message")
    if message is not None and not isinstance(message, str):
        raise _BadRequest(MSG_INVALID_JSON)
    if not message or not message.strip():
        raise _BadRequest(MSG_MESSAGE_REQUIRED)
    context = body.get("context") or {}
    if not isinstance(context, dict):
        raise _BadRequest(MSG_INVALID_JSON)
    return message, context


def _bind_request(request: Request) -> str:
    ip = client_ip(request)
    bind_log_context(
        request_id=request.headers.get("X-Request-ID") or uuid.uuid4().hex[:12],
        client_ip=ip or "-",
    )
    return ip


async def _ask_options(
    request: Request, context: dict[str, Any], ip: str
) -> tuple[list[AskOption], str | None]:
    options: list[AskOption] = [
        with_context_map({k: v for k, v in context.items() if k not in _RESERVED_CONTEXT})
    ]
    if ip:
        options.append(with_client_ip(ip))
    conversation_id = context.get("conversation_id")
    store = request.app.get(STORE_KEY)
    if store is None or not conversation_id:
        return options, None
    conversation_id = str(conversation_id)
    try:
        prior = await store.recent(conversation_id)
    except Exception:
        _log.exception(
            "could not load conversation %s; answering without history", conversation_id
        )
        prior = []
    if prior:
        options.append(with_history(prior))
    return options, conversation_id


async def _record_turn(
    request: Request, conversation_id: str | None, message: str, reply: str | None
) -> None:
    store = request.app.get(STORE_KEY)
    if store is None or not conversation_id or reply is None:
        return
    try:
        await store.append(
            conversation_id,
            {"role": "user", "content": message},
            {"role": "assistant", "content": reply},
        )
    except Exception:
        # The reply was produced; losing the history entry must not lose the answer.
        _log.exception("could not record conversation %s", conversation_id)


# ---------------------------------------------------------------------------+
#  handlers                                                                  +
# ---------------------------------------------------------------------------+


async def chat(request: Request) -> Response:
    chatbot = request.app[CHATBOT_KEY]
    ip = _bind_request(request)
    try:
        message, context = await _parse_body(request)
    except _BadRequest as exc:
        telemetry.record_http_request("chat", 400)
        return _failure(exc.message, 400)

    try:
        options, conversation_id = await _ask_options(request, context, ip)
        reply = await chatbot.ask(message, *options)
    except ChatbotError as exc:
        status, public = status_for(exc)
        if status >= 500:
            _log.error("chat request failed: %s", exc)
        else:
            _log.warning("chat request rejected (%s): %s", exc.kind.value, exc.message)
        telemetry.record_http_request("chat", status)
        return _failure(public, status)
    except Exception:
        _log.exception("unexpected error handling chat request")
        telemetry.record_http_request("chat", 500)
        return _failure(MSG_FAILED, 500)

    await _record_turn(request, conversation_id, message, reply)
    telemetry.record_http_request("chat", 200)
    return _json({"success": True, "response": reply})


async def stream(request: Request) -> StreamResponse:
    chatbot = request.app[CHATBOT_KEY]
    ip = _bind_request(request)
    try:
        message, context = await _parse_body(request)
    except _BadRequest as exc:
        telemetry.record_http_request("stream", 400)
        return _failure(exc.message, 400)

    if not chatbot.supports_streaming and not chatbot.stream_fallback:
        telemetry.record_http_request("stream", 501)
        return _failure(f"{chatbot.provider.provider} does not support streaming", 501)

    sink = AiohttpSink(request, headers={"Access-Control-Allow-Methods": "POST, OPTIONS"})
    try:
        options, conversation_id = await _ask_options(request, context, ip)
        reply = await chatbot.ask_stream(sink, message, *options)
    except ConnectionResetError:
        _log.info("stream client disconnected")
        return sink.response
    except ChatbotError as exc:
        if sink.prepared:
            raise
        status, public = status_for(exc)
        _log.warning("stream request rejected (%s): %s", exc.kind.value, exc.message)
        telemetry.record_http_request("stream", status)
        return _failure(public, status)

    await _record_turn(request, conversation_id, message, reply)
    telemetry.record_http_request("stream", 200)
    return await sink.finish()


async def health(request: Request) -> Response:
    chatbot = request.app[CHATBOT_KEY]
    base = {"provider": chatbot.provider.provider, "model": chatbot.provider.name}
    deadline = asyncio.get_running_loop().time() + HEALTH_TIMEOUT
    try:
        await chatbot.health(deadline)
    except ChatbotError as exc:
        _log.warning("health check failed: %s", exc.message)
        return _json(
            {"status": "unhealthy", "error": exc.message, **base, "timestamp": time.time()},
            status=503,
        )
    except Exception as exc:
        _log.exception("health check raised unexpectedly")
        return _json(
            {"status": "unhealthy", "error": str(exc), **base, "timestamp": time.time()},
            status=503,
        )
    return _json({"status": "healthy", **base, "timestamp": time.time()})


async def preflight(request: Request) -> Response:
    return web.Response(status=200, headers=CORS_HEADERS)


# ---------------------------------------------------------------------------+
#  wiring                                                                    +
# ---------------------------------------------------------------------------+


def register_routes(
    app: web.Application,
    chatbot: Chatbot,
    prefix: str = "/chat",
    *,
    conversation_store: ConversationStore | None = None,
) -> None:
    """Mount the chat handlers on *app* under *prefix*."""
    app[CHATBOT_KEY] = chatbot
    if conversation_store is not None:
        app[STORE_KEY] = conversation_store
    prefix = "/" + prefix.strip("/") if prefix.strip("/") else ""
    app.router.add_post(f"{prefix}/", chat)
    app.router.add_post(f"{prefix}/stream", stream)
    app.router.add_get(f"{prefix}/health", health)
    app.router.add_route("OPTIONS", f"{prefix}/", preflight)
    app.router.add_route("OPTIONS", f"{prefix}/stream", preflight)


def create_app(
    chatbot: Chatbot,
    *,
    prefix: str = "/chat",
    conversation_store: ConversationStore | None = None,
) -> web.Application:
    app = web.Application()
    register_routes(app, chatbot, prefix, conversation_store=conversation_store)
    return app


async def start_http_server(
    app: web.Application, host: str = "0.0.0.0", port: int = 8080
) -> web.AppRunner:
    """Start serving *app*; the caller owns ``runner.cleanup()``."""
    runner = web.AppRunner(app)
    await runner.setup()
    site = web.TCPSite(runner, host, port)
    try:
        await site.start()
    except OSError:
        await runner.cleanup()
        raise
    _log.info("chat relay listening on http://%s:%d", host, port)
    return runner


__all__ = [
    "CHATBOT_KEY",
    "STORE_KEY",
    "client_ip",
    "strip_port",
    "status_for",
    "register_routes",
    "create_app",
    "start_http_server",
]
