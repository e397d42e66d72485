"""
aiohttp application: the HTTP surface of quill.

Routes:
  POST   /chat                              streamed text/plain, X-Conversation-Id
  GET    /conversations                     list the caller's conversations
  GET    /conversations/{id}                one conversation with its messages
  DELETE /conversations/{id}
  POST   /process                           {input, timezone?} → {message, toolResults}
  POST   /webhook/email                     Resend inbound webhook (no session auth)
  GET    /ingestion-log                     ?page=&limit=
  GET    /ingestion-log/{id}
  DELETE /ingestion-log/{id}
  POST   /ingestion-log/{id}/reprocess
  GET    /health, /ready

Every route except the webhook and health checks needs
`Authorization: Bearer <session token>`. QuillError subclasses map to status
codes in one middleware; anything else is logged and becomes a generic 500.
"""

import asyncio
import json
import logging
from dataclasses import dataclass, field
from typing import Any

from aiohttp import web

from .ai.orchestrator import ModelClient
from .channels.base import AgentService
from .channels.chat import ChatChannel
from .channels.email import EmailChannel
from .channels.process import ProcessChannel
from .constants import CONVERSATION_ID_HEADER, ERROR_MESSAGES, SIGNATURE_HEADER
from .exceptions import (
    AuthenticationError,
    ForbiddenError,
    NotFoundError,
    ProcessingError,
    QuillError,
    RateLimitExceededError,
    ServiceUnavailableError,
    ValidationError,
)
from .health import add_health_routes
from .integrations.composio import ComposioClient
from .integrations.resend import ResendClient
from .memory.database import DatabaseManager
from .memory.sessions import SessionResolver
from .utils.rate_limit import RateLimiter, RateLimitResult, rate_limit_headers

logger = logging.getLogger(__name__)

_PUBLIC_PATHS = frozenset({"/health", "/ready", "/webhook/email"})

_STATUS_FOR_ERROR: list[tuple[type[QuillError], int]] = [
    (ValidationError, 400),
    (AuthenticationError, 401),
    (ForbiddenError, 403),
    (NotFoundError, 404),
    (RateLimitExceededError, 429),
    (ProcessingError, 500),
    (ServiceUnavailableError, 503),
]


@dataclass
class Services:
    db: DatabaseManager
    limiter: RateLimiter
    sessions: SessionResolver
    chat: ChatChannel
    process: ProcessChannel
    email: EmailChannel
    # Chat turns that outlive their request (client disconnected mid-stream)
    background: set[asyncio.Task] = field(default_factory=set)


SERVICES = web.AppKey("services", Services)


def _services(request: web.Request) -> Services:
    return request.app[SERVICES]


def _user_id(request: web.Request) -> str:
    return request["user_id"]


def _error(status: int, message: str, headers: dict[str, str] | None = None) -> web.Response:
    return web.json_response({"error": message}, status=status, headers=headers)


def _limit_headers(result: RateLimitResult, limit: int, limiter: RateLimiter) -> dict[str, str]:
    headers = rate_limit_headers(result, limit)
    if not result.allowed:
        headers["Retry-After"] = str(result.retry_after_seconds(limiter.now()))
    return headers


# --------------------------------------------------------------------------- #
# Middleware                                                                   #
# --------------------------------------------------------------------------- #

@web.middleware
async def error_middleware(request: web.Request, handler) -> web.StreamResponse:
    try:
        return await handler(request)
    except web.HTTPException:
        raise
    except RateLimitExceededError as e:
        headers = _limit_headers(e.result, e.limit, _services(request).limiter)
        return _error(429, str(e), headers)
    except QuillError as e:
        for exc_type, status in _STATUS_FOR_ERROR:
            if isinstance(e, exc_type):
                if status >= 500:
                    logger.error("%s %s failed: %s", request.method, request.path, e)
                return _error(status, str(e))
        logger.error("Unmapped error on %s %s: %s", request.method, request.path, e, exc_info=True)
        return _error(500, ERROR_MESSAGES["internal"])
    except Exception:
        logger.exception("Unhandled error on %s %s", request.method, request.path)
        return _error(500, ERROR_MESSAGES["internal"])


@web.middleware
async def auth_middleware(request: web.Request, handler) -> web.StreamResponse:
    if request.path in _PUBLIC_PATHS:
        return await handler(request)

    header = request.headers.get("Authorization", "")
    scheme, _, token = header.partition(" ")
    user_id = None
    if scheme.lower() == "bearer" and token.strip():
        user_id = await _services(request).sessions.resolve(token.strip())
    if user_id is None:
        raise AuthenticationError(ERROR_MESSAGES["unauthorized"])

    request["user_id"] = user_id
    return await handler(request)


async def _json_body(request: web.Request) -> dict[str, Any]:
    try:
        body = await request.json()
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        raise ValidationError(ERROR_MESSAGES["invalid_json"]) from e
    if not isinstance(body, dict):
        raise ValidationError(ERROR_MESSAGES["invalid_json"])
    return body


def _optional_str(body: dict, key: str) -> str | None:
    value = body.get(key)
    return value if isinstance(value, str) and value.strip() else None


def _int_query(request: web.Request, key: str, default: int) -> int:
    raw = request.query.get(key)
    if raw is None:
        return default
    try:
        return int(raw)
    except ValueError:
        raise ValidationError(f"Query parameter '{key}' must be an integer")


# --------------------------------------------------------------------------- #
# Chat                                                                         #
# --------------------------------------------------------------------------- #

async def handle_chat(request: web.Request) -> web.StreamResponse:
    services = _services(request)
    user_id = _user_id(request)
    body = await _json_body(request)

    conversation, message, quota = await services.chat.admit(
        user_id, _optional_str(body, "conversationId"), body.get("message")
    )

    response = web.StreamResponse(
        status=200,
        headers={
            "Content-Type": "text/plain; charset=utf-8",
            CONVERSATION_ID_HEADER: conversation.id,
            "Access-Control-Expose-Headers": CONVERSATION_ID_HEADER,
            **rate_limit_headers(quota, services.chat.limit),
        },
    )
    await response.prepare(request)

    async def sink(text: str) -> None:
        await response.write(text.encode("utf-8"))

    # The turn runs in its own task so a client disconnect cannot cancel it
    # halfway through persisting.
    task = asyncio.ensure_future(
        services.chat.run_turn(
            user_id, conversation, message, sink, _optional_str(body, "timezone"),
        )
    )
    services.background.add(task)
    task.add_done_callback(services.background.discard)

    try:
        await asyncio.shield(task)
    except asyncio.CancelledError:
        logger.info("Chat client disconnected; turn continues for %s", conversation.id)
        raise
    except Exception as e:
        logger.error("Chat turn failed for %s: %s", conversation.id, e, exc_info=True)
        try:
            await response.write(f"\n\n{ERROR_MESSAGES['processing_failed']}".encode("utf-8"))
        except (ConnectionResetError, RuntimeError):
            pass

    try:
        await response.write_eof()
    except (ConnectionResetError, RuntimeError):
        pass
    return response


async def handle_list_conversations(request: web.Request) -> web.Response:
    conversations = await _services(request).chat.list_conversations(_user_id(request))
    return web.json_response({"conversations": [c.to_wire() for c in conversations]})


async def handle_get_conversation(request: web.Request) -> web.Response:
    conversation, messages = await _services(request).chat.get_conversation(
        _user_id(request), request.match_info["id"]
    )
    return web.json_response({
        "conversation": conversation.to_wire(),
        "messages": [m.to_wire() for m in messages],
    })


async def handle_delete_conversation(request: web.Request) -> web.Response:
    await _services(request).chat.delete_conversation(_user_id(request), request.match_info["id"])
    return web.json_response({"success": True})


# --------------------------------------------------------------------------- #
# Direct process                                                               #
# --------------------------------------------------------------------------- #

async def handle_process(request: web.Request) -> web.Response:
    services = _services(request)
    body = await _json_body(request)
    response, quota = await services.process.process(
        _user_id(request), body.get("input"), _optional_str(body, "timezone"),
    )
    return web.json_response(
        response.to_wire(), headers=rate_limit_headers(quota, services.process.limit),
    )


# --------------------------------------------------------------------------- #
# Email                                                                        #
# --------------------------------------------------------------------------- #

async def handle_email_webhook(request: web.Request) -> web.Response:
    raw_body = await request.read()
    outcome = await _services(request).email.handle_webhook(
        raw_body, request.headers.get(SIGNATURE_HEADER)
    )
    return web.json_response(outcome.body, status=outcome.status)


async def handle_list_logs(request: web.Request) -> web.Response:
    page = _int_query(request, "page", 1)
    limit = _int_query(request, "limit", 20)
    return web.json_response(
        await _services(request).email.list_logs(_user_id(request), page=page, limit=limit)
    )


async def handle_get_log(request: web.Request) -> web.Response:
    log = await _services(request).email.get_log(_user_id(request), request.match_info["id"])
    return web.json_response(log.to_wire())


async def handle_delete_log(request: web.Request) -> web.Response:
    await _services(request).email.delete_log(_user_id(request), request.match_info["id"])
    return web.json_response({"success": True})


async def handle_reprocess_log(request: web.Request) -> web.Response:
    response = await _services(request).email.reprocess(_user_id(request), request.match_info["id"])
    return web.json_response({"success": True, **response.to_wire()})


# --------------------------------------------------------------------------- #
# Application                                                                  #
# --------------------------------------------------------------------------- #

def create_app(
    db: DatabaseManager,
    model: ModelClient,
    *,
    limiter: RateLimiter | None = None,
    resend: ResendClient | None = None,
    composio: ComposioClient | None = None,
    webhook_secret: str | None = None,
    allowed_senders: list[str] | None = None,
) -> web.Application:
    """Wire stores, channels and routes. `db` must already be initialised."""
    limiter = limiter or RateLimiter()
    agent = AgentService(db, model, composio=composio)
    services = Services(
        db=db,
        limiter=limiter,
        sessions=SessionResolver(db),
        chat=ChatChannel(db, agent, limiter),
        process=ProcessChannel(agent, limiter),
        email=EmailChannel(
            db, agent, resend=resend,
            webhook_secret=webhook_secret, allowed_senders=allowed_senders,
        ),
    )

    app = web.Application(middlewares=[error_middleware, auth_middleware])
    app[SERVICES] = services

    app.router.add_post("/chat", handle_chat)
    app.router.add_get("/conversations", handle_list_conversations)
    app.router.add_get("/conversations/{id}", handle_get_conversation)
    app.router.add_delete("/conversations/{id}", handle_delete_conversation)
    app.router.add_post("/process", handle_process)
    app.router.add_post("/webhook/email", handle_email_webhook)
    app.router.add_get("/ingestion-log", handle_list_logs)
    app.router.add_get("/ingestion-log/{id}", handle_get_log)
    app.router.add_delete("/ingestion-log/{id}", handle_delete_log)
    app.router.add_post("/ingestion-log/{id}/reprocess", handle_reprocess_log)
    add_health_routes(app)

    app.on_shutdown.append(_drain_background)
    return app


async def _drain_background(app: web.Application) -> None:
    pending = list(app[SERVICES].background)
    if pending:
        logger.info("Waiting for %d in-flight chat turn(s)", len(pending))
        await asyncio.gather(*pending, return_exceptions=True)
