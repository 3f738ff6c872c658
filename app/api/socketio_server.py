"""
Socket.IO server for the chat relay.

The React client uses ``socket.io-client`` against the API origin with the
default ``/socket.io`` path and presents its Clerk session token as
``auth: { token }`` (``?token=`` and the ``__session`` cookie also work).

Client → server events: ``join_room``, ``leave_room``, ``send_message``.
Server → client events: ``receive_message``, the ``to``-named event,
``relay_error``.
"""
import logging
from http.cookies import SimpleCookie
from typing import Any, Optional
from urllib.parse import parse_qs

import socketio
from socketio.exceptions import ConnectionRefusedError

from api.connection_registry import ConnectionRegistry
from api.metrics import relay_connections_refused_total, relay_connections_total
from api.relay import Relay
from core.config import settings
from core.errors import RelayError
from core.security import SESSION_COOKIE_NAME
from db.database import SessionLocal

logger = logging.getLogger(__name__)


sio = socketio.AsyncServer(
    async_mode="asgi",
    cors_allowed_origins=settings.allowed_origins,
    logger=False,
    engineio_logger=False,
)


async def emit_to_connection(event: str, data: Any, sid: str) -> None:
    await sio.emit(event, data, to=sid)


relay = Relay(
    registry=ConnectionRegistry(),
    emit=emit_to_connection,
    session_factory=SessionLocal,
    room_delivery=settings.relay_room_delivery,
    direct_delivery=settings.relay_direct_delivery,
)


def _asgi_scope(environ: Any) -> Any:
    if isinstance(environ, dict) and isinstance(environ.get("asgi.scope"), dict):
        return environ["asgi.scope"]
    return environ


def extract_token(environ: Any, auth: Any = None) -> Optional[str]:
    """
    Find the Clerk session token of a handshake.

    Order: ``auth.token``, ``?token=`` query parameter, ``__session`` cookie.
    Handles both the ASGI scope and WSGI environ shapes python-socketio passes.
    """
    if isinstance(auth, dict):
        auth_token = auth.get("token")
        if isinstance(auth_token, str) and auth_token:
            return auth_token

    if not isinstance(environ, dict):
        return None
    scope = _asgi_scope(environ)

    query_string = scope.get("query_string", scope.get("QUERY_STRING", ""))
    if isinstance(query_string, (bytes, bytearray)):
        query_string = query_string.decode(errors="ignore")
    token = parse_qs(str(query_string)).get("token", [None])[0]
    if token:
        return token

    cookie_header = environ.get("HTTP_COOKIE")
    if cookie_header is None:
        for name, value in scope.get("headers", []):
            if name.lower() == b"cookie":
                cookie_header = value.decode(errors="ignore")
                break
    if cookie_header:
        cookie = SimpleCookie()
        cookie.load(cookie_header)
        if SESSION_COOKIE_NAME in cookie:
            return cookie[SESSION_COOKIE_NAME].value

    return None


def _client_ip(environ: Any) -> Optional[str]:
    if not isinstance(environ, dict):
        return None
    if environ.get("REMOTE_ADDR"):
        return environ["REMOTE_ADDR"]
    client = _asgi_scope(environ).get("client")
    return client[0] if client else None


@sio.event
async def connect(sid: str, environ: dict, auth: Any = None):
    try:
        await relay.connect(sid, extract_token(environ, auth), client_ip=_client_ip(environ))
    except RelayError as exc:
        relay_connections_refused_total.labels(reason=exc.code.lower()).inc()
        raise ConnectionRefusedError("unauthorized") from exc
    except Exception as exc:
        logger.exception("Socket.IO connect error")
        relay_connections_refused_total.labels(reason="server_error").inc()
        raise ConnectionRefusedError("server_error") from exc

    relay_connections_total.inc()


@sio.event
async def disconnect(sid: str, reason: Any = None):
    relay.disconnect(sid, reason=str(reason) if reason is not None else None)


@sio.event
async def join_room(sid: str, data: Any):
    try:
        await relay.join_room(sid, data)
    except RelayError as exc:
        await relay.reject(sid, "join_room", exc)


@sio.event
async def leave_room(sid: str, data: Any):
    try:
        await relay.leave_room(sid, data)
    except RelayError as exc:
        await relay.reject(sid, "leave_room", exc)


@sio.event
async def send_message(sid: str, data: Any = None):
    try:
        await relay.send_message(sid, data)
    except RelayError as exc:
        await relay.reject(sid, "send_message", exc)
