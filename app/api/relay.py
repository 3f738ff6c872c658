"""
Real-time message relay.

Lets authenticated connections join conversation rooms and forward chat
events to each other. Nothing here touches the messages table: persisting a
message is a separate REST call made by the client.

Delivery channels for ``send_message`` (each can be switched off on its own):
- room channel: ``receive_message`` to every connection joined to
  ``chatId`` except the sender (the open chat view)
- direct channel: an event named after ``to`` to every other connection,
  regardless of room membership (inbox badges, toasts)

A recipient that is both in the room and listening for ``to`` gets both.
Delivery is best effort: no acknowledgement, retry, ordering or persistence.
"""
import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, Optional, Tuple
from pydantic import ValidationError
from sqlalchemy.orm import Session

from api.connection_registry import Connection, ConnectionRegistry
from api.dependencies import resolve_session_user
from api.metrics import relay_deliveries_total, relay_events_received_total, update_relay_gauges
from api.schemas import RelayErrorEvent, RelayMessage, RelayRoomRequest
from core.audit_logger import audit_logger
from core.errors import RelayError, RelayErrorCode
from db.repository import Repository

logger = logging.getLogger(__name__)

RECEIVE_MESSAGE_EVENT = "receive_message"
RELAY_ERROR_EVENT = "relay_error"

# (event, data, sid) -> None
EmitFunc = Callable[[str, Any, str], Awaitable[None]]


def _validation_message(error: ValidationError) -> str:
    first = error.errors()[0]
    location = ".".join(str(part) for part in first.get("loc", ())) or "payload"
    return f"{location}: {first.get('msg', 'invalid value')}"


class Relay:
    """
    Relay operations over a ConnectionRegistry.

    Args:
        registry: Connection/room table
        emit: Coroutine sending one event to one connection
        session_factory: Callable returning a SQLAlchemy session, used for
            authentication and participant checks
        room_delivery: Enable the room channel
        direct_delivery: Enable the direct channel
    """

    def __init__(
        self,
        registry: ConnectionRegistry,
        emit: EmitFunc,
        session_factory: Callable[[], Session],
        room_delivery: bool = True,
        direct_delivery: bool = True
    ):
        self.registry = registry
        self.emit = emit
        self.session_factory = session_factory
        self.room_delivery = room_delivery
        self.direct_delivery = direct_delivery

    async def connect(self, sid: str, token: Optional[str], client_ip: Optional[str] = None) -> Connection:
        """
        Authenticate a handshake and register the connection.

        Raises:
            RelayError: UNAUTHORIZED if the token is missing, invalid or maps
                to no local user
        """
        if not token:
            raise RelayError(RelayErrorCode.UNAUTHORIZED, "Session token required")

        user_id = await asyncio.to_thread(self._resolve_user_id, token)

        if user_id is None:
            audit_logger.log_token_invalid(client_ip, "Relay handshake rejected", channel="relay")
            raise RelayError(RelayErrorCode.UNAUTHORIZED, "Invalid session")

        connection = self.registry.register(sid, user_id)
        update_relay_gauges(self.registry)
        logger.info(f"Relay connection {sid} established for user {user_id}")
        return connection

    def disconnect(self, sid: str, reason: Optional[str] = None) -> Optional[Connection]:
        """Drop a connection with all its memberships. No one else is notified."""
        connection = self.registry.unregister(sid)
        update_relay_gauges(self.registry)
        if connection is not None:
            logger.info(
                f"Relay connection {sid} (user {connection.user_id}) closed: {reason or 'unknown'}; "
                f"left {len(connection.rooms)} rooms"
            )
        return connection

    async def join_room(self, sid: str, data: Any) -> bool:
        """
        Join the caller to a conversation room.

        Returns:
            True if newly joined, False if already a member

        Raises:
            RelayError: INVALID_MESSAGE, NOT_FOUND, FORBIDDEN or UNAUTHORIZED
        """
        connection = self._require_connection(sid)
        room = self._parse_room(data)
        await self._authorize(connection, room, "join_room")

        joined = self.registry.join(sid, room)
        update_relay_gauges(self.registry)
        relay_events_received_total.labels(event="join_room", outcome="ok").inc()
        if joined:
            logger.info(f"Connection {sid} joined room {room}")
        return joined

    async def leave_room(self, sid: str, data: Any) -> bool:
        """Leave a room; leaving a room never joined is a no-op."""
        self._require_connection(sid)
        room = self._parse_room(data)
        left = self.registry.leave(sid, room)
        update_relay_gauges(self.registry)
        relay_events_received_total.labels(event="leave_room", outcome="ok").inc()
        return left

    async def send_message(self, sid: str, data: Any) -> Dict[str, int]:
        """
        Forward a chat event over the enabled channels.

        The payload is validated first; the original dict is what recipients
        receive.

        Returns:
            Number of deliveries per channel, e.g. ``{"room": 1, "direct": 3}``

        Raises:
            RelayError: INVALID_MESSAGE, NOT_FOUND, FORBIDDEN or UNAUTHORIZED
        """
        connection = self._require_connection(sid)
        if not isinstance(data, dict):
            raise RelayError(RelayErrorCode.INVALID_MESSAGE, "send_message expects an object")
        try:
            message = RelayMessage.model_validate(data)
        except ValidationError as e:
            raise RelayError(RelayErrorCode.INVALID_MESSAGE, _validation_message(e))

        await self._authorize(connection, message.chatId, "send_message")

        delivered = {"room": 0, "direct": 0}

        if self.room_delivery:
            for target in self.registry.room_members(message.chatId, exclude=sid):
                await self._deliver(RECEIVE_MESSAGE_EVENT, data, target, "room")
                delivered["room"] += 1

        if self.direct_delivery:
            for target in self.registry.all_sids(exclude=sid):
                await self._deliver(message.to, data, target, "direct")
                delivered["direct"] += 1

        relay_events_received_total.labels(event="send_message", outcome="ok").inc()
        logger.debug(
            f"Relayed message from {sid} in room {message.chatId}: "
            f"{delivered['room']} room, {delivered['direct']} direct deliveries"
        )
        return delivered

    async def reject(self, sid: str, event: str, error: RelayError) -> None:
        """Report a rejected event to its sender only."""
        relay_events_received_total.labels(event=event, outcome=error.code.lower()).inc()
        logger.info(f"Rejected {event} from {sid}: {error.code} {error.message}")
        payload = RelayErrorEvent(event=event, code=error.code, message=error.message)
        await self.emit(RELAY_ERROR_EVENT, payload.model_dump(), sid)

    async def _deliver(self, event: str, data: Any, sid: str, channel: str) -> None:
        # One failing socket must not stop delivery to the rest
        try:
            await self.emit(event, data, sid)
        except Exception as e:
            logger.warning(f"Delivery of {event} to {sid} failed: {e}")
            return
        relay_deliveries_total.labels(channel=channel).inc()

    def _require_connection(self, sid: str) -> Connection:
        connection = self.registry.get(sid)
        if connection is None:
            raise RelayError(RelayErrorCode.UNAUTHORIZED, "Connection is not registered")
        return connection

    @staticmethod
    def _parse_room(data: Any) -> str:
        raw = data if isinstance(data, dict) else {"chatId": data}
        try:
            return RelayRoomRequest.model_validate(raw).chatId
        except ValidationError as e:
            raise RelayError(RelayErrorCode.INVALID_MESSAGE, _validation_message(e))

    def _resolve_user_id(self, token: str) -> Optional[int]:
        db = self.session_factory()
        try:
            user = resolve_session_user(token, db)
            return user.id if user else None
        finally:
            db.close()

    def _membership(self, conversation_id: int, user_id: int) -> Tuple[bool, bool]:
        """(conversation exists, user is a participant)"""
        db = self.session_factory()
        try:
            repository = Repository(db)
            if repository.get_conversation_by_id(conversation_id) is None:
                return False, False
            return True, repository.is_conversation_member(conversation_id, user_id)
        finally:
            db.close()

    async def _authorize(self, connection: Connection, room: str, action: str) -> None:
        """
        The connection's user must take part in the conversation named by the room.

        ``room`` is already canonical (see RelayRoomRequest), so it always
        parses as a bounded integer.
        """
        exists, is_member = await asyncio.to_thread(self._membership, int(room), connection.user_id)

        if not exists:
            raise RelayError(RelayErrorCode.NOT_FOUND, f"Conversation {room} not found")
        if not is_member:
            audit_logger.log_authorization_denied(
                connection.user_id, f"conversation:{room}", action, "Not a participant"
            )
            raise RelayError(RelayErrorCode.FORBIDDEN, "You are not a member of this conversation")
