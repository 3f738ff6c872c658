"""
Connection registry for the real-time relay.

Tracks live Socket.IO connections and the conversation rooms each one joined.
The registry is the single source of truth for room membership: rooms exist
only as the set of connections that joined them and disappear with their last
member.

Mutated only from Socket.IO handlers running on the event loop, so no locking.
State is per process and is lost on restart.
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, List, Optional, Set

logger = logging.getLogger(__name__)


@dataclass
class Connection:
    """One live relay session."""
    sid: str
    user_id: int
    rooms: Set[str] = field(default_factory=set)
    connected_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


class ConnectionRegistry:
    """
    Connection table keyed by Socket.IO session id, with a reverse index
    from room id to member session ids.
    """

    def __init__(self):
        # {sid: Connection}
        self.connections: Dict[str, Connection] = {}

        # {room_id: Set[sid]} - reverse index, kept in step with Connection.rooms
        self.rooms: Dict[str, Set[str]] = {}

    def register(self, sid: str, user_id: int) -> Connection:
        """
        Add a connection. Re-registering a sid replaces the previous entry and
        drops its memberships.
        """
        if sid in self.connections:
            self.unregister(sid)
        connection = Connection(sid=sid, user_id=user_id)
        self.connections[sid] = connection
        logger.debug(f"Registered connection {sid} for user {user_id}")
        return connection

    def unregister(self, sid: str) -> Optional[Connection]:
        """
        Remove a connection and every room membership it holds.

        Returns:
            The removed connection, or None if the sid was unknown
        """
        connection = self.connections.pop(sid, None)
        if connection is None:
            return None

        for room in connection.rooms:
            members = self.rooms.get(room)
            if members is None:
                continue
            members.discard(sid)
            if not members:
                del self.rooms[room]

        logger.debug(f"Unregistered connection {sid} (left {len(connection.rooms)} rooms)")
        return connection

    def get(self, sid: str) -> Optional[Connection]:
        return self.connections.get(sid)

    def join(self, sid: str, room: str) -> bool:
        """
        Add a connection to a room.

        Returns:
            True if the membership is new, False if it already existed

        Raises:
            KeyError: if the sid is not registered
        """
        connection = self.connections[sid]
        if room in connection.rooms:
            return False
        connection.rooms.add(room)
        self.rooms.setdefault(room, set()).add(sid)
        return True

    def leave(self, sid: str, room: str) -> bool:
        """Remove one membership. Returns False if there was nothing to remove."""
        connection = self.connections.get(sid)
        if connection is None or room not in connection.rooms:
            return False
        connection.rooms.discard(room)
        members = self.rooms.get(room, set())
        members.discard(sid)
        if not members:
            self.rooms.pop(room, None)
        return True

    def is_member(self, sid: str, room: str) -> bool:
        return sid in self.rooms.get(room, ())

    def room_members(self, room: str, exclude: Optional[str] = None) -> List[str]:
        """Session ids joined to a room, optionally without one sid (the sender)."""
        return sorted(sid for sid in self.rooms.get(room, ()) if sid != exclude)

    def all_sids(self, exclude: Optional[str] = None) -> List[str]:
        """Every connected session id, optionally without one sid."""
        return sorted(sid for sid in self.connections if sid != exclude)

    def connection_count(self) -> int:
        return len(self.connections)

    def membership_count(self) -> int:
        return sum(len(members) for members in self.rooms.values())
