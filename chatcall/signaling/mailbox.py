"""Per-room call membership and per-user outbound queues.

The in-memory store lives as long as the process. It relies on the server
handling each request on a single event loop; a multi-worker deployment needs
a shared store implementing :class:`Mailbox` instead.
"""
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Set
import logging

logger = logging.getLogger(__name__)


class Mailbox(ABC):
    @abstractmethod
    def join(self, room_id: str, user_id: str) -> None:
        """Add user to the room's call membership and open their queue."""
        raise NotImplementedError

    @abstractmethod
    def leave(self, room_id: str, user_id: str) -> None:
        """Remove user from the room and drop their queue."""
        raise NotImplementedError

    @abstractmethod
    def enqueue(self, user_id: str, message: Dict[str, Any]) -> None:
        raise NotImplementedError

    @abstractmethod
    def drain(self, user_id: str) -> List[Dict[str, Any]]:
        """Return pending messages for user and clear the queue."""
        raise NotImplementedError

    @abstractmethod
    def members(self, room_id: str) -> Set[str]:
        raise NotImplementedError

    @abstractmethod
    def rooms(self) -> Dict[str, int]:
        """Member count per active call room."""
        raise NotImplementedError


class InMemoryMailbox(Mailbox):
    def __init__(self):
        self.call_rooms: Dict[str, Set[str]] = {}
        self.pending_messages: Dict[str, List[Dict[str, Any]]] = {}

    def join(self, room_id: str, user_id: str) -> None:
        self.call_rooms.setdefault(room_id, set()).add(user_id)
        self.pending_messages.setdefault(user_id, [])
        logger.info(f"📞 User {user_id} joined call room {room_id}")

    def leave(self, room_id: str, user_id: str) -> None:
        room = self.call_rooms.get(room_id)
        if room is not None:
            room.discard(user_id)
            if not room:
                del self.call_rooms[room_id]
                logger.info(f"🗑️  Call room {room_id} is now empty")
        dropped = self.pending_messages.pop(user_id, None)
        if dropped:
            logger.info(f"Dropped {len(dropped)} undelivered messages for {user_id}")
        logger.info(f"📞 User {user_id} left call room {room_id}")

    def enqueue(self, user_id: str, message: Dict[str, Any]) -> None:
        # Messages may race ahead of an explicit join
        self.pending_messages.setdefault(user_id, []).append(message)

    def drain(self, user_id: str) -> List[Dict[str, Any]]:
        queue = self.pending_messages.get(user_id)
        if not queue:
            return []
        # Swap rather than copy-and-clear so later enqueues land in the fresh list
        self.pending_messages[user_id] = []
        return queue

    def members(self, room_id: str) -> Set[str]:
        return set(self.call_rooms.get(room_id, ()))

    def rooms(self) -> Dict[str, int]:
        return {room_id: len(users) for room_id, users in self.call_rooms.items()}
