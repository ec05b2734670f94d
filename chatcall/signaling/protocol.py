"""Routing of call signaling messages through a :class:`Mailbox`."""
from typing import List
import logging

from chatcall.models import MessageType, SignalingData, SignalingMessage, UNICAST_TYPES
from .mailbox import Mailbox

logger = logging.getLogger(__name__)


class SignalingRouter:
    def __init__(self, mailbox: Mailbox):
        self.mailbox = mailbox

    def route(self, message: SignalingMessage) -> List[str]:
        """Enqueue ``message`` for its recipients and return who got it.

        Unknown types and unicast messages without a recipient are dropped
        with a warning; nothing here raises to the caller.
        """
        message_type = message.message_type
        logger.info(f"📞 Signaling message: {message.type} from {message.sender} to {message.to} in room {message.room_id}")

        if message_type is None:
            logger.warning("Unknown signaling message type: %s", message.type)
            return []

        if message_type in UNICAST_TYPES:
            return self._unicast(message)

        if message_type in (MessageType.JOIN_CALL, MessageType.USER_JOINED):
            data = SignalingData(userName=message.data.user_name)
        elif message_type is MessageType.LEAVE_CALL:
            data = SignalingData()
        elif message_type is MessageType.USER_LEFT:
            data = SignalingData(userName=message.data.user_name or "Unknown User")
        else:
            # toggle_audio / toggle_video carry the new state verbatim
            data = SignalingData(enabled=bool(message.data.enabled))

        outgoing = SignalingMessage(type=message_type.value, room_id=message.room_id, sender=message.sender, data=data)
        return self.broadcast(message.room_id, outgoing.to_wire(), exclude=message.sender)

    def broadcast(self, room_id: str, payload: dict, exclude: str) -> List[str]:
        recipients = [user_id for user_id in self.mailbox.members(room_id) if user_id != exclude]
        for user_id in recipients:
            self.mailbox.enqueue(user_id, payload)
        return recipients

    def _unicast(self, message: SignalingMessage) -> List[str]:
        if not message.to:
            logger.warning("Dropping %s from %s: no recipient", message.type, message.sender)
            return []
        self.mailbox.enqueue(message.to, message.to_wire())
        logger.debug("Routed %s from %s to %s", message.type, message.sender, message.to)
        return [message.to]
