from fastapi import APIRouter, Depends, HTTPException, Query
from typing import Optional
import logging

from chatcall.models import CallAck, PollResponse, SignalingMessage
from chatcall.signaling.mailbox import InMemoryMailbox, Mailbox
from chatcall.signaling.protocol import SignalingRouter

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/calls", tags=["calls"])

mailbox = InMemoryMailbox()


def get_mailbox() -> Mailbox:
    return mailbox


def get_router(box: Mailbox = Depends(get_mailbox)) -> SignalingRouter:
    return SignalingRouter(box)


@router.get("")
async def call_action(
    action: Optional[str] = Query(None, description="join, leave or poll"),
    user_id: Optional[str] = Query(None, alias="userId"),
    room_id: Optional[str] = Query(None, alias="roomId"),
    box: Mailbox = Depends(get_mailbox),
):
    if not user_id or not room_id:
        raise HTTPException(status_code=400, detail="User ID and Room ID required")

    if action == "join":
        box.join(room_id, user_id)
        return CallAck()

    if action == "leave":
        box.leave(room_id, user_id)
        return CallAck()

    if action == "poll":
        messages = box.drain(user_id)
        if messages:
            logger.debug("Delivering %d messages to %s", len(messages), user_id)
        return PollResponse(messages=messages)

    raise HTTPException(status_code=400, detail="Invalid action")


@router.post("", response_model=CallAck)
async def send_signal(message: SignalingMessage, signaling: SignalingRouter = Depends(get_router)):
    signaling.route(message)
    return CallAck()


@router.get("/rooms")
async def list_call_rooms(box: Mailbox = Depends(get_mailbox)):
    """Active call rooms with their member counts."""
    return {"rooms": box.rooms()}
