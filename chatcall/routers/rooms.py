from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy import or_
from sqlalchemy.orm import Session
from sqlalchemy.exc import SQLAlchemyError
import logging

from chatcall.db import get_db
from chatcall.db_models import ChatRoom, Message, RoomParticipant, User
from chatcall.schemas import MessageCreate, MessageRead, ParticipantRead, RoomCreate, RoomJoin, RoomRead

router = APIRouter(prefix="/rooms", tags=["rooms"])
logger = logging.getLogger(__name__)


def _get_room(db: Session, room_id: str) -> ChatRoom:
    room = db.get(ChatRoom, room_id)
    if not room:
        raise HTTPException(status_code=404, detail="Room not found")
    return room


def _membership(db: Session, room_id: str, user_id: str) -> RoomParticipant | None:
    return (
        db.query(RoomParticipant)
        .filter(RoomParticipant.room_id == room_id, RoomParticipant.user_id == user_id)
        .first()
    )


@router.post("", response_model=RoomRead, status_code=201)
def create_room(payload: RoomCreate, db: Session = Depends(get_db)):
    if not db.get(User, payload.created_by_id):
        raise HTTPException(status_code=404, detail="Creator not found")

    room = ChatRoom(
        name=payload.name.strip(),
        description=payload.description,
        is_private=payload.is_private,
        max_participants=payload.max_participants,
        created_by_id=payload.created_by_id,
    )
    # The creator is the room's first member and its admin
    room.participants.append(RoomParticipant(user_id=payload.created_by_id, role="admin"))
    try:
        db.add(room)
        db.commit()
        db.refresh(room)
        logger.info("Created room %s (%s) by %s", room.id, room.name, room.created_by_id)
    except SQLAlchemyError as e:
        db.rollback()
        logger.exception("Failed to create room: %s", e)
        raise HTTPException(status_code=500, detail="Database error while creating room")
    return room


@router.get("", response_model=list[RoomRead])
def list_rooms(
    q: str | None = Query(None, description="Search public rooms by name or description"),
    user_id: str | None = Query(None, alias="userId", description="Rooms the user belongs to"),
    limit: int = Query(50, ge=1, le=500),
    db: Session = Depends(get_db),
):
    query = db.query(ChatRoom)
    if q:
        pattern = f"%{q}%"
        query = query.filter(ChatRoom.is_private.is_(False)).filter(
            or_(ChatRoom.name.ilike(pattern), ChatRoom.description.ilike(pattern))
        )
    elif user_id:
        query = query.join(RoomParticipant).filter(RoomParticipant.user_id == user_id)
    else:
        query = query.filter(ChatRoom.is_private.is_(False))
    return query.order_by(ChatRoom.created_at.desc()).limit(limit).all()


@router.post("/{room_id}/join", response_model=ParticipantRead, status_code=201)
def join_room(room_id: str, payload: RoomJoin, db: Session = Depends(get_db)):
    room = _get_room(db, room_id)
    if not db.get(User, payload.user_id):
        raise HTTPException(status_code=404, detail="User not found")
    if _membership(db, room_id, payload.user_id):
        raise HTTPException(status_code=409, detail="User is already a member of this room")
    if len(room.participants) >= room.max_participants:
        raise HTTPException(status_code=403, detail="Room is at maximum capacity")

    participant = RoomParticipant(room_id=room_id, user_id=payload.user_id, role="member")
    try:
        db.add(participant)
        db.commit()
        db.refresh(participant)
    except SQLAlchemyError as e:
        db.rollback()
        logger.exception("Failed to join room %s: %s", room_id, e)
        raise HTTPException(status_code=500, detail="Database error while joining room")
    return participant


@router.get("/{room_id}/participants", response_model=list[ParticipantRead])
def list_participants(room_id: str, db: Session = Depends(get_db)):
    _get_room(db, room_id)
    return (
        db.query(RoomParticipant)
        .filter(RoomParticipant.room_id == room_id)
        .order_by(RoomParticipant.joined_at)
        .all()
    )


@router.get("/{room_id}/messages", response_model=list[MessageRead])
def list_messages(
    room_id: str,
    limit: int = Query(50, ge=1, le=500),
    offset: int = Query(0, ge=0),
    db: Session = Depends(get_db),
):
    _get_room(db, room_id)
    rows = (
        db.query(Message)
        .filter(Message.room_id == room_id)
        .order_by(Message.id.desc())
        .offset(offset)
        .limit(limit)
        .all()
    )
    return list(reversed(rows))


@router.post("/{room_id}/messages", response_model=MessageRead, status_code=201)
def send_message(room_id: str, payload: MessageCreate, db: Session = Depends(get_db)):
    _get_room(db, room_id)
    if not payload.content.strip():
        raise HTTPException(status_code=400, detail="Message content is empty")
    if not _membership(db, room_id, payload.sender_id):
        raise HTTPException(status_code=403, detail="User is not a member of this room")

    message = Message(
        room_id=room_id,
        sender_id=payload.sender_id,
        content=payload.content.strip(),
        message_type=payload.message_type,
        file_url=payload.file_url,
    )
    try:
        db.add(message)
        db.commit()
        db.refresh(message)
    except SQLAlchemyError as e:
        db.rollback()
        logger.exception("Failed to save message in room %s: %s", room_id, e)
        raise HTTPException(status_code=500, detail="Database error while saving message")
    return message
