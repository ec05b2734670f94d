import uuid
from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import relationship
from datetime import datetime
from .db import Base


def _uuid() -> str:
    return uuid.uuid4().hex


class User(Base):
    __tablename__ = "users"

    id = Column(String(32), primary_key=True, default=_uuid)
    email = Column(String(255), unique=True, index=True, nullable=False)
    username = Column(String(64), unique=True, index=True, nullable=False)
    full_name = Column(String(255), nullable=True)
    avatar_url = Column(String(512), nullable=True)
    country = Column(String(64), index=True, nullable=True)
    is_online = Column(Boolean, default=False, nullable=False)
    last_seen_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)


class ChatRoom(Base):
    __tablename__ = "chat_rooms"

    id = Column(String(32), primary_key=True, default=_uuid)
    name = Column(String(255), index=True, nullable=False)
    description = Column(Text, nullable=True)
    is_private = Column(Boolean, default=False, nullable=False)
    max_participants = Column(Integer, default=50, nullable=False)
    created_by_id = Column(String(32), ForeignKey("users.id"), nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    created_by = relationship("User")
    participants = relationship("RoomParticipant", back_populates="room", cascade="all, delete-orphan")


class RoomParticipant(Base):
    __tablename__ = "room_participants"
    __table_args__ = (UniqueConstraint("room_id", "user_id", name="uq_room_participant"),)

    id = Column(Integer, primary_key=True, index=True)
    room_id = Column(String(32), ForeignKey("chat_rooms.id"), index=True, nullable=False)
    user_id = Column(String(32), ForeignKey("users.id"), index=True, nullable=False)
    role = Column(String(16), default="member", nullable=False)
    joined_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    room = relationship("ChatRoom", back_populates="participants")
    user = relationship("User")


class Message(Base):
    __tablename__ = "messages"

    id = Column(Integer, primary_key=True, index=True)
    room_id = Column(String(32), ForeignKey("chat_rooms.id"), index=True, nullable=False)
    sender_id = Column(String(32), ForeignKey("users.id"), index=True, nullable=False)
    content = Column(Text, nullable=False)
    message_type = Column(String(16), default="text", nullable=False)
    file_url = Column(String(512), nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    sender = relationship("User")


class PrivateMessage(Base):
    __tablename__ = "private_messages"

    id = Column(Integer, primary_key=True, index=True)
    sender_id = Column(String(32), ForeignKey("users.id"), index=True, nullable=False)
    receiver_id = Column(String(32), ForeignKey("users.id"), index=True, nullable=False)
    content = Column(Text, nullable=False)
    message_type = Column(String(16), default="text", nullable=False)
    file_url = Column(String(512), nullable=True)
    is_read = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)


class Friendship(Base):
    __tablename__ = "friendships"
    __table_args__ = (UniqueConstraint("requester_id", "receiver_id", name="uq_friendship_pair"),)

    id = Column(String(32), primary_key=True, default=_uuid)
    requester_id = Column(String(32), ForeignKey("users.id"), index=True, nullable=False)
    receiver_id = Column(String(32), ForeignKey("users.id"), index=True, nullable=False)
    # pending -> accepted; a declined request is deleted
    status = Column(String(16), default="pending", index=True, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    requester = relationship("User", foreign_keys=[requester_id])
    receiver = relationship("User", foreign_keys=[receiver_id])
