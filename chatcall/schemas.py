from pydantic import BaseModel, Field
from typing import Optional
from datetime import datetime


class UserCreate(BaseModel):
    email: str = Field(min_length=3, description="Email reported by the identity provider")
    username: str = Field(min_length=1, max_length=64)
    full_name: Optional[str] = None
    avatar_url: Optional[str] = None
    country: Optional[str] = None


class UserRead(BaseModel):
    id: str
    email: str
    username: str
    full_name: Optional[str]
    avatar_url: Optional[str]
    country: Optional[str]
    is_online: bool
    last_seen_at: datetime
    created_at: datetime

    class Config:
        from_attributes = True


class UserSummary(BaseModel):
    id: str
    username: str
    full_name: Optional[str]
    avatar_url: Optional[str]

    class Config:
        from_attributes = True


class UserStatusUpdate(BaseModel):
    user_id: str
    is_online: bool


class UserStatusRead(BaseModel):
    is_online: bool
    last_seen_at: datetime


class RoomCreate(BaseModel):
    name: str = Field(min_length=1, max_length=255)
    description: Optional[str] = None
    is_private: bool = False
    max_participants: int = Field(default=50, ge=1, le=1000)
    created_by_id: str


class ParticipantRead(BaseModel):
    user_id: str
    role: str
    joined_at: datetime
    user: UserSummary

    class Config:
        from_attributes = True


class RoomRead(BaseModel):
    id: str
    name: str
    description: Optional[str]
    is_private: bool
    max_participants: int
    created_by_id: str
    created_at: datetime
    participants: list[ParticipantRead] = []

    class Config:
        from_attributes = True


class RoomJoin(BaseModel):
    user_id: str


class MessageCreate(BaseModel):
    sender_id: str
    content: str = Field(min_length=1)
    message_type: str = "text"
    file_url: Optional[str] = None


class MessageRead(BaseModel):
    id: int
    room_id: str
    sender_id: str
    content: str
    message_type: str
    file_url: Optional[str]
    created_at: datetime
    sender: UserSummary

    class Config:
        from_attributes = True


class PrivateMessageCreate(BaseModel):
    sender_id: str
    receiver_id: str
    content: str = Field(min_length=1)
    message_type: str = "text"
    file_url: Optional[str] = None


class PrivateMessageRead(BaseModel):
    id: int
    sender_id: str
    receiver_id: str
    content: str
    message_type: str
    file_url: Optional[str]
    is_read: bool
    created_at: datetime

    class Config:
        from_attributes = True


class FriendRequestCreate(BaseModel):
    requester_id: str
    receiver_id: str


class FriendshipUpdate(BaseModel):
    user_id: str = Field(description="Must be the receiver of the request")
    action: str = Field(description="accept or reject")


class FriendshipRead(BaseModel):
    id: str
    requester_id: str
    receiver_id: str
    status: str
    created_at: datetime
    requester: UserSummary
    receiver: UserSummary

    class Config:
        from_attributes = True


class FriendshipOverview(BaseModel):
    pending: list[FriendshipRead]
    accepted: list[FriendshipRead]
