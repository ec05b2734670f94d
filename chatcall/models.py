from enum import Enum
from pydantic import BaseModel, Field
from typing import Optional, Dict, Any


class MessageType(str, Enum):
    JOIN_CALL = "join_call"
    LEAVE_CALL = "leave_call"
    USER_JOINED = "user_joined"
    USER_LEFT = "user_left"
    OFFER = "offer"
    ANSWER = "answer"
    ICE_CANDIDATE = "ice_candidate"
    TOGGLE_AUDIO = "toggle_audio"
    TOGGLE_VIDEO = "toggle_video"


# Negotiation payloads only ever go to the peer they were generated for
UNICAST_TYPES = frozenset({MessageType.OFFER, MessageType.ANSWER, MessageType.ICE_CANDIDATE})


class SignalingData(BaseModel):
    user_name: Optional[str] = Field(default=None, alias="userName")
    offer: Optional[Dict[str, Any]] = None
    answer: Optional[Dict[str, Any]] = None
    candidate: Optional[Dict[str, Any]] = None
    enabled: Optional[bool] = None

    class Config:
        populate_by_name = True
        extra = "allow"


class SignalingMessage(BaseModel):
    type: str
    room_id: str = Field(alias="roomId", min_length=1)
    sender: str = Field(alias="from", min_length=1)
    to: Optional[str] = None
    data: SignalingData = Field(default_factory=SignalingData)

    class Config:
        populate_by_name = True

    @property
    def message_type(self) -> Optional[MessageType]:
        try:
            return MessageType(self.type)
        except ValueError:
            return None

    def to_wire(self) -> Dict[str, Any]:
        """JSON-compatible dict in the camelCase shape clients poll."""
        return self.model_dump(by_alias=True, exclude_none=True)


class CallAck(BaseModel):
    success: bool = True


class PollResponse(BaseModel):
    messages: list[Dict[str, Any]]
