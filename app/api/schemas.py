"""
Pydantic schemas for request/response validation.
Defines all data transfer objects (DTOs) for the REST API and the
Socket.IO relay envelopes.
"""
import re
from datetime import datetime
from typing import List, Optional, Literal
from pydantic import BaseModel, Field, ConfigDict, HttpUrl, field_validator, model_validator
from db.models import PostType


def _reject_nulls(data, fields):
    """Explicit nulls are only allowed for columns that may be NULL."""
    if isinstance(data, dict):
        nulls = sorted(name for name in fields if name in data and data[name] is None)
        if nulls:
            raise ValueError(f"{', '.join(nulls)} cannot be null")
    return data


# User Schemas
class UserResponse(BaseModel):
    """
    Public user profile.

    Example:
        ```json
        {
            "id": 1,
            "username": "emon",
            "email": "emon@example.com",
            "first_name": "Emon",
            "last_name": "Hossain",
            "avatar": "https://img.clerk.com/abc.png",
            "created_at": "2025-12-02T10:30:00"
        }
        ```
    """
    id: int
    username: str
    email: str
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    avatar: Optional[str] = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class UserUpdate(BaseModel):
    """Profile fields a user may change; omitted fields stay untouched."""
    username: Optional[str] = Field(None, min_length=3, max_length=50, pattern=r"^[A-Za-z0-9_.-]+$")
    first_name: Optional[str] = Field(None, max_length=100)
    last_name: Optional[str] = Field(None, max_length=100)
    avatar: Optional[HttpUrl] = None

    @model_validator(mode="before")
    @classmethod
    def reject_nulls(cls, data):
        return _reject_nulls(data, ("username",))


# Post Schemas
class PostBase(BaseModel):
    title: str = Field(..., min_length=1, max_length=200)
    description: str = Field(..., min_length=1)
    address: str = Field(..., min_length=1, max_length=300)
    area: float = Field(..., gt=0, description="Floor area in square feet")
    bed: int = Field(1, ge=0)
    bath: int = Field(1, ge=0)
    price: float = Field(..., gt=0)
    discount_price: Optional[float] = Field(None, gt=0)
    offer: bool = False
    parking: bool = False
    furnished: bool = False
    type: Literal["rent", "sale"]
    images: List[HttpUrl] = Field(default_factory=list, max_length=6)


class PostCreate(PostBase):
    """
    Request schema for creating a listing.

    ``discount_price`` is required and must be lower than ``price`` when
    ``offer`` is true; the endpoint enforces that rule so it answers 400.
    """


class PostUpdate(BaseModel):
    """Partial listing update; the offer rule is checked against the merged result."""
    title: Optional[str] = Field(None, min_length=1, max_length=200)
    description: Optional[str] = Field(None, min_length=1)
    address: Optional[str] = Field(None, min_length=1, max_length=300)
    area: Optional[float] = Field(None, gt=0)
    bed: Optional[int] = Field(None, ge=0)
    bath: Optional[int] = Field(None, ge=0)
    price: Optional[float] = Field(None, gt=0)
    discount_price: Optional[float] = Field(None, gt=0)
    offer: Optional[bool] = None
    parking: Optional[bool] = None
    furnished: Optional[bool] = None
    type: Optional[Literal["rent", "sale"]] = None
    images: Optional[List[HttpUrl]] = Field(None, max_length=6)

    @model_validator(mode="before")
    @classmethod
    def reject_nulls(cls, data):
        return _reject_nulls(data, [name for name in cls.model_fields if name != "discount_price"])


class PostResponse(BaseModel):
    id: int
    owner_id: int
    title: str
    description: str
    address: str
    area: float
    bed: int
    bath: int
    price: float
    discount_price: Optional[float] = None
    offer: bool
    parking: bool
    furnished: bool
    type: PostType
    images: List[str]
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


# Conversation Schemas
class ConversationCreate(BaseModel):
    """
    Request schema for opening a conversation with another user.

    Example:
        ```json
        {"participant_id": 2, "post_id": 7}
        ```
    """
    participant_id: int = Field(..., description="User to talk to")
    post_id: Optional[int] = Field(None, description="Listing the conversation is about")


class MessageResponse(BaseModel):
    id: int
    conversation_id: int
    sender_id: int
    receiver_id: int
    content: str
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class ConversationResponse(BaseModel):
    """
    Conversation as seen by one participant.

    Attributes:
        id: Conversation identifier, also the relay room name
        participant_ids: Both member IDs
        partner: The other participant (null if that account was deleted)
        last_message: Most recent persisted message, if any
    """
    id: int
    creator_id: Optional[int] = None
    post_id: Optional[int] = None
    participant_ids: List[int]
    partner: Optional[UserResponse] = None
    last_message: Optional[MessageResponse] = None
    created_at: datetime
    updated_at: datetime


# Message Schemas
class MessageCreate(BaseModel):
    conversation_id: int
    content: str = Field(..., min_length=1, max_length=5000)


class MessageListResponse(BaseModel):
    messages: List[MessageResponse]
    total: int
    limit: int
    offset: int


# Notification Schemas
class NotificationCreate(BaseModel):
    """
    Request schema for notifying another user.

    Example:
        ```json
        {"user_id": 2, "message": "New message from emon", "conversation_id": 4}
        ```
    """
    user_id: int = Field(..., description="Recipient")
    message: str = Field(..., min_length=1, max_length=500)
    conversation_id: Optional[int] = None


class NotificationResponse(BaseModel):
    id: int
    user_id: int
    from_user_id: Optional[int] = None
    conversation_id: Optional[int] = None
    message: str
    is_read: bool
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class DeletedCountResponse(BaseModel):
    deleted: int


class StatusMessage(BaseModel):
    success: bool = True
    message: str


# Error Schemas
class ErrorResponse(BaseModel):
    """Shape of every error body produced by the global exception handlers."""
    success: bool = False
    statusCode: int
    message: str
    stack: Optional[str] = None


# Relay (Socket.IO) Schemas
RESERVED_RELAY_EVENTS = frozenset({
    # Socket.IO client reserved names
    "connect", "connect_error", "disconnect", "disconnecting",
    "newListener", "removeListener", "error", "message",
    # Relay protocol events
    "join_room", "leave_room", "send_message", "receive_message", "relay_error",
})


ROOM_ID_PATTERN = re.compile(r"[0-9]{1,18}")


def _normalize_room_id(value):
    """Canonical room name: the conversation id as a plain decimal string."""
    if isinstance(value, bool) or not isinstance(value, (str, int)):
        raise ValueError("chatId must be a string or integer")
    room_id = str(value).strip()
    if not ROOM_ID_PATTERN.fullmatch(room_id):
        raise ValueError("chatId must be a conversation id")
    return str(int(room_id))


class RelayRoomRequest(BaseModel):
    """
    Client payload of ``join_room`` / ``leave_room``.

    Clients send either the bare conversation id or ``{"chatId": ...}``.
    """
    chatId: str = Field(..., max_length=64)

    @field_validator("chatId", mode="before")
    @classmethod
    def normalize_chat_id(cls, value):
        return _normalize_room_id(value)


class RelayMessage(BaseModel):
    """
    Client payload of ``send_message``.

    Attributes:
        chatId: Conversation id; names the room for the room channel
        to: Event name used for the direct channel (usually the recipient's id)

    Any additional fields (text, sender, timestamps...) are carried through
    untouched.
    """
    chatId: str = Field(..., max_length=64)
    to: str = Field(..., min_length=1, max_length=128)

    model_config = ConfigDict(extra="allow")

    @field_validator("chatId", mode="before")
    @classmethod
    def normalize_chat_id(cls, value):
        return _normalize_room_id(value)

    @field_validator("to", mode="before")
    @classmethod
    def check_target(cls, value):
        if isinstance(value, bool) or not isinstance(value, (str, int)):
            raise ValueError("to must be a string or integer")
        target = str(value).strip()
        if target in RESERVED_RELAY_EVENTS:
            raise ValueError(f"'{target}' is a reserved event name")
        return target


class RelayErrorEvent(BaseModel):
    """Server → client ``relay_error`` payload."""
    event: str
    code: str
    message: str
