# ============================================================================
# RELAY Chat - Event Contracts
# ============================================================================
# Wire envelope (both directions):  {"event": "<name>", "data": {...}}
# Inbound payloads are validated here; anything that does not match is
# rejected with InvalidPayload and the router drops it.
# ============================================================================

from typing import Any, Dict, List, Literal, Optional, Type

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from .errors import InvalidPayload


class InboundEvent(BaseModel):
    """Base for client -> server payloads. Unknown fields are ignored."""

    model_config = ConfigDict(extra="ignore")


class LoginEvent(InboundEvent):
    username: str = Field(min_length=1)


class FriendRequestSendEvent(InboundEvent):
    toUser: str = Field(min_length=1)


class FriendRequestRespondEvent(InboundEvent):
    fromUser: str = Field(min_length=1)
    action: Literal["accept", "reject"]


class HistoryFetchEvent(InboundEvent):
    chatId: str = Field(min_length=1)


class MessageSendEvent(InboundEvent):
    content: str
    type: Literal["text", "image", "gif"] = "text"
    replyTo: Optional[str] = None
    to: Optional[str] = "general"

    @field_validator("content")
    @classmethod
    def content_not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("content cannot be empty")
        return value


class MessageReactEvent(InboundEvent):
    messageId: str = Field(min_length=1)
    emoji: str = Field(min_length=1, max_length=32)
    chatId: str = Field(min_length=1)


class TypingEvent(InboundEvent):
    to: str = Field(min_length=1)


class MessageReadEvent(InboundEvent):
    messageId: str = Field(min_length=1)
    chatId: str = Field(min_length=1)


# ---- Inbound event names ----
USER_LOGIN = "user:login"
FRIEND_REQUEST_SEND = "friend:request:send"
FRIEND_REQUEST_RESPOND = "friend:request:respond"
CHAT_HISTORY_FETCH = "chat:history:fetch"
MESSAGE_SEND = "message:send"
MESSAGE_REACT = "message:react"
MESSAGE_READ = "message:read"
TYPING_START = "typing:start"
TYPING_STOP = "typing:stop"

INBOUND_EVENTS: Dict[str, Type[InboundEvent]] = {
    USER_LOGIN: LoginEvent,
    FRIEND_REQUEST_SEND: FriendRequestSendEvent,
    FRIEND_REQUEST_RESPOND: FriendRequestRespondEvent,
    CHAT_HISTORY_FETCH: HistoryFetchEvent,
    MESSAGE_SEND: MessageSendEvent,
    MESSAGE_REACT: MessageReactEvent,
    MESSAGE_READ: MessageReadEvent,
    TYPING_START: TypingEvent,
    TYPING_STOP: TypingEvent,
}

# ---- Outbound event names ----
USERS_LIST = "users:list"
USERS_ONLINE = "users:online"
USER_UPDATED = "user:updated"
USER_DATA = "user:data"
GROUPS_LIST = "groups:list"
GROUP_CREATED = "group:created"
FRIEND_REQUEST_RECEIVED = "friend:request:received"
FRIEND_REQUEST_ACCEPTED = "friend:request:accepted"
FRIEND_REQUEST_SENT = "friend:request:sent"
FRIEND_ADDED = "friend:added"
MESSAGES_HISTORY = "messages:history"
MESSAGE_NEW = "message:new"
MESSAGE_UPDATED = "message:updated"
TYPING_USER = "typing:user"
ALERT_NEW = "alert:new"


def parse_inbound(event: str, data: Any) -> InboundEvent:
    """Validate an inbound payload against the model registered for `event`."""
    model = INBOUND_EVENTS.get(event)
    if model is None:
        raise InvalidPayload(f"Unknown event '{event}'")
    if not isinstance(data, dict):
        raise InvalidPayload(f"Payload for '{event}' must be an object")
    try:
        return model.model_validate(data)
    except ValidationError as e:
        raise InvalidPayload(f"Invalid payload for '{event}': {e.error_count()} error(s)") from e


def envelope(event: str, data: Any) -> Dict[str, Any]:
    return {"event": event, "data": data}


# ---- Side-channel request bodies (REST) ----

class RegisterRequest(InboundEvent):
    username: str = Field(min_length=1)
    password: str = Field(min_length=1)
    email: Optional[str] = None
    avatar: Optional[str] = None


class LoginRequest(InboundEvent):
    username: str = ""
    password: str = ""


class ProfileUpdates(InboundEvent):
    """Updatable profile fields. A null value means "leave unchanged"."""
    username: Optional[str] = Field(default=None, min_length=1)
    password: Optional[str] = Field(default=None, min_length=1)
    avatar: Optional[str] = None
    email: Optional[str] = None


class UserUpdateRequest(InboundEvent):
    username: str = Field(min_length=1)
    updates: ProfileUpdates


class GroupCreateRequest(InboundEvent):
    name: str
    members: List[str] = Field(default_factory=list)
    createdBy: str = Field(min_length=1)


def parse_body(model: Type[InboundEvent], data: Any) -> InboundEvent:
    """Validate a REST request body. Wrong shapes or types raise InvalidPayload."""
    if not isinstance(data, dict):
        raise InvalidPayload("Request body must be a JSON object")
    try:
        return model.model_validate(data)
    except ValidationError as e:
        fields = ", ".join(".".join(str(p) for p in err["loc"]) for err in e.errors())
        raise InvalidPayload(f"Invalid request body: {fields}") from e
