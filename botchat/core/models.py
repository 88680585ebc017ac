from datetime import datetime
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field

USER_SENDER = "user"
NEW_CHAT_LABEL = "New Chat"


class AuthStatus(str, Enum):
    """Three-valued authentication signal."""

    LOADING = "loading"
    AUTHENTICATED = "authenticated"
    UNAUTHENTICATED = "unauthenticated"


class _GraphQLModel(BaseModel):
    # Hasura returns camelCase keys; Python code uses snake_case
    model_config = ConfigDict(populate_by_name=True, frozen=True)


class User(_GraphQLModel):
    id: str
    email: Optional[str] = None


class Message(_GraphQLModel):
    """A chat message; sender is "user" or the bot's tag."""

    id: str
    content: str
    sender: str
    created_at: Optional[datetime] = Field(default=None, alias="createdAt")
    chat_id: Optional[str] = Field(default=None, alias="chatId")

    @property
    def from_user(self) -> bool:
        return self.sender == USER_SENDER


class MessagePreview(_GraphQLModel):
    content: str


class Conversation(_GraphQLModel):
    """A chat as listed in the sidebar, with at most one preview message."""

    id: str
    created_at: Optional[datetime] = Field(default=None, alias="createdAt")
    user_id: Optional[str] = Field(default=None, alias="userId")
    messages: List[MessagePreview] = Field(default_factory=list)

    @property
    def preview(self) -> str:
        if self.messages and self.messages[0].content:
            return self.messages[0].content
        return NEW_CHAT_LABEL


class BotReply(_GraphQLModel):
    response: Optional[str] = None


def order_messages(messages: List[Message]) -> List[Message]:
    """Ascending by creation time; ties keep delivery order."""
    if any(m.created_at is None for m in messages):
        return list(messages)
    return sorted(messages, key=lambda item: item.created_at)


def order_conversations(conversations: List[Conversation]) -> List[Conversation]:
    """Descending by creation time; ties keep delivery order."""
    if any(c.created_at is None for c in conversations):
        return list(conversations)
    return sorted(conversations, key=lambda item: item.created_at, reverse=True)
