"""
Core domain logic for the BotChat client.

Example:
    from botchat.core import Conversation, Message, resolve_gate
"""

from botchat.core.graphql import (
    BackendError,
    GraphQLClient,
    GraphQLError,
    SubscriptionError,
)
from botchat.core.models import (
    AuthStatus,
    BotReply,
    Conversation,
    Message,
    User,
)
from botchat.core.state import (
    AuthFormState,
    ChatListState,
    GateView,
    MessageViewState,
    WorkspaceState,
    resolve_gate,
)

__all__ = [
    "BackendError",
    "GraphQLClient",
    "GraphQLError",
    "SubscriptionError",
    "AuthStatus",
    "BotReply",
    "Conversation",
    "Message",
    "User",
    "AuthFormState",
    "ChatListState",
    "GateView",
    "MessageViewState",
    "WorkspaceState",
    "resolve_gate",
]
