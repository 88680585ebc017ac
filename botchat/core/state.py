"""Per-session component state for the chat UI.

These objects hold what each screen owns (form fields, selection, composer,
subscription binding) and talk to the backend through the synchronous
``ClientBridge`` interface. The Streamlit layer only renders them.
"""

import time
from concurrent.futures import Future
from dataclasses import dataclass, field
from enum import Enum
from functools import partial
from typing import List, Optional

from botchat.core.graphql import BackendError
from botchat.core.models import AuthStatus, Conversation, Message, order_messages
from botchat.infra.logger import logger

state_logger = logger.getChild("UIState")

RESUBSCRIBE_DELAY = 2.0


class GateView(str, Enum):
    PLACEHOLDER = "placeholder"
    AUTH_FORM = "auth_form"
    WORKSPACE = "workspace"


def resolve_gate(status: AuthStatus) -> GateView:
    """Pick the single subtree the session gate renders for a status."""
    if status is AuthStatus.LOADING:
        return GateView.PLACEHOLDER
    if status is AuthStatus.UNAUTHENTICATED:
        return GateView.AUTH_FORM
    if status is AuthStatus.AUTHENTICATED:
        return GateView.WORKSPACE
    raise ValueError(f"Unknown auth status: {status!r}")


@dataclass
class AuthFormState:
    email: str = ""
    password: str = ""
    is_sign_up: bool = False
    loading: bool = False
    error: Optional[str] = None
    notice: Optional[str] = None

    @property
    def title(self) -> str:
        return "Sign Up" if self.is_sign_up else "Sign In"

    @property
    def submit_label(self) -> str:
        return "Loading..." if self.loading else self.title

    @property
    def toggle_label(self) -> str:
        if self.is_sign_up:
            return "Already have an account? Sign In"
        return "Don't have an account? Sign Up"

    def toggle_mode(self) -> None:
        # Fields survive a mode switch
        self.is_sign_up = not self.is_sign_up

    def start_submit(self) -> bool:
        """Mark a submission as outstanding; dropped while one is already pending.

        The caller redraws with the disabled "Loading..." control before
        calling ``complete_submit``.
        """
        if self.loading:
            return False
        if not self.email or not self.password:
            self.error = "Email and password are required."
            return False

        self.loading = True
        self.error = None
        self.notice = None
        return True

    def complete_submit(self, backend) -> bool:
        """Send the current fields to the provider for an outstanding submission."""
        if not self.loading:
            return False
        try:
            if self.is_sign_up:
                session = backend.sign_up(self.email, self.password)
                if session is None:
                    self.notice = "Check your inbox to verify your email, then sign in."
            else:
                backend.sign_in(self.email, self.password)
            return True
        except BackendError as exc:
            state_logger.warning("%s failed for %s: %s", self.title, self.email, exc)
            self.error = exc.message
            return False
        finally:
            self.loading = False


@dataclass
class ChatListState:
    chats: List[Conversation] = field(default_factory=list)
    active_chat_id: Optional[str] = None
    loaded: bool = False
    error: Optional[str] = None

    def refresh(self, backend) -> None:
        try:
            self.chats = backend.list_chats()
            self.loaded = True
            self.error = None
        except BackendError as exc:
            state_logger.warning("Could not load chats: %s", exc)
            self.error = exc.message

    def ensure_loaded(self, backend) -> None:
        if not self.loaded:
            self.refresh(backend)

    def select(self, chat_id: str) -> None:
        self.active_chat_id = chat_id

    def is_active(self, chat_id: str) -> bool:
        return self.active_chat_id == chat_id

    def new_chat(self, backend) -> Optional[str]:
        """Create a chat, reload the list and make the new chat active."""
        try:
            chat_id = backend.create_chat()
        except BackendError as exc:
            state_logger.warning("Could not create chat: %s", exc)
            self.error = exc.message
            return None
        self.refresh(backend)
        self.select(chat_id)
        return chat_id


class MessageViewState:
    """Composer text plus the live subscription of the active chat.

    A subscription that fails or completes (typically the socket closing
    when the access token it was opened with expires) is replaced on the
    next ``bind`` for the same chat. The first replacement is immediate;
    further ones, while no snapshot has come through, wait
    ``resubscribe_delay`` seconds. The last snapshot stays on screen until
    the new subscription delivers one.
    """

    def __init__(self, resubscribe_delay: float = RESUBSCRIBE_DELAY):
        self.composer = ""
        self.error: Optional[str] = None
        self.resubscribe_delay = resubscribe_delay
        self._handle = None
        self._stale: Optional[List[Message]] = None
        self._attempts = 0
        self._dead_since: Optional[float] = None
        self._reply: Optional[Future] = None

    @property
    def chat_id(self) -> Optional[str]:
        return self._handle.chat_id if self._handle else None

    @staticmethod
    def _is_dead(handle) -> bool:
        return not handle.active or handle.feed.error is not None

    def _resubscribe_due(self) -> bool:
        handle = self._handle
        if handle.feed.loaded:
            self._attempts = 0
        if not self._attempts:
            return True
        now = time.monotonic()
        if self._dead_since is None:
            self._dead_since = now
        return now - self._dead_since >= self.resubscribe_delay

    def bind(self, backend, chat_id: str) -> None:
        """Subscribe to ``chat_id``, replacing a previous or dead subscription."""
        handle = self._handle
        if handle is not None and handle.chat_id == chat_id:
            if not self._is_dead(handle) or not self._resubscribe_due():
                return
            if handle.feed.loaded:
                self._stale = handle.feed.messages()
            handle.cancel()
            self._attempts += 1
            state_logger.info(
                "Resubscribing to chat %s (attempt %d): %s",
                chat_id,
                self._attempts,
                handle.feed.error or "stream completed",
            )
        else:
            if handle is not None:
                handle.cancel()
                state_logger.debug("Unsubscribed from chat %s", handle.chat_id)
            self.error = None
            self._stale = None
            self._attempts = 0

        self._dead_since = None
        self._handle = backend.subscribe_messages(chat_id)
        state_logger.debug("Subscribed to chat %s", chat_id)

    def unbind(self) -> None:
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None
        self._stale = None
        self._attempts = 0

    @property
    def feed_error(self) -> Optional[str]:
        return self._handle.feed.error if self._handle else None

    @property
    def loading(self) -> bool:
        """True until the first snapshot (or a subscription error) arrives."""
        if self._handle is None:
            return True
        feed = self._handle.feed
        return not feed.loaded and feed.error is None and self._stale is None

    @property
    def messages(self) -> List[Message]:
        if self._handle is None:
            return []
        feed = self._handle.feed
        if not feed.loaded and self._stale is not None:
            return order_messages(self._stale)
        return order_messages(feed.messages())

    @property
    def awaiting_reply(self) -> bool:
        return self._reply is not None and not self._reply.done()

    def send(self, backend) -> bool:
        """Persist the composer text as a user message, then trigger the bot.

        Blank text is ignored. The composer is cleared before any request is
        made and is not restored if a request fails. The bot trigger runs in
        the background; its failure lands on ``error``.
        """
        content = self.composer
        if not content.strip() or self._handle is None:
            return False

        chat_id = self._handle.chat_id
        self.composer = ""
        self.error = None
        try:
            backend.insert_message(chat_id, content)
        except BackendError as exc:
            state_logger.warning("Sending message to chat %s failed: %s", chat_id, exc)
            self.error = exc.message
            return False

        self._reply = backend.request_bot_reply(chat_id, content)
        self._reply.add_done_callback(partial(self._reply_finished, chat_id))
        return True

    def _reply_finished(self, chat_id: str, future: Future) -> None:
        if future.cancelled():
            return
        exc = future.exception()
        if exc is None:
            return
        if isinstance(exc, BackendError):
            state_logger.warning("Bot trigger for chat %s failed: %s", chat_id, exc)
            self.error = exc.message
        else:
            state_logger.error("Bot trigger for chat %s crashed", chat_id, exc_info=exc)
            self.error = str(exc)


class WorkspaceState:
    """Everything the signed-in screen owns; dropped on sign-out."""

    def __init__(self):
        self.chat_list = ChatListState()
        self.message_view = MessageViewState()

    def sign_out(self, backend) -> None:
        self.message_view.unbind()
        backend.sign_out()
