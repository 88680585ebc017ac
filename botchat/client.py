from typing import AsyncIterator, List, Optional

from botchat.auth import AuthClient, AuthError, AuthSession
from botchat.config import BackendConfig, get_backend_config
from botchat.core.graphql import (
    GET_CHATS,
    GET_MESSAGES,
    INSERT_CHAT,
    INSERT_MESSAGE,
    SEND_MESSAGE_ACTION,
    BackendError,
    GraphQLClient,
)
from botchat.core.models import (
    AuthStatus,
    BotReply,
    Conversation,
    Message,
    order_conversations,
    order_messages,
)
from botchat.infra.logger import logger


class ChatClient:
    """Async facade over the Nhost auth service and the Hasura GraphQL API.

    One instance serves one browser session; it is driven from the
    background worker's event loop.
    """

    def __init__(
        self,
        config: Optional[BackendConfig] = None,
        auth: Optional[AuthClient] = None,
        graphql: Optional[GraphQLClient] = None,
        device_key: Optional[str] = None,
    ):
        self.config = config or get_backend_config()
        self.auth = auth or AuthClient(
            self.config.auth_url,
            timeout=self.config.request_timeout,
            persist_session=self.config.persist_session,
            device_key=device_key,
        )
        self.graphql = graphql or GraphQLClient(
            self.config.graphql_url,
            self.config.graphql_ws_url,
            token_provider=self._access_token,
            timeout=self.config.request_timeout,
        )
        self.logger = logger.getChild("ChatClient")

    async def initialize(self) -> None:
        """Restore a persisted session if there is one."""
        restored = await self.auth.restore()
        self.logger.info("Chat client initialized (session restored=%s)", restored)

    async def _access_token(self) -> Optional[str]:
        return await self.auth.ensure_fresh(self.config.refresh_margin)

    # Auth

    @property
    def status(self) -> AuthStatus:
        return self.auth.status

    @property
    def user_id(self) -> Optional[str]:
        return self.auth.user_id

    @property
    def email(self) -> Optional[str]:
        return self.auth.email

    async def sign_up(self, email: str, password: str) -> Optional[AuthSession]:
        return await self.auth.sign_up(email, password)

    async def sign_in(self, email: str, password: str) -> Optional[AuthSession]:
        return await self.auth.sign_in(email, password)

    async def sign_out(self) -> None:
        await self.auth.sign_out()

    def _require_user(self) -> str:
        user_id = self.auth.user_id
        if not user_id:
            raise AuthError("Not signed in")
        return user_id

    # Conversations

    async def list_chats(self) -> List[Conversation]:
        """The signed-in user's chats, newest first, each with its latest message."""
        self._require_user()
        data = await self.graphql.execute(GET_CHATS, operation_name="GetChats")
        chats = [Conversation.model_validate(item) for item in data.get("chats") or []]
        return order_conversations(chats)

    async def create_chat(self) -> str:
        user_id = self._require_user()
        data = await self.graphql.execute(
            INSERT_CHAT,
            {"userId": user_id},
            operation_name="InsertChat",
        )
        created = data.get("insert_chats_one")
        if not created or not created.get("id"):
            raise BackendError("Chat creation returned no id")
        self.logger.info("Created chat %s for user=%s", created["id"], user_id)
        return created["id"]

    # Messages

    async def insert_message(self, chat_id: str, content: str) -> str:
        """Persist a message authored by the user."""
        self._require_user()
        data = await self.graphql.execute(
            INSERT_MESSAGE,
            {"chatId": chat_id, "content": content},
            operation_name="InsertMessage",
        )
        created = data.get("insert_messages_one") or {}
        return created.get("id")

    async def trigger_bot(self, chat_id: str, message: str) -> BotReply:
        """Invoke the backend action that makes the bot answer."""
        self._require_user()
        data = await self.graphql.execute(
            SEND_MESSAGE_ACTION,
            {"chatId": chat_id, "message": message},
            operation_name="SendMessageAction",
        )
        return BotReply.model_validate(data.get("sendMessage") or {})

    async def send_message(self, chat_id: str, content: str) -> BotReply:
        """Persist the user's message, then trigger the bot.

        The two calls are not atomic: if the trigger fails the message stays
        persisted without a reply.
        """
        await self.insert_message(chat_id, content)
        return await self.trigger_bot(chat_id, content)

    async def watch_messages(self, chat_id: str) -> AsyncIterator[List[Message]]:
        """Yield the full ordered message list each time the server pushes one."""
        self._require_user()
        async for data in self.graphql.subscribe(
            GET_MESSAGES,
            {"chatId": chat_id},
            operation_name="GetMessages",
        ):
            messages = [Message.model_validate(item) for item in data.get("messages") or []]
            yield order_messages(messages)
