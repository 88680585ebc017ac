import asyncio
import threading
import time
from concurrent.futures import Future
from functools import lru_cache, partial
from typing import Any, Callable, Dict, List, Optional

from botchat.client import ChatClient
from botchat.core.graphql import BackendError
from botchat.core.models import AuthStatus, Conversation, Message
from botchat.infra.logger import logger
from botchat.infra.metrics import record_latency_metric


CallableWithClient = Callable[[ChatClient], Any]
manager_logger = logger.getChild("BackgroundClientManager")


class MessageFeed:
    """Latest message snapshot of one subscription, readable from any thread."""

    def __init__(self, chat_id: str):
        self.chat_id = chat_id
        self._lock = threading.Lock()
        self._messages: List[Message] = []
        self._loaded = False
        self._error: Optional[str] = None
        self._version = 0

    def publish(self, messages: List[Message]) -> None:
        with self._lock:
            self._messages = list(messages)
            self._loaded = True
            self._version += 1

    def fail(self, error: str) -> None:
        with self._lock:
            self._error = error
            self._version += 1

    def messages(self) -> List[Message]:
        with self._lock:
            return list(self._messages)

    @property
    def loaded(self) -> bool:
        with self._lock:
            return self._loaded

    @property
    def error(self) -> Optional[str]:
        with self._lock:
            return self._error

    @property
    def version(self) -> int:
        with self._lock:
            return self._version


class SubscriptionHandle:
    """Cancellable binding between a feed and its subscription task."""

    def __init__(self, feed: MessageFeed, future: Future):
        self.feed = feed
        self._future = future

    @property
    def chat_id(self) -> str:
        return self.feed.chat_id

    @property
    def active(self) -> bool:
        return not self._future.done()

    def cancel(self) -> None:
        self._future.cancel()


async def _pump_messages(client: ChatClient, feed: MessageFeed) -> None:
    pump_logger = logger.getChild("MessageFeed")
    try:
        async for messages in client.watch_messages(feed.chat_id):
            feed.publish(messages)
    except BackendError as exc:
        pump_logger.warning("Subscription for chat %s failed: %s", feed.chat_id, exc)
        feed.fail(str(exc))
    else:
        pump_logger.debug("Subscription for chat %s completed", feed.chat_id)


class ClientWorker:
    """Run a ChatClient inside a persistent background event loop."""

    def __init__(self, session_key: str, client_factory: Callable[[], ChatClient] = ChatClient):
        self.session_key = session_key
        self._client_factory = client_factory
        self._thread: Optional[threading.Thread] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._client: Optional[ChatClient] = None
        self._startup_future: Future = Future()
        self._shutdown_event = threading.Event()
        self._lock = threading.Lock()
        self._logger = logger.getChild(f"BackgroundClient[{session_key}]")
        self._started_at: Optional[float] = None
        self._ready_at: Optional[float] = None
        self._last_error: Optional[BaseException] = None

    def start(self) -> Future:
        with self._lock:
            if self._thread and self._thread.is_alive():
                return self._startup_future
            if self._startup_future.done():
                return self._startup_future

            self._started_at = time.perf_counter()
            self._thread = threading.Thread(target=self._run, name="chat-worker", daemon=True)
            self._thread.start()
            return self._startup_future

    def _run(self) -> None:
        loop = asyncio.new_event_loop()
        self._loop = loop
        asyncio.set_event_loop(loop)

        stage_metrics = []
        overall_start = time.perf_counter()
        try:
            ctor_start = time.perf_counter()
            client = self._client_factory()
            stage_metrics.append(("ctor", time.perf_counter() - ctor_start))

            init_start = time.perf_counter()
            loop.run_until_complete(client.initialize())
            stage_metrics.append(("initialize", time.perf_counter() - init_start))

            self._client = client
            elapsed = time.perf_counter() - overall_start
            self._ready_at = time.perf_counter()
            record_latency_metric(
                label="background_client_bootstrap",
                stages=stage_metrics,
                total_seconds=elapsed,
                extra={"session": self.session_key, "status": "success"},
            )
            self._startup_future.set_result(True)
            self._logger.info("Background chat client ready in %.0fms", elapsed * 1000)
            loop.run_forever()
        except Exception as exc:
            elapsed = time.perf_counter() - overall_start
            self._last_error = exc
            record_latency_metric(
                label="background_client_bootstrap",
                stages=stage_metrics,
                total_seconds=elapsed,
                extra={
                    "session": self.session_key,
                    "status": "error",
                    "error_message": str(exc),
                },
            )
            self._logger.exception("Background chat client failed to start")
            if not self._startup_future.done():
                self._startup_future.set_exception(exc)
        finally:
            pending = [task for task in asyncio.all_tasks(loop) if not task.done()]
            for task in pending:
                task.cancel()
            if pending:
                loop.run_until_complete(asyncio.gather(*pending, return_exceptions=True))
            loop.close()
            self._shutdown_event.set()

    def is_ready(self) -> bool:
        fut = self._startup_future
        return fut.done() and fut.exception() is None

    @property
    def loop(self) -> asyncio.AbstractEventLoop:
        if not self._loop:
            raise RuntimeError("Background loop not initialized yet")
        return self._loop

    @property
    def client(self) -> ChatClient:
        if not self._client:
            raise RuntimeError("Background client not initialized yet")
        return self._client

    def status(self) -> Dict[str, Any]:
        return {
            "ready": self.is_ready(),
            "error": str(self._last_error) if self._last_error else None,
            "started_at": self._started_at,
            "ready_at": self._ready_at,
        }

    def run_sync(self, func: CallableWithClient) -> Any:
        future: Future = Future()

        def _invoke():
            try:
                future.set_result(func(self.client))
            except Exception as exc:
                future.set_exception(exc)

        self.loop.call_soon_threadsafe(_invoke)
        return future.result()

    def spawn(self, coro_factory: CallableWithClient) -> Future:
        """Schedule a coroutine on the worker loop without waiting for it."""
        return asyncio.run_coroutine_threadsafe(coro_factory(self.client), self.loop)

    def run_async(self, coro_factory: CallableWithClient) -> Any:
        return self.spawn(coro_factory).result()

    def shutdown(self):
        if not self._loop or self._loop.is_closed():
            return
        self.loop.call_soon_threadsafe(self.loop.stop)
        self._shutdown_event.wait(timeout=5)


class ClientBridge:
    """Thread-safe facade exposed to the Streamlit layer."""

    def __init__(self, worker: ClientWorker):
        self._worker = worker

    def wait_until_ready(self, timeout: Optional[float] = None) -> None:
        self._worker.start().result(timeout=timeout)

    def is_ready(self) -> bool:
        fut = self._worker.start()
        return fut.done() and not fut.cancelled() and fut.exception() is None

    def get_error(self) -> Optional[BaseException]:
        fut = self._worker.start()
        if fut.done() and fut.exception():
            return fut.exception()
        return None

    # Identity helpers
    def auth_status(self) -> AuthStatus:
        if not self.is_ready():
            return AuthStatus.LOADING
        return self._worker.run_sync(lambda client: client.status)

    def get_user_id(self) -> Optional[str]:
        return self._worker.run_sync(lambda client: client.user_id)

    def get_email(self) -> Optional[str]:
        return self._worker.run_sync(lambda client: client.email)

    def sign_up(self, email: str, password: str):
        return self._worker.run_async(lambda client: client.sign_up(email, password))

    def sign_in(self, email: str, password: str):
        return self._worker.run_async(lambda client: client.sign_in(email, password))

    def sign_out(self) -> None:
        self._worker.run_async(lambda client: client.sign_out())

    # Conversation helpers
    def list_chats(self) -> List[Conversation]:
        return self._worker.run_async(lambda client: client.list_chats())

    def create_chat(self) -> str:
        return self._worker.run_async(lambda client: client.create_chat())

    # Message helpers
    def insert_message(self, chat_id: str, content: str) -> str:
        return self._worker.run_async(lambda client: client.insert_message(chat_id, content))

    def request_bot_reply(self, chat_id: str, message: str) -> Future:
        """Trigger the bot without blocking the caller; the reply arrives via the feed."""
        return self._worker.spawn(lambda client: client.trigger_bot(chat_id, message))

    def subscribe_messages(self, chat_id: str) -> SubscriptionHandle:
        feed = MessageFeed(chat_id)
        future = self._worker.spawn(lambda client: _pump_messages(client, feed))
        return SubscriptionHandle(feed, future)

    # Shutdown
    def close(self):
        self._worker.shutdown()


class BackgroundClientManager:
    """Manage background ChatClient workers keyed by browser session."""

    def __init__(self, client_factory: Callable[[], ChatClient] = ChatClient):
        self._workers: Dict[str, ClientWorker] = {}
        self._lock = threading.Lock()
        self._client_factory = client_factory

    def get_or_create(self, session_key: str, device_key: Optional[str] = None) -> ClientBridge:
        """Return the bridge for a session, starting its worker on first use.

        ``device_key`` identifies the browser; it scopes the persisted session.
        """
        with self._lock:
            worker = self._workers.get(session_key)
            if worker is None:
                manager_logger.info("Starting chat client worker for session=%s", session_key)
                factory = self._client_factory
                if device_key:
                    factory = partial(self._client_factory, device_key=device_key)
                worker = ClientWorker(session_key, client_factory=factory)
                self._workers[session_key] = worker
            worker.start()
            return ClientBridge(worker)

    def discard(self, session_key: str) -> None:
        with self._lock:
            worker = self._workers.pop(session_key, None)
        if worker:
            worker.shutdown()

    def shutdown_all(self):
        with self._lock:
            workers = list(self._workers.values())
            self._workers.clear()
        for worker in workers:
            worker.shutdown()


@lru_cache(maxsize=1)
def get_background_client_manager() -> BackgroundClientManager:
    return BackgroundClientManager()
