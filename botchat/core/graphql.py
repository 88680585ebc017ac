"""GraphQL operations and transport for the Hasura endpoint.

Queries and mutations go over HTTP with ``httpx``; subscriptions use a
websocket speaking the ``graphql-transport-ws`` subprotocol.
"""

import asyncio
import json
import time
import uuid
from typing import Any, AsyncIterator, Awaitable, Callable, Dict, List, Optional

import httpx
import websockets
from websockets.exceptions import ConnectionClosed

from botchat.infra.logger import logger
from botchat.infra.metrics import record_latency_metric

GRAPHQL_TRANSPORT_WS = "graphql-transport-ws"

GET_CHATS = """
  query GetChats {
    chats(orderBy: { createdAt: desc }) {
      id
      createdAt
      messages(limit: 1, orderBy: { createdAt: desc }) {
        content
      }
    }
  }
"""

GET_MESSAGES = """
  subscription GetMessages($chatId: uuid!) {
    messages(where: { chatId: { _eq: $chatId } }, orderBy: { createdAt: asc }) {
      id
      content
      sender
      createdAt
    }
  }
"""

INSERT_CHAT = """
  mutation InsertChat($userId: String!) {
    insert_chats_one(object: { userId: $userId }) {
      id
    }
  }
"""

INSERT_MESSAGE = """
  mutation InsertMessage($chatId: uuid!, $content: String!) {
    insert_messages_one(object: { chatId: $chatId, content: $content, sender: "user" }) {
      id
    }
  }
"""

SEND_MESSAGE_ACTION = """
  mutation SendMessageAction($chatId: uuid!, $message: String!) {
    sendMessage(chatId: $chatId, message: $message) {
      response
    }
  }
"""

TokenProvider = Callable[[], Awaitable[Optional[str]]]
graphql_logger = logger.getChild("GraphQL")


class BackendError(Exception):
    """Base exception for failures talking to the managed backend."""

    def __init__(self, message: str, status_code: int = 500):
        self.message = message
        self.status_code = status_code
        super().__init__(message)


class GraphQLError(BackendError):
    """The endpoint answered with a GraphQL ``errors`` payload."""

    def __init__(self, errors: List[Dict[str, Any]], status_code: int = 200):
        self.errors = errors
        messages = "; ".join(str(err.get("message", err)) for err in errors) or "Unknown GraphQL error"
        super().__init__(messages, status_code=status_code)


class SubscriptionError(BackendError):
    """The subscription socket failed or the server sent an error frame."""

    def __init__(self, message: str, status_code: int = 502):
        super().__init__(message, status_code=status_code)


async def _no_token() -> Optional[str]:
    return None


class GraphQLClient:
    """Execute operations and open subscriptions against one endpoint."""

    def __init__(
        self,
        url: str,
        ws_url: str,
        token_provider: TokenProvider = _no_token,
        timeout: float = 30.0,
    ):
        self.url = url
        self.ws_url = ws_url
        self.timeout = timeout
        self._token_provider = token_provider

    async def _headers(self) -> Dict[str, str]:
        headers = {"Content-Type": "application/json"}
        token = await self._token_provider()
        if token:
            headers["Authorization"] = f"Bearer {token}"
        return headers

    def _handle_response_error(self, response: httpx.Response) -> None:
        if response.is_success:
            return
        try:
            body = response.json()
        except ValueError:
            body = {}
        if isinstance(body, dict) and body.get("errors"):
            raise GraphQLError(body["errors"], status_code=response.status_code)
        raise BackendError(
            f"GraphQL endpoint returned {response.status_code}: {response.text[:200]}",
            status_code=response.status_code,
        )

    async def execute(
        self,
        document: str,
        variables: Optional[Dict[str, Any]] = None,
        operation_name: Optional[str] = None,
    ) -> Dict[str, Any]:
        """Run a query or mutation and return its ``data`` object."""
        payload: Dict[str, Any] = {"query": document, "variables": variables or {}}
        if operation_name:
            payload["operationName"] = operation_name

        headers = await self._headers()
        started = time.perf_counter()
        status = "error"
        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.post(self.url, json=payload, headers=headers)
            self._handle_response_error(response)
            body = response.json()
            if body.get("errors"):
                raise GraphQLError(body["errors"])
            status = "success"
            return body.get("data") or {}
        except httpx.TimeoutException as exc:
            raise BackendError("GraphQL request timed out", status_code=504) from exc
        except httpx.HTTPError as exc:
            raise BackendError(f"GraphQL request failed: {exc}", status_code=503) from exc
        finally:
            elapsed = time.perf_counter() - started
            graphql_logger.debug(
                "%s finished in %.3fs (status=%s)", operation_name or "operation", elapsed, status
            )
            record_latency_metric(
                label="graphql_request",
                stages=[("http", elapsed)],
                total_seconds=elapsed,
                extra={"operation": operation_name or "anonymous", "status": status},
            )

    async def subscribe(
        self,
        document: str,
        variables: Optional[Dict[str, Any]] = None,
        operation_name: Optional[str] = None,
    ) -> AsyncIterator[Dict[str, Any]]:
        """Yield the ``data`` object of every result the server pushes.

        The socket is closed when the consumer stops iterating or its task
        is cancelled.
        """
        token = await self._token_provider()
        init_payload = {"headers": {"Authorization": f"Bearer {token}"}} if token else {}
        subscription_id = uuid.uuid4().hex
        subscribe_payload: Dict[str, Any] = {"query": document, "variables": variables or {}}
        if operation_name:
            subscribe_payload["operationName"] = operation_name

        try:
            connection = websockets.connect(
                self.ws_url,
                subprotocols=[GRAPHQL_TRANSPORT_WS],
                open_timeout=self.timeout,
            )
            async with connection as ws:
                await ws.send(json.dumps({"type": "connection_init", "payload": init_payload}))
                ack = json.loads(await asyncio.wait_for(ws.recv(), timeout=self.timeout))
                if ack.get("type") != "connection_ack":
                    raise SubscriptionError(f"Expected connection_ack, got {ack.get('type')!r}")

                await ws.send(json.dumps({
                    "id": subscription_id,
                    "type": "subscribe",
                    "payload": subscribe_payload,
                }))
                graphql_logger.debug("Subscription %s opened (%s)", subscription_id, operation_name)

                completed = False
                try:
                    async for raw in ws:
                        frame = json.loads(raw)
                        kind = frame.get("type")
                        if kind == "ping":
                            await ws.send(json.dumps({"type": "pong"}))
                            continue
                        if frame.get("id") != subscription_id:
                            continue
                        if kind == "next":
                            result = frame.get("payload") or {}
                            if result.get("errors"):
                                raise GraphQLError(result["errors"])
                            yield result.get("data") or {}
                        elif kind == "error":
                            raise GraphQLError(frame.get("payload") or [])
                        elif kind == "complete":
                            completed = True
                            return
                finally:
                    if not completed:
                        try:
                            await ws.send(json.dumps({"id": subscription_id, "type": "complete"}))
                        except ConnectionClosed:
                            graphql_logger.debug("Socket already closed for subscription %s", subscription_id)
        except ConnectionClosed as exc:
            raise SubscriptionError(f"Subscription socket closed: {exc}") from exc
        except (OSError, asyncio.TimeoutError) as exc:
            raise SubscriptionError(f"Could not open subscription socket: {exc}", status_code=503) from exc
