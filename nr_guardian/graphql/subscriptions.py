"""
GraphQL subscriptions over WebSocket.

Each subscription owns one socket. The lifecycle is::

    CONNECTING -> ACTIVE -> RECONNECTING -> ACTIVE ... -> CLOSED

A socket failure increments ``reconnect_attempts``. While that count is below
``max_reconnect_attempts`` the socket is reopened after
``reconnect_delay * reconnect_attempts`` seconds. Otherwise the subscription
closes, and ``on_error`` and ``on_close`` each run exactly once.

Events are delivered both to the optional handlers and to an async iterator
on the :class:`Subscription` handle.
"""

from __future__ import annotations

import asyncio
import json
import logging
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, AsyncIterator, Callable, Dict, Mapping, Optional, Set

import aiohttp
from aiohttp import WSMsgType
from graphql import OperationType

from ..config.models import SubscriptionConfig
from ..exceptions import GraphQLError, SubscriptionError, ValidationError
from .documents import operation_type
from .models import GraphQLErrorDetail

logger = logging.getLogger(__name__)


class SubscriptionState(str, Enum):
    CONNECTING = "connecting"
    ACTIVE = "active"
    RECONNECTING = "reconnecting"
    CLOSED = "closed"


class SubscriptionEventKind(str, Enum):
    DATA = "data"
    ERROR = "error"
    COMPLETE = "complete"


@dataclass
class SubscriptionEvent:
    """One item delivered on a subscription channel."""

    kind: SubscriptionEventKind
    payload: Any = None


DataHandler = Callable[[Any], Any]
ErrorHandler = Callable[[Exception], Any]
SimpleHandler = Callable[[], Any]


@dataclass
class SubscriptionHandlers:
    on_data: Optional[DataHandler] = None
    on_error: Optional[ErrorHandler] = None
    on_complete: Optional[SimpleHandler] = None
    on_close: Optional[SimpleHandler] = None


_CLOSED = object()


@dataclass(eq=False)
class Subscription:
    """
    Handle for one active subscription.

    Iterate it to receive :class:`SubscriptionEvent` items; iteration stops
    once the subscription closes.
    """

    id: str
    query: str
    variables: Dict[str, Any]
    handlers: SubscriptionHandlers
    manager: "SubscriptionManager"
    state: SubscriptionState = SubscriptionState.CONNECTING
    reconnect_attempts: int = 0
    ws: Optional[aiohttp.ClientWebSocketResponse] = None
    _events: "asyncio.Queue[Any]" = field(default_factory=asyncio.Queue)
    _task: Optional["asyncio.Task[None]"] = None
    _closed_event: asyncio.Event = field(default_factory=asyncio.Event)

    @property
    def closed(self) -> bool:
        return self.state is SubscriptionState.CLOSED

    async def unsubscribe(self) -> None:
        await self.manager.unsubscribe(self.id)

    async def wait_closed(self) -> None:
        await self._closed_event.wait()

    def __aiter__(self) -> AsyncIterator[SubscriptionEvent]:
        return self._iterate()

    async def _iterate(self) -> AsyncIterator[SubscriptionEvent]:
        while True:
            item = await self._events.get()
            if item is _CLOSED:
                return
            yield item


class SubscriptionManager:
    """
    Opens and supervises subscription sockets.

    Examples:
        ```python
        manager = SubscriptionManager(config.websocket_endpoint, config.api_key)
        subscription = await manager.subscribe(
            "subscription { alertEvents { id title } }",
            on_data=lambda data: print(data),
        )
        async for event in subscription:
            ...
        await manager.close()
        ```
    """

    def __init__(
        self,
        endpoint: str,
        api_key: str,
        config: Optional[SubscriptionConfig] = None,
        session: Optional[aiohttp.ClientSession] = None,
    ):
        self.endpoint = endpoint
        self.api_key = api_key
        self.config = config or SubscriptionConfig()
        self._session = session
        self._owns_session = session is None
        self._subscriptions: Dict[str, Subscription] = {}
        self._handler_tasks: Set["asyncio.Task[Any]"] = set()

    @property
    def active_count(self) -> int:
        return len(self._subscriptions)

    def get(self, subscription_id: str) -> Optional[Subscription]:
        return self._subscriptions.get(subscription_id)

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession()
            self._owns_session = True
        return self._session

    async def subscribe(
        self,
        query: str,
        variables: Optional[Mapping[str, Any]] = None,
        on_data: Optional[DataHandler] = None,
        on_error: Optional[ErrorHandler] = None,
        on_complete: Optional[SimpleHandler] = None,
        on_close: Optional[SimpleHandler] = None,
    ) -> Subscription:
        """
        Start a subscription.

        Args:
            query: A ``subscription`` document
            variables: Variables for the document
            on_data: Called with each ``data`` payload
            on_error: Called with server errors, and once on terminal failure
            on_complete: Called when the server completes the stream
            on_close: Called once when the subscription closes for good

        Returns:
            Subscription handle; its socket is connecting in the background

        Raises:
            ValidationError: If ``query`` is not a subscription document
        """
        if operation_type(query) is not OperationType.SUBSCRIPTION:
            raise ValidationError("Expected a subscription document", field="query")

        subscription = Subscription(
            id=uuid.uuid4().hex,
            query=query,
            variables=dict(variables or {}),
            handlers=SubscriptionHandlers(on_data, on_error, on_complete, on_close),
            manager=self,
        )
        self._subscriptions[subscription.id] = subscription
        subscription._task = asyncio.create_task(self._run(subscription))
        logger.info(f"Subscription {subscription.id} created")
        return subscription

    async def _connect(self, subscription: Subscription) -> aiohttp.ClientWebSocketResponse:
        session = await self._get_session()
        ws = await session.ws_connect(
            self.endpoint,
            protocols=("graphql-ws",),
            headers={"Api-Key": self.api_key},
            timeout=aiohttp.ClientWSTimeout(ws_close=self.config.connect_timeout),
        )
        await ws.send_json({"type": "connection_init", "payload": {"Api-Key": self.api_key}})
        await ws.send_json(
            {
                "id": subscription.id,
                "type": "start",
                "payload": {"query": subscription.query, "variables": subscription.variables},
            }
        )
        return ws

    async def _run(self, subscription: Subscription) -> None:
        """Connect, read frames and reconnect until closed."""
        while not subscription.closed:
            try:
                subscription.ws = await self._connect(subscription)
                if subscription.closed:
                    break
                subscription.state = SubscriptionState.ACTIVE
                completed = await self._read_frames(subscription)
                if completed or subscription.closed:
                    break
                raise SubscriptionError(
                    "Subscription socket closed unexpectedly", subscription_id=subscription.id
                )
            except asyncio.CancelledError:
                raise
            except Exception as e:
                if subscription.closed:
                    break
                await self._close_socket(subscription)
                subscription.reconnect_attempts += 1
                if subscription.reconnect_attempts < self.config.max_reconnect_attempts:
                    delay = self.config.reconnect_delay * subscription.reconnect_attempts
                    subscription.state = SubscriptionState.RECONNECTING
                    logger.warning(
                        f"Subscription {subscription.id} failed ({e}), reconnecting in "
                        f"{delay:.1f}s (attempt {subscription.reconnect_attempts}/"
                        f"{self.config.max_reconnect_attempts})"
                    )
                    await asyncio.sleep(delay)
                    continue

                logger.error(
                    f"Subscription {subscription.id} failed after "
                    f"{subscription.reconnect_attempts} attempts: {e}"
                )
                error = e if isinstance(e, SubscriptionError) else SubscriptionError(
                    str(e), subscription_id=subscription.id
                )
                self._emit_error(subscription, error)
                break

        await self._finish(subscription)

    async def _read_frames(self, subscription: Subscription) -> bool:
        """
        Dispatch frames until the socket ends.

        Returns:
            True when the server completed the subscription
        """
        ws = subscription.ws
        if ws is None:
            return False
        async for msg in ws:
            if msg.type == WSMsgType.TEXT:
                try:
                    frame = json.loads(msg.data)
                except json.JSONDecodeError:
                    logger.warning(f"Ignoring undecodable frame on {subscription.id}")
                    continue
                if self._dispatch(subscription, frame):
                    return True
            elif msg.type == WSMsgType.ERROR:
                raise SubscriptionError(
                    f"WebSocket error: {ws.exception()}", subscription_id=subscription.id
                )
            elif msg.type in (WSMsgType.CLOSE, WSMsgType.CLOSING, WSMsgType.CLOSED):
                break
        return False

    def _dispatch(self, subscription: Subscription, frame: Dict[str, Any]) -> bool:
        frame_type = frame.get("type")
        if frame_type == "data":
            payload = frame.get("payload") or {}
            subscription.reconnect_attempts = 0
            subscription._events.put_nowait(SubscriptionEvent(SubscriptionEventKind.DATA, payload))
            self._call(subscription.handlers.on_data, payload)
        elif frame_type == "error":
            raw = frame.get("payload")
            details = [GraphQLErrorDetail.from_dict(e) for e in (raw if isinstance(raw, list) else [raw])]
            error = GraphQLError(
                "; ".join(d.message for d in details) or "Subscription error", errors=details
            )
            self._emit_error(subscription, error)
        elif frame_type == "complete":
            subscription._events.put_nowait(SubscriptionEvent(SubscriptionEventKind.COMPLETE))
            self._call(subscription.handlers.on_complete)
            return True
        elif frame_type == "connection_error":
            raise SubscriptionError(
                f"Connection rejected: {frame.get('payload')}", subscription_id=subscription.id
            )
        return False

    def _emit_error(self, subscription: Subscription, error: Exception) -> None:
        subscription._events.put_nowait(SubscriptionEvent(SubscriptionEventKind.ERROR, error))
        self._call(subscription.handlers.on_error, error)

    def _call(self, handler: Optional[Callable[..., Any]], *args: Any) -> None:
        if handler is None:
            return
        try:
            result = handler(*args)
        except Exception as e:
            logger.warning(f"Error in subscription handler: {e}")
            return
        if asyncio.iscoroutine(result):
            task = asyncio.ensure_future(result)
            self._handler_tasks.add(task)
            task.add_done_callback(self._handler_done)

    def _handler_done(self, task: "asyncio.Task[Any]") -> None:
        self._handler_tasks.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.warning(f"Error in subscription handler: {error}")

    async def _close_socket(self, subscription: Subscription, send_stop: bool = False) -> None:
        ws = subscription.ws
        subscription.ws = None
        if ws is None or ws.closed:
            return
        try:
            if send_stop:
                await ws.send_json({"id": subscription.id, "type": "stop"})
            await ws.close()
        except (aiohttp.ClientError, ConnectionError, RuntimeError) as e:
            logger.debug(f"Error closing socket for {subscription.id}: {e}")

    async def _finish(self, subscription: Subscription) -> None:
        if subscription._closed_event.is_set():
            return
        subscription.state = SubscriptionState.CLOSED
        await self._close_socket(subscription)
        self._subscriptions.pop(subscription.id, None)
        subscription._events.put_nowait(_CLOSED)
        subscription._closed_event.set()
        self._call(subscription.handlers.on_close)
        logger.info(f"Subscription {subscription.id} closed")

    async def unsubscribe(self, subscription_id: str) -> None:
        """
        Stop a subscription. Unknown or already closed ids are ignored.

        Args:
            subscription_id: Id from :attr:`Subscription.id`
        """
        subscription = self._subscriptions.get(subscription_id)
        if subscription is None or subscription.closed:
            return

        subscription.state = SubscriptionState.CLOSED
        await self._close_socket(subscription, send_stop=True)

        task = subscription._task
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass

        await self._finish(subscription)

    async def close(self) -> None:
        """Unsubscribe everything and release the session."""
        for subscription_id in list(self._subscriptions):
            await self.unsubscribe(subscription_id)
        if self._handler_tasks:
            await asyncio.gather(*list(self._handler_tasks), return_exceptions=True)
        if self._session is not None and self._owns_session and not self._session.closed:
            await self._session.close()
        self._session = None
