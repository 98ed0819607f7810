"""
Connection Manager - Realtime Transport State Machine

Owns exactly one websocket at a time and drives it through:

    IDLE ──connect()──▶ CONNECTING ──open──▶ OPEN
                            │                  │
                            └──error/close──▶ CLOSED ──backoff timer──▶ CONNECTING
    any ──disconnect()──▶ CLOSING ──▶ IDLE

Features:
---------
- Idempotent connect(): no-op while CONNECTING or OPEN
- Exponential reconnect backoff (base * multiplier^n, capped), reset on open
- Generation token bound to every reconnect timer and reader task, so a
  stale timer firing after disconnect() or a newer connect() does nothing
- Bounded outbound buffer: sends made while down are flushed after open,
  oldest dropped first once the cap is reached
- Event handlers: OPEN, MESSAGE(raw), CLOSE(reason), ERROR(exc)

The socket handle never leaves this class; other components talk to the
transport only through send() and the registered handlers.

Usage:
------
```python
manager = ConnectionManager("ws://localhost:8080/ws/market")
manager.register_handler(ConnectionEvent.MESSAGE, on_frame)
await manager.connect()
...
await manager.disconnect()
```
"""

from collections import deque
from enum import Enum
from typing import Any, Awaitable, Callable, Deque, Dict, List, Optional, Union
import asyncio
import inspect
import json

import websockets
from websockets.exceptions import ConnectionClosed

from ticker_feed.config.constants import (
    RECONNECT_BASE_DELAY_SEC,
    RECONNECT_MAX_DELAY_SEC,
    RECONNECT_BACKOFF_MULTIPLIER,
    SEND_QUEUE_SIZE,
    WS_PING_INTERVAL_SEC,
    WS_CLOSE_TIMEOUT_SEC,
)
from ticker_feed.core.models import BackoffState, ConnectionState
from ticker_feed.utils.logger import get_logger
from ticker_feed.utils.exceptions import TransportError


logger = get_logger(__name__)


class ConnectionEvent(Enum):
    OPEN = "open"
    MESSAGE = "message"
    CLOSE = "close"
    ERROR = "error"


Connector = Callable[[str], Awaitable[Any]]
Message = Union[str, Dict[str, Any]]


async def websocket_connector(url: str) -> Any:
    """Default connector: a websockets client connection with library keepalive"""
    return await websockets.connect(
        url,
        ping_interval=WS_PING_INTERVAL_SEC,
        close_timeout=WS_CLOSE_TIMEOUT_SEC,
    )


class ConnectionManager:
    """
    Manages the single realtime connection and its reconnect cycle.

    All transitions run on one event loop; handlers are awaited in
    registration order and run to completion before the next frame is read.
    """

    def __init__(
        self,
        url: str,
        connector: Optional[Connector] = None,
        base_delay: float = RECONNECT_BASE_DELAY_SEC,
        max_delay: float = RECONNECT_MAX_DELAY_SEC,
        multiplier: float = RECONNECT_BACKOFF_MULTIPLIER,
        send_queue_size: int = SEND_QUEUE_SIZE,
    ):
        self.url = url
        self._connector = connector or websocket_connector

        self._state = ConnectionState.IDLE
        self._ws: Optional[Any] = None
        self._backoff = BackoffState(base_delay=base_delay, max_delay=max_delay, multiplier=multiplier)

        # Incremented by every connect()/disconnect(); timers and readers
        # scheduled under an older value are ignored
        self._generation = 0

        self._pending: Deque[Message] = deque(maxlen=send_queue_size)
        self._dropped_sends = 0

        self._handlers: Dict[ConnectionEvent, List[Callable]] = {event: [] for event in ConnectionEvent}

        self._session_task: Optional[asyncio.Task] = None
        self._reconnect_task: Optional[asyncio.Task] = None

        logger.info(
            f"ConnectionManager initialized - URL: {url}, "
            f"Backoff: {base_delay}s..{max_delay}s, Send queue: {send_queue_size}"
        )

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def is_open(self) -> bool:
        return self._state is ConnectionState.OPEN

    @property
    def backoff(self) -> BackoffState:
        return self._backoff

    @property
    def generation(self) -> int:
        return self._generation

    @property
    def pending_sends(self) -> int:
        return len(self._pending)

    @property
    def dropped_sends(self) -> int:
        return self._dropped_sends

    @property
    def reconnect_pending(self) -> bool:
        return self._reconnect_task is not None and not self._reconnect_task.done()

    # ------------------------------------------------------------------
    # Event handlers
    # ------------------------------------------------------------------

    def register_handler(self, event: ConnectionEvent, handler: Callable) -> None:
        """
        Register a callback for a lifecycle event.

        Handlers may be plain functions or coroutines:
            OPEN    -> handler()
            MESSAGE -> handler(raw_frame)
            CLOSE   -> handler(reason: str)
            ERROR   -> handler(error: Exception)
        """
        self._handlers[event].append(handler)

    def unregister_handler(self, event: ConnectionEvent, handler: Callable) -> None:
        if handler in self._handlers[event]:
            self._handlers[event].remove(handler)

    async def _emit(self, event: ConnectionEvent, *args) -> None:
        for handler in list(self._handlers[event]):
            try:
                result = handler(*args)
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                logger.error(f"{event.value} handler failed: {e}", exc_info=True)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def connect(self) -> None:
        """Start connecting. No-op while already CONNECTING or OPEN."""
        if self._state in (ConnectionState.CONNECTING, ConnectionState.OPEN):
            logger.debug(f"connect() ignored - already {self._state.value}")
            return

        self._generation += 1
        self._cancel_reconnect()
        self._start_attempt(self._generation)

    async def disconnect(self) -> None:
        """
        Close the transport and stop retrying.

        Cancels the reconnect timer first, then the reader, then closes the
        socket. Terminal until connect() is called again. No CLOSE event is
        emitted for an explicit disconnect.
        """
        if self._state is ConnectionState.IDLE and self._session_task is None and self._reconnect_task is None:
            return

        self._generation += 1
        generation = self._generation
        self._cancel_reconnect()
        self._state = ConnectionState.CLOSING

        ws, self._ws = self._ws, None
        task, self._session_task = self._session_task, None
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()
            await asyncio.gather(task, return_exceptions=True)

        if ws is not None:
            await self._close_socket(ws)

        if generation != self._generation:
            # connect() was called while the socket was closing
            return
        self._pending.clear()
        self._backoff.reset()
        self._state = ConnectionState.IDLE
        logger.info("Realtime connection closed (explicit disconnect)")

    def _start_attempt(self, generation: int) -> None:
        self._state = ConnectionState.CONNECTING
        logger.info(f"Connecting to {self.url} (attempt {self._backoff.attempt + 1})")
        self._session_task = asyncio.create_task(self._run_session(generation), name="ws_session")

    async def _run_session(self, generation: int) -> None:
        """Open the socket, pump frames into MESSAGE handlers, report the close"""
        try:
            ws = await self._connector(self.url)
        except Exception as e:
            if generation != self._generation:
                return
            error = TransportError(
                f"Connect failed: {e}",
                url=self.url,
                attempt=self._backoff.attempt + 1,
                original_error=e
            )
            await self._handle_closed(generation, f"connect failed: {e}", error)
            return

        if generation != self._generation:
            # disconnect() won the race against the handshake
            await self._close_socket(ws)
            return

        self._ws = ws
        self._state = ConnectionState.OPEN
        self._backoff.reset()
        logger.info(f"✅ Realtime connection open: {self.url}")

        await self._emit(ConnectionEvent.OPEN)
        if generation != self._generation:
            return
        await self._flush_pending()

        reason = "closed by server"
        error: Optional[Exception] = None
        try:
            async for raw in ws:
                await self._emit(ConnectionEvent.MESSAGE, raw)
                if generation != self._generation:
                    return
        except ConnectionClosed as e:
            reason = f"connection lost: {e}"
        except Exception as e:
            reason = f"receive failed: {e}"
            error = TransportError(f"Receive loop error: {e}", url=self.url, original_error=e)

        if generation != self._generation:
            return
        self._ws = None
        await self._handle_closed(generation, reason, error)

    async def _handle_closed(self, generation: int, reason: str, error: Optional[Exception]) -> None:
        self._state = ConnectionState.CLOSED
        if error is not None:
            await self._emit(ConnectionEvent.ERROR, error)
        await self._emit(ConnectionEvent.CLOSE, reason)

        if generation != self._generation:
            # a handler called disconnect()/connect() meanwhile
            return

        delay = self._backoff.next_delay
        self._backoff.advance()
        logger.warning(
            f"🔄 Realtime transport down ({reason}) - reconnecting in {delay:.2f}s "
            f"(failure {self._backoff.attempt})"
        )
        self._reconnect_task = asyncio.create_task(
            self._reconnect_after(delay, generation), name="ws_reconnect"
        )

    async def _reconnect_after(self, delay: float, generation: int) -> None:
        await asyncio.sleep(delay)
        if generation != self._generation or self._state is not ConnectionState.CLOSED:
            logger.debug(f"Stale reconnect timer ignored (generation {generation} != {self._generation})")
            return
        self._reconnect_task = None
        self._start_attempt(generation)

    def cancel_reconnect(self) -> None:
        """Cancel a scheduled reconnect without touching the current socket"""
        if self.reconnect_pending:
            logger.info("Pending reconnect cancelled")
        self._cancel_reconnect()

    def _cancel_reconnect(self) -> None:
        task, self._reconnect_task = self._reconnect_task, None
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()

    @staticmethod
    async def _close_socket(ws: Any) -> None:
        try:
            await ws.close()
        except Exception as e:
            logger.debug(f"Ignoring error while closing socket: {e}")

    # ------------------------------------------------------------------
    # Outbound
    # ------------------------------------------------------------------

    async def send(self, message: Message, buffer: bool = True) -> bool:
        """
        Send a command over the socket.

        Args:
            message: dict (JSON-encoded) or pre-encoded text
            buffer: Queue the message for delivery after the next open when
                    the socket is not OPEN. Pass False for commands that are
                    rebuilt on open anyway (subscription replay).

        Returns:
            True if written to an open socket, False if queued or dropped
        """
        if self._state is ConnectionState.OPEN and self._ws is not None:
            try:
                await self._ws.send(self._encode(message))
                return True
            except Exception as e:
                logger.warning(f"Send failed on open socket: {e}")

        if buffer:
            self._enqueue(message)
        return False

    def _enqueue(self, message: Message) -> None:
        maxlen = self._pending.maxlen
        if maxlen == 0:
            self._dropped_sends += 1
            logger.debug("Send queue disabled - dropping message")
            return
        if len(self._pending) == maxlen:
            self._dropped_sends += 1
            logger.warning(f"Send queue full ({maxlen}) - dropping oldest pending message")
        self._pending.append(message)

    async def _flush_pending(self) -> None:
        if not self._pending:
            return
        logger.info(f"Flushing {len(self._pending)} pending sends")
        while self._pending and self._state is ConnectionState.OPEN and self._ws is not None:
            message = self._pending.popleft()
            try:
                await self._ws.send(self._encode(message))
            except Exception as e:
                logger.warning(f"Flush interrupted: {e}")
                self._pending.appendleft(message)
                break

    @staticmethod
    def _encode(message: Message) -> str:
        return message if isinstance(message, str) else json.dumps(message)
