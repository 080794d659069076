"""Client-side websocket connection with keep-alive and exponential-backoff reconnection."""

from __future__ import annotations

import asyncio
import contextlib
import json
import logging
from typing import Any, Awaitable, Callable, Dict, Literal, Optional, Union

import websockets

from chat_client.events import EventEmitter
from models.wire_messages import (
    CompleteMessage,
    ConnectedMessage,
    ErrorMessage,
    PingMessage,
    ReadyMessage,
    StatusMessage,
    StreamMessage,
    WireModel,
    parse_server_message,
    to_frame,
)

logger = logging.getLogger(__name__)

ConnectionStatus = Literal["disconnected", "connecting", "connected", "error"]

NORMAL_CLOSURE = 1000
ABNORMAL_CLOSURE = 1006


class ChatConnection(EventEmitter):
    """Own one websocket to the chat server and re-expose it as typed events.

    Events:
        status_change(status), open(), close(code, reason), error(exc),
        reconnecting(attempt, max_attempts), connected(payload),
        ready(payload), server_status(status, message), stream(chunk, message_id),
        complete(payload), server_error(payload)
    """

    def __init__(
        self,
        url: str,
        *,
        reconnect_attempts: int = 5,
        reconnect_delay: float = 3.0,
        ping_interval: float = 30.0,
        connect: Optional[Callable[[str], Awaitable[Any]]] = None,
        sleep: Optional[Callable[[float], Awaitable[None]]] = None,
    ) -> None:
        super().__init__()
        self.url = url
        self.reconnect_attempts = reconnect_attempts
        self.reconnect_delay = reconnect_delay
        self.ping_interval = ping_interval
        self._open = connect or websockets.connect
        self._sleep = sleep or asyncio.sleep

        self.session_id: Optional[str] = None
        self.current_reconnect_attempt = 0
        self._status: ConnectionStatus = "disconnected"
        self._ws: Any = None
        self._manual_close = False
        self._reader_task: Optional[asyncio.Task] = None
        self._ping_task: Optional[asyncio.Task] = None
        self._reconnect_task: Optional[asyncio.Task] = None

    @property
    def status(self) -> ConnectionStatus:
        return self._status

    @property
    def is_connected(self) -> bool:
        return self._status == "connected" and self._ws is not None

    @property
    def reconnect_pending(self) -> bool:
        return self._reconnect_task is not None and not self._reconnect_task.done()

    def backoff_delay(self, attempt: int) -> float:
        """Delay before retry number `attempt` (1-based)."""
        return self.reconnect_delay * 2 ** (attempt - 1)

    def _set_status(self, status: ConnectionStatus) -> None:
        if self._status != status:
            self._status = status
            self.emit("status_change", status)

    async def connect(self) -> None:
        """Open the socket; raises ConnectionError when the attempt fails."""
        if self.is_connected:
            return
        self._manual_close = False
        self._set_status("connecting")
        try:
            ws = await self._open(self.url)
        except Exception as exc:
            self._set_status("error")
            error = ConnectionError(f"WebSocket connection error: {exc}")
            self.emit("error", error)
            self._schedule_reconnect()
            raise error from exc

        if self._manual_close:
            # disconnect() ran while the handshake was in flight.
            with contextlib.suppress(Exception):
                await ws.close(code=NORMAL_CLOSURE, reason="Client disconnect")
            return

        self._ws = ws
        self.current_reconnect_attempt = 0
        self._set_status("connected")
        self._start_ping()
        self._reader_task = asyncio.create_task(self._read_loop(ws))
        self.emit("open")

    async def disconnect(self) -> None:
        """Close cleanly; never followed by a reconnection."""
        self._manual_close = True
        self._cancel_reconnect()
        self._stop_ping()
        ws, self._ws = self._ws, None
        if ws is not None:
            try:
                await ws.close(code=NORMAL_CLOSURE, reason="Client disconnect")
            except Exception as exc:
                logger.debug("WebSocket close failed: %s", exc)
        reader, self._reader_task = self._reader_task, None
        if reader is not None and reader is not asyncio.current_task():
            reader.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await reader
        self._set_status("disconnected")

    async def send(self, message: Union[WireModel, Dict[str, Any]]) -> bool:
        """Send one frame; dropped with a warning when not connected."""
        ws = self._ws
        message_type = getattr(message, "type", None) or (message.get("type") if isinstance(message, dict) else None)
        if ws is None or self._status != "connected":
            logger.warning("WebSocket not connected, message not sent: %s", message_type)
            return False
        frame = to_frame(message) if isinstance(message, WireModel) else json.dumps(message)
        try:
            await ws.send(frame)
        except Exception as exc:
            logger.warning("WebSocket send failed for %s: %s", message_type, exc)
            return False
        return True

    async def _read_loop(self, ws: Any) -> None:
        failure: Optional[Exception] = None
        try:
            async for raw in ws:
                self._handle_frame(raw)
        except websockets.ConnectionClosed:
            pass
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            failure = exc

        if ws is not self._ws:
            # Closed on purpose by disconnect().
            return
        if failure is not None:
            logger.error("WebSocket error: %s", failure)
            self._set_status("error")
            self.emit("error", failure)
        code = getattr(ws, "close_code", None)
        reason = getattr(ws, "close_reason", None) or ""
        self._handle_close(ABNORMAL_CLOSURE if code is None or failure is not None else code, reason)

    def _handle_frame(self, raw: Any) -> None:
        try:
            message = parse_server_message(json.loads(raw))
        except ValueError as exc:
            logger.warning("Failed to parse WebSocket message: %s", exc)
            return

        if isinstance(message, ConnectedMessage):
            self.session_id = message.payload.session_id
            self.emit("connected", message.payload)
        elif isinstance(message, ReadyMessage):
            self.emit("ready", message.payload)
        elif isinstance(message, StatusMessage):
            self.emit("server_status", message.payload.status, message.payload.message)
        elif isinstance(message, StreamMessage):
            self.emit("stream", message.payload.chunk, message.payload.message_id)
        elif isinstance(message, CompleteMessage):
            self.emit("complete", message.payload)
        elif isinstance(message, ErrorMessage):
            self.emit("server_error", message.payload)
        # pong: the connection is alive, nothing to do

    def _handle_close(self, code: int, reason: str) -> None:
        self._stop_ping()
        self._ws = None
        self._reader_task = None
        self._set_status("disconnected")
        self.emit("close", code, reason)
        if code != NORMAL_CLOSURE:
            self._schedule_reconnect()

    def _schedule_reconnect(self) -> None:
        if self._manual_close:
            return
        if self.current_reconnect_attempt >= self.reconnect_attempts:
            logger.warning("Giving up reconnecting after %d attempts", self.current_reconnect_attempt)
            return
        self._cancel_reconnect()
        self.current_reconnect_attempt += 1
        attempt = self.current_reconnect_attempt
        delay = self.backoff_delay(attempt)
        logger.info("Reconnecting in %.2fs (attempt %d/%d)", delay, attempt, self.reconnect_attempts)
        self._reconnect_task = asyncio.create_task(self._reconnect_after(attempt, delay))

    async def _reconnect_after(self, attempt: int, delay: float) -> None:
        await self._sleep(delay)
        # Cleared first so a failed attempt can schedule the next one.
        self._reconnect_task = None
        self.emit("reconnecting", attempt, self.reconnect_attempts)
        try:
            await self.connect()
        except ConnectionError as exc:
            logger.debug("Reconnect attempt %d failed: %s", attempt, exc)

    def _cancel_reconnect(self) -> None:
        task, self._reconnect_task = self._reconnect_task, None
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()

    def _start_ping(self) -> None:
        self._stop_ping()
        self._ping_task = asyncio.create_task(self._ping_loop())

    def _stop_ping(self) -> None:
        task, self._ping_task = self._ping_task, None
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()

    async def _ping_loop(self) -> None:
        while True:
            await asyncio.sleep(self.ping_interval)
            if self.is_connected:
                await self.send(PingMessage())
