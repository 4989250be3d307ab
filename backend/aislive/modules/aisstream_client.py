"""aisstream.io WebSocket client — supervised real-time AIS streaming.

Keeps exactly one session to wss://stream.aisstream.io/v0/stream open,
subscribes to PositionReport messages for the whole globe, and hands every
inbound frame, in order, to a single message callback (normally an
``IngestionPipeline``).

Session lifecycle::

    DISCONNECTED -> CONNECTING -> OPEN -> CLOSING -> DISCONNECTED -> ...

* on open: send the subscription, start the heartbeat;
* heartbeat: ping every ``ping_interval``; no pong within ``pong_timeout``
  force-closes the session, so a half-open TCP connection is detected within
  ``ping_interval + pong_timeout``;
* any transport error or rejected handshake force-closes the session;
* on close: the heartbeat is cancelled and awaited, then the next connect is
  attempted after a fixed ``reconnect_delay``.

Usage:
    from aislive.modules.aisstream_client import stream_ais
    result = asyncio.run(stream_ais(api_key, duration_seconds=300))
"""
from __future__ import annotations

import asyncio
import enum
import json
import logging
import time
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Optional, Protocol

import websockets
from websockets.asyncio.client import ClientConnection, connect

from aislive.config import settings
from aislive.exceptions import MissingAPIKeyError

logger = logging.getLogger(__name__)

# The whole world, as [[lat_min, lon_min], [lat_max, lon_max]]
GLOBAL_BOUNDING_BOXES: list[list[list[float]]] = [[[-90.0, -180.0], [90.0, 180.0]]]

# Errors that end a session and trigger a reconnect
TRANSPORT_ERRORS = (websockets.WebSocketException, OSError, asyncio.TimeoutError)


class SessionState(str, enum.Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    OPEN = "open"
    CLOSING = "closing"


class FeedConnection(Protocol):
    """Minimal transport surface the supervisor needs."""

    async def send(self, message: str) -> None: ...

    async def recv(self) -> str | bytes: ...

    async def ping(self) -> Awaitable[Any]: ...

    async def close(self) -> None: ...

    def abort(self) -> None: ...


class WebSocketFeedConnection:
    """FeedConnection backed by a ``websockets`` client connection."""

    def __init__(self, ws: ClientConnection) -> None:
        self._ws = ws

    async def send(self, message: str) -> None:
        await self._ws.send(message)

    async def recv(self) -> str | bytes:
        return await self._ws.recv()

    async def ping(self) -> Awaitable[Any]:
        # Returns a waiter that completes when the matching pong arrives
        return await self._ws.ping()

    async def close(self) -> None:
        await self._ws.close()

    def abort(self) -> None:
        self._ws.transport.abort()


async def websocket_connector(url: str, open_timeout: float | None = None) -> WebSocketFeedConnection:
    """Open a WebSocket with the library keepalive disabled; the supervisor pings itself."""
    ws = await connect(
        url,
        ping_interval=None,
        open_timeout=open_timeout if open_timeout is not None else settings.AISSTREAM_OPEN_TIMEOUT,
        close_timeout=5,
        max_size=2**20,
    )
    return WebSocketFeedConnection(ws)


MessageCallback = Callable[[str | bytes], Awaitable[Any]]
Connector = Callable[[str], Awaitable[FeedConnection]]
SleepFunc = Callable[[float], Awaitable[None]]


class AISStreamSupervisor:
    """Owns one logical aisstream session and recovers it forever.

    All timer handles belong to the instance. The read loop and the heartbeat
    run on the same event loop, so the state check in ``_force_close`` cannot
    interleave: whichever path closes first wins and the other is a no-op.
    """

    def __init__(
        self,
        api_key: str | None,
        on_message: MessageCallback,
        url: str | None = None,
        reconnect_delay: float | None = None,
        ping_interval: float | None = None,
        pong_timeout: float | None = None,
        bounding_boxes: list[list[list[float]]] | None = None,
        connector: Connector | None = None,
        sleep: SleepFunc = asyncio.sleep,
    ) -> None:
        if not api_key:
            raise MissingAPIKeyError(
                "AISSTREAM_API_KEY is not set. Cannot start the ingestion service."
            )
        self._api_key = api_key
        self._on_message = on_message
        self.url = url or settings.AISSTREAM_WS_URL
        self.reconnect_delay = (
            reconnect_delay if reconnect_delay is not None else settings.AISSTREAM_RECONNECT_DELAY
        )
        self.ping_interval = (
            ping_interval if ping_interval is not None else settings.AISSTREAM_PING_INTERVAL
        )
        self.pong_timeout = (
            pong_timeout if pong_timeout is not None else settings.AISSTREAM_PONG_TIMEOUT
        )
        self.bounding_boxes = bounding_boxes or GLOBAL_BOUNDING_BOXES
        self._connector = connector or websocket_connector
        self._sleep = sleep

        self.state = SessionState.DISCONNECTED
        self._conn: Optional[FeedConnection] = None
        self._heartbeat_task: Optional[asyncio.Task] = None
        self._run_task: Optional[asyncio.Task] = None
        self._stopping = False
        self.stats: dict[str, Any] = {
            "connect_attempts": 0,
            "sessions_opened": 0,
            "sessions_closed": 0,
            "frames_received": 0,
            "callback_errors": 0,
            "heartbeat_timeouts": 0,
            "last_error": None,
            "last_connected_utc": None,
        }

    # -- public API -------------------------------------------------------

    def subscription_message(self) -> dict:
        return {
            "APIKey": self._api_key,
            "BoundingBoxes": self.bounding_boxes,
            "FilterMessageTypes": ["PositionReport"],
        }

    def start(self) -> asyncio.Task:
        """Run the supervisor as a background task on the current loop."""
        if self._run_task is None or self._run_task.done():
            self._stopping = False
            self._run_task = asyncio.create_task(self.run(), name="aisstream-supervisor")
        return self._run_task

    def request_stop(self) -> None:
        """Ask the loop to exit after the current session; closes it if open."""
        self._stopping = True
        if self._conn is not None:
            self._force_close(self._conn, "shutdown requested")

    async def stop(self) -> None:
        """Close an open session with a close frame, then end the run task."""
        self._stopping = True
        conn = self._conn
        if conn is not None and self.state is SessionState.OPEN:
            try:
                await asyncio.wait_for(conn.close(), self.pong_timeout)
            except TRANSPORT_ERRORS as exc:
                logger.debug("aisstream.io close handshake failed: %s", exc)
        self.request_stop()
        task = self._run_task
        if task is not None and not task.done():
            task.cancel()
            await asyncio.wait([task])
        self._run_task = None

    async def run(self) -> None:
        """Connect, serve, and reconnect until stopped."""
        logger.info("Starting aisstream.io supervisor for %s", self.url)
        while not self._stopping:
            await self._run_session()
            if self._stopping:
                break
            logger.info("Reconnecting to aisstream.io in %gs", self.reconnect_delay)
            await self._sleep(self.reconnect_delay)
        logger.info("aisstream.io supervisor stopped")

    def status(self) -> dict:
        return {"state": self.state.value, "url": self.url, **self.stats}

    # -- transitions ------------------------------------------------------

    async def _run_session(self) -> None:
        self.state = SessionState.CONNECTING
        self.stats["connect_attempts"] += 1
        logger.info("Connecting to aisstream.io...")
        try:
            conn = await self._connector(self.url)
        except TRANSPORT_ERRORS as exc:
            self._record_error("connect failed", exc)
            self.state = SessionState.DISCONNECTED
            return
        except Exception as exc:
            logger.error("Unexpected error connecting to aisstream.io: %s", exc, exc_info=True)
            self._record_error("connect failed", exc)
            self.state = SessionState.DISCONNECTED
            return

        self._conn = conn
        reason = "stream ended"
        try:
            await self._open_session(conn)
            await self._read_loop(conn)
        except websockets.ConnectionClosedOK as exc:
            reason = f"closed by server ({exc})"
            logger.info("aisstream.io connection closed: %s", exc)
        except TRANSPORT_ERRORS as exc:
            reason = str(exc) or type(exc).__name__
            if self.state is not SessionState.CLOSING:
                self._record_error("connection lost", exc)
        except Exception as exc:
            reason = f"unexpected error: {exc}"
            logger.error("Unexpected error in aisstream.io session: %s", exc, exc_info=True)
            self._record_error("session failed", exc)
        finally:
            self._force_close(conn, reason)
            await self._on_closed()

    async def _open_session(self, conn: FeedConnection) -> None:
        await conn.send(json.dumps(self.subscription_message()))
        self.state = SessionState.OPEN
        self.stats["sessions_opened"] += 1
        self.stats["last_connected_utc"] = datetime.now(timezone.utc).isoformat()
        logger.info(
            "Connected to aisstream.io — subscribed to %d bounding boxes",
            len(self.bounding_boxes),
        )
        self._heartbeat_task = asyncio.create_task(
            self._heartbeat(conn), name="aisstream-heartbeat"
        )

    async def _read_loop(self, conn: FeedConnection) -> None:
        while self.state is SessionState.OPEN:
            raw = await conn.recv()
            self.stats["frames_received"] += 1
            try:
                await self._on_message(raw)
            except Exception as exc:
                self.stats["callback_errors"] += 1
                logger.error("Message callback failed, continuing: %s", exc, exc_info=True)

    async def _heartbeat(self, conn: FeedConnection) -> None:
        while self.state is SessionState.OPEN and conn is self._conn:
            await self._sleep(self.ping_interval)
            if self.state is not SessionState.OPEN or conn is not self._conn:
                return
            started = time.monotonic()
            try:
                pong_waiter = await conn.ping()
                await asyncio.wait_for(pong_waiter, self.pong_timeout)
            except asyncio.TimeoutError:
                self.stats["heartbeat_timeouts"] += 1
                logger.warning(
                    "aisstream.io pong timeout after %gs — connection likely dead, terminating",
                    self.pong_timeout,
                )
                self._force_close(conn, "heartbeat timeout")
                return
            except TRANSPORT_ERRORS as exc:
                self._record_error("ping failed", exc)
                self._force_close(conn, "ping failed")
                return
            logger.debug("aisstream.io pong received in %.3fs", time.monotonic() - started)

    def _force_close(self, conn: FeedConnection, reason: str) -> None:
        """OPEN/CONNECTING -> CLOSING. Idempotent."""
        if conn is not self._conn or self.state in (SessionState.CLOSING, SessionState.DISCONNECTED):
            return
        self.state = SessionState.CLOSING
        logger.info("Closing aisstream.io session: %s", reason)
        self._cancel_heartbeat()
        conn.abort()

    async def _on_closed(self) -> None:
        """CLOSING -> DISCONNECTED, after every session timer is gone."""
        task = self._heartbeat_task
        self._heartbeat_task = None
        self._conn = None
        self.state = SessionState.DISCONNECTED
        self.stats["sessions_closed"] += 1
        if task is not None and task is not asyncio.current_task():
            task.cancel()
            await asyncio.wait([task])

    def _cancel_heartbeat(self) -> None:
        task = self._heartbeat_task
        if task is not None and task is not asyncio.current_task():
            task.cancel()

    def _record_error(self, what: str, exc: BaseException) -> None:
        self.stats["last_error"] = f"{what}: {exc}"
        logger.warning("aisstream.io %s: %s", what, exc)


async def stream_ais(
    api_key: str | None,
    duration_seconds: int = 0,
    db_factory: Callable[[], Any] | None = None,
    progress_callback: Callable[[dict], None] | None = None,
    progress_interval: float = 30.0,
) -> dict:
    """Stream AIS data from aisstream.io into the vessel store.

    Args:
        api_key: aisstream.io API key.
        duration_seconds: How long to stream (0 = until cancelled).
        db_factory: Callable returning a new SQLAlchemy Session. Defaults to SessionLocal.
        progress_callback: Called with a stats dict every *progress_interval* seconds.

    Returns:
        Summary dict with supervisor and pipeline counters.
    """
    from aislive.modules.ingest import IngestionPipeline

    pipeline = IngestionPipeline(db_factory=db_factory)
    supervisor = AISStreamSupervisor(api_key, pipeline)
    start_time = time.monotonic()
    task = supervisor.start()

    try:
        while not task.done():
            elapsed = time.monotonic() - start_time
            if duration_seconds > 0 and elapsed >= duration_seconds:
                break
            wait = progress_interval
            if duration_seconds > 0:
                wait = min(wait, duration_seconds - elapsed)
            await asyncio.wait([task], timeout=wait)
            if progress_callback and not task.done():
                progress_callback({
                    "elapsed_s": int(time.monotonic() - start_time),
                    "state": supervisor.state.value,
                    **pipeline.stats,
                })
    finally:
        await supervisor.stop()

    summary = {**supervisor.status(), **pipeline.stats}
    summary["actual_duration_s"] = round(time.monotonic() - start_time, 1)
    logger.info(
        "aisstream.io streaming complete: %d frames, %d vessels stored",
        summary["frames_received"],
        summary["stored"],
    )
    return summary
