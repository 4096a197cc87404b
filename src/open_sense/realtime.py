"""Realtime feed connection for a Sense monitor."""

import asyncio
import json
import logging
from collections.abc import Awaitable, Callable
from typing import Any, Optional
from urllib.parse import urlencode

import httpx
import websockets
from websockets.exceptions import ConnectionClosed, WebSocketException

from .events import REALTIME_UPDATE, EventEmitter
from .exceptions import SenseError
from .models import RealtimeState


_LOGGER = logging.getLogger(__name__)

Connector = Callable[[str], Awaitable[Any]]


class RealtimeFeed:
    """
    Keeps at most one push-feed connection open per client.

    Each call to :meth:`start` that actually connects spawns one background
    task, which is the tracked handle for the connection. When the channel
    closes and auto-reconnect is on, the same task mints a fresh token and
    connects again. :meth:`stop` drops the handle, cancels the task and
    closes the channel, so a stopped feed never comes back.

    Args:
        wss_url: Base URL of the realtime service
        get_token: Coroutine returning a fresh access token
        emitter: Receives ``realtime_update`` events
        connector: Opens a channel for a URL (default ``websockets.connect``)
        auto_reconnect: Reconnect when the channel closes
    """

    def __init__(
        self,
        wss_url: str,
        get_token: Callable[[], Awaitable[str]],
        emitter: EventEmitter,
        connector: Optional[Connector] = None,
        auto_reconnect: bool = True,
        logger: logging.Logger = _LOGGER,
    ):
        self.wss_url = wss_url
        self.auto_reconnect = auto_reconnect
        self._get_token = get_token
        self._emitter = emitter
        self._connect = connector or websockets.connect
        self._logger = logger

        self._state = RealtimeState.IDLE
        self._task: Optional[asyncio.Task] = None
        self._socket: Any = None

    @property
    def state(self) -> RealtimeState:
        return self._state

    def feed_url(self, monitor_id: int, access_token: str) -> str:
        query = urlencode({"access_token": access_token})
        return f"{self.wss_url}/monitors/{monitor_id}/realtimefeed?{query}"

    async def start(self, monitor_id: int) -> None:
        """
        Start receiving realtime updates for a monitor.

        Does nothing if a connection is already open or being opened.

        Raises:
            UnauthenticatedError: no valid session
            APIError: the access token could not be renewed
        """
        # Claim the slot before the first await so concurrent calls see it
        if self._state is not RealtimeState.IDLE or self._task is not None:
            self._logger.warning("Real-time updates already started.")
            return
        self._state = RealtimeState.CONNECTING

        self._logger.info("Starting real-time updates for monitor %s...", monitor_id)
        try:
            access_token = await self._get_token()
        except BaseException:
            self._state = RealtimeState.IDLE
            raise

        # stop() may have run while the token was being fetched
        if self._state is not RealtimeState.CONNECTING or self._task is not None:
            return

        self._task = asyncio.get_running_loop().create_task(
            self._run(monitor_id, access_token)
        )

    async def stop(self) -> None:
        """Stop realtime updates. Safe to call at any time, any number of times."""
        task, socket = self._task, self._socket
        self._task = None
        self._socket = None
        self._state = RealtimeState.IDLE

        if task is None:
            return

        self._logger.debug("Stopping real-time updates...")
        task.cancel()
        if socket is not None:
            await socket.close()
        if task is not asyncio.current_task():
            await asyncio.wait({task})

    def _is_current(self) -> bool:
        return self._task is not None and self._task is asyncio.current_task()

    async def _run(self, monitor_id: int, access_token: str) -> None:
        try:
            while True:
                await self._listen(monitor_id, self.feed_url(monitor_id, access_token))
                if not self._is_current() or not self.auto_reconnect:
                    break

                self._logger.debug("Reconnecting...")
                self._state = RealtimeState.CONNECTING
                await asyncio.sleep(0)
                if not self._is_current():
                    break

                try:
                    access_token = await self._get_token()
                except (SenseError, httpx.HTTPError) as e:
                    self._logger.error("Unable to reconnect real-time updates: %s", e)
                    break
        finally:
            if self._is_current():
                self._task = None
                self._socket = None
                self._state = RealtimeState.IDLE

    async def _listen(self, monitor_id: int, url: str) -> None:
        """Open one channel and pump its messages until it closes."""
        try:
            socket = await self._connect(url)
        except (OSError, asyncio.TimeoutError, WebSocketException) as e:
            self._logger.warning("WebSocket error: %s", e)
            return

        if not self._is_current():
            await socket.close()
            return

        self._socket = socket
        self._state = RealtimeState.OPEN
        self._logger.debug("Connected to WebSocket server")
        try:
            async for message in socket:
                self._dispatch(monitor_id, message)
        except ConnectionClosed as e:
            self._logger.warning("WebSocket error: %s", e)
        finally:
            self._logger.debug("Disconnected from WebSocket server")
            if self._socket is socket:
                self._socket = None
            await socket.close()

    def _dispatch(self, monitor_id: int, message: Any) -> None:
        try:
            if isinstance(message, (bytes, bytearray)):
                message = message.decode("utf-8")
            payload = json.loads(message)
        except (UnicodeDecodeError, json.JSONDecodeError) as e:
            self._logger.warning("Discarding malformed realtime message: %s", e)
            return
        if not isinstance(payload, dict):
            self._logger.warning("Discarding realtime message that is not an object")
            return
        self._emitter.emit(REALTIME_UPDATE, monitor_id, payload)
