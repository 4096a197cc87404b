"""Shared fixtures and fakes for the Sense client tests"""

import asyncio
import base64
import json
import time
from typing import Callable, Optional
from urllib.parse import parse_qs

import httpx
import pytest
import pytest_asyncio

from open_sense import SenseClient, Session


API_URL = "https://api.test/v1"
WSS_URL = "wss://rt.test"

_CLOSE = object()


def make_token(expires_in: float, user_id: Optional[int] = 123, prefix: str = "t1.v2.", exp: bool = True) -> str:
    """Build an unsigned access token expiring ``expires_in`` seconds from now"""
    claims = {}
    if exp:
        claims["exp"] = int(time.time() + expires_in)
    if user_id is not None:
        claims["userId"] = user_id
    header = base64.b64encode(json.dumps({"alg": "HS256", "typ": "JWT"}).encode()).decode()
    payload = base64.b64encode(json.dumps(claims).encode()).decode()
    return f"{prefix}{header}.{payload}.dummy-signature"


def form(request: httpx.Request) -> dict[str, str]:
    """Decode a urlencoded request body into a flat dict"""
    return {k: v[0] for k, v in parse_qs(request.content.decode()).items()}


class FakeApi:
    """Records requests and answers them with a handler"""

    def __init__(self, handler: Callable[[httpx.Request], httpx.Response]):
        self.handler = handler
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return self.handler(request)

    def paths(self) -> list[str]:
        return [r.url.path for r in self.requests]


class FakeSocket:
    """In-memory stand-in for a websocket connection"""

    def __init__(self, url: str, messages=(), hold_open: bool = True):
        self.url = url
        self.closed = False
        self._queue: asyncio.Queue = asyncio.Queue()
        for message in messages:
            self._queue.put_nowait(message)
        if not hold_open:
            self._queue.put_nowait(_CLOSE)

    def push(self, message) -> None:
        self._queue.put_nowait(message)

    def __aiter__(self):
        return self

    async def __anext__(self):
        item = await self._queue.get()
        if item is _CLOSE:
            raise StopAsyncIteration
        if isinstance(item, BaseException):
            raise item
        return item

    async def close(self) -> None:
        if not self.closed:
            self.closed = True
            self._queue.put_nowait(_CLOSE)


class FakeConnector:
    """Channel factory that records every connection attempt"""

    def __init__(self, messages=(), hold_open: bool = True, gate: bool = False):
        self.messages = list(messages)
        self.hold_open = hold_open
        self.urls: list[str] = []
        self.sockets: list[FakeSocket] = []
        self._gated = gate
        self._gate: Optional[asyncio.Event] = None

    def release(self) -> None:
        self._gated = False
        if self._gate is not None:
            self._gate.set()

    async def __call__(self, url: str) -> FakeSocket:
        self.urls.append(url)
        if self._gated:
            self._gate = self._gate or asyncio.Event()
            await self._gate.wait()
        socket = FakeSocket(url, self.messages, hold_open=self.hold_open)
        self.sockets.append(socket)
        return socket


async def spin(times: int = 20) -> None:
    """Let background tasks run"""
    for _ in range(times):
        await asyncio.sleep(0)


@pytest.fixture
def fresh_session():
    return Session(
        user_id=123,
        monitor_ids=(456,),
        access_token=make_token(3600),
        refresh_token="R1",
    )


@pytest_asyncio.fixture
async def make_client():
    """Factory building a client wired to fake HTTP and websocket collaborators"""
    built = []

    def _make(handler=None, session=None, connector=None, **kwargs):
        api = FakeApi(handler or (lambda request: httpx.Response(404)))
        http = httpx.AsyncClient(transport=httpx.MockTransport(api))
        client = SenseClient(
            session,
            http=http,
            connector=connector or FakeConnector(),
            api_url=API_URL,
            wss_url=WSS_URL,
            **kwargs,
        )
        built.append((client, http))
        return client, api

    yield _make

    for client, http in built:
        await client.stop_realtime_updates()
        await http.aclose()
