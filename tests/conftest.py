from collections import deque
from contextlib import asynccontextmanager as acm
import logging
import math
from pathlib import Path
from typing import (
    Any,
    Callable,
)

import msgspec
import pytest
import trio
from trio_websocket import (
    CloseReason,
    ConnectionClosed,
)

from ekiden import config
from ekiden.log import get_console_log


def pytest_addoption(parser):
    parser.addoption("--ll", action="store", dest='loglevel',
                     default=None, help="logging level to set when testing")


@pytest.fixture(scope='session')
def loglevel(request) -> str:
    return request.config.option.loglevel


@pytest.fixture()
def log(
    request: pytest.FixtureRequest,
    loglevel: str,
) -> logging.Logger:
    '''
    Deliver a per-test-named ``ekiden.log`` instance.

    '''
    return get_console_log(
        level=loglevel,
        name=request.node.name,
    )


@pytest.fixture
def tmpconfdir(
    tmp_path: Path,
) -> Path:
    '''
    Point the config dir at a per-test tmp dir so no test ever
    touches the user's real ``ekiden.toml``.

    '''
    tmpconfdir: Path = tmp_path / '_testing'
    tmpconfdir.mkdir()

    orig: Path = config.get_conf_dir()
    config._override_config_dir(tmpconfdir)
    yield tmpconfdir
    config._override_config_dir(orig)


class FakeResponse:
    '''
    Just enough of an ``asks.response_objects.Response``.

    '''
    def __init__(
        self,
        status_code: int = 200,
        body: Any = None,
    ) -> None:
        self.status_code = status_code
        if not isinstance(body, (bytes, str)):
            body = msgspec.json.encode(body)
        elif isinstance(body, str):
            body = body.encode()

        self.body: bytes = body

    @property
    def text(self) -> str:
        return self.body.decode()

    def __repr__(self) -> str:
        return f'<FakeResponse {self.status_code}>'


class FakeSession:
    '''
    In-mem stand in for an ``asks.Session`` which records every
    request and replies via per ``(method, path)`` handlers.

    A handler is either a ``FakeResponse``, an exception (raised) or
    a callable taking the request record.

    '''
    def __init__(self) -> None:
        self.requests: list[dict] = []
        self.handlers: dict[tuple[str, str], Any] = {}

    def route(
        self,
        method: str,
        path: str,
        handler: FakeResponse | Exception | Callable,
    ) -> None:
        self.handlers[(method, f'/api/v1/{path}')] = handler

    async def request(
        self,
        method: str,
        path: str,
        headers: dict | None = None,
        timeout: float | None = None,
        params: dict | None = None,
        data: bytes | None = None,
        retries: int = 1,
    ) -> FakeResponse:
        req = {
            'retries': retries,
            'method': method,
            'path': path,
            'headers': headers or {},
            'timeout': timeout,
            'params': params,
            'json': msgspec.json.decode(data) if data else None,
        }
        self.requests.append(req)
        await trio.lowlevel.checkpoint()

        handler = self.handlers.get((method, path))
        match handler:
            case None:
                return FakeResponse(404, 'not found')
            case Exception():
                raise handler
            case FakeResponse():
                return handler
            case _:
                return handler(req)


@pytest.fixture
def fake_sesh() -> FakeSession:
    return FakeSession()


class FakeWs:
    '''
    Server side of an in-mem websocket: ``.push()`` frames to the
    client, inspect ``.sent`` for the (json decoded) client frames.

    '''
    def __init__(self) -> None:
        self._tx, self._rx = trio.open_memory_channel(math.inf)
        self.sent: list[dict] = []
        self.closed: bool = False

    def push(self, frame: Any) -> None:
        if not isinstance(frame, (str, bytes)):
            frame = msgspec.json.encode(frame).decode()
        self._tx.send_nowait(frame)

    def drop(self) -> None:
        '''
        Simulate the server (or network) closing the connection.

        '''
        self.closed = True
        self._tx.close()

    async def get_message(self) -> str:
        try:
            return await self._rx.receive()
        except trio.EndOfChannel:
            raise ConnectionClosed(CloseReason(1000, 'bye'))

    async def send_message(self, msg: str) -> None:
        if self.closed:
            raise ConnectionClosed(CloseReason(1006, 'gone'))
        self.sent.append(msgspec.json.decode(msg))

    async def aclose(self) -> None:
        if not self.closed:
            self.drop()


class FakeWsServer:
    '''
    Drop-in for ``trio_websocket.open_websocket_url``.

    '''
    def __init__(self) -> None:
        self.conns: deque[FakeWs] = deque()
        self.opens: int = 0
        self.refuse: bool = False

    @property
    def ws(self) -> FakeWs:
        return self.conns[-1]

    @acm
    async def open_ws(self, url: str):
        self.opens += 1

        # a handshake takes at least one scheduling round
        await trio.sleep(0)
        if self.refuse:
            raise OSError('connection refused')

        ws = FakeWs()
        self.conns.append(ws)
        try:
            yield ws
        finally:
            await ws.aclose()


@pytest.fixture
def ws_server() -> FakeWsServer:
    return FakeWsServer()


@pytest.fixture
def mk_resp() -> type[FakeResponse]:
    return FakeResponse
