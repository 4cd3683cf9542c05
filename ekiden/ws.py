# ekiden: async trading client for the ekiden exchange
# Copyright (C) 2025-present  ekiden contributors

# This program is free software: you can redistribute it and/or modify
# it under the terms of the GNU Affero General Public License as published by
# the Free Software Foundation, either version 3 of the License, or
# (at your option) any later version.

# This program is distributed in the hope that it will be useful,
# but WITHOUT ANY WARRANTY; without even the implied warranty of
# MERCHANTABILITY or FITNESS FOR A PARTICULAR PURPOSE.  See the
# GNU Affero General Public License for more details.

# You should have received a copy of the GNU Affero General Public License
# along with this program.  If not, see <https://www.gnu.org/licenses/>.

"""
Websocket event bus: one physical connection fanned out to many
(channel scoped) subscribers.

Each ``Subscription`` owns a bounded ``trio`` memory channel which
the read loop fills with ``send_nowait()``; a full buffer means that
(slow) subscriber drops the event, never the producer nor any other
subscriber, and the drop is surfaced to it as a ``Lagged`` error at
the exact position in its stream where events went missing.

All registry/state mutations happen between ``trio`` checkpoints
(no ``await`` inside them) and are thus atomic wrt every other task
including the read loop; network io is only ever done after such
a mutation completes.

"""
from __future__ import annotations
from collections import deque
from contextlib import (
    asynccontextmanager as acm,
)
from enum import Enum
from typing import (
    Any,
    AsyncContextManager,
    AsyncIterator,
    Callable,
)

import msgspec
import trio
from trio_websocket import (
    ConnectionClosed,
    ConnectionRejected,
    ConnectionTimeout,
    DisconnectionTimeout,
    HandshakeError,
    WebSocketConnection,
    open_websocket_url,
)
from wsproto.utilities import LocalProtocolError

from .errors import TransportError
from .log import get_logger
from .schemas import (
    Event,
    Ping,
    Pong,
    Subscribe,
    Subscribed,
    Unsubscribe,
    Unsubscribed,
    WsErrorMsg,
    WsEvent,
    WsRequest,
    WsResponse,
)

log = get_logger(__name__)


class channels:
    '''
    Channel naming: a pure function of (kind, scope) so that
    subscription requests and externally built channel refs always
    match.

    '''
    @staticmethod
    def orderbook(market_addr: str) -> str:
        return f'orderbook:{market_addr}'

    @staticmethod
    def trades(market_addr: str) -> str:
        return f'trades:{market_addr}'

    @staticmethod
    def user(user_addr: str) -> str:
        return f'user:{user_addr}'


class ConnState(str, Enum):
    DISCONNECTED = 'disconnected'
    CONNECTING = 'connecting'
    CONNECTED = 'connected'


class Lagged(Exception):
    '''
    Raised (once per gap) by ``Subscription.receive()`` when the
    subscriber fell behind and ``count`` events were dropped at this
    point in its stream.

    '''
    def __init__(self, count: int) -> None:
        super().__init__(f'Subscriber lagged, {count} events dropped')
        self.count: int = count


class Subscription:
    '''
    A single consumer's receive handle on a channel.

    Iterate it (``async for event in sub``) or ``await sub.receive()``;
    the stream ends (``trio.EndOfChannel`` / loop exit) on unsubscribe
    or when the bus disconnects.

    '''
    def __init__(
        self,
        bus: EventBus,
        channel: str,
        buffer_size: int,
    ) -> None:
        if buffer_size < 1:
            raise ValueError('Subscriber buffer size must be >= 1')

        self.channel: str = channel
        self._bus = bus
        self._tx: trio.MemorySendChannel
        self._rx: trio.MemoryReceiveChannel
        self._tx, self._rx = trio.open_memory_channel(buffer_size)

        # delivery cursor book keeping for gap (lag) reporting:
        # entries are `[n_sent_before_gap, n_dropped]`.
        self._sent: int = 0
        self._received: int = 0
        self._gaps: deque[list[int]] = deque()
        self.dropped: int = 0
        self._closed: bool = False

    def __repr__(self) -> str:
        return (
            f'Subscription(channel={self.channel!r}, '
            f'closed={self.closed})'
        )

    @property
    def closed(self) -> bool:
        return self._closed

    def _deliver(
        self,
        event: WsEvent,
    ) -> bool:
        '''
        Non-blocking push from the read loop; returns whether the
        event was buffered.

        '''
        try:
            self._tx.send_nowait(event)
        except trio.WouldBlock:
            if (
                self._gaps
                and self._gaps[-1][0] == self._sent
            ):
                self._gaps[-1][1] += 1
            else:
                self._gaps.append([self._sent, 1])

            self.dropped += 1
            return False

        except (
            trio.BrokenResourceError,
            trio.ClosedResourceError,
        ):
            # consumer side went away without detaching
            self._bus._detach(self)
            return False

        self._sent += 1
        return True

    def _close(self) -> None:
        self._closed = True
        self._tx.close()

    async def receive(self) -> WsEvent:
        if (
            self._gaps
            and self._gaps[0][0] == self._received
        ):
            _, count = self._gaps.popleft()
            raise Lagged(count)

        event: WsEvent = await self._rx.receive()
        self._received += 1
        return event

    def __aiter__(self) -> AsyncIterator[WsEvent]:
        return self

    async def __anext__(self) -> WsEvent:
        try:
            return await self.receive()
        except trio.EndOfChannel:
            raise StopAsyncIteration

    async def aclose(self) -> None:
        '''
        Detach only this consumer; the channel subscription itself
        stays up until ``EventBus.unsubscribe()`` or disconnect.

        '''
        self._bus._detach(self)
        self._close()
        await self._rx.aclose()


_codec_errors = (
    msgspec.DecodeError,
    msgspec.ValidationError,
)


class EventBus:
    '''
    Owner of the single streaming connection, its read loop and the
    channel -> subscribers registry.

    State machine: ``DISCONNECTED -> CONNECTING -> CONNECTED`` and back
    to ``DISCONNECTED`` on any close or transport error; a lost
    connection is terminal (no auto-reconnect) until an explicit
    ``.connect()``.

    NOTE: this type should never be created directly but instead is
    provided via the ``open_event_bus()`` factory below.

    '''
    # apparently we can QoS for all sorts of reasons..so catch em.
    transport_errors = (
        ConnectionClosed,
        DisconnectionTimeout,
        ConnectionRejected,
        HandshakeError,
        ConnectionTimeout,
        LocalProtocolError,
        OSError,
    )

    def __init__(
        self,
        url: str,
        nursery: trio.Nursery,

        # how long a graceful close handshake may take before the
        # read loop is simply cancelled.
        close_timeout: float = 1,
        ping_interval: float | None = None,
        buffer_size: int = 1024,

        # override for eg. testing with an in-mem transport
        ws_opener: Callable[[str], AsyncContextManager] = open_websocket_url,
    ) -> None:
        self.url = url
        self._n = nursery
        self._close_timeout = close_timeout
        self._ping_interval = ping_interval
        self._buffer_size = buffer_size
        self._open_ws = ws_opener

        self._state: ConnState = ConnState.DISCONNECTED

        # dynamically reset by the bg connection task
        self._ws: WebSocketConnection | None = None
        self._cs: trio.CancelScope | None = None
        self._connect_lock = trio.Lock()
        self._stopped: trio.Event | None = None

        self._subs: dict[str, set[Subscription]] = {}

        self._decoder = msgspec.json.Decoder(WsResponse)
        self._encoder = msgspec.json.Encoder()

    @property
    def state(self) -> ConnState:
        return self._state

    def is_connected(self) -> bool:
        return self._state is ConnState.CONNECTED

    def channels(self) -> list[str]:
        return list(self._subs)

    def subscribers(self, channel: str) -> int:
        return len(self._subs.get(channel, ()))

    # -- connection mgmt --

    async def connect(self) -> None:
        '''
        Open the connection and start the read loop.

        Idempotent: if already connected (or another task is mid
        handshake) no second physical connection is opened.

        '''
        async with self._connect_lock:
            if self.is_connected():
                return

            self._state = ConnState.CONNECTING
            try:
                await self._n.start(self._run_connection)

            except self.transport_errors as err:
                self._state = ConnState.DISCONNECTED
                raise TransportError(
                    f'Failed to connect to {self.url}: {err!r}'
                ) from err

            if not self.is_connected():
                raise TransportError(
                    f'Disconnected from {self.url} during handshake'
                )

        log.info(f'Connection success: {self.url}')

    async def disconnect(self) -> None:
        '''
        Tear down the connection and end every outstanding
        subscriber's stream.

        '''
        ws: WebSocketConnection | None = self._ws
        cs: trio.CancelScope | None = self._cs
        stopped: trio.Event | None = self._stopped

        self._state = ConnState.DISCONNECTED
        self._close_all()

        if ws is not None:
            with trio.move_on_after(self._close_timeout):
                try:
                    await ws.aclose()
                except self.transport_errors:
                    log.exception(f'{self.url} unclean close')

        if cs is not None:
            cs.cancel()

        if stopped is not None:
            await stopped.wait()

        log.info(f'{self.url} disconnected')

    async def _run_connection(
        self,
        task_status: trio.TaskStatus = trio.TASK_STATUS_IGNORED,
    ) -> None:
        stopped = self._stopped = trio.Event()
        started: bool = False
        try:
            with trio.CancelScope() as cs:
                # published before the handshake so a concurrent
                # ``.disconnect()`` can cancel it.
                self._cs = cs
                async with (
                    self._open_ws(self.url) as ws,
                    trio.open_nursery() as n,
                ):
                    if self._state is ConnState.CONNECTING:
                        self._ws = ws
                        self._state = ConnState.CONNECTED
                        started = True
                        task_status.started()

                        if self._ping_interval:
                            n.start_soon(self._ping_forever, ws)

                        await self._read_loop(ws)
                    else:
                        log.warning(
                            f'{self.url} torn down during handshake'
                        )

                    n.cancel_scope.cancel()

            if not started:
                # cancelled (or torn down) mid handshake, ``.connect()``
                # checks the resulting state.
                started = True
                task_status.started()

        except self.transport_errors:
            if not started:
                raise
            log.exception(f'{self.url} connection bail with:')

        finally:
            if self._cs is cs:
                self._ws = self._cs = None

            if self._state is not ConnState.DISCONNECTED:
                self._state = ConnState.DISCONNECTED
                # connection loss invalidates all subscriptions at once
                self._close_all()

            stopped.set()

    async def _read_loop(
        self,
        ws: WebSocketConnection,
    ) -> None:
        while True:
            try:
                msg: str | bytes = await ws.get_message()
            except ConnectionClosed as cc:
                log.warning(f'{self.url} closed: {cc.reason}')
                return

            self.process_frame(msg)

    async def _ping_forever(
        self,
        ws: WebSocketConnection,
    ) -> None:
        try:
            while True:
                await trio.sleep(self._ping_interval)
                await self.send(Ping())
        except TransportError as err:
            # the read loop notices the close on its own
            log.warning(f'Ping failed: {err}')

    # -- inbound --

    def process_frame(
        self,
        frame: str | bytes,
    ) -> WsResponse | None:
        '''
        Decode and route one inbound frame.

        Undecodable frames are logged and dropped, they never take
        down the connection.

        '''
        try:
            msg: WsResponse = self._decoder.decode(frame)
        except _codec_errors as err:
            log.warning(f'Dropping undecodable frame {frame!r}: {err}')
            return None

        match msg:
            case Event(channel=channel, data=data):
                self.publish(channel, data)

            case Pong():
                log.debug('pong')

            case Subscribed(channel=channel):
                log.info(f'WS subscription is active: {channel}')

            case Unsubscribed(channel=channel):
                log.info(f'WS subscription removed: {channel}')

            case WsErrorMsg(message=message):
                log.error(f'WS error msg: {message}')

        return msg

    def publish(
        self,
        channel: str,
        event: WsEvent,
    ) -> int:
        '''
        Fan ``event`` out to every current subscriber of ``channel``
        and return how many buffered it.

        '''
        delivered: int = 0
        for sub in tuple(self._subs.get(channel, ())):
            delivered += sub._deliver(event)

        return delivered

    # -- outbound --

    async def send(
        self,
        msg: WsRequest,
    ) -> None:
        ws: WebSocketConnection | None = self._ws
        if (
            ws is None
            or not self.is_connected()
        ):
            raise TransportError(f'Not connected to {self.url}')

        try:
            await ws.send_message(self._encoder.encode(msg).decode())
        except self.transport_errors as err:
            raise TransportError(
                f'Failed to send {msg!r} to {self.url}: {err!r}'
            ) from err

    async def ping(self) -> None:
        await self.send(Ping())

    # -- registry --

    async def subscribe(
        self,
        channel: str,
        buffer_size: int | None = None,
    ) -> Subscription:
        '''
        Register interest in ``channel`` and return a new receive
        handle; the server side subscribe request is only sent for a
        channel's first subscriber.

        '''
        if not self.is_connected():
            raise TransportError(
                f'Cannot subscribe to {channel}, not connected'
            )

        sub = Subscription(
            self,
            channel,
            buffer_size or self._buffer_size,
        )
        subs: set[Subscription] | None = self._subs.get(channel)
        first: bool = not subs
        self._subs.setdefault(channel, set()).add(sub)

        if first:
            try:
                await self.send(Subscribe(channel=channel))
            except TransportError:
                # any concurrent subscribers of the channel registered
                # during the send are left without a server side
                # subscription as well.
                for chan_sub in self._subs.pop(channel, ()):
                    chan_sub._close()
                raise

        log.debug(f'Subscribed to {channel}')
        return sub

    async def unsubscribe(
        self,
        channel: str,
    ) -> None:
        '''
        Drop every subscriber of ``channel`` (ending their streams) and
        tell the server to stop publishing it.

        '''
        subs: set[Subscription] = self._subs.pop(channel, set())
        for sub in subs:
            sub._close()

        if self.is_connected():
            await self.send(Unsubscribe(channel=channel))

        log.debug(f'Unsubscribed {len(subs)} consumers from {channel}')

    def _detach(
        self,
        sub: Subscription,
    ) -> None:
        subs: set[Subscription] | None = self._subs.get(sub.channel)
        if subs:
            subs.discard(sub)

    def _close_all(self) -> None:
        subs: dict[str, set[Subscription]] = self._subs
        self._subs = {}
        for chan_subs in subs.values():
            for sub in chan_subs:
                sub._close()


@acm
async def open_event_bus(
    url: str,
    connect: bool = False,
    **kwargs: Any,

) -> AsyncIterator[EventBus]:
    '''
    Allocate an ``EventBus`` whose connection task(s) live in a
    dedicated nursery, optionally connecting up front.

    The connection is always torn down on exit.

    '''
    try:
        async with trio.open_nursery() as n:
            bus = EventBus(url, n, **kwargs)
            try:
                if connect:
                    await bus.connect()
                yield bus
            finally:
                with trio.CancelScope(shield=True):
                    await bus.disconnect()
                n.cancel_scope.cancel()

    # the bus tasks never error on their own so a single member
    # group is always the caller's (body) exception.
    except BaseExceptionGroup as beg:
        if len(beg.exceptions) == 1:
            raise beg.exceptions[0]
        raise
