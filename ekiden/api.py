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

'''
ReST request pipeline and the ``Client`` facade which ties the role
sessions, http api and websocket event bus together.

'''
from __future__ import annotations
from contextlib import (
    asynccontextmanager as acm,
)
from typing import (
    Any,
    AsyncIterator,
)

import asks
from asks.errors import AsksException
from asks.response_objects import Response
import msgspec
from msgspec import (
    field,
    structs,
)
import trio

from .auth import (
    KeyPair,
    Role,
    SessionManager,
)
from .config import EkidenConfig
from .errors import (
    ApiError,
    AuthError,
    ConfigError,
    DecodeError,
    EkidenError,
    TransportError,
)
from .log import (
    colorize_json,
    get_logger,
)
from .schemas import (
    ActionPayload,
    AuthorizeResponse,
    CandleResponse,
    DepositResponse,
    FillResponse,
    FundingRateResponse,
    GetUserLeverageParams,
    LeverageResponse,
    ListCandlesParams,
    ListDepositsParams,
    ListFillsParams,
    ListFundingRatesParams,
    ListMarketsParams,
    ListOrdersParams,
    ListPositionsParams,
    ListVaultsParams,
    ListWithdrawsParams,
    MarketResponse,
    OrderResponse,
    OrderSide,
    Pagination,
    PortfolioResponse,
    PositionResponse,
    QueryParams,
    SendIntentParams,
    SendIntentResponse,
    SetUserLeverageParams,
    VaultResponse,
    WithdrawResponse,
)
from .signing import (
    Signature,
    intent_params,
    sign_intent,
)
from .types import Struct
from .ws import (
    EventBus,
    Subscription,
    channels,
    open_event_bus,
)

log = get_logger(__name__)

_auth_header: str = 'Authorization'


class RequestConfig(Struct):
    '''
    A single http call's shape; every builder returns a new instance.

    '''
    method: str = 'GET'
    headers: dict[str, str] = field(default_factory=dict)
    query: dict[str, str] = field(default_factory=dict)
    body: Any = None

    # role whose bearer token gets attached at send time unless an
    # ``Authorization`` header was pre-supplied.
    auth_role: Role | None = None

    @classmethod
    def get(cls) -> RequestConfig:
        return cls(method='GET')

    @classmethod
    def post(cls, body: Any = None) -> RequestConfig:
        return cls(method='POST', body=body)

    @classmethod
    def put(cls, body: Any = None) -> RequestConfig:
        return cls(method='PUT', body=body)

    @classmethod
    def delete(cls) -> RequestConfig:
        return cls(method='DELETE')

    def with_query(
        self,
        query: QueryParams | dict[str, str],
    ) -> RequestConfig:
        if isinstance(query, QueryParams):
            query = query.to_query_params()

        return structs.replace(self, query=self.query | query)

    def with_header(
        self,
        key: str,
        value: str,
    ) -> RequestConfig:
        return structs.replace(self, headers=self.headers | {key: value})

    def with_auth(self, role: Role | str) -> RequestConfig:
        return structs.replace(self, auth_role=Role(role))

    def with_bearer(self, token: str) -> RequestConfig:
        return self.with_header(_auth_header, f'Bearer {token}')

    def has_auth_header(self) -> bool:
        return any(
            key.lower() == _auth_header.lower()
            for key in self.headers
        )


class Client:
    '''
    Ekiden exchange api client.

    Owns the per role auth sessions, an ``asks`` http session for the
    ReST endpoints and (optionally) an ``EventBus`` for streaming.

    NOTE: normally allocated via ``open_client()``.

    '''
    _transport_errors = (
        AsksException,
        trio.BrokenResourceError,
        trio.ClosedResourceError,
        trio.TooSlowError,
        OSError,
    )

    def __init__(
        self,
        config: EkidenConfig,
        sessions: SessionManager | None = None,
        sesh: asks.Session | None = None,
        bus: EventBus | None = None,
    ) -> None:
        self.config: EkidenConfig = config
        self.sessions: SessionManager = sessions or SessionManager()

        if sesh is None:
            sesh = asks.Session(connections=4)
            sesh.base_location = config.base_url
            sesh.headers.update({'User-Agent': config.user_agent})

        self._sesh = sesh
        self._bus: EventBus | None = bus

    def __repr__(self) -> str:
        return (
            f'Client(base_url={self.config.base_url!r}, '
            f'sessions={self.sessions.status()})'
        )

    # -- request pipeline --

    def _mk_headers(
        self,
        config: RequestConfig,
    ) -> dict[str, str]:
        headers: dict[str, str] = dict(config.headers)
        if (
            config.auth_role is not None
            and not config.has_auth_header()
        ):
            # raises ``AuthError`` if this role has no token
            headers |= self.sessions[config.auth_role].auth_headers()

        if config.body is not None:
            headers.setdefault('Content-Type', 'application/json')

        return headers

    async def request(
        self,
        path: str,
        config: RequestConfig,
        response_type: Any = Any,
    ) -> Any:
        '''
        Send a single http request and decode the json response body
        as ``response_type``.

        No retries: any failure propagates as one of ``AuthError``,
        ``TransportError``, ``ApiError`` or ``DecodeError``.

        '''
        headers: dict[str, str] = self._mk_headers(config)
        api_path: str = self.config.api_path(path)
        kwargs: dict[str, Any] = {}
        if config.query:
            kwargs['params'] = config.query

        if config.body is not None:
            kwargs['data'] = msgspec.json.encode(config.body)

        log.debug(f'{config.method} {api_path} {config.query or ""}')
        try:
            resp: Response = await self._sesh.request(
                config.method,
                path=api_path,
                headers=headers,
                timeout=self.config.timeout,
                retries=0,
                **kwargs,
            )
        except self._transport_errors as err:
            raise TransportError(
                f'{config.method} {api_path} failed: {err!r}'
            ) from err

        return resproc(
            resp,
            response_type,
            log_resp=self.config.logging,
        )

    # -- auth --

    def set_private_key(
        self,
        role: Role | str,
        key: KeyPair | str,
    ) -> None:
        self.sessions.set_key(role, key)

    def set_token(
        self,
        token: str,
        role: Role | str = Role.OWNER,
    ) -> None:
        self.sessions[role].set_token(token)

    def token(self, role: Role | str = Role.OWNER) -> str | None:
        return self.sessions.token(role)

    def public_key(self, role: Role | str = Role.OWNER) -> str | None:
        return self.sessions.public_key(role)

    def is_authenticated(self, role: Role | str = Role.OWNER) -> bool:
        return self.sessions.is_authenticated(role)

    async def authorize(
        self,
        role: Role | str = Role.OWNER,
    ) -> AuthorizeResponse:
        '''
        Run the challenge handshake for ``role`` and store the issued
        token in (only) that role's context.

        '''
        ctx = self.sessions[role]
        params = ctx.build_challenge()
        resp: AuthorizeResponse = await self.request(
            'authorize',
            RequestConfig.post(params),
            AuthorizeResponse,
        )
        ctx.accept_token(resp, public_key=params.public_key)
        log.info(f'Authorized {ctx.role.value} role: {params.public_key}')
        return resp

    async def authorize_all(
        self,
        strict: bool = False,
    ) -> dict[Role, Exception]:
        '''
        Authorize every keyed role, collecting any per role failures.

        Partial success is a valid outcome unless ``strict`` is set in
        which case the first failure is raised.

        '''
        failures: dict[Role, Exception] = {}
        for role in self.sessions.keyed():
            try:
                await self.authorize(role)
            except EkidenError as err:
                log.error(f'Failed to authorize {role.value} role: {err}')
                failures[role] = err

        if strict and failures:
            err: Exception = next(iter(failures.values()))
            raise AuthError(
                f'Authorization failed for {[r.value for r in failures]}'
            ) from err

        return failures

    # -- markets --

    async def get_markets(
        self,
        params: ListMarketsParams | None = None,
    ) -> list[MarketResponse]:
        return await self.request(
            'market_info',
            RequestConfig.get().with_query(params or ListMarketsParams()),
            list[MarketResponse],
        )

    async def get_market_by_address(
        self,
        market_addr: str,
    ) -> MarketResponse | None:
        markets = await self.get_markets(
            ListMarketsParams(market_addr=market_addr)
        )
        return markets[0] if markets else None

    async def get_market_by_symbol(
        self,
        symbol: str,
    ) -> MarketResponse | None:
        markets = await self.get_markets(ListMarketsParams(symbol=symbol))
        return markets[0] if markets else None

    # -- orders, fills --

    async def get_orders(
        self,
        params: ListOrdersParams,
    ) -> list[OrderResponse]:
        return await self.request(
            'orders',
            RequestConfig.get().with_query(params),
            list[OrderResponse],
        )

    async def get_orders_by_side(
        self,
        market_addr: str,
        side: OrderSide | str,
        pagination: Pagination | None = None,
    ) -> list[OrderResponse]:
        return await self.get_orders(
            ListOrdersParams(
                market_addr=market_addr,
                side=OrderSide(side).value,
                pagination=pagination or Pagination(),
            )
        )

    async def get_fills(
        self,
        params: ListFillsParams,
    ) -> list[FillResponse]:
        return await self.request(
            'fills',
            RequestConfig.get().with_query(params),
            list[FillResponse],
        )

    async def get_recent_fills(
        self,
        market_addr: str,
        limit: int | None = None,
    ) -> list[FillResponse]:
        return await self.get_fills(
            ListFillsParams(
                market_addr=market_addr,
                pagination=Pagination(limit=limit, offset=0),
            )
        )

    # -- user (owner role) --

    async def get_user_vaults(
        self,
        params: ListVaultsParams | None = None,
    ) -> list[VaultResponse]:
        return await self.request(
            'user/vaults',
            RequestConfig.get()
            .with_query(params or ListVaultsParams())
            .with_auth(Role.OWNER),
            list[VaultResponse],
        )

    async def get_all_user_vaults(self) -> list[VaultResponse]:
        return await self.get_user_vaults(ListVaultsParams())

    async def get_user_positions(
        self,
        params: ListPositionsParams | None = None,
    ) -> list[PositionResponse]:
        return await self.request(
            'user/positions',
            RequestConfig.get()
            .with_query(params or ListPositionsParams())
            .with_auth(Role.OWNER),
            list[PositionResponse],
        )

    async def get_user_positions_by_market(
        self,
        market_addr: str,
    ) -> list[PositionResponse]:
        return await self.get_user_positions(
            ListPositionsParams(market_addr=market_addr)
        )

    async def get_all_user_positions(self) -> list[PositionResponse]:
        return await self.get_user_positions(ListPositionsParams())

    async def get_user_leverage(
        self,
        market_addr: str,
    ) -> LeverageResponse:
        return await self.request(
            'user/leverage',
            RequestConfig.get()
            .with_query(GetUserLeverageParams(market_addr=market_addr))
            .with_auth(Role.OWNER),
            LeverageResponse,
        )

    async def set_user_leverage(
        self,
        market_addr: str,
        leverage: int,
    ) -> LeverageResponse:
        return await self.request(
            'user/leverage',
            RequestConfig.post(
                SetUserLeverageParams(
                    market_addr=market_addr,
                    leverage=leverage,
                )
            ).with_auth(Role.OWNER),
            LeverageResponse,
        )

    async def get_user_portfolio(self) -> PortfolioResponse:
        return await self.request(
            'user/portfolio',
            RequestConfig.get().with_auth(Role.OWNER),
            PortfolioResponse,
        )

    # -- intents (trading role) --

    def sign_intent(
        self,
        payload: ActionPayload,
        nonce: int,
        key: KeyPair | str | None = None,
    ) -> Signature:
        '''
        Sign ``payload`` with ``key``, by default the trading role's.

        '''
        return sign_intent(self._intent_key(key), payload, nonce)

    def _intent_key(
        self,
        key: KeyPair | str | None = None,
    ) -> KeyPair | str:
        if key is None:
            key = self.sessions.trading.key

        if key is None:
            raise ConfigError('No trading key set for signing intents')

        return key

    async def send_intent(
        self,
        params: SendIntentParams,
    ) -> SendIntentResponse:
        return await self.request(
            'user/intent/commit',
            RequestConfig.post(params).with_auth(Role.TRADING),
            SendIntentResponse,
        )

    async def submit_intent(
        self,
        payload: ActionPayload,
        nonce: int | None = None,
    ) -> SendIntentResponse:
        '''
        Sign ``payload`` with the trading key and commit it.

        '''
        params = SendIntentParams(
            **intent_params(self._intent_key(), payload, nonce)
        )
        log.info(f'Submitting intent with nonce {params.nonce}')
        return await self.send_intent(params)

    # -- deposits, withdraws --

    async def get_deposits(
        self,
        params: ListDepositsParams | None = None,
    ) -> list[DepositResponse]:
        return await self.request(
            'deposits',
            RequestConfig.get().with_query(params or ListDepositsParams()),
            list[DepositResponse],
        )

    async def get_user_deposits(
        self,
        user_addr: str,
    ) -> list[DepositResponse]:
        return await self.get_deposits(
            ListDepositsParams(user_addr=user_addr)
        )

    async def get_withdrawals(
        self,
        params: ListWithdrawsParams | None = None,
    ) -> list[WithdrawResponse]:
        return await self.request(
            'withdraws',
            RequestConfig.get().with_query(params or ListWithdrawsParams()),
            list[WithdrawResponse],
        )

    async def get_user_withdrawals(
        self,
        user_addr: str,
    ) -> list[WithdrawResponse]:
        return await self.get_withdrawals(
            ListWithdrawsParams(user_addr=user_addr)
        )

    # -- candles, funding --

    async def get_candles(
        self,
        params: ListCandlesParams,
    ) -> list[CandleResponse]:
        return await self.request(
            'candles',
            RequestConfig.get().with_query(params),
            list[CandleResponse],
        )

    async def get_recent_candles(
        self,
        market_addr: str,
        timeframe: str,
        limit: int | None = None,
    ) -> list[CandleResponse]:
        return await self.get_candles(
            ListCandlesParams(
                market_addr=market_addr,
                timeframe=timeframe,
                pagination=Pagination(limit=limit, offset=0),
            )
        )

    async def get_funding_rates(
        self,
        params: ListFundingRatesParams,
    ) -> list[FundingRateResponse]:
        return await self.request(
            'funding_rate',
            RequestConfig.get().with_query(params),
            list[FundingRateResponse],
        )

    async def get_current_funding_rate(
        self,
        market_addr: str,
    ) -> FundingRateResponse | None:
        rates = await self.get_funding_rates(
            ListFundingRatesParams(
                market_addr=market_addr,
                pagination=Pagination(limit=1, offset=0),
            )
        )
        return rates[0] if rates else None

    # -- websocket --

    @property
    def bus(self) -> EventBus:
        if self._bus is None:
            raise ConfigError('Client was created without a websocket bus')
        return self._bus

    async def connect_websocket(self) -> None:
        await self.bus.connect()

    async def disconnect_websocket(self) -> None:
        await self.bus.disconnect()

    def is_websocket_connected(self) -> bool:
        return (
            self._bus is not None
            and self._bus.is_connected()
        )

    async def subscribe(
        self,
        channel: str,
        buffer_size: int | None = None,
    ) -> Subscription:
        return await self.bus.subscribe(channel, buffer_size)

    async def subscribe_orderbook(self, market_addr: str) -> Subscription:
        return await self.subscribe(channels.orderbook(market_addr))

    async def subscribe_trades(self, market_addr: str) -> Subscription:
        return await self.subscribe(channels.trades(market_addr))

    async def subscribe_user(self, user_addr: str) -> Subscription:
        return await self.subscribe(channels.user(user_addr))

    async def unsubscribe(self, channel: str) -> None:
        await self.bus.unsubscribe(channel)


def resproc(
    resp: Response,
    response_type: Any,
    log_resp: bool = False,

) -> Any:
    '''
    Process a response, decoding its json body as ``response_type``.

    Raise the appropriate error on non-2xx responses.

    '''
    if not 200 <= resp.status_code < 300:
        log.error(f'API error {resp.status_code}: {resp.text}')
        raise ApiError(resp.status_code, resp.text)

    try:
        msg = msgspec.json.decode(resp.body, type=response_type)
    except (
        msgspec.DecodeError,
        msgspec.ValidationError,
    ) as err:
        log.exception(f'Failed to decode {resp}:\n{resp.text}')
        raise DecodeError(f'Failed to decode response: {err}') from err

    if log_resp:
        log.debug(
            'Received json contents:\n'
            f'{colorize_json(msgspec.to_builtins(msg))}'
        )

    return msg


@acm
async def open_client(
    config: EkidenConfig | None = None,
    *,
    private_key: KeyPair | str | None = None,
    funding_private_key: KeyPair | str | None = None,
    trading_private_key: KeyPair | str | None = None,
    token: str | None = None,
    authorize: bool = False,
    connect_ws: bool = False,
    **bus_kwargs,

) -> AsyncIterator[Client]:
    '''
    Allocate a ``Client`` with its http session and (not yet
    connected unless ``connect_ws`` is set) websocket bus.

    With ``authorize=True`` every keyed role is authorized up front
    and any failure is raised.

    '''
    config = config or EkidenConfig.production()
    sessions = SessionManager()
    for role, key in (
        (Role.OWNER, private_key),
        (Role.FUNDING, funding_private_key),
        (Role.TRADING, trading_private_key),
    ):
        if key is not None:
            sessions.set_key(role, key)

    if token is not None:
        sessions.owner.set_token(token)

    async with open_event_bus(
        config.ws_url,
        connect=connect_ws,
        **bus_kwargs,
    ) as bus:
        client = Client(
            config,
            sessions=sessions,
            bus=bus,
        )
        if authorize:
            await client.authorize_all(strict=True)

        yield client
