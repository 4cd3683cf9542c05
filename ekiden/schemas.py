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
Wire message schemas for the ReST and websocket apis.

All tagged unions (intent payloads and outputs, ws frames and events)
use a ``type`` discriminant field; decoding an unknown tag fails.

"""
from __future__ import annotations
from enum import Enum
from typing import Union

from msgspec import field

from .bcs import (
    U8,
    U32,
    U64,
    I64,
)
from .types import Struct


# ----------
# pagination
# ----------

class QueryParams(Struct):
    '''
    A GET request's parameters, rendered as a flat query-string map.

    '''
    def to_query_params(self) -> dict[str, str]:
        '''
        Project all set fields to a flat ``dict[str, str]``.

        Unset (``None``) fields are omitted entirely and any nested
        ``QueryParams`` (eg. ``Pagination``) are flattened in.

        '''
        params: dict[str, str] = {}
        for name in self.__struct_fields__:
            value = getattr(self, name)
            match value:
                case None:
                    continue

                case QueryParams():
                    params |= value.to_query_params()
                    continue

                case Enum():
                    value = value.value

                case bool():
                    value = str(value).lower()

            params[name] = str(value)

        return params


class Pagination(QueryParams):
    limit: U32 | None = 100
    offset: U32 | None = 0
    page: U32 | None = None
    page_size: U32 | None = None

    @classmethod
    def new(
        cls,
        limit: int,
        offset: int,
    ) -> Pagination:
        return cls(limit=limit, offset=offset)

    @classmethod
    def with_page(
        cls,
        page: int,
        page_size: int,
    ) -> Pagination:
        return cls(
            limit=None,
            offset=None,
            page=page,
            page_size=page_size,
        )


# --------------
# authentication
# --------------

class AuthorizeChallenge(Struct, frozen=True):
    '''
    The (canonically encoded) message signed to prove key ownership
    during the ``authorize`` handshake.

    '''
    domain: str
    public_key: str
    timestamp_ms: U64
    nonce: str


class AuthorizeParams(Struct):
    signature: str
    public_key: str
    timestamp_ms: I64
    nonce: str


class AuthorizeResponse(Struct):
    token: str


# -------
# markets
# -------

class MarketResponse(Struct):
    symbol: str
    addr: str
    base_addr: str
    base_decimals: U8
    quote_addr: str
    quote_decimals: U8
    min_order_size: int
    max_leverage: int
    initial_margin_ratio: float
    maintenance_margin_ratio: float
    mark_price: int
    oracle_price: int
    open_interest: int
    funding_index: int
    funding_epoch: int
    root: str
    epoch: int
    created_at: str
    updated_at: str


class ListMarketsParams(QueryParams):
    market_addr: str | None = None
    symbol: str | None = None
    pagination: Pagination = field(default_factory=Pagination)


# ------
# orders
# ------

class OrderSide(str, Enum):
    BUY = 'buy'
    SELL = 'sell'


class OrderType(str, Enum):
    MARKET = 'market'
    LIMIT = 'limit'


class OrderResponse(Struct):
    sid: str
    side: str
    size: int
    price: int
    leverage: int
    order_type: str = field(name='type')
    status: str
    user_addr: str
    market_addr: str
    seq: int
    timestamp: int


class ListOrdersParams(QueryParams):
    market_addr: str
    side: str | None = None
    pagination: Pagination = field(default_factory=Pagination)


class FillResponse(Struct):
    sid: str
    price: int
    size: int
    side: str
    taker_addr: str
    maker_addr: str
    market_addr: str
    seq: int
    timestamp: int


class ListFillsParams(QueryParams):
    market_addr: str
    pagination: Pagination = field(default_factory=Pagination)


# ----
# user
# ----

class VaultResponse(Struct):
    addr: str
    user_addr: str
    asset_addr: str
    amount: int


class ListVaultsParams(QueryParams):
    pagination: Pagination = field(default_factory=Pagination)


class PositionResponse(Struct):
    sid: str
    market_addr: str
    user_addr: str
    size: int  # signed, negative for shorts
    price: int
    entry_price: int
    margin: int
    funding_index: int
    is_cross: bool
    mark_price: int
    side: str
    unrealized_pnl: int
    timestamp: int
    timestamp_ms: int
    initial_margin: int | None = None
    initial_margin_mark: int | None = None
    maintenance_margin: int | None = None
    leverage: int | None = None
    liq_price: int | None = None


class ListPositionsParams(QueryParams):
    market_addr: str | None = None
    pagination: Pagination = field(default_factory=Pagination)


class LeverageResponse(Struct):
    market_addr: str
    leverage: int


class GetUserLeverageParams(QueryParams):
    market_addr: str


class SetUserLeverageParams(Struct):
    market_addr: str
    leverage: U64


class PortfolioSummary(Struct):
    total_value: int | None = None
    available_balance: int | None = None
    locked_balance: int | None = None
    unrealized_pnl: int | None = None
    margin_used: int | None = None
    margin_available: int | None = None


class PortfolioPosition(Struct):
    market_addr: str
    symbol: str
    side: str
    size: int
    entry_price: int
    mark_price: int
    unrealized_pnl: int
    margin: int
    leverage: int


class PortfolioVault(Struct):
    id: int
    asset_addr: str
    balance: int


class PortfolioResponse(Struct):
    summary: PortfolioSummary
    positions: list[PortfolioPosition]
    vault_balances: list[PortfolioVault]


# -------
# intents
# -------

class TimeInForce(str, Enum):
    # remainder (whatever is not filled) rests in the book
    GTC = 'GTC'
    # fill what is possible, cancel the rest
    IOC = 'IOC'
    # fill entirely or cancel
    FOK = 'FOK'
    # cancel if any part would match on entry
    PostOnly = 'PostOnly'


class OrderCreate(Struct, frozen=True):
    side: str
    size: U64
    price: U64
    leverage: U64
    order_type: str = field(name='type')  # limit, market
    market_addr: str
    is_cross: bool

    # always explicitly set (and thus signed) unless the caller
    # passes ``None`` in which case the server applies GTC.
    time_in_force: TimeInForce | None = TimeInForce.GTC


class OrderCancel(Struct, frozen=True):
    sid: str


class OrderCreateAction(
    Struct,
    frozen=True,
    tag='order_create',
    tag_field='type',
):
    orders: list[OrderCreate]


class OrderCancelAction(
    Struct,
    frozen=True,
    tag='order_cancel',
    tag_field='type',
):
    cancels: list[OrderCancel]


class OrderCancelAllAction(
    Struct,
    frozen=True,
    tag='order_cancel_all',
    tag_field='type',
):
    # cancel all orders in this market or, if unset, all of the
    # user's active orders.
    market_addr: str | None = None


ActionPayload = Union[
    OrderCreateAction,
    OrderCancelAction,
    OrderCancelAllAction,
]


class IntentSignatureBody(Struct, frozen=True):
    '''
    The exact unit which is canonically encoded and signed: binding
    an action payload to a replay protection nonce.

    '''
    payload: ActionPayload
    nonce: U64


class SendIntentParams(Struct):
    payload: ActionPayload
    nonce: U64
    signature: str


class OrderCreateOutput(Struct):
    sid: str


class OrderCancelOutput(Struct):
    sid: str


class OrderCreateIntentOutput(
    Struct,
    tag='order_create',
    tag_field='type',
):
    outputs: list[OrderCreateOutput]


class OrderCancelIntentOutput(
    Struct,
    tag='order_cancel',
    tag_field='type',
):
    outputs: list[OrderCancelOutput]


class OrderCancelAllIntentOutput(
    Struct,
    tag='order_cancel_all',
    tag_field='type',
):
    outputs: list[OrderCancelOutput]


IntentOutput = Union[
    OrderCreateIntentOutput,
    OrderCancelIntentOutput,
    OrderCancelAllIntentOutput,
]


class SendIntentResponse(Struct):
    output: IntentOutput
    seq: int
    version: int
    timestamp: int


# -------------------
# deposits, withdraws
# -------------------

class DepositResponse(Struct):
    user_addr: str
    vault_addr: str
    asset_addr: str
    amount: int
    tx_hash: str
    version: int
    timestamp: int
    status: str


class ListDepositsParams(QueryParams):
    user_addr: str | None = None
    vault_addr: str | None = None
    asset_addr: str | None = None
    start_version: int | None = None
    end_version: int | None = None
    pagination: Pagination = field(default_factory=Pagination)


class WithdrawResponse(DepositResponse):
    pass


class ListWithdrawsParams(ListDepositsParams):
    pass


# ---------------------
# candles, funding rate
# ---------------------

class CandleResponse(Struct):
    timestamp: int
    open: float
    high: float
    low: float
    close: float
    volume: int
    count: int


class ListCandlesParams(QueryParams):
    market_addr: str
    timeframe: str  # "1m", "5m", "15m", "1h", "4h", "1d"
    start_time: int | None = None
    end_time: int | None = None
    pagination: Pagination = field(default_factory=Pagination)


class FundingRateResponse(Struct):
    market_addr: str
    funding_rate: float
    funding_index: int
    funding_epoch: int
    next_funding_time: int
    timestamp: int


class ListFundingRatesParams(QueryParams):
    market_addr: str
    start_time: int | None = None
    end_time: int | None = None
    pagination: Pagination = field(default_factory=Pagination)


# ---------
# websocket
# ---------

class OrderbookLevel(Struct, frozen=True):
    price: int
    size: int


class OrderbookSnapshot(
    Struct,
    frozen=True,
    tag='orderbook_snapshot',
    tag_field='type',
):
    market_addr: str
    bids: list[OrderbookLevel]
    asks: list[OrderbookLevel]
    timestamp: int


class OrderbookUpdate(
    Struct,
    frozen=True,
    tag='orderbook_update',
    tag_field='type',
):
    market_addr: str
    bids: list[OrderbookLevel]
    asks: list[OrderbookLevel]
    timestamp: int


class Trade(
    Struct,
    frozen=True,
    tag='trade',
    tag_field='type',
):
    market_addr: str
    price: int
    size: int
    side: str
    timestamp: int


class OrderUpdate(
    Struct,
    frozen=True,
    tag='order_update',
    tag_field='type',
):
    order: OrderResponse


class PositionUpdate(
    Struct,
    frozen=True,
    tag='position_update',
    tag_field='type',
):
    position: PositionResponse


class BalanceUpdate(
    Struct,
    frozen=True,
    tag='balance_update',
    tag_field='type',
):
    vault: VaultResponse


WsEvent = Union[
    OrderbookSnapshot,
    OrderbookUpdate,
    Trade,
    OrderUpdate,
    PositionUpdate,
    BalanceUpdate,
]


# client -> server
class Ping(Struct, tag='ping', tag_field='type'):
    pass


class Subscribe(Struct, tag='subscribe', tag_field='type'):
    channel: str


class Unsubscribe(Struct, tag='unsubscribe', tag_field='type'):
    channel: str


WsRequest = Union[
    Ping,
    Subscribe,
    Unsubscribe,
]


# server -> client
class Pong(Struct, tag='pong', tag_field='type'):
    pass


class Subscribed(Struct, tag='subscribed', tag_field='type'):
    channel: str


class Unsubscribed(Struct, tag='unsubscribed', tag_field='type'):
    channel: str


class Event(Struct, tag='event', tag_field='type'):
    channel: str
    data: WsEvent


class WsErrorMsg(Struct, tag='error', tag_field='type'):
    message: str


WsResponse = Union[
    Pong,
    Subscribed,
    Unsubscribed,
    Event,
    WsErrorMsg,
]
