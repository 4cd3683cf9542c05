'''
Canonical (bcs) codec tests.

'''
import pytest

from ekiden import bcs
from ekiden.errors import DecodeError
from ekiden.schemas import (
    ActionPayload,
    IntentSignatureBody,
    OrderCancel,
    OrderCancelAction,
    OrderCancelAllAction,
    OrderCreate,
    OrderCreateAction,
    TimeInForce,
)


def mk_order(**kwargs) -> OrderCreate:
    return OrderCreate(**({
        'side': 'buy',
        'size': 1_000_000,
        'price': 50_000_000,
        'leverage': 1,
        'order_type': 'limit',
        'market_addr': '0xMARKET',
        'is_cross': True,
    } | kwargs))


@pytest.mark.parametrize(
    'value, expect',
    [
        (0, b'\x00'),
        (127, b'\x7f'),
        (128, b'\x80\x01'),
        (16384, b'\x80\x80\x01'),
    ],
)
def test_uleb128(value, expect):
    assert bcs.uleb128(value) == expect


def test_primitive_layouts():
    assert bcs.encode(True) == b'\x01'
    assert bcs.encode(False) == b'\x00'
    assert bcs.encode('abc') == b'\x03abc'

    # plain ints are u64 little endian
    assert bcs.encode(1) == b'\x01' + b'\x00' * 7
    assert bcs.encode(2**64 - 1, bcs.U64) == b'\xff' * 8
    assert bcs.encode(1, bcs.U8) == b'\x01'
    assert bcs.encode(-1, bcs.I64) == b'\xff' * 8

    assert bcs.encode(None, str | None) == b'\x00'
    assert bcs.encode('a', str | None) == b'\x01\x01a'
    assert bcs.encode([1, 2], list[bcs.U8]) == b'\x02\x01\x02'


def test_enum_encodes_as_its_value():
    assert bcs.encode(TimeInForce.IOC) == bcs.encode('IOC')


def test_tagged_struct_encodes_tag_first():
    action = OrderCancelAllAction(market_addr=None)
    tag: bytes = b'order_cancel_all'
    assert bcs.encode(action) == bytes([len(tag)]) + tag + b'\x00'

    # the same bytes when encoded as a union member
    assert bcs.encode(action, ActionPayload) == bcs.encode(action)


def test_field_order_is_declaration_order():
    body = IntentSignatureBody(
        payload=OrderCancelAction(cancels=[OrderCancel(sid='x')]),
        nonce=7,
    )
    raw: bytes = bcs.encode(body)
    assert raw.endswith((7).to_bytes(8, 'little'))
    assert raw.startswith(b'\x0corder_cancel')


@pytest.mark.parametrize(
    'payload',
    [
        OrderCreateAction(orders=[
            mk_order(),
            mk_order(
                side='sell',
                time_in_force=TimeInForce.PostOnly,
                is_cross=False,
            ),
            mk_order(time_in_force=None),
        ]),
        OrderCancelAction(cancels=[
            OrderCancel(sid='sid-1'),
            OrderCancel(sid='sid-2'),
        ]),
        OrderCancelAllAction(market_addr='0xMARKET'),
        OrderCancelAllAction(),
    ],
    ids=lambda p: type(p).__name__,
)
def test_action_payload_round_trip(payload):
    raw: bytes = bcs.encode(payload, ActionPayload)
    assert bcs.decode(raw, ActionPayload) == payload

    body = IntentSignatureBody(payload=payload, nonce=2**64 - 1)
    assert bcs.decode(bcs.encode(body), IntentSignatureBody) == body


def test_unknown_union_tag_fails_closed():
    raw: bytes = bcs.encode('order_replace') + b'\x00'
    with pytest.raises(DecodeError):
        bcs.decode(raw, ActionPayload)


@pytest.mark.parametrize(
    'raw, tp',
    [
        # trailing bytes
        (b'\x01\x00', bool),
        # invalid bool byte
        (b'\x02', bool),
        # invalid option flag
        (b'\x02', str | None),
        # non-canonical (over long) uleb128 length
        (b'\x80\x00', str),
        # truncated input
        (b'\x05ab', str),
        (b'\x01\x00', int),
    ],
)
def test_malformed_input_rejected(raw, tp):
    with pytest.raises(DecodeError):
        bcs.decode(raw, tp)


def test_out_of_range_ints_rejected():
    with pytest.raises(ValueError):
        bcs.encode(mk_order(size=-1))

    with pytest.raises(ValueError):
        bcs.encode(
            IntentSignatureBody(
                payload=OrderCancelAllAction(),
                nonce=2**64,
            )
        )
