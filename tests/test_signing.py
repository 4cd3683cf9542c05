'''
Intent signing: determinism, verification and domain separation.

'''
import hashlib

from nacl.signing import SigningKey
import pytest

from ekiden import bcs
from ekiden.auth import KeyPair
from ekiden.errors import CryptoError
from ekiden.schemas import (
    ActionPayload,
    IntentSignatureBody,
    OrderCancel,
    OrderCancelAction,
    OrderCancelAllAction,
    OrderCreate,
    OrderCreateAction,
)
from ekiden.signing import (
    Signature,
    hasher_seed,
    intent_params,
    sign_intent,
    sign_message,
    signing_message,
    verify_intent,
    verify_message,
)
from ekiden.types import Struct


# fixed test key, never used anywhere real
_seed: bytes = bytes(range(32))
_priv: str = '0x' + _seed.hex()

_payload = OrderCreateAction(
    orders=[
        OrderCreate(
            side='buy',
            size=1_000_000,
            price=50_000_000,
            leverage=1,
            order_type='limit',
            market_addr='0xMARKET',
            is_cross=True,
        ),
    ],
)


class IntentSignatureBodyV2(Struct, frozen=True):
    '''
    Structurally identical to ``IntentSignatureBody``.

    '''
    payload: ActionPayload
    nonce: bcs.U64


def test_signing_is_deterministic():
    nonce: int = 1_700_000_000_000
    sig = sign_intent(_priv, _payload, nonce)
    assert sig == sign_intent(_priv, _payload, nonce)
    assert len(sig.raw) == 64

    # all key input forms produce the same signature
    key = KeyPair.from_private_key(_priv)
    assert sign_intent(key, _payload, nonce) == sig
    assert sign_intent(_seed, _payload, nonce) == sig
    assert sign_intent(_priv[2:], _payload, nonce) == sig

    assert verify_intent(key.public_key(), _payload, nonce, sig)
    assert verify_intent(key, _payload, nonce, sig.to_encoded_string())

    # any change to the signed body invalidates the signature
    assert not verify_intent(key, _payload, nonce + 1, sig)
    assert sign_intent(_priv, _payload, nonce + 1) != sig


def test_signing_message_layout():
    body = IntentSignatureBody(payload=_payload, nonce=42)
    msg: bytes = signing_message(body)
    seed: bytes = hashlib.sha3_256(b'APTOS::IntentSignatureBody').digest()

    assert hasher_seed('IntentSignatureBody') == seed
    assert msg == seed + bcs.encode(body)

    # a raw ed25519 signature over the exact message bytes
    sig = sign_intent(_priv, _payload, 42)
    assert SigningKey(_seed).sign(msg).signature == sig.raw


def test_domain_separation():
    body = IntentSignatureBody(payload=_payload, nonce=42)
    other = IntentSignatureBodyV2(payload=_payload, nonce=42)

    # same canonical bytes, different type name
    assert bcs.encode(body) == bcs.encode(other)
    assert signing_message(body) != signing_message(other)

    key = KeyPair.from_private_key(_priv)
    sig = sign_message(key, body)
    assert verify_message(key, body, sig)
    assert not verify_message(key, other, sig)


@pytest.mark.parametrize(
    'payload',
    [
        _payload,
        OrderCancelAction(cancels=[OrderCancel(sid='sid-1')]),
        OrderCancelAllAction(market_addr=None),
    ],
    ids=lambda p: type(p).__name__,
)
def test_variants_sign_and_verify(payload):
    key = KeyPair.generate()
    params: dict = intent_params(key, payload, nonce=5)
    assert params['nonce'] == 5
    assert params['payload'] is payload
    assert verify_intent(key, payload, 5, params['signature'])


@pytest.mark.parametrize(
    'bad_key',
    [
        '0x1234',
        'zz' * 32,
        b'\x00' * 31,
        '',
    ],
)
def test_malformed_key_raises(bad_key):
    with pytest.raises(CryptoError):
        sign_intent(bad_key, _payload, 1)


def test_signature_encoding():
    sig = sign_intent(_priv, _payload, 1)
    encoded: str = sig.to_encoded_string()
    assert encoded.startswith('0x')
    assert len(encoded) == 2 + 128
    assert Signature.from_encoded_string(encoded) == sig
    assert str(sig) == encoded
    assert bytes(sig) == sig.raw

    with pytest.raises(CryptoError):
        Signature.from_encoded_string('0xdead')
