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
Intent signing: canonical-encode -> domain-separate -> ed25519 sign.

Every function here is pure (no io, no shared state) so the whole
pipeline can be verified offline, see ``verify_intent()``.

The signed message for a value of struct type ``T`` is::

    sha3_256(b'APTOS::' + T.__name__) || bcs(value)

where the leading 32 byte "seed" is the domain separator: a signature
over some type can never verify for a structurally identical value
of a differently named type.

'''
from __future__ import annotations
from functools import lru_cache
import hashlib
import time
from typing import (
    Any,
    TYPE_CHECKING,
)

from nacl.exceptions import (
    BadSignatureError,
    CryptoError as NaclCryptoError,
)
from nacl.signing import (
    SigningKey,
    VerifyKey,
)

from . import bcs
from .errors import CryptoError
from .schemas import (
    ActionPayload,
    IntentSignatureBody,
)
from .types import Struct

if TYPE_CHECKING:
    from .auth import KeyPair


_hash_prefix: bytes = b'APTOS::'
_sig_len: int = 64
_key_len: int = 32


def decode_hex(
    encoded: str,
    size: int,
    what: str = 'key',
) -> bytes:
    '''
    Parse a (optionally ``0x`` prefixed) hex string of exactly
    ``size`` bytes.

    '''
    if not isinstance(encoded, str):
        raise CryptoError(f'Expected a hex encoded {what}, got {type(encoded)}')

    raw: str = encoded.strip()
    if raw[:2] in ('0x', '0X'):
        raw = raw[2:]

    try:
        data: bytes = bytes.fromhex(raw)
    except ValueError:
        raise CryptoError(f'Invalid hex encoding for {what}')

    if len(data) != size:
        raise CryptoError(
            f'Invalid {what} length {len(data)}, expected {size} bytes'
        )
    return data


def encode_hex(data: bytes) -> str:
    return '0x' + data.hex()


class Signature(Struct, frozen=True):
    '''
    An ed25519 signature: 64 opaque bytes with a canonical ``0x``-hex
    string encoding used on the wire.

    '''
    raw: bytes

    def to_encoded_string(self) -> str:
        return encode_hex(self.raw)

    @classmethod
    def from_encoded_string(cls, encoded: str) -> Signature:
        return cls(decode_hex(encoded, _sig_len, what='signature'))

    def __bytes__(self) -> bytes:
        return self.raw

    def __str__(self) -> str:
        return self.to_encoded_string()


@lru_cache(maxsize=None)
def hasher_seed(type_name: str) -> bytes:
    '''
    Domain separator for all messages of type ``type_name``.

    '''
    return hashlib.sha3_256(_hash_prefix + type_name.encode()).digest()


def signing_message(value: Struct) -> bytes:
    '''
    Render the exact bytes which get signed for ``value``.

    '''
    return hasher_seed(type(value).__name__) + bcs.encode(value)


def load_signing_key(
    private_key: KeyPair | SigningKey | bytes | str,
) -> SigningKey:
    if isinstance(private_key, SigningKey):
        return private_key

    # duck-type `KeyPair` to avoid an import cycle
    signing_key: SigningKey | None = getattr(private_key, 'signing_key', None)
    if signing_key is not None:
        return signing_key

    if isinstance(private_key, str):
        private_key = decode_hex(private_key, _key_len, what='private key')

    if (
        not isinstance(private_key, bytes)
        or len(private_key) != _key_len
    ):
        raise CryptoError('Private key must be 32 raw bytes')

    try:
        return SigningKey(private_key)
    except (NaclCryptoError, TypeError, ValueError) as err:
        raise CryptoError(f'Invalid private key: {err}')


def load_verify_key(
    public_key: KeyPair | VerifyKey | bytes | str,
) -> VerifyKey:
    if isinstance(public_key, VerifyKey):
        return public_key

    signing_key: SigningKey | None = getattr(public_key, 'signing_key', None)
    if signing_key is not None:
        return signing_key.verify_key

    if isinstance(public_key, str):
        public_key = decode_hex(public_key, _key_len, what='public key')

    try:
        return VerifyKey(public_key)
    except (NaclCryptoError, TypeError, ValueError) as err:
        raise CryptoError(f'Invalid public key: {err}')


def sign_message(
    private_key: KeyPair | SigningKey | bytes | str,
    value: Struct,
) -> Signature:
    '''
    Deterministically sign (ed25519) the domain separated canonical
    encoding of ``value``.

    '''
    key: SigningKey = load_signing_key(private_key)
    msg: bytes = signing_message(value)
    try:
        signed = key.sign(msg)
    except NaclCryptoError as err:
        raise CryptoError(f'Failed to sign {type(value).__name__}: {err}')

    return Signature(signed.signature)


def verify_message(
    public_key: KeyPair | VerifyKey | bytes | str,
    value: Struct,
    signature: Signature | str,
) -> bool:
    if isinstance(signature, str):
        signature = Signature.from_encoded_string(signature)

    try:
        load_verify_key(public_key).verify(
            signing_message(value),
            signature.raw,
        )
    except BadSignatureError:
        return False

    return True


def sign_intent(
    private_key: KeyPair | SigningKey | bytes | str,
    payload: ActionPayload,
    nonce: int,
) -> Signature:
    '''
    Sign an ``{payload, nonce}`` intent body.

    Pure and total over well formed input: a malformed key raises
    ``CryptoError`` and an out of (u64) range nonce ``ValueError``.

    '''
    return sign_message(
        private_key,
        IntentSignatureBody(
            payload=payload,
            nonce=nonce,
        ),
    )


def verify_intent(
    public_key: KeyPair | VerifyKey | bytes | str,
    payload: ActionPayload,
    nonce: int,
    signature: Signature | str,
) -> bool:
    return verify_message(
        public_key,
        IntentSignatureBody(
            payload=payload,
            nonce=nonce,
        ),
        signature,
    )


def mk_nonce() -> int:
    '''
    Wall clock (ms) derived nonce; monotonicity is enforced (if at
    all) by the server.

    '''
    return int(time.time() * 1000)


def intent_params(
    private_key: KeyPair | SigningKey | bytes | str,
    payload: ActionPayload,
    nonce: int | None = None,
) -> dict[str, Any]:
    '''
    Sign and pack the kwargs for a ``SendIntentParams``.

    '''
    nonce = mk_nonce() if nonce is None else nonce
    return {
        'payload': payload,
        'nonce': nonce,
        'signature': sign_intent(
            private_key,
            payload,
            nonce,
        ).to_encoded_string(),
    }
