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
Multi-role authentication sessions.

An account is operated through (up to) 3 independently keyed roles:

- ``owner``: account management and private reads,
- ``funding``: deposits, withdrawals and transfers,
- ``trading``: intent submission.

Each role authenticates on its own via a signed challenge and holds
its own bearer token; no role's state ever leaks into another's.

'''
from __future__ import annotations
from enum import Enum
import time
from typing import Iterator
from uuid import uuid4

from nacl.signing import SigningKey

from .errors import (
    AuthError,
    ConfigError,
)
from .log import get_logger
from .schemas import (
    AuthorizeChallenge,
    AuthorizeParams,
    AuthorizeResponse,
)
from .signing import (
    decode_hex,
    encode_hex,
    load_signing_key,
    sign_message,
)

log = get_logger(__name__)

_auth_domain: str = 'EKIDEN_AUTHORIZE'


class Role(str, Enum):
    OWNER = 'owner'
    FUNDING = 'funding'
    TRADING = 'trading'


class KeyPair:
    '''
    An immutable ed25519 (public, private) key pair.

    '''
    __slots__ = ('_sk',)

    def __init__(
        self,
        signing_key: SigningKey,
    ) -> None:
        object.__setattr__(self, '_sk', signing_key)

    def __setattr__(self, name, value):
        raise AttributeError(f'{type(self).__name__} is immutable')

    @classmethod
    def generate(cls) -> KeyPair:
        return cls(SigningKey.generate())

    @classmethod
    def from_private_key(
        cls,
        private_key: str | bytes,
    ) -> KeyPair:
        '''
        Parse a (``0x`` prefixed or bare) hex encoded private key,
        raising ``CryptoError`` on bad input.

        '''
        if isinstance(private_key, str):
            private_key = decode_hex(private_key, 32, what='private key')

        return cls(load_signing_key(private_key))

    @property
    def signing_key(self) -> SigningKey:
        return self._sk

    def public_key(self) -> str:
        return encode_hex(bytes(self._sk.verify_key))

    def private_key(self) -> str:
        return encode_hex(bytes(self._sk))

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, KeyPair):
            return NotImplemented
        return bytes(self._sk) == bytes(other._sk)

    def __hash__(self) -> int:
        return hash(bytes(self._sk.verify_key))

    def __repr__(self) -> str:
        # never leak the secret half into logs
        return f'KeyPair(public_key={self.public_key()!r})'


def now_ms() -> int:
    return int(time.time() * 1000)


class AuthContext:
    '''
    A single role's auth state: an optional key pair plus, once
    the challenge succeeded, the bearer token issued for that key.

    Every mutation is a single reference assignment with no
    checkpoint in between so concurrent (trio) tasks never observe
    a half updated context.

    '''
    def __init__(
        self,
        role: Role,
    ) -> None:
        self.role: Role = role
        self._key: KeyPair | None = None
        self._token: str | None = None

    def __repr__(self) -> str:
        return (
            f'AuthContext(role={self.role.value!r}, '
            f'public_key={self.public_key()!r}, '
            f'authenticated={self.is_authenticated()})'
        )

    @property
    def key(self) -> KeyPair | None:
        return self._key

    def set_key(
        self,
        key: KeyPair | str,
    ) -> None:
        '''
        Install a key pair, dropping any token issued for a prior key.

        '''
        if not isinstance(key, KeyPair):
            key = KeyPair.from_private_key(key)

        self._key, self._token = key, None
        log.debug(f'{self.role.value} key set: {key.public_key()}')

    def build_challenge(
        self,
        timestamp_ms: int | None = None,
        nonce: str | None = None,
    ) -> AuthorizeParams:
        '''
        Sign a fresh authorization challenge with this role's key.

        '''
        key: KeyPair | None = self._key
        if key is None:
            raise ConfigError(
                f'No private key set for the {self.role.value} role'
            )

        challenge = AuthorizeChallenge(
            domain=_auth_domain,
            public_key=key.public_key(),
            timestamp_ms=now_ms() if timestamp_ms is None else timestamp_ms,
            nonce=nonce or uuid4().hex,
        )
        sig = sign_message(key, challenge)
        return AuthorizeParams(
            signature=sig.to_encoded_string(),
            public_key=challenge.public_key,
            timestamp_ms=challenge.timestamp_ms,
            nonce=challenge.nonce,
        )

    def accept_token(
        self,
        resp: AuthorizeResponse,
        public_key: str | None = None,
    ) -> None:
        '''
        Store the token issued in response to a challenge.

        If ``public_key`` (the challenge's signer) is passed and the
        key was swapped in the meantime the stale token is rejected.

        '''
        if not resp.token:
            raise AuthError(
                f'Empty token issued for the {self.role.value} role'
            )

        if (
            public_key is not None
            and (
                self._key is None
                or self._key.public_key() != public_key
            )
        ):
            raise AuthError(
                f'{self.role.value} key changed during authorization, '
                'discarding token'
            )

        self._token = resp.token

    def set_token(self, token: str) -> None:
        '''
        Install a pre-issued bearer token.

        '''
        self._token = token

    def clear_token(self) -> None:
        self._token = None

    def ensure_authenticated(self) -> None:
        if self._token is None:
            raise AuthError(
                f'Not authenticated for the {self.role.value} role'
            )

    def token(self) -> str | None:
        return self._token

    def public_key(self) -> str | None:
        key = self._key
        return key.public_key() if key else None

    def is_authenticated(self) -> bool:
        return self._token is not None

    def auth_headers(self) -> dict[str, str]:
        self.ensure_authenticated()
        return {'Authorization': f'Bearer {self._token}'}


class SessionManager:
    '''
    Exactly one ``AuthContext`` per ``Role``, each independently
    life-cycled.

    Partial authentication (eg. owner ok, trading failed) is a valid
    state; check per role readiness with ``.is_authenticated(role)``.

    '''
    def __init__(self) -> None:
        self._ctxs: dict[Role, AuthContext] = {
            role: AuthContext(role)
            for role in Role
        }

    def __getitem__(
        self,
        role: Role | str,
    ) -> AuthContext:
        return self._ctxs[Role(role)]

    def __iter__(self) -> Iterator[AuthContext]:
        return iter(self._ctxs.values())

    @property
    def owner(self) -> AuthContext:
        return self._ctxs[Role.OWNER]

    @property
    def funding(self) -> AuthContext:
        return self._ctxs[Role.FUNDING]

    @property
    def trading(self) -> AuthContext:
        return self._ctxs[Role.TRADING]

    def set_key(
        self,
        role: Role | str,
        key: KeyPair | str,
    ) -> None:
        self[role].set_key(key)

    def token(self, role: Role | str) -> str | None:
        return self[role].token()

    def public_key(self, role: Role | str) -> str | None:
        return self[role].public_key()

    def is_authenticated(self, role: Role | str) -> bool:
        return self[role].is_authenticated()

    def keyed(self) -> list[Role]:
        '''
        Roles which have a key installed.

        '''
        return [
            ctx.role for ctx in self
            if ctx.key is not None
        ]

    def status(self) -> dict[str, bool]:
        return {
            ctx.role.value: ctx.is_authenticated()
            for ctx in self
        }
