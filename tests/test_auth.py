'''
Key pairs and per role auth sessions.

'''
import pytest

from ekiden.auth import (
    AuthContext,
    KeyPair,
    Role,
    SessionManager,
)
from ekiden.errors import (
    AuthError,
    ConfigError,
    CryptoError,
)
from ekiden.schemas import (
    AuthorizeChallenge,
    AuthorizeResponse,
)
from ekiden.signing import verify_message


def test_keypair_parsing():
    key = KeyPair.generate()
    priv: str = key.private_key()
    assert priv.startswith('0x')
    assert len(priv) == 66

    assert KeyPair.from_private_key(priv) == key
    assert KeyPair.from_private_key(priv[2:]) == key
    assert KeyPair.from_private_key(priv.upper().replace('0X', '0x')) == key
    assert KeyPair.from_private_key(priv).public_key() == key.public_key()

    for bad in ('0x00', priv + 'ff', 'nothex' * 11):
        with pytest.raises(CryptoError):
            KeyPair.from_private_key(bad)


def test_keypair_is_immutable_and_discreet():
    key = KeyPair.generate()
    with pytest.raises(AttributeError):
        key._sk = None

    assert key.private_key() not in repr(key)
    assert key.public_key() in repr(key)


def test_challenge_requires_key():
    ctx = AuthContext(Role.OWNER)
    with pytest.raises(ConfigError):
        ctx.build_challenge()

    with pytest.raises(AuthError):
        ctx.ensure_authenticated()


def test_challenge_is_signed_by_role_key():
    key = KeyPair.generate()
    ctx = AuthContext(Role.FUNDING)
    ctx.set_key(key)

    params = ctx.build_challenge(timestamp_ms=1_000, nonce='abc')
    assert params.public_key == key.public_key()
    assert params.timestamp_ms == 1_000
    assert params.nonce == 'abc'

    challenge = AuthorizeChallenge(
        domain='EKIDEN_AUTHORIZE',
        public_key=key.public_key(),
        timestamp_ms=1_000,
        nonce='abc',
    )
    assert verify_message(key, challenge, params.signature)

    # fresh nonce per challenge by default
    assert ctx.build_challenge().nonce != ctx.build_challenge().nonce


def test_token_lifecycle():
    key = KeyPair.generate()
    ctx = AuthContext(Role.TRADING)
    ctx.set_key(key)
    assert not ctx.is_authenticated()

    ctx.accept_token(
        AuthorizeResponse(token='tok'),
        public_key=key.public_key(),
    )
    assert ctx.is_authenticated()
    assert ctx.auth_headers() == {'Authorization': 'Bearer tok'}

    # a new key invalidates the old key's token
    ctx.set_key(KeyPair.generate())
    assert ctx.token() is None

    # a token issued for a since swapped key is refused
    with pytest.raises(AuthError):
        ctx.accept_token(
            AuthorizeResponse(token='stale'),
            public_key=key.public_key(),
        )
    assert ctx.token() is None

    with pytest.raises(AuthError):
        ctx.accept_token(AuthorizeResponse(token=''))

    ctx.set_token('manual')
    assert ctx.token() == 'manual'
    ctx.clear_token()
    assert not ctx.is_authenticated()


def test_roles_are_isolated():
    sessions = SessionManager()
    keys: dict[Role, KeyPair] = {
        role: KeyPair.generate()
        for role in Role
    }
    for role, key in keys.items():
        sessions.set_key(role, key)

    assert sessions.keyed() == list(Role)

    sessions.trading.accept_token(AuthorizeResponse(token='trade-tok'))
    assert sessions.is_authenticated(Role.TRADING)
    assert not sessions.is_authenticated(Role.OWNER)
    assert not sessions.is_authenticated('funding')
    assert sessions.status() == {
        'owner': False,
        'funding': False,
        'trading': True,
    }

    # re-keying one role leaves the others untouched
    sessions.set_key(Role.OWNER, KeyPair.generate())
    assert sessions.token(Role.TRADING) == 'trade-tok'
    assert sessions.public_key(Role.FUNDING) == keys[Role.FUNDING].public_key()

    with pytest.raises(AuthError):
        sessions[Role.OWNER].auth_headers()

    with pytest.raises(ValueError):
        sessions['admin']
