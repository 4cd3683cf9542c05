'''
Environment presets and the ``ekiden.toml`` user config.

'''
import pytest

from ekiden import config
from ekiden.config import EkidenConfig
from ekiden.errors import ConfigError


def test_presets():
    prod = EkidenConfig.production()
    assert prod.base_url == 'https://api.ekiden.fi'
    assert prod.ws_url == 'wss://api.ekiden.fi/api/v1/ws'
    assert prod.timeout == 30

    local = EkidenConfig.local()
    assert local.base_url == 'http://localhost:3010'
    assert local.ws_url == 'ws://localhost:3010/api/v1/ws'

    assert EkidenConfig.staging() == EkidenConfig.for_env('staging')
    with pytest.raises(ConfigError):
        EkidenConfig.for_env('mainnet-beta')


def test_urls_and_builders():
    conf = EkidenConfig.from_url('https://example.com/')
    assert conf.base_url == 'https://example.com'
    assert conf.api_url('orders') == 'https://example.com/api/v1/orders'
    assert conf.api_path('/user/portfolio') == '/api/v1/user/portfolio'

    tuned = (
        conf
        .with_timeout(2.5)
        .with_user_agent('bot/1.0')
        .with_logging(True)
    )
    assert tuned.timeout == 2.5
    assert tuned.user_agent == 'bot/1.0'
    assert tuned.logging

    # builders return new values
    assert conf.timeout == 30


@pytest.mark.parametrize(
    'kwargs',
    [
        {'base_url': 'ftp://example.com'},
        {'base_url': 'not a url'},
        {'base_url': 'https://example.com', 'ws_url': 'https://nope'},
        {'base_url': 'https://example.com', 'timeout': 0},
        {'base_url': 'https://example.com', 'timeout': -1},
    ],
)
def test_invalid_settings(kwargs):
    with pytest.raises(ConfigError):
        EkidenConfig.from_url(**kwargs)


def test_load_missing(tmpconfdir):
    conf, path = config.load()
    assert conf == {}
    assert path == tmpconfdir / 'ekiden.toml'
    assert not path.exists()

    # defaults to production without a config file
    assert config.load_config() == EkidenConfig.production()
    assert config.load_keys() == {}

    conf, path = config.load(touch_if_dne=True)
    assert path.is_file()


def test_load_network_and_keys(tmpconfdir):
    config.write({
        'network': {
            'env': 'staging',
            'timeout': 10,
        },
        'keys': {
            'trading': '0x' + '11' * 32,
            'bogus_role': '0x' + '22' * 32,
        },
    })
    conf = config.load_config()
    assert conf.base_url == 'https://api.staging.ekiden.fi'
    assert conf.timeout == 10

    # an explicit env overrides the file's
    assert config.load_config(env='local').base_url == 'http://localhost:3010'

    assert config.load_keys() == {'trading': '0x' + '11' * 32}


def test_custom_base_url(tmpconfdir):
    config.write({
        'network': {
            'base_url': 'https://my.node:8443',
        },
    })
    conf = config.load_config()
    assert conf.base_url == 'https://my.node:8443'
    assert conf.ws_url == 'wss://my.node:8443/api/v1/ws'


def test_malformed_file(tmpconfdir):
    (tmpconfdir / 'ekiden.toml').write_text('[network\nenv = ')
    with pytest.raises(ConfigError):
        config.load()


def test_refuse_blank_write(tmpconfdir):
    with pytest.raises(ValueError):
        config.write({})
