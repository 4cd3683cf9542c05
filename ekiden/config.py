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
Client configuration: environment presets and (toml) config files mgmt.

"""
from __future__ import annotations
import os
import platform
import sys
from pathlib import Path
from typing import (
    Callable,
    MutableMapping,
)
from urllib.parse import urlsplit
import tomllib

import tomlkit

from .errors import ConfigError
from .log import get_logger
from .types import Struct

log = get_logger('config')


_envs: dict[str, str] = {
    'production': 'https://api.ekiden.fi',
    'staging': 'https://api.staging.ekiden.fi',
    'local': 'http://localhost:3010',
}
_api_prefix: str = '/api/v1'
_default_timeout: float = 30
_default_user_agent: str = 'ekiden-py/0.1.0'


def get_app_dir(
    app_name: str,
    roaming: bool = True,

) -> str:
    '''
    Return the config folder for the application, whatever is most
    appropriate for the operating system.

    '''
    def _posixify(name):
        return "-".join(name.split()).lower()

    if platform.system() == 'Windows':
        key = "APPDATA" if roaming else "LOCALAPPDATA"
        folder = os.environ.get(key)
        if folder is None:
            folder = os.path.expanduser("~")
        return os.path.join(folder, app_name)

    if sys.platform == "darwin":
        return os.path.join(
            os.path.expanduser("~/Library/Application Support"), app_name
        )
    return os.path.join(
        os.environ.get("XDG_CONFIG_HOME", os.path.expanduser("~/.config")),
        _posixify(app_name),
    )


_config_dir: Path = Path(get_app_dir('ekiden'))
_conf_names: set[str] = {
    'ekiden',  # network + keys
}


def _override_config_dir(
    path: str | Path,
) -> None:
    global _config_dir
    _config_dir = Path(path)


def _conf_fn_w_ext(
    name: str,
) -> str:
    # change this if we ever change the config file format.
    return f'{name}.toml'


def get_conf_dir() -> Path:
    '''
    Return the user configuration directory ``Path``
    on the local filesystem.

    '''
    return _config_dir


def get_conf_path(
    conf_name: str = 'ekiden',
) -> Path:
    '''
    Return the top-level default config path normally under
    ``~/.config/ekiden`` on linux for a given ``conf_name``.

    '''
    assert str(conf_name) in _conf_names
    return _config_dir / Path(_conf_fn_w_ext(conf_name))


def _check_url(
    url: str,
    schemes: tuple[str, ...],
) -> str:
    parts = urlsplit(url)
    if (
        parts.scheme not in schemes
        or not parts.netloc
    ):
        raise ConfigError(
            f'Invalid url {url!r}, expected one of {schemes} schemes'
        )
    return url.rstrip('/')


def _ws_from_base(base_url: str) -> str:
    parts = urlsplit(base_url)
    scheme: str = 'wss' if parts.scheme == 'https' else 'ws'
    return f'{scheme}://{parts.netloc}{_api_prefix}/ws'


class EkidenConfig(Struct, frozen=True):
    '''
    Network endpoints and http session settings.

    '''
    base_url: str
    ws_url: str
    timeout: float = _default_timeout  # seconds, per http call
    user_agent: str = _default_user_agent
    logging: bool = False

    def __post_init__(self) -> None:
        _check_url(self.base_url, ('http', 'https'))
        _check_url(self.ws_url, ('ws', 'wss'))
        if not self.timeout > 0:
            raise ConfigError(
                f'Timeout must be a positive number of seconds: {self.timeout}'
            )

    @classmethod
    def from_url(
        cls,
        base_url: str,
        ws_url: str | None = None,
        **kwargs,
    ) -> EkidenConfig:
        base_url = _check_url(base_url, ('http', 'https'))
        return cls(
            base_url=base_url,
            ws_url=ws_url or _ws_from_base(base_url),
            **kwargs,
        )

    @classmethod
    def production(cls) -> EkidenConfig:
        return cls.from_url(_envs['production'])

    @classmethod
    def staging(cls) -> EkidenConfig:
        return cls.from_url(_envs['staging'])

    @classmethod
    def local(cls) -> EkidenConfig:
        return cls.from_url(_envs['local'])

    @classmethod
    def for_env(cls, env: str) -> EkidenConfig:
        try:
            return cls.from_url(_envs[env])
        except KeyError:
            raise ConfigError(
                f'Unknown env {env!r}, expected one of {list(_envs)}'
            )

    def api_path(self, path: str) -> str:
        return f'{_api_prefix}/{path.lstrip("/")}'

    def api_url(self, path: str) -> str:
        return f'{self.base_url}{self.api_path(path)}'

    def with_timeout(self, timeout: float) -> EkidenConfig:
        return self.replace(timeout=timeout)

    def with_user_agent(self, user_agent: str) -> EkidenConfig:
        return self.replace(user_agent=user_agent)

    def with_logging(self, enable: bool) -> EkidenConfig:
        return self.replace(logging=enable)

    def replace(self, **kwargs) -> EkidenConfig:
        # NOTE: re-construct (instead of ``msgspec.structs.replace()``)
        # so that field validation in ``__post_init__`` runs again.
        return type(self)(**(self.to_dict() | kwargs))


def load(
    # NOTE: always appended with .toml suffix
    conf_name: str = 'ekiden',
    path: Path | None = None,

    decode: Callable[
        [str],
        MutableMapping,
    ] = tomllib.loads,

    touch_if_dne: bool = False,

) -> tuple[dict, Path]:
    '''
    Load config file by name.

    If desired config is not in the top level ekiden-user config path
    then pass the ``path: Path`` explicitly.

    '''
    path: Path = path or get_conf_path(conf_name)

    if not path.is_file():
        if not touch_if_dne:
            log.debug(f'No config file at {path}')
            return {}, path

        path.parent.mkdir(
            parents=True,
            exist_ok=True,
        )
        path.touch()

    with path.open(mode='r') as fp:
        try:
            config: dict = decode(fp.read())
        except tomllib.TOMLDecodeError as err:
            raise ConfigError(f'Malformed config file {path}: {err}')

    log.debug(f"Read config file {path}")
    return config, path


def write(
    config: dict,  # toml config as dict

    name: str = 'ekiden',
    path: Path | None = None,
    fail_empty: bool = True,

) -> Path:
    '''
    Write client config to disk.

    Create the config dir if it does not exist.

    '''
    path: Path = path or get_conf_path(name)
    dirname: Path = path.parent
    if not dirname.is_dir():
        log.debug(f"Creating config dir {dirname}")
        dirname.mkdir(parents=True)

    if (
        not config
        and fail_empty
    ):
        raise ValueError(
            "Watch out you're trying to write a blank config!"
        )

    log.debug(
        f"Writing config `{name}` file to:\n"
        f"{path}"
    )
    with path.open(mode='w') as fp:
        tomlkit.dump(  # preserve style on write B)
            config,
            fp,
        )

    return path


def load_config(
    env: str | None = None,
    path: Path | None = None,

) -> EkidenConfig:
    '''
    Build an ``EkidenConfig`` from the ``[network]`` section of the
    user config file, falling back to the ``env`` preset (or
    production) for anything left unset.

    Example section::

        [network]
        env = 'staging'
        timeout = 10

    '''
    conf, path = load(path=path)
    section: dict = conf.get('network', {})

    env = env or section.get('env', 'production')
    base: EkidenConfig = EkidenConfig.for_env(env)
    if base_url := section.get('base_url'):
        base = EkidenConfig.from_url(
            base_url,
            ws_url=section.get('ws_url'),
        )

    overrides: dict = {
        key: section[key]
        for key in (
            'ws_url',
            'timeout',
            'user_agent',
            'logging',
        )
        if key in section
    }
    return base.replace(**overrides)


def load_keys(
    path: Path | None = None,
) -> dict[str, str]:
    '''
    Return the ``[keys]`` section: private keys by role name.

    '''
    conf, path = load(path=path)
    keys: dict = conf.get('keys', {})
    if not keys:
        log.warning(f'No `[keys]` section found in {path}')

    return {
        role: key
        for role, key in keys.items()
        if role in ('owner', 'funding', 'trading')
    }
