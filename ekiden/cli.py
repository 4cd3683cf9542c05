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
CLI commons.

'''
import os

import click
import msgspec
import trio

from . import config
from .api import open_client
from .auth import (
    KeyPair,
    Role,
)
from .errors import EkidenError
from .log import (
    colorize_json,
    get_console_log,
    get_logger,
)
from .schemas import (
    ListMarketsParams,
    ListOrdersParams,
    OrderCreate,
    OrderCreateAction,
    Pagination,
    TimeInForce,
)
from .signing import mk_nonce
from .ws import Lagged

log = get_logger('cli')


def _echo_json(data) -> None:
    click.echo(colorize_json(msgspec.to_builtins(data)))


@click.group()
@click.option('--loglevel', '-l', default='warning', help='Logging level')
@click.option('--configdir', '-c', help='Configuration directory')
@click.option(
    '--env',
    '-e',
    default=None,
    type=click.Choice(['production', 'staging', 'local']),
    help='Network preset, overrides the config file',
)
@click.pass_context
def cli(
    ctx: click.Context,
    loglevel: str,
    configdir: str,
    env: str | None,
) -> None:
    if configdir is not None:
        assert os.path.isdir(configdir), f"`{configdir}` is not a valid path"
        config._override_config_dir(configdir)

    ctx.ensure_object(dict)
    ctx.obj.update({
        'loglevel': loglevel,
        'log': get_console_log(loglevel),
        'confdir': config.get_conf_dir(),
        'env': env,
    })


def _client_kwargs(conf: dict) -> dict:
    '''
    Load the network settings and any role keys from the user config.

    '''
    keys: dict[str, str] = config.load_keys()
    return {
        'config': config.load_config(env=conf['env']),
        'private_key': keys.get('owner'),
        'funding_private_key': keys.get('funding'),
        'trading_private_key': keys.get('trading'),
    }


@cli.command()
@click.option(
    '--save',
    '-s',
    'roles',
    multiple=True,
    type=click.Choice([role.value for role in Role]),
    help='Store the generated key for this role in the config file',
)
@click.pass_obj
def keygen(conf, roles):
    '''
    Generate a new ed25519 key pair.

    '''
    key = KeyPair.generate()
    click.echo(f'public key: {key.public_key()}')
    click.echo(f'private key: {key.private_key()}')

    if roles:
        user_conf, path = config.load(touch_if_dne=True)
        keys: dict = user_conf.setdefault('keys', {})
        for role in roles:
            keys[role] = key.private_key()

        config.write(user_conf)
        log.info(f'Saved key for {list(roles)} to {path}')


@cli.command()
@click.option('--symbol', '-s', default=None, help='Market symbol filter')
@click.pass_obj
def markets(conf, symbol):
    '''
    Print market info to the console.

    '''
    async def main():
        async with open_client(**_client_kwargs(conf)) as client:
            return await client.get_markets(
                ListMarketsParams(symbol=symbol)
            )

    _echo_json(trio.run(main))


@cli.command()
@click.argument('market_addr', required=True)
@click.option('--side', type=click.Choice(['buy', 'sell']), default=None)
@click.option('--limit', '-n', default=100, help='Max orders to fetch')
@click.pass_obj
def orders(conf, market_addr, side, limit):
    '''
    Print the orders resting in a market.

    '''
    async def main():
        async with open_client(**_client_kwargs(conf)) as client:
            return await client.get_orders(
                ListOrdersParams(
                    market_addr=market_addr,
                    side=side,
                    pagination=Pagination.new(limit, 0),
                )
            )

    _echo_json(trio.run(main))


@cli.command()
@click.argument('market_addr', required=True)
@click.argument('side', type=click.Choice(['buy', 'sell']))
@click.argument('size', type=int)
@click.argument('price', type=int)
@click.option('--leverage', default=1, help='Order leverage')
@click.option('--cross/--isolated', default=True, help='Margin mode')
@click.option(
    '--tif',
    default=TimeInForce.GTC.value,
    type=click.Choice([tif.value for tif in TimeInForce]),
    help='Time in force',
)
@click.option(
    '--dry-run',
    is_flag=True,
    help='Only sign and print the intent, do not submit it',
)
@click.pass_obj
def intent(
    conf,
    market_addr,
    side,
    size,
    price,
    leverage,
    cross,
    tif,
    dry_run,
):
    '''
    Sign (and submit) a limit order intent with the trading key.

    '''
    payload = OrderCreateAction(
        orders=[
            OrderCreate(
                side=side,
                size=size,
                price=price,
                leverage=leverage,
                order_type='limit',
                market_addr=market_addr,
                is_cross=cross,
                time_in_force=TimeInForce(tif),
            ),
        ],
    )

    async def main():
        async with open_client(**_client_kwargs(conf)) as client:
            if dry_run:
                nonce: int = mk_nonce()
                return {
                    'payload': payload,
                    'nonce': nonce,
                    'signature': str(client.sign_intent(payload, nonce)),
                }

            await client.authorize(Role.TRADING)
            return await client.submit_intent(payload)

    try:
        _echo_json(trio.run(main))
    except EkidenError as err:
        log.error(f'Intent failed: {err}')
        raise click.exceptions.Exit(1)


async def _tail(
    client,
    channel: str,
    count: int | None,
) -> None:
    await client.connect_websocket()
    sub = await client.subscribe(channel)
    received: int = 0
    while count is None or received < count:
        try:
            event = await sub.receive()
        except Lagged as lag:
            log.warning(f'{channel} lagged: {lag.count} events dropped')
            continue
        except trio.EndOfChannel:
            log.warning(f'{channel} stream ended')
            break

        _echo_json(event)
        received += 1


@cli.command()
@click.argument('channel', required=True)
@click.option('--count', '-n', default=None, type=int, help='Stop after n')
@click.pass_obj
def stream(conf, channel, count):
    '''
    Tail a websocket channel, eg. ``trades:<market_addr>``.

    '''
    async def main():
        async with open_client(**_client_kwargs(conf)) as client:
            await _tail(client, channel, count)

    try:
        trio.run(main)
    except KeyboardInterrupt:
        pass

