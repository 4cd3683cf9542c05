"""
CLI testing, dawg.
"""
from click.testing import CliRunner
import pytest

from ekiden import config
from ekiden.auth import KeyPair
from ekiden.cli import cli


@pytest.fixture
def runner() -> CliRunner:
    return CliRunner()


def parse_keys(output: str) -> dict[str, str]:
    return dict(
        line.split(': ', 1)
        for line in output.splitlines()
        if ': ' in line
    )


def test_keygen(runner, tmpconfdir):
    result = runner.invoke(cli, ['-c', str(tmpconfdir), 'keygen'])
    assert result.exit_code == 0, result.output

    keys: dict = parse_keys(result.output)
    key = KeyPair.from_private_key(keys['private key'])
    assert key.public_key() == keys['public key']

    # nothing persisted without ``--save``
    assert not (tmpconfdir / 'ekiden.toml').exists()


def test_keygen_save(runner, tmpconfdir):
    result = runner.invoke(
        cli,
        ['-c', str(tmpconfdir), 'keygen', '-s', 'trading', '-s', 'owner'],
    )
    assert result.exit_code == 0, result.output
    keys: dict = parse_keys(result.output)

    saved: dict = config.load_keys()
    assert saved == {
        'trading': keys['private key'],
        'owner': keys['private key'],
    }


def test_intent_dry_run(runner, tmpconfdir):
    key = KeyPair.generate()
    config.write({'keys': {'trading': key.private_key()}})

    result = runner.invoke(
        cli,
        [
            '-c', str(tmpconfdir),
            '--env', 'local',
            'intent', '0xMARKET', 'buy', '10', '100',
            '--tif', 'IOC',
            '--dry-run',
        ],
    )
    assert result.exit_code == 0, result.output
    assert 'order_create' in result.output
    assert 'IOC' in result.output


def test_intent_without_key(runner, tmpconfdir):
    result = runner.invoke(
        cli,
        [
            '-c', str(tmpconfdir),
            'intent', '0xMARKET', 'sell', '1', '1',
            '--dry-run',
        ],
    )
    assert result.exit_code == 1
