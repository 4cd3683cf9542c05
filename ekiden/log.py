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
Log like a forester!
"""
import logging
import json

import colorlog
from pygments import (
    highlight,
    lexers,
    formatters,
)

# Makes it so we only see the full module name when using ``__name__``
# without the extra "ekiden." prefix.
_proj_name: str = 'ekiden'

LOG_FORMAT: str = (
    '{log_color}{asctime}{reset}'
    ' {log_color}[{reset}{bold_log_color}{levelname}{reset}{log_color}]{reset}'
    ' {log_color}{name}'
    ' {thin_white}{filename}{log_color}:{reset}{thin_white}{lineno}'
    ' {reset}{bold_white}{thin_white}{message}'
)
DATE_FORMAT: str = '%b %d %H:%M:%S'

STD_PALETTE: dict[str, str] = {
    'CRITICAL': 'red',
    'ERROR': 'red',
    'WARNING': 'yellow',
    'INFO': 'green',
    'DEBUG': 'white',
}


def get_logger(
    name: str | None = None,

) -> logging.Logger:
    '''
    Return the package log or a sub-log for `name` if provided.

    '''
    if (
        name is None
        or name == _proj_name
    ):
        return logging.getLogger(_proj_name)

    # strip the package prefix so ``get_logger(__name__)`` and
    # ``get_logger('ws')`` land on the same sub-log.
    if name.startswith(f'{_proj_name}.'):
        name = name[len(_proj_name) + 1:]

    return logging.getLogger(f'{_proj_name}.{name}')


def get_console_log(
    level: str | None = None,
    name: str | None = None,

) -> logging.Logger:
    '''
    Get the package logger and enable a handler which writes to stderr.

    Only one stream handler is ever attached to the package root
    log, repeat calls just adjust the level.

    '''
    log = get_logger(name)
    if not level:
        return log

    log.setLevel(level.upper())

    root = get_logger()
    if not any(
        getattr(handler, '_ekiden_console', False)
        for handler in root.handlers
    ):
        handler = colorlog.StreamHandler()
        handler.setFormatter(
            colorlog.ColoredFormatter(
                LOG_FORMAT,
                datefmt=DATE_FORMAT,
                log_colors=STD_PALETTE,
                secondary_log_colors={
                    'bold': STD_PALETTE,
                },
                style='{',
            )
        )
        handler._ekiden_console = True
        root.addHandler(handler)

    return log


def colorize_json(
    data: dict,
    style='algol_nu',
):
    '''
    Colorize json output using ``pygments``.

    '''
    formatted_json = json.dumps(
        data,
        sort_keys=True,
        indent=4,
    )
    return highlight(
        formatted_json,
        lexers.JsonLexer(),

        # likeable styles: algol_nu, tango, monokai
        formatters.TerminalTrueColorFormatter(style=style)
    )
