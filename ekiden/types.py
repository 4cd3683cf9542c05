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
Extensions to (heavily used but 3rd party) friend-lib types.

'''
from __future__ import annotations
from pprint import (
    pformat,
)
from typing import Any

from msgspec import (
    json,
    Struct,
    structs,
)


class Struct(
    Struct,

    # https://jcristharif.com/msgspec/structs.html#tagged-unions
    # NOTE: subtypes which are members of a wire-level union set
    # their own ``tag=`` and ``tag_field='type'``.
):
    '''
    A "human friendlier" (aka repl buddy) struct subtype.

    '''
    def to_dict(self) -> dict:
        '''
        Like it sounds.. direct delegation to:
        https://jcristharif.com/msgspec/api.html#msgspec.structs.asdict

        '''
        return structs.asdict(self)

    def to_builtins(self) -> Any:
        '''
        Recursively render to json-compatible builtins (including
        any union tag fields).

        '''
        return json.decode(json.encode(self))

    def pformat(self) -> str:
        return f'{type(self).__name__}({pformat(self.to_dict())})'
