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
BCS (binary canonical serialization) codec for ``msgspec.Struct``
trees.

Every logical value has exactly one valid byte representation:

- ``bool``: a single ``0x00`` / ``0x01`` byte,
- unsigned ints: fixed width little endian, width picked from the
  ``msgspec.Meta(le=...)`` bound of the field's ``Annotated`` type
  (see the ``U8``, ``U32``, ``U64`` aliases), plain ``int`` is ``u64``,
- ``I64``: two's complement little endian,
- ``str`` / ``bytes``: uleb128 length prefix + (utf-8) bytes,
- ``list[T]``: uleb128 element count + elements,
- ``T | None``: ``0x00`` or ``0x01`` followed by the value,
- ``enum.Enum`` (str valued): its value as a ``str``,
- structs: fields concatenated in declaration order,
- tagged structs (members of a wire-level union): the tag ``str``
  first, then the fields; this mirrors how an internally tagged
  union is laid out by the exchange's own serializer.

'''
from __future__ import annotations
from enum import Enum
from functools import lru_cache
import struct
import types
import typing
from typing import (
    Annotated,
    Any,
    Union,
)

import msgspec
from msgspec import Meta

from .errors import DecodeError


U8 = Annotated[int, Meta(ge=0, le=2**8 - 1)]
U32 = Annotated[int, Meta(ge=0, le=2**32 - 1)]
U64 = Annotated[int, Meta(ge=0, le=2**64 - 1)]
I64 = Annotated[int, Meta(ge=-2**63, le=2**63 - 1)]

# ``le`` bound -> (struct fmt, signed)
_int_fmts: dict[int, tuple[str, int]] = {
    2**8 - 1: ('<B', 1),
    2**16 - 1: ('<H', 2),
    2**32 - 1: ('<I', 4),
    2**64 - 1: ('<Q', 8),
    2**63 - 1: ('<q', 8),
}
_u64: tuple[str, int] = _int_fmts[2**64 - 1]

# max uleb128 encoded length (u32 range) as used for sequence lengths
_max_uleb_bytes: int = 5


def uleb128(value: int) -> bytes:
    if value < 0:
        raise ValueError(f'uleb128 only encodes unsigned ints: {value}')

    out = bytearray()
    while True:
        byte = value & 0x7f
        value >>= 7
        if value:
            out.append(byte | 0x80)
        else:
            out.append(byte)
            return bytes(out)


class _Reader:
    '''
    Cursor over a canonical byte buffer.

    '''
    def __init__(self, data: bytes) -> None:
        self.data = memoryview(data)
        self.pos: int = 0

    def take(self, n: int) -> bytes:
        end: int = self.pos + n
        if end > len(self.data):
            raise DecodeError(
                f'Unexpected end of input, wanted {n} bytes at {self.pos}'
            )
        chunk = bytes(self.data[self.pos:end])
        self.pos = end
        return chunk

    def uleb128(self) -> int:
        value: int = 0
        for i in range(_max_uleb_bytes):
            byte: int = self.take(1)[0]
            value |= (byte & 0x7f) << (7 * i)
            if not byte & 0x80:
                # a trailing zero group means a longer than needed
                # (and thus non-canonical) encoding.
                if i and not byte:
                    raise DecodeError('Non-canonical uleb128 encoding')
                return value

        raise DecodeError('uleb128 value overflows u32')

    def done(self) -> bool:
        return self.pos == len(self.data)


def _int_fmt(metas: tuple[Any, ...]) -> tuple[str, int]:
    for meta in metas:
        if (
            isinstance(meta, Meta)
            and meta.le is not None
        ):
            try:
                return _int_fmts[meta.le]
            except KeyError:
                raise TypeError(f'No canonical int width for bound {meta.le}')

    return _u64


def _is_struct(tp: Any) -> bool:
    return (
        isinstance(tp, type)
        and issubclass(tp, msgspec.Struct)
    )


def _tag_of(tp: type[msgspec.Struct]) -> str | None:
    tag = tp.__struct_config__.tag
    return None if tag is None else str(tag)


@lru_cache(maxsize=None)
def _fields(
    tp: type[msgspec.Struct],
) -> tuple[tuple[str, Any], ...]:
    hints: dict[str, Any] = typing.get_type_hints(
        tp,
        include_extras=True,
    )
    return tuple(
        (name, hints[name])
        for name in tp.__struct_fields__
    )


def _split(tp: Any) -> tuple[Any, tuple[Any, ...], tuple[Any, ...]]:
    '''
    Split a (possibly ``Annotated``) type into its origin, its args
    and any annotation metadata.

    '''
    metas: tuple[Any, ...] = ()
    if typing.get_origin(tp) is Annotated:
        tp, *rest = typing.get_args(tp)
        metas = tuple(rest)

    origin = typing.get_origin(tp)
    return (
        origin or tp,
        typing.get_args(tp),
        metas,
    )


def _union_members(args: tuple[Any, ...]) -> tuple[Any, bool]:
    '''
    Return the non-``None`` member (or set of tagged members) and
    whether ``None`` was part of the union.

    '''
    optional: bool = type(None) in args
    members = tuple(arg for arg in args if arg is not type(None))
    return members, optional


def _encode(
    value: Any,
    tp: Any,
    out: bytearray,
) -> None:
    origin, args, metas = _split(tp)

    if origin in (Union, types.UnionType):
        members, optional = _union_members(args)
        if optional:
            if value is None:
                out.append(0)
                return

            out.append(1)

        if len(members) == 1:
            _encode(value, members[0], out)
            return

        # multi-member unions are only canonical for tagged structs
        # where the tag itself discriminates the variant.
        for member in members:
            if (
                _is_struct(member)
                and _tag_of(member) is not None
                and isinstance(value, member)
            ):
                _encode(value, member, out)
                return

        raise TypeError(f'{value!r} is not a tagged member of {tp}')

    if value is None:
        raise TypeError(f'Got `None` for non-optional type {tp}')

    if origin is bool:
        out.append(1 if value else 0)

    elif origin is int:
        fmt, _ = _int_fmt(metas)
        try:
            out += struct.pack(fmt, value)
        except struct.error:
            raise ValueError(f'{value} does not fit canonical type {tp}')

    elif origin is str:
        raw: bytes = value.encode('utf-8')
        out += uleb128(len(raw))
        out += raw

    elif origin is bytes:
        out += uleb128(len(value))
        out += value

    elif origin is list:
        (elem_tp,) = args
        out += uleb128(len(value))
        for elem in value:
            _encode(elem, elem_tp, out)

    elif (
        isinstance(origin, type)
        and issubclass(origin, Enum)
    ):
        _encode(origin(value).value, str, out)

    elif _is_struct(origin):
        if tag := _tag_of(origin):
            _encode(tag, str, out)

        for name, field_tp in _fields(origin):
            _encode(getattr(value, name), field_tp, out)

    else:
        raise TypeError(f'No canonical encoding for type {tp}')


def _decode(
    reader: _Reader,
    tp: Any,
) -> Any:
    origin, args, metas = _split(tp)

    if origin in (Union, types.UnionType):
        members, optional = _union_members(args)
        if optional:
            flag: int = reader.take(1)[0]
            if flag == 0:
                return None
            elif flag != 1:
                raise DecodeError(f'Invalid option flag byte {flag}')

        if len(members) == 1:
            return _decode(reader, members[0])

        tag: str = _decode(reader, str)
        for member in members:
            if (
                _is_struct(member)
                and _tag_of(member) == tag
            ):
                return _decode_fields(reader, member)

        # fail closed, never default to some variant.
        raise DecodeError(f'Unknown union tag {tag!r} for {tp}')

    if origin is bool:
        flag: int = reader.take(1)[0]
        if flag not in (0, 1):
            raise DecodeError(f'Invalid bool byte {flag}')
        return bool(flag)

    elif origin is int:
        fmt, size = _int_fmt(metas)
        return struct.unpack(fmt, reader.take(size))[0]

    elif origin is str:
        raw: bytes = reader.take(reader.uleb128())
        try:
            return raw.decode('utf-8')
        except UnicodeDecodeError as err:
            raise DecodeError(f'Invalid utf-8 string: {err}')

    elif origin is bytes:
        return reader.take(reader.uleb128())

    elif origin is list:
        (elem_tp,) = args
        return [
            _decode(reader, elem_tp)
            for _ in range(reader.uleb128())
        ]

    elif (
        isinstance(origin, type)
        and issubclass(origin, Enum)
    ):
        value: str = _decode(reader, str)
        try:
            return origin(value)
        except ValueError:
            raise DecodeError(f'Invalid {origin.__name__} value {value!r}')

    elif _is_struct(origin):
        if tag := _tag_of(origin):
            got: str = _decode(reader, str)
            if got != tag:
                raise DecodeError(
                    f'Expected tag {tag!r} for {origin.__name__}, got {got!r}'
                )

        return _decode_fields(reader, origin)

    raise TypeError(f'No canonical decoding for type {tp}')


def _decode_fields(
    reader: _Reader,
    tp: type[msgspec.Struct],
) -> msgspec.Struct:
    # NOTE: any tag was already consumed by the caller.
    return tp(**{
        name: _decode(reader, field_tp)
        for name, field_tp in _fields(tp)
    })


def encode(
    value: Any,
    tp: Any | None = None,
) -> bytes:
    '''
    Canonically encode ``value`` (by default as its own type).

    '''
    out = bytearray()
    _encode(
        value,
        tp if tp is not None else type(value),
        out,
    )
    return bytes(out)


def decode(
    data: bytes,
    tp: Any,
) -> Any:
    '''
    Decode canonical ``data`` into ``tp``, all input must be consumed.

    '''
    reader = _Reader(data)
    value = _decode(reader, tp)
    if not reader.done():
        raise DecodeError(
            f'{len(reader.data) - reader.pos} trailing bytes after {tp}'
        )
    return value
