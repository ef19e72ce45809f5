"""The bytecode format: fixed-point numbers, ops, the header and a read-only assembly view."""

from __future__ import annotations

import enum
import re
from dataclasses import dataclass, replace
from fractions import Fraction
from typing import BinaryIO, Iterator, Union

VERSION = 1
HEADER_SIZE = 16
MAGIC = b"H6H6"

_FRAC_BITS = 8
_SCALE = 1 << _FRAC_BITS
_MIN_RAW = -(1 << 31)
_MAX_RAW = (1 << 31) - 1
_U32_MASK = 0xFFFFFFFF
_NUMBER_RE = re.compile(r"[+-]?\d+(?:\.\d+)?")


def _wrap32(raw: int) -> int:
    raw &= _U32_MASK
    return raw - (1 << 32) if raw & 0x80000000 else raw


def _trunc_div(a: int, b: int) -> int:
    q = abs(a) // abs(b)
    return q if (a < 0) == (b < 0) else -q


@dataclass(frozen=True, order=True)
class Num:
    """Signed fixed-point number with 24 integer and 8 fractional bits."""

    raw: int = 0

    def __post_init__(self) -> None:
        if not _MIN_RAW <= self.raw <= _MAX_RAW:
            raise OverflowError(f"fixed-point value out of range: raw={self.raw}")

    @classmethod
    def from_int(cls, value: int) -> Num:
        return cls(int(value) * _SCALE)

    @classmethod
    def from_le_bytes(cls, data: bytes) -> Num:
        if len(data) != 4:
            raise ValueError("a number is encoded in exactly 4 bytes")
        return cls(int.from_bytes(data, "little", signed=True))

    @classmethod
    def parse(cls, text: str) -> Num:
        """Parse a decimal literal, rounding to the nearest representable value."""
        if not _NUMBER_RE.fullmatch(text):
            raise ValueError(f"invalid number literal: {text!r}")
        try:
            return cls(round(Fraction(text) * _SCALE))
        except OverflowError as exc:
            raise ValueError(f"number literal out of range: {text!r}") from exc

    def to_le_bytes(self) -> bytes:
        return self.raw.to_bytes(4, "little", signed=True)

    def to_int(self) -> int:
        """Integer part, rounded towards negative infinity."""
        return self.raw >> _FRAC_BITS

    def frac(self) -> Num:
        """Fractional part; never negative."""
        return Num(self.raw & (_SCALE - 1))

    def __int__(self) -> int:
        return self.to_int()

    def __neg__(self) -> Num:
        return Num(_wrap32(-self.raw))

    def __add__(self, other: object) -> Num:
        if not isinstance(other, Num):
            return NotImplemented
        return Num(_wrap32(self.raw + other.raw))

    def __sub__(self, other: object) -> Num:
        if not isinstance(other, Num):
            return NotImplemented
        return Num(_wrap32(self.raw - other.raw))

    def __mul__(self, other: object) -> Num:
        if not isinstance(other, Num):
            return NotImplemented
        return Num(_wrap32((self.raw * other.raw) >> _FRAC_BITS))

    def __truediv__(self, other: object) -> Num:
        if not isinstance(other, Num):
            return NotImplemented
        if other.raw == 0:
            raise ZeroDivisionError("fixed-point division by zero")
        return Num(_wrap32(_trunc_div(self.raw << _FRAC_BITS, other.raw)))

    def __mod__(self, other: object) -> Num:
        if not isinstance(other, Num):
            return NotImplemented
        if other.raw == 0:
            raise ZeroDivisionError("fixed-point remainder by zero")
        rem = abs(self.raw) % abs(other.raw)
        return Num(-rem if self.raw < 0 else rem)

    def __str__(self) -> str:
        sign = "-" if self.raw < 0 else ""
        magnitude = abs(self.raw)
        whole, frac = divmod(magnitude, _SCALE)
        if frac == 0:
            return f"{sign}{whole}"
        exact = Fraction(frac, _SCALE)
        for digits in range(1, 9):
            power = 10**digits
            candidate = round(exact * power)
            if candidate < power and round(Fraction(candidate, power) * _SCALE) == frac:
                return f"{sign}{whole}.{candidate:0{digits}d}"
        raise AssertionError("unreachable: 8 decimal digits represent every value")


class OpType(enum.IntEnum):
    """Opcode byte of each op."""

    TERMINATE = 0
    UNRESOLVED = 1
    CONST = 2
    TYPE_ID = 3
    PUSH = 8
    ADD = 9
    SUB = 10
    MUL = 11
    DUP = 12
    SWAP = 14
    POP = 15
    EXEC = 16
    SELECT = 17
    LT = 18
    GT = 19
    EQ = 20
    NOT = 21
    ROL = 22
    ROR = 24
    REACH = 25
    ARR_BEGIN = 26
    ARR_END = 27
    ARR_CAT = 29
    ARR_FIRST = 30
    ARR_LEN = 31
    ARR_SKIP1 = 32
    PACK = 33
    MOD = 34
    FRACT = 35
    DIV = 36
    JUMP = 40
    SYSTEM = 41
    MATERIALIZE = 42
    OPS_OF = 43
    CONST_AT = 44

    def has_param(self) -> bool:
        """Whether the encoded op carries a 4-byte parameter."""
        return self in _PARAM_TYPES


_PARAM_TYPES = frozenset(
    {OpType.UNRESOLVED, OpType.CONST, OpType.PUSH, OpType.REACH, OpType.SYSTEM}
)
# Jump carries an index in memory, but its index is not part of the encoding.
_ARG_TYPES = _PARAM_TYPES | {OpType.JUMP}
_OFFSET_TYPES = frozenset({OpType.UNRESOLVED, OpType.CONST, OpType.JUMP})


@dataclass(frozen=True)
class Op:
    """One bytecode op; `arg` is a Num for PUSH and an unsigned 32-bit int for indexed ops."""

    type: OpType
    arg: Union[int, Num, None] = None

    def __post_init__(self) -> None:
        if self.type is OpType.PUSH:
            if not isinstance(self.arg, Num):
                raise ValueError("PUSH requires a Num argument")
        elif self.type in _ARG_TYPES:
            if not isinstance(self.arg, int) or isinstance(self.arg, bool):
                raise ValueError(f"{self.type.name} requires an integer argument")
            if not 0 <= self.arg <= _U32_MASK:
                raise ValueError(f"{self.type.name} argument out of u32 range")
        elif self.arg is not None:
            raise ValueError(f"{self.type.name} takes no argument")

    def offset(self, by: int) -> Op:
        """Shift table references (unresolved, const, jump) by `by` bytes."""
        if self.type in _OFFSET_TYPES:
            return replace(self, arg=(self.arg + by) & _U32_MASK)
        return self

    def encode(self) -> bytes:
        head = bytes([self.type])
        if self.type is OpType.PUSH:
            return head + self.arg.to_le_bytes()
        if self.type.has_param():
            return head + self.arg.to_bytes(4, "little")
        return head

    def write(self, stream: BinaryIO) -> None:
        stream.write(self.encode())


@dataclass(frozen=True)
class Unresolved:
    """Reference to a symbol by name, used by the compiler before symbols get addresses."""

    name: str


class ByteCodeErrorKind(enum.Enum):
    INVALID_MAGIC = "Invalid magic"
    UNSUPPORTED_VERSION = "Unsupported version"
    NOT_ENOUGH_BYTES = "Not enough bytes"
    ELEMENT_NOT_FOUND = "Element not found"
    INVALID_STRING_ENCODING = "Invalid string encoding"
    ARR_END_MISMATCH = "Different amount of ArrBegin compared to ArrEnd"
    UNKNOWN_OPCODE = "Unknown opcode"


class ByteCodeError(Exception):
    """Malformed or unsupported bytecode."""

    def __init__(self, kind: ByteCodeErrorKind, opcode: int | None = None) -> None:
        self.kind = kind
        self.opcode = opcode
        if kind is ByteCodeErrorKind.UNKNOWN_OPCODE and opcode is not None:
            message = f"Unknown opcode {opcode:#x}"
        else:
            message = kind.value
        super().__init__(message)


def read_op(data: bytes) -> tuple[Op, int]:
    """Decode the op at the start of `data`; return it with its encoded length."""
    if len(data) == 0:
        raise ByteCodeError(ByteCodeErrorKind.NOT_ENOUGH_BYTES)
    code = data[0]
    try:
        op_type = OpType(code)
    except ValueError:
        raise ByteCodeError(ByteCodeErrorKind.UNKNOWN_OPCODE, code) from None

    arg: Union[int, Num, None] = None
    if op_type in _ARG_TYPES:
        raw = bytes(data[1:5])
        if len(raw) < 4:
            raise ByteCodeError(ByteCodeErrorKind.NOT_ENOUGH_BYTES)
        arg = Num.from_le_bytes(raw) if op_type is OpType.PUSH else int.from_bytes(raw, "little")
    return Op(op_type, arg), 5 if op_type.has_param() else 1


@dataclass(frozen=True)
class Export:
    """Globals table entry: name is a string offset, const_id a code offset, both in the data table."""

    name: int
    const_id: int

    def encode(self) -> bytes:
        return self.name.to_bytes(4, "little") + self.const_id.to_bytes(4, "little")


@dataclass(frozen=True)
class Header:
    """The 16-byte file header."""

    min_reader_version: int = VERSION
    writer_version: int = VERSION
    globals_tab_num: int = 0
    globals_tab_off: int = 0  # relative to the data table

    def main_ops_area_begin_idx(self) -> int:
        return HEADER_SIZE + self.globals_tab_off + self.globals_tab_num * 8

    def serialize(self) -> bytes:
        return (
            MAGIC
            + bytes([self.min_reader_version, self.writer_version])
            + self.globals_tab_num.to_bytes(2, "little")
            + self.globals_tab_off.to_bytes(4, "little")
            + bytes(4)
        )

    def write(self, stream: BinaryIO) -> None:
        stream.write(self.serialize())

    @classmethod
    def from_bytes(cls, data: bytes) -> Header:
        if len(data) < 4:
            raise ByteCodeError(ByteCodeErrorKind.NOT_ENOUGH_BYTES)
        if bytes(data[0:4]) != MAGIC:
            raise ByteCodeError(ByteCodeErrorKind.INVALID_MAGIC)
        if len(data) < 6:
            raise ByteCodeError(ByteCodeErrorKind.NOT_ENOUGH_BYTES)
        min_reader_version, writer_version = data[4], data[5]
        if VERSION < min_reader_version:
            raise ByteCodeError(ByteCodeErrorKind.UNSUPPORTED_VERSION)
        if len(data) < 12:
            raise ByteCodeError(ByteCodeErrorKind.NOT_ENOUGH_BYTES)
        return cls(
            min_reader_version=min_reader_version,
            writer_version=writer_version,
            globals_tab_num=int.from_bytes(data[6:8], "little"),
            globals_tab_off=int.from_bytes(data[8:12], "little"),
        )


def iter_ops(base: int, data: bytes) -> Iterator[tuple[int, Op]]:
    """Yield (position, op) pairs up to, not including, the terminating op."""
    pos = 0
    while True:
        op, size = read_op(data[pos : pos + 5])
        if op.type is OpType.TERMINATE:
            return
        yield base + pos, op
        pos += size


@dataclass(frozen=True)
class Bytecode:
    """A decoded view over the bytes of an assembly."""

    data: bytes
    header: Header

    @classmethod
    def from_bytes(cls, data: bytes) -> Bytecode:
        return cls(bytes(data), Header.from_bytes(data))

    def data_table(self) -> bytes:
        end = HEADER_SIZE + self.header.globals_tab_off
        if end > len(self.data):
            raise ByteCodeError(ByteCodeErrorKind.NOT_ENOUGH_BYTES)
        return self.data[HEADER_SIZE:end]

    def globals_table(self) -> bytes:
        return self.data[HEADER_SIZE + self.header.globals_tab_off :]

    def main_ops_area(self) -> bytes:
        return self.data[self.header.main_ops_area_begin_idx() :]

    def globals(self) -> Iterator[Export]:
        table = self.globals_table()
        for idx in range(self.header.globals_tab_num):
            entry = table[idx * 8 : idx * 8 + 8]
            if len(entry) < 8:
                raise ByteCodeError(ByteCodeErrorKind.NOT_ENOUGH_BYTES)
            yield Export(
                name=int.from_bytes(entry[0:4], "little"),
                const_id=int.from_bytes(entry[4:8], "little"),
            )

    def named_globals(self) -> Iterator[tuple[str, int]]:
        for export in self.globals():
            yield self.string(export.name), export.const_id

    def string(self, off: int) -> str:
        """The NUL-terminated UTF-8 string at `off` in the data table."""
        table = self.data_table()
        if off > len(table):
            raise ByteCodeError(ByteCodeErrorKind.ELEMENT_NOT_FOUND)
        term = table.find(b"\x00", off)
        if term < 0:
            raise ByteCodeError(ByteCodeErrorKind.INVALID_STRING_ENCODING)
        try:
            return table[off:term].decode("utf-8")
        except UnicodeDecodeError:
            raise ByteCodeError(ByteCodeErrorKind.INVALID_STRING_ENCODING) from None

    def const_ops(self, off: int) -> Iterator[tuple[int, Op]]:
        """Ops of the code at `off` in the data table, positioned absolutely in the file."""
        table = self.data_table()
        if off > len(table):
            raise ByteCodeError(ByteCodeErrorKind.ELEMENT_NOT_FOUND)
        return iter_ops(HEADER_SIZE + off, table[off:])

    def main_ops(self) -> Iterator[tuple[int, Op]]:
        return iter_ops(self.header.main_ops_area_begin_idx(), self.main_ops_area())

    def codes_in_data_table(self) -> set[int]:
        """Offsets (relative to the data table) of all code reachable from main and globals."""
        found: set[int] = set()

        def visit(ops: Iterator[tuple[int, Op]]) -> None:
            pending = [ops]
            while pending:
                for _, op in pending.pop():
                    if op.type in (OpType.CONST, OpType.JUMP) and op.arg not in found:
                        found.add(op.arg)
                        pending.append(self.const_ops(op.arg))

        visit(self.main_ops())
        for export in self.globals():
            found.add(export.const_id)
            visit(self.const_ops(export.const_id))
        return found