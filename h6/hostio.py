"""Host services for running programs: byte streams as system calls, stack printing, unlinking."""

from __future__ import annotations

import sys
from typing import BinaryIO, Iterable, Optional, TextIO

from h6.bytecode import ByteCodeError, ByteCodeErrorKind, Bytecode, Num, Op, OpType, Unresolved
from h6.runtime import H6RuntimeError, Runtime, RuntimeErrorKind, Value

WRITE_BYTES = 0
READ_BYTE = 1
_STANDARD_STREAM = Num.from_int(1)


def _check_stream(stream: Num) -> None:
    if stream != _STANDARD_STREAM:
        raise H6RuntimeError(RuntimeErrorKind.SYSTEM_FN_ERR, f"unsupported stream {stream}")


def register_io(
    rt: Runtime,
    stdin: Optional[BinaryIO] = None,
    stdout: Optional[BinaryIO] = None,
) -> Runtime:
    """Register the byte I/O system functions on `rt`.

    System 0 takes an array of numbers and a stream number and writes the numbers as bytes;
    system 1 takes a stream number and pushes one byte read from it. Only stream 1, the
    standard streams, is supported. `stdin`/`stdout` default to the process's binary streams.
    """

    def write_bytes(args: list[Value]) -> list[Value]:
        arr = args[0].as_arr()
        stream = args[1].as_num()
        data = bytearray()
        for op in arr:
            if not (isinstance(op, Op) and op.type is OpType.PUSH):
                raise H6RuntimeError(
                    RuntimeErrorKind.SYSTEM_FN_ERR, "only numbers can be written as bytes"
                )
            data.append(op.arg.to_int() & 0xFF)
        _check_stream(stream)
        sink = stdout if stdout is not None else sys.stdout.buffer
        sink.write(bytes(data))
        sink.flush()
        return []

    def read_byte(args: list[Value]) -> list[Value]:
        stream = args[0].as_num()
        _check_stream(stream)
        source = stdin if stdin is not None else sys.stdin.buffer
        data = source.read(1)
        if not data:
            raise H6RuntimeError(RuntimeErrorKind.SYSTEM_FN_ERR, "failed to fill whole buffer")
        return [Value.num(data[0])]

    rt.register(WRITE_BYTES, 2, write_bytes)
    rt.register(READ_BYTE, 1, read_byte)
    return rt


def print_stack(bc: Bytecode, stack: Iterable[Value], out: Optional[TextIO] = None) -> None:
    """Print the stack bottom first, framed by "bot"/"top" when it holds more than one value."""
    target = out if out is not None else sys.stdout
    values = list(stack)
    framed = len(values) > 1
    if framed:
        print("bot", file=target)
    for value in values:
        try:
            text = value.disasm(bc)
        except ByteCodeError:
            text = "<invalid value>"
        print(f"  {text}", file=target)
    if framed:
        print("top", file=target)


def val_unlink(val: Value, bc: Bytecode) -> Value:
    """Replace references to globals of `bc` inside an array value by references by name."""
    names: dict[int, str] = {}
    for name, addr in bc.named_globals():
        names.setdefault(addr, name)

    if val.is_num:
        return val

    def unlink(op: object) -> object:
        if isinstance(op, Op) and op.type is OpType.CONST:
            name = names.get(op.arg)
            if name is None:
                raise ByteCodeError(ByteCodeErrorKind.ELEMENT_NOT_FOUND)
            return Unresolved(name)
        return op

    return Value.arr(unlink(op) for op in val.as_arr())