"""Lowering of parsed expressions into a bytecode assembly."""

from __future__ import annotations

from typing import BinaryIO, Iterable, Optional, Union

from h6.bytecode import HEADER_SIZE, Export, Header, Op, OpType, Unresolved
from h6.parser import Expr

Sink = Union[BinaryIO, bytearray]


class LoweringError(Exception):
    """Writing the assembly failed, or the source cannot be lowered."""

    def __init__(self, message: str, span: Optional[tuple[int, int]] = None) -> None:
        self.span = span
        super().__init__(message if span is None else f"At {span}: {message}")


class _PosWriter:
    """Writes to a sink while counting the bytes written."""

    def __init__(self, sink: Sink, pos: int) -> None:
        self._sink = sink
        self.pos = pos

    def write(self, data: bytes) -> None:
        try:
            if isinstance(self._sink, bytearray):
                self._sink.extend(data)
            else:
                self._sink.write(data)
        except OSError as exc:
            raise LoweringError(str(exc)) from exc
        self.pos += len(data)


def _lower(writer: _PosWriter, exprs: Iterable[Expr], pic: bool) -> bytes:
    globals_: dict[str, int] = {}
    main_ops: list[Op] = []

    def resolve(name: str) -> Op:
        if not pic and name in globals_:
            return Op(OpType.CONST, globals_[name])
        pos = writer.pos
        writer.write(name.encode("utf-8") + b"\x00")
        return Op(OpType.UNRESOLVED, pos)

    for expr in exprs:
        ops = [resolve(op.name) if isinstance(op, Unresolved) else op for op in expr.val]
        if expr.binding is None:
            main_ops.extend(ops)
            continue
        pos = writer.pos
        for op in ops:
            writer.write(op.encode())
        writer.write(Op(OpType.TERMINATE).encode())
        globals_[expr.binding] = pos

    if len(globals_) > 0xFFFF:
        raise LoweringError("too many global definitions")

    entries = bytearray()
    for name, code in globals_.items():
        name_pos = writer.pos
        writer.write(name.encode("utf-8") + b"\x00")
        entries += Export(name_pos, code).encode()

    globals_tab_off = writer.pos
    writer.write(bytes(entries))
    for op in main_ops:
        writer.write(op.encode())
    writer.write(Op(OpType.TERMINATE).encode())

    return Header(globals_tab_num=len(globals_), globals_tab_off=globals_tab_off).serialize()


def lower(sink: Sink, exprs: Iterable[Expr], pic: bool = False) -> bytes:
    """Write an assembly without its header to `sink` and return the 16-byte header.

    Positions are counted from the start of the bytes this call writes, or from the
    current length when `sink` is a bytearray. With `pic`, every reference to a
    binding stays unresolved, to be resolved by the linker.
    """
    start = len(sink) if isinstance(sink, bytearray) else 0
    return _lower(_PosWriter(sink, start), exprs, pic)


def lower_full(sink: BinaryIO, exprs: Iterable[Expr], pic: bool = False) -> None:
    """Write a complete assembly, header included, to the seekable `sink`."""
    try:
        begin = sink.tell()
        sink.write(bytes(HEADER_SIZE))
    except OSError as exc:
        raise LoweringError(str(exc)) from exc
    header = _lower(_PosWriter(sink, 0), exprs, pic)
    try:
        end = sink.tell()
        sink.seek(begin)
        sink.write(header)
        sink.seek(end)
    except OSError as exc:
        raise LoweringError(str(exc)) from exc