"""Concatenate assemblies and resolve symbol references inside one assembly."""

from __future__ import annotations

from dataclasses import replace
from typing import BinaryIO, Callable, Union

from h6.bytecode import (
    HEADER_SIZE,
    Bytecode,
    Export,
    Header,
    Op,
    OpType,
    iter_ops,
)

UndeclaredPolicy = Union[bool, Callable[[str], bool]]


class LinkError(Exception):
    """Linking failed."""


class VersionMismatch(LinkError):
    """The assemblies were written by different format versions."""

    def __init__(self) -> None:
        super().__init__("version mismatch")


class SymbolDefinedTwice(LinkError):
    def __init__(self, name: str) -> None:
        self.name = name
        super().__init__(f"symbol defined twice: {name}")


class SymbolNotFound(LinkError):
    def __init__(self, name: str) -> None:
        self.name = name
        super().__init__(f"symbol not found: {name}")


def cat_together(output: BinaryIO, data: bytes) -> None:
    """Append the assembly `data` to the assembly in the seekable `output`.

    References are shifted but not resolved; run `self_link` on the result.
    """
    incoming = Bytecode.from_bytes(data)

    output.seek(0)
    head = output.read(HEADER_SIZE)
    if len(head) < HEADER_SIZE:
        raise LinkError("output ends before its header")
    out_header = Header.from_bytes(head)
    if out_header.writer_version != incoming.header.writer_version:
        raise VersionMismatch()

    shift = out_header.globals_tab_off
    output.seek(HEADER_SIZE + shift)
    out_rest = output.read()

    data_tab = bytearray(incoming.data_table())
    for code in incoming.codes_in_data_table():
        for pos, op in incoming.const_ops(code):
            encoded = op.offset(shift).encode()
            rel = pos - HEADER_SIZE
            data_tab[rel : rel + len(encoded)] = encoded

    output.seek(HEADER_SIZE + shift)
    output.write(bytes(data_tab))

    globals_begin = output.tell()
    old_globals_len = out_header.globals_tab_num * 8
    output.write(out_rest[:old_globals_len])
    for export in incoming.globals():
        output.write(Export(export.name + shift, export.const_id + shift).encode())

    for _, op in iter_ops(0, out_rest[old_globals_len:]):
        output.write(op.encode())
    for _, op in incoming.main_ops():
        output.write(op.offset(shift).encode())
    output.write(Op(OpType.TERMINATE).encode())

    output.seek(0)
    new_header = replace(
        out_header,
        globals_tab_num=out_header.globals_tab_num + incoming.header.globals_tab_num,
        globals_tab_off=globals_begin - HEADER_SIZE,
    )
    output.write(new_header.serialize())


def _undeclared_allowed(policy: UndeclaredPolicy, name: str) -> bool:
    """Apply `policy` (a flag or a predicate) to the undeclared symbol `name`."""
    if callable(policy):
        return bool(policy(name))
    return bool(policy)


def self_link(binary: bytearray, allow_undeclared: UndeclaredPolicy = False) -> None:
    """Replace unresolved references in `binary` by references to its own globals, in place.

    `allow_undeclared` decides whether a symbol without a definition may stay unresolved.
    """
    header = Header.from_bytes(bytes(binary))

    decls: dict[str, int] = {}
    for name, value in Bytecode(bytes(binary), header).named_globals():
        if name in decls:
            raise SymbolDefinedTwice(name)
        decls[name] = value

    done: set[int] = set()
    todo = [header.main_ops_area_begin_idx() - HEADER_SIZE]
    todo.extend(decls.values())

    while todo:
        off = todo.pop()
        snapshot = bytes(binary)
        view = Bytecode(snapshot, header)
        to_write: list[tuple[int, int]] = []
        for pos, op in iter_ops(off, snapshot[HEADER_SIZE + off :]):
            done.add(pos)
            if op.type is OpType.UNRESOLVED:
                name = view.string(op.arg)
                if name in decls:
                    to_write.append((pos, decls[name]))
                elif not _undeclared_allowed(allow_undeclared, name):
                    raise SymbolNotFound(name)
            elif op.type is OpType.CONST and op.arg not in done:
                todo.append(op.arg)

        for pos, target in to_write:
            encoded = Op(OpType.CONST, target).encode()
            start = HEADER_SIZE + pos
            binary[start : start + len(encoded)] = encoded