import io

import pytest

from h6.bytecode import (
    ByteCodeError,
    Bytecode,
    Export,
    Header,
    Num,
    Op,
    OpType,
)
from h6.linker import (
    LinkError,
    SymbolDefinedTwice,
    SymbolNotFound,
    VersionMismatch,
    cat_together,
    self_link,
)

TERM = Op(OpType.TERMINATE).encode()


def _push(n: int) -> Op:
    return Op(OpType.PUSH, Num.from_int(n))


def _code(*ops: Op) -> bytes:
    return b"".join(op.encode() for op in ops) + TERM


def _assemble(data_table: bytes, exports: list, main: list) -> bytes:
    header = Header(globals_tab_num=len(exports), globals_tab_off=len(data_table))
    return (
        header.serialize()
        + data_table
        + b"".join(e.encode() for e in exports)
        + b"".join(op.encode() for op in main)
        + TERM
    )


def _main_ops(data: bytes) -> list:
    return [op for _, op in Bytecode.from_bytes(bytes(data)).main_ops()]


def _empty_output() -> io.BytesIO:
    return io.BytesIO(Header().serialize() + TERM)


def test_self_link_resolves_main_reference():
    table = b"bar\x00" + _code(_push(7))
    binary = bytearray(_assemble(table, [Export(0, 4)], [Op(OpType.UNRESOLVED, 0)]))
    self_link(binary)
    assert _main_ops(binary) == [Op(OpType.CONST, 4)]


def test_self_link_resolves_inside_globals():
    # "a" at 0, "b" at 2; code of a at 4 refers to b; code of b follows.
    a_code = _code(Op(OpType.UNRESOLVED, 2))
    b_off = 4 + len(a_code)
    table = b"a\x00b\x00" + a_code + _code(_push(1))
    binary = bytearray(_assemble(table, [Export(0, 4), Export(2, b_off)], []))
    self_link(binary)
    asm = Bytecode.from_bytes(bytes(binary))
    assert [op for _, op in asm.const_ops(4)] == [Op(OpType.CONST, b_off)]


def test_self_link_missing_symbol():
    binary = bytearray(_assemble(b"baz\x00", [], [Op(OpType.UNRESOLVED, 0)]))
    with pytest.raises(SymbolNotFound) as info:
        self_link(binary)
    assert info.value.name == "baz"


def test_self_link_allows_undeclared():
    original = _assemble(b"baz\x00", [], [Op(OpType.UNRESOLVED, 0)])
    binary = bytearray(original)
    self_link(binary, allow_undeclared=True)
    assert bytes(binary) == original
    binary = bytearray(original)
    self_link(binary, allow_undeclared=lambda name: name == "baz")
    assert _main_ops(binary) == [Op(OpType.UNRESOLVED, 0)]


def test_self_link_predicate_can_reject():
    binary = bytearray(_assemble(b"baz\x00", [], [Op(OpType.UNRESOLVED, 0)]))
    with pytest.raises(SymbolNotFound):
        self_link(binary, allow_undeclared=lambda name: name == "other")


def test_self_link_symbol_defined_twice():
    table = b"x\x00" + _code(_push(1))
    binary = bytearray(_assemble(table, [Export(0, 2), Export(0, 2)], []))
    with pytest.raises(SymbolDefinedTwice) as info:
        self_link(binary)
    assert info.value.name == "x"
    assert isinstance(info.value, LinkError)


def test_cat_into_empty_output_keeps_assembly():
    table = b"a\x00" + _code(_push(3))
    asm = _assemble(table, [Export(0, 2)], [_push(4)])
    out = _empty_output()
    cat_together(out, asm)
    result = Bytecode.from_bytes(out.getvalue())
    assert list(result.named_globals()) == [("a", 2)]
    assert [op for _, op in result.main_ops()] == [_push(4)]
    assert [op for _, op in result.const_ops(2)] == [_push(3)]


def test_cat_two_assemblies_then_link():
    data1 = b"a\x00b\x00" + _code(_push(1))
    asm1 = _assemble(data1, [Export(0, 4)], [Op(OpType.UNRESOLVED, 2)])
    data2 = b"b\x00" + _code(_push(2))
    asm2 = _assemble(data2, [Export(0, 2)], [])

    out = _empty_output()
    cat_together(out, asm1)
    cat_together(out, asm2)

    merged = Bytecode.from_bytes(out.getvalue())
    b_off = len(data1) + 2
    assert dict(merged.named_globals()) == {"a": 4, "b": b_off}
    assert [op for _, op in merged.main_ops()] == [Op(OpType.UNRESOLVED, 2)]

    binary = bytearray(out.getvalue())
    self_link(binary)
    linked = Bytecode.from_bytes(bytes(binary))
    assert [op for _, op in linked.main_ops()] == [Op(OpType.CONST, b_off)]
    assert [op for _, op in linked.const_ops(b_off)] == [_push(2)]


def test_cat_shifts_references_in_code():
    data1 = b"q\x00" + _code(_push(9))
    asm1 = _assemble(data1, [Export(0, 2)], [])
    # second assembly: code at 2 refers to code at 2 + len(first code)
    inner = _code(_push(5))
    outer_len = len(_code(Op(OpType.CONST, 0)))
    data2 = b"r\x00" + _code(Op(OpType.CONST, 2 + outer_len)) + inner
    asm2 = _assemble(data2, [Export(0, 2)], [Op(OpType.CONST, 2)])

    out = _empty_output()
    cat_together(out, asm1)
    cat_together(out, asm2)
    merged = Bytecode.from_bytes(out.getvalue())
    shift = len(data1)
    assert [op for _, op in merged.main_ops()] == [Op(OpType.CONST, 2 + shift)]
    assert [op for _, op in merged.const_ops(2 + shift)] == [
        Op(OpType.CONST, 2 + outer_len + shift)
    ]
    assert [op for _, op in merged.const_ops(2 + outer_len + shift)] == [_push(5)]


def test_cat_version_mismatch():
    out = io.BytesIO(Header(writer_version=2).serialize() + TERM)
    with pytest.raises(VersionMismatch):
        cat_together(out, _assemble(b"", [], []))


def test_cat_rejects_bad_input():
    with pytest.raises(ByteCodeError):
        cat_together(_empty_output(), b"XXXX" + bytes(12))


def test_cat_rejects_short_output():
    with pytest.raises(LinkError):
        cat_together(io.BytesIO(b"H6"), _assemble(b"", [], []))