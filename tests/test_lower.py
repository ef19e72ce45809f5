import io

import pytest

from h6.bytecode import HEADER_SIZE, MAGIC, Bytecode, Header, Num, Op, OpType
from h6.lexer import lex
from h6.linker import self_link
from h6.lower import LoweringError, lower, lower_full
from h6.parser import parse


def compile_bytes(text, pic=False):
    buf = io.BytesIO()
    lower_full(buf, parse(lex(text)), pic)
    return buf.getvalue()


def compile_text(text, pic=False):
    return Bytecode.from_bytes(compile_bytes(text, pic))


def push(n):
    return Op(OpType.PUSH, Num.from_int(n))


def main_ops(bc):
    return [op for _, op in bc.main_ops()]


def test_empty_program():
    data = compile_bytes("")
    assert data == Header().serialize() + Op(OpType.TERMINATE).encode()


def test_header_magic():
    assert compile_bytes("1")[:4] == MAGIC


def test_main_ops_only():
    bc = compile_text("1 2 +")
    assert main_ops(bc) == [push(1), push(2), Op(OpType.ADD)]
    assert list(bc.named_globals()) == []


def test_binding_and_resolved_reference():
    bc = compile_text("a: 1 a")
    assert list(bc.named_globals()) == [("a", 0)]
    assert list(bc.const_ops(0)) == [(HEADER_SIZE, push(1))]
    assert main_ops(bc) == [Op(OpType.CONST, 0)]


def test_forward_reference_stays_unresolved():
    bc = compile_text("b: a a: 1")
    globals_ = dict(bc.named_globals())
    (_, op), = list(bc.const_ops(globals_["b"]))
    assert op.type is OpType.UNRESOLVED
    assert bc.string(op.arg) == "a"


def test_pic_keeps_references_unresolved():
    bc = compile_text("a: 1 a", pic=True)
    (op,) = main_ops(bc)
    assert op.type is OpType.UNRESOLVED
    assert bc.string(op.arg) == "a"


def test_pic_then_link_resolves_to_global():
    binary = bytearray(compile_bytes("a: 1 a", pic=True))
    self_link(binary, False)
    bc = Bytecode.from_bytes(bytes(binary))
    globals_ = dict(bc.named_globals())
    assert main_ops(bc) == [Op(OpType.CONST, globals_["a"])]


def test_redefinition_keeps_one_entry_with_latest_code():
    bc = compile_text("a: 1 a: 2")
    assert bc.header.globals_tab_num == 1
    (name, code), = list(bc.named_globals())
    assert name == "a"
    assert [op for _, op in bc.const_ops(code)] == [push(2)]


def test_lower_into_bytearray_matches_lower_full():
    exprs = parse(lex("x: { 1 . } x ! 3"))
    body = bytearray()
    header = lower(body, exprs, False)
    assert len(header) == HEADER_SIZE
    buf = io.BytesIO()
    lower_full(buf, exprs, False)
    assert header + bytes(body) == buf.getvalue()


def test_codes_reachable_from_globals():
    bc = compile_text("f: { 1 } g: f g")
    globals_ = dict(bc.named_globals())
    assert set(globals_.values()) <= bc.codes_in_data_table()


def test_lower_full_after_prefix_writes_header_at_start_position():
    buf = io.BytesIO()
    buf.write(b"xx")
    lower_full(buf, parse(lex("1")), False)
    data = buf.getvalue()
    assert data[:2] == b"xx"
    assert Bytecode.from_bytes(data[2:]).header.globals_tab_num == 0
    assert main_ops(Bytecode.from_bytes(data[2:])) == [push(1)]


class _BrokenSink:
    def write(self, data):
        raise OSError("disk full")


def test_write_failure_raises_lowering_error():
    with pytest.raises(LoweringError):
        lower(_BrokenSink(), parse(lex("1")), False)


def test_lowering_error_message_with_span():
    err = LoweringError("bad", (1, 2))
    assert err.span == (1, 2)
    assert "bad" in str(err)