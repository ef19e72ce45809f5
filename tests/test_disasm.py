import pytest

from h6.bytecode import (
    ByteCodeError,
    ByteCodeErrorKind,
    Bytecode,
    Export,
    Header,
    Num,
    Op,
    OpType,
    Unresolved,
)
from h6.disasm import Disasm


def _assemble(data_table: bytes, exports: list, main: list) -> bytes:
    header = Header(globals_tab_num=len(exports), globals_tab_off=len(data_table))
    return (
        header.serialize()
        + data_table
        + b"".join(e.encode() for e in exports)
        + b"".join(op.encode() for op in main)
        + Op(OpType.TERMINATE).encode()
    )


def _push(n: int) -> Op:
    return Op(OpType.PUSH, Num.from_int(n))


@pytest.fixture
def dis():
    return Disasm(Bytecode.from_bytes(_assemble(b"foo\x00", [], [])))


@pytest.mark.parametrize(
    "op_type, text",
    [
        (OpType.ADD, "+"),
        (OpType.DUP, "."),
        (OpType.SWAP, "$"),
        (OpType.POP, ";"),
        (OpType.EXEC, "!"),
        (OpType.ARR_CAT, "@+"),
        (OpType.ARR_FIRST, "@0"),
        (OpType.ARR_SKIP1, "@<"),
        (OpType.ARR_LEN, "@*"),
        (OpType.PACK, "_"),
        (OpType.MATERIALIZE, "<materialize>"),
        (OpType.ROL, "l"),
    ],
)
def test_simple_ops(dis, op_type, text):
    assert dis.op(Op(op_type)) == text


def test_ops_with_parameters(dis):
    assert dis.op(Op(OpType.CONST, 12)) == "<const: data+12>"
    assert dis.op(Op(OpType.JUMP, 7)) == "<jump: data+7>"
    assert dis.op(Op(OpType.SYSTEM, 1)) == "<system: 1>"
    assert dis.op(Op(OpType.REACH, 2)) == "<reach: 2>"
    assert dis.op(_push(3)) == str(Num.from_int(3))


def test_structural_ops_are_flagged(dis):
    for op_type in (OpType.TERMINATE, OpType.ARR_BEGIN, OpType.ARR_END):
        assert dis.op(Op(op_type)) == "<wtf>"


def test_unresolved_looks_up_string(dis):
    assert dis.op(Op(OpType.UNRESOLVED, 0)) == '<unresolved: "foo">'


def test_frontend_unresolved(dis):
    assert dis.op(Unresolved("bar")) == '<frontend: Unresolved("bar")>'


def test_ops_groups_arrays(dis):
    ops = [_push(1), Op(OpType.ARR_BEGIN), _push(2), Op(OpType.ARR_END), Op(OpType.ADD)]
    assert dis.ops(ops) == "1 { 2 } + "


def test_empty_and_nested_arrays(dis):
    ops = [Op(OpType.ARR_BEGIN), Op(OpType.ARR_END)]
    assert dis.ops(ops) == "{} "
    nested = [Op(OpType.ARR_BEGIN), Op(OpType.ARR_BEGIN), Op(OpType.ARR_END), Op(OpType.ARR_END)]
    assert dis.ops(nested) == "{ {} } "


def test_unbalanced_array_raises(dis):
    with pytest.raises(ByteCodeError) as info:
        dis.ops([Op(OpType.ARR_BEGIN), _push(1)])
    assert info.value.kind is ByteCodeErrorKind.ARR_END_MISMATCH


def test_absolute_ops_main_area():
    data = _assemble(b"", [], [_push(1), _push(2), Op(OpType.ADD)])
    asm = Bytecode.from_bytes(data)
    text = Disasm(asm).absolute_ops(asm.header.main_ops_area_begin_idx())
    assert text == "1 2 + "


def test_absolute_ops_global_code():
    code = _push(5).encode() + Op(OpType.TERMINATE).encode()
    table = b"x\x00" + code
    asm = Bytecode.from_bytes(_assemble(table, [Export(0, 2)], []))
    assert Disasm(asm).absolute_ops(16 + 2) == "5 "


def test_arr_renders_length_zero_as_braces(dis):
    assert dis.arr(0, []) == "{} "
    assert dis.arr(1, [_push(4)]) == "{ 4 } "