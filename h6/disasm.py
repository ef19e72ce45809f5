"""Turn ops and code areas of an assembly into readable text."""

from __future__ import annotations

from typing import Iterable, Iterator

from h6.bytecode import (
    ByteCodeError,
    ByteCodeErrorKind,
    Bytecode,
    Op,
    OpType,
    Unresolved,
    iter_ops,
)

_SIMPLE_TEXT = {
    OpType.TYPE_ID: "<typeid>",
    OpType.MATERIALIZE: "<materialize>",
    OpType.OPS_OF: "<ops-of>",
    OpType.CONST_AT: "<const-at>",
    OpType.ADD: "+",
    OpType.SUB: "-",
    OpType.MUL: "*",
    OpType.MOD: "%",
    OpType.DIV: "/",
    OpType.FRACT: "<fract>",
    OpType.DUP: ".",
    OpType.SWAP: "$",
    OpType.POP: ";",
    OpType.EXEC: "!",
    OpType.SELECT: "?",
    OpType.LT: "<",
    OpType.GT: ">",
    OpType.EQ: "=",
    OpType.NOT: "~",
    OpType.ROL: "l",
    OpType.ROR: "r",
    OpType.ARR_CAT: "@+",
    OpType.ARR_FIRST: "@0",
    OpType.ARR_SKIP1: "@<",
    OpType.ARR_LEN: "@*",
    OpType.PACK: "_",
}

_STRUCTURAL = frozenset({OpType.TERMINATE, OpType.ARR_BEGIN, OpType.ARR_END})


def _is(op: object, op_type: OpType) -> bool:
    return isinstance(op, Op) and op.type is op_type


class Disasm:
    """Disassembler bound to one assembly, used to look up strings."""

    def __init__(self, asm: Bytecode) -> None:
        self.asm = asm

    def absolute_ops(self, pos: int) -> str:
        """Disassemble the ops starting at absolute byte position `pos`."""
        ops = [op for _, op in iter_ops(pos, self.asm.data[pos:])]
        return self.ops(ops)

    def arr(self, length: int, ops: Iterable[object]) -> str:
        """Render the contents of an array literal."""
        if length == 0:
            return "{} "
        return "{ " + self.ops(ops) + "} "

    def ops(self, ops: Iterable[object]) -> str:
        """Render a sequence of ops, grouping nested arrays into braces."""
        it: Iterator[object] = iter(ops)
        parts: list[str] = []
        for op in it:
            if _is(op, OpType.ARR_BEGIN):
                items: list[object] = []
                depth = 1
                while depth > 0:
                    try:
                        item = next(it)
                    except StopIteration:
                        raise ByteCodeError(ByteCodeErrorKind.ARR_END_MISMATCH) from None
                    if _is(item, OpType.ARR_BEGIN):
                        depth += 1
                    elif _is(item, OpType.ARR_END):
                        depth -= 1
                    if depth > 0:
                        items.append(item)
                parts.append(self.arr(len(items), items))
            else:
                parts.append(self.op(op) + " ")
        return "".join(parts)

    def op(self, op: object) -> str:
        """Render a single op."""
        if isinstance(op, Unresolved):
            return f'<frontend: Unresolved("{op.name}")>'
        if not isinstance(op, Op):
            enum_id = getattr(op, "enum_id", None)
            if callable(enum_id):
                enum_id = enum_id()
            return f"<rt typeid={type(op).__name__} enum={enum_id}>"

        op_type = op.type
        if op_type in _STRUCTURAL:
            return "<wtf>"
        if op_type is OpType.UNRESOLVED:
            return f'<unresolved: "{self.asm.string(op.arg)}">'
        if op_type is OpType.JUMP:
            return f"<jump: data+{op.arg}>"
        if op_type is OpType.CONST:
            # Not followed: constants may refer to themselves.
            return f"<const: data+{op.arg}>"
        if op_type is OpType.PUSH:
            return str(op.arg)
        if op_type is OpType.SYSTEM:
            return f"<system: {op.arg}>"
        if op_type is OpType.REACH:
            return f"<reach: {op.arg}>"
        return _SIMPLE_TEXT[op_type]