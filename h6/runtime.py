"""Stack machine that executes h6 bytecode one op at a time."""

from __future__ import annotations

import enum
from collections import deque
from dataclasses import dataclass
from typing import Callable, Iterable, Iterator, Optional, Union

from h6.bytecode import HEADER_SIZE, ByteCodeError, Bytecode, Num, Op, OpType, iter_ops
from h6.disasm import Disasm

_U32_MASK = 0xFFFFFFFF


def _is(op: object, op_type: OpType) -> bool:
    return isinstance(op, Op) and op.type is op_type


def _as_i16(value: int) -> int:
    value &= 0xFFFF
    return value - 0x10000 if value & 0x8000 else value


def _bytes_to_pushes(data: bytes) -> tuple[Op, ...]:
    return tuple(Op(OpType.PUSH, Num.from_int(b)) for b in data)


class RuntimeErrorKind(enum.Enum):
    BYTECODE = "bytecode error"
    OP_NOT_SUPPORT_TYPE = "operation does not support this value type"
    STACK_UNDERFLOW = "stack underflow"
    UNLINKED_SYM = "unlinked symbol"
    ARR_IDX_OUT_OF_BOUNDS = "array index out of bounds"
    ARR_OPEN_CLOSE_MISMATCH = "array begin/end mismatch"
    SYSTEM_FN_NOT_FOUND = "system function not found"
    SYSTEM_FN_ERR = "system function failed"
    CAPTURED_TOO_MUCH = "captured too much"


class H6RuntimeError(Exception):
    """Execution failed; `detail` carries the symbol id, system id, message or bytecode error."""

    def __init__(
        self,
        kind: RuntimeErrorKind,
        detail: object = None,
        position: Optional[int] = None,
    ) -> None:
        self.kind = kind
        self.detail = detail
        self.position = position
        message = kind.value
        if detail is not None:
            message = f"{message}: {detail}"
        if position is not None:
            message = f"{message} (at byte {position})"
        super().__init__(message)

    def at(self, pos: int) -> H6RuntimeError:
        """The same error, located at byte position `pos`."""
        return H6RuntimeError(self.kind, self.detail, pos)


@dataclass(frozen=True)
class Value:
    """A stack value: either a number or an array of ops."""

    payload: Union[Num, tuple]

    @classmethod
    def num(cls, n: Union[Num, int]) -> Value:
        return cls(n if isinstance(n, Num) else Num.from_int(n))

    @classmethod
    def arr(cls, ops: Iterable[object]) -> Value:
        return cls(tuple(ops))

    @property
    def is_num(self) -> bool:
        return isinstance(self.payload, Num)

    def into_ops(self) -> tuple:
        """Ops that push this value again: a PUSH, or the array wrapped in ARR_BEGIN/ARR_END."""
        if self.is_num:
            return (Op(OpType.PUSH, self.payload),)
        return (Op(OpType.ARR_BEGIN), *self.payload, Op(OpType.ARR_END))

    def type_id(self) -> int:
        """0 for numbers, 1 for arrays."""
        return 0 if self.is_num else 1

    def disasm(self, bc: Bytecode) -> str:
        """Readable text; arrays of printable ASCII pushes are shown as strings."""
        if self.is_num:
            return str(self.payload)
        ops = self.payload
        chars = [
            chr(op.arg.to_int() & 0xFF) for op in ops if _is(op, OpType.PUSH)
        ]
        text = "".join(c for c in chars if ord(c) < 128 and 32 <= ord(c) != 127)
        if len(text) == len(ops):
            return f'"{text}"'
        return Disasm(bc).arr(len(ops), ops)

    def as_num(self) -> Num:
        if not self.is_num:
            raise H6RuntimeError(RuntimeErrorKind.OP_NOT_SUPPORT_TYPE)
        return self.payload

    def as_arr(self) -> tuple:
        if self.is_num:
            raise H6RuntimeError(RuntimeErrorKind.OP_NOT_SUPPORT_TYPE)
        return self.payload


@dataclass(frozen=True)
class _PushValue:
    """Internal op: push a prepared value."""

    value: Value

    def enum_id(self) -> int:
        return 0


@dataclass(frozen=True)
class _Collect:
    """Internal op: gather everything above `snapshot` into one array."""

    snapshot: int

    def enum_id(self) -> int:
        return 1


SystemFn = Callable[[list], Iterable[Value]]


class Runtime:
    """Executes an assembly's main code; `stack` holds the values, `todo` the pending ops."""

    def __init__(self, bc: Bytecode) -> None:
        self.bc = bc
        self.stack: list[Value] = []
        self.todo: deque = deque()
        self._system: dict[int, tuple[int, SystemFn]] = {}
        try:
            self._exec_ops(bc.header.main_ops_area_begin_idx())
        except ByteCodeError as exc:
            raise H6RuntimeError(RuntimeErrorKind.BYTECODE, exc) from exc

    def register(self, name: int, num_ins: int, fn: SystemFn) -> Runtime:
        """Make `fn` callable as system function `name`, taking `num_ins` values (top first)."""
        self._system[name] = (num_ins, fn)
        return self

    def step(self) -> bool:
        """Execute one pending op; return False when nothing is left to do."""
        if not self.todo:
            return False
        op = self.todo.popleft()
        try:
            self._exec_op(0, op)
        except ByteCodeError as exc:
            raise H6RuntimeError(RuntimeErrorKind.BYTECODE, exc) from exc
        return True

    def run(self) -> list[Value]:
        """Execute until done and return the stack, bottom first."""
        while self.step():
            pass
        return self.stack

    def _schedule(self, ops: Iterator[object]) -> None:
        pending: list[object] = []
        for op in ops:
            if not _is(op, OpType.ARR_BEGIN):
                pending.append(op)
                continue
            items: list[object] = []
            depth = 1
            while depth > 0:
                item = next(ops, None)
                if item is None:
                    raise H6RuntimeError(RuntimeErrorKind.ARR_OPEN_CLOSE_MISMATCH)
                if _is(item, OpType.ARR_BEGIN):
                    depth += 1
                elif _is(item, OpType.ARR_END):
                    depth -= 1
                if depth > 0:
                    items.append(item)
            pending.append(_PushValue(Value.arr(items)))
        self.todo.extendleft(reversed(pending))

    def _exec_ops(self, at: int) -> None:
        self._schedule(op for _, op in iter_ops(at, self.bc.data[at:]))

    def _exec_arr(self, ops: Iterable[object]) -> None:
        self._schedule(iter(ops))

    @staticmethod
    def _first_elem_len(ops: tuple) -> int:
        if not ops:
            return 0
        if not _is(ops[0], OpType.ARR_BEGIN):
            return 1
        depth = 1
        length = 1
        rest = iter(ops[1:])
        while depth > 0:
            op = next(rest, None)
            if op is None:
                raise H6RuntimeError(RuntimeErrorKind.ARR_OPEN_CLOSE_MISMATCH)
            if _is(op, OpType.ARR_BEGIN):
                depth += 1
            elif _is(op, OpType.ARR_END):
                depth -= 1
            length += 1
        return length

    def _pop(self, byte_pos: int) -> Value:
        if not self.stack:
            raise H6RuntimeError(RuntimeErrorKind.STACK_UNDERFLOW, position=byte_pos)
        return self.stack.pop()

    def _num_bin(self, byte_pos: int, fn: Callable[[Num, Num], Num]) -> None:
        try:
            top = self._pop(byte_pos).as_num()
            below = self._pop(byte_pos).as_num()
        except H6RuntimeError as exc:
            raise exc.at(byte_pos) from None
        self.stack.append(Value(fn(below, top)))

    @staticmethod
    def _encode_all(ops: Iterable[object]) -> bytes:
        out = bytearray()
        for op in ops:
            if not isinstance(op, Op):
                raise TypeError(f"op cannot be encoded: {op!r}")
            out += op.encode()
        return bytes(out)

    def _exec_op(self, byte_pos: int, op: object) -> None:
        if isinstance(op, _PushValue):
            self.stack.append(op.value)
            return
        if isinstance(op, _Collect):
            if op.snapshot > len(self.stack):
                raise H6RuntimeError(RuntimeErrorKind.CAPTURED_TOO_MUCH)
            captured = self.stack[op.snapshot :]
            del self.stack[op.snapshot :]
            self.stack.append(Value.arr(o for v in captured for o in v.into_ops()))
            return
        if not isinstance(op, Op):
            raise TypeError(f"op not executable by the runtime: {op!r}")

        t = op.type
        pop = lambda: self._pop(byte_pos)  # noqa: E731
        true, false = Num.from_int(1), Num.from_int(0)

        if t is OpType.OPS_OF:
            self.stack.append(Value.arr(_bytes_to_pushes(self._encode_all(pop().as_arr()))))
        elif t is OpType.CONST_AT:
            idx = pop().as_num().to_int() & _U32_MASK
            encoded = self._encode_all(o for _, o in self.bc.const_ops(idx))
            self.stack.append(Value.arr(_bytes_to_pushes(encoded)))
        elif t is OpType.TERMINATE:
            pass
        elif t is OpType.UNRESOLVED:
            raise H6RuntimeError(RuntimeErrorKind.UNLINKED_SYM, op.arg, byte_pos)
        elif t in (OpType.CONST, OpType.JUMP):
            self._exec_ops(op.arg + HEADER_SIZE)
        elif t is OpType.PUSH:
            self.stack.append(Value(op.arg))
        elif t is OpType.ADD:
            self._num_bin(byte_pos, lambda a, b: a + b)
        elif t is OpType.SUB:
            self._num_bin(byte_pos, lambda a, b: a - b)
        elif t is OpType.MUL:
            self._num_bin(byte_pos, lambda a, b: a * b)
        elif t is OpType.DIV:
            self._num_bin(byte_pos, lambda a, b: a / b)
        elif t is OpType.MOD:
            self._num_bin(byte_pos, lambda a, b: a % b)
        elif t is OpType.LT:
            self._num_bin(byte_pos, lambda a, b: true if a < b else false)
        elif t is OpType.GT:
            self._num_bin(byte_pos, lambda a, b: true if a > b else false)
        elif t is OpType.EQ:
            self._num_bin(byte_pos, lambda a, b: true if a == b else false)
        elif t is OpType.FRACT:
            self.stack.append(Value(pop().as_num().frac()))
        elif t is OpType.MATERIALIZE:
            ops = pop().as_arr()
            self.todo.appendleft(_Collect(len(self.stack)))
            self._exec_arr(ops)
        elif t is OpType.DUP:
            value = pop()
            self.stack.extend((value, value))
        elif t is OpType.SWAP:
            top = pop()
            below = pop()
            self.stack.extend((top, below))
        elif t is OpType.POP:
            pop()
        elif t is OpType.EXEC:
            self._exec_arr(pop().as_arr())
        elif t is OpType.SELECT:
            cond = pop().as_num()
            a = pop()
            b = pop()
            self.stack.append(b if cond.raw == 0 else a)
        elif t is OpType.NOT:
            self.stack.append(Value(true if pop().as_num().raw == 0 else false))
        elif t is OpType.ROL:
            t0, t1, t2 = pop(), pop(), pop()
            self.stack.extend((t1, t0, t2))
        elif t is OpType.ROR:
            t0, t1, t2 = pop(), pop(), pop()
            self.stack.extend((t0, t2, t1))
        elif t in (OpType.ARR_BEGIN, OpType.ARR_END):
            raise H6RuntimeError(RuntimeErrorKind.ARR_OPEN_CLOSE_MISMATCH, position=byte_pos)
        elif t is OpType.ARR_CAT:
            b = pop().as_arr()
            a = pop().as_arr()
            self.stack.append(Value.arr(a + b))
        elif t is OpType.ARR_SKIP1:
            a = pop().as_arr()
            self.stack.append(Value.arr(a[self._first_elem_len(a) :]))
        elif t is OpType.ARR_FIRST:
            a = pop().as_arr()
            length = self._first_elem_len(a)
            if length == 0:
                raise H6RuntimeError(RuntimeErrorKind.ARR_IDX_OUT_OF_BOUNDS)
            self._exec_arr(a[:length])
        elif t is OpType.ARR_LEN:
            self.stack.append(Value.num(_as_i16(len(pop().as_arr()))))
        elif t is OpType.REACH:
            index = len(self.stack) - 1 - op.arg
            if index < 0:
                raise H6RuntimeError(RuntimeErrorKind.STACK_UNDERFLOW)
            self.stack.append(self.stack[index])
        elif t is OpType.SYSTEM:
            entry = self._system.get(op.arg)
            if entry is None:
                raise H6RuntimeError(RuntimeErrorKind.SYSTEM_FN_NOT_FOUND, op.arg)
            num_ins, fn = entry
            args = [pop() for _ in range(num_ins)]
            self.stack.extend(fn(args))
        elif t is OpType.PACK:
            self.stack.append(Value.arr(pop().into_ops()))
        elif t is OpType.TYPE_ID:
            self.stack.append(Value.num(pop().type_id()))
        else:
            raise TypeError(f"unhandled op: {op!r}")