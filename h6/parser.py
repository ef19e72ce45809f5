"""Parser turning a token stream into top-level expressions made of ops."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Iterable, Optional, Union

from h6.bytecode import Num, Op, OpType, Unresolved
from h6.lexer import Tok, Token

OpLike = Union[Op, Unresolved]

_SIMPLE_OPS = {
    Tok.DOT: Op(OpType.DUP),
    Tok.COMMA: Op(OpType.REACH, 1),
    Tok.SEMICOLON: Op(OpType.POP),
    Tok.EXCLAMATION: Op(OpType.EXEC),
    Tok.QUESTION: Op(OpType.SELECT),
    Tok.ANGLE_OPEN: Op(OpType.LT),
    Tok.ANGLE_CLOSE: Op(OpType.GT),
    Tok.EQUAL: Op(OpType.EQ),
    Tok.TILDE: Op(OpType.NOT),
    Tok.PLUS: Op(OpType.ADD),
    Tok.MINUS: Op(OpType.SUB),
    Tok.MUL: Op(OpType.MUL),
    Tok.L: Op(OpType.ROL),
    Tok.R: Op(OpType.ROR),
    Tok.DOLLAR: Op(OpType.SWAP),
    Tok.AT0: Op(OpType.ARR_FIRST),
    Tok.AT_PLUS: Op(OpType.ARR_CAT),
    Tok.AT_STAR: Op(OpType.ARR_LEN),
    Tok.AT_LEFT: Op(OpType.ARR_SKIP1),
    Tok.PACK: Op(OpType.PACK),
    Tok.TYPE_ID: Op(OpType.TYPE_ID),
    Tok.MOD: Op(OpType.MOD),
    Tok.DIV: Op(OpType.DIV),
    Tok.FRACT: Op(OpType.FRACT),
    Tok.OPS_OF: Op(OpType.OPS_OF),
    Tok.CONST_AT: Op(OpType.CONST_AT),
}


@dataclass(frozen=True)
class Expr:
    """A top-level expression; `tok_span` is a half-open range of token indices."""

    tok_span: tuple[int, int] = (0, 0)
    binding: Optional[str] = None
    val: tuple[OpLike, ...] = ()


class ParseError(Exception):
    """The token stream does not form a valid program."""

    def __init__(self, position: int, token: Optional[Token]) -> None:
        self.position = position
        self.token = token
        if token is None:
            message = f"unexpected end of input at token {position}"
        else:
            message = f"unexpected token {token.text()!r} at token {position}"
        super().__init__(message)


_Result = Optional[tuple[Expr, int]]


def _char_num(c: str) -> Num:
    code = ord(c) & 0xFFFF
    if code >= 0x8000:
        code -= 0x10000
    return Num.from_int(code)


class _Parser:
    def __init__(self, tokens: list[Token]) -> None:
        self.tokens = tokens
        self.furthest = 0
        self.alternatives: tuple[Callable[[int], _Result], ...] = (
            self._collect,
            self._planet,
            self._syscall,
            self._bind,
            self._op,
            self._arr,
            self._ident,
            self._num,
            self._str,
            self._char,
        )

    def _token(self, pos: int) -> Optional[Token]:
        return self.tokens[pos] if pos < len(self.tokens) else None

    def _kind(self, pos: int) -> Optional[Tok]:
        token = self._token(pos)
        return None if token is None else token.kind

    def _fail(self, pos: int) -> None:
        self.furthest = max(self.furthest, pos)

    def _skip_comments(self, pos: int) -> int:
        while self._kind(pos) is Tok.COMMENT:
            pos += 1
        return pos

    def expr(self, pos: int) -> _Result:
        start = self._skip_comments(pos)
        for alternative in self.alternatives:
            found = alternative(start)
            if found is not None:
                expr, end = found
                return expr, self._skip_comments(end)
        self._fail(start)
        return None

    def _single(self, pos: int, op: OpLike) -> tuple[Expr, int]:
        return Expr((pos, pos + 1), None, (op,)), pos + 1

    def _collect(self, pos: int) -> _Result:
        kinds = (self._kind(pos), self._kind(pos + 1), self._kind(pos + 2))
        if kinds != (Tok.SQUARE_OPEN, Tok.EXCLAMATION, Tok.SQUARE_CLOSE):
            return None
        return Expr((pos, pos + 3), None, (Op(OpType.MATERIALIZE),)), pos + 3

    def _planet(self, pos: int) -> _Result:
        token = self._token(pos)
        if token is None or token.kind is not Tok.REF_PLANET:
            return None
        ops = []
        taken = 0
        for i, take in reversed(list(enumerate(token.value))):
            if take:
                ops.append(Op(OpType.REACH, taken + i))
                taken += 1
        return Expr((pos, pos + 1), None, tuple(ops)), pos + 1

    def _syscall(self, pos: int) -> _Result:
        if self._kind(pos) is not Tok.SYSTEM:
            return None
        token = self._token(pos + 1)
        if token is None or token.kind is not Tok.NUM:
            self._fail(pos + 1)
            return None
        op = Op(OpType.SYSTEM, token.value.to_int() & 0xFFFFFFFF)
        return Expr((pos, pos + 2), None, (op,)), pos + 2

    def _bind(self, pos: int) -> _Result:
        token = self._token(pos)
        if token is None or token.kind is not Tok.IDENT:
            return None
        if self._kind(pos + 1) is not Tok.COLON:
            return None
        found = self.expr(pos + 2)
        if found is None:
            return None
        inner, end = found
        return Expr((pos, end), str(token.value), inner.val), end

    def _op(self, pos: int) -> _Result:
        op = _SIMPLE_OPS.get(self._kind(pos))
        if op is None:
            return None
        return self._single(pos, op)

    def _arr(self, pos: int) -> _Result:
        if self._kind(pos) is not Tok.CURLY_OPEN:
            return None
        ops: list[OpLike] = [Op(OpType.ARR_BEGIN)]
        cursor = pos + 1
        while (found := self.expr(cursor)) is not None:
            inner, cursor = found
            ops.extend(inner.val)
        if self._kind(cursor) is not Tok.CURLY_CLOSE:
            self._fail(cursor)
            return None
        ops.append(Op(OpType.ARR_END))
        return Expr((pos, cursor + 1), None, tuple(ops)), cursor + 1

    def _ident(self, pos: int) -> _Result:
        token = self._token(pos)
        if token is None or token.kind is not Tok.IDENT:
            return None
        return self._single(pos, Unresolved(str(token.value)))

    def _num(self, pos: int) -> _Result:
        token = self._token(pos)
        if token is None or token.kind is not Tok.NUM:
            return None
        return self._single(pos, Op(OpType.PUSH, token.value))

    def _str(self, pos: int) -> _Result:
        token = self._token(pos)
        if token is None or token.kind is not Tok.STR:
            return None
        ops: list[OpLike] = [Op(OpType.ARR_BEGIN)]
        ops.extend(Op(OpType.PUSH, Num.from_int(b)) for b in str(token.value).encode("utf-8"))
        ops.append(Op(OpType.ARR_END))
        return Expr((pos, pos + 1), None, tuple(ops)), pos + 1

    def _char(self, pos: int) -> _Result:
        token = self._token(pos)
        if token is None or token.kind is not Tok.CHAR:
            return None
        return self._single(pos, Op(OpType.PUSH, _char_num(str(token.value))))


def parse(tokens: Iterable[Token]) -> list[Expr]:
    """Parse a whole token stream into expressions; raise ParseError if any token is left over."""
    token_list = list(tokens)
    parser = _Parser(token_list)
    exprs: list[Expr] = []
    pos = 0
    while (found := parser.expr(pos)) is not None:
        expr, pos = found
        exprs.append(expr)
    if pos != len(token_list):
        where = max(parser.furthest, pos)
        raise ParseError(where, parser._token(where))
    return exprs