"""Tokenizer for h6 source text."""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import Optional, Union

from h6.bytecode import Num


class Tok(enum.Enum):
    COMMENT = enum.auto()
    NUM = enum.auto()
    STR = enum.auto()
    IDENT = enum.auto()
    CHAR = enum.auto()
    COLON = enum.auto()
    CURLY_OPEN = enum.auto()
    CURLY_CLOSE = enum.auto()
    DOT = enum.auto()
    COMMA = enum.auto()
    SEMICOLON = enum.auto()
    EXCLAMATION = enum.auto()
    QUESTION = enum.auto()
    ANGLE_OPEN = enum.auto()
    ANGLE_CLOSE = enum.auto()
    SQUARE_OPEN = enum.auto()
    SQUARE_CLOSE = enum.auto()
    EQUAL = enum.auto()
    TILDE = enum.auto()
    PLUS = enum.auto()
    MINUS = enum.auto()
    MUL = enum.auto()
    L = enum.auto()
    R = enum.auto()
    DOLLAR = enum.auto()
    AT0 = enum.auto()
    AT_STAR = enum.auto()
    AT_PLUS = enum.auto()
    AT_LEFT = enum.auto()
    PACK = enum.auto()
    ERROR = enum.auto()
    REF_PLANET = enum.auto()
    TYPE_ID = enum.auto()
    SYSTEM = enum.auto()
    FRACT = enum.auto()
    MOD = enum.auto()
    DIV = enum.auto()
    OPS_OF = enum.auto()
    CONST_AT = enum.auto()


class TokType(enum.Enum):
    NUM = enum.auto()
    STR = enum.auto()
    IDENT = enum.auto()
    POINT = enum.auto()
    OP = enum.auto()
    COMMENT = enum.auto()
    ERR = enum.auto()


_KEYWORDS = {
    "fract": Tok.FRACT,
    "system": Tok.SYSTEM,
    "typeid": Tok.TYPE_ID,
    "opsOf": Tok.OPS_OF,
    "constAt": Tok.CONST_AT,
    "_": Tok.PACK,
    "l": Tok.L,
    "r": Tok.R,
}

_SYMBOLS = (
    (":", Tok.COLON),
    (".", Tok.DOT),
    (",", Tok.COMMA),
    (";", Tok.SEMICOLON),
    ("!", Tok.EXCLAMATION),
    ("?", Tok.QUESTION),
    ("<", Tok.ANGLE_OPEN),
    (">", Tok.ANGLE_CLOSE),
    ("=", Tok.EQUAL),
    ("~", Tok.TILDE),
    ("+", Tok.PLUS),
    ("-", Tok.MINUS),
    ("*", Tok.MUL),
    ("%", Tok.MOD),
    ("/", Tok.DIV),
    ("{", Tok.CURLY_OPEN),
    ("}", Tok.CURLY_CLOSE),
    ("[", Tok.SQUARE_OPEN),
    ("]", Tok.SQUARE_CLOSE),
    ("$", Tok.DOLLAR),
    ("@0", Tok.AT0),
    ("@+", Tok.AT_PLUS),
    ("@*", Tok.AT_STAR),
    ("@<", Tok.AT_LEFT),
)

_FIXED_TEXT = {kind: text for text, kind in _SYMBOLS}
_FIXED_TEXT.update(
    {
        Tok.L: "l",
        Tok.R: "r",
        Tok.PACK: "_",
        Tok.ERROR: "<ERR>",
        Tok.REF_PLANET: "<planet>",
        Tok.TYPE_ID: "<typeid>",
        Tok.SYSTEM: "<system>",
        Tok.FRACT: "<fract>",
        Tok.OPS_OF: "<opsOf>",
        Tok.CONST_AT: "<constAt>",
    }
)

_POINTS = frozenset({Tok.CURLY_OPEN, Tok.CURLY_CLOSE, Tok.SQUARE_OPEN, Tok.SQUARE_CLOSE, Tok.COLON})

_ESCAPES = (("\\\\", "\\"), ('\\"', '"'), ("\\n", "\n"))
_NEWLINES = frozenset("\r\n\x0b\x0c\x85\u2028\u2029")
_DIGITS = "0123456789"


@dataclass(frozen=True)
class ColorScheme:
    """ANSI SGR parameters used to paint each token category."""

    number: str = "34"
    string: str = "32"
    identifier: str = "36"
    point: str = "33"
    op: str = "35"
    comment: str = "2;37"
    err: str = "31"


TokValue = Union[str, Num, tuple, None]


@dataclass(frozen=True)
class Token:
    """A token; `span` holds start and end character offsets in the source."""

    kind: Tok
    value: TokValue = None
    span: tuple[int, int] = field(default=(0, 0), compare=False)

    def tok_type(self) -> TokType:
        kind = self.kind
        if kind is Tok.COMMENT:
            return TokType.COMMENT
        if kind is Tok.NUM:
            return TokType.NUM
        if kind in (Tok.STR, Tok.CHAR):
            return TokType.STR
        if kind is Tok.IDENT:
            return TokType.IDENT
        if kind in _POINTS:
            return TokType.POINT
        if kind is Tok.ERROR:
            return TokType.ERR
        return TokType.OP

    def text(self) -> str:
        if self.kind in (Tok.COMMENT, Tok.STR, Tok.IDENT, Tok.CHAR, Tok.NUM):
            return str(self.value)
        return _FIXED_TEXT[self.kind]

    def __str__(self) -> str:
        return self.text()

    def highlight(self) -> str:
        return self.highlight_with(ColorScheme())

    def highlight_with(self, scheme: ColorScheme) -> str:
        style = {
            TokType.NUM: scheme.number,
            TokType.STR: scheme.string,
            TokType.IDENT: scheme.identifier,
            TokType.POINT: scheme.point,
            TokType.OP: scheme.op,
            TokType.COMMENT: scheme.comment,
            TokType.ERR: scheme.err,
        }[self.tok_type()]
        return f"\x1b[{style}m{self.text()}\x1b[0m"


class LexError(Exception):
    """The source holds a token that cannot be represented."""

    def __init__(self, message: str, position: int) -> None:
        self.position = position
        super().__init__(f"at {position}: {message}")


_Match = Optional[tuple[Tok, TokValue, int]]


def _is_ident_start(c: str) -> bool:
    return c == "_" or c.isidentifier()


def _is_ident_continue(c: str) -> bool:
    return ("_" + c).isidentifier()


def _ident_end(src: str, i: int) -> Optional[int]:
    if i >= len(src) or not _is_ident_start(src[i]):
        return None
    j = i + 1
    while j < len(src) and _is_ident_continue(src[j]):
        j += 1
    return j


def _int_end(src: str, i: int) -> Optional[int]:
    """A decimal integer without leading zeros; a lone zero is an integer by itself."""
    if i >= len(src) or src[i] not in _DIGITS:
        return None
    if src[i] == "0":
        return i + 1
    j = i + 1
    while j < len(src) and src[j] in _DIGITS:
        j += 1
    return j


def _escape(src: str, i: int) -> Optional[tuple[str, int]]:
    for seq, char in _ESCAPES:
        if src.startswith(seq, i):
            return char, i + len(seq)
    return None


def _ref_planet(src: str, i: int) -> _Match:
    if not src.startswith("&", i):
        return None
    j = i + 1
    flags = []
    while j < len(src) and src[j] in "-v":
        flags.append(src[j] == "v")
        j += 1
    return Tok.REF_PLANET, tuple(flags), j


def _number(src: str, i: int) -> _Match:
    j = i
    negative = False
    if j < len(src) and src[j] in "+-":
        negative = src[j] == "-"
        j += 1
    end = _int_end(src, j)
    if end is None:
        return None
    if end < len(src) and src[end] == ".":
        frac_end = _int_end(src, end + 1)
        if frac_end is not None:
            end = frac_end
    try:
        value = Num.parse(src[j:end])
    except ValueError as exc:
        raise LexError(str(exc), i) from None
    return Tok.NUM, (-value if negative else value), end


def _string(src: str, i: int) -> _Match:
    if not src.startswith('"', i):
        return None
    j = i + 1
    chars = []
    while j < len(src):
        escaped = _escape(src, j)
        if escaped is not None:
            char, j = escaped
            chars.append(char)
            continue
        if src[j] == '"':
            return Tok.STR, "".join(chars), j + 1
        chars.append(src[j])
        j += 1
    return None


def _comment(src: str, i: int) -> _Match:
    if not src.startswith("#", i):
        return None
    j = i + 1
    while j < len(src) and src[j] not in _NEWLINES:
        j += 1
    return Tok.COMMENT, src[i:j], j


def _operator(src: str, i: int) -> _Match:
    end = _ident_end(src, i)
    if end is not None and src[i:end] in _KEYWORDS:
        return _KEYWORDS[src[i:end]], None, end
    for text, kind in _SYMBOLS:
        if src.startswith(text, i):
            return kind, None, i + len(text)
    return None


def _ident(src: str, i: int) -> _Match:
    end = _ident_end(src, i)
    if end is None:
        return None
    return Tok.IDENT, src[i:end], end


def _char(src: str, i: int) -> _Match:
    if not src.startswith("'", i):
        return None
    escaped = _escape(src, i + 1)
    if escaped is not None:
        return Tok.CHAR, escaped[0], escaped[1]
    if i + 1 < len(src):
        return Tok.CHAR, src[i + 1], i + 2
    return None


_RULES = (_ref_planet, _number, _string, _comment, _operator, _ident, _char)


def lex(source: str) -> list[Token]:
    """Split `source` into tokens; unrecognised characters become ERROR tokens."""
    tokens: list[Token] = []
    pos = 0
    length = len(source)
    while True:
        while pos < length and source[pos].isspace():
            pos += 1
        if pos >= length:
            return tokens
        for rule in _RULES:
            found = rule(source, pos)
            if found is not None:
                kind, value, end = found
                break
        else:
            kind, value, end = Tok.ERROR, None, pos + 1
        tokens.append(Token(kind, value, (pos, end)))
        pos = end