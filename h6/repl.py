"""Interactive session: evaluate lines against a persistent stack and set of definitions."""

from __future__ import annotations

import sys
from pathlib import Path
from typing import Iterable, Optional, Union

from h6.bytecode import Bytecode
from h6.hostio import print_stack, register_io, val_unlink
from h6.lexer import LexError, Tok, TokType, lex
from h6.linker import LinkError, self_link
from h6.lower import lower
from h6.parser import Expr, ParseError, parse
from h6.runtime import H6RuntimeError, Runtime, Value

PROMPT = "> "
CONTINUATION_PROMPT = "::: "
_MIN_COMPLETION_LEN = 2
_CLOSE_HINT = " }"

_STYLES = {
    TokType.NUM: "94",
    TokType.STR: "92",
    TokType.IDENT: "36",
    TokType.POINT: "93",
    TokType.OP: "35",
    TokType.COMMENT: "90",
    TokType.ERR: "4;31",
}


def brace_depth(line: str) -> int:
    """Number of curly braces opened but not closed in `line`; 0 if it cannot be lexed."""
    try:
        tokens = lex(line)
    except LexError:
        return 0
    depth = 0
    for token in tokens:
        if token.kind is Tok.CURLY_OPEN:
            depth += 1
        elif token.kind is Tok.CURLY_CLOSE:
            depth -= 1
    return depth


def is_complete(line: str) -> bool:
    """Whether `line` can be evaluated, i.e. leaves no brace open."""
    return brace_depth(line) <= 0


def hint(line: str) -> str:
    """Text suggested after `line`: a closing brace while one is open."""
    open_braces = brace_depth(line)
    if open_braces > 0:
        return _CLOSE_HINT
    return ""


def highlight(line: str) -> str:
    """`line` with its tokens painted with ANSI colours; text between tokens is kept."""
    try:
        tokens = lex(line)
    except LexError:
        return line
    parts: list[str] = []
    cursor = 0
    for token in tokens:
        start, end = token.span
        parts.append(line[cursor:start])
        parts.append(f"\x1b[{_STYLES[token.tok_type()]}m{line[start:end]}\x1b[0m")
        cursor = end
    parts.append(line[cursor:])
    return "".join(parts)


class Session:
    """State kept between evaluations: the stack and the named definitions.

    `stdin` and `stdout` are the binary streams given to programs; None means the process's.
    """

    def __init__(self) -> None:
        self.stack: list[Value] = []
        self.defines: dict[str, tuple] = {}
        self.bc: Optional[Bytecode] = None
        self.last_error: Optional[H6RuntimeError] = None
        self.stdin = None
        self.stdout = None

    def import_file(self, path: Union[str, Path]) -> None:
        """Take over the definitions of a source file."""
        text = Path(path).read_text(encoding="utf-8")
        for expr in parse(lex(text)):
            if expr.binding is not None:
                self.defines[expr.binding] = expr.val

    def eval(self, text: str) -> list[Value]:
        """Run `text` on top of the current stack and definitions; return the new stack.

        Lexing and parsing errors leave the session untouched. Once parsed, the stack is
        consumed, so a link error leaves it empty. A runtime error stops execution; it is
        kept in `last_error` and the stack reached so far is kept.
        """
        exprs = parse(lex(text))
        for expr in exprs:
            if expr.binding is not None:
                self.defines.pop(expr.binding, None)

        program = [Expr(val=value.into_ops()) for value in self.stack]
        self.stack = []
        program.extend(exprs)
        program.extend(Expr(binding=name, val=val) for name, val in self.defines.items())

        body = bytearray()
        header = lower(body, program, pic=True)
        binary = bytearray(header) + body
        self_link(binary, False)

        bc = Bytecode.from_bytes(bytes(binary))
        rt = Runtime(bc)
        register_io(rt, self.stdin, self.stdout)
        self.last_error = None
        try:
            rt.run()
        except H6RuntimeError as exc:
            self.last_error = exc

        self.bc = bc
        self.stack = [val_unlink(value, bc) for value in rt.stack]
        self.defines = {e.binding: e.val for e in program if e.binding is not None}
        return list(self.stack)


def _install_completion(session: Session) -> None:
    try:
        import readline
    except ImportError:
        return

    def complete(text: str, state: int) -> Optional[str]:
        matches = sorted(
            name
            for name in session.defines
            if len(name) >= _MIN_COMPLETION_LEN and name.startswith(text)
        )
        return matches[state] if state < len(matches) else None

    readline.set_completer(complete)
    readline.parse_and_bind("tab: complete")


def _read_entry() -> str:
    text = input(PROMPT)
    while not is_complete(text):
        text += "\n" + input(CONTINUATION_PROMPT)
    return text


def run_repl(imports: Iterable[Union[str, Path]] = ()) -> int:
    """Run the interactive loop; return the exit status."""
    session = Session()
    for path in imports:
        try:
            session.import_file(path)
        except OSError as exc:
            print(f"reading input file: {exc}", file=sys.stderr)
            return 1
        except LexError as exc:
            print(f"({path} lexer) {exc}", file=sys.stderr)
            return 1
        except ParseError as exc:
            print(f"({path} parser) {exc}", file=sys.stderr)
            return 1

    _install_completion(session)

    interrupts = 0
    while True:
        try:
            text = _read_entry()
        except KeyboardInterrupt:
            interrupts += 1
            print()
            if interrupts == 2:
                break
            continue
        except EOFError:
            break
        interrupts = 0

        try:
            stack = session.eval(text)
        except (LexError, ParseError) as exc:
            print(exc, file=sys.stderr)
            continue
        except LinkError as exc:
            print(f"linker error: {exc}", file=sys.stderr)
            continue
        if session.last_error is not None:
            print(session.last_error, file=sys.stderr)
        print_stack(session.bc, stack)
    return 0