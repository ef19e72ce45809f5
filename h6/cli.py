"""Command line front end: compile, link, run, inspect and play with h6 programs."""

from __future__ import annotations

import argparse
import sys
from contextlib import contextmanager
from pathlib import Path
from typing import Iterable, Iterator, Optional, Sequence, Union

from h6.bytecode import HEADER_SIZE, ByteCodeError, Bytecode, Header, Op, OpType
from h6.disasm import Disasm
from h6.hostio import print_stack, register_io
from h6.lexer import LexError, lex
from h6.linker import LinkError, cat_together, self_link
from h6.lower import LoweringError, lower_full
from h6.parser import ParseError, parse
from h6.repl import run_repl
from h6.runtime import H6RuntimeError, Runtime, Value

PathLike = Union[str, Path]

_WRAPPED = (
    OSError,
    UnicodeDecodeError,
    LinkError,
    ByteCodeError,
    H6RuntimeError,
    LoweringError,
)


class HumanError(Exception):
    """An error from any stage, with a note on what was being done when it happened."""

    def __init__(self, error: BaseException, context: Optional[str] = None) -> None:
        self.error = error
        self.context = context
        super().__init__(self._describe())

    def _describe(self) -> str:
        err = self.error
        if isinstance(err, (OSError, UnicodeDecodeError)):
            text = f"I/O Error: {err}"
        elif isinstance(err, LinkError):
            text = f"Linker Error: {err}"
        elif isinstance(err, ByteCodeError):
            text = f"Bytecode Decode Error: {err}"
        else:
            text = str(err)
        return text if self.context is None else f"{self.context}: {text}"


@contextmanager
def _context(description: str) -> Iterator[None]:
    try:
        yield
    except HumanError:
        raise
    except _WRAPPED as exc:
        raise HumanError(exc, description) from exc


def _read_input(path: PathLike) -> bytes:
    with _context("while opening input file"):
        handle = open(path, "rb")
    with handle, _context("while reading input file"):
        return handle.read()


def _load(path: PathLike) -> Bytecode:
    data = _read_input(path)
    with _context("while decoding input file"):
        return Bytecode.from_bytes(data)


def compile_file(input_path: PathLike, output_path: PathLike) -> None:
    """Compile a source file into a bytecode file.

    Lexing and parsing problems raise LexError and ParseError.
    """
    with _context("could not open input file"):
        text = Path(input_path).read_text(encoding="utf-8")
    exprs = parse(lex(text))
    with _context("while creating output file"):
        sink = open(output_path, "wb")
    with sink, _context("while writing output file"):
        lower_full(sink, exprs, False)


def link_files(
    inputs: Iterable[PathLike],
    output: PathLike,
    allow_unresolved: bool = False,
    cat_only: bool = False,
) -> None:
    """Concatenate the input assemblies into `output`, then resolve symbols unless `cat_only`.

    If `output` is among the inputs it serves as the base assembly; otherwise it is created empty.
    """
    paths = [Path(p) for p in inputs]
    output = Path(output)
    if output in paths:
        paths.remove(output)
    else:
        with _context("while creating output file"), open(output, "wb") as handle:
            handle.write(Header(globals_tab_num=0, globals_tab_off=0).serialize())
            handle.write(Op(OpType.TERMINATE).encode())

    with _context("while opening output file"):
        out = open(output, "r+b")
    with out:
        for path in paths:
            data = _read_input(path)
            with _context("while linking"):
                cat_together(out, data)

        if not cat_only:
            out.seek(0)
            binary = bytearray(out.read())
            with _context("while linking"):
                self_link(binary, allow_unresolved)
            out.seek(0)
            out.write(bytes(binary))


def run_file(path: PathLike) -> list[Value]:
    """Run a bytecode file with standard byte I/O, print its final stack and return it."""
    asm = _load(path)
    with _context("exec"):
        rt = Runtime(asm)
        register_io(rt)
        rt.run()
    stack = list(rt.stack)
    print_stack(rt.bc, stack)
    return stack


def list_symbols(path: PathLike) -> list[str]:
    """Lines naming the globals a bytecode file defines and the symbols its code leaves unresolved."""
    asm = _load(path)
    lines = []
    with _context("while reading input file"):
        for name, pos in asm.named_globals():
            lines.append(f"{pos:#06x} T {name}")
    with _context("decoding"):
        discovered = {
            asm.string(op.arg)
            for code in asm.codes_in_data_table()
            for _, op in asm.const_ops(code)
            if op.type is OpType.UNRESOLVED
        }
    lines.extend(f"       t {name}" for name in sorted(discovered))
    return lines


def disassemble(asm: Bytecode) -> str:
    """Readable listing of the globals, every code area in the data table and the main code."""
    dis = Disasm(asm)
    lines = ["globals:"]
    names: dict[int, str] = {}
    with _context("decoding"):
        for name, addr in asm.named_globals():
            lines.append(f"  {name} \tdata+{addr} (={addr + HEADER_SIZE})")
            names[addr] = name
        lines.append("")

        for rel_pos in sorted(asm.codes_in_data_table()):
            abs_pos = rel_pos + HEADER_SIZE
            lines.append(f"data+{rel_pos} (={abs_pos}) : {names.get(rel_pos, '????')}")
            lines.append(f"  {dis.absolute_ops(abs_pos)}")
            lines.append("")

        main_beg = asm.header.main_ops_area_begin_idx()
        lines.append(f"main (={main_beg})")
        lines.append(f"  {dis.absolute_ops(main_beg)}")
        lines.append("")
    return "\n".join(lines) + "\n"


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="h6")
    commands = parser.add_subparsers(dest="command", required=True)

    compile_cmd = commands.add_parser("compile", help="compile to bytecode file")
    compile_cmd.add_argument("-o", dest="output", required=True)
    compile_cmd.add_argument("input")

    ld = commands.add_parser("ld", aliases=["link"], help="link bytecode files")
    ld.add_argument("inputs", nargs="*")
    ld.add_argument("-o", dest="output", required=True)
    ld.add_argument("--allow-unresolved", action="store_true")
    ld.add_argument(
        "--cat-only",
        action="store_true",
        help="only concatenate assemblies into output. do not perform linking",
    )

    run = commands.add_parser("run", help="run bytecode file")
    run.add_argument("input")

    nm = commands.add_parser("nm", help="list symbols in bytecode file")
    nm.add_argument("input")

    repl = commands.add_parser("repl", help="interactive playground")
    repl.add_argument("import_", metavar="import", nargs="*")

    dis = commands.add_parser("dis", help="disassemble")
    dis.add_argument("file")
    return parser


def main(argv: Optional[Sequence[str]] = None) -> int:
    """Entry point of the h6 command; returns the exit status."""
    args = _build_parser().parse_args(argv)
    try:
        if args.command == "compile":
            compile_file(args.input, args.output)
        elif args.command in ("ld", "link"):
            link_files(args.inputs, args.output, args.allow_unresolved, args.cat_only)
        elif args.command == "run":
            run_file(args.input)
        elif args.command == "nm":
            for line in list_symbols(args.input):
                print(line)
        elif args.command == "dis":
            print(disassemble(_load(args.file)), end="")
        elif args.command == "repl":
            return run_repl(args.import_)
    except LexError as exc:
        print(f"(lexer) {exc}", file=sys.stderr)
        return 1
    except ParseError as exc:
        print(f"(parser) {exc}", file=sys.stderr)
        return 1
    except HumanError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1
    return 0