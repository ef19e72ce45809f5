# h6

h6 is a small stack-based language with a complete toolchain: a lexer and
parser, a compiler that lowers programs to a compact bytecode format, a linker
that combines bytecode files and resolves symbols, a disassembler, and a
virtual machine that runs the result. It has no dependencies outside the
standard library.

## Installing

```
pip install .
```

This installs the `h6` command.

## The language in brief

Programs are sequences of expressions that act on a stack of values. A value
is either a number (signed fixed point, 24 integer bits and 8 fraction bits)
or an array of operations.

```
# comments run to the end of the line
square: { . * }
3 square !
1 "hi\n" system 0
```

- Numbers: `3`, `-2`, `1.5`
- Strings: `"hi\n"` becomes an array of byte values; `\\`, `\"` and `\n` are
  the escapes
- Characters: `'a` pushes the character's code
- Bindings: `name: expr` defines a global; a bare identifier refers to one
- Arrays: `{ ... }` hold code that is not run until it is executed with `!`
- `[!]` runs an array and collects everything it pushed into a new array
- Arithmetic and comparison: `+ - * / % < > = ~`, and `fract` for the
  fractional part
- Stack: `.` dup, `,` copy the second value, `;` pop, `$` swap, `l`/`r` rotate
  the top three; `&` followed by `-` and `v` marks (such as `&-v`) copies the
  marked deeper values to the top
- Arrays: `@+` concat, `@0` first element, `@<` skip first element, `@*`
  length, `_` pack the top value into an array
- `?` selects between two values by a condition; `typeid` gives 0 for
  numbers and 1 for arrays
- `system N` calls host function `N`. Function 0 takes an array (on top) and a
  stream number below it and writes the array's numbers as bytes; function 1
  takes a stream number and pushes one byte read from it. Only stream 1
  (standard output / standard input) is supported.
- `opsOf` and `constAt` give the raw bytecode of an array or of a constant as
  an array of byte values

## Using the command

Compile a source file to bytecode:

```
h6 compile -o hello.h6b hello.h6
```

References to bindings defined earlier in the file are resolved while
compiling; references to later or external bindings are left for the linker.

Link one or more bytecode files into one, resolving symbols between them:

```
h6 ld -o program.h6b hello.h6b lib.h6b
```

`h6 link` is an alias. If the output file is also one of the inputs it is used
as the base; otherwise it is created empty first. `--allow-unresolved` keeps
references to undefined symbols instead of failing, and `--cat-only` only
concatenates the inputs without resolving anything.

Run a program; the final stack is printed when it finishes, framed by `bot`
and `top` when it holds more than one value:

```
h6 run program.h6b
```

List the symbols a file defines (`T`) and the ones its code leaves
unresolved (`t`):

```
h6 nm program.h6b
```

Disassemble a file, showing its globals, every code area in its data table and
its main code:

```
h6 dis program.h6b
```

Start an interactive session, optionally loading definitions from source
files first:

```
h6 repl lib.h6
```

In the session the stack and all definitions persist between lines. Input
with an unclosed `{` continues on the next line. Where the `readline` module
is available, Tab completes defined names of two or more characters. An
end-of-file or two interrupts in a row end the session.

Errors are reported on standard error and the command exits with status 1.

## Using it as a library

```python
import io

from h6.bytecode import Bytecode
from h6.lexer import lex
from h6.lower import lower_full
from h6.parser import parse
from h6.runtime import Runtime

exprs = parse(lex("sq: { . * } 7 sq !"))
buf = io.BytesIO()
lower_full(buf, exprs, False)

rt = Runtime(Bytecode.from_bytes(buf.getvalue()))
stack = rt.run()
print(stack[0].disasm(rt.bc))  # 49
```

Other pieces:

- `h6.bytecode`: `Num`, `Op`, `OpType`, `Header`, `Bytecode` and the
  `ByteCodeError` raised for malformed files
- `h6.linker`: `cat_together` and `self_link`, raising `LinkError`
  subclasses (`VersionMismatch`, `SymbolDefinedTwice`, `SymbolNotFound`)
- `h6.disasm.Disasm`: renders operations as text
- `h6.runtime`: `Runtime` with `register`, `step` and `run`, `Value`, and
  `H6RuntimeError`
- `h6.hostio`: `register_io` to attach the byte I/O system functions to a
  runtime with any binary streams, and `print_stack`
- `h6.repl.Session`: the interactive evaluator without a terminal; also
  `brace_depth`, `is_complete`, `hint` and `highlight`
- `h6.cli`: `compile_file`, `link_files`, `run_file`, `list_symbols`,
  `disassemble` and `main`

## Limitations

The interactive session reads lines with plain `input()`: it does not colour
the text as it is typed, and it shows no inline hint for a missing `}`. The
functions `h6.repl.highlight` and `h6.repl.hint` compute both for a given line
for anyone who wants to build them into their own front end.

## Running the tests

```
pip install .[test]
pytest
```