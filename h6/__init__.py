"""A stack-based language with lexer, compiler, linker, disassembler, virtual machine and REPL."""

__version__ = "0.1.0"