[build-system]
requires = ["setuptools>=64"]
build-backend = "setuptools.build_meta"

[project]
name = "h6"
version = "0.1.0"
description = "A small stack-based language: lexer, compiler, bytecode linker, disassembler and virtual machine"
requires-python = ">=3.10"
dependencies = []
keywords = ["interpreter", "bytecode", "stack-machine", "compiler", "linker", "vm"]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Environment :: Console",
    "Intended Audience :: Developers",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Software Development :: Interpreters",
    "Topic :: Software Development :: Compilers",
]

[project.optional-dependencies]
test = ["pytest"]

[project.scripts]
h6 = "h6.cli:main"

[tool.setuptools.packages.find]
include = ["h6*"]

[tool.pytest.ini_options]
addopts = "-ra"
