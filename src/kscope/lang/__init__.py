"""
Kaleidoscope Language Front End
===============================

Pipeline
--------
    Source → Lexer → Parser → AST → Lowering → Backend

- lexer: one-token-at-a-time tokenizer with one character of pushback
- parser: recursive descent plus precedence climbing over a mutable
  operator table
- ast: immutable node dataclasses and a pretty printer
- lowering: scope-aware translation of the AST onto a Backend
- backend: the abstract capability surface lowering drives
- compiler: the top-level driver loop

Usage
-----
>>> from kscope.lang import parse_expression, ASTPrinter
>>> print(ASTPrinter().print(parse_expression("1+2*3")))
Expr: (1 + (2 * 3))
"""

from kscope.lang.lexer import Lexer, Token, TokenKind
from kscope.lang.ast import (
    NumberLiteral,
    VariableRef,
    BinaryOp,
    Call,
    VarBinding,
    VarBlock,
    Prototype,
    FunctionDef,
    Expr,
    ASTPrinter,
)
from kscope.lang.parser import Parser, PrecedenceTable, EndOfInput, parse_expression
from kscope.lang.backend import Backend, FunctionHandle, VerificationResult
from kscope.lang.lowering import Lowering
from kscope.lang.compiler import (
    KscopeCompiler,
    CompilerOptions,
    CompilationResult,
    TopLevelKind,
    TopLevelResult,
    compile_source,
)
from kscope.lang.errors import (
    LanguageError,
    ParseError,
    MissingTokenError,
    UnexpectedTokenError,
    DuplicateParameterError,
    NestingTooDeepError,
    LoweringError,
    UnknownVariableError,
    UnknownFunctionError,
    ArgumentCountError,
    InvalidOperatorError,
    FunctionRedeclarationError,
    FunctionRedefinitionError,
    VerificationError,
    ExpressionTooDeepError,
    BackendError,
    ErrorCollector,
)

__all__ = [
    # Lexer
    "Lexer",
    "Token",
    "TokenKind",
    # AST
    "NumberLiteral",
    "VariableRef",
    "BinaryOp",
    "Call",
    "VarBinding",
    "VarBlock",
    "Prototype",
    "FunctionDef",
    "Expr",
    "ASTPrinter",
    # Parser
    "Parser",
    "PrecedenceTable",
    "EndOfInput",
    "parse_expression",
    # Lowering
    "Backend",
    "FunctionHandle",
    "VerificationResult",
    "Lowering",
    # Driver
    "KscopeCompiler",
    "CompilerOptions",
    "CompilationResult",
    "TopLevelKind",
    "TopLevelResult",
    "compile_source",
    # Errors
    "LanguageError",
    "ParseError",
    "MissingTokenError",
    "UnexpectedTokenError",
    "DuplicateParameterError",
    "NestingTooDeepError",
    "LoweringError",
    "UnknownVariableError",
    "UnknownFunctionError",
    "ArgumentCountError",
    "InvalidOperatorError",
    "FunctionRedeclarationError",
    "FunctionRedefinitionError",
    "VerificationError",
    "ExpressionTooDeepError",
    "BackendError",
    "ErrorCollector",
]
