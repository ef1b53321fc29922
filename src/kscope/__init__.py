"""
kscope - A Kaleidoscope Language Front End
==========================================

This package implements a small expression language in the style of the
LLVM Kaleidoscope tutorial: every value is a double, functions are
declared with 'def' or 'extern', and 'var' introduces scoped mutable
locals.

Main Components
---------------
- **lang**: lexer, parser, AST, lowering and the top-level driver
- **backends**: code generation targets
    - trace: records, verifies and interprets an SSA-like trace
    - llvm: emits verified LLVM IR through llvmlite
- **cli**: the kscc command-line tool

Quick Start
-----------
    >>> from kscope import compile_source
    >>> result = compile_source("def square(x) x*x  square(1.5)")
    >>> result.items[-1].value
    2.25

Or use the command-line tool:
    $ kscc program.ks --emit llvm
"""

__version__ = "0.1.0"

# =============================================================================
# Public API Exports
# =============================================================================

from kscope.errors import KscopeError, SourceLocation
from kscope.lang.compiler import (
    KscopeCompiler,
    CompilerOptions,
    CompilationResult,
    compile_source,
)

__all__ = [
    "__version__",
    "KscopeError",
    "SourceLocation",
    "KscopeCompiler",
    "CompilerOptions",
    "CompilationResult",
    "compile_source",
]
