"""
Kaleidoscope Compiler Driver
============================

This module provides the top-level driver. It repeatedly asks the
parser for the next top-level construct and hands it to lowering:

    Source → Lex → Parse (one construct) → Lower → Backend

Usage
-----
Command line:
    $ kscc program.ks --emit trace

Programmatic:
    >>> from kscope.lang.compiler import compile_source
    >>> result = compile_source("def twice(x) x*2 twice(21)")
    >>> result.items[-1].value
    42.0

Top-Level Constructs
--------------------
| Construct   | Handling                                             |
|-------------|------------------------------------------------------|
| def         | lowered and kept in the backend                      |
| extern      | declared in the backend                              |
| expression  | wrapped in a zero-parameter '__anon_expr' function,  |
|             | evaluated when the backend can execute, rendered and |
|             | then discarded so the name can be reused             |
| ';'         | skipped                                              |

Error Handling
--------------
Errors never stop the loop. A parse error is recorded and the offending
token skipped; a lowering error is recorded and the construct dropped.
Compilation stops early only once max_errors errors have been recorded.
"""

import logging
from dataclasses import dataclass, field
from enum import Enum, auto
from pathlib import Path
from typing import Callable, Optional, TextIO

from kscope.errors import KscopeError
from kscope.lang.ast import Prototype, FunctionDef, Node
from kscope.lang.backend import Backend
from kscope.lang.errors import ErrorCollector, ParseError
from kscope.lang.lexer import Lexer
from kscope.lang.lowering import Lowering
from kscope.lang.parser import Parser, PrecedenceTable, EndOfInput

logger = logging.getLogger(__name__)

# Name given to the function wrapping each top-level expression
ANONYMOUS_FUNCTION = "__anon_expr"

BACKENDS = ("trace", "llvm")


@dataclass
class CompilerOptions:
    """
    Compiler configuration options.

    Attributes:
        filename: Source name used in diagnostics
        binary_operators: Extra operators registered on top of the default
                          precedence table, e.g. {">": 10}
        backend: Backend name, "trace" or "llvm"
        module_name: Module name prefix for the LLVM backend
        evaluate: Evaluate top-level expressions when the backend can execute
        max_errors: Stop after this many errors
        externals: Runtime functions for the trace backend (None = the
                   defaults: sin, cos, sqrt, putchard)
    """
    filename: str = "<input>"
    binary_operators: Optional[dict[str, int]] = None
    backend: str = "trace"
    module_name: str = "kscope"
    evaluate: bool = True
    max_errors: int = 100
    externals: Optional[dict[str, Callable[..., float]]] = None

    def __post_init__(self):
        if self.binary_operators is None:
            self.binary_operators = {}
        if self.backend not in BACKENDS:
            raise ValueError(
                f"unknown backend '{self.backend}' (expected one of: {', '.join(BACKENDS)})"
            )
        if self.max_errors < 1:
            raise ValueError("max_errors must be at least 1")


class TopLevelKind(Enum):
    """Kinds of top-level construct."""
    DEFINITION = auto()
    EXTERN = auto()
    EXPRESSION = auto()


@dataclass
class TopLevelResult:
    """
    Outcome of one successfully lowered top-level construct.

    Attributes:
        kind: What the construct was
        name: Function name (ANONYMOUS_FUNCTION for expressions)
        node: The parsed AST
        text: Backend rendering of the function
        value: Result of evaluating an expression, if it was evaluated
    """
    kind: TopLevelKind
    name: str
    node: Node
    text: str = ""
    value: Optional[float] = None


@dataclass
class CompilationResult:
    """
    Result of a compilation.

    Attributes:
        filename: Source filename
        items: One entry per successfully handled construct, in source order
        errors: Every error recorded, in source order
        backend: The backend holding the compiled functions
        report: Formatted error listing with a count, "" when there are none
    """
    filename: str = ""
    items: list[TopLevelResult] = field(default_factory=list)
    errors: list[KscopeError] = field(default_factory=list)
    backend: Optional[Backend] = None
    report: str = ""

    @property
    def success(self) -> bool:
        return not self.errors


def create_backend(options: CompilerOptions) -> Backend:
    """Instantiate the backend named by options.backend."""
    if options.backend == "llvm":
        from kscope.backends.llvm import LLVMBackend
        return LLVMBackend(options.module_name)

    from kscope.backends.trace import TraceBackend
    return TraceBackend(externals=options.externals)


class KscopeCompiler:
    """
    Kaleidoscope compiler session.

    The backend, function table and precedence table persist across
    compile_source() calls, so a session behaves like an interactive
    prompt fed one chunk at a time.

    Example:
        compiler = KscopeCompiler()
        compiler.compile_source("def f(x) x*x")
        result = compiler.compile_source("f(3)")
        print(result.items[0].value)

    Attributes:
        options: Compiler configuration options
        precedence: Operator table shared with every parser
        backend: Code generation backend
        lowering: Lowering stage bound to backend
    """

    def __init__(self, options: Optional[CompilerOptions] = None):
        """
        Initialize the compiler.

        Args:
            options: Compiler configuration (uses defaults if None)

        Raises:
            ValueError: If a configured binary operator is invalid
        """
        self.options = options or CompilerOptions()
        self.precedence = PrecedenceTable(self.options.binary_operators)
        self.backend = create_backend(self.options)
        self.lowering = Lowering(self.backend)
        self._errors = ErrorCollector(self.options.max_errors)

    def compile_source(
        self,
        source: str | TextIO,
        filename: Optional[str] = None,
    ) -> CompilationResult:
        """
        Compile every top-level construct in source.

        Args:
            source: Source text or a text stream
            filename: Source filename for error messages
                      (defaults to options.filename)

        Returns:
            CompilationResult with per-construct results and all errors
        """
        filename = filename or self.options.filename
        self._errors.clear()
        result = CompilationResult(filename=filename, backend=self.backend)

        parser = Parser(Lexer(source, filename), self.precedence)

        while not self._errors.should_stop():
            if parser.current.is_punct(";"):
                parser.skip_token()
                continue

            item = parser.next_top_level_item()

            if isinstance(item, EndOfInput):
                break

            if isinstance(item, ParseError):
                self._errors.add(item)
                parser.skip_token()
                continue

            try:
                if isinstance(item, FunctionDef):
                    result.items.append(self._handle_definition(item))
                elif isinstance(item, Prototype):
                    result.items.append(self._handle_extern(item))
                else:
                    result.items.append(self._handle_expression(item))
            except KscopeError as e:
                logger.debug(f"Dropping construct after error: {e}")
                self._errors.add(e)

        result.errors = list(self._errors.errors)
        if result.errors:
            result.report = self._errors.report()
        logger.debug(
            f"Compiled {filename}: {len(result.items)} construct(s), "
            f"{len(result.errors)} error(s)"
        )
        return result

    def compile_file(self, filepath: str | Path) -> CompilationResult:
        """
        Compile a source file.

        Raises:
            FileNotFoundError: If source file not found
        """
        path = Path(filepath)
        if not path.exists():
            raise FileNotFoundError(f"Source file not found: {filepath}")

        source = path.read_text(encoding="utf-8")
        return self.compile_source(source, str(filepath))

    # =========================================================================
    # Construct Handlers
    # =========================================================================

    def _handle_definition(self, func: FunctionDef) -> TopLevelResult:
        fn = self.lowering.lower_function(func)
        logger.debug(f"Defined {fn.name}/{fn.arity}")
        return TopLevelResult(
            kind=TopLevelKind.DEFINITION,
            name=fn.name,
            node=func,
            text=self.backend.render_function(fn),
        )

    def _handle_extern(self, proto: Prototype) -> TopLevelResult:
        fn = self.lowering.lower_extern(proto)
        return TopLevelResult(
            kind=TopLevelKind.EXTERN,
            name=fn.name,
            node=proto,
            text=self.backend.render_function(fn),
        )

    def _handle_expression(self, expr) -> TopLevelResult:
        wrapper = FunctionDef(
            Prototype(ANONYMOUS_FUNCTION, (), location=expr.location),
            expr,
            location=expr.location,
        )
        fn = self.lowering.lower_function(wrapper)
        try:
            value = None
            if self.options.evaluate and self.backend.can_execute:
                value = self.backend.run(fn.name)
                logger.debug(f"Evaluated to {value}")
            return TopLevelResult(
                kind=TopLevelKind.EXPRESSION,
                name=fn.name,
                node=expr,
                text=self.backend.render_function(fn),
                value=value,
            )
        finally:
            self.backend.discard_function(fn)


# =============================================================================
# Convenience Functions
# =============================================================================

def compile_source(
    source: str | TextIO,
    options: Optional[CompilerOptions] = None,
) -> CompilationResult:
    """
    Compile source with a fresh compiler session.

    Args:
        source: Kaleidoscope source text or stream
        options: Compiler configuration (uses defaults if None)

    Returns:
        CompilationResult; check result.errors for diagnostics
    """
    return KscopeCompiler(options).compile_source(source)
