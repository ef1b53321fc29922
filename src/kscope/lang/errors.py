"""
Language Front-End Error Hierarchy
==================================

This module defines the exceptions raised by the lexer, parser and
lowering stages. All of them inherit from LanguageError, which itself
inherits from the base KscopeError for consistent error handling.

Exception Hierarchy
-------------------
LanguageError (base for all front-end errors)
├── ParseError - malformed source
│   ├── MissingTokenError - a required token is absent
│   ├── UnexpectedTokenError - a token that cannot start the construct
│   ├── DuplicateParameterError - a prototype names a parameter twice
│   └── NestingTooDeepError - expression nests past the recursion limit
├── LoweringError - well-formed source that cannot be lowered
│   ├── UnknownVariableError - reference to an unbound name
│   ├── UnknownFunctionError - call to an undeclared function
│   ├── ArgumentCountError - call arity differs from the declaration
│   ├── InvalidOperatorError - binary operator without a lowering
│   ├── FunctionRedeclarationError - same name, different parameter count
│   ├── FunctionRedefinitionError - a second body for the same name
│   ├── VerificationError - backend verifier rejected a function
│   └── ExpressionTooDeepError - expression tree too deep to lower
BackendError - backend used outside its contract

The lexer is total and never raises.

Error Message Format
--------------------
    example.ks:3:9: error: unknown variable name 'y'
        def f(x) y
                 ^
    hint: did you mean 'x'?
"""

from typing import Optional, List

from kscope.errors import KscopeError, SourceLocation


# =============================================================================
# Base Language Exception
# =============================================================================

class LanguageError(KscopeError):
    """
    Base exception for all front-end errors.

    Attributes:
        message: The error description
        location: Where in the source the error occurred
        hint: A suggestion for fixing the error
        source_line: The actual source text at the error location
    """

    def __init__(
        self,
        message: str,
        location: Optional[SourceLocation] = None,
        hint: Optional[str] = None,
        source_line: Optional[str] = None,
    ):
        self.message = message
        self.location = location
        self.hint = hint
        self.source_line = source_line
        super().__init__(self._format_message())

    def _format_message(self) -> str:
        """Format the error message with location, source context, and hint."""
        parts = []

        if self.location:
            parts.append(f"{self.location}: error: {self.message}")
        else:
            parts.append(f"error: {self.message}")

        # Source context with caret pointer
        if self.source_line is not None and self.location is not None:
            parts.append(f"    {self.source_line}")
            if self.location.column > 0:
                padding = " " * (4 + self.location.column - 1)
                parts.append(f"{padding}^")

        if self.hint:
            parts.append(f"hint: {self.hint}")

        return "\n".join(parts)


# =============================================================================
# Parse Errors
# =============================================================================

class ParseError(LanguageError):
    """
    Malformed source.

    Raised by the parser when the token stream does not match the
    grammar. The parser never consumes the offending token, so the
    driver can skip it and retry at top level.
    """
    pass


class MissingTokenError(ParseError):
    """
    A required token is missing, e.g. the ')' closing a parenthesised
    expression or the 'in' of a var block.
    """

    def __init__(
        self,
        expected: str,
        location: Optional[SourceLocation] = None,
        source_line: Optional[str] = None,
        message: Optional[str] = None,
    ):
        self.expected = expected
        super().__init__(
            message or f"expected {expected}",
            location=location,
            source_line=source_line,
        )


class UnexpectedTokenError(ParseError):
    """A token that cannot start or continue the construct being parsed."""

    def __init__(
        self,
        found: str,
        message: str,
        expected: Optional[str] = None,
        location: Optional[SourceLocation] = None,
        source_line: Optional[str] = None,
    ):
        self.found = found
        self.expected = expected

        hint = None
        if expected:
            hint = f"expected {expected}, found {found}"

        super().__init__(
            message,
            location=location,
            hint=hint,
            source_line=source_line,
        )


class DuplicateParameterError(ParseError):
    """A prototype declares the same parameter name twice."""

    def __init__(
        self,
        name: str,
        function_name: str,
        location: Optional[SourceLocation] = None,
        source_line: Optional[str] = None,
    ):
        self.name = name
        self.function_name = function_name
        super().__init__(
            f"duplicate parameter name '{name}' in prototype of '{function_name}'",
            location=location,
            source_line=source_line,
        )


class NestingTooDeepError(ParseError):
    """An expression nests deeper than the parser can recurse."""

    def __init__(
        self,
        location: Optional[SourceLocation] = None,
        source_line: Optional[str] = None,
    ):
        super().__init__(
            "expression nested too deeply",
            location=location,
            source_line=source_line,
        )


# =============================================================================
# Lowering Errors
# =============================================================================

class LoweringError(LanguageError):
    """
    Well-formed source that cannot be lowered.

    A lowering error abandons the current top-level construct only; the
    environment and backend are left as they were before it started.
    """
    pass


class UnknownVariableError(LoweringError):
    """
    Reference to a name with no visible binding.

    Similar visible names, when any, are offered as a hint.
    """

    def __init__(
        self,
        name: str,
        location: Optional[SourceLocation] = None,
        similar_names: Optional[List[str]] = None,
    ):
        self.name = name
        self.similar_names = similar_names or []

        hint = None
        if self.similar_names:
            suggestions = ", ".join(f"'{s}'" for s in self.similar_names[:3])
            hint = f"did you mean {suggestions}?"

        super().__init__(
            f"unknown variable name '{name}'",
            location=location,
            hint=hint,
        )


class UnknownFunctionError(LoweringError):
    """Call to a function that the backend has never seen declared."""

    def __init__(self, name: str, location: Optional[SourceLocation] = None):
        self.name = name
        super().__init__(
            f"unknown function referenced: '{name}'",
            location=location,
            hint=f"declare it first with 'extern {name}(...)' or 'def {name}(...)'",
        )


class ArgumentCountError(LoweringError):
    """Call whose argument count differs from the declared parameter count."""

    def __init__(
        self,
        function_name: str,
        expected: int,
        actual: int,
        location: Optional[SourceLocation] = None,
    ):
        self.function_name = function_name
        self.expected = expected
        self.actual = actual

        word = "argument" if expected == 1 else "arguments"
        super().__init__(
            f"incorrect number of arguments passed: '{function_name}' expects "
            f"{expected} {word}, got {actual}",
            location=location,
        )


class InvalidOperatorError(LoweringError):
    """
    Binary operator that parsed (it is in the precedence table) but has no
    backend primitive to lower to.
    """

    def __init__(self, op: str, location: Optional[SourceLocation] = None):
        self.op = op
        super().__init__(
            f"invalid binary operator '{op}'",
            location=location,
        )


class FunctionRedeclarationError(LoweringError):
    """Two declarations of one name disagree on the parameter count."""

    def __init__(
        self,
        name: str,
        previous_count: int,
        new_count: int,
        location: Optional[SourceLocation] = None,
    ):
        self.name = name
        self.previous_count = previous_count
        self.new_count = new_count
        super().__init__(
            f"function '{name}' redeclared with {new_count} parameter(s), "
            f"previously declared with {previous_count}",
            location=location,
        )


class FunctionRedefinitionError(LoweringError):
    """A function that already has a body is defined again."""

    def __init__(self, name: str, location: Optional[SourceLocation] = None):
        self.name = name
        super().__init__(
            f"function '{name}' cannot be redefined",
            location=location,
        )


class VerificationError(LoweringError):
    """The backend's structural verifier rejected a finished function."""

    def __init__(
        self,
        name: str,
        problems: List[str],
        location: Optional[SourceLocation] = None,
    ):
        self.name = name
        self.problems = list(problems)
        super().__init__(
            f"function '{name}' failed verification: " + "; ".join(self.problems),
            location=location,
        )


class ExpressionTooDeepError(LoweringError):
    """
    An expression tree is deeper than lowering can recurse, e.g. a sum of
    several hundred terms.
    """

    def __init__(self, name: str, location: Optional[SourceLocation] = None):
        self.name = name
        super().__init__(
            f"expression nested too deeply in '{name}'",
            location=location,
        )


# =============================================================================
# Backend Errors
# =============================================================================

class BackendError(KscopeError):
    """
    A backend was driven outside its contract: emitting with no open
    function body, executing on a backend that cannot execute, or a
    runtime failure while interpreting lowered code.
    """
    pass


# =============================================================================
# Error Collection (for multi-error reporting)
# =============================================================================

class ErrorCollector:
    """
    Collects errors across top-level constructs for batch reporting.

    Example:
        collector = ErrorCollector(max_errors=100)

        while True:
            item = parser.next_top_level_item()
            ...
            if isinstance(item, ParseError):
                collector.add(item)
                if collector.should_stop():
                    break

        if collector.errors:
            print(collector.report())
    """

    def __init__(self, max_errors: int = 100):
        self.errors: List[KscopeError] = []
        self.max_errors = max_errors

    def add(self, error: KscopeError) -> None:
        """Add an error to the collection."""
        self.errors.append(error)

    def should_stop(self) -> bool:
        """Return True if max_errors has been reached."""
        return len(self.errors) >= self.max_errors

    def report(self) -> str:
        """Format all errors for display."""
        lines = []

        for error in self.errors:
            lines.append(str(error))
            lines.append("")

        error_word = "error" if len(self.errors) == 1 else "errors"
        lines.append(f"{len(self.errors)} {error_word}")

        return "\n".join(lines)

    def clear(self) -> None:
        self.errors.clear()
