"""
kscope Error Hierarchy
======================

This module defines the root of the exception hierarchy for kscope.
All exceptions inherit from KscopeError, allowing callers to catch every
toolchain error with a single except clause if desired.

Exception Hierarchy
-------------------
KscopeError (base)
├── LanguageError (see kscope.lang.errors)
│   ├── ParseError - malformed source
│   └── LoweringError - well-formed source that cannot be lowered
└── BackendError - misuse of a code generation backend

Design Philosophy
-----------------
Each language error captures source location information (filename, line,
column) when it is known, so messages can point at the offending token:

    filename:line:column: error: description
        source_line_text
        ^
    hint: suggestion for fixing (when available)
"""

from dataclasses import dataclass


# =============================================================================
# Base Exception Class
# =============================================================================

class KscopeError(Exception):
    """
    Base exception for all kscope errors.

    Usage:
        try:
            compile_source("def f(x) x * 2")
        except KscopeError as e:
            print(f"Error: {e}")
    """
    pass


# =============================================================================
# Source Location Tracking
# =============================================================================

@dataclass(frozen=True)
class SourceLocation:
    """
    Represents a location in source code for error reporting.

    Tokens and AST nodes carry one of these so that diagnostics can name
    the place where a construct started. Frozen so a location can be
    shared freely between tokens, nodes and errors.

    Attributes:
        filename: Name of the source file (or "<input>" for string input)
        line: Line number (1-indexed)
        column: Column number (1-indexed)
    """
    filename: str
    line: int
    column: int

    def __str__(self) -> str:
        """Format as 'filename:line:column' for error messages."""
        return f"{self.filename}:{self.line}:{self.column}"
