"""
Kaleidoscope Lexer (Tokenizer)
==============================

This module converts a character stream into tokens, one token at a
time. The parser holds exactly one token of lookahead and pulls the next
token on demand with Lexer.next_token().

Token Categories
----------------
| Kind       | Lexeme                                   | value      |
|------------|------------------------------------------|------------|
| DEF        | def                                      | None       |
| EXTERN     | extern                                   | None       |
| VAR        | var                                      | None       |
| IDENTIFIER | letter followed by letters/digits        | None       |
| NUMBER     | run of digits and '.'                    | float      |
| PUNCT      | any other single character               | None       |
| EOF        | end of input (returned repeatedly)       | None       |

Note that 'in' is not a keyword: the var-block parser matches it by
identifier text.

Comments
--------
'#' starts a comment that runs to the end of the line.

Numbers
-------
The digit/dot run is scanned greedily and then converted using the
longest valid decimal prefix, as C's strtod does:

    "1.5"   -> 1.5
    "1.2.3" -> 1.2
    "."     -> 0.0

There is no sign handling; '-' is always a PUNCT token.

Example Usage
-------------
>>> from kscope.lang.lexer import Lexer
>>> lexer = Lexer("def f(x) x*2", "test.ks")
>>> for token in lexer.tokenize():
...     print(token)
Token(DEF, 'def', 1:1)
Token(IDENTIFIER, 'f', 1:5)
Token(PUNCT, '(', 1:6)
Token(IDENTIFIER, 'x', 1:7)
Token(PUNCT, ')', 1:8)
Token(IDENTIFIER, 'x', 1:10)
Token(PUNCT, '*', 1:11)
Token(NUMBER, 2.0, 1:12)
Token(EOF, 1:13)
"""

import io
import re
import string
from dataclasses import dataclass
from enum import Enum, auto
from typing import Iterator, Optional, TextIO

from kscope.errors import SourceLocation


# =============================================================================
# Token Kind Enumeration
# =============================================================================

class TokenKind(Enum):
    """
    Token kinds for the Kaleidoscope language.

    Operators, parentheses, commas and semicolons all share the PUNCT
    kind; the parser looks at Token.text to tell them apart.
    """

    EOF = auto()            # End of input
    DEF = auto()            # def
    EXTERN = auto()         # extern
    VAR = auto()            # var
    IDENTIFIER = auto()     # Variable/function names
    NUMBER = auto()         # Floating point literals
    PUNCT = auto()          # Any other single character


KEYWORDS: dict[str, TokenKind] = {
    "def": TokenKind.DEF,
    "extern": TokenKind.EXTERN,
    "var": TokenKind.VAR,
}


# =============================================================================
# Token Data Class
# =============================================================================

@dataclass(frozen=True)
class Token:
    """
    A single token from Kaleidoscope source.

    Attributes:
        kind: The TokenKind classification
        text: The characters that formed the token ("" for EOF)
        value: The numeric value for NUMBER tokens, None otherwise
        line: Line number in source (1-indexed)
        column: Column number in source (1-indexed)
        filename: Name of the source file
    """
    kind: TokenKind
    text: str
    value: Optional[float]
    line: int
    column: int
    filename: str

    def __repr__(self) -> str:
        """Format token for debugging output."""
        if self.kind == TokenKind.NUMBER:
            return f"Token({self.kind.name}, {self.value}, {self.line}:{self.column})"
        if self.kind == TokenKind.EOF:
            return f"Token({self.kind.name}, {self.line}:{self.column})"
        return f"Token({self.kind.name}, {self.text!r}, {self.line}:{self.column})"

    @property
    def location(self) -> SourceLocation:
        """Return a SourceLocation for error reporting."""
        return SourceLocation(self.filename, self.line, self.column)

    def is_punct(self, char: str) -> bool:
        """Return True if this is the PUNCT token for char."""
        return self.kind == TokenKind.PUNCT and self.text == char

    def describe(self) -> str:
        """Human-readable description used in diagnostics."""
        if self.kind == TokenKind.EOF:
            return "end of input"
        if self.kind == TokenKind.IDENTIFIER:
            return f"identifier '{self.text}'"
        if self.kind == TokenKind.NUMBER:
            return f"number {self.text}"
        return f"'{self.text}'"


# =============================================================================
# Lexer Implementation
# =============================================================================

# Longest decimal prefix accepted by strtod for a digit/dot run
_DECIMAL_PREFIX = re.compile(r"\d*\.?\d*")


def parse_number(text: str) -> float:
    """
    Convert a digit/dot run to a float using its longest valid prefix.

    Args:
        text: A run of digits and '.' characters

    Returns:
        The parsed value, or 0.0 when no digits precede the first
        invalid character.
    """
    prefix = _DECIMAL_PREFIX.match(text).group(0)
    if prefix in ("", "."):
        return 0.0
    return float(prefix)


class Lexer:
    """
    Tokenizes Kaleidoscope source, one token per next_token() call.

    The lexer keeps a single character of pushback: the character that
    was read past the end of the previous token and has not been
    consumed yet. All state is held on the instance, so independent
    lexers can run side by side.

    Usage:
        lexer = Lexer(source_text, filename)
        token = lexer.next_token()

    Attributes:
        filename: Name of the source (for error reporting)
    """

    # Characters that can start an identifier
    IDENT_START = string.ascii_letters

    # Characters that can continue an identifier
    IDENT_CHARS = string.ascii_letters + string.digits

    # Characters that can appear in a numeric literal
    NUMBER_CHARS = string.digits + "."

    # C isspace() set
    WHITESPACE = " \t\n\r\v\f"

    def __init__(self, source: str | TextIO, filename: str = "<input>"):
        """
        Initialize the lexer.

        Args:
            source: Source text, or a text stream read one character at a time
            filename: Name of the source file (for error messages)
        """
        if isinstance(source, str):
            self._stream: TextIO = io.StringIO(source)
        else:
            self._stream = source
        self.filename = filename

        # Pushback character; a space forces a read on the first call
        self._last_char = " "
        self._char_line = 1
        self._char_column = 0

        # Position of the most recently read character
        self._line = 1
        self._column = 0
        self._exhausted = False

        # Text of each line seen so far, for diagnostics
        self._lines: list[str] = [""]

    # =========================================================================
    # Public Interface
    # =========================================================================

    def next_token(self) -> Token:
        """
        Return the next token from the input.

        Never raises. Once the input is exhausted, every call returns an
        EOF token.
        """
        while True:
            # Skip whitespace
            while self._last_char != "" and self._last_char in self.WHITESPACE:
                self._last_char = self._read_char()

            line, column = self._char_line, self._char_column

            if self._last_char == "":
                return self._make_token(TokenKind.EOF, "", line, column)

            # Identifiers and keywords: [a-zA-Z][a-zA-Z0-9]*
            if self._last_char in self.IDENT_START:
                text = self._last_char
                self._last_char = self._read_char()
                while self._last_char != "" and self._last_char in self.IDENT_CHARS:
                    text += self._last_char
                    self._last_char = self._read_char()
                kind = KEYWORDS.get(text, TokenKind.IDENTIFIER)
                return self._make_token(kind, text, line, column)

            # Numbers: [0-9.]+
            if self._last_char in self.NUMBER_CHARS:
                text = ""
                while self._last_char != "" and self._last_char in self.NUMBER_CHARS:
                    text += self._last_char
                    self._last_char = self._read_char()
                return self._make_token(
                    TokenKind.NUMBER, text, line, column, value=parse_number(text)
                )

            # Comment until end of line, then lex the following token
            if self._last_char == "#":
                while self._last_char not in ("", "\n", "\r"):
                    self._last_char = self._read_char()
                continue

            char = self._last_char
            self._last_char = self._read_char()
            return self._make_token(TokenKind.PUNCT, char, line, column)

    def tokenize(self) -> Iterator[Token]:
        """
        Generate tokens up to and including the first EOF token.

        Yields:
            Token objects representing each lexical element
        """
        while True:
            token = self.next_token()
            yield token
            if token.kind == TokenKind.EOF:
                return

    def source_line(self, line: int) -> Optional[str]:
        """
        Return the text of a source line seen so far.

        Lines are recorded as characters are read, so the line holding
        the current lookahead token may be incomplete.
        """
        if 1 <= line <= len(self._lines):
            return self._lines[line - 1]
        return None

    # =========================================================================
    # Character Access Methods
    # =========================================================================

    def _read_char(self) -> str:
        """
        Consume and return the next character, or "" at end of input.

        Updates the position of the returned character for token
        locations.
        """
        if self._exhausted:
            self._char_line, self._char_column = self._line, self._column + 1
            return ""

        char = self._stream.read(1)
        if char == "":
            self._exhausted = True
            self._char_line, self._char_column = self._line, self._column + 1
            return ""

        if char == "\n":
            self._char_line, self._char_column = self._line, self._column + 1
            self._line += 1
            self._column = 0
            self._lines.append("")
        else:
            self._column += 1
            self._char_line, self._char_column = self._line, self._column
            self._lines[-1] += char

        return char

    def _make_token(
        self,
        kind: TokenKind,
        text: str,
        line: int,
        column: int,
        value: Optional[float] = None,
    ) -> Token:
        """Create a token at the given position."""
        return Token(
            kind=kind,
            text=text,
            value=value,
            line=line,
            column=max(column, 1),
            filename=self.filename,
        )
