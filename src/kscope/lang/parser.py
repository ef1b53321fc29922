"""
Kaleidoscope Parser
===================

This module implements the parser for Kaleidoscope: recursive descent
for primaries, calls and var blocks, and precedence climbing for binary
operators driven by a mutable PrecedenceTable.

Grammar (EBNF)
--------------
toplevel     ::= definition | external | expression
definition   ::= 'def' prototype expression
external     ::= 'extern' prototype
prototype    ::= IDENTIFIER '(' IDENTIFIER* ')'
expression   ::= primary (BINOP primary)*
primary      ::= NUMBER
               | '(' expression ')'
               | IDENTIFIER
               | IDENTIFIER '(' (expression (',' expression)*)? ')'
               | 'var' binding (',' binding)* 'in' expression
binding      ::= IDENTIFIER ('=' expression)?

Operator Precedence
-------------------
Binary operators are single characters looked up in a PrecedenceTable.
Higher numbers bind tighter; equal precedence associates left:

| Operator | Precedence |
|----------|------------|
| <        | 10         |
| + -      | 20         |
| *        | 40         |

A character that is not in the table ends the expression instead of
raising, so "1 $ 2" parses as the expression 1 followed by an error on
'$' at the next top-level item.

Error Handling
--------------
The parse_* methods raise ParseError and never consume the offending
token. next_top_level_item() returns the ParseError as a value; the
driver then calls skip_token() before asking again, which guarantees
forward progress.

Example Usage
-------------
>>> from kscope.lang.parser import parse_expression
>>> parse_expression("1+2*3")
BinaryOp(op='+', left=NumberLiteral(value=1.0), right=BinaryOp(op='*', ...))
"""

import logging
from dataclasses import dataclass
from typing import Optional, Union

from kscope.errors import SourceLocation
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
)
from kscope.lang.errors import (
    ParseError,
    MissingTokenError,
    UnexpectedTokenError,
    DuplicateParameterError,
    NestingTooDeepError,
)

logger = logging.getLogger(__name__)


# =============================================================================
# Operator Precedence Table
# =============================================================================

class PrecedenceTable:
    """
    Mapping from single-character binary operators to precedence.

    The table is configuration, shared by reference with the parser, so
    operators registered after the parser is built take effect on the
    next expression parsed.

    Usage:
        table = PrecedenceTable()
        table.register("/", 40)
        parser = Parser(Lexer("a / b"), table)
    """

    DEFAULTS: dict[str, int] = {
        "<": 10,
        "+": 20,
        "-": 20,
        "*": 40,
    }

    # Characters the grammar already gives a meaning to
    RESERVED = "(),;#"

    def __init__(self, operators: Optional[dict[str, int]] = None):
        self._table: dict[str, int] = dict(self.DEFAULTS)
        for op, precedence in (operators or {}).items():
            self.register(op, precedence)

    def register(self, op: str, precedence: int) -> None:
        """
        Register (or re-register) a binary operator.

        Args:
            op: A single non-alphanumeric, non-space character
            precedence: Positive binding strength; higher binds tighter

        Raises:
            ValueError: If the operator or precedence is invalid
        """
        if not isinstance(op, str) or len(op) != 1:
            raise ValueError(f"operator must be a single character, got {op!r}")
        if op.isalnum() or op.isspace() or op in self.RESERVED:
            raise ValueError(f"'{op}' cannot be used as a binary operator")
        if isinstance(precedence, bool) or not isinstance(precedence, int) or precedence <= 0:
            raise ValueError(
                f"precedence for '{op}' must be a positive integer, got {precedence!r}"
            )
        self._table[op] = precedence

    def unregister(self, op: str) -> None:
        """Remove an operator; unknown operators are ignored."""
        self._table.pop(op, None)

    def get(self, op: str) -> int:
        """Return the precedence of op, or -1 if it is not an operator."""
        precedence = self._table.get(op, -1)
        return precedence if precedence > 0 else -1

    def __contains__(self, op: str) -> bool:
        return self.get(op) > 0

    def copy(self) -> "PrecedenceTable":
        table = PrecedenceTable()
        table._table = dict(self._table)
        return table


# =============================================================================
# Top-Level Items
# =============================================================================

@dataclass(frozen=True)
class EndOfInput:
    """Marker returned by next_top_level_item() once input is exhausted."""
    location: Optional[SourceLocation] = None


TopLevelItem = Union[FunctionDef, Prototype, NumberLiteral, VariableRef, BinaryOp,
                     Call, VarBlock, EndOfInput, ParseError]


# =============================================================================
# Parser Implementation
# =============================================================================

class Parser:
    """
    Parser for Kaleidoscope source, one top-level construct at a time.

    The parser holds exactly one token of lookahead (current) and pulls
    tokens from the lexer as it consumes them.

    Usage:
        parser = Parser(Lexer(source, "test.ks"))
        while True:
            item = parser.next_top_level_item()
            if isinstance(item, EndOfInput):
                break
            if isinstance(item, ParseError):
                parser.skip_token()

    Attributes:
        lexer: Token source
        precedence: Binary operator precedence table (shared, mutable)
        current: The lookahead token
    """

    def __init__(self, lexer: Lexer, precedence: Optional[PrecedenceTable] = None):
        self.lexer = lexer
        self.precedence = precedence if precedence is not None else PrecedenceTable()
        self.current: Token = lexer.next_token()

    # =========================================================================
    # Token Helper Methods
    # =========================================================================

    def _advance(self) -> Token:
        """Consume and return the current token."""
        token = self.current
        self.current = self.lexer.next_token()
        return token

    def _check(self, kind: TokenKind) -> bool:
        return self.current.kind == kind

    def _check_punct(self, char: str) -> bool:
        return self.current.is_punct(char)

    def _expect_punct(self, char: str, message: Optional[str] = None) -> Token:
        """
        Expect and consume a specific punctuation character.

        Raises:
            MissingTokenError: If the current token is something else
        """
        if self._check_punct(char):
            return self._advance()
        raise MissingTokenError(
            f"'{char}'",
            self.current.location,
            self._get_source_line(self.current.line),
            message=message,
        )

    def _get_source_line(self, line: int) -> Optional[str]:
        return self.lexer.source_line(line)

    def _current_precedence(self) -> int:
        """Precedence of the current token, or -1 if it is not a binary operator."""
        if self.current.kind != TokenKind.PUNCT:
            return -1
        return self.precedence.get(self.current.text)

    def skip_token(self) -> None:
        """
        Discard the current token.

        Used by the driver after a ParseError to make forward progress.
        At end of input this is a no-op.
        """
        if not self._check(TokenKind.EOF):
            logger.debug(f"Skipping token {self.current!r}")
            self._advance()

    # =========================================================================
    # Top-Level Parsing
    # =========================================================================

    def next_top_level_item(self) -> TopLevelItem:
        """
        Parse the next top-level construct.

        Returns:
            A FunctionDef for 'def', a Prototype for 'extern', an Expr for
            a bare expression, EndOfInput when the input is exhausted, or
            the ParseError describing why the construct was rejected.
        """
        if self._check(TokenKind.EOF):
            return EndOfInput(self.current.location)

        try:
            if self._check(TokenKind.DEF):
                item = self.parse_definition()
            elif self._check(TokenKind.EXTERN):
                item = self.parse_extern()
            else:
                item = self.parse_expression()
        except ParseError as e:
            logger.debug(f"Parse error: {e.message}")
            return e
        except RecursionError:
            logger.debug(f"Recursion limit reached near {self.current!r}")
            return NestingTooDeepError(
                self.current.location,
                self._get_source_line(self.current.line),
            )

        logger.debug(f"Parsed top-level {type(item).__name__}")
        return item

    def parse_definition(self) -> FunctionDef:
        """Parse 'def' prototype expression."""
        def_token = self._advance()  # eat 'def'
        proto = self.parse_prototype()
        body = self.parse_expression()
        return FunctionDef(proto, body, location=def_token.location)

    def parse_extern(self) -> Prototype:
        """Parse 'extern' prototype."""
        self._advance()  # eat 'extern'
        return self.parse_prototype()

    def parse_prototype(self) -> Prototype:
        """
        Parse a prototype: name '(' params ')'.

        Parameter names are separated by whitespace, not commas.

        Raises:
            ParseError: On a malformed prototype
            DuplicateParameterError: If a parameter name repeats
        """
        if not self._check(TokenKind.IDENTIFIER):
            raise UnexpectedTokenError(
                self.current.describe(),
                "expected function name in prototype",
                location=self.current.location,
                source_line=self._get_source_line(self.current.line),
            )
        name_token = self._advance()
        name = name_token.text

        self._expect_punct("(", "expected '(' in prototype")

        params: list[str] = []
        while self._check(TokenKind.IDENTIFIER):
            if self.current.text in params:
                raise DuplicateParameterError(
                    self.current.text,
                    name,
                    self.current.location,
                    self._get_source_line(self.current.line),
                )
            params.append(self._advance().text)

        self._expect_punct(")", "expected ')' in prototype")

        return Prototype(name, tuple(params), location=name_token.location)

    # =========================================================================
    # Expression Parsing
    # =========================================================================

    def parse_expression(self) -> Expr:
        """Parse primary followed by any chain of binary operators."""
        lhs = self.parse_primary()
        return self.parse_binary_rhs(0, lhs)

    def parse_binary_rhs(self, min_precedence: int, lhs: Expr) -> Expr:
        """
        Precedence climbing over binary operators.

        Folds operators whose precedence is at least min_precedence into
        lhs. A following operator that binds strictly tighter is absorbed
        into the right operand first, which keeps equal precedence left
        associative.
        """
        while True:
            token_precedence = self._current_precedence()
            if token_precedence < min_precedence:
                return lhs

            op_token = self._advance()
            rhs = self.parse_primary()

            next_precedence = self._current_precedence()
            if token_precedence < next_precedence:
                rhs = self.parse_binary_rhs(token_precedence + 1, rhs)

            lhs = BinaryOp(op_token.text, lhs, rhs, location=op_token.location)

    def parse_primary(self) -> Expr:
        """
        Parse a primary expression.

        Raises:
            UnexpectedTokenError: If the current token cannot start an expression
        """
        if self._check(TokenKind.NUMBER):
            token = self._advance()
            return NumberLiteral(token.value, location=token.location)

        if self._check_punct("("):
            return self._parse_paren_expression()

        if self._check(TokenKind.IDENTIFIER):
            return self.parse_identifier_or_call()

        if self._check(TokenKind.VAR):
            return self.parse_var_block()

        raise UnexpectedTokenError(
            self.current.describe(),
            "unknown token when expecting an expression",
            location=self.current.location,
            source_line=self._get_source_line(self.current.line),
        )

    def _parse_paren_expression(self) -> Expr:
        """Parse '(' expression ')'; the parentheses leave no node behind."""
        self._advance()  # eat '('
        expr = self.parse_expression()
        self._expect_punct(")")
        return expr

    def parse_identifier_or_call(self) -> Expr:
        """Parse a variable reference or a call 'name(args)'."""
        name_token = self._advance()

        if not self._check_punct("("):
            return VariableRef(name_token.text, location=name_token.location)

        self._advance()  # eat '('
        args: list[Expr] = []
        if not self._check_punct(")"):
            while True:
                args.append(self.parse_expression())

                if self._check_punct(")"):
                    break

                if not self._check_punct(","):
                    raise UnexpectedTokenError(
                        self.current.describe(),
                        "expected ')' or ',' in argument list",
                        expected="')' or ','",
                        location=self.current.location,
                        source_line=self._get_source_line(self.current.line),
                    )
                self._advance()  # eat ','

        self._advance()  # eat ')'
        return Call(name_token.text, tuple(args), location=name_token.location)

    def parse_var_block(self) -> VarBlock:
        """
        Parse 'var' name ('=' expr)? (',' name ('=' expr)?)* 'in' body.

        'in' is matched by identifier text.
        """
        var_token = self._advance()  # eat 'var'

        if not self._check(TokenKind.IDENTIFIER):
            raise UnexpectedTokenError(
                self.current.describe(),
                "expected identifier after var",
                location=self.current.location,
                source_line=self._get_source_line(self.current.line),
            )

        bindings: list[VarBinding] = []
        while True:
            name_token = self._advance()

            initializer: Optional[Expr] = None
            if self._check_punct("="):
                self._advance()  # eat '='
                initializer = self.parse_expression()

            bindings.append(
                VarBinding(name_token.text, initializer, location=name_token.location)
            )

            if not self._check_punct(","):
                break
            self._advance()  # eat ','

            if not self._check(TokenKind.IDENTIFIER):
                raise UnexpectedTokenError(
                    self.current.describe(),
                    "expected identifier list after var",
                    location=self.current.location,
                    source_line=self._get_source_line(self.current.line),
                )

        if not (self._check(TokenKind.IDENTIFIER) and self.current.text == "in"):
            raise MissingTokenError(
                "'in'",
                self.current.location,
                self._get_source_line(self.current.line),
                message="expected 'in' keyword after 'var'",
            )
        self._advance()  # eat 'in'

        body = self.parse_expression()
        return VarBlock(tuple(bindings), body, location=var_token.location)


# =============================================================================
# Convenience Functions
# =============================================================================

def parse_expression(
    source: str,
    precedence: Optional[PrecedenceTable] = None,
    filename: str = "<input>",
) -> Expr:
    """
    Parse a complete source string as a single expression.

    Args:
        source: The expression text
        precedence: Operator table; defaults to a fresh PrecedenceTable
        filename: Name used in diagnostics

    Returns:
        The expression AST

    Raises:
        ParseError: If the text is not exactly one expression
    """
    parser = Parser(Lexer(source, filename), precedence)
    expr = parser.parse_expression()

    if parser.current.is_punct(";"):
        parser.skip_token()
    if parser.current.kind != TokenKind.EOF:
        raise UnexpectedTokenError(
            parser.current.describe(),
            "unexpected token after expression",
            expected="end of input",
            location=parser.current.location,
            source_line=parser.lexer.source_line(parser.current.line),
        )
    return expr
