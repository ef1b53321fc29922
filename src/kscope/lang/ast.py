"""
Kaleidoscope Abstract Syntax Tree (AST) Definitions
===================================================

This module defines the AST node types produced by the parser and
consumed by the lowering stage.

Node Hierarchy
--------------
Expr (closed union)
├── NumberLiteral - floating point constant
├── VariableRef - reference to a parameter or var binding
├── BinaryOp - single-character binary operator
├── Call - function call
└── VarBlock - 'var a = 1, b in body' scoped bindings
Declarations
├── Prototype - function name and parameter names
└── FunctionDef - prototype plus body expression

Design Notes
------------
- All nodes are frozen dataclasses, so the tree is immutable once built
- Child sequences are tuples
- Each node may carry the SourceLocation where it started; the location
  is excluded from equality so hand-built trees compare equal to parsed
  ones
- Expr is a closed Union; lowering dispatches over it with isinstance
"""

from dataclasses import dataclass, field
from typing import Optional, Union

from kscope.errors import SourceLocation


# =============================================================================
# Expression Nodes
# =============================================================================

@dataclass(frozen=True)
class NumberLiteral:
    """
    Numeric constant such as 1.0.

    Attributes:
        value: The constant as a 64-bit float
    """
    value: float
    location: Optional[SourceLocation] = field(default=None, compare=False, repr=False)


@dataclass(frozen=True)
class VariableRef:
    """
    Reference to a variable such as 'x'.

    Attributes:
        name: The variable name
    """
    name: str
    location: Optional[SourceLocation] = field(default=None, compare=False, repr=False)


@dataclass(frozen=True)
class BinaryOp:
    """
    Binary operator expression such as 'a + b'.

    Attributes:
        op: The operator character
        left: Left operand
        right: Right operand
    """
    op: str
    left: "Expr"
    right: "Expr"
    location: Optional[SourceLocation] = field(default=None, compare=False, repr=False)


@dataclass(frozen=True)
class Call:
    """
    Function call such as 'f(1, x)'.

    Attributes:
        callee: Name of the called function
        args: Argument expressions, in source order
    """
    callee: str
    args: tuple["Expr", ...] = ()
    location: Optional[SourceLocation] = field(default=None, compare=False, repr=False)


@dataclass(frozen=True)
class VarBinding:
    """
    One 'name = initializer' slot of a var block.

    Attributes:
        name: The bound name
        initializer: Initial value; None means 0.0
    """
    name: str
    initializer: Optional["Expr"] = None
    location: Optional[SourceLocation] = field(default=None, compare=False, repr=False)


@dataclass(frozen=True)
class VarBlock:
    """
    Scoped mutable bindings: 'var a = 1, b in body'.

    Bindings are installed left to right and are visible only in later
    initializers and in the body.

    Attributes:
        bindings: The bindings, in declaration order
        body: Expression evaluated with the bindings in scope
    """
    bindings: tuple[VarBinding, ...]
    body: "Expr"
    location: Optional[SourceLocation] = field(default=None, compare=False, repr=False)


Expr = Union[NumberLiteral, VariableRef, BinaryOp, Call, VarBlock]


# =============================================================================
# Declaration Nodes
# =============================================================================

@dataclass(frozen=True)
class Prototype:
    """
    Function signature: name and parameter names.

    Every value is a double, so the parameter count is the whole type.

    Attributes:
        name: Function name
        params: Parameter names; unique within the prototype
    """
    name: str
    params: tuple[str, ...] = ()
    location: Optional[SourceLocation] = field(default=None, compare=False, repr=False)

    @property
    def arity(self) -> int:
        return len(self.params)


@dataclass(frozen=True)
class FunctionDef:
    """
    Function definition: a prototype and a body expression.

    Attributes:
        proto: The function signature
        body: The expression whose value the function returns
    """
    proto: Prototype
    body: Expr
    location: Optional[SourceLocation] = field(default=None, compare=False, repr=False)


Node = Union[NumberLiteral, VariableRef, BinaryOp, Call, VarBlock, Prototype, FunctionDef]


# =============================================================================
# AST Pretty Printer
# =============================================================================

class ASTPrinter:
    """
    Pretty printer for AST debugging.

    Expressions print fully parenthesised on one line, definitions print
    as a header line with the body indented below it.

    Usage:
        printer = ASTPrinter()
        output = printer.print(node)
        print(output)
    """

    def __init__(self):
        self.output: list[str] = []
        self.indent_level = 0

    def print(self, node: Node) -> str:
        """Print the node and return as string."""
        self.output = []
        self.indent_level = 0

        if isinstance(node, FunctionDef):
            self._emit(f"Function: {self._proto_str(node.proto)}")
            self._indent()
            self._emit(self._expr_str(node.body))
            self._dedent()
        elif isinstance(node, Prototype):
            self._emit(f"Extern: {self._proto_str(node)}")
        else:
            self._emit(f"Expr: {self._expr_str(node)}")

        return "\n".join(self.output)

    def _emit(self, text: str) -> None:
        """Emit a line with current indentation."""
        indent = "  " * self.indent_level
        self.output.append(f"{indent}{text}")

    def _indent(self) -> None:
        self.indent_level += 1

    def _dedent(self) -> None:
        self.indent_level = max(0, self.indent_level - 1)

    def _proto_str(self, proto: Prototype) -> str:
        return f"{proto.name}({' '.join(proto.params)})"

    def _expr_str(self, expr: Expr) -> str:
        """Convert expression to string representation."""
        if isinstance(expr, NumberLiteral):
            return _format_number(expr.value)
        if isinstance(expr, VariableRef):
            return expr.name
        if isinstance(expr, BinaryOp):
            return f"({self._expr_str(expr.left)} {expr.op} {self._expr_str(expr.right)})"
        if isinstance(expr, Call):
            args = ", ".join(self._expr_str(arg) for arg in expr.args)
            return f"{expr.callee}({args})"
        if isinstance(expr, VarBlock):
            bindings = []
            for binding in expr.bindings:
                if binding.initializer is None:
                    bindings.append(binding.name)
                else:
                    bindings.append(f"{binding.name} = {self._expr_str(binding.initializer)}")
            return f"(var {', '.join(bindings)} in {self._expr_str(expr.body)})"
        return f"<{type(expr).__name__}>"


def _format_number(value: float) -> str:
    """Format a literal without a trailing '.0' for whole numbers."""
    if value.is_integer():
        return str(int(value))
    return repr(value)
