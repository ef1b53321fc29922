"""
Scope-Aware Lowering
====================

This module walks Kaleidoscope ASTs and drives a Backend to produce
code. It owns the variable environment: a mapping from each currently
visible name to the backend storage slot holding its value.

Lowering Rules
--------------
| Node          | Backend operations                                  |
|---------------|-----------------------------------------------------|
| NumberLiteral | emit_constant                                       |
| VariableRef   | emit_load of the visible slot                       |
| BinaryOp      | left, right, then emit_add/sub/mul or              |
|               | emit_compare_less_than + emit_convert_bool_to_number |
| Call          | arguments left to right, then emit_call             |
| VarBlock      | per binding: initializer (or 0.0), allocate_local,  |
|               | emit_store; then the body                           |
| FunctionDef   | begin_function_body, one slot per parameter, body,  |
|               | finalize_function                                   |

Scoping
-------
A var binding shadows any outer binding of the same name. The previous
binding is saved before it is overwritten and every saved binding is
restored in reverse order when the block is left, whether its body
lowered cleanly or raised. Bindings install one at a time, so a later
initializer sees earlier siblings, while a binding's own initializer
still sees the enclosing scope:

    var a = 1, b = a + 1 in b    # b's initializer reads the new a
    var x = x in x               # the initializer reads the outer x

The environment is cleared at the start and end of each function, so no
binding outlives the top-level construct that created it.

Failure
-------
Errors are raised as LoweringError subclasses. A failed definition is
discarded from the backend before any error propagates, including one
from outside the LoweringError family. An expression tree too deep to
recurse over is reported as ExpressionTooDeepError.
"""

import logging
from types import MappingProxyType
from typing import Mapping

from kscope.lang.ast import (
    NumberLiteral,
    VariableRef,
    BinaryOp,
    Call,
    VarBlock,
    Prototype,
    FunctionDef,
    Expr,
)
from kscope.lang.backend import Backend, FunctionHandle, ValueHandle, StorageHandle
from kscope.lang.errors import (
    LoweringError,
    UnknownVariableError,
    UnknownFunctionError,
    ArgumentCountError,
    InvalidOperatorError,
    FunctionRedeclarationError,
    FunctionRedefinitionError,
    VerificationError,
    ExpressionTooDeepError,
)

logger = logging.getLogger(__name__)

# Marks a name that had no binding before a var block shadowed it
_UNBOUND = object()


class Lowering:
    """
    Lowers expressions, definitions and externs onto a Backend.

    Usage:
        lowering = Lowering(TraceBackend())
        lowering.lower_extern(Prototype("sin", ("x",)))
        handle = lowering.lower_function(definition)

    Attributes:
        backend: The backend receiving emitted operations
    """

    def __init__(self, backend: Backend):
        self.backend = backend
        self._named_values: dict[str, StorageHandle] = {}

    @property
    def named_values(self) -> Mapping[str, StorageHandle]:
        """Read-only view of the visible bindings."""
        return MappingProxyType(self._named_values)

    # =========================================================================
    # Declarations
    # =========================================================================

    def lower_extern(self, proto: Prototype) -> FunctionHandle:
        """
        Declare an external function.

        Re-declaring a known name with the same parameter count is a no-op.

        Raises:
            FunctionRedeclarationError: If the parameter count differs
        """
        self._check_redeclaration(proto)
        logger.debug(f"Declaring extern {proto.name}/{proto.arity}")
        return self.backend.declare_function(proto)

    def lower_function(self, func: FunctionDef) -> FunctionHandle:
        """
        Lower a complete function definition.

        Raises:
            FunctionRedeclarationError: If an earlier declaration has a
                different parameter count
            FunctionRedefinitionError: If the function already has a body
            VerificationError: If the backend verifier rejects the result
            ExpressionTooDeepError: If the body is too deeply nested to lower
            LoweringError: For any error in the body
        """
        proto = func.proto
        existing = self._check_redeclaration(proto)
        if existing is not None and existing.defined:
            raise FunctionRedefinitionError(proto.name, proto.location)

        logger.debug(f"Lowering function {proto.name}({', '.join(proto.params)})")
        fn = self.backend.declare_function(proto)

        self._named_values.clear()
        try:
            arguments = self.backend.begin_function_body(fn)

            # Parameter names come from this definition, values by position
            for param, (_, value) in zip(proto.params, arguments):
                slot = self.backend.allocate_local(param)
                self.backend.emit_store(value, slot)
                self._named_values[param] = slot

            body = self.lower_expression(func.body)

            result = self.backend.finalize_function(fn, body)
            if not result.ok:
                raise VerificationError(proto.name, result.problems, proto.location)
        except RecursionError:
            logger.debug(f"Recursion limit reached lowering {proto.name}")
            self.backend.discard_function(fn)
            raise ExpressionTooDeepError(proto.name, proto.location) from None
        except Exception:
            logger.debug(f"Discarding partially lowered function {proto.name}")
            self.backend.discard_function(fn)
            raise
        finally:
            self._named_values.clear()

        return fn

    def _check_redeclaration(self, proto: Prototype) -> FunctionHandle | None:
        existing = self.backend.lookup_function(proto.name)
        if existing is not None and existing.arity != proto.arity:
            raise FunctionRedeclarationError(
                proto.name,
                existing.arity,
                proto.arity,
                proto.location,
            )
        return existing

    # =========================================================================
    # Expressions
    # =========================================================================

    def lower_expression(self, expr: Expr) -> ValueHandle:
        """
        Lower one expression inside the currently open function body.

        Returns:
            The backend value holding the expression's result
        """
        if isinstance(expr, NumberLiteral):
            return self.backend.emit_constant(expr.value)

        if isinstance(expr, VariableRef):
            return self._lower_variable(expr)

        if isinstance(expr, BinaryOp):
            return self._lower_binary(expr)

        if isinstance(expr, Call):
            return self._lower_call(expr)

        if isinstance(expr, VarBlock):
            return self._lower_var_block(expr)

        raise LoweringError(f"cannot lower {type(expr).__name__}")

    def _lower_variable(self, expr: VariableRef) -> ValueHandle:
        slot = self._named_values.get(expr.name)
        if slot is None:
            raise UnknownVariableError(
                expr.name,
                expr.location,
                self._find_similar_names(expr.name),
            )
        return self.backend.emit_load(slot)

    def _lower_binary(self, expr: BinaryOp) -> ValueHandle:
        left = self.lower_expression(expr.left)
        right = self.lower_expression(expr.right)

        if expr.op == "+":
            return self.backend.emit_add(left, right)
        if expr.op == "-":
            return self.backend.emit_sub(left, right)
        if expr.op == "*":
            return self.backend.emit_mul(left, right)
        if expr.op == "<":
            flag = self.backend.emit_compare_less_than(left, right)
            return self.backend.emit_convert_bool_to_number(flag)

        raise InvalidOperatorError(expr.op, expr.location)

    def _lower_call(self, expr: Call) -> ValueHandle:
        callee = self.backend.lookup_function(expr.callee)
        if callee is None:
            raise UnknownFunctionError(expr.callee, expr.location)

        if callee.arity != len(expr.args):
            raise ArgumentCountError(
                expr.callee,
                callee.arity,
                len(expr.args),
                expr.location,
            )

        args = [self.lower_expression(arg) for arg in expr.args]
        return self.backend.emit_call(callee, args)

    def _lower_var_block(self, expr: VarBlock) -> ValueHandle:
        saved: list[tuple[str, object]] = []
        try:
            for binding in expr.bindings:
                if binding.initializer is not None:
                    value = self.lower_expression(binding.initializer)
                else:
                    value = self.backend.emit_constant(0.0)

                slot = self.backend.allocate_local(binding.name)
                self.backend.emit_store(value, slot)

                saved.append((binding.name, self._named_values.get(binding.name, _UNBOUND)))
                self._named_values[binding.name] = slot

            return self.lower_expression(expr.body)
        finally:
            for name, previous in reversed(saved):
                if previous is _UNBOUND:
                    del self._named_values[name]
                else:
                    self._named_values[name] = previous

    # =========================================================================
    # Diagnostics Helpers
    # =========================================================================

    def _find_similar_names(self, name: str) -> list[str]:
        """
        Find visible variables with similar names for error hints.

        Uses simple edit distance heuristic.
        """
        name_lower = name.lower()
        similar = []

        for candidate in self._named_values:
            candidate_lower = candidate.lower()
            if (
                candidate_lower == name_lower or
                abs(len(candidate) - len(name)) <= 1 and
                _edit_distance(name_lower, candidate_lower) <= 2
            ):
                similar.append(candidate)

        return similar[:3]


def _edit_distance(s1: str, s2: str) -> int:
    """Levenshtein distance between two strings."""
    if len(s1) < len(s2):
        s1, s2 = s2, s1

    distances = list(range(len(s2) + 1))
    for i, c1 in enumerate(s1):
        new_distances = [i + 1]
        for j, c2 in enumerate(s2):
            if c1 == c2:
                new_distances.append(distances[j])
            else:
                new_distances.append(1 + min(distances[j], distances[j + 1], new_distances[-1]))
        distances = new_distances

    return distances[-1]
