"""
Code Generation Backend Interface
=================================

Lowering never builds instructions itself; it drives a Backend through
the small capability surface defined here. Concrete backends live in
kscope.backends:

- TraceBackend: records an SSA-like operation trace and can interpret it
- LLVMBackend: builds LLVM IR with llvmlite

Handles
-------
ValueHandle and StorageHandle are opaque to lowering. A backend hands
them out from emit_*/allocate_local and accepts them back as operands.
FunctionHandle is shared bookkeeping owned by the Backend base class.

Function Lifecycle
------------------
    declare_function(proto)          declared (idempotent by name)
    begin_function_body(fn)          body open, defined
    ... emit_* ...
    finalize_function(fn, value)     verified, body closed
    discard_function(fn)             undo a definition or declaration

Discarding a function that was declared before its definition began
(for example by an 'extern') reverts it to a plain declaration; any
other discard removes the name completely.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Optional, Sequence

from kscope.lang.ast import Prototype
from kscope.lang.errors import BackendError

# Opaque to lowering
ValueHandle = Any
StorageHandle = Any


# =============================================================================
# Bookkeeping Types
# =============================================================================

@dataclass
class FunctionHandle:
    """
    A function known to a backend.

    Attributes:
        name: Function name
        params: Parameter names from the first declaration
        defined: True once a body has been started for this function
        declaration_count: Number of declare_function() calls that named it
    """
    name: str
    params: tuple[str, ...]
    defined: bool = False
    declaration_count: int = 0

    @property
    def arity(self) -> int:
        return len(self.params)


@dataclass
class VerificationResult:
    """
    Outcome of a backend's structural verifier.

    Attributes:
        ok: True if the function is well formed
        problems: Human-readable description of each defect
    """
    ok: bool
    problems: list[str] = field(default_factory=list)

    def __bool__(self) -> bool:
        return self.ok


# =============================================================================
# Abstract Backend
# =============================================================================

class Backend(ABC):
    """
    Abstract base class for code generation backends.

    The base class owns the function table, so declaration, lookup and
    discard bookkeeping behave the same for every backend. Subclasses
    implement instruction emission and the three hooks _on_declare,
    _on_revert and _on_remove.

    Attributes:
        name: Short backend name used in messages
        can_execute: True if run() can evaluate finished functions
    """

    name = "abstract"
    can_execute = False

    def __init__(self):
        self._functions: dict[str, FunctionHandle] = {}

    # =========================================================================
    # Function Table
    # =========================================================================

    def declare_function(self, proto: Prototype) -> FunctionHandle:
        """
        Look up or create the function named by proto.

        An existing function is returned unchanged; checking that the
        parameter counts agree is the caller's job.
        """
        handle = self._functions.get(proto.name)
        if handle is None:
            handle = FunctionHandle(proto.name, tuple(proto.params))
            self._functions[proto.name] = handle
            self._on_declare(handle)
        handle.declaration_count += 1
        return handle

    def lookup_function(self, name: str) -> Optional[FunctionHandle]:
        """Return the function named name, or None if it was never declared."""
        return self._functions.get(name)

    def functions(self) -> list[FunctionHandle]:
        """All known functions, in declaration order."""
        return list(self._functions.values())

    def discard_function(self, fn: FunctionHandle) -> None:
        """
        Undo the most recent declaration or definition of fn.

        A function declared more than once reverts to a body-less
        declaration; otherwise it is forgotten entirely.
        """
        self._require_known(fn)

        if fn.declaration_count > 1:
            fn.declaration_count -= 1
            fn.defined = False
            self._on_revert(fn)
        else:
            del self._functions[fn.name]
            self._on_remove(fn)

    def _require_known(self, fn: FunctionHandle) -> None:
        if self._functions.get(fn.name) is not fn:
            raise BackendError(f"function '{fn.name}' is not known to the {self.name} backend")

    # =========================================================================
    # Hooks
    # =========================================================================

    @abstractmethod
    def _on_declare(self, fn: FunctionHandle) -> None:
        """Called once when a new name enters the function table."""
        pass

    @abstractmethod
    def _on_revert(self, fn: FunctionHandle) -> None:
        """Drop the body of fn, keeping it as a declaration."""
        pass

    @abstractmethod
    def _on_remove(self, fn: FunctionHandle) -> None:
        """Drop everything the backend holds for fn."""
        pass

    # =========================================================================
    # Function Bodies
    # =========================================================================

    @abstractmethod
    def begin_function_body(self, fn: FunctionHandle) -> Sequence[tuple[str, ValueHandle]]:
        """
        Open a fresh body for fn and mark it defined.

        Returns:
            (parameter name, argument value) pairs in parameter order
        """
        pass

    @abstractmethod
    def finalize_function(self, fn: FunctionHandle, return_value: ValueHandle) -> VerificationResult:
        """Return return_value from fn, close the body and verify it."""
        pass

    @abstractmethod
    def render_function(self, fn: FunctionHandle) -> str:
        """Return a textual listing of fn (definition or declaration)."""
        pass

    # =========================================================================
    # Instruction Emission
    # =========================================================================

    @abstractmethod
    def emit_constant(self, value: float) -> ValueHandle:
        pass

    @abstractmethod
    def emit_load(self, storage: StorageHandle) -> ValueHandle:
        pass

    @abstractmethod
    def emit_store(self, value: ValueHandle, storage: StorageHandle) -> None:
        pass

    @abstractmethod
    def emit_add(self, lhs: ValueHandle, rhs: ValueHandle) -> ValueHandle:
        pass

    @abstractmethod
    def emit_sub(self, lhs: ValueHandle, rhs: ValueHandle) -> ValueHandle:
        pass

    @abstractmethod
    def emit_mul(self, lhs: ValueHandle, rhs: ValueHandle) -> ValueHandle:
        pass

    @abstractmethod
    def emit_compare_less_than(self, lhs: ValueHandle, rhs: ValueHandle) -> ValueHandle:
        """Unordered less-than; the result is a boolean, not a number."""
        pass

    @abstractmethod
    def emit_convert_bool_to_number(self, value: ValueHandle) -> ValueHandle:
        """Convert a comparison result to 0.0 or 1.0."""
        pass

    @abstractmethod
    def emit_call(self, fn: FunctionHandle, args: Sequence[ValueHandle]) -> ValueHandle:
        pass

    @abstractmethod
    def allocate_local(self, name: str) -> StorageHandle:
        """Allocate a mutable slot for a local variable in the open body."""
        pass

    # =========================================================================
    # Execution
    # =========================================================================

    def run(self, name: str, *args: float) -> float:
        """
        Evaluate a finished function.

        Raises:
            BackendError: Always, unless the backend overrides this
        """
        raise BackendError(f"the {self.name} backend cannot execute code")
