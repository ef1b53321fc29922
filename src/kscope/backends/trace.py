"""
Trace Backend
=============

A reference backend that records lowered code as a flat, SSA-like list
of instructions per function, verifies it structurally, renders it as
text and interprets it.

Instruction Set
---------------
| Opcode   | Form                        | Meaning                          |
|----------|-----------------------------|----------------------------------|
| param    | %r = param NAME, INDEX      | incoming argument INDEX          |
| const    | %r = const VALUE            | floating point constant          |
| alloca   | %r = alloca NAME            | fresh mutable slot (starts 0.0)  |
| load     | %r = load %slot             | read a slot                      |
| store    | store %value, %slot         | write a slot                     |
| fadd     | %r = fadd %a, %b            | a + b                            |
| fsub     | %r = fsub %a, %b            | a - b                            |
| fmul     | %r = fmul %a, %b            | a * b                            |
| fcmp_ult | %r = fcmp_ult %a, %b        | unordered a < b (boolean)        |
| uitofp   | %r = uitofp %flag           | boolean to 0.0 / 1.0             |
| call     | %r = call NAME(%a, ...)     | call a declared function         |
| ret      | ret %value                  | return from the function         |

Registers are numbered from 0 within each function, so lowering the
same AST twice yields identical traces.

Example Listing
---------------
    define double @twice(x):
      %0 = param x, 0
      %1 = alloca x
      store %0, %1
      %2 = load %1
      %3 = const 2.0
      %4 = fmul %2, %3
      ret %4

Execution
---------
run(name, *args) interprets finished functions. Functions that are only
declared are looked up in the runtime externals table (sin, cos, sqrt
and putchard by default). Calls nest at most max_call_depth deep, since
the language has no conditionals to end a recursion.
"""

import logging
import math
import sys
from dataclasses import dataclass, field
from typing import Callable, Optional, Sequence

from kscope.lang.backend import Backend, FunctionHandle, VerificationResult
from kscope.lang.errors import BackendError

logger = logging.getLogger(__name__)


# =============================================================================
# Trace Data Types
# =============================================================================

@dataclass(frozen=True)
class Register:
    """
    A numbered SSA value within one function.

    Attributes:
        index: Register number, unique within the function
        hint: Variable name for alloca/param registers, "" otherwise
    """
    index: int
    hint: str = ""

    def __str__(self) -> str:
        return f"%{self.index}"


@dataclass(frozen=True)
class Instruction:
    """
    One trace instruction.

    Attributes:
        opcode: Operation name (see the module docstring)
        result: Register defined by the instruction, None for store/ret
        operands: Registers, constants or names, depending on opcode
    """
    opcode: str
    result: Optional[Register]
    operands: tuple = ()

    def __str__(self) -> str:
        if self.opcode == "call":
            callee, *args = self.operands
            text = f"call {callee}({', '.join(str(a) for a in args)})"
        elif self.operands:
            text = f"{self.opcode} {', '.join(str(o) for o in self.operands)}"
        else:
            text = self.opcode
        if self.result is not None:
            return f"{self.result} = {text}"
        return text


@dataclass
class TraceFunction:
    """Instructions recorded for one function body."""
    name: str
    params: tuple[str, ...]
    instructions: list[Instruction] = field(default_factory=list)
    finished: bool = False
    register_count: int = 0


def _putchard(x: float) -> float:
    """Write the character with code x to stderr."""
    sys.stderr.write(chr(int(x)))
    sys.stderr.flush()
    return 0.0


DEFAULT_EXTERNALS: dict[str, Callable[..., float]] = {
    "sin": math.sin,
    "cos": math.cos,
    "sqrt": math.sqrt,
    "putchard": _putchard,
}


# =============================================================================
# Trace Backend
# =============================================================================

class TraceBackend(Backend):
    """
    Backend that records, verifies and interprets instruction traces.

    Usage:
        backend = TraceBackend()
        lowering = Lowering(backend)
        lowering.lower_function(definition)
        print(backend.render_function(backend.lookup_function("f")))
        backend.run("f", 2.0)

    Attributes:
        externals: Runtime functions for declared-only names
        max_call_depth: Deepest call nesting run() allows
    """

    name = "trace"
    can_execute = True

    def __init__(
        self,
        externals: Optional[dict[str, Callable[..., float]]] = None,
        max_call_depth: int = 200,
    ):
        super().__init__()
        self.externals = dict(DEFAULT_EXTERNALS if externals is None else externals)
        self.max_call_depth = max_call_depth
        self._traces: dict[str, TraceFunction] = {}
        self._current: Optional[TraceFunction] = None

    # =========================================================================
    # Inspection
    # =========================================================================

    def trace(self, name: str) -> list[Instruction]:
        """Return the recorded instructions of a defined function."""
        trace = self._traces.get(name)
        if trace is None:
            raise BackendError(f"no trace recorded for '{name}'")
        return list(trace.instructions)

    def render_function(self, fn: FunctionHandle) -> str:
        trace = self._traces.get(fn.name)
        if trace is None:
            return f"declare double @{fn.name}({', '.join(fn.params)})"

        lines = [f"define double @{fn.name}({', '.join(trace.params)}):"]
        for instruction in trace.instructions:
            lines.append(f"  {instruction}")
        return "\n".join(lines)

    # =========================================================================
    # Function Table Hooks
    # =========================================================================

    def _on_declare(self, fn: FunctionHandle) -> None:
        pass

    def _on_revert(self, fn: FunctionHandle) -> None:
        self._drop_trace(fn.name)

    def _on_remove(self, fn: FunctionHandle) -> None:
        self._drop_trace(fn.name)

    def _drop_trace(self, name: str) -> None:
        self._traces.pop(name, None)
        if self._current is not None and self._current.name == name:
            self._current = None

    # =========================================================================
    # Function Bodies
    # =========================================================================

    def begin_function_body(self, fn: FunctionHandle) -> list[tuple[str, Register]]:
        self._require_known(fn)
        if self._current is not None:
            raise BackendError(
                f"cannot begin '{fn.name}' while '{self._current.name}' is still open"
            )

        fn.defined = True
        self._current = TraceFunction(fn.name, fn.params)
        self._traces[fn.name] = self._current

        arguments = []
        for index, param in enumerate(fn.params):
            register = self._emit("param", (param, index), hint=param)
            arguments.append((param, register))
        return arguments

    def finalize_function(self, fn: FunctionHandle, return_value: Register) -> VerificationResult:
        trace = self._require_open()
        if trace.name != fn.name:
            raise BackendError(f"'{fn.name}' is not the open function")

        self._emit("ret", (return_value,), result=False)
        trace.finished = True
        self._current = None

        result = self.verify(fn.name)
        if result.ok:
            logger.debug(f"Trace for '{fn.name}' verified ({len(trace.instructions)} instructions)")
        return result

    def verify(self, name: str) -> VerificationResult:
        """
        Check a trace for structural defects.

        Every register must be defined before use, store and load must
        address an alloca, calls must name a known function with the
        right argument count and the trace must end in exactly one ret.
        """
        trace = self._traces.get(name)
        if trace is None:
            return VerificationResult(False, [f"no trace recorded for '{name}'"])

        problems: list[str] = []
        defined: dict[int, Instruction] = {}

        for position, instruction in enumerate(trace.instructions):
            registers = [o for o in instruction.operands if isinstance(o, Register)]
            for register in registers:
                if register.index not in defined:
                    problems.append(f"{register} used before definition in '{instruction}'")

            if instruction.opcode in ("load", "store"):
                slot = instruction.operands[-1]
                source = defined.get(slot.index) if isinstance(slot, Register) else None
                if source is not None and source.opcode != "alloca":
                    problems.append(f"{instruction.opcode} from non-slot {slot}")

            if instruction.opcode == "call":
                callee = self.lookup_function(instruction.operands[0])
                if callee is None:
                    problems.append(f"call to unknown function '{instruction.operands[0]}'")
                elif callee.arity != len(instruction.operands) - 1:
                    problems.append(f"call to '{callee.name}' with wrong argument count")

            if instruction.opcode == "ret" and position != len(trace.instructions) - 1:
                problems.append("ret is not the last instruction")

            if instruction.result is not None:
                defined[instruction.result.index] = instruction

        if not trace.instructions or trace.instructions[-1].opcode != "ret":
            problems.append("function does not end with ret")

        return VerificationResult(not problems, problems)

    # =========================================================================
    # Instruction Emission
    # =========================================================================

    def _require_open(self) -> TraceFunction:
        if self._current is None:
            raise BackendError("no function body is open")
        return self._current

    def _emit(self, opcode: str, operands: tuple, result: bool = True, hint: str = "") -> Optional[Register]:
        trace = self._require_open()
        register = None
        if result:
            register = Register(trace.register_count, hint)
            trace.register_count += 1
        trace.instructions.append(Instruction(opcode, register, operands))
        return register

    def emit_constant(self, value: float) -> Register:
        return self._emit("const", (float(value),))

    def emit_load(self, storage: Register) -> Register:
        return self._emit("load", (storage,))

    def emit_store(self, value: Register, storage: Register) -> None:
        self._emit("store", (value, storage), result=False)

    def emit_add(self, lhs: Register, rhs: Register) -> Register:
        return self._emit("fadd", (lhs, rhs))

    def emit_sub(self, lhs: Register, rhs: Register) -> Register:
        return self._emit("fsub", (lhs, rhs))

    def emit_mul(self, lhs: Register, rhs: Register) -> Register:
        return self._emit("fmul", (lhs, rhs))

    def emit_compare_less_than(self, lhs: Register, rhs: Register) -> Register:
        return self._emit("fcmp_ult", (lhs, rhs))

    def emit_convert_bool_to_number(self, value: Register) -> Register:
        return self._emit("uitofp", (value,))

    def emit_call(self, fn: FunctionHandle, args: Sequence[Register]) -> Register:
        return self._emit("call", (fn.name, *args))

    def allocate_local(self, name: str) -> Register:
        return self._emit("alloca", (name,), hint=name)

    # =========================================================================
    # Interpreter
    # =========================================================================

    def run(self, name: str, *args: float) -> float:
        """
        Evaluate a function.

        Raises:
            BackendError: For unknown functions, wrong argument counts,
                missing runtime externals or excessive call depth
        """
        return self._call(name, [float(a) for a in args], depth=0)

    def _call(self, name: str, args: list[float], depth: int) -> float:
        if depth > self.max_call_depth:
            raise BackendError(f"maximum call depth ({self.max_call_depth}) exceeded in '{name}'")

        trace = self._traces.get(name)
        if trace is None or not trace.finished:
            external = self.externals.get(name)
            if external is None:
                raise BackendError(f"no definition or runtime external for '{name}'")
            try:
                return float(external(*args))
            except (ValueError, OverflowError) as e:
                raise BackendError(f"runtime external '{name}' failed: {e}") from e

        if len(args) != len(trace.params):
            raise BackendError(
                f"'{name}' expects {len(trace.params)} arguments, got {len(args)}"
            )

        values: dict[int, float | bool] = {}
        memory: dict[int, float] = {}

        for instruction in trace.instructions:
            opcode = instruction.opcode
            operands = instruction.operands

            if opcode == "param":
                result = args[operands[1]]
            elif opcode == "const":
                result = operands[0]
            elif opcode == "alloca":
                memory[instruction.result.index] = 0.0
                result = 0.0
            elif opcode == "load":
                result = memory[operands[0].index]
            elif opcode == "store":
                memory[operands[1].index] = values[operands[0].index]
                continue
            elif opcode == "fadd":
                result = values[operands[0].index] + values[operands[1].index]
            elif opcode == "fsub":
                result = values[operands[0].index] - values[operands[1].index]
            elif opcode == "fmul":
                result = values[operands[0].index] * values[operands[1].index]
            elif opcode == "fcmp_ult":
                left = values[operands[0].index]
                right = values[operands[1].index]
                result = math.isnan(left) or math.isnan(right) or left < right
            elif opcode == "uitofp":
                result = 1.0 if values[operands[0].index] else 0.0
            elif opcode == "call":
                callee, *call_args = operands
                result = self._call(callee, [values[a.index] for a in call_args], depth + 1)
            elif opcode == "ret":
                return values[operands[0].index]
            else:
                raise BackendError(f"unknown opcode '{opcode}' in '{name}'")

            values[instruction.result.index] = result

        raise BackendError(f"'{name}' ended without ret")
