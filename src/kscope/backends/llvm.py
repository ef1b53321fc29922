"""
LLVM IR Backend
===============

Builds LLVM IR for Kaleidoscope with llvmlite.ir and checks every
finished function with the LLVM verifier through llvmlite.binding.

Module Layout
-------------
Each definition is built in its own ir.Module, as the Kaleidoscope JIT
tutorials do. The backend remembers every prototype, and a function is
materialized as a declaration in the module being built the first time
it is called from there. Discarding a definition simply drops its
module, which keeps names reusable (an ir.Module cannot unregister a
global name).

Lowering Map
------------
| Operation                   | LLVM IR                                  |
|-----------------------------|------------------------------------------|
| emit_constant               | double constant                          |
| allocate_local              | alloca double, at the top of entry       |
| emit_load / emit_store      | load double / store double               |
| emit_add / emit_sub / emit_mul | fadd / fsub / fmul                    |
| emit_compare_less_than      | fcmp ult                                 |
| emit_convert_bool_to_number | uitofp i1 to double                      |
| emit_call                   | call double @callee(...)                 |
| finalize_function           | ret double                               |

This backend does not execute code; top-level expressions are rendered
but not evaluated.
"""

import logging
from typing import Optional, Sequence

from llvmlite import ir
from llvmlite import binding as llvm

from kscope.lang.backend import Backend, FunctionHandle, VerificationResult
from kscope.lang.errors import BackendError

logger = logging.getLogger(__name__)


class LLVMBackend(Backend):
    """
    Backend that emits LLVM IR through llvmlite.

    Usage:
        backend = LLVMBackend("demo")
        lowering = Lowering(backend)
        lowering.lower_function(definition)
        print(backend.render_module())

    Attributes:
        module_name: Prefix for the per-definition module names
    """

    name = "llvm"
    can_execute = False

    def __init__(self, module_name: str = "kscope"):
        super().__init__()
        self.module_name = module_name
        self._double = ir.DoubleType()

        # Finished definitions, one module each
        self._modules: dict[str, ir.Module] = {}

        # Definition in progress
        self._module: Optional[ir.Module] = None
        self._function: Optional[ir.Function] = None
        self._entry: Optional[ir.Block] = None
        self._builder: Optional[ir.IRBuilder] = None

    # =========================================================================
    # Module Helpers
    # =========================================================================

    def _function_type(self, arity: int) -> ir.FunctionType:
        return ir.FunctionType(self._double, [self._double] * arity)

    def _new_function(self, module: ir.Module, fn: FunctionHandle) -> ir.Function:
        function = ir.Function(module, self._function_type(fn.arity), name=fn.name)
        for arg, param in zip(function.args, fn.params):
            arg.name = param
        return function

    def _materialize(self, fn: FunctionHandle) -> ir.Function:
        """Return fn in the open module, adding a declaration if needed."""
        existing = self._module.globals.get(fn.name)
        if existing is not None:
            return existing
        return self._new_function(self._module, fn)

    def _require_builder(self) -> ir.IRBuilder:
        if self._builder is None:
            raise BackendError("no function body is open")
        return self._builder

    def _close(self) -> None:
        self._module = None
        self._function = None
        self._entry = None
        self._builder = None

    def modules(self) -> list[ir.Module]:
        """Modules of all finished definitions, in definition order."""
        return list(self._modules.values())

    def render_module(self) -> str:
        """Concatenated IR of every finished definition."""
        return "\n".join(str(module) for module in self._modules.values())

    def render_function(self, fn: FunctionHandle) -> str:
        module = self._modules.get(fn.name)
        if module is not None:
            return str(module.get_global(fn.name)).strip()

        # Declarations are rendered through a scratch module
        scratch = ir.Module(name=f"{self.module_name}.decl")
        return str(self._new_function(scratch, fn)).strip()

    # =========================================================================
    # Function Table Hooks
    # =========================================================================

    def _on_declare(self, fn: FunctionHandle) -> None:
        logger.debug(f"Remembering prototype {fn.name}/{fn.arity}")

    def _on_revert(self, fn: FunctionHandle) -> None:
        self._drop_module(fn.name)

    def _on_remove(self, fn: FunctionHandle) -> None:
        self._drop_module(fn.name)

    def _drop_module(self, name: str) -> None:
        self._modules.pop(name, None)
        if self._function is not None and self._function.name == name:
            self._close()

    # =========================================================================
    # Function Bodies
    # =========================================================================

    def begin_function_body(self, fn: FunctionHandle) -> list[tuple[str, ir.Argument]]:
        self._require_known(fn)
        if self._builder is not None:
            raise BackendError(
                f"cannot begin '{fn.name}' while '{self._function.name}' is still open"
            )

        fn.defined = True
        self._module = ir.Module(name=f"{self.module_name}.{fn.name}")
        self._function = self._materialize(fn)
        self._entry = self._function.append_basic_block("entry")
        self._builder = ir.IRBuilder(self._entry)

        return list(zip(fn.params, self._function.args))

    def finalize_function(self, fn: FunctionHandle, return_value: ir.Value) -> VerificationResult:
        builder = self._require_builder()
        if self._function.name != fn.name:
            raise BackendError(f"'{fn.name}' is not the open function")

        builder.ret(return_value)
        module = self._module
        self._close()

        try:
            llvm.parse_assembly(str(module)).verify()
        except RuntimeError as e:
            return VerificationResult(False, [str(e).strip()])

        self._modules[fn.name] = module
        logger.debug(f"Verified LLVM module for '{fn.name}'")
        return VerificationResult(True)

    # =========================================================================
    # Instruction Emission
    # =========================================================================

    def emit_constant(self, value: float) -> ir.Constant:
        return ir.Constant(self._double, float(value))

    def emit_load(self, storage: ir.AllocaInstr) -> ir.Value:
        return self._require_builder().load(storage, name=storage.name)

    def emit_store(self, value: ir.Value, storage: ir.AllocaInstr) -> None:
        self._require_builder().store(value, storage)

    def emit_add(self, lhs: ir.Value, rhs: ir.Value) -> ir.Value:
        return self._require_builder().fadd(lhs, rhs, name="addtmp")

    def emit_sub(self, lhs: ir.Value, rhs: ir.Value) -> ir.Value:
        return self._require_builder().fsub(lhs, rhs, name="subtmp")

    def emit_mul(self, lhs: ir.Value, rhs: ir.Value) -> ir.Value:
        return self._require_builder().fmul(lhs, rhs, name="multmp")

    def emit_compare_less_than(self, lhs: ir.Value, rhs: ir.Value) -> ir.Value:
        return self._require_builder().fcmp_unordered("<", lhs, rhs, name="cmptmp")

    def emit_convert_bool_to_number(self, value: ir.Value) -> ir.Value:
        return self._require_builder().uitofp(value, self._double, name="booltmp")

    def emit_call(self, fn: FunctionHandle, args: Sequence[ir.Value]) -> ir.Value:
        builder = self._require_builder()
        callee = self._materialize(fn)
        return builder.call(callee, list(args), name="calltmp")

    def allocate_local(self, name: str) -> ir.AllocaInstr:
        """Allocate at the start of the entry block, ahead of any code."""
        builder = self._require_builder()
        builder.position_at_start(self._entry)
        slot = builder.alloca(self._double, name=name)
        # Code is only ever appended, so resume at the end of the block
        builder.position_at_end(self._entry)
        return slot
