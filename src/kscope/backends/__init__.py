"""
Code generation backends for kscope.

- TraceBackend: reference backend that records and interprets traces
- LLVMBackend: LLVM IR through llvmlite (imported lazily, see
  kscope.backends.llvm)
"""

from kscope.backends.trace import TraceBackend, Register, Instruction, DEFAULT_EXTERNALS

__all__ = ["TraceBackend", "Register", "Instruction", "DEFAULT_EXTERNALS"]
