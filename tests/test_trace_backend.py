# =============================================================================
# test_trace_backend.py - Trace Backend Tests
# =============================================================================
# Tests for the reference trace backend: recording, verification, rendering,
# discard bookkeeping and interpretation.
# =============================================================================

import math

import pytest
from kscope.backends.trace import TraceBackend, Register, Instruction
from kscope.lang.ast import Prototype
from kscope.lang.errors import BackendError


# =============================================================================
# Helper Functions
# =============================================================================

def build_double(backend: TraceBackend) -> None:
    """Hand-build 'def double(x) x * 2' through the backend surface."""
    fn = backend.declare_function(Prototype("double", ("x",)))
    (name, arg), = backend.begin_function_body(fn)
    slot = backend.allocate_local(name)
    backend.emit_store(arg, slot)
    value = backend.emit_mul(backend.emit_load(slot), backend.emit_constant(2))
    result = backend.finalize_function(fn, value)
    assert result.ok, result.problems


# =============================================================================
# Recording Tests
# =============================================================================

class TestRecording:
    """Test instruction recording and rendering."""

    def test_registers_numbered_from_zero(self):
        backend = TraceBackend()
        build_double(backend)
        results = [i.result.index for i in backend.trace("double") if i.result is not None]
        assert results == list(range(len(results)))

    def test_instruction_sequence(self):
        backend = TraceBackend()
        build_double(backend)
        assert backend.trace("double") == [
            Instruction("param", Register(0, "x"), ("x", 0)),
            Instruction("alloca", Register(1, "x"), ("x",)),
            Instruction("store", None, (Register(0, "x"), Register(1, "x"))),
            Instruction("load", Register(2), (Register(1, "x"),)),
            Instruction("const", Register(3), (2.0,)),
            Instruction("fmul", Register(4), (Register(2), Register(3))),
            Instruction("ret", None, (Register(4),)),
        ]

    def test_render_definition(self):
        backend = TraceBackend()
        build_double(backend)
        listing = backend.render_function(backend.lookup_function("double"))
        assert listing.splitlines() == [
            "define double @double(x):",
            "  %0 = param x, 0",
            "  %1 = alloca x",
            "  store %0, %1",
            "  %2 = load %1",
            "  %3 = const 2.0",
            "  %4 = fmul %2, %3",
            "  ret %4",
        ]

    def test_render_declaration(self):
        backend = TraceBackend()
        fn = backend.declare_function(Prototype("atan2", ("y", "x")))
        assert backend.render_function(fn) == "declare double @atan2(y, x)"

    def test_render_call(self):
        backend = TraceBackend()
        sin = backend.declare_function(Prototype("sin", ("x",)))
        fn = backend.declare_function(Prototype("f"))
        backend.begin_function_body(fn)
        value = backend.emit_call(sin, [backend.emit_constant(1.0)])
        backend.finalize_function(fn, value)
        assert "  %1 = call sin(%0)" in backend.render_function(fn).splitlines()

    def test_emit_without_open_body(self):
        with pytest.raises(BackendError, match="no function body is open"):
            TraceBackend().emit_constant(1.0)

    def test_nested_begin_rejected(self):
        backend = TraceBackend()
        f = backend.declare_function(Prototype("f"))
        g = backend.declare_function(Prototype("g"))
        backend.begin_function_body(f)
        with pytest.raises(BackendError):
            backend.begin_function_body(g)

    def test_unknown_trace(self):
        with pytest.raises(BackendError):
            TraceBackend().trace("missing")


# =============================================================================
# Verification Tests
# =============================================================================

class TestVerification:
    """Test the structural verifier."""

    def test_valid_trace(self):
        backend = TraceBackend()
        build_double(backend)
        assert backend.verify("double").ok

    def test_use_before_definition(self):
        backend = TraceBackend()
        fn = backend.declare_function(Prototype("bad"))
        backend.begin_function_body(fn)
        result = backend.finalize_function(fn, Register(7))
        assert not result.ok
        assert any("used before definition" in p for p in result.problems)

    def test_load_from_non_slot(self):
        backend = TraceBackend()
        fn = backend.declare_function(Prototype("bad"))
        backend.begin_function_body(fn)
        value = backend.emit_constant(1.0)
        result = backend.finalize_function(fn, backend.emit_load(value))
        assert not result.ok

    def test_verification_result_truthiness(self):
        backend = TraceBackend()
        build_double(backend)
        assert backend.verify("double")
        assert not backend.verify("missing")


# =============================================================================
# Function Table Tests
# =============================================================================

class TestFunctionTable:
    """Test declaration and discard bookkeeping."""

    def test_declare_is_idempotent(self):
        backend = TraceBackend()
        first = backend.declare_function(Prototype("f", ("a",)))
        second = backend.declare_function(Prototype("f", ("b",)))
        assert first is second
        assert second.params == ("a",)

    def test_lookup_missing(self):
        assert TraceBackend().lookup_function("nope") is None

    def test_discard_removes_fresh_function(self):
        backend = TraceBackend()
        build_double(backend)
        backend.discard_function(backend.lookup_function("double"))
        assert backend.lookup_function("double") is None
        with pytest.raises(BackendError):
            backend.trace("double")

    def test_discard_reverts_predeclared_function(self):
        backend = TraceBackend()
        backend.declare_function(Prototype("double", ("x",)))
        build_double(backend)

        fn = backend.lookup_function("double")
        backend.discard_function(fn)

        assert backend.lookup_function("double") is fn
        assert not fn.defined
        assert backend.render_function(fn) == "declare double @double(x)"

    def test_discard_unknown_function(self):
        backend = TraceBackend()
        fn = backend.declare_function(Prototype("f"))
        backend.discard_function(fn)
        with pytest.raises(BackendError):
            backend.discard_function(fn)

    def test_discard_open_function(self):
        """Discarding mid-body closes the body."""
        backend = TraceBackend()
        fn = backend.declare_function(Prototype("f"))
        backend.begin_function_body(fn)
        backend.discard_function(fn)
        with pytest.raises(BackendError):
            backend.emit_constant(1.0)

    def test_functions_in_declaration_order(self):
        backend = TraceBackend()
        for name in ("c", "a", "b"):
            backend.declare_function(Prototype(name))
        assert [f.name for f in backend.functions()] == ["c", "a", "b"]


# =============================================================================
# Interpreter Tests
# =============================================================================

class TestInterpreter:
    """Test run()."""

    def test_run(self):
        backend = TraceBackend()
        build_double(backend)
        assert backend.run("double", 21) == 42.0

    def test_default_externals(self):
        backend = TraceBackend()
        fn = backend.declare_function(Prototype("f"))
        cos = backend.declare_function(Prototype("cos", ("x",)))
        backend.begin_function_body(fn)
        backend.finalize_function(fn, backend.emit_call(cos, [backend.emit_constant(0.0)]))
        assert backend.run("f") == 1.0

    def test_custom_externals(self):
        backend = TraceBackend(externals={"triple": lambda x: 3 * x})
        assert backend.run("triple", 2) == 6.0
        with pytest.raises(BackendError):
            backend.run("sin", 1.0)

    def test_unknown_function(self):
        with pytest.raises(BackendError, match="no definition or runtime external"):
            TraceBackend().run("mystery")

    def test_wrong_argument_count(self):
        backend = TraceBackend()
        build_double(backend)
        with pytest.raises(BackendError):
            backend.run("double")

    def test_external_domain_error(self):
        with pytest.raises(BackendError):
            TraceBackend().run("sqrt", -1.0)

    def test_call_depth_limit(self):
        backend = TraceBackend(max_call_depth=25)
        fn = backend.declare_function(Prototype("forever"))
        backend.begin_function_body(fn)
        backend.finalize_function(fn, backend.emit_call(fn, []))
        with pytest.raises(BackendError, match="maximum call depth"):
            backend.run("forever")

    def test_unordered_comparison(self):
        """fcmp_ult is true when either operand is NaN."""
        backend = TraceBackend()
        fn = backend.declare_function(Prototype("lt", ("a", "b")))
        (_, a), (_, b) = backend.begin_function_body(fn)
        flag = backend.emit_compare_less_than(a, b)
        backend.finalize_function(fn, backend.emit_convert_bool_to_number(flag))

        assert backend.run("lt", 1, 2) == 1.0
        assert backend.run("lt", 2, 1) == 0.0
        assert backend.run("lt", math.nan, 1) == 1.0

    def test_putchard(self, capsys):
        TraceBackend().run("putchard", 65)
        assert capsys.readouterr().err == "A"
