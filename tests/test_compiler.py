# =============================================================================
# test_compiler.py - Compiler Driver Tests
# =============================================================================
# Tests for kscope.lang.compiler: the top-level loop, error recovery,
# anonymous expression handling, options and session persistence.
# =============================================================================

import io

import pytest
from kscope import compile_source as package_compile_source
from kscope.lang.compiler import (
    ANONYMOUS_FUNCTION,
    CompilerOptions,
    KscopeCompiler,
    TopLevelKind,
    compile_source,
)
from kscope.lang.errors import (
    BackendError,
    ParseError,
    UnknownVariableError,
    UnknownFunctionError,
    InvalidOperatorError,
    FunctionRedeclarationError,
    NestingTooDeepError,
    ExpressionTooDeepError,
)


def values(result) -> list:
    return [item.value for item in result.items if item.kind == TopLevelKind.EXPRESSION]


# =============================================================================
# Evaluation Tests
# =============================================================================

class TestEvaluation:
    """Test evaluating top-level expressions."""

    def test_definition_then_call(self):
        result = compile_source("def twice(x) x*2 twice(21)")
        assert result.success
        assert values(result) == [42.0]

    def test_package_level_helper(self):
        assert values(package_compile_source("1 + 2")) == [3.0]

    def test_item_kinds(self):
        result = compile_source("extern sin(x); def f(x) x; f(1)")
        assert [item.kind for item in result.items] == [
            TopLevelKind.EXTERN, TopLevelKind.DEFINITION, TopLevelKind.EXPRESSION,
        ]
        assert [item.name for item in result.items] == ["sin", "f", ANONYMOUS_FUNCTION]

    def test_extern_runtime_function(self):
        result = compile_source("extern sqrt(x); sqrt(16)")
        assert values(result) == [4.0]

    def test_precedence_and_comparison(self):
        result = compile_source("1 + 2 * 3; (1 + 2) * 3; 8 - 4 - 2; 1 < 2; 2 < 1")
        assert values(result) == [7.0, 9.0, 2.0, 1.0, 0.0]

    def test_var_block(self):
        result = compile_source("def f(x) var y = x * 2, z = y + 1 in y * z; f(3)")
        assert values(result) == [42.0]

    def test_semicolons_optional(self):
        result = compile_source(";;; 1 ;; 2 ;")
        assert values(result) == [1.0, 2.0]

    def test_stream_source(self):
        result = compile_source(io.StringIO("def f(a b) a - b\nf(5, 3)\n"))
        assert values(result) == [2.0]

    def test_evaluation_disabled(self):
        result = compile_source("1 + 1", CompilerOptions(evaluate=False))
        item = result.items[0]
        assert item.value is None
        assert "fadd" in item.text

    def test_custom_externals(self):
        options = CompilerOptions(externals={"triple": lambda x: 3 * x})
        result = compile_source("extern triple(x); triple(5)", options)
        assert values(result) == [15.0]


# =============================================================================
# Anonymous Expression Tests
# =============================================================================

class TestAnonymousExpressions:
    """Top-level expressions are wrapped, run and discarded."""

    def test_wrapper_discarded(self):
        result = compile_source("1; 2; 3")
        assert values(result) == [1.0, 2.0, 3.0]
        assert result.backend.lookup_function(ANONYMOUS_FUNCTION) is None

    def test_wrapper_rendered(self):
        result = compile_source("4")
        assert result.items[0].text.startswith(f"define double @{ANONYMOUS_FUNCTION}()")

    def test_failed_expression_discarded(self):
        result = compile_source("zz; 5")
        assert isinstance(result.errors[0], UnknownVariableError)
        assert values(result) == [5.0]

    def test_runtime_failure_recorded(self):
        """Unbounded recursion is stopped and reported."""
        result = compile_source("def loop(x) loop(x); loop(1); 6")
        assert len(result.errors) == 1
        assert isinstance(result.errors[0], BackendError)
        assert values(result) == [6.0]


# =============================================================================
# Error Recovery Tests
# =============================================================================

class TestErrorRecovery:
    """Errors are recorded and compilation continues."""

    def test_parse_error_skips_one_token(self):
        result = compile_source("1 $ 2")
        assert values(result) == [1.0, 2.0]
        assert len(result.errors) == 1
        error = result.errors[0]
        assert isinstance(error, ParseError)
        assert error.location.column == 3

    def test_lowering_errors_continue(self):
        result = compile_source("def f(x) y; f(1); 4")
        assert [type(e) for e in result.errors] == [UnknownVariableError, UnknownFunctionError]
        assert values(result) == [4.0]
        assert not result.success

    def test_redeclaration_recorded(self):
        result = compile_source("extern f(a b); def f(x) x; 1")
        assert isinstance(result.errors[0], FunctionRedeclarationError)
        assert values(result) == [1.0]

    def test_unterminated_input_stops(self):
        result = compile_source("f(1, 2")
        assert result.errors
        assert result.items == []

    def test_max_errors(self):
        result = compile_source("$ $ $ $ 1", CompilerOptions(max_errors=2))
        assert len(result.errors) == 2
        assert result.items == []

    def test_report(self):
        result = compile_source("nope; 1 $ 2", CompilerOptions(filename="r.ks"))
        lines = result.report.splitlines()
        assert lines[0].startswith("r.ks:1:1: error:")
        assert lines[-1] == "2 errors"
        assert str(result.errors[1]) in result.report

    def test_report_empty_on_success(self):
        assert compile_source("1").report == ""

    def test_error_message_uses_filename(self):
        result = compile_source("def f() nope", CompilerOptions(filename="demo.ks"))
        assert str(result.errors[0]).startswith("demo.ks:1:9: error:")


# =============================================================================
# Options and Session Tests
# =============================================================================

class TestOptions:
    """Test CompilerOptions validation and operator registration."""

    def test_unknown_backend(self):
        with pytest.raises(ValueError, match="unknown backend"):
            CompilerOptions(backend="jvm")

    def test_max_errors_must_be_positive(self):
        with pytest.raises(ValueError):
            CompilerOptions(max_errors=0)

    def test_default_operators_empty(self):
        assert CompilerOptions().binary_operators == {}
        assert CompilerOptions(binary_operators=None).binary_operators == {}

    def test_invalid_operator_rejected(self):
        with pytest.raises(ValueError):
            KscopeCompiler(CompilerOptions(binary_operators={"(": 10}))

    def test_registered_operator_without_lowering(self):
        """A registered operator parses but has no lowering."""
        result = compile_source("1 / 2; 3", CompilerOptions(binary_operators={"/": 40}))
        assert isinstance(result.errors[0], InvalidOperatorError)
        assert values(result) == [3.0]

    def test_registered_operator_precedence(self):
        options = CompilerOptions(binary_operators={"/": 40}, evaluate=False)
        result = compile_source("1 + 2 / 3", options)
        assert result.items == []
        assert isinstance(result.errors[0], InvalidOperatorError)


class TestSession:
    """State persists across compile_source() calls on one compiler."""

    def test_definitions_persist(self):
        compiler = KscopeCompiler()
        compiler.compile_source("def square(x) x*x")
        result = compiler.compile_source("square(3)")
        assert values(result) == [9.0]

    def test_errors_reset_per_call(self):
        compiler = KscopeCompiler()
        assert compiler.compile_source("$").errors
        assert compiler.compile_source("1").success

    def test_compile_file(self, tmp_path):
        path = tmp_path / "prog.ks"
        path.write_text("# doubles\ndef twice(x) x*2\ntwice(4)\n", encoding="utf-8")
        result = KscopeCompiler().compile_file(path)
        assert result.filename == str(path)
        assert values(result) == [8.0]

    def test_compile_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            KscopeCompiler().compile_file(tmp_path / "missing.ks")


class TestDeepNesting:
    """Input too deep to recurse over is an error, not a broken session."""

    def test_long_sum(self):
        compiler = KscopeCompiler()
        result = compiler.compile_source("+".join(["1"] * 3000))
        assert len(result.errors) == 1
        assert isinstance(result.errors[0], ExpressionTooDeepError)
        assert "nested too deeply" in str(result.errors[0])
        assert compiler.backend.lookup_function(ANONYMOUS_FUNCTION) is None

        result = compiler.compile_source("def f(x) x*2 f(21)")
        assert result.success
        assert values(result) == [42.0]

    def test_long_sum_in_definition(self):
        compiler = KscopeCompiler()
        result = compiler.compile_source("def big(x) " + "+".join(["x"] * 3000))
        assert isinstance(result.errors[0], ExpressionTooDeepError)
        assert compiler.backend.lookup_function("big") is None
        assert dict(compiler.lowering.named_values) == {}

        assert values(compiler.compile_source("def big(x) x+1 big(1)")) == [2.0]

    def test_deep_parentheses(self):
        compiler = KscopeCompiler()
        result = compiler.compile_source("(" * 1000 + "1" + ")" * 1000)
        assert isinstance(result.errors[0], NestingTooDeepError)
        assert isinstance(result.errors[0], ParseError)

        result = compiler.compile_source("def f(x) x*2 f(21)")
        assert result.success
        assert values(result) == [42.0]

    def test_moderate_nesting_still_compiles(self):
        result = compile_source("(" * 50 + "1" + ")" * 50 + " + " + "+".join(["1"] * 50))
        assert values(result) == [51.0]
