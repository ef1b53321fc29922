# =============================================================================
# test_cli.py - kscc Command-Line Tests
# =============================================================================
# Integration tests for the kscc command, run through click's CliRunner in
# an isolated filesystem.
# =============================================================================

from pathlib import Path

from click.testing import CliRunner

from kscope import __version__
from kscope.cli.errors import ExitCode
from kscope.cli.kscc import main


PROGRAM = "# doubles its argument\ndef twice(x) x*2\ntwice(21)\n"


def run_kscc(args: list[str], source: str = PROGRAM):
    """Write source to prog.ks and invoke kscc with args."""
    runner = CliRunner()
    with runner.isolated_filesystem():
        Path("prog.ks").write_text(source)
        return runner.invoke(main, args)


class TestEvaluation:
    """Default mode evaluates top-level expressions."""

    def test_evaluates_expression(self):
        result = run_kscc(["prog.ks"])
        assert result.exit_code == ExitCode.SUCCESS, result.output
        assert "Evaluated to 42.000000" in result.output

    def test_no_eval(self):
        result = run_kscc(["--no-eval", "prog.ks"])
        assert result.exit_code == 0
        assert "Evaluated" not in result.output

    def test_stdin(self):
        runner = CliRunner()
        result = runner.invoke(main, ["-"], input="def f(x) x*x\nf(4)\n")
        assert result.exit_code == 0, result.output
        assert "Evaluated to 16.000000" in result.output

    def test_output_file(self):
        runner = CliRunner()
        with runner.isolated_filesystem():
            Path("prog.ks").write_text(PROGRAM)
            result = runner.invoke(main, ["prog.ks", "-o", "out.txt"])

            assert result.exit_code == 0, result.output
            assert Path("out.txt").read_text() == "Evaluated to 42.000000\n"


class TestEmit:
    """Test the --emit modes."""

    def test_emit_ast(self):
        result = run_kscc(["prog.ks", "--emit", "ast"])
        assert result.exit_code == 0, result.output
        assert "Function: twice(x)\n  (x * 2)" in result.output
        assert "Expr: twice(21)" in result.output

    def test_emit_trace(self):
        result = run_kscc(["prog.ks", "--emit", "trace"])
        assert result.exit_code == 0, result.output
        assert "define double @twice(x):" in result.output
        assert "fmul" in result.output
        assert "Evaluated to 42.000000" in result.output

    def test_emit_llvm(self):
        """The LLVM backend renders IR but does not evaluate."""
        result = run_kscc(["prog.ks", "--emit", "llvm"])
        assert result.exit_code == 0, result.output
        assert "define double" in result.output
        assert "fmul double" in result.output
        assert "Evaluated" not in result.output


class TestOperators:
    """Test -b/--binop."""

    def test_registered_operator_reaches_lowering(self):
        result = run_kscc(["-b", "/=40", "prog.ks"], "4 / 2\n")
        assert result.exit_code == ExitCode.BUILD_ERROR
        assert "invalid binary operator '/'" in result.output

    def test_malformed_option(self):
        result = run_kscc(["-b", "slash", "prog.ks"])
        assert result.exit_code == ExitCode.INVALID_ARGS

    def test_non_integer_precedence(self):
        result = run_kscc(["-b", "/=high", "prog.ks"])
        assert result.exit_code == ExitCode.INVALID_ARGS

    def test_reserved_operator(self):
        result = run_kscc(["-b", "(=10", "prog.ks"])
        assert result.exit_code == ExitCode.INVALID_ARGS
        assert "cannot be used as a binary operator" in result.output


class TestErrors:
    """Errors are reported and set the exit code."""

    def test_errors_reported(self):
        result = run_kscc(["prog.ks"], "1 $ 2\n")
        assert result.exit_code == ExitCode.BUILD_ERROR
        assert "prog.ks:1:3: error: unknown token when expecting an expression" in result.output
        assert "1 error" in result.output
        assert "Evaluated to 2.000000" in result.output

    def test_error_count_plural(self):
        result = run_kscc(["prog.ks"], "nope; also\n")
        assert result.exit_code == ExitCode.BUILD_ERROR
        assert "2 errors" in result.output

    def test_missing_input(self):
        runner = CliRunner()
        with runner.isolated_filesystem():
            result = runner.invoke(main, ["missing.ks"])
        assert result.exit_code == ExitCode.INVALID_ARGS

    def test_version(self):
        result = CliRunner().invoke(main, ["--version"])
        assert result.exit_code == 0
        assert __version__ in result.output
