"""
kscc - Kaleidoscope Compiler Command-Line Interface
===================================================

Compiles a Kaleidoscope source file one top-level construct at a time
and prints what each construct produced.

Usage Examples
--------------
Evaluate top-level expressions:
    $ kscc program.ks

Show the recorded trace of each construct:
    $ kscc program.ks --emit trace

Emit LLVM IR to a file:
    $ kscc program.ks --emit llvm -o program.ll

Register extra operators:
    $ kscc -b '>=10' -b '/=40' program.ks

Read from standard input:
    $ echo 'def f(x) x*x f(4)' | kscc -
"""

import logging
import sys
from pathlib import Path
from typing import Optional

import click

from kscope import __version__
from kscope.cli.errors import ExitCode, handle_cli_exception
from kscope.lang.ast import ASTPrinter
from kscope.lang.compiler import KscopeCompiler, CompilerOptions, CompilationResult


def _parse_binop(ctx, param, values: tuple[str, ...]) -> dict[str, int]:
    """Convert repeated OP=PREC options into an operator table."""
    operators: dict[str, int] = {}
    for value in values:
        op, sep, precedence = value.rpartition("=")
        if not sep or not op:
            raise click.BadParameter(f"expected OP=PRECEDENCE, got '{value}'", ctx, param)
        try:
            operators[op] = int(precedence)
        except ValueError:
            raise click.BadParameter(f"precedence must be an integer, got '{precedence}'", ctx, param)
    return operators


def _render(result: CompilationResult, emit: Optional[str]) -> list[str]:
    """Produce output lines for every construct."""
    lines: list[str] = []
    printer = ASTPrinter()

    for item in result.items:
        if emit == "ast":
            lines.append(printer.print(item.node))
        elif emit in ("trace", "llvm"):
            lines.append(item.text)

        if item.value is not None:
            lines.append(f"Evaluated to {item.value:f}")

    return lines


# =============================================================================
# CLI Definition
# =============================================================================

@click.command()
@click.argument(
    "input_file",
    type=click.Path(exists=True, dir_okay=False, allow_dash=True, path_type=Path),
)
@click.option(
    "--emit",
    type=click.Choice(["ast", "trace", "llvm"], case_sensitive=False),
    default=None,
    help="Print the AST, the trace listing or the LLVM IR of each construct",
)
@click.option(
    "-b", "--binop",
    multiple=True,
    callback=_parse_binop,
    metavar="OP=PREC",
    help="Register a binary operator with a precedence (can be repeated)",
)
@click.option(
    "--no-eval",
    is_flag=True,
    help="Do not evaluate top-level expressions",
)
@click.option(
    "-o", "--output",
    type=click.Path(dir_okay=False, path_type=Path),
    help="Write output to a file instead of stdout",
)
@click.option(
    "-v", "--verbose",
    is_flag=True,
    help="Verbose output",
)
@click.version_option(version=__version__, prog_name="kscc")
def main(
    input_file: Path,
    emit: Optional[str],
    binop: dict[str, int],
    no_eval: bool,
    output: Optional[Path],
    verbose: bool,
) -> None:
    """
    Compile Kaleidoscope source code.

    INPUT_FILE is the source file to compile, or '-' for standard input.

    \b
    Examples:
        kscc program.ks                  # Evaluate expressions
        kscc program.ks --emit ast       # Print parsed constructs
        kscc program.ks --emit llvm      # Print LLVM IR
        kscc -b '/=40' program.ks        # Add an operator
    """
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(levelname)s: %(message)s" if verbose else "%(message)s",
    )

    emit = emit.lower() if emit else None

    try:
        options = CompilerOptions(
            filename="<stdin>" if str(input_file) == "-" else str(input_file),
            binary_operators=binop,
            backend="llvm" if emit == "llvm" else "trace",
            evaluate=not no_eval,
        )
        compiler = KscopeCompiler(options)

        if verbose:
            click.echo(f"Compiling {options.filename} with the {options.backend} backend...")

        if str(input_file) == "-":
            result = compiler.compile_source(click.get_text_stream("stdin"))
        else:
            result = compiler.compile_source(input_file.read_text(encoding="utf-8"))

        lines = _render(result, emit)
        text = "\n".join(lines)

        if output is not None:
            output.write_text(text + "\n" if text else "", encoding="utf-8")
            if verbose:
                click.echo(f"Wrote {len(lines)} line(s) to {output}")
        elif text:
            click.echo(text)

    except Exception as e:
        handle_cli_exception(e, verbose)

    if result.errors:
        click.echo(result.report, err=True)
        sys.exit(ExitCode.BUILD_ERROR)


if __name__ == "__main__":
    main()
