from __future__ import annotations

import argparse
import asyncio
from functools import partial
from pathlib import Path
from typing import Any, Never, Sequence

from rich.console import Console
from rich.panel import Panel
from rich.pretty import Pretty
from rich.table import Table
from rich_argparse import RawTextRichHelpFormatter
from vuln_py_runner import (
    PRESETS,
    AnalysisResult,
    ExecutionOptions,
    ExecutionResult,
    StreamEvent,
    StreamEventKind,
    analyze,
    create_engine,
    create_preset_engine,
    create_unsafe_engine,
)
from vuln_py_runner.policy import resolve_policy

_CONSOLE = Console(no_color=False)


class _CLIHelpFormatter(RawTextRichHelpFormatter):
    """Rich formatter with explicit high-contrast CLI styles.

    Example:
        ```python
        parser = argparse.ArgumentParser(formatter_class=_CLIHelpFormatter)
        ```
    """

    styles = {
        "argparse.args": "bold cyan",
        "argparse.groups": "bold magenta",
        "argparse.help": "white",
        "argparse.metavar": "bold yellow",
        "argparse.prog": "bold bright_blue",
        "argparse.syntax": "bold bright_white",
        "argparse.text": "bright_white",
    }


_HELP_FORMATTER = partial(
    _CLIHelpFormatter,
    max_help_position=34,
    width=120,
)


class _RichArgumentParser(argparse.ArgumentParser):
    """ArgumentParser that renders errors via Rich.

    Example:
        ```python
        parser = _RichArgumentParser(prog="python -m vpr")
        ```
    """

    def error(self, message: str) -> Never:
        """Render parse errors with Rich and exit.

        Example:
            ```python
            # parser.error("invalid usage")
            ```
        """
        _CONSOLE.print(Panel.fit(f"[bold red]Error:[/bold red] {message}", border_style="red"))
        self.print_help()
        raise SystemExit(2)


def build_parser() -> argparse.ArgumentParser:
    """Build CLI parser for running and analyzing snippets.

    Example:
        ```python
        parser = build_parser()
        ```
    """
    parser = _RichArgumentParser(
        prog="python -m vpr",
        description=(
            "vuln-py-runner CLI\n"
            "Run and analyze Python snippets under a deliberately weak policy.\n"
            "Educational use only: guest code is NOT isolated from this machine."
        ),
        epilog=(
            "Quick Examples:\n"
            "  python -m vpr run hello.py\n"
            "  python -m vpr run slow.py --preset testing --timeout 2\n"
            "  python -m vpr run chatty.py --stream\n"
            "  python -m vpr lint suspicious.py\n"
            "  python -m vpr presets\n"
            "  python -m vpr policy --preset educational"
        ),
        formatter_class=_HELP_FORMATTER,
    )
    sub = parser.add_subparsers(
        dest="command",
        required=True,
        parser_class=_RichArgumentParser,
    )

    run_cmd = sub.add_parser(
        "run",
        help="Execute a snippet file.",
        description=(
            "Execute a Python file through the engine.\n"
            "Analysis runs first unless disabled by the policy or --no-analysis."
        ),
        epilog=(
            "Examples:\n"
            "  python -m vpr run script.py --preset safe\n"
            "  python -m vpr run script.py --unsafe --timeout 0"
        ),
        formatter_class=_HELP_FORMATTER,
    )
    run_cmd.add_argument("path", help="Path of the snippet file.")
    engine_choice = run_cmd.add_mutually_exclusive_group()
    engine_choice.add_argument(
        "--preset",
        choices=sorted(PRESETS),
        help="Named preset applied over the built-in defaults.",
    )
    run_cmd.add_argument(
        "--policy-file",
        help="TOML file with a [policy] table replacing the built-in defaults.",
    )
    run_cmd.add_argument(
        "--timeout",
        type=float,
        help="Per-call timeout in seconds (0 disables the timer).",
    )
    run_cmd.add_argument(
        "--stream",
        action="store_true",
        help="Print output chunks as they arrive.",
    )
    engine_choice.add_argument(
        "--unsafe",
        action="store_true",
        help="Build an unsafe engine: no analysis, no output limits.",
    )
    run_cmd.add_argument(
        "--no-analysis",
        action="store_true",
        help="Skip the analysis gate for this call only.",
    )

    lint_cmd = sub.add_parser(
        "lint",
        help="Analyze a snippet file without running it.",
        description=(
            "Syntax-check a file with the guest interpreter and scan it\n"
            "for risky patterns. Warnings are advisory only."
        ),
        formatter_class=_HELP_FORMATTER,
    )
    lint_cmd.add_argument("path", help="Path of the snippet file.")
    lint_cmd.add_argument(
        "--no-strict",
        action="store_true",
        help="Skip the heuristic risk-pattern stage.",
    )

    sub.add_parser(
        "presets",
        help="List the named presets.",
        description="Show timeout, output limit and safety flags for every preset.",
        formatter_class=_HELP_FORMATTER,
    )

    policy_cmd = sub.add_parser(
        "policy",
        help="Show the effective policy.",
        description="Show the policy produced by defaults, a preset and a policy file.",
        formatter_class=_HELP_FORMATTER,
    )
    policy_cmd.add_argument("--preset", choices=sorted(PRESETS))
    policy_cmd.add_argument("--policy-file")

    return parser


def _print_event(event: StreamEvent) -> None:
    """Render one stream event as it arrives.

    Example:
        ```python
        _print_event(StreamEvent(StreamEventKind.STDOUT, "hi\\n", 0.0))
        ```
    """
    if event.kind is StreamEventKind.STDOUT:
        _CONSOLE.out(event.data, end="")
    elif event.kind is StreamEventKind.STDERR:
        _CONSOLE.out(event.data, end="", style="red")
    elif event.kind in (StreamEventKind.ERROR, StreamEventKind.TIMEOUT):
        _CONSOLE.print(f"[bold yellow]{event.kind.value}:[/bold yellow] {event.data}")


def _print_result(result: ExecutionResult, *, show_output: bool) -> None:
    """Render an execution result summary.

    Example:
        ```python
        _print_result(ExecutionResult(success=True, stdout="hi"), show_output=True)
        ```
    """
    if show_output and result.stdout:
        _CONSOLE.print(Panel(result.stdout.rstrip("\n"), title="stdout", border_style="cyan"))
    if show_output and result.stderr:
        _CONSOLE.print(Panel(result.stderr.rstrip("\n"), title="stderr", border_style="red"))
    status = "[bold green]success[/bold green]" if result.success else "[bold red]failed[/bold red]"
    summary = f"{status}  exit code {result.exit_code}  {result.execution_time:.3f}s"
    if result.error:
        summary += f"\n{result.error}"
    _CONSOLE.print(Panel.fit(summary, title="Result"))


def _print_analysis(result: AnalysisResult) -> None:
    """Render analysis errors and warnings in a rich table.

    Example:
        ```python
        _print_analysis(AnalysisResult(is_valid=True))
        ```
    """
    table = Table(title="Analysis")
    table.add_column("Line", style="cyan")
    table.add_column("Kind")
    table.add_column("Rule", style="magenta")
    table.add_column("Message")
    for error in result.errors:
        table.add_row(str(error.line), "[red]error[/red]", error.rule, error.message)
    for warning in result.warnings:
        table.add_row(str(warning.line), "[yellow]warning[/yellow]", warning.rule, warning.message)
    _CONSOLE.print(table)
    verdict = "[bold green]valid[/bold green]" if result.is_valid else "[bold red]invalid[/bold red]"
    _CONSOLE.print(Panel.fit(f"{verdict}  {len(result.errors)} error(s), {len(result.warnings)} warning(s)"))


def _print_presets() -> None:
    """Render every preset in a rich table.

    Example:
        ```python
        _print_presets()
        ```
    """
    table = Table(title="Presets")
    table.add_column("Preset", style="cyan")
    table.add_column("Timeout (s)")
    table.add_column("Max output lines")
    table.add_column("Analysis")
    table.add_column("Allow unsafe")
    for name, fields in PRESETS.items():
        timeout = fields["timeout_seconds"]
        lines = fields["max_output_lines"]
        table.add_row(
            name,
            "unlimited" if timeout == 0 else f"{timeout:g}",
            "unlimited" if lines is None else str(lines),
            str(fields["analysis_enabled"]),
            str(fields["allow_unsafe"]),
        )
    _CONSOLE.print(table)


def _policy_payload(args: argparse.Namespace) -> dict[str, Any]:
    """Return the effective policy as a printable mapping without the environment.

    Example:
        ```python
        payload = _policy_payload(argparse.Namespace(preset="safe", policy_file=None))
        ```
    """
    policy = resolve_policy(args.preset, policy_file=args.policy_file)
    return {
        "interpreter_path": policy.interpreter_path,
        "timeout_seconds": policy.timeout_seconds,
        "max_output_lines": policy.max_output_lines,
        "analysis_enabled": policy.analysis_enabled,
        "allow_unsafe": policy.allow_unsafe,
        "working_directory": policy.working_directory,
        "environment_keys": len(policy.environment),
        "config_path": policy.config_path,
    }


def _run(args: argparse.Namespace, code: str) -> int:
    """Execute the `run` command and return the process exit code.

    Example:
        ```python
        code = _run(args, 'print("hi")')
        ```
    """
    if args.unsafe:
        engine = create_unsafe_engine(policy_file=args.policy_file)
    elif args.preset:
        engine = create_preset_engine(args.preset, policy_file=args.policy_file)
    else:
        engine = create_engine(policy_file=args.policy_file)
    options = ExecutionOptions(
        timeout_seconds=args.timeout,
        sanitize=False if args.no_analysis else None,
    )
    if args.stream:
        result = asyncio.run(engine.execute_streaming(code, options, on_event=_print_event))
    else:
        result = asyncio.run(engine.execute(code, options))
    _print_result(result, show_output=not args.stream)
    return 0 if result.success else 1


def main(argv: Sequence[str] | None = None) -> int:
    """Run the `vpr` CLI command handler.

    Example:
        ```python
        code = main(["lint", "script.py"])
        ```
    """
    parser = build_parser()
    args = parser.parse_args(list(argv) if argv is not None else None)

    if args.command == "presets":
        _print_presets()
        return 0
    if args.command == "policy":
        _CONSOLE.print(Panel.fit(Pretty(_policy_payload(args)), title="Policy", border_style="cyan"))
        return 0

    path = Path(args.path)
    if not path.is_file():
        _CONSOLE.print(Panel.fit(f"No such file: {path}", style="bold red"))
        return 1
    code = path.read_text(encoding="utf-8")

    if args.command == "run":
        return _run(args, code)
    if args.command == "lint":
        analysis = asyncio.run(analyze(code, strict=not args.no_strict))
        _print_analysis(analysis)
        return 0 if analysis.is_valid else 1

    parser.error("Unhandled command")
    return 2
