from __future__ import annotations

import asyncio
import logging
import os
import re
import tempfile
from dataclasses import dataclass, field
from pathlib import Path

from .execution.config import LINT_FILE_PREFIX, transient_script
from .policy import DEFAULT_INTERPRETER

logger = logging.getLogger(__name__)

_SYNTAX_MARKERS = ("SyntaxError", "IndentationError", "TabError")
_FILE_HEADER = re.compile(r'File "[^"]*", line (\d+)')
_TRAILING_LOCATION = re.compile(r"\([^()]*, line (\d+)\)\s*$")
_SORRY_PREFIX = "Sorry: "

SNIPPET_NAME = "<snippet>"


@dataclass(frozen=True, slots=True)
class LintError:
    """Syntax fault reported by the guest interpreter's compile check.

    Example:
        ```python
        err = LintError(line=3, column=1, message="SyntaxError: invalid syntax")
        ```
    """

    line: int
    column: int
    message: str
    severity: str = "error"
    rule: str = "syntax-error"


@dataclass(frozen=True, slots=True)
class LintWarning:
    """Advisory risk-pattern match; never affects validity.

    Example:
        ```python
        warning = LintWarning(line=1, column=1, message="os import", rule="os-import")
        ```
    """

    line: int
    column: int
    message: str
    rule: str


@dataclass(slots=True)
class AnalysisResult:
    """Outcome of one analysis pass. Valid iff there are no errors.

    Example:
        ```python
        result = AnalysisResult(is_valid=True)
        ```
    """

    is_valid: bool
    errors: list[LintError] = field(default_factory=list)
    warnings: list[LintWarning] = field(default_factory=list)


@dataclass(frozen=True, slots=True)
class RiskRule:
    """One textual risk pattern and the warning it produces.

    Example:
        ```python
        rule = RiskRule("eval-call", re.compile(r"eval\\s*\\("), "eval() call")
        ```
    """

    rule: str
    pattern: re.Pattern[str]
    message: str


# Plain text matching only. Aliases, from-imports and indirect lookups
# (getattr, globals()[...]) pass through unflagged.
RISK_RULES: tuple[RiskRule, ...] = (
    RiskRule("os-import", re.compile(r"import\s+os"), "Potentially dangerous: os module import"),
    RiskRule(
        "subprocess-import",
        re.compile(r"import\s+subprocess"),
        "Potentially dangerous: subprocess module import",
    ),
    RiskRule("sys-import", re.compile(r"import\s+sys"), "Potentially dangerous: sys module import"),
    RiskRule("exec-call", re.compile(r"exec\s*\("), "Potentially dangerous: exec() function call"),
    RiskRule("eval-call", re.compile(r"eval\s*\("), "Potentially dangerous: eval() function call"),
    RiskRule(
        "dynamic-import-call",
        re.compile(r"__import__\s*\("),
        "Potentially dangerous: __import__() function call",
    ),
)


def scan_risk_patterns(code: str) -> list[LintWarning]:
    """Match every line of `code` against the fixed risk rule table.

    Example:
        ```python
        warnings = scan_risk_patterns("import os\\nprint(os.getcwd())")
        ```
    """
    found: list[LintWarning] = []
    for index, line in enumerate(code.split("\n"), start=1):
        for risk in RISK_RULES:
            if risk.pattern.search(line):
                found.append(LintWarning(line=index, column=1, message=risk.message, rule=risk.rule))
    return found


def parse_syntax_errors(diagnostic: str, script_path: Path | None = None) -> list[LintError]:
    """Turn compile-check stderr into structured errors.

    The line comes from the `File "...", line N` header or, for the
    `Sorry: IndentationError: ... (file, line N)` form, from the trailing
    location. Occurrences of `script_path` are replaced with `<snippet>`.

    Example:
        ```python
        errors = parse_syntax_errors('  File "x.py", line 2\\nSyntaxError: invalid syntax')
        ```
    """
    if script_path is not None:
        for name in (str(script_path), script_path.name):
            diagnostic = diagnostic.replace(name, SNIPPET_NAME)
    lines = [line.strip() for line in diagnostic.splitlines() if line.strip()]
    messages = [
        line.removeprefix(_SORRY_PREFIX)
        for line in lines
        if any(marker in line for marker in _SYNTAX_MARKERS)
    ]
    if not messages and lines:
        messages = [lines[-1]]

    match = _FILE_HEADER.search(diagnostic)
    if match is None:
        match = next(filter(None, (_TRAILING_LOCATION.search(m) for m in messages)), None)
    line_number = int(match.group(1)) if match else 1
    return [LintError(line=line_number, column=1, message=message) for message in messages]


class CodeAnalyzer:
    """Syntax check plus shallow heuristic risk scan for Python snippets.

    Example:
        ```python
        analyzer = CodeAnalyzer("python3")
        result = await analyzer.analyze("print(1)")
        ```
    """

    def __init__(self, interpreter_path: str | None = None) -> None:
        """Bind the analyzer to a guest interpreter.

        Example:
            ```python
            analyzer = CodeAnalyzer()
            ```
        """
        self.interpreter_path = interpreter_path or DEFAULT_INTERPRETER

    async def analyze(self, code: str, *, strict: bool = True) -> AnalysisResult:
        """Run the syntax stage and, unless `strict` is False, the heuristic stage.

        Example:
            ```python
            result = await analyzer.analyze("import os", strict=True)
            ```
        """
        errors: list[LintError] = []
        try:
            with transient_script(code, LINT_FILE_PREFIX) as path:
                errors.extend(await self._check_syntax(path))
        except OSError as exc:
            errors.append(LintError(line=1, column=1, message=f"Linting failed: {exc}"))

        warnings = scan_risk_patterns(code) if strict is not False else []
        return AnalysisResult(is_valid=not errors, errors=errors, warnings=warnings)

    async def _check_syntax(self, path: Path) -> list[LintError]:
        """Compile-check one file with the guest interpreter.

        Example:
            ```python
            errors = await analyzer._check_syntax(Path("/tmp/vpr_lint_x.py"))
            ```
        """
        with tempfile.TemporaryDirectory(prefix=LINT_FILE_PREFIX, ignore_cleanup_errors=True) as cache:
            env = dict(os.environ, PYTHONPYCACHEPREFIX=cache)
            try:
                process = await asyncio.create_subprocess_exec(
                    self.interpreter_path,
                    "-m",
                    "py_compile",
                    str(path),
                    stdout=asyncio.subprocess.DEVNULL,
                    stderr=asyncio.subprocess.PIPE,
                    env=env,
                )
            except OSError as exc:
                logger.debug("Compile check could not start %s: %s", self.interpreter_path, exc)
                return [
                    LintError(line=1, column=1, message=f"Interpreter execution error: {exc}")
                ]
            _, stderr_bytes = await process.communicate()

        stderr = stderr_bytes.decode("utf-8", errors="replace")
        if process.returncode != 0 and stderr.strip():
            return parse_syntax_errors(stderr, path)
        return []


async def analyze(
    code: str,
    *,
    strict: bool = True,
    interpreter_path: str | None = None,
) -> AnalysisResult:
    """Analyze one snippet with a throwaway analyzer.

    Example:
        ```python
        result = await analyze('print("Hello")')
        ```
    """
    return await CodeAnalyzer(interpreter_path).analyze(code, strict=strict)
