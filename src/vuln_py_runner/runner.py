from __future__ import annotations

import asyncio
import logging
import os
import platform
import sys
import tempfile
import warnings
from pathlib import Path
from typing import Any

from .execution.local_engine import LocalEngine
from .execution.types import ExecutionOptions, ExecutionResult, UnsafeExecutionContext
from .policy import DEFAULT_INTERPRETER, UnsafePolicyWarning, merge_policy, resolve_policy

logger = logging.getLogger(__name__)

_SAFE_BASELINE: dict[str, Any] = {
    "analysis_enabled": True,
    "allow_unsafe": False,
    "timeout_seconds": 30.0,
    "max_output_lines": 1000,
}
_UNSAFE_BASELINE: dict[str, Any] = {
    "analysis_enabled": False,
    "allow_unsafe": True,
    "timeout_seconds": 0.0,
    "max_output_lines": None,
}


def create_engine(*, policy_file: str | None = None, **overrides: Any) -> LocalEngine:
    """Create an engine from built-in defaults plus overrides.

    Example:
        ```python
        engine = create_engine(timeout_seconds=5)
        ```
    """
    return LocalEngine(policy=resolve_policy(policy_file=policy_file, **overrides))


def create_safe_engine(*, policy_file: str | None = None, **overrides: Any) -> LocalEngine:
    """Create an engine whose analysis and unsafe flags cannot be loosened by overrides.

    Example:
        ```python
        engine = create_safe_engine(allow_unsafe=True)  # still allow_unsafe=False
        ```
    """
    merged = resolve_policy(policy_file=policy_file, **{**_SAFE_BASELINE, **overrides})
    return LocalEngine(policy=merge_policy(merged, analysis_enabled=True, allow_unsafe=False))


def create_unsafe_engine(*, policy_file: str | None = None, **overrides: Any) -> LocalEngine:
    """Create an engine with analysis disabled and unsafe operations allowed.

    Unrelated overrides (interpreter, timeout, limits) are honored.

    Example:
        ```python
        engine = create_unsafe_engine(timeout_seconds=5)
        ```
    """
    merged = resolve_policy(policy_file=policy_file, **{**_UNSAFE_BASELINE, **overrides})
    message = "DANGER: creating engine with unsafe configuration"
    logger.warning(message)
    warnings.warn(message, UnsafePolicyWarning, stacklevel=2)
    return LocalEngine(policy=merge_policy(merged, analysis_enabled=False, allow_unsafe=True))


def create_preset_engine(
    preset: str,
    *,
    policy_file: str | None = None,
    **overrides: Any,
) -> LocalEngine:
    """Create an engine from a named preset: safe, testing, educational or dangerous.

    Example:
        ```python
        engine = create_preset_engine("testing", max_output_lines=100)
        ```
    """
    return LocalEngine(policy=resolve_policy(preset, policy_file=policy_file, **overrides))


def create_unsafe_context(**overrides: Any) -> UnsafeExecutionContext:
    """Return an unsafe context with every flag enabled unless overridden.

    Example:
        ```python
        ctx = create_unsafe_context(allow_network_access=False)
        ```
    """
    flags: dict[str, Any] = {
        "allow_shell_access": True,
        "allow_file_system_access": True,
        "allow_network_access": True,
        "allow_import_all": True,
        "bypass_sandbox": True,
    }
    flags.update(overrides)
    return UnsafeExecutionContext(**flags)


async def check_interpreter_availability(interpreter_path: str | None = None) -> bool:
    """Return whether `<interpreter> --version` runs and exits cleanly.

    Example:
        ```python
        available = await check_interpreter_availability("python3")
        ```
    """
    try:
        process = await asyncio.create_subprocess_exec(
            interpreter_path or DEFAULT_INTERPRETER,
            "--version",
            stdout=asyncio.subprocess.DEVNULL,
            stderr=asyncio.subprocess.DEVNULL,
        )
    except OSError:
        return False
    return await process.wait() == 0


def system_info() -> dict[str, str]:
    """Return host details useful when debugging engine behavior.

    Example:
        ```python
        info = system_info()
        ```
    """
    return {
        "platform": sys.platform,
        "machine": platform.machine(),
        "python_version": platform.python_version(),
        "temp_dir": tempfile.gettempdir(),
        "home_dir": str(Path.home()),
        "cwd": os.getcwd(),
    }


def run_code(
    code: str,
    *,
    engine: LocalEngine | None = None,
    preset: str | None = None,
    options: ExecutionOptions | None = None,
) -> ExecutionResult:
    """Run one snippet to completion from synchronous code.

    Example:
        ```python
        from vuln_py_runner import run_code
        result = run_code('print("Hello, World!")', preset="safe")
        ```
    """
    if engine is not None and preset is not None:
        raise ValueError("Provide either 'engine' or 'preset', not both")
    if engine is None:
        engine = create_preset_engine(preset) if preset is not None else create_safe_engine()
    return asyncio.run(engine.execute(code, options))
