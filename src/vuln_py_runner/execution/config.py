from __future__ import annotations

import contextlib
import logging
import os
import tempfile
from collections.abc import Iterator
from pathlib import Path

from .types import UnsafeExecutionContext

logger = logging.getLogger(__name__)

EXEC_FILE_PREFIX = "vpr_exec_"
LINT_FILE_PREFIX = "vpr_lint_"
READ_CHUNK_BYTES = 4096
SPAWN_FAILURE_EXIT_CODE = 1
ANALYSIS_FAILURE_EXIT_CODE = 1


def unsafe_environment(context: UnsafeExecutionContext) -> dict[str, str]:
    """Return the environment flags advertised to guests run through `execute_unsafe`.

    Example:
        ```python
        env = unsafe_environment(UnsafeExecutionContext(allow_shell_access=True))
        ```
    """
    return {
        "UNSAFE_MODE": "true",
        "ALLOW_SHELL_ACCESS": _flag(context.allow_shell_access),
        "ALLOW_FS_ACCESS": _flag(context.allow_file_system_access),
        "ALLOW_NETWORK_ACCESS": _flag(context.allow_network_access),
    }


def _flag(value: bool) -> str:
    """Render a boolean as the lowercase string the guest sees.

    Example:
        ```python
        _flag(True)  # "true"
        ```
    """
    return "true" if value else "false"


def remove_quietly(path: Path) -> None:
    """Delete a transient file, swallowing any failure.

    Example:
        ```python
        remove_quietly(Path("/tmp/vpr_exec_abc.py"))
        ```
    """
    try:
        path.unlink()
    except OSError as exc:
        logger.debug("Could not remove transient file %s: %s", path, exc)


@contextlib.contextmanager
def transient_script(code: str, prefix: str) -> Iterator[Path]:
    """Write `code` verbatim to a uniquely named temp file, removed on exit.

    Example:
        ```python
        with transient_script('print("hi")', EXEC_FILE_PREFIX) as path:
            print(path.read_text())
        ```
    """
    fd, name = tempfile.mkstemp(prefix=prefix, suffix=".py")
    path = Path(name)
    try:
        with os.fdopen(fd, "w", encoding="utf-8", newline="") as handle:
            handle.write(code)
        yield path
    finally:
        remove_quietly(path)
