from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum


@dataclass(slots=True)
class ExecutionOptions:
    """Per-call overrides layered over the engine policy.

    `None` fields fall back to the policy. `timeout_seconds=0` disables the timer.

    Example:
        ```python
        opts = ExecutionOptions(timeout_seconds=2, env={"DEBUG": "1"})
        ```
    """

    timeout_seconds: float | None = None
    cwd: str | None = None
    env: dict[str, str] = field(default_factory=dict)
    stream: bool = False
    sanitize: bool | None = None


@dataclass(slots=True)
class ExecutionResult:
    """Normalized execution result; every field is populated even on failure.

    Example:
        ```python
        result = ExecutionResult(success=True, stdout="hi\\n", exit_code=0)
        ```
    """

    success: bool
    stdout: str = ""
    stderr: str = ""
    exit_code: int = 0
    execution_time: float = 0.0
    timed_out: bool = False
    error: str | None = None


class StreamEventKind(str, Enum):
    """Kinds of stream events; `timeout` is a notification, `complete` is terminal.

    Example:
        ```python
        StreamEventKind("stdout") is StreamEventKind.STDOUT
        ```
    """

    STDOUT = "stdout"
    STDERR = "stderr"
    ERROR = "error"
    TIMEOUT = "timeout"
    COMPLETE = "complete"


@dataclass(frozen=True, slots=True)
class StreamEvent:
    """One real-time notification from a streaming execution.

    Example:
        ```python
        event = StreamEvent(StreamEventKind.STDOUT, "hello\\n", 12.5)
        ```
    """

    kind: StreamEventKind
    data: str
    timestamp: float
    result: ExecutionResult | None = None


@dataclass(slots=True)
class UnsafeExecutionContext:
    """Flags exported to the guest by `execute_unsafe`; nothing enforces them.

    Example:
        ```python
        ctx = UnsafeExecutionContext(allow_shell_access=True, bypass_sandbox=False)
        ```
    """

    allow_shell_access: bool = False
    allow_file_system_access: bool = False
    allow_network_access: bool = False
    allow_import_all: bool = False
    bypass_sandbox: bool = False
