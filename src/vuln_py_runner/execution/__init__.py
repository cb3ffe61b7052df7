from .engine import ExecutionEngine
from .types import (
    ExecutionOptions,
    ExecutionResult,
    StreamEvent,
    StreamEventKind,
    UnsafeExecutionContext,
)

__all__ = [
    "ExecutionEngine",
    "ExecutionOptions",
    "ExecutionResult",
    "StreamEvent",
    "StreamEventKind",
    "UnsafeExecutionContext",
]
