from __future__ import annotations

from typing import Any, AsyncIterator, Callable, Protocol

from ..policy import RunnerPolicy
from .types import ExecutionOptions, ExecutionResult, StreamEvent, UnsafeExecutionContext


class ExecutionEngine(Protocol):
    async def execute(
        self, code: str, options: ExecutionOptions | None = None
    ) -> ExecutionResult:
        """Run one snippet and return its collected result.

        Example:
            ```python
            result = await engine.execute('print("hi")')
            ```
        """
        ...

    async def execute_streaming(
        self,
        code: str,
        options: ExecutionOptions | None = None,
        on_event: Callable[[StreamEvent], None] | None = None,
    ) -> ExecutionResult:
        """Run one snippet, reporting each output chunk as it arrives.

        Example:
            ```python
            result = await engine.execute_streaming('print("hi")', on_event=print)
            ```
        """
        ...

    def stream(
        self, code: str, options: ExecutionOptions | None = None
    ) -> AsyncIterator[StreamEvent]:
        """Yield stream events for one snippet, ending with `complete`.

        Example:
            ```python
            async for event in engine.stream('print("hi")'):
                print(event.kind, event.data)
            ```
        """
        ...

    async def execute_unsafe(
        self, code: str, context: UnsafeExecutionContext | None = None
    ) -> ExecutionResult:
        """Run one snippet with every safety measure disabled for this call.

        Example:
            ```python
            result = await engine.execute_unsafe("import os; print(os.getcwd())")
            ```
        """
        ...

    def kill_all(self) -> None:
        """Force-kill every tracked process.

        Example:
            ```python
            engine.kill_all()
            ```
        """
        ...

    def get_policy(self) -> RunnerPolicy:
        """Return the current policy snapshot.

        Example:
            ```python
            policy = engine.get_policy()
            ```
        """
        ...

    def update_policy(self, **fields: Any) -> RunnerPolicy:
        """Merge `fields` into the policy without validation.

        Example:
            ```python
            engine.update_policy(timeout_seconds=1)
            ```
        """
        ...
