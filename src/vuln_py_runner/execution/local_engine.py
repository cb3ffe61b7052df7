from __future__ import annotations

import asyncio
import codecs
import contextlib
import logging
import time
from collections.abc import AsyncIterator, Callable
from pathlib import Path
from typing import Any

from ..analysis import CodeAnalyzer
from ..policy import RunnerPolicy, merge_policy
from .config import (
    ANALYSIS_FAILURE_EXIT_CODE,
    EXEC_FILE_PREFIX,
    READ_CHUNK_BYTES,
    SPAWN_FAILURE_EXIT_CODE,
    transient_script,
    unsafe_environment,
)
from .tracking import ProcessArena
from .types import (
    ExecutionOptions,
    ExecutionResult,
    StreamEvent,
    StreamEventKind,
    UnsafeExecutionContext,
)

logger = logging.getLogger(__name__)

EventCallback = Callable[[StreamEvent], None]


def _elapsed(started: float) -> float:
    """Return seconds elapsed since a `perf_counter` reading.

    Example:
        ```python
        took = _elapsed(time.perf_counter())
        ```
    """
    return time.perf_counter() - started


def _event(kind: StreamEventKind, data: str, result: ExecutionResult | None = None) -> StreamEvent:
    """Build a stream event stamped with the monotonic clock.

    Example:
        ```python
        event = _event(StreamEventKind.STDOUT, "hi\\n")
        ```
    """
    return StreamEvent(kind=kind, data=data, timestamp=time.monotonic(), result=result)


def _kill_quietly(process: asyncio.subprocess.Process) -> None:
    """Send SIGKILL without waiting; a process that already exited is ignored.

    Example:
        ```python
        _kill_quietly(process)
        ```
    """
    try:
        process.kill()
    except ProcessLookupError:
        pass


class _OutputCollector:
    """Accumulate stdout/stderr and forward chunks to a stream listener.

    Example:
        ```python
        collector = _OutputCollector(policy, emit=events.append)
        ```
    """

    def __init__(self, policy: RunnerPolicy, emit: EventCallback | None) -> None:
        """Bind the collector to one execution's policy snapshot and listener.

        Example:
            ```python
            collector = _OutputCollector(RunnerPolicy(), None)
            ```
        """
        self._policy = policy
        self._emit = emit
        self._stdout: list[str] = []
        self._stderr: list[str] = []
        self.stdout_lines = 0

    @property
    def stdout(self) -> str:
        """Return all stdout captured so far.

        Example:
            ```python
            text = collector.stdout
            ```
        """
        return "".join(self._stdout)

    @property
    def stderr(self) -> str:
        """Return all stderr captured so far.

        Example:
            ```python
            text = collector.stderr
            ```
        """
        return "".join(self._stderr)

    async def pump(self, reader: asyncio.StreamReader, kind: StreamEventKind) -> None:
        """Read one pipe to EOF, decoding UTF-8 incrementally.

        Example:
            ```python
            await collector.pump(process.stdout, StreamEventKind.STDOUT)
            ```
        """
        decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        while True:
            chunk = await reader.read(READ_CHUNK_BYTES)
            text = decoder.decode(chunk, final=not chunk)
            if text:
                self._accept(kind, text)
            if not chunk:
                return

    def _accept(self, kind: StreamEventKind, text: str) -> None:
        """Record one decoded chunk and stream it unless the line limit is hit.

        Stdout past the limit is still captured; only its events are dropped.

        Example:
            ```python
            collector._accept(StreamEventKind.STDERR, "warning\\n")
            ```
        """
        if kind is StreamEventKind.STDOUT:
            self._stdout.append(text)
            self.stdout_lines += text.count("\n")
            if not self._policy.streams_line(self.stdout_lines):
                return
        else:
            self._stderr.append(text)
        if self._emit is not None:
            self._emit(_event(kind, text))


class LocalEngine:
    """Run Python snippets in a child interpreter under a deliberately weak policy.

    The policy is an immutable snapshot; each call reads it once, so a
    concurrent `update_policy` never changes an execution already in flight.

    Example:
        ```python
        engine = LocalEngine(timeout_seconds=5)
        result = await engine.execute('print("Hello, World!")')
        ```
    """

    def __init__(self, *, policy: RunnerPolicy | None = None, **overrides: Any) -> None:
        """Initialize an engine from a policy snapshot plus keyword overrides.

        Example:
            ```python
            engine = LocalEngine(policy=RunnerPolicy(), max_output_lines=50)
            ```
        """
        base = policy if policy is not None else RunnerPolicy()
        self._policy = merge_policy(base, **overrides) if overrides else base
        self._arena = ProcessArena()

    @property
    def active_count(self) -> int:
        """Return how many guest processes are currently tracked.

        Example:
            ```python
            assert engine.active_count == 0
            ```
        """
        return len(self._arena)

    def get_policy(self) -> RunnerPolicy:
        """Return the current policy snapshot.

        Example:
            ```python
            timeout = engine.get_policy().timeout_seconds
            ```
        """
        return self._policy

    def update_policy(self, **fields: Any) -> RunnerPolicy:
        """Swap in a new snapshot with `fields` merged over the current one.

        Nothing is validated; inconsistent combinations such as
        `allow_unsafe=True` with `analysis_enabled=True` are accepted.

        Example:
            ```python
            engine.update_policy(allow_unsafe=True)
            ```
        """
        self._policy = merge_policy(self._policy, **fields)
        return self._policy

    async def execute(self, code: str, options: ExecutionOptions | None = None) -> ExecutionResult:
        """Run one snippet and return its collected result.

        Example:
            ```python
            result = await engine.execute("print(1 + 1)", ExecutionOptions(timeout_seconds=2))
            ```
        """
        options = options or ExecutionOptions()
        emit = self._discard if options.stream else None
        return await self._run(code, options, emit)

    async def execute_streaming(
        self,
        code: str,
        options: ExecutionOptions | None = None,
        on_event: EventCallback | None = None,
    ) -> ExecutionResult:
        """Run one snippet, passing every stream event to `on_event` as it happens.

        Example:
            ```python
            events = []
            result = await engine.execute_streaming("print(1)", on_event=events.append)
            ```
        """
        return await self._run(code, options or ExecutionOptions(), on_event or self._discard)

    async def stream(
        self, code: str, options: ExecutionOptions | None = None
    ) -> AsyncIterator[StreamEvent]:
        """Yield stream events for one snippet; the last one is `complete`.

        Example:
            ```python
            async for event in engine.stream("print(1)"):
                print(event.kind.value, event.data)
            ```
        """
        queue: asyncio.Queue[StreamEvent | None] = asyncio.Queue()
        task = asyncio.create_task(self.execute_streaming(code, options, on_event=queue.put_nowait))
        task.add_done_callback(lambda _: queue.put_nowait(None))
        try:
            while True:
                event = await queue.get()
                if event is None:
                    break
                yield event
            task.result()
        finally:
            if not task.done():
                task.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await task

    async def execute_unsafe(
        self, code: str, context: UnsafeExecutionContext | None = None
    ) -> ExecutionResult:
        """Run one snippet with analysis off and unsafe operations allowed.

        The worst-case snapshot is handed to this call only; the engine policy
        seen by `get_policy` and by concurrent executions never changes.

        Example:
            ```python
            result = await engine.execute_unsafe(code, UnsafeExecutionContext(bypass_sandbox=True))
            ```
        """
        context = context or UnsafeExecutionContext()
        prior = self._policy
        env = dict(prior.environment)
        env.update(unsafe_environment(context))
        options = ExecutionOptions(
            timeout_seconds=0 if context.bypass_sandbox else prior.timeout_seconds,
            env=env,
            sanitize=False,
        )
        unsafe = merge_policy(prior, analysis_enabled=False, allow_unsafe=True)
        logger.warning("Executing snippet with all safety measures disabled")
        return await self._run(code, options, None, policy=unsafe)

    def kill_all(self) -> None:
        """Force-kill every tracked guest process and clear the tracked set.

        Does not wait for the processes to die. Never raises.

        Example:
            ```python
            engine.kill_all()
            ```
        """
        killed = self._arena.kill_all()
        if killed:
            logger.warning("Killed %d running guest process(es)", killed)

    def _sanitize_code(self, code: str) -> str:
        """Return the snippet unchanged; sanitization is intentionally a no-op.

        Example:
            ```python
            same = engine._sanitize_code("import os")
            ```
        """
        return code

    @staticmethod
    def _discard(event: StreamEvent) -> None:
        """Stream listener that drops every event.

        Example:
            ```python
            LocalEngine._discard(event)
            ```
        """

    @staticmethod
    def _finish(emit: EventCallback | None, result: ExecutionResult) -> ExecutionResult:
        """Emit the terminal `complete` event in streaming mode and return the result.

        Example:
            ```python
            return self._finish(emit, result)
            ```
        """
        if emit is not None:
            emit(_event(StreamEventKind.COMPLETE, "", result))
        return result

    async def _run(
        self,
        code: str,
        options: ExecutionOptions,
        emit: EventCallback | None,
        *,
        policy: RunnerPolicy | None = None,
    ) -> ExecutionResult:
        """Analyze, materialize, spawn and collect one snippet.

        `policy` replaces the engine snapshot for this call only.

        Example:
            ```python
            result = await engine._run("print(1)", ExecutionOptions(), None)
            ```
        """
        policy = policy if policy is not None else self._policy
        started = time.perf_counter()

        if policy.analysis_enabled and options.sanitize is not False:
            analysis = await CodeAnalyzer(policy.interpreter_path).analyze(
                code, strict=not policy.allow_unsafe
            )
            # Only errors gate execution; warnings are advisory.
            if not analysis.is_valid:
                message = "\n".join(error.message for error in analysis.errors)
                logger.debug("Analysis rejected snippet: %s", message)
                return self._finish(
                    emit,
                    ExecutionResult(
                        success=False,
                        stderr=message,
                        exit_code=ANALYSIS_FAILURE_EXIT_CODE,
                        execution_time=_elapsed(started),
                        error="Syntax check failed",
                    ),
                )

        source = code if policy.allow_unsafe else self._sanitize_code(code)
        with contextlib.ExitStack() as stack:
            try:
                script_path = stack.enter_context(transient_script(source, EXEC_FILE_PREFIX))
            except OSError as exc:
                message = f"Execution failed: {exc}"
                return self._finish(
                    emit,
                    ExecutionResult(
                        success=False,
                        stderr=message,
                        exit_code=SPAWN_FAILURE_EXIT_CODE,
                        execution_time=_elapsed(started),
                        error=message,
                    ),
                )
            return await self._spawn_and_collect(script_path, policy, options, emit, started)

    async def _spawn_and_collect(
        self,
        script_path: Path,
        policy: RunnerPolicy,
        options: ExecutionOptions,
        emit: EventCallback | None,
        started: float,
    ) -> ExecutionResult:
        """Spawn the interpreter on `script_path`, enforce the timeout, build the result.

        Example:
            ```python
            result = await engine._spawn_and_collect(path, policy, ExecutionOptions(), None, started)
            ```
        """
        env = dict(policy.environment)
        env.update(options.env)
        cwd = options.cwd or policy.working_directory
        timeout = policy.effective_timeout(options.timeout_seconds)

        try:
            process = await asyncio.create_subprocess_exec(
                policy.interpreter_path,
                str(script_path),
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                cwd=cwd,
                env=env,
            )
        except OSError as exc:
            message = f"Failed to start interpreter {policy.interpreter_path!r}: {exc}"
            logger.warning(message)
            if emit is not None:
                emit(_event(StreamEventKind.ERROR, message))
            return self._finish(
                emit,
                ExecutionResult(
                    success=False,
                    stderr=message,
                    exit_code=SPAWN_FAILURE_EXIT_CODE,
                    execution_time=_elapsed(started),
                    error=message,
                ),
            )

        execution_id = self._arena.next_id()
        self._arena.track(execution_id, process, script_path)
        logger.debug("Execution %d spawned pid %s for %s", execution_id, process.pid, script_path)

        collector = _OutputCollector(policy, emit)
        if process.stdout is None or process.stderr is None:
            self._arena.release(execution_id)
            _kill_quietly(process)
            raise RuntimeError(f"Execution {execution_id} spawned without output pipes")
        pump = asyncio.gather(
            collector.pump(process.stdout, StreamEventKind.STDOUT),
            collector.pump(process.stderr, StreamEventKind.STDERR),
        )
        timed_out = False
        try:
            try:
                await asyncio.wait_for(asyncio.shield(pump), timeout=timeout or None)
            except TimeoutError:
                timed_out = True
                logger.warning("Execution %d timed out after %ss", execution_id, timeout)
                _kill_quietly(process)
                if emit is not None:
                    emit(_event(StreamEventKind.TIMEOUT, f"Execution timed out after {timeout}s"))
                await pump
            returncode = await process.wait()
        except BaseException:
            pump.cancel()
            _kill_quietly(process)
            with contextlib.suppress(asyncio.CancelledError):
                await asyncio.shield(process.wait())
            raise
        finally:
            self._arena.release(execution_id)

        exit_code = 0 if returncode is None else returncode
        result = ExecutionResult(
            success=not timed_out and exit_code == 0,
            stdout=collector.stdout,
            stderr=collector.stderr,
            exit_code=exit_code,
            execution_time=_elapsed(started),
            timed_out=timed_out,
            error=f"Execution timed out after {timeout}s" if timed_out else None,
        )
        logger.debug("Execution %d finished with exit code %d", execution_id, exit_code)
        return self._finish(emit, result)
