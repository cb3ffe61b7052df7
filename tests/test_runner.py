import asyncio
import contextlib
import os
import sys
import tempfile
from pathlib import Path

import pytest

from vuln_py_runner import (
    ExecutionOptions,
    LocalEngine,
    RunnerPolicy,
    StreamEvent,
    StreamEventKind,
    TEST_SNIPPETS,
    create_preset_engine,
    run_code,
)


def _engine(**overrides) -> LocalEngine:
    fields = {"analysis_enabled": False, "timeout_seconds": 10, **overrides}
    return LocalEngine(policy=RunnerPolicy(**fields))


async def _wait_until_active(engine: LocalEngine, count: int = 1) -> None:
    for _ in range(500):
        if engine.active_count >= count:
            return
        await asyncio.sleep(0.01)
    raise AssertionError("execution never became active")


@pytest.mark.asyncio
async def test_hello_world_under_safe_preset() -> None:
    engine = create_preset_engine("safe")
    result = await engine.execute(TEST_SNIPPETS["hello"])

    assert result.success is True
    assert "Hello, World!" in result.stdout
    assert result.exit_code == 0
    assert result.execution_time > 0
    assert result.timed_out is False
    assert result.error is None


@pytest.mark.asyncio
async def test_undefined_name_is_runtime_failure() -> None:
    result = await create_preset_engine("safe").execute(TEST_SNIPPETS["error"])

    assert result.success is False
    assert "NameError" in result.stderr
    assert result.exit_code != 0


@pytest.mark.asyncio
async def test_stdout_and_stderr_are_captured_separately() -> None:
    code = 'import sys\nprint("to stdout")\nprint("to stderr", file=sys.stderr)'
    result = await _engine().execute(code)

    assert result.success is True
    assert result.stdout == "to stdout\n"
    assert result.stderr == "to stderr\n"


@pytest.mark.asyncio
async def test_exit_code_is_reported() -> None:
    result = await _engine().execute("import sys\nsys.exit(3)")

    assert result.success is False
    assert result.exit_code == 3


@pytest.mark.asyncio
async def test_timeout_kills_process() -> None:
    engine = _engine(timeout_seconds=1)
    result = await engine.execute("import time\ntime.sleep(10)\nprint('late')")

    assert result.success is False
    assert result.timed_out is True
    assert "late" not in result.stdout
    assert 1 <= result.execution_time < 6
    assert "timed out" in (result.error or "")
    assert engine.active_count == 0


@pytest.mark.asyncio
async def test_per_call_timeout_overrides_policy() -> None:
    result = await _engine(timeout_seconds=30).execute(
        "import time\ntime.sleep(10)", ExecutionOptions(timeout_seconds=1)
    )

    assert result.timed_out is True
    assert result.execution_time < 6


@pytest.mark.asyncio
async def test_zero_timeout_arms_no_timer() -> None:
    result = await _engine(timeout_seconds=0).execute("import time\ntime.sleep(0.3)\nprint('ok')")

    assert result.success is True
    assert result.timed_out is False
    assert result.stdout == "ok\n"


@pytest.mark.asyncio
async def test_streaming_emits_timeout_once_before_complete() -> None:
    events: list[StreamEvent] = []
    result = await _engine(timeout_seconds=1).execute_streaming(
        "import time\ntime.sleep(10)", on_event=events.append
    )

    kinds = [event.kind for event in events]
    assert kinds.count(StreamEventKind.TIMEOUT) == 1
    assert kinds[-1] is StreamEventKind.COMPLETE
    assert kinds.index(StreamEventKind.TIMEOUT) < len(kinds) - 1
    assert events[-1].result is result
    assert result.success is False


@pytest.mark.asyncio
async def test_streaming_delivers_chunks_in_order_and_complete_last() -> None:
    code = "import time\nfor i in range(3):\n    print(i, flush=True)\n    time.sleep(0.05)"
    events: list[StreamEvent] = []
    result = await _engine().execute_streaming(code, on_event=events.append)

    streamed = "".join(e.data for e in events if e.kind is StreamEventKind.STDOUT)
    assert streamed == "0\n1\n2\n"
    assert events[-1].kind is StreamEventKind.COMPLETE
    assert [e.kind for e in events].count(StreamEventKind.COMPLETE) == 1
    timestamps = [e.timestamp for e in events]
    assert timestamps == sorted(timestamps)
    assert result.stdout == "0\n1\n2\n"


@pytest.mark.asyncio
async def test_stream_iterator_ends_with_complete_event() -> None:
    engine = _engine()
    events = [event async for event in engine.stream('print("streamed")')]

    assert events[-1].kind is StreamEventKind.COMPLETE
    assert events[-1].result is not None
    assert events[-1].result.stdout == "streamed\n"
    assert any(e.kind is StreamEventKind.STDOUT for e in events)


@pytest.mark.asyncio
async def test_execute_with_stream_flag_still_returns_result() -> None:
    result = await _engine().execute('print("flag")', ExecutionOptions(stream=True))

    assert result.success is True
    assert result.stdout == "flag\n"


@pytest.mark.asyncio
async def test_line_limit_suppresses_stdout_events_but_not_stderr() -> None:
    code = (
        "import sys, time\n"
        "for i in range(10):\n"
        "    print(i, flush=True)\n"
        "    time.sleep(0.02)\n"
        "print('still running', file=sys.stderr)\n"
    )
    events: list[StreamEvent] = []
    result = await _engine(max_output_lines=3).execute_streaming(code, on_event=events.append)

    streamed = "".join(e.data for e in events if e.kind is StreamEventKind.STDOUT)
    assert streamed.count("\n") < 3
    assert any("still running" in e.data for e in events if e.kind is StreamEventKind.STDERR)
    assert result.success is True
    assert result.stdout.count("\n") == 10


@pytest.mark.asyncio
async def test_unsafe_policy_waives_line_limit() -> None:
    code = "for i in range(10):\n    print(i, flush=True)"
    events: list[StreamEvent] = []
    await _engine(max_output_lines=3, allow_unsafe=True).execute_streaming(
        code, on_event=events.append
    )

    streamed = "".join(e.data for e in events if e.kind is StreamEventKind.STDOUT)
    assert streamed.count("\n") == 10


@pytest.mark.asyncio
async def test_missing_interpreter_returns_failed_result() -> None:
    engine = _engine(interpreter_path="/nonexistent/vpr-python")
    result = await engine.execute('print("never")')

    assert result.success is False
    assert result.exit_code == 1
    assert "Failed to start interpreter" in result.stderr
    assert result.stdout == ""
    assert result.execution_time >= 0
    assert engine.active_count == 0


@pytest.mark.asyncio
async def test_missing_interpreter_streams_error_then_complete() -> None:
    events: list[StreamEvent] = []
    result = await _engine(interpreter_path="/nonexistent/vpr-python").execute_streaming(
        "print(1)", on_event=events.append
    )

    assert [e.kind for e in events] == [StreamEventKind.ERROR, StreamEventKind.COMPLETE]
    assert result.success is False


@pytest.mark.asyncio
async def test_missing_interpreter_with_analysis_is_gated_failure() -> None:
    engine = LocalEngine(policy=RunnerPolicy(interpreter_path="/nonexistent/vpr-python"))
    result = await engine.execute("print(1)")

    assert result.success is False
    assert "Interpreter execution error" in result.stderr


@pytest.mark.asyncio
async def test_syntax_error_is_rejected_before_spawn(monkeypatch: pytest.MonkeyPatch) -> None:
    async def _no_spawn(*args, **kwargs):
        raise AssertionError("process must not be spawned")

    engine = create_preset_engine("safe")
    monkeypatch.setattr(engine, "_spawn_and_collect", _no_spawn)
    result = await engine.execute("def incomplete_function(")

    assert result.success is False
    assert result.exit_code != 0
    assert "SyntaxError" in result.stderr


@pytest.mark.asyncio
async def test_sanitize_false_skips_analysis_gate() -> None:
    result = await create_preset_engine("safe").execute(
        "def incomplete_function(", ExecutionOptions(sanitize=False)
    )

    assert result.success is False
    # The interpreter itself reports the fault, not the analysis gate.
    assert result.error is None
    assert "SyntaxError" in result.stderr


@pytest.mark.asyncio
async def test_environment_overlay_and_cwd(tmp_path: Path) -> None:
    engine = _engine(environment=dict(os.environ, VPR_BASE="base", VPR_SHARED="policy"))
    code = (
        "import os\n"
        "print(os.environ['VPR_BASE'])\n"
        "print(os.environ['VPR_SHARED'])\n"
        "print(os.getcwd())\n"
    )
    result = await engine.execute(
        code, ExecutionOptions(env={"VPR_SHARED": "call"}, cwd=str(tmp_path))
    )

    base, shared, cwd = result.stdout.splitlines()
    assert base == "base"
    assert shared == "call"
    assert Path(cwd).resolve() == tmp_path.resolve()


@pytest.mark.asyncio
async def test_transient_files_are_removed(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    monkeypatch.setattr(tempfile, "tempdir", str(tmp_path))
    engine = create_preset_engine("safe")

    ok = await engine.execute('print("cleanup")')
    failed = await engine.execute("raise SystemExit(2)")
    timed_out = await engine.execute("import time\ntime.sleep(5)", ExecutionOptions(timeout_seconds=0.5))

    assert ok.success and not failed.success and timed_out.timed_out
    assert list(tmp_path.iterdir()) == []


@pytest.mark.asyncio
async def test_concurrent_executions_are_independent() -> None:
    engine = _engine()
    literals = [f"literal-{n}" for n in range(5)]
    results = await asyncio.gather(
        *(engine.execute(f"import time\ntime.sleep(0.1)\nprint({text!r})") for text in literals)
    )

    for text, result in zip(literals, results):
        assert result.success is True
        assert result.stdout == f"{text}\n"
    assert engine.active_count == 0


@pytest.mark.asyncio
async def test_kill_all_terminates_tracked_processes() -> None:
    engine = _engine(timeout_seconds=0)
    tasks = [
        asyncio.create_task(engine.execute("import time\ntime.sleep(30)")) for _ in range(2)
    ]
    await _wait_until_active(engine, 2)

    engine.kill_all()
    assert engine.active_count == 0
    results = await asyncio.wait_for(asyncio.gather(*tasks), timeout=10)

    for result in results:
        assert result.success is False
        assert result.timed_out is False
        assert result.exit_code != 0


def test_kill_all_without_executions_is_noop() -> None:
    engine = _engine()
    engine.kill_all()
    engine.kill_all()
    assert engine.active_count == 0


@pytest.mark.asyncio
async def test_update_policy_does_not_affect_running_execution() -> None:
    engine = _engine()
    task = asyncio.create_task(engine.execute("import time\ntime.sleep(0.2)\nprint('done')"))
    await asyncio.sleep(0)
    engine.update_policy(interpreter_path="/nonexistent/vpr-python", timeout_seconds=0.01)
    result = await task

    assert result.success is True
    assert result.stdout == "done\n"
    assert engine.get_policy().interpreter_path == "/nonexistent/vpr-python"


def test_run_code_sync_wrapper() -> None:
    result = run_code('print("sync")', preset="testing")

    assert result.success is True
    assert result.stdout == "sync\n"


def test_run_code_rejects_engine_and_preset_together() -> None:
    with pytest.raises(ValueError, match="Provide either 'engine' or 'preset'"):
        run_code("print(1)", engine=_engine(), preset="safe")


@pytest.mark.asyncio
async def test_default_interpreter_is_current_python() -> None:
    result = await _engine().execute("import sys\nprint(sys.executable)")

    assert Path(result.stdout.strip()).resolve() == Path(sys.executable).resolve()


@pytest.mark.asyncio
async def test_abandoned_stream_kills_and_reaps_child(monkeypatch: pytest.MonkeyPatch) -> None:
    engine = _engine(timeout_seconds=0)
    spawned: list[asyncio.subprocess.Process] = []
    real_spawn = asyncio.create_subprocess_exec

    async def _recording_spawn(*args, **kwargs):
        process = await real_spawn(*args, **kwargs)
        spawned.append(process)
        return process

    monkeypatch.setattr(asyncio, "create_subprocess_exec", _recording_spawn)
    code = "import time\nprint('started', flush=True)\ntime.sleep(30)"
    async with contextlib.aclosing(engine.stream(code)) as events:
        async for event in events:
            assert event.kind is StreamEventKind.STDOUT
            break

    assert engine.active_count == 0
    assert len(spawned) == 1
    assert spawned[0].returncode is not None
