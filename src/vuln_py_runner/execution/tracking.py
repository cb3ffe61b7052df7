from __future__ import annotations

import asyncio
import itertools
import logging
from dataclasses import dataclass
from pathlib import Path

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class TrackedHandle:
    """Link between a live guest process and its transient script file.

    Example:
        ```python
        handle = TrackedHandle(execution_id=1, process=proc, script_path=Path("/tmp/x.py"))
        ```
    """

    execution_id: int
    process: asyncio.subprocess.Process
    script_path: Path


class ProcessArena:
    """Live guest processes indexed by a monotonically increasing execution id.

    An entry exists from spawn until the execution's terminal event. Release is
    idempotent, so a `kill_all` that already cleared the arena and the later
    terminal release never double-release.

    Example:
        ```python
        arena = ProcessArena()
        ```
    """

    def __init__(self) -> None:
        """Initialize an empty arena.

        Example:
            ```python
            arena = ProcessArena()
            ```
        """
        self._ids = itertools.count(1)
        self._live: dict[int, TrackedHandle] = {}

    def next_id(self) -> int:
        """Reserve the next execution id.

        Example:
            ```python
            execution_id = arena.next_id()
            ```
        """
        return next(self._ids)

    def track(
        self,
        execution_id: int,
        process: asyncio.subprocess.Process,
        script_path: Path,
    ) -> TrackedHandle:
        """Register a freshly spawned process.

        Example:
            ```python
            handle = arena.track(execution_id, proc, path)
            ```
        """
        handle = TrackedHandle(execution_id, process, script_path)
        self._live[execution_id] = handle
        return handle

    def release(self, execution_id: int) -> TrackedHandle | None:
        """Drop an entry on its terminal event; a second release is a no-op.

        Example:
            ```python
            arena.release(execution_id)
            ```
        """
        return self._live.pop(execution_id, None)

    def kill_all(self) -> int:
        """Send SIGKILL to every live entry without waiting, then clear the arena.

        Example:
            ```python
            killed = arena.kill_all()
            ```
        """
        handles = list(self._live.values())
        self._live.clear()
        for handle in handles:
            try:
                handle.process.kill()
            except OSError as exc:
                logger.debug("Execution %d not killed: %s", handle.execution_id, exc)
        return len(handles)

    def __contains__(self, execution_id: object) -> bool:
        """Return whether an execution id is still live.

        Example:
            ```python
            assert execution_id in arena
            ```
        """
        return execution_id in self._live

    def __len__(self) -> int:
        """Return the number of live entries.

        Example:
            ```python
            count = len(arena)
            ```
        """
        return len(self._live)
