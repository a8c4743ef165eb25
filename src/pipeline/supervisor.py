# src/pipeline/supervisor.py — v2
"""Run supervisor — one asyncio task per active session.

Sessions are independent and each gets its own executor from the
factory, so runs never share per-run state. Starting a session that is
still running raises SessionBusyError. A task leaves the map as soon as
it finishes; its result stays reachable through the task returned by
``start`` or ``resume``.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Coroutine
from typing import Any

from stageflow.core.errors import StageflowError
from stageflow.pipeline.executor import ExecutionResult, PipelineExecutor

logger = logging.getLogger(__name__)


class SessionBusyError(StageflowError):
    """Raised when a session already has a run in flight."""

    def __init__(self, session_id: str) -> None:
        self.session_id = session_id
        super().__init__(f"Session {session_id} is already running")


class RunSupervisor:
    """Own the session_id -> task map for concurrent runs.

    Args:
        executor_factory: Builds a fresh PipelineExecutor per run.
    """

    def __init__(self, executor_factory: Callable[[], PipelineExecutor]) -> None:
        self._factory = executor_factory
        self._tasks: dict[str, asyncio.Task[ExecutionResult]] = {}

    def start(self, session_id: str, user_id: str = "", theme: str = "") -> asyncio.Task[ExecutionResult]:
        """Schedule a fresh run. Must be called from a running event loop."""
        executor = self._factory()
        return self._spawn(session_id, executor.execute_full(session_id, user_id, theme))

    def resume(self, session_id: str, user_id: str = "", theme: str = "") -> asyncio.Task[ExecutionResult]:
        """Schedule a resume from the session's latest checkpoint."""
        executor = self._factory()
        return self._spawn(
            session_id, executor.resume_from_checkpoint(session_id, user_id, theme)
        )

    async def wait(self, session_id: str) -> ExecutionResult:
        """Wait for a session's in-flight run to finish.

        Raises:
            KeyError: If the session has no run in flight. A run that has
                already finished is no longer tracked.
        """
        task = self._tasks.get(session_id)
        if task is None:
            raise KeyError(session_id)
        return await task

    def active_sessions(self) -> list[str]:
        return [sid for sid, task in self._tasks.items() if not task.done()]

    def is_active(self, session_id: str) -> bool:
        task = self._tasks.get(session_id)
        return task is not None and not task.done()

    async def shutdown(self) -> None:
        """Cancel every active run and wait for the tasks to settle."""
        active = [task for task in self._tasks.values() if not task.done()]
        if active:
            logger.info("Cancelling %d active runs", len(active))
        for task in active:
            task.cancel()
        await asyncio.gather(*active, return_exceptions=True)
        self._tasks.clear()

    def _spawn(
        self, session_id: str, coro: Coroutine[Any, Any, ExecutionResult]
    ) -> asyncio.Task[ExecutionResult]:
        if self.is_active(session_id):
            coro.close()
            raise SessionBusyError(session_id)
        task = asyncio.create_task(coro, name=f"stageflow:{session_id}")
        self._tasks[session_id] = task
        task.add_done_callback(lambda t, sid=session_id: self._forget(sid, t))
        logger.debug("Started run task for session %s", session_id)
        return task

    def _forget(self, session_id: str, task: asyncio.Task[ExecutionResult]) -> None:
        # A restarted session may already own a newer task.
        if self._tasks.get(session_id) is task:
            del self._tasks[session_id]
