# src/pipeline/events.py — v1
"""Progress notifications emitted by the executor.

Listeners are observers only: SafeNotifier logs and swallows anything a
listener raises, so a broken progress sink never changes a run's outcome.
"""

from __future__ import annotations

import inspect
import logging
from collections.abc import Callable
from typing import Any

from stageflow.core.models import Phase
from stageflow.recovery.models import OrchestrationError

logger = logging.getLogger(__name__)


class ProgressListener:
    """Base listener with no-op hooks. Override the ones you need."""

    async def on_progress(self, progress: int, message: str) -> None:
        pass

    async def on_phase_change(self, phase: Phase, agent: str | None) -> None:
        pass

    async def on_agent_start(self, agent: str) -> None:
        pass

    async def on_agent_complete(self, agent: str, output: dict[str, Any]) -> None:
        pass

    async def on_error(self, error: OrchestrationError) -> None:
        pass


class CallbackListener(ProgressListener):
    """Listener built from optional plain or async callables."""

    def __init__(
        self,
        on_progress: Callable[..., Any] | None = None,
        on_phase_change: Callable[..., Any] | None = None,
        on_agent_start: Callable[..., Any] | None = None,
        on_agent_complete: Callable[..., Any] | None = None,
        on_error: Callable[..., Any] | None = None,
    ) -> None:
        self._callbacks = {
            "progress": on_progress,
            "phase_change": on_phase_change,
            "agent_start": on_agent_start,
            "agent_complete": on_agent_complete,
            "error": on_error,
        }

    async def _call(self, event: str, *args: Any) -> None:
        callback = self._callbacks[event]
        if callback is None:
            return
        result = callback(*args)
        if inspect.isawaitable(result):
            await result

    async def on_progress(self, progress: int, message: str) -> None:
        await self._call("progress", progress, message)

    async def on_phase_change(self, phase: Phase, agent: str | None) -> None:
        await self._call("phase_change", phase, agent)

    async def on_agent_start(self, agent: str) -> None:
        await self._call("agent_start", agent)

    async def on_agent_complete(self, agent: str, output: dict[str, Any]) -> None:
        await self._call("agent_complete", agent, output)

    async def on_error(self, error: OrchestrationError) -> None:
        await self._call("error", error)


class SafeNotifier:
    """Forward events to a listener, logging and dropping listener failures."""

    def __init__(self, listener: ProgressListener | None = None) -> None:
        self._listener = listener or ProgressListener()

    async def _emit(self, hook: str, *args: Any) -> None:
        try:
            await getattr(self._listener, hook)(*args)
        except Exception as exc:
            logger.warning("Progress listener %s failed: %s", hook, exc)

    async def progress(self, progress: int, message: str) -> None:
        await self._emit("on_progress", progress, message)

    async def phase_change(self, phase: Phase, agent: str | None) -> None:
        await self._emit("on_phase_change", phase, agent)

    async def agent_start(self, agent: str) -> None:
        await self._emit("on_agent_start", agent)

    async def agent_complete(self, agent: str, output: dict[str, Any]) -> None:
        await self._emit("on_agent_complete", agent, output)

    async def error(self, error: OrchestrationError) -> None:
        await self._emit("on_error", error)
