from __future__ import annotations

import inspect
import logging
from collections import defaultdict
from dataclasses import dataclass
from typing import Any, Awaitable, Callable


LOGGER = logging.getLogger(__name__)

HookCallback = Callable[[dict[str, Any]], object | Awaitable[object]]

WORKFLOW_EXECUTION_START = "workflow_execution_start"
WORKFLOW_EXECUTION_COMPLETE = "workflow_execution_complete"
WORKFLOW_EXECUTION_ERROR = "workflow_execution_error"
NODE_EXECUTION_START = "node_execution_start"
NODE_EXECUTION_COMPLETE = "node_execution_complete"
NODE_EXECUTION_ERROR = "node_execution_error"

WORKFLOW_EVENTS = {
    WORKFLOW_EXECUTION_START,
    WORKFLOW_EXECUTION_COMPLETE,
    WORKFLOW_EXECUTION_ERROR,
    NODE_EXECUTION_START,
    NODE_EXECUTION_COMPLETE,
    NODE_EXECUTION_ERROR,
}


@dataclass(slots=True)
class HookInvocation:
    event: str
    callback_name: str
    result: object | None
    error: str | None = None


class GraphHookRegistry:
    """Lifecycle listeners for workflow runs.

    A failing listener is logged and recorded on its invocation; the remaining
    listeners still run and the workflow run is never interrupted.
    """

    def __init__(self) -> None:
        self._callbacks: dict[str, list[HookCallback]] = defaultdict(list)

    def register(self, event: str, callback: HookCallback) -> None:
        if event not in WORKFLOW_EVENTS:
            allowed = ", ".join(sorted(WORKFLOW_EVENTS))
            raise ValueError(f"Unknown workflow event '{event}'. Use one of: {allowed}.")
        self._callbacks[event].append(callback)

    def unregister(self, event: str, callback: HookCallback) -> bool:
        callbacks = self._callbacks.get(event, [])
        if callback in callbacks:
            callbacks.remove(callback)
            return True
        return False

    def clear(self, event: str | None = None) -> None:
        if event is None:
            self._callbacks.clear()
            return
        self._callbacks.pop(event, None)

    def callbacks_for(self, event: str) -> list[HookCallback]:
        return list(self._callbacks.get(event, []))

    async def emit(self, event: str, context: dict[str, Any]) -> list[HookInvocation]:
        invocations: list[HookInvocation] = []
        for callback in self.callbacks_for(event):
            callback_name = str(getattr(callback, "__name__", callback.__class__.__name__))
            try:
                result = callback(dict(context))
                if inspect.isawaitable(result):
                    result = await result
            except Exception as exc:  # noqa: BLE001
                LOGGER.debug("Listener %s for %s failed: %s", callback_name, event, exc)
                invocations.append(HookInvocation(event=event, callback_name=callback_name, result=None, error=str(exc)))
                continue
            invocations.append(HookInvocation(event=event, callback_name=callback_name, result=result))
        return invocations
