"""Replay engine seams: lifecycle hooks, node lookup, and overlay mounting."""

import inspect
import logging
from collections.abc import Awaitable, Callable
from enum import StrEnum
from typing import TYPE_CHECKING, Any, Protocol

if TYPE_CHECKING:
    from .overlay import OverlaySpec

# Configure module logger
_module_logger = logging.getLogger(__name__)


class ReplayEvent(StrEnum):
    """Playback transitions a replay engine reports."""

    PLAY = "play"
    PAUSE = "pause"
    SEEK = "seek"


# Called with the playback time (ms) the transition happened at
Hook = Callable[[float], Awaitable[None] | None]


class ReplayLifecycle:
    """Registry of playback hooks.

    The replay engine (or a test) calls ``emit`` on every play, pause and
    seek; subscribers are called in registration order and may be sync or
    async.
    """

    def __init__(self) -> None:
        self._hooks: dict[ReplayEvent, list[Hook]] = {event: [] for event in ReplayEvent}

    def on(self, event: ReplayEvent | str, callback: Hook) -> None:
        self._hooks[ReplayEvent(event)].append(callback)

    def off(self, event: ReplayEvent | str, callback: Hook) -> None:
        hooks = self._hooks[ReplayEvent(event)]
        if callback in hooks:
            hooks.remove(callback)

    def hooks(self, event: ReplayEvent | str) -> list[Hook]:
        return list(self._hooks[ReplayEvent(event)])

    async def emit(self, event: ReplayEvent | str, current_time: float) -> None:
        """Run every hook registered for ``event``."""
        event = ReplayEvent(event)
        _module_logger.debug(f"Replay {event} at {current_time}ms")
        for callback in list(self._hooks[event]):
            result = callback(current_time)
            if inspect.isawaitable(result):
                await result


class ReplayMirror(Protocol):
    """Maps serialized node ids to the nodes of the live replayed document."""

    def get_node(self, node_id: int) -> Any | None: ...


class OverlayLayer(Protocol):
    """Mounts overlay boxes into the replay engine's overlay container."""

    async def mount(self, spec: "OverlaySpec", node: Any) -> Any:
        """Mount one overlay over ``node`` and return a token for ``unmount``."""
        ...

    async def unmount(self, token: Any) -> None: ...

    async def clear(self) -> None: ...
