"""
Typed notifications for a rendering layer.

Listeners implement any subset of ``TreeListener``; ``TreeEvents`` fans each
event out to every registered listener.  A failing listener is logged and
never interrupts tree growth.
"""

from __future__ import annotations

from typing import Protocol

from loguru import logger

from .models import (
    ConnectionCreatedEvent,
    GenerationCompleteEvent,
    LayoutUpdatedEvent,
    NodeAddedEvent,
)


class TreeListener(Protocol):
    def on_node_added(self, event: NodeAddedEvent) -> None: ...

    def on_connection_created(self, event: ConnectionCreatedEvent) -> None: ...

    def on_layout_updated(self, event: LayoutUpdatedEvent) -> None: ...

    def on_generation_complete(self, event: GenerationCompleteEvent) -> None: ...


class TreeEvents:
    def __init__(self) -> None:
        self._listeners: list[object] = []

    def add_listener(self, listener: object) -> None:
        self._listeners.append(listener)

    def remove_listener(self, listener: object) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def _emit(self, method: str, event: object) -> None:
        for listener in list(self._listeners):
            handler = getattr(listener, method, None)
            if handler is None:
                continue
            try:
                handler(event)
            except Exception as exc:
                logger.warning(f"Tree listener {type(listener).__name__}.{method} failed: {exc}")

    def node_added(self, event: NodeAddedEvent) -> None:
        self._emit("on_node_added", event)

    def connection_created(self, event: ConnectionCreatedEvent) -> None:
        self._emit("on_connection_created", event)

    def layout_updated(self, event: LayoutUpdatedEvent) -> None:
        self._emit("on_layout_updated", event)

    def generation_complete(self, event: GenerationCompleteEvent) -> None:
        self._emit("on_generation_complete", event)


class EventRecorder:
    """Listener that keeps every event it receives, in order."""

    def __init__(self) -> None:
        self.events: list[tuple[str, object]] = []

    def on_node_added(self, event: NodeAddedEvent) -> None:
        self.events.append(("node_added", event))

    def on_connection_created(self, event: ConnectionCreatedEvent) -> None:
        self.events.append(("connection_created", event))

    def on_layout_updated(self, event: LayoutUpdatedEvent) -> None:
        self.events.append(("layout_updated", event))

    def on_generation_complete(self, event: GenerationCompleteEvent) -> None:
        self.events.append(("generation_complete", event))

    def of_kind(self, kind: str) -> list:
        return [e for k, e in self.events if k == kind]
