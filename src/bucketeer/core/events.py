"""Event bus for best-effort lifecycle notifications.

Provides a lightweight publish/subscribe system that lets the storage core
announce bucket and file lifecycle changes without depending on the transport
that relays them (web sockets, queues, audit logs). Hooks can be sync or async.

Delivery is best effort: a failing hook is logged and skipped, and a failed
notification never rolls back the storage mutation that produced it.

Usage::

    from bucketeer.core.events import BUCKET_CREATED, Event, EventBus

    bus = EventBus()

    async def relay(event: Event) -> None:
        print(f"Bucket created: {event.payload}")

    bus.on(BUCKET_CREATED, relay)
    await bus.emit(Event(name=BUCKET_CREATED, payload={"user": "alice"}, source="buckets"))
"""

from __future__ import annotations

import inspect
from collections import defaultdict
from dataclasses import dataclass, field
from time import time
from typing import Any

from loguru import logger

# ---------------------------------------------------------------------------
# Well-known event names
# ---------------------------------------------------------------------------

BUCKET_CREATED = "bucket.created"
BUCKET_REMOVED = "bucket.removed"
FILE_UPLOADED = "file.uploaded"
FILES_REMOVED = "files.removed"

# Type alias for hook callables (sync or async)
Hook = Any  # Callable[[Event], None] | Callable[[Event], Awaitable[None]]


# ---------------------------------------------------------------------------
# Event model
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Event:
    """An immutable event that flows through the bus."""

    name: str
    payload: dict[str, Any] = field(default_factory=dict)
    timestamp: float = field(default_factory=time)
    source: str = ""


# ---------------------------------------------------------------------------
# EventBus
# ---------------------------------------------------------------------------


class EventBus:
    """Simple pub/sub event bus supporting sync and async hooks."""

    def __init__(self) -> None:
        self._hooks: dict[str, list[Hook]] = defaultdict(list)
        self._wildcard_hooks: list[Hook] = []

    def on(self, event_name: str, hook: Hook) -> None:
        """Register *hook* for a specific event name."""
        self._hooks[event_name].append(hook)

    def on_all(self, hook: Hook) -> None:
        """Register *hook* for all events (wildcard)."""
        self._wildcard_hooks.append(hook)

    def off(self, event_name: str, hook: Hook) -> None:
        """Unregister *hook* from a specific event name."""
        try:
            self._hooks[event_name].remove(hook)
        except ValueError:
            pass

    async def emit(self, event: Event) -> None:
        """Publish an event, settling once every matching hook has run."""
        hooks = list(self._hooks.get(event.name, []))
        hooks.extend(self._wildcard_hooks)
        for hook in hooks:
            try:
                if inspect.iscoroutinefunction(hook):
                    await hook(event)
                else:
                    hook(event)
            except Exception as exc:
                logger.warning(f"Event hook failed for {event.name}: {exc}")
