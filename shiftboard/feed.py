from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import dataclass
from typing import Any, Callable, Literal

logger = logging.getLogger(__name__)

EventKind = Literal["insert", "update", "delete"]
EVENT_KINDS = ("insert", "update", "delete")

EMPLOYEES = "employees"
ANNOUNCEMENTS = "announcements"
ASSIGNMENTS = "schedule_assignments"


@dataclass(frozen=True)
class ChangeEvent:
    kind: EventKind
    table: str
    old: dict[str, Any] | None = None
    new: dict[str, Any] | None = None

    @property
    def record(self) -> dict[str, Any] | None:
        return self.old if self.kind == "delete" else self.new


Handler = Callable[[ChangeEvent], None]


class ChangeFeed:
    def __init__(self) -> None:
        self._handlers: dict[str, list[Handler]] = defaultdict(list)

    def subscribe(self, table: str, handler: Handler) -> Callable[[], None]:
        self._handlers[table].append(handler)

        def unsubscribe() -> None:
            if handler in self._handlers[table]:
                self._handlers[table].remove(handler)

        return unsubscribe

    def publish(self, event: ChangeEvent) -> None:
        handlers = list(self._handlers.get(event.table, ()))
        if not handlers:
            logger.debug("No subscribers for %s event on %s", event.kind, event.table)
        for handler in handlers:
            handler(event)

    def subscriber_count(self, table: str) -> int:
        return len(self._handlers.get(table, ()))
