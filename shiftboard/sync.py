from __future__ import annotations

import logging
import threading
import uuid
from dataclasses import dataclass, field
from datetime import date
from typing import Any

from shiftboard.feed import ANNOUNCEMENTS, ASSIGNMENTS, EMPLOYEES, EVENT_KINDS, ChangeEvent
from shiftboard.remote import RemoteError, SqlRemote
from shiftboard.store import (
    AssignmentStore,
    KeyedProjection,
    dedupe_names,
    name_key,
    normalize_announcement,
    normalize_work_date,
)

logger = logging.getLogger(__name__)

__all__ = ["InvalidInput", "NotFound", "RemoteError", "ScheduleCache", "SlotDiff"]

LEVELS = ("red", "orange", "green", "blue")
TYPES = ("announcement", "info")
STATUSES = ("draft", "published")
DEFAULT_LEVEL_FOR_TYPE = {"announcement": "blue", "info": "green"}
PATCHABLE_ANNOUNCEMENT_FIELDS = {"text", "level", "type", "status", "published"}


class InvalidInput(ValueError):
    pass


class NotFound(LookupError):
    pass


@dataclass
class SlotDiff:
    inserted: list[str] = field(default_factory=list)
    deleted_ids: list[str] = field(default_factory=list)

    @property
    def write_count(self) -> int:
        return len(self.inserted) + len(self.deleted_ids)


def _require_uuid(value: Any, label: str = "id") -> str:
    if not isinstance(value, str):
        raise InvalidInput(f"{label} must be a UUID string")
    try:
        return str(uuid.UUID(value))
    except ValueError:
        raise InvalidInput(f"{label} must be a UUID string") from None


def _require_text(value: Any, label: str) -> str:
    if not isinstance(value, str) or not value.strip():
        raise InvalidInput(f"{label} is required")
    return value.strip()


def _require_choice(value: Any, choices: tuple[str, ...], label: str) -> str:
    if value not in choices:
        raise InvalidInput(f"{label} must be one of: {', '.join(choices)}")
    return value


def _require_date(value: Any) -> date:
    day = normalize_work_date(value)
    if day is None:
        raise InvalidInput("work_date must be an ISO date (YYYY-MM-DD)")
    return date.fromisoformat(day)


def _status_from_patch(patch: dict[str, Any]) -> str | None:
    status = patch.get("status")
    published = patch.get("published")
    if status is not None:
        _require_choice(status, STATUSES, "status")
    if published is not None and not isinstance(published, bool):
        raise InvalidInput("published must be a boolean")
    if status is not None and published is not None and (status == "published") != published:
        raise InvalidInput("status and published disagree")
    if status is not None:
        return status
    if published is not None:
        return "published" if published else "draft"
    return None


class ScheduleCache:
    def __init__(self, remote: SqlRemote) -> None:
        self.remote = remote
        self.assignments = AssignmentStore(slot_loader=self._load_slot_names)
        self.announcements = KeyedProjection("id", normalize=normalize_announcement)
        self.employees = KeyedProjection("id")
        self._lock = threading.RLock()
        self._unsubscribe: list = []

    @property
    def ready(self) -> bool:
        return self.assignments.hydrated and self.announcements.hydrated and self.employees.hydrated

    @property
    def attached(self) -> bool:
        return bool(self._unsubscribe)

    def attach(self) -> None:
        with self._lock:
            if self.attached:
                return
            self.reload()
            feed = self.remote.feed
            self._unsubscribe = [
                feed.subscribe(ASSIGNMENTS, self.handle_event),
                feed.subscribe(ANNOUNCEMENTS, self.handle_event),
                feed.subscribe(EMPLOYEES, self.handle_event),
            ]

    def detach(self) -> None:
        with self._lock:
            for unsubscribe in self._unsubscribe:
                unsubscribe()
            self._unsubscribe = []

    def reload(self) -> None:
        with self._lock:
            assignment_rows = self.remote.select_assignments()
            announcement_rows = self.remote.select_announcements()
            employee_rows = self.remote.select_employees()
            self.assignments.load_snapshot(assignment_rows)
            self.announcements.load(announcement_rows)
            self.employees.load(employee_rows)
            logger.info(
                "Snapshot loaded: %d assignments, %d announcements, %d employees",
                len(assignment_rows),
                len(announcement_rows),
                len(employee_rows),
            )

    def handle_event(self, event: ChangeEvent) -> bool:
        # Never raises; failures are logged and skipped.
        if event.kind not in EVENT_KINDS:
            logger.warning("Skipping %s event with unknown kind %r", event.table, event.kind)
            return False
        with self._lock:
            try:
                if event.table == ASSIGNMENTS:
                    return self.assignments.apply_remote_change(event.kind, event.record, old=event.old)
                if event.table == ANNOUNCEMENTS:
                    return self.announcements.apply_change(event.kind, event.record)
                if event.table == EMPLOYEES:
                    return self.employees.apply_change(event.kind, event.record)
            except Exception:
                logger.exception("Failed to apply %s event on %s", event.kind, event.table)
                return False
        logger.warning("Skipping event for unknown table %r", event.table)
        return False

    def _load_slot_names(self, position_key: str, day: str) -> list[str]:
        rows = self.remote.select_slot(position_key, date.fromisoformat(day))
        return [r["employee_name"] for r in rows]

    # reads

    def get_assignees(self, position_key: str, work_date: str | date) -> list[str]:
        with self._lock:
            return self.assignments.get_assignees(position_key, work_date)

    def schedule_window(self, start: date | None = None, end: date | None = None) -> dict[str, dict[str, list[str]]]:
        with self._lock:
            return self.assignments.snapshot(start, end)

    def export_records(self, start: date, end: date) -> list[dict[str, str]]:
        with self._lock:
            return self.assignments.records(start, end)

    def my_schedule(self, name: str, work_date: str | date) -> tuple[list[dict[str, Any]], list[str]]:
        with self._lock:
            return self.assignments.assignments_for(name, work_date), self.assignments.dates_for(name)

    def roster(self) -> list[dict[str, Any]]:
        with self._lock:
            return self.employees.items()

    def all_announcements(self) -> list[dict[str, Any]]:
        with self._lock:
            return self.announcements.items()

    # assignments

    def set_assignment(self, position_key: str, work_date: str | date, names: list[str]) -> SlotDiff:
        position_key = _require_text(position_key, "position_key")
        day = _require_date(work_date)
        if not isinstance(names, (list, tuple)) or any(not isinstance(n, str) for n in names):
            raise InvalidInput("names must be a list of strings")
        if any(not n.strip() for n in names):
            raise InvalidInput("Employee names cannot be blank")
        wanted = dedupe_names(names)

        with self._lock:
            persisted = self.remote.select_slot(position_key, day)
            persisted_by_key: dict[str, dict[str, Any]] = {}
            for row in persisted:
                persisted_by_key.setdefault(name_key(row["employee_name"]), row)
            wanted_keys = {name_key(n) for n in wanted}
            diff = SlotDiff()
            for name in wanted:
                row = persisted_by_key.get(name_key(name))
                if row is None:
                    diff.inserted.append(name)
                elif row["employee_name"] != name:
                    diff.inserted.append(name)
                    diff.deleted_ids.append(row["id"])
            for row in persisted:
                if name_key(row["employee_name"]) not in wanted_keys:
                    diff.deleted_ids.append(row["id"])
            # A slot may hold duplicate rows written by another client; keep only the first.
            seen: set[str] = set()
            for row in persisted:
                key = name_key(row["employee_name"])
                if key in seen and row["id"] not in diff.deleted_ids:
                    diff.deleted_ids.append(row["id"])
                seen.add(key)

            if diff.write_count:
                self.remote.write_slot(position_key, day, diff.inserted, diff.deleted_ids)
                logger.info(
                    "Slot %s/%s saved: %d added, %d removed",
                    position_key,
                    day.isoformat(),
                    len(diff.inserted),
                    len(diff.deleted_ids),
                )
            self.assignments.replace_slot(position_key, day.isoformat(), wanted)
            return diff

    # announcements

    def add_announcement(
        self,
        text: str,
        level: str | None = None,
        type: str = "announcement",
        published: bool | None = None,
        status: str | None = None,
    ) -> dict[str, Any]:
        text = _require_text(text, "text")
        _require_choice(type, TYPES, "type")
        level = _require_choice(level or DEFAULT_LEVEL_FOR_TYPE[type], LEVELS, "level")
        resolved = _status_from_patch({"status": status, "published": published}) or "draft"
        with self._lock:
            row = self.remote.insert_announcement({"text": text, "level": level, "type": type, "status": resolved})
        return normalize_announcement(row)

    def update_announcement(self, announcement_id: str, patch: dict[str, Any]) -> dict[str, Any]:
        announcement_id = _require_uuid(announcement_id)
        unknown = set(patch) - PATCHABLE_ANNOUNCEMENT_FIELDS
        if unknown:
            raise InvalidInput(f"Unknown announcement fields: {', '.join(sorted(unknown))}")
        values: dict[str, Any] = {}
        if "text" in patch:
            values["text"] = _require_text(patch["text"], "text")
        if "level" in patch:
            values["level"] = _require_choice(patch["level"], LEVELS, "level")
        if "type" in patch:
            values["type"] = _require_choice(patch["type"], TYPES, "type")
        status = _status_from_patch(patch)
        if status is not None:
            values["status"] = status
        if not values:
            raise InvalidInput("No updates were provided")
        with self._lock:
            row = self.remote.update_announcement(announcement_id, values)
        if row is None:
            raise NotFound(f"Announcement {announcement_id} not found")
        return normalize_announcement(row)

    def toggle_announcement_publish(self, announcement_id: str, next_published: bool) -> dict[str, Any]:
        if not isinstance(next_published, bool):
            raise InvalidInput("published must be a boolean")
        return self.update_announcement(announcement_id, {"published": next_published})

    def publish_announcement(self, announcement_id: str) -> dict[str, Any]:
        return self.update_announcement(announcement_id, {"status": "published"})

    def save_announcement_draft(self, announcement_id: str, patch: dict[str, Any] | None = None) -> dict[str, Any]:
        patch = {k: v for k, v in (patch or {}).items() if k not in ("status", "published")}
        return self.update_announcement(announcement_id, {**patch, "status": "draft"})

    def remove_announcement(self, announcement_id: str) -> None:
        announcement_id = _require_uuid(announcement_id)
        with self._lock:
            removed = self.remote.delete_announcement(announcement_id)
        if removed is None:
            raise NotFound(f"Announcement {announcement_id} not found")

    def published_announcements(self) -> list[dict[str, Any]]:
        with self._lock:
            return [a for a in self.announcements.items() if a["status"] == "published"]

    # employees

    def add_employee(self, name: str) -> dict[str, Any]:
        name = _require_text(name, "name")
        with self._lock:
            return self.remote.insert_employee(name)

    def toggle_employee_enabled(self, employee_id: str, enabled: bool) -> dict[str, Any]:
        employee_id = _require_uuid(employee_id)
        if not isinstance(enabled, bool):
            raise InvalidInput("enabled must be a boolean")
        with self._lock:
            row = self.remote.update_employee(employee_id, enabled=enabled)
        if row is None:
            raise NotFound(f"Employee {employee_id} not found")
        return row

    def remove_employee(self, employee_id: str) -> None:
        employee_id = _require_uuid(employee_id)
        with self._lock:
            removed = self.remote.delete_employee(employee_id)
        if removed is None:
            raise NotFound(f"Employee {employee_id} not found")
