from __future__ import annotations

import logging
from datetime import date, datetime
from typing import Any, Callable, Iterable

logger = logging.getLogger(__name__)

SlotLoader = Callable[[str, str], list[str]]


def normalize_work_date(value: Any) -> str | None:
    if isinstance(value, datetime):
        return value.date().isoformat()
    if isinstance(value, date):
        return value.isoformat()
    if not isinstance(value, str) or len(value.strip()) < 10:
        return None
    head = value.strip()[:10]
    try:
        return date.fromisoformat(head).isoformat()
    except ValueError:
        return None


def name_key(name: str) -> str:
    return name.strip().casefold()


def dedupe_names(names: Iterable[str]) -> list[str]:
    seen: set[str] = set()
    out: list[str] = []
    for raw in names:
        name = (raw or "").strip()
        if not name or name_key(name) in seen:
            continue
        seen.add(name_key(name))
        out.append(name)
    return out


def enforce_slot_capacity(names: list[str], ceiling: int | None) -> list[str]:
    # 0 or None means unlimited.
    if ceiling and len(dedupe_names(names)) > ceiling:
        raise ValueError(f"At most {ceiling} people can be assigned to one slot")
    return names


class AssignmentStore:
    def __init__(self, slot_loader: SlotLoader | None = None) -> None:
        # position_key -> date -> ordered names
        self._slots: dict[str, dict[str, list[str]]] = {}
        self._slot_loader = slot_loader
        self.hydrated = False

    def load_snapshot(self, rows: Iterable[dict[str, Any]]) -> None:
        self._slots = {}
        for row in rows:
            self._insert(row)
        self.hydrated = True

    def get_assignees(self, position_key: str, work_date: str | date) -> list[str]:
        day = normalize_work_date(work_date)
        if day is None:
            return []
        return list(self._slots.get(position_key, {}).get(day, ()))

    def snapshot(self, start: date | None = None, end: date | None = None) -> dict[str, dict[str, list[str]]]:
        lo = start.isoformat() if start else None
        hi = end.isoformat() if end else None
        out: dict[str, dict[str, list[str]]] = {}
        for position_key, days in self._slots.items():
            for day, names in days.items():
                if not names or (lo and day < lo) or (hi and day > hi):
                    continue
                out.setdefault(position_key, {})[day] = list(names)
        return out

    def records(self, start: date | None = None, end: date | None = None) -> list[dict[str, str]]:
        out = []
        for position_key, days in self.snapshot(start, end).items():
            for day, names in days.items():
                out.extend({"date": day, "position_key": position_key, "employee_name": n} for n in names)
        out.sort(key=lambda r: (r["date"], r["position_key"]))
        return out

    def dates_for(self, name: str) -> list[str]:
        key = name_key(name)
        if not key:
            return []
        found = {
            day
            for days in self._slots.values()
            for day, names in days.items()
            if any(name_key(n) == key for n in names)
        }
        return sorted(found)

    def assignments_for(self, name: str, work_date: str | date) -> list[dict[str, Any]]:
        key = name_key(name)
        day = normalize_work_date(work_date)
        if not key or day is None:
            return []
        out = []
        for position_key, days in self._slots.items():
            names = days.get(day, [])
            if any(name_key(n) == key for n in names):
                out.append({
                    "position_key": position_key,
                    "coworkers": [n for n in names if name_key(n) != key],
                })
        out.sort(key=lambda a: a["position_key"])
        return out

    def replace_slot(self, position_key: str, work_date: str, names: list[str]) -> None:
        day = normalize_work_date(work_date)
        if day is None:
            raise ValueError(f"Invalid work date: {work_date!r}")
        self._slots.setdefault(position_key, {})[day] = dedupe_names(names)

    def apply_remote_change(self, kind: str, record: dict[str, Any] | None, old: dict[str, Any] | None = None) -> bool:
        if not record:
            logger.warning("Skipping %s assignment event without a record", kind)
            return False
        if kind == "insert":
            return self._insert(record)
        if kind == "delete":
            return self._delete(record)
        if kind == "update":
            return self._reload(record, old)
        logger.warning("Skipping assignment event with unknown kind %r", kind)
        return False

    def _slot_of(self, record: dict[str, Any]) -> tuple[str, str] | None:
        position_key = record.get("position_key")
        day = normalize_work_date(record.get("work_date"))
        if not position_key or day is None:
            logger.warning("Skipping assignment record without position or date: %r", record)
            return None
        return position_key, day

    def _insert(self, record: dict[str, Any]) -> bool:
        slot = self._slot_of(record)
        name = (record.get("employee_name") or "").strip()
        if slot is None:
            return False
        if not name:
            logger.warning("Skipping assignment record without employee name: %r", record)
            return False
        names = self._slots.setdefault(slot[0], {}).setdefault(slot[1], [])
        if all(name_key(n) != name_key(name) for n in names):
            names.append(name)
        return True

    def _delete(self, record: dict[str, Any]) -> bool:
        slot = self._slot_of(record)
        name = record.get("employee_name") or ""
        if slot is None:
            return False
        if self._slot_loader is not None:
            # The slot may still hold another row with the same name.
            self.replace_slot(slot[0], slot[1], self._slot_loader(*slot))
            return True
        names = self._slots.get(slot[0], {}).get(slot[1])
        if names:
            self._slots[slot[0]][slot[1]] = [n for n in names if name_key(n) != name_key(name)]
        return True

    def _reload(self, record: dict[str, Any], old: dict[str, Any] | None) -> bool:
        slot = self._slot_of(record)
        if slot is None:
            return False
        if self._slot_loader is None:
            logger.warning("No slot loader configured, cannot refresh %s/%s", *slot)
            return False
        slots = [slot]
        if old and old.get("position_key") and normalize_work_date(old.get("work_date")):
            old_slot = (old["position_key"], normalize_work_date(old["work_date"]))
            if old_slot != slot:
                slots.append(old_slot)
        for position_key, day in slots:
            self.replace_slot(position_key, day, self._slot_loader(position_key, day))
        return True


def normalize_announcement(record: dict[str, Any]) -> dict[str, Any]:
    out = dict(record)
    status = out.get("status")
    if status not in ("draft", "published"):
        status = "published" if out.get("published") is True else "draft"
    out["status"] = status
    out["published"] = status == "published"
    return out


class KeyedProjection:
    # Newest first.

    def __init__(self, id_field: str = "id", normalize: Callable[[dict[str, Any]], dict[str, Any]] | None = None) -> None:
        self.id_field = id_field
        self._normalize = normalize or dict
        self._items: list[dict[str, Any]] = []
        self.hydrated = False

    def __len__(self) -> int:
        return len(self._items)

    def load(self, rows: Iterable[dict[str, Any]]) -> None:
        self._items = [self._normalize(r) for r in rows]
        self.hydrated = True

    def items(self) -> list[dict[str, Any]]:
        return [dict(r) for r in self._items]

    def get(self, item_id: str) -> dict[str, Any] | None:
        index = self._index_of(item_id)
        return dict(self._items[index]) if index is not None else None

    def _index_of(self, item_id: Any) -> int | None:
        for index, item in enumerate(self._items):
            if item.get(self.id_field) == item_id:
                return index
        return None

    def apply_change(self, kind: str, record: dict[str, Any] | None) -> bool:
        item_id = record.get(self.id_field) if record else None
        if item_id is None:
            logger.warning("Skipping %s event without %s: %r", kind, self.id_field, record)
            return False
        index = self._index_of(item_id)
        if kind == "delete":
            if index is not None:
                del self._items[index]
            return True
        if kind not in ("insert", "update"):
            logger.warning("Skipping event with unknown kind %r", kind)
            return False
        item = self._normalize(record)
        if index is None:
            self._items.insert(0, item)
        else:
            self._items[index] = item
        return True
