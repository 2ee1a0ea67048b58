from __future__ import annotations

import calendar
import csv
import io
from dataclasses import dataclass
from datetime import date, timedelta
from functools import lru_cache
from typing import Any, Callable, Iterable, Sequence

from pyuca import Collator

from shiftboard.positions import Position
from shiftboard.store import dedupe_names, normalize_work_date

DATE_FIELDS = ("date", "work_date", "shift_date", "workDate", "shiftDate", "work_day")
POSITION_FIELDS = ("position", "position_key", "role", "position_name", "role_name")
EMPLOYEE_FIELDS = ("employee_name", "employee", "name", "staff_name")

Grid = list[list[str]]


@dataclass(frozen=True)
class ExportLabels:
    date_header: str
    position_header: str
    separator: str
    weekdays: tuple[str, str, str, str, str, str, str]


LABELS = {
    "en": ExportLabels("Date", "Position", " / ", ("Mon", "Tue", "Wed", "Thu", "Fri", "Sat", "Sun")),
    "zh": ExportLabels("日期", "岗位", "、", ("周一", "周二", "周三", "周四", "周五", "周六", "周日")),
}


@lru_cache(maxsize=1)
def _collator() -> Collator:
    return Collator()


def collation_key(label: str):
    return _collator().sort_key(label)


def iso_week_range(ref: date) -> tuple[date, date]:
    monday = ref - timedelta(days=ref.weekday())
    return monday, monday + timedelta(days=6)


def month_range(ref: date) -> tuple[date, date]:
    last_day = calendar.monthrange(ref.year, ref.month)[1]
    return ref.replace(day=1), ref.replace(day=last_day)


def days_between(start: date, end: date) -> list[date]:
    if end < start:
        raise ValueError(f"Range end {end.isoformat()} is before start {start.isoformat()}")
    return [start + timedelta(days=i) for i in range((end - start).days + 1)]


def export_filename(label: str, start: date, end: date) -> str:
    return f"{label}_{start.isoformat()}_to_{end.isoformat()}.csv"


def _first(raw: dict[str, Any], fields: Sequence[str]) -> Any:
    for f in fields:
        if raw.get(f):
            return raw[f]
    return None


def normalize_record(raw: dict[str, Any]) -> dict[str, str] | None:
    # None when the row has no usable date or position.
    day = normalize_work_date(_first(raw, DATE_FIELDS))
    position = str(_first(raw, POSITION_FIELDS) or "").strip()
    if day is None or not position:
        return None
    employee = str(_first(raw, EMPLOYEE_FIELDS) or "").strip()
    return {"date": day, "position": position, "employee": employee}


def _cells(
    records: Iterable[dict[str, Any]],
    start: date,
    end: date,
    label_for: Callable[[str], str] | None,
) -> dict[str, dict[str, list[str]]]:
    # date -> position label -> names
    lo, hi = start.isoformat(), end.isoformat()
    out: dict[str, dict[str, list[str]]] = {}
    for raw in records:
        rec = normalize_record(raw)
        if rec is None or not (lo <= rec["date"] <= hi):
            continue
        label = label_for(rec["position"]) if label_for else rec["position"]
        names = out.setdefault(rec["date"], {}).setdefault(label, [])
        if rec["employee"]:
            names.append(rec["employee"])
    return out


def _day_heading(day: str, labels: ExportLabels) -> str:
    return f"{day}({labels.weekdays[date.fromisoformat(day).weekday()]})"


def pivot_by_date(
    records: Iterable[dict[str, Any]],
    start: date,
    end: date,
    labels: ExportLabels = LABELS["en"],
    weekday: bool = False,
    label_for: Callable[[str], str] | None = None,
) -> Grid:
    days_between(start, end)
    cells = _cells(records, start, end, label_for)
    columns = sorted({label for by_label in cells.values() for label in by_label}, key=collation_key)
    grid: Grid = [[labels.date_header, *columns]]
    for day in sorted(cells):
        row = [_day_heading(day, labels) if weekday else day]
        for label in columns:
            row.append(labels.separator.join(dedupe_names(cells[day].get(label, []))))
        grid.append(row)
    return grid


def pivot_by_position(
    records: Iterable[dict[str, Any]],
    start: date,
    end: date,
    positions: Sequence[Position] | None = None,
    labels: ExportLabels = LABELS["en"],
) -> Grid:
    days = [d.isoformat() for d in days_between(start, end)]
    cells = _cells(records, start, end, None)
    if positions is None:
        keys = {key for by_key in cells.values() for key in by_key}
        rows = [Position(key, key) for key in sorted(keys, key=collation_key)]
    else:
        rows = list(positions)
    grid: Grid = [[labels.position_header, *(_day_heading(d, labels) for d in days)]]
    for position in rows:
        row = [position.name or position.key]
        for day in days:
            row.append(labels.separator.join(dedupe_names(cells.get(day, {}).get(position.key, []))))
        grid.append(row)
    return grid


def to_csv(grid: Grid) -> str:
    out = io.StringIO()
    writer = csv.writer(out, lineterminator="\r\n")
    writer.writerows(grid)
    return out.getvalue().removesuffix("\r\n")
