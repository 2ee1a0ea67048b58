from __future__ import annotations

import logging
from contextlib import contextmanager
from datetime import date
from typing import Any, Iterable

from sqlalchemy import delete, select
from sqlalchemy.exc import SQLAlchemyError

from shiftboard import db as app_db
from shiftboard.feed import ANNOUNCEMENTS, ASSIGNMENTS, EMPLOYEES, ChangeEvent, ChangeFeed
from shiftboard.models import AnnouncementRecord, AssignmentRecord, EmployeeRecord, utcnow

logger = logging.getLogger(__name__)


class RemoteError(RuntimeError):
    pass


def employee_row(record: EmployeeRecord) -> dict[str, Any]:
    return {
        "id": record.id,
        "name": record.name,
        "enabled": record.enabled,
        "created_at": record.created_at.isoformat() if record.created_at else None,
    }


def announcement_row(record: AnnouncementRecord) -> dict[str, Any]:
    return {
        "id": record.id,
        "text": record.text,
        "level": record.level,
        "type": record.type,
        "status": record.status,
        "published": record.published,
        "created_at": record.created_at.isoformat() if record.created_at else None,
        "updated_at": record.updated_at.isoformat() if record.updated_at else None,
    }


def assignment_row(record: AssignmentRecord) -> dict[str, Any]:
    return {
        "id": record.id,
        "position_key": record.position_key,
        "work_date": record.work_date.isoformat(),
        "employee_name": record.employee_name,
    }


class SqlRemote:
    def __init__(self, feed: ChangeFeed | None = None) -> None:
        self.feed = feed or ChangeFeed()

    @contextmanager
    def _session(self, action: str):
        session = app_db.open_session()
        try:
            yield session
        except SQLAlchemyError as exc:
            session.rollback()
            logger.error("Database error while trying to %s: %s", action, exc)
            raise RemoteError(f"Could not {action}: {exc.__class__.__name__}") from exc
        finally:
            session.close()

    def _publish(self, events: Iterable[ChangeEvent]) -> None:
        for event in events:
            self.feed.publish(event)

    # employees

    def select_employees(self) -> list[dict[str, Any]]:
        with self._session("load employees") as session:
            records = session.scalars(select(EmployeeRecord).order_by(EmployeeRecord.created_at.desc())).all()
            return [employee_row(r) for r in records]

    def insert_employee(self, name: str) -> dict[str, Any]:
        with self._session("add employee") as session:
            record = EmployeeRecord(name=name, enabled=True)
            session.add(record)
            session.commit()
            row = employee_row(record)
        self._publish([ChangeEvent("insert", EMPLOYEES, new=row)])
        return row

    def update_employee(self, employee_id: str, **values: Any) -> dict[str, Any] | None:
        with self._session("update employee") as session:
            record = session.get(EmployeeRecord, employee_id)
            if record is None:
                return None
            old = employee_row(record)
            for field, value in values.items():
                setattr(record, field, value)
            session.commit()
            row = employee_row(record)
        self._publish([ChangeEvent("update", EMPLOYEES, old=old, new=row)])
        return row

    def delete_employee(self, employee_id: str) -> dict[str, Any] | None:
        with self._session("delete employee") as session:
            record = session.get(EmployeeRecord, employee_id)
            if record is None:
                return None
            old = employee_row(record)
            session.delete(record)
            session.commit()
        self._publish([ChangeEvent("delete", EMPLOYEES, old=old)])
        return old

    # announcements

    def select_announcements(self) -> list[dict[str, Any]]:
        with self._session("load announcements") as session:
            records = session.scalars(select(AnnouncementRecord).order_by(AnnouncementRecord.created_at.desc())).all()
            return [announcement_row(r) for r in records]

    def insert_announcement(self, values: dict[str, Any]) -> dict[str, Any]:
        with self._session("add announcement") as session:
            record = AnnouncementRecord(**values)
            session.add(record)
            session.commit()
            row = announcement_row(record)
        self._publish([ChangeEvent("insert", ANNOUNCEMENTS, new=row)])
        return row

    def update_announcement(self, announcement_id: str, patch: dict[str, Any]) -> dict[str, Any] | None:
        with self._session("update announcement") as session:
            record = session.get(AnnouncementRecord, announcement_id)
            if record is None:
                return None
            old = announcement_row(record)
            for field, value in patch.items():
                setattr(record, field, value)
            record.updated_at = utcnow()
            session.commit()
            row = announcement_row(record)
        self._publish([ChangeEvent("update", ANNOUNCEMENTS, old=old, new=row)])
        return row

    def delete_announcement(self, announcement_id: str) -> dict[str, Any] | None:
        with self._session("delete announcement") as session:
            record = session.get(AnnouncementRecord, announcement_id)
            if record is None:
                return None
            old = announcement_row(record)
            session.delete(record)
            session.commit()
        self._publish([ChangeEvent("delete", ANNOUNCEMENTS, old=old)])
        return old

    # schedule assignments

    def select_assignments(self, start: date | None = None, end: date | None = None) -> list[dict[str, Any]]:
        query = select(AssignmentRecord)
        if start is not None:
            query = query.where(AssignmentRecord.work_date >= start)
        if end is not None:
            query = query.where(AssignmentRecord.work_date <= end)
        query = query.order_by(AssignmentRecord.work_date.asc(), AssignmentRecord.position_key.asc())
        with self._session("load schedule") as session:
            return [assignment_row(r) for r in session.scalars(query).all()]

    def select_slot(self, position_key: str, work_date: date) -> list[dict[str, Any]]:
        query = select(AssignmentRecord).where(
            AssignmentRecord.position_key == position_key,
            AssignmentRecord.work_date == work_date,
        )
        with self._session("load schedule slot") as session:
            return [assignment_row(r) for r in session.scalars(query).all()]

    def insert_assignments(self, rows: list[dict[str, Any]]) -> list[dict[str, Any]]:
        with self._session("add assignments") as session:
            records = [
                AssignmentRecord(
                    position_key=r["position_key"],
                    work_date=r["work_date"],
                    employee_name=r["employee_name"],
                )
                for r in rows
            ]
            session.add_all(records)
            session.commit()
            inserted = [assignment_row(r) for r in records]
        self._publish(ChangeEvent("insert", ASSIGNMENTS, new=row) for row in inserted)
        return inserted

    def delete_assignments(self, ids: list[str]) -> list[dict[str, Any]]:
        if not ids:
            return []
        with self._session("delete assignments") as session:
            records = session.scalars(select(AssignmentRecord).where(AssignmentRecord.id.in_(ids))).all()
            deleted = [assignment_row(r) for r in records]
            session.execute(delete(AssignmentRecord).where(AssignmentRecord.id.in_(ids)))
            session.commit()
        self._publish(ChangeEvent("delete", ASSIGNMENTS, old=row) for row in deleted)
        return deleted

    def write_slot(
        self,
        position_key: str,
        work_date: date,
        insert_names: list[str],
        delete_ids: list[str],
    ) -> tuple[list[dict[str, Any]], list[dict[str, Any]]]:
        with self._session("save schedule slot") as session:
            deleted: list[dict[str, Any]] = []
            if delete_ids:
                records = session.scalars(select(AssignmentRecord).where(AssignmentRecord.id.in_(delete_ids))).all()
                deleted = [assignment_row(r) for r in records]
                session.execute(delete(AssignmentRecord).where(AssignmentRecord.id.in_(delete_ids)))
            new_records = [
                AssignmentRecord(position_key=position_key, work_date=work_date, employee_name=name)
                for name in insert_names
            ]
            session.add_all(new_records)
            session.commit()
            inserted = [assignment_row(r) for r in new_records]
        self._publish(ChangeEvent("delete", ASSIGNMENTS, old=row) for row in deleted)
        self._publish(ChangeEvent("insert", ASSIGNMENTS, new=row) for row in inserted)
        return inserted, deleted
