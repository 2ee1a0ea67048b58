from __future__ import annotations

import logging
import threading
from datetime import date

import pytest
from sqlalchemy import select

import shiftboard.db as app_db
from shiftboard.feed import ANNOUNCEMENTS, ASSIGNMENTS, EMPLOYEES, ChangeEvent
from shiftboard.models import AssignmentRecord
from shiftboard.remote import SqlRemote
from shiftboard.sync import InvalidInput, NotFound, RemoteError, ScheduleCache


@pytest.fixture
def cache():
    cache = ScheduleCache(SqlRemote())
    cache.attach()
    yield cache
    cache.detach()


def persisted_names(position_key, work_date):
    db = app_db.SessionLocal()
    rows = db.scalars(
        select(AssignmentRecord.employee_name).where(
            AssignmentRecord.position_key == position_key,
            AssignmentRecord.work_date == work_date,
        )
    ).all()
    db.close()
    return sorted(rows)


def test_attach_loads_snapshot_before_subscribing():
    remote = SqlRemote()
    remote.insert_employee("Ann")
    remote.insert_assignments([{"position_key": "wok", "work_date": date(2025, 1, 6), "employee_name": "Alice"}])

    cache = ScheduleCache(remote)
    assert cache.ready is False
    assert remote.feed.subscriber_count(ASSIGNMENTS) == 0

    cache.attach()
    cache.attach()
    assert cache.ready is True
    assert remote.feed.subscriber_count(ASSIGNMENTS) == 1
    assert cache.get_assignees("wok", "2025-01-06") == ["Alice"]
    assert [e["name"] for e in cache.employees.items()] == ["Ann"]

    cache.detach()
    assert remote.feed.subscriber_count(ASSIGNMENTS) == 0


def test_failed_snapshot_leaves_cache_not_ready(monkeypatch):
    remote = SqlRemote()

    def broken():
        raise RemoteError("Could not load announcements: OperationalError")

    monkeypatch.setattr(remote, "select_announcements", broken)
    cache = ScheduleCache(remote)
    with pytest.raises(RemoteError):
        cache.attach()
    assert cache.ready is False
    assert cache.attached is False


def test_set_assignment_returns_latest_list_in_given_order(cache):
    cache.set_assignment("wok", "2025-01-06", ["Alice", "Bob"])
    assert cache.get_assignees("wok", "2025-01-06") == ["Alice", "Bob"]

    cache.set_assignment("wok", "2025-01-06", ["Cara", "Bob", "cara"])
    assert cache.get_assignees("wok", "2025-01-06") == ["Cara", "Bob"]
    assert persisted_names("wok", date(2025, 1, 6)) == ["Bob", "Cara"]

    cache.set_assignment("wok", "2025-01-06", ["Bob", "Cara"])
    assert cache.get_assignees("wok", "2025-01-06") == ["Bob", "Cara"]


def test_set_assignment_writes_only_the_difference(cache):
    first = cache.set_assignment("wok", date(2025, 1, 6), ["Alice", "Bob"])
    assert first.inserted == ["Alice", "Bob"]
    assert first.deleted_ids == []

    second = cache.set_assignment("wok", date(2025, 1, 6), ["Alice", "Bob"])
    assert second.write_count == 0

    third = cache.set_assignment("wok", date(2025, 1, 6), ["Bob", "Dan"])
    assert third.inserted == ["Dan"]
    assert len(third.deleted_ids) == 1
    assert persisted_names("wok", date(2025, 1, 6)) == ["Bob", "Dan"]


def test_set_assignment_same_name_different_case_is_not_rewritten(cache):
    cache.set_assignment("wok", "2025-01-06", ["alice"])
    diff = cache.set_assignment("wok", "2025-01-06", ["Alice"])
    assert diff.inserted == ["Alice"]
    assert len(diff.deleted_ids) == 1
    assert persisted_names("wok", date(2025, 1, 6)) == ["Alice"]
    assert cache.get_assignees("wok", "2025-01-06") == ["Alice"]


def test_set_assignment_rejects_bad_input_before_remote_call(cache, monkeypatch):
    def must_not_run(*args, **kwargs):
        raise AssertionError("remote should not be called")

    monkeypatch.setattr(cache.remote, "select_slot", must_not_run)
    with pytest.raises(InvalidInput):
        cache.set_assignment("wok", "2025-01-06", ["Alice", "  "])
    with pytest.raises(InvalidInput):
        cache.set_assignment("wok", "06-01-2025", ["Alice"])
    with pytest.raises(InvalidInput):
        cache.set_assignment("", "2025-01-06", ["Alice"])
    with pytest.raises(InvalidInput):
        cache.set_assignment("wok", "2025-01-06", "Alice")


def test_failed_remote_write_leaves_slot_unchanged(cache, monkeypatch):
    cache.set_assignment("wok", "2025-01-06", ["Alice"])

    def broken(*args, **kwargs):
        raise RemoteError("Could not save schedule slot: OperationalError")

    monkeypatch.setattr(cache.remote, "write_slot", broken)
    with pytest.raises(RemoteError):
        cache.set_assignment("wok", "2025-01-06", ["Bob"])
    assert cache.get_assignees("wok", "2025-01-06") == ["Alice"]


def test_database_failure_surfaces_as_remote_error(cache):
    app_db.Base.metadata.drop_all(bind=app_db.engine)
    with pytest.raises(RemoteError) as excinfo:
        cache.add_employee("Ann")
    assert "Could not add employee" in str(excinfo.value)
    assert cache.employees.items() == []


def test_feed_inserts_and_deletes_reach_the_store(cache):
    cache.remote.insert_assignments([
        {"position_key": "grill", "work_date": date(2025, 1, 7), "employee_name": "Cara"},
        {"position_key": "grill", "work_date": date(2025, 1, 7), "employee_name": "Dan"},
    ])
    assert cache.get_assignees("grill", "2025-01-07") == ["Cara", "Dan"]

    ids = [r["id"] for r in cache.remote.select_slot("grill", date(2025, 1, 7)) if r["employee_name"] == "Dan"]
    cache.remote.delete_assignments(ids)
    assert cache.get_assignees("grill", "2025-01-07") == ["Cara"]


def test_deleting_one_of_duplicate_rows_keeps_the_assignee(cache):
    cache.remote.insert_assignments([
        {"position_key": "wok", "work_date": date(2025, 1, 6), "employee_name": "Alice"},
        {"position_key": "wok", "work_date": date(2025, 1, 6), "employee_name": "Alice"},
    ])
    assert cache.get_assignees("wok", "2025-01-06") == ["Alice"]

    second_id = cache.remote.select_slot("wok", date(2025, 1, 6))[1]["id"]
    cache.remote.delete_assignments([second_id])
    assert persisted_names("wok", date(2025, 1, 6)) == ["Alice"]
    assert cache.get_assignees("wok", "2025-01-06") == ["Alice"]


def test_reads_are_serialized_with_feed_events(cache):
    errors = []

    def writer():
        try:
            for i in range(2000):
                cache.handle_event(ChangeEvent(
                    "insert",
                    ASSIGNMENTS,
                    new={"position_key": f"station{i}", "work_date": "2025-01-06", "employee_name": "Alice"},
                ))
        except Exception as exc:
            errors.append(exc)

    thread = threading.Thread(target=writer)
    thread.start()
    while thread.is_alive():
        cache.schedule_window()
        cache.export_records(date(2025, 1, 1), date(2025, 1, 31))
        cache.my_schedule("Alice", "2025-01-06")
        cache.roster()
    thread.join()

    assert errors == []
    assert len(cache.schedule_window()) == 2000
    assignments, dates = cache.my_schedule("alice", "2025-01-06")
    assert len(assignments) == 2000
    assert dates == ["2025-01-06"]


def test_update_event_refetches_moved_row(cache):
    cache.set_assignment("wok", "2025-01-06", ["Alice", "Bob"])
    old = next(r for r in cache.remote.select_slot("wok", date(2025, 1, 6)) if r["employee_name"] == "Alice")

    db = app_db.SessionLocal()
    record = db.get(AssignmentRecord, old["id"])
    record.position_key = "grill"
    record.work_date = date(2025, 1, 7)
    db.commit()
    db.close()
    new = {**old, "position_key": "grill", "work_date": "2025-01-07"}

    cache.remote.feed.publish(ChangeEvent("update", ASSIGNMENTS, old=old, new=new))

    assert cache.get_assignees("grill", "2025-01-07") == ["Alice"]
    assert cache.get_assignees("wok", "2025-01-06") == ["Bob"]


def test_bad_events_do_not_stop_later_events(cache, caplog, monkeypatch):
    feed = cache.remote.feed
    with caplog.at_level(logging.WARNING):
        feed.publish(ChangeEvent("insert", ASSIGNMENTS, new={"position_key": "wok", "employee_name": "Ghost"}))
        feed.publish(ChangeEvent("truncate", ASSIGNMENTS))
        feed.publish(ChangeEvent("insert", EMPLOYEES, new={"name": "no id"}))

        def explode(*args, **kwargs):
            raise RuntimeError("boom")

        monkeypatch.setattr(cache.announcements, "apply_change", explode)
        assert cache.handle_event(ChangeEvent("insert", ANNOUNCEMENTS, new={"id": "x"})) is False

    assert "Failed to apply insert event on announcements" in caplog.text
    assert cache.get_assignees("wok", "2025-01-06") == []

    feed.publish(ChangeEvent("insert", ASSIGNMENTS, new={"position_key": "wok", "work_date": "2025-01-06", "employee_name": "Real"}))
    assert cache.get_assignees("wok", "2025-01-06") == ["Real"]


def test_add_announcement_defaults(cache):
    plain = cache.add_announcement("  Staff meeting at 3  ")
    assert plain["text"] == "Staff meeting at 3"
    assert plain["type"] == "announcement"
    assert plain["level"] == "blue"
    assert plain["status"] == "draft"
    assert plain["published"] is False

    info = cache.add_announcement("Fridge is fixed", type="info", published=True)
    assert info["level"] == "green"
    assert info["status"] == "published"
    assert info["published"] is True

    explicit = cache.add_announcement("Closed Monday", level="red", status="published")
    assert explicit["published"] is True

    assert [a["id"] for a in cache.announcements.items()] == [explicit["id"], info["id"], plain["id"]]


def test_add_announcement_rejects_bad_input(cache):
    with pytest.raises(InvalidInput):
        cache.add_announcement("   ")
    with pytest.raises(InvalidInput):
        cache.add_announcement("Hi", level="purple")
    with pytest.raises(InvalidInput):
        cache.add_announcement("Hi", type="memo")
    with pytest.raises(InvalidInput):
        cache.add_announcement("Hi", status="published", published=False)
    assert cache.announcements.items() == []


def test_publish_sets_status_and_flag_together(cache):
    draft = cache.add_announcement("New menu")
    cache.publish_announcement(draft["id"])
    current = cache.announcements.get(draft["id"])
    assert current["status"] == "published"
    assert current["published"] is True
    assert [a["id"] for a in cache.published_announcements()] == [draft["id"]]


def test_toggle_and_draft_keep_flags_consistent(cache):
    item = cache.add_announcement("Holiday hours", published=True)

    cache.toggle_announcement_publish(item["id"], False)
    current = cache.announcements.get(item["id"])
    assert (current["status"], current["published"]) == ("draft", False)

    cache.toggle_announcement_publish(item["id"], True)
    cache.save_announcement_draft(item["id"], {"text": "Holiday hours (updated)", "published": True})
    current = cache.announcements.get(item["id"])
    assert current["text"] == "Holiday hours (updated)"
    assert (current["status"], current["published"]) == ("draft", False)


def test_update_announcement_validation(cache):
    item = cache.add_announcement("Hello")
    with pytest.raises(InvalidInput):
        cache.update_announcement(item["id"], {"status": "published", "published": False})
    with pytest.raises(InvalidInput):
        cache.update_announcement(item["id"], {"colour": "red"})
    with pytest.raises(InvalidInput):
        cache.update_announcement(item["id"], {})
    with pytest.raises(InvalidInput):
        cache.update_announcement("not-a-uuid", {"text": "x"})
    with pytest.raises(NotFound):
        cache.update_announcement("00000000-0000-0000-0000-000000000000", {"text": "x"})

    updated = cache.update_announcement(item["id"], {"level": "orange", "published": True})
    assert updated["level"] == "orange"
    assert updated["status"] == "published"

    cache.remove_announcement(item["id"])
    assert cache.announcements.get(item["id"]) is None
    with pytest.raises(NotFound):
        cache.remove_announcement(item["id"])


def test_employee_roster_operations(cache):
    ann = cache.add_employee("  Ann ")
    ben = cache.add_employee("Ben")
    assert ann["name"] == "Ann"
    assert ann["enabled"] is True
    assert [e["name"] for e in cache.employees.items()] == ["Ben", "Ann"]

    cache.toggle_employee_enabled(ann["id"], False)
    assert cache.employees.get(ann["id"])["enabled"] is False
    assert [e["name"] for e in cache.employees.items()] == ["Ben", "Ann"]

    cache.remove_employee(ben["id"])
    assert [e["name"] for e in cache.employees.items()] == ["Ann"]

    with pytest.raises(InvalidInput):
        cache.add_employee("   ")
    with pytest.raises(InvalidInput):
        cache.toggle_employee_enabled(ann["id"], "false")
    with pytest.raises(InvalidInput):
        cache.remove_employee("123")
    with pytest.raises(NotFound):
        cache.toggle_employee_enabled(ben["id"], True)


def test_disabling_employee_does_not_hide_assignments(cache):
    ann = cache.add_employee("Ann")
    cache.set_assignment("sushi", "2025-01-06", ["Ann"])
    cache.toggle_employee_enabled(ann["id"], False)
    assert cache.get_assignees("sushi", "2025-01-06") == ["Ann"]


def test_removing_employee_does_not_cascade_to_assignments(cache):
    ann = cache.add_employee("Ann")
    cache.set_assignment("sushi", "2025-01-06", ["Ann"])
    cache.remove_employee(ann["id"])

    assert cache.get_assignees("sushi", "2025-01-06") == ["Ann"]
    assert persisted_names("sushi", date(2025, 1, 6)) == ["Ann"]

    cache.reload()
    assert cache.get_assignees("sushi", "2025-01-06") == ["Ann"]
