# tests/test_store.py
from __future__ import annotations

import datetime
import logging
from pathlib import Path

import pytest

from conftest import fetch, ids
from entities import Lesson, Message, Status, Student
from store import (
    LESSONS,
    MESSAGES,
    STATUSES,
    STUDENTS,
    PersistenceError,
    Store,
    StoreError,
    _insert_sql,
    _select_sql,
    _update_sql,
    table_for,
)


def test_exists_does_not_create_sqlite_file(tmp_path: Path):
    missing = tmp_path / "nothing-here.db"
    assert not Store(f"sqlite:///{missing}").exists()
    assert not missing.exists()


def test_exists_for_present_file(store):
    assert store.exists()


def test_connect_and_disconnect_are_idempotent(store, caplog):
    with caplog.at_level(logging.INFO, logger="tutoring"):
        store.connect()
        store.connect()
        assert store.connected
        store.disconnect()
        store.disconnect()
        assert not store.connected
        store.connect()

    assert caplog.text.count("Connected to the database.") == 1
    assert caplog.text.count("Disconnected from the database.") == 1
    assert "Reconnected to the database." in caplog.text


def test_operations_require_connection(store):
    with pytest.raises(StoreError):
        store.select_identities(STATUSES)


def test_statement_builders():
    assert _update_sql(STATUSES) == "UPDATE STATUS SET name = :name WHERE id = :id"
    assert _insert_sql(STATUSES, STATUSES.all_columns) == "INSERT INTO STATUS (id, name) VALUES (:id, :name)"
    assert _select_sql(STUDENTS).startswith("SELECT id, first_name, last_name, student_class, email_address FROM STUDENT")


def test_table_lookup_by_entity_type():
    assert table_for(Lesson) is LESSONS
    assert table_for(Message) is MESSAGES


def test_crud_round(store, database_url):
    store.connect()
    new_id = store.insert(STATUSES, Status(name="planned"))
    store.insert_with_identity(STATUSES, Status(id=10, name="cancelled"))
    assert store.select_identities(STATUSES) == {new_id, 10}

    store.update(STATUSES, Status(id=10, name="called off"))
    store.delete(STATUSES, new_id)

    assert store.select_all(STATUSES) == [{"id": 10, "name": "called off"}]


def test_duplicate_identity_raises_persistence_error(store):
    store.connect()
    store.insert_with_identity(STATUSES, Status(id=1, name="planned"))

    with pytest.raises(PersistenceError) as excinfo:
        store.insert_with_identity(STATUSES, Status(id=1, name="again"))

    assert excinfo.value.table == "STATUS"
    # a failed statement leaves the connection usable
    assert store.select_identities(STATUSES) == {1}


def test_lesson_row_keeps_dangling_identities(store, database_url):
    lesson = Lesson(id=5, date=datetime.date(2024, 1, 8), dangling={"subject_id": 99, "status_id": 3})

    store.connect()
    store.insert_with_identity(LESSONS, lesson)

    assert fetch(database_url, "SELECT * FROM LESSON") == [
        {"id": 5, "start_time_id": None, "date": "2024-01-08", "subject_id": 99, "student_id": None, "status_id": 3}
    ]


def test_reset_identity_sequence(store, database_url):
    store.connect()
    for identity in (1, 2, 3):
        store.insert_with_identity(STATUSES, Status(id=identity, name=f"s{identity}"))
    store.delete(STATUSES, 3)

    store.reset_identity_sequence(STATUSES)

    assert store.insert(STATUSES, Status(name="next")) == 3
    assert ids(database_url, "STATUS") == {1, 2, 3}


def test_context_manager_connects(database_url):
    with Store(database_url) as s:
        assert s.connected
        assert s.select_all(STUDENTS) == []
    assert not s.connected


def test_student_row_mapping(store, database_url):
    store.connect()
    store.insert_with_identity(
        STUDENTS, Student(id=3, first_name="Ada", last_name="Lovelace", student_class="10a", email_address="ada@example.com")
    )
    assert fetch(database_url, "SELECT * FROM STUDENT") == [
        {"id": 3, "first_name": "Ada", "last_name": "Lovelace", "student_class": "10a", "email_address": "ada@example.com"}
    ]


def test_explicit_identity_insert_advances_postgres_sequence(store, monkeypatch):
    resets = []
    store.connect()
    monkeypatch.setattr(Store, "dialect", property(lambda self: "postgresql"))
    monkeypatch.setattr(store, "reset_identity_sequence", resets.append)

    store.insert_with_identity(STATUSES, Status(id=7, name="planned"))

    assert resets == [STATUSES]


def test_explicit_identity_insert_leaves_sqlite_sequence_alone(store, monkeypatch):
    resets = []
    store.connect()
    monkeypatch.setattr(store, "reset_identity_sequence", resets.append)

    store.insert_with_identity(STATUSES, Status(id=7, name="planned"))

    assert resets == []
    assert store.insert(STATUSES, Status(name="next")) == 8
