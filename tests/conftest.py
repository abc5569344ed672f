# tests/conftest.py
from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Dict, List

import pytest
from sqlalchemy import create_engine, text

from app_config import AppConfig
from store import Store

SCHEMA = (
    "CREATE TABLE STATUS (id INTEGER PRIMARY KEY AUTOINCREMENT, name TEXT NOT NULL)",
    """CREATE TABLE STUDENT (
           id INTEGER PRIMARY KEY AUTOINCREMENT,
           first_name TEXT NOT NULL,
           last_name TEXT NOT NULL,
           student_class TEXT NOT NULL,
           email_address TEXT NOT NULL
       )""",
    "CREATE TABLE START_TIME (id INTEGER PRIMARY KEY AUTOINCREMENT, time TEXT NOT NULL)",
    """CREATE TABLE SUBJECT (
           id INTEGER PRIMARY KEY AUTOINCREMENT,
           name TEXT NOT NULL,
           short TEXT NOT NULL,
           teacher TEXT NOT NULL,
           description TEXT NOT NULL
       )""",
    """CREATE TABLE LESSON (
           id INTEGER PRIMARY KEY AUTOINCREMENT,
           start_time_id INTEGER,
           date TEXT NOT NULL,
           subject_id INTEGER,
           student_id INTEGER,
           status_id INTEGER
       )""",
    """CREATE TABLE MESSAGE (
           id INTEGER PRIMARY KEY AUTOINCREMENT,
           student_id INTEGER NOT NULL,
           lesson_id INTEGER,
           title TEXT NOT NULL,
           body TEXT NOT NULL
       )""",
)

TABLE_NAMES = ("STATUS", "STUDENT", "START_TIME", "SUBJECT", "LESSON", "MESSAGE")


# =========================
# Raw database helpers
# =========================

def execute(url: str, sql: str, params: Dict[str, Any] | None = None) -> None:
    engine = create_engine(url)
    try:
        with engine.begin() as conn:
            conn.execute(text(sql), params or {})
    finally:
        engine.dispose()


def fetch(url: str, sql: str, params: Dict[str, Any] | None = None) -> List[Dict[str, Any]]:
    engine = create_engine(url)
    try:
        with engine.connect() as conn:
            return [dict(row) for row in conn.execute(text(sql), params or {}).mappings()]
    finally:
        engine.dispose()


def ids(url: str, table: str) -> set:
    return {row["id"] for row in fetch(url, f"SELECT id FROM {table}")}


def snapshot(url: str) -> Dict[str, List[Dict[str, Any]]]:
    return {table: fetch(url, f"SELECT * FROM {table} ORDER BY id") for table in TABLE_NAMES}


def by_id(entities) -> list:
    return sorted(entities, key=lambda entity: entity.id)


# =========================
# Fixtures
# =========================

@pytest.fixture()
def database_url(tmp_path: Path) -> str:
    url = f"sqlite:///{tmp_path / 'tutoring.db'}"
    engine = create_engine(url)
    with engine.begin() as conn:
        for statement in SCHEMA:
            conn.execute(text(statement))
    engine.dispose()
    return url


@pytest.fixture()
def seeded_url(database_url: str) -> str:
    """Store with two of everything and subjects 2, 3, 4."""
    statements = [
        "INSERT INTO STATUS (id, name) VALUES (1, 'planned'), (2, 'done')",
        """INSERT INTO STUDENT (id, first_name, last_name, student_class, email_address) VALUES
               (1, 'Ada', 'Lovelace', '10a', 'ada@example.com'),
               (2, 'Alan', 'Turing', '11b', 'alan@example.com')""",
        "INSERT INTO START_TIME (id, time) VALUES (1, '08:00'), (2, '09:45')",
        """INSERT INTO SUBJECT (id, name, short, teacher, description) VALUES
               (2, 'Physics', 'PH', 'Mr. Bohr', 'Mechanics'),
               (3, 'Chemistry', 'CH', 'Ms. Curie', 'Organic'),
               (4, 'Latin', 'LA', 'Mr. Cicero', 'Grammar')""",
        """INSERT INTO LESSON (id, start_time_id, date, subject_id, student_id, status_id) VALUES
               (1, 1, '2024-09-02', 2, 1, 1),
               (2, 2, '2024-09-03', 3, 2, 2)""",
        """INSERT INTO MESSAGE (id, student_id, lesson_id, title, body) VALUES
               (1, 1, 1, 'Homework', 'Bring the lab notes.'),
               (2, 2, NULL, 'Welcome', 'Glad to have you.')""",
    ]
    for statement in statements:
        execute(database_url, statement)
    return database_url


@pytest.fixture()
def store(database_url: str):
    s = Store(database_url)
    yield s
    s.disconnect()
    s.engine.dispose()


@pytest.fixture()
def seeded_store(seeded_url: str):
    s = Store(seeded_url)
    yield s
    s.disconnect()
    s.engine.dispose()


CONFIG_DATA = {
    "subjects": [
        {"id": 1, "name": "Mathematics", "shortcut": "MA", "teacher": "Ms. Noether", "description": "Algebra"},
        {"id": 2, "name": "Physics", "shortcut": "PH", "teacher": "Mr. Bohr", "description": "Mechanics"},
        {"id": 3, "name": "Chemistry", "shortcut": "CH", "teacher": "Ms. Franklin", "description": "Organic"},
    ],
    "startTimes": [
        {"id": 1, "time": "08:00"},
        {"id": 2, "time": "10:00"},
    ],
    "smtpDomain": "smtp.example.com",
    "smtpUser": "mailer",
    "smtpPassword": "secret",
    "adminEmail": "admin@example.com",
}


@pytest.fixture()
def config() -> AppConfig:
    return AppConfig.model_validate(CONFIG_DATA)


@pytest.fixture()
def config_path(tmp_path: Path) -> Path:
    path = tmp_path / "config.json"
    path.write_text(json.dumps(CONFIG_DATA), encoding="utf-8")
    return path
