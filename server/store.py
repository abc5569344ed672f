from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Set, Tuple

from sqlalchemy import create_engine, text
from sqlalchemy.engine import Connection, Engine, make_url
from sqlalchemy.exc import SQLAlchemyError

from app_logger import get_logger
from entities import Entity, Lesson, Message, StartTime, Status, Student, Subject
from settings import DATABASE_URL

logger = get_logger('store')


# --- Errors ------------------------------------------------------------------


class StoreError(Exception):
    pass


class StoreNotFoundError(StoreError):
    def __init__(self, url: str):
        super().__init__(f'database not found: {url}')
        self.url = url


class PersistenceError(StoreError):
    def __init__(self, table: str, operation: str, cause: Exception):
        super().__init__(f'{operation} on {table} failed: {cause}')
        self.table = table
        self.operation = operation


# --- Table descriptors -------------------------------------------------------


@dataclass(frozen=True)
class TableSpec:
    name: str
    columns: Tuple[str, ...]
    to_row: Callable[[Any], Dict[str, Any]]
    identity: str = 'id'

    @property
    def all_columns(self) -> Tuple[str, ...]:
        return (self.identity,) + self.columns


def _student_to_row(student: Student) -> Dict[str, Any]:
    return {
        'first_name': student.first_name,
        'last_name': student.last_name,
        'student_class': student.student_class,
        'email_address': student.email_address,
    }


def _subject_to_row(subject: Subject) -> Dict[str, Any]:
    return {
        'name': subject.name,
        'short': subject.shortcut,
        'teacher': subject.teacher,
        'description': subject.description,
    }


def _start_time_to_row(start_time: StartTime) -> Dict[str, Any]:
    return {'time': start_time.time}


def _status_to_row(status: Status) -> Dict[str, Any]:
    return {'name': status.name}


def _lesson_to_row(lesson: Lesson) -> Dict[str, Any]:
    return {
        'start_time_id': lesson.foreign_id('start_time_id', lesson.start_time),
        'date': lesson.date.isoformat(),
        'subject_id': lesson.foreign_id('subject_id', lesson.subject),
        'student_id': lesson.foreign_id('student_id', lesson.student),
        'status_id': lesson.foreign_id('status_id', lesson.status),
    }


def _message_to_row(message: Message) -> Dict[str, Any]:
    return {
        'student_id': message.foreign_id('student_id', message.student),
        'lesson_id': message.foreign_id('lesson_id', message.lesson),
        'title': message.title,
        'body': message.body,
    }


STUDENTS = TableSpec('STUDENT', ('first_name', 'last_name', 'student_class', 'email_address'), _student_to_row)
SUBJECTS = TableSpec('SUBJECT', ('name', 'short', 'teacher', 'description'), _subject_to_row)
START_TIMES = TableSpec('START_TIME', ('time',), _start_time_to_row)
STATUSES = TableSpec('STATUS', ('name',), _status_to_row)
LESSONS = TableSpec('LESSON', ('start_time_id', 'date', 'subject_id', 'student_id', 'status_id'), _lesson_to_row)
MESSAGES = TableSpec('MESSAGE', ('student_id', 'lesson_id', 'title', 'body'), _message_to_row)

TABLES: Dict[type, TableSpec] = {
    Student: STUDENTS,
    Subject: SUBJECTS,
    StartTime: START_TIMES,
    Status: STATUSES,
    Lesson: LESSONS,
    Message: MESSAGES,
}


def table_for(entity_type: type) -> TableSpec:
    return TABLES[entity_type]


# --- Statement builders ------------------------------------------------------


def _insert_sql(spec: TableSpec, columns: Tuple[str, ...]) -> str:
    names = ', '.join(columns)
    params = ', '.join(f':{column}' for column in columns)
    return f'INSERT INTO {spec.name} ({names}) VALUES ({params})'


def _update_sql(spec: TableSpec) -> str:
    assignments = ', '.join(f'{column} = :{column}' for column in spec.columns)
    return f'UPDATE {spec.name} SET {assignments} WHERE {spec.identity} = :{spec.identity}'


def _delete_sql(spec: TableSpec) -> str:
    return f'DELETE FROM {spec.name} WHERE {spec.identity} = :{spec.identity}'


def _select_sql(spec: TableSpec) -> str:
    return f'SELECT {", ".join(spec.all_columns)} FROM {spec.name} ORDER BY {spec.identity}'


# --- Store -------------------------------------------------------------------


class Store:
    """Single shared connection to the relational backend.

    Every write is one statement committed on its own; there is no
    transaction spanning several calls. ``connect`` and ``disconnect`` are
    idempotent but not thread-safe, callers serialize access.
    """

    def __init__(self, url: str = DATABASE_URL, engine: Optional[Engine] = None):
        self.url = make_url(url)
        if engine is None:
            # the one connection is handed between request threads
            connect_args = {'check_same_thread': False} if self.url.get_backend_name() == 'sqlite' else {}
            engine = create_engine(self.url, connect_args=connect_args)
        self.engine = engine
        self._conn: Optional[Connection] = None

    def __enter__(self) -> 'Store':
        self.connect()
        return self

    def __exit__(self, *exc_info) -> None:
        self.disconnect()

    @property
    def dialect(self) -> str:
        return self.url.get_backend_name()

    @property
    def connected(self) -> bool:
        return self._conn is not None and not self._conn.closed

    def exists(self) -> bool:
        if self.dialect == 'sqlite':
            database = self.url.database
            if not database or database == ':memory:':
                return True
            # connecting would silently create an empty file
            return Path(database).is_file()
        try:
            with self.engine.connect():
                return True
        except SQLAlchemyError:
            return False

    def connect(self) -> None:
        if self._conn is None:
            self._conn = self.engine.connect()
            logger.info('Connected to the database.')
        elif self._conn.closed:
            self._conn = self.engine.connect()
            logger.info('Reconnected to the database.')

    def disconnect(self) -> None:
        if self.connected:
            self._conn.close()
            logger.info('Disconnected from the database.')

    # --- Statement execution ---------------------------------------------

    def _connection(self) -> Connection:
        if not self.connected:
            raise StoreError('store is not connected')
        return self._conn

    def _execute(self, spec: TableSpec, operation: str, sql: str, params: Dict[str, Any], *, returning: bool = False) -> Optional[int]:
        conn = self._connection()
        try:
            result = conn.execute(text(sql), params)
            if returning:
                new_id = result.scalar_one_or_none()
            else:
                new_id = result.lastrowid if self.dialect == 'sqlite' else None
            conn.commit()
        except SQLAlchemyError as exc:
            conn.rollback()
            logger.error('%s on %s failed: %s', operation, spec.name, exc)
            raise PersistenceError(spec.name, operation, exc) from exc
        return new_id

    def _query(self, spec: TableSpec, operation: str, sql: str, params: Optional[Dict[str, Any]] = None) -> List[Dict[str, Any]]:
        conn = self._connection()
        try:
            rows = [dict(row) for row in conn.execute(text(sql), params or {}).mappings()]
            conn.commit()
        except SQLAlchemyError as exc:
            conn.rollback()
            raise PersistenceError(spec.name, operation, exc) from exc
        return rows

    # --- Per-table operations --------------------------------------------

    def select_all(self, spec: TableSpec) -> List[Dict[str, Any]]:
        return self._query(spec, 'select', _select_sql(spec))

    def select_identities(self, spec: TableSpec) -> Set[int]:
        rows = self._query(spec, 'select', f'SELECT {spec.identity} FROM {spec.name}')
        return {int(row[spec.identity]) for row in rows}

    def insert(self, spec: TableSpec, entity: Entity) -> Optional[int]:
        """Insert letting the backend assign the identity; returns it when known."""
        params = spec.to_row(entity)
        sql = _insert_sql(spec, spec.columns)
        if self.dialect == 'sqlite':
            return self._execute(spec, 'insert', sql, params)
        return self._execute(spec, 'insert', f'{sql} RETURNING {spec.identity}', params, returning=True)

    def insert_with_identity(self, spec: TableSpec, entity: Entity) -> None:
        params = spec.to_row(entity)
        params[spec.identity] = entity.id
        self._execute(spec, 'insert', _insert_sql(spec, spec.all_columns), params)
        if self.dialect == 'postgresql':
            # explicit ids do not advance a serial sequence
            self.reset_identity_sequence(spec)

    def update(self, spec: TableSpec, entity: Entity) -> None:
        params = spec.to_row(entity)
        params[spec.identity] = entity.id
        self._execute(spec, 'update', _update_sql(spec), params)

    def delete(self, spec: TableSpec, identity: int) -> None:
        self._execute(spec, 'delete', _delete_sql(spec), {spec.identity: identity})

    def reset_identity_sequence(self, spec: TableSpec) -> None:
        if self.dialect == 'sqlite':
            found = self._query(
                spec,
                'reset-sequence',
                "SELECT name FROM sqlite_master WHERE type = 'table' AND name = 'sqlite_sequence'",
            )
            if found:
                self._execute(spec, 'reset-sequence', 'DELETE FROM sqlite_sequence WHERE name = :name', {'name': spec.name})
        elif self.dialect == 'postgresql':
            self._execute(
                spec,
                'reset-sequence',
                f"""SELECT setval(
                       pg_get_serial_sequence(:table, :column),
                       COALESCE((SELECT MAX({spec.identity}) FROM {spec.name}), 0) + 1,
                       false
                   )""",
                {'table': spec.name.lower(), 'column': spec.identity},
            )
        else:
            logger.debug('No identity sequence reset for dialect %s', self.dialect)
            return
        logger.debug('Identity sequence reset for %s', spec.name)
