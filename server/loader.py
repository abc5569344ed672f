from __future__ import annotations

import datetime
from typing import Any, Dict, Optional

from app_config import AppConfig
from app_logger import get_logger
from entities import Entity, Lesson, Message, StartTime, Status, Student, Subject
from reconciler import apply_config
from store import LESSONS, MESSAGES, START_TIMES, STATUSES, STUDENTS, SUBJECTS, Store, StoreNotFoundError
from working_set import WorkingSet

logger = get_logger('loader')


# --- Normalization helpers ---------------------------------------------------


def _text(raw: Any) -> str:
    if raw is None:
        return ''
    return str(raw)


def _parse_date(raw: Any, lesson_id: int) -> datetime.date:
    if isinstance(raw, datetime.datetime):
        return raw.date()
    if isinstance(raw, datetime.date):
        return raw
    try:
        return datetime.date.fromisoformat(str(raw).strip())
    except (TypeError, ValueError):
        logger.warning('Invalid date format for lesson ID %s. Expected format is YYYY-MM-DD.', lesson_id)
        return datetime.date.min


def _resolve(
    row: Dict[str, Any],
    column: str,
    known: Dict[int, Entity],
    dangling: Dict[str, Any],
    label: str,
    owner: str,
) -> Optional[Entity]:
    """Look up the entity a foreign key column points at.

    Anything that does not resolve is logged and kept in ``dangling`` so the
    row is written back exactly as it was read.
    """
    raw = row.get(column)
    if raw is None:
        return None
    try:
        foreign_id = int(raw)
    except (TypeError, ValueError):
        logger.warning('Invalid %s format for %s.', label, owner)
        dangling[column] = raw
        return None
    entity = known.get(foreign_id)
    if entity is None:
        logger.warning('%s with ID %s not found for %s.', label.capitalize(), foreign_id, owner)
        dangling[column] = foreign_id
    return entity


def _by_id(entities) -> Dict[int, Entity]:
    return {entity.id: entity for entity in entities}


# --- Row conversion ----------------------------------------------------------


def _status_from_row(row: Dict[str, Any]) -> Status:
    return Status(id=int(row['id']), name=_text(row.get('name')))


def _student_from_row(row: Dict[str, Any]) -> Student:
    return Student(
        id=int(row['id']),
        first_name=_text(row.get('first_name')),
        last_name=_text(row.get('last_name')),
        student_class=_text(row.get('student_class')),
        email_address=_text(row.get('email_address')),
    )


def _start_time_from_row(row: Dict[str, Any]) -> StartTime:
    return StartTime(id=int(row['id']), time=_text(row.get('time')))


def _subject_from_row(row: Dict[str, Any]) -> Subject:
    return Subject(
        id=int(row['id']),
        name=_text(row.get('name')),
        shortcut=_text(row.get('short')),
        teacher=_text(row.get('teacher')),
        description=_text(row.get('description')),
    )


def _lesson_from_row(row: Dict[str, Any], known: Dict[str, Dict[int, Entity]]) -> Lesson:
    lesson_id = int(row['id'])
    owner = f'lesson ID {lesson_id}'
    dangling: Dict[str, Any] = {}
    start_time = _resolve(row, 'start_time_id', known['start_time_id'], dangling, 'start time', owner)
    subject = _resolve(row, 'subject_id', known['subject_id'], dangling, 'subject', owner)
    student = _resolve(row, 'student_id', known['student_id'], dangling, 'student', owner)
    status = _resolve(row, 'status_id', known['status_id'], dangling, 'status', owner)
    return Lesson(
        id=lesson_id,
        start_time=start_time,
        date=_parse_date(row.get('date'), lesson_id),
        subject=subject,
        student=student,
        status=status,
        dangling=dangling,
    )


def _message_from_row(row: Dict[str, Any], students: Dict[int, Entity], lessons: Dict[int, Entity]) -> Message:
    message_id = int(row['id'])
    owner = f'message ID {message_id}'
    dangling: Dict[str, Any] = {}
    student = _resolve(row, 'student_id', students, dangling, 'student', owner)
    if student is None and 'student_id' not in dangling:
        logger.warning('Message ID %s has no student.', message_id)
    lesson = _resolve(row, 'lesson_id', lessons, dangling, 'lesson', owner)
    return Message(
        id=message_id,
        student=student,
        lesson=lesson,
        title=_text(row.get('title')),
        body=_text(row.get('body')),
        dangling=dangling,
    )


def _relink_one(entity, column: str, attr: str, current: Dict[int, Entity], dangling: Dict[str, Any]):
    reference = getattr(entity, attr)
    if reference is None:
        # the config may have created the row this one was dangling on
        created = current.get(dangling.get(column))
        if created is not None:
            del dangling[column]
        return created
    replacement = current.get(reference.id)
    if replacement is None:
        logger.warning('%s with ID %s was removed by the config but %s ID %s still refers to it.',
                       attr.replace('_', ' ').capitalize(), reference.id, type(entity).__name__.lower(), entity.id)
        dangling[column] = reference.id
    return replacement


def _relink(working_set: WorkingSet) -> None:
    # Lessons were resolved against the stored subjects and start times; point
    # them at what the config left behind, then point messages at those lessons.
    start_times = _by_id(working_set.start_times)
    subjects = _by_id(working_set.subjects)
    for index, lesson in enumerate(working_set.lessons):
        dangling = dict(lesson.dangling)
        start_time = _relink_one(lesson, 'start_time_id', 'start_time', start_times, dangling)
        subject = _relink_one(lesson, 'subject_id', 'subject', subjects, dangling)
        if start_time != lesson.start_time or subject != lesson.subject or dangling != lesson.dangling:
            working_set.lessons[index] = lesson.model_copy(
                update={'start_time': start_time, 'subject': subject, 'dangling': dangling}
            )

    lessons = _by_id(working_set.lessons)
    for index, message in enumerate(working_set.messages):
        if message.lesson is not None and lessons[message.lesson.id] != message.lesson:
            working_set.messages[index] = message.model_copy(update={'lesson': lessons[message.lesson.id]})


# --- Loading -----------------------------------------------------------------


def load(store: Store, config: AppConfig, working_set: Optional[WorkingSet] = None) -> WorkingSet:
    """Populate a working set from the store, then apply the config.

    Raises StoreNotFoundError when the backing store does not exist; there
    is nothing valid to serve in that case.
    """
    if not store.exists():
        logger.critical('Database not found: %s', store.url.render_as_string(hide_password=True))
        raise StoreNotFoundError(store.url.render_as_string(hide_password=True))
    logger.info('Database found.')

    if working_set is None:
        working_set = WorkingSet()
    store.connect()

    with working_set.exclusive():
        working_set.clear()

        # tables without foreign keys first
        working_set.statuses.extend(_status_from_row(row) for row in store.select_all(STATUSES))
        working_set.students.extend(_student_from_row(row) for row in store.select_all(STUDENTS))
        working_set.start_times.extend(_start_time_from_row(row) for row in store.select_all(START_TIMES))
        working_set.subjects.extend(_subject_from_row(row) for row in store.select_all(SUBJECTS))

        known = {
            'start_time_id': _by_id(working_set.start_times),
            'subject_id': _by_id(working_set.subjects),
            'student_id': _by_id(working_set.students),
            'status_id': _by_id(working_set.statuses),
        }
        working_set.lessons.extend(_lesson_from_row(row, known) for row in store.select_all(LESSONS))

        students = _by_id(working_set.students)
        lessons = _by_id(working_set.lessons)
        working_set.messages.extend(_message_from_row(row, students, lessons) for row in store.select_all(MESSAGES))

        apply_config(store, config, working_set)
        _relink(working_set)

    logger.info('Data loaded from the database: %s', working_set.counts())
    return working_set
