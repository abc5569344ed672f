from __future__ import annotations

import datetime
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field


class Entity(BaseModel):
    """Base record: an integer identity, <= 0 until the store assigns one."""

    model_config = ConfigDict(frozen=True)

    id: int = 0

    @property
    def is_persisted(self) -> bool:
        return self.id > 0


class Student(Entity):
    first_name: str
    last_name: str
    student_class: str
    email_address: str


class Subject(Entity):
    name: str
    shortcut: str
    teacher: str
    description: str = ''


class StartTime(Entity):
    time: str


class Status(Entity):
    name: str


class _Referencing(Entity):
    # column name -> raw foreign value that did not resolve when the row was loaded
    dangling: Dict[str, Any] = Field(default_factory=dict)

    @property
    def is_consistent(self) -> bool:
        return not self.dangling

    def foreign_id(self, column: str, reference: Optional[Entity]) -> Any:
        if reference is not None:
            return reference.id
        return self.dangling.get(column)


class Lesson(_Referencing):
    start_time: Optional[StartTime] = None
    date: datetime.date
    subject: Optional[Subject] = None
    student: Optional[Student] = None
    status: Optional[Status] = None


class Message(_Referencing):
    student: Optional[Student] = None
    lesson: Optional[Lesson] = None
    title: str
    body: str


ENTITY_TYPES = (Student, Subject, StartTime, Status, Lesson, Message)
