from __future__ import annotations

import json
from pathlib import Path
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field, ValidationError, field_validator

from entities import StartTime, Subject


class ConfigError(Exception):
    pass


class SubjectConfig(BaseModel):
    id: int = Field(..., gt=0)
    name: str
    shortcut: str
    teacher: str
    description: str = ''

    def to_entity(self) -> Subject:
        return Subject(
            id=self.id,
            name=self.name,
            shortcut=self.shortcut,
            teacher=self.teacher,
            description=self.description,
        )


class StartTimeConfig(BaseModel):
    id: int = Field(..., gt=0)
    time: str

    def to_entity(self) -> StartTime:
        return StartTime(id=self.id, time=self.time)


def _ensure_unique_ids(entries: list) -> list:
    seen = set()
    for entry in entries:
        if entry.id in seen:
            raise ValueError(f'duplicate id {entry.id}')
        seen.add(entry.id)
    return entries


class AppConfig(BaseModel):
    """Contents of the server's config file.

    ``subjects`` and ``start_times`` are authoritative for their tables;
    the mail settings are carried for the notification sender.
    """

    model_config = ConfigDict(populate_by_name=True)

    subjects: List[SubjectConfig] = Field(default_factory=list)
    start_times: List[StartTimeConfig] = Field(default_factory=list, alias='startTimes')
    smtp_domain: str = Field('', alias='smtpDomain')
    smtp_user: str = Field('', alias='smtpUser')
    smtp_password: str = Field('', alias='smtpPassword')
    admin_email: Optional[EmailStr] = Field(None, alias='adminEmail')

    @field_validator('subjects', 'start_times')
    @classmethod
    def _unique_ids(cls, value: list) -> list:
        return _ensure_unique_ids(value)

    @field_validator('admin_email', mode='before')
    @classmethod
    def _blank_email(cls, value):
        if isinstance(value, str) and not value.strip():
            return None
        return value

    @classmethod
    def load(cls, path: str | Path) -> 'AppConfig':
        path = Path(path)
        try:
            raw = json.loads(path.read_text(encoding='utf-8'))
        except OSError as exc:
            raise ConfigError(f'cannot read config file {path}: {exc}') from exc
        except json.JSONDecodeError as exc:
            raise ConfigError(f'config file {path} is not valid JSON: {exc}') from exc
        try:
            return cls.model_validate(raw)
        except ValidationError as exc:
            raise ConfigError(f'invalid config file {path}: {exc}') from exc

    def subject_entities(self) -> List[Subject]:
        return [entry.to_entity() for entry in self.subjects]

    def start_time_entities(self) -> List[StartTime]:
        return [entry.to_entity() for entry in self.start_times]
