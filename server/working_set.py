from __future__ import annotations

from contextlib import contextmanager
from threading import RLock
from typing import Dict, Iterator, List, Optional, Set, Type

from entities import Entity, Lesson, Message, StartTime, Status, Student, Subject

# URL-facing name of each collection, in load order
COLLECTIONS: Dict[str, Type[Entity]] = {
    'statuses': Status,
    'students': Student,
    'start-times': StartTime,
    'subjects': Subject,
    'lessons': Lesson,
    'messages': Message,
}


class WorkingSet:
    """In-process collection of every entity list served between sync passes.

    The owner passes it by reference to the loader, the reconciler and the
    request handlers. Anything that mutates it while a sync pass may run
    must hold ``exclusive()``.
    """

    def __init__(self) -> None:
        self.students: List[Student] = []
        self.subjects: List[Subject] = []
        self.start_times: List[StartTime] = []
        self.statuses: List[Status] = []
        self.lessons: List[Lesson] = []
        self.messages: List[Message] = []
        self._lock = RLock()
        self._lists: Dict[type, List] = {
            Student: self.students,
            Subject: self.subjects,
            StartTime: self.start_times,
            Status: self.statuses,
            Lesson: self.lessons,
            Message: self.messages,
        }

    @contextmanager
    def exclusive(self) -> Iterator['WorkingSet']:
        with self._lock:
            yield self

    def items(self, entity_type: Type[Entity]) -> List:
        return self._lists[entity_type]

    def clear(self) -> None:
        for entries in self._lists.values():
            entries.clear()

    def counts(self) -> Dict[str, int]:
        return {name: len(self._lists[entity_type]) for name, entity_type in COLLECTIONS.items()}

    def ids(self, entity_type: Type[Entity]) -> Set[int]:
        return {entity.id for entity in self._lists[entity_type]}

    def find(self, entity_type: Type[Entity], entity_id: int) -> Optional[Entity]:
        for entity in self._lists[entity_type]:
            if entity.id == entity_id:
                return entity
        return None

    # --- Mutation --------------------------------------------------------

    def add(self, entity: Entity) -> Entity:
        with self._lock:
            self._lists[type(entity)].append(entity)
        return entity

    def remove(self, entity_type: Type[Entity], entity_id: int) -> Optional[Entity]:
        with self._lock:
            entries = self._lists[entity_type]
            for index, entity in enumerate(entries):
                if entity.id == entity_id:
                    return entries.pop(index)
        return None

    def remove_all(self, entity_type: Type[Entity], entity_id: int) -> List[Entity]:
        """Drop every entity carrying ``entity_id``; unsaved entries can share id 0."""
        with self._lock:
            entries = self._lists[entity_type]
            removed = [entity for entity in entries if entity.id == entity_id]
            entries[:] = [entity for entity in entries if entity.id != entity_id]
        return removed

    def replace(self, entity: Entity) -> Optional[Entity]:
        """Swap the entity with the same identity for ``entity``.

        The old value is removed and the new one appended; returns the old
        value, or None when nothing carried that identity (then it is a plain add).
        """
        with self._lock:
            previous = self.remove(type(entity), entity.id)
            self._lists[type(entity)].append(entity)
        return previous
