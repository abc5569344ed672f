from __future__ import annotations

from typing import Dict, List, Optional, Type

from pydantic import BaseModel, Field

from app_config import AppConfig
from app_logger import get_logger
from entities import Entity, Lesson, Message, StartTime, Status, Student, Subject
from store import Store, table_for
from working_set import WorkingSet

logger = get_logger('reconciler')


class TableReport(BaseModel):
    inserted: int = 0
    inserted_with_identity: int = 0
    updated: int = 0
    deleted: int = 0
    sequence_reset: bool = False


class SyncReport(BaseModel):
    tables: Dict[str, TableReport] = Field(default_factory=dict)

    def table(self, name: str) -> TableReport:
        return self.tables.setdefault(name, TableReport())

    def merge(self, other: 'SyncReport') -> 'SyncReport':
        for name, counts in other.tables.items():
            self.tables[name] = counts
        return self


# --- Database-authoritative kinds -------------------------------------------


def synchronize_kind(store: Store, working_set: WorkingSet, entity_type: Type[Entity], report: Optional[SyncReport] = None) -> SyncReport:
    """Push one entity list to its table: insert new rows, update known ones.

    Rows missing from the working set are left alone. Identities the store
    assigns to new entities are not copied back; the next load picks them up.
    """
    report = report if report is not None else SyncReport()
    spec = table_for(entity_type)
    counts = report.table(spec.name)
    stored_ids = store.select_identities(spec)

    for entity in list(working_set.items(entity_type)):
        if entity.id <= 0:
            new_id = store.insert(spec, entity)
            counts.inserted += 1
            logger.debug('Inserted new %s row with ID %s', spec.name, new_id)
        elif entity.id in stored_ids:
            store.update(spec, entity)
            counts.updated += 1
        else:
            # keeps the identity stable, e.g. for rows restored from a backup
            store.insert_with_identity(spec, entity)
            stored_ids.add(entity.id)
            counts.inserted_with_identity += 1
    return report


def synchronize(store: Store, working_set: WorkingSet) -> SyncReport:
    report = SyncReport()
    with working_set.exclusive():
        store.connect()
        for entity_type in (Status, Student, Lesson, Message):
            synchronize_kind(store, working_set, entity_type, report)
    return report


# --- Config-governed kinds ---------------------------------------------------


def _converge(store: Store, working_set: WorkingSet, entity_type: Type[Entity], desired: List[Entity], report: SyncReport) -> None:
    spec = table_for(entity_type)
    counts = report.table(spec.name)
    stored_ids = store.select_identities(spec)
    desired_ids = {entity.id for entity in desired}

    for entity in desired:
        matches = [current for current in working_set.items(entity_type) if current.id == entity.id]
        changed = matches != [entity]
        if changed:
            working_set.remove_all(entity_type, entity.id)
            working_set.add(entity)
        if entity.id not in stored_ids:
            store.insert_with_identity(spec, entity)
            stored_ids.add(entity.id)
            counts.inserted_with_identity += 1
        elif changed:
            store.update(spec, entity)
            counts.updated += 1

    stale = (working_set.ids(entity_type) | stored_ids) - desired_ids
    for entity_id in sorted(stale):
        working_set.remove_all(entity_type, entity_id)
        if entity_id in stored_ids:
            store.delete(spec, entity_id)
            counts.deleted += 1

    if counts.deleted:
        store.reset_identity_sequence(spec)
        counts.sequence_reset = True
    if stale:
        logger.info('Removed %s %s entries not present in the config.', len(stale), spec.name)


def apply_config(store: Store, config: AppConfig, working_set: WorkingSet) -> SyncReport:
    """Make start times and subjects, in memory and in the store, match the config exactly."""
    report = SyncReport()
    with working_set.exclusive():
        store.connect()
        _converge(store, working_set, StartTime, config.start_time_entities(), report)
        _converge(store, working_set, Subject, config.subject_entities(), report)
    return report


# --- Full pass ---------------------------------------------------------------


def synchronize_all(store: Store, config: AppConfig, working_set: WorkingSet) -> SyncReport:
    """Write the whole working set back to the store.

    Rows are written before the rows that reference them: statuses and
    students, then the config-governed tables, then lessons and messages.
    The first failing statement raises PersistenceError and ends the pass;
    whatever was already written stays written.
    """
    report = SyncReport()
    with working_set.exclusive():
        store.connect()
        synchronize_kind(store, working_set, Status, report)
        synchronize_kind(store, working_set, Student, report)
        report.merge(apply_config(store, config, working_set))
        synchronize_kind(store, working_set, Lesson, report)
        synchronize_kind(store, working_set, Message, report)
    logger.info('In-memory data synchronized with database.')
    return report


def save_and_disconnect(store: Store, config: AppConfig, working_set: WorkingSet) -> SyncReport:
    try:
        return synchronize_all(store, config, working_set)
    finally:
        store.disconnect()
