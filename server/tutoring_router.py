from fastapi import APIRouter, HTTPException, Request

from app_logger import get_logger
from entities import Lesson, Message, Student
from loader import load
from reconciler import synchronize_all
from schemas import MessageCreate, StudentCreate, SyncResponse
from store import StoreError
from working_set import COLLECTIONS, WorkingSet

logger = get_logger('api')

tutoring_router = APIRouter(prefix='/api', tags=['tutoring'])


def _working_set(request: Request) -> WorkingSet:
    return request.app.state.working_set


@tutoring_router.get('/{kind}')
def list_entities(request: Request, kind: str):
    entity_type = COLLECTIONS.get(kind)
    if entity_type is None:
        raise HTTPException(status_code=404, detail='unknown-kind')
    working_set = _working_set(request)
    with working_set.exclusive():
        records = list(working_set.items(entity_type))
    return {'items': [record.model_dump(mode='json') for record in records]}


@tutoring_router.post('/students')
def create_student(request: Request, payload: StudentCreate):
    # id 0: the store assigns the real identity on the next sync
    student = Student(id=0, **payload.model_dump())
    _working_set(request).add(student)
    return {'item': student.model_dump(mode='json')}


@tutoring_router.delete('/students/{student_id}')
def delete_student(request: Request, student_id: int):
    removed = _working_set(request).remove(Student, student_id)
    if removed is None:
        raise HTTPException(status_code=404, detail='student-not-found')
    return {'ok': True}


@tutoring_router.post('/messages')
def create_message(request: Request, payload: MessageCreate):
    working_set = _working_set(request)
    with working_set.exclusive():
        # unsaved entities have no row yet; a message pointing at one would be orphaned
        student = working_set.find(Student, payload.student_id)
        if student is None or not student.is_persisted:
            raise HTTPException(status_code=404, detail='student-not-found')
        lesson = None
        if payload.lesson_id is not None:
            lesson = working_set.find(Lesson, payload.lesson_id)
            if lesson is None or not lesson.is_persisted:
                raise HTTPException(status_code=404, detail='lesson-not-found')
        message = working_set.add(Message(id=0, student=student, lesson=lesson, title=payload.title, body=payload.body))
    return {'item': message.model_dump(mode='json')}


@tutoring_router.post('/sync', response_model=SyncResponse)
def sync(request: Request):
    state = request.app.state
    working_set = state.working_set
    with working_set.exclusive():
        try:
            report = synchronize_all(state.store, state.config, working_set)
            # reload so new entities learn the identities the store gave them
            load(state.store, state.config, working_set)
        except StoreError as exc:
            logger.error('Synchronization failed: %s', exc)
            raise HTTPException(status_code=503, detail='sync-failed') from exc
    return {'ok': True, 'report': report, 'counts': working_set.counts()}
