from pydantic import BaseModel, EmailStr
from typing import Dict, Optional

from reconciler import SyncReport


# Student Schemas
class StudentCreate(BaseModel):
    first_name: str
    last_name: str
    student_class: str
    email_address: EmailStr


# Message Schemas
class MessageCreate(BaseModel):
    student_id: int
    lesson_id: Optional[int] = None
    title: str
    body: str


# Sync Schemas
class SyncResponse(BaseModel):
    ok: bool = True
    report: SyncReport
    counts: Dict[str, int]
