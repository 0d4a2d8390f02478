from __future__ import annotations
import logging
import os
from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel
from sqlalchemy.orm import Session

from .auth import User, get_current_user
from ..db import get_db
from ..models import Course, Document, QuizAttempt, QuizQuestion, QuizSession, StudySession, VoiceCommand

router = APIRouter(prefix="/api/courses", tags=["courses"])

logger = logging.getLogger(__name__)


class CourseIn(BaseModel):
	course_id: str
	name: str
	instructor: Optional[str] = None
	credits: Optional[int] = None
	semester: Optional[str] = None
	year: Optional[int] = None
	description: Optional[str] = None
	prerequisites: List[str] = []
	related_courses: List[str] = []


class CourseOut(CourseIn):
	id: int
	created_at: datetime

	model_config = {"from_attributes": True}


def get_owned_course(db: Session, user: User, course_pk: int) -> Course:
	row = db.get(Course, course_pk)
	if row is None or row.user_id != user.id:
		raise HTTPException(status_code=404, detail="Course not found")
	return row


def unlink_quietly(path: str) -> bool:
	try:
		os.remove(path)
		return True
	except OSError as err:
		logger.warning("Could not delete file %s: %s", path, err)
		return False


@router.get("", response_model=List[CourseOut])
async def list_courses(user: User = Depends(get_current_user), db: Session = Depends(get_db)):
	return db.query(Course).filter(Course.user_id == user.id).order_by(Course.created_at.desc(), Course.id.desc()).all()


@router.post("", response_model=CourseOut)
async def create_course(req: CourseIn, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
	code = (req.course_id or "").strip()
	name = (req.name or "").strip()
	if not code or not name:
		raise HTTPException(status_code=400, detail="course_id and name are required")
	row = Course(user_id=user.id, **{**req.model_dump(), "course_id": code, "name": name})
	db.add(row)
	db.commit()
	db.refresh(row)
	logger.info("User %s created course %s", user.id, code)
	return row


@router.get("/{course_pk}", response_model=CourseOut)
async def get_course(course_pk: int, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
	return get_owned_course(db, user, course_pk)


@router.delete("/{course_pk}")
async def delete_course(course_pk: int, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
	row = get_owned_course(db, user, course_pk)
	docs = db.query(Document).filter(Document.course_id == row.id).all()
	for doc in docs:
		unlink_quietly(doc.file_path)
		db.delete(doc)
	# SQLite does not enforce the ON DELETE clauses without the foreign_keys pragma
	for model in (QuizAttempt, QuizSession, QuizQuestion):
		db.query(model).filter(model.course_id == row.id).delete(synchronize_session=False)
	for model in (StudySession, VoiceCommand):
		db.query(model).filter(model.course_id == row.id).update({model.course_id: None}, synchronize_session=False)
	db.delete(row)
	db.commit()
	return {"success": True, "deleted_documents": len(docs)}
