from __future__ import annotations
import logging
from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from .auth import User, get_current_user
from ..db import get_db
from ..models import Course, StudySession
from ..services import mastery

router = APIRouter(prefix="/api/study-sessions", tags=["study_sessions"])

logger = logging.getLogger(__name__)


class SessionCreate(BaseModel):
	course_id: Optional[int] = None
	topic: Optional[str] = None


class SessionComplete(BaseModel):
	duration_minutes: int = Field(ge=0)
	focus_score: Optional[int] = Field(default=None, ge=0, le=100)
	completion_rate: int = Field(default=100, ge=0, le=100)


class SessionSummaryRequest(BaseModel):
	sessions: Optional[List[SessionComplete]] = None


class SessionOut(BaseModel):
	id: int
	course_id: Optional[int] = None
	topic: Optional[str] = None
	duration_minutes: int
	focus_score: Optional[int] = None
	completion_rate: Optional[int] = None
	status: str
	start_time: datetime
	end_time: Optional[datetime] = None

	model_config = {"from_attributes": True}


def completion_mastery(completion_rate: int) -> int:
	return min(100, round(70 + completion_rate / 3))


def session_tips(sessions: List[SessionComplete]) -> List[str]:
	tips: List[str] = []
	if not sessions:
		return ["Start a study session to get personalised tips."]
	focus = [s.focus_score for s in sessions if s.focus_score is not None]
	if focus and sum(focus) / len(focus) < 70:
		tips.append("Your focus dipped this time. Try the Pomodoro technique: 25 minutes on, 5 minutes off.")
	completed = sum(1 for s in sessions if s.completion_rate >= 100)
	if completed > 3:
		tips.append(f"Great consistency! You completed {completed} sessions.")
	if sum(s.duration_minutes for s in sessions) > 90:
		tips.append("You studied for over 90 minutes. Remember to take regular breaks to stay fresh.")
	return tips or ["Nice steady session. Keep the rhythm going tomorrow."]


@router.post("", response_model=SessionOut, status_code=201)
async def create_session(req: SessionCreate, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
	if req.course_id is not None:
		course = db.get(Course, req.course_id)
		if course is None or course.user_id != user.id:
			raise HTTPException(status_code=404, detail="Course not found")
	row = StudySession(user_id=user.id, course_id=req.course_id, topic=(req.topic or "").strip() or None)
	db.add(row)
	db.commit()
	db.refresh(row)
	return row


@router.post("/summary")
async def summary(req: SessionSummaryRequest, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
	if req.sessions is not None:
		sessions = req.sessions
	else:
		rows = db.query(StudySession).filter(StudySession.user_id == user.id, StudySession.status == "completed").all()
		sessions = [SessionComplete(duration_minutes=r.duration_minutes, focus_score=r.focus_score, completion_rate=r.completion_rate or 0) for r in rows]
	return {
		"total_sessions": len(sessions),
		"total_minutes": sum(s.duration_minutes for s in sessions),
		"tips": session_tips(sessions),
	}


@router.post("/{session_id}/complete", response_model=SessionOut)
async def complete_session(session_id: int, req: SessionComplete, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
	row = db.get(StudySession, session_id)
	if row is None or row.user_id != user.id:
		raise HTTPException(status_code=404, detail="Study session not found")
	if row.status == "completed":
		raise HTTPException(status_code=400, detail="Study session already completed")
	row.duration_minutes = req.duration_minutes
	row.focus_score = req.focus_score
	row.completion_rate = req.completion_rate
	row.status = "completed"
	row.end_time = datetime.utcnow()
	db.commit()
	if row.topic:
		course = db.get(Course, row.course_id) if row.course_id is not None else None
		mastery.upsert_study_level(db, user.id, row.topic, course.course_id if course else None,
			mastery=completion_mastery(req.completion_rate))
	db.refresh(row)
	return row


@router.get("", response_model=List[SessionOut])
async def list_sessions(user: User = Depends(get_current_user), db: Session = Depends(get_db)):
	return db.query(StudySession).filter(StudySession.user_id == user.id).order_by(StudySession.start_time.desc(), StudySession.id.desc()).all()
