from __future__ import annotations

import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from .auth import User, get_current_user
from ..db import get_db
from ..models import Course, Document
from ..services import flashcards as cards_service
from ..services import mastery
from ..services.flashcards import Flashcard


router = APIRouter(prefix="/api/flashcards", tags=["flashcards"])

logger = logging.getLogger(__name__)


class FromDocumentRequest(BaseModel):
	document_id: int
	count: int = Field(default=10, ge=1, le=30)


class FromVoiceRequest(BaseModel):
	transcript: str
	course_id: Optional[int] = None
	count: int = Field(default=5, ge=1, le=20)


class StartSessionRequest(BaseModel):
	cards: List[Flashcard]
	course_id: Optional[int] = None
	session_type: str = "practice"


class AnswerRequest(BaseModel):
	session_id: str
	answer: str


def _course(db: Session, user: User, course_pk: Optional[int]) -> Optional[Course]:
	if course_pk is None:
		return None
	course = db.get(Course, course_pk)
	if course is None or course.user_id != user.id:
		raise HTTPException(status_code=404, detail="Course not found")
	return course


@router.post("/generate-from-document")
async def generate_from_document(req: FromDocumentRequest, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
	doc = db.get(Document, req.document_id)
	if doc is None or doc.user_id != user.id:
		raise HTTPException(status_code=404, detail="Document not found")
	if not (doc.content or "").strip():
		raise HTTPException(status_code=400, detail="Document has no extractable text")
	cards = await cards_service.generate_from_document(doc.title, doc.content, req.count)
	return {"flashcards": [c.model_dump(mode="json") for c in cards], "total": len(cards), "source": doc.title}


@router.post("/generate-from-voice")
async def generate_from_voice(req: FromVoiceRequest, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
	if not req.transcript.strip():
		raise HTTPException(status_code=400, detail="transcript is required")
	course = _course(db, user, req.course_id)
	cards = await cards_service.generate_from_voice(req.transcript.strip(), req.count, course.name if course else None)
	return {"flashcards": [c.model_dump(mode="json") for c in cards], "total": len(cards)}


@router.post("/start-voice-session")
async def start_voice_session(req: StartSessionRequest, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
	if not req.cards:
		raise HTTPException(status_code=400, detail="At least one flashcard is required")
	if req.session_type not in cards_service.SESSION_TYPES:
		raise HTTPException(status_code=400, detail="session_type must be practice, review, or challenge")
	course = _course(db, user, req.course_id)
	session_id, response = cards_service.start_session(user.id, req.cards, req.session_type, course.id if course else None)
	logger.info("User %s started flashcard session %s with %d cards", user.id, session_id, len(req.cards))
	return {"session_id": session_id, "question": response, "total": len(req.cards)}


@router.post("/process-voice-answer")
async def process_voice_answer(req: AnswerRequest, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
	session = cards_service.get_session(req.session_id, user.id)
	course_pk = session.course_id if session else None
	turn = await cards_service.process_answer(req.session_id, user.id, req.answer)
	if turn.graded is not None:
		course = db.get(Course, course_pk) if course_pk is not None else None
		mastery.record_answer(db, user.id, turn.graded.card.category, course.course_id if course else None, turn.graded.correct)
	return turn.response


@router.get("/next-question/{session_id}")
async def next_question(session_id: str, user: User = Depends(get_current_user)):
	return cards_service.next_question(session_id, user.id)


@router.get("/session-stats/{session_id}")
async def session_stats(session_id: str, user: User = Depends(get_current_user)):
	stats = cards_service.session_stats(session_id, user.id)
	if stats is None:
		raise HTTPException(status_code=404, detail="Session not found")
	return stats
