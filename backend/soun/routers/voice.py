from __future__ import annotations
import logging
import uuid
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from .auth import User, get_current_user
from ..db import get_db
from ..models import Course, Document, VoiceCommand
from ..services import voice_assistant as assistant
from ..services.documents import voice_study_guide
from ..services.semantic_memory import semantic_memory
from ..services.voice_analytics import TIMEFRAMES, voice_analytics

router = APIRouter(prefix="/api/voice", tags=["voice"])

logger = logging.getLogger(__name__)

MAX_CONTEXT_DOCUMENTS = 10


class AudioFeatures(BaseModel):
	volume: float = Field(ge=0, le=1)
	pitch: float = Field(ge=0, le=1)
	speed: float = Field(ge=0, le=1)
	pauses: float = Field(ge=0, le=1)


class VoiceRequest(BaseModel):
	command: str
	course_id: Optional[int] = None
	context: Optional[str] = None
	session_id: Optional[str] = None
	audio_features: Optional[AudioFeatures] = None


class VoiceStudyGuideRequest(BaseModel):
	course_id: int
	topic: Optional[str] = None


def _owned_course(db: Session, user: User, course_pk: Optional[int]) -> Optional[Course]:
	if course_pk is None:
		return None
	course = db.get(Course, course_pk)
	if course is None or course.user_id != user.id:
		raise HTTPException(status_code=404, detail="Course not found")
	return course


@router.post("/process")
async def process_command(req: VoiceRequest, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
	command = (req.command or "").strip()
	if not command:
		raise HTTPException(status_code=400, detail="command is required")
	course = _owned_course(db, user, req.course_id)
	category = assistant.categorize(command)
	session_id = req.session_id or uuid.uuid4().hex

	page = assistant.detect_navigation(command)
	if page is not None:
		response = f"Taking you to {page}."
		db.add(VoiceCommand(user_id=user.id, course_id=course.id if course else None, command=command, response=response,
			category="System", context=req.context, session_id=session_id, processed=True))
		db.commit()
		return {
			"response": response, "course_context": course.name if course else None, "action": "navigate",
			"data": {"page": page}, "context_switch": False, "emotion": None, "category": "System",
			"semantic_context": None,
		}

	if req.audio_features is not None:
		f = req.audio_features
		emotion = assistant.audio_emotion(f.volume, f.pitch, f.speed, f.pauses)
	else:
		emotion = await assistant.detect_emotion(command)

	topic = assistant.extract_main_topic(command)
	context = semantic_memory.personalized_context(db, user.id, topic)
	if course is not None:
		docs = (
			db.query(Document)
			.filter(Document.course_id == course.id)
			.order_by(Document.upload_date.desc())
			.limit(MAX_CONTEXT_DOCUMENTS)
			.all()
		)
		response = await assistant.answer_with_documents(
			command, course.name, [{"title": d.title, "content": d.content} for d in docs],
			emotion=emotion, struggles=context["struggling_topics"],
		)
	else:
		response = await assistant.answer_general(command, emotion=emotion)

	semantic_memory.update_conversation(db, user.id, session_id, command, response)
	# Refresh after the turn so newly detected struggles show up
	context = semantic_memory.personalized_context(db, user.id, topic)
	db.add(VoiceCommand(user_id=user.id, course_id=course.id if course else None, command=command, response=response,
		category=category, emotion=emotion["primary_emotion"], context=req.context, session_id=session_id, processed=True))
	db.commit()
	return {
		"response": response,
		"course_context": course.name if course else None,
		"action": None,
		"data": {"topic": topic, "session_id": session_id},
		"context_switch": False,
		"emotion": emotion,
		"category": category,
		"semantic_context": {
			"struggling_topics": context["struggling_topics"],
			"recommendations": context["recommendations"],
			"encouragement": context["encouragement"],
		},
	}


@router.get("/history")
async def history(limit: int = Query(default=20, ge=1, le=200), user: User = Depends(get_current_user), db: Session = Depends(get_db)):
	rows = (
		db.query(VoiceCommand)
		.filter(VoiceCommand.user_id == user.id)
		.order_by(VoiceCommand.timestamp.desc(), VoiceCommand.id.desc())
		.limit(limit)
		.all()
	)
	return [
		{"id": r.id, "command": r.command, "response": r.response, "category": r.category, "emotion": r.emotion,
			"course_id": r.course_id, "timestamp": r.timestamp}
		for r in rows
	]


@router.post("/study-guide")
async def study_guide(req: VoiceStudyGuideRequest, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
	course = _owned_course(db, user, req.course_id)
	docs = db.query(Document).filter(Document.course_id == course.id).order_by(Document.upload_date.desc()).limit(5).all()
	text = await voice_study_guide(course.name, [{"title": d.title, "content": d.content} for d in docs], req.topic)
	return {"course": course.name, "topic": req.topic, "study_guide": text}


@router.get("/analytics")
async def analytics(timeframe: str = "week", user: User = Depends(get_current_user), db: Session = Depends(get_db)) -> Dict[str, Any]:
	if timeframe not in TIMEFRAMES:
		raise HTTPException(status_code=400, detail="timeframe must be one of day, week, month")
	return voice_analytics(db, user.id, timeframe)
