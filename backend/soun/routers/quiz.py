from __future__ import annotations
import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from .auth import User, get_current_user
from ..db import get_db
from ..models import Course, Document, QuizAttempt, QuizQuestion as QuizQuestionRow, QuizSession
from ..services import mastery
from ..services import quizzes
from ..services.quizzes import ConceptAssessment, QuizQuestion, UserAnswer

router = APIRouter(prefix="/api/quiz", tags=["quiz"])

logger = logging.getLogger(__name__)


class GenerateRequest(BaseModel):
	course_id: Optional[int] = None
	document_id: Optional[int] = None
	topic: Optional[str] = None
	count: int = Field(default=5, ge=1, le=20)
	difficulty: str = "medium"


class PostExplanationRequest(BaseModel):
	topic: Optional[str] = None
	explanation: Optional[str] = None
	count: int = Field(default=3, ge=1, le=10)
	difficulty: str = "medium"
	document_id: Optional[int] = None


class EvaluateRequest(BaseModel):
	questions: List[QuizQuestion]
	user_answers: List[UserAnswer]
	attempt_history: Dict[str, int] = {}
	course_id: Optional[int] = None
	session_id: Optional[int] = None


class FollowUpRequest(BaseModel):
	concept_assessments: List[ConceptAssessment]
	document_id: Optional[int] = None


class InterleavedRequest(BaseModel):
	subject: Optional[str] = None
	topics: List[str] = []
	approaches: List[str] = []
	target_count: int = Field(default=8, ge=2, le=20)


class SelfTestRequest(BaseModel):
	course_id: Optional[int] = None
	topic: Optional[str] = None
	count: int = Field(default=5, ge=1, le=20)
	difficulty: str = "medium"


class SelfTestEvaluation(BaseModel):
	questions: List[QuizQuestion]
	answers: List[UserAnswer]
	total_time_ms: int = 0


def _course(db: Session, user: User, course_pk: Optional[int]) -> Optional[Course]:
	if course_pk is None:
		return None
	row = db.get(Course, course_pk)
	if row is None or row.user_id != user.id:
		raise HTTPException(status_code=404, detail="Course not found")
	return row


def _document(db: Session, user: User, document_id: Optional[int]) -> Optional[Document]:
	if document_id is None:
		return None
	row = db.get(Document, document_id)
	if row is None or row.user_id != user.id:
		raise HTTPException(status_code=404, detail="Document not found")
	return row


def _course_material(db: Session, course: Course, limit: int = 3) -> str:
	docs = db.query(Document).filter(Document.course_id == course.id).order_by(Document.upload_date.desc()).limit(limit).all()
	return "\n\n".join(f"{d.title}:\n{(d.content or '')[:3000]}" for d in docs)


def _persist_questions(db: Session, questions: List[QuizQuestion], course: Optional[Course], topic: str) -> None:
	for q in questions:
		db.add(QuizQuestionRow(
			course_id=course.id if course else None,
			topic=q.concept_tested or topic,
			difficulty=q.difficulty,
			question_type=q.type,
			question=q.question,
			options=q.options or [],
			correct_answer=q.correct_answer,
			explanation=q.explanation,
			tags=[t for t in (q.approach, topic) if t],
		))


def _open_session(db: Session, user: User, course: Optional[Course], questions: List[QuizQuestion]) -> QuizSession:
	row = QuizSession(
		user_id=user.id,
		course_id=course.id if course else None,
		topics=sorted({q.concept_tested for q in questions}),
		questions_count=len(questions),
	)
	db.add(row)
	db.commit()
	db.refresh(row)
	return row


def _quiz_payload(questions: List[QuizQuestion], session: Optional[QuizSession] = None) -> Dict[str, Any]:
	out: Dict[str, Any] = {"questions": [q.model_dump() for q in questions], "total": len(questions)}
	if session is not None:
		out["session_id"] = session.id
	return out


@router.post("/generate")
async def generate(req: GenerateRequest, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
	document = _document(db, user, req.document_id)
	course = _course(db, user, req.course_id if req.course_id is not None else (document.course_id if document else None))
	if document is not None:
		content = document.content or ""
	elif course is not None:
		content = _course_material(db, course)
	else:
		raise HTTPException(status_code=400, detail="document_id or course_id is required")
	if not content.strip():
		raise HTTPException(status_code=400, detail="No document content available for quiz generation")
	subject = course.name if course else (req.topic or "general")
	questions = await quizzes.generate_document_quiz(subject, content, topic=req.topic, count=req.count, difficulty=req.difficulty)
	_persist_questions(db, questions, course, req.topic or subject)
	session = _open_session(db, user, course, questions)
	logger.info("Generated %d quiz questions for user %s (session %s)", len(questions), user.id, session.id)
	return _quiz_payload(questions, session)


@router.post("/post-explanation")
async def post_explanation(req: PostExplanationRequest, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
	topic = (req.topic or "").strip()
	explanation = (req.explanation or "").strip()
	if not topic or not explanation:
		raise HTTPException(status_code=400, detail="topic and explanation are required")
	document = _document(db, user, req.document_id)
	questions = await quizzes.generate_post_explanation_quiz(
		topic, explanation, count=req.count, difficulty=req.difficulty,
		document_context=document.content if document else None,
	)
	return {**_quiz_payload(questions), "topic": topic, "compares_approaches": quizzes.explanation_mentions_methods(explanation)}


@router.post("/evaluate")
async def evaluate(req: EvaluateRequest, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
	if not req.questions:
		raise HTTPException(status_code=400, detail="questions are required")
	course = _course(db, user, req.course_id)
	result = await quizzes.evaluate_answers(req.questions, req.user_answers, req.attempt_history)

	by_question = {q.id: q for q in req.questions}
	times = {a.question_id: a.time_spent for a in req.user_answers}
	course_code = course.course_id if course else None
	for item in result["results"]:
		q = by_question[item["question_id"]]
		db.add(QuizAttempt(
			user_id=user.id,
			course_id=course.id if course else None,
			topic=q.concept_tested,
			question_id=q.id,
			user_answer=item["user_answer"],
			is_correct=item["is_correct"],
			time_spent=times.get(q.id),
		))
	db.commit()
	for item in result["results"]:
		mastery.record_answer(db, user.id, by_question[item["question_id"]].concept_tested, course_code, item["is_correct"])

	if req.session_id is not None:
		session = db.get(QuizSession, req.session_id)
		if session is not None and session.user_id == user.id:
			session.correct_count = sum(1 for r in result["results"] if r["is_correct"])
			session.questions_count = len(req.questions)
			session.score = round(result["overall_score"] * 100, 1)
			session.status = "completed"
			session.end_time = datetime.utcnow()
			session.feedback = "; ".join(result["recommendations"]) or None
			db.commit()
	return result


@router.post("/follow-up")
async def follow_up(req: FollowUpRequest, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
	document = _document(db, user, req.document_id)
	return await quizzes.adaptive_follow_up(req.concept_assessments, document.content if document else None)


@router.post("/generate-interleaved")
async def generate_interleaved(req: InterleavedRequest, user: User = Depends(get_current_user)):
	subject = (req.subject or "").strip()
	topics = [t for t in req.topics if t.strip()]
	approaches = [a for a in req.approaches if a.strip()]
	if not subject or not topics or not approaches:
		raise HTTPException(status_code=400, detail="subject, topics and approaches are required")
	questions = await quizzes.generate_interleaved_quiz(subject, topics, approaches, req.target_count)
	return {**_quiz_payload(questions), "subject": subject, "approaches": approaches}


@router.post("/generate-self-test")
async def generate_self_test(req: SelfTestRequest, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
	course = _course(db, user, req.course_id)
	levels = mastery.levels_for(db, user.id, course.course_id if course else None)
	weak_areas = [lvl.topic for lvl in levels if lvl.mastery_level < mastery.WEAK_THRESHOLD]
	topics = [req.topic] if req.topic else [lvl.topic for lvl in levels[:5]]
	if not topics and course is not None:
		topics = [course.name]
	if not topics:
		raise HTTPException(status_code=400, detail="topic or course_id is required")
	context = _course_material(db, course) if course else ""
	questions = await quizzes.generate_self_test(topics, count=req.count, difficulty=req.difficulty,
		weak_areas=weak_areas or None, document_context=context)
	return {**_quiz_payload(questions), "focus_areas": weak_areas or topics}


@router.post("/evaluate-self-test")
async def evaluate_self_test(req: SelfTestEvaluation, user: User = Depends(get_current_user)):
	if not req.questions:
		raise HTTPException(status_code=400, detail="questions are required")
	return quizzes.evaluate_self_test(req.questions, req.answers, req.total_time_ms)
