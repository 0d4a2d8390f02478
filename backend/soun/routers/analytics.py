from __future__ import annotations
from collections import defaultdict
from datetime import datetime
from typing import Any, Dict, List

from fastapi import APIRouter, Depends
from sqlalchemy import func
from sqlalchemy.orm import Session

from .auth import User, get_current_user
from ..db import get_db
from ..models import Course, Document, VoiceCommand
from ..services import mastery

router = APIRouter(prefix="/api", tags=["analytics"])


def _voice_count(db: Session, user_id: int) -> int:
	return db.query(func.count(VoiceCommand.id)).filter(VoiceCommand.user_id == user_id).scalar() or 0


@router.get("/user/recent-activity")
async def recent_activity(user: User = Depends(get_current_user), db: Session = Depends(get_db)):
	courses = db.query(Course).filter(Course.user_id == user.id).order_by(Course.created_at.desc()).all()
	counts = dict(
		db.query(Document.course_id, func.count(Document.id))
		.filter(Document.user_id == user.id)
		.group_by(Document.course_id)
		.all()
	)
	recent_docs = (
		db.query(Document)
		.filter(Document.user_id == user.id)
		.order_by(Document.upload_date.desc(), Document.id.desc())
		.limit(5)
		.all()
	)
	levels = mastery.levels_for(db, user.id)
	return {
		"courses": [
			{"id": c.id, "course_id": c.course_id, "name": c.name, "document_count": counts.get(c.id, 0)}
			for c in courses
		],
		"recent_documents": [
			{"id": d.id, "title": d.title, "course_id": d.course_id, "upload_date": d.upload_date}
			for d in recent_docs
		],
		"average_mastery": mastery.average_mastery(levels),
		"topics_studied": len(levels),
	}


@router.get("/user/mastery")
async def user_mastery(user: User = Depends(get_current_user), db: Session = Depends(get_db)):
	levels = mastery.levels_for(db, user.id)
	names = {c.course_id: c.name for c in db.query(Course).filter(Course.user_id == user.id).all()}
	grouped: Dict[str, List[Dict[str, Any]]] = defaultdict(list)
	for lvl in levels:
		grouped[lvl.course_id].append({
			"topic": lvl.topic,
			"mastery_level": lvl.mastery_level,
			"questions_attempted": lvl.questions_attempted,
			"questions_correct": lvl.questions_correct,
			"last_updated": lvl.last_updated,
		})
	by_course = [
		{
			"course_id": code,
			"course_name": names.get(code, "General" if code == mastery.GENERAL_COURSE else code),
			"average_mastery": round(sum(t["mastery_level"] for t in topics) / len(topics)),
			"topics": topics,
		}
		for code, topics in grouped.items()
	]
	most_studied = max(by_course, key=lambda c: sum(t["questions_attempted"] for t in c["topics"]), default=None)
	return {
		"courses": by_course,
		"overall_mastery": mastery.average_mastery(levels),
		"topics_studied": len(levels),
		"most_studied_course": most_studied["course_name"] if most_studied else None,
	}


@router.get("/user/mastery-stats")
async def mastery_stats(user: User = Depends(get_current_user), db: Session = Depends(get_db)):
	levels = mastery.levels_for(db, user.id)
	return mastery.study_level_summary(levels, voice_interactions=_voice_count(db, user.id))


@router.get("/curriculum-overview")
async def curriculum_overview(user: User = Depends(get_current_user), db: Session = Depends(get_db)):
	courses = db.query(Course).filter(Course.user_id == user.id).order_by(Course.year.desc(), Course.name).all()
	today = datetime.utcnow()
	semester = mastery.current_semester(today)
	by_semester: Dict[str, List[Dict[str, Any]]] = defaultdict(list)
	for c in courses:
		label = f"{c.semester or 'Unscheduled'} {c.year or ''}".strip()
		by_semester[label].append({"id": c.id, "course_id": c.course_id, "name": c.name, "credits": c.credits})
	current_label = f"{semester} {today.year}"
	current = by_semester.get(current_label, [])
	return {
		"current_semester": current_label,
		"current_courses": current,
		"current_credits": sum(c["credits"] or 0 for c in current),
		"semesters": dict(by_semester),
		"total_courses": len(courses),
		"total_credits": sum(c.credits or 0 for c in courses),
	}
