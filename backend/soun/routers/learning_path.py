from __future__ import annotations
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel
from sqlalchemy.orm import Session

from .auth import User, get_current_user
from ..db import get_db
from ..services import mastery
from ..services.learning_path import PERFORMANCES, learning_paths
from ..services.semantic_memory import semantic_memory

router = APIRouter(prefix="/api/learning-path", tags=["learning_path"])


class CompleteStepRequest(BaseModel):
	step_id: str
	topic: Optional[str] = None
	performance: str


@router.get("/adaptive")
async def adaptive_path(course_id: Optional[str] = None, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
	return learning_paths.generate(db, user.id, course_id)


@router.get("/next-step")
async def next_step(context: Optional[str] = None, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
	step = learning_paths.next_step(db, user.id, context)
	return {"next_step": step, "has_next": step is not None}


@router.get("/combined")
async def combined(course_id: Optional[str] = None, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
	path = learning_paths.generate(db, user.id, course_id)
	levels = mastery.levels_for(db, user.id, course_id)
	return {
		"learning_path": path,
		"struggles": [s.to_dict() for s in semantic_memory.struggling_topics(user.id)],
		"mastery": mastery.study_level_summary(levels),
		"personalized_context": semantic_memory.personalized_context(db, user.id),
	}


@router.post("/complete-step")
async def complete_step(req: CompleteStepRequest, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
	if req.performance not in PERFORMANCES:
		raise HTTPException(status_code=400, detail="performance must be excellent, good, or struggling")
	path = learning_paths.complete_step(db, user.id, req.step_id, req.performance, req.topic)
	return {"success": True, "updated_path": path}
