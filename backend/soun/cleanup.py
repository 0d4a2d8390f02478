from __future__ import annotations
import logging
from datetime import datetime, timedelta
from typing import Dict, Optional

from sqlalchemy import delete, update
from sqlalchemy.orm import Session

from .models import AuthSession, QuizSession
from .services import flashcards
from .services.semantic_memory import semantic_memory

logger = logging.getLogger(__name__)

AUTH_SESSION_MAX_IDLE = timedelta(days=7)
QUIZ_SESSION_MAX_AGE = timedelta(days=1)


def purge_stale_state(db: Session, now: Optional[datetime] = None) -> Dict[str, int]:
	now = now or datetime.utcnow()
	# Tokens idle for a week stop working even before they expire
	res = db.execute(delete(AuthSession).where(AuthSession.last_activity_at < now - AUTH_SESSION_MAX_IDLE))
	auth_removed = res.rowcount or 0

	# Quizzes nobody submitted are kept for history but marked abandoned
	res = db.execute(
		update(QuizSession)
		.where(QuizSession.status == "in_progress", QuizSession.start_time < now - QUIZ_SESSION_MAX_AGE)
		.values(status="abandoned", end_time=now)
	)
	quizzes_abandoned = res.rowcount or 0
	db.commit()

	counts = {
		"auth_sessions": auth_removed,
		"quiz_sessions": quizzes_abandoned,
		"flashcard_sessions": flashcards.purge_expired(),
		"conversation_flows": semantic_memory.cleanup(now),
	}
	if any(counts.values()):
		logger.info("Cleanup removed stale state: %s", counts)
	return counts
