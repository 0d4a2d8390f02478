"""Per-user memory of topics a student struggles with or has mastered.

Struggles and conversation flows live in process memory; every struggle or
success also nudges the persistent mastery row for the topic.
"""
from __future__ import annotations
import logging
import re
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session

from ..models import StudyLevel
from . import mastery

logger = logging.getLogger(__name__)

STRUGGLE_TYPES = ("understanding", "retention", "application", "concept_connection")
FLOW_LIMIT = 20
FLOW_MAX_AGE = timedelta(hours=24)

CONFUSION_PATTERNS = [
	re.compile(p)
	for p in (
		r"i don'?t understand",
		r"i'?m confused",
		r"can you explain again",
		r"what does .* mean",
		r"i'?m lost",
		r"this is difficult",
		r"i can'?t figure out",
		r"help me with",
		r"i'?m stuck",
	)
]

TOPIC_PATTERNS = [
	re.compile(p, re.IGNORECASE)
	for p in (
		r"mathematics?|math|calculus|algebra|geometry",
		r"physics|mechanics|thermodynamics|electromagnetism",
		r"chemistry|organic|inorganic|biochemistry",
		r"biology|genetics|molecular|anatomy",
		r"computer science|programming|algorithms|data structures",
		r"history|historical|ancient|modern",
		r"literature|english|writing|grammar",
		r"economics|business|entrepreneurship|finance",
		r"psychology|sociology|philosophy",
	)
]
QUOTED_TERM = re.compile(r'"([^"]+)"')


@dataclass
class Struggle:
	topic: str
	course_id: Optional[str]
	struggle_type: str
	severity: int
	context: Dict[str, Any] = field(default_factory=dict)
	first_encountered: datetime = field(default_factory=datetime.utcnow)
	last_encountered: datetime = field(default_factory=datetime.utcnow)
	encounter_count: int = 1
	resolved: bool = False

	def to_dict(self) -> Dict[str, Any]:
		return {
			"topic": self.topic,
			"course_id": self.course_id,
			"struggle_type": self.struggle_type,
			"severity": self.severity,
			"encounter_count": self.encounter_count,
			"resolved": self.resolved,
			"last_encountered": self.last_encountered.isoformat(),
		}


@dataclass
class TopicProgress:
	proficiency: float = 3.0
	successful_interactions: int = 0
	last_studied: datetime = field(default_factory=datetime.utcnow)


@dataclass
class ConversationTurn:
	user_message: str
	assistant_response: str
	topics: List[str]
	struggles: List[str]
	timestamp: datetime = field(default_factory=datetime.utcnow)


def extract_topics(message: str) -> List[str]:
	topics: List[str] = []
	for pattern in TOPIC_PATTERNS:
		topics.extend(m.lower() for m in pattern.findall(message))
	topics.extend(t.lower() for t in QUOTED_TERM.findall(message))
	# Deduplicate, keeping first-seen order
	return list(dict.fromkeys(topics))


def detect_struggles(message: str) -> List[str]:
	lowered = (message or "").lower()
	if not any(p.search(lowered) for p in CONFUSION_PATTERNS):
		return []
	return extract_topics(message)


class SemanticMemory:
	def __init__(self) -> None:
		self._struggles: Dict[int, List[Struggle]] = {}
		self._topics: Dict[str, TopicProgress] = {}
		self._flows: Dict[str, List[ConversationTurn]] = {}

	def reset(self) -> None:
		self._struggles.clear()
		self._topics.clear()
		self._flows.clear()

	def record_struggle(
		self,
		db: Session,
		user_id: int,
		topic: str,
		course_id: Optional[str] = None,
		struggle_type: str = "understanding",
		severity: int = 3,
		context: Optional[Dict[str, Any]] = None,
	) -> Struggle:
		severity = max(1, min(5, int(severity)))
		entries = self._struggles.setdefault(user_id, [])
		existing = next(
			(s for s in entries if s.topic.lower() == topic.lower() and s.course_id == course_id and s.struggle_type == struggle_type),
			None,
		)
		if existing is not None:
			existing.last_encountered = datetime.utcnow()
			existing.encounter_count += 1
			existing.severity = max(existing.severity, severity)
			existing.context.update(context or {})
			existing.resolved = False
			entry = existing
		else:
			entry = Struggle(topic=topic, course_id=course_id, struggle_type=struggle_type, severity=severity, context=dict(context or {}))
			entries.append(entry)
		mastery.upsert_study_level(db, user_id, topic, course_id, attempted=1, delta=-severity, initial=70)
		logger.info("Recorded struggle for user %s: %s (%s, severity %s)", user_id, topic, struggle_type, severity)
		return entry

	def record_success(self, db: Session, user_id: int, topic: str, course_id: Optional[str] = None) -> TopicProgress:
		key = f"{user_id}-{course_id}-{topic}".lower()
		progress = self._topics.setdefault(key, TopicProgress())
		progress.successful_interactions += 1
		progress.last_studied = datetime.utcnow()
		progress.proficiency = min(5.0, progress.proficiency + 0.2)
		# Repeated struggles on this topic count as overcome after a success
		for s in self._struggles.get(user_id, []):
			if s.topic.lower() == topic.lower() and s.course_id == course_id and s.encounter_count >= 2:
				s.resolved = True
		mastery.upsert_study_level(db, user_id, topic, course_id, attempted=1, correct=1, delta=5, initial=70)
		return progress

	def struggling_topics(self, user_id: int) -> List[Struggle]:
		open_struggles = [s for s in self._struggles.get(user_id, []) if not s.resolved]
		return sorted(open_struggles, key=lambda s: (s.severity, s.last_encountered), reverse=True)

	def resolved_count(self, user_id: int) -> int:
		return sum(1 for s in self._struggles.get(user_id, []) if s.resolved)

	@staticmethod
	def mastered_topics(db: Session, user_id: int) -> List[str]:
		rows = db.query(StudyLevel.topic).filter(StudyLevel.user_id == user_id, StudyLevel.mastery_level >= mastery.MASTERED_THRESHOLD).all()
		return [r[0] for r in rows]

	def update_conversation(self, db: Session, user_id: int, session_id: str, user_message: str, assistant_response: str) -> List[str]:
		"""Append a turn to the flow and record any struggles it reveals."""
		struggles = detect_struggles(user_message)
		flow = self._flows.setdefault(f"{user_id}-{session_id}", [])
		flow.append(ConversationTurn(user_message, assistant_response, extract_topics(user_message), struggles))
		del flow[:-FLOW_LIMIT]
		for topic in struggles:
			self.record_struggle(db, user_id, topic, None, "understanding", 3, {"original_question": user_message, "session_id": session_id})
		return struggles

	def conversation(self, user_id: int, session_id: str) -> List[ConversationTurn]:
		return list(self._flows.get(f"{user_id}-{session_id}", []))

	def personalized_context(self, db: Session, user_id: int, current_topic: Optional[str] = None) -> Dict[str, Any]:
		struggles = self.struggling_topics(user_id)
		mastered = self.mastered_topics(db, user_id)
		related: List[Struggle] = []
		if current_topic:
			needle = current_topic.lower()
			related = [s for s in struggles if needle in s.topic.lower() or s.topic.lower() in needle]
		return {
			"struggling_topics": [s.topic for s in struggles],
			"mastered_topics": mastered,
			"related_struggles": [s.to_dict() for s in related],
			"recommendations": self.recommendations(struggles),
			"encouragement": self.encouragement(user_id, struggles, mastered),
		}

	@staticmethod
	def recommendations(struggles: List[Struggle]) -> List[str]:
		recs: List[str] = []
		if not struggles:
			return recs
		top = struggles[0]
		if top.severity >= 4:
			recs.append(f"Consider breaking down {top.topic} into smaller concepts")
			recs.append(f"Try the Feynman Technique: explain {top.topic} in simple terms")
		if top.encounter_count >= 3:
			recs.append(f"You've struggled with {top.topic} before. Let's try a different approach")
			recs.append(f"Consider seeking additional resources for {top.topic}")
		understanding = sum(1 for s in struggles if s.struggle_type == "understanding")
		retention = sum(1 for s in struggles if s.struggle_type == "retention")
		if understanding > retention:
			recs.append("Focus on conceptual understanding rather than memorization")
			recs.append("Try using analogies and real-world examples")
		elif retention > understanding:
			recs.append("Use spaced repetition to improve memory retention")
			recs.append("Create flashcards for key concepts")
		return recs[:3]

	def encouragement(self, user_id: int, struggles: List[Struggle], mastered: List[str]) -> List[str]:
		messages: List[str] = []
		if len(mastered) > len(struggles):
			messages.append(f"Great job! You've mastered {len(mastered)} topics")
		if struggles:
			overcome = self.resolved_count(user_id)
			if overcome:
				messages.append(f"You've overcome {overcome} challenges recently - keep it up!")
			messages.append("Remember, struggling with difficult concepts is part of learning")
			messages.append("Each question you ask helps you understand better")
		return messages[:2]

	def cleanup(self, now: Optional[datetime] = None) -> int:
		"""Drop conversation flows idle for more than a day."""
		now = now or datetime.utcnow()
		stale = [key for key, flow in self._flows.items() if not flow or now - flow[-1].timestamp > FLOW_MAX_AGE]
		for key in stale:
			del self._flows[key]
		return len(stale)


semantic_memory = SemanticMemory()
