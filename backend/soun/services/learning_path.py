"""Adaptive learning paths built from mastery rows and recorded struggles.

Paths are cached per user in process memory and regenerated when missing or
fully completed.
"""
from __future__ import annotations
import logging
import uuid
from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from ..models import Course, Document, StudyLevel
from . import mastery
from .quizzes import PRACTICE_HEAVY_SUBJECTS
from .semantic_memory import SemanticMemory, Struggle, semantic_memory

logger = logging.getLogger(__name__)

PERFORMANCES = ("excellent", "good", "struggling")

VOCAL_STRATEGIES: Dict[str, List[Dict[str, Any]]] = {
	"mathematics": [
		{"strategy": "Verbal Problem Solving", "description": "Talk through each step of mathematical problems out loud",
			"techniques": ["Explain your reasoning for each step", "Verbalize the operations you're performing", "Teach the solution method to an imaginary student"]},
		{"strategy": "Concept Explanation", "description": "Explain mathematical concepts using everyday language",
			"techniques": ["Describe abstract concepts using real-world analogies", "Explain why formulas work the way they do", "Verbally compare different solution methods"]},
	],
	"physics": [
		{"strategy": "Phenomenon Description", "description": "Describe physical phenomena and relate them to equations",
			"techniques": ["Explain what's happening physically in a problem", "Relate equations to real-world behavior", "Describe energy transformations verbally"]},
	],
	"chemistry": [
		{"strategy": "Reaction Narration", "description": "Verbally describe chemical processes and reactions",
			"techniques": ["Narrate what happens during a reaction", "Explain molecular interactions in simple terms"]},
	],
	"engineering": [
		{"strategy": "Design Reasoning", "description": "Verbally justify design decisions and trade-offs",
			"techniques": ["Explain why certain design choices were made", "Describe system interactions and dependencies"]},
	],
	"computer science": [
		{"strategy": "Algorithm Explanation", "description": "Describe algorithms and code logic verbally",
			"techniques": ["Explain algorithm steps in plain English", "Describe data flow through programs", "Explain time and space complexity trade-offs"]},
	],
}
DEFAULT_VOCAL_STRATEGIES = [
	{"strategy": "Verbal Teaching", "description": "Explain concepts as if teaching someone else",
		"techniques": ["Break down complex ideas into simple explanations", "Use analogies and examples", "Summarize key points clearly"]},
]


class Resource(BaseModel):
	type: str
	title: str
	description: str
	document_id: Optional[int] = None


class LearningPathStep(BaseModel):
	id: str
	topic: str
	course_id: Optional[str] = None
	priority: int = Field(ge=1, le=5)
	difficulty: str
	estimated_time: int
	prerequisites: List[str] = []
	reason: str
	resources: List[Resource] = []
	adaptive_reason: str


class LearningPath(BaseModel):
	user_id: int
	path_id: str
	title: str
	description: str
	total_estimated_time: int
	steps: List[LearningPathStep]
	completed_steps: List[str] = []
	generated_at: datetime
	last_updated: datetime
	insights: Dict[str, Any]


def vocal_strategies(subject: str) -> List[Dict[str, Any]]:
	return VOCAL_STRATEGIES.get(subject.lower(), DEFAULT_VOCAL_STRATEGIES)


def learning_velocity(levels: List[StudyLevel]) -> int:
	mastered = sum(1 for lvl in levels if lvl.mastery_level >= mastery.MASTERED_THRESHOLD)
	return max(1, mastered // 4)


def preferred_difficulty(levels: List[StudyLevel]) -> str:
	if not levels:
		return "beginner"
	avg = sum(lvl.mastery_level for lvl in levels) / len(levels)
	if avg >= 85:
		return "advanced"
	if avg >= 70:
		return "intermediate"
	return "beginner"


def path_description(step_count: int, struggles: int, mastered: int) -> str:
	return (
		f"Personalized learning path with {step_count} steps. Addressing {struggles} areas for improvement "
		f"while building on {mastered} mastered topics."
	)


def _step_id(kind: str) -> str:
	return f"{kind}_{uuid.uuid4().hex[:8]}"


class LearningPathService:
	def __init__(self, memory: SemanticMemory) -> None:
		self.memory = memory
		self._paths: Dict[int, LearningPath] = {}

	def reset(self) -> None:
		self._paths.clear()

	def _resources(self, db: Session, user_id: int, topic: str, kind: str) -> List[Resource]:
		docs = db.query(Document).filter(Document.user_id == user_id).order_by(Document.upload_date.desc()).limit(3).all()
		if not docs:
			return [Resource(type=kind, title=f"{topic} Review", description=f"Comprehensive review of {topic} concepts")]
		return [Resource(type="document", title=d.title, description=f"Study material for {topic}", document_id=d.id) for d in docs]

	def _prerequisite_gaps(self, db: Session, user_id: int, levels: List[StudyLevel]) -> List[str]:
		# Catalogue prerequisites of enrolled courses the student has not taken or not mastered
		courses = db.query(Course).filter(Course.user_id == user_id).all()
		enrolled = {c.course_id.lower() for c in courses}
		solid = {lvl.course_id.lower() for lvl in levels if lvl.mastery_level >= mastery.WEAK_THRESHOLD}
		gaps: List[str] = []
		for course in courses:
			for prereq in course.prerequisites or []:
				key = str(prereq).lower()
				if (key not in enrolled or key not in solid) and prereq not in gaps:
					gaps.append(str(prereq))
		return gaps

	def generate(self, db: Session, user_id: int, course_id: Optional[str] = None) -> LearningPath:
		levels = mastery.levels_for(db, user_id, course_id)
		struggles: List[Struggle] = self.memory.struggling_topics(user_id)
		if course_id:
			struggles = [s for s in struggles if s.course_id in (None, course_id)]
		mastered = self.memory.mastered_topics(db, user_id)
		strong_areas = [lvl.topic for lvl in levels if lvl.mastery_level >= mastery.MASTERED_THRESHOLD]

		subject_text = " ".join([course_id or ""] + [s.topic for s in struggles]).lower()
		if course_id:
			course = db.query(Course).filter(Course.user_id == user_id, Course.course_id == course_id).first()
			if course is not None:
				subject_text += f" {course.name.lower()}"
		subject = next((s for s in PRACTICE_HEAVY_SUBJECTS if s in subject_text), None)
		strategies = vocal_strategies(subject) if subject else []

		steps: List[LearningPathStep] = []
		for struggle in struggles[:3]:
			reason = f"You've shown difficulty with {struggle.topic}. Let's break it down and build understanding."
			resources = self._resources(db, user_id, struggle.topic, "review")
			if strategies:
				primary = strategies[0]
				reason += f" We'll use vocal techniques: {' and '.join(primary['techniques'][:2])}."
				resources.append(Resource(type="practice", title=f"{primary['strategy']} for {struggle.topic}",
					description=f"{primary['description']} - {primary['techniques'][0]}"))
			steps.append(LearningPathStep(id=_step_id("struggle"), topic=struggle.topic, course_id=struggle.course_id,
				priority=1, difficulty="beginner", estimated_time=45, reason=reason, resources=resources,
				adaptive_reason="weakness_detected"))

		for strategy in strategies[:2]:
			steps.append(LearningPathStep(id=_step_id("vocal_practice"), topic=f"Vocal Practice: {strategy['strategy']}",
				course_id=course_id, priority=2, difficulty="intermediate", estimated_time=30,
				reason=f"Practice explaining concepts out loud to deepen understanding. {strategy['description']}",
				resources=[Resource(type="practice", title=f"Technique: {t}", description="Practice this vocal learning technique") for t in strategy["techniques"]],
				adaptive_reason="natural_progression"))

		for gap in self._prerequisite_gaps(db, user_id, levels)[:2]:
			steps.append(LearningPathStep(id=_step_id("prerequisite"), topic=gap, course_id=course_id, priority=2,
				difficulty="beginner", estimated_time=30,
				reason=f"Mastering {gap} will help you understand more advanced concepts.",
				resources=self._resources(db, user_id, gap, "document"), adaptive_reason="prerequisite_missing"))

		difficulty = preferred_difficulty(levels)
		for area in strong_areas[:2]:
			steps.append(LearningPathStep(id=_step_id("progression"), topic=f"Advanced {area}", course_id=course_id,
				priority=3, difficulty=difficulty, estimated_time=40, prerequisites=[area],
				reason=f"Ready to build on your strong foundation in {area}.",
				resources=self._resources(db, user_id, area, "document"), adaptive_reason="natural_progression"))

		partial = [lvl for lvl in levels if mastery.WEAK_THRESHOLD <= lvl.mastery_level < mastery.MASTERED_THRESHOLD]
		for lvl in partial[:2]:
			steps.append(LearningPathStep(id=_step_id("reinforcement"), topic=lvl.topic, course_id=lvl.course_id,
				priority=4, difficulty="intermediate", estimated_time=25,
				reason=f"Strengthen your understanding of {lvl.topic} to achieve mastery.",
				resources=self._resources(db, user_id, lvl.topic, "practice"), adaptive_reason="reinforcement_needed"))

		steps.sort(key=lambda s: s.priority)
		now = datetime.utcnow()
		path = LearningPath(
			user_id=user_id,
			path_id=f"adaptive_{user_id}_{uuid.uuid4().hex[:8]}",
			title=f"Adaptive Learning Path - {course_id}" if course_id else "Personalized Learning Journey",
			description=path_description(len(steps), len(struggles), len(mastered)),
			total_estimated_time=sum(s.estimated_time for s in steps),
			steps=steps,
			generated_at=now,
			last_updated=now,
			insights={
				"struggling_topics": [s.topic for s in struggles],
				"mastered_topics": mastered,
				"learning_velocity": learning_velocity(levels),
				"preferred_difficulty": difficulty,
				"improvement_areas": [lvl.topic for lvl in levels if lvl.mastery_level < mastery.WEAK_THRESHOLD],
			},
		)
		self._paths[user_id] = path
		logger.info("Generated learning path for user %s with %d steps", user_id, len(steps))
		return path

	def current(self, db: Session, user_id: int) -> LearningPath:
		return self._paths.get(user_id) or self.generate(db, user_id)

	def next_step(self, db: Session, user_id: int, context: Optional[str] = None) -> Optional[LearningPathStep]:
		path = self.current(db, user_id)
		remaining = [s for s in path.steps if s.id not in path.completed_steps]
		if not remaining:
			path = self.generate(db, user_id)
			return path.steps[0] if path.steps else None
		if context:
			needle = context.lower()
			for step in remaining:
				if needle in step.topic.lower() or any(needle in p.lower() for p in step.prerequisites):
					return step
		return remaining[0]

	def complete_step(self, db: Session, user_id: int, step_id: str, performance: str, topic: Optional[str] = None) -> LearningPath:
		"""Mark a step done and adapt the remaining path to how it went.

		``topic`` names the step's subject when the step is not in the cached path.
		"""
		if performance not in PERFORMANCES:
			raise ValueError(f"performance must be one of {', '.join(PERFORMANCES)}")
		path = self._paths.get(user_id) or self.generate(db, user_id)
		if step_id not in path.completed_steps:
			path.completed_steps.append(step_id)
		step = next((s for s in path.steps if s.id == step_id), None)
		topic = step.topic if step is not None else topic
		course_id = step.course_id if step is not None else None
		if topic and performance == "struggling":
			path.steps.insert(0, LearningPathStep(id=_step_id("reinforcement"), topic=f"{topic} - Fundamentals Review",
				course_id=course_id, priority=1, difficulty="beginner", estimated_time=20,
				reason=f"Let's revisit the basics of {topic} to build a stronger foundation.",
				resources=self._resources(db, user_id, topic, "review"), adaptive_reason="struggle_pattern"))
			self.memory.record_struggle(db, user_id, topic, course_id, "application", 4,
				{"step_id": step_id, "performance": performance})
		elif topic and performance == "excellent":
			path.steps.append(LearningPathStep(id=_step_id("accelerated"), topic=f"Advanced {topic} Applications",
				course_id=course_id, priority=3, difficulty="advanced", estimated_time=35, prerequisites=[topic],
				reason=f"Since you've mastered {topic}, let's explore advanced applications.",
				resources=self._resources(db, user_id, topic, "practice"), adaptive_reason="natural_progression"))
			self.memory.record_success(db, user_id, topic, course_id)
		self._reprioritize(path, user_id)
		path.total_estimated_time = sum(s.estimated_time for s in path.steps)
		path.last_updated = datetime.utcnow()
		return path

	def _reprioritize(self, path: LearningPath, user_id: int) -> None:
		struggles = self.memory.struggling_topics(user_id)
		for step in path.steps:
			if step.id in path.completed_steps:
				continue
			if any(s.topic.lower() in step.topic.lower() for s in struggles):
				step.priority = max(1, step.priority - 1)
		path.steps.sort(key=lambda s: s.priority)


learning_paths = LearningPathService(semantic_memory)
