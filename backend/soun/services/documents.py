"""LLM document analysis, summaries, explanations, examples, study guides and voice annotations."""
from __future__ import annotations
import logging
import math
import uuid
from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from ..exceptions import LLMError
from ..openai_client import ask_json, ask_text

logger = logging.getLogger(__name__)

MAX_ANALYSIS_CHARS = 8000
WORDS_PER_MINUTE = 200
DIFFICULTIES = ("beginner", "intermediate", "advanced")
SUMMARY_TARGETS = {"short": (200, 0.1), "medium": (500, 0.2), "long": (1000, 0.3)}
ANNOTATION_TYPES = ("note", "question", "summary", "highlight")

ANALYST_SYSTEM = (
	"You are an expert educational content analyst. Analyze documents to understand their educational value, "
	"extract key concepts, and prepare teaching materials. Always return valid JSON."
)


class DocumentAnalysis(BaseModel):
	summary: str = "No summary available"
	key_topics: List[str] = []
	learning_objectives: List[str] = []
	difficulty: str = "intermediate"
	estimated_study_time: int = 30
	concepts: List[Dict[str, Any]] = []
	questions: List[Dict[str, Any]] = []
	prerequisites: List[str] = []
	related_topics: List[str] = []
	word_count: int = 0
	reading_time: int = 0
	analyzed: bool = True


class KeyTerm(BaseModel):
	term: str
	definition: str = ""


class GuideSection(BaseModel):
	title: str
	content: str = ""
	key_points: List[str] = []


class StudyGuide(BaseModel):
	id: str
	title: str
	course_id: Optional[int] = None
	document_ids: List[int]
	sections: List[GuideSection] = []
	key_terms: List[KeyTerm] = []
	practice_questions: List[Dict[str, Any]] = []
	summary: str = "Generated study guide from uploaded materials"
	estimated_study_time: int = 60
	difficulty: str = "intermediate"
	created_at: datetime = Field(default_factory=datetime.utcnow)


def word_count(text: str) -> int:
	return len((text or "").split())


def reading_time(words: int) -> int:
	return math.ceil(words / WORDS_PER_MINUTE)


def summary_target_words(length: str, words: int) -> int:
	cap, share = SUMMARY_TARGETS.get(length, SUMMARY_TARGETS["medium"])
	return min(cap, int(words * share))


def _str_list(value: Any) -> List[str]:
	if not isinstance(value, list):
		return []
	return [str(v) for v in value if v]


def _dict_list(value: Any) -> List[Dict[str, Any]]:
	if not isinstance(value, list):
		return []
	return [v for v in value if isinstance(v, dict)]


def _pick(data: Dict[str, Any], *keys: str, default: Any = None) -> Any:
	# Models answer in either snake_case or camelCase
	for key in keys:
		if key in data and data[key] not in (None, ""):
			return data[key]
	return default


def basic_analysis(content: str, filename: str, course_name: Optional[str] = None) -> DocumentAnalysis:
	words = word_count(content)
	return DocumentAnalysis(
		summary=f"File uploaded: {filename}",
		key_topics=[course_name or "uploaded-file"],
		learning_objectives=[f"Study material for {course_name or 'course'}"],
		estimated_study_time=max(15, reading_time(words)),
		word_count=words,
		reading_time=reading_time(words),
		analyzed=False,
	)


def _clip_for_analysis(content: str) -> str:
	if len(content) <= MAX_ANALYSIS_CHARS:
		return content
	half = MAX_ANALYSIS_CHARS // 2
	skipped = round((len(content) - MAX_ANALYSIS_CHARS) / 1000)
	return f"{content[:half]}\n\n[... DOCUMENT CONTINUES - {skipped}k additional characters ...]\n\n{content[-half:]}"


async def analyze_document(content: str, filename: str, course_name: Optional[str] = None) -> DocumentAnalysis:
	"""Summarize a freshly uploaded document, falling back to basic metadata."""
	if not (content or "").strip():
		return basic_analysis(content, filename, course_name)
	prompt = (
		"Analyze this educational document.\n"
		f"Filename: {filename}\n"
		+ (f"Course: {course_name}\n" if course_name else "")
		+ f"Content:\n{_clip_for_analysis(content)}\n\n"
		"Return JSON with keys: summary, key_topics (list), learning_objectives (list), "
		"difficulty (beginner|intermediate|advanced), estimated_study_time (minutes), "
		"concepts (list of {concept, definition, importance}), questions (list of {question, type, difficulty}), "
		"prerequisites (list), related_topics (list)."
	)
	try:
		data = await ask_json(prompt, system=ANALYST_SYSTEM)
	except LLMError as err:
		logger.warning("Document analysis failed for %s: %s", filename, err.message)
		return basic_analysis(content, filename, course_name)
	if not isinstance(data, dict):
		return basic_analysis(content, filename, course_name)

	words = word_count(content)
	difficulty = str(_pick(data, "difficulty", default="intermediate")).lower()
	study_time = _pick(data, "estimated_study_time", "estimatedStudyTime", default=30)
	summary = str(_pick(data, "summary", default="No summary available"))
	if len(content) > MAX_ANALYSIS_CHARS:
		summary += f"\n\nNote: This analysis is based on key sections of a large document ({round(len(content) / 1000)}k characters)."
	return DocumentAnalysis(
		summary=summary,
		key_topics=_str_list(_pick(data, "key_topics", "keyTopics")),
		learning_objectives=_str_list(_pick(data, "learning_objectives", "learningObjectives")),
		difficulty=difficulty if difficulty in DIFFICULTIES else "intermediate",
		estimated_study_time=int(study_time) if isinstance(study_time, (int, float)) else 30,
		concepts=_dict_list(_pick(data, "concepts")),
		questions=_dict_list(_pick(data, "questions")),
		prerequisites=_str_list(_pick(data, "prerequisites")),
		related_topics=_str_list(_pick(data, "related_topics", "relatedTopics")),
		word_count=words,
		reading_time=reading_time(words),
	)


async def summarize(title: str, content: str, length: str = "medium") -> Dict[str, Any]:
	words = word_count(content)
	target = summary_target_words(length, words)
	prompt = (
		f"Create a {length} summary (approximately {target} words) of this document.\n"
		f"Document Title: {title}\nContent:\n{content}\n\n"
		"Return JSON with keys: summary (string), key_points (list), main_topics (list), conclusions (list)."
	)
	data = await ask_json(prompt, system="You create concise, accurate document summaries. Return valid JSON.")
	if not isinstance(data, dict):
		raise LLMError("Summary response was not a JSON object")
	summary = str(_pick(data, "summary", "executiveSummary", "executive_summary", default="Summary not available"))
	return {
		"title": title,
		"summary": summary,
		"key_points": _str_list(_pick(data, "key_points", "keyPoints")),
		"main_topics": _str_list(_pick(data, "main_topics", "mainTopics")),
		"conclusions": _str_list(_pick(data, "conclusions")),
		"word_count": words,
		"reading_time": reading_time(words),
		"compression_ratio": round(word_count(summary) / words, 3) if words else 0,
	}


def _sections(raw: Any) -> List[GuideSection]:
	out: List[GuideSection] = []
	for item in raw if isinstance(raw, list) else []:
		if isinstance(item, dict) and item.get("title"):
			out.append(GuideSection(title=str(item["title"]), content=str(item.get("content") or ""),
				key_points=_str_list(_pick(item, "key_points", "keyPoints"))))
	return out


def _key_terms(raw: Any) -> List[KeyTerm]:
	out: List[KeyTerm] = []
	for item in raw if isinstance(raw, list) else []:
		if isinstance(item, dict) and item.get("term"):
			out.append(KeyTerm(term=str(item["term"]), definition=str(item.get("definition") or "")))
	return out


async def build_study_guide(documents: List[Dict[str, Any]], *, title: Optional[str] = None, course_id: Optional[int] = None) -> StudyGuide:
	"""Combine documents into one structured guide; defaults fill what the model omits."""
	combined = "\n\n---\n\n".join(f"Document: {d['title']}\n{(d.get('content') or '')[:6000]}" for d in documents)
	prompt = (
		f"Create a comprehensive study guide from these documents:\n\n{combined}\n\n"
		"Return JSON with keys: title, sections (list of {title, content, key_points}), "
		"key_terms (list of {term, definition}), practice_questions (list of {question, type, answer}), "
		"summary, estimated_study_time (minutes), difficulty (beginner|intermediate|advanced)."
	)
	data = await ask_json(prompt, system="You are an expert study guide creator. Return valid JSON.")
	if not isinstance(data, dict):
		data = {}
	difficulty = str(_pick(data, "difficulty", default="intermediate")).lower()
	study_time = _pick(data, "estimated_study_time", "estimatedStudyTime", default=60)
	return StudyGuide(
		id=f"sg-{uuid.uuid4().hex[:12]}",
		title=title or str(_pick(data, "title", default=f"Study Guide for {len(documents)} Documents")),
		course_id=course_id,
		document_ids=[d["id"] for d in documents],
		sections=_sections(_pick(data, "sections")),
		key_terms=_key_terms(_pick(data, "key_terms", "keyTerms")),
		practice_questions=[q for q in _pick(data, "practice_questions", "practiceQuestions", default=[]) or [] if isinstance(q, dict)],
		summary=str(_pick(data, "summary", default="Generated study guide from uploaded materials")),
		estimated_study_time=int(study_time) if isinstance(study_time, (int, float)) else 60,
		difficulty=difficulty if difficulty in DIFFICULTIES else "intermediate",
	)


async def voice_study_guide(course_name: str, documents: List[Dict[str, Any]], topic: Optional[str] = None) -> str:
	"""Plain-text study guide meant to be read aloud."""
	if not documents:
		return f'I don\'t have any documents for course "{course_name}" yet. Upload some materials and ask again.'
	material = "\n\n".join(f"Document: {d['title']}\n{(d.get('content') or '')[:2000]}" for d in documents)
	focus = f" focused on {topic}" if topic else ""
	prompt = (
		f"Write a short spoken study guide for {course_name}{focus}, based on these materials:\n\n{material}\n\n"
		"Use short sentences, no markdown, no bullet symbols. Cover the main ideas, two key terms, "
		"and end with one question the student can answer out loud."
	)
	try:
		return await ask_text(prompt, temperature=0.4, max_tokens=800)
	except LLMError as err:
		logger.warning("Voice study guide failed: %s", err.message)
		return f"Here are the materials I have for {course_name}: " + ", ".join(d["title"] for d in documents) + ". Try reviewing them one at a time."


async def annotate(document_title: str, annotation: str, annotation_type: str = "note", position: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
	"""Turn a spoken note into a stored annotation with an elaboration."""
	if annotation_type not in ANNOTATION_TYPES:
		annotation_type = "note"
	prompt = (
		f"Convert this voice note about the document \"{document_title}\" into a clear {annotation_type} annotation.\n"
		f"Voice note: \"{annotation}\"\n"
		"If it is a question, phrase it well and add a short answer hint. Keep it under 80 words."
	)
	try:
		elaboration = await ask_text(prompt, temperature=0.3, max_tokens=300)
	except LLMError as err:
		logger.warning("Annotation elaboration failed: %s", err.message)
		elaboration = annotation
	now = datetime.utcnow().isoformat()
	return {
		"id": f"ann-{uuid.uuid4().hex[:12]}",
		"type": annotation_type,
		"content": elaboration or annotation,
		"audio_note": annotation,
		"position": position,
		"created_at": now,
	}


def _profile_line(profile: Dict[str, Optional[str]]) -> str:
	parts = [f"{k}: {v}" for k, v in profile.items() if v]
	return "; ".join(parts) if parts else "no profile details"


def _material(content: str, concept: Optional[str]) -> str:
	clipped = _clip_for_analysis(content)
	return f"Concept to focus on: {concept}\nMaterial:\n{clipped}" if concept else f"Material:\n{clipped}"


async def explain(title: str, content: str, *, level: str = "intermediate", concept: Optional[str] = None, profile: Optional[Dict[str, Optional[str]]] = None) -> Dict[str, Any]:
	"""Teaching explanation of a document (or one concept in it) pitched at a difficulty level."""
	if level not in DIFFICULTIES:
		raise ValueError(f"level must be one of {', '.join(DIFFICULTIES)}")
	prompt = (
		f"Explain the document \"{title}\" to a {level} student.\n"
		f"Student: {_profile_line(profile or {})}\n"
		f"{_material(content, concept)}\n\n"
		"Return JSON with keys: explanation (string), key_points (list), analogies (list), "
		"check_questions (list of short questions the student can answer to confirm understanding)."
	)
	data = await ask_json(prompt, system="You are a patient tutor who adapts explanations to the learner. Return valid JSON.")
	if not isinstance(data, dict):
		raise LLMError("Explanation response was not a JSON object")
	return {
		"title": title,
		"concept": concept,
		"level": level,
		"explanation": str(_pick(data, "explanation", default="Explanation not available")),
		"key_points": _str_list(_pick(data, "key_points", "keyPoints")),
		"analogies": _str_list(_pick(data, "analogies")),
		"check_questions": _str_list(_pick(data, "check_questions", "checkQuestions")),
	}


async def personalized_examples(title: str, content: str, *, profile: Dict[str, Optional[str]], concept: Optional[str] = None, count: int = 3) -> Dict[str, Any]:
	"""Worked examples drawn from the student's school, program and year."""
	prompt = (
		f"Write {count} worked examples that illustrate the document \"{title}\".\n"
		f"Student: {_profile_line(profile)}\n"
		"Set each example in situations this student meets in their program.\n"
		f"{_material(content, concept)}\n\n"
		"Return JSON with key examples: a list of {title, scenario, explanation}."
	)
	data = await ask_json(prompt, system="You write concrete, relatable teaching examples. Return valid JSON.")
	raw = _pick(data, "examples") if isinstance(data, dict) else data
	examples = []
	for item in _dict_list(raw)[:count]:
		if not item.get("scenario") and not item.get("explanation"):
			continue
		examples.append({
			"title": str(item.get("title") or f"Example {len(examples) + 1}"),
			"scenario": str(item.get("scenario") or ""),
			"explanation": str(item.get("explanation") or ""),
		})
	return {
		"title": title,
		"concept": concept,
		"personalized_for": {k: v for k, v in profile.items() if v},
		"examples": examples,
	}
