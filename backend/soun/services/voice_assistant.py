from __future__ import annotations
import logging
import re
from typing import Any, Dict, List, Optional

from ..exceptions import LLMError, LLMNotConfiguredError
from ..openai_client import ask_json, ask_text

logger = logging.getLogger(__name__)

NAVIGATION_PATTERNS = {
	"dashboard": re.compile(r"^(?:please\s+)?(?:go to|open|show|navigate to|take me to)\s+(?:the\s+|my\s+)?(?:dashboard|home)\b", re.I),
	"courses": re.compile(r"^(?:please\s+)?(?:go to|open|show|navigate to|take me to)\s+(?:the\s+|my\s+)?courses?\b", re.I),
	"voice": re.compile(r"^(?:please\s+)?(?:go to|open|show|navigate to|take me to)\s+(?:the\s+)?voice(?:\s+assistant|\s+page)?\b", re.I),
	"progress": re.compile(r"^(?:please\s+)?(?:go to|open|show|navigate to|take me to)\s+(?:the\s+|my\s+)?(?:progress|analytics)\b", re.I),
	"planner": re.compile(r"^(?:please\s+)?(?:go to|open|show|navigate to|take me to)\s+(?:the\s+|my\s+)?(?:planner|study planner|schedule)\b", re.I),
}

MAIN_TOPIC_PATTERNS = [
	re.compile(r"explain\s+(.+?)(?:\s+to\s+me)?$", re.I),
	re.compile(r"what\s+is\s+(.+?)\??$", re.I),
	re.compile(r"how\s+does\s+(.+?)\s+work", re.I),
	re.compile(r"tell\s+me\s+about\s+(.+?)$", re.I),
	re.compile(r"help\s+me\s+with\s+(.+?)$", re.I),
]
ACADEMIC_TERMS = re.compile(r"\b(mathematics?|physics|chemistry|biology|programming|algorithm|equation|theory|concept|principle)\b", re.I)

POSITIVE_WORDS = ("happy", "glad", "excited", "pleased", "good", "great", "excellent")
NEGATIVE_WORDS = ("sad", "angry", "upset", "frustrated", "bad", "terrible", "annoyed")

# Checked in order; first match wins
CATEGORY_KEYWORDS = [
	("Quiz", ("quiz", "test", "exam")),
	("Planning", ("schedule", "plan", "assignment")),
	("Learning", ("explain", "what is", "how to")),
	("Progress", ("progress", "stats")),
	("Presentation", ("presentation", "rehearse")),
	("System", ("help", "settings")),
]

STUDY_ASSISTANT_PROMPT = (
	"You are a concise study assistant.\n"
	"- Give SHORT, focused answers (2-3 sentences maximum)\n"
	"- Use simple, clear language\n"
	"- Ask a follow-up question to keep the conversation interactive\n"
	"- Be encouraging but brief"
)

GENERAL_FAILURE = "I'm having trouble processing your request right now. Please try again."


def detect_navigation(command: str) -> Optional[str]:
	text = (command or "").strip()
	for page, pattern in NAVIGATION_PATTERNS.items():
		if pattern.search(text):
			return page
	return None


def extract_main_topic(message: str) -> Optional[str]:
	text = (message or "").strip()
	for pattern in MAIN_TOPIC_PATTERNS:
		match = pattern.search(text)
		if match and match.group(1):
			return match.group(1).strip().lower()
	terms = ACADEMIC_TERMS.findall(text)
	return terms[0].lower() if terms else None


def categorize(text: str) -> str:
	lowered = (text or "").lower()
	for category, keywords in CATEGORY_KEYWORDS:
		if any(k in lowered for k in keywords):
			return category
	return "General"


def fallback_response(text: str) -> str:
	lowered = (text or "").lower()
	if re.search(r"\b(hello|hi)\b", lowered):
		return "Hello! How can I help with your studies today?"
	if "help" in lowered:
		return "I can help you with quizzes, explanations, planning, and tracking your progress. What would you like assistance with?"
	if "quiz" in lowered or "test" in lowered:
		return "I'd be happy to quiz you. What subject would you like to focus on?"
	if "explain" in lowered:
		return "I'd be happy to explain that concept. Could you provide more specific details about what you'd like to learn?"
	if "progress" in lowered:
		return "Let me check your progress. Which course would you like to review?"
	if "presentation" in lowered:
		return "I can help you prepare for your presentation. Would you like to practice now?"
	return "I'm here to help with your studies. Could you be more specific about what you'd like assistance with?"


def _emotion(primary: str, tone: str, confidence: float, secondary: List[Dict[str, Any]]) -> Dict[str, Any]:
	return {"primary_emotion": primary, "confidence": confidence, "secondary_emotions": secondary, "emotional_tone": tone}


def keyword_emotion(text: str) -> Dict[str, Any]:
	lowered = (text or "").lower()
	positive = sum(1 for w in POSITIVE_WORDS if w in lowered)
	negative = sum(1 for w in NEGATIVE_WORDS if w in lowered)
	primary, tone = "neutral", "neutral"
	if positive > negative:
		primary, tone = "happy", "positive"
	elif negative > positive:
		primary, tone = "frustrated", "negative"
	return _emotion(primary, tone, 0.6, [{"emotion": "interested", "confidence": 0.4}, {"emotion": "curious", "confidence": 0.3}])


def audio_emotion(volume: float, pitch: float, speed: float, pauses: float) -> Dict[str, Any]:
	"""Classify emotion from normalised (0-1) prosody features."""
	primary, tone, confidence = "neutral", "neutral", 0.6
	if pitch > 0.7 and speed > 0.8 and pauses > 0.6:
		primary, tone, confidence = "frustrated", "negative", 0.8
	elif volume < 0.4 and speed < 0.5 and pauses > 0.5:
		primary, tone, confidence = "confused", "neutral", 0.75
	elif volume > 0.7 and pitch > 0.5 and speed > 0.6:
		primary, tone, confidence = "excited", "positive", 0.7
	elif volume < 0.3 and speed < 0.4:
		primary, tone, confidence = "discouraged", "negative", 0.65
	return _emotion(primary, tone, confidence, [{"emotion": "interested", "confidence": 0.4}, {"emotion": "focused", "confidence": 0.3}])


async def detect_emotion(text: str) -> Dict[str, Any]:
	prompt = (
		"Analyze the emotion in the following text. Return a JSON object with keys "
		"primary_emotion (string), confidence (0-1), secondary_emotions (array of {emotion, confidence}) "
		"and emotional_tone (positive|negative|neutral).\n\n"
		f"Text: {text}"
	)
	try:
		data = await ask_json(prompt)
	except LLMError as err:
		logger.info("Emotion detection fell back to keywords: %s", err.message)
		return keyword_emotion(text)
	if not isinstance(data, dict) or not data.get("primary_emotion"):
		return keyword_emotion(text)
	tone = str(data.get("emotional_tone") or "neutral").lower()
	try:
		confidence = max(0.0, min(1.0, float(data.get("confidence", 0.6))))
	except (TypeError, ValueError):
		confidence = 0.6
	secondary = data.get("secondary_emotions") if isinstance(data.get("secondary_emotions"), list) else []
	return _emotion(str(data["primary_emotion"]).lower(), tone if tone in ("positive", "negative", "neutral") else "neutral", confidence, secondary)


def _tone_hint(emotion: Dict[str, Any]) -> str:
	primary = emotion.get("primary_emotion")
	if primary in ("frustrated", "discouraged"):
		return "The student sounds frustrated; be extra patient and break the idea into one small step."
	if primary == "confused":
		return "The student sounds confused; start from the basics and check understanding."
	if primary in ("excited", "happy"):
		return "The student is engaged; match their energy and offer a slightly harder follow-up."
	return ""


async def answer_with_documents(
	command: str,
	course_name: str,
	documents: List[Dict[str, str]],
	*,
	emotion: Optional[Dict[str, Any]] = None,
	struggles: Optional[List[str]] = None,
) -> str:
	"""Answer from the course's uploaded material, or a canned apology."""
	if not documents:
		return f'I don\'t have any documents for course "{course_name}" yet. Try uploading some course materials first.'
	context = "\n\n".join(f"Document: {d['title']}\n{(d.get('content') or '')[:2000]}" for d in documents)
	system = (
		f"{STUDY_ASSISTANT_PROMPT}\n\nYou are helping with the course {course_name}. "
		"Base your answer on the course materials below and say which document you used.\n\n"
		f"Course materials:\n{context}"
	)
	hints = [h for h in (_tone_hint(emotion or {}),) if h]
	if struggles:
		hints.append(f"The student has previously struggled with: {', '.join(struggles[:3])}.")
	if hints:
		system += "\n\n" + "\n".join(hints)
	try:
		return await ask_text(command, system=system, max_tokens=1000)
	except LLMError as err:
		logger.warning("Course answer failed: %s", err.message)
		return f"I found your course materials for {course_name}, but I'm having trouble processing your request right now. Please try again."


async def answer_general(command: str, *, emotion: Optional[Dict[str, Any]] = None) -> str:
	system = STUDY_ASSISTANT_PROMPT
	hint = _tone_hint(emotion or {})
	if hint:
		system += "\n\n" + hint
	try:
		return await ask_text(command, system=system, max_tokens=1000)
	except LLMError as err:
		logger.warning("General answer failed: %s", err.message)
		# Without a key, answer from canned keyword replies
		return fallback_response(command) if isinstance(err, LLMNotConfiguredError) else GENERAL_FAILURE
