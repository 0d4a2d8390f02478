"""Usage statistics over the stored voice_commands rows."""
from __future__ import annotations
from collections import Counter
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session

from ..models import VoiceCommand

TIMEFRAMES = {"day": timedelta(days=1), "week": timedelta(days=7), "month": timedelta(days=30)}
STRAIN_EMOTIONS = ("frustrated", "confused", "discouraged")
POSITIVE_EMOTIONS = ("happy", "excited", "confident", "motivated")


def cutoff(timeframe: str, now: Optional[datetime] = None) -> datetime:
	if timeframe not in TIMEFRAMES:
		raise ValueError("timeframe must be one of day, week, month")
	return (now or datetime.utcnow()) - TIMEFRAMES[timeframe]


def _share(part: int, whole: int) -> float:
	return round(part / whole, 3) if whole else 0.0


def insights(commands: List[VoiceCommand]) -> List[Dict[str, Any]]:
	total = len(commands)
	if not total:
		return [{
			"type": "interaction_pattern",
			"title": "No voice activity yet",
			"description": "Ask the voice assistant a question to start building your learning profile.",
			"confidence": 1.0,
			"recommendations": ["Try asking the assistant to explain a topic from your latest document"],
		}]
	out: List[Dict[str, Any]] = []
	categories = Counter(c.category or "General" for c in commands)
	top, top_count = categories.most_common(1)[0]
	out.append({
		"type": "interaction_pattern",
		"title": f"Mostly {top} requests",
		"description": f"{top_count} of your {total} voice interactions were {top.lower()} requests.",
		"confidence": round(min(0.95, 0.5 + total / 100), 2),
		"recommendations": (
			["Mix in self-quizzing after explanations to check recall"] if top == "Learning"
			else ["Ask for explanations of topics you get wrong in quizzes"] if top == "Quiz"
			else ["Use voice explanations for the topics you find hardest"]
		),
	})

	hours = Counter(c.timestamp.hour for c in commands)
	hour, _ = hours.most_common(1)[0]
	out.append({
		"type": "optimal_timing",
		"title": f"Most active around {hour:02d}:00",
		"description": "You use the assistant most at this hour; schedule hard topics there.",
		"confidence": round(min(0.9, 0.4 + total / 50), 2),
		"recommendations": [f"Block {hour:02d}:00-{(hour + 1) % 24:02d}:00 for focused study"],
	})

	emotions = [c.emotion for c in commands if c.emotion]
	strained = sum(1 for e in emotions if e in STRAIN_EMOTIONS)
	if emotions and strained / len(emotions) > 0.4:
		out.append({
			"type": "interaction_pattern",
			"title": "Signs of cognitive overload",
			"description": "Many recent questions sounded frustrated or confused.",
			"confidence": 0.85,
			"recommendations": [
				"Break complex topics into smaller questions",
				"Take a short break between study blocks",
			],
		})
	positive = sum(1 for e in emotions if e in POSITIVE_EMOTIONS)
	if emotions and positive / len(emotions) > 0.5:
		out.append({
			"type": "effective_features",
			"title": "High engagement",
			"description": "Most of your voice sessions sound positive and energetic.",
			"confidence": 0.8,
			"recommendations": ["Try explaining topics aloud to lock in what you learned"],
		})
	return sorted(out, key=lambda i: i["confidence"], reverse=True)


def voice_analytics(db: Session, user_id: int, timeframe: str = "week", now: Optional[datetime] = None) -> Dict[str, Any]:
	since = cutoff(timeframe, now)
	commands = (
		db.query(VoiceCommand)
		.filter(VoiceCommand.user_id == user_id, VoiceCommand.timestamp >= since)
		.order_by(VoiceCommand.timestamp.asc())
		.all()
	)
	total = len(commands)
	categories = Counter(c.category or "General" for c in commands)
	emotions = Counter(c.emotion for c in commands if c.emotion)
	hours = Counter(c.timestamp.hour for c in commands)
	return {
		"timeframe": timeframe,
		"total_interactions": total,
		"by_category": dict(categories),
		"most_active_hour": hours.most_common(1)[0][0] if hours else None,
		"emotion_distribution": {e: _share(n, sum(emotions.values())) for e, n in emotions.items()},
		"answered_rate": _share(sum(1 for c in commands if c.processed), total),
		"insights": insights(commands),
	}
