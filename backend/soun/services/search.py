from __future__ import annotations
import logging
import re
from typing import Any, Dict, List, Optional

from ..exceptions import LLMError
from ..models import Document
from ..openai_client import ask_json, ask_text

logger = logging.getLogger(__name__)

RELEVANCE_THRESHOLD = 0.3
FALLBACK_SCORE = 0.5
EXCERPT_CHARS = 300
SENTENCE_SPLIT = re.compile(r"[.!?]+")


def query_words(query: str) -> List[str]:
	return [w for w in (query or "").lower().split() if len(w) > 2]


def simple_text_match(content: str, query: str) -> bool:
	lowered = (content or "").lower()
	return any(w in lowered for w in query_words(query))


def extract_relevant_text(content: str, query: str) -> str:
	words = query_words(query) or (query or "").lower().split()
	sentences = [s.strip() for s in SENTENCE_SPLIT.split(content or "")]
	hits = [s for s in sentences if s and any(w in s.lower() for w in words)]
	return ". ".join(hits[:3])[:EXCERPT_CHARS] + "..."


def _result(doc: Document, excerpt: str, score: float, summary: str) -> Dict[str, Any]:
	return {
		"document_id": doc.id,
		"title": doc.title,
		"filename": doc.filename,
		"course_id": doc.course_id,
		"relevant_content": excerpt,
		"relevance_score": round(float(score), 3),
		"summary": summary,
	}


async def _score(doc: Document, query: str) -> Dict[str, Any]:
	prompt = (
		f'Analyze this document for relevance to the query: "{query}"\n'
		f"Document: {doc.filename}\n"
		f"Content: {(doc.content or '')[:2000]}\n\n"
		'Return JSON: {"relevance_score": 0.0-1.0, "relevant_content": "most relevant excerpt (max 300 words)", '
		'"summary": "how this document relates to the query"}'
	)
	data = await ask_json(prompt)
	if not isinstance(data, dict):
		raise LLMError("Relevance response was not a JSON object")
	return data


async def find_relevant(documents: List[Document], query: str, max_results: int = 5) -> List[Dict[str, Any]]:
	found: List[Dict[str, Any]] = []
	for doc in documents:
		if not doc.content:
			continue
		try:
			data = await _score(doc, query)
			score = float(data.get("relevance_score", data.get("relevanceScore", 0)) or 0)
			if score > RELEVANCE_THRESHOLD:
				excerpt = str(data.get("relevant_content") or data.get("relevantContent") or "")
				found.append(_result(doc, excerpt, score, str(data.get("summary") or "")))
		except (LLMError, TypeError, ValueError) as err:
			logger.info("Relevance scoring failed for document %s, using text match: %s", doc.id, err)
			if simple_text_match(doc.content, query):
				found.append(_result(doc, extract_relevant_text(doc.content, query), FALLBACK_SCORE, f"Content from {doc.filename}"))
	found.sort(key=lambda r: r["relevance_score"], reverse=True)
	return found[:max_results]


async def synthesize_answer(query: str, results: List[Dict[str, Any]]) -> str:
	if not results:
		return "No relevant information found in the uploaded documents."
	sources = "\n\n".join(f"**{r['filename']}**: {r['relevant_content']}" for r in results)
	prompt = (
		f'Using the following excerpts from course documents, answer: "{query}"\n\n{sources}\n\n'
		"Combine information across sources, say which source supports each point, and note any disagreements."
	)
	try:
		return await ask_text(prompt, max_tokens=800)
	except LLMError as err:
		logger.warning("Answer synthesis failed: %s", err.message)
		return "\n\n".join(f"From {r['filename']}: {r['summary']}" for r in results)


async def search_documents(documents: List[Document], query: str, max_results: int = 5) -> Dict[str, Any]:
	if not documents:
		return {"query": query, "total_documents": 0, "relevant_documents": [],
			"synthesized_answer": "No documents found to search through.", "sources": []}
	results = await find_relevant(documents, query, max_results)
	return {
		"query": query,
		"total_documents": len(documents),
		"relevant_documents": results,
		"synthesized_answer": await synthesize_answer(query, results),
		"sources": [r["filename"] for r in results],
	}
