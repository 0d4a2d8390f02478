from __future__ import annotations
import json
import logging
import re
import httpx
from typing import Any, Dict, List, Optional
from .exceptions import LLMError, LLMNotConfiguredError
from .settings import settings

logger = logging.getLogger(__name__)


def extract_json_block(text: str) -> Any:
	try:
		return json.loads(text)
	except Exception:
		pass
	# Models sometimes wrap JSON in prose or code fences
	match = re.search(r"\{[\s\S]*\}|\[[\s\S]*\]", text or "")
	if match:
		try:
			return json.loads(match.group(0))
		except Exception:
			pass
	raise LLMError("Failed to parse JSON from model output", details=(text or "")[:200])


class OpenAIClient:
	def __init__(self, api_key: Optional[str] = None, *, base_url: Optional[str] = None, model: Optional[str] = None) -> None:
		self.api_key = api_key or settings.openai_api_key
		if not self.api_key:
			raise LLMNotConfiguredError()
		self.model = model or settings.openai_model
		self.base_url = base_url or settings.openai_base_url
		self._client = httpx.AsyncClient(timeout=settings.openai_timeout)
		self._fallback_client: Optional[httpx.AsyncClient] = None
		self._fallback_api_key = settings.llm_fallback_api_key
		if self._fallback_api_key:
			self._fallback_client = httpx.AsyncClient(timeout=settings.openai_timeout)

	async def chat(
		self,
		messages: List[Dict[str, str]],
		*,
		json_mode: bool = False,
		temperature: float = 0.7,
		max_tokens: Optional[int] = None,
	) -> str:
		payload: Dict[str, Any] = {"model": self.model, "messages": messages, "temperature": temperature}
		if max_tokens is not None:
			payload["max_tokens"] = max_tokens
		if json_mode:
			payload["response_format"] = {"type": "json_object"}
		headers = {"Authorization": f"Bearer {self.api_key}", "Content-Type": "application/json"}
		try:
			r = await self._client.post(self.base_url, headers=headers, json=payload)
			r.raise_for_status()
			return self._content_of(r)
		except (httpx.HTTPStatusError, httpx.RequestError, LLMError) as primary_err:
			logger.warning("OpenAI call failed: %s", primary_err)
			if self._fallback_client is None:
				raise LLMError(details=str(primary_err)) from primary_err
			return await self._fallback_chat(payload, primary_err)

	async def generate(self, prompt: str, *, system: Optional[str] = None, temperature: float = 0.7, max_tokens: Optional[int] = None) -> str:
		messages: List[Dict[str, str]] = []
		if system:
			messages.append({"role": "system", "content": system})
		messages.append({"role": "user", "content": prompt})
		return await self.chat(messages, temperature=temperature, max_tokens=max_tokens)

	async def generate_json(self, prompt: str, *, system: Optional[str] = None, temperature: float = 0.3) -> Any:
		messages: List[Dict[str, str]] = []
		if system:
			messages.append({"role": "system", "content": system})
		messages.append({"role": "user", "content": prompt})
		raw = await self.chat(messages, json_mode=True, temperature=temperature)
		return extract_json_block(raw)

	async def aclose(self) -> None:
		await self._client.aclose()
		if self._fallback_client is not None:
			await self._fallback_client.aclose()

	@staticmethod
	def _content_of(r: httpx.Response) -> str:
		try:
			data = r.json()
			return data["choices"][0]["message"]["content"] or ""
		except Exception:
			raise LLMError("Unexpected chat completion response", details=r.text[:200])

	async def _fallback_chat(self, payload: Dict[str, Any], primary_error: Exception) -> str:
		assert self._fallback_client is not None
		headers = {"Authorization": f"Bearer {self._fallback_api_key}", "Content-Type": "application/json"}
		fallback_payload = {**payload, "model": settings.llm_fallback_model}
		# Not every compatible provider honours response_format
		fallback_payload.pop("response_format", None)
		try:
			r = await self._fallback_client.post(settings.llm_fallback_base_url, headers=headers, json=fallback_payload)
			r.raise_for_status()
			return self._content_of(r)
		except Exception as fallback_err:
			raise LLMError(
				details=f"primary call failed ({primary_error}); fallback also failed ({fallback_err})"
			) from fallback_err


async def ask_text(prompt: str, *, system: Optional[str] = None, temperature: float = 0.7, max_tokens: Optional[int] = None) -> str:
	"""One-shot completion; raises LLMError when unconfigured or failing."""
	client = OpenAIClient()
	try:
		return (await client.generate(prompt, system=system, temperature=temperature, max_tokens=max_tokens)).strip()
	finally:
		await client.aclose()


async def ask_json(prompt: str, *, system: Optional[str] = None, temperature: float = 0.3) -> Any:
	client = OpenAIClient()
	try:
		return await client.generate_json(prompt, system=system, temperature=temperature)
	finally:
		await client.aclose()
