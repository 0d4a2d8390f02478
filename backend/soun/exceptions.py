"""Errors raised below the HTTP layer.

Each carries the status code the API returns for it; ``main`` registers a
handler that renders them as ``{"detail": ..., "error": ...}``.
"""
from typing import Optional


class SounError(Exception):
	status_code: int = 500
	error_code: str = "internal_error"

	def __init__(self, message: str, details: Optional[str] = None):
		super().__init__(message)
		self.message = message
		self.details = details

	def to_dict(self) -> dict:
		body = {"detail": self.message, "error": self.error_code}
		if self.details:
			body["details"] = self.details
		return body


class NotFoundError(SounError):
	status_code = 404
	error_code = "not_found"


class LLMError(SounError):
	"""The LLM call failed or returned something unusable."""
	status_code = 503
	error_code = "llm_error"

	def __init__(self, message: str = "AI service unavailable", details: Optional[str] = None):
		super().__init__(message, details)


class LLMNotConfiguredError(LLMError):
	def __init__(self):
		super().__init__("OPENAI_API_KEY is not configured")


class UnsupportedFileError(SounError):
	status_code = 415
	error_code = "unsupported_file_type"


class FileTooLargeError(SounError):
	status_code = 413
	error_code = "file_too_large"
