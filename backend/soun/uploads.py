"""Content-sniffing upload validation.

The declared filename and client content type are never trusted: the file
type comes from the filetype signature match (and, for ZIP and CFB
containers, from the container's entries) against a fixed allow-list.
"""
from __future__ import annotations
import io
import logging
import re
import secrets
import time
import zipfile
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

import filetype
import olefile

from .exceptions import FileTooLargeError, UnsupportedFileError
from .settings import settings

logger = logging.getLogger(__name__)

CFB_MAGIC = b"\xd0\xcf\x11\xe0\xa1\xb1\x1a\xe1"

DOCX_MIME = "application/vnd.openxmlformats-officedocument.wordprocessingml.document"
PPTX_MIME = "application/vnd.openxmlformats-officedocument.presentationml.presentation"
DOC_MIME = "application/msword"
PPT_MIME = "application/vnd.ms-powerpoint"
OLE_MIMES = {DOC_MIME, PPT_MIME, "application/vnd.ms-excel"}
ZIP_MIMES = {"application/zip", DOCX_MIME, PPTX_MIME}

# Types accepted on their signature alone, with the extension they are stored under
SIGNATURE_TYPES = {
	"application/pdf": ".pdf",
	"image/png": ".png",
	"image/jpeg": ".jpg",
	"image/gif": ".gif",
}

_POWERPOINT_STREAMS = {"PowerPoint Document", "Current User"}
_WORD_STREAMS = {"WordDocument", "1Table", "0Table"}
_PRINTABLE_TEXT = re.compile(rb"^[\x20-\x7e\s]*$")
_UNSAFE_NAME_CHARS = re.compile(r"[^a-zA-Z0-9\-_]")

UNSUPPORTED_OFFICE_MESSAGE = "This Office file format is not supported. Please upload DOC, DOCX, PPT, PPTX, or PDF files."
CORRUPTED_MESSAGE = "File validation failed. The file may be corrupted."


@dataclass
class DetectedFile:
	mimetype: str
	extension: str


def _sniff_zip(content: bytes) -> Optional[DetectedFile]:
	try:
		with zipfile.ZipFile(io.BytesIO(content)) as archive:
			names = archive.namelist()
	except zipfile.BadZipFile:
		return None
	if "[Content_Types].xml" not in names:
		return None
	if any(n.startswith("word/") for n in names):
		return DetectedFile(DOCX_MIME, ".docx")
	if any(n.startswith("ppt/") for n in names):
		return DetectedFile(PPTX_MIME, ".pptx")
	return None


def _sniff_cfb(content: bytes) -> DetectedFile:
	try:
		ole = olefile.OleFileIO(io.BytesIO(content), raise_defects=olefile.DEFECT_INCORRECT)
		try:
			entries = {part for path in ole.listdir(streams=True, storages=True) for part in path}
		finally:
			ole.close()
	except Exception as err:
		logger.warning("CFB parsing failed: %s", err)
		raise UnsupportedFileError(CORRUPTED_MESSAGE)
	if entries & _POWERPOINT_STREAMS or any(e.startswith("Slide") for e in entries):
		return DetectedFile(PPT_MIME, ".ppt")
	if entries & _WORD_STREAMS:
		return DetectedFile(DOC_MIME, ".doc")
	logger.info("Rejected unknown CFB/OLE file")
	raise UnsupportedFileError(UNSUPPORTED_OFFICE_MESSAGE)


def detect_file_type(content: bytes) -> DetectedFile:
	"""Return the validated type of ``content`` or raise UnsupportedFileError."""
	kind = filetype.guess(content)
	mime = kind.mime if kind is not None else None
	# filetype only names OLE files it recognises at deep offsets, so any CFB header goes to olefile
	if mime in OLE_MIMES or content.startswith(CFB_MAGIC):
		return _sniff_cfb(content)
	if mime in SIGNATURE_TYPES:
		return DetectedFile(mime, SIGNATURE_TYPES[mime])
	if mime in ZIP_MIMES:
		# OOXML is confirmed from the archive entries, not the signature
		detected = _sniff_zip(content)
		if detected is not None:
			return detected
	# Only short printable-ASCII payloads are accepted as plain text
	if len(content) < 1000 and _PRINTABLE_TEXT.match(content):
		return DetectedFile("text/plain", ".txt")
	raise UnsupportedFileError(
		f"File type not supported. Detected: {mime or 'unknown'}. Please upload PDF, DOCX, PPTX, DOC, PPT, TXT, or images."
	)


def safe_filename(original_name: str, extension: str) -> str:
	stem = Path(original_name or "upload").stem
	stem = _UNSAFE_NAME_CHARS.sub("_", stem)[:100] or "upload"
	return f"{stem}-{int(time.time() * 1000)}-{secrets.randbelow(10**9)}{extension}"


def validate_and_save(content: bytes, original_name: str, upload_dir: Optional[str] = None) -> tuple[str, str, DetectedFile]:
	"""Validate an upload and write it to the upload directory.

	Returns ``(filename, absolute_path, detected)``.
	"""
	if len(content) > settings.max_upload_bytes:
		raise FileTooLargeError(f"File exceeds the {settings.max_upload_mb}MB limit")
	detected = detect_file_type(content)
	directory = Path(upload_dir or settings.upload_dir).resolve()
	directory.mkdir(parents=True, exist_ok=True)
	filename = safe_filename(original_name, detected.extension)
	path = directory / filename
	path.write_bytes(content)
	logger.info("Validated and saved %s (%s)", filename, detected.mimetype)
	return filename, str(path), detected
