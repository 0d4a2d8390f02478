from __future__ import annotations
import logging
import re
from pathlib import Path

import docx
import olefile
import pytesseract
from PIL import Image
from pptx import Presentation
from pypdf import PdfReader

from .uploads import DOC_MIME, DOCX_MIME, PPT_MIME, PPTX_MIME

logger = logging.getLogger(__name__)

_PRINTABLE_RUN = re.compile(r"[\x20-\x7e]{4,}")


def _pdf_text(path: Path) -> str:
	reader = PdfReader(str(path))
	pages = [(page.extract_text() or "") for page in reader.pages]
	return "\n\n".join(p.strip() for p in pages if p.strip())


def _docx_text(path: Path) -> str:
	document = docx.Document(str(path))
	return "\n".join(p.text for p in document.paragraphs if p.text.strip())


def _pptx_text(path: Path) -> str:
	deck = Presentation(str(path))
	slides: list[str] = []
	for index, slide in enumerate(deck.slides, start=1):
		lines = [shape.text_frame.text for shape in slide.shapes if shape.has_text_frame and shape.text_frame.text.strip()]
		if lines:
			slides.append(f"Slide {index}:\n" + "\n".join(lines))
	return "\n\n".join(slides)


def _legacy_office_text(path: Path, stream: str) -> str:
	# Binary Office formats: pull readable runs out of the main stream
	with olefile.OleFileIO(str(path)) as ole:
		if not ole.exists(stream):
			return ""
		raw = ole.openstream(stream).read()
	utf16 = raw.decode("utf-16-le", errors="ignore")
	runs = _PRINTABLE_RUN.findall(utf16) or _PRINTABLE_RUN.findall(raw.decode("latin-1"))
	return "\n".join(runs)


def _image_text(path: Path) -> str:
	with Image.open(path) as img:
		return pytesseract.image_to_string(img)


def extract_text(path: str, mimetype: str) -> str:
	"""Best-effort plain text for a validated upload; empty string on failure."""
	file_path = Path(path)
	try:
		if mimetype == "application/pdf":
			text = _pdf_text(file_path)
		elif mimetype == DOCX_MIME:
			text = _docx_text(file_path)
		elif mimetype == PPTX_MIME:
			text = _pptx_text(file_path)
		elif mimetype == DOC_MIME:
			text = _legacy_office_text(file_path, "WordDocument")
		elif mimetype == PPT_MIME:
			text = _legacy_office_text(file_path, "PowerPoint Document")
		elif mimetype.startswith("image/"):
			text = _image_text(file_path)
		elif mimetype == "text/plain":
			text = file_path.read_text(encoding="utf-8", errors="ignore")
		else:
			text = ""
	except pytesseract.TesseractNotFoundError:
		logger.warning("Tesseract is not installed; skipping OCR for %s", file_path.name)
		return ""
	except Exception:
		logger.exception("Text extraction failed for %s (%s)", file_path.name, mimetype)
		return ""
	return text.strip()
