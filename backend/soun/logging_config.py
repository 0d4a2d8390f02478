"""Application-wide logging setup.

Console output plus a daily log file, configured once at startup. Modules
obtain their logger with ``logging.getLogger(__name__)``.
"""
from __future__ import annotations
import logging
import sys
from datetime import datetime
from pathlib import Path
from typing import Optional

LOG_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s:%(lineno)d | %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

_logging_configured = False


def setup_logging(log_level: str = "INFO", log_dir: Optional[str] = None) -> logging.Logger:
	"""Attach console (and optionally file) handlers to the root logger.

	Repeated calls are no-ops so app reloads do not duplicate handlers.
	"""
	global _logging_configured
	root_logger = logging.getLogger()
	if _logging_configured:
		return root_logger

	level = getattr(logging, (log_level or "INFO").upper(), logging.INFO)
	formatter = logging.Formatter(fmt=LOG_FORMAT, datefmt=DATE_FORMAT)

	console_handler = logging.StreamHandler(sys.stdout)
	console_handler.setFormatter(formatter)
	console_handler.setLevel(level)
	root_logger.addHandler(console_handler)

	log_file: Optional[Path] = None
	if log_dir:
		directory = Path(log_dir)
		directory.mkdir(parents=True, exist_ok=True)
		log_file = directory / f"soun_{datetime.now().strftime('%Y%m%d')}.log"
		file_handler = logging.FileHandler(log_file, encoding="utf-8")
		file_handler.setFormatter(formatter)
		file_handler.setLevel(logging.DEBUG)
		root_logger.addHandler(file_handler)

	root_logger.setLevel(min(level, logging.DEBUG) if log_file else level)

	# Third-party clients are chatty at DEBUG
	for noisy in ("httpx", "httpcore", "urllib3", "multipart"):
		logging.getLogger(noisy).setLevel(logging.WARNING)
	logging.getLogger("passlib").setLevel(logging.ERROR)

	_logging_configured = True
	root_logger.debug("Logging configured: level=%s, file=%s", log_level, log_file)
	return root_logger
