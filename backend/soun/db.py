from __future__ import annotations
import logging
import time
from typing import Callable, TypeVar
from sqlalchemy import create_engine, inspect
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import sessionmaker, declarative_base
from .settings import settings

logger = logging.getLogger(__name__)

DATABASE_URL = settings.database_url or "sqlite:///./soun.db"

_connect_args = {"check_same_thread": False} if DATABASE_URL.startswith("sqlite") else {}

engine = create_engine(DATABASE_URL, connect_args=_connect_args, pool_pre_ping=True, future=True)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine, future=True)
Base = declarative_base()

T = TypeVar("T")


def get_db():
	db = SessionLocal()
	try:
		yield db
	finally:
		db.close()


def run_with_retry(operation: Callable[[], T], *, attempts: int = 3, delay_seconds: float = 1.0) -> T:
	"""Run a database operation, retrying transient connection failures.

	Sleeps ``delay_seconds * attempt`` between tries and re-raises the last
	error once ``attempts`` is exhausted.
	"""
	last_error: Exception | None = None
	for attempt in range(1, attempts + 1):
		try:
			return operation()
		except OperationalError as err:
			last_error = err
			logger.warning("Database operation failed (attempt %d/%d): %s", attempt, attempts, err)
			if attempt < attempts:
				time.sleep(delay_seconds * attempt)
	assert last_error is not None
	raise last_error


# Best-effort lightweight migrations for development (SQLite-friendly)
def ensure_schema() -> None:
	try:
		inspector = inspect(engine)
		tables = set(inspector.get_table_names())
	except Exception:
		logger.exception("Could not inspect database schema")
		return
	if "voice_commands" in tables:
		cols = {c["name"] for c in inspector.get_columns("voice_commands")}
		with engine.begin() as conn:
			if "category" not in cols:
				conn.exec_driver_sql("ALTER TABLE voice_commands ADD COLUMN category VARCHAR(32)")
			if "emotion" not in cols:
				conn.exec_driver_sql("ALTER TABLE voice_commands ADD COLUMN emotion VARCHAR(32)")
	if "documents" in tables:
		cols = {c["name"] for c in inspector.get_columns("documents")}
		with engine.begin() as conn:
			if "tags" not in cols:
				conn.exec_driver_sql("ALTER TABLE documents ADD COLUMN tags JSON")
