import asyncio
import logging

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .db import Base, engine, SessionLocal, ensure_schema
from .cleanup import purge_stale_state
from .exceptions import SounError
from .logging_config import setup_logging
from .settings import settings
from .routers import health
from .routers import auth
from .routers import courses
from .routers import documents
from .routers import voice
from .routers import quiz
from .routers import flashcards
from .routers import learning_path
from .routers import analytics
from .routers import study_sessions

logger = logging.getLogger(__name__)

app = FastAPI(title="Soun API")
app.add_middleware(
	CORSMiddleware,
	allow_origins=[o.strip() for o in settings.cors_origins.split(",") if o.strip()],
	allow_credentials=True,
	allow_methods=["*"],
	allow_headers=["*"],
)
app.include_router(health.router)
app.include_router(auth.router)
app.include_router(courses.router)
app.include_router(documents.router)
app.include_router(voice.router)
app.include_router(quiz.router)
app.include_router(flashcards.router)
app.include_router(learning_path.router)
app.include_router(analytics.router)
app.include_router(study_sessions.router)


@app.exception_handler(SounError)
async def soun_error_handler(request: Request, exc: SounError):
	logger.warning("%s on %s %s: %s", exc.error_code, request.method, request.url.path, exc.message)
	return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
	logger.exception("Unhandled error on %s %s", request.method, request.url.path)
	return JSONResponse(status_code=500, content={"detail": "Internal server error"})


@app.get("/info")
def root():
	return {"status": "ok", "openai_configured": bool(settings.openai_api_key)}


def _run_cleanup() -> None:
	db = SessionLocal()
	try:
		purge_stale_state(db)
	except Exception:
		logger.exception("Periodic cleanup failed")
	finally:
		db.close()


async def _cleanup_watcher():
	while True:
		await asyncio.sleep(settings.cleanup_interval_seconds)
		_run_cleanup()


@app.on_event("startup")
async def startup_event():
	setup_logging(settings.log_level, settings.log_dir)
	# Initialize DB schema
	Base.metadata.create_all(bind=engine)
	# Columns added after the first release
	try:
		ensure_schema()
	except Exception:
		logger.exception("Schema migration failed")
	_run_cleanup()
	asyncio.create_task(_cleanup_watcher())
	logger.info("Soun API started (OpenAI configured: %s)", bool(settings.openai_api_key))
