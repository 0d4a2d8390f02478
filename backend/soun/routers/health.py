from datetime import datetime, timezone
import logging

from fastapi import APIRouter, Depends
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..db import get_db

router = APIRouter(tags=["health"])

logger = logging.getLogger(__name__)

VERSION = "1.0.0"


@router.get("/health")
def health(db: Session = Depends(get_db)):
	try:
		db.execute(text("SELECT 1"))
		database = "connected"
	except SQLAlchemyError as err:
		logger.error("Health check database query failed: %s", err)
		database = "unavailable"
	return {
		"status": "healthy" if database == "connected" else "degraded",
		"database": database,
		"version": VERSION,
		"timestamp": datetime.now(timezone.utc).isoformat(),
	}
