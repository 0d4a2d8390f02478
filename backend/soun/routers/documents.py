from __future__ import annotations
import json
import logging
import os
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, File, Form, HTTPException, UploadFile
from fastapi.responses import FileResponse
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session
from sqlalchemy.orm.attributes import flag_modified

from .auth import User, get_current_user
from .courses import get_owned_course, unlink_quietly
from ..db import get_db
from ..exceptions import NotFoundError
from ..extraction import extract_text
from ..models import Course, Document
from ..services import documents as doc_service
from ..services.search import search_documents
from ..uploads import validate_and_save

router = APIRouter(prefix="/api", tags=["documents"])

logger = logging.getLogger(__name__)


class SummaryRequest(BaseModel):
	length: str = "medium"


class ExplainRequest(BaseModel):
	level: str = "intermediate"
	concept: Optional[str] = None


class ExamplesRequest(BaseModel):
	concept: Optional[str] = None
	count: int = Field(default=3, ge=1, le=10)


class StudyGuideRequest(BaseModel):
	document_ids: List[int] = []
	title: Optional[str] = None


class AnnotationRequest(BaseModel):
	annotation: str
	type: str = "note"
	position: Optional[Dict[str, Any]] = None


class SearchRequest(BaseModel):
	query: str
	course_id: Optional[int] = None
	max_results: int = Field(default=5, ge=1, le=20)


def parse_tags(raw: Optional[str]) -> List[str]:
	"""Accept a JSON array string or a comma separated list."""
	if not raw or not raw.strip():
		return []
	try:
		parsed = json.loads(raw)
		if isinstance(parsed, list):
			return [str(t).strip() for t in parsed if str(t).strip()]
	except ValueError:
		pass
	return [t.strip() for t in raw.split(",") if t.strip()]


def document_dict(doc: Document, *, include_content: bool = False) -> Dict[str, Any]:
	out = {
		"id": doc.id,
		"course_id": doc.course_id,
		"title": doc.title,
		"filename": doc.filename,
		"file_type": doc.file_type,
		"metadata": doc.doc_metadata or {},
		"tags": doc.tags or [],
		"upload_date": doc.upload_date,
	}
	if include_content:
		out["content"] = doc.content
	return out


def get_owned_document(db: Session, user: User, document_id: int) -> Document:
	row = db.get(Document, document_id)
	if row is None or row.user_id != user.id:
		raise HTTPException(status_code=404, detail="Document not found")
	return row


def learner_profile(user: User) -> Dict[str, Optional[str]]:
	return {"school": user.school, "program": user.program, "year": user.year}


@router.get("/documents")
async def list_documents(user: User = Depends(get_current_user), db: Session = Depends(get_db)):
	rows = db.query(Document).filter(Document.user_id == user.id).order_by(Document.upload_date.desc(), Document.id.desc()).all()
	return [document_dict(d) for d in rows]


@router.get("/courses/{course_pk}/documents")
async def course_documents(course_pk: int, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
	course = get_owned_course(db, user, course_pk)
	rows = db.query(Document).filter(Document.course_id == course.id).order_by(Document.upload_date.desc(), Document.id.desc()).all()
	return [document_dict(d) for d in rows]


@router.post("/courses/{course_pk}/documents", status_code=201)
async def upload_document(
	course_pk: int,
	file: Optional[UploadFile] = File(default=None),
	title: Optional[str] = Form(default=None),
	tags: Optional[str] = Form(default=None),
	user: User = Depends(get_current_user),
	db: Session = Depends(get_db),
):
	if file is None or not file.filename:
		raise HTTPException(status_code=400, detail="No file uploaded")
	course = get_owned_course(db, user, course_pk)
	content = await file.read()
	# Raises 413/415 through the SounError handler
	filename, path, detected = validate_and_save(content, file.filename)

	try:
		text = extract_text(path, detected.mimetype)
		analysis = await doc_service.analyze_document(text, file.filename, course.name)
		row = Document(
			user_id=user.id,
			course_id=course.id,
			title=(title or "").strip() or file.filename,
			filename=filename,
			file_type=detected.mimetype,
			file_path=path,
			content=text,
			doc_metadata={"original_name": file.filename, "size": len(content), "analysis": analysis.model_dump()},
			tags=parse_tags(tags),
		)
		db.add(row)
		db.commit()
	except Exception:
		# Nothing references the stored file until the row is committed
		db.rollback()
		unlink_quietly(path)
		raise
	db.refresh(row)
	logger.info("User %s uploaded document %s to course %s", user.id, row.id, course.id)
	return document_dict(row, include_content=True)


@router.get("/documents/{document_id}")
async def get_document(document_id: int, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
	return document_dict(get_owned_document(db, user, document_id), include_content=True)


@router.get("/documents/{document_id}/download")
async def download_document(document_id: int, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
	row = get_owned_document(db, user, document_id)
	if not os.path.exists(row.file_path):
		raise NotFoundError("File not found on disk")
	download_name = (row.doc_metadata or {}).get("original_name") or row.filename
	return FileResponse(row.file_path, media_type=row.file_type, filename=download_name)


@router.delete("/documents/{document_id}")
async def delete_document(document_id: int, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
	row = get_owned_document(db, user, document_id)
	unlink_quietly(row.file_path)
	deleted = document_dict(row)
	db.delete(row)
	db.commit()
	return {"success": True, "message": "Document deleted successfully", "deleted_document": deleted}


@router.post("/documents/{document_id}/summary")
async def summarize_document(document_id: int, req: SummaryRequest, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
	if req.length not in doc_service.SUMMARY_TARGETS:
		raise HTTPException(status_code=400, detail="length must be short, medium, or long")
	row = get_owned_document(db, user, document_id)
	if not (row.content or "").strip():
		raise HTTPException(status_code=400, detail="Document has no extractable text")
	return {"document_id": row.id, **(await doc_service.summarize(row.title, row.content, req.length))}


@router.get("/documents/{document_id}/analysis")
async def document_analysis(document_id: int, refresh: bool = False, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
	"""Stored upload analysis; rerun when missing, basic, or refresh is asked for."""
	row = get_owned_document(db, user, document_id)
	metadata = dict(row.doc_metadata or {})
	stored = metadata.get("analysis")
	if stored and stored.get("analyzed") and not refresh:
		return {"document_id": row.id, "analysis": stored}
	course = db.get(Course, row.course_id)
	analysis = await doc_service.analyze_document(row.content or "", row.filename, course.name if course else None)
	metadata["analysis"] = analysis.model_dump()
	row.doc_metadata = metadata
	flag_modified(row, "doc_metadata")
	db.commit()
	return {"document_id": row.id, "analysis": metadata["analysis"]}


@router.post("/documents/{document_id}/explain")
async def explain_document(document_id: int, req: ExplainRequest, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
	level = req.level.lower()
	if level not in doc_service.DIFFICULTIES:
		raise HTTPException(status_code=400, detail="level must be beginner, intermediate, or advanced")
	row = get_owned_document(db, user, document_id)
	if not (row.content or "").strip():
		raise HTTPException(status_code=400, detail="Document has no extractable text")
	concept = (req.concept or "").strip() or None
	result = await doc_service.explain(row.title, row.content, level=level, concept=concept, profile=learner_profile(user))
	return {"document_id": row.id, **result}


@router.post("/documents/{document_id}/examples")
async def document_examples(document_id: int, req: ExamplesRequest, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
	row = get_owned_document(db, user, document_id)
	if not (row.content or "").strip():
		raise HTTPException(status_code=400, detail="Document has no extractable text")
	concept = (req.concept or "").strip() or None
	result = await doc_service.personalized_examples(row.title, row.content, profile=learner_profile(user), concept=concept, count=req.count)
	return {"document_id": row.id, **result}


@router.post("/documents/study-guide")
async def study_guide_from_documents(req: StudyGuideRequest, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
	if not req.document_ids:
		raise HTTPException(status_code=400, detail="document_ids is required")
	rows = db.query(Document).filter(Document.user_id == user.id, Document.id.in_(req.document_ids)).all()
	if not rows:
		raise HTTPException(status_code=404, detail="No documents found for study guide generation")
	docs = [{"id": d.id, "title": d.title, "content": d.content} for d in rows]
	return await doc_service.build_study_guide(docs, title=req.title, course_id=rows[0].course_id)


@router.post("/documents/{document_id}/study-guide")
async def study_guide_for_document(document_id: int, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
	row = get_owned_document(db, user, document_id)
	return await doc_service.build_study_guide([{"id": row.id, "title": row.title, "content": row.content}], course_id=row.course_id)


@router.post("/documents/{document_id}/voice-annotation")
async def voice_annotation(document_id: int, req: AnnotationRequest, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
	if not req.annotation.strip():
		raise HTTPException(status_code=400, detail="annotation is required")
	row = get_owned_document(db, user, document_id)
	annotation = await doc_service.annotate(row.title, req.annotation.strip(), req.type, req.position)
	metadata = dict(row.doc_metadata or {})
	metadata["annotations"] = list(metadata.get("annotations", [])) + [annotation]
	row.doc_metadata = metadata
	flag_modified(row, "doc_metadata")
	db.commit()
	return {"success": True, "annotation": annotation}


@router.post("/search")
async def cross_file_search(req: SearchRequest, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
	query = req.query.strip()
	if not query:
		raise HTTPException(status_code=400, detail="query is required")
	q = db.query(Document).filter(Document.user_id == user.id)
	if req.course_id is not None:
		course = db.get(Course, req.course_id)
		if course is None or course.user_id != user.id:
			raise HTTPException(status_code=404, detail="Course not found")
		q = q.filter(Document.course_id == course.id)
	return await search_documents(q.all(), query, req.max_results)
