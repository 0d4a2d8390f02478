"""Tests for upload sniffing and the document endpoints."""

import io
import os
import struct
import zipfile

import pytest
from fastapi.testclient import TestClient

from soun.exceptions import UnsupportedFileError
from soun.main import app
from soun.models import Document
from soun.routers import documents as documents_router
from soun.settings import settings
from soun.uploads import (
    CFB_MAGIC,
    CORRUPTED_MESSAGE,
    DOCX_MIME,
    PPTX_MIME,
    UNSUPPORTED_OFFICE_MESSAGE,
    detect_file_type,
    safe_filename,
)


def _office_zip(folder):
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w") as archive:
        archive.writestr("[Content_Types].xml", "<Types/>")
        archive.writestr(f"{folder}/document.xml", "<doc/>")
    return buffer.getvalue()


def _cfb(*streams):
    """Minimal version-3 compound file holding empty streams with the given names."""
    end, free, fat_sector, nostream = 0xFFFFFFFE, 0xFFFFFFFF, 0xFFFFFFFD, 0xFFFFFFFF
    header = CFB_MAGIC + bytes(16) + struct.pack("<HHHHH", 0x3E, 3, 0xFFFE, 9, 6) + bytes(6)
    header += struct.pack("<9I", 0, 1, 1, 0, 4096, end, 0, end, 0)
    header += struct.pack("<109I", 0, *([free] * 108))
    # Sector 0 holds the FAT, sector 1 the directory
    fat = struct.pack("<128I", fat_sector, end, *([free] * 126))

    def entry(name, kind, right=nostream, child=nostream):
        encoded = name.encode("utf-16-le")
        return struct.pack(
            "<64sHBBIII16sIQQIII", encoded, len(encoded) + 2, kind, 1, nostream, right, child, bytes(16), 0, 0, 0, end, 0, 0
        )

    entries = [entry("Root Entry", 5, child=1)]
    for sid, name in enumerate(streams, start=1):
        entries.append(entry(name, 2, right=sid + 1 if sid < len(streams) else nostream))
    return header + fat + b"".join(entries).ljust(512, b"\x00")


class TestDetectFileType:
    """Tests for magic-number detection."""

    def test_pdf(self):
        assert detect_file_type(b"%PDF-1.7\n...").mimetype == "application/pdf"

    def test_png_and_jpeg(self):
        assert detect_file_type(b"\x89PNG\r\n\x1a\n\x00\x00").extension == ".png"
        assert detect_file_type(b"\xff\xd8\xff\xe0rest").mimetype == "image/jpeg"

    def test_gif(self):
        assert detect_file_type(b"GIF89a....").mimetype == "image/gif"

    def test_docx_and_pptx(self):
        """OOXML zips are told apart by their top-level folder."""
        assert detect_file_type(_office_zip("word")).mimetype == DOCX_MIME
        assert detect_file_type(_office_zip("ppt")).mimetype == PPTX_MIME

    def test_plain_zip_rejected(self):
        """A zip without Office content types is not accepted."""
        buffer = io.BytesIO()
        with zipfile.ZipFile(buffer, "w") as archive:
            archive.writestr("readme.md", "hi")
        with pytest.raises(UnsupportedFileError) as exc:
            detect_file_type(buffer.getvalue())
        assert "application/zip" in exc.value.message

    def test_short_text_accepted(self):
        assert detect_file_type(b"Photosynthesis converts light into energy.\n").mimetype == "text/plain"

    def test_long_text_rejected(self):
        """Only short printable payloads count as text."""
        with pytest.raises(UnsupportedFileError):
            detect_file_type(b"a" * 1500)

    def test_executable_rejected(self):
        with pytest.raises(UnsupportedFileError) as exc:
            detect_file_type(b"MZ\x90\x00\x03\x00\x00\x00")
        assert exc.value.status_code == 415

    def test_legacy_word_document(self):
        detected = detect_file_type(_cfb("WordDocument", "1Table"))
        assert detected.mimetype == "application/msword"
        assert detected.extension == ".doc"

    def test_legacy_powerpoint(self):
        detected = detect_file_type(_cfb("PowerPoint Document", "Current User"))
        assert detected.mimetype == "application/vnd.ms-powerpoint"
        assert detected.extension == ".ppt"

    def test_other_compound_file_rejected(self):
        """Excel and other OLE containers are not accepted."""
        with pytest.raises(UnsupportedFileError) as exc:
            detect_file_type(_cfb("Workbook"))
        assert exc.value.message == UNSUPPORTED_OFFICE_MESSAGE

    def test_corrupted_cfb(self):
        """A CFB header with no valid container behind it is rejected."""
        with pytest.raises(UnsupportedFileError) as exc:
            detect_file_type(CFB_MAGIC + b"\x00" * 64)
        assert exc.value.message == CORRUPTED_MESSAGE


class TestSafeFilename:
    """Tests for stored file names."""

    def test_sanitizes_stem(self):
        name = safe_filename("../../etc/My Notes!.txt", ".txt")
        assert name.startswith("My_Notes_-")
        assert name.endswith(".txt")
        assert "/" not in name

    def test_names_are_unique(self):
        assert safe_filename("a.pdf", ".pdf") != safe_filename("a.pdf", ".pdf")


class TestUploadEndpoint:
    """Tests for POST /api/courses/{id}/documents."""

    def test_upload_text_document(self, client, auth_headers, course):
        """Text is stored, extracted and gets basic metadata when the LLM is off."""
        response = client.post(
            f"/api/courses/{course['id']}/documents",
            files={"file": ("notes.txt", b"Binary search halves the range each step.", "text/plain")},
            data={"title": "Search notes", "tags": '["algorithms", "search"]'},
            headers=auth_headers,
        )
        assert response.status_code == 201
        data = response.json()
        assert data["title"] == "Search notes"
        assert data["file_type"] == "text/plain"
        assert data["tags"] == ["algorithms", "search"]
        assert "Binary search" in data["content"]
        analysis = data["metadata"]["analysis"]
        assert analysis["analyzed"] is False
        assert analysis["word_count"] == 7

    def test_upload_with_llm_analysis(self, client, auth_headers, course, llm):
        """The LLM analysis is stored in document metadata."""
        llm.queue({"summary": "About sorting.", "key_topics": ["sorting"], "difficulty": "beginner", "estimated_study_time": 20})
        response = client.post(
            f"/api/courses/{course['id']}/documents",
            files={"file": ("sort.txt", b"Merge sort splits and merges.", "text/plain")},
            data={"tags": "sorting, merge"},
            headers=auth_headers,
        )
        analysis = response.json()["metadata"]["analysis"]
        assert analysis["summary"] == "About sorting."
        assert analysis["difficulty"] == "beginner"
        assert response.json()["tags"] == ["sorting", "merge"]

    def test_scalar_concepts_in_analysis_are_dropped(self, client, auth_headers, course, llm):
        llm.queue({"summary": "Graphs.", "concepts": "graphs", "questions": 3, "key_topics": "graphs"})
        response = client.post(
            f"/api/courses/{course['id']}/documents",
            files={"file": ("graphs.txt", b"Graphs have vertices and edges.", "text/plain")},
            headers=auth_headers,
        )
        assert response.status_code == 201
        analysis = response.json()["metadata"]["analysis"]
        assert analysis["concepts"] == []
        assert analysis["questions"] == []
        assert analysis["key_topics"] == []

    def test_unsupported_signature(self, client, auth_headers, course):
        response = client.post(
            f"/api/courses/{course['id']}/documents",
            files={"file": ("virus.exe", b"MZ\x90\x00" + b"\x00" * 2000, "application/octet-stream")},
            headers=auth_headers,
        )
        assert response.status_code == 415
        assert response.json()["error"] == "unsupported_file_type"

    def test_corrupted_office_file(self, client, auth_headers, course):
        response = client.post(
            f"/api/courses/{course['id']}/documents",
            files={"file": ("old.doc", CFB_MAGIC + b"\x00" * 600, "application/msword")},
            headers=auth_headers,
        )
        assert response.status_code == 415
        assert response.json()["detail"] == CORRUPTED_MESSAGE

    def test_file_too_large(self, client, auth_headers, course, monkeypatch):
        monkeypatch.setattr(settings, "max_upload_mb", 0)
        response = client.post(
            f"/api/courses/{course['id']}/documents",
            files={"file": ("notes.txt", b"tiny but over a zero limit", "text/plain")},
            headers=auth_headers,
        )
        assert response.status_code == 413

    def test_missing_file(self, client, auth_headers, course):
        response = client.post(f"/api/courses/{course['id']}/documents", data={"title": "x"}, headers=auth_headers)
        assert response.status_code == 400

    def test_missing_course(self, client, auth_headers):
        response = client.post(
            "/api/courses/999/documents",
            files={"file": ("notes.txt", b"hello there", "text/plain")},
            headers=auth_headers,
        )
        assert response.status_code == 404

    def test_failed_processing_removes_stored_file(self, auth_headers, course, db, monkeypatch):
        """A file whose document row never commits is not left on disk."""
        def broken_extract(path, mimetype):
            raise RuntimeError("extractor crashed")

        monkeypatch.setattr(documents_router, "extract_text", broken_extract)
        before = set(os.listdir(settings.upload_dir)) if os.path.isdir(settings.upload_dir) else set()
        response = TestClient(app, raise_server_exceptions=False).post(
            f"/api/courses/{course['id']}/documents",
            files={"file": ("notes.txt", b"hello there", "text/plain")},
            headers=auth_headers,
        )
        assert response.status_code == 500
        assert set(os.listdir(settings.upload_dir)) == before
        assert db.query(Document).count() == 0


class TestDocumentEndpoints:
    """Tests for listing, downloading and deleting documents."""

    def _upload(self, client, headers, course_id, body=b"Stacks are last in, first out."):
        return client.post(
            f"/api/courses/{course_id}/documents",
            files={"file": ("stack.txt", body, "text/plain")},
            headers=headers,
        ).json()

    def test_list_documents(self, client, auth_headers, course):
        self._upload(client, auth_headers, course["id"])
        assert len(client.get("/api/documents", headers=auth_headers).json()) == 1
        assert len(client.get(f"/api/courses/{course['id']}/documents", headers=auth_headers).json()) == 1

    def test_download_returns_bytes(self, client, auth_headers, course):
        doc = self._upload(client, auth_headers, course["id"])
        response = client.get(f"/api/documents/{doc['id']}/download", headers=auth_headers)
        assert response.status_code == 200
        assert response.content == b"Stacks are last in, first out."

    def test_download_missing_file(self, client, auth_headers, course, db):
        doc = self._upload(client, auth_headers, course["id"])
        os.remove(db.get(Document, doc["id"]).file_path)
        response = client.get(f"/api/documents/{doc['id']}/download", headers=auth_headers)
        assert response.status_code == 404
        assert response.json()["error"] == "not_found"

    def test_delete_document(self, client, auth_headers, course, db):
        doc = self._upload(client, auth_headers, course["id"])
        path = db.get(Document, doc["id"]).file_path
        response = client.delete(f"/api/documents/{doc['id']}", headers=auth_headers)
        data = response.json()
        assert data["success"] is True
        assert data["deleted_document"]["id"] == doc["id"]
        assert not os.path.exists(path)

    def test_summary_uses_length_targets(self, client, auth_headers, course, llm):
        doc = self._upload(client, auth_headers, course["id"], b"word " * 150)
        llm.queue({"summary": "short summary here", "key_points": ["a"]})
        response = client.post(f"/api/documents/{doc['id']}/summary", json={"length": "short"}, headers=auth_headers)
        data = response.json()
        assert data["reading_time"] == 1
        assert data["word_count"] == 150
        assert data["compression_ratio"] == round(3 / 150, 3)
        assert "approximately 15 words" in llm.prompts[-1]

    def test_summary_without_llm_is_503(self, client, auth_headers, course):
        doc = self._upload(client, auth_headers, course["id"])
        response = client.post(f"/api/documents/{doc['id']}/summary", json={"length": "medium"}, headers=auth_headers)
        assert response.status_code == 503

    def test_study_guide_defaults(self, client, auth_headers, course, llm):
        doc = self._upload(client, auth_headers, course["id"])
        llm.queue({"sections": [{"title": "Stacks", "content": "LIFO"}], "key_terms": [{"term": "push", "definition": "add"}]})
        data = client.post(f"/api/documents/{doc['id']}/study-guide", headers=auth_headers).json()
        assert data["estimated_study_time"] == 60
        assert data["difficulty"] == "intermediate"
        assert data["sections"][0]["title"] == "Stacks"
        assert data["key_terms"][0]["term"] == "push"

    def test_voice_annotation_is_stored(self, client, auth_headers, course):
        doc = self._upload(client, auth_headers, course["id"])
        response = client.post(
            f"/api/documents/{doc['id']}/voice-annotation",
            json={"annotation": "remember pop removes the top", "position": {"page": 1}},
            headers=auth_headers,
        )
        assert response.json()["annotation"]["audio_note"] == "remember pop removes the top"
        stored = client.get(f"/api/documents/{doc['id']}", headers=auth_headers).json()
        assert len(stored["metadata"]["annotations"]) == 1


class TestTeachingEndpoints:
    """Tests for document analysis, explanations and personalized examples."""

    def _student(self, client):
        token = client.post(
            "/api/auth/register",
            json={"email": "grace@example.com", "password": "secret123", "school": "State University", "program": "Nursing", "year": "2"},
        ).json()["access_token"]
        headers = {"Authorization": f"Bearer {token}"}
        course = client.post("/api/courses", json={"course_id": "BIO110", "name": "Anatomy"}, headers=headers).json()
        doc = client.post(
            f"/api/courses/{course['id']}/documents",
            files={"file": ("heart.txt", b"The heart pumps blood through four chambers.", "text/plain")},
            headers=headers,
        ).json()
        return headers, doc

    def test_stored_analysis_is_returned(self, client, auth_headers, course, llm):
        llm.queue({"summary": "About queues.", "key_topics": ["queues"]})
        doc = client.post(
            f"/api/courses/{course['id']}/documents",
            files={"file": ("queue.txt", b"Queues are first in, first out.", "text/plain")},
            headers=auth_headers,
        ).json()
        response = client.get(f"/api/documents/{doc['id']}/analysis", headers=auth_headers)
        assert response.status_code == 200
        assert response.json()["analysis"]["summary"] == "About queues."
        assert llm.replies == []

    def test_basic_analysis_is_rerun(self, client, auth_headers, course, llm):
        doc = client.post(
            f"/api/courses/{course['id']}/documents",
            files={"file": ("queue.txt", b"Queues are first in, first out.", "text/plain")},
            headers=auth_headers,
        ).json()
        assert doc["metadata"]["analysis"]["analyzed"] is False

        llm.queue({"summary": "Queues, properly.", "difficulty": "beginner"})
        data = client.get(f"/api/documents/{doc['id']}/analysis", headers=auth_headers).json()
        assert data["analysis"]["summary"] == "Queues, properly."
        assert data["analysis"]["analyzed"] is True
        stored = client.get(f"/api/documents/{doc['id']}", headers=auth_headers).json()
        assert stored["metadata"]["analysis"]["difficulty"] == "beginner"

    def test_explain_at_level_with_profile(self, client, llm):
        headers, doc = self._student(client)
        llm.queue({"explanation": "The heart is a pump.", "key_points": ["four chambers"], "analogies": ["like a pump"]})
        response = client.post(f"/api/documents/{doc['id']}/explain", json={"level": "Beginner", "concept": "chambers"}, headers=headers)
        assert response.status_code == 200
        data = response.json()
        assert data["level"] == "beginner"
        assert data["concept"] == "chambers"
        assert data["explanation"] == "The heart is a pump."
        assert data["check_questions"] == []
        assert "beginner student" in llm.prompts[-1]
        assert "program: Nursing" in llm.prompts[-1]

    def test_explain_rejects_unknown_level(self, client, auth_headers, course):
        doc = client.post(
            f"/api/courses/{course['id']}/documents",
            files={"file": ("queue.txt", b"Queues.", "text/plain")},
            headers=auth_headers,
        ).json()
        response = client.post(f"/api/documents/{doc['id']}/explain", json={"level": "expert"}, headers=auth_headers)
        assert response.status_code == 400

    def test_explain_without_llm_is_503(self, client):
        headers, doc = self._student(client)
        response = client.post(f"/api/documents/{doc['id']}/explain", json={}, headers=headers)
        assert response.status_code == 503

    def test_examples_use_student_profile(self, client, llm):
        headers, doc = self._student(client)
        llm.queue({"examples": [
            {"title": "Ward round", "scenario": "A patient with a murmur.", "explanation": "Valves leak."},
            {"title": "Empty"},
            "not an example",
        ]})
        response = client.post(f"/api/documents/{doc['id']}/examples", json={"count": 2}, headers=headers)
        data = response.json()
        assert data["personalized_for"] == {"school": "State University", "program": "Nursing", "year": "2"}
        assert [e["title"] for e in data["examples"]] == ["Ward round"]
        assert "Write 2 worked examples" in llm.prompts[-1]

    def test_examples_count_is_bounded(self, client):
        headers, doc = self._student(client)
        response = client.post(f"/api/documents/{doc['id']}/examples", json={"count": 50}, headers=headers)
        assert response.status_code == 422
