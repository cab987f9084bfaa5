"""
Test Suite for Persistence, Converters and Service Surfaces
===========================================================
Integration tests for SQLite storage, file storage, format converters,
the HTTP service and the CLI.
"""

from __future__ import annotations

import io
import json
import zipfile
from pathlib import Path

import fitz  # PyMuPDF
import pytest
from click.testing import CliRunner

from question_importer import crud
from question_importer import database as db
from question_importer import storage
from question_importer.cli import cli
from question_importer.converters import (
    convert_html,
    convert_text,
    decode_bytes,
    detect_format,
    load_document,
)
from question_importer.engine import ImportConfig, ImportEngine
from question_importer.errors import NO_TAG_STRUCTURE
from question_importer.models import (
    DocumentFormat,
    ImportMode,
    InstructionAction,
    RawDocumentBody,
)
from question_importer.record_builder import RecordBuilder
from question_importer.variant_parser import VariantParser

BODY = "<question>2+2=?<variant>4<variant>5<variant>22<question>Capital of France?<variant>Paris<variant>Rome"
TEXT_DOCUMENT = b"<question>2+2=?\n<variant>4\n<variant>5\n\n<question>Pick one\n<variant>Only\n"

QUIET = ImportConfig(log_level="WARNING")


@pytest.fixture
def db_path(tmp_path):
    path = str(tmp_path / "questions.sqlite")
    db.init_db(path)
    return path


def _make_docx(path: Path, paragraphs: list[str]):
    """Write a minimal .docx holding one run per paragraph."""
    body = "".join(
        f"<w:p><w:r><w:t xml:space=\"preserve\">{text}</w:t></w:r></w:p>"
        for text in paragraphs
    )
    with zipfile.ZipFile(path, "w") as zf:
        zf.writestr(
            "[Content_Types].xml",
            '<?xml version="1.0" encoding="UTF-8" standalone="yes"?>'
            '<Types xmlns="http://schemas.openxmlformats.org/package/2006/content-types">'
            '<Default Extension="rels" ContentType="application/vnd.openxmlformats-package.relationships+xml"/>'
            '<Default Extension="xml" ContentType="application/xml"/>'
            '<Override PartName="/word/document.xml" ContentType="application/vnd.openxmlformats-officedocument.wordprocessingml.document.main+xml"/>'
            "</Types>",
        )
        zf.writestr(
            "_rels/.rels",
            '<?xml version="1.0" encoding="UTF-8" standalone="yes"?>'
            '<Relationships xmlns="http://schemas.openxmlformats.org/package/2006/relationships">'
            '<Relationship Id="rId1" Type="http://schemas.openxmlformats.org/officeDocument/2006/relationships/officeDocument" Target="word/document.xml"/>'
            "</Relationships>",
        )
        zf.writestr(
            "word/_rels/document.xml.rels",
            '<?xml version="1.0" encoding="UTF-8" standalone="yes"?>'
            '<Relationships xmlns="http://schemas.openxmlformats.org/package/2006/relationships">'
            "</Relationships>",
        )
        zf.writestr(
            "word/document.xml",
            '<?xml version="1.0" encoding="UTF-8" standalone="yes"?>'
            '<w:document xmlns:w="http://schemas.openxmlformats.org/wordprocessingml/2006/main">'
            f"<w:body>{body}</w:body></w:document>",
        )


def _make_pdf(path: Path, lines: list[str]):
    doc = fitz.open()
    page = doc.new_page()
    y = 72
    for line in lines:
        page.insert_text((72, y), line, fontsize=12)
        y += 24
    doc.save(str(path))
    doc.close()


def _make_pdf_with_image(path: Path):
    """One question whose stem is followed by a 150x150 picture."""
    doc = fitz.open()
    page = doc.new_page()
    page.insert_text((72, 72), "<question>Which shade is shown?", fontsize=12)
    pix = fitz.Pixmap(fitz.csRGB, fitz.IRect(0, 0, 150, 150), False)
    pix.clear_with(200)
    page.insert_image(fitz.Rect(72, 100, 222, 250), stream=pix.tobytes("png"))
    page.insert_text((72, 290), "<variant>Grey", fontsize=12)
    page.insert_text((72, 314), "<variant>Blue", fontsize=12)
    doc.save(str(path))
    doc.close()


# ═══════════════════════════════════════════════════════════════════════════════
# DATABASE TESTS
# ═══════════════════════════════════════════════════════════════════════════════


class TestDatabase:
    """Test the SQLite layer directly."""

    def _record(self, stem="Q?", order_index=0, subject="math"):
        plan = RecordBuilder().build(
            [VariantParser().parse(f"{stem}<variant>a<variant>b")],
            subject,
            import_mode=ImportMode.ADDITIVE,
            start_order_index=order_index,
        )
        return plan.records[0]

    def test_init_is_idempotent(self, db_path):
        db.init_db(db_path)
        assert db.count_questions(db_path=db_path) == 0

    def test_max_order_index_empty(self, db_path):
        assert db.max_order_index("math", db_path=db_path) == -1

    def test_insert_and_read_back(self, db_path):
        qid = db.insert_question(self._record(order_index=3), db_path=db_path)
        question = db.get_question(qid, db_path=db_path)
        assert question["question_text"] == "Q?"
        assert question["order_index"] == 3
        assert [v["text"] for v in question["variants"]] == ["a", "b"]
        assert [v["is_correct"] for v in question["variants"]] == [True, False]
        assert db.max_order_index("math", db_path=db_path) == 3

    def test_find_question_id_exact_match(self, db_path):
        qid = db.insert_question(self._record(stem="Exact?"), db_path=db_path)
        assert db.find_question_id("math", "Exact?", db_path=db_path) == qid
        assert db.find_question_id("math", "exact?", db_path=db_path) is None
        assert db.find_question_id("other", "Exact?", db_path=db_path) is None

    def test_update_replaces_variants(self, db_path):
        qid = db.insert_question(self._record(), db_path=db_path)
        replacement = RecordBuilder().build(
            [VariantParser().parse("Q?<variant>x<variant>y<variant>z")],
            "math",
            import_mode=ImportMode.ADDITIVE,
            start_order_index=9,
        ).records[0]
        assert db.update_question(qid, replacement, db_path=db_path) is True
        question = db.get_question(qid, db_path=db_path)
        assert [v["text"] for v in question["variants"]] == ["x", "y", "z"]
        assert question["order_index"] == 9
        assert question["updated_at"] is not None

    def test_update_missing_row(self, db_path):
        assert db.update_question(999, self._record(), db_path=db_path) is False

    def test_list_in_order(self, db_path):
        db.insert_question(self._record(stem="Second", order_index=1), db_path=db_path)
        db.insert_question(self._record(stem="First", order_index=0), db_path=db_path)
        db.insert_question(self._record(stem="Elsewhere", subject="bio"), db_path=db_path)
        questions = db.list_questions("math", db_path=db_path)
        assert [q["question_text"] for q in questions] == ["First", "Second"]
        assert len(db.list_questions(db_path=db_path)) == 3

    def test_delete_cascades(self, db_path):
        qid = db.insert_question(self._record(), db_path=db_path)
        assert db.delete_question(qid, db_path=db_path) is True
        assert db.get_question(qid, db_path=db_path) is None
        with db.get_connection(db_path) as conn:
            left = conn.execute("SELECT COUNT(*) FROM variants").fetchone()[0]
        assert left == 0
        assert db.delete_question(qid, db_path=db_path) is False

    def test_delete_subject(self, db_path):
        db.insert_question(self._record(stem="A"), db_path=db_path)
        db.insert_question(self._record(stem="B"), db_path=db_path)
        db.insert_question(self._record(stem="C", subject="bio"), db_path=db_path)
        assert db.delete_subject_questions("math", db_path=db_path) == 2
        assert db.count_questions(db_path=db_path) == 1


# ═══════════════════════════════════════════════════════════════════════════════
# CRUD / IMPORT FLOW TESTS
# ═══════════════════════════════════════════════════════════════════════════════


class TestSQLiteImport:
    """Test engine runs persisted through SQLite."""

    def _import(self, db_path, mode, subject="math"):
        return crud.import_body(
            RawDocumentBody(body=BODY), subject, mode=mode, config=QUIET,
            db_path=db_path,
        )

    def test_first_import_creates(self, db_path):
        result = self._import(db_path, ImportMode.MERGE)
        assert result.success is True
        assert result.created == 2
        stored = db.list_questions("math", db_path=db_path)
        assert [q["order_index"] for q in stored] == [0, 1]

    def test_merge_twice_keeps_count(self, db_path):
        self._import(db_path, ImportMode.MERGE)
        second = self._import(db_path, ImportMode.MERGE)
        assert second.created == 0
        assert second.updated == 2
        assert db.count_questions("math", db_path=db_path) == 2

    def test_additive_twice_doubles(self, db_path):
        self._import(db_path, ImportMode.ADDITIVE)
        second = self._import(db_path, ImportMode.ADDITIVE)
        assert second.created == 2
        assert [r.order_index for r in second.records] == [2, 3]
        assert db.count_questions("math", db_path=db_path) == 4

    def test_structural_error_writes_nothing(self, db_path):
        result = crud.import_body(
            RawDocumentBody(body="plain words only"), "math", config=QUIET,
            db_path=db_path,
        )
        assert result.success is False
        assert result.error_code == NO_TAG_STRUCTURE
        assert db.count_questions(db_path=db_path) == 0

    def test_failed_instruction_does_not_stop_batch(self, db_path):
        blocks = [
            VariantParser().parse("Gone?<variant>a<variant>b", 0),
            VariantParser().parse("New?<variant>c<variant>d", 1),
        ]
        plan = RecordBuilder().build(
            blocks,
            "math",
            import_mode=ImportMode.MERGE,
            lookup=lambda subject, stem: 999 if stem == "Gone?" else None,
        )
        outcome = crud.execute_plan(plan, db_path=db_path)
        assert outcome.created == 1
        assert outcome.updated == 0
        assert len(outcome.failures) == 1
        failure = outcome.failures[0]
        assert failure.action == InstructionAction.UPDATE
        assert failure.order_index == 0
        assert "999" in failure.error

    def test_merge_collapses_repeated_stem(self, db_path):
        body = (
            "<question>Same stem?<variant>a<variant>b"
            "<question>Same stem?<variant>c<variant>d"
        )
        result = crud.import_body(
            RawDocumentBody(body=body), "math", mode=ImportMode.MERGE,
            config=QUIET, db_path=db_path,
        )
        assert (result.created, result.updated) == (1, 1)
        stored = db.list_questions("math", db_path=db_path)
        assert len(stored) == 1
        assert [v["text"] for v in stored[0]["variants"]] == ["c", "d"]
        assert stored[0]["order_index"] == 1

        again = crud.import_body(
            RawDocumentBody(body=body), "math", mode=ImportMode.MERGE,
            config=QUIET, db_path=db_path,
        )
        assert (again.created, again.updated) == (0, 2)
        assert db.count_questions("math", db_path=db_path) == 1

    def test_repeated_stem_created_when_first_failed(self, db_path):
        blocks = [
            VariantParser().parse("Dup?<variant>a<variant>b", 0),
            VariantParser().parse("Dup?<variant>c<variant>d", 1),
        ]
        plan = RecordBuilder().build(
            blocks, "math", import_mode=ImportMode.MERGE,
            lookup=lambda subject, stem: None,
        )
        # Point the first occurrence at a row that does not exist
        plan.instructions[0].action = InstructionAction.UPDATE
        plan.instructions[0].existing_id = 999
        plan.instructions[1].existing_id = None
        plan.instructions[1].supersedes = 0

        outcome = crud.execute_plan(plan, db_path=db_path)
        assert (outcome.created, outcome.updated) == (1, 0)
        assert len(outcome.failures) == 1
        stored = db.list_questions("math", db_path=db_path)
        assert [v["text"] for v in stored[0]["variants"]] == ["c", "d"]

    def test_import_document_from_text_file(self, db_path, tmp_path):
        doc = tmp_path / "questions.txt"
        doc.write_bytes(TEXT_DOCUMENT)
        result = crud.import_document(
            str(doc), "math", config=QUIET, db_path=db_path,
            uploads_dir=tmp_path / "uploads",
        )
        assert result.created == 2
        records = result.records
        assert records[0].stem_text == "2+2=?"
        assert [v.text for v in records[0].variants] == ["4", "5"]
        assert [v.text for v in records[1].variants] == ["Only", "<needs completion>"]

    def test_import_document_missing_file(self, db_path, tmp_path):
        with pytest.raises(FileNotFoundError):
            crud.import_document(
                str(tmp_path / "nope.txt"), "math", config=QUIET, db_path=db_path
            )

    def test_import_document_requires_subject(self, db_path, tmp_path):
        doc = tmp_path / "questions.txt"
        doc.write_bytes(TEXT_DOCUMENT)
        with pytest.raises(ValueError):
            crud.import_document(str(doc), "", config=QUIET, db_path=db_path)


# ═══════════════════════════════════════════════════════════════════════════════
# MANUAL EDITING TESTS
# ═══════════════════════════════════════════════════════════════════════════════


def _payload(**overrides):
    payload = {
        "subject_id": "math",
        "stem_text": "3+3=?",
        "variants": [
            {"text": "6", "is_correct": True},
            {"text": "9", "is_correct": False},
        ],
    }
    payload.update(overrides)
    return payload


class TestManualEditing:
    """Test hand-written questions and review completion."""

    def test_create_appends_after_last(self, db_path):
        crud.import_body(
            RawDocumentBody(body=BODY), "math", config=QUIET, db_path=db_path
        )
        question = crud.create_question(_payload(), db_path=db_path)
        assert question["order_index"] == 2
        assert question["needs_review"] == 0
        assert [v["plain_text"] for v in question["variants"]] == ["6", "9"]

    def test_create_text_from_markup(self, db_path):
        question = crud.create_question(
            _payload(stem_text="", stem_markup="<p>Area of <b>this</b>?</p>"),
            db_path=db_path,
        )
        assert question["question_text"] == "Area of this?"
        assert question["question_html"] == "<p>Area of <b>this</b>?</p>"

    @pytest.mark.parametrize("overrides", [
        {"variants": [{"text": "6", "is_correct": True}]},
        {"variants": [{"text": "6", "is_correct": True},
                      {"text": "9", "is_correct": True}]},
        {"variants": [{"text": "6"}, {"text": "9"}]},
        {"stem_text": "   "},
        {"subject_id": ""},
    ])
    def test_create_rejects_invalid(self, db_path, overrides):
        with pytest.raises(ValueError):
            crud.create_question(_payload(**overrides), db_path=db_path)
        assert db.count_questions(db_path=db_path) == 0

    def test_update_completes_review_question(self, db_path):
        crud.import_body(
            RawDocumentBody(body="<question>Name the largest planet"),
            "astro", config=QUIET, db_path=db_path,
        )
        stored = db.list_questions("astro", db_path=db_path)[0]
        assert stored["needs_review"] == 1

        updated = crud.update_question(stored["id"], {
            "variants": [
                {"text": "Jupiter", "is_correct": True},
                {"text": "Mars", "is_correct": False},
                {"text": "Venus", "is_correct": False},
            ],
        }, db_path=db_path)
        assert updated["needs_review"] == 0
        assert updated["question_text"] == "Name the largest planet"
        assert updated["subject_id"] == "astro"
        assert [v["text"] for v in updated["variants"]] == ["Jupiter", "Mars", "Venus"]

    def test_update_keeping_placeholder_rejected(self, db_path):
        crud.import_body(
            RawDocumentBody(body="<question>Pick one<variant>Only"),
            "math", config=QUIET, db_path=db_path,
        )
        stored = db.list_questions("math", db_path=db_path)[0]
        with pytest.raises(ValueError):
            crud.update_question(stored["id"], {"stem_text": "Pick one!"}, db_path=db_path)
        assert db.get_question(stored["id"], db_path=db_path)["question_text"] == "Pick one"

    def test_update_keeps_subject(self, db_path):
        created = crud.create_question(_payload(), db_path=db_path)
        updated = crud.update_question(
            created["id"], {"subject_id": "physics", "stem_text": "6-3=?"},
            db_path=db_path,
        )
        assert updated["subject_id"] == "math"
        assert updated["question_text"] == "6-3=?"
        assert [v["text"] for v in updated["variants"]] == ["6", "9"]

    def test_update_missing_question(self, db_path):
        assert crud.update_question(404, _payload(), db_path=db_path) is None


# ═══════════════════════════════════════════════════════════════════════════════
# FILE STORAGE TESTS
# ═══════════════════════════════════════════════════════════════════════════════


class TestStorage:
    """Test upload and image storage helpers."""

    def test_image_writer(self, tmp_path):
        writer = storage.ImageWriter("math 101", uploads_dir=tmp_path)
        ref = writer(b"\x89PNG", "jpeg")
        assert ref.startswith("/uploads/images/math_101/")
        assert ref.endswith(".jpg")
        assert writer.written == [ref]
        resolved = storage.resolve_upload_path(ref, uploads_dir=tmp_path)
        assert Path(resolved).read_bytes() == b"\x89PNG"

    def test_image_writer_unsafe_subject(self, tmp_path):
        writer = storage.ImageWriter("..", uploads_dir=tmp_path)
        assert writer.subject_dir == "unsorted"

    def test_resolve_rejects_traversal(self, tmp_path):
        (tmp_path / "secret.txt").write_text("x")
        uploads = tmp_path / "uploads"
        storage.init_storage(uploads)
        assert storage.resolve_upload_path("../secret.txt", uploads) is None
        assert storage.resolve_upload_path("images/missing.png", uploads) is None

    def test_delete_upload(self, tmp_path):
        target = tmp_path / "doc.txt"
        target.write_text("x")
        assert storage.delete_upload(str(target)) is True
        assert storage.delete_upload(str(target)) is False


# ═══════════════════════════════════════════════════════════════════════════════
# CONVERTER TESTS
# ═══════════════════════════════════════════════════════════════════════════════


class TestConverters:
    """Test document-to-body conversion."""

    def setup_method(self):
        self.engine = ImportEngine(
            ImportConfig(import_mode=ImportMode.ADDITIVE, log_level="WARNING")
        )

    @pytest.mark.parametrize("name,fmt", [
        ("a.docx", DocumentFormat.DOCX),
        ("a.DOCX", DocumentFormat.DOCX),
        ("a.pdf", DocumentFormat.PDF),
        ("a.htm", DocumentFormat.HTML),
        ("a.txt", DocumentFormat.TEXT),
    ])
    def test_detect_format(self, name, fmt):
        assert detect_format(name) == fmt

    def test_detect_format_unsupported(self):
        with pytest.raises(ValueError):
            detect_format("sheet.xlsx")

    def test_decode_bytes(self):
        assert decode_bytes("héllo".encode("utf-8")) == "héllo"
        assert decode_bytes(b"\xef\xbb\xbfbom") == "bom"
        assert decode_bytes("Вопрос".encode("cp1251")) == "Вопрос"

    def test_text_is_escaped(self):
        doc = convert_text(b"<question>a < b?\n<variant>yes")
        assert "&lt;question&gt;" in doc.body
        assert "a &lt; b?" in doc.body
        assert "<br>" in doc.body
        assert doc.source_format == DocumentFormat.TEXT

    def test_text_round_trips_through_engine(self):
        doc = convert_text("<question>a < b?\n<variant>yes\n<variant>no".encode())
        plan = self.engine.plan(doc.body, "s")
        assert plan.records[0].stem_text == "a < b?"
        assert [v.text for v in plan.records[0].variants] == ["yes", "no"]

    def test_html_body_extracted(self):
        doc = convert_html(
            b"<html><head><title>x</title></head><body>"
            b"<script>var q = '<question>';</script>"
            b"<p>&lt;question&gt;Q?</p><p>&lt;variant&gt;A<img src='a.png'></p>"
            b"</body></html>"
        )
        assert "<script" not in doc.body
        assert "<title>" not in doc.body
        assert doc.images == ["<img src='a.png'>"]

    def test_docx_via_mammoth(self, tmp_path):
        path = tmp_path / "questions.docx"
        _make_docx(path, [
            "&lt;question&gt;2+2=?",
            "&lt;variant&gt;4",
            "&lt;variant&gt;5",
        ])
        doc = load_document(str(path))
        assert doc.source_format == DocumentFormat.DOCX
        assert "&lt;question&gt;" in doc.body
        plan = self.engine.plan(doc.body, "s")
        assert plan.records[0].stem_text == "2+2=?"
        assert [v.text for v in plan.records[0].variants] == ["4", "5"]

    def test_pdf_via_pymupdf(self, tmp_path):
        path = tmp_path / "questions.pdf"
        _make_pdf(path, ["<question>2+2=?", "<variant>4", "<variant>5"])
        doc = load_document(str(path))
        assert doc.source_format == DocumentFormat.PDF
        plan = self.engine.plan(doc.body, "s")
        assert plan.records[0].stem_text == "2+2=?"
        assert [v.text for v in plan.records[0].variants] == ["4", "5"]

    def test_format_override(self, tmp_path):
        path = tmp_path / "questions.dat"
        path.write_bytes(b"<question>Q?<variant>a<variant>b")
        doc = load_document(str(path), fmt="text")
        assert doc.source_format == DocumentFormat.TEXT


# ═══════════════════════════════════════════════════════════════════════════════
# HTTP SERVICE TESTS
# ═══════════════════════════════════════════════════════════════════════════════


@pytest.fixture
def client(tmp_path):
    from question_importer.server import create_app

    app = create_app({
        "TESTING": True,
        "UPLOAD_DIR": str(tmp_path / "uploads"),
        "DB_PATH": str(tmp_path / "service.sqlite"),
        "IMPORT_MODE": "merge",
    })
    with app.test_client() as c:
        yield c


def _upload(client, data: bytes, filename="questions.txt", **form):
    payload = {"file": (io.BytesIO(data), filename)}
    payload.update(form)
    return client.post(
        "/api/questions/upload", data=payload, content_type="multipart/form-data"
    )


class TestServer:
    """Test Flask endpoints."""

    def test_health(self, client):
        resp = client.get("/api/health")
        assert resp.status_code == 200
        assert resp.get_json()["status"] == "healthy"

    def test_info(self, client):
        data = client.get("/api/info").get_json()
        assert ".docx" in data["supported_formats"]
        assert data["default_mode"] == "merge"

    def test_upload_creates_questions(self, client, tmp_path):
        resp = _upload(client, TEXT_DOCUMENT, subjectId="math")
        assert resp.status_code == 200
        data = resp.get_json()
        assert data["success"] is True
        assert data["created"] == 2
        assert data["message"] == "Processed 2 questions: created 2, updated 0, skipped 0"
        assert list((tmp_path / "uploads" / "raw").iterdir()) == []

        listed = client.get("/api/questions?subjectId=math").get_json()
        assert [q["question_text"] for q in listed] == ["2+2=?", "Pick one"]

    def test_upload_merge_then_additive(self, client):
        _upload(client, TEXT_DOCUMENT, subjectId="math")
        merged = _upload(client, TEXT_DOCUMENT, subjectId="math").get_json()
        assert merged["updated"] == 2
        added = _upload(client, TEXT_DOCUMENT, subjectId="math", mode="additive").get_json()
        assert added["created"] == 2
        listed = client.get("/api/questions?subjectId=math").get_json()
        assert len(listed) == 4

    def test_upload_requires_subject(self, client):
        resp = _upload(client, TEXT_DOCUMENT)
        assert resp.status_code == 400

    def test_upload_rejects_unknown_format(self, client):
        resp = _upload(client, b"x", filename="sheet.xlsx", subjectId="math")
        assert resp.status_code == 400

    def test_upload_rejects_unknown_mode(self, client):
        resp = _upload(client, TEXT_DOCUMENT, subjectId="math", mode="replace")
        assert resp.status_code == 400

    def test_upload_without_tags(self, client):
        resp = _upload(client, b"no structure here", subjectId="math")
        assert resp.status_code == 400
        data = resp.get_json()
        assert data["error_code"] == NO_TAG_STRUCTURE
        assert data["created"] == 0

    def test_delete_endpoints(self, client):
        _upload(client, TEXT_DOCUMENT, subjectId="math")
        listed = client.get("/api/questions?subjectId=math").get_json()
        resp = client.delete(f"/api/questions/{listed[0]['id']}")
        assert resp.status_code == 200
        assert client.delete(f"/api/questions/{listed[0]['id']}").status_code == 404

        resp = client.delete("/api/questions/subject/math")
        assert resp.get_json()["deletedCount"] == 1

    def test_missing_upload_file(self, client):
        assert client.get("/uploads/images/none/x.png").status_code == 404

    def test_create_question_endpoint(self, client):
        resp = client.post("/api/questions", json=_payload())
        assert resp.status_code == 201
        created = resp.get_json()
        assert created["question_text"] == "3+3=?"
        assert created["needs_review"] == 0

        listed = client.get("/api/questions?subjectId=math").get_json()
        assert [q["id"] for q in listed] == [created["id"]]

    def test_create_question_rejects_invalid(self, client):
        one_variant = _payload(variants=[{"text": "6", "is_correct": True}])
        assert client.post("/api/questions", json=one_variant).status_code == 400
        two_correct = _payload(variants=[
            {"text": "6", "is_correct": True}, {"text": "9", "is_correct": True}
        ])
        assert client.post("/api/questions", json=two_correct).status_code == 400
        assert client.post("/api/questions", data="not json").status_code == 400
        assert client.get("/api/questions").get_json() == []

    def test_update_question_clears_review(self, client):
        _upload(client, b"<question>Name the largest planet", subjectId="astro")
        stored = client.get("/api/questions?subjectId=astro").get_json()[0]
        assert stored["needs_review"] == 1

        resp = client.put(f"/api/questions/{stored['id']}", json={
            "variants": [
                {"text": "Jupiter", "is_correct": True},
                {"text": "Saturn", "is_correct": False},
            ],
        })
        assert resp.status_code == 200
        updated = resp.get_json()
        assert updated["needs_review"] == 0
        assert [v["text"] for v in updated["variants"]] == ["Jupiter", "Saturn"]

    def test_update_question_with_placeholder_left(self, client):
        _upload(client, b"<question>Name the largest planet", subjectId="astro")
        stored = client.get("/api/questions?subjectId=astro").get_json()[0]
        resp = client.put(
            f"/api/questions/{stored['id']}", json={"stem_text": "Largest planet?"}
        )
        assert resp.status_code == 400
        assert "placeholder" in resp.get_json()["error"]

    def test_update_missing_question(self, client):
        resp = client.put("/api/questions/12345", json=_payload())
        assert resp.status_code == 404


# ═══════════════════════════════════════════════════════════════════════════════
# CLI TESTS
# ═══════════════════════════════════════════════════════════════════════════════


class TestCli:
    """Test click commands."""

    def test_help_lists_commands(self):
        result = CliRunner().invoke(cli, ["--help"])
        assert result.exit_code == 0
        assert "Question Importer: tagged multiple-choice questions" in result.output
        for command in ("parse", "import", "batch", "list", "serve"):
            assert command in result.output

    def test_parse_json_output(self, tmp_path):
        doc = tmp_path / "questions.txt"
        doc.write_bytes(TEXT_DOCUMENT)
        result = CliRunner().invoke(
            cli, ["parse", str(doc), "--subject", "math", "--json-output",
                  "--start-index", "4"]
        )
        assert result.exit_code == 0, result.output
        data = json.loads(result.output)
        records = [i["record"] for i in data["plan"]["instructions"]]
        assert [r["order_index"] for r in records] == [4, 5]
        assert data["validation"]["padded_questions"] == [5]

    def test_parse_leaves_no_images_behind(self, tmp_path, monkeypatch):
        uploads = tmp_path / "uploads"
        monkeypatch.setattr(storage, "UPLOADS_DIR", uploads)
        doc = tmp_path / "shades.pdf"
        _make_pdf_with_image(doc)

        result = CliRunner().invoke(
            cli, ["parse", str(doc), "--subject", "art", "--json-output"]
        )
        assert result.exit_code == 0, result.output
        data = json.loads(result.output)
        record = data["plan"]["instructions"][0]["record"]
        assert "/uploads/images/art/" in record["stem_markup"]
        assert [v["text"] for v in record["variants"]] == ["Grey", "Blue"]
        assert not uploads.exists()

    def test_parse_structural_error_exits(self, tmp_path):
        doc = tmp_path / "empty.txt"
        doc.write_bytes(b"nothing useful")
        result = CliRunner().invoke(cli, ["parse", str(doc)])
        assert result.exit_code == 1

    def test_import_and_list(self, tmp_path):
        doc = tmp_path / "questions.txt"
        doc.write_bytes(TEXT_DOCUMENT)
        database = str(tmp_path / "cli.sqlite")
        runner = CliRunner()

        result = runner.invoke(
            cli, ["import", str(doc), "--subject", "math", "--db", database,
                  "--log-level", "WARNING"]
        )
        assert result.exit_code == 0, result.output
        assert db.count_questions("math", db_path=database) == 2

        result = runner.invoke(cli, ["list", "--subject", "math", "--db", database])
        assert result.exit_code == 0
        assert "2 question(s)" in result.output

    def test_batch_parallel(self, tmp_path):
        docs = tmp_path / "docs"
        docs.mkdir()
        for name in ("a.txt", "b.txt", "c.txt"):
            (docs / name).write_bytes(TEXT_DOCUMENT)
        (docs / "notes.md").write_text("ignored")
        database = str(tmp_path / "batch.sqlite")

        result = CliRunner().invoke(
            cli, ["batch", str(docs), "--subject", "math", "--db", database,
                  "--mode", "additive", "--parallel", "3"]
        )
        assert result.exit_code == 0, result.output
        assert db.count_questions("math", db_path=database) == 6
