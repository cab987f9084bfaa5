"""
HTTP Microservice
=================
Flask-based HTTP API around the question importer.

Each upload is handled end-to-end inside its own request thread; no
state is shared between concurrent imports.

Endpoints:
    POST   /api/questions/upload             → Import questions from a document
    GET    /api/questions?subjectId=...      → List stored questions in order
    POST   /api/questions                    → Add a question by hand
    PUT    /api/questions/<id>               → Edit a question, clear review flag
    DELETE /api/questions/<id>               → Delete one question
    DELETE /api/questions/subject/<subject>  → Delete all questions of a subject
    GET    /uploads/<path>                   → Serve extracted images
    GET    /api/health                       → Health check
    GET    /api/info                         → Importer version info
"""

from __future__ import annotations

import logging
from pathlib import Path

from flask import Flask, jsonify, request, send_from_directory
from flask_cors import CORS

from . import __version__
from . import crud
from . import database as db
from . import storage as fs_storage
from .converters import EXTENSION_FORMATS, detect_format
from .engine import ImportConfig
from .models import ImportMode

logger = logging.getLogger(__name__)

app = Flask(__name__)
CORS(app)


def create_app(config: dict = None) -> Flask:
    """Create and configure the Flask app."""
    if config:
        app.config.update(config)

    app.config.setdefault("UPLOAD_DIR", str(fs_storage.UPLOADS_DIR))
    app.config.setdefault("DB_PATH", db.get_db_path())
    app.config.setdefault("IMPORT_MODE", ImportConfig.from_env().import_mode)
    app.config.setdefault("MAX_CONTENT_LENGTH", 50 * 1024 * 1024)  # 50MB

    # Initialize persistence layer
    fs_storage.init_storage(Path(app.config["UPLOAD_DIR"]))
    db.init_db(app.config["DB_PATH"])

    return app


# ─── Health / Info ────────────────────────────────────────────────────────────


@app.route("/api/health", methods=["GET"])
def health():
    """Health check endpoint."""
    return jsonify({
        "status": "healthy",
        "service": "question-importer",
        "version": __version__,
    })


@app.route("/api/info", methods=["GET"])
def info():
    """Importer version and capability info."""
    return jsonify({
        "version": __version__,
        "supported_formats": sorted(EXTENSION_FORMATS),
        "import_modes": [m.value for m in ImportMode],
        "default_mode": ImportMode(app.config.get("IMPORT_MODE", "merge")).value,
        "tag_format": "<question> stem <variant> correct <variant> ...",
    })


# ─── Upload ───────────────────────────────────────────────────────────────────


@app.route("/api/questions/upload", methods=["POST"])
def upload_questions():
    """
    Import questions from an uploaded document.

    multipart/form-data:
        file:       .docx / .pdf / .html / .txt document
        subjectId:  owning subject (required)
        mode:       "merge" (default) or "additive"
    """
    subject_id = (request.form.get("subjectId") or "").strip()
    if not subject_id:
        return jsonify({"error": "subjectId is required"}), 400

    file = request.files.get("file")
    if file is None or not file.filename:
        return jsonify({"error": "File is required"}), 400

    try:
        fmt = detect_format(file.filename)
        mode = ImportMode(
            request.form.get("mode") or app.config.get("IMPORT_MODE", "merge")
        )
    except ValueError as e:
        return jsonify({"error": str(e)}), 400

    upload_dir = Path(app.config["UPLOAD_DIR"])
    saved_path = fs_storage.save_uploaded_file(file, file.filename, upload_dir)

    try:
        result = crud.import_document(
            saved_path,
            subject_id,
            mode=mode,
            fmt=fmt,
            db_path=app.config["DB_PATH"],
            uploads_dir=upload_dir,
        )
    except Exception as e:
        logger.exception(f"Upload import failed for {file.filename}")
        return jsonify({"error": str(e)}), 500
    finally:
        fs_storage.delete_upload(saved_path)

    payload = result.model_dump(mode="json")
    if result.success:
        return jsonify(payload)
    if result.error_code:
        return jsonify(payload), 400
    return jsonify(payload), 500


# ─── Questions ────────────────────────────────────────────────────────────────


@app.route("/api/questions", methods=["GET"])
def list_questions():
    subject_id = request.args.get("subjectId")
    questions = crud.list_questions(subject_id, db_path=app.config["DB_PATH"])
    return jsonify(questions)


@app.route("/api/questions", methods=["POST"])
def create_question():
    """
    Add a question by hand.

    JSON body: subject_id, stem_text and/or stem_markup, variants
    ([{text, is_correct}], exactly one correct), optional order_index.
    """
    payload = request.get_json(silent=True)
    if not isinstance(payload, dict):
        return jsonify({"error": "JSON object body is required"}), 400

    try:
        question = crud.create_question(payload, db_path=app.config["DB_PATH"])
    except ValueError as e:
        return jsonify({"error": str(e)}), 400
    return jsonify(question), 201


@app.route("/api/questions/<int:question_id>", methods=["PUT"])
def update_question(question_id: int):
    """
    Complete or correct a stored question; clears its review flag.
    Fields left out of the JSON body keep their stored values.
    """
    payload = request.get_json(silent=True)
    if not isinstance(payload, dict):
        return jsonify({"error": "JSON object body is required"}), 400

    try:
        question = crud.update_question(
            question_id, payload, db_path=app.config["DB_PATH"]
        )
    except ValueError as e:
        return jsonify({"error": str(e)}), 400
    if question is None:
        return jsonify({"error": "Question not found"}), 404
    return jsonify(question)


@app.route("/api/questions/<int:question_id>", methods=["DELETE"])
def delete_question(question_id: int):
    deleted = crud.delete_question(question_id, db_path=app.config["DB_PATH"])
    if not deleted:
        return jsonify({"error": "Question not found"}), 404
    return jsonify({"success": True})


@app.route("/api/questions/subject/<subject_id>", methods=["DELETE"])
def delete_subject_questions(subject_id: str):
    count = crud.delete_subject_questions(
        subject_id, db_path=app.config["DB_PATH"]
    )
    return jsonify({
        "success": True,
        "deletedCount": count,
        "message": f"Deleted {count} questions",
    })


# ─── Static Images ────────────────────────────────────────────────────────────


@app.route("/uploads/<path:filename>")
def serve_uploads(filename):
    """Serve extracted images from the upload directory."""
    abs_path = fs_storage.resolve_upload_path(
        filename, Path(app.config["UPLOAD_DIR"])
    )
    if not abs_path:
        logger.warning(f"Upload NOT FOUND: {filename}")
        return jsonify({"error": "File not found", "path": filename}), 404

    target = Path(abs_path)
    return send_from_directory(str(target.parent), target.name)


# ─── Run Server ──────────────────────────────────────────────────────────────


def run_server(
    host: str = "0.0.0.0",
    port: int = 5000,
    debug: bool = False,
):
    """Start the microservice server."""
    create_app()
    app.run(host=host, port=port, debug=debug)


if __name__ == "__main__":
    run_server(debug=True)
