"""
Roster Reconciliation API
Upload a ticket bundle, upload rosters against it, resolve duplicate names
and download the matched tickets.
"""

import os
import time
import uuid
from typing import Tuple

from flask import Blueprint, current_app, jsonify, request, send_file
from werkzeug.datastructures import FileStorage

from roster_reconcile.services.reconciliation_service import ReconciliationService
from roster_reconcile.extensions import limiter
from roster_reconcile.utils.error_handlers import NotFoundError, ValidationError
from roster_reconcile.utils.security import is_safe_filename, sanitize_filename

roster_bp = Blueprint('roster', __name__, url_prefix='/api')


def _service() -> ReconciliationService:
    return current_app.extensions["roster_reconcile"]


def _rate_limit(path: str):
    return lambda: current_app.config["RATE_LIMITS"].get(path, current_app.config["RATELIMIT_DEFAULT"])


def _save_upload(file_storage: FileStorage, folder: str) -> Tuple[str, str]:
    """Store an uploaded file under a unique name; returns (path, display name)"""
    display_name = sanitize_filename(file_storage.filename)
    os.makedirs(folder, exist_ok=True)
    unique_prefix = f"{int(time.time() * 1000)}-{uuid.uuid4().hex[:8]}"
    path = os.path.join(folder, f"{unique_prefix}-{display_name}")
    file_storage.save(path)

    if os.path.getsize(path) == 0:
        os.remove(path)
        raise ValidationError("The uploaded file is empty", details={"filename": display_name})
    return path, display_name


def _require_file(field: str, label: str) -> FileStorage:
    file_storage = request.files.get(field)
    if file_storage is None or not file_storage.filename:
        raise ValidationError(f"Please upload {label}", details={"field": field})
    return file_storage


def _json_body() -> dict:
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        raise ValidationError("Request body must be a JSON object")
    return data


@roster_bp.route("/upload-archive", methods=["POST"])
@limiter.limit(_rate_limit("/api/upload-archive"))
def api_upload_archive():
    """Upload the ticket bundle (ZIP) and open a reconciliation session"""
    archive = _require_file("archive", "a ticket archive")
    path, display_name = _save_upload(archive, current_app.config["UPLOAD_FOLDER"])

    session = _service().ingest_bundle(path, display_name)

    return jsonify({
        "success": True,
        "session_id": session.session_id,
        "archive_name": display_name,
        "message": "Archive uploaded and extracted successfully"
    })


@roster_bp.route("/upload-excel", methods=["POST"])
@limiter.limit(_rate_limit("/api/upload-excel"))
def api_upload_excel():
    """Upload one roster workbook and match it against the session's tickets"""
    session_id = request.form.get("session_id") or request.form.get("sessionId")
    if not session_id:
        raise ValidationError("Missing required field: session_id")
    # Unknown sessions are rejected before anything is written to disk
    _service().store.get(session_id)

    roster = _require_file("excel", "a roster spreadsheet")
    path, display_name = _save_upload(roster, current_app.config["UPLOAD_FOLDER"])

    return jsonify(_service().ingest_roster(session_id, path, display_name))


@roster_bp.route("/resolve-duplicates", methods=["POST"])
def api_resolve_duplicates():
    """Finalize the active pending sheet with one chosen ticket per duplicate name"""
    data = _json_body()
    session_id = data.get("session_id") or data.get("sessionId")
    pending_id = data.get("pending_id") or data.get("pendingId")
    if not session_id or not pending_id:
        raise ValidationError("Missing required fields: session_id, pending_id")

    return jsonify(_service().resolve_duplicates(session_id, pending_id, data.get("selections")))


@roster_bp.route("/skip-duplicates", methods=["POST"])
def api_skip_duplicates():
    """Finalize the active pending sheet without its duplicate-name records"""
    data = _json_body()
    session_id = data.get("session_id") or data.get("sessionId")
    pending_id = data.get("pending_id") or data.get("pendingId")
    if not session_id or not pending_id:
        raise ValidationError("Missing required fields: session_id, pending_id")

    return jsonify(_service().skip_duplicates(session_id, pending_id))


@roster_bp.route("/sessions/<session_id>", methods=["GET"])
def api_get_session(session_id: str):
    """Processed sheets and the pending queue of a session"""
    return jsonify(_service().session_overview(session_id))


@roster_bp.route("/download/<download_id>", methods=["GET"])
def api_download(download_id: str):
    """Stream a generated ticket bundle"""
    if not is_safe_filename(download_id):
        raise NotFoundError("The file does not exist or has expired", details={"download_id": download_id})

    processed = _service().find_download(download_id)
    return send_file(
        processed.output_path,
        mimetype="application/zip",
        as_attachment=True,
        download_name=processed.output_filename,
    )


@roster_bp.route("/health", methods=["GET"])
@limiter.exempt
def api_health():
    return jsonify({"status": "ok", "sessions": len(_service().store)})
