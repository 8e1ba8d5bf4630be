import os
import tempfile

from flask import Blueprint, jsonify, request
from redis.exceptions import RedisError
from werkzeug.utils import secure_filename

from helpers import is_valid_uuid
from logger import get_logger
from services import decisions, migration_store, orchestrator, track_repair
from services.manifest import ManifestError


log = get_logger("routes.migrations")

migrations_bp = Blueprint('migrations', __name__)


def _error(message, status):
    return jsonify({"ok": False, "error": message}), status


def _int_arg(name, default, maximum=None):
    try:
        value = int(request.args.get(name, default))
    except (TypeError, ValueError):
        value = default
    value = max(0, value)
    return min(value, maximum) if maximum else value


@migrations_bp.errorhandler(orchestrator.InvalidTransition)
def handle_invalid_transition(exc):
    return _error(str(exc), 409)


@migrations_bp.errorhandler(orchestrator.MigrationNotFound)
def handle_not_found(exc):
    return _error(str(exc), 404)


@migrations_bp.errorhandler(decisions.DecisionError)
def handle_decision_error(exc):
    return _error(str(exc), 400)


@migrations_bp.errorhandler(ManifestError)
def handle_manifest_error(exc):
    return _error(str(exc), 400)


@migrations_bp.errorhandler(RedisError)
def handle_queue_error(exc):
    log.error("Cola no disponible: %s", exc)
    return _error("Cola de trabajos no disponible", 503)


@migrations_bp.url_value_preprocessor
def validate_migration_id(endpoint, values):
    if values and "migration_id" in values and not is_valid_uuid(values["migration_id"]):
        raise orchestrator.MigrationNotFound("migration_id inválido")


@migrations_bp.route("/api/migrations", methods=["POST"])
def create_migration():
    upload = request.files.get("file")
    if upload is None or not upload.filename:
        return _error("Archivo CSV requerido", 400)
    filename = secure_filename(upload.filename) or "manifest.csv"
    if not filename.lower().endswith(".csv"):
        return _error("Solo se aceptan archivos .csv", 400)

    fd, tmp_path = tempfile.mkstemp(suffix=".csv")
    os.close(fd)
    try:
        upload.save(tmp_path)
        migration_id = orchestrator.create_migration(
            tmp_path,
            title=request.form.get("title") or filename,
            created_by=request.form.get("created_by"),
            notes=request.form.get("notes")
        )
    finally:
        os.unlink(tmp_path)

    return jsonify({
        "ok": True,
        "migration": migration_store.get_migration_dict(migration_id, include_analysis=False)
    }), 201


@migrations_bp.route("/api/migrations")
def list_migrations():
    limit = _int_arg("limit", 20, maximum=100)
    offset = _int_arg("offset", 0)
    items, total = migration_store.list_migrations(
        limit=limit, offset=offset, status=request.args.get("status")
    )
    return jsonify({"ok": True, "migrations": items, "total": total})


@migrations_bp.route("/api/migrations/<migration_id>")
def get_migration(migration_id):
    data = migration_store.get_migration_dict(migration_id)
    if not data:
        return _error("Migración no encontrada", 404)
    data["catalog_count"] = migration_store.count_catalog(migration_id)
    data["unresolved"] = decisions.count_unresolved(migration_id)
    return jsonify({"ok": True, "migration": data})


@migrations_bp.route("/api/migrations/<migration_id>", methods=["DELETE"])
def delete_migration(migration_id):
    try:
        deleted = orchestrator.delete(migration_id)
    except ValueError as exc:
        return _error(str(exc), 409)
    if not deleted:
        return _error("Migración no encontrada", 404)
    return jsonify({"ok": True})


@migrations_bp.route("/api/migrations/<migration_id>/analyze", methods=["POST"])
def analyze(migration_id):
    if migration_store.get_status(migration_id) != "uploaded":
        raise orchestrator.InvalidTransition("Solo se analizan migraciones en estado uploaded")
    job = orchestrator.enqueue_analysis(migration_id)
    return jsonify({"ok": True, "job_id": job.id}), 202


@migrations_bp.route("/api/migrations/<migration_id>/catalog")
def catalog(migration_id):
    entries = migration_store.list_catalog(
        migration_id,
        event_code=request.args.get("event_code"),
        file_type=request.args.get("file_type")
    )
    return jsonify({"ok": True, "entries": entries, "total": len(entries)})


@migrations_bp.route("/api/migrations/<migration_id>/decisions")
def list_decisions(migration_id):
    items = decisions.list_decisions(
        migration_id,
        event_code=request.args.get("event_code"),
        action=request.args.get("action")
    )
    return jsonify({"ok": True, "decisions": items, "total": len(items)})


@migrations_bp.route("/api/migrations/<migration_id>/decisions", methods=["POST"])
def record_decisions(migration_id):
    data = request.get_json(silent=True) or {}
    items = data.get("decisions")
    if not isinstance(items, list) or not items:
        return _error("decisions requerido", 400)
    ids, status = orchestrator.record_decisions(
        migration_id, items, decided_by=data.get("decided_by")
    )
    return jsonify({"ok": True, "decision_ids": ids, "status": status})


@migrations_bp.route("/api/migrations/<migration_id>/approve", methods=["POST"])
def approve(migration_id):
    data = request.get_json(silent=True) or {}
    status = orchestrator.approve(migration_id, approved_by=data.get("approved_by"))
    return jsonify({"ok": True, "status": status})


@migrations_bp.route("/api/migrations/<migration_id>/execute", methods=["POST"])
def execute(migration_id):
    job = orchestrator.start_execution(migration_id)
    return jsonify({"ok": True, "status": "executing", "job_id": job.id}), 202


@migrations_bp.route("/api/migrations/<migration_id>/cancel", methods=["POST"])
def cancel(migration_id):
    status = orchestrator.cancel(migration_id)
    return jsonify({"ok": True, "status": status})


@migrations_bp.route("/api/migrations/<migration_id>/logs")
def logs(migration_id):
    items, total = migration_store.list_logs(
        migration_id,
        level=request.args.get("level"),
        event_code=request.args.get("event_code"),
        limit=_int_arg("limit", 200, maximum=1000),
        offset=_int_arg("offset", 0)
    )
    return jsonify({"ok": True, "logs": items, "total": total})


@migrations_bp.route("/api/migrations/<migration_id>/repairs")
def plan_repairs(migration_id):
    repairs = track_repair.plan_track_repairs(migration_id)
    return jsonify({"ok": True, "repairs": repairs, "total": len(repairs)})


@migrations_bp.route("/api/migrations/<migration_id>/repairs", methods=["POST"])
def apply_repairs(migration_id):
    data = request.get_json(silent=True) or {}
    applied = track_repair.apply_track_repairs(migration_id, decided_by=data.get("decided_by"))
    return jsonify({
        "ok": True,
        "applied": applied,
        "status": migration_store.get_status(migration_id)
    })
