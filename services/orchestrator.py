"""
Máquina de estados de una migración.

uploaded -> analyzing -> analyzed -> decisions_pending -> decisions_complete
-> approved -> executing -> completed | failed; cancelled desde cualquier
estado no terminal.

Todas las escrituras de estado son condicionales sobre el estado actual,
de modo que una cancelación concurrente nunca se sobrescribe.
"""

from redis.exceptions import RedisError
from rq import Retry

from config import Config
from logger import get_logger
from models import utcnow
from services import decisions, migration_store
from services.analyzer import analyze_event
from services.manifest import ManifestError, load_manifest
from services.queue import get_queue
from services.reference_data import ReferenceCache
from services.report import AnalysisReport
from services.storage.blob_store import get_blob_store


log = get_logger("orchestrator")

ALLOWED_TRANSITIONS = {
    "uploaded": ("analyzing", "cancelled"),
    "analyzing": ("analyzed", "failed", "cancelled"),
    "analyzed": ("decisions_pending", "cancelled"),
    "decisions_pending": ("decisions_complete", "cancelled"),
    "decisions_complete": ("decisions_pending", "approved", "cancelled"),
    "approved": ("executing", "cancelled"),
    "executing": ("completed", "failed", "cancelled"),
    "completed": (),
    "failed": (),
    "cancelled": (),
}

NON_TERMINAL_STATUSES = tuple(
    status for status, targets in ALLOWED_TRANSITIONS.items() if targets
)


class InvalidTransition(Exception):
    pass


class MigrationNotFound(Exception):
    pass


def can_transition(from_status, to_status):
    return to_status in ALLOWED_TRANSITIONS.get(from_status, ())


def _current_status(migration_id):
    status = migration_store.get_status(migration_id)
    if status is None:
        raise MigrationNotFound(f"Migración no encontrada: {migration_id}")
    return status


def transition(migration_id, from_status, to_status, **fields):
    """Aplica from_status -> to_status o lanza InvalidTransition."""
    if not can_transition(from_status, to_status):
        raise InvalidTransition(f"Transición no permitida: {from_status} -> {to_status}")
    applied = migration_store.transition_status(migration_id, (from_status,), to_status, **fields)
    if not applied:
        current = _current_status(migration_id)
        raise InvalidTransition(
            f"Se esperaba {from_status} para pasar a {to_status}, estado actual {current}"
        )
    return to_status


def create_migration(csv_path, title=None, created_by=None, notes=None, target_bucket=None):
    """Guarda el manifest y crea la migración en estado uploaded."""
    manifest = load_manifest(csv_path)
    stored = migration_store.store_manifest_file(csv_path)
    return migration_store.create_migration(
        title=title,
        csv_file_path=stored,
        csv_row_count=manifest.total_rows,
        created_by=created_by,
        notes=notes,
        target_bucket=target_bucket
    )


def enqueue_analysis(migration_id):
    from services.jobs import analyze_migration

    _current_status(migration_id)
    queue = get_queue(Config.RQ_MIGRATION_QUEUE)
    job = queue.enqueue(
        analyze_migration.analyze_migration_job,
        migration_id,
        job_timeout=Config.ANALYZE_JOB_TIMEOUT,
        retry=Retry(max=1, interval=[30])
    )
    migration_store.update_migration_fields(migration_id, job_id=job.id)
    log.info("Migración %s: análisis en cola (job %s)", migration_id, job.id)
    return job


def _fail_analysis(migration_id, report, message):
    report.add_issue("error", "manifest", message)
    migration_store.append_log(migration_id, "error", message)
    migration_store.transition_status(
        migration_id, ("analyzing",), "failed",
        error_message=message,
        analysis_data=report.to_dict()
    )
    return report.to_dict()


def analyze_migration(migration_id, blob_store=None, reference_cache=None,
                      source_bucket=None, target_root=None, restart=False):
    """
    Fase de análisis completa: catálogo por evento, informe y decisiones
    automáticas. Devuelve el informe (dict).

    Con restart=True una migración que quedó en analyzing vuelve a
    analizarse desde cero (reintento del job).
    """
    if restart and _current_status(migration_id) == "analyzing":
        migration_store.clear_catalog(migration_id)
        migration_store.append_log(migration_id, "warn", "Reintentando el análisis desde cero")
    else:
        transition(migration_id, "uploaded", "analyzing")
    migration = migration_store.get_migration(migration_id)
    blob_store = blob_store or get_blob_store()
    source_bucket = source_bucket or Config.S3_SOURCE_BUCKET
    if reference_cache is None:
        reference_cache = ReferenceCache(ttl_seconds=Config.REFERENCE_CACHE_TTL)

    report = AnalysisReport()
    try:
        manifest = load_manifest(migration.csv_file_path)
    except ManifestError as exc:
        return _fail_analysis(migration_id, report, str(exc))
    if not source_bucket:
        return _fail_analysis(migration_id, report, "S3_SOURCE_BUCKET no configurado")

    report.count("totalEvents", manifest.total_rows)
    report.count("validEvents", len(manifest.rows))
    report.count("quarantinedRows", len(manifest.quarantined))
    for row in manifest.quarantined:
        report.quarantined.append(row.to_dict())
        report.add_issue("warning", "manifest", f"Row quarantined: {row.reason}",
                         event_code=row.event_code or None)

    migration_store.append_log(
        migration_id, "info",
        f"Análisis iniciado: {len(manifest.rows)} eventos válidos"
    )
    seen_keys = set()
    for index, row in enumerate(manifest.rows, start=1):
        if migration_store.get_status(migration_id) == "cancelled":
            log.info("Migración %s cancelada durante el análisis", migration_id)
            return report.to_dict()

        analysis = analyze_event(
            row, blob_store, source_bucket,
            reference_cache=reference_cache,
            target_root=target_root
        )
        report.merge(analysis.report)
        if not analysis.ok:
            migration_store.append_log(
                migration_id, "error", f"Error de listado: {analysis.error}",
                event_code=row.event_code
            )
            continue

        # Dos eventos pueden apuntar al mismo prefijo
        entries = []
        for entry in analysis.entries:
            if entry.s3_key in seen_keys:
                report.add_issue(
                    "warning", "conflict",
                    f"Object already cataloged by another event: {entry.s3_key}",
                    event_code=row.event_code
                )
                continue
            seen_keys.add(entry.s3_key)
            entries.append(entry)
        migration_store.insert_catalog_entries(migration_id, entries)
        migration_store.append_log(
            migration_id, "debug",
            f"{len(entries)} archivos catalogados ({index}/{len(manifest.rows)})",
            event_code=row.event_code
        )

    applied = migration_store.transition_status(
        migration_id, ("analyzing",), "analyzed",
        analysis_data=report.to_dict(),
        analyzed_at=utcnow()
    )
    if not applied:
        return report.to_dict()

    created = decisions.create_auto_decisions(migration_id)
    migration_store.append_log(
        migration_id, "info",
        f"Análisis completado: {report.counters['totalFiles']} archivos, "
        f"{created} decisiones automáticas"
    )
    migration_store.transition_status(migration_id, ("analyzed",), "decisions_pending")
    refresh_decision_status(migration_id)
    return report.to_dict()


def refresh_decision_status(migration_id):
    """
    decisions_pending <-> decisions_complete según queden entradas sin
    resolver. Devuelve el estado resultante.
    """
    status = _current_status(migration_id)
    if status not in ("decisions_pending", "decisions_complete"):
        return status
    unresolved = decisions.count_unresolved(migration_id)
    if unresolved == 0 and status == "decisions_pending":
        if migration_store.transition_status(migration_id, (status,), "decisions_complete"):
            migration_store.append_log(migration_id, "info", "Todas las decisiones resueltas")
            return "decisions_complete"
    elif unresolved and status == "decisions_complete":
        if migration_store.transition_status(migration_id, (status,), "decisions_pending"):
            return "decisions_pending"
    return _current_status(migration_id)


def record_decisions(migration_id, items, decided_by=None):
    ids = decisions.upsert_decisions(migration_id, items, decided_by=decided_by)
    status = refresh_decision_status(migration_id)
    return ids, status


def approve(migration_id, approved_by=None):
    if decisions.count_unresolved(migration_id):
        raise InvalidTransition("Quedan entradas sin decisión")
    transition(
        migration_id, "decisions_complete", "approved",
        approved_by=approved_by,
        approved_at=utcnow()
    )
    migration_store.append_log(
        migration_id, "info", f"Migración aprobada por {approved_by or 'desconocido'}"
    )
    return "approved"


def start_execution(migration_id):
    """approved -> executing y encola el Execution Engine como job independiente."""
    from services.jobs import execute_migration

    transition(migration_id, "approved", "executing", execution_started_at=utcnow())
    migration_store.reset_progress(migration_id)
    try:
        queue = get_queue(Config.RQ_MIGRATION_QUEUE)
        job = queue.enqueue(
            execute_migration.execute_migration_job,
            migration_id,
            job_timeout=Config.EXECUTE_JOB_TIMEOUT
        )
    except RedisError as exc:
        migration_store.transition_status(
            migration_id, ("executing",), "failed",
            error_message=f"No se pudo encolar la ejecución: {exc}"
        )
        raise
    migration_store.update_migration_fields(migration_id, job_id=job.id)
    migration_store.append_log(migration_id, "info", f"Ejecución en cola (job {job.id})")
    return job


def cancel(migration_id):
    status = _current_status(migration_id)
    if not can_transition(status, "cancelled"):
        raise InvalidTransition(f"No se puede cancelar una migración en estado {status}")
    applied = migration_store.transition_status(
        migration_id, NON_TERMINAL_STATUSES, "cancelled"
    )
    if not applied:
        raise InvalidTransition("La migración ya terminó")
    migration_store.append_log(migration_id, "warn", f"Migración cancelada (estado previo {status})")
    return "cancelled"


def delete(migration_id):
    return migration_store.delete_migration(migration_id)
