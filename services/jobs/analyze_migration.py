from rq import get_current_job

from logger import get_logger
from services import migration_store, orchestrator


log = get_logger("analyze_migration")


def _retries_left():
    job = get_current_job()
    if job is None:
        return 0
    return job.retries_left or 0


def analyze_migration_job(migration_id):
    # Un intento anterior fallido deja la migración en analyzing
    restart = migration_store.get_status(migration_id) == "analyzing"
    try:
        report = orchestrator.analyze_migration(migration_id, restart=restart)
    except orchestrator.InvalidTransition:
        raise
    except Exception as exc:
        log.exception("Error analizando la migración %s", migration_id)
        if _retries_left():
            migration_store.append_log(
                migration_id, "warn", f"Error en el análisis, se reintentará: {exc}"
            )
            migration_store.transition_status(migration_id, ("analyzed",), "analyzing")
            migration_store.clear_catalog(migration_id)
        else:
            migration_store.append_log(
                migration_id, "error", f"Error inesperado en el análisis: {exc}"
            )
            migration_store.transition_status(
                migration_id, ("analyzing", "analyzed"), "failed", error_message=str(exc)
            )
        raise
    summary = report.get("summary", {})
    log.info(
        "Migración %s analizada: %s eventos, %s archivos",
        migration_id, summary.get("validEvents", 0), summary.get("totalFiles", 0)
    )
    return summary
