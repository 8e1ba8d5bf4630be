"""
Validación en seco de un manifest contra el bucket origen.

Solo lecturas: nunca escribe en el bucket ni en la base de datos. Las
lecturas por evento se reparten en un ThreadPoolExecutor; cada evento
produce su propio informe parcial que se combina en el hilo principal.
"""

from concurrent.futures import ThreadPoolExecutor, as_completed

from config import Config
from logger import get_logger
from services.analyzer import analyze_event
from services.manifest import load_manifest
from services.reference_data import REFERENCE_KINDS, ReferenceCache
from services.report import AnalysisReport
from services.storage.blob_store import get_blob_store


log = get_logger("validation")


def _select_rows(rows, limit=None, skip=0):
    rows = rows[skip or 0:]
    if limit is not None:
        rows = rows[:max(0, limit)]
    return rows


def validate_manifest(csv_path, blob_store=None, source_bucket=None, reference_cache=None,
                      limit=None, skip=0, workers=None, check_references=True):
    """Devuelve el informe de validación (dict); lanza ManifestError si no se puede leer."""
    manifest = load_manifest(csv_path)
    blob_store = blob_store or get_blob_store()
    source_bucket = source_bucket or Config.S3_SOURCE_BUCKET
    workers = workers or Config.VALIDATION_WORKERS

    if check_references and reference_cache is None:
        reference_cache = ReferenceCache(ttl_seconds=Config.REFERENCE_CACHE_TTL)
    if reference_cache is not None:
        for kind in REFERENCE_KINDS:
            reference_cache.get(kind)

    report = AnalysisReport()
    report.count("totalEvents", manifest.total_rows)
    report.count("quarantinedRows", len(manifest.quarantined))
    for row in manifest.quarantined:
        report.quarantined.append(row.to_dict())
        report.add_issue("warning", "manifest", f"Row quarantined: {row.reason}",
                         event_code=row.event_code or None)

    rows = _select_rows(manifest.rows, limit, skip)
    report.count("validEvents", len(rows))
    if not source_bucket:
        report.add_issue("error", "config", "S3_SOURCE_BUCKET not configured")
        return report.to_dict()

    log.info("Validando %s eventos con %s workers", len(rows), workers)
    partials = {}
    with ThreadPoolExecutor(max_workers=workers) as executor:
        futures = {
            executor.submit(
                analyze_event,
                row,
                blob_store,
                source_bucket,
                reference_cache
            ): row
            for row in rows
        }
        for future in as_completed(futures):
            row = futures[future]
            try:
                partials[row.index] = future.result().report
            except Exception as exc:
                log.error("Error validando %s: %s", row.event_code, exc)
                failed = AnalysisReport()
                failed.add_issue("error", "validation", str(exc), event_code=row.event_code)
                failed.count("eventsFailed")
                partials[row.index] = failed

    # Orden del manifest, independiente del orden de finalización
    for index in sorted(partials):
        report.merge(partials[index])

    states = {}
    for state in report.s3_states.values():
        states[state["state"]] = states.get(state["state"], 0) + 1
    report.counters.update({f"state{name.title().replace('_', '')}": n for name, n in states.items()})
    log.info("Validación terminada: %s", states)
    return report.to_dict()
