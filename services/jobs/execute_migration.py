"""
Execution Engine: aplica las decisiones include/rename de una migración
aprobada contra el almacenamiento remoto.

Por evento: extracción remota de ZIPs, copia de archivos sueltos,
verificación del prefijo destino y materialización de MediaFile en una
única transacción. Un evento fallido no bloquea los siguientes.
"""

import time
from dataclasses import dataclass, field
from typing import List, Optional

from sqlalchemy.exc import SQLAlchemyError

from config import Config
from extensions import Session
from helpers import basename, dirname, get_mime_type, to_uuid
from logger import get_logger
from models import MediaFile, utcnow
from services import migration_store
from services.checkpoint import Checkpoint, load_checkpoint, save_checkpoint
from services.decisions import work_order
from services.file_catalog import compute_target_key, event_target_prefix, get_file_type
from services.orchestrator import InvalidTransition, MigrationNotFound
from services.session_inference import infer_sessions_from_filenames, session_assignments
from services.storage.blob_store import BlobStoreError, get_blob_store
from services.storage.extraction import archive_url, get_extraction_client


log = get_logger("execute_migration")


class ExecutionError(Exception):
    pass


@dataclass
class EventOutcome:
    event_code: str
    status: str
    error: Optional[str] = None
    extracted: int = 0
    copied: int = 0
    media_files: int = 0

    def to_dict(self):
        return {
            "eventCode": self.event_code,
            "status": self.status,
            "error": self.error,
            "extracted": self.extracted,
            "copied": self.copied,
            "mediaFiles": self.media_files,
        }


@dataclass
class ExecutionSummary:
    migration_id: str
    status: str
    total_events: int = 0
    start_index: int = 0
    dry_run: bool = False
    counters: dict = field(default_factory=dict)
    outcomes: List[EventOutcome] = field(default_factory=list)
    plan: dict = field(default_factory=dict)
    checkpoint_path: Optional[str] = None

    def to_dict(self):
        return {
            "migrationId": self.migration_id,
            "status": self.status,
            "totalEvents": self.total_events,
            "startIndex": self.start_index,
            "dryRun": self.dry_run,
            "counters": dict(self.counters),
            "outcomes": [o.to_dict() for o in self.outcomes],
            "plan": self.plan,
            "checkpoint": self.checkpoint_path,
        }


def _is_archive(item):
    return (item.get("metadata") or {}).get("source_type") == "zip"


def resolve_target_key(item, target_root=None):
    """Clave destino de un archivo suelto, aplicando rename y categoría de la decisión."""
    decision = item["decision"] or {}
    metadata = item.get("metadata") or {}
    filename = item["filename"]
    if decision.get("action") == "rename" and decision.get("new_filename"):
        filename = basename(decision["new_filename"].strip())

    if decision.get("target_key"):
        key = decision["target_key"]
        if filename != item["filename"]:
            key = f"{dirname(key)}/{filename}" if dirname(key) else filename
        return key

    category = decision.get("target_category") or item.get("category")
    if metadata.get("target_key") and category == item.get("category"):
        key = metadata["target_key"]
        if filename != item["filename"]:
            key = f"{dirname(key)}/{filename}" if dirname(key) else filename
        return key
    return compute_target_key(item["event_code"], filename, category, target_root)


def classify_target_key(key):
    """(file_type, category) según la convención de rutas del destino."""
    path = "/" + (key or "").lower()
    file_type = get_file_type(key)
    if "/transcripts/" in path:
        return "document", "transcript"
    if "/video/" in path or file_type == "video":
        return "video", "video"
    if file_type == "audio":
        if "/audio2/" in path:
            return "audio", "audio_translation"
        if "/legacy/" in path:
            return "audio", "audio_legacy"
        return "audio", "audio_main"
    if file_type in ("document", "image"):
        return file_type, file_type
    return file_type, "other"


class ExecutionEngine:
    def __init__(self, migration_id, blob_store, extractor, source_bucket, target_bucket,
                 target_root=None, sleep=time.sleep, extraction_delay=None):
        self.migration_id = migration_id
        self.blob_store = blob_store
        self.extractor = extractor
        self.source_bucket = source_bucket
        self.target_bucket = target_bucket
        self.target_root = target_root
        self.sleep = sleep
        self.extraction_delay = (
            Config.EXTRACTION_DELAY_SECONDS if extraction_delay is None else extraction_delay
        )
        self._extractions = 0

    def event_prefix(self, event_code):
        return event_target_prefix(event_code, self.target_root)

    def plan_event(self, event_code, items):
        """Acciones que se ejecutarían para un evento, sin efectos."""
        actions = []
        for item in items:
            if _is_archive(item):
                target_prefix = item["metadata"].get("target_prefix") or self.event_prefix(event_code)
                actions.append({
                    "type": "extract",
                    "source": item["s3_key"],
                    "targetPrefix": target_prefix,
                })
            else:
                actions.append({
                    "type": "copy",
                    "source": item["s3_key"],
                    "target": resolve_target_key(item, self.target_root),
                })
        return actions

    def _already_materialized(self, keys):
        if not keys:
            return set()
        session = Session()
        try:
            rows = (
                session.query(MediaFile.s3_key)
                .filter(MediaFile.s3_bucket == self.target_bucket)
                .filter(MediaFile.s3_key.in_(list(keys)))
                .all()
            )
            return {row.s3_key for row in rows}
        finally:
            Session.remove()

    def _extract(self, event_code, item):
        if self._extractions and self.extraction_delay:
            self.sleep(self.extraction_delay)
        self._extractions += 1
        target_prefix = item["metadata"].get("target_prefix") or self.event_prefix(event_code)
        result = self.extractor.extract(
            archive_url(self.source_bucket, item["s3_key"]),
            self.source_bucket,
            self.target_bucket,
            target_prefix
        )
        if not result.success:
            raise ExecutionError(f"Extracción fallida para {item['filename']}: {result.message}")
        migration_store.append_log(
            self.migration_id, "info",
            f"ZIP extraído en {target_prefix}",
            event_code=event_code,
            context={"source": item["s3_key"], "message": result.message}
        )
        return target_prefix

    def _copy(self, item, target_key):
        try:
            self.blob_store.copy_object(
                item["s3_key"], target_key, self.source_bucket, self.target_bucket
            )
        except BlobStoreError as exc:
            raise ExecutionError(f"Copia fallida {item['s3_key']} -> {target_key}: {exc}") from exc

    def _verify(self, event_code, expected_keys):
        prefix = self.event_prefix(event_code)
        try:
            listed = self.blob_store.list_objects(prefix, self.target_bucket)
            listed_keys = {obj.key for obj in listed}
            missing = [
                key for key in expected_keys
                if key not in listed_keys and not self.blob_store.exists(key, self.target_bucket)
            ]
        except BlobStoreError as exc:
            raise ExecutionError(f"No se pudo verificar {prefix}: {exc}") from exc
        if missing:
            raise ExecutionError(
                f"{len(missing)} objetos no encontrados tras la copia: {', '.join(sorted(missing)[:5])}"
            )
        return listed

    def _audio_assignments(self, objects):
        """Sesión/pista inferidas para audio extraído, por carpeta."""
        folders = {}
        for obj in objects:
            if get_file_type(obj.key) == "audio":
                folders.setdefault(dirname(obj.key), []).append(basename(obj.key))
        assignments = {}
        for folder, names in folders.items():
            sessions = infer_sessions_from_filenames(sorted(names, key=str.lower))
            for name, data in session_assignments(sessions).items():
                assignments[f"{folder}/{name}" if folder else name] = data
        return assignments

    def _media_row(self, event_code, obj, item, archive_item, inferred):
        file_type, category = classify_target_key(obj.key)
        source = item or archive_item or {}
        decision = source.get("decision") or {}
        metadata = {}
        if item is not None:
            metadata.update(item.get("metadata") or {})
        elif file_type == "audio":
            metadata.update(inferred.get(obj.key, {}))
        metadata.update(decision.get("metadata_overrides") or {})

        row = MediaFile(
            event_code=event_code,
            file_type=file_type,
            category=category,
            filename=basename(obj.key),
            s3_key=obj.key,
            s3_bucket=self.target_bucket,
            file_size=obj.size,
            mime_type=get_mime_type(obj.key),
            is_translation=category == "audio_translation",
            is_legacy=category == "audio_legacy",
            migrated_from=source.get("s3_key"),
            migration_id=to_uuid(self.migration_id),
            decision_id=decision.get("id"),
            file_metadata={
                "source": "zip" if item is None else "loose",
                "migrated_at": utcnow().isoformat(),
            }
        )
        if file_type == "audio":
            row.session_number = metadata.get("session_number")
            row.track_number = metadata.get("track_number")
            if metadata.get("is_translation"):
                row.is_translation = True
            language = metadata.get("language")
            if language and language != "unspecified":
                row.language = language
            row.file_metadata["speaker"] = metadata.get("speaker")
        elif category == "transcript":
            row.language = metadata.get("language")
            row.page_count = metadata.get("page_count")
        return row

    def _materialize(self, event_code, objects, loose_by_key, archives):
        existing = self._already_materialized([obj.key for obj in objects])
        inferred = self._audio_assignments(
            [obj for obj in objects if obj.key not in loose_by_key]
        )
        session = Session()
        try:
            created = 0
            for obj in objects:
                if obj.key in existing:
                    continue
                item = loose_by_key.get(obj.key)
                archive_item = None
                if item is None:
                    archive_item = next(
                        (a for prefix, a in archives if obj.key.startswith(prefix + "/")), None
                    )
                session.add(self._media_row(event_code, obj, item, archive_item, inferred))
                created += 1
            session.commit()
            return created
        except SQLAlchemyError as exc:
            session.rollback()
            raise ExecutionError(f"Error registrando archivos: {exc}") from exc
        finally:
            Session.remove()

    def _loose_targets(self, loose):
        """Clave destino -> decisión; dos archivos con el mismo destino fallan el evento."""
        targets = {}
        for item in loose:
            key = resolve_target_key(item, self.target_root)
            other = targets.get(key)
            if other is not None:
                raise ExecutionError(
                    f"Destino duplicado {key}: {other['s3_key']} y {item['s3_key']}"
                )
            targets[key] = item
        return targets

    def process_event(self, event_code, items):
        outcome = EventOutcome(event_code=event_code, status="successful")
        archives = [item for item in items if _is_archive(item)]
        loose = [item for item in items if not _is_archive(item)]
        loose_by_key = self._loose_targets(loose)

        if not archives and loose_by_key:
            done = self._already_materialized(loose_by_key.keys())
            if len(done) == len(loose_by_key):
                outcome.status = "skipped"
                return outcome

        # Las extracciones terminan antes de inventariar el prefijo destino
        extracted = []
        for item in archives:
            prefix = self._extract(event_code, item)
            extracted.append((prefix.rstrip("/"), item))
            outcome.extracted += 1

        for target_key, item in loose_by_key.items():
            self._copy(item, target_key)
            outcome.copied += 1

        objects = self._verify(event_code, list(loose_by_key))
        outside = [
            key for key in loose_by_key
            if not key.startswith(self.event_prefix(event_code) + "/")
        ]
        if outside:
            sizes = {item["s3_key"]: item.get("file_size") or 0 for item in loose}
            objects = list(objects) + [
                _ListedObject(key, sizes.get(loose_by_key[key]["s3_key"], 0)) for key in outside
            ]

        outcome.media_files = self._materialize(event_code, objects, loose_by_key, extracted)
        return outcome


@dataclass(frozen=True)
class _ListedObject:
    key: str
    size: int = 0


def _load_migration(migration_id):
    migration = migration_store.get_migration(migration_id)
    if migration is None:
        raise MigrationNotFound(f"Migración no encontrada: {migration_id}")
    return migration


def _finish(migration_id, counters, total):
    failed_all = counters.get("failed", 0) > 0 and counters.get("failed", 0) == counters.get("processed", 0)
    final_status = "failed" if failed_all else "completed"
    fields = {"execution_completed_at": utcnow()}
    if failed_all:
        fields["error_message"] = "Todos los eventos fallaron"
    applied = migration_store.transition_status(migration_id, ("executing",), final_status, **fields)
    if not applied:
        return migration_store.get_status(migration_id)
    migration_store.append_log(
        migration_id, "error" if failed_all else "info",
        f"Ejecución terminada: {counters.get('successful', 0)} ok, "
        f"{counters.get('failed', 0)} fallidos, {counters.get('skipped', 0)} omitidos de {total}"
    )
    return final_status


def run_execution(migration_id, blob_store=None, extractor=None, checkpoint_path=None,
                  resume=None, limit=None, skip=0, dry_run=False, sleep=time.sleep,
                  source_bucket=None, target_bucket=None, target_root=None):
    """
    Ejecuta (o reanuda) una migración aprobada.

    resume: ruta de un checkpoint previo; los eventos ya procesados no se
    repiten y los contadores continúan desde los guardados.
    limit/skip: ventana de eventos (en orden de código) a procesar; con
    limit la ejecución puede quedar en executing para reanudarse luego.
    """
    migration = _load_migration(migration_id)
    status = migration.status
    if not dry_run:
        if status == "approved":
            migration_store.transition_status(
                migration_id, ("approved",), "executing", execution_started_at=utcnow()
            )
        elif status != "executing":
            raise InvalidTransition(f"No se puede ejecutar una migración en estado {status}")

    source_bucket = source_bucket or Config.S3_SOURCE_BUCKET
    target_bucket = target_bucket or migration.target_bucket or Config.S3_TARGET_BUCKET
    summary = ExecutionSummary(migration_id=str(migration_id), status=status, dry_run=dry_run)
    if not source_bucket or not target_bucket:
        message = "Buckets de origen/destino no configurados"
        if not dry_run:
            migration_store.append_log(migration_id, "error", message)
            migration_store.transition_status(
                migration_id, ("executing",), "failed", error_message=message
            )
            summary.status = "failed"
        return summary

    engine = ExecutionEngine(
        migration_id,
        blob_store or get_blob_store(),
        extractor or get_extraction_client(),
        source_bucket,
        target_bucket,
        target_root=target_root,
        sleep=sleep
    )
    order = work_order(migration_id)
    codes = list(order)
    checkpoint = load_checkpoint(resume) if resume else Checkpoint()
    checkpoint_path = checkpoint_path or resume
    start = checkpoint.start_index(skip)
    end = len(codes) if limit is None else min(len(codes), start + max(0, limit))

    summary.total_events = len(codes)
    summary.start_index = start
    summary.checkpoint_path = checkpoint_path
    counters = checkpoint.counters
    done = checkpoint.done_codes

    if not dry_run:
        # Sin checkpoint los contadores parten de cero
        if not resume:
            migration_store.reset_progress(migration_id)
        migration_store.append_log(
            migration_id, "info",
            f"Ejecución: eventos {start + 1}-{end} de {len(codes)}",
            context={"resume": resume, "skip": skip, "limit": limit}
        )

    since_save = 0
    for index in range(start, end):
        event_code = codes[index]
        if dry_run:
            summary.plan[event_code] = engine.plan_event(event_code, order[event_code])
            continue
        if migration_store.get_status(migration_id) == "cancelled":
            log.info("Migración %s cancelada; se detiene en %s", migration_id, event_code)
            break
        if event_code in done:
            checkpoint.last_processed_index = max(checkpoint.last_processed_index, index)
            continue

        try:
            outcome = engine.process_event(event_code, order[event_code])
        except ExecutionError as exc:
            outcome = EventOutcome(event_code=event_code, status="failed", error=str(exc))
            migration_store.append_log(migration_id, "error", str(exc), event_code=event_code)
        else:
            migration_store.append_log(
                migration_id, "info",
                f"Evento {outcome.status}: {outcome.extracted} ZIPs, "
                f"{outcome.copied} copias, {outcome.media_files} archivos registrados",
                event_code=event_code
            )

        summary.outcomes.append(outcome)
        checkpoint.record(index, event_code, outcome.status, outcome.error)
        migration_store.set_progress(
            migration_id,
            len(codes),
            processed=counters["processed"],
            successful=counters["successful"],
            failed=counters["failed"],
            skipped=counters["skipped"]
        )
        since_save += 1
        if checkpoint_path and since_save >= Config.CHECKPOINT_EVERY:
            save_checkpoint(checkpoint, checkpoint_path)
            since_save = 0

    summary.counters = dict(counters)
    if dry_run:
        return summary

    if checkpoint_path:
        save_checkpoint(checkpoint, checkpoint_path)

    current = migration_store.get_status(migration_id)
    if current != "executing":
        summary.status = current
        return summary
    if end < len(codes):
        summary.status = "executing"
        log.info("Migración %s: ventana procesada hasta el índice %s", migration_id, end - 1)
        return summary

    if not codes:
        migration_store.set_progress(migration_id, 0)
    summary.status = _finish(migration_id, counters, len(codes))
    return summary


def execute_migration_job(migration_id):
    """Job RQ del Execution Engine."""
    try:
        summary = run_execution(migration_id)
    except Exception as exc:
        log.exception("Error ejecutando la migración %s", migration_id)
        migration_store.append_log(migration_id, "error", f"Error inesperado: {exc}")
        migration_store.transition_status(
            migration_id, ("executing",), "failed", error_message=str(exc)
        )
        raise
    log.info("Migración %s: %s", migration_id, summary.status)
    return summary.to_dict()
