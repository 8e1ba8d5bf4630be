import os
import shutil

from sqlalchemy import update, func

from config import Config
from extensions import Session
from helpers import to_uuid
from logger import get_logger, log_at
from models import (
    Migration,
    MigrationFileCatalog,
    MigrationFileDecision,
    MigrationLog,
    MediaFile,
    log_migration,
    utcnow
)


log = get_logger("migration_store")

TERMINAL_STATUSES = ("completed", "failed", "cancelled")

_PROGRESS_FIELDS = (
    "processed_events",
    "successful_events",
    "failed_events",
    "skipped_events",
)

_UPDATABLE_FIELDS = (
    "title",
    "analysis_data",
    "target_bucket",
    "error_message",
    "job_id",
    "analyzed_at",
    "execution_started_at",
    "execution_completed_at",
    "approved_by",
    "approved_at",
    "notes",
    "csv_row_count",
)


def _to_uuid(value):
    return to_uuid(value)


def get_upload_dir():
    os.makedirs(Config.UPLOAD_DIR, exist_ok=True)
    return Config.UPLOAD_DIR


def store_manifest_file(source_path, filename=None):
    """Copia el CSV subido al directorio de uploads y devuelve la ruta."""
    upload_dir = get_upload_dir()
    name = os.path.basename(filename or source_path)
    target = os.path.join(upload_dir, f"{utcnow().strftime('%Y%m%d%H%M%S')}_{name}")
    shutil.copyfile(source_path, target)
    return target


def create_migration(title, csv_file_path, csv_row_count=0, created_by=None,
                     notes=None, target_bucket=None):
    session = Session()
    try:
        migration = Migration(
            title=title or "Sin título",
            csv_file_path=csv_file_path,
            csv_row_count=csv_row_count,
            status="uploaded",
            target_bucket=target_bucket or Config.S3_TARGET_BUCKET or None,
            created_by=created_by,
            notes=notes
        )
        session.add(migration)
        session.flush()
        migration_id = str(migration.id)
        log_migration(
            session, migration.id, "info",
            f"Migración creada ({csv_row_count} filas)",
            context={"csv_file_path": csv_file_path}
        )
        session.commit()
    finally:
        Session.remove()

    log.info("Migración creada: %s", migration_id)
    return migration_id


def get_migration(migration_id):
    migration_uuid = _to_uuid(migration_id)
    if not migration_uuid:
        return None
    session = Session()
    try:
        return session.query(Migration).filter_by(id=migration_uuid).first()
    finally:
        Session.remove()


def get_status(migration_id):
    migration = get_migration(migration_id)
    return migration.status if migration else None


def _iso(value):
    return value.isoformat() if value else None


def migration_to_dict(migration, include_analysis=False):
    data = {
        "id": str(migration.id),
        "title": migration.title,
        "status": migration.status,
        "csv_file_path": migration.csv_file_path,
        "csv_row_count": migration.csv_row_count,
        "target_bucket": migration.target_bucket,
        "error_message": migration.error_message,
        "progress": {
            "percentage": migration.progress_percentage,
            "processed_events": migration.processed_events,
            "successful_events": migration.successful_events,
            "failed_events": migration.failed_events,
            "skipped_events": migration.skipped_events,
        },
        "analyzed_at": _iso(migration.analyzed_at),
        "execution_started_at": _iso(migration.execution_started_at),
        "execution_completed_at": _iso(migration.execution_completed_at),
        "created_by": migration.created_by,
        "approved_by": migration.approved_by,
        "approved_at": _iso(migration.approved_at),
        "notes": migration.notes,
        "created_at": _iso(migration.created_at),
        "updated_at": _iso(migration.updated_at),
    }
    if include_analysis:
        data["analysis"] = migration.analysis_data or {}
    return data


def get_migration_dict(migration_id, include_analysis=True):
    migration = get_migration(migration_id)
    if not migration:
        return None
    return migration_to_dict(migration, include_analysis=include_analysis)


def list_migrations(limit=20, offset=0, status=None):
    session = Session()
    try:
        base = session.query(Migration)
        if status:
            base = base.filter(Migration.status == status)
        total = base.count()
        rows = (
            base.order_by(Migration.created_at.desc())
            .offset(offset)
            .limit(limit)
            .all()
        )
        return [migration_to_dict(m) for m in rows], total
    finally:
        Session.remove()


def update_migration_fields(migration_id, **fields):
    migration_uuid = _to_uuid(migration_id)
    if not migration_uuid:
        return False
    session = Session()
    try:
        migration = session.query(Migration).filter_by(id=migration_uuid).first()
        if not migration:
            return False
        for attr in _UPDATABLE_FIELDS:
            if attr in fields:
                setattr(migration, attr, fields[attr])
        session.commit()
        return True
    finally:
        Session.remove()


def transition_status(migration_id, from_statuses, to_status, **fields):
    """
    Cambio de estado condicional: solo se aplica si el estado actual está
    en from_statuses. Devuelve True si se aplicó.
    """
    migration_uuid = _to_uuid(migration_id)
    if not migration_uuid:
        return False
    values = {"status": to_status, "updated_at": utcnow()}
    for attr in _UPDATABLE_FIELDS:
        if attr in fields:
            values[attr] = fields[attr]
    session = Session()
    try:
        result = session.execute(
            update(Migration)
            .where(Migration.id == migration_uuid)
            .where(Migration.status.in_(list(from_statuses)))
            .values(**values)
        )
        session.commit()
        applied = result.rowcount == 1
    finally:
        Session.remove()
    if applied:
        log.info("Migración %s -> %s", migration_id, to_status)
    return applied


def set_progress(migration_id, total_events, processed=0, successful=0, failed=0, skipped=0):
    """Persiste contadores acumulados; el porcentaje nunca retrocede."""
    migration_uuid = _to_uuid(migration_id)
    if not migration_uuid:
        return None
    percentage = 100 if not total_events else int(processed * 100 / total_events)
    percentage = max(0, min(100, percentage))
    session = Session()
    try:
        migration = session.query(Migration).filter_by(id=migration_uuid).first()
        if not migration:
            return None
        migration.processed_events = max(migration.processed_events or 0, processed)
        migration.successful_events = max(migration.successful_events or 0, successful)
        migration.failed_events = max(migration.failed_events or 0, failed)
        migration.skipped_events = max(migration.skipped_events or 0, skipped)
        migration.progress_percentage = max(migration.progress_percentage or 0, percentage)
        session.commit()
        return migration.progress_percentage
    finally:
        Session.remove()


def reset_progress(migration_id):
    migration_uuid = _to_uuid(migration_id)
    session = Session()
    try:
        session.execute(
            update(Migration)
            .where(Migration.id == migration_uuid)
            .values(**{name: 0 for name in _PROGRESS_FIELDS}, progress_percentage=0)
        )
        session.commit()
    finally:
        Session.remove()


def append_log(migration_id, level, message, event_code=None, context=None):
    migration_uuid = _to_uuid(migration_id)
    if not migration_uuid:
        return
    log_at(log, level, "[%s] %s%s", migration_id, f"{event_code}: " if event_code else "", message)
    session = Session()
    try:
        log_migration(session, migration_uuid, level, message, event_code=event_code, context=context)
        session.commit()
    finally:
        Session.remove()


def list_logs(migration_id, level=None, event_code=None, limit=200, offset=0):
    migration_uuid = _to_uuid(migration_id)
    if not migration_uuid:
        return [], 0
    session = Session()
    try:
        base = session.query(MigrationLog).filter_by(migration_id=migration_uuid)
        if level:
            base = base.filter(MigrationLog.level == level)
        if event_code:
            base = base.filter(MigrationLog.event_code == event_code)
        total = base.count()
        rows = (
            base.order_by(MigrationLog.id.asc())
            .offset(offset)
            .limit(limit)
            .all()
        )
        return [
            {
                "id": row.id,
                "level": row.level,
                "message": row.message,
                "event_code": row.event_code,
                "context": row.context,
                "timestamp": _iso(row.timestamp),
            }
            for row in rows
        ], total
    finally:
        Session.remove()


def insert_catalog_entries(migration_id, entries):
    """Inserta las entradas de catálogo de un evento; devuelve sus ids."""
    migration_uuid = _to_uuid(migration_id)
    session = Session()
    try:
        rows = []
        for entry in entries:
            row = MigrationFileCatalog(
                migration_id=migration_uuid,
                event_code=entry.event_code,
                s3_directory=entry.s3_directory,
                filename=entry.filename,
                s3_key=entry.s3_key,
                file_type=entry.file_type,
                category=entry.category,
                extension=entry.extension,
                file_size=entry.file_size,
                mime_type=entry.mime_type,
                suggested_action=entry.suggested_action,
                suggested_category=entry.suggested_category,
                conflicts=list(entry.conflicts) or None,
                file_metadata=dict(entry.metadata)
            )
            session.add(row)
            rows.append(row)
        session.commit()
        return [row.id for row in rows]
    finally:
        Session.remove()


def catalog_row_to_dict(row):
    return {
        "id": row.id,
        "event_code": row.event_code,
        "s3_directory": row.s3_directory,
        "filename": row.filename,
        "s3_key": row.s3_key,
        "file_type": row.file_type,
        "category": row.category,
        "extension": row.extension,
        "file_size": row.file_size,
        "mime_type": row.mime_type,
        "suggested_action": row.suggested_action,
        "suggested_category": row.suggested_category,
        "conflicts": row.conflicts or [],
        "metadata": row.file_metadata or {},
    }


def list_catalog(migration_id, event_code=None, file_type=None):
    migration_uuid = _to_uuid(migration_id)
    if not migration_uuid:
        return []
    session = Session()
    try:
        base = session.query(MigrationFileCatalog).filter_by(migration_id=migration_uuid)
        if event_code:
            base = base.filter(MigrationFileCatalog.event_code == event_code)
        if file_type:
            base = base.filter(MigrationFileCatalog.file_type == file_type)
        rows = base.order_by(MigrationFileCatalog.id.asc()).all()
        return [catalog_row_to_dict(row) for row in rows]
    finally:
        Session.remove()


def count_catalog(migration_id):
    migration_uuid = _to_uuid(migration_id)
    session = Session()
    try:
        return (
            session.query(func.count(MigrationFileCatalog.id))
            .filter(MigrationFileCatalog.migration_id == migration_uuid)
            .scalar()
        ) or 0
    finally:
        Session.remove()


def delete_migration(migration_id):
    """Borrado físico; solo permitido para migraciones canceladas."""
    migration_uuid = _to_uuid(migration_id)
    if not migration_uuid:
        raise ValueError("migration_id inválido")

    session = Session()
    try:
        migration = session.query(Migration).filter_by(id=migration_uuid).first()
        if not migration:
            return False
        if migration.status != "cancelled":
            raise ValueError("Solo se pueden eliminar migraciones canceladas")
        # Sin depender de ON DELETE CASCADE (SQLite no lo aplica por defecto)
        session.query(MigrationFileDecision).filter_by(migration_id=migration_uuid).delete(
            synchronize_session=False
        )
        session.query(MigrationFileCatalog).filter_by(migration_id=migration_uuid).delete(
            synchronize_session=False
        )
        session.query(MigrationLog).filter_by(migration_id=migration_uuid).delete(
            synchronize_session=False
        )
        session.query(MediaFile).filter_by(migration_id=migration_uuid).update(
            {"migration_id": None}, synchronize_session=False
        )
        session.delete(migration)
        session.commit()
    finally:
        Session.remove()
    log.info("Migración eliminada: %s", migration_id)
    return True


def clear_catalog(migration_id):
    """Descarta catálogo y decisiones de un análisis interrumpido."""
    migration_uuid = _to_uuid(migration_id)
    if not migration_uuid:
        return 0
    session = Session()
    try:
        session.query(MigrationFileDecision).filter_by(migration_id=migration_uuid).delete(
            synchronize_session=False
        )
        removed = session.query(MigrationFileCatalog).filter_by(migration_id=migration_uuid).delete(
            synchronize_session=False
        )
        session.commit()
    finally:
        Session.remove()
    if removed:
        log.info("Migración %s: %s entradas de catálogo descartadas", migration_id, removed)
    return removed
