"""
Registro de decisiones por archivo (Decision Ledger).

Una única decisión activa por entrada de catálogo (upsert, gana la última
escritura). Las decisiones se pueden revisar mientras la migración está en
la fase de decisiones; después son la orden de trabajo congelada del
Execution Engine.
"""

from collections import OrderedDict

from extensions import Session
from helpers import to_uuid
from logger import get_logger
from models import (
    DECISION_ACTIONS,
    FILE_CATEGORIES,
    Migration,
    MigrationFileCatalog,
    MigrationFileDecision,
    utcnow
)


log = get_logger("decisions")

DECISION_PHASE = ("analyzed", "decisions_pending", "decisions_complete")

AUTO_NOTES = {
    "system_file": "Auto: system file",
    "duplicate": "Auto: duplicate",
    "matched": "Auto: matched",
    "suggested": "Auto: suggested",
}


class DecisionError(Exception):
    pass


def _validate(item):
    action = item.get("action")
    if action not in DECISION_ACTIONS:
        raise DecisionError(f"Acción inválida: {action}")
    if action == "rename" and not (item.get("new_filename") or "").strip():
        raise DecisionError("rename requiere new_filename")
    category = item.get("target_category")
    if category and category not in FILE_CATEGORIES:
        raise DecisionError(f"Categoría inválida: {category}")
    if item.get("catalog_id") is None:
        raise DecisionError("catalog_id requerido")


def _apply(row, item, decided_by):
    row.action = item["action"]
    row.new_filename = item.get("new_filename")
    row.target_category = item.get("target_category")
    row.target_s3_key = item.get("target_key") or item.get("target_s3_key")
    row.notes = item.get("notes")
    if "metadata_overrides" in item:
        row.metadata_overrides = item.get("metadata_overrides")
    row.decided_by = item.get("decided_by") or decided_by
    row.decided_at = utcnow()


def upsert_decisions(migration_id, items, decided_by=None, allowed_statuses=DECISION_PHASE):
    """Upsert en lote dentro de una transacción; devuelve los ids afectados."""
    migration_uuid = to_uuid(migration_id)
    if not migration_uuid:
        raise DecisionError("migration_id inválido")
    items = list(items)
    for item in items:
        _validate(item)

    session = Session()
    try:
        migration = (
            session.query(Migration)
            .filter_by(id=migration_uuid)
            .with_for_update()
            .first()
        )
        if not migration:
            raise DecisionError("Migración no encontrada")
        if migration.status not in allowed_statuses:
            raise DecisionError(
                f"Las decisiones están congeladas (estado {migration.status})"
            )

        catalog_ids = {int(item["catalog_id"]) for item in items}
        known = {
            row.id
            for row in session.query(MigrationFileCatalog.id)
            .filter(MigrationFileCatalog.migration_id == migration_uuid)
            .filter(MigrationFileCatalog.id.in_(catalog_ids))
        } if catalog_ids else set()
        missing = catalog_ids - known
        if missing:
            raise DecisionError(f"Entradas de catálogo desconocidas: {sorted(missing)}")

        existing = {
            row.catalog_id: row
            for row in session.query(MigrationFileDecision)
            .filter(MigrationFileDecision.catalog_id.in_(catalog_ids))
        } if catalog_ids else {}

        touched = []
        for item in items:
            catalog_id = int(item["catalog_id"])
            row = existing.get(catalog_id)
            if row is None:
                row = MigrationFileDecision(
                    migration_id=migration_uuid,
                    catalog_id=catalog_id
                )
                session.add(row)
                existing[catalog_id] = row
            _apply(row, item, decided_by)
            touched.append(row)
        session.commit()
        ids = [row.id for row in touched]
    finally:
        Session.remove()

    log.debug("Migración %s: %s decisiones registradas", migration_id, len(ids))
    return ids


def upsert_decision(migration_id, catalog_id, action, target_category=None,
                    new_filename=None, target_key=None, notes=None, decided_by=None,
                    metadata_overrides=None):
    item = {
        "catalog_id": catalog_id,
        "action": action,
        "target_category": target_category,
        "new_filename": new_filename,
        "target_key": target_key,
        "notes": notes,
    }
    if metadata_overrides is not None:
        item["metadata_overrides"] = metadata_overrides
    return upsert_decisions(migration_id, [item], decided_by=decided_by)[0]


def decision_to_dict(decision, catalog):
    data = {
        "catalog_id": catalog.id,
        "event_code": catalog.event_code,
        "filename": catalog.filename,
        "s3_key": catalog.s3_key,
        "s3_directory": catalog.s3_directory,
        "file_type": catalog.file_type,
        "category": catalog.category,
        "file_size": catalog.file_size,
        "mime_type": catalog.mime_type,
        "suggested_action": catalog.suggested_action,
        "suggested_category": catalog.suggested_category,
        "conflicts": catalog.conflicts or [],
        "metadata": catalog.file_metadata or {},
        "decision": None,
    }
    if decision is not None:
        data["decision"] = {
            "id": decision.id,
            "action": decision.action,
            "new_filename": decision.new_filename,
            "target_category": decision.target_category,
            "target_key": decision.target_s3_key,
            "metadata_overrides": decision.metadata_overrides,
            "notes": decision.notes,
            "decided_by": decision.decided_by,
            "decided_at": decision.decided_at.isoformat() if decision.decided_at else None,
        }
    return data


def list_decisions(migration_id, event_code=None, only_decided=False, action=None):
    """Entradas de catálogo con su decisión actual (o None)."""
    migration_uuid = to_uuid(migration_id)
    if not migration_uuid:
        return []
    session = Session()
    try:
        base = (
            session.query(MigrationFileCatalog, MigrationFileDecision)
            .outerjoin(
                MigrationFileDecision,
                MigrationFileDecision.catalog_id == MigrationFileCatalog.id
            )
            .filter(MigrationFileCatalog.migration_id == migration_uuid)
        )
        if event_code:
            base = base.filter(MigrationFileCatalog.event_code == event_code)
        if only_decided or action:
            base = base.filter(MigrationFileDecision.id.isnot(None))
        if action:
            base = base.filter(MigrationFileDecision.action == action)
        rows = base.order_by(MigrationFileCatalog.id.asc()).all()
        return [decision_to_dict(decision, catalog) for catalog, decision in rows]
    finally:
        Session.remove()


def count_unresolved(migration_id):
    """Entradas sin decisión o con decisión 'review'."""
    migration_uuid = to_uuid(migration_id)
    session = Session()
    try:
        return (
            session.query(MigrationFileCatalog.id)
            .outerjoin(
                MigrationFileDecision,
                MigrationFileDecision.catalog_id == MigrationFileCatalog.id
            )
            .filter(MigrationFileCatalog.migration_id == migration_uuid)
            .filter(
                (MigrationFileDecision.id.is_(None))
                | (MigrationFileDecision.action == "review")
            )
            .count()
        )
    finally:
        Session.remove()


def _auto_note(catalog):
    metadata = catalog.file_metadata or {}
    if metadata.get("source_type") == "system_file":
        return AUTO_NOTES["system_file"]
    if metadata.get("duplicate_of"):
        return AUTO_NOTES["duplicate"]
    if metadata.get("matched"):
        return AUTO_NOTES["matched"]
    return AUTO_NOTES["suggested"]


def create_auto_decisions(migration_id):
    """Decisiones automáticas para sugerencias include/ignore sin decisión."""
    migration_uuid = to_uuid(migration_id)
    session = Session()
    try:
        pending = (
            session.query(MigrationFileCatalog)
            .outerjoin(
                MigrationFileDecision,
                MigrationFileDecision.catalog_id == MigrationFileCatalog.id
            )
            .filter(MigrationFileCatalog.migration_id == migration_uuid)
            .filter(MigrationFileDecision.id.is_(None))
            .filter(MigrationFileCatalog.suggested_action.in_(["include", "ignore"]))
            .all()
        )
        for catalog in pending:
            session.add(MigrationFileDecision(
                migration_id=migration_uuid,
                catalog_id=catalog.id,
                action=catalog.suggested_action,
                target_category=catalog.suggested_category,
                notes=_auto_note(catalog),
                decided_by="system"
            ))
        session.commit()
        created = len(pending)
    finally:
        Session.remove()
    log.info("Migración %s: %s decisiones automáticas", migration_id, created)
    return created


def work_order(migration_id):
    """
    Decisiones 'include'/'rename' agrupadas por evento, en orden de código.

    Devuelve OrderedDict event_code -> lista de dicts (catálogo + decisión).
    """
    items = list_decisions(migration_id, only_decided=True)
    groups = {}
    for item in items:
        if item["decision"]["action"] not in ("include", "rename"):
            continue
        groups.setdefault(item["event_code"], []).append(item)
    return OrderedDict((code, groups[code]) for code in sorted(groups))
