"""
Reparación de numeración de pistas/sesiones.

Vuelve a pasar el Filename Parser y la inferencia de sesiones sobre las
entradas de audio de una migración y propone un diff revisable; aplicar
el diff es un upsert más en el Decision Ledger (metadata_overrides), nunca
una escritura directa sobre el catálogo.
"""

import re

from logger import get_logger
from services import decisions, migration_store
from services.session_inference import infer_sessions_from_filenames, session_assignments


log = get_logger("track_repair")

REPAIR_FIELDS = ("session_number", "track_number", "language", "is_translation", "speaker")


def _effective_metadata(item):
    metadata = dict(item.get("metadata") or {})
    decision = item.get("decision") or {}
    metadata.update(decision.get("metadata_overrides") or {})
    return metadata


def _event_year(event_code):
    match = re.match(r"^(\d{4})", event_code or "")
    return int(match.group(1)) if match else None


def _ensure_decision_phase(migration_id):
    status = migration_store.get_status(migration_id)
    if status is None:
        raise decisions.DecisionError("Migración no encontrada")
    if status not in decisions.DECISION_PHASE:
        raise decisions.DecisionError(
            f"Reparaciones solo en fase de decisiones (estado {status})"
        )


def plan_track_repairs(migration_id):
    """Lista de reparaciones propuestas: {catalog_id, event_code, filename, changes}."""
    _ensure_decision_phase(migration_id)
    groups = {}
    for item in decisions.list_decisions(migration_id):
        if item["file_type"] != "audio":
            continue
        if item["decision"] and item["decision"]["action"] == "ignore":
            continue
        metadata = _effective_metadata(item)
        key = (item["event_code"], metadata.get("audio_set", "audio1"))
        groups.setdefault(key, []).append((item, metadata))

    repairs = []
    for (event_code, _audio_set), members in sorted(groups.items()):
        members.sort(key=lambda pair: pair[0]["filename"].lower())
        known = {}
        for item, metadata in members:
            if metadata.get("language"):
                known[item["filename"]] = {
                    "language": metadata.get("language"),
                    "languages": metadata.get("languages") or [metadata.get("language")],
                    "is_translation": metadata.get("is_translation", False),
                    "speaker": metadata.get("speaker"),
                }
        sessions = infer_sessions_from_filenames(
            [item["filename"] for item, _ in members],
            known=known,
            default_year=_event_year(event_code)
        )
        assignments = session_assignments(sessions)
        for item, metadata in members:
            proposed = assignments.get(item["filename"], {})
            changes = {}
            for name in REPAIR_FIELDS:
                if name in proposed and proposed[name] != metadata.get(name):
                    changes[name] = {"from": metadata.get(name), "to": proposed[name]}
            if changes:
                repairs.append({
                    "catalog_id": item["catalog_id"],
                    "event_code": event_code,
                    "filename": item["filename"],
                    "changes": changes,
                    "decision": item["decision"],
                })
    log.info("Migración %s: %s reparaciones propuestas", migration_id, len(repairs))
    return repairs


def _repair_note(changes):
    parts = [f"{name} {change['from']}->{change['to']}" for name, change in changes.items()]
    return "Repair: " + ", ".join(parts)


def apply_track_repairs(migration_id, repairs=None, decided_by=None):
    """Registra las reparaciones como decisiones; devuelve cuántas se aplicaron."""
    from services import orchestrator

    if repairs is None:
        repairs = plan_track_repairs(migration_id)
    if not repairs:
        return 0

    items = []
    for repair in repairs:
        current = repair.get("decision") or {}
        overrides = dict(current.get("metadata_overrides") or {})
        overrides.update({name: change["to"] for name, change in repair["changes"].items()})
        items.append({
            "catalog_id": repair["catalog_id"],
            # Sin decisión previa la entrada sigue pendiente de revisión
            "action": current.get("action") or "review",
            "new_filename": current.get("new_filename"),
            "target_category": current.get("target_category"),
            "target_key": current.get("target_key"),
            "metadata_overrides": overrides,
            "notes": _repair_note(repair["changes"]),
        })
    orchestrator.record_decisions(migration_id, items, decided_by=decided_by or "repair")
    migration_store.append_log(
        migration_id, "info", f"{len(items)} reparaciones de pistas aplicadas",
        context={"catalog_ids": [item["catalog_id"] for item in items]}
    )
    return len(items)
