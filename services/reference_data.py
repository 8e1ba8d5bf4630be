import json
import threading
import time

from extensions import Session
from logger import get_logger
from models import ReferenceValue


log = get_logger("reference_data")

REFERENCE_KINDS = ("teacher", "place", "event_type", "audience")


def load_reference_values(kind):
    session = Session()
    try:
        rows = (
            session.query(ReferenceValue)
            .filter_by(kind=kind)
            .order_by(ReferenceValue.name.asc())
            .all()
        )
        return [
            {
                "name": row.name,
                "name_alt": row.name_alt,
                "abbreviation": row.abbreviation,
                "aliases": list(row.aliases or []),
            }
            for row in rows
        ]
    finally:
        Session.remove()


class ReferenceCache:
    """
    Cache de datos de referencia con TTL explícito.

    Lo crea y lo posee quien lo usa (un análisis, una validación); no hay
    estado a nivel de módulo.
    """

    def __init__(self, loader=None, ttl_seconds=300, clock=None):
        self._loader = loader or load_reference_values
        self._ttl = ttl_seconds
        self._clock = clock or time.monotonic
        self._entries = {}
        self._lock = threading.Lock()

    def get(self, kind):
        with self._lock:
            now = self._clock()
            cached = self._entries.get(kind)
            if cached is not None and now - cached[0] < self._ttl:
                return cached[1]
            values = list(self._loader(kind))
            self._entries[kind] = (now, values)
            return values

    def invalidate(self, kind=None):
        with self._lock:
            if kind is None:
                self._entries.clear()
            else:
                self._entries.pop(kind, None)

    def match(self, kind, value):
        return match_reference(value, self.get(kind))


def _candidates(record):
    names = [record.get("name"), record.get("name_alt"), record.get("abbreviation")]
    names.extend(record.get("aliases") or [])
    return [n.strip().lower() for n in names if n and n.strip()]


def match_reference(value, records):
    """Coincidencia exacta (sin mayúsculas) y luego por contención."""
    normalized = (value or "").strip().lower()
    if not normalized:
        return None

    for record in records:
        if normalized in _candidates(record):
            return record

    for record in records:
        for candidate in _candidates(record):
            # Abreviaturas cortas solo por coincidencia exacta
            if len(candidate) < 4:
                continue
            if candidate in normalized or normalized in candidate:
                return record
    return None


def find_unmapped(row, cache):
    """Valores de referencia de una fila del manifest sin correspondencia."""
    unmapped = []
    for teacher in row.teachers:
        if cache.match("teacher", teacher) is None:
            unmapped.append(("teacher", teacher))
    checks = (
        ("place", row.place),
        ("event_type", row.designation),
        ("audience", row.audience),
    )
    for kind, value in checks:
        if value and cache.match(kind, value) is None:
            unmapped.append((kind, value))
    return unmapped


def seed_reference_values(payload):
    """
    Inserta o actualiza valores de referencia.

    payload: {"teacher": [{"name": ..., "abbreviation": ...}], "place": [...]}
    """
    session = Session()
    created = 0
    updated = 0
    try:
        for kind, items in payload.items():
            if kind not in REFERENCE_KINDS:
                log.warning("Tipo de referencia desconocido: %s", kind)
                continue
            for item in items:
                if isinstance(item, str):
                    item = {"name": item}
                name = (item.get("name") or "").strip()
                if not name:
                    continue
                row = session.query(ReferenceValue).filter_by(kind=kind, name=name).first()
                if row is None:
                    row = ReferenceValue(kind=kind, name=name)
                    session.add(row)
                    created += 1
                else:
                    updated += 1
                row.name_alt = item.get("name_alt")
                row.abbreviation = item.get("abbreviation")
                row.aliases = item.get("aliases") or []
        session.commit()
    finally:
        Session.remove()
    log.info("Referencias: %s creadas, %s actualizadas", created, updated)
    return {"created": created, "updated": updated}


def seed_from_file(path):
    with open(path, "r", encoding="utf-8") as fh:
        return seed_reference_values(json.load(fh))
