"""
Agrupa los descriptores de pista de un evento en sesiones inferidas.
"""

from collections import OrderedDict, defaultdict
from dataclasses import dataclass, field, replace
from typing import List, Optional

from logger import get_logger
from services.filename_parser import (
    PERIOD_ORDER,
    TrackDescriptor,
    language_rank,
    parse_track_filename
)


log = get_logger("session_inference")

DEFAULT_KEY = (None, None, None)

PERIOD_LABELS = {
    "morning": "Morning",
    "afternoon": "Afternoon",
    "evening": "Evening",
}


@dataclass
class InferredSession:
    number: int
    date: Optional[str] = None
    period: Optional[str] = None
    part: Optional[int] = None
    tracks: List[TrackDescriptor] = field(default_factory=list)
    renumbered: bool = False
    renumber_reason: Optional[str] = None

    @property
    def key(self):
        return (self.date, self.period, self.part)

    @property
    def title(self):
        if self.date or self.period:
            label = self.date or ""
            if self.period:
                period_label = PERIOD_LABELS.get(self.period, self.period)
                label = f"{label} – {period_label}" if label else period_label
            if self.part:
                label = f"{label} (Part {self.part})"
            return label
        if self.part:
            return f"Session {self.number} (Part {self.part})"
        return f"Session {self.number}"

    def to_dict(self):
        return {
            "number": self.number,
            "title": self.title,
            "date": self.date,
            "period": self.period,
            "part": self.part,
            "renumbered": self.renumbered,
            "renumber_reason": self.renumber_reason,
            "tracks": [track.to_dict() for track in self.tracks],
        }


def _session_sort_key(key):
    date, period, part = key
    return (
        date is None,
        date or "",
        PERIOD_ORDER.get(period, 3),
        part or 0,
    )


def _looks_like_date(number, total):
    return 1950 <= number <= 2099 and number > total


def detect_degenerate_numbering(tracks):
    """Devuelve el motivo si la numeración de las pistas no es utilizable."""
    if not tracks:
        return None
    if all(track.track_number == 0 for track in tracks):
        return "all_zero"
    if any(_looks_like_date(track.track_number, len(tracks)) for track in tracks):
        return "date_numbers"
    seen = defaultdict(set)
    for track in tracks:
        if track.track_number == 0:
            continue
        if track.track_number in seen[track.language]:
            return "duplicate_numbers"
        seen[track.language].add(track.track_number)
    return None


def renumber_tracks(tracks):
    """Numeración secuencial: originales primero, luego traducciones, sin
    alterar el orden relativo de los nombres de archivo."""
    originals = [track for track in tracks if not track.is_translation]
    translations = [track for track in tracks if track.is_translation]
    return [
        replace(track, track_number=index)
        for index, track in enumerate(originals + translations, start=1)
    ]


def _order_tracks(tracks, order):
    return sorted(
        tracks,
        key=lambda t: (
            t.track_number,
            t.is_translation,
            language_rank(t.language),
            order.get(t.filename, 0),
        )
    )


def infer_sessions(descriptors):
    """
    Agrupa descriptores por (fecha, periodo, parte).

    Si ningún descriptor trae marcadores de sesión, todo va a un único
    grupo por defecto. Las traducciones sin fecha se adjuntan al grupo
    del original con el mismo número de pista.
    """
    descriptors = list(descriptors)
    if not descriptors:
        return []

    order = {d.filename: index for index, d in enumerate(descriptors)}
    groups = OrderedDict()

    if not any(d.has_session_markers for d in descriptors):
        groups[DEFAULT_KEY] = list(descriptors)
    else:
        orphans = []
        for descriptor in descriptors:
            if descriptor.has_session_markers:
                groups.setdefault(descriptor.session_key, []).append(descriptor)
            else:
                orphans.append(descriptor)

        for orphan in orphans:
            target = None
            if orphan.is_translation:
                for key, tracks in groups.items():
                    if any(
                        t.track_number == orphan.track_number and not t.is_translation
                        for t in tracks
                    ):
                        target = key
                        break
            groups.setdefault(target or DEFAULT_KEY, []).append(orphan)

    sessions = []
    for number, key in enumerate(sorted(groups, key=_session_sort_key), start=1):
        tracks = groups[key]
        # Orden original de nombres antes de renumerar
        tracks = sorted(tracks, key=lambda t: order.get(t.filename, 0))
        reason = detect_degenerate_numbering(tracks)
        if reason:
            log.info(
                "Sesión %s %s: numeración degenerada (%s), renumerando %s pistas",
                number, key, reason, len(tracks)
            )
            tracks = renumber_tracks(tracks)
        sessions.append(InferredSession(
            number=number,
            date=key[0],
            period=key[1],
            part=key[2],
            tracks=_order_tracks(tracks, order),
            renumbered=reason is not None,
            renumber_reason=reason
        ))
    return sessions


def infer_sessions_from_filenames(filenames, known=None, default_year=None):
    """Parsea y agrupa una lista de nombres; known mapea filename -> datos previos."""
    known = known or {}
    descriptors = [
        parse_track_filename(
            name,
            position=index,
            known=known.get(name),
            default_year=default_year
        )
        for index, name in enumerate(filenames, start=1)
    ]
    return infer_sessions(descriptors)


def session_assignments(sessions):
    """filename -> {session_number, track_number, ...} para materializar."""
    assignments = {}
    for session in sessions:
        for track in session.tracks:
            assignments[track.filename] = {
                "session_number": session.number,
                "session_title": session.title,
                "track_number": track.track_number,
                "language": track.language,
                "languages": list(track.languages),
                "is_translation": track.is_translation,
                "speaker": track.speaker,
                "title": track.title,
            }
    return assignments
