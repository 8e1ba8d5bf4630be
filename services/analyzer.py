"""
Análisis por evento: descubre los objetos bajo el prefijo del evento,
los clasifica y los reconcilia con las listas de pistas del manifest.

No escribe en la base de datos; devuelve un EventAnalysis con las
entradas de catálogo y un informe parcial, lo que permite ejecutarlo en
paralelo durante la validación.
"""

from dataclasses import dataclass, field
from typing import List, Optional

from config import Config
from helpers import basename
from logger import get_logger
from services import dedup
from services.file_catalog import (
    CatalogEntry,
    analyze_s3_state,
    classify_object,
    find_conflicts,
    flag_target_collisions,
    recategorize
)
from services.filename_parser import TrackDescriptor
from services.manifest import extract_s3_prefix, map_language
from services.reference_data import find_unmapped
from services.report import AnalysisReport
from services.session_inference import infer_sessions_from_filenames, session_assignments
from services.storage.blob_store import BlobStoreError


log = get_logger("analyzer")


@dataclass
class EventAnalysis:
    event_code: str
    prefix: str
    entries: List[CatalogEntry] = field(default_factory=list)
    report: AnalysisReport = field(default_factory=AnalysisReport)
    dedup_result: Optional[dedup.DedupResult] = None
    error: Optional[str] = None

    @property
    def ok(self):
        return self.error is None


def resolve_source_prefix(row):
    for url in (row.audio1.download_url, row.audio2.download_url):
        prefix = extract_s3_prefix(url)
        if prefix:
            return prefix
    root = Config.S3_SOURCE_PREFIX
    return f"{root}/{row.event_code}" if root else row.event_code


def _known_language(audio_set):
    """Idioma del conjunto si el manifest declara uno solo."""
    if not audio_set.language or "|" in audio_set.language:
        return None
    code = map_language(audio_set.language)
    return None if code == "unknown" else code


def _apply_dedup(row, entries, report):
    names_a = row.audio1.track_names
    names_b = row.audio2.track_names
    if not names_a or not names_b:
        return None

    result = dedup.classify_tracks(names_a, names_b)
    non_canonical_set = "audio1" if result.canonical_set == "b" else "audio2"
    canonical_names = {name.lower() for name in result.main}
    duplicates = {d.filename.lower(): d for d in result.duplicates}
    legacy = {name.lower() for name in result.legacy}

    for entry in entries:
        if entry.file_type != "audio":
            continue
        name = entry.filename.lower()
        if name in canonical_names and entry.metadata.get("audio_set") != non_canonical_set:
            continue
        match = duplicates.get(name)
        if match is not None:
            entry.suggested_action = "ignore"
            entry.metadata["duplicate_of"] = match.matched
            entry.metadata["similarity"] = round(match.score, 3)
            entry.conflicts.append(f"Duplicate of {match.matched} (similarity {match.score:.2f})")
        elif name in legacy:
            recategorize(entry, "audio_legacy")
            entry.metadata["legacy"] = True

    report.add_legacy_tracks(row.event_code, result.legacy, result.duplicate_names)
    return result


def _apply_sessions(row, entries, report):
    by_set = {}
    for entry in entries:
        if entry.file_type == "audio" and entry.suggested_action != "ignore":
            by_set.setdefault(entry.metadata.get("audio_set", "audio1"), []).append(entry)

    for audio_set, set_entries in by_set.items():
        set_entries.sort(key=lambda e: e.filename.lower())
        manifest_set = row.audio2 if audio_set == "audio2" else row.audio1
        language = _known_language(manifest_set)
        known = {}
        if language:
            known = {
                e.filename: TrackDescriptor(e.filename, language=language, languages=(language,))
                for e in set_entries
            }
        sessions = infer_sessions_from_filenames(
            [e.filename for e in set_entries],
            known=known,
            default_year=row.year
        )
        for session in sessions:
            if session.renumbered:
                report.add_issue(
                    "info", "sessions",
                    f"{audio_set}: session {session.number} renumbered ({session.renumber_reason})",
                    event_code=row.event_code
                )
        assignments = session_assignments(sessions)
        for entry in set_entries:
            entry.metadata.update(assignments.get(entry.filename, {}))


def _apply_transcripts(row, entries):
    refs = {basename(ref.pdf_url).lower(): ref for ref in row.transcripts if ref.pdf_url}
    single = row.transcripts[0] if len(row.transcripts) == 1 else None
    for entry in entries:
        if entry.category != "transcript":
            continue
        ref = refs.get(entry.filename.lower()) or single
        if ref is None:
            continue
        entry.metadata["language"] = map_language(ref.language)
        if ref.pages:
            entry.metadata["page_count"] = ref.pages


def _record_counters(row, entries, report):
    audio_sets = {}
    for entry in entries:
        report.files_by_type[entry.file_type] += 1
        report.files_by_category[entry.category] += 1
        report.count("totalFiles")
        report.count("totalSize", entry.file_size)
        if entry.file_type == "audio":
            key = entry.metadata.get("audio_set", "audio1")
            audio_sets[key] = audio_sets.get(key, 0) + 1

    types = {e.file_type for e in entries}
    has_zip = "archive" in types
    loose_media = any(e.file_type in ("audio", "video") for e in entries)
    if "audio" in types or has_zip:
        report.count("eventsWithAudio")
    if "video" in types:
        report.count("eventsWithVideo")
    if not loose_media and not has_zip:
        report.count("eventsWithoutMedia")
    if has_zip:
        report.count("eventsWithZips")
    if loose_media:
        report.count("eventsWithLooseFiles")

    # Con ZIPs el número real de pistas se conoce tras extraer
    if not has_zip:
        for audio_set, manifest_set in (("audio1", row.audio1), ("audio2", row.audio2)):
            expected = manifest_set.track_count
            found = audio_sets.get(audio_set, 0)
            if expected and expected != found:
                report.add_track_count_mismatch(row.event_code, audio_set, expected, found)
    return has_zip


def analyze_event(row, blob_store, source_bucket, reference_cache=None, target_root=None):
    """Analiza un evento del manifest contra el bucket origen."""
    prefix = resolve_source_prefix(row)
    analysis = EventAnalysis(event_code=row.event_code, prefix=prefix)
    report = analysis.report

    if reference_cache is not None:
        for kind, value in find_unmapped(row, reference_cache):
            report.add_unmapped(kind, value, event_code=row.event_code)

    try:
        objects = blob_store.list_objects(prefix, source_bucket)
    except BlobStoreError as exc:
        analysis.error = str(exc)
        report.add_issue(
            "error", "discovery",
            f"Could not list {prefix}: {exc}",
            event_code=row.event_code
        )
        report.count("eventsFailed")
        report.s3_states[row.event_code] = {"state": "UNKNOWN", "prefix": prefix}
        return analysis

    expected = {name.lower() for name in row.expected_tracks}
    entries = [
        classify_object(row.event_code, obj.key, obj.size, expected, target_root)
        for obj in objects
    ]
    find_conflicts(entries)
    analysis.dedup_result = _apply_dedup(row, entries, report)
    for entry in flag_target_collisions(entries):
        report.add_issue(
            "warning", "conflict",
            f"{entry.s3_key}: {entry.conflicts[-1]}",
            event_code=row.event_code
        )
    _apply_sessions(row, entries, report)
    _apply_transcripts(row, entries)
    has_zip = _record_counters(row, entries, report)

    listed_names = {e.filename.lower() for e in entries}
    matched = [name for name in row.expected_tracks if name.lower() in listed_names]
    report.count("csvTrackMatches", len(matched))
    missing = len(row.expected_tracks) - len(matched)
    report.count("csvTracksMissing", missing)
    if missing and not has_zip:
        report.add_issue(
            "warning", "missing_tracks",
            f"{missing} manifest tracks not found under {prefix}",
            event_code=row.event_code
        )
    if not entries:
        report.add_issue(
            "warning", "discovery",
            f"No objects under {prefix}",
            event_code=row.event_code
        )

    state = analyze_s3_state(
        [e.s3_key for e in entries], prefix, row.expected_tracks, zip_exists=has_zip
    )
    state["prefix"] = prefix
    report.s3_states[row.event_code] = state
    report.events[row.event_code] = {
        "prefix": prefix,
        "files": len(entries),
        "state": state["state"],
        "dedup": analysis.dedup_result.to_dict() if analysis.dedup_result else None,
    }
    report.count("eventsAnalyzed")
    analysis.entries = entries
    log.debug("Evento %s: %s objetos bajo %s", row.event_code, len(entries), prefix)
    return analysis
