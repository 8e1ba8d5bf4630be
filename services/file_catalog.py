"""
Clasificación de objetos descubiertos bajo el prefijo de un evento.

Funciones puras: tipo por extensión, categoría por pistas de ruta,
acción sugerida, clave destino y detección de conflictos de nombre.
"""

import re
from dataclasses import dataclass, field
from typing import List, Optional

from config import Config
from helpers import basename, dirname, get_extension, get_mime_type


AUDIO_EXTENSIONS = {"mp3", "wav", "m4a", "flac", "ogg", "aac", "wma", "opus", "aiff"}
VIDEO_EXTENSIONS = {"mp4", "mov", "avi", "mkv", "webm", "flv", "wmv", "m4v"}
DOCUMENT_EXTENSIONS = {"pdf", "doc", "docx", "txt", "rtf"}
IMAGE_EXTENSIONS = {"jpg", "jpeg", "png", "gif", "svg", "webp", "bmp", "tiff"}
ARCHIVE_EXTENSIONS = {"zip", "rar", "7z", "tar", "gz", "bz2"}

SYSTEM_FILES = {".ds_store", "thumbs.db", "desktop.ini", "__macosx"}

TRANSCRIPT_HINTS = ("transcri", "transcrição", "transcricao")
TRANSLATION_HINTS = ("/audio2/", "/audio 2/", "/audio_2/")
LEGACY_HINTS = ("/legacy/",)

_NAME_CHARS_RE = re.compile(r"[^a-z0-9]+")
_DIGITS_RE = re.compile(r"\d+")


@dataclass
class CatalogEntry:
    event_code: str
    s3_key: str
    s3_directory: str
    filename: str
    file_type: str
    category: str
    extension: str
    file_size: int = 0
    mime_type: Optional[str] = None
    suggested_action: str = "review"
    suggested_category: Optional[str] = None
    conflicts: List[str] = field(default_factory=list)
    metadata: dict = field(default_factory=dict)

    @property
    def target_key(self):
        return self.metadata.get("target_key")

    def to_dict(self):
        return {
            "event_code": self.event_code,
            "s3_key": self.s3_key,
            "s3_directory": self.s3_directory,
            "filename": self.filename,
            "file_type": self.file_type,
            "category": self.category,
            "extension": self.extension,
            "file_size": self.file_size,
            "mime_type": self.mime_type,
            "suggested_action": self.suggested_action,
            "suggested_category": self.suggested_category,
            "conflicts": list(self.conflicts),
            "metadata": dict(self.metadata),
        }


def is_system_file(key):
    name = basename(key).lower()
    if name in SYSTEM_FILES or name.startswith("."):
        return True
    return "__macosx/" in f"/{(key or '').lower()}"


def get_file_type(filename):
    ext = get_extension(filename)
    if ext in AUDIO_EXTENSIONS:
        return "audio"
    if ext in VIDEO_EXTENSIONS:
        return "video"
    if ext in DOCUMENT_EXTENSIONS:
        return "document"
    if ext in IMAGE_EXTENSIONS:
        return "image"
    if ext in ARCHIVE_EXTENSIONS:
        return "archive"
    return "other"


def is_transcript(key):
    lowered = (key or "").lower()
    return get_extension(lowered) == "pdf" and any(h in lowered for h in TRANSCRIPT_HINTS)


def _path(key):
    return "/" + (key or "").lower()


def audio_set_for(key):
    path = _path(key)
    return "audio2" if any(h in path for h in TRANSLATION_HINTS) else "audio1"


def classify_category(key, file_type):
    path = _path(key)
    if file_type == "audio":
        if any(h in path for h in TRANSLATION_HINTS):
            return "audio_translation"
        if any(h in path for h in LEGACY_HINTS):
            return "audio_legacy"
        return "audio_main"
    if file_type == "video":
        return "video"
    if file_type == "document":
        return "transcript" if is_transcript(key) else "document"
    if file_type in ("image", "archive"):
        return file_type
    return "other"


def suggest_action(category, system_file=False):
    if system_file:
        return "ignore"
    if category in ("audio_main", "audio_translation", "audio_legacy",
                    "video", "transcript", "archive"):
        return "include"
    return "review"


def event_target_prefix(event_code, target_root=None):
    root = (target_root if target_root is not None else Config.S3_TARGET_PREFIX).strip("/")
    return f"{root}/{event_code}" if root else event_code


def compute_target_key(event_code, filename, category, target_root=None):
    base = event_target_prefix(event_code, target_root)
    if category == "audio_translation":
        return f"{base}/audio2/{filename}"
    if category == "audio_legacy":
        return f"{base}/legacy/{filename}"
    if category == "audio_main":
        return f"{base}/{filename}"
    if category == "transcript":
        return f"{base}/transcripts/{filename}"
    if category == "video":
        return f"{base}/video/{filename}"
    return f"{base}/other/{filename}"


def classify_object(event_code, key, size=0, expected_names=None, target_root=None):
    """Clasifica un objeto listado en un CatalogEntry (sin efectos)."""
    filename = basename(key)
    extension = get_extension(filename)
    system_file = is_system_file(key)
    file_type = "other" if system_file else get_file_type(filename)
    category = "other" if system_file else classify_category(key, file_type)
    action = suggest_action(category, system_file)

    metadata = {}
    if system_file:
        metadata["source_type"] = "system_file"
    elif file_type == "archive":
        audio_set = audio_set_for(key)
        prefix = event_target_prefix(event_code, target_root)
        metadata.update(
            source_type="zip",
            needs_extraction=True,
            audio_set=audio_set,
            target_prefix=f"{prefix}/audio2" if audio_set == "audio2" else prefix
        )
    else:
        metadata["source_type"] = "loose"
        metadata["target_key"] = compute_target_key(event_code, filename, category, target_root)
        if file_type == "audio":
            metadata["audio_set"] = audio_set_for(key)

    if expected_names is not None and not system_file:
        metadata["matched"] = filename.lower() in expected_names

    return CatalogEntry(
        event_code=event_code,
        s3_key=key,
        s3_directory=dirname(key),
        filename=filename,
        file_type=file_type,
        category=category,
        extension=extension,
        file_size=int(size or 0),
        mime_type=get_mime_type(filename),
        suggested_action=action,
        suggested_category=category,
        metadata=metadata
    )


def recategorize(entry, category, event_code=None, target_root=None):
    """Cambia la categoría sugerida y recalcula la clave destino."""
    entry.category = category
    entry.suggested_category = category
    if entry.metadata.get("source_type") == "loose":
        entry.metadata["target_key"] = compute_target_key(
            event_code or entry.event_code, entry.filename, category, target_root
        )
    return entry


def levenshtein(a, b, max_distance=None):
    if a == b:
        return 0
    if len(a) < len(b):
        a, b = b, a
    if max_distance is not None and len(a) - len(b) > max_distance:
        return max_distance + 1
    previous = list(range(len(b) + 1))
    for i, char_a in enumerate(a, start=1):
        current = [i]
        for j, char_b in enumerate(b, start=1):
            current.append(min(
                previous[j] + 1,
                current[j - 1] + 1,
                previous[j - 1] + (char_a != char_b)
            ))
        if max_distance is not None and min(current) > max_distance:
            return max_distance + 1
        previous = current
    return previous[-1]


def _normalized_name(filename):
    stem = filename.lower().rsplit(".", 1)[0] if "." in filename else filename.lower()
    return _NAME_CHARS_RE.sub("", stem)


def flag_target_collisions(entries):
    """Entradas incluidas que comparten clave destino pasan a revisión."""
    by_target = {}
    for entry in entries:
        if entry.target_key and entry.suggested_action == "include":
            by_target.setdefault(entry.target_key, []).append(entry)

    flagged = []
    for target_key, same in by_target.items():
        if len(same) < 2:
            continue
        for entry in same:
            others = ", ".join(o.s3_key for o in same if o is not entry)
            entry.suggested_action = "review"
            entry.conflicts.append(f"Same target {target_key} as {others}")
            flagged.append(entry)
    return flagged


def find_conflicts(entries, max_distance=2):
    """Anota en cada entrada los conflictos de nombre detectados."""
    candidates = [
        e for e in entries
        if e.metadata.get("source_type") != "system_file"
    ]
    by_name = {}
    for entry in candidates:
        by_name.setdefault(entry.filename.lower(), []).append(entry)

    for same in by_name.values():
        if len(same) < 2:
            continue
        for entry in same:
            for other in same:
                if other is entry:
                    continue
                entry.conflicts.append(
                    f"Duplicate filename: also in {other.s3_directory or '/'}"
                )

    normalized = [(e, _normalized_name(e.filename)) for e in candidates]
    for index, (entry, name) in enumerate(normalized):
        if not name:
            continue
        for other, other_name in normalized[index + 1:]:
            if other.file_type != entry.file_type or other_name == name:
                continue
            # Pistas hermanas (001/002 ...) difieren solo en dígitos
            if _DIGITS_RE.sub("", name) == _DIGITS_RE.sub("", other_name):
                continue
            if levenshtein(name, other_name, max_distance) <= max_distance:
                entry.conflicts.append(f"Similar name: {other.filename}")
                other.conflicts.append(f"Similar name: {entry.filename}")
    return entries


def analyze_s3_state(listed_keys, prefix, expected_tracks, zip_exists=False):
    """
    Estado de un evento en el bucket origen:
    EXTRACTED, PARTIAL, ZIP_ONLY o MISSING.
    """
    listed = set(listed_keys)
    listed_names = {basename(k).lower() for k in listed}
    audio = [k for k in listed if get_file_type(k) == "audio"]
    found = []
    missing = []
    for track in expected_tracks:
        key = f"{prefix}/{track}"
        if key in listed or track.lower() in listed_names:
            found.append(track)
        else:
            missing.append(track)

    if expected_tracks and not missing:
        state = "EXTRACTED"
    elif audio:
        state = "PARTIAL"
    elif zip_exists:
        state = "ZIP_ONLY"
    else:
        state = "MISSING"
    return {
        "state": state,
        "foundTracks": found,
        "missingTracks": missing,
        "audioFiles": len(audio),
    }
