"""
Lectura del export CSV (Wix) del archivo histórico.

Cada fila se valida una sola vez y se convierte en un ManifestRow tipado;
las filas que no pasan los campos obligatorios quedan en cuarentena con
su motivo y nunca llegan al pipeline.
"""

import csv
import io
import re
from dataclasses import dataclass, field
from typing import List, Optional
from urllib.parse import unquote, urlparse

from logger import get_logger


log = get_logger("manifest")

AUDIO_NAME_RE = re.compile(r"\.(mp3|wav|m4a|flac|ogg|aac|wma)$", re.IGNORECASE)

LANGUAGE_NAMES = (
    ("portugu", "pt"),
    ("ingl", "en"),
    ("english", "en"),
    ("tibet", "tib"),
    ("franc", "fr"),
    ("french", "fr"),
    ("espanh", "es"),
    ("spanish", "es"),
)

ORGANIZATION_ALIASES = {
    "Songtsen - Casa da Cultura do Tibete": "Songtsen",
    "U.B.P. - União Budista Portuguesa": "U.B.P.",
}


class ManifestError(Exception):
    pass


@dataclass
class AudioSet:
    language: str = ""
    duration: str = ""
    track_count: int = 0
    track_names: List[str] = field(default_factory=list)
    download_url: str = ""

    @property
    def has_content(self):
        return bool(self.track_names or self.download_url or self.track_count)


@dataclass
class TranscriptRef:
    language: str = ""
    status: str = ""
    pages: Optional[int] = None
    pdf_url: str = ""


@dataclass
class ManifestRow:
    index: int
    event_code: str
    legacy_id: str = ""
    teachers: List[str] = field(default_factory=list)
    organizations: List[str] = field(default_factory=list)
    start_date: Optional[str] = None
    end_date: Optional[str] = None
    place: str = ""
    designation: str = ""
    title: str = ""
    guest_name: str = ""
    audience: str = ""
    notes: str = ""
    published: bool = False
    audio1: AudioSet = field(default_factory=AudioSet)
    audio2: AudioSet = field(default_factory=AudioSet)
    transcripts: List[TranscriptRef] = field(default_factory=list)

    @property
    def expected_tracks(self):
        return list(self.audio1.track_names) + list(self.audio2.track_names)

    @property
    def year(self):
        if self.start_date:
            return int(self.start_date[:4])
        match = re.match(r"^(\d{4})-", self.event_code)
        return int(match.group(1)) if match else None


@dataclass
class QuarantinedRow:
    index: int
    reason: str
    event_code: str = ""
    raw: dict = field(default_factory=dict)

    def to_dict(self):
        return {"index": self.index, "reason": self.reason, "eventCode": self.event_code}


@dataclass
class ManifestLoad:
    rows: List[ManifestRow]
    quarantined: List[QuarantinedRow]
    total_rows: int = 0


def parse_track_count(value):
    match = re.search(r"(\d+)", value or "")
    return int(match.group(1)) if match else 0


def parse_date_range(value):
    text = (value or "").strip()
    match = re.match(r"^(\d{4}-\d{2}-\d{2})\s+a\s+(\d{4}-\d{2}-\d{2})$", text)
    if match:
        return match.group(1), match.group(2)
    match = re.match(r"^(\d{4}-\d{2}-\d{2})$", text)
    if match:
        return match.group(1), match.group(1)
    return None, None


def parse_duration(value):
    """'02h 04min 29s' -> segundos (None si no hay nada)."""
    text = value or ""
    total = 0
    for pattern, factor in ((r"(\d+)\s*h", 3600), (r"(\d+)\s*min", 60), (r"(\d+)\s*s\b", 1)):
        match = re.search(pattern, text)
        if match:
            total += int(match.group(1)) * factor
    return total or None


def map_language(value):
    lowered = (value or "").strip().lower()
    if not lowered:
        return "unknown"
    for needle, code in LANGUAGE_NAMES:
        if needle in lowered:
            return code
    return "unknown"


def split_names(value):
    return [part.strip() for part in (value or "").split(" | ") if part.strip()]


def normalize_organization(name):
    normalized = re.sub(r",\s*$", "", name or "").strip()
    if re.match(r"^F\.\s*Kangyur\s*R\.?$", normalized, re.IGNORECASE):
        return "F. Kangyur Rinpoche"
    return ORGANIZATION_ALIASES.get(normalized, normalized)


def is_audio_filename(name):
    if not name:
        return False
    lowered = name.lower()
    if lowered.startswith(".ds_store") or lowered == "thumbs.db" or lowered.startswith("._"):
        return False
    return bool(AUDIO_NAME_RE.search(name))


def split_track_names(cell):
    names = [line.strip() for line in (cell or "").splitlines()]
    return [name for name in names if name and is_audio_filename(name)]


def extract_s3_key(url):
    if not url:
        return None
    try:
        parsed = urlparse(url.strip())
    except ValueError:
        return None
    if "s3" not in (parsed.hostname or ""):
        return None
    key = unquote(parsed.path).lstrip("/")
    return key or None


def extract_s3_prefix(url):
    """mediateca/EVENT-CODE a partir de la URL de descarga."""
    key = extract_s3_key(url)
    if not key:
        return None
    parts = key.split("/")
    if len(parts) >= 2:
        return "/".join(parts[:2])
    return key


def extract_s3_directory(url):
    key = extract_s3_key(url)
    if not key:
        return None
    if "/" in key:
        return key.rsplit("/", 1)[0]
    return ""


def _cell(raw, name):
    value = raw.get(name)
    if isinstance(value, list):
        value = " ".join(value)
    return (value or "").strip()


def _pages(value):
    count = parse_track_count(value)
    return count or None


def build_row(raw, index):
    """Convierte un registro crudo en ManifestRow; lanza ValueError si es inválido."""
    event_code = _cell(raw, "eventCode")
    if not event_code:
        raise ValueError("missing eventCode")
    if re.search(r"[\s/\\]", event_code):
        raise ValueError(f"invalid eventCode '{event_code}'")

    start_date, end_date = parse_date_range(_cell(raw, "dateStart-dateEnd"))

    transcripts = []
    first = TranscriptRef(
        language=_cell(raw, "transcript1-language"),
        status=_cell(raw, "transcript1-status"),
        pages=_pages(_cell(raw, "transcript1-pages")),
        pdf_url=_cell(raw, "transcript1-PDF-download")
    )
    second = TranscriptRef(
        language=_cell(raw, "transcript2-language"),
        status=_cell(raw, "transcript2-status"),
        # La cabecera histórica tiene la errata "transcrip2"
        pages=_pages(_cell(raw, "transcrip2-pages") or _cell(raw, "transcript2-pages")),
        pdf_url=_cell(raw, "transcript2-pdf-download") or _cell(raw, "transcript2-PDF-download")
    )
    for ref in (first, second):
        if ref.pdf_url or ref.language:
            transcripts.append(ref)

    return ManifestRow(
        index=index,
        event_code=event_code,
        legacy_id=_cell(raw, "ID"),
        teachers=split_names(_cell(raw, "teacherName")),
        organizations=[normalize_organization(o) for o in split_names(_cell(raw, "organização"))],
        start_date=start_date,
        end_date=end_date,
        place=_cell(raw, "placeTeaching"),
        designation=_cell(raw, "currentDesignation"),
        title=_cell(raw, "eventTitle"),
        guest_name=_cell(raw, "guestName"),
        audience=_cell(raw, "distributionAudience"),
        notes=_cell(raw, "notes"),
        published=_cell(raw, "OnOff").lower() == "true",
        audio1=AudioSet(
            language=_cell(raw, "audio1-language"),
            duration=_cell(raw, "audio1-duration"),
            track_count=parse_track_count(_cell(raw, "audio1-tracksNo")),
            track_names=split_track_names(raw.get("audio1-trackNames") or ""),
            download_url=_cell(raw, "audio1-Download-URL")
        ),
        audio2=AudioSet(
            language=_cell(raw, "audio2-language"),
            duration=_cell(raw, "audio2-Duration"),
            track_count=parse_track_count(_cell(raw, "audio2-tracksNo")),
            track_names=split_track_names(raw.get("audio2-tracksTitles") or ""),
            download_url=_cell(raw, "audio2-Download-URL")
        ),
        transcripts=transcripts
    )


def parse_manifest_text(text):
    reader = csv.DictReader(io.StringIO(text.lstrip("\ufeff")), restkey="_extra", restval="")
    if not reader.fieldnames or "eventCode" not in [f.strip() for f in reader.fieldnames]:
        raise ManifestError("Manifest has no eventCode column")
    reader.fieldnames = [f.strip() for f in reader.fieldnames]

    rows = []
    quarantined = []
    seen = set()
    total = 0
    for index, raw in enumerate(reader):
        total += 1
        raw.pop("_extra", None)
        try:
            row = build_row(raw, index)
        except ValueError as exc:
            quarantined.append(QuarantinedRow(
                index=index,
                reason=str(exc),
                event_code=_cell(raw, "eventCode"),
                raw=dict(raw)
            ))
            continue
        if row.event_code in seen:
            quarantined.append(QuarantinedRow(
                index=index,
                reason=f"duplicate eventCode '{row.event_code}'",
                event_code=row.event_code,
                raw=dict(raw)
            ))
            continue
        seen.add(row.event_code)
        rows.append(row)

    if quarantined:
        log.info("Manifest: %s filas válidas, %s en cuarentena", len(rows), len(quarantined))
    return ManifestLoad(rows=rows, quarantined=quarantined, total_rows=total)


def load_manifest(path):
    try:
        with open(path, "r", encoding="utf-8-sig", newline="") as fh:
            text = fh.read()
    except (OSError, UnicodeDecodeError) as exc:
        raise ManifestError(f"No se pudo leer el manifest {path}: {exc}") from exc
    return parse_manifest_text(text)
