"""
Parser de nombres de archivo de pistas del archivo histórico.

Convierte un nombre como "001 JKR - Opening.mp3" o
"20230615_AM_Part 2 JKR talk.mp3" en un TrackDescriptor. Es una función
pura y total: cualquier cadena produce un descriptor, con valores por
defecto conservadores cuando no se reconoce nada.
"""

import re
from dataclasses import dataclass, replace, asdict
from datetime import date as date_cls
from typing import Optional, Tuple

from logger import get_logger


log = get_logger("filename_parser")

UNSPECIFIED = "unspecified"

LANGUAGE_MAP = {
    "ENG": "en",
    "ING": "en",
    "EN": "en",
    "ENGLISH": "en",
    "POR": "pt",
    "PORT": "pt",
    "PORTUGUESE": "pt",
    "PORTUGUÊS": "pt",
    "TIB": "tib",
    "TIBETAN": "tib",
    "TIBETANO": "tib",
    "FR": "fr",
    "FRA": "fr",
    "FRENCH": "fr",
    "ESP": "es",
    "SPA": "es",
}

# Orden usado al ordenar pistas dentro de una sesión
LANGUAGE_PRIORITY = ("en", "pt", "es", "fr", "tib")

# Idioma de las traducciones marcadas con TRAD en el corpus
TRANSLATION_LANGUAGE = "pt"
# Idioma original en grabaciones bilingües (JKR+TRAD)
BILINGUAL_ORIGINAL = "en"

KNOWN_SPEAKERS = frozenset({
    "JKR", "PWR", "TPWR", "RR", "TRR", "KPS", "PPR", "DKR", "MTR", "KNP",
    "DKY", "SRR", "KTR", "CK", "TMR", "ST", "YMR", "CNR", "DL", "HHDL",
    "WF", "SSR", "TSU", "JKT", "DLP", "HHSS", "JL",
})

MONTHS = {
    "january": 1, "janeiro": 1,
    "february": 2, "fevereiro": 2,
    "march": 3, "março": 3, "marco": 3,
    "april": 4, "abril": 4,
    "may": 5, "maio": 5,
    "june": 6, "junho": 6,
    "july": 7, "julho": 7,
    "august": 8, "agosto": 8,
    "september": 9, "setembro": 9,
    "october": 10, "outubro": 10,
    "november": 11, "novembro": 11,
    "december": 12, "dezembro": 12,
}

PERIOD_WORDS = {
    "morning": "morning",
    "manhã": "morning",
    "manha": "morning",
    "matin": "morning",
    "afternoon": "afternoon",
    "tarde": "afternoon",
    "evening": "evening",
    "night": "evening",
    "noite": "evening",
    "soir": "evening",
}

PERIOD_ORDER = {"morning": 0, "afternoon": 1, "evening": 2}

_EXTENSION_RE = re.compile(r"\.[A-Za-z0-9]{1,5}$")
_ISO_DATE_RE = re.compile(r"(?<!\d)(\d{4})-(\d{2})-(\d{2})(?!\d)")
_COMPACT_DATE_RE = re.compile(r"(?<!\d)(\d{4})(\d{2})(\d{2})(?!\d)")
_MONTH_NAMES = "|".join(sorted(MONTHS, key=len, reverse=True))
_DAY_MONTH_RE = re.compile(
    rf"(?<!\d)(\d{{1,2}})(?:st|nd|rd|th)?[\s_-]+({_MONTH_NAMES})(?![A-Za-zÀ-ÿ])",
    re.IGNORECASE
)
_MERIDIEM_RE = re.compile(r"(?<![A-Za-z])(AM|PM)(?![A-Za-z])")
_PERIOD_WORD_RE = re.compile(
    r"(?<![A-Za-zÀ-ÿ])(" + "|".join(PERIOD_WORDS) + r")(?![A-Za-zÀ-ÿ])",
    re.IGNORECASE
)
_PART_RE = re.compile(r"(?<![A-Za-z])part[e]?[\s_.-]*(\d{1,2})(?!\d)", re.IGNORECASE)
_TRACK_NUMBER_RE = re.compile(r"^(\d{1,4})([a-z])?(?=[\s_\-.]|$)", re.IGNORECASE)
_BRACKET_RE = re.compile(r"\[([^\]]*)\]")
_COMBO_RE = re.compile(
    r"(?<![A-Za-z])(?:([A-Z]{2,5})\s*[+&]\s*TRAD|TRAD\s*[+&]\s*([A-Z]{2,5}))(?![A-Za-z])"
)
_TRAD_RE = re.compile(r"(?<![A-Za-zÀ-ÿ])TRAD(?![A-Za-zÀ-ÿ])")
_UPPER_TOKEN_RE = re.compile(r"(?<![A-Za-z0-9])([A-Z]{2,5})(?![A-Za-z0-9])")
_AFTER_NUMBER_SPEAKER_RE = re.compile(
    r"^\d{1,4}[a-z]?[\s_-]+([A-Za-z]{2,5})(?=\s*-|\s+\[|[\s_]|$)",
    re.IGNORECASE
)
_EMPTY_PARENS_RE = re.compile(r"\(\s*[\s_\-,.]*\)")


@dataclass(frozen=True)
class TrackDescriptor:
    filename: str
    track_number: int = 0
    speaker: Optional[str] = None
    language: str = UNSPECIFIED
    languages: Tuple[str, ...] = ()
    original_language: Optional[str] = None
    is_translation: bool = False
    date: Optional[str] = None
    period: Optional[str] = None
    part: Optional[int] = None
    title: str = ""
    explicit_language: bool = False
    numbered: bool = False
    number_suffix: Optional[str] = None

    @property
    def session_key(self):
        return (self.date, self.period, self.part)

    @property
    def has_session_markers(self):
        return any(value is not None for value in self.session_key)

    def to_dict(self):
        data = asdict(self)
        data["languages"] = list(self.languages)
        return data


def _valid_date(year, month, day):
    if not 1950 <= year <= 2099:
        return False
    try:
        date_cls(year, month, day)
        return True
    except ValueError:
        return False


def strip_extension(filename):
    name = filename or ""
    stem = _EXTENSION_RE.sub("", name)
    return stem if stem.strip() else name


def _extract_date(text, default_year=None):
    """Devuelve (fecha, texto sin el token) para la primera fecha reconocida."""
    match = _ISO_DATE_RE.search(text)
    if match:
        year, month, day = (int(g) for g in match.groups())
        if _valid_date(year, month, day):
            return f"{year:04d}-{month:02d}-{day:02d}", _cut(text, match)

    for match in _COMPACT_DATE_RE.finditer(text):
        year, month, day = (int(g) for g in match.groups())
        if _valid_date(year, month, day):
            return f"{year:04d}-{month:02d}-{day:02d}", _cut(text, match)

    # Un "dd Mes" al inicio es el número de pista, no una fecha
    match = next(
        (
            m for m in _DAY_MONTH_RE.finditer(text)
            if text[:m.start()].strip(" _-.")
        ),
        None
    )
    month = MONTHS.get(match.group(2).lower()) if match else None
    if match and month:
        day = int(match.group(1))
        if default_year and _valid_date(default_year, month, day):
            return f"{default_year:04d}-{month:02d}-{day:02d}", _cut(text, match)
        try:
            date_cls(2000, month, day)
        except ValueError:
            return None, text
        # Sin año: notación ISO reducida --MM-DD
        return f"--{month:02d}-{day:02d}", _cut(text, match)

    return None, text


def _cut(text, match):
    return text[:match.start()] + " " + text[match.end():]


def _extract_period(text):
    match = _MERIDIEM_RE.search(text)
    if match:
        period = "morning" if match.group(1) == "AM" else "afternoon"
        return period, _cut(text, match)
    match = _PERIOD_WORD_RE.search(text)
    if match:
        return PERIOD_WORDS[match.group(1).lower()], _cut(text, match)
    return None, text


def _extract_part(text):
    match = _PART_RE.search(text)
    if match:
        return int(match.group(1)), _cut(text, match)
    return None, text


def _map_language_token(token):
    return LANGUAGE_MAP.get(token.strip().upper())


def _extract_languages(text):
    """
    Reconoce marcadores explícitos de idioma/traducción.

    Devuelve (languages, is_translation, original_language, texto) o
    languages=None si no hay marcador.
    """
    languages = []
    is_translation = False
    original = None
    found = False

    match = _COMBO_RE.search(text)
    if match:
        found = True
        languages = [BILINGUAL_ORIGINAL, TRANSLATION_LANGUAGE]
        original = BILINGUAL_ORIGINAL
        # El código del orador queda para la detección de speaker
        speaker = match.group(1) or match.group(2)
        text = text[:match.start()] + f" {speaker} " + text[match.end():]

    for bracket in list(_BRACKET_RE.finditer(text)):
        codes = [
            _map_language_token(part)
            for part in re.split(r"[+&/,]", bracket.group(1))
        ]
        codes = [code for code in codes if code]
        if not codes:
            continue
        found = True
        for code in codes:
            if code not in languages:
                languages.append(code)
        if original is None and len(codes) > 1:
            original = codes[0]
    text = _BRACKET_RE.sub(
        lambda m: " " if any(
            _map_language_token(p) for p in re.split(r"[+&/,]", m.group(1))
        ) else m.group(0),
        text
    )

    if _TRAD_RE.search(text):
        found = True
        is_translation = not (original and len(languages) > 1)
        if not languages:
            languages = [TRANSLATION_LANGUAGE]
        text = _TRAD_RE.sub(" ", text)

    if not found:
        return None, False, None, text
    return tuple(languages), is_translation, original, text


def has_explicit_language(filename):
    stem = strip_extension(filename or "")
    languages, _, _, _ = _extract_languages(stem)
    return languages is not None


def _extract_speaker(text):
    match = _AFTER_NUMBER_SPEAKER_RE.match(text.strip(" _-."))
    if match and match.group(1).upper() in KNOWN_SPEAKERS:
        return match.group(1).upper()
    for match in _UPPER_TOKEN_RE.finditer(text):
        token = match.group(1)
        if token in KNOWN_SPEAKERS:
            return token
    return None


def _remove_speaker(text, speaker):
    pattern = re.compile(rf"(?<![A-Za-z0-9]){re.escape(speaker)}(?![A-Za-z0-9])", re.IGNORECASE)
    return pattern.sub(" ", text, count=1)


def _clean_title(text):
    text = _EMPTY_PARENS_RE.sub(" ", text)
    text = text.replace("_", " ")
    text = re.sub(r"\s+", " ", text)
    text = re.sub(r"^[\s\-.,:;]+|[\s\-.,:;]+$", "", text)
    text = re.sub(r"\s-\s(?:-\s)+", " - ", text)
    return text.strip()


def parse_track_filename(filename, position=None, known=None, default_year=None):
    """
    Parsea un nombre de archivo (sin ruta) en un TrackDescriptor.

    position: número de pista por defecto (1-based) cuando el nombre no
    trae número. known: descriptor previo cuyos datos de idioma se
    conservan si el nombre no trae un marcador explícito.
    """
    filename = filename if isinstance(filename, str) else str(filename or "")
    stem = strip_extension(filename)
    rest = stem

    languages, is_translation, original, rest = _extract_languages(rest)
    date, rest = _extract_date(rest, default_year=default_year)
    period, rest = _extract_period(rest)
    part, rest = _extract_part(rest)

    track_number = position or 0
    numbered = False
    number_suffix = None
    leading = rest.lstrip(" _-.")
    number_match = _TRACK_NUMBER_RE.match(leading)
    speaker = _extract_speaker(leading)
    if number_match:
        track_number = int(number_match.group(1))
        number_suffix = (number_match.group(2) or "").lower() or None
        numbered = True
        leading = leading[number_match.end():]
    else:
        log.debug("Sin número de pista en '%s', usando posición %s", filename, track_number)

    if speaker:
        leading = _remove_speaker(leading, speaker)

    title = _clean_title(leading) or stem

    descriptor = TrackDescriptor(
        filename=filename,
        track_number=track_number,
        speaker=speaker,
        date=date,
        period=period,
        part=part,
        title=title,
        numbered=numbered,
        number_suffix=number_suffix
    )

    if languages is not None:
        descriptor = replace(
            descriptor,
            language=languages[0] if languages else UNSPECIFIED,
            languages=languages,
            original_language=original,
            is_translation=is_translation,
            explicit_language=True
        )

    if known is not None:
        descriptor = merge_known(descriptor, known)
    return descriptor


def merge_known(parsed, known):
    """
    Combina un descriptor recién parseado con datos ya conocidos.

    Los datos de idioma conocidos solo se reemplazan si el nombre trae un
    marcador explícito; el speaker conocido se conserva si no se detectó uno.
    """
    if isinstance(known, dict):
        known = TrackDescriptor(
            filename=known.get("filename", parsed.filename),
            speaker=known.get("speaker"),
            language=known.get("language") or UNSPECIFIED,
            languages=tuple(known.get("languages") or ()),
            original_language=known.get("original_language"),
            is_translation=bool(known.get("is_translation", False))
        )

    updates = {}
    if not parsed.explicit_language and known.language != UNSPECIFIED:
        updates.update(
            language=known.language,
            languages=known.languages or (known.language,),
            original_language=known.original_language,
            is_translation=known.is_translation
        )
    if parsed.speaker is None and known.speaker:
        updates["speaker"] = known.speaker
    return replace(parsed, **updates) if updates else parsed


def language_rank(language):
    try:
        return LANGUAGE_PRIORITY.index(language)
    except ValueError:
        return len(LANGUAGE_PRIORITY)
