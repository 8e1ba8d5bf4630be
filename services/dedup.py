"""
Reconciliación de los dos conjuntos paralelos de pistas de un evento.

El conjunto más grande se considera canónico; cada pista del otro
conjunto es duplicado (tiene equivalente) o legacy (contenido único que
se conserva aparte).
"""

import re
from dataclasses import dataclass, field
from typing import List

from config import Config
from logger import get_logger
from services.filename_parser import KNOWN_SPEAKERS, strip_extension


log = get_logger("dedup")

_BRACKET_RE = re.compile(r"\[[^\]]*\]")
_TRAD_RE = re.compile(r"(?<![a-zà-ÿ])trad(?![a-zà-ÿ])")
_LEADING_NUMBER_RE = re.compile(r"^\d+[a-z]?[\s_\-.]+")
_SEPARATORS_RE = re.compile(r"[\s_\-.,+&()]+")
_BASE_NUMBER_RE = re.compile(r"^\s*(\d{1,4})([a-z])?(?=[\s_\-.]|$)", re.IGNORECASE)
_TRANSLATION_MARK_RE = re.compile(r"(?<![A-Za-z])TRAD(?![A-Za-z])")

# Puntaje asignado a un par original/traducción con el mismo número base
TRANSLATION_PAIR_SCORE = 0.9


def normalize_track_name(name):
    text = strip_extension(name or "").lower()
    text = _BRACKET_RE.sub(" ", text)
    text = _TRAD_RE.sub(" ", text)
    text = text.strip(" _-.")
    text = _LEADING_NUMBER_RE.sub("", text)
    text = _SEPARATORS_RE.sub(" ", text)
    return text.strip()


def core_identifier(name):
    """Nombre normalizado sin el prefijo del orador."""
    normalized = normalize_track_name(name)
    tokens = normalized.split(" ")
    if len(tokens) > 1 and tokens[0].upper() in KNOWN_SPEAKERS:
        tokens = tokens[1:]
    return " ".join(tokens)


def similarity(a, b):
    """Similitud simétrica en [0, 1] entre dos nombres de pista."""
    if a == b:
        return 1.0
    x = core_identifier(a)
    y = core_identifier(b)
    if x == y:
        return 1.0
    if not x or not y:
        return 0.0
    if x in y or y in x:
        return min(len(x), len(y)) / max(len(x), len(y))
    tokens_x = set(x.split(" "))
    tokens_y = set(y.split(" "))
    common = tokens_x & tokens_y
    return len(common) / max(len(tokens_x), len(tokens_y))


def _pair_info(name):
    stem = strip_extension(name or "")
    match = _BASE_NUMBER_RE.match(stem)
    if not match:
        return None, False
    translated = bool(match.group(2)) or bool(_TRANSLATION_MARK_RE.search(stem))
    return int(match.group(1)), translated


def translation_pair_score(a, b):
    """Un original y su traducción (mismo número base, p.ej. 001 / 001a TRAD)."""
    number_a, translated_a = _pair_info(a)
    number_b, translated_b = _pair_info(b)
    if number_a is None or number_a != number_b:
        return 0.0
    if translated_a == translated_b:
        return 0.0
    return TRANSLATION_PAIR_SCORE


def match_score(a, b, pair_translations=True):
    score = similarity(a, b)
    if pair_translations and score < TRANSLATION_PAIR_SCORE:
        score = max(score, translation_pair_score(a, b))
    return score


@dataclass
class DuplicateMatch:
    filename: str
    matched: str
    score: float

    def to_dict(self):
        return {
            "filename": self.filename,
            "matched": self.matched,
            "score": round(self.score, 3),
        }


@dataclass
class DedupResult:
    canonical_set: str
    main: List[str] = field(default_factory=list)
    legacy: List[str] = field(default_factory=list)
    duplicates: List[DuplicateMatch] = field(default_factory=list)
    threshold: float = 0.8

    @property
    def duplicate_names(self):
        return [d.filename for d in self.duplicates]

    def to_dict(self):
        return {
            "canonicalSet": self.canonical_set,
            "threshold": self.threshold,
            "main": list(self.main),
            "legacy": list(self.legacy),
            "duplicates": [d.to_dict() for d in self.duplicates],
        }


def choose_canonical(list_a, list_b, strategy=None):
    strategy = (strategy or Config.DEDUP_CANONICAL_STRATEGY or "larger").lower()
    if strategy == "a":
        return "a"
    if strategy == "b":
        return "b"
    # En empate gana el segundo conjunto (grabaciones más recientes)
    return "b" if len(list_b) >= len(list_a) else "a"


def classify_tracks(list_a, list_b, threshold=None, canonical=None, pair_translations=True):
    """
    Particiona dos listas de pistas en principal / legacy / duplicados.

    canonical: "a", "b" o "larger" (por defecto según configuración).
    """
    threshold = Config.DEDUP_SIMILARITY_THRESHOLD if threshold is None else threshold
    list_a = list(list_a or [])
    list_b = list(list_b or [])

    chosen = choose_canonical(list_a, list_b, canonical)
    main, other = (list_a, list_b) if chosen == "a" else (list_b, list_a)

    result = DedupResult(canonical_set=chosen, main=list(main), threshold=threshold)
    for name in other:
        best_name = None
        best_score = 0.0
        for candidate in main:
            score = match_score(name, candidate, pair_translations=pair_translations)
            if score > best_score:
                best_name, best_score = candidate, score
            if best_score >= 1.0:
                break
        if best_name is not None and best_score >= threshold:
            result.duplicates.append(DuplicateMatch(name, best_name, best_score))
        else:
            result.legacy.append(name)

    log.debug(
        "Dedup: canónico=%s principal=%s legacy=%s duplicados=%s",
        chosen, len(result.main), len(result.legacy), len(result.duplicates)
    )
    return result
