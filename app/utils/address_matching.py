"""
Address normalization and fuzzy matching against the courier nomenclature.

Locality and street resolution share the same pipeline: fold diacritics,
lowercase, expand abbreviations, strip punctuation, then score candidates.
"""
import re
import unicodedata
from difflib import SequenceMatcher
from typing import Iterable, List, Optional, Tuple, TypeVar

T = TypeVar("T")

# Minimum score for a fuzzy locality match to be accepted
LOCALITY_MATCH_THRESHOLD = 0.5

# Street tokens shorter than this are ignored for token-overlap matching
MIN_STREET_TOKEN_LENGTH = 3

_ABBREVIATIONS = [
    (re.compile(r"\bsf\.\s*"), "sfantu "),
    (re.compile(r"\bstr\.\s*"), "strada "),
    (re.compile(r"\bmun\.\s*"), "municipiul "),
    (re.compile(r"\bcom\.\s*"), "comuna "),
    (re.compile(r"\bor\.\s*"), "oras "),
    (re.compile(r"\bjud\.\s*"), ""),
]

_DASHES = re.compile(r"[-–—]")
_PUNCTUATION = re.compile(r"[.,;:'\"()]")
_SPACES = re.compile(r"\s+")

# Where the street name ends inside a full address line
_STREET_STOP_PATTERNS = [
    re.compile(r"\b(nr\.?|numar)\s*\d", re.IGNORECASE),
    re.compile(r"\b(bl\.?|bloc)\b", re.IGNORECASE),
    re.compile(r"\b(sc\.?|scara)\b", re.IGNORECASE),
    re.compile(r"\b(et\.?|etaj)\b", re.IGNORECASE),
    re.compile(r"\b(ap\.?|apart|apartament)\b", re.IGNORECASE),
    re.compile(r",\s*\d+"),
    re.compile(r"\s+\d+\s*[,-]"),
    re.compile(r"\s+\d+$"),
]

# The nomenclature stores streets without their type prefix
_STREET_TYPE_PREFIXES = [
    re.compile(p, re.IGNORECASE) for p in (
        r"^strada\s+", r"^str\.?\s+",
        r"^bulevardul\s+", r"^b-dul\.?\s*", r"^bd\.?\s+",
        r"^calea\s+", r"^cal\.?\s+",
        r"^aleea\s+", r"^al\.?\s+",
        r"^soseaua\s+", r"^sos\.?\s+",
        r"^piata\s+", r"^p-ta\.?\s*",
        r"^intrarea\s+", r"^int\.?\s+",
        r"^splaiul\s+", r"^spl\.?\s+",
    )
]
_STREET_TYPE_WORDS = re.compile(
    r"^(strada|bulevardul|calea|aleea|soseaua|piata|intrarea|splaiul)\s+"
)


def fold_diacritics(value: str) -> str:
    """Strip combining marks: 'Ștefănești' -> 'Stefanesti'."""
    decomposed = unicodedata.normalize("NFKD", value)
    return "".join(c for c in decomposed if not unicodedata.combining(c))


def _collapse(value: str) -> str:
    value = _DASHES.sub(" ", value)
    value = _PUNCTUATION.sub("", value)
    return _SPACES.sub(" ", value).strip()


def normalize_locality(name: Optional[str]) -> str:
    """Lowercase, diacritic-free, abbreviation-expanded locality name."""
    if not name:
        return ""
    normalized = fold_diacritics(name.lower().strip())
    for pattern, replacement in _ABBREVIATIONS:
        normalized = pattern.sub(replacement, normalized)
    return _collapse(normalized)


def normalize_street(name: Optional[str]) -> str:
    """Normalized street name with the street-type word dropped."""
    if not name:
        return ""
    normalized = fold_diacritics(name.lower().strip())
    normalized = _STREET_TYPE_WORDS.sub("", normalized)
    return _collapse(normalized)


def extract_street_name(address: Optional[str]) -> str:
    """
    Pull the bare street name out of a full address line.

        "Str. Victoriei nr. 25, bl. A1" -> "Victoriei"
        "Calea Dorobanti, nr 10"        -> "Dorobanti"
    """
    if not address:
        return ""

    street = address.strip()
    folded = fold_diacritics(street)

    stop = len(street)
    for pattern in _STREET_STOP_PATTERNS:
        match = pattern.search(folded)
        if match and match.start() < stop:
            stop = match.start()

    street = street[:stop].strip().rstrip(",").strip()
    folded_street = fold_diacritics(street)

    for pattern in _STREET_TYPE_PREFIXES:
        match = pattern.match(folded_street)
        if match:
            street = street[match.end():]
            break

    return street.strip()


def similarity(a: Optional[str], b: Optional[str]) -> float:
    """
    Score two locality names in [0, 1].

    Exact normalized match scores 1.0. Containment scores the ratio of the
    shorter to the longer string. Anything else falls back to a character
    sequence ratio so single-letter typos still land above the threshold.
    """
    norm_a = normalize_locality(a)
    norm_b = normalize_locality(b)

    if not norm_a or not norm_b:
        return 0.0
    if norm_a == norm_b:
        return 1.0
    if norm_a in norm_b or norm_b in norm_a:
        return min(len(norm_a), len(norm_b)) / max(len(norm_a), len(norm_b))
    return SequenceMatcher(None, norm_a, norm_b).ratio()


def best_match(
    value: str,
    candidates: Iterable[T],
    key=lambda c: c,
    threshold: float = LOCALITY_MATCH_THRESHOLD,
) -> Optional[Tuple[T, float]]:
    """Return (candidate, score) for the highest scoring candidate at or above threshold."""
    best: Optional[Tuple[T, float]] = None
    for candidate in candidates:
        score = similarity(value, key(candidate))
        if score == 1.0:
            return candidate, score
        if best is None or score > best[1]:
            best = (candidate, score)

    if best and best[1] >= threshold:
        return best
    return None


def _tokens(value: str) -> List[str]:
    return [t for t in value.split(" ") if len(t) >= MIN_STREET_TOKEN_LENGTH]


def match_street(street: str, candidates: Iterable[T], key=lambda c: c) -> Optional[T]:
    """
    Find the nomenclature street for a free-text address line.

    Tries exact, then containment, then token overlap (words of at least
    three characters, one containing the other). None when nothing matches.
    """
    target = normalize_street(extract_street_name(street) or street)
    if not target:
        return None

    normalized = [(c, normalize_street(key(c))) for c in candidates]
    normalized = [(c, n) for c, n in normalized if n]

    for candidate, name in normalized:
        if name == target:
            return candidate

    for candidate, name in normalized:
        if target in name or name in target:
            return candidate

    target_tokens = _tokens(target)
    if not target_tokens:
        return None

    best, best_overlap = None, 0
    for candidate, name in normalized:
        overlap = 0
        for tt in target_tokens:
            for ct in _tokens(name):
                if tt == ct:
                    overlap += 2
                elif tt in ct or ct in tt:
                    overlap += 1
        if overlap > best_overlap:
            best, best_overlap = candidate, overlap

    return best
