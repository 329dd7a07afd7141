"""
Lenient Field Extraction

Pulls numbers and currency codes out of semi-structured JSON records whose
shape differs between APIs (and between versions of the same API).

Each candidate key is tried in order against:
    1. the record's own fields
    2. the same key on one level of nested objects
    3. (numbers only) the first element of an array stored under the key

Absence is a NOT_FOUND result rather than an exception, so callers can fall
back to the next source of truth. Values that are present but unparseable
are reported separately via Extracted.malformed.
"""

import math
from dataclasses import dataclass
from typing import Any, Callable, Iterable, Optional, Tuple

from .errors import ParseError

# Mixed-case subunit codes some brokers report (pence, cents)
SUBUNIT_ALIASES = {
    "GBp": "GBX",
    "ZAc": "ZAC",
    "ILa": "ILA",
}


@dataclass(frozen=True)
class Extracted:
    """Outcome of a lenient lookup."""

    value: Any = None
    key: Optional[str] = None  # Candidate key that matched
    malformed: Tuple[str, ...] = ()  # Keys present with unusable values

    @property
    def found(self) -> bool:
        return self.key is not None

    def __bool__(self) -> bool:
        return self.found

    def get(self, default: Any = None) -> Any:
        return self.value if self.found else default

    def require(self, what: str) -> Any:
        """
        Return the value or raise ParseError.

        Args:
            what: Human-readable name of the field for the error message
        """
        if self.found:
            return self.value
        if self.malformed:
            raise ParseError(f"{what}: malformed value under {', '.join(self.malformed)}")
        raise ParseError(f"{what}: not found")


NOT_FOUND = Extracted()


def parse_number(raw: Any) -> Optional[float]:
    """Parse an int, float or numeric string into a finite float."""
    if isinstance(raw, bool) or raw is None:
        return None
    if isinstance(raw, (int, float)):
        value = float(raw)
    elif isinstance(raw, str):
        try:
            value = float(raw.strip())
        except ValueError:
            return None
    else:
        return None
    if math.isnan(value) or math.isinf(value):
        return None
    return value


def normalize_currency_code(raw: Any) -> Optional[str]:
    """Strip and uppercase a currency string, keeping subunit aliases distinct."""
    if not isinstance(raw, str):
        return None
    code = raw.strip()
    if not code:
        return None
    if code in SUBUNIT_ALIASES:
        return SUBUNIT_ALIASES[code]
    return code.upper()


def _first_element(raw: Any) -> Any:
    if isinstance(raw, (list, tuple)) and raw:
        return raw[0]
    return None


def _extract(
    record: Any,
    candidate_keys: Iterable[str],
    parse: Callable[[Any], Any],
    flat_only: bool,
    allow_arrays: bool,
) -> Extracted:
    if isinstance(record, (list, tuple)):
        record = _first_element(record)
    if not isinstance(record, dict):
        return NOT_FOUND

    malformed = []
    nested = [] if flat_only else [v for v in record.values() if isinstance(v, dict)]

    for key in candidate_keys:
        candidates = []
        if key in record:
            candidates.append(record[key])
        for child in nested:
            if key in child:
                candidates.append(child[key])

        for raw in candidates:
            value = parse(raw)
            if value is None and allow_arrays:
                element = _first_element(raw)
                if isinstance(element, dict):
                    element = element.get(key)
                value = parse(element)
            if value is not None:
                return Extracted(value=value, key=key, malformed=tuple(malformed))
            if key not in malformed:
                malformed.append(key)

    return Extracted(malformed=tuple(malformed))


def extract_number(record: Any, candidate_keys: Iterable[str], flat_only: bool = False) -> Extracted:
    """
    Find the first parseable number under any of the candidate keys.

    Args:
        record: Decoded JSON object (or array of objects)
        candidate_keys: Keys to try, in priority order
        flat_only: Only look at top-level fields

    Returns:
        Extracted result with a float value, or NOT_FOUND
    """
    return _extract(record, candidate_keys, parse_number, flat_only, allow_arrays=True)


def extract_currency_code(
    record: Any,
    candidate_keys: Iterable[str],
    accept: Optional[Callable[[str], Optional[str]]] = None,
    flat_only: bool = False,
) -> Extracted:
    """
    Find the first acceptable currency code under any of the candidate keys.

    Args:
        record: Decoded JSON object
        candidate_keys: Keys to try, in priority order
        accept: Optional validator returning the canonical code or None;
            rejected values count as malformed and the search continues
        flat_only: Only look at top-level fields

    Returns:
        Extracted result with a normalized code, or NOT_FOUND
    """

    def parse(raw: Any) -> Optional[str]:
        code = normalize_currency_code(raw)
        if code is None or accept is None:
            return code
        return accept(code)

    return _extract(record, candidate_keys, parse, flat_only, allow_arrays=False)
