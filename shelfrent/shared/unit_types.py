"""Rental unit type tags and the alias table used when matching requested types"""

from typing import Iterable, Optional

from ..errors import InvalidRequest

UNIT_TYPES = (
    "regal",
    "regal-b",
    "kuehlregal",
    "gefrierregal",
    "verkaufstisch",
    "schaufenster",
    "sonstiges",
)

# Matches every type
ALL_TYPES = "all"

TYPE_ALIASES = {
    "regal": "regal",
    "shelf": "regal",
    "regal-a": "regal",
    "regal-b": "regal-b",
    "regalb": "regal-b",
    "kuehl": "kuehlregal",
    "kuehlregal": "kuehlregal",
    "gekuehlt": "kuehlregal",
    "kuehlschrank": "kuehlregal",
    "gefrier": "gefrierregal",
    "gefrierregal": "gefrierregal",
    "gefroren": "gefrierregal",
    "tiefkuehl": "gefrierregal",
    "tiefkuehlregal": "gefrierregal",
    "verkaufstisch": "verkaufstisch",
    "tisch": "verkaufstisch",
    "schaufenster": "schaufenster",
    "fenster": "schaufenster",
    "sonstiges": "sonstiges",
}

_UMLAUTS = str.maketrans({"ä": "ae", "ö": "oe", "ü": "ue", "ß": "ss"})


def normalize_type(raw: str) -> str:
    """Lowercase, transliterate umlauts and unify separators"""
    value = raw.strip().lower().translate(_UMLAUTS)
    value = value.replace("_", "-").replace(" ", "-")
    while "--" in value:
        value = value.replace("--", "-")
    return value


def canonical_type(raw: str) -> Optional[str]:
    """Return the canonical type for a tag or alias, None if unknown"""
    if not raw:
        return None
    normalized = normalize_type(raw)
    return TYPE_ALIASES.get(normalized) or TYPE_ALIASES.get(normalized.replace("-", ""))


def resolve_types(requested: Iterable[str]) -> set[str]:
    """
    Resolve requested type tags to canonical types.

    Raises InvalidRequest for an empty request or any unknown tag.
    """
    requested = [t for t in requested if t is not None]
    if not requested:
        raise InvalidRequest("At least one unit type is required")

    resolved = set()
    unknown = []
    for raw in requested:
        if normalize_type(raw) == ALL_TYPES:
            return set(UNIT_TYPES)
        canonical = canonical_type(raw)
        if canonical is None:
            unknown.append(raw)
        else:
            resolved.add(canonical)

    if unknown:
        raise InvalidRequest(f"Unknown unit type(s): {', '.join(unknown)}", {"unknownTypes": unknown})
    return resolved
