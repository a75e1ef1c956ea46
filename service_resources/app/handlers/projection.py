"""
Response-shape narrowing driven by query parameters.
"""

from typing import Any, Dict, Iterable, List, Optional, Sequence


def parse_fields(value: Optional[str]) -> Optional[List[str]]:
    """``"a,b"`` -> ``["a", "b"]``; absent or blank -> ``None``."""
    if not value:
        return None
    fields = [field.strip() for field in value.split(",") if field.strip()]
    return fields or None


def pick(record: Dict[str, Any], fields: Iterable[str]) -> Dict[str, Any]:
    wanted = set(fields)
    return {key: value for key, value in record.items() if key in wanted}


def omit(record: Dict[str, Any], fields: Iterable[str]) -> Dict[str, Any]:
    unwanted = set(fields)
    return {key: value for key, value in record.items() if key not in unwanted}


def narrow(
    record: Dict[str, Any],
    picks: Optional[Sequence[str]] = None,
    omits: Optional[Sequence[str]] = None,
) -> Dict[str, Any]:
    """Apply ``pick`` then ``omit``; both only ever remove attributes."""
    if picks:
        record = pick(record, picks)
    if omits:
        record = omit(record, omits)
    return record


def _matches(actual: Any, expected: str) -> bool:
    if isinstance(actual, bool):
        return str(actual).lower() == expected.lower()
    if str(actual) == expected:
        return True
    for cast in (int, float):
        try:
            if actual == cast(expected):
                return True
        except (TypeError, ValueError):
            continue
    return False


def where_equals(records: List[Dict[str, Any]], key: Optional[str], value: Optional[str]) -> List[Dict[str, Any]]:
    """Keep records whose ``key`` equals ``value`` as a string, int or float."""
    if not key or value is None:
        return records
    return [record for record in records if key in record and _matches(record[key], value)]
