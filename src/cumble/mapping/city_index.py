"""Distinct city/state values for selector population."""

from typing import Any, Iterable, List, Optional


def _value(record: Any, key: str) -> Optional[str]:
    if isinstance(record, str):
        return record
    if isinstance(record, dict):
        return record.get(key)
    return getattr(record, key, None)


def distinct_values(records: Iterable[Any], key: str) -> List[str]:
    """Sorted, deduplicated, non-empty values of ``key`` across records."""
    values = set()
    for record in records:
        value = _value(record, key)
        if value and str(value).strip():
            values.add(str(value).strip())
    return sorted(values)


def distinct_cities(records: Iterable[Any], key: str = "city_name") -> List[str]:
    """
    Lexicographically sorted, duplicate-free city names.

    Works over reference records (``city_name``), live users (pass
    ``key="city"``), dicts, or plain strings, so the filter can be sourced
    from either the reference table or the current user set.

    Args:
        records: Source collection
        key: Attribute or dict key holding the city name

    Returns:
        List of city names
    """
    return distinct_values(records, key)


def distinct_states(records: Iterable[Any], key: str = "state_name") -> List[str]:
    return distinct_values(records, key)


def cities_in_state(
    records: Iterable[Any],
    state: str,
    state_key: str = "state_name",
    city_key: str = "city_name",
) -> List[str]:
    """Cities belonging to one state, for the state → city selector."""
    if not state:
        return []
    return distinct_values(
        (r for r in records if _value(r, state_key) == state), city_key
    )
