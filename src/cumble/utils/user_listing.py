# src/cumble/utils/user_listing.py
from typing import Callable, Dict, List, Literal

from ..models.schemas import UserRecord

SortColumn = Literal["name", "email", "country", "state", "city", "neighborhood"]
SortDirection = Literal["asc", "desc"]

SORT_KEYS: Dict[str, Callable[[UserRecord], str]] = {
    "name": lambda u: f"{u.first_name} {u.last_name}".lower(),
    "email": lambda u: u.email.lower(),
    "country": lambda u: (u.country or "").lower(),
    "state": lambda u: (u.state or "").lower(),
    "city": lambda u: u.city.lower(),
    "neighborhood": lambda u: (u.primary_neighborhood or "").lower(),
}


def matches_search(user: UserRecord, term: str) -> bool:
    """Case-insensitive substring match over neighborhoods, location, names and email."""
    if not term:
        return True
    combined = " ".join(
        [
            *user.neighborhoods,
            user.city,
            user.state or "",
            user.first_name,
            user.last_name,
            user.email,
        ]
    ).lower()
    return term.lower() in combined


def search_and_sort(
    users: List[UserRecord],
    term: str = "",
    sort: SortColumn = "name",
    direction: SortDirection = "asc",
) -> List[UserRecord]:
    """
    Filter users by a search term and sort them by one column.

    Ties keep their listing order in both directions.

    Raises:
        ValueError: unknown sort column or direction
    """
    if sort not in SORT_KEYS:
        raise ValueError(f"Unknown sort column: {sort}")
    if direction not in ("asc", "desc"):
        raise ValueError(f"Unknown sort direction: {direction}")

    filtered = [u for u in users if matches_search(u, term)]
    return sorted(filtered, key=SORT_KEYS[sort], reverse=direction == "desc")
