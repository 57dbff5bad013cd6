# src/cumble/utils/profile_store.py
import copy
import logging
from typing import Protocol, List, Dict, Any, Optional

logger = logging.getLogger(__name__)


def strip_primary_id(doc: Dict[str, Any]) -> Dict[str, Any]:
    """Drop a client-supplied `_id`; the store owns document ids."""
    return {k: v for k, v in doc.items() if k != "_id"}


# Store protocol for swap-ability (in-memory for dev/tests, Postgres in deployment)
class ProfileStore(Protocol):
    def get_by_firebase_id(self, firebase_id: str) -> Optional[Dict[str, Any]]:
        ...

    def get_by_email(self, email: str) -> Optional[Dict[str, Any]]:
        ...

    def list_profiles(self) -> List[Dict[str, Any]]:
        """All stored profiles, each carrying an `_id`, in insertion order."""
        ...

    def upsert(self, firebase_id: str, profile: Dict[str, Any]) -> Dict[str, Any]:
        """
        Insert the profile keyed by firebase_id, or merge its fields into the
        stored one.

        Raises:
            PersistenceError: the write did not happen
        """
        ...


class InMemoryProfileStore:
    """Dict-backed ProfileStore."""

    def __init__(self, profiles: Optional[List[Dict[str, Any]]] = None):
        self._profiles: Dict[str, Dict[str, Any]] = {}
        self._next_id = 1
        for profile in profiles or []:
            firebase_id = profile.get("firebase_id") or f"seed-{self._next_id}"
            self.upsert(firebase_id, profile)

    def get_by_firebase_id(self, firebase_id: str) -> Optional[Dict[str, Any]]:
        doc = self._profiles.get(firebase_id)
        return copy.deepcopy(doc) if doc else None

    def get_by_email(self, email: str) -> Optional[Dict[str, Any]]:
        email = email.lower()
        for doc in self._profiles.values():
            if (doc.get("email") or "").lower() == email:
                return copy.deepcopy(doc)
        return None

    def list_profiles(self) -> List[Dict[str, Any]]:
        return [copy.deepcopy(doc) for doc in self._profiles.values()]

    def upsert(self, firebase_id: str, profile: Dict[str, Any]) -> Dict[str, Any]:
        existing = self._profiles.get(firebase_id)
        doc = dict(existing or {})
        doc.update(strip_primary_id(profile))
        doc["firebase_id"] = firebase_id
        if existing:
            doc["_id"] = existing["_id"]
        else:
            doc["_id"] = str(self._next_id)
            self._next_id += 1
        self._profiles[firebase_id] = doc
        logger.debug(f"Upserted profile {doc['_id']} for {firebase_id}")
        return copy.deepcopy(doc)
