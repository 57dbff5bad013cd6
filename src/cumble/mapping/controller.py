"""Async loading and re-rendering for one map view.

The reference data and the user list load concurrently and may finish in
any order; nothing is drawn until both have arrived once. Each fetch is
stamped with a generation so that a slow, superseded fetch can never
overwrite newer data, and every completion checks ``alive`` so nothing
touches the surface after ``close()``.
"""

import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional

from ..errors import DataLoadError
from ..models.schemas import UserRecord
from .city_index import distinct_cities
from .collision import DEFAULT_DELTA, DEFAULT_PRECISION, ResolvedPoint
from .map_data_builder import MapDataBuilder
from .reconciler import MapLayerReconciler
from .reference_data import ReferenceData
from .selection import SelectionState

logger = logging.getLogger(__name__)

UsersSource = Callable[[], Awaitable[List[UserRecord]]]
ReferenceSource = Callable[[], Awaitable[ReferenceData]]


class MapController:
    """Gate, render and tear down one reconciled map."""

    def __init__(
        self,
        reconciler: MapLayerReconciler,
        users_source: UsersSource,
        reference_source: ReferenceSource,
        selection: Optional[SelectionState] = None,
        delta: float = DEFAULT_DELTA,
        precision: int = DEFAULT_PRECISION,
    ):
        self.reconciler = reconciler
        self.users_source = users_source
        self.reference_source = reference_source
        self.selection = selection or SelectionState()
        self.delta = delta
        self.precision = precision

        self.alive = True
        self.reference: Optional[ReferenceData] = None
        self.users: Optional[List[UserRecord]] = None
        self.points: List[ResolvedPoint] = []
        self.stats: Dict[str, Any] = {}
        self.errors: Dict[str, str] = {}

        self._issued = {"users": 0, "reference": 0}
        self._applied = {"users": 0, "reference": 0}
        self._started = False

    @property
    def loading(self) -> bool:
        """True until both feeds have completed at least once."""
        return self.reference is None or self.users is None

    @property
    def error(self) -> Optional[str]:
        if not self.errors:
            return None
        return "; ".join(f"{k}: {v}" for k, v in sorted(self.errors.items()))

    def start(self) -> None:
        """Mount the map and wire selection changes. Runs once."""
        if self._started:
            return
        self._started = True
        self.reconciler.mount()
        self.selection.on_filter_change(lambda _sel: self.render())
        self.selection.on_highlight_change(self._restyle)

    async def load(self) -> None:
        """Fetch both feeds concurrently; render once both have landed."""
        self.start()
        await asyncio.gather(self.refresh_reference(), self.refresh_users())

    async def refresh_users(self) -> bool:
        return await self._refresh("users", self.users_source)

    async def refresh_reference(self) -> bool:
        return await self._refresh("reference", self.reference_source)

    async def _refresh(self, kind: str, source: Callable[[], Awaitable[Any]]) -> bool:
        """
        Run one fetch and apply it if it is still relevant.

        Returns:
            True when the result was applied
        """
        self._issued[kind] += 1
        generation = self._issued[kind]

        try:
            result = await source()
        except DataLoadError as e:
            if self.alive and generation > self._applied[kind]:
                logger.error(f"Failed to load {kind}: {e}")
                self.errors[kind] = str(e)
            return False

        if not self.alive:
            logger.debug(f"Dropping {kind} result: map already closed")
            return False
        if generation <= self._applied[kind]:
            logger.debug(f"Dropping stale {kind} result (generation {generation})")
            return False

        self._applied[kind] = generation
        self.errors.pop(kind, None)
        if kind == "users":
            self.users = list(result)
        else:
            self.reference = result

        if not self.loading:
            self.render()
        return True

    def render(self) -> None:
        """Resolve, offset and reconcile the current inputs."""
        if not self.alive or self.loading:
            return

        builder = MapDataBuilder(
            self.reference, self.users, delta=self.delta, precision=self.precision
        )
        self.points, self.stats = builder.build_points()
        logger.info(
            f"Rendering {self.stats['rendered']} users "
            f"({self.stats['centroid_fallbacks']} at city center, "
            f"{self.stats['unmapped']} unmapped)"
        )
        self.reconciler.reconcile(
            self.points,
            self.selection,
            self.reference.neighborhoods,
            self.reference.cities,
        )

    def _restyle(self, selection: SelectionState) -> None:
        if self.alive:
            self.reconciler.restyle(selection)

    def set_city(self, name: Optional[str]) -> None:
        self.selection.set_city(name)

    def set_highlighted(self, value: Optional[str]) -> None:
        self.selection.set_highlighted(value)

    def cities(self, source: str = "reference") -> List[str]:
        """City filter options from the reference table or the live users."""
        if source == "users":
            return distinct_cities(self.users or [], key="city")
        if self.reference is None:
            return []
        return distinct_cities(self.reference.neighborhoods)

    def close(self) -> None:
        """Stop applying results and release the map. Idempotent."""
        self.alive = False
        self.selection.clear_listeners()
        self.reconciler.dispose()
