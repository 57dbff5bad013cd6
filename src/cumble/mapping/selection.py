"""City filter and highlight state for the map view."""

from dataclasses import dataclass, field
from typing import Callable, List, Optional

Listener = Callable[["SelectionState"], None]


@dataclass
class SelectionState:
    """
    Current city filter and highlighted neighborhood/user.

    ``set_city`` is a filter change (full reconcile); ``set_highlighted`` is
    presentational only (restyle, never a fetch).
    """

    city: Optional[str] = None
    highlighted: Optional[str] = None
    _filter_listeners: List[Listener] = field(default_factory=list, repr=False)
    _highlight_listeners: List[Listener] = field(default_factory=list, repr=False)

    def on_filter_change(self, listener: Listener) -> None:
        self._filter_listeners.append(listener)

    def on_highlight_change(self, listener: Listener) -> None:
        self._highlight_listeners.append(listener)

    def clear_listeners(self) -> None:
        self._filter_listeners.clear()
        self._highlight_listeners.clear()

    def set_city(self, name: Optional[str]) -> bool:
        """
        Select a city ("" or None means all cities).

        Resets any highlight. Returns True when the filter actually changed.
        """
        name = name or None
        if name == self.city:
            return False
        self.city = name
        self.highlighted = None
        for listener in list(self._filter_listeners):
            listener(self)
        return True

    def set_highlighted(self, value: Optional[str]) -> bool:
        value = value or None
        if value == self.highlighted:
            return False
        self.highlighted = value
        for listener in list(self._highlight_listeners):
            listener(self)
        return True

    @property
    def filter_active(self) -> bool:
        return self.city is not None
