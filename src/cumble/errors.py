"""Exception types raised at the edges of the map and profile services."""


class CumbleError(Exception):
    """Base class for all cumble errors."""


class DataLoadError(CumbleError):
    """Reference CSV or user list could not be fetched."""


class LoadError(DataLoadError):
    """Reference data could not be fetched or parsed at all.

    Individual bad rows never raise this; they are dropped during load.
    """


class RenderSurfaceInitError(CumbleError):
    """The map surface could not be initialized (e.g. missing token)."""


class SurfaceStateError(CumbleError):
    """A surface operation violated the layer/source lifecycle rules."""


class PersistenceError(CumbleError):
    """Profile save or lookup failed."""


class IdentityError(CumbleError):
    """The request carries no usable identity."""

    def __init__(self, message: str, status_code: int = 401):
        super().__init__(message)
        self.status_code = status_code
