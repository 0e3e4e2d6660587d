"""Error taxonomy for feed synchronization."""


class SyncError(Exception):
    """Base class for synchronization errors."""


class FetchError(SyncError):
    """Raised when a feed cannot be retrieved."""


class FetchTimeout(FetchError):
    """Raised when a feed does not answer within the fetch timeout."""


class HttpStatusError(FetchError):
    """Raised when a feed answers with a non-2xx status."""

    def __init__(self, status_code: int, url: str = ''):
        self.status_code = status_code
        self.url = url
        super().__init__(f'HTTP error! status: {status_code}')


class ParseError(SyncError):
    """Raised when a fetched body is not a readable RSS, Atom or JSON feed."""


class PersistenceError(SyncError):
    """Raised when new items for a user/source pair cannot be stored."""


class ConcurrencyConflict(SyncError):
    """Raised when a run is requested while another one is in progress."""


class FatalError(SyncError):
    """Raised when the run cannot continue at all, e.g. storage is unreachable."""
