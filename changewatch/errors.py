"""Error taxonomy shared by the ingestion engines.

Network and parse errors are per-source or per-run failures that the
engines convert into logged outcomes. Persistence errors abort the unit
of work they occur in. A LogicInvariantViolation means a diff result
and the snapshot it was computed from disagree; it is always fatal to
the run.
"""


class ChangewatchError(Exception):
    """Base class for all changewatch errors."""


class NetworkError(ChangewatchError):
    """Remote unreachable, timed out, or answered with a non-success status."""

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        response_body: str | None = None,
    ):
        super().__init__(message)
        self.status_code = status_code
        self.response_body = response_body


class RateLimitError(NetworkError):
    """Raised when rate limit is hit and all retries exhausted."""


class ParseError(ChangewatchError):
    """A fetched document (feed, roadmap page, timestamp) could not be parsed."""


class PersistenceError(ChangewatchError):
    """A database write or read failed (constraint, connection, transaction)."""


class LogicInvariantViolation(ChangewatchError):
    """A change references a tab or card that does not exist in its snapshot."""
