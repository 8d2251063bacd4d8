"""
Sweeper Errors

Exception taxonomy shared by every component:
- Transient: network / 5xx failures, retried by the retry executor
- Terminal: 4xx, malformed data, unknown account, bad keys
- Cycle-local: anything raised inside one worker cycle (logged, never fatal)
"""

from typing import Optional


class SweeperError(Exception):
    """Base class for all sweeper errors"""


class ConfigError(SweeperError):
    """Raised when configuration is missing or malformed"""


class RemoteCallError(SweeperError):
    """
    A remote call returned an error response

    Attributes:
        status: HTTP status code, if the failure came from the HTTP layer
        reason: HTTP reason phrase or JSON-RPC error message
        code: JSON-RPC error code, if any
    """

    def __init__(
        self,
        message: str,
        status: Optional[int] = None,
        reason: Optional[str] = None,
        code: Optional[int] = None
    ):
        super().__init__(message)
        self.status = status
        self.reason = reason
        self.code = code


class UnknownAccountError(SweeperError):
    """The ledger has no record for the requested account"""


class MalformedResponseError(SweeperError):
    """A remote service answered with data we cannot interpret"""


class SigningError(SweeperError):
    """Signing credential is invalid or a signature could not be produced"""


class DispatchError(SweeperError):
    """
    Dispatch aborted on an operation that could not be broadcast

    The remaining queued operations were dropped; they will be re-planned
    from a fresh balance snapshot on the next cycle.
    """

    def __init__(self, operation, dispatched: int, dropped: int, cause: BaseException):
        super().__init__(
            f"{operation} failed after {dispatched} dispatched, {dropped} dropped: {cause}"
        )
        self.operation = operation
        self.dispatched = dispatched
        self.dropped = dropped
        self.cause = cause
