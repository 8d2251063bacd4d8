"""
Endpoint Rotator

Ordered list of candidate endpoints for one network with a cursor that
fails over to the next entry (wrapping) when retries against the active
endpoint keep failing.

The rotator also owns the client bound to the active endpoint: the client is
built lazily through a factory and rebuilt after every rotation.
"""

from typing import Any, Callable, Generic, Optional, Sequence, Tuple, TypeVar

from loguru import logger

from .errors import ConfigError
from .retry_executor import format_error


ClientT = TypeVar('ClientT')


class EndpointRotator(Generic[ClientT]):
    """
    Failover cursor over a network's endpoint list

    Rotation state is process-wide per network and persists across worker
    cycles; it never resets to the first endpoint.
    """

    def __init__(
        self,
        urls: Sequence[str],
        factory: Optional[Callable[[str], ClientT]] = None,
        name: str = "endpoints"
    ):
        """
        Initialize rotator

        Args:
            urls: Endpoint URLs in preference order (at least one)
            factory: Builds a client bound to a URL
            name: Label used in log lines (usually the network tag)
        """
        cleaned = tuple(u.strip() for u in urls if u and u.strip())
        if not cleaned:
            raise ConfigError(f"{name}: at least one endpoint URL is required")

        self.urls: Tuple[str, ...] = cleaned
        self.name = name
        self._factory = factory
        self._index = 0
        self._client: Optional[ClientT] = None

    def __len__(self) -> int:
        return len(self.urls)

    def __repr__(self):
        return f"EndpointRotator({self.name}: {self.current} [{self._index + 1}/{len(self.urls)}])"

    @property
    def index(self) -> int:
        return self._index

    @property
    def current(self) -> str:
        return self.urls[self._index]

    @property
    def client(self) -> ClientT:
        """Client bound to the active endpoint"""
        if self._factory is None:
            raise ConfigError(f"{self.name}: no client factory configured")
        if self._client is None:
            self._client = self._factory(self.current)
        return self._client

    def rotate(self, err: Optional[BaseException] = None, attempt: Optional[Any] = None) -> str:
        """
        Advance to the next endpoint

        Signature matches the retry executor's `on_retry` callback so it can
        be passed directly.

        Returns:
            The newly active URL
        """
        if len(self.urls) <= 1:
            return self.current

        previous = self.current
        self._index = (self._index + 1) % len(self.urls)
        self._client = None

        reason = f" after {format_error(err)}" if err is not None else ""
        logger.info(f"🔄 {self.name}: switching RPC {previous} → {self.current}{reason}")
        return self.current
