"""
JSON-RPC Client

Thin JSON-RPC 2.0 transport over a shared aiohttp session. Used both for the
Graphene node APIs (condenser_api) and the token-ledger query service.
"""

import itertools
from typing import Any, Dict, Optional

import aiohttp
from loguru import logger

from .errors import MalformedResponseError, RemoteCallError


DEFAULT_TIMEOUT = aiohttp.ClientTimeout(total=30.0, connect=10.0)


def create_session(timeout: aiohttp.ClientTimeout = DEFAULT_TIMEOUT) -> aiohttp.ClientSession:
    """Create the process-wide HTTP session shared by every network client"""
    connector = aiohttp.TCPConnector(
        limit=100,
        limit_per_host=30,
        enable_cleanup_closed=True,
        ttl_dns_cache=300,
    )
    return aiohttp.ClientSession(timeout=timeout, connector=connector)


class JsonRpcClient:
    """JSON-RPC client bound to a single endpoint URL"""

    _ids = itertools.count(1)

    def __init__(self, url: str, session: aiohttp.ClientSession):
        self.url = url
        self.session = session

    def __repr__(self):
        return f"JsonRpcClient({self.url})"

    async def post(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        """
        POST a raw JSON-RPC payload and return the decoded body

        Raises:
            RemoteCallError: HTTP error status (5xx is retryable, 4xx terminal)
            MalformedResponseError: Body is not a JSON object
        """
        async with self.session.post(self.url, json=payload) as response:
            if response.status >= 400:
                raise RemoteCallError(
                    f"{self.url} responded with status code {response.status}",
                    status=response.status,
                    reason=response.reason,
                )

            try:
                body = await response.json(content_type=None)
            except ValueError as e:
                raise MalformedResponseError(f"{self.url} returned invalid JSON: {e}") from e

        if not isinstance(body, dict):
            raise MalformedResponseError(f"{self.url} returned {type(body).__name__}, expected object")

        return body

    async def call(self, method: str, params: Any = None) -> Any:
        """
        Invoke a JSON-RPC method and return its `result`

        Args:
            method: Method name, e.g. 'condenser_api.get_accounts'
            params: Positional list or keyword dict

        Returns:
            The `result` member of the response
        """
        payload = {
            "jsonrpc": "2.0",
            "method": method,
            "params": params if params is not None else [],
            "id": next(self._ids),
        }
        logger.debug(f"→ {self.url} {method}")

        body = await self.post(payload)

        error: Optional[Dict[str, Any]] = body.get("error")
        if error:
            message = error.get("message", "unknown error") if isinstance(error, dict) else str(error)
            code = error.get("code") if isinstance(error, dict) else None
            raise RemoteCallError(f"{method}: {message}", reason=message, code=code)

        if "result" not in body:
            raise MalformedResponseError(f"{method}: response has no result")

        return body["result"]
