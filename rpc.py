"""
Minimal JSON-RPC 2.0 over HTTP client shared by the relay and sponsor clients
"""

import itertools
import logging
from typing import Any, List

import requests

from errors import JsonRpcError

logger = logging.getLogger(__name__)


class JsonRpcClient:
    """Posts JSON-RPC requests to one endpoint; never retries"""

    def __init__(self, url: str, timeout: int = 30):
        self.url = url
        self.timeout = timeout
        self._ids = itertools.count(1)

    def _make_rpc_request(self, method: str, params: List) -> Any:
        """Make JSON-RPC request and return its `result`; raise JsonRpcError otherwise"""
        payload = {
            "jsonrpc": "2.0",
            "method": method,
            "params": params,
            "id": next(self._ids),
        }

        try:
            response = requests.post(
                self.url,
                json=payload,
                headers={'Content-Type': 'application/json'},
                timeout=self.timeout
            )
        except requests.RequestException as e:
            logger.error(f"{method} request to {self.url} failed: {e}")
            raise JsonRpcError(f"{method} request failed: {e}") from e

        if response.status_code != 200:
            logger.error(f"{method} HTTP error: {response.status_code} {response.text[:200]}")
            raise JsonRpcError(f"{method} HTTP error: {response.status_code}", code=response.status_code)

        try:
            result = response.json()
        except ValueError as e:
            raise JsonRpcError(f"{method} returned a non-JSON body") from e

        if not isinstance(result, dict):
            raise JsonRpcError(f"{method} returned an invalid JSON-RPC response: {result!r}")
        if result.get('error') is not None:
            error = result['error'] if isinstance(result['error'], dict) else {'message': str(result['error'])}
            message = error.get('message', 'Unknown error')
            logger.error(f"{method} error: {message}")
            raise JsonRpcError(f"{method} error: {message}", code=error.get('code'), data=error.get('data'))
        if 'result' not in result:
            raise JsonRpcError(f"{method} response has neither result nor error")

        return result['result']
