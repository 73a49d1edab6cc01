"""
Stacks chain-status provider backed by the Hiro API.
"""

from typing import Any

import httpx
import structlog

from sbtc_monitor.config import ChainSettings

from .interfaces import ChainQueryError, TransactionStatus, normalize_tx_id

logger = structlog.get_logger(__name__)


class HiroStacksProvider:
    """
    Reads transaction status and chain tip from a Stacks API node.

    Endpoints:
    - GET /extended/v1/tx/{tx_id}
    - GET /extended/v1/block?limit=1
    """

    def __init__(
        self,
        api_url: str,
        timeout: float = 10.0,
        client: httpx.AsyncClient | None = None,
    ):
        """
        Args:
            api_url: Base URL of the Stacks API (e.g. https://api.testnet.hiro.so)
            timeout: Per-request timeout in seconds
            client: Optional pre-built client (tests inject a MockTransport)
        """
        self.api_url = api_url.rstrip("/")
        self.client = client or httpx.AsyncClient(timeout=timeout)

    @classmethod
    def from_settings(cls, settings: ChainSettings) -> "HiroStacksProvider":
        return cls(settings.base_url, timeout=settings.request_timeout_seconds)

    async def get_transaction_status(self, tx_id: str) -> TransactionStatus:
        tx_id = normalize_tx_id(tx_id)
        response = await self._get(f"/extended/v1/tx/{tx_id}", allow_missing=True)
        if response is None:
            # Not yet propagated to the API's mempool view
            logger.debug("transaction_not_found", tx_id=tx_id)
            return TransactionStatus.not_found(tx_id)

        payload = self._json(response)
        return TransactionStatus.from_api(tx_id, payload)

    async def get_current_block_height(self) -> int:
        response = await self._get("/extended/v1/block", params={"limit": 1})
        payload = self._json(response)
        try:
            return int(payload["results"][0]["height"])
        except (KeyError, IndexError, TypeError, ValueError) as e:
            raise ChainQueryError(f"Malformed block list response: {e}") from e

    async def _get(
        self,
        path: str,
        params: dict[str, Any] | None = None,
        allow_missing: bool = False,
    ) -> httpx.Response | None:
        url = f"{self.api_url}{path}"
        try:
            response = await self.client.get(url, params=params)
        except httpx.HTTPError as e:
            logger.warning("stacks_api_request_failed", url=url, error=str(e))
            raise ChainQueryError(f"Request to {url} failed: {e}") from e

        if allow_missing and response.status_code == 404:
            return None
        if response.is_error:
            logger.warning(
                "stacks_api_error_status", url=url, status_code=response.status_code
            )
            raise ChainQueryError(
                f"HTTP {response.status_code} from {url}",
                status_code=response.status_code,
            )
        return response

    @staticmethod
    def _json(response: httpx.Response) -> dict[str, Any]:
        try:
            payload = response.json()
        except ValueError as e:
            raise ChainQueryError(f"Invalid JSON from {response.url}: {e}") from e
        if not isinstance(payload, dict):
            raise ChainQueryError(f"Unexpected payload type from {response.url}")
        return payload

    async def close(self):
        """Closes the HTTP client connection."""
        await self.client.aclose()
