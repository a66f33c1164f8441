# sf_oauth_flows/transport.py
"""Executes OutboundRequests with httpx."""

import logging
from typing import Optional

import httpx
from pydantic import BaseModel

from .models import OutboundRequest

logger = logging.getLogger(__name__)


class TransportResponse(BaseModel):
    """Body of a provider response, or the transport error that prevented one."""

    status_code: Optional[int] = None
    body: Optional[str] = None
    error: Optional[str] = None

    @property
    def failed(self) -> bool:
        return self.error is not None


class HttpExecutor:
    """Sends flow requests to the provider over an httpx.AsyncClient."""

    def __init__(
        self, client: Optional[httpx.AsyncClient] = None, timeout: float = 30.0
    ):
        """
        Initialize executor.

        Args:
            client: Client to use (a private one is created if not provided)
            timeout: Request timeout in seconds for the private client
        """
        self._owns_client = client is None
        self.client = client or httpx.AsyncClient(timeout=timeout)

    async def __aenter__(self) -> "HttpExecutor":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._owns_client:
            await self.client.aclose()

    async def execute(self, request: OutboundRequest) -> TransportResponse:
        """
        Execute a request.

        HTTP error statuses are returned as bodies; the token endpoint reports
        OAuth errors as JSON with a 400 status. Only failures to reach the
        provider set ``error``.
        """
        logger.debug(f"{request.method} {request.url.split('?')[0]}")
        try:
            response = await self.client.request(
                request.method,
                request.url,
                headers=request.headers,
                content=request.body,
            )
        except httpx.HTTPError as e:
            logger.warning(f"Request to {request.url.split('?')[0]} failed: {e}")
            return TransportResponse(error=f"{type(e).__name__}: {e}")

        logger.debug(f"Provider answered {response.status_code}")
        return TransportResponse(status_code=response.status_code, body=response.text)
