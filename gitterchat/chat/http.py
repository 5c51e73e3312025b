"""
Authenticated HTTP transport for the Gitter API.
"""

import asyncio
import json
import logging
from typing import Any, Dict, Optional

import aiohttp

from gitterchat.chat.exceptions import (
    GitterAPIError,
    GitterConnectionError,
    GitterDecodeError,
)

logger = logging.getLogger(__name__)


class HttpTransport:
    """
    Issues authenticated requests against the Gitter API.

    Owns an ``aiohttp.ClientSession`` unless one is supplied by the caller,
    in which case the caller is responsible for closing it.
    """

    def __init__(
        self,
        token: str,
        session: Optional[aiohttp.ClientSession] = None,
        timeout: float = 30.0,
    ):
        """
        Initialize transport.

        Args:
            token: OAuth access token sent as a bearer token
            session: Optional externally managed client session
            timeout: Timeout in seconds for plain request/response calls
        """
        self._token = token
        self._session = session
        self._owns_session = session is None
        self._timeout = timeout

    @property
    def headers(self) -> Dict[str, str]:
        return {
            "Content-Type": "application/json",
            "Accept": "application/json",
            "Authorization": f"Bearer {self._token}",
        }

    def set_session(self, session: aiohttp.ClientSession) -> None:
        """Use a caller-provided session from now on."""
        self._session = session
        self._owns_session = False

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession()
            self._owns_session = True
        return self._session

    async def get_response(self, url: str) -> aiohttp.ClientResponse:
        """
        Open a GET request and return the live response.

        The body is not read; the caller owns the response and must close it.
        No total timeout is applied so the body can be consumed as a
        long-lived stream.

        Raises:
            GitterConnectionError: If the request could not be made
        """
        session = self._get_session()
        timeout = aiohttp.ClientTimeout(
            total=None, sock_connect=self._timeout, sock_read=None
        )
        try:
            return await session.get(url, headers=self.headers, timeout=timeout)
        except (aiohttp.ClientError, asyncio.TimeoutError, OSError) as e:
            logger.debug(f"GET {url} failed: {e}")
            raise GitterConnectionError(f"Network error: {e}") from e

    async def get_json(self, url: str, params: Optional[Dict[str, str]] = None) -> Any:
        """
        GET ``url`` and decode the JSON body.

        Raises:
            GitterConnectionError: If the request could not be made
            GitterAPIError: If the API answered with an error status
            GitterDecodeError: If the body is not JSON
        """
        return await self._request("GET", url, params=params)

    async def post_json(self, url: str, body: Dict[str, Any]) -> Any:
        """POST a JSON body to ``url`` and decode the JSON reply."""
        return await self._request("POST", url, body=body)

    async def _request(
        self,
        method: str,
        url: str,
        params: Optional[Dict[str, str]] = None,
        body: Optional[Dict[str, Any]] = None,
    ) -> Any:
        session = self._get_session()
        timeout = aiohttp.ClientTimeout(total=self._timeout)
        data = json.dumps(body) if body is not None else None

        try:
            async with session.request(
                method,
                url,
                params=params,
                data=data,
                headers=self.headers,
                timeout=timeout,
            ) as response:
                if response.status >= 400:
                    raise GitterAPIError(
                        f"Status code: {response.status}", status=response.status
                    )

                text = await response.text()

        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise GitterConnectionError(f"Network error: {e}") from e

        if not text.strip():
            return None

        try:
            return json.loads(text)
        except json.JSONDecodeError as e:
            raise GitterDecodeError(f"Invalid JSON from {method} {url}: {e}") from e

    async def close(self) -> None:
        """Close the session if this transport created it."""
        if self._owns_session and self._session is not None and not self._session.closed:
            await self._session.close()
        self._session = None
