"""Fetching and size-probing of audio locators."""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from urllib.parse import urlparse

from aiohttp import ClientError, ClientTimeout
from aiohttp.client import ClientSession

from aiosoundstage.models.types import LoadMode

AUTO_LOAD_THRESHOLD = 10 * 1024 * 1024
"""Files smaller than this (bytes) are decoded fully in auto mode, larger ones streamed."""


def is_remote(locator: str) -> bool:
    """Whether locator is an http(s) URL."""
    return urlparse(locator).scheme in ("http", "https")


class AudioLoader:
    """
    Retrieves encoded audio and probes its size.

    HTTP(S) locators go through aiohttp, anything else is read as a local file path.
    """

    _client_session: ClientSession | None
    """Session used for HTTP requests, created on first use when not injected."""
    _owns_session: bool
    """Whether this loader created (and must close) the client session."""

    def __init__(
        self,
        loop: asyncio.AbstractEventLoop,
        *,
        client_session: ClientSession | None = None,
        logger: logging.Logger | logging.LoggerAdapter | None = None,  # type: ignore[type-arg]
    ) -> None:
        """
        Initialize the loader.

        Args:
            loop: Event loop the loader runs on.
            client_session: Optional ClientSession for HTTP requests.
                If None, a new session will be created when first needed.
            logger: Logger to report through.
        """
        self._loop = loop
        self._client_session = client_session
        self._owns_session = client_session is None
        self._logger = logger if logger is not None else logging.getLogger(__name__)
        self.fetch_count = 0

    def _session(self) -> ClientSession:
        if self._client_session is None or self._client_session.closed:
            self._client_session = ClientSession(timeout=ClientTimeout(total=30))
            self._owns_session = True
        return self._client_session

    async def probe_size(self, locator: str) -> int | None:
        """
        Return the size in bytes of the resource at locator, None if unknown.

        Raises:
            ClientError, TimeoutError, OSError: When the probe itself fails.
            ValueError: If locator is not a valid URL or path.
        """
        if is_remote(locator):
            async with self._session().head(locator, allow_redirects=True) as resp:
                if not resp.ok:
                    self._logger.debug("Size probe of %s returned HTTP %d", locator, resp.status)
                    return None
                length = resp.headers.get("Content-Length")
                if length is None:
                    return None
                try:
                    return int(length)
                except ValueError:
                    return None
        stat = await asyncio.to_thread(Path(locator).stat)
        return stat.st_size

    async def fetch(self, locator: str) -> bytes:
        """
        Retrieve the encoded bytes at locator.

        Raises:
            ClientError, TimeoutError, OSError: When retrieval fails.
            ValueError: If locator is not a valid URL or path.
        """
        self.fetch_count += 1
        if is_remote(locator):
            async with self._session().get(locator) as resp:
                resp.raise_for_status()
                return await resp.read()
        return await asyncio.to_thread(Path(locator).read_bytes)

    async def resolve_load_mode(self, locator: str, mode: LoadMode) -> LoadMode:
        """
        Turn AUTO into STREAM or FULL; other modes are returned unchanged.

        Probe failures never propagate, they fall back to STREAM.
        """
        if mode != LoadMode.AUTO:
            return mode
        try:
            size = await self.probe_size(locator)
        except (ClientError, TimeoutError, OSError, ValueError) as err:
            self._logger.warning("Size probe failed for %s, streaming instead: %s", locator, err)
            return LoadMode.STREAM
        if size is None:
            return LoadMode.STREAM
        resolved = LoadMode.FULL if size < AUTO_LOAD_THRESHOLD else LoadMode.STREAM
        self._logger.debug("Resolved %s (%d bytes) to %s", locator, size, resolved.value)
        return resolved

    async def close(self) -> None:
        """Close the client session if this loader owns it."""
        if self._owns_session and self._client_session is not None and not self._client_session.closed:
            await self._client_session.close()
            self._logger.debug("Closed internal client session of audio loader")
