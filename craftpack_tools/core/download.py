"""Streaming file downloads with retry and digest verification."""

from __future__ import annotations

import asyncio
import os
from pathlib import Path

import httpx
import structlog

from craftpack_tools.core.cancellation import CancellationToken
from craftpack_tools.core.config import CatalogConfig
from craftpack_tools.core.errors import FileSystemError, NetworkError
from craftpack_tools.core.hasher import ContentHasher
from craftpack_tools.core.integrity import IntegrityError, file_matches, verify_file_digest

logger = structlog.get_logger()


class Downloader:
    """Downloads URLs to files atomically.

    Data is streamed to ``<destination>.part`` and moved into place only
    after the SHA-1 check passes. Transient failures are retried with
    exponential backoff; digest mismatches are retried too, since a
    truncated response looks the same as a corrupt one.

    Args:
        config: Timeout, retry and user agent settings
        hasher: Hasher used for verification
        transport: Optional httpx transport (tests use httpx.MockTransport)
    """

    def __init__(
        self,
        config: CatalogConfig | None = None,
        hasher: ContentHasher | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.config = config or CatalogConfig()
        self.hasher = hasher or ContentHasher()
        self._transport = transport
        self._async_client: httpx.AsyncClient | None = None

    @property
    def async_client(self) -> httpx.AsyncClient:
        """Get or create async HTTP client."""
        if self._async_client is None:
            self._async_client = httpx.AsyncClient(
                timeout=self.config.timeout,
                headers={"User-Agent": self.config.user_agent},
                follow_redirects=True,
                transport=self._transport,
            )
        return self._async_client

    async def download(
        self,
        url: str,
        destination: Path,
        expected_sha1: str | None = None,
        token: CancellationToken | None = None,
    ) -> Path:
        """Download ``url`` to ``destination``.

        Skips the request when the destination already has the expected
        digest.

        Args:
            url: Source URL
            destination: Final file path
            expected_sha1: Digest the content must have, if known
            token: Checked before each attempt

        Returns:
            The destination path

        Raises:
            NetworkError: If every attempt failed at the HTTP level
            IntegrityError: If every attempt produced the wrong digest
            FileSystemError: If the file cannot be written
            OperationCancelled: If cancelled between attempts
        """
        if expected_sha1 is not None and await asyncio.to_thread(file_matches, destination, expected_sha1, self.hasher):
            logger.debug("download_skipped_existing", path=str(destination))
            return destination

        try:
            destination.parent.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise FileSystemError(f"Cannot create {destination.parent}: {e}", path=str(destination)) from e

        part_path = destination.with_name(destination.name + ".part")
        last_error: Exception | None = None

        for attempt in range(1, self.config.max_retries + 1):
            if token is not None:
                token.raise_if_cancelled()
            try:
                await self._fetch_to(url, part_path)
                if expected_sha1 is not None:
                    await asyncio.to_thread(verify_file_digest, part_path, expected_sha1, self.hasher)
                os.replace(part_path, destination)
                logger.debug("download_complete", url=url, path=str(destination), attempts=attempt)
                return destination
            except (httpx.HTTPError, IntegrityError) as e:
                last_error = e
                self._discard(part_path)
                logger.debug("download_retry", url=url, attempt=attempt, error=str(e))
            except OSError as e:
                self._discard(part_path)
                raise FileSystemError(f"Cannot write {destination}: {e}", path=str(destination)) from e

            if attempt < self.config.max_retries:
                await asyncio.sleep(self.config.base_backoff * (2 ** (attempt - 1)))

        self._discard(part_path)
        logger.warning("download_failed", url=url, error=str(last_error))
        if isinstance(last_error, IntegrityError):
            raise last_error
        status = None
        if isinstance(last_error, httpx.HTTPStatusError):
            status = last_error.response.status_code
        raise NetworkError(f"Failed to download {url}: {last_error}", url=url, status_code=status)

    async def _fetch_to(self, url: str, path: Path) -> None:
        async with self.async_client.stream("GET", url) as response:
            response.raise_for_status()
            with open(path, "wb") as f:
                async for chunk in response.aiter_bytes():
                    f.write(chunk)

    @staticmethod
    def _discard(path: Path) -> None:
        try:
            path.unlink(missing_ok=True)
        except OSError as e:
            logger.debug("partial_file_cleanup_failed", path=str(path), error=str(e))

    async def aclose(self) -> None:
        """Close the HTTP client."""
        if self._async_client is not None:
            await self._async_client.aclose()
            self._async_client = None
