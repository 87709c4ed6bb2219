"""Download of installer packages into the workstation cache."""

import asyncio
import hashlib
import logging
import os
import tempfile
from pathlib import Path

import httpx

from .exceptions import DownloadError

logger = logging.getLogger(__name__)

CHUNK_SIZE = 64 * 1024


def sha256_of(path: Path) -> str:
    digest = hashlib.sha256()
    with open(path, "rb") as f:
        for chunk in iter(lambda: f.read(CHUNK_SIZE), b""):
            digest.update(chunk)
    return digest.hexdigest()


class FileFetcher:
    """Fetch URLs into a cache directory, downloading each file once.

    One fetcher may be shared by all jobs of a run: concurrent requests
    for the same URL wait for the first download instead of repeating it.

    Example:
        >>> fetcher = FileFetcher(Path("~/.chef-workstation/cache").expanduser())
        >>> path = await fetcher.fetch("https://example.com/chef.deb", sha256="0ad0...")
    """

    def __init__(self, cache_path: Path, transport: httpx.AsyncBaseTransport | None = None):
        self.cache_path = Path(cache_path).expanduser()
        self.transport = transport
        self._locks: dict[Path, asyncio.Lock] = {}

    def cache_location(self, url: str) -> Path:
        name = url.rstrip("/").rsplit("/", 1)[-1].split("?", 1)[0]
        if not name:
            raise DownloadError(f"Cannot derive a file name from {url}", url=url)
        return self.cache_path / name

    async def fetch(self, url: str, sha256: str = "") -> Path:
        """Return a local path holding the content of ``url``.

        A cached copy is reused when its checksum matches (or when no
        checksum is known).

        Raises:
            DownloadError: If the download fails or the checksum differs
        """
        destination = self.cache_location(url)
        lock = self._locks.setdefault(destination, asyncio.Lock())
        async with lock:
            if destination.exists():
                if not sha256 or await asyncio.to_thread(sha256_of, destination) == sha256:
                    logger.debug("Using cached %s", destination)
                    return destination
                logger.info("Cached %s has a stale checksum, downloading again", destination)
            await self._download(url, destination)

            if sha256:
                actual = await asyncio.to_thread(sha256_of, destination)
                if actual != sha256:
                    destination.unlink(missing_ok=True)
                    raise DownloadError(
                        f"Checksum mismatch for {url}: expected {sha256}, got {actual}", url=url
                    )
            return destination

    async def _download(self, url: str, destination: Path) -> None:
        destination.parent.mkdir(parents=True, exist_ok=True)
        fd, partial = tempfile.mkstemp(dir=destination.parent, suffix=".part")
        logger.info("Downloading %s", url)
        try:
            with os.fdopen(fd, "wb") as out:
                async with httpx.AsyncClient(
                    transport=self.transport, follow_redirects=True, timeout=60.0
                ) as client:
                    async with client.stream("GET", url) as response:
                        if response.status_code != 200:
                            raise DownloadError(
                                f"Download of {url} failed with HTTP {response.status_code}",
                                url=url,
                            )
                        async for chunk in response.aiter_bytes(CHUNK_SIZE):
                            out.write(chunk)
            os.replace(partial, destination)
        except httpx.HTTPError as e:
            raise DownloadError(f"Download of {url} failed: {e}", url=url) from e
        finally:
            if os.path.exists(partial):
                os.unlink(partial)
