"""Release resolution and binary download for Vector-Link artifacts."""
from __future__ import annotations

import logging
import os
import tempfile
from dataclasses import dataclass
from pathlib import Path

import httpx

from ..config import ReleaseConfig
from ..errors import ResolutionError, TransferError

LOGGER = logging.getLogger(__name__)

_CHUNK_SIZE = 64 * 1024


@dataclass(slots=True)
class ReleaseResolver:
    """Resolve versions against the release index and fetch native binaries.

    URL and image composition are pure string operations; only
    :meth:`resolve_version` and :meth:`download` touch the network.
    """

    release: ReleaseConfig
    transport: httpx.BaseTransport | None = None

    def resolve_version(self, pinned: str | None) -> str:
        """Return *pinned* unchanged, or the latest published tag when unset."""
        if pinned and pinned.strip():
            return pinned.strip()
        url = self.latest_release_url()
        LOGGER.debug("querying release index %s", url)
        try:
            with self._client() as client:
                response = client.get(url, headers={"Accept": "application/vnd.github+json"})
        except httpx.HTTPError as exc:
            raise ResolutionError(f"Release index unreachable ({url}): {exc}") from exc
        if response.status_code != 200:
            raise ResolutionError(
                f"Release index query failed (HTTP {response.status_code}): {url}"
            )
        try:
            payload = response.json()
        except ValueError as exc:
            raise ResolutionError(f"Release index returned invalid JSON: {url}") from exc
        tag = payload.get("tag_name") if isinstance(payload, dict) else None
        if not isinstance(tag, str) or not tag.strip():
            raise ResolutionError(
                f"Release index returned no tag for {self.release.repo}; pass --version."
            )
        return tag.strip()

    def latest_release_url(self) -> str:
        """Return the release-index endpoint for the newest release."""
        return f"{self.release.api_base}/repos/{self.release.repo}/releases/latest"

    def build_download_url(self, version: str, os_name: str, arch: str) -> str:
        """Return ``<releases-base>/<version>/<binary>-<os>-<arch>``."""
        base = f"{self.release.download_base}/{self.release.repo}/releases/download"
        return f"{base}/{version}/{self.release.binary_name}-{os_name}-{arch}"

    def build_image_ref(self, tag: str) -> str:
        """Return ``<registry>/<repo>:<tag>``."""
        return f"{self.release.image}:{tag}"

    def download(self, url: str, destination: Path, *, mode: int = 0o755) -> Path:
        """Stream *url* into *destination* atomically.

        The payload lands in a temporary file beside *destination* and is only
        renamed into place after the transfer completes; the temporary file is
        removed on any failure so no partial binary is left behind.
        """
        destination.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(
            prefix=f".{destination.name}.", suffix=".tmp", dir=str(destination.parent)
        )
        tmp_path = Path(tmp_name)
        LOGGER.debug("downloading %s -> %s", url, destination)
        try:
            with os.fdopen(fd, "wb") as handle:
                try:
                    with self._client() as client, client.stream("GET", url) as response:
                        if response.status_code != 200:
                            raise TransferError(
                                f"Download failed (HTTP {response.status_code}): {url}"
                            )
                        for chunk in response.iter_bytes(_CHUNK_SIZE):
                            handle.write(chunk)
                except httpx.HTTPError as exc:
                    raise TransferError(f"Download failed ({url}): {exc}") from exc
                handle.flush()
                os.fsync(handle.fileno())
            if tmp_path.stat().st_size == 0:
                raise TransferError(f"Download produced an empty file: {url}")
            os.chmod(tmp_path, mode)
            os.replace(tmp_path, destination)
        finally:
            if tmp_path.exists():
                tmp_path.unlink()
        return destination

    def _client(self) -> httpx.Client:
        return httpx.Client(
            timeout=self.release.timeout,
            follow_redirects=True,
            transport=self.transport,
        )


__all__ = ["ReleaseResolver"]
