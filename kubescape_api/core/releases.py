"""Queries against the kubescape GitHub release registry."""

import logging
from typing import Any, Dict, Optional

import httpx

from .errors import ReleaseLookupError

logger = logging.getLogger(__name__)

RELEASES_LATEST_URL = "https://api.github.com/repos/kubescape/kubescape/releases/latest"
RELEASES_DOWNLOAD_URL = "https://github.com/kubescape/kubescape/releases/download"


def release_asset_url(version: str, asset_name: str) -> str:
    """Download URL of ``asset_name`` published under release ``version``."""
    return f"{RELEASES_DOWNLOAD_URL}/{version}/{asset_name}"


class ReleaseFetcher:
    """Looks up the latest kubescape release.

    No retries: every failure surfaces as ReleaseLookupError and the caller
    decides whether that is fatal.
    """

    def __init__(
        self,
        client: Optional[httpx.AsyncClient] = None,
        url: str = RELEASES_LATEST_URL,
        timeout: float = 30,
    ):
        self.client = client
        self.url = url
        self.timeout = timeout

    async def latest_release(self) -> Dict[str, Any]:
        try:
            if self.client is not None:
                resp = await self.client.get(self.url)
                resp.raise_for_status()
                release = resp.json()
            else:
                async with httpx.AsyncClient(
                    follow_redirects=True, timeout=self.timeout
                ) as client:
                    resp = await client.get(self.url)
                    resp.raise_for_status()
                    release = resp.json()
        except httpx.HTTPError as e:
            raise ReleaseLookupError(f"Failed to query {self.url}: {e}") from e
        except ValueError as e:
            raise ReleaseLookupError(f"Invalid release metadata from {self.url}: {e}") from e

        if not isinstance(release, dict):
            raise ReleaseLookupError(f"Invalid release metadata from {self.url}")
        return release

    async def latest_tag(self) -> str:
        release = await self.latest_release()
        tag = release.get("tag_name")
        if not tag:
            raise ReleaseLookupError("Latest release has no tag_name")
        logger.debug(f"Latest kubescape release: {tag}")
        return tag

    async def latest_download_url(self) -> str:
        """Base download URL of the latest release (asset name not included)."""
        release = await self.latest_release()
        html_url = release.get("html_url")
        if not html_url:
            raise ReleaseLookupError("Latest release has no html_url")
        return html_url.replace("/tag/", "/download/")
