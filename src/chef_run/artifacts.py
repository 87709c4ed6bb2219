"""Lookup of chef-client installer packages.

The artifact metadata service answers with one ``key<TAB>value`` pair per
line, for example::

    sha256  0ad0f4...
    url     https://packages.chef.io/files/stable/chef/18.2.7/ubuntu/22.04/chef_18.2.7-1_amd64.deb
    version 18.2.7
"""

import logging

import httpx

from .config import RunConfig
from .exceptions import ArtifactLookupError
from .types import ArtifactInfo, Platform

logger = logging.getLogger(__name__)

# Platform names understood by the metadata service, keyed by family.
PLATFORM_NAMES = {
    "rhel": "el",
    "amazon": "amazon",
    "fedora": "el",
    "suse": "sles",
    "mac_os_x": "mac_os_x",
    "windows": "windows",
}

ARCHITECTURES = {
    "amd64": "x86_64",
    "x64": "x86_64",
    "arm64": "aarch64",
    "i686": "i386",
}


def metadata_params(platform: Platform, version: str = "latest") -> dict[str, str]:
    """Query parameters describing ``platform`` to the metadata service."""
    name = PLATFORM_NAMES.get(platform.family, platform.name)
    release = platform.release
    if name in ("el", "sles"):
        release = release.split(".", 1)[0]
    elif name == "windows":
        release = "2016"
    return {
        "p": name,
        "pv": release,
        "m": ARCHITECTURES.get(platform.arch, platform.arch),
        "v": version,
    }


def parse_metadata(text: str) -> dict[str, str]:
    values = {}
    for line in text.splitlines():
        key, sep, value = line.strip().partition("\t")
        if sep:
            values[key.strip()] = value.strip()
    return values


class ArtifactLookup:
    """Find the installer package for a platform.

    Args:
        config: Run configuration providing the service URL and channel
        transport: Optional httpx transport, used by tests
    """

    def __init__(self, config: RunConfig, transport: httpx.AsyncBaseTransport | None = None):
        self.base_url = config.chef.artifact_url.rstrip("/")
        self.channel = config.chef.channel
        self.transport = transport

    def metadata_url(self) -> str:
        return f"{self.base_url}/{self.channel}/chef/metadata"

    async def lookup(self, platform: Platform, host: str = "") -> ArtifactInfo:
        """Return the latest package matching ``platform``.

        Raises:
            ArtifactLookupError: If the service fails or has no package
        """
        params = metadata_params(platform)
        url = self.metadata_url()
        logger.debug("Looking up artifact %s %s", url, params)
        try:
            async with httpx.AsyncClient(
                transport=self.transport, follow_redirects=True, timeout=30.0
            ) as client:
                response = await client.get(url, params=params)
        except httpx.HTTPError as e:
            raise ArtifactLookupError(f"Artifact lookup failed: {e}", host=host) from e

        if response.status_code != 200:
            raise ArtifactLookupError(
                f"No chef-client package for {params['p']} {params['pv']} {params['m']} "
                f"(HTTP {response.status_code})",
                host=host,
            )

        values = parse_metadata(response.text)
        if "url" not in values or "version" not in values:
            raise ArtifactLookupError(
                f"Incomplete artifact metadata from {url}: {response.text[:200]!r}", host=host
            )
        return ArtifactInfo(
            url=values["url"],
            version=values["version"],
            sha256=values.get("sha256", ""),
            platform=params["p"],
            arch=params["m"],
        )
