"""HTTP retrieval with an ordered mirror fallback.

The agent package is published on several mirrors. :meth:`Downloader.first_available`
walks them in order: the HTTP client is tried first, ``wget`` against the
same URL second, and an attempt only counts when a non-empty file is left
behind. The first mirror that works wins; when none does, a
:class:`~azbuildhost.errors.DownloadError` carries the list of tried URLs
and a pointer to the manual download location.
"""

from __future__ import annotations

import logging
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, List, Optional, Sequence

import httpx

from .errors import DownloadError
from .shell import Runner

logger = logging.getLogger("azbuildhost.download")

AGENT_RELEASES_API = "https://api.github.com/repos/microsoft/azure-pipelines-agent/releases/latest"
AGENT_RELEASES_PAGE = "https://github.com/microsoft/azure-pipelines-agent/releases"
FALLBACK_AGENT_VERSION = "3.243.1"

ClientFactory = Callable[..., httpx.Client]


def default_staging_dir() -> Path:
    return Path(tempfile.gettempdir()) / "azbuildhost"


@dataclass
class Attempt:
    url: str
    method: str
    ok: bool
    error: Optional[str] = None


def agent_package_name(version: str) -> str:
    return f"vsts-agent-linux-x64-{version}.tar.gz"


def agent_download_urls(version: str) -> List[str]:
    package = agent_package_name(version)
    return [
        f"https://download.agent.dev.azure.com/agent/{version}/{package}",
        f"https://github.com/microsoft/azure-pipelines-agent/releases/download/v{version}/{package}",
        f"https://vstsagentpackage.azureedge.net/agent/{version}/{package}",
    ]


def _usable(path: Path) -> bool:
    try:
        return path.is_file() and path.stat().st_size > 0
    except OSError:
        return False


def _discard(path: Path) -> None:
    try:
        path.unlink()
    except OSError:
        pass


class Downloader:
    def __init__(
        self,
        runner: Runner,
        *,
        client_factory: ClientFactory = httpx.Client,
        timeout: float = 300.0,
    ) -> None:
        self.runner = runner
        self.client_factory = client_factory
        self.timeout = timeout
        self.attempts: List[Attempt] = []

    def _client(self, timeout: float | None = None) -> httpx.Client:
        return self.client_factory(timeout=timeout or self.timeout, follow_redirects=True)

    # -- small fetches -------------------------------------------------
    def get_text(self, url: str, timeout: float = 30.0) -> str:
        with self._client(timeout) as client:
            response = client.get(url)
            response.raise_for_status()
        return response.text

    def get_json(self, url: str, timeout: float = 30.0) -> object:
        with self._client(timeout) as client:
            response = client.get(url, headers={"Accept": "application/json"})
            response.raise_for_status()
        return response.json()

    def lookup_version(self, url: str, *, key: str = "tag_name", strip_v: bool = True) -> Optional[str]:
        """Read ``key`` from a "latest release" JSON document.

        Returns None on any HTTP or decoding failure and for an empty or
        ``null`` value.
        """
        try:
            payload = self.get_json(url)
        except (httpx.HTTPError, ValueError) as exc:
            logger.warning("version lookup failed for %s: %s", url, exc)
            return None
        value = payload.get(key) if isinstance(payload, dict) else None
        version = str(value).strip() if value is not None else ""
        if not version or version == "null":
            logger.warning("no usable %r in %s", key, url)
            return None
        if strip_v and version.startswith("v"):
            version = version[1:]
        return version

    # -- file downloads ------------------------------------------------
    def fetch_http(self, url: str, dest: Path) -> bool:
        try:
            dest.parent.mkdir(parents=True, exist_ok=True)
            with self._client() as client:
                with client.stream("GET", url) as response:
                    response.raise_for_status()
                    with open(dest, "wb") as fh:
                        for chunk in response.iter_bytes():
                            fh.write(chunk)
        except (httpx.HTTPError, OSError) as exc:
            self.attempts.append(Attempt(url, "http", False, str(exc)))
            logger.info("http download failed for %s: %s", url, exc)
            _discard(dest)
            return False
        ok = _usable(dest)
        self.attempts.append(Attempt(url, "http", ok, None if ok else "empty file"))
        return ok

    def fetch_wget(self, url: str, dest: Path) -> bool:
        result = self.runner.run(["wget", "-q", "-O", str(dest), url], capture=True, check=False)
        ok = result.ok and _usable(dest)
        self.attempts.append(Attempt(url, "wget", ok, None if ok else result.stdout.strip() or "empty file"))
        if not ok:
            _discard(dest)
        return ok

    def fetch(self, url: str, dest: Path) -> bool:
        if self.fetch_http(url, dest):
            return True
        return self.fetch_wget(url, dest)

    def download(self, url: str, dest: Path) -> Path:
        """Single-source download; raises DownloadError on failure."""
        if self.runner.dry_run:
            logger.info("[dry-run] would download %s -> %s", url, dest)
            return dest
        if not self.fetch(url, dest):
            raise DownloadError([url])
        return dest

    def first_available(
        self,
        urls: Sequence[str],
        dest: Path,
        *,
        hint: str = "",
        on_attempt: Optional[Callable[[str], None]] = None,
        on_failure: Optional[Callable[[str], None]] = None,
    ) -> str:
        """Download ``dest`` from the first URL that works and return that URL."""
        if self.runner.dry_run:
            logger.info("[dry-run] would download %s -> %s", urls[0] if urls else "<none>", dest)
            return urls[0] if urls else ""
        for url in urls:
            if on_attempt:
                on_attempt(url)
            if self.fetch(url, dest):
                logger.info("downloaded %s -> %s", url, dest)
                return url
            if on_failure:
                on_failure(url)
        raise DownloadError(urls, hint)


__all__ = [
    "AGENT_RELEASES_API",
    "AGENT_RELEASES_PAGE",
    "FALLBACK_AGENT_VERSION",
    "Attempt",
    "Downloader",
    "agent_download_urls",
    "agent_package_name",
    "default_staging_dir",
]
