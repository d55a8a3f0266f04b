# cellar/modules/fetch.py
"""
Content fetcher: download sources, resources and bottles into a local cache
and verify their SHA256 before handing them out.

 - urls are tried in order (primary url first, then mirrors)
 - file:// urls and plain local paths are copied, http(s)/ftp use urllib
 - cache entries are named <sha256-prefix>--<basename> and re-verified on use
 - a checksum mismatch deletes the downloaded file and raises immediately;
   nothing unverified is ever returned
"""

from __future__ import annotations
import hashlib
import os
import shutil
import tempfile
import urllib.error
import urllib.parse
import urllib.request
from typing import List, Optional, Sequence

from cellar.modules import logger as _logger
from cellar.modules.errors import ChecksumMismatch, FetchError
from cellar.modules.utils import Utils

USER_AGENT = "cellar/0.1"


class ContentFetcher:
    def __init__(self, cache_dir: str, timeout: int = 60):
        self.cache_dir = os.path.abspath(cache_dir)
        self.timeout = timeout
        self.log = _logger.Logger("fetch")

    # ------------------------
    # Public API
    # ------------------------
    def fetch(self, urls: Sequence[str], sha256: Optional[str]) -> str:
        urls = [u for u in urls if u]
        sha256 = sha256.lower() if sha256 else None
        if not urls:
            raise FetchError([], "no url given")
        Utils.ensure_dir(self.cache_dir)

        cached = self.cache_path(urls[0], sha256)
        if os.path.exists(cached):
            if not sha256 or Utils.sha256sum(cached) == sha256:
                self.log.debug(f"Cache hit: {cached}")
                return cached
            self.log.warning(f"Cached file {cached} is corrupt, downloading again")
            os.remove(cached)

        if not sha256:
            self.log.warning(f"No checksum for {urls[0]}, the download will not be verified")

        errors: List[str] = []
        for url in urls:
            try:
                tmp = self._download(url)
            except (OSError, ValueError, urllib.error.URLError) as e:
                self.log.warning(f"Download failed: {url}: {e}")
                errors.append(f"{url}: {e}")
                continue

            actual = Utils.sha256sum(tmp)
            if sha256 and actual != sha256:
                os.remove(tmp)
                raise ChecksumMismatch(url, sha256, actual)
            os.replace(tmp, cached)
            self.log.info(f"Fetched {url}")
            return cached

        raise FetchError(urls, "; ".join(errors))

    def cache_path(self, url: str, sha256: Optional[str]) -> str:
        basename = os.path.basename(urllib.parse.urlparse(url).path) or "download"
        key = sha256[:16] if sha256 else hashlib.sha256(url.encode("utf-8")).hexdigest()[:16]
        return os.path.join(self.cache_dir, f"{key}--{basename}")

    def clean(self):
        """Remove every cached download."""
        if not os.path.isdir(self.cache_dir):
            return 0
        removed = 0
        for fn in os.listdir(self.cache_dir):
            Utils.remove_tree(os.path.join(self.cache_dir, fn))
            removed += 1
        self.log.info(f"Removed {removed} cached downloads")
        return removed

    # ------------------------
    # Transport
    # ------------------------
    def _download(self, url: str) -> str:
        fd, tmp = tempfile.mkstemp(prefix=".incoming-", dir=self.cache_dir)
        try:
            with os.fdopen(fd, "wb") as out:
                parsed = urllib.parse.urlparse(url)
                if parsed.scheme in ("", "file"):
                    path = urllib.request.url2pathname(parsed.path) if parsed.scheme == "file" else url
                    with open(path, "rb") as src:
                        shutil.copyfileobj(src, out)
                elif parsed.scheme in ("http", "https", "ftp"):
                    req = urllib.request.Request(url, headers={"User-Agent": USER_AGENT})
                    with urllib.request.urlopen(req, timeout=self.timeout) as resp:
                        shutil.copyfileobj(resp, out)
                else:
                    raise ValueError(f"unsupported url scheme: {parsed.scheme}")
        except BaseException:
            os.remove(tmp)
            raise
        return tmp
