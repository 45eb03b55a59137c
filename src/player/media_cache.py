"""
Media Cache - content-addressed local copies of media URLs.

Each URL maps to ``<sha256(url)><ext>`` inside the cache directory. The
rotation loop asks for a cached copy before using the remote URL; the player
prefetches every URL of a freshly resolved playlist and prunes files the
playlist no longer references. When the cache grows past its size limit the
least recently used files are evicted (access time is tracked via mtime).
"""

import hashlib
import os
from pathlib import Path
from typing import Iterable, List, Optional
from urllib.parse import urlparse

import requests

from src.common.logger import setup_logger

logger = setup_logger(__name__)


class MediaCache:
    """Local file cache keyed by media URL."""

    DOWNLOAD_TIMEOUT = 60
    CHUNK_SIZE = 8192
    DEFAULT_MAX_SIZE = 5 * 1024 ** 3  # 5 GB

    def __init__(self, cache_dir: str, max_size_bytes: int = DEFAULT_MAX_SIZE):
        self.cache_dir = Path(cache_dir)
        self.cache_dir.mkdir(parents=True, exist_ok=True)
        self.max_size_bytes = max_size_bytes

    def path_for(self, url: str) -> Path:
        """Cache file path for a URL (whether or not it exists)."""
        digest = hashlib.sha256(url.encode('utf-8')).hexdigest()
        ext = os.path.splitext(urlparse(url).path)[1] or '.bin'
        return self.cache_dir / f"{digest}{ext}"

    def is_cached(self, url: str) -> bool:
        return self._has_content(self.path_for(url))

    def resolve(self, url: str) -> Optional[str]:
        """
        Get a file URI for the cached copy of ``url``.

        Returns:
            ``file://`` URI if cached, otherwise None
        """
        path = self.path_for(url)
        if not self._has_content(path):
            return None
        try:
            # Refresh LRU position without recreating a file evicted meanwhile
            os.utime(path)
        except FileNotFoundError:
            return None
        return path.resolve().as_uri()

    def download(self, url: str) -> Optional[Path]:
        """
        Download ``url`` into the cache if not already present.

        Returns:
            Path of the cached file, or None if the download failed
        """
        path = self.path_for(url)
        if self._has_content(path):
            return path

        tmp_path = path.with_suffix(path.suffix + '.part')
        try:
            logger.info(f"Caching {url}")
            with requests.get(url, stream=True, timeout=self.DOWNLOAD_TIMEOUT) as response:
                if response.status_code != 200:
                    logger.warning(f"Failed to cache {url}: HTTP {response.status_code}")
                    return None
                with open(tmp_path, 'wb') as f:
                    for chunk in response.iter_content(chunk_size=self.CHUNK_SIZE):
                        if chunk:
                            f.write(chunk)
            tmp_path.replace(path)
        except (requests.RequestException, OSError) as e:
            logger.warning(f"Error caching {url}: {e}")
            if tmp_path.exists():
                tmp_path.unlink()
            return None

        self._enforce_size_limit(keep=path)
        return path

    def prefetch(self, urls: Iterable[str]) -> int:
        """
        Download every URL not yet cached.

        Returns:
            Number of URLs available in the cache afterwards
        """
        available = 0
        for url in urls:
            if self.download(url) is not None:
                available += 1
        return available

    def prune(self, keep_urls: Iterable[str]) -> int:
        """
        Delete cached files whose URL is not in ``keep_urls``.

        Returns:
            Number of files removed
        """
        keep = {self.path_for(url).name for url in keep_urls}
        removed = 0
        for path in self._entries():
            if path.name not in keep:
                path.unlink(missing_ok=True)
                removed += 1
        if removed:
            logger.info(f"Pruned {removed} unreferenced cache entries")
        return removed

    def total_size(self) -> int:
        return sum(path.stat().st_size for path in self._entries())

    def _entries(self) -> List[Path]:
        return [
            path for path in self.cache_dir.iterdir()
            if path.is_file() and not path.name.endswith('.part')
        ]

    def _enforce_size_limit(self, keep: Path) -> None:
        entries = sorted(self._entries(), key=lambda p: p.stat().st_mtime)
        total = sum(p.stat().st_size for p in entries)

        for path in entries:
            if total <= self.max_size_bytes:
                break
            if path == keep:
                continue
            total -= path.stat().st_size
            path.unlink(missing_ok=True)
            logger.info(f"Evicted {path.name} from cache")

    @staticmethod
    def _has_content(path: Path) -> bool:
        try:
            return path.stat().st_size > 0
        except FileNotFoundError:
            return False
