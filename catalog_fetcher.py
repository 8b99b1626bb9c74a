"""
Catalog Fetcher
Downloads the community addon index and caches it on disk with its ETag
"""

import json
import logging
from datetime import datetime, timezone
from pathlib import Path

import requests

from catalog import parse_catalog
from download_orchestrator import USER_AGENT
from errors import CatalogFetchError

logger = logging.getLogger(__name__)

DEFAULT_INDEX_URL = 'https://xop.co/eso-addon-index/'
DEFAULT_MAX_AGE = 3600


class CatalogFetcher:
    def __init__(self, cache_dir, url=DEFAULT_INDEX_URL, session=None, max_age=DEFAULT_MAX_AGE, timeout=15):
        """Initialize the fetcher.

        Args:
            cache_dir: str/Path - Directory for index-cache.json
            url: str - Catalog document URL
            session: Optional requests.Session - HTTP session to reuse
            max_age: int - Seconds a cached catalog is served without a request
            timeout: float - Request timeout in seconds
        """
        self.cache_file = Path(cache_dir) / 'index-cache.json'
        self.url = url
        self.session = session or requests.Session()
        self.max_age = max_age
        self.timeout = timeout

    def _load_cache(self):
        if not self.cache_file.exists():
            return None
        try:
            with open(self.cache_file, 'r', encoding='utf-8') as f:
                cache = json.load(f)
        except (OSError, ValueError) as e:
            logger.warning("Ignoring unreadable catalog cache %s: %s", self.cache_file, e)
            return None
        if not isinstance(cache, dict) or 'data' not in cache:
            return None
        return cache

    def _save_cache(self, data, etag):
        cache = {
            'data': data,
            'fetched_at': datetime.now(timezone.utc).isoformat(),
            'etag': etag,
            'url': self.url
        }
        try:
            self.cache_file.parent.mkdir(parents=True, exist_ok=True)
            with open(self.cache_file, 'w', encoding='utf-8') as f:
                json.dump(cache, f)
        except OSError as e:
            logger.warning("Could not write catalog cache: %s", e)
        return cache

    def _cache_age(self, cache):
        try:
            fetched = datetime.fromisoformat(cache['fetched_at'])
        except (KeyError, TypeError, ValueError):
            return None
        if fetched.tzinfo is None:
            fetched = fetched.replace(tzinfo=timezone.utc)
        return (datetime.now(timezone.utc) - fetched).total_seconds()

    def _snapshot(self, cache):
        return parse_catalog(cache['data'], fetched_at=cache.get('fetched_at'))

    def cached_catalog(self):
        """The cached snapshot without touching the network, or None."""
        cache = self._load_cache()
        return self._snapshot(cache) if cache else None

    def fetch_catalog(self, force_refresh=False):
        """Return the catalog, refreshing it from the network when needed.

        Without force_refresh a fresh cache is returned as is, and a stale one
        is revalidated with If-None-Match. Network failures fall back to any
        cached copy.

        Returns:
            CatalogSnapshot

        Raises:
            CatalogFetchError - no network copy and nothing cached
        """
        cache = None if force_refresh else self._load_cache()
        if cache is not None and cache.get('url', self.url) != self.url:
            cache = None

        if cache is not None:
            age = self._cache_age(cache)
            if age is not None and age < self.max_age:
                return self._snapshot(cache)

        headers = {'User-Agent': USER_AGENT}
        if cache is not None and cache.get('etag'):
            headers['If-None-Match'] = cache['etag']

        try:
            response = self.session.get(self.url, headers=headers, timeout=self.timeout)
            if response.status_code == 304 and cache is not None:
                logger.info("Catalog not modified since %s", cache.get('fetched_at'))
                cache = self._save_cache(cache['data'], cache.get('etag'))
                return self._snapshot(cache)
            response.raise_for_status()
            data = response.json()
        except (requests.RequestException, ValueError) as e:
            fallback = cache or self._load_cache()
            if fallback is not None:
                logger.warning("Catalog refresh failed, using cached copy: %s", e)
                return self._snapshot(fallback)
            raise CatalogFetchError(f'Failed to fetch catalog from {self.url}: {e}') from e

        cache = self._save_cache(data, response.headers.get('ETag'))
        snapshot = self._snapshot(cache)
        logger.info("Fetched catalog with %d addons", len(snapshot))
        return snapshot
