"""
Catalog
Canonical in-memory view of the community addon index
"""

import logging
from dataclasses import dataclass, field
from typing import Dict, Optional, Tuple

from slug_matcher import normalize_slug

logger = logging.getLogger(__name__)

# Install methods used by the catalog publisher, mapped onto internal names
INSTALL_METHODS = {
    'branch': 'branch',
    'release': 'release',
    'archive': 'archive',
    'github_release': 'release',
    'github_archive': 'archive',
}


@dataclass(frozen=True)
class DownloadSource:
    """One candidate location for an addon archive.

    The kind is only used for diagnostics ('jsdelivr', 'github_archive',
    'github_release', 'legacy', ...).
    """
    url: str
    kind: str = 'direct'


@dataclass(frozen=True)
class SourceDescriptor:
    source_type: str = 'github'
    repo: str = ''
    branch: str = 'main'
    path: Optional[str] = None

    def branch_archive_url(self):
        if self.source_type != 'github' or not self.repo:
            return None
        return f"https://github.com/{self.repo}/archive/refs/heads/{self.branch}.zip"


@dataclass(frozen=True)
class InstallDescriptor:
    method: str
    target_folder: str
    extract_path: Optional[str] = None
    excludes: Tuple[str, ...] = ()


@dataclass(frozen=True)
class LatestRelease:
    version: str
    download_sources: Tuple[DownloadSource, ...] = ()
    download_url: Optional[str] = None
    version_sort_key: Optional[int] = None
    commit_sha: Optional[str] = None
    checksum: Optional[str] = None
    release_channel: Optional[str] = None
    published_at: Optional[str] = None
    file_size: Optional[int] = None

    def candidate_sources(self):
        """Sources in preference order, falling back to the legacy single URL."""
        if self.download_sources:
            return list(self.download_sources)
        if self.download_url:
            return [DownloadSource(self.download_url, 'legacy')]
        return []


@dataclass(frozen=True)
class CatalogEntry:
    slug: str
    name: str
    install: InstallDescriptor
    source: SourceDescriptor = field(default_factory=SourceDescriptor)
    description: str = ''
    authors: Tuple[str, ...] = ()
    tags: Tuple[str, ...] = ()
    url: Optional[str] = None
    required_dependency_slugs: Tuple[str, ...] = ()
    optional_dependency_slugs: Tuple[str, ...] = ()
    latest_release: Optional[LatestRelease] = None

    def version_label(self):
        if self.latest_release is not None:
            return self.latest_release.version
        return f"{self.source.branch}-latest"

    def download_candidates(self):
        """All sources to try for this entry, branch archive last."""
        sources = self.latest_release.candidate_sources() if self.latest_release else []
        if not sources:
            branch_url = self.source.branch_archive_url()
            if branch_url:
                sources.append(DownloadSource(branch_url, 'github_branch'))
        return sources


class CatalogSnapshot:
    def __init__(self, entries, fetched_at=None, format_version=None):
        """Immutable view of the catalog at one point in time.

        Args:
            entries: iterable - CatalogEntry objects
            fetched_at: Optional str - ISO timestamp of the fetch
            format_version: Optional str - catalog document version
        """
        self._entries = tuple(entries)
        self._by_slug = {entry.slug: entry for entry in self._entries}
        self._by_lower = {entry.slug.lower(): entry for entry in self._entries}
        self._by_base = {}
        for entry in self._entries:
            self._by_base.setdefault(normalize_slug(entry.slug), entry)
        self.fetched_at = fetched_at
        self.format_version = format_version

    @property
    def entries(self):
        return self._entries

    def __len__(self):
        return len(self._entries)

    def __iter__(self):
        return iter(self._entries)

    def __contains__(self, slug):
        return self.find(slug) is not None

    def get(self, slug):
        """Exact slug lookup."""
        return self._by_slug.get(slug)

    def find(self, slug):
        """Look up a slug exactly, then case-insensitively, then by normalized base name.

        Args:
            slug: str - Slug as written in a dependency list

        Returns:
            CatalogEntry or None
        """
        if not slug:
            return None
        entry = self._by_slug.get(slug)
        if entry is None:
            entry = self._by_lower.get(slug.lower())
        if entry is None:
            entry = self._by_base.get(normalize_slug(slug))
        return entry

    def search(self, query):
        """Case-insensitive search over name, description, tags and authors."""
        query = (query or '').strip().lower()
        if not query:
            return list(self._entries)
        results = []
        for entry in self._entries:
            haystacks = [entry.name, entry.description, *entry.tags, *entry.authors]
            if any(query in text.lower() for text in haystacks if text):
                results.append(entry)
        return results


def _as_tuple(value):
    if not value:
        return ()
    if isinstance(value, str):
        return (value,)
    return tuple(str(item) for item in value)


def _as_int(value):
    if value is None or value == '':
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def _parse_sources(raw_sources):
    sources = []
    for raw in raw_sources or []:
        if isinstance(raw, str):
            sources.append(DownloadSource(raw))
            continue
        url = raw.get('url')
        if not url:
            continue
        sources.append(DownloadSource(url, raw.get('type') or raw.get('kind') or 'direct'))
    return tuple(sources)


def _parse_install(raw, slug):
    if not raw:
        return InstallDescriptor(method='branch', target_folder=slug)
    method = INSTALL_METHODS.get(raw.get('method') or 'branch', 'branch')
    return InstallDescriptor(
        method=method,
        target_folder=raw.get('target_folder') or slug,
        extract_path=raw.get('extract_path') or None,
        excludes=_as_tuple(raw.get('excludes')),
    )


def _parse_release(raw_addon):
    raw = raw_addon.get('latest_release')
    if not raw:
        return None

    version_info = raw_addon.get('version_info') or {}
    # v2 snapshots may carry the source list on the addon or on the release
    sources = _parse_sources(raw.get('download_sources') or raw_addon.get('download_sources'))

    return LatestRelease(
        version=str(raw.get('version') or 'unknown'),
        download_sources=sources,
        download_url=raw.get('download_url') or None,
        version_sort_key=_as_int(version_info.get('version_sort_key', raw.get('version_sort_key'))),
        commit_sha=raw.get('commit_sha') or None,
        checksum=raw.get('checksum') or None,
        release_channel=version_info.get('release_channel'),
        published_at=raw.get('published_at'),
        file_size=_as_int(raw.get('file_size')),
    )


def parse_entry(raw):
    """Translate one addon object of either catalog format into a CatalogEntry.

    Args:
        raw: dict - Addon object from the catalog document

    Returns:
        CatalogEntry
    """
    slug = raw['slug']
    if not isinstance(slug, str) or not slug.strip():
        raise TypeError(f'slug must be a non-empty string, got {slug!r}')
    source_raw = raw.get('source') or {}
    compatibility = raw.get('compatibility') or {}

    return CatalogEntry(
        slug=slug,
        name=raw.get('name') or slug,
        description=raw.get('description') or '',
        authors=_as_tuple(raw.get('authors')),
        tags=_as_tuple(raw.get('tags')),
        url=raw.get('url'),
        source=SourceDescriptor(
            source_type=source_raw.get('type') or 'github',
            repo=source_raw.get('repo') or '',
            branch=source_raw.get('branch') or 'main',
            path=source_raw.get('path'),
        ),
        install=_parse_install(raw.get('install'), slug),
        required_dependency_slugs=_as_tuple(compatibility.get('required_dependencies')),
        optional_dependency_slugs=_as_tuple(compatibility.get('optional_dependencies')),
        latest_release=_parse_release(raw),
    )


def parse_catalog(document, fetched_at=None):
    """Translate a catalog JSON document into a CatalogSnapshot.

    Args:
        document: dict - Decoded catalog JSON
        fetched_at: Optional str - Overrides the document's fetched_at

    Returns:
        CatalogSnapshot - Entries that failed to translate are skipped and logged
    """
    entries = []
    seen: Dict[str, CatalogEntry] = {}
    for raw in document.get('addons') or []:
        try:
            entry = parse_entry(raw)
        except (KeyError, TypeError, AttributeError) as e:
            logger.warning("Skipping malformed catalog entry %r: %s", raw.get('slug') if isinstance(raw, dict) else raw, e)
            continue
        if entry.slug in seen:
            logger.debug("Duplicate catalog slug %s, keeping first", entry.slug)
            continue
        seen[entry.slug] = entry
        entries.append(entry)

    return CatalogSnapshot(
        entries,
        fetched_at=fetched_at or document.get('fetched_at'),
        format_version=str(document.get('version') or '1.0'),
    )
