"""
Package Manager
Handles installation, updates, and removal of ESO addons from the catalog
and from custom GitHub repositories
"""

import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path

import requests

from addon_paths import addon_root_directory, saved_variables_directory
from catalog import DownloadSource, LatestRelease
from catalog_fetcher import DEFAULT_INDEX_URL, DEFAULT_MAX_AGE, CatalogFetcher
from dependency_resolver import DependencyResolver
from download_orchestrator import DEFAULT_TIMEOUT, DownloadOrchestrator
from errors import (AddonManagerError, CatalogEntryNotFound, InstallCancelled, InvalidManifest,
                    PackageNotFound, TargetDirectoryUnavailable)
from folder_structure_detector import FolderStructureDetector
from github_client import GitHubClient, RateLimited, branch_archive_url, normalize_repo
from install_events import InstallEventStream, InstallStatus
from install_writer import InstallWriter
from manifest_parser import clean_title, parse_manifest
from package_tracker import InstalledRecord
from version_reconciler import needs_update

logger = logging.getLogger(__name__)


def _outcome(slug, success, record=None, error=None, cancelled=False, skipped=False):
    return {
        'slug': slug,
        'success': success,
        'record': record,
        'error': error,
        'cancelled': cancelled,
        'skipped': skipped
    }


class PackageManager:
    def __init__(self, package_tracker, catalog_fetcher=None, downloader=None, writer=None,
                 resolver=None, github=None, addons_dir=None):
        """Initialize package manager.

        Args:
            package_tracker: PackageTracker - Record and settings store
            catalog_fetcher: Optional CatalogFetcher - Catalog provider
            downloader: Optional DownloadOrchestrator - Archive downloader
            writer: Optional InstallWriter - Archive extractor
            resolver: Optional DependencyResolver - Dependency planner
            github: Optional GitHubClient - Client for custom repositories
            addons_dir: Optional str/Path - Fixed addon directory, skipping discovery
        """
        self.package_tracker = package_tracker
        timeout = float(package_tracker.get_setting('download_timeout', DEFAULT_TIMEOUT))

        self.catalog_fetcher = catalog_fetcher or CatalogFetcher(
            package_tracker.data_dir,
            url=package_tracker.get_setting('index_url') or DEFAULT_INDEX_URL,
            max_age=int(package_tracker.get_setting('catalog_max_age', DEFAULT_MAX_AGE)),
        )
        self.downloader = downloader or DownloadOrchestrator(timeout=timeout)
        self.writer = writer or InstallWriter()
        self.resolver = resolver or DependencyResolver()
        self.matcher = self.resolver.matcher
        self.github = github or GitHubClient(token=package_tracker.get_setting('github_token'))
        self.detector = FolderStructureDetector()
        self._addons_dir = Path(addons_dir) if addons_dir else None

        self._catalog = None
        self._catalog_lock = threading.Lock()
        self._slug_locks = {}
        self._slug_locks_guard = threading.Lock()

    @property
    def addons_dir(self):
        if self._addons_dir is not None:
            return self._addons_dir
        return addon_root_directory(self.package_tracker.get_setting('addon_path'))

    def _require_addons_dir(self):
        addons_dir = self.addons_dir
        if addons_dir is None:
            raise TargetDirectoryUnavailable()
        if not addons_dir.is_dir():
            raise TargetDirectoryUnavailable(addons_dir)
        return addons_dir

    def set_addon_directory(self, path):
        path = Path(path).expanduser()
        if not path.is_dir():
            raise TargetDirectoryUnavailable(path)
        self.package_tracker.set_setting('addon_path', str(path))
        self._addons_dir = None

    def _slug_lock(self, slug):
        with self._slug_locks_guard:
            return self._slug_locks.setdefault(slug.lower(), threading.Lock())

    def refresh_catalog(self, force_refresh=False):
        """Fetch the catalog and keep it as the current snapshot."""
        snapshot = self.catalog_fetcher.fetch_catalog(force_refresh=force_refresh)
        with self._catalog_lock:
            self._catalog = snapshot
        return snapshot

    @property
    def catalog(self):
        with self._catalog_lock:
            snapshot = self._catalog
        if snapshot is None:
            snapshot = self.refresh_catalog()
        return snapshot

    def resolve_dependencies(self, root_slug):
        """Resolve a catalog addon's dependencies against what is installed.

        Returns:
            DependencyResult

        Raises:
            CatalogEntryNotFound - root_slug is not in the catalog
        """
        return self.resolver.resolve(root_slug, self.catalog, self.package_tracker.get_all())

    def install_package(self, slug, install_descriptor, download_sources, name=None, version=None,
                        source_kind='index', version_sort_key=None, commit_sha=None, checksum=None,
                        source_repo=None, installed_as_dependency=False, events=None, cancel_event=None):
        """Download, extract and record one addon.

        Args:
            slug: str - Slug to record the addon under
            install_descriptor: Optional InstallDescriptor - None auto-detects the layout
            download_sources: list - DownloadSource candidates, preferred first
            name: Optional str - Display name, defaults to the manifest title
            version: Optional str - Version label to record
            source_kind: str - 'index', 'github' or 'local'
            version_sort_key: Optional int - Catalog sort key of the release
            commit_sha: Optional str - Commit of a branch-tracked release
            checksum: Optional str - Expected archive checksum
            source_repo: Optional str - 'owner/repo' for custom repositories
            installed_as_dependency: bool - Installed only to satisfy another addon
            events: Optional InstallEventStream - Receives status events
            cancel_event: Optional threading.Event - set to abort the download

        Returns:
            InstalledRecord - Committed record

        Raises:
            AddonManagerError - after a failed event has been emitted
        """
        events = events or InstallEventStream(slug)
        try:
            addons_dir = self._require_addons_dir()

            events.emit(InstallStatus.DOWNLOADING, progress=0.0)

            def relay(update):
                if update.kind == 'progress':
                    events.emit(InstallStatus.DOWNLOADING, progress=update.fraction,
                                downloaded=update.downloaded, total=update.total,
                                source_kind=update.source.kind)
                elif update.kind == 'attempt_failed':
                    events.emit(InstallStatus.DOWNLOADING, source_kind=update.source.kind,
                                attempt_failed=True, reason=update.error)

            archive = self.downloader.download(download_sources, on_progress=relay,
                                               checksum=checksum, cancel_event=cancel_event)

            events.emit(InstallStatus.EXTRACTING)
            if install_descriptor is not None:
                manifest_path = self.writer.write(archive, install_descriptor, addons_dir)
            else:
                manifest_path = self.writer.write_detected(archive, addons_dir)

            if not name:
                try:
                    name = clean_title(parse_manifest(manifest_path).title)
                except InvalidManifest:
                    name = slug

            existing = self.package_tracker.get_by_slug(slug)
            record = InstalledRecord(
                slug=slug,
                name=name,
                installed_version=version or 'unknown',
                source_kind=source_kind,
                manifest_path=str(manifest_path),
                installed_at=existing.installed_at if existing else '',
                version_sort_key=version_sort_key,
                commit_sha=commit_sha,
                source_repo=source_repo,
                installed_as_dependency=installed_as_dependency and (existing is None or existing.installed_as_dependency),
            )
            self.package_tracker.upsert(record)
        except AddonManagerError as e:
            logger.error("Install of %s failed: %s", slug, e)
            events.emit(InstallStatus.FAILED, reason=str(e))
            raise
        except OSError as e:
            logger.error("Install of %s failed: %s", slug, e)
            events.emit(InstallStatus.FAILED, reason=str(e))
            raise AddonManagerError(f'Install of "{slug}" failed: {e}') from e

        events.emit(InstallStatus.COMPLETE, progress=1.0)
        logger.info("Installed %s %s", slug, record.installed_version)
        return record

    def install_entry(self, entry, slug=None, installed_as_dependency=False, events=None, cancel_event=None):
        """Install a catalog entry's latest release (or branch archive)."""
        release = entry.latest_release
        return self.install_package(
            slug or entry.slug,
            entry.install,
            entry.download_candidates(),
            name=entry.name,
            version=entry.version_label(),
            source_kind='index',
            version_sort_key=release.version_sort_key if release else None,
            commit_sha=release.commit_sha if release else None,
            checksum=release.checksum if release else None,
            installed_as_dependency=installed_as_dependency,
            events=events,
            cancel_event=cancel_event,
        )

    def _plan(self, root_slug, optional_slugs):
        """Entries to install for a root: its dependencies, opted-in optionals, then the root."""
        catalog = self.catalog
        result = self.resolve_dependencies(root_slug)
        if result.unresolved:
            logger.warning("Dependencies of %s not in the catalog: %s", root_slug, ', '.join(result.unresolved))

        plan = [(node.entry, True) for node in result.resolved]
        planned = {entry.slug for entry, _ in plan}
        for optional_slug in optional_slugs:
            entry = catalog.find(optional_slug)
            if entry is None or entry.slug in planned or entry.slug == result.root_slug:
                continue
            sub_result = self.resolve_dependencies(entry.slug)
            for node in sub_result.resolved:
                if node.slug not in planned and node.slug != result.root_slug:
                    plan.append((node.entry, True))
                    planned.add(node.slug)
            plan.append((entry, False))
            planned.add(entry.slug)

        plan.append((catalog.find(result.root_slug), False))
        return plan

    def install_with_dependencies(self, root_slug, optional_slugs=(), cancel_event=None, on_event=None):
        """Install a catalog addon together with its required dependencies.

        A failed package does not stop the plan. Cancellation stops before
        the next package; packages already installed are kept.

        Args:
            root_slug: str - Addon the user asked for
            optional_slugs: iterable - Optional dependencies the user opted into
            cancel_event: Optional threading.Event - set to cancel
            on_event: Optional callable - receives every InstallEvent

        Returns:
            list - Outcome dicts with keys slug, success, record, error, cancelled, skipped

        Raises:
            CatalogEntryNotFound - root_slug is not in the catalog
        """
        plan = self._plan(root_slug, optional_slugs)
        outcomes = []

        for index, (entry, as_dependency) in enumerate(plan):
            if cancel_event is not None and cancel_event.is_set():
                outcomes.extend(_outcome(pending.slug, False, error='Cancelled', cancelled=True) for pending, _ in plan[index:])
                break

            events = InstallEventStream(entry.slug)
            if on_event is not None:
                events.subscribe(on_event)

            with self._slug_lock(entry.slug):
                if as_dependency:
                    # another plan may have installed it since we resolved
                    current = self.matcher.find_installed(entry, self.package_tracker.get_all())
                    if current is not None:
                        outcomes.append(_outcome(entry.slug, True, record=current, skipped=True))
                        continue
                try:
                    record = self.install_entry(entry, installed_as_dependency=as_dependency,
                                                events=events, cancel_event=cancel_event)
                except InstallCancelled as e:
                    outcomes.append(_outcome(entry.slug, False, error=str(e), cancelled=True))
                    outcomes.extend(_outcome(pending.slug, False, error='Cancelled', cancelled=True) for pending, _ in plan[index + 1:])
                    break
                except AddonManagerError as e:
                    outcomes.append(_outcome(entry.slug, False, error=str(e)))
                    continue
            outcomes.append(_outcome(entry.slug, True, record=record))

        failed = [outcome['slug'] for outcome in outcomes if not outcome['success']]
        if failed:
            logger.warning("Plan for %s finished with failures: %s", root_slug, ', '.join(failed))
        return outcomes

    def install_many(self, root_slugs, max_workers=2, on_event=None, cancel_event=None):
        """Run independent install plans on a small thread pool.

        Returns:
            dict - root slug -> outcome list (or a single failed outcome when
            the root is not in the catalog)
        """
        results = {}
        with ThreadPoolExecutor(max_workers=max_workers) as pool:
            futures = {
                slug: pool.submit(self.install_with_dependencies, slug,
                                  cancel_event=cancel_event, on_event=on_event)
                for slug in root_slugs
            }
            for slug, future in futures.items():
                try:
                    results[slug] = future.result()
                except CatalogEntryNotFound as e:
                    results[slug] = [_outcome(slug, False, error=str(e))]
        return results

    def update_package(self, slug, events=None, cancel_event=None):
        """Reinstall an installed addon from its source.

        Raises:
            PackageNotFound - slug is not installed
            CatalogEntryNotFound - a catalog addon vanished from the catalog
        """
        record = self.package_tracker.get_by_slug(slug)
        if record is None:
            raise PackageNotFound(f'Addon "{slug}" is not installed')

        if record.source_kind == 'github' and record.source_repo:
            return self.install_from_github(record.source_repo, slug=slug, events=events,
                                            cancel_event=cancel_event)

        entry = self.catalog.find(slug)
        if entry is None:
            entry = next((e for e in self.catalog if self.matcher.matches(e, record)), None)
        if entry is None:
            raise CatalogEntryNotFound(slug)
        return self.install_entry(entry, slug=slug, installed_as_dependency=record.installed_as_dependency,
                                  events=events, cancel_event=cancel_event)

    def uninstall_package(self, slug):
        """Remove an addon's files and its record.

        Files that are already gone count as removed.

        Raises:
            PackageNotFound - slug is not installed
        """
        with self._slug_lock(slug):
            record = self.package_tracker.get_by_slug(slug)
            if record is None:
                raise PackageNotFound(f'Addon "{slug}" is not installed')

            try:
                self.writer.remove(record.manifest_path)
            except PackageNotFound as e:
                logger.warning("Files of %s already removed: %s", slug, e)

            self.package_tracker.delete(slug)
        logger.info("Uninstalled %s", slug)

    def check_for_updates(self):
        """List installed addons with a newer version available.

        Local addons have no update source and are skipped.

        Returns:
            list - dicts with slug, name, current_version, new_version, source_kind
        """
        catalog = self.catalog
        updates = []

        for record in self.package_tracker.get_all():
            if record.source_kind == 'index':
                entry = catalog.find(record.slug)
                if entry is None or entry.latest_release is None:
                    continue
                if needs_update(record, entry.latest_release):
                    updates.append({
                        'slug': record.slug,
                        'name': record.name,
                        'current_version': record.installed_version,
                        'new_version': entry.latest_release.version,
                        'source_kind': record.source_kind
                    })
            elif record.source_kind == 'github' and record.source_repo:
                update = self._check_github_update(record)
                if update:
                    updates.append(update)

        return updates

    def _check_github_update(self, record):
        repo_info = self.package_tracker.get_custom_repo(record.source_repo)
        if repo_info and repo_info.get('release_type') == 'branch':
            return None
        try:
            release = self.github.latest_release(record.source_repo)
        except (RateLimited, requests.RequestException) as e:
            logger.warning("Could not check %s for updates: %s", record.source_repo, e)
            return None
        self.package_tracker.mark_repo_checked(record.source_repo)
        if release is None:
            return None

        latest = LatestRelease(version=release.version, download_url=release.download_url)
        if not needs_update(record, latest):
            return None
        return {
            'slug': record.slug,
            'name': record.name,
            'current_version': record.installed_version,
            'new_version': release.version,
            'source_kind': record.source_kind
        }

    def scan_existing_packages(self):
        """Import addon folders that are on disk but not tracked yet.

        Returns:
            dict - imported: int - number of new records
                   records: list - the new InstalledRecord objects
        """
        addons_dir = self._require_addons_dir()
        tracked = self.package_tracker.get_all()
        tracked_folders = {Path(record.manifest_path).parent.name.lower() for record in tracked}
        tracked_slugs = {record.slug for record in tracked}
        imported = []

        for folder in sorted(addons_dir.iterdir()):
            if not folder.is_dir() or folder.name.startswith('.'):
                continue
            slug = folder.name.lower()
            if slug in tracked_folders or slug in tracked_slugs:
                continue

            manifest_path = self.detector.find_manifest(folder)
            if manifest_path is None:
                continue
            try:
                manifest = parse_manifest(manifest_path)
            except InvalidManifest as e:
                logger.warning("Skipping %s: %s", folder.name, e)
                continue

            record = InstalledRecord(
                slug=slug,
                name=clean_title(manifest.title) or folder.name,
                installed_version=manifest.version or 'unknown',
                source_kind='local',
                manifest_path=str(manifest_path),
            )
            self.package_tracker.upsert(record)
            imported.append(record)
            logger.debug("Imported local addon %s", slug)

        if imported:
            logger.info("Imported %d untracked addon(s) from %s", len(imported), addons_dir)
        return {'imported': len(imported), 'records': imported}

    def get_manifest(self, slug):
        """Parsed manifest of an installed addon, with its saved-variables status.

        Returns:
            dict - manifest: AddonManifest, has_saved_variables: bool

        Raises:
            PackageNotFound - slug is not installed
            InvalidManifest - the manifest is missing or unreadable
        """
        record = self.package_tracker.get_by_slug(slug)
        if record is None:
            raise PackageNotFound(f'Addon "{slug}" is not installed')
        manifest = parse_manifest(record.manifest_path)

        saved_dir = saved_variables_directory(Path(record.manifest_path).parent.parent)
        has_saved_variables = any(
            (saved_dir / f"{name}.lua").exists() for name in manifest.saved_variables
        )
        return {'manifest': manifest, 'has_saved_variables': has_saved_variables}

    def find_orphaned_dependencies(self):
        """Installed dependencies that no other installed addon requires anymore.

        These are only reported; nothing is removed automatically.

        Returns:
            list - slugs
        """
        catalog = self.catalog
        records = self.package_tracker.get_all()
        required = set()

        for record in records:
            entry = catalog.find(record.slug)
            dependency_slugs = list(entry.required_dependency_slugs) if entry else []
            if entry is None:
                try:
                    dependency_slugs = parse_manifest(record.manifest_path).depends_on
                except InvalidManifest:
                    dependency_slugs = []
            for dependency_slug in dependency_slugs:
                dependency = catalog.find(dependency_slug)
                for other in records:
                    if other.slug == record.slug:
                        continue
                    if dependency is not None:
                        matched = self.matcher.matches(dependency, other)
                    else:
                        matched = self.matcher.find_installed_slug(dependency_slug, [other]) is not None
                    if matched:
                        required.add(other.slug)

        return [record.slug for record in records
                if record.installed_as_dependency and record.slug not in required]

    def add_custom_repo(self, repo, branch='main', release_type='release', verify=True):
        """Track a GitHub repository that is not in the catalog.

        Raises:
            ValueError - not a GitHub repository
            PackageNotFound - GitHub does not know the repository
        """
        normalized = normalize_repo(repo)
        if normalized is None:
            raise ValueError(f'Not a GitHub repository: {repo}')
        if verify and not self.github.repo_exists(normalized):
            raise PackageNotFound(f'Repository "{normalized}" not found')
        return self.package_tracker.add_custom_repo(normalized, branch=branch, release_type=release_type)

    def get_custom_repos(self):
        return self.package_tracker.get_custom_repos()

    def remove_custom_repo(self, repo):
        return self.package_tracker.remove_custom_repo(normalize_repo(repo) or repo)

    def install_from_github(self, repo, slug=None, events=None, cancel_event=None):
        """Install the latest release (or branch head) of a custom repository.

        The archive layout is detected from its manifest.

        Returns:
            InstalledRecord
        """
        normalized = normalize_repo(repo)
        if normalized is None:
            raise ValueError(f'Not a GitHub repository: {repo}')
        repo_info = self.package_tracker.get_custom_repo(normalized) or {}
        branch = repo_info.get('branch') or 'main'

        sources = []
        version = f"{branch}-latest"
        if repo_info.get('release_type', 'release') == 'release':
            try:
                release = self.github.latest_release(normalized)
            except (RateLimited, requests.RequestException) as e:
                logger.warning("Release lookup for %s failed, using branch archive: %s", normalized, e)
                release = None
            if release is not None:
                sources.append(release.download_source())
                version = release.version
        if not sources:
            sources.append(DownloadSource(branch_archive_url(normalized, branch), 'github_branch'))

        return self.install_package(
            slug or normalized.split('/')[1].lower(),
            None,
            sources,
            version=version,
            source_kind='github',
            source_repo=normalized,
            events=events,
            cancel_event=cancel_event,
        )
