"""
Package Tracker
Manages the addon-packages.json file to track installed addons, custom
repositories and settings
"""

import copy
import json
import logging
import os
import threading
from contextlib import contextmanager
from dataclasses import asdict, dataclass, fields
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from addon_paths import app_data_directory
from errors import RecordStoreError

logger = logging.getLogger(__name__)

SOURCE_KINDS = ('index', 'github', 'local')
TRACKER_VERSION = '2.0'


def utc_now():
    return datetime.now(timezone.utc).isoformat()


@dataclass
class InstalledRecord:
    slug: str
    name: str
    installed_version: str
    source_kind: str
    manifest_path: str
    installed_at: str = ''
    updated_at: str = ''
    version_sort_key: Optional[int] = None
    commit_sha: Optional[str] = None
    source_repo: Optional[str] = None
    installed_as_dependency: bool = False

    def to_dict(self):
        return asdict(self)

    @classmethod
    def from_dict(cls, data):
        known = {f.name for f in fields(cls)}
        return cls(**{key: value for key, value in data.items() if key in known})


class PackageTracker:
    def __init__(self, data_dir=None):
        """Open (or create) the tracker file inside data_dir.

        Args:
            data_dir: Optional str/Path - Defaults to the per-user application data directory

        Raises:
            RecordStoreError - the existing file cannot be read or decoded
        """
        self.data_dir = Path(data_dir) if data_dir else app_data_directory()
        self.tracker_file = self.data_dir / 'addon-packages.json'
        # one writer at a time; never held across downloads or extraction
        self._lock = threading.RLock()
        self.packages = self._load_packages()

    def _load_packages(self):
        """Load packages from addon-packages.json"""
        if not self.tracker_file.exists():
            logger.info("No package file at %s, starting empty", self.tracker_file)
            return self._create_empty_structure()
        try:
            with open(self.tracker_file, 'r', encoding='utf-8') as f:
                data = json.load(f)
        except (OSError, ValueError) as e:
            raise RecordStoreError(f'Cannot read {self.tracker_file}: {e}') from e

        for key, default in self._create_empty_structure().items():
            data.setdefault(key, default)
        return data

    def _create_empty_structure(self):
        return {
            'version': TRACKER_VERSION,
            'last_updated': utc_now(),
            'addons': {},
            'custom_repos': {},
            'settings': {}
        }

    def save_packages(self):
        """Write the tracker file atomically.

        Raises:
            RecordStoreError - the file could not be written
        """
        with self._lock:
            self.packages['last_updated'] = utc_now()
            temp_file = self.tracker_file.with_suffix('.json.tmp')
            try:
                self.data_dir.mkdir(parents=True, exist_ok=True)
                with open(temp_file, 'w', encoding='utf-8') as f:
                    json.dump(self.packages, f, indent=2, ensure_ascii=False)
                os.replace(temp_file, self.tracker_file)
            except OSError as e:
                raise RecordStoreError(f'Error saving packages: {e}') from e

    @contextmanager
    def _commit(self):
        """Change the store and persist it; a failed write restores the previous state."""
        with self._lock:
            snapshot = copy.deepcopy(self.packages)
            try:
                yield self.packages
                self.save_packages()
            except RecordStoreError:
                self.packages = snapshot
                raise

    def get_all(self):
        """All installed records, sorted by display name."""
        with self._lock:
            records = [InstalledRecord.from_dict(data) for data in self.packages['addons'].values()]
        return sorted(records, key=lambda record: record.name.lower())

    def get_by_slug(self, slug):
        with self._lock:
            data = self.packages['addons'].get(slug)
        return InstalledRecord.from_dict(data) if data else None

    def upsert(self, record):
        """Insert or replace a record, keeping the original install time.

        Raises:
            RecordStoreError - the write failed; the store keeps its previous state
        """
        if record.source_kind not in SOURCE_KINDS:
            raise ValueError(f'Unknown source kind: {record.source_kind}')
        with self._commit() as packages:
            existing = packages['addons'].get(record.slug)
            now = utc_now()
            if not record.installed_at:
                record.installed_at = existing.get('installed_at', now) if existing else now
            record.updated_at = now
            packages['addons'][record.slug] = record.to_dict()
        return record

    def delete(self, slug):
        """Remove a record; returns False when there was nothing to remove."""
        with self._lock:
            if slug not in self.packages['addons']:
                return False
            with self._commit() as packages:
                del packages['addons'][slug]
        return True

    def add_custom_repo(self, repo, branch='main', release_type='release'):
        if release_type not in ('release', 'branch'):
            raise ValueError(f'Unknown release type: {release_type}')
        info = {
            'repo': repo,
            'branch': branch,
            'release_type': release_type,
            'added_at': utc_now(),
            'last_checked': None
        }
        with self._commit() as packages:
            packages['custom_repos'][repo] = info
        return dict(info)

    def remove_custom_repo(self, repo):
        with self._lock:
            if repo not in self.packages['custom_repos']:
                return False
            with self._commit() as packages:
                del packages['custom_repos'][repo]
        return True

    def get_custom_repo(self, repo):
        with self._lock:
            info = self.packages['custom_repos'].get(repo)
        return dict(info) if info else None

    def get_custom_repos(self):
        with self._lock:
            return [dict(info) for info in self.packages['custom_repos'].values()]

    def mark_repo_checked(self, repo):
        with self._lock:
            if repo not in self.packages['custom_repos']:
                return
            with self._commit() as packages:
                packages['custom_repos'][repo]['last_checked'] = utc_now()

    def get_setting(self, key, default=None):
        """Get a setting value"""
        with self._lock:
            return self.packages['settings'].get(key, default)

    def set_setting(self, key, value):
        """Set a setting value"""
        with self._commit() as packages:
            packages['settings'][key] = value

    def get_all_settings(self):
        with self._lock:
            return dict(self.packages['settings'])
