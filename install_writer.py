"""
Install Writer
Extracts addon archives into the addon directory and removes installed addons
"""

import fnmatch
import io
import logging
import os
import re
import shutil
import stat
import sys
import tempfile
import zipfile
import zlib
from pathlib import Path, PurePosixPath

from errors import (InvalidArchive, InvalidManifest, InvalidTargetFolder, PackageNotFound,
                    TargetDirectoryUnavailable, UnsafeArchiveEntry)
from folder_structure_detector import FolderStructureDetector

logger = logging.getLogger(__name__)

_DRIVE = re.compile(r'^[A-Za-z]:')


def validate_target_folder(target_folder):
    """Raise InvalidTargetFolder unless target_folder is one plain path segment."""
    if (not target_folder
            or target_folder in ('.', '..')
            or '/' in target_folder
            or '\\' in target_folder
            or _DRIVE.match(target_folder)
            or '\x00' in target_folder):
        raise InvalidTargetFolder(target_folder)
    return target_folder


def entry_parts(name):
    """Split an archive entry name into safe path parts.

    Raises:
        UnsafeArchiveEntry - absolute paths, drive letters or '..' segments
    """
    normalized = name.replace('\\', '/')
    if normalized.startswith('/') or _DRIVE.match(normalized):
        raise UnsafeArchiveEntry(name, 'absolute path')
    parts = [part for part in PurePosixPath(normalized).parts if part not in ('', '.')]
    if '..' in parts:
        raise UnsafeArchiveEntry(name)
    return parts


def is_excluded(parts, excludes):
    """True if any path component matches any exclusion glob."""
    for part in parts:
        for pattern in excludes:
            if fnmatch.fnmatchcase(part, pattern):
                return True
    return False


class InstallWriter:
    def __init__(self, detector=None):
        self.detector = detector or FolderStructureDetector()

    def write(self, archive_bytes, install_descriptor, target_root):
        """Extract the descriptor's subtree of an archive into target_root/target_folder.

        Args:
            archive_bytes: bytes - ZIP archive contents
            install_descriptor: InstallDescriptor - What to extract and where
            target_root: str/Path - Addon directory

        Returns:
            Path - Manifest file of the installed addon

        Raises:
            InvalidTargetFolder, UnsafeArchiveEntry, InvalidArchive,
            InvalidManifest, TargetDirectoryUnavailable
        """
        target_folder = validate_target_folder(install_descriptor.target_folder)
        target_root = self._check_root(target_root)

        with self._open_archive(archive_bytes) as archive:
            members = self._safe_members(archive)
            selected = self._select(members, install_descriptor)
            if not selected:
                raise InvalidArchive(
                    f'Nothing to extract for "{target_folder}" '
                    f'(extract path: {install_descriptor.extract_path or "archive root"})'
                )

            with tempfile.TemporaryDirectory() as temp_dir:
                staging = Path(temp_dir) / target_folder
                staging.mkdir()
                self._extract(archive, selected, staging)

                manifest = self.detector.find_manifest(staging)
                if manifest is None:
                    raise InvalidManifest(f'No addon manifest found after extraction (target: {target_folder})')

                target_dir = target_root / target_folder
                self._replace(staging, target_dir)

        logger.info("Installed %d files into %s", len(selected), target_dir)
        return target_dir / manifest.name

    def write_detected(self, archive_bytes, target_root):
        """Install an archive without a descriptor by locating its manifest.

        The folder is named after the manifest file, so 'WarMask-1.3.0/WarMask.txt'
        installs into 'WarMask'.

        Returns:
            Path - Manifest file of the installed addon
        """
        target_root = self._check_root(target_root)

        with self._open_archive(archive_bytes) as archive:
            members = self._safe_members(archive)
            with tempfile.TemporaryDirectory() as temp_dir:
                extracted = Path(temp_dir) / 'extracted'
                extracted.mkdir()
                self._extract(archive, [(info, parts) for info, parts in members], extracted)

                addon_root = self.detector.find_addon_root(extracted)
                if addon_root is None:
                    raise InvalidManifest('No addon manifest found in archive')
                addon_name = validate_target_folder(self.detector.addon_name_from_root(addon_root))
                manifest = self.detector.find_manifest(addon_root)

                target_dir = target_root / addon_name
                self._replace(addon_root, target_dir)

        logger.info("Installed %s (detected layout) into %s", addon_name, target_dir)
        return target_dir / manifest.name

    def remove(self, manifest_path):
        """Delete the addon folder that holds manifest_path.

        Raises:
            PackageNotFound - the folder is already gone
        """
        addon_dir = Path(manifest_path).parent
        if not addon_dir.exists():
            raise PackageNotFound(f'Addon folder "{addon_dir}" no longer exists')
        self._remove_directory_safe(addon_dir)
        logger.info("Removed %s", addon_dir)

    def _check_root(self, target_root):
        if target_root is None:
            raise TargetDirectoryUnavailable()
        target_root = Path(target_root)
        if not target_root.is_dir():
            raise TargetDirectoryUnavailable(target_root)
        return target_root

    def _open_archive(self, archive_bytes):
        try:
            return zipfile.ZipFile(io.BytesIO(archive_bytes))
        except zipfile.BadZipFile as e:
            raise InvalidArchive(f'Not a valid ZIP archive: {e}') from e

    def _safe_members(self, archive):
        """Validate every entry before anything is written."""
        members = []
        for info in archive.infolist():
            parts = entry_parts(info.filename)
            if parts:
                members.append((info, parts))
        return members

    def _select(self, members, install_descriptor):
        """Map archive entries to paths relative to the target folder."""
        files = [parts for info, parts in members if not info.is_dir()]
        top_levels = {parts[0] for parts in files}
        # GitHub archives wrap everything in a single 'repo-branch/' folder
        wrapped = len(top_levels) == 1 and all(len(parts) > 1 for parts in files)

        prefix = []
        if install_descriptor.extract_path:
            prefix = entry_parts(install_descriptor.extract_path)

        selected = []
        for info, parts in members:
            if info.is_dir():
                continue
            inner = parts[1:] if wrapped else parts
            if prefix:
                if inner[:len(prefix)] == prefix:
                    inner = inner[len(prefix):]
                elif parts[:len(prefix)] == prefix:
                    inner = parts[len(prefix):]
                else:
                    continue
            if not inner or is_excluded(inner, install_descriptor.excludes):
                continue
            selected.append((info, inner))
        return selected

    def _extract(self, archive, selected, destination):
        destination_resolved = destination.resolve()
        for info, parts in selected:
            out_path = destination.joinpath(*parts)
            resolved = out_path.resolve()
            if resolved != destination_resolved and destination_resolved not in resolved.parents:
                raise UnsafeArchiveEntry(info.filename)
            if info.is_dir():
                out_path.mkdir(parents=True, exist_ok=True)
                continue
            out_path.parent.mkdir(parents=True, exist_ok=True)
            try:
                with archive.open(info) as source, open(out_path, 'wb') as target:
                    shutil.copyfileobj(source, target)
            except (zipfile.BadZipFile, zlib.error, NotImplementedError, EOFError) as e:
                raise InvalidArchive(f'Cannot read "{info.filename}" from archive: {e}') from e
            mode = (info.external_attr >> 16) & 0o777
            if mode and os.name != 'nt':
                os.chmod(out_path, mode | stat.S_IRUSR | stat.S_IWUSR)

    def _replace(self, source_dir, target_dir):
        """Swap the new addon folder in; the old one goes only once the copy is complete."""
        incoming = target_dir.with_name(f'.{target_dir.name}.incoming')
        outgoing = target_dir.with_name(f'.{target_dir.name}.outgoing')
        for leftover in (incoming, outgoing):
            if leftover.exists():
                self._remove_directory_safe(leftover)

        try:
            shutil.copytree(source_dir, incoming)
        except OSError:
            if incoming.exists():
                self._remove_directory_safe(incoming)
            raise

        if target_dir.exists():
            os.replace(target_dir, outgoing)
        try:
            os.replace(incoming, target_dir)
        except OSError:
            if outgoing.exists():
                os.replace(outgoing, target_dir)
            self._remove_directory_safe(incoming)
            raise
        if outgoing.exists():
            self._remove_directory_safe(outgoing)

    def _handle_remove_readonly(self, func, path, exc):
        """Clear the read-only bit and retry; Windows refuses to delete otherwise."""
        os.chmod(path, stat.S_IWRITE)
        func(path)

    def _remove_directory_safe(self, path):
        if sys.version_info >= (3, 12):
            shutil.rmtree(path, onexc=self._handle_remove_readonly)
        else:
            shutil.rmtree(path, onerror=self._handle_remove_readonly)
