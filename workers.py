"""
Background workers that run PackageManager operations off the UI thread
"""

import threading

from PyQt6.QtCore import QThread, pyqtSignal

from errors import AddonManagerError


class InstallWorker(QThread):
    """Worker thread for installing an addon with its dependencies"""
    event = pyqtSignal(dict)
    finished = pyqtSignal(object)  # outcome dicts carry InstalledRecord objects
    failed = pyqtSignal(str)

    def __init__(self, package_manager, root_slug, optional_slugs=()):
        """Initialize install worker.

        Args:
            package_manager: PackageManager - Package manager instance
            root_slug: str - Catalog slug to install
            optional_slugs: iterable - Optional dependencies the user opted into
        """
        super().__init__()
        self.package_manager = package_manager
        self.root_slug = root_slug
        self.optional_slugs = tuple(optional_slugs)
        self._cancel_event = threading.Event()

    def cancel(self):
        """Request cancellation; the package being downloaded stops at the next chunk."""
        self._cancel_event.set()

    def run(self):
        """Execute the install plan.

        Emits: event(install event dict) per status change, finished(outcomes)
        """
        try:
            outcomes = self.package_manager.install_with_dependencies(
                self.root_slug,
                optional_slugs=self.optional_slugs,
                cancel_event=self._cancel_event,
                on_event=lambda install_event: self.event.emit(install_event.to_dict()),
            )
        except AddonManagerError as e:
            self.failed.emit(str(e))
            return
        self.finished.emit(outcomes)


class UpdateCheckWorker(QThread):
    finished = pyqtSignal(list)
    failed = pyqtSignal(str)

    def __init__(self, package_manager, refresh=True):
        super().__init__()
        self.package_manager = package_manager
        self.refresh = refresh

    def run(self):
        try:
            if self.refresh:
                self.package_manager.refresh_catalog()
            updates = self.package_manager.check_for_updates()
        except AddonManagerError as e:
            self.failed.emit(str(e))
            return
        self.finished.emit(updates)


class BatchUpdateWorker(QThread):
    """Worker thread for batch update"""
    finished = pyqtSignal(int, int)  # updated, failed
    progress = pyqtSignal(str, int, int)
    log = pyqtSignal(str)

    def __init__(self, package_manager, slugs):
        super().__init__()
        self.package_manager = package_manager
        self.slugs = list(slugs)
        self._cancel_event = threading.Event()

    def cancel(self):
        self._cancel_event.set()

    def run(self):
        updated = 0
        failed = 0
        total = len(self.slugs)

        for idx, slug in enumerate(self.slugs):
            if self._cancel_event.is_set():
                self.log.emit("Batch update cancelled by user")
                break

            self.progress.emit(f"Updating {slug}...", idx, total)
            try:
                record = self.package_manager.update_package(slug, cancel_event=self._cancel_event)
            except AddonManagerError as e:
                failed += 1
                self.log.emit(f"{slug} failed: {e}")
                continue
            updated += 1
            self.log.emit(f"{slug} updated to {record.installed_version}")
        self.finished.emit(updated, failed)


class ScanWorker(QThread):
    finished = pyqtSignal(dict)
    progress = pyqtSignal(str)

    def __init__(self, package_manager):
        """Initialize scan worker.

        Args:
            package_manager: PackageManager - Package manager instance
        """
        super().__init__()
        self.package_manager = package_manager

    def run(self):
        """Import untracked addon folders.

        Emits: finished(results)
        """
        try:
            self.progress.emit("Scanning for existing addons...")
            results = self.package_manager.scan_existing_packages()
            self.finished.emit({'imported': results['imported'],
                                'slugs': [record.slug for record in results['records']]})
        except AddonManagerError as e:
            self.finished.emit({'imported': 0, 'slugs': [], 'error': str(e)})
