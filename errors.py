"""
Errors
Exception types raised by the addon manager core
"""


class AddonManagerError(Exception):
    """Base class for every error raised by the addon manager."""


class CatalogEntryNotFound(AddonManagerError):
    def __init__(self, slug):
        super().__init__(f'Addon "{slug}" is not in the catalog')
        self.slug = slug


class CatalogFetchError(AddonManagerError):
    """The catalog could not be fetched and no cached copy exists."""


class AllSourcesExhausted(AddonManagerError):
    def __init__(self, failures):
        """Every download source failed.

        Args:
            failures: list - (DownloadSource, reason) tuples in attempt order
        """
        self.failures = list(failures)
        if self.failures:
            detail = '; '.join(f"{source.kind}: {reason}" for source, reason in self.failures)
        else:
            detail = 'no download sources available'
        super().__init__(f'All download sources failed ({detail})')


class UnsafeArchiveEntry(AddonManagerError):
    def __init__(self, entry_name, reason='path escapes the destination directory'):
        super().__init__(f'Unsafe archive entry "{entry_name}": {reason}')
        self.entry_name = entry_name


class InvalidTargetFolder(UnsafeArchiveEntry):
    def __init__(self, target_folder):
        super().__init__(target_folder, 'target folder must be a single path segment')


class InvalidArchive(AddonManagerError):
    """Downloaded bytes are not a readable archive."""


class InvalidManifest(AddonManagerError):
    """No usable addon manifest was found."""


class TargetDirectoryUnavailable(AddonManagerError):
    def __init__(self, path=None):
        if path is None:
            message = 'Addon directory is not configured. Please set it manually in Settings.'
        else:
            message = f'Addon directory "{path}" does not exist'
        super().__init__(message)
        self.path = path


class RecordStoreError(AddonManagerError):
    """Reading or writing the installed-package records failed."""


class PackageNotFound(AddonManagerError):
    """A package or its files are not where the records say they are."""


class InstallCancelled(AddonManagerError):
    """The user cancelled an in-flight install."""
