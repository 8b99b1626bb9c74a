"""
Slug Matcher
Decides whether an installed record and a catalog entry are the same addon

Matching is deliberately loose. Catalog slugs, folder names found on disk and
slugs recorded at install time follow different conventions, so the last rule
is a substring heuristic that can produce false positives for short or
generic slugs.
"""

import re
from pathlib import Path

_VERSION_SUFFIX = re.compile(r'(?:-\d+)+$')


def normalize_slug(slug):
    """Lowercase, turn dots into dashes and strip a trailing version suffix.

    Args:
        slug: str - Raw slug or folder name

    Returns:
        str - Base name, e.g. 'LibAddonMenu-2.0' -> 'libaddonmenu'
    """
    if not slug:
        return ''
    lowered = slug.strip().lower().replace('.', '-')
    base = _VERSION_SUFFIX.sub('', lowered)
    return base or lowered


def record_folder_name(record):
    """Folder that holds the record's manifest, if the record has one."""
    manifest_path = getattr(record, 'manifest_path', None)
    if not manifest_path:
        return None
    return Path(manifest_path).parent.name or None


def slug_matches(slug, record, target_folder=None, name=None):
    """Match a bare slug (plus optional folder and display name) against a record.

    Args:
        slug: str - Catalog or dependency slug
        record: InstalledRecord - Installed package to compare with
        target_folder: Optional str - Folder the catalog installs into
        name: Optional str - Catalog display name

    Returns:
        bool - True on the first rule that matches
    """
    record_slug = record.slug or ''
    folder = target_folder or slug

    # 1. exact slug
    if slug == record_slug:
        return True

    # 2. discovered packages are recorded under their folder name
    record_folder = record_folder_name(record)
    folder_lower = folder.lower() if folder else ''
    if folder_lower and (record_slug.lower() == folder_lower
                         or (record_folder and record_folder.lower() == folder_lower)):
        return True

    # 3. normalized base name
    base = normalize_slug(slug)
    record_base = normalize_slug(record_slug)
    if base and base == record_base:
        return True

    # 4. display name
    record_name = getattr(record, 'name', None)
    if name and record_name and name.lower() == record_name.lower():
        return True

    # 5. substring either way between the normalized slug and the folder name
    folder_base = normalize_slug(folder)
    if record_base and folder_base:
        if record_base in folder_base or folder_base in record_base:
            return True

    return False


class SlugMatcher:
    def matches(self, entry, record):
        """Return True if the installed record corresponds to the catalog entry."""
        return slug_matches(
            entry.slug,
            record,
            target_folder=entry.install.target_folder,
            name=entry.name,
        )

    def find_installed(self, entry, records):
        """First record matching the entry, preferring an exact slug hit.

        Args:
            entry: CatalogEntry - Catalog entry to look for
            records: iterable - InstalledRecord objects

        Returns:
            InstalledRecord or None
        """
        records = list(records)
        for record in records:
            if record.slug == entry.slug:
                return record
        for record in records:
            if self.matches(entry, record):
                return record
        return None

    def find_installed_slug(self, slug, records):
        """Like find_installed, for a slug the catalog does not know.

        Only the slug is known, so the substring rule compares it with each
        record's slug and folder; a short slug such as "lib" matches "LibGPS".
        """
        records = list(records)
        for record in records:
            if slug_matches(slug, record):
                return record
        return None
