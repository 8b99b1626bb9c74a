"""
Version Reconciler
Decides whether an installed addon is behind the catalog's latest release
"""


def _strip_prefix(label):
    label = (label or '').strip()
    if label[:1] in ('v', 'V') and label[1:2].isdigit():
        return label[1:]
    return label


def needs_update(installed, latest):
    """Compare an installed record's fingerprint with the latest release.

    Priority: both sort keys present -> integer comparison; both commit
    SHAs present -> any difference is an update; otherwise the raw version
    labels are compared for inequality.

    Args:
        installed: InstalledRecord - What is on disk
        latest: LatestRelease or None - Catalog's newest release

    Returns:
        bool - True if an update is due
    """
    if latest is None:
        return False

    if installed.version_sort_key is not None and latest.version_sort_key is not None:
        return latest.version_sort_key > installed.version_sort_key

    if installed.commit_sha and latest.commit_sha:
        return installed.commit_sha.lower() != latest.commit_sha.lower()

    return _strip_prefix(installed.installed_version) != _strip_prefix(latest.version)

