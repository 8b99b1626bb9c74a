"""
Addon Paths
Platform-specific locations of the ESO addon directory and application data
"""

import os
import sys
from pathlib import Path

APP_NAME = 'eso-addon-manager'
STEAM_APP_ID = '306130'

_ESO_LIVE = Path('Elder Scrolls Online') / 'live'


def _documents_dir():
    home = Path.home()
    if sys.platform == 'win32':
        profile = os.environ.get('USERPROFILE')
        if profile:
            return Path(profile) / 'Documents'
    return home / 'Documents'


def candidate_addon_directories():
    """Platform default locations, most likely first."""
    if sys.platform in ('win32', 'darwin'):
        return [_documents_dir() / _ESO_LIVE / 'AddOns']

    home = Path.home()
    prefix_docs = Path('drive_c') / 'users' / 'steamuser' / 'Documents'
    return [
        home / '.steam' / 'steam' / 'steamapps' / 'compatdata' / STEAM_APP_ID / 'pfx' / prefix_docs / _ESO_LIVE / 'AddOns',
        home / '.local' / 'share' / 'Steam' / 'steamapps' / 'compatdata' / STEAM_APP_ID / 'pfx' / prefix_docs / _ESO_LIVE / 'AddOns',
        home / 'Games' / 'elder-scrolls-online' / prefix_docs / _ESO_LIVE / 'AddOns',
    ]


def default_addon_directory():
    for candidate in candidate_addon_directories():
        if candidate.is_dir():
            return candidate
    return None


def addon_root_directory(custom_path=None):
    """Resolve the addon directory.

    Args:
        custom_path: Optional str - Path configured by the user

    Returns:
        Path or None - None means the user has to configure it
    """
    for configured in (custom_path, os.environ.get('ESO_ADDON_PATH')):
        if configured:
            path = Path(configured).expanduser()
            if path.is_dir():
                return path
    return default_addon_directory()


def app_data_directory():
    if sys.platform == 'win32':
        base = os.environ.get('LOCALAPPDATA') or str(Path.home() / 'AppData' / 'Local')
        return Path(base) / APP_NAME
    if sys.platform == 'darwin':
        return Path.home() / 'Library' / 'Application Support' / APP_NAME
    base = os.environ.get('XDG_DATA_HOME') or str(Path.home() / '.local' / 'share')
    return Path(base) / APP_NAME


def saved_variables_directory(addon_dir):
    """SavedVariables sits next to the AddOns folder."""
    if addon_dir is None:
        return None
    return Path(addon_dir).parent / 'SavedVariables'
