"""
Manifest Parser
Reads ESO addon manifest files (## Key: Value headers followed by file lines)
"""

import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional

from errors import InvalidManifest

MANIFEST_EXTENSIONS = ('.txt', '.addon')
TITLE_MARKER = '## Title:'

_CONSTRAINT = re.compile(r'(>=|<=|==|>|<).*$')


@dataclass
class AddonManifest:
    title: str
    api_version: Optional[str] = None
    author: Optional[str] = None
    version: Optional[str] = None
    description: Optional[str] = None
    depends_on: List[str] = field(default_factory=list)
    optional_depends_on: List[str] = field(default_factory=list)
    saved_variables: List[str] = field(default_factory=list)
    files: List[str] = field(default_factory=list)


def parse_dependency_list(value):
    """Split a space separated dependency list, dropping version constraints.

    'LibAddonMenu-2.0>=30 LibStub' -> ['LibAddonMenu-2.0', 'LibStub']
    """
    if not value:
        return []
    names = []
    for token in value.split():
        name = _CONSTRAINT.sub('', token)
        if name:
            names.append(name)
    return names


def is_manifest_file(path):
    """A .txt/.addon file is a manifest only if it has a ## Title: header."""
    path = Path(path)
    if not path.is_file() or path.suffix.lower() not in MANIFEST_EXTENSIONS:
        return False
    try:
        return TITLE_MARKER in path.read_text(encoding='utf-8', errors='replace')
    except OSError:
        return False


class ManifestParser:
    def __init__(self, manifest_path):
        self.manifest_path = Path(manifest_path)
        self.meta = {}
        self.files = []

    def parse(self):
        """Parse the manifest file.

        Returns:
            AddonManifest

        Raises:
            InvalidManifest - file missing or without a title
        """
        try:
            content = self.manifest_path.read_text(encoding='utf-8', errors='replace')
        except OSError as e:
            raise InvalidManifest(f'Cannot read manifest {self.manifest_path}: {e}') from e

        # strip a UTF-8 BOM some editors leave behind
        content = content.lstrip('\ufeff')

        for line in content.splitlines():
            stripped = line.strip()
            if stripped.startswith('## '):
                key, sep, value = stripped[3:].partition(':')
                if sep:
                    self.meta[key.strip().lower()] = value.strip()
            elif stripped and not stripped.startswith(';') and not stripped.startswith('#'):
                self.files.append(stripped)

        title = self.meta.get('title')
        if not title:
            raise InvalidManifest(f'Missing ## Title: in {self.manifest_path}')

        return AddonManifest(
            title=title,
            api_version=self.meta.get('apiversion'),
            author=self.meta.get('author'),
            version=self.meta.get('version') or self.meta.get('addonversion'),
            description=self.meta.get('description'),
            depends_on=parse_dependency_list(self.meta.get('dependson')),
            optional_depends_on=parse_dependency_list(self.meta.get('optionaldependson')),
            saved_variables=parse_dependency_list(self.meta.get('savedvariables')),
            files=list(self.files),
        )


def parse_manifest(manifest_path):
    return ManifestParser(manifest_path).parse()


_COLOR_CODE = re.compile(r'\|c[0-9a-fA-F]{6}|\|r')


def clean_title(title):
    """Drop in-game color codes: '|cFF8800Lib|r Menu' -> 'Lib Menu'."""
    return _COLOR_CODE.sub('', title or '').strip()
