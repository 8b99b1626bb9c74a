"""
Folder Structure Detector
Locates addon folders and manifest files inside extracted archives
"""

from pathlib import Path

from manifest_parser import is_manifest_file


class FolderStructureDetector:
    def __init__(self, max_depth=2):
        """Initialize folder structure detector.

        Args:
            max_depth: int - How many folder levels below the root to search
        """
        self.max_depth = max_depth

    def is_example_dir(self, path):
        """Folders holding examples or tests are never the addon itself."""
        name = Path(path).name
        lower = name.lower()
        return 'example' in lower or '_test' in lower or name.startswith('_')

    def find_manifests(self, addon_dir):
        """List manifest files directly inside a folder, sorted by name.

        Args:
            addon_dir: str/Path - Folder to look in

        Returns:
            list - Paths of .txt/.addon files that carry a ## Title: header
        """
        addon_dir = Path(addon_dir)
        if not addon_dir.is_dir():
            return []
        return sorted(p for p in addon_dir.iterdir() if is_manifest_file(p))

    def find_manifest(self, addon_dir):
        """Pick the manifest for an addon folder.

        Prefers <folder>.txt, then <folder>.addon, then any other manifest
        whose name does not look like an example.

        Returns:
            Path or None
        """
        addon_dir = Path(addon_dir)
        for suffix in ('.txt', '.addon'):
            candidate = addon_dir / f"{addon_dir.name}{suffix}"
            if is_manifest_file(candidate):
                return candidate

        manifests = self.find_manifests(addon_dir)
        if not manifests:
            return None
        manifests.sort(key=lambda p: (self._looks_like_example(p.stem), p.stem))
        return manifests[0]

    def find_addon_root(self, source_path):
        """Find the folder holding the addon manifest inside an extracted tree.

        Args:
            source_path: str/Path - Root of the extracted archive

        Returns:
            Path or None - First folder (breadth first, examples skipped) with a manifest
        """
        source_path = Path(source_path)
        level = [source_path]
        for depth in range(self.max_depth + 1):
            next_level = []
            for folder in level:
                if self.find_manifests(folder):
                    return folder
                if depth < self.max_depth:
                    next_level.extend(
                        d for d in sorted(folder.iterdir())
                        if d.is_dir() and not d.name.startswith('.') and not self.is_example_dir(d)
                    )
            level = next_level
        return None

    def addon_name_from_root(self, addon_root):
        """Addon folder name is the manifest's file stem ('WarMask-1.3.0/WarMask.txt' -> 'WarMask')."""
        manifests = self.find_manifests(addon_root)
        if not manifests:
            return None
        manifests.sort(key=lambda p: (self._looks_like_example(p.stem), p.stem))
        return manifests[0].stem

    def _looks_like_example(self, stem):
        return stem.startswith('_') or 'example' in stem.lower()
