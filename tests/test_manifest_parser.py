import pytest

from errors import InvalidManifest
from folder_structure_detector import FolderStructureDetector
from manifest_parser import clean_title, is_manifest_file, parse_dependency_list, parse_manifest


def test_parse_manifest(tmp_path):
    manifest = tmp_path / "LibX.txt"
    manifest.write_text(
        "\ufeff## Title: |c00FF00LibX|r\n"
        "## APIVersion: 101041 101042\n"
        "## Author: someone\n"
        "## AddOnVersion: 12\n"
        "## DependsOn: LibAddonMenu-2.0>=30 LibStub\n"
        "## OptionalDependsOn: LibDebugLogger\n"
        "## SavedVariables: LibX_Data\n"
        "; comment\n"
        "\n"
        "LibX.lua\n"
        "lang/en.lua\n",
        encoding="utf-8",
    )
    parsed = parse_manifest(manifest)

    assert clean_title(parsed.title) == "LibX"
    assert parsed.version == "12"
    assert parsed.depends_on == ["LibAddonMenu-2.0", "LibStub"]
    assert parsed.optional_depends_on == ["LibDebugLogger"]
    assert parsed.saved_variables == ["LibX_Data"]
    assert parsed.files == ["LibX.lua", "lang/en.lua"]


def test_missing_title_or_file(tmp_path):
    manifest = tmp_path / "x.txt"
    manifest.write_text("## Version: 1\n", encoding="utf-8")
    with pytest.raises(InvalidManifest):
        parse_manifest(manifest)
    with pytest.raises(InvalidManifest):
        parse_manifest(tmp_path / "missing.txt")


def test_dependency_list():
    assert parse_dependency_list("") == []
    assert parse_dependency_list("A>=1  B<2 C") == ["A", "B", "C"]


def test_manifest_detection(tmp_path, make_manifest):
    addon = tmp_path / "MyAddon"
    addon.mkdir()
    (addon / "readme.txt").write_text("just text")
    (addon / "Example.txt").write_text(make_manifest("Example"))
    (addon / "MyAddon.addon").write_text(make_manifest("MyAddon"))

    assert not is_manifest_file(addon / "readme.txt")
    assert FolderStructureDetector().find_manifest(addon) == addon / "MyAddon.addon"


def test_find_addon_root_skips_examples(tmp_path, make_manifest):
    root = tmp_path / "extracted"
    (root / "repo-main" / "examples").mkdir(parents=True)
    (root / "repo-main" / "examples" / "Demo.txt").write_text(make_manifest("Demo"))
    (root / "repo-main" / "Real").mkdir()
    (root / "repo-main" / "Real" / "Real.txt").write_text(make_manifest("Real"))

    detector = FolderStructureDetector()
    addon_root = detector.find_addon_root(root)
    assert addon_root == root / "repo-main" / "Real"
    assert detector.addon_name_from_root(addon_root) == "Real"
