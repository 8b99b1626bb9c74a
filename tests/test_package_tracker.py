import json
import threading

import pytest

import package_tracker
from errors import RecordStoreError
from package_tracker import PackageTracker


def test_upsert_persists_and_keeps_install_time(tmp_path, make_record):
    tracker = PackageTracker(tmp_path)
    first = tracker.upsert(make_record("lib-x", version="1.0"))
    second = tracker.upsert(make_record("lib-x", version="2.0"))

    reopened = PackageTracker(tmp_path)
    stored = reopened.get_by_slug("lib-x")
    assert stored.installed_version == "2.0"
    assert stored.installed_at == first.installed_at
    assert stored.updated_at == second.updated_at


def test_get_all_sorted_by_name(tracker, make_record):
    tracker.upsert(make_record("b", name="Zeta"))
    tracker.upsert(make_record("a", name="alpha"))
    assert [record.slug for record in tracker.get_all()] == ["a", "b"]


def test_delete(tracker, make_record):
    tracker.upsert(make_record("lib-x"))
    assert tracker.delete("lib-x")
    assert not tracker.delete("lib-x")
    assert tracker.get_by_slug("lib-x") is None


def test_unknown_source_kind_rejected(tracker, make_record):
    with pytest.raises(ValueError):
        tracker.upsert(make_record("lib-x", source_kind="ftp"))


def test_corrupt_file_raises(tmp_path):
    (tmp_path / "addon-packages.json").write_text("{not json", encoding="utf-8")
    with pytest.raises(RecordStoreError):
        PackageTracker(tmp_path)


def test_unwritable_store_raises(tmp_path, make_record):
    blocker = tmp_path / "blocked"
    blocker.write_text("a file where the data directory should be")
    tracker = PackageTracker(blocker / "data")
    with pytest.raises(RecordStoreError):
        tracker.upsert(make_record("lib-x"))


def test_unknown_fields_are_ignored(tmp_path):
    data = {"addons": {"lib-x": {"slug": "lib-x", "name": "LibX", "installed_version": "1",
                                 "source_kind": "index", "manifest_path": "/a/LibX/LibX.txt",
                                 "legacy_field": True}}}
    (tmp_path / "addon-packages.json").write_text(json.dumps(data), encoding="utf-8")
    record = PackageTracker(tmp_path).get_by_slug("lib-x")
    assert record.name == "LibX"
    assert not record.installed_as_dependency


def test_concurrent_upserts_do_not_lose_records(tracker, make_record):
    threads = [threading.Thread(target=tracker.upsert, args=(make_record(f"lib-{i}"),)) for i in range(8)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()
    assert len(PackageTracker(tracker.data_dir).get_all()) == 8


def test_custom_repos_and_settings(tracker):
    tracker.add_custom_repo("owner/Addon", branch="dev", release_type="branch")
    assert tracker.get_custom_repo("owner/Addon")["branch"] == "dev"
    tracker.mark_repo_checked("owner/Addon")
    assert tracker.get_custom_repos()[0]["last_checked"]
    assert tracker.remove_custom_repo("owner/Addon")
    assert tracker.get_custom_repos() == []

    with pytest.raises(ValueError):
        tracker.add_custom_repo("owner/Addon", release_type="nightly")

    tracker.set_setting("download_timeout", 10)
    assert PackageTracker(tracker.data_dir).get_setting("download_timeout") == 10
    assert tracker.get_setting("missing", "fallback") == "fallback"


def _fail_replace(src, dst):
    raise OSError("disk full")


def test_failed_write_keeps_previous_state(tracker, make_record, monkeypatch):
    tracker.upsert(make_record("lib-a"))
    tracker.add_custom_repo("owner/Addon")
    tracker.set_setting("download_timeout", 10)
    monkeypatch.setattr(package_tracker.os, "replace", _fail_replace)

    with pytest.raises(RecordStoreError):
        tracker.upsert(make_record("lib-x"))
    assert tracker.get_by_slug("lib-x") is None

    with pytest.raises(RecordStoreError):
        tracker.delete("lib-a")
    assert tracker.get_by_slug("lib-a") is not None

    with pytest.raises(RecordStoreError):
        tracker.remove_custom_repo("owner/Addon")
    with pytest.raises(RecordStoreError):
        tracker.mark_repo_checked("owner/Addon")
    assert tracker.get_custom_repo("owner/Addon")["last_checked"] is None

    with pytest.raises(RecordStoreError):
        tracker.set_setting("download_timeout", 99)
    assert tracker.get_setting("download_timeout") == 10

    monkeypatch.undo()
    assert [record.slug for record in PackageTracker(tracker.data_dir).get_all()] == ["lib-a"]
