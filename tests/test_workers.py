import pytest

QtCore = pytest.importorskip("PyQt6.QtCore")

from errors import CatalogEntryNotFound  # noqa: E402
from package_tracker import InstalledRecord  # noqa: E402
from workers import BatchUpdateWorker, InstallWorker, ScanWorker, UpdateCheckWorker  # noqa: E402


@pytest.fixture(scope="module", autouse=True)
def qt_app():
    return QtCore.QCoreApplication.instance() or QtCore.QCoreApplication([])


class FakeEvent:
    def to_dict(self):
        return {"slug": "lib-x", "status": "complete"}


class FakeManager:
    def __init__(self):
        self.cancel_event = None

    def install_with_dependencies(self, root_slug, optional_slugs=(), cancel_event=None, on_event=None):
        if root_slug == "nope":
            raise CatalogEntryNotFound(root_slug)
        self.cancel_event = cancel_event
        on_event(FakeEvent())
        return [{"slug": root_slug, "success": True}]

    def refresh_catalog(self, force_refresh=False):
        pass

    def check_for_updates(self):
        return [{"slug": "lib-x", "new_version": "2.0"}]

    def update_package(self, slug, cancel_event=None):
        if slug == "broken":
            raise CatalogEntryNotFound(slug)
        return InstalledRecord(slug, slug, "2.0", "index", f"/a/{slug}/{slug}.txt")

    def scan_existing_packages(self):
        record = InstalledRecord("harvestmap", "HarvestMap", "1", "local", "/a/HarvestMap/HarvestMap.txt")
        return {"imported": 1, "records": [record]}


def test_install_worker_relays_events():
    manager = FakeManager()
    worker = InstallWorker(manager, "addon-a")
    events, finished = [], []
    worker.event.connect(events.append)
    worker.finished.connect(finished.append)

    worker.run()

    assert events == [{"slug": "lib-x", "status": "complete"}]
    assert finished == [[{"slug": "addon-a", "success": True}]]
    worker.cancel()
    assert manager.cancel_event.is_set()


def test_install_worker_reports_failure():
    worker = InstallWorker(FakeManager(), "nope")
    failures = []
    worker.failed.connect(failures.append)
    worker.run()
    assert failures == ['Addon "nope" is not in the catalog']


def test_update_check_worker():
    worker = UpdateCheckWorker(FakeManager())
    results = []
    worker.finished.connect(results.append)
    worker.run()
    assert results == [[{"slug": "lib-x", "new_version": "2.0"}]]


def test_batch_update_worker_counts():
    worker = BatchUpdateWorker(FakeManager(), ["lib-x", "broken"])
    counts, log = [], []
    worker.finished.connect(lambda updated, failed: counts.append((updated, failed)))
    worker.log.connect(log.append)
    worker.run()
    assert counts == [(1, 1)]
    assert log[0] == "lib-x updated to 2.0"


def test_scan_worker():
    worker = ScanWorker(FakeManager())
    results = []
    worker.finished.connect(results.append)
    worker.run()
    assert results == [{"imported": 1, "slugs": ["harvestmap"]}]
