import json

import pytest
import requests

from catalog_fetcher import CatalogFetcher
from errors import CatalogFetchError

URL = "https://index.example/addons.json"
DOCUMENT = {"version": "2.0", "addons": [{"slug": "lib-x", "name": "LibX"}]}


def write_cache(tmp_path, fetched_at, etag='"v1"'):
    cache = {"data": DOCUMENT, "fetched_at": fetched_at, "etag": etag, "url": URL}
    (tmp_path / "index-cache.json").write_text(json.dumps(cache), encoding="utf-8")


def test_fetch_stores_cache_with_etag(tmp_path, fake_session, fake_response):
    session = fake_session({URL: fake_response(json_data=DOCUMENT, headers={"ETag": '"v1"'})})
    snapshot = CatalogFetcher(tmp_path, url=URL, session=session).fetch_catalog()

    assert [entry.slug for entry in snapshot] == ["lib-x"]
    cache = json.loads((tmp_path / "index-cache.json").read_text(encoding="utf-8"))
    assert cache["etag"] == '"v1"'
    assert snapshot.fetched_at == cache["fetched_at"]


def test_fresh_cache_skips_network(tmp_path, fake_session):
    write_cache(tmp_path, "2999-01-01T00:00:00+00:00")
    session = fake_session()
    snapshot = CatalogFetcher(tmp_path, url=URL, session=session).fetch_catalog()

    assert "lib-x" in snapshot
    assert session.calls == []


def test_stale_cache_is_revalidated(tmp_path, fake_session, fake_response):
    write_cache(tmp_path, "2000-01-01T00:00:00+00:00")
    session = fake_session({URL: fake_response(status_code=304)})
    snapshot = CatalogFetcher(tmp_path, url=URL, session=session).fetch_catalog()

    assert session.calls[0]["headers"]["If-None-Match"] == '"v1"'
    assert "lib-x" in snapshot
    assert not snapshot.fetched_at.startswith("2000")


def test_force_refresh_ignores_fresh_cache(tmp_path, fake_session, fake_response):
    write_cache(tmp_path, "2999-01-01T00:00:00+00:00")
    updated = {"addons": [{"slug": "lib-y"}]}
    session = fake_session({URL: fake_response(json_data=updated)})
    snapshot = CatalogFetcher(tmp_path, url=URL, session=session).fetch_catalog(force_refresh=True)

    assert "If-None-Match" not in session.calls[0]["headers"]
    assert [entry.slug for entry in snapshot] == ["lib-y"]


def test_network_failure_falls_back_to_cache(tmp_path, fake_session):
    write_cache(tmp_path, "2000-01-01T00:00:00+00:00")
    session = fake_session({URL: requests.ConnectionError("offline")})
    snapshot = CatalogFetcher(tmp_path, url=URL, session=session).fetch_catalog()
    assert "lib-x" in snapshot


def test_network_failure_without_cache_raises(tmp_path, fake_session, fake_response):
    session = fake_session({URL: fake_response(status_code=500)})
    fetcher = CatalogFetcher(tmp_path, url=URL, session=session)
    with pytest.raises(CatalogFetchError):
        fetcher.fetch_catalog()
    assert fetcher.cached_catalog() is None
