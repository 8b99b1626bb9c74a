import io
import zipfile

import pytest
import requests

from catalog import CatalogSnapshot, parse_entry
from package_tracker import InstalledRecord, PackageTracker


class FakeResponse:
    def __init__(self, status_code=200, content=b'', headers=None, json_data=None):
        self.status_code = status_code
        self.content = content
        self.headers = headers if headers is not None else {'Content-Length': str(len(content))}
        self._json = json_data
        self.closed = False

    def iter_content(self, chunk_size=1):
        for start in range(0, len(self.content), chunk_size):
            yield self.content[start:start + chunk_size]

    def json(self):
        if self._json is None:
            raise ValueError('no JSON body')
        return self._json

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.HTTPError(f'HTTP {self.status_code}')

    def close(self):
        self.closed = True


class FakeSession:
    """Serves canned responses per URL; a list is consumed one response per call."""

    def __init__(self, routes=None):
        self.routes = dict(routes or {})
        self.calls = []

    def get(self, url, headers=None, stream=False, timeout=None):
        self.calls.append({'url': url, 'headers': dict(headers or {}), 'timeout': timeout})
        if url not in self.routes:
            raise requests.ConnectionError(f'no route to {url}')
        route = self.routes[url]
        if isinstance(route, list):
            route = route.pop(0)
        if isinstance(route, Exception):
            raise route
        return route


def build_zip(files):
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, 'w') as archive:
        for name, content in files.items():
            archive.writestr(name, content)
    return buffer.getvalue()


def manifest_text(title, version='1.0', depends_on='', saved_variables=''):
    lines = [f'## Title: {title}', '## APIVersion: 101041', f'## Version: {version}']
    if depends_on:
        lines.append(f'## DependsOn: {depends_on}')
    if saved_variables:
        lines.append(f'## SavedVariables: {saved_variables}')
    lines.append(f'{title}.lua')
    return '\n'.join(lines) + '\n'


@pytest.fixture()
def make_zip():
    return build_zip


@pytest.fixture()
def make_manifest():
    return manifest_text


@pytest.fixture()
def make_entry():
    def factory(slug, requires=(), optional=(), name=None, target_folder=None, version='1.0',
                sort_key=None, commit_sha=None, urls=None, **extra):
        raw = {
            'slug': slug,
            'name': name or slug,
            'source': {'type': 'github', 'repo': f'author/{slug}', 'branch': 'main'},
            'install': {'method': 'release', 'target_folder': target_folder or slug},
            'compatibility': {
                'required_dependencies': list(requires),
                'optional_dependencies': list(optional),
            },
        }
        if version is not None:
            raw['latest_release'] = {
                'version': version,
                'commit_sha': commit_sha,
                'download_sources': [
                    {'type': 'jsdelivr', 'url': url}
                    for url in (urls if urls is not None else [f'https://cdn.example/{slug}.zip'])
                ],
            }
            if sort_key is not None:
                raw['version_info'] = {'version_sort_key': sort_key}
        raw.update(extra)
        return parse_entry(raw)
    return factory


@pytest.fixture()
def make_catalog():
    def factory(*entries):
        return CatalogSnapshot(entries, fetched_at='2026-01-01T00:00:00+00:00')
    return factory


@pytest.fixture()
def make_record():
    def factory(slug, name=None, version='1.0', source_kind='index', manifest_path=None, **extra):
        return InstalledRecord(
            slug=slug,
            name=name or slug,
            installed_version=version,
            source_kind=source_kind,
            manifest_path=manifest_path or f'/addons/{slug}/{slug}.txt',
            **extra
        )
    return factory


@pytest.fixture()
def fake_session():
    return FakeSession


@pytest.fixture()
def fake_response():
    return FakeResponse


@pytest.fixture()
def tracker(tmp_path):
    return PackageTracker(tmp_path / 'data')


@pytest.fixture()
def addons_dir(tmp_path):
    path = tmp_path / 'live' / 'AddOns'
    path.mkdir(parents=True)
    return path
