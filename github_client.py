"""
GitHub Client
Release lookups for custom repositories tracked outside the catalog
"""

import logging
import os
import re
from dataclasses import dataclass
from typing import Optional
from urllib.parse import urlparse

import requests

from catalog import DownloadSource
from download_orchestrator import USER_AGENT

logger = logging.getLogger(__name__)

API_ROOT = 'https://api.github.com'
_REPO = re.compile(r'^[\w.-]+/[\w.-]+$')


@dataclass(frozen=True)
class GitHubRelease:
    tag_name: str
    download_url: str
    asset_name: Optional[str] = None
    published_at: Optional[str] = None

    @property
    def version(self):
        tag = self.tag_name
        return tag[1:] if tag[:1] in ('v', 'V') else tag

    def download_source(self):
        return DownloadSource(self.download_url, 'github_release')


class RateLimited(Exception):
    pass


def normalize_repo(repo):
    """Accept 'owner/repo' or a github.com URL and return 'owner/repo'.

    Returns:
        str or None - None when the value is not a GitHub repository
    """
    repo = (repo or '').strip()
    if repo.startswith(('http://', 'https://')):
        parsed = urlparse(repo)
        if parsed.netloc.lower() not in ('github.com', 'www.github.com'):
            return None
        parts = parsed.path.strip('/').split('/')
        if len(parts) < 2:
            return None
        repo = f"{parts[0]}/{parts[1]}"
    if repo.endswith('.git'):
        repo = repo[:-4]
    return repo if _REPO.match(repo) else None


def branch_archive_url(repo, branch):
    return f"https://github.com/{repo}/archive/refs/heads/{branch}.zip"


class GitHubClient:
    def __init__(self, token=None, session=None, timeout=10):
        self.token = token or os.environ.get('GITHUB_TOKEN')
        self.session = session or requests.Session()
        self.timeout = timeout

    def _headers(self):
        headers = {'User-Agent': USER_AGENT, 'Accept': 'application/vnd.github.v3+json'}
        if self.token:
            headers['Authorization'] = f'token {self.token}'
        return headers

    def _get(self, path):
        response = self.session.get(f"{API_ROOT}{path}", headers=self._headers(), timeout=self.timeout)
        if response.status_code == 403:
            try:
                message = response.json().get('message', '')
            except ValueError:
                message = ''
            if 'rate limit' in message.lower():
                raise RateLimited('GitHub API rate limit exceeded. Configure a GitHub token in Settings.')
        return response

    def repo_exists(self, repo):
        return self._get(f"/repos/{repo}").status_code == 200

    def latest_release(self, repo):
        """Latest release of a repository, preferring a .zip asset over the zipball.

        Args:
            repo: str - 'owner/repo'

        Returns:
            GitHubRelease or None - None when the repository has no releases

        Raises:
            RateLimited - GitHub refused the request
            requests.RequestException - network failure
        """
        response = self._get(f"/repos/{repo}/releases/latest")
        if response.status_code != 200:
            logger.debug("No latest release for %s (HTTP %s)", repo, response.status_code)
            return None

        data = response.json()
        tag = data.get('tag_name') or 'unknown'
        for asset in data.get('assets') or []:
            name = asset.get('name') or ''
            if name.lower().endswith('.zip') and asset.get('browser_download_url'):
                return GitHubRelease(tag, asset['browser_download_url'], name, data.get('published_at'))

        if data.get('zipball_url'):
            return GitHubRelease(tag, data['zipball_url'], None, data.get('published_at'))
        return None
