import pytest

from github_client import API_ROOT, GitHubClient, RateLimited, normalize_repo


@pytest.mark.parametrize("raw, expected", [
    ("owner/Addon", "owner/Addon"),
    ("https://github.com/owner/Addon", "owner/Addon"),
    ("https://github.com/owner/Addon.git", "owner/Addon"),
    ("https://github.com/owner/Addon/tree/main", "owner/Addon"),
    ("https://gitlab.com/owner/Addon", None),
    ("not a repo", None),
])
def test_normalize_repo(raw, expected):
    assert normalize_repo(raw) == expected


def test_latest_release_prefers_zip_asset(fake_session, fake_response):
    session = fake_session({f"{API_ROOT}/repos/owner/Addon/releases/latest": fake_response(json_data={
        "tag_name": "v1.4",
        "zipball_url": "https://api.github.com/zipball",
        "assets": [
            {"name": "notes.txt", "browser_download_url": "https://dl/notes.txt"},
            {"name": "Addon-1.4.zip", "browser_download_url": "https://dl/Addon-1.4.zip"},
        ],
    })})
    release = GitHubClient(token="t", session=session).latest_release("owner/Addon")

    assert release.version == "1.4"
    assert release.download_url == "https://dl/Addon-1.4.zip"
    assert session.calls[0]["headers"]["Authorization"] == "token t"


def test_latest_release_missing(fake_session, fake_response):
    session = fake_session({f"{API_ROOT}/repos/owner/Addon/releases/latest": fake_response(status_code=404)})
    assert GitHubClient(session=session).latest_release("owner/Addon") is None


def test_rate_limit(fake_session, fake_response):
    session = fake_session({f"{API_ROOT}/repos/owner/Addon/releases/latest": fake_response(
        status_code=403, json_data={"message": "API rate limit exceeded for 1.2.3.4"})})
    with pytest.raises(RateLimited):
        GitHubClient(session=session).latest_release("owner/Addon")
