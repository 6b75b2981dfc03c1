import pytest
import responses
from responses import matchers

from containerbuild import release_notes
from containerbuild.release_notes import GitHubClient

BASE = "https://api.github.com/repos/GoogleContainerTools/kaniko"

RELEASES = [
    {"tag_name": "v1.13.0", "published_at": "2023-07-01T00:00:00Z"},
    {"tag_name": "v1.12.0", "published_at": "2023-06-01T00:00:00Z"},
]

PAGE0 = [
    {"number": 2, "title": "New work", "merged_at": "2023-07-05T10:00:00Z"},
    {"number": 3, "title": "Old work", "merged_at": "2023-06-15T10:00:00Z"},
    {"number": 4, "title": "Closed unmerged", "merged_at": None},
]


@pytest.fixture
def mocked_http():
    with responses.RequestsMock(assert_all_requests_are_fired=False) as rsps:
        yield rsps


def _pulls_query(page):
    return {
        "state": "closed",
        "sort": "updated",
        "direction": "desc",
        "per_page": "100",
        "page": str(page),
    }


def _register(rsps, pages):
    rsps.add(responses.GET, f"{BASE}/releases", json=RELEASES)
    for page, body in enumerate(pages):
        rsps.add(
            responses.GET,
            f"{BASE}/pulls",
            json=body,
            match=[matchers.query_param_matcher(_pulls_query(page))],
        )


def test_format_pull_request():
    line = release_notes.format_pull_request(
        {"number": 12, "title": "Fix thing"}, "GoogleContainerTools", "kaniko"
    )
    assert line == (
        "* Fix thing [#12](https://github.com/GoogleContainerTools/kaniko/pull/12)"
    )


def test_merged_since_filters_by_release_time(mocked_http):
    _register(mocked_http, [PAGE0, []])
    latest, pulls = release_notes.merged_since(
        GitHubClient(), "GoogleContainerTools", "kaniko"
    )
    assert latest["tag_name"] == "v1.13.0"
    assert [pr["number"] for pr in pulls] == [2]


def test_merged_since_walks_pages_until_empty(mocked_http):
    second = [{"number": 9, "title": "Later", "merged_at": "2023-08-01T00:00:00Z"}]
    _register(mocked_http, [PAGE0, second, []])
    _, pulls = release_notes.merged_since(GitHubClient())
    assert [pr["number"] for pr in pulls] == [2, 9]
    pull_calls = [c for c in mocked_http.calls if "/pulls" in c.request.url]
    assert len(pull_calls) == 3


def test_merged_since_without_releases(mocked_http):
    mocked_http.add(responses.GET, f"{BASE}/releases", json=[])
    with pytest.raises(ValueError):
        release_notes.merged_since(GitHubClient())


def test_token_sets_authorization_header(mocked_http):
    mocked_http.add(responses.GET, f"{BASE}/releases", json=RELEASES)
    client = GitHubClient(token="token")
    releases = client.list_releases("GoogleContainerTools", "kaniko")
    assert releases == RELEASES
    assert mocked_http.calls[0].request.headers["Authorization"] == "Bearer token"


def test_no_token_sends_no_authorization(mocked_http):
    mocked_http.add(responses.GET, f"{BASE}/releases", json=RELEASES)
    releases = GitHubClient().list_releases("GoogleContainerTools", "kaniko")
    assert releases == RELEASES
    assert "Authorization" not in mocked_http.calls[0].request.headers


def test_main_prints_changelog(capsys, mocked_http):
    _register(mocked_http, [PAGE0, []])
    assert release_notes.main([]) == 0
    out = capsys.readouterr().out.splitlines()
    assert out[0].startswith(
        "Collecting pull request that were merged since the last release: v1.13.0"
    )
    assert out[1:] == [release_notes.format_pull_request(PAGE0[0])]


def test_main_reports_http_error(capsys, mocked_http):
    mocked_http.add(responses.GET, f"{BASE}/releases", status=500)
    assert release_notes.main([]) == 1
    assert capsys.readouterr().err.strip() != ""