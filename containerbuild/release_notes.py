"""List the pull requests merged since the last release, as changelog lines."""

from __future__ import annotations

import argparse
import sys
from datetime import datetime
from typing import Any, Sequence

import requests

ORG = "GoogleContainerTools"
REPO = "kaniko"
API_URL = "https://api.github.com"
PER_PAGE = 100


def _parse_time(text: str) -> datetime:
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    return datetime.fromisoformat(text)


class GitHubClient:
    """A small client for the parts of the GitHub REST API used here."""

    def __init__(
        self,
        token: str = "",
        session: requests.Session | None = None,
        base_url: str = API_URL,
        timeout: float | None = 30.0,
    ) -> None:
        self.session = session if session is not None else requests.Session()
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.session.headers["Accept"] = "application/vnd.github+json"
        if token:
            self.session.headers["Authorization"] = f"Bearer {token}"

    def _get(self, path: str, params: dict[str, Any] | None = None) -> Any:
        resp = self.session.get(
            f"{self.base_url}{path}", params=params, timeout=self.timeout
        )
        resp.raise_for_status()
        return resp.json()

    def list_releases(self, org: str, repo: str) -> list[dict[str, Any]]:
        """Return the repository's releases, newest first."""
        return self._get(f"/repos/{org}/{repo}/releases")

    def list_pull_requests(self, org: str, repo: str, page: int) -> list[dict[str, Any]]:
        """Return one page of closed pull requests, most recently updated first."""
        return self._get(
            f"/repos/{org}/{repo}/pulls",
            params={
                "state": "closed",
                "sort": "updated",
                "direction": "desc",
                "per_page": PER_PAGE,
                "page": page,
            },
        )


def format_pull_request(pr: dict[str, Any], org: str = ORG, repo: str = REPO) -> str:
    """Return the changelog line for one pull request."""
    number = pr["number"]
    return (
        f"* {pr.get('title', '')} "
        f"[#{number}](https://github.com/{org}/{repo}/pull/{number})"
    )


def merged_since(
    client: GitHubClient, org: str = ORG, repo: str = REPO
) -> tuple[dict[str, Any], list[dict[str, Any]]]:
    """Return the latest release and the pull requests merged after it."""
    releases = client.list_releases(org, repo)
    if not releases:
        raise ValueError(f"no releases found for {org}/{repo}")
    latest = releases[0]
    published = _parse_time(latest["published_at"])

    merged = []
    page = 0
    while True:
        pulls = client.list_pull_requests(org, repo, page)
        merged.extend(
            pr
            for pr in pulls
            if pr.get("merged_at") and _parse_time(pr["merged_at"]) > published
        )
        if not pulls:
            break
        page += 1
    return latest, merged


def _build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="listpullreqs",
        description="Lists pull requests between two versions in our changelog "
        "markdown format",
    )
    p.add_argument("tags", nargs="*", help=argparse.SUPPRESS)
    p.add_argument("--token", default="",
                   help="Personal GitHub token, if hitting a rate limit anonymously.")
    p.add_argument("--fromTag", dest="from_tag", default="",
                   help="comparison of commits is based on this tag "
                   "(defaults to the latest tag in the repo)")
    p.add_argument("--toTag", dest="to_tag", default="master",
                   help="this is the commit that is compared with fromTag")
    return p


def main(argv: Sequence[str] | None = None) -> int:
    """Print the changelog lines of pull requests merged since the last release."""
    args = _build_parser().parse_args(argv)
    client = GitHubClient(token=args.token)
    try:
        latest, pulls = merged_since(client, ORG, REPO)
    except (requests.RequestException, ValueError, KeyError) as exc:
        print(exc, file=sys.stderr)
        return 1
    print(
        "Collecting pull request that were merged since the last release: "
        f"{latest.get('tag_name', '')} ({_parse_time(latest['published_at'])})"
    )
    for pr in pulls:
        print(format_pull_request(pr, ORG, REPO))
    return 0