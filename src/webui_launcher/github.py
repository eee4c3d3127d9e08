"""
Convenience functions to list releases, branches and commits of the
git repositories that packages are installed from.
"""

import json
from functools import lru_cache
from typing import TypedDict
from urllib.request import Request, urlopen

from typing_extensions import NotRequired

from webui_launcher.models import PackageVersion
from webui_launcher.utils import user_agent

API_URL = 'https://api.github.com'


class ReleaseDict(TypedDict):
    """Subset of https://docs.github.com/en/rest/releases objects."""

    tag_name: str
    prerelease: bool
    body: NotRequired[str | None]


class BranchDict(TypedDict):
    name: str


class CommitDict(TypedDict):
    sha: str
    commit: NotRequired[dict]


def _get_json(url: str):
    headers = {
        'User-Agent': user_agent(),
        'Accept': 'application/vnd.github+json',
    }
    with urlopen(Request(url, headers=headers)) as resp:
        return json.load(resp)


@lru_cache
def releases(owner: str, repo: str) -> tuple[ReleaseDict, ...]:
    return tuple(_get_json(f'{API_URL}/repos/{owner}/{repo}/releases'))


@lru_cache
def branches(owner: str, repo: str) -> tuple[BranchDict, ...]:
    return tuple(_get_json(f'{API_URL}/repos/{owner}/{repo}/branches'))


@lru_cache
def commits(
    owner: str, repo: str, branch: str, per_page: int = 10
) -> tuple[CommitDict, ...]:
    return tuple(
        _get_json(
            f'{API_URL}/repos/{owner}/{repo}/commits'
            f'?sha={branch}&per_page={per_page}'
        )
    )


def get_releases(owner: str, repo: str) -> list[PackageVersion]:
    """Releases of `owner/repo`, newest first."""
    return [
        PackageVersion(
            tag_name=release['tag_name'],
            release_notes_markdown=release.get('body') or '',
            is_prerelease=release['prerelease'],
        )
        for release in releases(owner, repo)
    ]


def get_branches(owner: str, repo: str) -> list[PackageVersion]:
    return [
        PackageVersion(tag_name=branch['name'])
        for branch in branches(owner, repo)
    ]


def get_commits(
    owner: str, repo: str, branch: str, per_page: int = 10
) -> list[str]:
    """Commit hashes at the tip of `branch`, newest first."""
    return [commit['sha'] for commit in commits(owner, repo, branch, per_page)]


def cache_clear() -> None:
    """Clear the cache for all cached functions in this module."""
    releases.cache_clear()
    branches.cache_clear()
    commits.cache_clear()
