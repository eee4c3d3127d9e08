from urllib.error import HTTPError, URLError

import pytest
from flaky import flaky

from webui_launcher import github
from webui_launcher.models import PackageVersion

RELEASES = [
    {'tag_name': 'v1.7.0-RC', 'prerelease': True, 'body': 'rc'},
    {'tag_name': 'v1.6.0', 'prerelease': False, 'body': None},
]


@pytest.fixture
def fake_api(monkeypatch):
    urls = []

    def _get_json(url):
        urls.append(url)
        if url.endswith('/releases'):
            return RELEASES
        if url.endswith('/branches'):
            return [{'name': 'master'}, {'name': 'dev'}]
        return [{'sha': 'a' * 40}, {'sha': 'b' * 40}]

    monkeypatch.setattr(github, '_get_json', _get_json)
    return urls


def test_get_releases(fake_api):
    assert github.get_releases('owner', 'repo') == [
        PackageVersion('v1.7.0-RC', 'rc', is_prerelease=True),
        PackageVersion('v1.6.0', ''),
    ]
    github.get_releases('owner', 'repo')
    # cached
    assert fake_api == ['https://api.github.com/repos/owner/repo/releases']


def test_get_branches_and_commits(fake_api):
    assert [b.tag_name for b in github.get_branches('owner', 'repo')] == [
        'master',
        'dev',
    ]
    assert github.get_commits('owner', 'repo', 'dev', per_page=2) == [
        'a' * 40,
        'b' * 40,
    ]
    assert fake_api[-1].endswith('/commits?sha=dev&per_page=2')


def test_cache_clear(fake_api):
    github.get_branches('owner', 'repo')
    github.cache_clear()
    github.get_branches('owner', 'repo')
    assert len(fake_api) == 2


@flaky(max_runs=3, min_passes=1)
def test_live_branches():
    try:
        branches = github.get_branches('comfyanonymous', 'ComfyUI')
        names = [b.tag_name for b in branches]
    except (HTTPError, URLError):
        pytest.skip('GitHub API not reachable')
    assert names
    assert all(isinstance(name, str) for name in names)
