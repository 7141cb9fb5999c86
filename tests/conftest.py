"""
Shared fixtures for the sync tests.

Provides a fake GitHub API served through ``httpx.MockTransport`` and helpers
that build real Git repositories in a temporary directory, so the pull and
push engines run against actual ``git`` without touching the network.
"""

from __future__ import annotations

import json
import shutil
import subprocess
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Tuple, Union

import httpx
import pytest

from action_sync.cache import CacheDirectory
from action_sync.github import ClientConfig, GitHubClient

requires_git = pytest.mark.skipif(shutil.which("git") is None, reason="git is not installed")

MAIN_BUNDLE = "codeql-bundle-20200101"
V1_BUNDLE = "codeql-bundle-20200630"


# ── Fake GitHub API ──────────────────────────────────────────────────


Handler = Callable[[httpx.Request], httpx.Response]


class FakeGitHub:
    """Routes requests by (method, path); anything unrouted fails the test."""

    def __init__(self):
        self.routes: Dict[Tuple[str, str], Union[Handler, List[Handler]]] = {}
        self.requests: List[httpx.Request] = []

    def add(
        self,
        method: str,
        path: str,
        status: int = 200,
        json_body: Any = None,
        content: Optional[bytes] = None,
        headers: Optional[Dict[str, str]] = None,
    ) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            if content is not None:
                return httpx.Response(status, content=content, headers=headers)
            if json_body is not None:
                return httpx.Response(status, json=json_body, headers=headers)
            return httpx.Response(status, headers=headers)

        self.routes[(method, path)] = handler

    def add_sequence(self, method: str, path: str, responses: List[Handler]) -> None:
        """Serve ``responses`` one per call, in order."""
        self.routes[(method, path)] = list(responses)

    def handle(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        key = (request.method, request.url.path)
        if key not in self.routes:
            raise AssertionError(f"Unexpected HTTP request: {request.method} {request.url}")
        route = self.routes[key]
        if isinstance(route, list):
            if not route:
                raise AssertionError(f"No more responses for {request.method} {request.url}")
            return route.pop(0)(request)
        return route(request)

    def calls(self, method: str, path: str) -> List[httpx.Request]:
        return [r for r in self.requests if r.method == method and r.url.path == path]

    def client(self, api_url: str, token: Optional[str] = "token") -> GitHubClient:
        return GitHubClient(
            ClientConfig(api_url=api_url, token=token, transport=httpx.MockTransport(self.handle))
        )


@pytest.fixture
def fake_github() -> FakeGitHub:
    return FakeGitHub()


@pytest.fixture
def cache_directory(tmp_path: Path) -> CacheDirectory:
    return CacheDirectory(tmp_path / "cache")


# ── Git helpers ──────────────────────────────────────────────────────


def git(cwd: Path, *args: str) -> str:
    """Run git with a fixed identity and return stripped stdout."""
    result = subprocess.run(
        [
            "git",
            "-c", "user.name=Test User",
            "-c", "user.email=test@example.com",
            "-c", "commit.gpgsign=false",
            "-c", "tag.gpgsign=false",
            *args,
        ],
        cwd=str(cwd),
        capture_output=True,
        text=True,
        check=True,
    )
    return result.stdout.strip()


def write_defaults(repo: Path, bundle_version: str) -> None:
    (repo / "src").mkdir(exist_ok=True)
    (repo / "src" / "defaults.json").write_text(
        json.dumps({"bundleVersion": bundle_version, "someOtherField": True}), encoding="utf-8"
    )


def commit_all(repo: Path, message: str) -> str:
    git(repo, "add", "-A")
    git(repo, "commit", "-q", "-m", message)
    return git(repo, "rev-parse", "HEAD")


def make_source_repository(root: Path) -> Path:
    """
    Build a stand-in for the CodeQL Action repository:

    - main: bundle MAIN_BUNDLE
    - v1, plus tag v2 at the same commit: bundle V1_BUNDLE
    - v3: release branch without a defaults file
    - very-ignored-branch, an-ignored-tag-too: do not match the release pattern
    - tags MAIN_BUNDLE and V1_BUNDLE: where the bundle releases hang
    """
    repo = root / "source"
    repo.mkdir(parents=True)
    git(repo, "init", "-q")
    git(repo, "symbolic-ref", "HEAD", "refs/heads/main")

    (repo / "README.md").write_text("CodeQL Action\n", encoding="utf-8")
    write_defaults(repo, MAIN_BUNDLE)
    commit_all(repo, "main")
    git(repo, "tag", MAIN_BUNDLE)

    git(repo, "checkout", "-q", "-b", "v1")
    write_defaults(repo, V1_BUNDLE)
    commit_all(repo, "v1")
    git(repo, "tag", "v2")
    git(repo, "tag", V1_BUNDLE)

    git(repo, "checkout", "-q", "main")
    git(repo, "checkout", "-q", "-b", "v3")
    git(repo, "rm", "-q", "src/defaults.json")
    commit_all(repo, "v3 without configuration")

    git(repo, "checkout", "-q", "main")
    git(repo, "branch", "very-ignored-branch")
    git(repo, "tag", "an-ignored-tag-too")
    return repo


def make_bare_repository(path: Path) -> Path:
    git(path.parent, "init", "-q", "--bare", str(path))
    return path


def refs_of(repo: Path) -> Dict[str, str]:
    """All refs of a repository (bare or not) as name -> sha."""
    output = git(repo, "for-each-ref", "--format=%(objectname) %(refname)")
    refs = {}
    for line in output.splitlines():
        sha, _, name = line.partition(" ")
        refs[name] = sha
    return refs


@pytest.fixture
def source_repository(tmp_path: Path) -> Path:
    if shutil.which("git") is None:
        pytest.skip("git is not installed")
    return make_source_repository(tmp_path)
