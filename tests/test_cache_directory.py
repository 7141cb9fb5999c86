"""
Tests for the cache directory: version marker, lock marker, and paths.
"""

from __future__ import annotations

from pathlib import Path

import pytest

from action_sync.cache import CacheDirectory
from action_sync.cache.directory import (
    ERROR_CACHE_LOCKED,
    ERROR_CACHE_PARENT_DOES_NOT_EXIST,
    ERROR_CACHE_WRONG_VERSION,
    ERROR_NOT_A_CACHE_OR_EMPTY,
    ERROR_PUSH_NON_CACHE,
)
from action_sync.errors import ErrorKind, SyncError


class TestVersionFile:

    def test_pull_creates_missing_directory(self, tmp_path: Path):
        cache = CacheDirectory(tmp_path / "cache")
        cache.check_or_create_version_file(pull=True, version="1.0.0")

        assert (tmp_path / "cache").is_dir()
        assert cache.read_version() == "1.0.0"

    def test_pull_adopts_empty_directory(self, tmp_path: Path):
        (tmp_path / "cache").mkdir()
        cache = CacheDirectory(tmp_path / "cache")
        cache.check_or_create_version_file(pull=True, version="1.0.0")

        assert cache.read_version() == "1.0.0"

    def test_pull_then_push_same_version(self, tmp_path: Path):
        cache = CacheDirectory(tmp_path / "cache")
        cache.check_or_create_version_file(pull=True, version="1.0.0")
        cache.check_or_create_version_file(pull=False, version="1.0.0")

    def test_push_with_other_version_fails(self, tmp_path: Path):
        cache = CacheDirectory(tmp_path / "cache")
        cache.check_or_create_version_file(pull=True, version="1.0.0")

        with pytest.raises(SyncError) as exc_info:
            cache.check_or_create_version_file(pull=False, version="2.0.0")
        assert str(exc_info.value) == ERROR_CACHE_WRONG_VERSION
        assert exc_info.value.kind == ErrorKind.USER

    def test_pull_with_other_version_rebuilds(self, tmp_path: Path):
        cache = CacheDirectory(tmp_path / "cache")
        cache.check_or_create_version_file(pull=True, version="1.0.0")
        leftover = cache.asset_path("some-release", "bundle.tar.gz")
        leftover.parent.mkdir(parents=True)
        leftover.write_bytes(b"old")

        cache.check_or_create_version_file(pull=True, version="2.0.0")

        assert not leftover.exists()
        assert not cache.releases_path().exists()
        assert cache.read_version() == "2.0.0"

    def test_pull_refuses_non_cache_directory(self, tmp_path: Path):
        (tmp_path / "cache").mkdir()
        (tmp_path / "cache" / "important.txt").write_text("do not delete")
        cache = CacheDirectory(tmp_path / "cache")

        with pytest.raises(SyncError) as exc_info:
            cache.check_or_create_version_file(pull=True, version="1.0.0")
        assert str(exc_info.value) == ERROR_NOT_A_CACHE_OR_EMPTY
        assert (tmp_path / "cache" / "important.txt").read_text() == "do not delete"

    def test_pull_requires_parent(self, tmp_path: Path):
        cache = CacheDirectory(tmp_path / "missing" / "cache")

        with pytest.raises(SyncError) as exc_info:
            cache.check_or_create_version_file(pull=True, version="1.0.0")
        assert str(exc_info.value) == ERROR_CACHE_PARENT_DOES_NOT_EXIST
        assert not (tmp_path / "missing").exists()

    def test_push_to_missing_directory_fails(self, tmp_path: Path):
        cache = CacheDirectory(tmp_path / "cache")

        with pytest.raises(SyncError) as exc_info:
            cache.check_or_create_version_file(pull=False, version="1.0.0")
        assert str(exc_info.value) == ERROR_PUSH_NON_CACHE

    def test_push_to_non_cache_directory_fails(self, tmp_path: Path):
        (tmp_path / "cache").mkdir()
        (tmp_path / "cache" / "file").write_text("x")
        cache = CacheDirectory(tmp_path / "cache")

        with pytest.raises(SyncError) as exc_info:
            cache.check_or_create_version_file(pull=False, version="1.0.0")
        assert str(exc_info.value) == ERROR_PUSH_NON_CACHE


class TestLock:

    def test_lock_cycle(self, tmp_path: Path):
        cache = CacheDirectory(tmp_path / "cache")
        cache.check_or_create_version_file(pull=True, version="1.0.0")

        cache.check_lock()
        cache.lock()
        with pytest.raises(SyncError) as exc_info:
            cache.check_lock()
        assert str(exc_info.value) == ERROR_CACHE_LOCKED

        cache.unlock()
        cache.check_lock()

    def test_double_lock_is_not_an_error(self, tmp_path: Path):
        cache = CacheDirectory(tmp_path / "cache")
        cache.check_or_create_version_file(pull=True, version="1.0.0")

        cache.lock()
        cache.lock()
        with pytest.raises(SyncError):
            cache.check_lock()

    def test_unlock_without_lock_is_local_error(self, tmp_path: Path):
        cache = CacheDirectory(tmp_path / "cache")
        cache.check_or_create_version_file(pull=True, version="1.0.0")

        with pytest.raises(SyncError) as exc_info:
            cache.unlock()
        assert exc_info.value.kind == ErrorKind.LOCAL


class TestPaths:

    def test_layout(self, tmp_path: Path):
        cache = CacheDirectory(tmp_path / "cache")
        root = tmp_path / "cache"

        assert cache.version_file_path() == root / ".version"
        assert cache.lock_file_path() == root / ".lock"
        assert cache.git_path() == root / "git"
        assert cache.metadata_path("r1") == root / "releases" / "r1" / "metadata.json"
        assert cache.asset_path("r1", "a.tar.gz") == root / "releases" / "r1" / "assets" / "a.tar.gz"

    def test_path_is_normalised(self, tmp_path: Path):
        cache = CacheDirectory(str(tmp_path / "x" / ".." / "cache") + "/")
        assert cache.path == tmp_path / "cache"

    def test_release_and_asset_names(self, tmp_path: Path):
        cache = CacheDirectory(tmp_path / "cache")
        assert cache.release_names() == []

        for release in ("b-release", "a-release"):
            cache.assets_path(release).mkdir(parents=True)
        cache.asset_path("a-release", "two.zip").write_bytes(b"2")
        cache.asset_path("a-release", "one.zip").write_bytes(b"1")

        assert cache.release_names() == ["a-release", "b-release"]
        assert cache.asset_names("a-release") == ["one.zip", "two.zip"]
        assert cache.asset_names("b-release") == []
