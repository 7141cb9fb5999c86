"""
Cache Directory — The on-disk mirror of one source repository and its bundles.

Layout:

    <cache>/.version                       tool version that created the cache
    <cache>/.lock                          present while a pull is in progress
    <cache>/git/                           bare Git repository
    <cache>/releases/<id>/metadata.json    release description
    <cache>/releases/<id>/assets/<name>    release asset payloads

The version marker and the lock marker are the only coordination between
runs. The lock is advisory: it tells ``push`` that a ``pull`` was
interrupted, it does not protect against concurrent processes.
"""

from __future__ import annotations

import logging
import os
import shutil
from pathlib import Path
from typing import List, Union

from ..errors import SyncError, ErrorKind, local_error

logger = logging.getLogger(__name__)

VERSION_FILE = ".version"
LOCK_FILE = ".lock"

# Source references live here inside the bare store, away from the
# refs/heads and refs/tags namespaces the destination sees.
CACHE_REFERENCE_PREFIX = "refs/remotes/origin/"

ERROR_CACHE_WRONG_VERSION = (
    "The cache you are trying to push was created with an old version of the "
    "CodeQL Action sync tool. Please re-pull it with this version of the tool."
)
ERROR_NOT_A_CACHE_OR_EMPTY = (
    "The cache directory you have selected is not empty, but was not created "
    "by the CodeQL Action sync tool. If you are sure you want to use this "
    "directory, please delete it and run the sync tool again."
)
ERROR_CACHE_PARENT_DOES_NOT_EXIST = (
    "Cannot create cache directory because its parent does not exist."
)
ERROR_PUSH_NON_CACHE = (
    "The directory you have provided does not appear to be valid. Please check "
    "it exists and that you have run the `pull` command to populate it."
)
ERROR_CACHE_LOCKED = (
    "The cache directory is locked, likely due to a `pull` command being "
    "interrupted. Please run `pull` again to ensure all required data is "
    "downloaded."
)


def _is_empty_or_missing(path: Path) -> bool:
    try:
        with os.scandir(path) as entries:
            return next(entries, None) is None
    except FileNotFoundError:
        return True
    except OSError as e:
        raise local_error(f"Could not read contents of directory {path}.", e)


class CacheDirectory:
    """Owns one cache directory tree."""

    def __init__(self, path: Union[str, Path]):
        self.path = Path(os.path.normpath(os.path.abspath(path)))

    def __repr__(self) -> str:
        return f"CacheDirectory({str(self.path)!r})"

    # ------------------------------------------------------------------
    # Version marker
    # ------------------------------------------------------------------

    def read_version(self) -> str | None:
        """Return the stored version, or None if there is no marker."""
        try:
            return self.version_file_path().read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        except NotADirectoryError:
            return None
        except OSError as e:
            raise local_error("Could not read version file from cache directory.", e)

    def check_or_create_version_file(self, pull: bool, version: str) -> None:
        """
        Validate the cache against ``version``, creating it for a pull.

        For a pull, a cache from another version is destroyed and recreated
        and a fresh directory is initialised. A non-empty directory that was
        never a cache is refused rather than adopted. For a push, anything
        other than an exact match is an error.
        """
        cache_version = self.read_version()
        if cache_version == version:
            return

        if not pull:
            if cache_version is not None:
                raise SyncError(ERROR_CACHE_WRONG_VERSION)
            raise SyncError(ERROR_PUSH_NON_CACHE)

        parent = self.path.parent
        if not parent.exists():
            raise SyncError(ERROR_CACHE_PARENT_DOES_NOT_EXIST)
        if not parent.is_dir():
            raise local_error(f"Parent of cache directory {self.path} is not a directory.")

        if cache_version is not None:
            logger.info(
                f"Cache was created by version {cache_version}, "
                f"rebuilding it for version {version}"
            )
            try:
                shutil.rmtree(self.path)
            except OSError as e:
                raise local_error("Error removing outdated cache directory.", e)

        if not _is_empty_or_missing(self.path):
            raise SyncError(ERROR_NOT_A_CACHE_OR_EMPTY)

        try:
            self.path.mkdir(mode=0o755, exist_ok=True)
        except OSError as e:
            raise local_error("Could not create cache directory.", e)
        try:
            self.version_file_path().write_text(version, encoding="utf-8")
        except OSError as e:
            raise local_error("Could not create cache version file.", e)
        logger.debug(f"Initialised cache directory {self.path} (version {version})")

    # ------------------------------------------------------------------
    # Lock marker
    # ------------------------------------------------------------------

    def lock(self) -> None:
        # Re-locking is fine: the marker only records that a pull started.
        try:
            self.lock_file_path().touch()
        except OSError as e:
            raise local_error("Error locking cache directory.", e)

    def unlock(self) -> None:
        try:
            self.lock_file_path().unlink()
        except OSError as e:
            raise local_error("Error unlocking cache directory.", e)

    def check_lock(self) -> None:
        try:
            locked = self.lock_file_path().exists()
        except OSError as e:
            raise local_error("Error checking if cache directory is locked.", e)
        if locked:
            raise SyncError(ERROR_CACHE_LOCKED, kind=ErrorKind.USER)

    # ------------------------------------------------------------------
    # Paths
    # ------------------------------------------------------------------

    def version_file_path(self) -> Path:
        return self.path / VERSION_FILE

    def lock_file_path(self) -> Path:
        return self.path / LOCK_FILE

    def git_path(self) -> Path:
        return self.path / "git"

    def releases_path(self) -> Path:
        return self.path / "releases"

    def release_path(self, release: str) -> Path:
        return self.releases_path() / release

    def assets_path(self, release: str) -> Path:
        return self.release_path(release) / "assets"

    def asset_path(self, release: str, asset_name: str) -> Path:
        return self.assets_path(release) / asset_name

    def metadata_path(self, release: str) -> Path:
        return self.release_path(release) / "metadata.json"

    # ------------------------------------------------------------------
    # Listing
    # ------------------------------------------------------------------

    def release_names(self) -> List[str]:
        """Cached release identifiers, sorted."""
        try:
            return sorted(p.name for p in self.releases_path().iterdir() if p.is_dir())
        except FileNotFoundError:
            return []
        except OSError as e:
            raise local_error("Error reading releases.", e)

    def asset_names(self, release: str) -> List[str]:
        """Cached asset file names for one release, sorted."""
        try:
            return sorted(p.name for p in self.assets_path(release).iterdir() if p.is_file())
        except FileNotFoundError:
            return []
        except OSError as e:
            raise local_error("Error reading release assets.", e)
