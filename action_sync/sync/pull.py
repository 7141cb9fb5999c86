"""
Pull — Mirror the CodeQL Action and its bundles from GitHub into the cache.

Three steps per invocation:

1. Fetch Git references into the cache's bare repository, incrementally if
   possible, falling back to a fresh clone, then prune references that no
   longer exist upstream.
2. Discover which bundle releases are live by reading ``src/defaults.json``
   at the tip of every release branch and tag.
3. Download each live release's metadata and assets, skipping assets that
   are already present with the right size.

Any failure aborts the pull and leaves the cache locked, so a later push
knows the cache is incomplete.
"""

from __future__ import annotations

import json
import logging
import re
import shutil
from typing import List, Optional

from pydantic import ValidationError

from .. import __version__
from ..cache import CACHE_REFERENCE_PREFIX, CacheDirectory
from ..cancellation import CancellationToken
from ..errors import SyncError, local_error, wrap_error
from ..git import GitRepository, GitTransport
from ..github import ClientConfig, GitHubClient
from ..models import configuration as action_configuration
from ..models.release import Release, strip_release_metadata
from ..progress import NullProgress, ProgressSink

logger = logging.getLogger(__name__)

SOURCE_OWNER = "github"
SOURCE_REPOSITORY = "codeql-action"
SOURCE_URL = f"https://github.com/{SOURCE_OWNER}/{SOURCE_REPOSITORY}.git"

FETCH_REFSPECS = [
    f"+refs/heads/*:{CACHE_REFERENCE_PREFIX}heads/*",
    f"+refs/tags/*:{CACHE_REFERENCE_PREFIX}tags/*",
]

RELEVANT_REFERENCES = re.compile(
    "^" + re.escape(CACHE_REFERENCE_PREFIX) + r"(heads|tags)/(main|v\d+)$"
)


def remote_name_for(local_name: str) -> str:
    """Map a cached reference back to the name the source advertises it as."""
    if local_name.startswith(CACHE_REFERENCE_PREFIX):
        return "refs/" + local_name[len(CACHE_REFERENCE_PREFIX):]
    return local_name


class PullService:
    """One pull run against one cache directory."""

    def __init__(
        self,
        cache_directory: CacheDirectory,
        github_client: GitHubClient,
        git_clone_url: str = SOURCE_URL,
        source_token: Optional[str] = None,
        insecure: bool = False,
        cancel: Optional[CancellationToken] = None,
        progress: Optional[ProgressSink] = None,
    ):
        self.cache_directory = cache_directory
        self.github_client = github_client
        self.git_clone_url = git_clone_url
        self.cancel = cancel or CancellationToken()
        self.progress = progress or NullProgress()
        self.transport = GitTransport(token=source_token, insecure=insecure)

    def _repository(self) -> GitRepository:
        return GitRepository(self.cache_directory.git_path(), self.transport, self.cancel)

    # ------------------------------------------------------------------
    # Git
    # ------------------------------------------------------------------

    def pull_git(self, fresh: bool) -> List[str]:
        """
        Fetch the source's branches and tags into the cache.

        With ``fresh`` the local store is discarded and re-initialised first.
        Returns the references that changed.
        """
        if fresh:
            logger.info("Pulling Git contents fresh...")
        else:
            logger.info("Updating Git contents...")
        repository = self._repository()

        if fresh:
            self.cancel.raise_if_cancelled()
            git_path = self.cache_directory.git_path()
            try:
                if git_path.is_dir():
                    shutil.rmtree(git_path)
                elif git_path.exists():
                    git_path.unlink()
            except OSError as e:
                raise local_error("Error removing existing Git repository cache.", e)
            try:
                repository.init_bare()
            except SyncError as e:
                raise e.wrap("Error initializing Git repository cache.")
        elif not repository.is_repository():
            raise SyncError("Error opening Git repository cache: no repository found.")

        try:
            changed = repository.fetch(self.git_clone_url, FETCH_REFSPECS, force=True)
        except SyncError as e:
            raise e.wrap("Error doing Git fetch.")
        if changed:
            logger.info(f"Fetched {len(changed)} updated reference(s)")
        else:
            logger.info("Git contents already up to date")

        self.prune_references(repository)
        return changed

    def prune_references(self, repository: Optional[GitRepository] = None) -> List[str]:
        """Delete cached references the source no longer advertises."""
        repository = repository or self._repository()
        try:
            remote_refs = repository.list_remote_refs(self.git_clone_url)
        except SyncError as e:
            raise e.wrap("Error listing source references.")

        pruned = []
        for name in sorted(repository.references()):
            if not name.startswith("refs/"):
                continue
            if remote_name_for(name) in remote_refs:
                continue
            logger.info(f"Pruning {name} as it no longer exists upstream", extra={"reference": name})
            try:
                repository.delete_ref(name)
            except SyncError as e:
                raise e.wrap(f"Error deleting reference {name}.")
            pruned.append(name)
        return pruned

    def update_git(self) -> None:
        """Incremental fetch, falling back to a fresh clone on any failure."""
        try:
            self.pull_git(fresh=False)
        except SyncError as e:
            if self.cancel.cancelled:
                raise
            # Expected on first run; also covers a corrupt store. Either way
            # the store is safe to throw away.
            logger.warning(f"Incremental Git update failed, cloning fresh instead: {e}")
            self.pull_git(fresh=True)

    # ------------------------------------------------------------------
    # Releases
    # ------------------------------------------------------------------

    def find_relevant_releases(self) -> List[str]:
        """Bundle releases referenced by main and the vN branches/tags, in first-seen order."""
        logger.info("Finding release references...")
        repository = self._repository()
        releases: List[str] = []
        seen = set()

        for name, sha in sorted(repository.references().items()):
            if not RELEVANT_REFERENCES.match(name):
                continue
            logger.info(f"Found {name}.")
            try:
                commit = repository.resolve_commit(sha)
            except SyncError as e:
                raise e.wrap(f"Error loading commit {sha} for reference {name}.")
            try:
                content = repository.read_file(commit, action_configuration.DEFAULT_CONFIGURATION_PATH)
            except SyncError as e:
                raise e.wrap(
                    f"Error loading default configuration file from commit {commit} "
                    f"for reference {name}."
                )
            if content is None:
                logger.info(f"Ignoring reference {name} as it does not have a default configuration.")
                continue

            configuration = action_configuration.parse(content)
            if configuration.bundle_version not in seen:
                seen.add(configuration.bundle_version)
                releases.append(configuration.bundle_version)
        return releases

    def pull_releases(self) -> None:
        logger.info("Pulling CodeQL bundles...")
        relevant_releases = self.find_relevant_releases()

        for index, release_tag in enumerate(relevant_releases, start=1):
            self.cancel.raise_if_cancelled()
            logger.info(
                f"Pulling CodeQL bundle {release_tag} ({index}/{len(relevant_releases)})...",
                extra={"release": release_tag},
            )
            self.pull_release(release_tag)

    def pull_release(self, release_tag: str) -> None:
        data = self.github_client.get_release_by_tag(SOURCE_OWNER, SOURCE_REPOSITORY, release_tag)
        if data is None:
            raise SyncError(f"Error loading CodeQL release information: release {release_tag} not found.")
        try:
            release = Release.model_validate(data)
        except ValidationError as e:
            raise SyncError(f"Error loading CodeQL release information for {release_tag}.", cause=e)

        try:
            self.cache_directory.release_path(release_tag).mkdir(parents=True, exist_ok=True)
            self.cache_directory.metadata_path(release_tag).write_text(
                json.dumps(strip_release_metadata(data), indent=2), encoding="utf-8"
            )
            self.cache_directory.assets_path(release_tag).mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise local_error("Error writing release metadata.", e)

        for asset in release.assets:
            self.pull_asset(release_tag, asset.id, asset.name, asset.size)

    def pull_asset(self, release_tag: str, asset_id: int, asset_name: str, size: int) -> bool:
        """Download one asset unless the cached copy already has the right size.

        Returns True if the asset was downloaded.
        """
        download_path = self.cache_directory.asset_path(release_tag, asset_name)
        if download_path.is_file() and download_path.stat().st_size == size:
            logger.info(
                f"Asset {asset_name} is already in cache.",
                extra={"release": release_tag, "asset": asset_name},
            )
            return False

        logger.info(
            f"Downloading asset {asset_name}...",
            extra={"release": release_tag, "asset": asset_name},
        )
        try:
            if download_path.is_dir():
                shutil.rmtree(download_path)
            elif download_path.exists():
                download_path.unlink()
        except OSError as e:
            raise local_error("Error removing existing cached asset.", e)

        try:
            with download_path.open("wb") as f:
                self.github_client.download_release_asset(
                    SOURCE_OWNER,
                    SOURCE_REPOSITORY,
                    asset_id,
                    f,
                    size=size,
                    label=asset_name,
                    progress=self.progress,
                )
        except SyncError as e:
            raise e.wrap(f"Error downloading asset {asset_name}.")
        except OSError as e:
            raise local_error("Error writing cached asset file.", e)
        return True


def pull(
    cache_directory: CacheDirectory,
    source_token: Optional[str] = None,
    insecure: bool = False,
    cancel: Optional[CancellationToken] = None,
    progress: Optional[ProgressSink] = None,
    github_client: Optional[GitHubClient] = None,
    git_clone_url: str = SOURCE_URL,
    version: str = __version__,
) -> None:
    """Pull the CodeQL Action and its bundles into ``cache_directory``."""
    cancel = cancel or CancellationToken()
    cache_directory.check_or_create_version_file(pull=True, version=version)
    cache_directory.lock()

    owns_client = github_client is None
    if github_client is None:
        github_client = GitHubClient(
            ClientConfig(token=source_token, verify=not insecure), cancel=cancel
        )

    service = PullService(
        cache_directory,
        github_client,
        git_clone_url=git_clone_url,
        source_token=source_token,
        insecure=insecure,
        cancel=cancel,
        progress=progress,
    )
    try:
        service.update_git()
        service.pull_releases()
    except OSError as e:
        raise wrap_error(e, "Error pulling the CodeQL Action.")
    finally:
        if owns_client:
            github_client.close()

    cache_directory.unlock()
    logger.info("Finished pulling the CodeQL Action repository and bundles!")
