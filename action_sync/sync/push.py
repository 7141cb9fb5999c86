"""
Push — Mirror the cache into a repository on a GitHub Enterprise host.

The order matters. Releases cannot be created for tags the destination does
not have yet, and pushing ``main`` (and everything else) before the
releases exist would publish Git content that points at missing bundles.
So the push is staged:

1. Push only the tags that cached releases are attached to.
2. Create or update the releases and upload their assets.
3. Push ``main`` on its own, so a freshly created repository adopts it as
   the default branch, then force-push every other branch and tag and
   delete anything the source no longer has.

This works as long as nobody uses one tag both as an Action version and as
a bundle release.
"""

from __future__ import annotations

import json
import logging
import re
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

from .. import __version__
from ..cache import CACHE_REFERENCE_PREFIX, CacheDirectory
from ..cancellation import CancellationToken
from ..config import DEFAULT_ACTIONS_ADMIN_USER, DEFAULT_DESTINATION_REPOSITORY
from ..errors import SyncError, local_error
from ..git import GitRepository, GitTransport
from ..github import ClientConfig, GitHubAPIError, GitHubClient, has_any_scope
from ..github.client import X_GITHUB_ENTERPRISE_VERSION_HEADER, X_OAUTH_SCOPES_HEADER
from ..models.release import release_request_body, strip_release_metadata
from ..progress import NullProgress, ProgressSink

logger = logging.getLogger(__name__)

# Marks repositories this tool created, so foreign ones are never overwritten.
REPOSITORY_HOMEPAGE = "https://github.com/github/codeql-action-sync-tool/"

MAX_UPLOAD_ATTEMPTS = 3

REQUIRED_TOKEN_SCOPES = ("public_repo", "repo")
IMPERSONATION_SCOPES = ["public_repo", "workflow"]

ERROR_ALREADY_EXISTS = (
    "The destination repository already exists, but it was not created with the "
    "CodeQL Action sync tool. If you are sure you want to push the CodeQL Action "
    "to it, re-run this command with the `--force` flag."
)
ERROR_INVALID_TOKEN = (
    "The destination token you have provided is not valid. Please check it and "
    "try again."
)
ERROR_MISSING_SCOPE = (
    "The destination token you have provided does not have the `public_repo` "
    "scope (or `repo`). Please add it and try again."
)
ERROR_CREATE_ORGANIZATION = (
    "The organization {org} does not exist and could not be created. Creating "
    "organizations requires a site administrator token with the `site_admin` scope."
)
ERROR_IMPERSONATION = (
    "Could not impersonate {user} to push to the organization {org}. Impersonation "
    "requires a site administrator token with the `site_admin` scope."
)
ERROR_NOT_MEMBER = (
    "The user {login} is not a member of the organization {org}. Either add them "
    "to the organization, or use a site administrator token so that the tool can "
    "act as `{user}` instead."
)
ERROR_INVALID_REPOSITORY_NAME = (
    "Invalid destination repository {name!r}. It must be in the form `owner/name`."
)
ERROR_REDIRECT = (
    "The destination URL {url} redirected to {location}. Please use the URL of "
    "the GitHub Enterprise instance itself."
)
ERROR_NOT_AN_API = (
    "The destination URL {url} does not appear to be a GitHub Enterprise instance "
    "(HTTP {status} from its API)."
)

_UPLOAD_URL_TEMPLATE = re.compile(r"\{[^}]*\}$")


def _diagnosis(error: GitHubAPIError) -> str:
    details = error.diagnosis()
    return " " + details if details else ""


def split_repository(destination_repository: str) -> Tuple[str, str]:
    parts = destination_repository.split("/")
    if len(parts) != 2 or not all(parts):
        raise SyncError(ERROR_INVALID_REPOSITORY_NAME.format(name=destination_repository))
    return parts[0], parts[1]


class PushService:
    """One push run from one cache directory to one destination repository."""

    def __init__(
        self,
        cache_directory: CacheDirectory,
        github_client: GitHubClient,
        destination_repository_owner: str,
        destination_repository_name: str,
        destination_token: str,
        actions_admin_user: Optional[str] = None,
        force: bool = False,
        push_ssh: bool = False,
        insecure: bool = False,
        uploads_url: Optional[str] = None,
        cancel: Optional[CancellationToken] = None,
        progress: Optional[ProgressSink] = None,
    ):
        self.cache_directory = cache_directory
        self.github_client = github_client
        self.destination_repository_owner = destination_repository_owner
        self.destination_repository_name = destination_repository_name
        self.destination_token = destination_token
        self.actions_admin_user = actions_admin_user or DEFAULT_ACTIONS_ADMIN_USER
        self.force = force
        self.push_ssh = push_ssh
        self.insecure = insecure
        self.uploads_url = uploads_url
        self.cancel = cancel or CancellationToken()
        self.progress = progress or NullProgress()
        self.desired_visibility = "public"

    @property
    def _repo(self) -> Tuple[str, str]:
        return self.destination_repository_owner, self.destination_repository_name

    # ------------------------------------------------------------------
    # Destination repository
    # ------------------------------------------------------------------

    def probe_destination(self) -> None:
        """Check the destination answers like a GitHub API and detect its variant."""
        url = self.github_client.config.api_url
        response = self.github_client.probe()
        if response.is_redirect:
            raise SyncError(
                ERROR_REDIRECT.format(url=url, location=response.headers.get("Location", "?"))
            )
        if response.status_code == 404:
            raise SyncError(ERROR_NOT_AN_API.format(url=url, status=response.status_code))

        enterprise_version = response.headers.get(X_GITHUB_ENTERPRISE_VERSION_HEADER, "")
        if enterprise_version.startswith("GitHub AE"):
            # GitHub AE has no public repositories.
            self.desired_visibility = "internal"
        if enterprise_version:
            logger.info(f"Destination is {enterprise_version}")
        else:
            logger.debug("Destination did not report an enterprise version")

    def _switch_token(self, token: str) -> None:
        self.destination_token = token
        self.github_client = self.github_client.with_token(token)

    def _impersonate(self) -> None:
        logger.info(f"Impersonating {self.actions_admin_user} to push as an organization member...")
        owner = self.destination_repository_owner
        try:
            token = self.github_client.create_impersonation_token(
                self.actions_admin_user, IMPERSONATION_SCOPES
            )
        except GitHubAPIError as e:
            if e.status_code in (401, 403, 404):
                raise SyncError(
                    ERROR_IMPERSONATION.format(user=self.actions_admin_user, org=owner) + _diagnosis(e),
                    cause=e,
                )
            raise
        self._switch_token(token)

    def _ensure_organization(self, user: Dict[str, Any]) -> None:
        owner = self.destination_repository_owner
        login = user.get("login", "")

        if self.github_client.get_organization(owner) is None:
            logger.info(f"The organization {owner} does not exist. Creating it...")
            try:
                self.github_client.create_organization(owner, login)
            except GitHubAPIError as e:
                if e.status_code in (403, 404):
                    raise SyncError(
                        ERROR_CREATE_ORGANIZATION.format(org=owner) + _diagnosis(e), cause=e
                    )
                raise

        membership = self.github_client.get_org_membership(owner)
        if membership is not None and membership.get("state", "active") == "active":
            return
        if user.get("site_admin"):
            self._impersonate()
            return
        raise SyncError(
            ERROR_NOT_MEMBER.format(login=login, org=owner, user=self.actions_admin_user)
        )

    def create_repository(self) -> Dict[str, Any]:
        """Create or update the destination repository and return it."""
        logger.info("Ensuring repository exists...")
        owner, name = self._repo

        try:
            user, headers = self.github_client.get_user()
        except GitHubAPIError as e:
            if e.status_code == 401:
                raise SyncError(ERROR_INVALID_TOKEN, cause=e)
            raise
        if X_OAUTH_SCOPES_HEADER in headers and not has_any_scope(headers, *REQUIRED_TOKEN_SCOPES):
            raise SyncError(ERROR_MISSING_SCOPE)

        # Repositories go either into a named organization or under the user.
        destination_organization = None
        if owner != user.get("login"):
            destination_organization = owner
            self._ensure_organization(user)

        repository = self.github_client.get_repository(owner, name)
        if (
            repository is not None
            and repository.get("homepage") != REPOSITORY_HOMEPAGE
            and not self.force
        ):
            raise SyncError(ERROR_ALREADY_EXISTS)

        properties: Dict[str, Any] = {
            "name": name,
            "homepage": REPOSITORY_HOMEPAGE,
            "has_issues": False,
            "has_projects": False,
            "has_pages": False,
            "has_wiki": False,
            "has_downloads": False,
            "archived": False,
        }
        if repository is None:
            properties["visibility"] = self.desired_visibility
            return self.github_client.create_repository(destination_organization, properties)

        # Some hosts reject a visibility "change" to the current value.
        if repository.get("visibility") != self.desired_visibility:
            properties["visibility"] = self.desired_visibility
        return self.github_client.edit_repository(owner, name, properties)

    # ------------------------------------------------------------------
    # Git
    # ------------------------------------------------------------------

    def _git_repository(self) -> GitRepository:
        transport = GitTransport(token=self.destination_token, insecure=self.insecure)
        return GitRepository(self.cache_directory.git_path(), transport, self.cancel)

    def _remote_url(self, repository: Dict[str, Any]) -> str:
        key = "ssh_url" if self.push_ssh else "clone_url"
        url = repository.get(key)
        if not url:
            raise SyncError(f"The destination repository has no {key}.")
        return url

    def push_git(self, repository: Dict[str, Any], initial_push: bool) -> None:
        remote_url = self._remote_url(repository)
        if initial_push:
            logger.info(f"Pushing Git releases to {remote_url}...")
        else:
            logger.info(f"Pushing Git references to {remote_url}...")

        git_repository = self._git_repository()
        try:
            local_refs = git_repository.references()
        except SyncError as e:
            raise e.wrap("Error reading Git repository from cache.")

        batches: List[List[str]] = []
        if initial_push:
            refspecs = []
            for release in self.cache_directory.release_names():
                source = f"{CACHE_REFERENCE_PREFIX}tags/{release}"
                if source in local_refs:
                    refspecs.append(f"+{source}:refs/tags/{release}")
                else:
                    logger.warning(f"No tag found for release {release}, not pushing it")
            batches.append(refspecs)
        else:
            self.delete_stale_references(
                git_repository, remote_url, local_refs, repository.get("default_branch")
            )
            main = f"{CACHE_REFERENCE_PREFIX}heads/main"
            if main in local_refs:
                batches.append([f"+{main}:refs/heads/main"])
            else:
                logger.warning("The cache has no main branch to push first")
            batches.append([
                f"+{CACHE_REFERENCE_PREFIX}heads/*:refs/heads/*",
                f"+{CACHE_REFERENCE_PREFIX}tags/*:refs/tags/*",
            ])

        for refspecs in batches:
            try:
                changed = git_repository.push(remote_url, refspecs, force=True)
            except SyncError as e:
                raise e.wrap("Error pushing Action to GitHub Enterprise Server.")
            if not changed:
                logger.info("Already up to date")

    def delete_stale_references(
        self,
        git_repository: GitRepository,
        remote_url: str,
        local_refs: Dict[str, str],
        default_branch: Optional[str] = None,
    ) -> List[str]:
        """Delete destination branches and tags that the cache no longer has.

        The destination's default branch is kept even when stale, as the host
        refuses to delete it.
        """
        expected = {
            "refs/" + name[len(CACHE_REFERENCE_PREFIX):]
            for name in local_refs
            if name.startswith(CACHE_REFERENCE_PREFIX)
        }
        try:
            remote_refs = git_repository.list_remote_refs(remote_url)
        except SyncError as e:
            raise e.wrap("Error listing destination references.")
        stale = sorted(
            name
            for name in remote_refs
            if name.startswith(("refs/heads/", "refs/tags/")) and name not in expected
        )
        protected = f"refs/heads/{default_branch}" if default_branch else None
        if protected in stale:
            logger.warning(
                f"Not deleting {protected} as it is the destination's default branch",
                extra={"reference": protected},
            )
            stale.remove(protected)
        if stale:
            logger.info(f"Deleting {len(stale)} reference(s) removed at the source: {', '.join(stale)}")
            try:
                git_repository.delete_remote_refs(remote_url, stale)
            except SyncError as e:
                raise e.wrap("Error deleting stale references from destination.")
        return stale

    # ------------------------------------------------------------------
    # Releases
    # ------------------------------------------------------------------

    def _load_release_metadata(self, release_name: str) -> Dict[str, Any]:
        path = self.cache_directory.metadata_path(release_name)
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
        except OSError as e:
            raise local_error("Error reading release metadata.", e)
        except ValueError as e:
            raise local_error("Error converting release from JSON.", e)
        return strip_release_metadata(data)

    def create_or_update_release(self, release_name: str) -> Dict[str, Any]:
        owner, name = self._repo
        metadata = self._load_release_metadata(release_name)
        body = release_request_body(metadata)
        tag_name = body.setdefault("tag_name", release_name)

        release = self.github_client.get_release_by_tag(owner, name, tag_name)
        if release is None:
            logger.info(f"Creating release {tag_name}...", extra={"release": tag_name})
            return self.github_client.create_release(owner, name, body)
        logger.info(f"Updating release {tag_name}...", extra={"release": tag_name})
        return self.github_client.edit_release(owner, name, release["id"], body)

    def _upload_url(self, release: Dict[str, Any]) -> str:
        upload_url = release.get("upload_url")
        if upload_url:
            return _UPLOAD_URL_TEMPLATE.sub("", upload_url)
        owner, name = self._repo
        base = (self.uploads_url or self.github_client.config.api_url).rstrip("/")
        return f"{base}/repos/{owner}/{name}/releases/{release['id']}/assets"

    def upload_release_asset(self, release: Dict[str, Any], asset_path: Path) -> None:
        """Upload, retrying server and transport errors a bounded number of times."""
        upload_url = self._upload_url(release)
        for attempt in range(1, MAX_UPLOAD_ATTEMPTS + 1):
            try:
                self.github_client.upload_release_asset(upload_url, asset_path, self.progress)
                return
            except GitHubAPIError as e:
                if e.status_code == 422 and e.has_error_code("already_exists"):
                    # Another attempt already landed the same asset.
                    logger.info(f"Asset {asset_path.name} already exists, treating as uploaded")
                    return
                if e.retryable and attempt < MAX_UPLOAD_ATTEMPTS:
                    logger.warning(
                        f"Upload of {asset_path.name} failed (attempt {attempt}/"
                        f"{MAX_UPLOAD_ATTEMPTS}): {e}. Retrying..."
                    )
                    continue
                raise e.wrap("Error uploading release asset.")

    def create_or_update_release_asset(
        self,
        release: Dict[str, Any],
        existing_assets: List[Dict[str, Any]],
        release_name: str,
        asset_name: str,
    ) -> bool:
        """Upload one cached asset unless the destination already has it.

        Returns True if the asset was uploaded.
        """
        owner, name = self._repo
        asset_path = self.cache_directory.asset_path(release_name, asset_name)
        try:
            size = asset_path.stat().st_size
        except OSError as e:
            raise local_error("Error opening release asset.", e)

        for existing in existing_assets:
            if existing.get("name") != asset_name:
                continue
            if existing.get("size") == size:
                logger.debug(f"Asset {asset_name} is already uploaded")
                return False
            logger.info(
                f"Deleting asset {asset_name} with size {existing.get('size')} "
                f"(expected {size}), probably from an interrupted upload..."
            )
            self.github_client.delete_release_asset(owner, name, existing["id"])

        logger.info(
            f"Uploading release asset {asset_name}...",
            extra={"release": release_name, "asset": asset_name},
        )
        self.upload_release_asset(release, asset_path)
        return True

    def push_releases(self) -> None:
        logger.info("Pushing CodeQL bundles...")
        owner, name = self._repo

        for release_name in self.cache_directory.release_names():
            self.cancel.raise_if_cancelled()
            release = self.create_or_update_release(release_name)
            existing_assets = self.github_client.list_release_assets(owner, name, release["id"])
            for asset_name in self.cache_directory.asset_names(release_name):
                try:
                    self.create_or_update_release_asset(
                        release, existing_assets, release_name, asset_name
                    )
                except SyncError as e:
                    raise e.wrap("Error uploading release assets.")


def push(
    cache_directory: CacheDirectory,
    destination_url: str,
    destination_token: str,
    destination_repository: str = DEFAULT_DESTINATION_REPOSITORY,
    actions_admin_user: Optional[str] = None,
    force: bool = False,
    push_ssh: bool = False,
    insecure: bool = False,
    cancel: Optional[CancellationToken] = None,
    progress: Optional[ProgressSink] = None,
    github_client: Optional[GitHubClient] = None,
    version: str = __version__,
) -> None:
    """Push the cache to ``destination_repository`` on ``destination_url``."""
    cancel = cancel or CancellationToken()
    cache_directory.check_or_create_version_file(pull=False, version=version)
    cache_directory.check_lock()

    owner, name = split_repository(destination_repository)
    destination_url = destination_url.rstrip("/")

    owns_client = github_client is None
    if github_client is None:
        github_client = GitHubClient(
            ClientConfig.for_enterprise(destination_url, destination_token, verify=not insecure),
            cancel=cancel,
        )

    service = PushService(
        cache_directory,
        github_client,
        owner,
        name,
        destination_token,
        actions_admin_user=actions_admin_user,
        force=force,
        push_ssh=push_ssh,
        insecure=insecure,
        uploads_url=destination_url + "/api/uploads",
        cancel=cancel,
        progress=progress,
    )
    try:
        service.probe_destination()
        repository = service.create_repository()
        service.push_git(repository, initial_push=True)
        service.push_releases()
        service.push_git(repository, initial_push=False)
    finally:
        if owns_client:
            github_client.close()
        if service.github_client is not github_client:
            service.github_client.close()

    logger.info(f"Finished pushing CodeQL Action to {destination_repository}!")
