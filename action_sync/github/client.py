"""
GitHub Client — The subset of the GitHub REST API the sync engines need.

Works against github.com and GitHub Enterprise Server alike. All behaviour
(endpoint, credential, TLS verification) comes from an explicit
``ClientConfig``; switching to an impersonation token is ``with_token()``.

Failed requests raise ``GitHubAPIError`` which carries the status code and
the scope, rate-limit and request-id headers the push engine uses to diagnose
permission problems.
"""

from __future__ import annotations

import logging
import mimetypes
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Any, BinaryIO, Dict, Iterable, Iterator, List, Optional, Tuple

import httpx

from ..cancellation import CancellationToken
from ..errors import ErrorKind, SyncError
from ..progress import NullProgress, ProgressSink

logger = logging.getLogger(__name__)

GITHUB_DOT_COM_API_URL = "https://api.github.com"

X_OAUTH_SCOPES_HEADER = "X-OAuth-Scopes"
X_ACCEPTED_OAUTH_SCOPES_HEADER = "X-Accepted-OAuth-Scopes"
X_GITHUB_REQUEST_ID_HEADER = "X-GitHub-Request-Id"
X_RATELIMIT_REMAINING_HEADER = "X-RateLimit-Remaining"
X_GITHUB_ENTERPRISE_VERSION_HEADER = "X-GitHub-Enterprise-Version"

CHUNK_SIZE = 1024 * 1024
PAGE_SIZE = 100


@dataclass(frozen=True)
class ClientConfig:
    """Everything needed to build an HTTP client for one GitHub host."""

    api_url: str = GITHUB_DOT_COM_API_URL
    token: Optional[str] = None
    verify: bool = True
    timeout: float = 60.0
    user_agent: str = "codeql-action-sync"
    transport: Optional[httpx.BaseTransport] = None

    @classmethod
    def for_enterprise(cls, url: str, token: Optional[str] = None, **kwargs: Any) -> "ClientConfig":
        """GitHub Enterprise Server serves its API under /api/v3."""
        return cls(api_url=url.rstrip("/") + "/api/v3", token=token, **kwargs)


class GitHubAPIError(SyncError):
    """A failed GitHub API call."""

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        headers: Optional[httpx.Headers] = None,
        errors: Optional[List[Dict[str, Any]]] = None,
        cause: Optional[BaseException] = None,
    ):
        headers = headers if headers is not None else httpx.Headers()
        self.status_code = status_code
        self.scopes = headers.get(X_OAUTH_SCOPES_HEADER)
        self.accepted_scopes = headers.get(X_ACCEPTED_OAUTH_SCOPES_HEADER)
        self.rate_limit_remaining = headers.get(X_RATELIMIT_REMAINING_HEADER)
        self.request_id = headers.get(X_GITHUB_REQUEST_ID_HEADER)
        self.errors = errors or []

        if self.request_id:
            message = f"{message} ({self.request_id})"
        if status_code is None or status_code >= 500:
            kind = ErrorKind.INFRASTRUCTURE
        else:
            kind = ErrorKind.USER
        super().__init__(message, kind=kind, cause=cause)

    def has_error_code(self, code: str) -> bool:
        return any(isinstance(e, dict) and e.get("code") == code for e in self.errors)

    def diagnosis(self) -> str:
        """Scope and rate-limit details from the response, for permission errors."""
        details = []
        if self.scopes is not None:
            details.append(f"The token has the scopes: {self.scopes or '(none)'}.")
        if self.accepted_scopes:
            details.append(f"The request accepts the scopes: {self.accepted_scopes}.")
        if self.rate_limit_remaining == "0":
            details.append("The API rate limit has been exhausted.")
        return " ".join(details)


def has_any_scope(headers: Optional[httpx.Headers], *scopes: str) -> bool:
    """True if the ``X-OAuth-Scopes`` header grants any of ``scopes``."""
    if headers is None or X_OAUTH_SCOPES_HEADER not in headers:
        return False
    granted = {s.strip() for s in headers[X_OAUTH_SCOPES_HEADER].split(",")}
    return any(scope in granted for scope in scopes)


def _json(response: httpx.Response, error_message: str, expected: type = dict) -> Any:
    """Decode a successful response body, or raise ``GitHubAPIError``."""
    try:
        payload = response.json()
    except ValueError as e:
        raise GitHubAPIError(
            f"{error_message} The response was not JSON.",
            status_code=response.status_code,
            headers=response.headers,
            cause=e,
        )
    if not isinstance(payload, expected):
        raise GitHubAPIError(
            f"{error_message} Unexpected response of type {type(payload).__name__}.",
            status_code=response.status_code,
            headers=response.headers,
        )
    return payload


def _error_from_response(message: str, response: httpx.Response) -> GitHubAPIError:
    errors: List[Dict[str, Any]] = []
    detail = ""
    try:
        payload = response.json()
    except ValueError:
        payload = None
    if isinstance(payload, dict):
        detail = str(payload.get("message") or "")
        if isinstance(payload.get("errors"), list):
            errors = payload["errors"]
    cause = SyncError(f"HTTP {response.status_code}" + (f": {detail}" if detail else ""))
    return GitHubAPIError(
        message,
        status_code=response.status_code,
        headers=response.headers,
        errors=errors,
        cause=cause,
    )


class GitHubClient:
    """Synchronous GitHub REST client built on ``httpx``."""

    def __init__(self, config: ClientConfig, cancel: Optional[CancellationToken] = None):
        self.config = config
        self.cancel = cancel or CancellationToken()

        headers = {
            "Accept": "application/vnd.github+json",
            "User-Agent": config.user_agent,
        }
        if config.token:
            headers["Authorization"] = f"Bearer {config.token}"

        self._http = httpx.Client(
            base_url=config.api_url.rstrip("/") + "/",
            headers=headers,
            verify=config.verify,
            timeout=config.timeout,
            transport=config.transport,
        )
        # Asset storage redirects must not receive our API credentials.
        self._storage = httpx.Client(
            headers={"User-Agent": config.user_agent},
            verify=config.verify,
            timeout=config.timeout,
            transport=config.transport,
            follow_redirects=True,
        )

    def with_token(self, token: str) -> "GitHubClient":
        return GitHubClient(replace(self.config, token=token), cancel=self.cancel)

    def close(self) -> None:
        self._http.close()
        self._storage.close()

    def __enter__(self) -> "GitHubClient":
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()

    # ------------------------------------------------------------------
    # Request plumbing
    # ------------------------------------------------------------------

    def request(
        self,
        method: str,
        url: str,
        error_message: str,
        ok: Iterable[int] = (200, 201, 204),
        **kwargs: Any,
    ) -> httpx.Response:
        """Send a request, raising ``GitHubAPIError`` unless the status is in ``ok``."""
        self.cancel.raise_if_cancelled()
        try:
            response = self._http.request(method, url, **kwargs)
        except httpx.HTTPError as e:
            raise GitHubAPIError(error_message, cause=e)
        if response.status_code not in tuple(ok):
            raise _error_from_response(error_message, response)
        return response

    def _get_optional(self, url: str, error_message: str) -> Optional[Dict[str, Any]]:
        response = self.request("GET", url, error_message, ok=(200, 404))
        if response.status_code == 404:
            return None
        return _json(response, error_message)

    def probe(self) -> httpx.Response:
        """Raw ``GET`` of the API root without following redirects."""
        self.cancel.raise_if_cancelled()
        try:
            return self._http.get("", follow_redirects=False)
        except httpx.HTTPError as e:
            raise GitHubAPIError(
                f"Error connecting to {self.config.api_url}.", cause=e
            )

    # ------------------------------------------------------------------
    # Users and organizations
    # ------------------------------------------------------------------

    def get_user(self) -> Tuple[Dict[str, Any], httpx.Headers]:
        response = self.request("GET", "user", "Error getting current user.", ok=(200,))
        return _json(response, "Error getting current user."), response.headers

    def get_organization(self, org: str) -> Optional[Dict[str, Any]]:
        return self._get_optional(
            f"orgs/{org}", "Error checking if destination organization exists."
        )

    def create_organization(self, login: str, admin: str) -> Dict[str, Any]:
        response = self.request(
            "POST",
            "admin/organizations",
            "Error creating organization.",
            ok=(201,),
            json={"login": login, "profile_name": login, "admin": admin},
        )
        return _json(response, "Error creating organization.")

    def get_org_membership(self, org: str) -> Optional[Dict[str, Any]]:
        response = self.request(
            "GET",
            f"user/memberships/orgs/{org}",
            "Error checking organization membership.",
            ok=(200, 403, 404),
        )
        if response.status_code != 200:
            return None
        return _json(response, "Error checking organization membership.")

    def create_impersonation_token(self, username: str, scopes: List[str]) -> str:
        response = self.request(
            "POST",
            f"admin/users/{username}/authorizations",
            f"Error creating impersonation token for {username}.",
            ok=(200, 201),
            json={"scopes": scopes},
        )
        token = _json(response, "Error creating impersonation token.").get("token")
        if not isinstance(token, str) or not token:
            raise GitHubAPIError(
                f"Error creating impersonation token for {username}. The response has no token.",
                status_code=response.status_code,
                headers=response.headers,
            )
        return token

    # ------------------------------------------------------------------
    # Repositories
    # ------------------------------------------------------------------

    def get_repository(self, owner: str, name: str) -> Optional[Dict[str, Any]]:
        return self._get_optional(
            f"repos/{owner}/{name}", "Error checking if destination repository exists."
        )

    def create_repository(self, org: Optional[str], properties: Dict[str, Any]) -> Dict[str, Any]:
        url = f"orgs/{org}/repos" if org else "user/repos"
        response = self.request(
            "POST", url, "Error creating destination repository.", ok=(201,), json=properties
        )
        return _json(response, "Error creating destination repository.")

    def edit_repository(self, owner: str, name: str, properties: Dict[str, Any]) -> Dict[str, Any]:
        response = self.request(
            "PATCH",
            f"repos/{owner}/{name}",
            "Error updating destination repository.",
            ok=(200,),
            json=properties,
        )
        return _json(response, "Error updating destination repository.")

    # ------------------------------------------------------------------
    # Releases
    # ------------------------------------------------------------------

    def get_release_by_tag(self, owner: str, name: str, tag: str) -> Optional[Dict[str, Any]]:
        return self._get_optional(
            f"repos/{owner}/{name}/releases/tags/{tag}",
            f"Error loading release information for {tag}.",
        )

    def create_release(self, owner: str, name: str, body: Dict[str, Any]) -> Dict[str, Any]:
        response = self.request(
            "POST",
            f"repos/{owner}/{name}/releases",
            "Error creating release.",
            ok=(201,),
            json=body,
        )
        return _json(response, "Error creating release.")

    def edit_release(self, owner: str, name: str, release_id: int, body: Dict[str, Any]) -> Dict[str, Any]:
        response = self.request(
            "PATCH",
            f"repos/{owner}/{name}/releases/{release_id}",
            "Error updating release.",
            ok=(200,),
            json=body,
        )
        return _json(response, "Error updating release.")

    def list_release_assets(self, owner: str, name: str, release_id: int) -> List[Dict[str, Any]]:
        assets: List[Dict[str, Any]] = []
        page = 1
        while True:
            response = self.request(
                "GET",
                f"repos/{owner}/{name}/releases/{release_id}/assets",
                "Error fetching existing release assets.",
                ok=(200,),
                params={"page": page, "per_page": PAGE_SIZE},
            )
            batch = _json(response, "Error fetching existing release assets.", expected=list)
            if not batch:
                break
            assets.extend(batch)
            if len(batch) < PAGE_SIZE:
                break
            page += 1
        return assets

    def delete_release_asset(self, owner: str, name: str, asset_id: int) -> None:
        self.request(
            "DELETE",
            f"repos/{owner}/{name}/releases/assets/{asset_id}",
            "Error deleting release asset.",
            ok=(204,),
        )

    def upload_release_asset(
        self,
        upload_url: str,
        path: Path,
        progress: Optional[ProgressSink] = None,
    ) -> Dict[str, Any]:
        """Upload the file at ``path`` as a release asset named after it."""
        progress = progress or NullProgress()
        size = path.stat().st_size
        content_type = mimetypes.guess_type(path.name)[0] or "application/octet-stream"

        progress.start(path.name, size)
        try:
            with path.open("rb") as f:
                response = self.request(
                    "POST",
                    upload_url,
                    "Error uploading release asset.",
                    ok=(201,),
                    params={"name": path.name},
                    headers={"Content-Type": content_type, "Content-Length": str(size)},
                    content=self._read_chunks(f, progress),
                )
        finally:
            progress.finish()
        return _json(response, "Error uploading release asset.")

    def download_release_asset(
        self,
        owner: str,
        name: str,
        asset_id: int,
        destination: BinaryIO,
        size: int = 0,
        label: str = "",
        progress: Optional[ProgressSink] = None,
    ) -> int:
        """
        Stream a release asset into ``destination``.

        The API answers either with the content itself or with a redirect to
        external storage, which is then fetched without API credentials.
        Returns the number of bytes written.
        """
        progress = progress or NullProgress()
        url = f"repos/{owner}/{name}/releases/assets/{asset_id}"
        error_message = "Error downloading asset."
        self.cancel.raise_if_cancelled()

        progress.start(label or str(asset_id), size)
        try:
            try:
                with self._http.stream(
                    "GET",
                    url,
                    headers={"Accept": "application/octet-stream"},
                    follow_redirects=False,
                ) as response:
                    if response.is_redirect:
                        location = response.headers.get("Location")
                        if not location:
                            raise GitHubAPIError(
                                f"{error_message} Redirect without a location.",
                                status_code=response.status_code,
                                headers=response.headers,
                            )
                        return self._download_from_storage(location, destination, progress)
                    if response.status_code != 200:
                        response.read()
                        raise _error_from_response(error_message, response)
                    return self._write_stream(response, destination, progress)
            except httpx.HTTPError as e:
                raise GitHubAPIError(error_message, cause=e)
        finally:
            progress.finish()

    def _download_from_storage(self, url: str, destination: BinaryIO, progress: ProgressSink) -> int:
        logger.debug("Following asset redirect to external storage")
        with self._storage.stream("GET", url) as response:
            if response.status_code >= 300:
                response.read()
                raise GitHubAPIError(
                    f"Status code {response.status_code} while downloading asset.",
                    status_code=response.status_code,
                    headers=response.headers,
                )
            return self._write_stream(response, destination, progress)

    def _write_stream(self, response: httpx.Response, destination: BinaryIO, progress: ProgressSink) -> int:
        written = 0
        for chunk in response.iter_bytes(CHUNK_SIZE):
            self.cancel.raise_if_cancelled()
            destination.write(chunk)
            written += len(chunk)
            progress.advance(len(chunk))
        return written

    def _read_chunks(self, f: BinaryIO, progress: ProgressSink) -> Iterator[bytes]:
        while True:
            self.cancel.raise_if_cancelled()
            chunk = f.read(CHUNK_SIZE)
            if not chunk:
                break
            progress.advance(len(chunk))
            yield chunk
