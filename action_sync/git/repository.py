"""
Git Repository — Thin wrapper over the ``git`` executable.

Every command runs with an explicit ``--git-dir`` so a cache that happens to
sit inside another checkout never picks up the surrounding repository.
Credentials and TLS behaviour come from a ``GitTransport`` handed in at
construction; nothing here touches process-wide state.
"""

from __future__ import annotations

import logging
import os
import subprocess
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Union
from urllib.parse import quote, urlsplit, urlunsplit

from ..cancellation import CancellationToken
from ..errors import ErrorKind, SyncError, local_error

logger = logging.getLogger(__name__)

# Username sent alongside a token for HTTP basic auth. GitHub ignores the
# value; the token does the work.
TOKEN_USERNAME = "x-access-token"

# How often a running git command checks for cancellation, and how long it
# gets to exit after being asked to stop.
POLL_INTERVAL = 0.2
STOP_GRACE_PERIOD = 5.0


@dataclass
class GitTransport:
    """How to reach remotes: credentials, TLS verification, timeouts."""

    token: Optional[str] = None
    username: str = TOKEN_USERNAME
    insecure: bool = False
    timeout: Optional[float] = None

    def authenticated_url(self, url: str) -> str:
        """Embed basic-auth credentials into an HTTP(S) remote URL."""
        if not self.token:
            return url
        parts = urlsplit(url)
        if parts.scheme not in ("http", "https"):
            return url
        host = parts.hostname or ""
        if parts.port:
            host = f"{host}:{parts.port}"
        netloc = f"{quote(self.username, safe='')}:{quote(self.token, safe='')}@{host}"
        return urlunsplit((parts.scheme, netloc, parts.path, parts.query, parts.fragment))

    def config_args(self) -> List[str]:
        if self.insecure:
            return ["-c", "http.sslVerify=false"]
        return []

    def redact(self, text: str) -> str:
        if self.token:
            text = text.replace(quote(self.token, safe=""), "***")
            text = text.replace(self.token, "***")
        return text


class GitRepository:
    """A bare repository on local disk."""

    def __init__(
        self,
        path: Union[str, Path],
        transport: Optional[GitTransport] = None,
        cancel: Optional[CancellationToken] = None,
    ):
        self.path = Path(path)
        self.transport = transport or GitTransport()
        self.cancel = cancel or CancellationToken()

    # ------------------------------------------------------------------
    # Command runner
    # ------------------------------------------------------------------

    def _run(
        self,
        *args: str,
        check: bool = True,
        git_dir: bool = True,
        timeout: Optional[float] = None,
    ) -> subprocess.CompletedProcess:
        self.cancel.raise_if_cancelled()

        cmd = ["git"] + self.transport.config_args()
        if git_dir:
            cmd += ["--git-dir", str(self.path)]
        cmd += list(args)

        env = dict(os.environ)
        # Never block waiting for a username/password on a terminal.
        env["GIT_TERMINAL_PROMPT"] = "0"

        timeout = timeout if timeout is not None else self.transport.timeout
        deadline = time.monotonic() + timeout if timeout is not None else None

        try:
            process = subprocess.Popen(
                cmd,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                text=True,
                env=env,
            )
        except FileNotFoundError as e:
            raise local_error("Could not run git. Is it installed and on PATH?", e)

        while True:
            try:
                stdout, stderr = process.communicate(timeout=POLL_INTERVAL)
                break
            except subprocess.TimeoutExpired:
                pass
            if self.cancel.cancelled:
                _stop(process)
                self.cancel.raise_if_cancelled()
            if deadline is not None and time.monotonic() >= deadline:
                _stop(process)
                raise SyncError(
                    f"git {args[0]} timed out after {timeout}s",
                    kind=ErrorKind.INFRASTRUCTURE,
                )
        result = subprocess.CompletedProcess(cmd, process.returncode, stdout, stderr)

        if check and result.returncode != 0:
            detail = self.transport.redact(result.stderr.strip() or result.stdout.strip())
            raise SyncError(
                f"git {args[0]} failed (exit {result.returncode}): {detail}",
                kind=ErrorKind.INFRASTRUCTURE,
            )
        return result

    def _output(self, *args: str) -> str:
        return self._run(*args).stdout.strip()

    # ------------------------------------------------------------------
    # Local repository
    # ------------------------------------------------------------------

    def is_repository(self) -> bool:
        if not self.path.is_dir():
            return False
        return self._run("rev-parse", "--git-dir", check=False).returncode == 0

    def init_bare(self) -> None:
        self._run("init", "--bare", "--quiet", str(self.path), git_dir=False)

    def references(self) -> Dict[str, str]:
        """All references under refs/, as name -> object id."""
        output = self._output("for-each-ref", "--format=%(objectname) %(refname)")
        return _parse_ref_lines(output)

    def delete_ref(self, name: str) -> None:
        self._run("update-ref", "-d", name)

    def resolve_commit(self, ref: str) -> str:
        return self._output("rev-parse", "--verify", "--quiet", f"{ref}^{{commit}}")

    def read_file(self, commit: str, path: str) -> Optional[str]:
        """Contents of ``path`` at ``commit``, or None if the file is absent."""
        spec = f"{commit}:{path}"
        if self._run("cat-file", "-e", spec, check=False).returncode != 0:
            return None
        return self._run("cat-file", "-p", spec).stdout

    # ------------------------------------------------------------------
    # Remote operations
    # ------------------------------------------------------------------

    def list_remote_refs(self, url: str) -> Dict[str, str]:
        """References advertised by ``url``, excluding HEAD and peeled tags."""
        output = self._output("ls-remote", self.transport.authenticated_url(url))
        refs = _parse_ref_lines(output, separator="\t")
        return {
            name: sha
            for name, sha in refs.items()
            if name.startswith("refs/") and not name.endswith("^{}")
        }

    def fetch(self, url: str, refspecs: Sequence[str], force: bool = True) -> List[str]:
        """
        Fetch ``refspecs`` from ``url``.

        Returns the local reference names that were created or moved; an
        empty list means everything was already up to date.
        """
        before = self.references()
        args = ["fetch", "--no-tags", "--quiet"]
        if force:
            args.append("--force")
        args.append(self.transport.authenticated_url(url))
        args.extend(refspecs)
        self._run(*args)
        after = self.references()
        return sorted(name for name, sha in after.items() if before.get(name) != sha)

    def push(self, url: str, refspecs: Sequence[str], force: bool = True) -> bool:
        """
        Push ``refspecs`` to ``url``.

        Returns False when the remote was already up to date.
        """
        if not refspecs:
            return False
        args = ["push", "--porcelain"]
        if force:
            args.append("--force")
        args.append(self.transport.authenticated_url(url))
        args.extend(refspecs)
        result = self._run(*args)
        return not _push_was_noop(result.stdout)

    def delete_remote_refs(self, url: str, names: Sequence[str]) -> None:
        if not names:
            return
        self.push(url, [f":{name}" for name in names], force=False)


def _stop(process: subprocess.Popen) -> None:
    """Terminate a running git command, killing it if it will not exit."""
    process.terminate()
    try:
        process.communicate(timeout=STOP_GRACE_PERIOD)
    except subprocess.TimeoutExpired:
        process.kill()
        process.communicate()


def _parse_ref_lines(output: str, separator: str = " ") -> Dict[str, str]:
    refs: Dict[str, str] = {}
    for line in output.splitlines():
        line = line.strip()
        if not line:
            continue
        sha, _, name = line.partition(separator)
        refs[name.strip()] = sha.strip()
    return refs


def _push_was_noop(porcelain: str) -> bool:
    """True if every ref line in ``git push --porcelain`` output is '='."""
    flags = [
        line[0]
        for line in porcelain.splitlines()
        if line and line[0] in " +-*!=" and "\t" in line
    ]
    return all(flag == "=" for flag in flags)
