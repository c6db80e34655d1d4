"""GitHub repository client: the remote store behind sync.

Thin async wrapper over the GitHub REST API for a single branch of a single
repository. It moves bytes and revision tokens; it makes no decisions about
entities.
"""

from __future__ import annotations

import asyncio
import base64
import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any
from urllib.parse import quote

import aiohttp

from jarvis.sync.errors import ConflictError, DecodeError, RemoteError

if TYPE_CHECKING:
    from jarvis.config import GitHubConfig

logger = logging.getLogger(__name__)

_CONFLICT_STATUSES = (409, 422)


@dataclass
class RemoteFile:
    """A file read from the repository with its revision token (blob sha)."""

    path: str
    content: str
    sha: str


@dataclass
class BatchCommit:
    """Outcome of a multi-file commit."""

    commit_sha: str
    tree_sha: str
    blob_shas: dict[str, str] = field(default_factory=dict)


def _b64encode(text: str) -> str:
    return base64.b64encode(text.encode("utf-8")).decode("ascii")


def _b64decode(data: str) -> str:
    # The contents API wraps base64 at 60 columns.
    return base64.b64decode("".join(data.split())).decode("utf-8")


class GitHubClient:
    """Authenticated file operations against ``owner/repo`` on one branch."""

    def __init__(self, config: GitHubConfig) -> None:
        self._config = config
        self._session: aiohttp.ClientSession | None = None
        self._repo_url = f"{config.api_url.rstrip('/')}/repos/{config.owner}/{config.repo}"

    @property
    def branch(self) -> str:
        return self._config.branch

    # ── Session lifecycle ─────────────────────────────────────

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                headers={
                    "Authorization": f"Bearer {self._config.token}",
                    "Accept": "application/vnd.github+json",
                    "X-GitHub-Api-Version": "2022-11-28",
                },
                timeout=aiohttp.ClientTimeout(total=self._config.timeout),
            )
        return self._session

    async def close(self) -> None:
        if self._session is not None and not self._session.closed:
            await self._session.close()
        self._session = None

    async def __aenter__(self) -> GitHubClient:
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    # ── Transport ─────────────────────────────────────────────

    async def _request(
        self,
        method: str,
        url: str,
        *,
        json: dict | None = None,
        params: dict | None = None,
        allow_404: bool = False,
    ) -> tuple[int, Any]:
        """Issue one request. Returns (status, body); raises on failure statuses."""
        session = self._get_session()
        try:
            async with session.request(method, url, json=json, params=params) as resp:
                status = resp.status
                try:
                    body = await resp.json(content_type=None)
                except ValueError:
                    body = None
        except asyncio.TimeoutError as e:
            raise RemoteError(f"{method} {url} timed out after {self._config.timeout}s") from e
        except aiohttp.ClientError as e:
            raise RemoteError(f"{method} {url} failed: {e}") from e

        if status == 404 and allow_404:
            return status, None
        if status >= 400:
            message = body.get("message", "") if isinstance(body, dict) else ""
            text = f"GitHub API error {status} on {method} {url}: {message or 'no message'}"
            if status in _CONFLICT_STATUSES:
                raise ConflictError(text, status=status)
            raise RemoteError(text, status=status)
        return status, body

    def _contents_url(self, path: str) -> str:
        return f"{self._repo_url}/contents/{quote(path.strip('/'), safe='/')}"

    # ── File operations ───────────────────────────────────────

    async def read_file(self, path: str) -> RemoteFile | None:
        """Fetch a file's text and sha. Returns None if it does not exist."""
        _, data = await self._request(
            "GET", self._contents_url(path), params={"ref": self.branch}, allow_404=True
        )
        if data is None:
            return None
        if not isinstance(data, dict) or data.get("type", "file") != "file":
            raise RemoteError(f"{path} is not a file")

        sha = data["sha"]
        encoded = data.get("content") or ""
        try:
            if data.get("encoding") == "base64" and encoded:
                content = _b64decode(encoded)
            else:
                # Large files come back without inline content
                content = await self._read_blob(sha)
        except ValueError as e:
            raise DecodeError(path, f"undecodable content: {e}") from e
        return RemoteFile(path=data.get("path", path), content=content, sha=sha)

    async def _read_blob(self, sha: str) -> str:
        _, data = await self._request("GET", f"{self._repo_url}/git/blobs/{sha}")
        if data.get("encoding") == "base64":
            return _b64decode(data.get("content", ""))
        return data.get("content", "")

    async def list_entries(self, path: str) -> list[tuple[str, str]]:
        """List ``(name, type)`` pairs in a directory (non-recursive), sorted by name.

        A missing directory is an empty listing.
        """
        _, data = await self._request(
            "GET", self._contents_url(path), params={"ref": self.branch}, allow_404=True
        )
        if not isinstance(data, list):
            return []
        return sorted((item["name"], item.get("type", "file")) for item in data)

    async def list_directory(self, path: str, kind: str | None = "file") -> list[str]:
        """List entry names in a directory.

        ``kind`` filters by entry type: "file", "dir", or None for everything.
        """
        return [
            name for name, entry_type in await self.list_entries(path)
            if kind is None or entry_type == kind
        ]

    async def write_file(
        self,
        path: str,
        content: str,
        message: str,
        expected_sha: str | None = None,
    ) -> str:
        """Create or overwrite a file. Returns the new blob sha.

        With ``expected_sha`` the write only succeeds if the remote file is
        still at that revision; otherwise ConflictError.
        """
        body: dict[str, Any] = {
            "message": message,
            "content": _b64encode(content),
            "branch": self.branch,
        }
        if expected_sha:
            body["sha"] = expected_sha
        _, data = await self._request("PUT", self._contents_url(path), json=body)
        logger.debug("Wrote %s (commit %s)", path, data["commit"]["sha"])
        return data["content"]["sha"]

    async def delete_file(self, path: str, sha: str, message: str) -> bool:
        """Delete a file at revision ``sha``. Returns False if it was already gone."""
        status, _ = await self._request(
            "DELETE",
            self._contents_url(path),
            json={"message": message, "sha": sha, "branch": self.branch},
            allow_404=True,
        )
        return status != 404

    # ── Batch commit ──────────────────────────────────────────

    async def write_files_batch(self, files: list[tuple[str, str]], message: str) -> BatchCommit:
        """Write many files as a single commit on the branch.

        Steps: branch head → head commit → base tree → one blob per file →
        new tree → new commit → fast-forward the ref. The ref only moves in
        the last step, so any earlier failure leaves the branch untouched
        (unreferenced blobs and trees are garbage-collected by GitHub).
        """
        if not files:
            raise ValueError("write_files_batch requires at least one file")

        _, ref = await self._request("GET", f"{self._repo_url}/git/ref/heads/{self.branch}")
        head_sha = ref["object"]["sha"]

        _, head = await self._request("GET", f"{self._repo_url}/git/commits/{head_sha}")
        base_tree = head["tree"]["sha"]

        blob_shas: dict[str, str] = {}
        for path, content in files:
            _, blob = await self._request(
                "POST",
                f"{self._repo_url}/git/blobs",
                json={"content": _b64encode(content), "encoding": "base64"},
            )
            blob_shas[path] = blob["sha"]

        _, tree = await self._request(
            "POST",
            f"{self._repo_url}/git/trees",
            json={
                "base_tree": base_tree,
                "tree": [
                    {"path": path, "mode": "100644", "type": "blob", "sha": sha}
                    for path, sha in blob_shas.items()
                ],
            },
        )

        _, commit = await self._request(
            "POST",
            f"{self._repo_url}/git/commits",
            json={"message": message, "tree": tree["sha"], "parents": [head_sha]},
        )

        await self._request(
            "PATCH",
            f"{self._repo_url}/git/refs/heads/{self.branch}",
            json={"sha": commit["sha"], "force": False},
        )
        logger.info("Committed %d file(s) to %s: %s", len(files), self.branch, commit["sha"][:7])
        return BatchCommit(commit_sha=commit["sha"], tree_sha=tree["sha"], blob_shas=blob_shas)

    # ── Access check ──────────────────────────────────────────

    async def validate_access(self) -> bool:
        """Return True if the repository is reachable with the configured token."""
        try:
            await self._request("GET", self._repo_url)
            return True
        except RemoteError as e:
            logger.warning("GitHub access check failed: %s", e)
            return False
