"""Shared fixtures: an in-memory GitHub API served over aiohttp.

FakeGitHub models just enough of the REST API for the sync client: the
contents API, blobs, trees, commits and a branch ref with fast-forward
checks. Failure injection knobs let tests break individual steps.
"""

from __future__ import annotations

import asyncio
import base64
import hashlib
from pathlib import Path

import pytest
import pytest_asyncio
from aiohttp import web
from aiohttp.test_utils import TestServer

from jarvis.config import GitHubConfig, JarvisConfig
from jarvis.sync.github import GitHubClient


def git_sha(kind: str, payload: bytes) -> str:
    return hashlib.sha1(f"{kind} {len(payload)}\0".encode() + payload).hexdigest()


class FakeGitHub:
    """In-memory repository with a single branch."""

    def __init__(self, owner: str = "octo", repo: str = "jarvis-data", branch: str = "main"):
        self.owner = owner
        self.repo = repo
        self.branch = branch
        self.token = "test-token"
        self.api_url = ""

        self.blobs: dict[str, bytes] = {}
        self.trees: dict[str, dict[str, str]] = {}
        self.commits: dict[str, dict] = {}
        self.refs: dict[str, str] = {}
        self.requests: list[tuple[str, str]] = []

        # Failure injection
        self.fail_blob_at: int | None = None  # 1-based index of blob POST to fail
        self.fail_paths: set[str] = set()  # contents paths that return 500 on GET
        self.fail_routes: dict[str, int] = {}  # route name -> status
        self.inline_limit: int | None = None  # larger files omit inline content
        self.corrupt_paths: set[str] = set()  # contents paths served with broken base64
        self.delay = 0.0  # seconds to stall every response
        self._blob_posts = 0

        root_tree = self._store_tree({})
        self.refs[branch] = self._store_commit(root_tree, [], "Initial commit")

        self.app = web.Application(middlewares=[self._middleware])
        prefix = "/repos/{owner}/{repo}"
        self.app.router.add_get(prefix, self._get_repo, name="repo")
        self.app.router.add_get(prefix + "/contents/{path:.+}", self._get_contents, name="contents_get")
        self.app.router.add_put(prefix + "/contents/{path:.+}", self._put_contents, name="contents_put")
        self.app.router.add_delete(prefix + "/contents/{path:.+}", self._delete_contents, name="contents_delete")
        self.app.router.add_get(prefix + "/git/ref/heads/{branch}", self._get_ref, name="ref_get")
        self.app.router.add_patch(prefix + "/git/refs/heads/{branch}", self._patch_ref, name="ref_update")
        self.app.router.add_get(prefix + "/git/commits/{sha}", self._get_commit, name="commit_get")
        self.app.router.add_post(prefix + "/git/commits", self._post_commit, name="commit")
        self.app.router.add_get(prefix + "/git/blobs/{sha}", self._get_blob, name="blob_get")
        self.app.router.add_post(prefix + "/git/blobs", self._post_blob, name="blob")
        self.app.router.add_post(prefix + "/git/trees", self._post_tree, name="tree")

    # ── Object store ──────────────────────────────────────────

    def _store_blob(self, payload: bytes) -> str:
        sha = git_sha("blob", payload)
        self.blobs[sha] = payload
        return sha

    def _store_tree(self, entries: dict[str, str]) -> str:
        listing = "\n".join(f"{p} {s}" for p, s in sorted(entries.items())).encode()
        sha = git_sha("tree", listing)
        self.trees[sha] = dict(entries)
        return sha

    def _store_commit(self, tree: str, parents: list[str], message: str) -> str:
        payload = f"{tree}|{','.join(parents)}|{message}|{len(self.commits)}".encode()
        sha = git_sha("commit", payload)
        self.commits[sha] = {"tree": tree, "parents": parents, "message": message}
        return sha

    def _snapshot(self) -> dict[str, str]:
        return self.trees[self.commits[self.refs[self.branch]]["tree"]]

    def _commit_snapshot(self, entries: dict[str, str], message: str) -> str:
        tree = self._store_tree(entries)
        commit = self._store_commit(tree, [self.refs[self.branch]], message)
        self.refs[self.branch] = commit
        return commit

    # ── Test helpers ──────────────────────────────────────────

    @property
    def head(self) -> str:
        return self.refs[self.branch]

    @property
    def files(self) -> dict[str, str]:
        return {p: self.blobs[s].decode("utf-8") for p, s in self._snapshot().items()}

    def put_file(self, path: str, text: str, message: str = "seed") -> str:
        """Commit a file directly, as another device would. Returns its blob sha."""
        entries = dict(self._snapshot())
        entries[path] = self._store_blob(text.encode("utf-8"))
        self._commit_snapshot(entries, message)
        return entries[path]

    def sha_of(self, path: str) -> str | None:
        return self._snapshot().get(path)

    def commit_messages(self) -> list[str]:
        messages = []
        sha = self.head
        while sha:
            commit = self.commits[sha]
            messages.append(commit["message"])
            sha = commit["parents"][0] if commit["parents"] else None
        return messages

    # ── HTTP plumbing ─────────────────────────────────────────

    @web.middleware
    async def _middleware(self, request: web.Request, handler):
        self.requests.append((request.method, request.path))
        if self.delay:
            await asyncio.sleep(self.delay)
        if request.headers.get("Authorization") != f"Bearer {self.token}":
            return web.json_response({"message": "Bad credentials"}, status=401)
        route = request.match_info.route.name
        if route in self.fail_routes:
            return web.json_response({"message": "injected failure"}, status=self.fail_routes[route])
        return await handler(request)

    @staticmethod
    def _not_found() -> web.Response:
        return web.json_response({"message": "Not Found"}, status=404)

    async def _get_repo(self, request: web.Request) -> web.Response:
        return web.json_response({"full_name": f"{self.owner}/{self.repo}"})

    async def _get_contents(self, request: web.Request) -> web.Response:
        path = request.match_info["path"].strip("/")
        if path in self.fail_paths:
            return web.json_response({"message": "injected failure"}, status=500)
        snapshot = self._snapshot()
        if path in snapshot:
            sha = snapshot[path]
            payload = self.blobs[sha]
            body = {"type": "file", "name": path.rsplit("/", 1)[-1], "path": path, "sha": sha}
            if self.inline_limit is not None and len(payload) > self.inline_limit:
                body.update(content="", encoding="none")
            else:
                encoded = "abc" if path in self.corrupt_paths else base64.b64encode(payload).decode()
                wrapped = "\n".join(encoded[i : i + 60] for i in range(0, len(encoded), 60))
                body.update(content=wrapped + "\n", encoding="base64")
            return web.json_response(body)

        children: dict[str, str] = {}
        for file_path in snapshot:
            if file_path.startswith(path + "/"):
                name, _, rest = file_path[len(path) + 1 :].partition("/")
                children[name] = "dir" if rest else "file"
        if not children:
            return self._not_found()
        return web.json_response(
            [{"name": n, "path": f"{path}/{n}", "type": t} for n, t in sorted(children.items())]
        )

    async def _put_contents(self, request: web.Request) -> web.Response:
        path = request.match_info["path"].strip("/")
        body = await request.json()
        snapshot = dict(self._snapshot())
        existing = snapshot.get(path)
        expected = body.get("sha")
        if existing and not expected:
            return web.json_response({"message": '"sha" wasn\'t supplied.'}, status=422)
        if expected and expected != existing:
            return web.json_response({"message": f"{path} does not match {expected}"}, status=409)
        snapshot[path] = self._store_blob(base64.b64decode(body["content"]))
        commit = self._commit_snapshot(snapshot, body["message"])
        return web.json_response(
            {"content": {"path": path, "sha": snapshot[path]}, "commit": {"sha": commit}},
            status=200 if existing else 201,
        )

    async def _delete_contents(self, request: web.Request) -> web.Response:
        path = request.match_info["path"].strip("/")
        body = await request.json()
        snapshot = dict(self._snapshot())
        if path not in snapshot:
            return self._not_found()
        if body.get("sha") != snapshot[path]:
            return web.json_response({"message": "sha does not match"}, status=409)
        del snapshot[path]
        commit = self._commit_snapshot(snapshot, body["message"])
        return web.json_response({"content": None, "commit": {"sha": commit}})

    async def _get_ref(self, request: web.Request) -> web.Response:
        sha = self.refs.get(request.match_info["branch"])
        if sha is None:
            return self._not_found()
        return web.json_response(
            {"ref": f"refs/heads/{request.match_info['branch']}", "object": {"sha": sha, "type": "commit"}}
        )

    def _is_ancestor(self, ancestor: str, sha: str) -> bool:
        stack = [sha]
        while stack:
            current = stack.pop()
            if current == ancestor:
                return True
            stack.extend(self.commits[current]["parents"])
        return False

    async def _patch_ref(self, request: web.Request) -> web.Response:
        branch = request.match_info["branch"]
        body = await request.json()
        new_sha = body["sha"]
        if new_sha not in self.commits:
            return web.json_response({"message": "Object does not exist"}, status=422)
        if not body.get("force") and not self._is_ancestor(self.refs[branch], new_sha):
            return web.json_response({"message": "Update is not a fast forward"}, status=422)
        self.refs[branch] = new_sha
        return web.json_response({"ref": f"refs/heads/{branch}", "object": {"sha": new_sha}})

    async def _get_commit(self, request: web.Request) -> web.Response:
        sha = request.match_info["sha"]
        commit = self.commits.get(sha)
        if commit is None:
            return self._not_found()
        return web.json_response(
            {
                "sha": sha,
                "tree": {"sha": commit["tree"]},
                "parents": [{"sha": p} for p in commit["parents"]],
                "message": commit["message"],
            }
        )

    async def _post_commit(self, request: web.Request) -> web.Response:
        body = await request.json()
        if body["tree"] not in self.trees or any(p not in self.commits for p in body["parents"]):
            return web.json_response({"message": "Invalid tree or parent"}, status=422)
        sha = self._store_commit(body["tree"], list(body["parents"]), body["message"])
        return web.json_response({"sha": sha}, status=201)

    async def _get_blob(self, request: web.Request) -> web.Response:
        payload = self.blobs.get(request.match_info["sha"])
        if payload is None:
            return self._not_found()
        return web.json_response(
            {"sha": request.match_info["sha"], "content": base64.b64encode(payload).decode(), "encoding": "base64"}
        )

    async def _post_blob(self, request: web.Request) -> web.Response:
        self._blob_posts += 1
        if self.fail_blob_at is not None and self._blob_posts == self.fail_blob_at:
            return web.json_response({"message": "injected blob failure"}, status=500)
        body = await request.json()
        return web.json_response({"sha": self._store_blob(base64.b64decode(body["content"]))}, status=201)

    async def _post_tree(self, request: web.Request) -> web.Response:
        body = await request.json()
        entries = dict(self.trees.get(body.get("base_tree"), {}))
        for item in body["tree"]:
            if item.get("sha") is None:
                entries.pop(item["path"], None)
            elif item["sha"] not in self.blobs:
                return web.json_response({"message": "Invalid blob"}, status=422)
            else:
                entries[item["path"]] = item["sha"]
        return web.json_response({"sha": self._store_tree(entries)}, status=201)


@pytest_asyncio.fixture
async def github():
    fake = FakeGitHub()
    server = TestServer(fake.app)
    await server.start_server()
    fake.api_url = f"http://{server.host}:{server.port}"
    yield fake
    await server.close()


@pytest.fixture
def github_config(github: FakeGitHub) -> GitHubConfig:
    return GitHubConfig(
        token=github.token,
        owner=github.owner,
        repo=github.repo,
        branch=github.branch,
        api_url=github.api_url,
        timeout=5,
    )


@pytest_asyncio.fixture
async def client(github_config: GitHubConfig):
    c = GitHubClient(github_config)
    yield c
    await c.close()


@pytest.fixture
def config(tmp_path: Path, github_config: GitHubConfig) -> JarvisConfig:
    return JarvisConfig(github=github_config, data_dir=tmp_path / "data")
