import pytest
import sys
import os
import hashlib
from typing import Any, Dict, List, Optional, Tuple

# Add the parent directory to Python path so we can import backend modules
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from storage.models import BlobContent, PullRequest
from storage.object_store import ConflictException, NotFoundException

# Configure pytest for async tests
pytest_plugins = ('pytest_asyncio',)


def _sha(*parts: Any) -> str:
    return hashlib.sha1(repr(parts).encode()).hexdigest()


class FakeObjectStore:
    """
    In-memory stand-in for ObjectStoreClient.

    Records every call as (name, kwargs) in order and enforces the same
    optimistic-concurrency rules as GitHub: blob writes need the current
    sha, ref updates with expected_head need the branch to still be there.
    """

    def __init__(self, content_root: str = "simpledocs"):
        self.content_root = content_root
        self.calls: List[Tuple[str, Dict[str, Any]]] = []
        self.refs: Dict[str, str] = {}
        self.commit_trees: Dict[str, str] = {}
        self.trees: Dict[str, Dict[str, Any]] = {}
        self.blobs: Dict[str, Tuple[str, str]] = {}
        self.pull_requests: List[PullRequest] = []
        self.fail: Dict[str, Exception] = {}

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc_info):
        return None

    def _record(self, name: str, **kwargs):
        self.calls.append((name, kwargs))
        if name in self.fail:
            raise self.fail[name]

    def call_names(self) -> List[str]:
        return [name for name, _ in self.calls]

    def calls_named(self, name: str) -> List[Dict[str, Any]]:
        return [kwargs for call, kwargs in self.calls if call == name]

    # Seeding helpers

    def seed_branch(self, branch: str, commit: str, tree: str):
        self.refs[branch] = commit
        self.commit_trees[commit] = tree

    def seed_blob(self, path: str, content: str) -> str:
        sha = _sha("blob", path, content)
        self.blobs[path] = (content, sha)
        return sha

    # Git data

    async def resolve_branch_head(self, coords, branch):
        self._record("resolve_branch_head", coords=coords, branch=branch)
        if branch not in self.refs:
            raise NotFoundException(f"branch {branch} not found")
        return self.refs[branch]

    async def read_commit_tree(self, coords, commit_sha):
        self._record("read_commit_tree", coords=coords, commit_sha=commit_sha)
        if commit_sha not in self.commit_trees:
            raise NotFoundException(f"commit {commit_sha} not found")
        return self.commit_trees[commit_sha]

    async def create_tree(self, coords, base_tree, entries):
        self._record("create_tree", coords=coords, base_tree=base_tree, entries=entries)
        tree = _sha("tree", base_tree, entries)
        self.trees[tree] = {"base_tree": base_tree, "entries": entries}
        return tree

    async def create_commit(self, coords, tree_sha, parent_sha, message):
        self._record("create_commit", coords=coords, tree_sha=tree_sha, parent_sha=parent_sha, message=message)
        commit = _sha("commit", tree_sha, parent_sha, message)
        self.commit_trees[commit] = tree_sha
        return commit

    async def update_branch_head(self, coords, branch, commit_sha, expected_head=None):
        self._record("update_branch_head", coords=coords, branch=branch,
                     commit_sha=commit_sha, expected_head=expected_head)
        if expected_head is not None and self.refs.get(branch) != expected_head:
            raise ConflictException(f"branch {branch} moved")
        self.refs[branch] = commit_sha

    async def create_ref(self, coords, branch, commit_sha):
        self._record("create_ref", coords=coords, branch=branch, commit_sha=commit_sha)
        if branch in self.refs:
            raise ConflictException("Reference already exists")
        self.refs[branch] = commit_sha

    async def delete_ref(self, coords, branch):
        self._record("delete_ref", coords=coords, branch=branch)
        if branch not in self.refs:
            raise NotFoundException(f"branch {branch} not found")
        del self.refs[branch]

    # Contents

    async def read_blob(self, coords, path, ref=None):
        self._record("read_blob", coords=coords, path=path, ref=ref)
        if path not in self.blobs:
            raise NotFoundException(f"{path} not found")
        content, sha = self.blobs[path]
        return BlobContent(path=path, content=content, sha=sha)

    async def write_blob(self, coords, path, content, previous_sha, message, branch=None):
        self._record("write_blob", coords=coords, path=path, content=content,
                     previous_sha=previous_sha, message=message, branch=branch)
        current = self.blobs.get(path)
        current_sha = current[1] if current else None
        if previous_sha != current_sha:
            raise ConflictException(f"{path} does not match {previous_sha}")
        return self.seed_blob(path, content)

    async def delete_blob(self, coords, path, previous_sha, message, branch=None):
        self._record("delete_blob", coords=coords, path=path, previous_sha=previous_sha,
                     message=message, branch=branch)
        if path not in self.blobs:
            raise NotFoundException(f"{path} not found")
        if self.blobs[path][1] != previous_sha:
            raise ConflictException(f"{path} does not match {previous_sha}")
        del self.blobs[path]

    async def create_pull_request(self, coords, head, base, title, body=""):
        self._record("create_pull_request", coords=coords, head=head, base=base, title=title, body=body)
        pull_request = PullRequest(
            number=len(self.pull_requests) + 1,
            url=f"https://github.com/{coords.owner}/{coords.repo}/pull/{len(self.pull_requests) + 1}",
            head=head,
            base=base,
        )
        self.pull_requests.append(pull_request)
        return pull_request


@pytest.fixture
def fake_store():
    """Fake object store with 'main' at commit C1 / tree T1."""
    store = FakeObjectStore()
    store.seed_branch("main", "C1", "T1")
    return store


@pytest.fixture
def coords():
    from storage.models import RepositoryCoordinates
    return RepositoryCoordinates(owner="acme", repo="handbook")
