"""
GitHub-backed object store.

Thin async wrapper over the GitHub git-data and contents APIs. Each method
issues one request (plus at most one retry after a credential refresh) and
translates the response into plain values or a StorageException.
"""
import logging
from typing import List, Dict, Any, Optional, Tuple, TYPE_CHECKING

import httpx

from config import GITHUB_API_URL, REMOTE_TIMEOUT_SECONDS
from .models import RepositoryCoordinates, BlobContent, PullRequest

if TYPE_CHECKING:
    from .credentials import CredentialProvider

logger = logging.getLogger(__name__)


class StorageException(Exception):
    """Base exception for object store operations"""
    pass


class NotFoundException(StorageException):
    """Raised when a ref, commit or blob does not exist"""
    pass


class UnauthorizedException(StorageException):
    """Raised when the platform rejects the credential"""
    pass


class ConflictException(StorageException):
    """Raised when an optimistic-concurrency precondition no longer holds"""
    pass


class RemoteException(StorageException):
    """Raised for any other unsuccessful response from the platform"""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class MalformedResponseException(StorageException):
    """Raised when a response body cannot be decoded"""
    pass


class ObjectStoreClient:
    """
    Client for one request's worth of calls against a GitHub repository.

    The credential provider supplies the bearer token; on a 401 the client
    asks it for a fresh token once and replays the request.
    """

    def __init__(self, credentials: 'CredentialProvider', api_url: str = GITHUB_API_URL,
                 timeout: float = REMOTE_TIMEOUT_SECONDS,
                 transport: Optional[httpx.AsyncBaseTransport] = None):
        self.credentials = credentials
        self._client = httpx.AsyncClient(base_url=api_url, timeout=timeout, transport=transport)

    async def __aenter__(self) -> 'ObjectStoreClient':
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    @property
    def content_root(self) -> str:
        return self.credentials.content_root

    # ─────────────────────────────────────────────────────────────────────────
    # Transport
    # ─────────────────────────────────────────────────────────────────────────

    async def _send(self, method: str, url: str, token: str,
                    json: Optional[Dict[str, Any]], params: Optional[Dict[str, Any]]) -> httpx.Response:
        try:
            return await self._client.request(
                method,
                url,
                json=json,
                params=params,
                headers={
                    "Authorization": f"Bearer {token}",
                    "Accept": "application/vnd.github+json",
                    "X-GitHub-Api-Version": "2022-11-28",
                },
            )
        except httpx.HTTPError as e:
            raise RemoteException(f"{method} {url} failed: {e}")

    async def _request(self, method: str, url: str, *, what: str,
                       expected: Tuple[int, ...] = (200,),
                       conflict_statuses: Tuple[int, ...] = (409,),
                       json: Optional[Dict[str, Any]] = None,
                       params: Optional[Dict[str, Any]] = None) -> httpx.Response:
        token = await self.credentials.resolve_credential()
        response = await self._send(method, url, token, json, params)

        if response.status_code == 401 and self.credentials.can_refresh:
            logger.warning(f"{what}: credential rejected, refreshing and retrying once")
            token = await self.credentials.refresh_credential()
            response = await self._send(method, url, token, json, params)

        status = response.status_code
        if status in expected:
            return response
        if status == 401:
            raise UnauthorizedException(f"Failed to {what}: credential rejected")
        if status == 404:
            raise NotFoundException(f"Failed to {what}: not found")
        if status in conflict_statuses:
            raise ConflictException(f"Failed to {what}: {self._error_message(response)}")
        raise RemoteException(f"Failed to {what}: {status} {self._error_message(response)}", status)

    @staticmethod
    def _error_message(response: httpx.Response) -> str:
        try:
            return response.json().get("message", response.reason_phrase)
        except (ValueError, AttributeError):
            return response.reason_phrase

    @staticmethod
    def _field(response: httpx.Response, *keys: str) -> Any:
        """Decode the body and walk nested keys, e.g. ("object", "sha")."""
        try:
            value = response.json()
        except ValueError as e:
            raise MalformedResponseException(f"Response body is not JSON: {e}")
        try:
            for key in keys:
                value = value[key]
        except (KeyError, TypeError, IndexError):
            raise MalformedResponseException(f"Response has no field {'.'.join(keys)}")
        if value in (None, ""):
            raise MalformedResponseException(f"Response field {'.'.join(keys)} is empty")
        return value

    @staticmethod
    def _repo_url(coords: RepositoryCoordinates, suffix: str) -> str:
        return f"/repos/{coords.owner}/{coords.repo}/{suffix}"

    # ─────────────────────────────────────────────────────────────────────────
    # Git data: refs, commits, trees
    # ─────────────────────────────────────────────────────────────────────────

    async def resolve_branch_head(self, coords: RepositoryCoordinates, branch: str) -> str:
        """Return the sha of the commit at the tip of a branch."""
        response = await self._request(
            "GET", self._repo_url(coords, f"git/ref/heads/{branch}"),
            what=f"resolve branch '{branch}'",
        )
        return self._field(response, "object", "sha")

    async def read_commit_tree(self, coords: RepositoryCoordinates, commit_sha: str) -> str:
        """Return the root tree sha of a commit."""
        response = await self._request(
            "GET", self._repo_url(coords, f"git/commits/{commit_sha}"),
            what=f"read commit {commit_sha}",
        )
        return self._field(response, "tree", "sha")

    async def create_tree(self, coords: RepositoryCoordinates, base_tree: str,
                          entries: List[Dict[str, Any]]) -> str:
        """
        Create a tree on top of base_tree.

        Paths not named in entries are inherited from the base tree.
        """
        response = await self._request(
            "POST", self._repo_url(coords, "git/trees"),
            what="create tree",
            expected=(201,),
            json={"base_tree": base_tree, "tree": entries},
        )
        return self._field(response, "sha")

    async def create_commit(self, coords: RepositoryCoordinates, tree_sha: str,
                            parent_sha: str, message: str) -> str:
        response = await self._request(
            "POST", self._repo_url(coords, "git/commits"),
            what="create commit",
            expected=(201,),
            json={"message": message, "tree": tree_sha, "parents": [parent_sha]},
        )
        return self._field(response, "sha")

    async def update_branch_head(self, coords: RepositoryCoordinates, branch: str,
                                 commit_sha: str, expected_head: Optional[str] = None) -> None:
        """
        Move a branch to a new commit.

        With expected_head the update is fast-forward only: the new commit's
        parent is expected_head, so GitHub refuses it (422) if the branch
        moved in the meantime, and that refusal is a ConflictException.
        """
        body: Dict[str, Any] = {"sha": commit_sha}
        conflict_statuses: Tuple[int, ...] = (409,)
        if expected_head is not None:
            body["force"] = False
            conflict_statuses = (409, 422)
        await self._request(
            "PATCH", self._repo_url(coords, f"git/refs/heads/{branch}"),
            what=f"update branch '{branch}'",
            conflict_statuses=conflict_statuses,
            json=body,
        )

    async def create_ref(self, coords: RepositoryCoordinates, branch: str, commit_sha: str) -> None:
        """Create a branch pointing at an existing commit."""
        await self._request(
            "POST", self._repo_url(coords, "git/refs"),
            what=f"create branch '{branch}'",
            expected=(201,),
            # "Reference already exists" comes back as 422
            conflict_statuses=(409, 422),
            json={"ref": f"refs/heads/{branch}", "sha": commit_sha},
        )

    async def delete_ref(self, coords: RepositoryCoordinates, branch: str) -> None:
        await self._request(
            "DELETE", self._repo_url(coords, f"git/refs/heads/{branch}"),
            what=f"delete branch '{branch}'",
            expected=(204,),
        )

    # ─────────────────────────────────────────────────────────────────────────
    # Contents: path-addressed blobs
    # ─────────────────────────────────────────────────────────────────────────

    async def read_blob(self, coords: RepositoryCoordinates, path: str,
                        ref: Optional[str] = None) -> BlobContent:
        """Fetch a file; content stays base64 encoded."""
        response = await self._request(
            "GET", self._repo_url(coords, f"contents/{path}"),
            what=f"read '{path}'",
            params={"ref": ref} if ref else None,
        )
        sha = self._field(response, "sha")
        try:
            content = response.json().get("content") or ""
        except AttributeError:
            raise MalformedResponseException(f"'{path}' is not a file")
        # GitHub wraps base64 at 60 columns
        return BlobContent(path=path, content="".join(content.split()), sha=sha)

    async def write_blob(self, coords: RepositoryCoordinates, path: str, content: str,
                         previous_sha: Optional[str], message: str,
                         branch: Optional[str] = None) -> str:
        """
        Create or replace a file. content must be base64.

        previous_sha is the optimistic-concurrency token: GitHub refuses the
        write when it is not the file's current sha. Pass None to create.

        Returns:
            The new blob sha
        """
        body: Dict[str, Any] = {"message": message, "content": content}
        if previous_sha:
            body["sha"] = previous_sha
        if branch:
            body["branch"] = branch
        response = await self._request(
            "PUT", self._repo_url(coords, f"contents/{path}"),
            what=f"write '{path}'",
            expected=(200, 201),
            conflict_statuses=(409, 422),
            json=body,
        )
        return self._field(response, "content", "sha")

    async def delete_blob(self, coords: RepositoryCoordinates, path: str, previous_sha: str,
                          message: str, branch: Optional[str] = None) -> None:
        body: Dict[str, Any] = {"message": message, "sha": previous_sha}
        if branch:
            body["branch"] = branch
        await self._request(
            "DELETE", self._repo_url(coords, f"contents/{path}"),
            what=f"delete '{path}'",
            conflict_statuses=(409, 422),
            json=body,
        )

    # ─────────────────────────────────────────────────────────────────────────
    # Pull requests
    # ─────────────────────────────────────────────────────────────────────────

    async def create_pull_request(self, coords: RepositoryCoordinates, head: str, base: str,
                                  title: str, body: str = "") -> PullRequest:
        response = await self._request(
            "POST", self._repo_url(coords, "pulls"),
            what=f"open pull request {head} -> {base}",
            expected=(201,),
            json={"title": title, "head": head, "base": base, "body": body},
        )
        return PullRequest(
            number=self._field(response, "number"),
            url=self._field(response, "html_url"),
            head=head,
            base=base,
        )
