"""
Commit pipeline - turns a batch of file edits into one commit on a branch.

The run is five remote steps in a fixed order:

    resolve head -> read base tree -> create tree -> create commit -> move ref

Only the last step is visible on the branch. A failure anywhere before it
leaves the branch untouched; trees and commits already created are simply
unreferenced and the platform garbage-collects them.

Editing branches and publishing (pull request back to main) use the same
primitives and keep the editing-session registry in step.
"""
import logging
from typing import List, Optional, TYPE_CHECKING

from config import DEFAULT_BRANCH
from collab.sessions import EditingSessionRegistry, editing_sessions
from .models import Edit, RepositoryCoordinates, PullRequest
from .object_store import ObjectStoreClient, NotFoundException

if TYPE_CHECKING:
    from collab.notifications import NotificationHub

logger = logging.getLogger(__name__)


class CommitPipeline:
    """
    Commits, editing branches and publishing for one repository client.

    Args:
        store: Object store client (carries the request's credential)
        sessions: Editing-session registry
        hub: Notification hub told about every successful commit
    """

    def __init__(self, store: ObjectStoreClient,
                 sessions: EditingSessionRegistry = editing_sessions,
                 hub: Optional['NotificationHub'] = None):
        self.store = store
        self.sessions = sessions
        self.hub = hub

    async def commit(self, coords: RepositoryCoordinates, branch: str, edits: List[Edit],
                     message: str, project_id: Optional[str] = None,
                     actor: Optional[str] = None) -> str:
        """
        Commit a batch of edits on top of a branch's current head.

        Args:
            coords: Target repository
            branch: Branch to advance (must exist)
            edits: Path-level changes; "null" content deletes the path
            message: Commit message
            project_id: If given, viewers of this project are notified
            actor: User id reported to viewers as the author of the change

        Returns:
            The new commit sha

        Raises:
            NotFoundException: If the branch does not exist
            ConflictException: If the branch moved while the commit was built
            StorageException: For any other failed step
        """
        head = await self.store.resolve_branch_head(coords, branch)
        base_tree = await self.store.read_commit_tree(coords, head)

        entries = [edit.to_tree_entry() for edit in edits]
        tree = await self.store.create_tree(coords, base_tree, entries)

        commit = await self.store.create_commit(coords, tree, head, message)

        # The new commit's parent is head, so the ref only moves if the
        # branch is still where we found it
        await self.store.update_branch_head(coords, branch, commit, expected_head=head)

        logger.info(f"{coords.full_name}@{branch}: {head[:7]} -> {commit[:7]} ({len(edits)} edits)")

        if project_id and self.hub is not None:
            await self.hub.publish(project_id, actor or "")

        return commit

    # ─────────────────────────────────────────────────────────────────────────
    # Editing branches
    # ─────────────────────────────────────────────────────────────────────────

    async def create_editing_branch(self, coords: RepositoryCoordinates, project_id: str,
                                    user_id: str, branch_name: str,
                                    from_branch: str = DEFAULT_BRANCH) -> str:
        """
        Branch off from_branch for a user's private edits.

        The new ref points at the same commit as from_branch; no commit is
        created.

        Returns:
            The commit sha the branch starts at

        Raises:
            NotFoundException: If from_branch does not exist
            ConflictException: If branch_name already exists
        """
        head = await self.store.resolve_branch_head(coords, from_branch)
        await self.store.create_ref(coords, branch_name, head)
        self.sessions.set(project_id, user_id, branch_name)
        return head

    async def delete_editing_branch(self, coords: RepositoryCoordinates, project_id: str,
                                    user_id: str, branch_name: str) -> None:
        """Drop an editing branch and the user's session with it."""
        await self.store.delete_ref(coords, branch_name)
        self.sessions.clear(project_id, user_id)

    def current_editing_branch(self, project_id: str, user_id: str) -> Optional[str]:
        return self.sessions.get(project_id, user_id)

    def target_branch(self, project_id: str, user_id: str) -> str:
        """The branch a user's commits go to: their editing branch, else main."""
        return self.sessions.get(project_id, user_id) or DEFAULT_BRANCH

    async def publish(self, coords: RepositoryCoordinates, project_id: str, user_id: str,
                      title: str, body: str = "", base: str = DEFAULT_BRANCH) -> PullRequest:
        """
        Open a pull request from the user's editing branch back to base.

        The editing session ends once the pull request exists; the branch
        itself stays until the pull request is merged or closed.

        Raises:
            NotFoundException: If the user has no editing branch
        """
        branch = self.sessions.get(project_id, user_id)
        if not branch:
            raise NotFoundException(f"User {user_id} has no editing branch in project {project_id}")

        pull_request = await self.store.create_pull_request(coords, branch, base, title, body)
        self.sessions.clear(project_id, user_id)
        logger.info(f"{coords.full_name}: opened pull request #{pull_request.number} {branch} -> {base}")
        return pull_request
