"""
Virtual folder tree.

The repository has no notion of the editor's folders; the hierarchy is one
JSON document (a list of FolderNode) stored base64 encoded at
``<content_root>/folder/folder.json``. It is read whole, changed in memory
and written back with the sha it was read at as a compare-and-swap token.

The tree functions are pure: they return a new forest and never touch the
one they were given. Unknown ids are no-ops, not errors.
"""
import base64
import binascii
import json
import logging
from typing import Iterator, List, Optional, Tuple

from .documents import DocumentFiles
from .models import FolderNode, RepositoryCoordinates
from .object_store import (
    ObjectStoreClient,
    ConflictException,
    MalformedResponseException,
    NotFoundException,
)

logger = logging.getLogger(__name__)

Forest = List[FolderNode]


# ─────────────────────────────────────────────────────────────────────────────
# Serialization
# ─────────────────────────────────────────────────────────────────────────────

def encode_forest(forest: Forest) -> str:
    """
    Forest -> compact UTF-8 JSON -> base64.

    Null children lists are written back as [], so a tree stored with nulls
    changes bytes on its first save and is stable from then on.
    """
    payload = json.dumps([node.to_dict() for node in forest], separators=(",", ":"), ensure_ascii=False)
    return base64.b64encode(payload.encode("utf-8")).decode("ascii")


def decode_forest(content: str) -> Forest:
    """
    base64 -> JSON -> Forest.

    Raises:
        MalformedResponseException: If the blob is not a base64 JSON list
    """
    try:
        data = json.loads(base64.b64decode(content, validate=False).decode("utf-8") or "[]")
    except (binascii.Error, UnicodeDecodeError, ValueError) as e:
        raise MalformedResponseException(f"Folder structure cannot be decoded: {e}")
    if data is None:
        return []
    if not isinstance(data, list):
        raise MalformedResponseException("Folder structure is not a list")
    try:
        return [FolderNode.from_dict(item) for item in data]
    except (KeyError, TypeError, AttributeError) as e:
        raise MalformedResponseException(f"Folder node is malformed: {e}")


# ─────────────────────────────────────────────────────────────────────────────
# Pure tree operations
# ─────────────────────────────────────────────────────────────────────────────

def _copy(node: FolderNode) -> FolderNode:
    return FolderNode(id=node.id, name=node.name, children=[_copy(child) for child in node.children])


def find_node(forest: Forest, node_id: str) -> Optional[FolderNode]:
    """Depth-first search for a node by id."""
    for node in forest:
        if node.id == node_id:
            return node
        found = find_node(node.children, node_id)
        if found is not None:
            return found
    return None


def insert_node(forest: Forest, parent_id: Optional[str], new_node: FolderNode) -> Forest:
    """
    Append new_node under parent_id, or at the root when parent_id is empty.

    An unknown parent_id leaves the forest as it was.
    """
    if not parent_id:
        return [_copy(node) for node in forest] + [_copy(new_node)]

    def insert_under(node: FolderNode) -> FolderNode:
        children = [insert_under(child) for child in node.children]
        if node.id == parent_id:
            children.append(_copy(new_node))
        return FolderNode(id=node.id, name=node.name, children=children)

    return [insert_under(node) for node in forest]


def rename_node(forest: Forest, node_id: str, new_name: str) -> Forest:
    def rename(node: FolderNode) -> FolderNode:
        name = new_name if node.id == node_id else node.name
        return FolderNode(id=node.id, name=name, children=[rename(child) for child in node.children])

    return [rename(node) for node in forest]


def remove_node(forest: Forest, node_id: str) -> Forest:
    """Drop a node and its whole subtree from wherever it sits."""
    return [
        FolderNode(id=node.id, name=node.name, children=remove_node(node.children, node_id))
        for node in forest
        if node.id != node_id
    ]


def iter_subtree_post_order(node: FolderNode) -> Iterator[FolderNode]:
    """Yield every descendant before its parent, node itself last."""
    for child in node.children:
        yield from iter_subtree_post_order(child)
    yield node


# ─────────────────────────────────────────────────────────────────────────────
# Remote store
# ─────────────────────────────────────────────────────────────────────────────

class FolderTreeStore:
    """
    Loads and saves the folder tree and keeps document blobs in step with it.

    Args:
        store: Object store client for the request
        files: Document blob access (defaults to one over the same store)
    """

    def __init__(self, store: ObjectStoreClient, files: Optional[DocumentFiles] = None):
        self.store = store
        self.files = files or DocumentFiles(store)

    @property
    def folder_path(self) -> str:
        return f"{self.store.content_root}/folder/folder.json"

    async def load(self, coords: RepositoryCoordinates,
                   ref: Optional[str] = None) -> Tuple[Forest, str]:
        """
        Read the folder tree.

        Returns:
            (forest, sha) - pass the sha back to save()
        """
        blob = await self.store.read_blob(coords, self.folder_path, ref=ref)
        return decode_forest(blob.content), blob.sha

    async def save(self, coords: RepositoryCoordinates, forest: Forest, previous_sha: str,
                   message: str = "update folder", branch: Optional[str] = None) -> str:
        """
        Write the folder tree if nobody else wrote it since previous_sha.

        Returns:
            The new sha

        Raises:
            ConflictException: If previous_sha is stale; reload, reapply, retry
        """
        return await self.store.write_blob(
            coords, self.folder_path, encode_forest(forest), previous_sha,
            message=message, branch=branch,
        )

    async def initialize(self, coords: RepositoryCoordinates) -> str:
        """Store an empty tree for a freshly provisioned project."""
        return await self.store.write_blob(
            coords, self.folder_path, encode_forest([]), None,
            message="create folder structure",
        )

    async def delete_node(self, coords: RepositoryCoordinates, forest: Forest, node_id: str,
                          branch: Optional[str] = None) -> Forest:
        """
        Delete a node's document blobs, then return the forest without it.

        Blobs go in post-order (descendants first, the node last), so an
        interrupted delete never leaves a parent removed above live children.
        An unknown node_id makes no remote calls and returns the forest as is.
        """
        target = find_node(forest, node_id)
        if target is None:
            return [_copy(node) for node in forest]

        for node in iter_subtree_post_order(target):
            await self.files.delete(coords, node.id, branch=branch)

        return remove_node(forest, node_id)

    # ─────────────────────────────────────────────────────────────────────────
    # Load - change - save
    # ─────────────────────────────────────────────────────────────────────────

    async def add_document(self, coords: RepositoryCoordinates, parent_id: Optional[str],
                           node: FolderNode, content: Optional[str] = None) -> Forest:
        """
        Insert a node (with any children it carries) and create a document
        blob for every node inserted. content, if given, is the top node's;
        the others get the starter document.

        Raises:
            NotFoundException: If parent_id is not in the tree
            ConflictException: If an inserted id is already in the tree or
                repeats within the new subtree, or the tree changed
        """
        forest, sha = await self.load(coords)
        if parent_id and find_node(forest, parent_id) is None:
            raise NotFoundException(f"Parent folder '{parent_id}' not found")

        new_nodes = list(iter_subtree_post_order(node))
        seen = set()
        for new in new_nodes:
            if new.id in seen or find_node(forest, new.id) is not None:
                raise ConflictException(f"Node id '{new.id}' already exists")
            seen.add(new.id)

        forest = insert_node(forest, parent_id, node)
        await self.save(coords, forest, sha, message=f"add {node.name}")
        for new in new_nodes:
            await self.files.create(coords, new.id, content=content if new is node else None,
                                    title=new.name)
        return forest

    async def rename_document(self, coords: RepositoryCoordinates, node_id: str,
                              new_name: str) -> Forest:
        forest, sha = await self.load(coords)
        if find_node(forest, node_id) is None:
            raise NotFoundException(f"Node '{node_id}' not found")

        forest = rename_node(forest, node_id, new_name)
        await self.save(coords, forest, sha, message=f"rename {node_id} to {new_name}")
        return forest

    async def remove_document(self, coords: RepositoryCoordinates, node_id: str) -> Forest:
        forest, sha = await self.load(coords)
        if find_node(forest, node_id) is None:
            raise NotFoundException(f"Node '{node_id}' not found")

        # Blob deletes touch other paths, so the folder sha stays valid
        forest = await self.delete_node(coords, forest, node_id)
        await self.save(coords, forest, sha, message=f"delete {node_id}")
        return forest
