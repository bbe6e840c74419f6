"""
Document files - one JSON blob per folder node.

Every node of the folder tree owns ``<content_root>/files/<id>.json``.
Content goes over the wire base64 encoded, exactly as the editor sends it.
"""
import base64
import json
import logging
import uuid
from typing import Any, Dict, Optional

from .models import BlobContent, RepositoryCoordinates
from .object_store import ObjectStoreClient, NotFoundException

logger = logging.getLogger(__name__)


def default_document(title: str = "Untitled") -> Dict[str, Any]:
    """Starter content for a new file: a single heading block."""
    block_id = str(uuid.uuid4())
    return {
        block_id: {
            "id": block_id,
            "type": "HeadingOne",
            "value": [{
                "id": str(uuid.uuid4()),
                "type": "heading-one",
                "children": [{"text": title}],
                "props": {"nodeType": "block"},
            }],
            "meta": {"order": 0, "depth": 0},
        }
    }


def encode_document(document: Dict[str, Any]) -> str:
    return base64.b64encode(json.dumps(document).encode("utf-8")).decode("ascii")


class DocumentFiles:
    """Read, write, create and delete document blobs by node id."""

    def __init__(self, store: ObjectStoreClient):
        self.store = store

    def path_for(self, file_id: str) -> str:
        return f"{self.store.content_root}/files/{file_id}.json"

    async def read(self, coords: RepositoryCoordinates, file_id: str,
                   ref: Optional[str] = None) -> BlobContent:
        return await self.store.read_blob(coords, self.path_for(file_id), ref=ref)

    async def write(self, coords: RepositoryCoordinates, file_id: str, content: str,
                    branch: Optional[str] = None) -> str:
        """
        Replace a document's content (base64) with the current blob as base.

        Returns:
            The new blob sha
        """
        current = await self.read(coords, file_id, ref=branch)
        return await self.store.write_blob(
            coords, self.path_for(file_id), content, current.sha,
            message="updated file content", branch=branch,
        )

    async def create(self, coords: RepositoryCoordinates, file_id: str,
                     content: Optional[str] = None, title: str = "Untitled",
                     branch: Optional[str] = None) -> str:
        """Create a document blob, with starter content unless given."""
        if content is None:
            content = encode_document(default_document(title))
        return await self.store.write_blob(
            coords, self.path_for(file_id), content, None,
            message=f"created file {file_id}", branch=branch,
        )

    async def delete(self, coords: RepositoryCoordinates, file_id: str,
                     branch: Optional[str] = None) -> bool:
        """
        Delete a document blob.

        Returns:
            False if there was no blob to delete
        """
        path = self.path_for(file_id)
        try:
            current = await self.store.read_blob(coords, path, ref=branch)
        except NotFoundException:
            logger.warning(f"{coords.full_name}: {path} already gone, nothing to delete")
            return False
        await self.store.delete_blob(coords, path, current.sha,
                                     message=f"deleted file {file_id}", branch=branch)
        return True
