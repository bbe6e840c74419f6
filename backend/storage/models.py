"""
Data model for the git-backed document store.

Everything here is plain data: remote objects are content-addressed and never
mutated, folder nodes are rebuilt rather than edited in place.
"""

from dataclasses import dataclass, field
from typing import List, Dict, Any, Optional


# Literal sent by the editor when a file was removed in the batch
DELETE_MARKER = "null"

# Regular (non-executable) file mode for every entry we write
BLOB_MODE = "100644"


@dataclass(frozen=True)
class RepositoryCoordinates:
    """Owner (user login or organisation) and repository name."""
    owner: str
    repo: str

    @classmethod
    def for_project(cls, repo: str, user_login: str, org: Optional[str] = None) -> 'RepositoryCoordinates':
        # Organisation projects live under the org, personal ones under the user
        return cls(owner=org or user_login, repo=repo)

    @property
    def full_name(self) -> str:
        return f"{self.owner}/{self.repo}"


@dataclass
class Edit:
    """A single path-level change in a commit batch."""
    path: str
    changed_content: str
    previous_content: Optional[str] = None

    @property
    def is_delete(self) -> bool:
        return self.changed_content == DELETE_MARKER

    def to_tree_entry(self) -> Dict[str, Any]:
        """
        Translate the edit into a git tree entry.

        Deletes keep the entry and send an explicit null sha; GitHub removes
        the path from the base tree when it sees one.
        """
        if self.is_delete:
            return {"path": self.path, "mode": BLOB_MODE, "type": "blob", "sha": None}
        return {"path": self.path, "mode": BLOB_MODE, "type": "blob", "content": self.changed_content}


@dataclass
class BlobContent:
    """File content as returned by the contents API (content is base64)."""
    path: str
    content: str
    sha: str


@dataclass
class PullRequest:
    number: int
    url: str
    head: str
    base: str

    def to_dict(self) -> Dict[str, Any]:
        return {"number": self.number, "url": self.url, "head": self.head, "base": self.base}


@dataclass
class FolderNode:
    """
    One entry of the virtual folder tree.

    Every node, with or without children, owns a content blob at
    ``<content_root>/files/<id>.json``. A null children list decodes as [].
    """
    id: str
    name: str
    children: List['FolderNode'] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "children": [child.to_dict() for child in self.children],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'FolderNode':
        return cls(
            id=str(data["id"]),
            name=data.get("name", ""),
            children=[cls.from_dict(child) for child in data.get("children") or []],
        )


@dataclass
class Update:
    """Payload delivered to viewers when a project changed."""
    updated_by: str

    def to_dict(self) -> Dict[str, Any]:
        return {"updatedBy": self.updated_by}
