"""GitHub-backed storage for collaborative documents"""
from .object_store import (
    ObjectStoreClient,
    StorageException,
    NotFoundException,
    UnauthorizedException,
    ConflictException,
    RemoteException,
    MalformedResponseException,
)
from .models import RepositoryCoordinates, Edit, FolderNode, BlobContent, PullRequest, Update
from .credentials import CredentialProvider, StoredTokens, TokenStore, credentials_for
from .commit_pipeline import CommitPipeline
from .documents import DocumentFiles
from .folder_tree import FolderTreeStore

__all__ = [
    "ObjectStoreClient",
    "StorageException",
    "NotFoundException",
    "UnauthorizedException",
    "ConflictException",
    "RemoteException",
    "MalformedResponseException",
    "RepositoryCoordinates",
    "Edit",
    "FolderNode",
    "BlobContent",
    "PullRequest",
    "Update",
    "CredentialProvider",
    "StoredTokens",
    "TokenStore",
    "credentials_for",
    "CommitPipeline",
    "DocumentFiles",
    "FolderTreeStore",
]
