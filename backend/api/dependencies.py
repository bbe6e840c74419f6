"""Request-scoped wiring: who is asking, which repository, which credentials."""

from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import AsyncIterator, Optional

from fastapi import Header, HTTPException, status

import db
from collab import notifications as notifications_module
from collab.sessions import editing_sessions
from storage import (
    CommitPipeline,
    ConflictException,
    CredentialProvider,
    DocumentFiles,
    FolderTreeStore,
    MalformedResponseException,
    NotFoundException,
    ObjectStoreClient,
    RemoteException,
    RepositoryCoordinates,
    StorageException,
    UnauthorizedException,
    credentials_for,
)

token_store = db.DatabaseTokenStore()


def make_store(credentials: CredentialProvider) -> ObjectStoreClient:
    """Build the object store client for one request."""
    return ObjectStoreClient(credentials)


@dataclass
class ProjectContext:
    """Everything a handler needs to work on one project."""
    project_id: str
    user_id: str
    coords: RepositoryCoordinates
    store: ObjectStoreClient
    pipeline: CommitPipeline
    folders: FolderTreeStore
    files: DocumentFiles


async def get_current_user(x_user_id: Optional[str] = Header(None)) -> str:
    """User id set by the authenticating proxy in X-User-Id."""
    if not x_user_id:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Missing X-User-Id header")
    return x_user_id


def require_member(project_id: str, user_id: str) -> dict:
    """
    Look up a project the user belongs to.

    Raises:
        HTTPException: 404 for an unknown project, 403 for non-members
    """
    project = db.get_project(project_id)
    if not project:
        raise HTTPException(status_code=404, detail=f"Project '{project_id}' not found")
    if not db.is_member(project_id, user_id):
        raise HTTPException(status_code=403, detail="Not a member of this project")
    return project


@asynccontextmanager
async def open_project(project_id: str, user_id: str) -> AsyncIterator[ProjectContext]:
    """Resolve a project the user belongs to and open an object store client for it."""
    project = require_member(project_id, user_id)

    try:
        credentials = credentials_for(
            project["account_type"],
            token_store,
            user_id=user_id,
            owner_user_id=project["owner_id"],
            installation_id=project["installation_id"],
        )
    except ValueError as e:
        raise HTTPException(status_code=500, detail=str(e))

    async with make_store(credentials) as store:
        yield ProjectContext(
            project_id=project_id,
            user_id=user_id,
            coords=db.project_coordinates(project),
            store=store,
            pipeline=CommitPipeline(store, sessions=editing_sessions,
                                    hub=notifications_module.notification_hub),
            folders=FolderTreeStore(store),
            files=DocumentFiles(store),
        )


def http_error(e: StorageException) -> HTTPException:
    """Map a storage failure onto the HTTP status the client sees."""
    if isinstance(e, NotFoundException):
        return HTTPException(status_code=404, detail=str(e))
    if isinstance(e, UnauthorizedException):
        return HTTPException(status_code=401, detail=str(e))
    if isinstance(e, ConflictException):
        return HTTPException(status_code=409, detail=str(e))
    if isinstance(e, (RemoteException, MalformedResponseException)):
        return HTTPException(status_code=502, detail=str(e))
    return HTTPException(status_code=500, detail=str(e))
