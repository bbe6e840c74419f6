"""
REST and websocket endpoints for document storage.

Handlers resolve the project, open a request-scoped object store client and
hand off to the storage and collab modules.
"""

import logging
from typing import List, Literal, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Response, WebSocket, WebSocketDisconnect
from pydantic import BaseModel, Field

import db
from collab import notifications as notifications_module
from storage import ConflictException, Edit, FolderNode, StorageException
from .dependencies import get_current_user, http_error, open_project, require_member

logger = logging.getLogger(__name__)

router = APIRouter(tags=["documents"])


# ─────────────────────────────────────────────────────────────────────────────
# Pydantic Models
# ─────────────────────────────────────────────────────────────────────────────

class AccountTokens(BaseModel):
    github_login: str
    access_token: str
    refresh_token: Optional[str] = None


class ProjectCreate(BaseModel):
    id: str
    name: str  # repository name
    org: Optional[str] = None
    account_type: Literal["github", "google", "app"] = "github"
    installation_id: Optional[str] = None


class MemberAdd(BaseModel):
    user_id: str


class EditModel(BaseModel):
    path: str
    changed_content: str  # "null" deletes the path
    previous_content: Optional[str] = None


class CommitRequest(BaseModel):
    project_id: str
    content: List[EditModel]
    message: str
    branch: Optional[str] = None  # Defaults to the user's editing branch, else main


class BranchCreate(BaseModel):
    project_id: str
    branch_name: str


class PublishRequest(BaseModel):
    project_id: str
    title: str
    body: str = ""


class FolderNodeModel(BaseModel):
    id: str
    name: str
    children: List["FolderNodeModel"] = Field(default_factory=list)

    def to_node(self) -> FolderNode:
        return FolderNode(id=self.id, name=self.name, children=[c.to_node() for c in self.children])


FolderNodeModel.model_rebuild()


class FolderInsert(BaseModel):
    id: str  # project id
    parentID: str = ""
    folder: FolderNodeModel
    content: Optional[str] = None  # base64; starter document if omitted


class FolderRename(BaseModel):
    project_id: str
    node_id: str
    name: str


class FileUpdate(BaseModel):
    project_id: str
    file_id: str
    content: str  # base64


# ─────────────────────────────────────────────────────────────────────────────
# Accounts and projects
# ─────────────────────────────────────────────────────────────────────────────

@router.put("/api/account")
async def save_account(request: AccountTokens, user_id: str = Depends(get_current_user)):
    """Store the GitHub login and tokens the sign-in flow obtained for the user"""
    user = db.upsert_user(user_id, request.github_login, request.access_token, request.refresh_token)
    return {"id": user["id"], "github_login": user["github_login"]}


@router.post("/api/projects", status_code=201)
async def create_project(request: ProjectCreate, user_id: str = Depends(get_current_user)):
    """Register a project on an existing repository and store its empty folder tree"""
    if not db.get_user(user_id):
        raise HTTPException(status_code=404, detail="Save your account before creating projects")
    if db.get_project(request.id):
        raise HTTPException(status_code=409, detail=f"Project '{request.id}' already exists")

    project = db.create_project(
        request.id, request.name, user_id, org=request.org,
        account_type=request.account_type, installation_id=request.installation_id,
    )
    try:
        async with open_project(request.id, user_id) as ctx:
            await ctx.folders.initialize(ctx.coords)
    except ConflictException:
        logger.info(f"Project {request.id}: folder tree already present, keeping it")
    except StorageException as e:
        db.delete_project(request.id)
        raise http_error(e)
    except HTTPException:
        db.delete_project(request.id)
        raise
    return project


@router.post("/api/projects/{project_id}/members", status_code=201)
async def add_project_member(project_id: str, request: MemberAdd,
                             user_id: str = Depends(get_current_user)):
    """Let another user work on the project (owner only)"""
    project = require_member(project_id, user_id)
    if project["owner_id"] != user_id:
        raise HTTPException(status_code=403, detail="Only the project owner can add members")
    if not db.get_user(request.user_id):
        raise HTTPException(status_code=404, detail=f"User '{request.user_id}' not found")
    db.add_member(project_id, request.user_id)
    return {"project_id": project_id, "user_id": request.user_id}


# ─────────────────────────────────────────────────────────────────────────────
# Commits
# ─────────────────────────────────────────────────────────────────────────────

@router.post("/api/commit")
async def commit_changes(request: CommitRequest, user_id: str = Depends(get_current_user)):
    """Commit a batch of file edits and notify the project's viewers"""
    async with open_project(request.project_id, user_id) as ctx:
        branch = request.branch or ctx.pipeline.target_branch(ctx.project_id, user_id)
        edits = [
            Edit(path=e.path, changed_content=e.changed_content, previous_content=e.previous_content)
            for e in request.content
        ]
        try:
            sha = await ctx.pipeline.commit(
                ctx.coords, branch, edits, request.message,
                project_id=ctx.project_id, actor=user_id,
            )
        except StorageException as e:
            raise http_error(e)
    return {"message": "Changes committed successfully", "commit": sha, "branch": branch}


# ─────────────────────────────────────────────────────────────────────────────
# Editing branches
# ─────────────────────────────────────────────────────────────────────────────

@router.post("/api/branch")
async def create_branch(request: BranchCreate, user_id: str = Depends(get_current_user)):
    """Start editing on a private branch off main"""
    async with open_project(request.project_id, user_id) as ctx:
        try:
            await ctx.pipeline.create_editing_branch(ctx.coords, ctx.project_id, user_id, request.branch_name)
        except StorageException as e:
            raise http_error(e)
    return {"message": f"Branch {request.branch_name} created successfully"}


@router.get("/api/branch/check/{project_id}")
async def check_editing_branch(project_id: str, user_id: str = Depends(get_current_user)):
    """Which branch the user is editing on ("" when none)"""
    async with open_project(project_id, user_id) as ctx:
        branch = ctx.pipeline.current_editing_branch(project_id, user_id)
    return {"branch_name": branch or ""}


@router.post("/api/branch/publish")
async def publish_branch(request: PublishRequest, user_id: str = Depends(get_current_user)):
    """Open a pull request from the user's editing branch to main"""
    async with open_project(request.project_id, user_id) as ctx:
        try:
            pull_request = await ctx.pipeline.publish(
                ctx.coords, ctx.project_id, user_id, request.title, request.body
            )
        except StorageException as e:
            raise http_error(e)
    return pull_request.to_dict()


@router.delete("/api/branch/{project_id}/{branch_name:path}")
async def delete_branch(project_id: str, branch_name: str, user_id: str = Depends(get_current_user)):
    """Discard an editing branch"""
    async with open_project(project_id, user_id) as ctx:
        try:
            await ctx.pipeline.delete_editing_branch(ctx.coords, project_id, user_id, branch_name)
        except StorageException as e:
            raise http_error(e)
    return {"success": "Branch deleted successfully"}


# ─────────────────────────────────────────────────────────────────────────────
# Folder tree
# ─────────────────────────────────────────────────────────────────────────────

@router.get("/api/folder/{project_id}")
async def get_folder(project_id: str, ref: Optional[str] = None,
                     user_id: str = Depends(get_current_user)):
    """Get the project's folder tree and its sha"""
    async with open_project(project_id, user_id) as ctx:
        try:
            forest, sha = await ctx.folders.load(ctx.coords, ref=ref)
        except StorageException as e:
            raise http_error(e)
    return {"folders": [node.to_dict() for node in forest], "sha": sha}


@router.post("/api/folder", status_code=201)
async def add_folder_node(request: FolderInsert, user_id: str = Depends(get_current_user)):
    """Add a node under parentID (root when empty) and create its file"""
    async with open_project(request.id, user_id) as ctx:
        try:
            forest = await ctx.folders.add_document(
                ctx.coords, request.parentID or None, request.folder.to_node(), content=request.content
            )
        except StorageException as e:
            raise http_error(e)
    return [node.to_dict() for node in forest]


@router.patch("/api/folder")
async def rename_folder_node(request: FolderRename, user_id: str = Depends(get_current_user)):
    """Rename a node"""
    async with open_project(request.project_id, user_id) as ctx:
        try:
            forest = await ctx.folders.rename_document(ctx.coords, request.node_id, request.name)
        except StorageException as e:
            raise http_error(e)
    return [node.to_dict() for node in forest]


@router.delete("/api/folder/{project_id}/{node_id}")
async def delete_folder_node(project_id: str, node_id: str, user_id: str = Depends(get_current_user)):
    """Delete a node, its subtree and all their files"""
    async with open_project(project_id, user_id) as ctx:
        try:
            forest = await ctx.folders.remove_document(ctx.coords, node_id)
        except StorageException as e:
            raise http_error(e)
    return [node.to_dict() for node in forest]


# ─────────────────────────────────────────────────────────────────────────────
# Files
# ─────────────────────────────────────────────────────────────────────────────

@router.get("/api/files")
async def get_file(proj: str = Query(...), file: str = Query(...), ref: Optional[str] = None,
                   user_id: str = Depends(get_current_user)):
    """Get a document's base64 content"""
    async with open_project(proj, user_id) as ctx:
        try:
            blob = await ctx.files.read(ctx.coords, file, ref=ref)
        except StorageException as e:
            raise http_error(e)
    return {"content": blob.content, "sha": blob.sha}


@router.put("/api/files")
async def update_file(request: FileUpdate, user_id: str = Depends(get_current_user)):
    """Replace a document's content on the user's current branch"""
    async with open_project(request.project_id, user_id) as ctx:
        branch = ctx.pipeline.current_editing_branch(ctx.project_id, user_id)
        try:
            sha = await ctx.files.write(ctx.coords, request.file_id, request.content, branch=branch)
        except StorageException as e:
            raise http_error(e)
    return {"message": "Data saved successfully", "sha": sha}


# ─────────────────────────────────────────────────────────────────────────────
# Notifications
# ─────────────────────────────────────────────────────────────────────────────

def _hub():
    hub = notifications_module.notification_hub
    if hub is None:
        raise HTTPException(status_code=503, detail="Notification hub not initialized")
    return hub


@router.get("/api/poll/{project_id}")
async def long_poll(project_id: str, user_id: str = Depends(get_current_user)):
    """Wait for the next update on a project; 204 when none arrives in time"""
    require_member(project_id, user_id)
    update = await _hub().subscribe(project_id)
    if update is None:
        return Response(status_code=204)
    return update.to_dict()


@router.websocket("/ws/{project_id}")
async def project_socket(websocket: WebSocket, project_id: str):
    """
    Live connection to a project room.

    Receives {"type": "update", "updatedBy": ...} after every commit; any text
    a client sends is relayed to the other connections in the room. Only
    project members (X-User-Id header) may connect.
    """
    hub = notifications_module.notification_hub
    if hub is None:
        await websocket.close(code=1011, reason="Notification hub not initialized")
        return

    user_id = websocket.headers.get("x-user-id")
    if not user_id or not db.is_member(project_id, user_id):
        await websocket.close(code=1008, reason="Not a member of this project")
        return

    await websocket.accept()
    await hub.join(project_id, websocket)
    try:
        while True:
            message = await websocket.receive_text()
            await hub.relay(project_id, message, sender=websocket)
    except WebSocketDisconnect:
        logger.info(f"Client disconnected from project {project_id}")
    finally:
        await hub.leave(project_id, websocket)
