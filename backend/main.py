import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
import uvicorn

from api.routes import router as documents_router
from collab import editing_sessions, initialize_notification_hub
from collab import notifications as notifications_module  # Access notification_hub at runtime
from config import LONG_POLL_TIMEOUT_SECONDS
from db import init_db

logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
logger = logging.getLogger(__name__)

# Create FastAPI app
app = FastAPI(
    title="Document Storage Backend",
    description="Collaborative documents stored in GitHub repositories",
    version="1.0.0"
)

# Add CORS middleware for frontend connections
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # In production, specify actual frontend URLs
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include document storage routes
app.include_router(documents_router)


# Startup event
@app.on_event("startup")
async def startup_event():
    """Initialize the project directory and the notification hub"""
    init_db()
    logger.info("Database initialized")

    initialize_notification_hub(poll_timeout=LONG_POLL_TIMEOUT_SECONDS)
    logger.info(f"Notification hub started (long poll timeout {LONG_POLL_TIMEOUT_SECONDS:.0f}s)")


@app.on_event("shutdown")
async def shutdown_event():
    """Drop waiting viewers; they reconnect and re-fetch"""
    hub = notifications_module.notification_hub
    if hub:
        logger.info(f"Shutting down with {len(hub.get_active_rooms())} open rooms")
    notifications_module.notification_hub = None

    sessions = editing_sessions.items()
    if sessions:
        # Branches stay in the repository; only the mapping is lost
        logger.info(f"Forgetting {len(sessions)} editing sessions")


# Health check endpoint
@app.get("/health")
async def health_check():
    """Health check endpoint"""
    return {"status": "healthy", "service": "document-storage-backend", "storage": "github"}


# Root endpoint with API info
@app.get("/")
async def root():
    """Root endpoint with API information"""
    return {
        "message": "Document Storage Backend API (GitHub-based)",
        "version": "1.0.0",
        "storage": "github",
        "websocket_endpoint": "/ws/{project_id}",
        "api_endpoints": {
            "account": "PUT /api/account",
            "projects": "POST /api/projects",
            "members": "POST /api/projects/{project_id}/members",
            "commit": "POST /api/commit",
            "create_branch": "POST /api/branch",
            "check_branch": "/api/branch/check/{project_id}",
            "publish_branch": "POST /api/branch/publish",
            "delete_branch": "DELETE /api/branch/{project_id}/{branch_name}",
            "folder": "/api/folder/{project_id}",
            "files": "/api/files?proj={project_id}&file={file_id}",
            "long_poll": "/api/poll/{project_id}"
        },
        "documentation": "/docs"
    }

if __name__ == "__main__":
    # Run the server
    uvicorn.run(
        "main:app",
        host="0.0.0.0",
        port=8000,
        reload=True,
        log_level="info"
    )
