"""
Central configuration for the document storage backend.

All settings loaded from .env file or environment variables.
See .env.example for available options.
"""
import os
from pathlib import Path
from dotenv import load_dotenv

# Load .env file from backend directory
load_dotenv(Path(__file__).parent / ".env")

# GitHub REST API root (override for GitHub Enterprise)
GITHUB_API_URL = os.getenv("GITHUB_API_URL", "https://api.github.com")

# OAuth token endpoint used to exchange refresh tokens
GITHUB_OAUTH_TOKEN_URL = os.getenv(
    "GITHUB_OAUTH_TOKEN_URL", "https://github.com/login/oauth/access_token"
)

# GitHub App credentials (OAuth refresh and installation tokens)
GITHUB_APP_CLIENT_ID = os.getenv("GITHUB_APP_CLIENT_ID", "")
GITHUB_APP_CLIENT_SECRET = os.getenv("GITHUB_APP_CLIENT_SECRET", "")
GITHUB_APP_ID = os.getenv("GITHUB_APP_ID", "")
GITHUB_APP_PRIVATE_KEY = os.getenv("GITHUB_APP_PRIVATE_KEY", "")

# Upper bound for every call to the storage platform, in seconds
REMOTE_TIMEOUT_SECONDS = float(os.getenv("REMOTE_TIMEOUT_SECONDS", "30"))

# How long a long-poll request waits for an update before returning empty
LONG_POLL_TIMEOUT_SECONDS = float(os.getenv("LONG_POLL_TIMEOUT_SECONDS", "300"))

# Main line of every project repository
DEFAULT_BRANCH = os.getenv("DEFAULT_BRANCH", "main")

# Project directory database
DB_PATH = Path(os.getenv("DB_PATH", str(Path(__file__).parent / "data" / "documents.db")))
