"""SQLite project directory: which repository backs a project and whose tokens reach it."""

import sqlite3
from contextlib import contextmanager
from typing import Generator, Optional

import config
from storage.credentials import StoredTokens, TokenStore
from storage.models import RepositoryCoordinates


def init_db():
    """Initialize database with schema."""
    config.DB_PATH.parent.mkdir(parents=True, exist_ok=True)

    with get_connection() as conn:
        conn.executescript("""
            -- Users table (tokens are written by the sign-in flow)
            CREATE TABLE IF NOT EXISTS users (
                id TEXT PRIMARY KEY,
                github_login TEXT,
                access_token TEXT,
                refresh_token TEXT,
                created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
            );

            -- Projects table: one GitHub repository per project
            CREATE TABLE IF NOT EXISTS projects (
                id TEXT PRIMARY KEY,
                name TEXT NOT NULL,
                org TEXT,
                owner_id TEXT NOT NULL,
                account_type TEXT NOT NULL DEFAULT 'github' CHECK(account_type IN ('github', 'google', 'app')),
                installation_id TEXT,
                created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                FOREIGN KEY (owner_id) REFERENCES users(id)
            );

            -- Project membership
            CREATE TABLE IF NOT EXISTS project_members (
                project_id TEXT NOT NULL,
                user_id TEXT NOT NULL,
                PRIMARY KEY (project_id, user_id),
                FOREIGN KEY (project_id) REFERENCES projects(id) ON DELETE CASCADE,
                FOREIGN KEY (user_id) REFERENCES users(id)
            );

            CREATE INDEX IF NOT EXISTS idx_members_user ON project_members(user_id);
        """)
        conn.commit()


@contextmanager
def get_connection() -> Generator[sqlite3.Connection, None, None]:
    """Get a database connection with row factory."""
    conn = sqlite3.connect(str(config.DB_PATH))
    conn.row_factory = sqlite3.Row
    try:
        yield conn
    finally:
        conn.close()


# ─────────────────────────────────────────────────────────────────────────────
# User Operations
# ─────────────────────────────────────────────────────────────────────────────

def upsert_user(user_id: str, github_login: str = None, access_token: str = None,
                refresh_token: str = None) -> dict:
    """Create a user or replace their login and tokens."""
    with get_connection() as conn:
        conn.execute(
            """
            INSERT INTO users (id, github_login, access_token, refresh_token)
            VALUES (?, ?, ?, ?)
            ON CONFLICT(id) DO UPDATE SET
                github_login = excluded.github_login,
                access_token = excluded.access_token,
                refresh_token = excluded.refresh_token
            """,
            (user_id, github_login, access_token, refresh_token)
        )
        conn.commit()
    return get_user(user_id)


def get_user(user_id: str) -> Optional[dict]:
    """Get user by ID."""
    with get_connection() as conn:
        row = conn.execute(
            "SELECT * FROM users WHERE id = ?",
            (user_id,)
        ).fetchone()
        return dict(row) if row else None


class DatabaseTokenStore(TokenStore):
    """TokenStore over the users table."""

    def get_tokens(self, user_id: str) -> Optional[StoredTokens]:
        user = get_user(user_id)
        if not user or not user["access_token"]:
            return None
        return StoredTokens(access_token=user["access_token"], refresh_token=user["refresh_token"])

    def save_tokens(self, user_id: str, tokens: StoredTokens) -> None:
        with get_connection() as conn:
            conn.execute(
                "UPDATE users SET access_token = ?, refresh_token = ? WHERE id = ?",
                (tokens.access_token, tokens.refresh_token, user_id)
            )
            conn.commit()


# ─────────────────────────────────────────────────────────────────────────────
# Project Operations
# ─────────────────────────────────────────────────────────────────────────────

def create_project(project_id: str, name: str, owner_id: str, org: str = None,
                   account_type: str = "github", installation_id: str = None) -> dict:
    """Register a project; the owner becomes its first member."""
    with get_connection() as conn:
        conn.execute(
            """
            INSERT INTO projects (id, name, org, owner_id, account_type, installation_id)
            VALUES (?, ?, ?, ?, ?, ?)
            """,
            (project_id, name, org, owner_id, account_type, installation_id)
        )
        conn.execute(
            "INSERT OR IGNORE INTO project_members (project_id, user_id) VALUES (?, ?)",
            (project_id, owner_id)
        )
        conn.commit()
    return get_project(project_id)


def delete_project(project_id: str):
    """Remove a project and its memberships."""
    with get_connection() as conn:
        conn.execute("DELETE FROM project_members WHERE project_id = ?", (project_id,))
        conn.execute("DELETE FROM projects WHERE id = ?", (project_id,))
        conn.commit()


def add_member(project_id: str, user_id: str):
    with get_connection() as conn:
        conn.execute(
            "INSERT OR IGNORE INTO project_members (project_id, user_id) VALUES (?, ?)",
            (project_id, user_id)
        )
        conn.commit()


def get_project(project_id: str) -> Optional[dict]:
    """Get project by ID, with the owner's GitHub login."""
    with get_connection() as conn:
        row = conn.execute(
            """
            SELECT p.*, u.github_login AS owner_login
            FROM projects p
            JOIN users u ON p.owner_id = u.id
            WHERE p.id = ?
            """,
            (project_id,)
        ).fetchone()
        return dict(row) if row else None


def is_member(project_id: str, user_id: str) -> bool:
    with get_connection() as conn:
        row = conn.execute(
            "SELECT 1 FROM project_members WHERE project_id = ? AND user_id = ?",
            (project_id, user_id)
        ).fetchone()
        return row is not None


def project_coordinates(project: dict) -> RepositoryCoordinates:
    """Repository of a project: under its org if it has one, else the owner."""
    return RepositoryCoordinates.for_project(
        repo=project["name"],
        user_login=project["owner_login"] or "",
        org=project["org"],
    )
