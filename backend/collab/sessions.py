"""
Editing sessions - which private branch a user is editing a project on.

Advisory only: the map lives in this process and is lost on restart. It
steers commits away from the main line; it does not lock anything.
"""

import logging
import threading
from typing import Dict, List, Optional, Tuple

logger = logging.getLogger(__name__)


class EditingSessionRegistry:
    """Process-wide (project_id, user_id) -> branch name map."""

    def __init__(self):
        self._branches: Dict[Tuple[str, str], str] = {}
        self._lock = threading.Lock()

    def set(self, project_id: str, user_id: str, branch_name: str) -> None:
        with self._lock:
            self._branches[(project_id, user_id)] = branch_name
        logger.info(f"Project {project_id}: user {user_id} editing on branch {branch_name}")

    def get(self, project_id: str, user_id: str) -> Optional[str]:
        with self._lock:
            return self._branches.get((project_id, user_id))

    def clear(self, project_id: str, user_id: str) -> Optional[str]:
        """Forget the session. Returns the branch it pointed at, if any."""
        with self._lock:
            branch = self._branches.pop((project_id, user_id), None)
        if branch:
            logger.info(f"Project {project_id}: user {user_id} released branch {branch}")
        return branch

    def items(self) -> List[Tuple[Tuple[str, str], str]]:
        """Snapshot of every ((project_id, user_id), branch) pair."""
        with self._lock:
            return list(self._branches.items())


# Global instance
editing_sessions = EditingSessionRegistry()
