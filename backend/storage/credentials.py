"""
Credential capabilities for talking to the storage platform.

Which token a request uses, how it is renewed, and where documents live in
the repository all depend on how the project's account was created. Each
account type gets its own provider; callers pick one with credentials_for().
"""

import logging
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional

import httpx
import jwt

from config import (
    GITHUB_API_URL,
    GITHUB_APP_CLIENT_ID,
    GITHUB_APP_CLIENT_SECRET,
    GITHUB_APP_ID,
    GITHUB_APP_PRIVATE_KEY,
    GITHUB_OAUTH_TOKEN_URL,
    REMOTE_TIMEOUT_SECONDS,
)
from .object_store import UnauthorizedException

logger = logging.getLogger(__name__)


@dataclass
class StoredTokens:
    """Decrypted token pair for one user."""
    access_token: str
    refresh_token: Optional[str] = None


class TokenStore(ABC):
    """Where per-user tokens are kept (the project database)."""

    @abstractmethod
    def get_tokens(self, user_id: str) -> Optional[StoredTokens]:
        pass

    @abstractmethod
    def save_tokens(self, user_id: str, tokens: StoredTokens) -> None:
        pass


class CredentialProvider(ABC):
    """Abstract base class for storage credentials."""

    @property
    @abstractmethod
    def account_type(self) -> str:
        """Account type tag (e.g., 'github', 'google')."""
        pass

    @property
    @abstractmethod
    def content_root(self) -> str:
        """Repository directory holding the folder tree and document files."""
        pass

    @property
    def can_refresh(self) -> bool:
        """Whether refresh_credential() can mint a new token."""
        return False

    @abstractmethod
    async def resolve_credential(self) -> str:
        """
        Return the bearer token to use for this request.

        Raises:
            UnauthorizedException: If no usable token is available
        """
        pass

    async def refresh_credential(self) -> str:
        """
        Mint a fresh token after the platform rejected the current one.

        Raises:
            UnauthorizedException: If the token cannot be renewed
        """
        raise UnauthorizedException(f"{self.account_type} credentials cannot be refreshed")


class GitHubUserCredentials(CredentialProvider):
    """The requesting user's own GitHub user-to-server token."""

    def __init__(self, user_id: str, token_store: TokenStore,
                 transport: Optional[httpx.AsyncBaseTransport] = None):
        self.user_id = user_id
        self.token_store = token_store
        self._transport = transport
        self._tokens: Optional[StoredTokens] = None

    @property
    def account_type(self) -> str:
        return "github"

    @property
    def content_root(self) -> str:
        return "simpledocs"

    @property
    def can_refresh(self) -> bool:
        tokens = self._load_tokens()
        return bool(tokens and tokens.refresh_token)

    def _load_tokens(self) -> Optional[StoredTokens]:
        if self._tokens is None:
            self._tokens = self.token_store.get_tokens(self.user_id)
        return self._tokens

    async def resolve_credential(self) -> str:
        tokens = self._load_tokens()
        if not tokens or not tokens.access_token:
            raise UnauthorizedException(f"No GitHub token stored for user {self.user_id}")
        return tokens.access_token

    async def refresh_credential(self) -> str:
        tokens = self._load_tokens()
        if not tokens or not tokens.refresh_token:
            raise UnauthorizedException(f"No refresh token stored for user {self.user_id}")

        async with httpx.AsyncClient(transport=self._transport, timeout=REMOTE_TIMEOUT_SECONDS) as client:
            response = await client.post(
                GITHUB_OAUTH_TOKEN_URL,
                data={
                    "client_id": GITHUB_APP_CLIENT_ID,
                    "client_secret": GITHUB_APP_CLIENT_SECRET,
                    "refresh_token": tokens.refresh_token,
                    "grant_type": "refresh_token",
                },
                headers={"Accept": "application/json"},
            )

        if response.status_code != 200:
            raise UnauthorizedException(f"Token refresh failed: {response.status_code}")

        data = response.json()
        # GitHub answers 200 with an "error" field for a bad refresh token
        if "access_token" not in data:
            raise UnauthorizedException(f"Token refresh failed: {data.get('error', 'no access token')}")

        self._tokens = StoredTokens(
            access_token=data["access_token"],
            refresh_token=data.get("refresh_token") or tokens.refresh_token,
        )
        self.token_store.save_tokens(self.user_id, self._tokens)
        logger.info(f"Refreshed GitHub token for user {self.user_id}")
        return self._tokens.access_token


class ProjectOwnerCredentials(GitHubUserCredentials):
    """
    Collaborators who signed in with Google have no GitHub identity; they
    act with the project owner's token.
    """

    def __init__(self, owner_user_id: str, token_store: TokenStore,
                 transport: Optional[httpx.AsyncBaseTransport] = None):
        super().__init__(owner_user_id, token_store, transport=transport)

    @property
    def account_type(self) -> str:
        return "google"

    @property
    def content_root(self) -> str:
        return "Documentthing"


class GitHubAppCredentials(CredentialProvider):
    """Installation access token minted from the GitHub App's private key."""

    # GitHub caps app JWT lifetime at ten minutes
    JWT_LIFETIME_SECONDS = 600

    def __init__(self, installation_id: str, app_id: str = GITHUB_APP_ID,
                 private_key: str = GITHUB_APP_PRIVATE_KEY,
                 transport: Optional[httpx.AsyncBaseTransport] = None):
        self.installation_id = installation_id
        self.app_id = app_id
        self.private_key = private_key
        self._transport = transport
        self._token: Optional[str] = None

    @property
    def account_type(self) -> str:
        return "app"

    @property
    def content_root(self) -> str:
        return "simpledocs"

    @property
    def can_refresh(self) -> bool:
        return True

    def create_app_jwt(self) -> str:
        """Sign the short-lived JWT that authenticates as the app itself."""
        if not self.private_key:
            raise UnauthorizedException("GITHUB_APP_PRIVATE_KEY is not configured")
        now = int(time.time())
        payload = {
            "iat": now,
            "exp": now + self.JWT_LIFETIME_SECONDS,
            "iss": self.app_id,
        }
        return jwt.encode(payload, self.private_key, algorithm="RS256")

    async def _mint_installation_token(self) -> str:
        url = f"{GITHUB_API_URL}/app/installations/{self.installation_id}/access_tokens"
        async with httpx.AsyncClient(transport=self._transport, timeout=REMOTE_TIMEOUT_SECONDS) as client:
            response = await client.post(
                url,
                headers={
                    "Authorization": f"Bearer {self.create_app_jwt()}",
                    "Accept": "application/vnd.github+json",
                },
            )
        if response.status_code != 201:
            raise UnauthorizedException(
                f"Installation token request failed with status {response.status_code}"
            )
        return response.json()["token"]

    async def resolve_credential(self) -> str:
        if self._token is None:
            self._token = await self._mint_installation_token()
        return self._token

    async def refresh_credential(self) -> str:
        self._token = await self._mint_installation_token()
        return self._token


def credentials_for(account_type: str, token_store: TokenStore, *,
                    user_id: Optional[str] = None,
                    owner_user_id: Optional[str] = None,
                    installation_id: Optional[str] = None) -> CredentialProvider:
    """
    Select the credential provider for a project's account type.

    Args:
        account_type: "github", "google" or "app"
        token_store: Where user tokens are kept
        user_id: Requesting user (github accounts)
        owner_user_id: Project owner (google accounts)
        installation_id: GitHub App installation (app accounts)

    Raises:
        ValueError: If the account type is unknown or its identifier is missing
    """
    if account_type == "google":
        if not owner_user_id:
            raise ValueError("google projects need the owner's user id")
        return ProjectOwnerCredentials(owner_user_id, token_store)
    if account_type == "app":
        if not installation_id:
            raise ValueError("app projects need an installation id")
        return GitHubAppCredentials(installation_id)
    if account_type in ("github", ""):
        if not user_id:
            raise ValueError("github projects need the requesting user's id")
        return GitHubUserCredentials(user_id, token_store)
    raise ValueError(f"Unknown account type '{account_type}'")
