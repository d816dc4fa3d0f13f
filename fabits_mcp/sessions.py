"""Per-user token managers and API clients.

In stdio mode the server acts for a single user whose credentials live in
TOKEN_FILE. In multi-user HTTP mode each tool call names its user and gets a
TokenManager of its own, backed by that user's credential file.
"""
import logging
import re
from collections import OrderedDict
from contextlib import asynccontextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import AsyncIterator, Optional, Union

from .api_client import FabitsAPIClient
from .config import FABITS_BASE_URL, MAX_SESSIONS, MULTI_USER, TOKEN_FILE, TOKENS_DIR
from .credential_store import CredentialStore
from .token_manager import TokenManager

logger = logging.getLogger(__name__)

_UNSAFE_CHARS = re.compile(r"[^a-z0-9+]", re.IGNORECASE)


def credential_path_for(user_id: str, tokens_dir: Union[str, Path] = TOKENS_DIR) -> Path:
    """Credential file of one user; the id is sanitized for use as a file name."""
    return Path(tokens_dir) / f"auth_{_UNSAFE_CHARS.sub('_', user_id)}.json"


@dataclass
class UserSession:
    """The token manager and API client acting for one user."""
    user_id: Optional[str]
    token_manager: TokenManager
    api_client: FabitsAPIClient
    # Tool calls currently using this session
    active: int = 0

    async def close(self) -> None:
        await self.api_client.close()
        await self.token_manager.close()


class SessionRegistry:
    """Hands out one UserSession per user and closes them on shutdown.

    Sessions are kept in least-recently-used order. When more than
    ``max_sessions`` are held, the oldest idle ones are closed and dropped;
    their credentials stay on disk, so the next call for that user simply
    builds a fresh session. A session in use by a tool call is never evicted.
    """

    def __init__(
        self,
        *,
        multi_user: bool = MULTI_USER,
        token_file: Union[str, Path] = TOKEN_FILE,
        tokens_dir: Union[str, Path] = TOKENS_DIR,
        base_url: str = FABITS_BASE_URL,
        max_sessions: int = MAX_SESSIONS,
    ):
        if max_sessions < 1:
            raise ValueError("max_sessions must be at least 1")
        self.multi_user = multi_user
        self.token_file = Path(token_file)
        self.tokens_dir = Path(tokens_dir)
        self.base_url = base_url
        self.max_sessions = max_sessions
        self._sessions: "OrderedDict[Optional[str], UserSession]" = OrderedDict()

    def get(self, user_id: Optional[str] = None) -> UserSession:
        """Return the session for ``user_id`` (ignored in single-user mode).

        Raises:
            ValueError: If multi-user mode is on and no user_id was given
        """
        if self.multi_user:
            if not user_id:
                raise ValueError(
                    "Missing required argument: user_id. "
                    "Please provide the user identifier (phone number)."
                )
            key: Optional[str] = user_id
            path = credential_path_for(user_id, self.tokens_dir)
        else:
            key = None
            path = self.token_file

        session = self._sessions.get(key)
        if session is None:
            token_manager = TokenManager(CredentialStore(path), base_url=self.base_url)
            api_client = FabitsAPIClient(token_manager, base_url=self.base_url)
            session = UserSession(user_id=key, token_manager=token_manager, api_client=api_client)
            self._sessions[key] = session
            logger.info(f"[Sessions] Created session for {key or 'default user'} ({path})")
        else:
            self._sessions.move_to_end(key)
        return session

    @asynccontextmanager
    async def session(self, user_id: Optional[str] = None) -> AsyncIterator[UserSession]:
        """Lease the session for ``user_id`` for the duration of one tool call."""
        session = self.get(user_id)
        session.active += 1
        try:
            yield session
        finally:
            session.active -= 1
            if self._sessions.get(session.user_id) is session:
                self._sessions.move_to_end(session.user_id)
            await self._evict_idle()

    async def _evict_idle(self) -> None:
        excess = len(self._sessions) - self.max_sessions
        if excess <= 0:
            return
        idle = [key for key, s in self._sessions.items() if s.active == 0][:excess]
        for key in idle:
            session = self._sessions.pop(key)
            await session.close()
            logger.info(f"[Sessions] Evicted idle session for {key or 'default user'}")

    @property
    def session_count(self) -> int:
        return len(self._sessions)

    async def close(self) -> None:
        """Close every HTTP client."""
        for session in self._sessions.values():
            await session.close()
        self._sessions.clear()
