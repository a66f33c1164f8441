# sf_oauth_flows/oauth_handler.py
"""Session registry for hosts that run several logins at once."""

import logging
import uuid
from typing import Dict, List, Optional

from .oauth_config import OAuthConfig
from .session import OAuthSession
from .token_manager import TokenManager
from .transport import HttpExecutor

logger = logging.getLogger(__name__)


class OAuthHandler:
    """Hands out OAuthSession objects keyed by session id."""

    def __init__(
        self,
        config: OAuthConfig,
        executor: Optional[HttpExecutor] = None,
        token_manager: Optional[TokenManager] = None,
    ):
        """
        Initialize OAuth handler.

        Args:
            config: Connected app configuration shared by all sessions
            executor: HTTP executor shared by all sessions
            token_manager: Token manager instance (creates default if not provided)
        """
        self.config = config
        self._owns_executor = executor is None
        self.executor = executor or HttpExecutor(timeout=config.timeout)
        self.token_manager = token_manager or TokenManager()
        self._sessions: Dict[str, OAuthSession] = {}

    async def __aenter__(self) -> "OAuthHandler":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        self._sessions.clear()
        if self._owns_executor:
            await self.executor.aclose()

    def new_session(self, session_id: Optional[str] = None) -> OAuthSession:
        """
        Create a session, replacing any existing session with the same id.

        Args:
            session_id: Key for the session (random if not provided)
        """
        session_id = session_id or uuid.uuid4().hex
        session = OAuthSession(
            self.config,
            executor=self.executor,
            token_manager=self.token_manager,
            name=session_id,
        )
        self._sessions[session_id] = session
        logger.debug(f"Created session {session_id}")
        return session

    def get_session(self, session_id: str) -> Optional[OAuthSession]:
        return self._sessions.get(session_id)

    def get_or_create_session(self, session_id: str) -> OAuthSession:
        return self._sessions.get(session_id) or self.new_session(session_id)

    def session_ids(self) -> List[str]:
        return list(self._sessions)

    def clear_session(self, session_id: str) -> bool:
        """
        Drop a session and forget its tokens.

        Returns:
            True if the session existed
        """
        session = self._sessions.pop(session_id, None)
        self.token_manager.delete_tokens(session_id)
        if session is not None and session.device_poller is not None:
            session.device_poller.cancel()
        return session is not None

    def get_authorization_header(self, session_id: str) -> Optional[str]:
        """
        Get Authorization header value for a session.

        Returns:
            Authorization header value or None if not authenticated
        """
        tokens = self.token_manager.load_tokens(session_id)
        if tokens is None or not tokens.access_token:
            return None
        return tokens.get_authorization_header()
