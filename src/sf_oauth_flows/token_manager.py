# sf_oauth_flows/token_manager.py
"""In-memory token bookkeeping."""

import logging
from typing import Dict, List, Optional

from .models import TokenResult

logger = logging.getLogger(__name__)


class TokenManager:
    """Keeps the latest token result per session. Nothing is written to disk."""

    def __init__(self):
        self._tokens: Dict[str, TokenResult] = {}

    def save_tokens(self, session_name: str, tokens: TokenResult) -> None:
        """
        Store tokens for a session.

        A response without a refresh token (e.g. from the refresh grant itself)
        keeps the previously stored refresh token.

        Args:
            session_name: Session the tokens belong to
            tokens: Token result of a successful exchange
        """
        previous = self._tokens.get(session_name)
        if previous and previous.refresh_token and not tokens.refresh_token:
            tokens = tokens.model_copy(
                update={"refresh_token": previous.refresh_token}
            )
        elif tokens.refresh_token:
            logger.info(f"Storing new refresh token for {session_name}")
        self._tokens[session_name] = tokens

    def load_tokens(self, session_name: str) -> Optional[TokenResult]:
        return self._tokens.get(session_name)

    def get_refresh_token(self, session_name: str) -> Optional[str]:
        tokens = self._tokens.get(session_name)
        return tokens.refresh_token if tokens else None

    def delete_tokens(self, session_name: str) -> bool:
        """
        Forget tokens for a session.

        Returns:
            True if tokens were deleted, False if there were none
        """
        return self._tokens.pop(session_name, None) is not None

    def has_tokens(self, session_name: str) -> bool:
        tokens = self._tokens.get(session_name)
        return bool(tokens and tokens.access_token)

    def session_names(self) -> List[str]:
        return sorted(self._tokens)
