"""Supabase JWT validation dependency for FastAPI."""

import logging
from typing import Dict, Optional

from fastapi import Header, Request

from aitools.config import Settings
from aitools.db.supabase_client import create_anon_client
from aitools.errors import AuthorizationError, ConfigurationError

logger = logging.getLogger(__name__)


def bearer_token(authorization: Optional[str]) -> str:
    if not authorization or not authorization.startswith("Bearer "):
        raise AuthorizationError("Missing or invalid token")
    return authorization[len("Bearer "):].strip()


class SupabaseTokenVerifier:
    """Resolves a Supabase access token to the user id it was issued for."""

    def __init__(self, settings: Settings):
        self._settings = settings

    def user_id(self, token: str) -> str:
        try:
            client = create_anon_client(self._settings)
            user_response = client.auth.get_user(token)
        except ConfigurationError:
            raise
        except Exception as exc:
            logger.info("Token rejected: %s", exc)
            raise AuthorizationError("Invalid token") from exc
        user = getattr(user_response, "user", None)
        if user is None:
            raise AuthorizationError("Invalid token")
        return user.id


class StaticTokenVerifier:
    """Fixed token -> user id table for the in-memory backend."""

    def __init__(self, tokens: Optional[Dict[str, str]] = None):
        self.tokens = dict(tokens or {})

    def user_id(self, token: str) -> str:
        user_id = self.tokens.get(token)
        if user_id is None:
            raise AuthorizationError("Invalid token")
        return user_id


async def get_current_user(request: Request, authorization: str = Header(None)) -> str:
    """Validate the Authorization header and return the caller's user id."""
    token = bearer_token(authorization)
    return request.app.state.token_verifier.user_id(token)


async def verify_cron(request: Request, authorization: str = Header(None)) -> None:
    """Scheduled endpoints: require an Authorization header, and the cron secret when one is set."""
    if not authorization:
        raise AuthorizationError("Unauthorized")
    secret = request.app.state.settings.cron_secret
    if secret and bearer_token(authorization) != secret:
        raise AuthorizationError("Unauthorized")
