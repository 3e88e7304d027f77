"""Utility functions for verifying bearer tokens with the hosted Supabase Auth service."""
import os
import logging
from dataclasses import dataclass
from typing import Optional

import httpx
from dotenv import load_dotenv

from models.expense import AuthenticatedUser
from services.errors import AuthenticationError, ConfigurationError

logger = logging.getLogger(__name__)

load_dotenv()

AUTH_TIMEOUT_SECONDS = float(os.getenv("AUTH_TIMEOUT_SECONDS", "5.0"))


@dataclass(frozen=True)
class IdentitySettings:
    base_url: str
    api_key: str


def get_identity_settings() -> IdentitySettings:
    """
    Reads the identity service location and key from the environment.
    SUPABASE_* wins over the VITE_SUPABASE_* names used by the web client build.
    """
    base_url = os.getenv("SUPABASE_URL") or os.getenv("VITE_SUPABASE_URL")
    api_key = os.getenv("SUPABASE_ANON_KEY") or os.getenv("VITE_SUPABASE_ANON_KEY")
    if not base_url or not api_key:
        logger.error("SUPABASE_URL / SUPABASE_ANON_KEY not set. Token verification is unavailable.")
        raise ConfigurationError("Identity service credentials are not configured.")
    return IdentitySettings(base_url=base_url.rstrip("/"), api_key=api_key)


def extract_bearer_token(authorization: Optional[str]) -> str:
    """Returns the token from an `Authorization: Bearer <token>` header value."""
    if not authorization:
        raise AuthenticationError("No authorization header")
    scheme, _, token = authorization.strip().partition(" ")
    token = token.strip()
    if scheme.lower() != "bearer" or not token:
        raise AuthenticationError("Authorization header is not a bearer token")
    return token


class SupabaseAuthClient:
    """Resolves a user identity from an access token via GET /auth/v1/user."""

    def __init__(self, settings: IdentitySettings, http_client: httpx.AsyncClient):
        self.settings = settings
        self.http_client = http_client

    async def get_user(self, token: str) -> AuthenticatedUser:
        url = f"{self.settings.base_url}/auth/v1/user"
        headers = {"apikey": self.settings.api_key, "Authorization": f"Bearer {token}"}
        try:
            response = await self.http_client.get(url, headers=headers, timeout=AUTH_TIMEOUT_SECONDS)
        except httpx.HTTPError as e:
            logger.error(f"Identity service request failed: {e}")
            raise AuthenticationError("Identity service unreachable") from e

        if response.status_code != 200:
            logger.warning(f"Identity service rejected token (status {response.status_code}).")
            raise AuthenticationError("Token rejected by identity service")

        try:
            payload = response.json()
        except ValueError as e:
            logger.error("Identity service returned a non-JSON body.")
            raise AuthenticationError("Malformed identity response") from e

        if not isinstance(payload, dict) or not payload.get("id"):
            logger.warning("Identity service response carries no user id.")
            raise AuthenticationError("Identity response without user")
        return AuthenticatedUser(id=str(payload["id"]), email=payload.get("email"))
