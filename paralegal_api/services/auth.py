"""
Bearer token validation against the Supabase identity provider
"""
from typing import Optional

import httpx
import structlog
from pydantic import BaseModel

from paralegal_api.services.config import Settings

logger = structlog.get_logger()


class AuthenticationError(Exception):
    """Token missing, invalid or not attached to a user"""


class AuthenticatedUser(BaseModel):
    id: str
    email: Optional[str] = None


class IdentityService:
    """Resolves access tokens to users"""

    def __init__(self, settings: Settings, http_client: Optional[httpx.AsyncClient] = None):
        self.settings = settings
        self.http_client = http_client or httpx.AsyncClient(timeout=10.0)

    async def authenticate(self, authorization: Optional[str]) -> AuthenticatedUser:
        """
        Validate an Authorization header value.

        Raises:
            AuthenticationError: no bearer token, or the provider rejected it
        """
        token = (authorization or "").replace("Bearer ", "", 1).strip()
        if not token:
            raise AuthenticationError("Missing authorization token")

        try:
            response = await self.http_client.get(
                f"{self.settings.SUPABASE_URL.rstrip('/')}/auth/v1/user",
                headers={
                    "apikey": self.settings.SUPABASE_SERVICE_ROLE_KEY or "",
                    "Authorization": f"Bearer {token}",
                },
                timeout=self.settings.REQUEST_TIMEOUT
            )
        except httpx.HTTPError as e:
            logger.error("Identity provider request failed", error=str(e))
            raise AuthenticationError("Unable to validate token") from e

        if response.status_code != 200:
            logger.warning("Token rejected", status=response.status_code)
            raise AuthenticationError("Invalid or expired token")

        data = response.json()
        if not data.get("id"):
            raise AuthenticationError("User not found for token")
        return AuthenticatedUser(id=data["id"], email=data.get("email"))
