import logging
from typing import Optional

import httpx

from listen_together.config import Settings
from listen_together.models.room import UserIdentity

logger = logging.getLogger(__name__)


class IdentityError(Exception):
    pass


class AuthService:
    """Verifies OAuth2 access tokens against the identity provider's userinfo endpoint."""

    def __init__(self, settings: Settings, client: Optional[httpx.AsyncClient] = None):
        self.base_url = settings.OAUTH2_API_URL.rstrip("/")
        self.timeout = settings.HTTP_TIMEOUT
        self._client = client

    async def _post(self, url: str, data: dict) -> httpx.Response:
        if self._client is not None:
            return await self._client.post(url, data=data)
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            return await client.post(url, data=data)

    async def verify_token(self, token: Optional[str]) -> UserIdentity:
        if not token:
            raise IdentityError("Access token required")
        if not self.base_url:
            raise IdentityError("Identity provider is not configured")

        try:
            response = await self._post(f"{self.base_url}/userinfo", {"access_token": token})
            response.raise_for_status()
            info = response.json()
        except httpx.HTTPError as e:
            logger.error(f"Failed to get user info: {e}")
            raise IdentityError("Failed to get user information") from e
        except ValueError as e:
            raise IdentityError("Identity provider returned an invalid response") from e

        identity_id = info.get("sub") or info.get("mezon_id")
        if not identity_id:
            raise IdentityError("Identity provider returned no user id")

        return UserIdentity(
            identity_id=str(identity_id),
            username=info.get("username") or info.get("display_name"),
            avatar=info.get("avatar"),
        )
