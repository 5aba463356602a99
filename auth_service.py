"""Bearer credential check against the Supabase auth API."""
import logging
from typing import Optional, Protocol

import httpx

from errors import AuthenticationError

logger = logging.getLogger(__name__)


class Authenticator(Protocol):
    async def authenticate(self, authorization: str) -> str: ...


class SupabaseAuthenticator:
    """Resolves an Authorization header to the caller's user id via /auth/v1/user."""

    def __init__(self, supabase_url: str, api_key: str, timeout: float = 10.0,
                 transport: Optional[httpx.AsyncBaseTransport] = None):
        self.url = supabase_url.rstrip("/")
        self.api_key = api_key
        self.timeout = timeout
        self._transport = transport

    async def authenticate(self, authorization: str) -> str:
        """Return the subject id, or raise AuthenticationError."""
        try:
            async with httpx.AsyncClient(transport=self._transport, timeout=self.timeout) as client:
                r = await client.get(
                    f"{self.url}/auth/v1/user",
                    headers={"apikey": self.api_key, "Authorization": authorization},
                )
        except httpx.HTTPError as e:
            raise AuthenticationError(f"Auth service unreachable: {e}") from e

        if r.status_code != 200:
            raise AuthenticationError(f"Auth service rejected credential ({r.status_code})")
        try:
            body = r.json()
        except ValueError as e:
            raise AuthenticationError("Auth service returned invalid JSON") from e
        if not isinstance(body, dict):
            raise AuthenticationError("Auth service returned no user")
        # Some deployments wrap the user object
        user = body.get("user") if isinstance(body.get("user"), dict) else body
        user_id = user.get("id") if isinstance(user, dict) else None
        if not user_id:
            raise AuthenticationError("Auth service returned no user")
        return str(user_id)
