"""MetricSync — Platform Auth & Permission Client.

Talks to the platform's REST surface (Supabase-compatible):
  GET  /auth/v1/user               bearer credential → identity
  POST /rest/v1/rpc/has_permission (user, capability) → bool
"""

from typing import Optional

import httpx
from pydantic import BaseModel

from metricsync.config import settings
from metricsync.core.errors import AuthError
from metricsync.core.logging import get_logger

logger = get_logger("platform.client")


class PermissionServiceError(Exception):
    """Raised when the permission RPC itself fails (not a denial)."""

    def __init__(self, message: str, status_code: int = 0):
        self.status_code = status_code
        super().__init__(message)


class Identity(BaseModel):
    """The authenticated caller."""

    id: str
    email: str = ""
    token: str = ""


class PlatformClient:
    """Async HTTP client for the auth verifier and permission RPC."""

    def __init__(
        self,
        base_url: str | None = None,
        api_key: str | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.base_url = (base_url or settings.platform_url).rstrip("/")
        self.api_key = api_key if api_key is not None else settings.platform_anon_key
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                timeout=settings.http_timeout, transport=self._transport
            )
        return self._client

    async def close(self) -> None:
        if self._client and not self._client.is_closed:
            await self._client.aclose()

    def _headers(self, token: str) -> dict:
        return {"apikey": self.api_key, "Authorization": f"Bearer {token}"}

    # ── Authentication ──

    async def get_user(self, token: str) -> Identity:
        """Verify a bearer credential. Raises AuthError when it is not valid."""
        if not token:
            raise AuthError("Missing or invalid Authorization header")

        client = await self._get_client()
        try:
            resp = await client.get(
                f"{self.base_url}/auth/v1/user", headers=self._headers(token)
            )
        except httpx.RequestError as e:
            logger.error(f"Auth verifier unreachable: {e}")
            raise AuthError("Could not verify credential") from e

        if resp.status_code != 200:
            logger.warning(
                "Credential rejected by auth verifier",
                extra={"status_code": resp.status_code},
            )
            raise AuthError("Invalid JWT token")

        try:
            body = resp.json() or {}
        except ValueError as e:
            raise AuthError("Invalid JWT token") from e
        user_id = body.get("id")
        if not user_id:
            raise AuthError("Invalid JWT token")

        return Identity(id=user_id, email=body.get("email") or "", token=token)

    # ── Authorization ──

    async def has_permission(self, identity: Identity, capability: str) -> bool:
        """Ask the permission RPC whether the caller holds a capability."""
        client = await self._get_client()
        try:
            resp = await client.post(
                f"{self.base_url}/rest/v1/rpc/has_permission",
                json={"p_user_id": identity.id, "p_permission": capability},
                headers=self._headers(identity.token),
            )
        except httpx.RequestError as e:
            raise PermissionServiceError(f"Permission service unreachable: {e}") from e

        if resp.status_code >= 400:
            raise PermissionServiceError(
                f"Permission check failed: {resp.status_code} {resp.reason_phrase}",
                resp.status_code,
            )

        try:
            return resp.json() is True
        except ValueError as e:
            raise PermissionServiceError(f"Malformed permission response: {e}") from e
