"""MetricSync — Google Service Account Token Exchange.

Builds an RS256-signed JWT assertion for the service account and trades it
at the OAuth token endpoint (jwt-bearer grant) for a short-lived,
read-only Sheets access token.
"""

import time
from typing import Any, Dict, Optional, Tuple

import httpx
from google.auth import crypt, jwt
from sqlmodel import Session, select

from metricsync.config import settings
from metricsync.core.errors import ConfigurationError
from metricsync.core.logging import get_logger
from metricsync.models.metric_models import ServiceSecret

logger = get_logger("sheets.credentials")

JWT_BEARER_GRANT = "urn:ietf:params:oauth:grant-type:jwt-bearer"
ASSERTION_LIFETIME = 3600  # seconds
EMAIL_SECRET = "GOOGLE_SERVICE_ACCOUNT_EMAIL"
KEY_SECRET = "GOOGLE_PRIVATE_KEY"


def load_service_account(session: Optional[Session] = None) -> Tuple[str, str]:
    """Return (client_email, private_key_pem).

    Environment settings win; otherwise both values are read from the
    secrets table. Escaped newlines from .env files are restored.
    """
    email = settings.google_service_account_email or ""
    private_key = settings.google_private_key or ""

    if (not email or not private_key) and session is not None:
        rows = session.exec(
            select(ServiceSecret).where(
                ServiceSecret.key.in_([EMAIL_SECRET, KEY_SECRET])  # type: ignore
            )
        ).all()
        secrets = {row.key: row.value for row in rows}
        email = email or secrets.get(EMAIL_SECRET, "")
        private_key = private_key or secrets.get(KEY_SECRET, "")

    if not email or not private_key:
        raise ConfigurationError("Google service account credentials not found")

    return email.strip(), private_key.replace("\\n", "\n")


class ServiceAccountTokenProvider:
    """Produces bearer tokens for the Sheets API."""

    def __init__(
        self,
        client_email: str,
        private_key: str,
        token_uri: str | None = None,
        scope: str | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.client_email = client_email
        self.private_key = private_key
        self.token_uri = token_uri or settings.google_token_uri
        self.scope = scope or settings.google_sheets_scope
        self._transport = transport

    @classmethod
    def from_settings(
        cls,
        session: Optional[Session] = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> "ServiceAccountTokenProvider":
        email, key = load_service_account(session)
        return cls(email, key, transport=transport)

    def build_claims(self, now: int | None = None) -> Dict[str, Any]:
        issued_at = int(now if now is not None else time.time())
        return {
            "iss": self.client_email,
            "scope": self.scope,
            "aud": self.token_uri,
            "iat": issued_at,
            "exp": issued_at + ASSERTION_LIFETIME,
        }

    def build_assertion(self, now: int | None = None) -> str:
        """Sign the claim set with the service account's RSA key."""
        try:
            signer = crypt.RSASigner.from_string(self.private_key)
        except (ValueError, TypeError) as e:
            raise ConfigurationError(f"Invalid service account private key: {e}") from e
        token = jwt.encode(signer, self.build_claims(now))
        return token.decode("utf-8") if isinstance(token, bytes) else token

    async def get_access_token(self) -> str:
        """Exchange a fresh assertion for an access token."""
        assertion = self.build_assertion()
        async with httpx.AsyncClient(
            timeout=settings.http_timeout, transport=self._transport
        ) as client:
            try:
                resp = await client.post(
                    self.token_uri,
                    data={"grant_type": JWT_BEARER_GRANT, "assertion": assertion},
                )
            except httpx.RequestError as e:
                raise ConfigurationError(f"Token endpoint unreachable: {e}") from e

        if resp.status_code >= 400:
            logger.error(
                f"Token exchange rejected for {self.client_email}",
                extra={"status_code": resp.status_code},
            )
            raise ConfigurationError(
                f"Failed to get access token: {resp.status_code} {resp.reason_phrase}"
            )

        access_token = resp.json().get("access_token")
        if not access_token:
            raise ConfigurationError("Token endpoint response had no access_token")

        logger.info(f"Obtained Sheets access token for {self.client_email}")
        return access_token
