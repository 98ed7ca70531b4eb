"""
Credential verification.

The authorization pipeline depends only on the ``CredentialVerifier``
protocol. The shipped adapter verifies HS256 access tokens with Authlib and
joins the ``users`` row for tenant, role and activity. Token issuance lives
outside this service; ``create_access_token`` exists for tooling and tests.
"""

import secrets
from datetime import UTC, datetime, timedelta
from typing import Any, Protocol, cast

import structlog
from authlib.jose import JoseError, jwt
from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy.ext.asyncio import AsyncSession

from tenantgate.platform.auth.exceptions import AuthorizationDenied, DenyReason
from tenantgate.platform.auth.models import User
from tenantgate.platform.settings import get_settings

logger = structlog.get_logger(__name__)

ACCESS_TOKEN_TYPE = "access"


class IdentityClaim(BaseModel):
    """Identity resolved for one request.

    Not persisted. Platform admins carry no tenant and bypass tenant-scoped
    gates.
    """

    model_config = ConfigDict(frozen=True)

    subject_id: str
    tenant_id: str | None = None
    role_id: str | None = None
    is_platform_admin: bool = False
    is_active: bool = True
    permissions: frozenset[tuple[str, str]] = Field(default_factory=frozenset)


class CredentialVerifier(Protocol):
    """Turns a bearer credential into an identity or refuses it."""

    async def verify(self, token: str | None) -> IdentityClaim:
        """Raise AuthorizationDenied(UNAUTHENTICATED) for a missing or invalid token."""
        ...


class JWTCredentialVerifier:
    """Verifies access tokens with Authlib and loads the matching user."""

    def __init__(
        self,
        db_session: AsyncSession,
        secret: str | None = None,
        issuer: str | None = None,
    ) -> None:
        jwt_settings = get_settings().jwt
        self.db = db_session
        self.secret = secret or jwt_settings.secret_key
        self.issuer = issuer if issuer is not None else jwt_settings.issuer

    def decode(self, token: str) -> dict[str, Any]:
        """Check signature, expiry and token type; return the claims."""
        claims_options: dict[str, Any] = {"sub": {"essential": True}}
        if self.issuer:
            claims_options["iss"] = {"essential": True, "value": self.issuer}
        try:
            claims_raw = jwt.decode(token, self.secret, claims_options=claims_options)
            claims_raw.validate()
        except JoseError as exc:
            raise AuthorizationDenied(DenyReason.UNAUTHENTICATED, f"Invalid token: {exc}") from exc
        except ValueError as exc:
            # Authlib raises plain decode errors for tokens that are not JWTs at all
            raise AuthorizationDenied(DenyReason.UNAUTHENTICATED, "Malformed token") from exc

        claims = cast(dict[str, Any], dict(claims_raw))
        token_type = claims.get("type", ACCESS_TOKEN_TYPE)
        if token_type != ACCESS_TOKEN_TYPE:
            raise AuthorizationDenied(
                DenyReason.UNAUTHENTICATED, f"Expected access token, got {token_type}"
            )
        return claims

    async def verify(self, token: str | None) -> IdentityClaim:
        if not token:
            raise AuthorizationDenied(DenyReason.UNAUTHENTICATED, "Missing credential")

        claims = self.decode(token)
        subject = str(claims["sub"])

        user = await self.db.get(User, subject)
        if user is None or user.is_deleted:
            raise AuthorizationDenied(DenyReason.UNAUTHENTICATED, "Unknown subject")

        return IdentityClaim(
            subject_id=user.id,
            tenant_id=user.tenant_id,
            role_id=user.role_id,
            is_platform_admin=user.is_platform_admin,
            is_active=user.is_active,
        )


def create_access_token(
    subject: str,
    additional_claims: dict[str, Any] | None = None,
    expire_minutes: int = 15,
    secret: str | None = None,
) -> str:
    """Create an HS256 access token."""
    jwt_settings = get_settings().jwt
    now = datetime.now(UTC)
    payload: dict[str, Any] = {
        "sub": subject,
        "type": ACCESS_TOKEN_TYPE,
        "iat": now,
        "exp": now + timedelta(minutes=expire_minutes),
        "jti": secrets.token_urlsafe(16),
    }
    if jwt_settings.issuer:
        payload["iss"] = jwt_settings.issuer
    if additional_claims:
        payload.update(additional_claims)

    token = jwt.encode({"alg": jwt_settings.algorithm}, payload, secret or jwt_settings.secret_key)
    return token.decode("utf-8") if isinstance(token, bytes) else token
