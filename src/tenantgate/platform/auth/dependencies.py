"""
Authorization dependencies for FastAPI routes.

Each route declares a ``RouteRequirement`` and depends on ``require(...)``::

    @router.post("/projects")
    async def create_project(
        ctx: RequestContext = Depends(
            require(RouteRequirement.parse("projects:create", usage_resource=UsageResource.PROJECTS))
        ),
    ): ...

The tenant scope stays open for the handler and is released when the response
has been produced.
"""

from collections.abc import AsyncIterator, Callable
from typing import Any

from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from tenantgate.platform.auth.core import CredentialVerifier, JWTCredentialVerifier
from tenantgate.platform.auth.pipeline import (
    AuthorizationPipeline,
    RequestContext,
    RouteRequirement,
)
from tenantgate.platform.db import get_async_session

# Security scheme for bearer token; missing credentials reach the pipeline as None
security = HTTPBearer(auto_error=False)


def get_credential_verifier(
    db: AsyncSession = Depends(get_async_session),
) -> CredentialVerifier:
    """Verifier used by the pipeline. Override to plug in another identity source."""
    return JWTCredentialVerifier(db)


def require(requirement: RouteRequirement | None = None) -> Callable[..., Any]:
    """Dependency factory running the authorization pipeline for a route."""

    async def _authorized(
        credentials: HTTPAuthorizationCredentials | None = Depends(security),
        db: AsyncSession = Depends(get_async_session),
        verifier: CredentialVerifier = Depends(get_credential_verifier),
    ) -> AsyncIterator[RequestContext]:
        token = credentials.credentials if credentials else None
        pipeline = AuthorizationPipeline(db, verifier)
        async with pipeline.scoped(token, requirement) as context:
            yield context

    return _authorized


def require_permission(permission: str) -> Callable[..., Any]:
    """Shorthand for ``require(RouteRequirement.parse(permission))``."""
    return require(RouteRequirement.parse(permission))
