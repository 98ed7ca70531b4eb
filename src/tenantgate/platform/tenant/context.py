"""
Request-lifetime tenant scope.

A TenantScope is created by the authorization pipeline once the tenant has
been resolved, handed to every data-access call made for the request, and
released when the request finishes. It is an ordinary object passed by
reference: there is no module-level, thread-local or context-variable copy of
the current tenant anywhere in the package.

On PostgreSQL the scope also sets a transaction-local setting that row-level
security policies read::

    SELECT set_config('app.current_tenant_id', :tenant_id, true)

SQLite has no equivalent, so the explicit query helpers below are the filter
that applies on every backend.
"""

from typing import Any, TypeVar

import structlog
from sqlalchemy import Select, func, select, text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from tenantgate.platform.db import is_postgresql
from tenantgate.platform.settings import get_settings

logger = structlog.get_logger(__name__)

ModelT = TypeVar("ModelT")


class TenantScopeError(RuntimeError):
    """Raised when a scope is used outside its lifetime or with a foreign row."""


class TenantScope:
    """Tenant filter bound to one request's database session."""

    def __init__(self, db_session: AsyncSession, tenant_id: str) -> None:
        if not tenant_id:
            raise TenantScopeError("Tenant scope requires a tenant id")
        self.db = db_session
        self.tenant_id = tenant_id
        self._active = False
        self._guc_applied = False

    @property
    def active(self) -> bool:
        return self._active

    async def acquire(self) -> "TenantScope":
        """Open the scope for this request."""
        if self._active:
            return self
        if is_postgresql(self.db):
            guc = get_settings().database.tenant_guc_name
            await self.db.execute(
                text("SELECT set_config(:name, :tenant_id, true)"),
                {"name": guc, "tenant_id": self.tenant_id},
            )
            self._guc_applied = True
        self._active = True
        logger.debug("tenant_scope.acquired", tenant_id=self.tenant_id)
        return self

    async def release(self) -> None:
        """Close the scope. Safe to call more than once."""
        if not self._active:
            return
        self._active = False
        if self._guc_applied:
            self._guc_applied = False
            guc = get_settings().database.tenant_guc_name
            try:
                await self.db.execute(
                    text("SELECT set_config(:name, '', true)"), {"name": guc}
                )
            except SQLAlchemyError as exc:
                # set_config(..., true) dies with the transaction anyway
                logger.warning(
                    "tenant_scope.reset_failed", tenant_id=self.tenant_id, error=str(exc)
                )
        logger.debug("tenant_scope.released", tenant_id=self.tenant_id)

    async def __aenter__(self) -> "TenantScope":
        return await self.acquire()

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.release()

    # ------------------------------------------------------------------
    # Query helpers
    # ------------------------------------------------------------------

    def _ensure_active(self) -> None:
        if not self._active:
            raise TenantScopeError("Tenant scope used outside of its request")

    def select(self, model: type[ModelT]) -> Select[tuple[ModelT]]:
        """SELECT rows of a tenant-owned model restricted to this tenant."""
        self._ensure_active()
        return select(model).where(model.tenant_id == self.tenant_id)  # type: ignore[attr-defined]

    def restrict(self, stmt: Select[Any], model: type[Any]) -> Select[Any]:
        """Add the tenant predicate to an existing statement."""
        self._ensure_active()
        return stmt.where(model.tenant_id == self.tenant_id)

    async def count(self, model: type[Any], *criteria: Any) -> int:
        """Count this tenant's rows of a model."""
        self._ensure_active()
        stmt = select(func.count()).select_from(model).where(model.tenant_id == self.tenant_id)
        for criterion in criteria:
            stmt = stmt.where(criterion)
        result = await self.db.execute(stmt)
        return int(result.scalar_one())

    def add(self, instance: ModelT) -> ModelT:
        """Stamp a new row with this tenant and add it to the session."""
        self._ensure_active()
        existing = getattr(instance, "tenant_id", None)
        if existing is not None and existing != self.tenant_id:
            raise TenantScopeError("Row belongs to a different tenant")
        instance.tenant_id = self.tenant_id  # type: ignore[attr-defined]
        self.db.add(instance)
        return instance

    def __repr__(self) -> str:
        return f"<TenantScope(tenant_id={self.tenant_id}, active={self._active})>"
