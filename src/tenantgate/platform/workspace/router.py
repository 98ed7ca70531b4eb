"""
Tenant workspace routes.

Every route declares what it needs as a ``RouteRequirement``; the
authorization pipeline enforces it before the handler runs and every query
goes through the request's tenant scope.
"""

from datetime import date
from decimal import Decimal
from typing import Any

import structlog
from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy.ext.asyncio import AsyncSession

from tenantgate.platform.auth.dependencies import require
from tenantgate.platform.auth.pipeline import RequestContext, RouteRequirement
from tenantgate.platform.billing.enums import Feature, InvoiceStatus, UsageResource
from tenantgate.platform.billing.ledger import SubscriptionLedger
from tenantgate.platform.db import get_async_session
from tenantgate.platform.tenant.context import TenantScope
from tenantgate.platform.usage.service import UsageAccountant
from tenantgate.platform.workspace.models import Beneficiary, Project

logger = structlog.get_logger(__name__)

router = APIRouter(tags=["Workspace"])

CREATE_PROJECT = RouteRequirement.parse("projects:create", usage_resource=UsageResource.PROJECTS)
READ_PROJECTS = RouteRequirement.parse("projects:read")
CREATE_BENEFICIARY = RouteRequirement.parse(
    "beneficiaries:create", usage_resource=UsageResource.BENEFICIARIES
)
READ_FINANCE = RouteRequirement.parse("finance:read", feature=Feature.FINANCE)
READ_USAGE = RouteRequirement.parse("reports:read")


# ========================================
# Schemas
# ========================================


class ProjectCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    description: str | None = None
    start_date: date | None = None
    end_date: date | None = None


class ProjectResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    tenant_id: str
    name: str
    description: str | None = None
    start_date: date | None = None
    end_date: date | None = None


class BeneficiaryCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    project_id: str | None = None
    contact: str | None = None


class BeneficiaryResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    tenant_id: str
    name: str
    project_id: str | None = None
    contact: str | None = None


def _scope_of(ctx: RequestContext) -> TenantScope:
    # Platform admins without a tenant have nothing to scope workspace data to
    if ctx.scope is None:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="A tenant is required for this operation",
        )
    return ctx.scope


# ========================================
# Routes
# ========================================


@router.post("/projects", response_model=ProjectResponse, status_code=status.HTTP_201_CREATED)
async def create_project(
    payload: ProjectCreate,
    ctx: RequestContext = Depends(require(CREATE_PROJECT)),
    db: AsyncSession = Depends(get_async_session),
) -> Project:
    scope = _scope_of(ctx)
    project = scope.add(Project(**payload.model_dump()))
    await db.commit()
    await db.refresh(project)
    logger.info("project.created", tenant_id=scope.tenant_id, project_id=project.id)
    return project


@router.get("/projects", response_model=list[ProjectResponse])
async def list_projects(
    ctx: RequestContext = Depends(require(READ_PROJECTS)),
    db: AsyncSession = Depends(get_async_session),
) -> list[Project]:
    scope = _scope_of(ctx)
    result = await db.execute(
        scope.select(Project).where(Project.deleted_at.is_(None)).order_by(Project.created_at)
    )
    return list(result.scalars().all())


@router.post(
    "/beneficiaries", response_model=BeneficiaryResponse, status_code=status.HTTP_201_CREATED
)
async def create_beneficiary(
    payload: BeneficiaryCreate,
    ctx: RequestContext = Depends(require(CREATE_BENEFICIARY)),
    db: AsyncSession = Depends(get_async_session),
) -> Beneficiary:
    scope = _scope_of(ctx)
    beneficiary = scope.add(Beneficiary(**payload.model_dump()))
    await db.commit()
    await db.refresh(beneficiary)
    logger.info("beneficiary.created", tenant_id=scope.tenant_id, beneficiary_id=beneficiary.id)
    return beneficiary


@router.get("/finance/summary")
async def finance_summary(
    ctx: RequestContext = Depends(require(READ_FINANCE)),
    db: AsyncSession = Depends(get_async_session),
) -> dict[str, Any]:
    """Paid invoice totals for the tenant's current subscription."""
    scope = _scope_of(ctx)
    ledger = SubscriptionLedger(db)
    subscription = ctx.subscription or await ledger.get_current_subscription(scope.tenant_id)
    if subscription is None:
        return {"tenant_id": scope.tenant_id, "invoices": 0, "total_paid": "0.00"}

    invoices = await ledger.list_invoices(subscription.id)
    paid = [invoice for invoice in invoices if invoice.status == InvoiceStatus.PAID]
    total = sum((invoice.total for invoice in paid), Decimal("0"))
    return {
        "tenant_id": scope.tenant_id,
        "subscription_id": subscription.id,
        "invoices": len(paid),
        "total_paid": f"{total:.2f}",
        "latest_invoice": paid[-1].invoice_number if paid else None,
    }


@router.get("/usage")
async def usage_overview(
    ctx: RequestContext = Depends(require(READ_USAGE)),
    db: AsyncSession = Depends(get_async_session),
) -> dict[str, Any]:
    """Current usage against plan limits."""
    scope = _scope_of(ctx)
    accountant = UsageAccountant(db)
    check = await accountant.check_limits(scope.tenant_id)
    if check is None:
        usage = await accountant.usage_snapshot(scope.tenant_id)
        return {
            "tenant_id": scope.tenant_id,
            "subscription": None,
            "usage": {k.value: v for k, v in usage.items()},
        }
    return check.to_dict()
