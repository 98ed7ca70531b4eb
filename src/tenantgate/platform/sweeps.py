"""
Best-effort batch runner for the scheduled sweeps.

Each item runs in its own database session. A failing item is logged and
counted; it never aborts the rest of the batch.
"""

import asyncio
from collections.abc import Awaitable, Callable, Iterable
from dataclasses import dataclass, field
from typing import Any

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from tenantgate.platform.db import dispose_async_engine, get_async_db

logger = structlog.get_logger(__name__)


@dataclass
class SweepReport:
    """Summary of one sweep run."""

    processed: int = 0
    failed: int = 0
    flagged: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {"processed": self.processed, "failed": self.failed, "flagged": list(self.flagged)}


async def run_isolated(
    sweep: str,
    item_ids: Iterable[str],
    worker: Callable[[AsyncSession, str], Awaitable[bool]],
) -> SweepReport:
    """Run ``worker`` for every id, each in a fresh committed session.

    The worker returns True when the item should be reported as flagged.
    """
    report = SweepReport()
    for item_id in item_ids:
        try:
            async with get_async_db() as session:
                flagged = await worker(session, item_id)
        except Exception as exc:
            report.failed += 1
            logger.error(f"{sweep}.item_failed", item_id=item_id, error=str(exc), exc_info=True)
            continue

        report.processed += 1
        if flagged:
            report.flagged.append(item_id)

    logger.info(
        f"{sweep}.completed",
        processed=report.processed,
        failed=report.failed,
        flagged=len(report.flagged),
    )
    return report


def run_sweep(sweep: Callable[[], Awaitable[SweepReport]]) -> dict[str, Any]:
    """Run an async sweep from a synchronous Celery worker."""

    async def _run() -> SweepReport:
        try:
            return await sweep()
        finally:
            await dispose_async_engine()

    return asyncio.run(_run()).to_dict()
