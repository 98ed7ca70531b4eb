"""
Invoice number allocation.

Numbers look like ``INV-202610-0001``: prefix, calendar year and month, then
the month's running sequence. The sequence lives in one ``invoice_sequences``
row per month. The charge transaction takes that row with
``SELECT ... FOR UPDATE`` so concurrent charges in the same month serialize on
it and the number is committed or rolled back together with the invoice that
uses it. The first charge of a month seeds the row from the invoices already
created in that month.

SQLite has no row locks; there the database-wide write lock serializes
writers instead, and the UNIQUE constraint on ``invoices.invoice_number``
backs both backends.
"""

from datetime import UTC, datetime

import structlog
from sqlalchemy import func, select
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from tenantgate.platform.billing.exceptions import InvoiceNumberingError
from tenantgate.platform.billing.models import Invoice, InvoiceSequence
from tenantgate.platform.settings import get_settings

logger = structlog.get_logger(__name__)


def period_for(moment: datetime) -> str:
    """``YYYYMM`` of a moment, in UTC."""
    if moment.tzinfo is not None:
        moment = moment.astimezone(UTC)
    return f"{moment.year:04d}{moment.month:02d}"


def month_bounds(period: str) -> tuple[datetime, datetime]:
    """Start of the period's month and start of the following month."""
    year, month = int(period[:4]), int(period[4:])
    start = datetime(year, month, 1, tzinfo=UTC)
    if month == 12:
        end = datetime(year + 1, 1, 1, tzinfo=UTC)
    else:
        end = datetime(year, month + 1, 1, tzinfo=UTC)
    return start, end


class InvoiceNumberAllocator:
    """Hands out sequential invoice numbers inside the caller's transaction."""

    def __init__(
        self,
        db_session: AsyncSession,
        prefix: str | None = None,
        width: int | None = None,
    ) -> None:
        billing = get_settings().billing
        self.db = db_session
        self.prefix = prefix or billing.invoice_prefix
        self.width = width or billing.invoice_sequence_width

    def format_number(self, period: str, value: int) -> str:
        return f"{self.prefix}-{period}-{value:0{self.width}d}"

    async def allocate(self, moment: datetime | None = None) -> str:
        """Consume the next number of the moment's month.

        Must run inside the transaction that inserts the invoice; nothing is
        committed here.
        """
        period = period_for(moment or datetime.now(UTC))
        try:
            sequence = await self._lock_sequence(period)
            if sequence is None:
                await self._seed_sequence(period)
                sequence = await self._lock_sequence(period)
            if sequence is None:
                raise InvoiceNumberingError("Invoice sequence row missing after seed", period)

            sequence.last_value += 1
            await self.db.flush()
        except SQLAlchemyError as exc:
            logger.error("invoice.number.allocation_failed", period=period, error=str(exc))
            raise

        number = self.format_number(period, sequence.last_value)
        logger.debug("invoice.number.allocated", period=period, invoice_number=number)
        return number

    async def _lock_sequence(self, period: str) -> InvoiceSequence | None:
        stmt = (
            select(InvoiceSequence)
            .where(InvoiceSequence.period == period)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        result = await self.db.execute(stmt)
        return result.scalar_one_or_none()

    async def _seed_sequence(self, period: str) -> None:
        """Create the month's counter row, starting after existing invoices."""
        start, end = month_bounds(period)
        existing = await self.db.execute(
            select(func.count())
            .select_from(Invoice)
            .where(Invoice.created_at >= start)
            .where(Invoice.created_at < end)
        )
        seed = int(existing.scalar_one())

        dialect = self.db.get_bind().dialect.name
        if dialect == "postgresql":
            insert = postgresql.insert
        elif dialect == "sqlite":
            insert = sqlite.insert
        else:
            raise InvoiceNumberingError(f"Unsupported database dialect: {dialect}", period)

        # Concurrent seeders race here; the loser's insert becomes a no-op
        stmt = (
            insert(InvoiceSequence)
            .values(period=period, last_value=seed)
            .on_conflict_do_nothing(index_elements=["period"])
        )
        await self.db.execute(stmt)
        logger.info("invoice.sequence.seeded", period=period, seed=seed)
