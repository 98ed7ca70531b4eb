#!/usr/bin/env python
"""
Seed reference data: subscription plans, permissions and system roles.
Run after migration: python scripts/seed_data.py
"""

import asyncio

from tenantgate.platform.db import dispose_async_engine, get_async_db
from tenantgate.platform.logging import setup_logging
from tenantgate.platform.seed import seed_reference_data


async def main() -> None:
    setup_logging()
    try:
        async with get_async_db() as session:
            summary = await seed_reference_data(session)
    finally:
        await dispose_async_engine()

    print(
        f"Plans created: {summary.plans_created}, permissions: {summary.permissions}, "
        f"roles: {summary.roles}, grants added: {summary.grants_added}"
    )


if __name__ == "__main__":
    asyncio.run(main())
