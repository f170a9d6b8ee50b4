#!/usr/bin/env python
"""Nest Finance data core entry point.

Starts a headless Qt application with the qasync event loop, signs in a
demo user against the configured backend and logs a dashboard summary once
the store has loaded.
"""

import asyncio
import logging
import sys

import qasync
from PySide6.QtCore import QCoreApplication

from nestfin.app import ApplicationContext
from nestfin.data.repository import AuthError
from nestfin.services.periods import label_for

logger = logging.getLogger("nestfin.main")

DEMO_EMAIL = "demo@nest.finance"
DEMO_PASSWORD = "nest-demo"


def log_summary(ctx: ApplicationContext) -> None:
    """Log the headline dashboard figures for the current parameters."""
    views = ctx.views
    date_range = ctx.state.date_range.value
    account = ctx.state.account_filter.value

    totals = views.totals(date_range, account)
    logger.info(f"Period: {label_for(date_range)}")
    logger.info(f"Income {totals.income}, expenses {totals.expenses}, net {totals.net}")
    logger.info(f"Safe to spend: {views.safe_to_spend(date_range)}")
    logger.info(f"Net worth: {views.net_worth().net_worth}")
    logger.info(f"Budget progress: {views.budget_progress(date_range)}%")
    for entry in views.category_breakdown(date_range, account, limit=5):
        logger.info(f"  {entry.label}: {entry.amount} ({entry.percentage}%)")


async def sign_in_demo(ctx: ApplicationContext) -> None:
    """Sign in the demo user, registering it on first use."""
    if await ctx.auth.login(DEMO_EMAIL, DEMO_PASSWORD):
        return
    if not await ctx.auth.register(DEMO_EMAIL, DEMO_PASSWORD, "Demo"):
        raise AuthError(ctx.auth.error.value or "Could not sign in demo user")
    await ctx.store.update_user_profile(
        {"recurringIncome": "2000", "recurringExpenses": "1200"}
    )
    await ctx.store.add_transaction(
        {"type": "income", "description": "Freelance", "amount": "300", "category": "Work"}
    )
    await ctx.store.add_transaction(
        {"type": "expense", "description": "Groceries", "amount": "100", "category": "Food"}
    )
    await ctx.store.upsert_budget({"category": "Food", "limit": "400"})
    await ctx.store.upsert_account({"name": "Checking", "balance": "5000", "type": "asset"})


async def main(app: QCoreApplication) -> None:
    ctx = ApplicationContext()
    await ctx.initialize()

    ready = asyncio.Event()
    ctx.store.became_ready.connect(ready.set)
    try:
        await sign_in_demo(ctx)
        await asyncio.wait_for(ready.wait(), timeout=10)
        # Let the demo writes arrive through the subscriptions
        await asyncio.sleep(0.2)
        log_summary(ctx)
    finally:
        await ctx.close()
        app.quit()


def run() -> None:
    """Run the data core with the qasync event loop."""
    app = QCoreApplication(sys.argv)
    app.setApplicationName("Nest Finance")
    app.setOrganizationName("Nest Finance")

    loop = qasync.QEventLoop(app)
    asyncio.set_event_loop(loop)

    with loop:
        try:
            loop.run_until_complete(main(app))
        except KeyboardInterrupt:
            print("\nShutting down...")


if __name__ == "__main__":
    run()
