"""Execution coordinator — owns the mirror tree and drives the evaluation loop."""
from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, Awaitable, Callable

from ..config import AppConfig
from ..logging_setup import ACTIONS_LOGGER, UPDATES_LOGGER
from ..models import ExecutionPlan, ExecutionResult, PriceTable
from ..sync.mirrors import BorrowerMirror, MirrorContext, PositionPageMirror, PriceMirror
from .executor import LiquidationExecutor
from .planner import LiquidationPlanner

logger = logging.getLogger(__name__)
updates_log = logging.getLogger(UPDATES_LOGGER)
actions_log = logging.getLogger(ACTIONS_LOGGER)


class ExecutionCoordinator:
    """Watch prices and borrower pages, and liquidate unsafe borrowers.

    Startup: provision the mirrors, start the scheduler, block until every
    price mirror has data. Then every tick rebuilds the price table and asks a
    fresh planner about every borrower. A borrower never has two attempts in
    flight, and after each attempt finishes it cools down for a window,
    whatever the outcome.
    """

    def __init__(
        self,
        config: AppConfig,
        ctx: MirrorContext,
        executor: LiquidationExecutor,
        clock: Callable[[], float] = time.time,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self._config = config
        self._bot = config.bot
        self._ctx = ctx
        self._executor = executor
        self._clock = clock
        self._sleep = sleep

        self.price_mirrors: list[PriceMirror] = []
        self.page_mirrors: list[PositionPageMirror] = []
        self._executions: set[asyncio.Task[ExecutionResult | None]] = set()
        self._scheduler_task: asyncio.Task[None] | None = None
        self._running = False

    # ------------------------------------------------------------------
    # Startup
    # ------------------------------------------------------------------

    async def provision(self) -> None:
        """Create and initialize one price mirror per pool and one per page."""
        for pool in self._config.pools:
            mirror = PriceMirror(self._ctx, pool.pool_id, pool.mint)
            await mirror.initialize(self._ctx.addresses.price_address(pool.mint))
            self.price_mirrors.append(mirror)

        for page_id in range(self._bot.page_start, self._bot.page_end):
            page = PositionPageMirror(self._ctx, page_id)
            await page.initialize(self._ctx.addresses.users_page_address(page_id))
            self.page_mirrors.append(page)

        logger.info(
            "Provisioned %d price mirrors and pages [%d, %d)",
            len(self.price_mirrors),
            self._bot.page_start,
            self._bot.page_end,
        )

    async def wait_for_prices(self) -> None:
        """Block until every price mirror has produced a price."""
        while True:
            missing = [m for m in self.price_mirrors if m.payload is None]
            if not missing:
                break
            logger.info("Waiting for %d price accounts", len(missing))
            await self._sleep(self._bot.price_poll_seconds)
        actions_log.info("All prices loaded")

    # ------------------------------------------------------------------
    # Evaluation
    # ------------------------------------------------------------------

    def price_table(self) -> PriceTable:
        return {m.pool_id: m.payload for m in self.price_mirrors if m.payload is not None}

    async def step(self) -> list[asyncio.Task[ExecutionResult | None]]:
        """Evaluate every borrower once; returns the attempts launched."""
        updates_log.info("Stepping")
        prices = self.price_table()
        now = self._clock()
        launched: list[asyncio.Task[ExecutionResult | None]] = []

        for page in self.page_mirrors:
            for borrower in page.borrowers:
                if borrower.payload is None:
                    continue
                if borrower.attempt is not None and not borrower.attempt.done():
                    logger.debug("%s already has an attempt in flight", borrower.wallet)
                    continue
                planner = LiquidationPlanner(
                    self._config, borrower.payload, prices, borrower.wallet
                )
                if not planner.should_liquidate():
                    continue
                if (
                    borrower.last_fire_time is not None
                    and now - borrower.last_fire_time <= self._bot.cooldown_seconds
                ):
                    logger.debug("%s is cooling down", borrower.wallet)
                    continue

                plan = planner.build_execution_plan()
                if plan is None:
                    continue
                logger.info(
                    "%s is unsafe (health ratio %.4f)", borrower.wallet, planner.health_ratio()
                )
                task = asyncio.create_task(self._attempt(borrower, plan))
                borrower.attempt = task
                self._executions.add(task)
                task.add_done_callback(self._executions.discard)
                launched.append(task)

        return launched

    async def _attempt(
        self, borrower: BorrowerMirror, plan: ExecutionPlan
    ) -> ExecutionResult | None:
        try:
            return await self._executor.execute(plan)
        except Exception as e:
            actions_log.exception("Liquidation attempt for %s crashed: %s", plan.wallet, e)
            return None
        finally:
            borrower.last_fire_time = self._clock()

    async def wait_for_executions(self) -> None:
        """Wait for every in-flight liquidation attempt to finish."""
        if self._executions:
            await asyncio.gather(*list(self._executions))

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def run(self) -> None:
        """Start the scheduler, provision mirrors, then evaluate every tick."""
        self._scheduler_task = asyncio.create_task(self._ctx.scheduler.run())
        await self.provision()
        await self.wait_for_prices()

        self._running = True
        logger.info("Evaluating borrowers every %.1f seconds", self._bot.tick_seconds)
        while self._running:
            try:
                await self.step()
            except Exception as e:
                logger.exception("Error in evaluation loop: %s", e)
            await self._sleep(self._bot.tick_seconds)

    async def stop(self) -> None:
        """Tear down every mirror, stop the scheduler and close the ledger."""
        self._running = False
        mirrors = [*self.price_mirrors, *self.page_mirrors]
        results = await asyncio.gather(
            *(m.teardown() for m in mirrors if m.initialized), return_exceptions=True
        )
        for result in results:
            if isinstance(result, Exception):
                logger.warning("Mirror teardown failed: %s", result)

        self._ctx.scheduler.stop()
        if self._scheduler_task is not None:
            await self._scheduler_task
        await self._ctx.ledger.close()
        logger.info("Liquidator stopped")
