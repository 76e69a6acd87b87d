"""Integration tests for the execution coordinator: price gate, cool-down, lifecycle."""
from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock

import pytest

from liquidator.config import AppConfig
from liquidator.models import ExecutionPlan, ExecutionResult
from liquidator.services import ExecutionCoordinator
from liquidator.sync import MirrorContext

from ..fakes import (
    BTC_MINT,
    ETH_MINT,
    SOL,
    SOL_MINT,
    USDC,
    USDC_MINT,
    FakeLedger,
    drain,
    encode_listing,
    encode_position,
    encode_price,
    new_address,
)

PRICES = {BTC_MINT: 50000.0, ETH_MINT: 3000.0, USDC_MINT: 1.0, SOL_MINT: 100.0}


class Clock:
    def __init__(self, now: float = 1000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now


@pytest.fixture()
def executor() -> AsyncMock:
    mock = AsyncMock()
    mock.execute.side_effect = lambda plan: ExecutionResult(wallet=plan.wallet, success=True)
    return mock


@pytest.fixture()
def clock() -> Clock:
    return Clock()


@pytest.fixture()
def coordinator(
    sample_app_config: AppConfig,
    mirror_ctx: MirrorContext,
    executor: AsyncMock,
    clock: Clock,
) -> ExecutionCoordinator:
    return ExecutionCoordinator(
        sample_app_config, mirror_ctx, executor, clock=clock, sleep=AsyncMock()
    )


def _seed(
    ctx: MirrorContext, ledger: FakeLedger, pages: dict[int, dict[str, bytes]]
) -> None:
    """Store prices, page listings and positions in the fake ledger."""
    for mint, price in PRICES.items():
        ledger.accounts[mint] = encode_price(price)
    for page_id, positions in pages.items():
        ledger.accounts[ctx.addresses.users_page_address(page_id)] = encode_listing(
            list(positions)
        )
        ledger.accounts.update(positions)


def _unsafe() -> bytes:
    return encode_position(0, [(SOL, 10 * 10**9, 0), (USDC, 0, 900 * 10**6)])


def _safe() -> bytes:
    return encode_position(0, [(SOL, 10 * 10**9, 0), (USDC, 0, 100 * 10**6)])


async def _provisioned(
    coordinator: ExecutionCoordinator, ctx: MirrorContext
) -> ExecutionCoordinator:
    await coordinator.provision()
    await drain(ctx.scheduler)
    return coordinator


class TestProvision:
    @pytest.mark.asyncio
    async def test_mirrors_for_every_pool_and_page(
        self,
        coordinator: ExecutionCoordinator,
        mirror_ctx: MirrorContext,
        fake_ledger: FakeLedger,
    ) -> None:
        _seed(mirror_ctx, fake_ledger, {0: {new_address(): _safe()}, 1: {}})
        await _provisioned(coordinator, mirror_ctx)

        assert [m.pool_id for m in coordinator.price_mirrors] == [0, 1, 2, 3]
        assert [p.page_id for p in coordinator.page_mirrors] == [0, 1]
        assert coordinator.price_table() == {0: 50000.0, 1: 3000.0, 2: 1.0, 3: 100.0}
        assert len(coordinator.page_mirrors[0].borrowers) == 1

    @pytest.mark.asyncio
    async def test_wait_for_prices_blocks_until_all_loaded(
        self,
        sample_app_config: AppConfig,
        mirror_ctx: MirrorContext,
        fake_ledger: FakeLedger,
        executor: AsyncMock,
    ) -> None:
        _seed(mirror_ctx, fake_ledger, {})
        del fake_ledger.accounts[SOL_MINT]

        async def price_arrives(seconds: float) -> None:
            await fake_ledger.push(SOL_MINT, encode_price(100.0))

        sleep = AsyncMock(side_effect=price_arrives)
        coordinator = ExecutionCoordinator(
            sample_app_config, mirror_ctx, executor, sleep=sleep
        )
        await _provisioned(coordinator, mirror_ctx)
        assert SOL not in coordinator.price_table()

        await coordinator.wait_for_prices()

        sleep.assert_awaited_once_with(sample_app_config.bot.price_poll_seconds)
        assert coordinator.price_table()[SOL] == 100.0


class TestStep:
    @pytest.mark.asyncio
    async def test_unsafe_borrower_is_attempted(
        self,
        coordinator: ExecutionCoordinator,
        mirror_ctx: MirrorContext,
        fake_ledger: FakeLedger,
        executor: AsyncMock,
    ) -> None:
        wallet = new_address()
        _seed(mirror_ctx, fake_ledger, {0: {wallet: _unsafe(), new_address(): _safe()}})
        await _provisioned(coordinator, mirror_ctx)

        launched = await coordinator.step()
        await coordinator.wait_for_executions()

        assert len(launched) == 1
        plan = executor.execute.await_args.args[0]
        assert plan.wallet == wallet
        assert (plan.collateral_pool_id, plan.debt_pool_id) == (SOL, USDC)
        assert launched[0].result().success

    @pytest.mark.asyncio
    async def test_cooldown_window(
        self,
        coordinator: ExecutionCoordinator,
        mirror_ctx: MirrorContext,
        fake_ledger: FakeLedger,
        executor: AsyncMock,
        clock: Clock,
    ) -> None:
        _seed(mirror_ctx, fake_ledger, {1: {new_address(): _unsafe()}})
        await _provisioned(coordinator, mirror_ctx)

        assert len(await coordinator.step()) == 1
        await coordinator.wait_for_executions()
        clock.now += 5
        assert await coordinator.step() == []
        clock.now += 20
        assert len(await coordinator.step()) == 1

        await coordinator.wait_for_executions()
        assert executor.execute.await_count == 2

    @pytest.mark.asyncio
    async def test_failed_attempt_still_cools_down(
        self,
        coordinator: ExecutionCoordinator,
        mirror_ctx: MirrorContext,
        fake_ledger: FakeLedger,
        executor: AsyncMock,
        clock: Clock,
    ) -> None:
        executor.execute.side_effect = RuntimeError("builder exploded")
        _seed(mirror_ctx, fake_ledger, {0: {new_address(): _unsafe()}})
        await _provisioned(coordinator, mirror_ctx)

        launched = await coordinator.step()
        await coordinator.wait_for_executions()
        assert launched[0].result() is None

        clock.now += 10
        assert await coordinator.step() == []

    @pytest.mark.asyncio
    async def test_attempt_in_flight_is_not_repeated(
        self,
        coordinator: ExecutionCoordinator,
        mirror_ctx: MirrorContext,
        fake_ledger: FakeLedger,
        executor: AsyncMock,
        clock: Clock,
    ) -> None:
        release = asyncio.Event()
        running = peak = 0

        async def slow_execute(plan: ExecutionPlan) -> ExecutionResult:
            nonlocal running, peak
            running += 1
            peak = max(peak, running)
            await release.wait()
            running -= 1
            return ExecutionResult(wallet=plan.wallet, success=True)

        executor.execute.side_effect = slow_execute
        _seed(mirror_ctx, fake_ledger, {0: {new_address(): _unsafe()}})
        await _provisioned(coordinator, mirror_ctx)

        assert len(await coordinator.step()) == 1
        await asyncio.sleep(0)
        clock.now += 25
        assert await coordinator.step() == []

        release.set()
        await coordinator.wait_for_executions()
        assert peak == 1

        # The window runs from when the attempt finished.
        clock.now += 20
        assert await coordinator.step() == []
        clock.now += 1
        assert len(await coordinator.step()) == 1
        await coordinator.wait_for_executions()
        assert executor.execute.await_count == 2

    @pytest.mark.asyncio
    async def test_first_attempt_near_clock_zero(
        self,
        sample_app_config: AppConfig,
        mirror_ctx: MirrorContext,
        fake_ledger: FakeLedger,
        executor: AsyncMock,
    ) -> None:
        coordinator = ExecutionCoordinator(
            sample_app_config, mirror_ctx, executor, clock=Clock(now=5.0), sleep=AsyncMock()
        )
        _seed(mirror_ctx, fake_ledger, {0: {new_address(): _unsafe()}})
        await _provisioned(coordinator, mirror_ctx)

        assert len(await coordinator.step()) == 1
        await coordinator.wait_for_executions()

    @pytest.mark.asyncio
    async def test_borrower_without_position_is_skipped(
        self,
        coordinator: ExecutionCoordinator,
        mirror_ctx: MirrorContext,
        fake_ledger: FakeLedger,
    ) -> None:
        wallet = new_address()
        _seed(mirror_ctx, fake_ledger, {0: {wallet: _unsafe()}})
        del fake_ledger.accounts[wallet]
        await _provisioned(coordinator, mirror_ctx)

        assert coordinator.page_mirrors[0].borrowers[0].payload is None
        assert await coordinator.step() == []

    @pytest.mark.asyncio
    async def test_price_move_makes_borrower_unsafe(
        self,
        coordinator: ExecutionCoordinator,
        mirror_ctx: MirrorContext,
        fake_ledger: FakeLedger,
    ) -> None:
        _seed(mirror_ctx, fake_ledger, {0: {new_address(): _safe()}})
        await _provisioned(coordinator, mirror_ctx)
        assert await coordinator.step() == []

        await fake_ledger.push(SOL_MINT, encode_price(10.0))
        launched = await coordinator.step()
        await coordinator.wait_for_executions()
        assert len(launched) == 1


class TestLifecycle:
    @pytest.mark.asyncio
    async def test_stop_releases_everything(
        self,
        coordinator: ExecutionCoordinator,
        mirror_ctx: MirrorContext,
        fake_ledger: FakeLedger,
    ) -> None:
        _seed(mirror_ctx, fake_ledger, {0: {new_address(): _safe()}})
        await _provisioned(coordinator, mirror_ctx)
        assert fake_ledger.callbacks

        await coordinator.stop()
        for _ in range(3):
            await asyncio.sleep(0)

        assert fake_ledger.callbacks == {}
        assert fake_ledger.closed

    @pytest.mark.asyncio
    async def test_run_until_stopped(
        self,
        sample_app_config: AppConfig,
        mirror_ctx: MirrorContext,
        fake_ledger: FakeLedger,
        executor: AsyncMock,
    ) -> None:
        _seed(mirror_ctx, fake_ledger, {0: {new_address(): _unsafe()}, 1: {}})
        tick = sample_app_config.bot.tick_seconds
        coordinator: ExecutionCoordinator

        async def fake_sleep(seconds: float) -> None:
            # Borrowers may still be loading after the price gate opens.
            if seconds == tick and executor.execute.await_count:
                await coordinator.stop()
            else:
                await asyncio.sleep(0.005)

        coordinator = ExecutionCoordinator(
            sample_app_config, mirror_ctx, executor, sleep=fake_sleep
        )
        await asyncio.wait_for(coordinator.run(), timeout=5)
        await coordinator.wait_for_executions()

        executor.execute.assert_awaited_once()
        assert fake_ledger.closed
