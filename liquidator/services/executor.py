"""Liquidation executor — turns an execution plan into submitted transactions."""
from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, Mapping, Sequence

from ..chains.solana.keys import associated_token_address
from ..config import AppConfig, PoolConfig
from ..errors import UnsupportedAssetError
from ..interfaces.ledger import LedgerClient
from ..interfaces.notifier import Notifier
from ..interfaces.swap_venue import SwapVenue
from ..interfaces.transaction_builder import TransactionBuilder
from ..logging_setup import ACTIONS_LOGGER
from ..models import ExecutionPlan, ExecutionResult

logger = logging.getLogger(__name__)
actions_log = logging.getLogger(ACTIONS_LOGGER)

# One step of a liquidation: buy debt, liquidate, or sell collateral.
Step = list[Any]


class LiquidationExecutor:
    """Assemble and submit the buy / liquidate / sell sequence for a plan.

    1. If the debt token is not the stable token, buy it with the stable token.
    2. Liquidate: repay the debt, receive collateral.
    3. If the collateral token is not the stable token, sell it back.

    Up to two steps go out as one transaction. With three, buy + liquidate are
    sent together and the sell follows after a settlement delay, once the
    seized collateral balance has landed.
    """

    def __init__(
        self,
        config: AppConfig,
        ledger: LedgerClient,
        builder: TransactionBuilder,
        venues: Mapping[str, SwapVenue],
        signer: Any,
        notifiers: Sequence[Notifier] = (),
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self._config = config
        self._bot = config.bot
        self._ledger = ledger
        self._builder = builder
        self._venues = dict(venues)
        self._signer = signer
        self._owner = str(signer.pubkey())
        self._notifiers = list(notifiers)
        self._sleep = sleep

    def _venue(self, pool: PoolConfig) -> SwapVenue:
        venue = self._venues.get(pool.token_id)
        if venue is None:
            raise UnsupportedAssetError(f"No swap venue configured for {pool.token_id}")
        return venue

    def _token_account(self, pool: PoolConfig) -> str:
        return associated_token_address(self._owner, pool.mint)

    # ------------------------------------------------------------------
    # Assembly
    # ------------------------------------------------------------------

    def assemble(self, plan: ExecutionPlan) -> list[Step]:
        """Build the ordered steps for ``plan``."""
        collateral = self._config.pool(plan.collateral_pool_id)
        debt = self._config.pool(plan.debt_pool_id)
        if collateral is None or debt is None:
            raise UnsupportedAssetError(
                f"Plan references untracked pools {plan.collateral_pool_id}/{plan.debt_pool_id}"
            )
        stable = self._config.stable_pool
        slippage = self._bot.max_trade_slippage

        collateral_account = self._token_account(collateral)
        debt_account = self._token_account(debt)
        stable_account = self._token_account(stable)

        steps: list[Step] = []

        if debt.token_id != stable.token_id:
            venue = self._venue(debt)
            pay_amount = int(plan.debt_stable_value * stable.decimal_mult * (1 + slippage))
            min_buy = int(plan.debt_repay_amount * debt.decimal_mult)
            actions_log.info(
                "Paying %d %s for %d %s", pay_amount, stable.token_id, min_buy, debt.token_id
            )
            steps.append(
                list(
                    venue.build_swap_ops(
                        stable.swap_token,
                        pay_amount,
                        stable_account,
                        debt.swap_token,
                        min_buy,
                        debt_account,
                        self._owner,
                    )
                )
            )

        collateral_raw = int(plan.min_collateral_amount * collateral.decimal_mult)
        steps.append(
            [
                self._builder.build_liquidation_op(
                    self._signer,
                    plan.wallet,
                    collateral_account,
                    debt_account,
                    collateral.mint,
                    debt.mint,
                    collateral_raw,
                    int(plan.debt_repay_amount * debt.decimal_mult),
                )
            ]
        )

        if collateral.token_id != stable.token_id:
            venue = self._venue(collateral)
            # Small amounts are left to the residual sweep; venues reject dust.
            if plan.collateral_stable_value > self._bot.min_collateral_sell_usd:
                fair_value = plan.collateral_stable_value * stable.decimal_mult
                min_receive = int(fair_value * (1 - slippage))
                actions_log.info(
                    "Selling %d %s, valued at %.2f %s, for at least %d",
                    collateral_raw,
                    collateral.token_id,
                    plan.collateral_stable_value,
                    stable.token_id,
                    min_receive,
                )
                steps.append(
                    list(
                        venue.build_swap_ops(
                            collateral.swap_token,
                            collateral_raw,
                            collateral_account,
                            stable.swap_token,
                            min_receive,
                            stable_account,
                            self._owner,
                        )
                    )
                )

        return steps

    # ------------------------------------------------------------------
    # Submission
    # ------------------------------------------------------------------

    async def _send(self, ops: list[Any]) -> str:
        signature = await self._ledger.submit_transaction(self._signer, ops)
        await self._ledger.confirm_transaction(signature)
        actions_log.info("Confirmed %s", signature)
        return signature

    async def submit(self, steps: list[Step]) -> list[str]:
        """Submit steps as one transaction, or two when there are three steps."""
        if len(steps) <= 2:
            return [await self._send([op for step in steps for op in step])]

        first = await self._send([op for step in steps[:2] for op in step])
        await self._sleep(self._bot.settlement_delay_seconds)
        second = await self._send([op for step in steps[2:] for op in step])
        return [first, second]

    async def clear_residuals(self, plan: ExecutionPlan) -> None:
        """Sell leftover debt / collateral tokens to the stable token, any price."""
        stable = self._config.stable_pool
        seen: set[int] = set()
        for pool_id in (plan.debt_pool_id, plan.collateral_pool_id):
            pool = self._config.pool(pool_id)
            if pool is None or pool.token_id == stable.token_id or pool_id in seen:
                continue
            seen.add(pool_id)
            try:
                await self._clear_residual(pool, stable)
            except Exception as e:
                actions_log.error("Clearing residual %s failed: %s", pool.token_id, e)

    async def _clear_residual(self, pool: PoolConfig, stable: PoolConfig) -> None:
        account = self._token_account(pool)
        leftover = await self._ledger.get_token_balance(account)
        if leftover <= 0:
            return
        actions_log.info("Selling residual %d of %s", leftover, pool.token_id)
        ops = self._venue(pool).build_swap_ops(
            pool.swap_token,
            leftover,
            account,
            stable.swap_token,
            0,
            self._token_account(stable),
            self._owner,
        )
        await self._ledger.submit_transaction(self._signer, list(ops))

    # ------------------------------------------------------------------
    # Entry point
    # ------------------------------------------------------------------

    async def _send_alert(self, message: str, subject: str = "") -> None:
        for notifier in self._notifiers:
            try:
                await notifier.send_alert(message, subject=subject)
            except Exception as e:
                logger.error("Notifier send_alert failed: %s", e)

    async def _send_log(self, message: str) -> None:
        for notifier in self._notifiers:
            try:
                await notifier.send_log(message, silent=False)
            except Exception as e:
                logger.error("Notifier send_log failed: %s", e)

    async def execute(self, plan: ExecutionPlan) -> ExecutionResult:
        """Run one liquidation attempt; failures are logged, never raised."""
        actions_log.info(
            "Firing liquidation for %s: pool %d -> pool %d, %.2f USD",
            plan.wallet,
            plan.debt_pool_id,
            plan.collateral_pool_id,
            plan.liquidated_value,
        )
        try:
            steps = self.assemble(plan)
            signatures = await self.submit(steps)
            if self._bot.clear_residual:
                await self.clear_residuals(plan)
        except Exception as e:
            actions_log.exception("Liquidation of %s failed: %s", plan.wallet, e)
            await self._send_alert(
                f"Liquidation of {plan.wallet} failed: {e}", subject="Liquidation failed"
            )
            return ExecutionResult(wallet=plan.wallet, success=False, error=str(e))

        await self._send_log(
            f"Liquidated {plan.liquidated_value:,.2f} USD of {plan.wallet}\n"
            f"Transactions: {', '.join(signatures)}"
        )
        return ExecutionResult(wallet=plan.wallet, success=True, signatures=tuple(signatures))
