"""Liquidation planner — pure valuation, health and sizing logic, no I/O."""
from __future__ import annotations

import logging

from ..config import AppConfig
from ..models import (
    BorrowTotals,
    ExecutionPlan,
    LiquidationSizes,
    PositionSnapshot,
    PriceTable,
)

logger = logging.getLogger(__name__)

# Fraction of the quoted collateral amount we insist on receiving; absorbs
# price movement between quoting and landing the transaction.
COLLATERAL_HAIRCUT = 0.999


class LiquidationPlanner:
    """Decide whether, what and how much to liquidate for one borrower.

    Built fresh for every borrower on every tick. Valuations are computed for
    every configured pool; pools the borrower does not hold, pools without a
    price and pools the bot does not track all count as zero.
    """

    def __init__(
        self,
        config: AppConfig,
        snapshot: PositionSnapshot,
        prices: PriceTable,
        wallet: str = "",
    ) -> None:
        self.config = config
        self.snapshot = snapshot
        self.prices = prices
        self.wallet = wallet

        self.deposit_values: dict[int, float] = {pid: 0.0 for pid in config.pool_ids}
        self.borrow_values: dict[int, float] = {pid: 0.0 for pid in config.pool_ids}

        for entry in snapshot.entries:
            pool = config.pool(entry.pool_id)
            if pool is None:
                continue
            price = prices.get(entry.pool_id)
            if price is None:
                continue
            self.deposit_values[pool.pool_id] += (
                price * entry.deposit_amount / pool.decimal_mult
            )
            self.borrow_values[pool.pool_id] += (
                price * entry.borrow_amount / pool.decimal_mult
            )

    def borrow_limit_and_totals(self) -> BorrowTotals:
        borrow_limit = 0.0
        total_borrowed = 0.0
        for pool in self.config.pools:
            borrow_limit += self.deposit_values[pool.pool_id] * pool.ltv
            total_borrowed += self.borrow_values[pool.pool_id]
        return BorrowTotals(borrow_limit=borrow_limit, total_borrowed=total_borrowed)

    def health_ratio(self) -> float | None:
        """Total borrowed over borrow limit; None without debt or collateral."""
        totals = self.borrow_limit_and_totals()
        if totals.total_borrowed == 0 or totals.borrow_limit == 0:
            return None
        return totals.total_borrowed / totals.borrow_limit

    def should_liquidate(self) -> bool:
        ratio = self.health_ratio()
        return ratio is not None and ratio > 1

    def select_targets(self) -> tuple[int, int]:
        """Highest-valued collateral and debt pools; ties go to the lower pool id."""
        collateral = min(self.deposit_values.items(), key=lambda kv: (-kv[1], kv[0]))
        debt = min(self.borrow_values.items(), key=lambda kv: (-kv[1], kv[0]))
        return collateral[0], debt[0]

    def size_liquidation(self, collateral_pool_id: int, debt_pool_id: int) -> LiquidationSizes:
        """Size a liquidation that brings the health ratio back to the post factor.

        Removing X USD from both sides of the ratio shrinks the debt by X and
        the borrow limit by X * ltv[collateral]:

            (total - X) / (limit - X * ltv) = post
            X = (total - limit * post) / (1 - post * ltv)

        The liquidated value is X clamped by the collateral held, the debt
        owed and the configured maximum.
        """
        post_factor = self.config.bot.post_factor
        collateral_pool = self.config.pool(collateral_pool_id)
        if collateral_pool is None:
            raise ValueError(f"Unknown collateral pool {collateral_pool_id}")

        totals = self.borrow_limit_and_totals()
        x = (totals.total_borrowed - totals.borrow_limit * post_factor) / (
            1 - post_factor * collateral_pool.ltv
        )
        liquidated_value = min(
            self.deposit_values[collateral_pool_id],
            self.borrow_values[debt_pool_id],
            x,
            self.config.bot.max_liquidation_usd,
        )
        if liquidated_value <= 0:
            return LiquidationSizes(0.0, 0.0, 0.0)

        collateral_price = self.prices[collateral_pool_id]
        debt_price = self.prices[debt_pool_id]
        return LiquidationSizes(
            liquidated_value=liquidated_value,
            min_collateral_amount=liquidated_value / collateral_price * COLLATERAL_HAIRCUT,
            debt_repay_amount=(
                liquidated_value / debt_price / (1 + collateral_pool.liquidation_discount)
            ),
        )

    def build_execution_plan(self) -> ExecutionPlan | None:
        """Compose target selection and sizing; None when nothing should be done."""
        if not self.should_liquidate():
            return None

        collateral_pool_id, debt_pool_id = self.select_targets()
        sizes = self.size_liquidation(collateral_pool_id, debt_pool_id)
        if sizes.liquidated_value <= 0:
            logger.warning("Liquidation of %s sized to zero, skipping", self.wallet)
            return None

        stable_price = self.prices.get(self.config.stable_pool.pool_id)
        if not stable_price:
            logger.warning("No %s price, cannot route liquidation", self.config.stable_token)
            return None

        return ExecutionPlan(
            wallet=self.wallet,
            collateral_pool_id=collateral_pool_id,
            debt_pool_id=debt_pool_id,
            min_collateral_amount=sizes.min_collateral_amount,
            debt_repay_amount=sizes.debt_repay_amount,
            liquidated_value=sizes.liquidated_value,
            collateral_stable_value=(
                sizes.min_collateral_amount * self.prices[collateral_pool_id] / stable_price
            ),
            debt_stable_value=(
                sizes.debt_repay_amount * self.prices[debt_pool_id] / stable_price
            ),
        )
