"""Data models — all frozen (immutable)."""
from __future__ import annotations

from dataclasses import dataclass

# pool_id -> latest USD price
PriceTable = dict[int, float]


@dataclass(frozen=True)
class PositionEntry:
    """One asset pool inside a borrower's position, in raw on-chain units."""

    pool_id: int
    deposit_amount: float
    borrow_amount: float


@dataclass(frozen=True)
class PositionSnapshot:
    """Decoded borrower position, replaced wholesale on every update."""

    page_id: int
    entries: tuple[PositionEntry, ...] = ()


@dataclass(frozen=True)
class BorrowTotals:
    """Borrow limit and total debt across every configured pool, in USD."""

    borrow_limit: float
    total_borrowed: float


@dataclass(frozen=True)
class LiquidationSizes:
    """Output of the sizing formula for one collateral/debt pair."""

    liquidated_value: float
    min_collateral_amount: float
    debt_repay_amount: float


@dataclass(frozen=True)
class ExecutionPlan:
    """What to liquidate for one borrower, produced and consumed within a tick.

    Amounts are in token units (not scaled by decimals). The stable values are
    the collateral / debt amounts expressed in units of the stable token.
    """

    wallet: str
    collateral_pool_id: int
    debt_pool_id: int
    min_collateral_amount: float
    debt_repay_amount: float
    liquidated_value: float
    collateral_stable_value: float
    debt_stable_value: float


@dataclass(frozen=True)
class ExecutionResult:
    """Outcome of one liquidation attempt."""

    wallet: str
    success: bool
    signatures: tuple[str, ...] = ()
    error: str = ""
