"""Swap venue protocol: one market converting an asset to or from the stable token."""
from typing import Any, Protocol


class SwapVenue(Protocol):
    """Build swap operations on a single venue."""

    def build_swap_ops(
        self,
        sell_token: str,
        sell_amount: int,
        sell_account: str,
        buy_token: str,
        min_buy_amount: int,
        buy_account: str,
        beneficiary: str,
    ) -> list[Any]: ...
