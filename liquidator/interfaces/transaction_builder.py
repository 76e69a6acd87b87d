"""Transaction builder protocol — lending program instruction construction."""
from typing import Any, Protocol


class TransactionBuilder(Protocol):
    """Build the lending program's liquidation operation."""

    def build_liquidation_op(
        self,
        signer: Any,
        borrower: str,
        receive_account: str,
        pay_account: str,
        collateral_mint: str,
        debt_mint: str,
        min_receive: int,
        exact_pay: int,
    ) -> Any: ...
