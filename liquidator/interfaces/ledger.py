"""Ledger client protocol — remote account and transaction RPC abstraction."""
from typing import Any, Awaitable, Callable, Protocol, Sequence

AccountCallback = Callable[[bytes | None], Awaitable[None]]


class LedgerClient(Protocol):
    """Abstract interface for ledger RPC interactions."""

    async def fetch_account(self, address: str) -> bytes | None: ...

    async def subscribe_account(
        self, address: str, commitment: str, callback: AccountCallback
    ) -> int: ...

    async def unsubscribe(self, handle: int) -> None: ...

    async def submit_transaction(self, signer: Any, ops: Sequence[Any]) -> str: ...

    async def confirm_transaction(self, signature: str) -> None: ...

    async def get_token_balance(self, token_account: str) -> int: ...

    async def close(self) -> None: ...
