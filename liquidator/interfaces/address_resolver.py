"""Program account address derivation, owned by the lending SDK."""
from typing import Protocol


class AddressResolver(Protocol):
    """Derive the addresses of the lending program's accounts."""

    def users_page_address(self, page_id: int) -> str: ...

    def borrower_address(self, wallet: str) -> str: ...

    def price_address(self, mint: str) -> str: ...
