"""Decoding of raw account bytes into domain records."""
from typing import Protocol

from ..models import PositionSnapshot


class AccountDecoder(Protocol):
    """Pure decoding functions for the lending program's accounts."""

    def decode_position_listing(self, data: bytes) -> list[str]: ...

    def decode_borrower_position(self, data: bytes) -> PositionSnapshot: ...

    def decode_price_record(self, data: bytes) -> float: ...
