"""Protocol interfaces for the liquidator's external collaborators."""
from .account_decoder import AccountDecoder
from .address_resolver import AddressResolver
from .ledger import AccountCallback, LedgerClient
from .notifier import Notifier
from .swap_venue import SwapVenue
from .transaction_builder import TransactionBuilder

__all__ = [
    "AccountCallback",
    "AccountDecoder",
    "AddressResolver",
    "LedgerClient",
    "Notifier",
    "SwapVenue",
    "TransactionBuilder",
]
