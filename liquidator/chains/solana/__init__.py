"""Solana ledger client and key helpers."""
from .client import SolanaClient
from .keys import associated_token_address, load_keypair, parse_address

__all__ = ["SolanaClient", "associated_token_address", "load_keypair", "parse_address"]
