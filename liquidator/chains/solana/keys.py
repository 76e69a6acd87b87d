"""Address parsing, token-account derivation and keypair loading."""
from __future__ import annotations

import json
from pathlib import Path

from solders.keypair import Keypair
from solders.pubkey import Pubkey

from ...errors import InvalidAddressError

TOKEN_PROGRAM_ID = Pubkey.from_string("TokenkegQfeZyiNwAJbNbGKPFXCWuBvf9Ss623VQ5DA")
ASSOCIATED_TOKEN_PROGRAM_ID = Pubkey.from_string(
    "ATokenGPvbdGVxr1b2hvZbsiqW5xWH25efTNsLJA8knL"
)

# Unoccupied slots in a users page hold the all-zero key.
EMPTY_SLOT_ADDRESS = str(Pubkey.default())


def parse_address(address: str) -> Pubkey:
    """Parse a base58 address, raising ``InvalidAddressError`` when invalid."""
    if not address:
        raise InvalidAddressError("Empty account address")
    try:
        return Pubkey.from_string(address)
    except ValueError as e:
        raise InvalidAddressError(f"Invalid account address '{address}'") from e


def associated_token_address(owner: str, mint: str) -> str:
    """Associated token account of ``owner`` for ``mint``."""
    address, _bump = Pubkey.find_program_address(
        [bytes(parse_address(owner)), bytes(TOKEN_PROGRAM_ID), bytes(parse_address(mint))],
        ASSOCIATED_TOKEN_PROGRAM_ID,
    )
    return str(address)


def load_keypair(path: str | Path) -> Keypair:
    """Load a keypair from a JSON file holding the secret key as a byte array."""
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Keypair file not found: {path}")
    secret = json.loads(path.read_text())
    if not isinstance(secret, list) or len(secret) != 64:
        raise ValueError(f"Keypair file {path} must hold a 64-byte array")
    return Keypair.from_bytes(bytes(secret))
