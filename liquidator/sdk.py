"""Loading of the ledger / swap SDK collaborators."""
from __future__ import annotations

import importlib
import logging
from dataclasses import dataclass, field
from typing import Mapping

from .config import AppConfig
from .interfaces.account_decoder import AccountDecoder
from .interfaces.address_resolver import AddressResolver
from .interfaces.swap_venue import SwapVenue
from .interfaces.transaction_builder import TransactionBuilder

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SdkBundle:
    """Program-specific collaborators the liquidator cannot provide itself."""

    decoder: AccountDecoder
    addresses: AddressResolver
    builder: TransactionBuilder
    # token_id -> the single venue used to trade that token against the stable token
    venues: Mapping[str, SwapVenue] = field(default_factory=dict)


def load_sdk(factory_path: str, config: AppConfig) -> SdkBundle:
    """Import ``package.module:callable`` and call it with ``config``.

    The callable must return an ``SdkBundle``.
    """
    if not factory_path or ":" not in factory_path:
        raise ValueError(
            f"sdk.factory must look like 'package.module:callable', got '{factory_path}'"
        )
    module_name, attr = factory_path.split(":", 1)
    module = importlib.import_module(module_name)
    factory = getattr(module, attr, None)
    if not callable(factory):
        raise ValueError(f"'{factory_path}' is not callable")

    bundle = factory(config)
    if not isinstance(bundle, SdkBundle):
        raise TypeError(f"'{factory_path}' returned {type(bundle).__name__}, not SdkBundle")

    for pool in config.pools:
        if pool.token_id != config.stable_token and pool.token_id not in bundle.venues:
            logger.warning(
                "No swap venue for %s; liquidations touching it will fail", pool.token_id
            )
    return bundle
