"""Account mirrors: local replicas of remote accounts kept current by fetch + push.

The mirror tree has three kinds of node:

* ``PriceMirror``: one oracle price record.
* ``PositionPageMirror``: one fixed-size users page; owns a ``BorrowerMirror``
  per occupied slot and re-diffs that set on every page update.
* ``BorrowerMirror``: one borrower's position record.

Lifecycle is two-phase: construction is pure, ``initialize()`` queues the
initial fetch and the push subscription on the rate-limited scheduler.
"""
from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Coroutine

from ..chains.solana.keys import EMPTY_SLOT_ADDRESS, parse_address
from ..errors import InvalidAddressError, MirrorStateError, RpcError
from ..interfaces.account_decoder import AccountDecoder
from ..interfaces.address_resolver import AddressResolver
from ..interfaces.ledger import LedgerClient
from ..logging_setup import UPDATES_LOGGER
from ..models import PositionSnapshot
from .scheduler import RateLimitedScheduler

logger = logging.getLogger(__name__)
updates_log = logging.getLogger(UPDATES_LOGGER)


@dataclass
class MirrorContext:
    """Services shared by every mirror in the tree."""

    ledger: LedgerClient
    scheduler: RateLimitedScheduler
    decoder: AccountDecoder
    addresses: AddressResolver
    commitment: str = "confirmed"
    background: set[asyncio.Task[Any]] = field(default_factory=set)

    def spawn(self, coro: Coroutine[Any, Any, None], what: str) -> None:
        """Run ``coro`` in the background, logging its failure."""
        task = asyncio.create_task(coro)
        self.background.add(task)

        def _done(t: asyncio.Task[Any]) -> None:
            self.background.discard(t)
            if not t.cancelled() and t.exception() is not None:
                logger.error("%s failed: %s", what, t.exception())

        task.add_done_callback(_done)


class AccountMirror(ABC):
    """Owns one subscription to one remote account and zero or more children."""

    kind = "account"

    def __init__(self, ctx: MirrorContext) -> None:
        self.ctx = ctx
        self.address: str | None = None
        self.payload: Any = None
        self.children: dict[str, AccountMirror] = {}
        self._handle: int | None = None
        self._torn_down = False

    @property
    def initialized(self) -> bool:
        return self.address is not None

    @property
    def subscribed(self) -> bool:
        return self._handle is not None

    async def initialize(self, address: str) -> None:
        """Queue the initial fetch and push subscription for ``address``."""
        parse_address(address)
        if self.address is not None:
            raise MirrorStateError(f"{self.kind} mirror already watches {self.address}")
        self.address = address
        self.ctx.scheduler.submit(self._fetch_and_subscribe)

    async def _fetch_and_subscribe(self) -> None:
        if self._torn_down:
            return
        if self.address is None:
            raise MirrorStateError(f"{self.kind} mirror has no address to fetch")
        try:
            data = await self.ctx.ledger.fetch_account(self.address)
        except RpcError as e:
            logger.warning("Initial fetch of %s %s failed: %s", self.kind, self.address, e)
        else:
            updates_log.info("updated %s %s", self.kind, self.address)
            await self.on_update(data)

        if self._torn_down:
            return
        handle = await self.ctx.ledger.subscribe_account(
            self.address, self.ctx.commitment, self.on_update
        )
        if self._torn_down:
            await self.ctx.ledger.unsubscribe(handle)
            return
        self._handle = handle

    @abstractmethod
    async def on_update(self, data: bytes | None) -> None:
        """Decode a fetched or pushed account payload (None: account absent)."""

    async def teardown(self) -> None:
        """Cancel the subscription, then tear down every child in the background."""
        if self.address is None:
            raise MirrorStateError(f"{self.kind} mirror was never initialized")
        self._torn_down = True
        if self._handle is not None:
            handle, self._handle = self._handle, None
            await self.ctx.ledger.unsubscribe(handle)

        children = list(self.children.values())
        self.children.clear()
        for child in children:
            self.ctx.spawn(child.teardown(), f"Teardown of {child.kind} {child.address}")


class PriceMirror(AccountMirror):
    """Mirror of one asset's oracle price record."""

    kind = "price"

    def __init__(self, ctx: MirrorContext, pool_id: int, mint: str) -> None:
        super().__init__(ctx)
        self.pool_id = pool_id
        self.mint = mint
        self.payload: float | None = None

    async def on_update(self, data: bytes | None) -> None:
        if data is None:
            logger.info("Price account for pool %d not created", self.pool_id)
            return
        self.payload = self.ctx.decoder.decode_price_record(data)


class BorrowerMirror(AccountMirror):
    """Mirror of one borrower's position record."""

    kind = "borrower"

    def __init__(self, ctx: MirrorContext, wallet: str, page_id: int) -> None:
        super().__init__(ctx)
        self.wallet = wallet
        self.page_id = page_id
        self.payload: PositionSnapshot | None = None
        # Written by the coordinator only. None until the first attempt finishes.
        self.last_fire_time: float | None = None
        self.attempt: asyncio.Task[Any] | None = None

    async def on_update(self, data: bytes | None) -> None:
        if data is None:
            logger.debug("Position of %s not created", self.wallet)
            return
        self.payload = self.ctx.decoder.decode_borrower_position(data)


class PositionPageMirror(AccountMirror):
    """Mirror of one users page; keeps a ``BorrowerMirror`` per listed wallet."""

    kind = "page"

    def __init__(self, ctx: MirrorContext, page_id: int) -> None:
        super().__init__(ctx)
        self.page_id = page_id
        self.payload: list[str] = []
        self._listing_lock = asyncio.Lock()

    @property
    def borrowers(self) -> list[BorrowerMirror]:
        return [m for m in self.children.values() if isinstance(m, BorrowerMirror)]

    async def on_update(self, data: bytes | None) -> None:
        if data is None:
            logger.info("Page %d not created", self.page_id)
            return
        listing = self.ctx.decoder.decode_position_listing(data)
        # One diff at a time, so an older listing cannot resume after a newer one.
        async with self._listing_lock:
            self.payload = listing
            wallets = {w for w in listing if w != EMPTY_SLOT_ADDRESS}
            updates_log.info("Page %d lists %d wallets", self.page_id, len(wallets))
            await self.apply_listing(wallets)

    async def apply_listing(self, wallets: set[str]) -> None:
        """Retire watchers of wallets no longer listed and watch new ones."""
        removed = [w for w in self.children if w not in wallets]
        retired = [(w, self.children.pop(w)) for w in removed]
        results = await asyncio.gather(
            *(mirror.teardown() for _, mirror in retired), return_exceptions=True
        )
        for (wallet, _), result in zip(retired, results):
            if isinstance(result, Exception):
                logger.error("Failed to unwatch %s: %s", wallet, result)
            else:
                logger.info("Page %d: unwatched %s", self.page_id, wallet)

        if self._torn_down:
            return
        for wallet in sorted(wallets):
            if wallet not in self.children:
                await self._add_borrower(wallet)

    async def _add_borrower(self, wallet: str) -> None:
        try:
            address = self.ctx.addresses.borrower_address(wallet)
            mirror = BorrowerMirror(self.ctx, wallet, self.page_id)
            self.children[wallet] = mirror
            await mirror.initialize(address)
        except InvalidAddressError as e:
            self.children.pop(wallet, None)
            logger.error("Page %d: cannot watch %s: %s", self.page_id, wallet, e)
            return
        logger.info("Page %d: watching %s", self.page_id, wallet)
