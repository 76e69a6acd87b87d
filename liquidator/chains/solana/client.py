"""Solana RPC client with endpoint fallback and websocket account subscriptions."""
from __future__ import annotations

import asyncio
import base64
import itertools
import logging
import ssl
from typing import Any, Sequence

import aiohttp
import certifi
from solders.hash import Hash
from solders.keypair import Keypair
from solders.transaction import Transaction

from ...config import LedgerConfig
from ...errors import RpcError, TransactionFailedError
from ...interfaces.ledger import AccountCallback

logger = logging.getLogger(__name__)


def _decode_account_value(value: dict[str, Any] | None) -> bytes | None:
    """Extract raw bytes from a base64-encoded account value (None if absent)."""
    if value is None:
        return None
    data = value.get("data")
    if isinstance(data, list) and data:
        return base64.b64decode(data[0])
    if isinstance(data, str):
        return base64.b64decode(data)
    return b""


def _subscribe_params(address: str, commitment: str) -> list[Any]:
    return [address, {"encoding": "base64", "commitment": commitment}]


class SolanaClient:
    """Solana JSON-RPC client with automatic endpoint fallback.

    HTTP calls try each configured endpoint in turn. Account subscriptions
    share one websocket whose reader task routes notifications to callbacks.
    When that websocket drops, the client reconnects and re-subscribes every
    live handle.
    """

    confirm_poll_seconds = 1.0
    reconnect_delay_seconds = 1.0

    def __init__(self, config: LedgerConfig) -> None:
        self.endpoints = list(config.rpc_endpoints)
        self.ws_endpoint = config.ws_endpoint
        self.timeout = config.rpc_timeout
        self.commitment = config.commitment
        self.confirm_timeout = config.confirm_timeout
        self.current_rpc_index = 0

        self._ws_session: aiohttp.ClientSession | None = None
        self._ws: aiohttp.ClientWebSocketResponse | None = None
        self._ws_lock = asyncio.Lock()
        self._reader: asyncio.Task[None] | None = None
        self._ids = itertools.count(1)
        self._pending: dict[int, asyncio.Future[Any]] = {}
        self._handle_ids = itertools.count(1)
        # handle -> (address, commitment, callback); survives reconnects
        self._subscriptions: dict[int, tuple[str, str, AccountCallback]] = {}
        self._server_ids: dict[int, int] = {}
        self._handles: dict[int, int] = {}
        self._reconnect_task: asyncio.Task[None] | None = None
        self._closing = False
        self._callback_tasks: set[asyncio.Task[None]] = set()

    # ------------------------------------------------------------------
    # HTTP JSON-RPC
    # ------------------------------------------------------------------

    async def rpc_call(self, method: str, params: list[Any]) -> Any:
        """Make RPC call with fallback to alternative endpoints."""
        payload = {"jsonrpc": "2.0", "id": 1, "method": method, "params": params}

        ssl_context = ssl.create_default_context(cafile=certifi.where())

        last_error: Exception | None = None
        for attempt in range(len(self.endpoints)):
            rpc_index = (self.current_rpc_index + attempt) % len(self.endpoints)
            rpc_url = self.endpoints[rpc_index]

            try:
                connector = aiohttp.TCPConnector(ssl=ssl_context)
                async with aiohttp.ClientSession(connector=connector) as session:
                    async with session.post(
                        rpc_url,
                        json=payload,
                        timeout=aiohttp.ClientTimeout(total=self.timeout),
                    ) as response:
                        result = await response.json()
                        if "error" in result:
                            raise RpcError(f"RPC Error: {result['error']}")

                        if rpc_index != self.current_rpc_index:
                            logger.info("Switched to RPC endpoint: %s", rpc_url)
                            self.current_rpc_index = rpc_index

                        return result.get("result")
            except Exception as e:
                last_error = e
                logger.warning("RPC endpoint %s failed on %s: %s", rpc_url, method, e)
                if attempt < len(self.endpoints) - 1:
                    logger.info("Trying next endpoint...")
                continue

        raise RpcError(f"All RPC endpoints failed. Last error: {last_error}")

    async def fetch_account(self, address: str) -> bytes | None:
        """Fetch the current data of an account, None if it does not exist."""
        result = await self.rpc_call(
            "getAccountInfo",
            [address, {"encoding": "base64", "commitment": self.commitment}],
        )
        return _decode_account_value((result or {}).get("value"))

    async def get_token_balance(self, token_account: str) -> int:
        """Raw token amount held by a token account (0 if it does not exist)."""
        if await self.fetch_account(token_account) is None:
            return 0
        result = await self.rpc_call(
            "getTokenAccountBalance", [token_account, {"commitment": self.commitment}]
        )
        return int(result["value"]["amount"])

    async def submit_transaction(self, signer: Keypair, ops: Sequence[Any]) -> str:
        """Sign ``ops`` as one transaction paid by ``signer`` and send it."""
        latest = await self.rpc_call(
            "getLatestBlockhash", [{"commitment": self.commitment}]
        )
        blockhash = Hash.from_string(latest["value"]["blockhash"])
        tx = Transaction.new_signed_with_payer(
            list(ops), signer.pubkey(), [signer], blockhash
        )
        encoded = base64.b64encode(bytes(tx)).decode("ascii")
        try:
            signature = await self.rpc_call(
                "sendTransaction",
                [encoded, {"encoding": "base64", "preflightCommitment": self.commitment}],
            )
        except RpcError as e:
            raise TransactionFailedError(f"Transaction rejected: {e}") from e
        logger.info("Sent transaction %s (%d ops)", signature, len(ops))
        return signature

    async def confirm_transaction(self, signature: str) -> None:
        """Wait until ``signature`` reaches the configured commitment.

        Raises ``TransactionFailedError`` if the transaction errored or was not
        confirmed within ``confirm_timeout`` seconds.
        """
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.confirm_timeout
        while loop.time() < deadline:
            result = await self.rpc_call(
                "getSignatureStatuses",
                [[signature], {"searchTransactionHistory": False}],
            )
            statuses = (result or {}).get("value") or [None]
            status = statuses[0]
            if status:
                if status.get("err"):
                    raise TransactionFailedError(
                        f"Transaction {signature} failed: {status['err']}"
                    )
                if status.get("confirmationStatus") in ("confirmed", "finalized"):
                    return
            await asyncio.sleep(self.confirm_poll_seconds)
        raise TransactionFailedError(
            f"Transaction {signature} not confirmed within {self.confirm_timeout}s"
        )

    # ------------------------------------------------------------------
    # Websocket subscriptions
    # ------------------------------------------------------------------

    async def _ensure_ws(self) -> aiohttp.ClientWebSocketResponse:
        async with self._ws_lock:
            if self._ws is not None and not self._ws.closed:
                return self._ws

            ssl_context = ssl.create_default_context(cafile=certifi.where())
            if self._ws_session is None or self._ws_session.closed:
                self._ws_session = aiohttp.ClientSession(
                    connector=aiohttp.TCPConnector(ssl=ssl_context)
                )
            self._ws = await self._ws_session.ws_connect(self.ws_endpoint, heartbeat=30)
            self._reader = asyncio.create_task(self._read_ws(self._ws))
            logger.info("Connected subscription websocket: %s", self.ws_endpoint)
            return self._ws

    async def _ws_request(self, method: str, params: list[Any]) -> Any:
        ws = await self._ensure_ws()
        request_id = next(self._ids)
        future: asyncio.Future[Any] = asyncio.get_running_loop().create_future()
        self._pending[request_id] = future
        try:
            await ws.send_json(
                {"jsonrpc": "2.0", "id": request_id, "method": method, "params": params}
            )
            return await asyncio.wait_for(future, self.timeout)
        finally:
            self._pending.pop(request_id, None)

    async def _read_ws(self, ws: aiohttp.ClientWebSocketResponse) -> None:
        async for msg in ws:
            if msg.type == aiohttp.WSMsgType.TEXT:
                self._dispatch(msg.json())
            elif msg.type == aiohttp.WSMsgType.ERROR:
                logger.error("Subscription websocket error: %s", ws.exception())
                break

        logger.warning("Subscription websocket closed")
        for future in self._pending.values():
            if not future.done():
                future.set_exception(RpcError("Subscription websocket closed"))

        # Server subscription ids die with the socket.
        self._server_ids.clear()
        self._handles.clear()
        if not self._closing and self._subscriptions:
            self._reconnect_task = asyncio.create_task(self._resubscribe())
            self._reconnect_task.add_done_callback(self._on_reconnect_done)

    async def _resubscribe(self) -> None:
        """Reconnect and re-issue every live subscription under its old handle."""
        while not self._closing:
            try:
                await self._ensure_ws()
                break
            except (aiohttp.ClientError, OSError, asyncio.TimeoutError) as e:
                logger.warning("Websocket reconnect failed: %s", e)
                await asyncio.sleep(self.reconnect_delay_seconds)

        restored = 0
        for handle, (address, commitment, _) in list(self._subscriptions.items()):
            if self._closing:
                return
            try:
                server_id = int(
                    await self._ws_request(
                        "accountSubscribe", _subscribe_params(address, commitment)
                    )
                )
            except (RpcError, asyncio.TimeoutError) as e:
                logger.error("Failed to resubscribe %s: %s", address, e)
                continue
            if handle not in self._subscriptions:
                await self._ws_request("accountUnsubscribe", [server_id])
                continue
            self._server_ids[handle] = server_id
            self._handles[server_id] = handle
            restored += 1
        logger.info("Restored %d of %d subscriptions", restored, len(self._subscriptions))

    def _dispatch(self, message: dict[str, Any]) -> None:
        """Route one websocket message to a pending request or a subscriber."""
        request_id = message.get("id")
        if request_id is not None:
            future = self._pending.get(request_id)
            if future is None or future.done():
                return
            if "error" in message:
                future.set_exception(RpcError(f"RPC Error: {message['error']}"))
            else:
                future.set_result(message.get("result"))
            return

        if message.get("method") != "accountNotification":
            return
        params = message.get("params", {})
        handle = self._handles.get(params.get("subscription"))
        if handle is None or handle not in self._subscriptions:
            return
        callback = self._subscriptions[handle][2]
        data = _decode_account_value(params.get("result", {}).get("value"))
        task = asyncio.create_task(callback(data))
        self._callback_tasks.add(task)
        task.add_done_callback(self._on_callback_done)

    def _on_callback_done(self, task: asyncio.Task[None]) -> None:
        self._callback_tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error("Account update handler failed: %s", task.exception())

    def _on_reconnect_done(self, task: asyncio.Task[None]) -> None:
        if not task.cancelled() and task.exception() is not None:
            logger.error("Resubscription failed: %s", task.exception())

    async def subscribe_account(
        self, address: str, commitment: str, callback: AccountCallback
    ) -> int:
        """Subscribe to pushed changes of an account; returns the handle.

        Handles stay valid across websocket reconnects.
        """
        server_id = int(
            await self._ws_request("accountSubscribe", _subscribe_params(address, commitment))
        )
        handle = next(self._handle_ids)
        self._subscriptions[handle] = (address, commitment, callback)
        self._server_ids[handle] = server_id
        self._handles[server_id] = handle
        return handle

    async def unsubscribe(self, handle: int) -> None:
        self._subscriptions.pop(handle, None)
        server_id = self._server_ids.pop(handle, None)
        if server_id is None:
            return
        self._handles.pop(server_id, None)
        await self._ws_request("accountUnsubscribe", [server_id])

    async def close(self) -> None:
        """Close the subscription websocket and its session."""
        self._closing = True
        for task in (self._reader, self._reconnect_task):
            if task is not None:
                task.cancel()
        if self._ws is not None and not self._ws.closed:
            await self._ws.close()
        if self._ws_session is not None and not self._ws_session.closed:
            await self._ws_session.close()
        self._subscriptions.clear()
        self._server_ids.clear()
        self._handles.clear()
