"""
EVM JSON-RPC chain query over httpx.

Responsibilities:
- Talk to each contract's RPC endpoint with bounded timeouts and retry with
  exponential backoff on transport errors, HTTP 429 and 5xx.
- Scan the last search_blocks blocks newest-first using batched
  eth_getBlockByNumber requests and return the most recent successful
  transaction from the wallet to the contract address.
"""

from __future__ import annotations

import itertools
import threading
import time
from typing import Any, Callable, Sequence

import httpx

from backend_chaingate.chain.models import ChainQueryResult
from backend_chaingate.chaingate_logging import get_logger
from backend_chaingate.config.settings import ContractDefinition
from backend_chaingate.core.exceptions import ChainQueryError, UnknownContractError
from backend_chaingate.utils.wallet_utils import short_wallet

logger = get_logger(__name__)

DEFAULT_TIMEOUT_SEC = 15.0
DEFAULT_MAX_RETRIES = 3
DEFAULT_MIN_RETRY_DELAY_SEC = 0.5
DEFAULT_MAX_RETRY_DELAY_SEC = 8.0
RETRYABLE_STATUS = frozenset({429, 500, 502, 503, 504})


def hex_quantity(value: Any, what: str) -> int:
    """Parse a JSON-RPC hex quantity; anything else is a malformed node answer."""
    if not isinstance(value, str):
        raise ChainQueryError(f"{what}: expected hex quantity, got {value!r}")
    try:
        return int(value, 16)
    except ValueError as e:
        raise ChainQueryError(f"{what}: expected hex quantity, got {value!r}") from e


class EvmRpcClient:
    """
    Minimal thread-safe JSON-RPC client for one endpoint.

    One httpx.Client is shared across worker threads; request ids come from a
    locked counter so batch responses can be matched back to their requests.
    """

    def __init__(
        self,
        rpc_url: str,
        *,
        timeout_sec: float = DEFAULT_TIMEOUT_SEC,
        max_retries: int = DEFAULT_MAX_RETRIES,
        min_retry_delay_sec: float = DEFAULT_MIN_RETRY_DELAY_SEC,
        max_retry_delay_sec: float = DEFAULT_MAX_RETRY_DELAY_SEC,
        transport: httpx.BaseTransport | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        if not rpc_url.strip():
            raise ValueError("rpc_url must be non-empty")
        self._rpc_url = rpc_url.rstrip("/")
        self._max_retries = max(0, max_retries)
        self._min_retry_delay = min_retry_delay_sec
        self._max_retry_delay = max_retry_delay_sec
        self._sleep = sleep
        self._client = httpx.Client(timeout=timeout_sec, transport=transport)
        self._ids = itertools.count(1)
        self._id_lock = threading.Lock()

    @property
    def rpc_url(self) -> str:
        return self._rpc_url

    def close(self) -> None:
        self._client.close()

    def _next_id(self) -> int:
        with self._id_lock:
            return next(self._ids)

    def _post(self, body: Any) -> Any:
        delay = self._min_retry_delay
        last_error: str = ""
        for attempt in range(self._max_retries + 1):
            try:
                resp = self._client.post(self._rpc_url, json=body)
                if resp.status_code in RETRYABLE_STATUS:
                    last_error = f"HTTP {resp.status_code}"
                else:
                    resp.raise_for_status()
                    return resp.json()
            except httpx.HTTPStatusError as e:
                raise ChainQueryError(f"RPC HTTP error {e.response.status_code} from {self._rpc_url}") from e
            except (httpx.TransportError, ValueError) as e:
                last_error = str(e) or type(e).__name__
            if attempt < self._max_retries:
                logger.debug(
                    "rpc_retry",
                    rpc_url=self._rpc_url,
                    attempt=attempt + 1,
                    delay_sec=delay,
                    error=last_error,
                )
                self._sleep(delay)
                delay = min(delay * 2, self._max_retry_delay)
        raise ChainQueryError(f"RPC {self._rpc_url} unreachable: {last_error}")

    def call(self, method: str, params: list[Any]) -> Any:
        """Single JSON-RPC call; returns result or raises ChainQueryError."""
        data = self._post({"jsonrpc": "2.0", "id": self._next_id(), "method": method, "params": params})
        if not isinstance(data, dict):
            raise ChainQueryError(f"{method}: malformed response")
        if data.get("error"):
            raise ChainQueryError(f"{method}: {data['error']}")
        return data.get("result")

    def batch(self, calls: Sequence[tuple[str, list[Any]]]) -> list[Any]:
        """JSON-RPC batch; results returned in request order."""
        if not calls:
            return []
        ids = [self._next_id() for _ in calls]
        body = [
            {"jsonrpc": "2.0", "id": rid, "method": method, "params": params}
            for rid, (method, params) in zip(ids, calls)
        ]
        data = self._post(body)
        if not isinstance(data, list):
            raise ChainQueryError("batch: malformed response")
        by_id = {item.get("id"): item for item in data if isinstance(item, dict)}
        results = []
        for rid, (method, _) in zip(ids, calls):
            item = by_id.get(rid)
            if item is None:
                raise ChainQueryError(f"batch: missing response for {method} id={rid}")
            if item.get("error"):
                raise ChainQueryError(f"{method}: {item['error']}")
            results.append(item.get("result"))
        return results

    def block_number(self) -> int:
        return hex_quantity(self.call("eth_blockNumber", []), "eth_blockNumber")

    def get_blocks(self, numbers: Sequence[int]) -> list[dict[str, Any] | None]:
        """Full blocks (with transaction objects) in the order of numbers."""
        blocks = self.batch([("eth_getBlockByNumber", [hex(n), True]) for n in numbers])
        for n, block in zip(numbers, blocks):
            if block is not None and not isinstance(block, dict):
                raise ChainQueryError(f"eth_getBlockByNumber {n}: malformed block")
        return blocks

    def get_receipt(self, tx_hash: str) -> dict[str, Any] | None:
        receipt = self.call("eth_getTransactionReceipt", [tx_hash])
        if receipt is not None and not isinstance(receipt, dict):
            raise ChainQueryError(f"eth_getTransactionReceipt {tx_hash}: malformed receipt")
        return receipt


class EvmChainQuery:
    """
    Chain query port over each contract's JSON-RPC endpoint.

    Contracts sharing an endpoint share one EvmRpcClient. A match is the most
    recent transaction with from == wallet and to == contract address whose
    receipt did not revert, within the last search_blocks blocks.
    """

    def __init__(
        self,
        contracts: Sequence[ContractDefinition],
        *,
        search_blocks: int,
        blocks_per_request: int = 50,
        timeout_sec: float = DEFAULT_TIMEOUT_SEC,
        max_retries: int = DEFAULT_MAX_RETRIES,
        transport: httpx.BaseTransport | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        if search_blocks < 1:
            raise ValueError("search_blocks must be >= 1")
        if blocks_per_request < 1:
            raise ValueError("blocks_per_request must be >= 1")
        self._contracts = {c.contract_id: c for c in contracts}
        self._search_blocks = search_blocks
        self._blocks_per_request = blocks_per_request
        self._clients: dict[str, EvmRpcClient] = {}
        for c in contracts:
            if c.rpc_endpoint not in self._clients:
                self._clients[c.rpc_endpoint] = EvmRpcClient(
                    c.rpc_endpoint,
                    timeout_sec=timeout_sec,
                    max_retries=max_retries,
                    transport=transport,
                    sleep=sleep,
                )

    def close(self) -> None:
        for client in self._clients.values():
            client.close()

    def _contract(self, contract_id: str) -> ContractDefinition:
        contract = self._contracts.get(contract_id)
        if contract is None:
            raise UnknownContractError(contract_id)
        return contract

    def current_block(self, contract_id: str | None = None) -> int:
        """Latest block on the contract's endpoint (first contract if None)."""
        if contract_id is None:
            if not self._contracts:
                raise ChainQueryError("no contracts configured")
            contract_id = next(iter(self._contracts))
        return self._clients[self._contract(contract_id).rpc_endpoint].block_number()

    def query(self, wallet: str, contract_id: str) -> ChainQueryResult:
        contract = self._contract(contract_id)
        client = self._clients[contract.rpc_endpoint]
        wallet = wallet.lower()
        latest = client.block_number()
        lowest = max(0, latest - self._search_blocks + 1)
        scanned = 0

        start = latest
        while start >= lowest:
            end = max(lowest, start - self._blocks_per_request + 1)
            numbers = list(range(start, end - 1, -1))
            blocks = client.get_blocks(numbers)
            scanned += len(numbers)
            for block in blocks:
                if not block:
                    continue
                transactions = block.get("transactions") or []
                if not isinstance(transactions, list):
                    raise ChainQueryError(f"{contract_id}: malformed transactions list in block")
                # Later index = later in block; scan newest first
                for tx in reversed(transactions):
                    if not isinstance(tx, dict):
                        continue
                    if (tx.get("from") or "").lower() != wallet:
                        continue
                    if (tx.get("to") or "").lower() != contract.address:
                        continue
                    if not isinstance(tx.get("hash"), str):
                        raise ChainQueryError(f"{contract_id}: transaction without hash in block")
                    hex_quantity(tx.get("blockNumber"), "transaction blockNumber")
                    receipt = client.get_receipt(tx["hash"])
                    if receipt is not None and receipt.get("status") == "0x0":
                        logger.debug(
                            "chain_tx_reverted_skipped",
                            wallet_id=short_wallet(wallet),
                            contract_id=contract_id,
                            tx_hash=tx["hash"],
                        )
                        continue
                    result = ChainQueryResult.from_rpc_tx(tx, latest)
                    logger.debug(
                        "chain_tx_found",
                        wallet_id=short_wallet(wallet),
                        contract_id=contract_id,
                        tx_hash=result.tx_hash,
                        block_number=result.block_number,
                        confirmations=result.confirmations,
                        blocks_scanned=scanned,
                    )
                    return result
            start = end - 1

        logger.debug(
            "chain_tx_not_found",
            wallet_id=short_wallet(wallet),
            contract_id=contract_id,
            blocks_scanned=scanned,
            latest_block=latest,
        )
        return ChainQueryResult.not_found()
