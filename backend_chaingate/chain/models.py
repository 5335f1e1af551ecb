"""
Chain query port and its result type.

The port answers one question per (wallet, contract): is there a qualifying
transaction from the wallet to the contract within the recent block window?
"Not found" is a normal result; transport failures raise ChainQueryError.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Protocol


@dataclass(frozen=True)
class ChainQueryResult:
    """Most recent qualifying transaction, or found=False."""

    found: bool
    tx_hash: str | None = None
    block_number: int | None = None
    confirmations: int | None = None

    @classmethod
    def not_found(cls) -> "ChainQueryResult":
        return cls(found=False)

    @classmethod
    def from_rpc_tx(cls, tx: dict[str, Any], latest_block: int) -> "ChainQueryResult":
        """Build from an eth_getBlockByNumber transaction object (hex quantities)."""
        block_number = int(tx["blockNumber"], 16)
        return cls(
            found=True,
            tx_hash=tx["hash"],
            block_number=block_number,
            confirmations=max(0, latest_block - block_number + 1),
        )


class ChainQueryPort(Protocol):
    """Black-box chain lookup; must be safe to call from concurrent threads."""

    def query(self, wallet: str, contract_id: str) -> ChainQueryResult:
        ...

    def current_block(self, contract_id: str | None = None) -> int:
        ...
