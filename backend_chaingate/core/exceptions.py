"""
Application-level exceptions.

Configuration errors are fatal at startup. Store, chain and sink errors are
recoverable: the worker contains them per contract or per user and retries on
the next cycle. The remaining classes are user-facing command errors.
"""

from __future__ import annotations


class ChainGateError(Exception):
    """Base class for all ChainGate errors."""


class ConfigError(ChainGateError):
    """Missing or invalid settings. Raised at startup, never mid-cycle."""


class UnknownContractError(ConfigError):
    """A contract id that is not part of the configured contract list."""

    def __init__(self, contract_id: str) -> None:
        super().__init__(f"Unknown contract id: {contract_id}")
        self.contract_id = contract_id


class StoreError(ChainGateError):
    """Verification store failure."""


class StoreWriteError(StoreError):
    """A write did not persist; nothing was marked verified."""


class ChainQueryError(ChainGateError):
    """RPC endpoint unreachable or returned an error."""


class SinkError(ChainGateError):
    """Role/notification platform returned an unexpected error."""


class InvalidWalletError(ValueError, ChainGateError):
    """Wallet string is not a 0x-prefixed 20-byte hex address."""


class WalletAlreadyLinkedError(ChainGateError):
    """Identity already linked to another wallet, or wallet claimed by another identity."""


class IdentityNotLinkedError(ChainGateError):
    """Identity has no linked wallet."""

    def __init__(self, identity_id: str) -> None:
        super().__init__(f"Identity {identity_id} has not linked a wallet")
        self.identity_id = identity_id


class ContractNotFoundError(ChainGateError):
    """Command referenced a contract that matches no id or display name."""

    def __init__(self, query: str, available: list[str]) -> None:
        super().__init__(
            f'Contract "{query}" not found. Available contracts: {", ".join(available)}'
        )
        self.query = query
        self.available = available


class CooldownActiveError(ChainGateError):
    """Command invoked again before its cooldown elapsed."""

    def __init__(self, command: str, retry_after: float) -> None:
        super().__init__(f"{command} is on cooldown; retry in {retry_after:.0f}s")
        self.command = command
        self.retry_after = retry_after
