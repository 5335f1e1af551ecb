"""
Application settings and contract definitions.

Responsibilities:
- Load configuration from environment variables and .env files.
- Validate required settings and provide defaults for optional ones.
- Expose an immutable Settings object; it is built once at startup and passed
  explicitly to the store, engine, worker and API.

Contracts are read from CONTRACT_{n}_ADDRESS / _ROLE_ID / _RPC_URL for n = 1..10;
a slot is loaded only when all three are set.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Mapping

from backend_chaingate.config.env import (
    current_env,
    env_bool,
    env_float,
    env_int,
    env_str,
)
from backend_chaingate.core.exceptions import ConfigError, UnknownContractError
from backend_chaingate.utils.wallet_utils import is_valid_wallet

MAX_CONTRACTS = 10

DEFAULT_CHAIN_ID = "685685"
DEFAULT_CHAIN_NAME = "Gensyn Testnet"
DEFAULT_MIN_CONFIRMATIONS = 1
DEFAULT_SEARCH_BLOCKS = 10_000
DEFAULT_INTERVAL_MINUTES = 5.0
DEFAULT_MAX_BATCH_SIZE = 10
DEFAULT_MAX_CONCURRENT = 10
DEFAULT_DELAY_BETWEEN_CHECKS_MS = 100
DEFAULT_RPC_TIMEOUT_SEC = 15.0
DEFAULT_RPC_BLOCKS_PER_REQUEST = 50
DEFAULT_DB_PATH = "data/chaingate.db"
DEFAULT_BACKUP_INTERVAL_HOURS = 24.0
DEFAULT_VERIFY_COOLDOWN_SEC = 60.0
DEFAULT_LINK_COOLDOWN_SEC = 30.0


@dataclass(frozen=True)
class ContractDefinition:
    """One configured contract and the role it unlocks."""

    contract_id: str
    display_name: str
    address: str
    """Lowercase 0x address."""
    role_id: str
    rpc_endpoint: str
    min_confirmations: int = DEFAULT_MIN_CONFIRMATIONS
    verification_channel_id: str | None = None


@dataclass(frozen=True)
class Settings:
    """Immutable runtime configuration."""

    discord_token: str
    discord_guild_id: str
    contracts: tuple[ContractDefinition, ...]
    verification_channel_id: str | None = None
    chain_id: str = DEFAULT_CHAIN_ID
    chain_name: str = DEFAULT_CHAIN_NAME
    search_blocks: int = DEFAULT_SEARCH_BLOCKS
    auto_verify_enabled: bool = True
    interval_sec: float = DEFAULT_INTERVAL_MINUTES * 60
    max_batch_size: int = DEFAULT_MAX_BATCH_SIZE
    max_concurrent: int = DEFAULT_MAX_CONCURRENT
    delay_between_chunks_sec: float = DEFAULT_DELAY_BETWEEN_CHECKS_MS / 1000
    rpc_timeout_sec: float = DEFAULT_RPC_TIMEOUT_SEC
    rpc_blocks_per_request: int = DEFAULT_RPC_BLOCKS_PER_REQUEST
    db_path: Path = field(default_factory=lambda: Path(DEFAULT_DB_PATH))
    backup_enabled: bool = True
    backup_interval_sec: float = DEFAULT_BACKUP_INTERVAL_HOURS * 3600
    verify_cooldown_sec: float = DEFAULT_VERIFY_COOLDOWN_SEC
    link_cooldown_sec: float = DEFAULT_LINK_COOLDOWN_SEC
    dm_notifications: bool = True
    api_host: str = "0.0.0.0"
    api_port: int = 8000

    def __post_init__(self) -> None:
        if not self.contracts:
            raise ConfigError(
                "At least one contract must be configured (ADDRESS + ROLE_ID + RPC_URL)"
            )
        if len(self.contracts) > MAX_CONTRACTS:
            raise ConfigError(f"At most {MAX_CONTRACTS} contracts are supported")
        ids = [c.contract_id for c in self.contracts]
        if len(set(ids)) != len(ids):
            raise ConfigError(f"Duplicate contract ids: {ids}")
        for name in ("search_blocks", "max_batch_size", "max_concurrent", "rpc_blocks_per_request"):
            if getattr(self, name) < 1:
                raise ConfigError(f"{name} must be >= 1")
        if self.interval_sec <= 0:
            raise ConfigError("interval_sec must be positive")
        if self.delay_between_chunks_sec < 0:
            raise ConfigError("delay_between_chunks_sec must be >= 0")

    @property
    def contract_ids(self) -> tuple[str, ...]:
        return tuple(c.contract_id for c in self.contracts)

    def get_contract(self, contract_id: str) -> ContractDefinition:
        """Return the contract by id; UnknownContractError if not configured."""
        for c in self.contracts:
            if c.contract_id == contract_id:
                return c
        raise UnknownContractError(contract_id)

    def get_contract_by_address(self, address: str | None) -> ContractDefinition | None:
        if not address:
            return None
        address = address.lower()
        return next((c for c in self.contracts if c.address == address), None)

    def get_contract_by_role(self, role_id: str) -> ContractDefinition | None:
        return next((c for c in self.contracts if c.role_id == role_id), None)

    def find_contract(self, query: str) -> ContractDefinition | None:
        """Match by id or case-insensitive display name (command input)."""
        q = query.strip()
        for c in self.contracts:
            if c.contract_id == q or c.display_name.lower() == q.lower():
                return c
        return None

    def channel_for(self, contract: ContractDefinition) -> str | None:
        """Announcement channel: contract-specific, else global."""
        return contract.verification_channel_id or self.verification_channel_id


def load_contracts(env: Mapping[str, str], default_min_confirmations: int) -> tuple[ContractDefinition, ...]:
    """Read CONTRACT_{n}_* slots; partially configured slots are skipped."""
    contracts: list[ContractDefinition] = []
    for i in range(1, MAX_CONTRACTS + 1):
        address = env_str(env, f"CONTRACT_{i}_ADDRESS")
        role_id = env_str(env, f"CONTRACT_{i}_ROLE_ID")
        rpc_url = env_str(env, f"CONTRACT_{i}_RPC_URL")
        if not (address and role_id and rpc_url):
            continue
        if not is_valid_wallet(address):
            raise ConfigError(f"CONTRACT_{i}_ADDRESS is not a valid address: {address!r}")
        min_conf = env_int(env, f"CONTRACT_{i}_MIN_CONFIRMATIONS", default_min_confirmations)
        if min_conf < 0:
            raise ConfigError(f"CONTRACT_{i}_MIN_CONFIRMATIONS must be >= 0")
        contracts.append(
            ContractDefinition(
                contract_id=f"contract{i}",
                display_name=env_str(env, f"CONTRACT_{i}_NAME", f"Contract {i}") or f"Contract {i}",
                address=address.lower(),
                role_id=role_id,
                rpc_endpoint=rpc_url,
                min_confirmations=min_conf,
                verification_channel_id=env_str(env, f"CONTRACT_{i}_CHANNEL_ID"),
            )
        )
    return tuple(contracts)


def load_settings(env: Mapping[str, str] | None = None) -> Settings:
    """
    Build Settings from env (defaults to os.environ after loading .env).

    Raises ConfigError for missing DISCORD_TOKEN / DISCORD_GUILD_ID, no contracts,
    or malformed values.
    """
    env = current_env() if env is None else env
    token = env_str(env, "DISCORD_TOKEN")
    if not token:
        raise ConfigError("Missing DISCORD_TOKEN in environment variables")
    guild_id = env_str(env, "DISCORD_GUILD_ID")
    if not guild_id:
        raise ConfigError("Missing DISCORD_GUILD_ID in environment variables")

    min_conf = env_int(env, "MIN_CONFIRMATIONS", DEFAULT_MIN_CONFIRMATIONS)
    return Settings(
        discord_token=token,
        discord_guild_id=guild_id,
        contracts=load_contracts(env, min_conf),
        verification_channel_id=env_str(env, "VERIFICATION_CHANNEL_ID"),
        chain_id=env_str(env, "CHAIN_ID", DEFAULT_CHAIN_ID) or DEFAULT_CHAIN_ID,
        chain_name=env_str(env, "CHAIN_NAME", DEFAULT_CHAIN_NAME) or DEFAULT_CHAIN_NAME,
        search_blocks=env_int(env, "SEARCH_BLOCKS", DEFAULT_SEARCH_BLOCKS),
        auto_verify_enabled=env_bool(env, "ENABLE_AUTO_VERIFY", True),
        interval_sec=env_float(env, "AUTO_VERIFY_INTERVAL", DEFAULT_INTERVAL_MINUTES) * 60,
        max_batch_size=env_int(env, "AUTO_VERIFY_BATCH_SIZE", DEFAULT_MAX_BATCH_SIZE),
        max_concurrent=env_int(env, "MAX_CONCURRENT_VERIFICATIONS", DEFAULT_MAX_CONCURRENT),
        delay_between_chunks_sec=env_float(env, "DELAY_BETWEEN_CHECKS", DEFAULT_DELAY_BETWEEN_CHECKS_MS) / 1000,
        rpc_timeout_sec=env_float(env, "RPC_TIMEOUT_SEC", DEFAULT_RPC_TIMEOUT_SEC),
        rpc_blocks_per_request=env_int(env, "RPC_BLOCKS_PER_REQUEST", DEFAULT_RPC_BLOCKS_PER_REQUEST),
        db_path=Path(env_str(env, "DB_PATH", DEFAULT_DB_PATH) or DEFAULT_DB_PATH),
        backup_enabled=env_bool(env, "DB_BACKUP_ENABLED", True),
        backup_interval_sec=env_float(env, "DB_BACKUP_INTERVAL", DEFAULT_BACKUP_INTERVAL_HOURS) * 3600,
        verify_cooldown_sec=env_float(env, "VERIFY_COOLDOWN", DEFAULT_VERIFY_COOLDOWN_SEC),
        link_cooldown_sec=env_float(env, "LINK_COOLDOWN", DEFAULT_LINK_COOLDOWN_SEC),
        dm_notifications=env_bool(env, "FEATURE_DM_NOTIFICATIONS", True),
        api_host=env_str(env, "API_HOST", "0.0.0.0") or "0.0.0.0",
        api_port=env_int(env, "API_PORT", 8000),
    )
