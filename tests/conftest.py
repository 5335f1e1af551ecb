"""
Pytest fixtures for ChainGate tests. Uses a temporary SQLite store plus
in-memory chain and sink fakes so no network is touched.
"""

from __future__ import annotations

import threading
import time
from typing import Callable

import pytest

from backend_chaingate.chain.models import ChainQueryResult
from backend_chaingate.config.settings import ContractDefinition, Settings
from backend_chaingate.core.exceptions import ChainQueryError
from backend_chaingate.database import get_store
from backend_chaingate.matching import MatchingEngine
from backend_chaingate.notifications import GrantResult, Notification, RoleNotificationSink

RPC_URL = "http://rpc.test"
CONTRACT_1 = "0x" + "c1" * 20
CONTRACT_2 = "0x" + "c2" * 20
CONTRACT_3 = "0x" + "c3" * 20


class FakeChain:
    """
    Chain query port backed by a dict of (wallet, contract_id) → result.

    Tracks every call and the peak number of concurrent queries. When gate is
    set, queries block until it is released (started fires on the first call).
    """

    def __init__(self, latest_block: int = 1000) -> None:
        self.latest_block = latest_block
        self.results: dict[tuple[str, str], ChainQueryResult | Exception] = {}
        self.calls: list[tuple[str, str]] = []
        self.delay_sec = 0.0
        self.offline = False
        self.gate: threading.Event | None = None
        self.started = threading.Event()
        self.on_query: Callable[[str, str], None] | None = None
        self.in_flight = 0
        self.max_in_flight = 0
        self._lock = threading.Lock()

    def set_tx(self, wallet: str, contract_id: str, confirmations: int = 5, tx_hash: str | None = None) -> None:
        block_number = self.latest_block - confirmations + 1
        self.results[(wallet.lower(), contract_id)] = ChainQueryResult(
            found=True,
            tx_hash=tx_hash or f"0x{len(self.results) + 1:064x}",
            block_number=block_number,
            confirmations=confirmations,
        )

    def set_error(self, wallet: str, contract_id: str, message: str = "rpc down") -> None:
        self.results[(wallet.lower(), contract_id)] = ChainQueryError(message)

    def query(self, wallet: str, contract_id: str) -> ChainQueryResult:
        with self._lock:
            self.calls.append((wallet, contract_id))
            self.in_flight += 1
            self.max_in_flight = max(self.max_in_flight, self.in_flight)
        self.started.set()
        try:
            if self.gate is not None:
                self.gate.wait(timeout=5.0)
            if self.delay_sec:
                time.sleep(self.delay_sec)
            if self.on_query is not None:
                self.on_query(wallet, contract_id)
            result = self.results.get((wallet.lower(), contract_id), ChainQueryResult.not_found())
            if isinstance(result, Exception):
                raise result
            return result
        finally:
            with self._lock:
                self.in_flight -= 1

    def current_block(self, contract_id: str | None = None) -> int:
        if self.offline:
            raise ChainQueryError("rpc offline")
        return self.latest_block


class FakeSink(RoleNotificationSink):
    """Records role grants, DMs and announcements."""

    def __init__(self) -> None:
        self.grant_result = GrantResult.OK
        self.grant_error: Exception | None = None
        self.direct_error: Exception | None = None
        self.announce_error: Exception | None = None
        self.grants: list[tuple[str, str]] = []
        self.direct: list[tuple[str, Notification]] = []
        self.announcements: list[tuple[str, Notification]] = []
        self._lock = threading.Lock()

    def grant_role(self, identity_id: str, role_id: str) -> GrantResult:
        with self._lock:
            self.grants.append((identity_id, role_id))
        if self.grant_error is not None:
            raise self.grant_error
        return self.grant_result

    def notify_direct(self, identity_id: str, payload: Notification) -> bool:
        with self._lock:
            self.direct.append((identity_id, payload))
        if self.direct_error is not None:
            raise self.direct_error
        return True

    def announce(self, channel_id: str, payload: Notification) -> bool:
        with self._lock:
            self.announcements.append((channel_id, payload))
        if self.announce_error is not None:
            raise self.announce_error
        return True


@pytest.fixture
def make_settings(tmp_path):
    """
    Factory for Settings with three contracts on one RPC endpoint:
    contract1 "Alpha", contract2 "Beta" (3 confirmations), contract3 "Gamma"
    (own announcement channel). Cooldowns, delays and backups are off.
    """

    def _make(contracts=None, **overrides) -> Settings:
        if contracts is None:
            contracts = (
                ContractDefinition("contract1", "Alpha", CONTRACT_1, "role-1", RPC_URL),
                ContractDefinition("contract2", "Beta", CONTRACT_2, "role-2", RPC_URL, min_confirmations=3),
                ContractDefinition(
                    "contract3", "Gamma", CONTRACT_3, "role-3", RPC_URL, verification_channel_id="chan-gamma"
                ),
            )
        values = dict(
            discord_token="test-token",
            discord_guild_id="guild-1",
            contracts=tuple(contracts),
            verification_channel_id="chan-main",
            auto_verify_enabled=False,
            delay_between_chunks_sec=0.0,
            verify_cooldown_sec=0.0,
            link_cooldown_sec=0.0,
            backup_enabled=False,
            db_path=tmp_path / "chaingate.db",
        )
        values.update(overrides)
        return Settings(**values)

    return _make


@pytest.fixture
def settings(make_settings):
    return make_settings()


@pytest.fixture
def store(settings):
    return get_store(settings.db_path, settings.contract_ids)


@pytest.fixture
def chain():
    return FakeChain()


@pytest.fixture
def sink():
    return FakeSink()


@pytest.fixture
def engine(settings, store, chain):
    return MatchingEngine(settings, store, chain)
