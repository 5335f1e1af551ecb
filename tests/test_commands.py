"""
Tests for the command path: verify now with per-contract reasons, status,
stats, cooldowns and announcement aggregation.
"""

from __future__ import annotations

import pytest

from backend_chaingate.api_server.commands import CommandService, Cooldowns
from backend_chaingate.core.exceptions import (
    ContractNotFoundError,
    CooldownActiveError,
    IdentityNotLinkedError,
    WalletAlreadyLinkedError,
)
from backend_chaingate.matching import MatchingEngine

WALLET = "0x" + "a1" * 20
IDENTITY = "user-1"


class FakeClock:
    def __init__(self, t: float = 100.0) -> None:
        self.t = t

    def __call__(self) -> float:
        return self.t


@pytest.fixture
def commands(settings, store, engine, sink, chain):
    return CommandService(settings, store, engine, sink, chain)


def test_verify_now_requires_link(commands):
    with pytest.raises(IdentityNotLinkedError):
        commands.verify_now(IDENTITY)


def test_verify_now_reports_reason_per_contract(commands, store, chain, sink):
    store.link_wallet(IDENTITY, WALLET)
    chain.set_tx(WALLET, "contract1", confirmations=4)
    chain.set_tx(WALLET, "contract2", confirmations=1)
    report = commands.verify_now(IDENTITY)

    by_id = {r.contract_id: r for r in report.results}
    assert by_id["contract1"].status == "verified"
    assert by_id["contract1"].role_granted is True
    assert by_id["contract2"].status == "insufficient_confirmations"
    assert "1/3 confirmations" in by_id["contract2"].reason
    assert by_id["contract3"].status == "no_match"
    assert "10000 blocks" in by_id["contract3"].reason
    assert report.newly_verified == ["contract1"]
    assert sink.grants == [(IDENTITY, "role-1")]
    # No DM on the command path
    assert sink.direct == []


def test_verify_now_verifies_every_matching_contract_with_one_announcement(commands, store, chain, sink):
    """Unlike the worker, the command records all matches; announcements grouped per channel."""
    store.link_wallet(IDENTITY, WALLET)
    chain.set_tx(WALLET, "contract1", confirmations=4)
    chain.set_tx(WALLET, "contract2", confirmations=4)
    chain.set_tx(WALLET, "contract3", confirmations=4)
    report = commands.verify_now(IDENTITY)
    assert report.newly_verified == ["contract1", "contract2", "contract3"]
    channels = sorted(a[0] for a in sink.announcements)
    assert channels == ["chan-gamma", "chan-main"]
    main = next(p for c, p in sink.announcements if c == "chan-main")
    assert "Alpha" in main.fields[0][1] and "Beta" in main.fields[0][1]


def test_verify_now_already_verified(commands, store, chain, sink):
    store.link_wallet(IDENTITY, WALLET)
    chain.set_tx(WALLET, "contract1")
    commands.verify_now(IDENTITY, "contract1")
    report = commands.verify_now(IDENTITY, "Alpha")
    assert [r.status for r in report.results] == ["already_verified"]
    assert report.results[0].reason == "Already verified"
    assert len(sink.grants) == 1


def test_verify_now_chain_error_reason(commands, store, chain):
    store.link_wallet(IDENTITY, WALLET)
    chain.set_error(WALLET, "contract1")
    report = commands.verify_now(IDENTITY, "contract1")
    assert report.results[0].status == "error"
    assert "try again later" in report.results[0].reason


def test_verify_now_unknown_contract(commands, store):
    store.link_wallet(IDENTITY, WALLET)
    with pytest.raises(ContractNotFoundError) as info:
        commands.verify_now(IDENTITY, "delta")
    assert info.value.available == ["Alpha", "Beta", "Gamma"]


def test_verify_now_role_not_assigned(commands, store, chain, sink):
    from backend_chaingate.notifications import GrantResult

    sink.grant_result = GrantResult.NOT_FOUND
    store.link_wallet(IDENTITY, WALLET)
    chain.set_tx(WALLET, "contract1")
    report = commands.verify_now(IDENTITY, "contract1")
    assert report.results[0].status == "verified"
    assert report.results[0].role_granted is False
    assert "could not be assigned" in report.results[0].reason


def test_verify_now_survives_sink_crashes(commands, store, chain, sink):
    sink.grant_error = RuntimeError("client has been closed")
    sink.announce_error = RuntimeError("client has been closed")
    store.link_wallet(IDENTITY, WALLET)
    chain.set_tx(WALLET, "contract1")
    report = commands.verify_now(IDENTITY, "Alpha")
    assert report.newly_verified == ["contract1"]
    assert report.results[0].role_granted is False
    assert store.is_verified(WALLET, "contract1")
    assert [a[0] for a in sink.announcements] == ["chan-main"]


def test_status(commands, store):
    store.link_wallet(IDENTITY, WALLET)
    store.record_verification(WALLET, "contract2", "0x" + "02" * 32, 77)
    status = commands.status(IDENTITY)
    assert status.wallet == WALLET
    assert status.verified_count == 1
    assert status.total_contracts == 3
    assert status.percentage == 33
    c2 = next(c for c in status.contracts if c.contract_id == "contract2")
    assert c2.verified and c2.tx_hash == "0x" + "02" * 32
    assert status.to_dict()["contracts"][0]["name"] == "Alpha"
    with pytest.raises(IdentityNotLinkedError):
        commands.status("nobody")


def test_stats_reports_chain_connection(commands, store, chain):
    store.link_wallet(IDENTITY, WALLET)
    stats = commands.stats()
    assert stats["total_users"] == 1
    assert stats["pending_users"] == 1
    assert stats["chain"]["connected"] is True
    assert stats["chain"]["block_number"] == chain.latest_block
    assert stats["auto_verify"] is None
    assert [c["name"] for c in stats["contracts"]] == ["Alpha", "Beta", "Gamma"]

    chain.offline = True
    stats = commands.stats()
    assert stats["chain"]["connected"] is False
    assert stats["chain"]["block_number"] is None


def test_link_wallet_through_commands(commands):
    link, created = commands.link_wallet(IDENTITY, WALLET)
    assert created and link.wallet == WALLET
    with pytest.raises(WalletAlreadyLinkedError):
        commands.link_wallet(IDENTITY, "0x" + "b2" * 20)


def test_cooldowns(make_settings, store, sink, chain):
    settings = make_settings(verify_cooldown_sec=60, link_cooldown_sec=30)
    clock = FakeClock()
    commands = CommandService(
        settings,
        store,
        MatchingEngine(settings, store, chain),
        sink,
        chain,
        cooldowns=Cooldowns(clock),
    )
    commands.link_wallet(IDENTITY, WALLET)
    commands.verify_now(IDENTITY)
    clock.t += 10
    with pytest.raises(CooldownActiveError) as info:
        commands.verify_now(IDENTITY)
    assert info.value.retry_after == pytest.approx(50)
    # Cooldowns are per identity
    store.link_wallet("user-2", "0x" + "b2" * 20)
    commands.verify_now("user-2")
    clock.t += 50
    commands.verify_now(IDENTITY)
