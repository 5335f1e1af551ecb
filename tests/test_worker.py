"""
Tests for the per-user verification routine and the shared grant path:
record-then-grant ordering, one grant per user per cycle, platform failures
and races with a concurrent verification.
"""

from __future__ import annotations

from backend_chaingate.agent_worker.grants import apply_match
from backend_chaingate.agent_worker.worker import verify_pending_wallet
from backend_chaingate.core.exceptions import SinkError, StoreWriteError
from backend_chaingate.database import PendingWallet, RecordResult, VerificationStore
from backend_chaingate.matching import MatchingEngine, MatchStatus
from backend_chaingate.notifications import GrantResult

WALLET = "0x" + "a1" * 20
IDENTITY = "user-1"


def _pending(store) -> PendingWallet:
    store.link_wallet(IDENTITY, WALLET)
    return store.get_all_pending_wallets(1)[0]


def test_first_match_is_recorded_granted_and_announced(engine, store, sink, settings, chain):
    pending = _pending(store)
    chain.set_tx(WALLET, "contract1", confirmations=4)
    result = verify_pending_wallet(pending, engine, store, sink, settings)
    assert result.newly_verified is True
    assert result.error is None
    assert store.is_verified(WALLET, "contract1")
    assert sink.grants == [(IDENTITY, "role-1")]
    assert [d[0] for d in sink.direct] == [IDENTITY]
    assert [a[0] for a in sink.announcements] == ["chan-main"]


def test_stops_after_first_new_verification(engine, store, sink, settings, chain):
    """Remaining contracts wait for a later cycle."""
    pending = _pending(store)
    chain.set_tx(WALLET, "contract1", confirmations=4)
    chain.set_tx(WALLET, "contract3", confirmations=4)
    result = verify_pending_wallet(pending, engine, store, sink, settings)
    assert result.newly_verified
    assert [o.contract_id for o in result.outcomes] == ["contract1"]
    assert store.is_verified(WALLET, "contract3") is False

    pending = store.get_all_pending_wallets(1)[0]
    assert pending.pending_contract_ids == ("contract2", "contract3")
    verify_pending_wallet(pending, engine, store, sink, settings)
    assert store.is_verified(WALLET, "contract3")
    assert sink.grants == [(IDENTITY, "role-1"), (IDENTITY, "role-3")]
    assert sink.announcements[-1][0] == "chan-gamma"


def test_no_match_anywhere_is_not_an_error(engine, store, sink, settings):
    result = verify_pending_wallet(_pending(store), engine, store, sink, settings)
    assert result.newly_verified is False
    assert result.error_count == 0
    assert [o.status for o in result.outcomes] == [MatchStatus.NO_MATCH] * 3
    assert sink.grants == []


def test_forbidden_role_still_verified(engine, store, sink, settings, chain):
    """A role the bot cannot assign does not roll back the stored verification."""
    sink.grant_result = GrantResult.FORBIDDEN
    pending = _pending(store)
    chain.set_tx(WALLET, "contract1")
    result = verify_pending_wallet(pending, engine, store, sink, settings)
    assert result.newly_verified
    assert result.grant.role is GrantResult.FORBIDDEN
    assert store.is_verified(WALLET, "contract1")


def test_sink_error_is_contained(engine, store, sink, settings, chain):
    sink.grant_error = SinkError("discord 502")
    pending = _pending(store)
    chain.set_tx(WALLET, "contract1")
    result = verify_pending_wallet(pending, engine, store, sink, settings)
    assert result.newly_verified
    assert "502" in result.grant.role_error
    assert store.is_verified(WALLET, "contract1")
    assert len(sink.announcements) == 1


def test_chain_crash_on_one_contract_does_not_block_the_next(engine, store, sink, settings, chain):
    pending = _pending(store)
    chain.set_tx(WALLET, "contract2", confirmations=6)

    def crash_on_first(wallet: str, contract_id: str) -> None:
        if contract_id == "contract1":
            raise RuntimeError("node returned garbage")

    chain.on_query = crash_on_first
    result = verify_pending_wallet(pending, engine, store, sink, settings)
    assert [o.status for o in result.outcomes] == [MatchStatus.ERROR, MatchStatus.MATCHED]
    assert result.newly_verified
    assert result.error_count == 1
    assert store.is_verified(WALLET, "contract2")
    assert sink.grants == [(IDENTITY, "role-2")]


def test_unexpected_grant_failure_keeps_verification_and_notifications(engine, store, sink, settings, chain):
    sink.grant_error = RuntimeError("client has been closed")
    pending = _pending(store)
    chain.set_tx(WALLET, "contract1")
    result = verify_pending_wallet(pending, engine, store, sink, settings)
    assert result.newly_verified
    assert result.error is None
    assert result.grant.role is None
    assert "closed" in result.grant.role_error
    assert store.is_verified(WALLET, "contract1")
    assert len(sink.direct) == 1
    assert len(sink.announcements) == 1


def test_dm_failure_does_not_stop_announcement(engine, store, sink, settings, chain):
    sink.direct_error = RuntimeError("dm closed")
    pending = _pending(store)
    chain.set_tx(WALLET, "contract1")
    result = verify_pending_wallet(pending, engine, store, sink, settings)
    assert result.newly_verified
    assert result.grant.role is GrantResult.OK
    assert result.grant.dm_sent is False
    assert result.grant.dm_error == "dm closed"
    assert result.grant.announced is True


def test_announce_failure_is_contained(engine, store, sink, settings, chain):
    sink.announce_error = RuntimeError("channel gone")
    pending = _pending(store)
    chain.set_tx(WALLET, "contract1")
    result = verify_pending_wallet(pending, engine, store, sink, settings)
    assert result.newly_verified
    assert result.grant.announced is False
    assert result.grant.announce_error == "channel gone"
    assert result.grant.dm_sent is True


def test_dm_disabled_by_feature_flag(make_settings, store, sink, chain):
    settings = make_settings(dm_notifications=False)
    engine = MatchingEngine(settings, store, chain)
    pending = _pending(store)
    chain.set_tx(WALLET, "contract1")
    verify_pending_wallet(pending, engine, store, sink, settings)
    assert sink.direct == []
    assert len(sink.grants) == 1


def test_race_with_concurrent_verification_skips_side_effects(engine, store, sink, settings, chain):
    """Another path records contract1 between the chain check and the write."""
    pending = _pending(store)
    chain.set_tx(WALLET, "contract1")
    chain.set_tx(WALLET, "contract3")

    def record_elsewhere(wallet: str, contract_id: str) -> None:
        if contract_id == "contract1":
            store.record_verification(wallet, contract_id, "0x" + "ff" * 32, 1)

    chain.on_query = record_elsewhere
    result = verify_pending_wallet(pending, engine, store, sink, settings)
    # contract1 lost the race; the routine moves on and verifies contract3
    assert sink.grants == [(IDENTITY, "role-3")]
    assert result.grant.contract_id == "contract3"
    assert store.get_verifications(WALLET)["contract1"].tx_hash == "0x" + "ff" * 32


class FailingWriteStore(VerificationStore):
    def record_verification(self, wallet, contract_id, tx_hash, block_number):
        raise StoreWriteError("disk full")


def test_store_write_failure_abandons_wallet(store, sink, settings, chain):
    failing = FailingWriteStore(store._backend, store.contract_ids)
    engine = MatchingEngine(settings, failing, chain)
    pending = _pending(store)
    chain.set_tx(WALLET, "contract1")
    chain.set_tx(WALLET, "contract3")
    result = verify_pending_wallet(pending, engine, failing, sink, settings)
    assert result.error == "disk full"
    assert result.error_count == 1
    assert result.newly_verified is False
    assert sink.grants == []
    assert [o.contract_id for o in result.outcomes] == ["contract1"]
    assert store.is_verified(WALLET, "contract1") is False


def test_apply_match_already_verified_has_no_side_effects(engine, store, sink, settings, chain):
    chain.set_tx(WALLET, "contract1")
    outcome = engine.verify_contract(WALLET, "contract1")
    store.record_verification(WALLET, "contract1", outcome.tx_hash, outcome.block_number)
    report = apply_match(IDENTITY, WALLET, settings.get_contract("contract1"), outcome, store, sink, settings)
    assert report.record is RecordResult.ALREADY_VERIFIED
    assert report.newly_verified is False
    assert sink.grants == [] and sink.direct == [] and sink.announcements == []
