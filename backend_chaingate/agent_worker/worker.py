"""
Per-user verification routine for one auto-verify task.

Walks the wallet's pending contracts in configured order and stops at the first
match that produced a new verification: one grant per user per cycle, remaining
contracts are picked up by later cycles. No match anywhere is the common case
and not an error.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from backend_chaingate.agent_worker.grants import GrantReport, apply_match
from backend_chaingate.chaingate_logging import bind_wallet
from backend_chaingate.config.settings import Settings
from backend_chaingate.core.exceptions import StoreWriteError
from backend_chaingate.database import PendingWallet, VerificationStore
from backend_chaingate.matching import MatchingEngine, MatchOutcome, MatchStatus
from backend_chaingate.notifications import RoleNotificationSink


@dataclass
class UserVerificationResult:
    wallet: str
    identity_id: str
    outcomes: list[MatchOutcome] = field(default_factory=list)
    grant: GrantReport | None = None
    error: str | None = None

    @property
    def newly_verified(self) -> bool:
        return self.grant is not None and self.grant.newly_verified

    @property
    def error_count(self) -> int:
        errors = sum(1 for o in self.outcomes if o.status is MatchStatus.ERROR)
        return errors + (1 if self.error else 0)


def verify_pending_wallet(
    pending: PendingWallet,
    engine: MatchingEngine,
    store: VerificationStore,
    sink: RoleNotificationSink,
    settings: Settings,
) -> UserVerificationResult:
    """
    Evaluate one pending wallet. A failed store write abandons the wallet for
    this cycle; it stays pending and is retried next cycle.
    """
    log = bind_wallet(pending.wallet, identity_id=pending.identity_id)
    result = UserVerificationResult(wallet=pending.wallet, identity_id=pending.identity_id)
    for contract_id in pending.pending_contract_ids:
        outcome = engine.verify_contract(pending.wallet, contract_id)
        result.outcomes.append(outcome)
        if not outcome.matched:
            continue
        try:
            grant = apply_match(
                pending.identity_id,
                pending.wallet,
                settings.get_contract(contract_id),
                outcome,
                store,
                sink,
                settings,
                notify_direct=settings.dm_notifications,
            )
        except StoreWriteError as e:
            result.error = str(e)
            log.warning("auto_verify_store_write_failed", contract_id=contract_id, error=str(e))
            return result
        result.grant = grant
        if grant.newly_verified:
            log.info("auto_verify_user_verified", contract_id=contract_id)
            return result
    return result
