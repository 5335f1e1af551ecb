"""
Command path: link, verify now, status and stats for one identity.

verify_now reuses the matching engine and the same record-then-grant path as the
auto-verify worker, so a race between the two is settled by the store's atomic
write and never grants a role twice. Each contract gets its own human-readable
reason instead of a generic failure.
"""

from __future__ import annotations

import threading
import time
from collections import defaultdict
from dataclasses import asdict, dataclass, field
from typing import Any, Callable

from backend_chaingate.agent_worker.grants import apply_match
from backend_chaingate.agent_worker.runtime import AutoVerifyWorker
from backend_chaingate.chain.models import ChainQueryPort
from backend_chaingate.chaingate_logging import get_logger
from backend_chaingate.config.settings import ContractDefinition, Settings
from backend_chaingate.core.exceptions import (
    ChainQueryError,
    ContractNotFoundError,
    CooldownActiveError,
    IdentityNotLinkedError,
    StoreWriteError,
)
from backend_chaingate.database import IdentityLink, VerificationStore
from backend_chaingate.matching import MatchingEngine, MatchOutcome, MatchStatus
from backend_chaingate.notifications import (
    GrantResult,
    RoleNotificationSink,
    verification_announcement,
)

logger = get_logger(__name__)

STATUS_VERIFIED = "verified"


@dataclass
class ContractVerification:
    contract_id: str
    name: str
    status: str
    reason: str
    tx_hash: str | None = None
    role_granted: bool | None = None


@dataclass
class VerifyReport:
    identity_id: str
    wallet: str
    results: list[ContractVerification] = field(default_factory=list)

    @property
    def newly_verified(self) -> list[str]:
        return [r.contract_id for r in self.results if r.status == STATUS_VERIFIED]

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["newly_verified"] = self.newly_verified
        return data


@dataclass
class ContractStatus:
    contract_id: str
    name: str
    verified: bool
    tx_hash: str | None = None
    confirmed_at: int | None = None


@dataclass
class StatusReport:
    identity_id: str
    wallet: str
    linked_at: int
    verified_count: int
    total_contracts: int
    percentage: int
    contracts: list[ContractStatus] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


class Cooldowns:
    """Per (command, identity) cooldown; in-process only."""

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        self._last: dict[tuple[str, str], float] = {}
        self._lock = threading.Lock()

    def hit(self, command: str, identity_id: str, seconds: float) -> None:
        """Record an invocation; CooldownActiveError if the previous one is too recent."""
        if seconds <= 0:
            return
        key = (command, identity_id)
        now = self._clock()
        with self._lock:
            last = self._last.get(key)
            if last is not None and now - last < seconds:
                raise CooldownActiveError(command, seconds - (now - last))
            self._last[key] = now


def _reason(outcome: MatchOutcome, contract: ContractDefinition, search_blocks: int) -> str:
    if outcome.status is MatchStatus.ALREADY_VERIFIED:
        return "Already verified"
    if outcome.status is MatchStatus.NO_MATCH:
        return f"No transaction to {contract.address[:10]}... found in the last {search_blocks} blocks"
    if outcome.status is MatchStatus.INSUFFICIENT_CONFIRMATIONS:
        return (
            f"Transaction found with {outcome.confirmations}/{outcome.required_confirmations} "
            "confirmations; try again shortly"
        )
    return "Internal error while checking the chain; try again later"


class CommandService:
    """Synchronous command handlers; all collaborators injected."""

    def __init__(
        self,
        settings: Settings,
        store: VerificationStore,
        engine: MatchingEngine,
        sink: RoleNotificationSink,
        chain: ChainQueryPort,
        worker: AutoVerifyWorker | None = None,
        *,
        cooldowns: Cooldowns | None = None,
    ) -> None:
        self._settings = settings
        self._store = store
        self._engine = engine
        self._sink = sink
        self._chain = chain
        self._worker = worker
        self._cooldowns = cooldowns or Cooldowns()

    def _require_link(self, identity_id: str) -> IdentityLink:
        link = self._store.get_link(identity_id)
        if link is None:
            raise IdentityNotLinkedError(identity_id)
        return link

    def link_wallet(self, identity_id: str, wallet: str) -> tuple[IdentityLink, bool]:
        self._cooldowns.hit("link", identity_id, self._settings.link_cooldown_sec)
        return self._store.link_wallet(identity_id, wallet)

    def verify_now(self, identity_id: str, contract: str | None = None) -> VerifyReport:
        """Verify all contracts, or one contract by id or display name."""
        link = self._require_link(identity_id)
        contract_ids: list[str] | None = None
        if contract:
            found = self._settings.find_contract(contract)
            if found is None:
                raise ContractNotFoundError(contract, [c.display_name for c in self._settings.contracts])
            contract_ids = [found.contract_id]
        self._cooldowns.hit("verify", identity_id, self._settings.verify_cooldown_sec)

        outcomes = self._engine.verify_all_contracts(link.wallet, contract_ids)
        report = VerifyReport(identity_id=identity_id, wallet=link.wallet)
        announce_by_channel: dict[str, list[ContractDefinition]] = defaultdict(list)

        for outcome in outcomes:
            definition = self._settings.get_contract(outcome.contract_id)
            if not outcome.matched:
                report.results.append(
                    ContractVerification(
                        contract_id=definition.contract_id,
                        name=definition.display_name,
                        status=outcome.status.value,
                        reason=_reason(outcome, definition, self._settings.search_blocks),
                        tx_hash=outcome.tx_hash,
                    )
                )
                continue
            try:
                grant = apply_match(
                    identity_id,
                    link.wallet,
                    definition,
                    outcome,
                    self._store,
                    self._sink,
                    self._settings,
                    notify_direct=False,
                    announce=False,
                )
            except StoreWriteError as e:
                logger.error(
                    "command_verify_store_write_failed",
                    identity_id=identity_id,
                    contract_id=definition.contract_id,
                    error=str(e),
                )
                report.results.append(
                    ContractVerification(
                        contract_id=definition.contract_id,
                        name=definition.display_name,
                        status=MatchStatus.ERROR.value,
                        reason="Internal error while saving the verification; try again later",
                        tx_hash=outcome.tx_hash,
                    )
                )
                continue
            if not grant.newly_verified:
                report.results.append(
                    ContractVerification(
                        contract_id=definition.contract_id,
                        name=definition.display_name,
                        status=MatchStatus.ALREADY_VERIFIED.value,
                        reason="Already verified",
                        tx_hash=outcome.tx_hash,
                    )
                )
                continue
            granted = grant.role is GrantResult.OK
            reason = f"Verified with transaction {outcome.tx_hash[:20]}..." if outcome.tx_hash else "Verified"
            if not granted:
                reason += "; the role could not be assigned, contact an admin"
            report.results.append(
                ContractVerification(
                    contract_id=definition.contract_id,
                    name=definition.display_name,
                    status=STATUS_VERIFIED,
                    reason=reason,
                    tx_hash=outcome.tx_hash,
                    role_granted=granted,
                )
            )
            channel_id = self._settings.channel_for(definition)
            if channel_id:
                announce_by_channel[channel_id].append(definition)

        for channel_id, contracts in announce_by_channel.items():
            try:
                self._sink.announce(channel_id, verification_announcement(identity_id, contracts))
            except Exception:
                logger.exception("command_verify_announce_failed", identity_id=identity_id, channel_id=channel_id)

        logger.info(
            "command_verify_done",
            identity_id=identity_id,
            wallet_id=link.wallet,
            results={r.contract_id: r.status for r in report.results},
        )
        return report

    def status(self, identity_id: str) -> StatusReport:
        link = self._require_link(identity_id)
        records = self._store.get_verifications(link.wallet)
        contracts = []
        for c in self._settings.contracts:
            rec = records.get(c.contract_id)
            verified = bool(rec and rec.verified)
            contracts.append(
                ContractStatus(
                    contract_id=c.contract_id,
                    name=c.display_name,
                    verified=verified,
                    tx_hash=rec.tx_hash if verified else None,
                    confirmed_at=rec.confirmed_at if verified else None,
                )
            )
        verified_count = sum(1 for c in contracts if c.verified)
        total = len(contracts)
        return StatusReport(
            identity_id=identity_id,
            wallet=link.wallet,
            linked_at=link.linked_at,
            verified_count=verified_count,
            total_contracts=total,
            percentage=round(verified_count * 100 / total) if total else 0,
            contracts=contracts,
        )

    def stats(self) -> dict[str, Any]:
        store_stats = self._store.get_stats()
        names = {c.contract_id: c.display_name for c in self._settings.contracts}
        chain: dict[str, Any] = {
            "chain_id": self._settings.chain_id,
            "chain_name": self._settings.chain_name,
        }
        try:
            chain["block_number"] = self._chain.current_block()
            chain["connected"] = True
        except ChainQueryError as e:
            logger.warning("command_stats_chain_offline", error=str(e))
            chain["block_number"] = None
            chain["connected"] = False
        return {
            "total_users": store_stats.total_users,
            "verified_users": store_stats.verified_users,
            "pending_users": store_stats.pending_users,
            "contracts": [
                {"contract_id": cid, "name": names.get(cid, cid), "verified": count}
                for cid, count in store_stats.contract_stats.items()
            ],
            "auto_verify": self._worker.stats_snapshot().to_dict() if self._worker else None,
            "chain": chain,
        }
