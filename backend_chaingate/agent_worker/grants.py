"""
Post-match side effects shared by the auto-verify worker and the verify command.

The store write comes first and is authoritative: a role grant, DM or
announcement is only attempted after record_verification returned RECORDED, and
none of their failures undo the write. Each of the three side effects is
contained on its own: a failure is logged and noted on the GrantReport, and the
remaining ones still run.
"""

from __future__ import annotations

from dataclasses import dataclass

from backend_chaingate.chaingate_logging import get_logger
from backend_chaingate.config.settings import ContractDefinition, Settings
from backend_chaingate.core.exceptions import SinkError
from backend_chaingate.database import RecordResult, VerificationStore
from backend_chaingate.matching import MatchOutcome
from backend_chaingate.notifications import (
    GrantResult,
    RoleNotificationSink,
    verification_announcement,
    verified_direct_message,
)
from backend_chaingate.utils.wallet_utils import short_wallet

logger = get_logger(__name__)


@dataclass
class GrantReport:
    """What happened after a MATCHED outcome."""

    contract_id: str
    record: RecordResult
    role: GrantResult | None = None
    role_error: str | None = None
    dm_sent: bool = False
    dm_error: str | None = None
    announced: bool = False
    announce_error: str | None = None

    @property
    def newly_verified(self) -> bool:
        return self.record is RecordResult.RECORDED


def apply_match(
    identity_id: str,
    wallet: str,
    contract: ContractDefinition,
    outcome: MatchOutcome,
    store: VerificationStore,
    sink: RoleNotificationSink,
    settings: Settings,
    *,
    notify_direct: bool = True,
    announce: bool = True,
) -> GrantReport:
    """
    Record the verification, then grant the role and send notifications.

    Raises StoreWriteError if the record did not persist; no side effect runs then.
    """
    if not outcome.matched or outcome.tx_hash is None or outcome.block_number is None:
        raise ValueError(f"apply_match needs a MATCHED outcome, got {outcome.status.value}")

    record = store.record_verification(wallet, contract.contract_id, outcome.tx_hash, outcome.block_number)
    report = GrantReport(contract_id=contract.contract_id, record=record)
    if record is RecordResult.ALREADY_VERIFIED:
        logger.info(
            "grant_skipped_already_verified",
            identity_id=identity_id,
            wallet_id=short_wallet(wallet),
            contract_id=contract.contract_id,
        )
        return report

    try:
        report.role = sink.grant_role(identity_id, contract.role_id)
    except SinkError as e:
        report.role_error = str(e)
        logger.error(
            "grant_role_failed",
            identity_id=identity_id,
            contract_id=contract.contract_id,
            role_id=contract.role_id,
            error=str(e),
        )
    except Exception as e:
        report.role_error = str(e) or type(e).__name__
        logger.exception(
            "grant_role_crashed",
            identity_id=identity_id,
            contract_id=contract.contract_id,
            role_id=contract.role_id,
            error=str(e),
        )
    else:
        if report.role is not GrantResult.OK:
            logger.warning(
                "grant_role_not_applied",
                identity_id=identity_id,
                contract_id=contract.contract_id,
                role_id=contract.role_id,
                result=report.role.value,
            )

    if notify_direct:
        try:
            report.dm_sent = sink.notify_direct(
                identity_id,
                verified_direct_message(contract, outcome.tx_hash, settings.chain_name),
            )
        except Exception as e:
            report.dm_error = str(e) or type(e).__name__
            logger.exception("grant_dm_failed", identity_id=identity_id, contract_id=contract.contract_id)

    channel_id = settings.channel_for(contract)
    if announce and channel_id:
        try:
            report.announced = sink.announce(channel_id, verification_announcement(identity_id, [contract]))
        except Exception as e:
            report.announce_error = str(e) or type(e).__name__
            logger.exception(
                "grant_announce_failed",
                identity_id=identity_id,
                contract_id=contract.contract_id,
                channel_id=channel_id,
            )

    logger.info(
        "grant_applied",
        identity_id=identity_id,
        wallet_id=short_wallet(wallet),
        contract_id=contract.contract_id,
        role=report.role.value if report.role else None,
        dm_sent=report.dm_sent,
        announced=report.announced,
    )
    return report
