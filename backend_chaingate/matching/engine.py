"""
Matching engine: decide per (wallet, contract) whether on-chain activity satisfies
the contract's confirmation threshold.

Order of checks for one pair:
1. already verified in the store → ALREADY_VERIFIED (chain never queried)
2. chain query → NO_MATCH when nothing in the search window
3. confirmations below the contract's threshold → INSUFFICIENT_CONFIRMATIONS
4. otherwise → MATCHED with tx hash, block number, confirmations

Any chain failure (ChainQueryError or an unexpected exception from the port)
becomes an ERROR outcome so one broken endpoint never aborts evaluation of other
contracts. Unknown contract ids are configuration errors and propagate.
"""

from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from enum import Enum
from typing import Sequence

from backend_chaingate.chain.models import ChainQueryPort
from backend_chaingate.chaingate_logging import get_logger
from backend_chaingate.config.settings import ContractDefinition, Settings
from backend_chaingate.core.exceptions import ChainQueryError, StoreError
from backend_chaingate.database import VerificationStore
from backend_chaingate.utils.wallet_utils import short_wallet

logger = get_logger(__name__)

# Cap on parallel contract lookups for one wallet (command path)
MAX_PARALLEL_CONTRACTS = 10


class MatchStatus(str, Enum):
    MATCHED = "matched"
    ALREADY_VERIFIED = "already_verified"
    NO_MATCH = "no_match"
    INSUFFICIENT_CONFIRMATIONS = "insufficient_confirmations"
    ERROR = "error"


@dataclass(frozen=True)
class MatchOutcome:
    """Result of evaluating one (wallet, contract) pair."""

    contract_id: str
    status: MatchStatus
    tx_hash: str | None = None
    block_number: int | None = None
    confirmations: int | None = None
    required_confirmations: int | None = None
    error: str | None = None

    @property
    def matched(self) -> bool:
        return self.status is MatchStatus.MATCHED

    def to_dict(self) -> dict:
        return {
            "contract_id": self.contract_id,
            "status": self.status.value,
            "tx_hash": self.tx_hash,
            "block_number": self.block_number,
            "confirmations": self.confirmations,
            "required_confirmations": self.required_confirmations,
            "error": self.error,
        }


class MatchingEngine:
    """Evaluates wallets against configured contracts using the store and the chain port."""

    def __init__(
        self,
        settings: Settings,
        store: VerificationStore,
        chain: ChainQueryPort,
    ) -> None:
        self._settings = settings
        self._store = store
        self._chain = chain

    @property
    def contracts(self) -> tuple[ContractDefinition, ...]:
        return self._settings.contracts

    def verify_contract(self, wallet: str, contract_id: str) -> MatchOutcome:
        contract = self._settings.get_contract(contract_id)
        wallet = wallet.lower()
        required = contract.min_confirmations

        try:
            if self._store.is_verified(wallet, contract_id):
                return MatchOutcome(contract_id, MatchStatus.ALREADY_VERIFIED)
        except StoreError as e:
            logger.warning(
                "match_store_read_failed",
                wallet_id=short_wallet(wallet),
                contract_id=contract_id,
                error=str(e),
            )
            return MatchOutcome(contract_id, MatchStatus.ERROR, error=str(e))

        try:
            result = self._chain.query(wallet, contract_id)
        except ChainQueryError as e:
            logger.warning(
                "match_chain_query_failed",
                wallet_id=short_wallet(wallet),
                contract_id=contract_id,
                error=str(e),
            )
            return MatchOutcome(contract_id, MatchStatus.ERROR, required_confirmations=required, error=str(e))
        except Exception as e:
            logger.exception(
                "match_chain_query_crashed",
                wallet_id=short_wallet(wallet),
                contract_id=contract_id,
                error=str(e),
            )
            return MatchOutcome(contract_id, MatchStatus.ERROR, required_confirmations=required, error=str(e))

        if not result.found:
            return MatchOutcome(contract_id, MatchStatus.NO_MATCH, required_confirmations=required)

        confirmations = result.confirmations or 0
        status = MatchStatus.MATCHED if confirmations >= required else MatchStatus.INSUFFICIENT_CONFIRMATIONS
        outcome = MatchOutcome(
            contract_id,
            status,
            tx_hash=result.tx_hash,
            block_number=result.block_number,
            confirmations=confirmations,
            required_confirmations=required,
        )
        logger.debug(
            "match_evaluated",
            wallet_id=short_wallet(wallet),
            contract_id=contract_id,
            status=status.value,
            confirmations=confirmations,
            required=required,
        )
        return outcome

    def verify_all_contracts(
        self,
        wallet: str,
        contract_ids: Sequence[str] | None = None,
    ) -> list[MatchOutcome]:
        """
        Evaluate several contracts concurrently; outcomes in configured order.
        Each contract's outcome is independent of the others' failures.
        """
        ids = list(contract_ids) if contract_ids is not None else list(self._settings.contract_ids)
        for cid in ids:
            self._settings.get_contract(cid)
        if not ids:
            return []
        if len(ids) == 1:
            return [self.verify_contract(wallet, ids[0])]

        workers = min(len(ids), MAX_PARALLEL_CONTRACTS)
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="match") as pool:
            futures = [pool.submit(self.verify_contract, wallet, cid) for cid in ids]
            outcomes = []
            for cid, fut in zip(ids, futures):
                try:
                    outcomes.append(fut.result())
                except Exception as e:
                    logger.exception(
                        "match_contract_failed",
                        wallet_id=short_wallet(wallet),
                        contract_id=cid,
                        error=str(e),
                    )
                    outcomes.append(MatchOutcome(cid, MatchStatus.ERROR, error=str(e)))
        return outcomes
