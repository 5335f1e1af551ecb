"""
Wiring: build the store, chain port, engine, sink, worker and command service
from Settings. Everything is constructed once at startup and passed explicitly.
"""

from __future__ import annotations

from dataclasses import dataclass

from backend_chaingate.agent_worker.runtime import AutoVerifyWorker
from backend_chaingate.api_server.commands import CommandService
from backend_chaingate.chain import ChainQueryPort, EvmChainQuery
from backend_chaingate.chaingate_logging import get_logger
from backend_chaingate.config.settings import Settings
from backend_chaingate.database import VerificationStore, get_store
from backend_chaingate.matching import MatchingEngine
from backend_chaingate.notifications import DiscordRoleSink, RoleNotificationSink

logger = get_logger(__name__)


@dataclass
class Services:
    settings: Settings
    store: VerificationStore
    chain: ChainQueryPort
    engine: MatchingEngine
    sink: RoleNotificationSink
    worker: AutoVerifyWorker
    commands: CommandService

    def close(self) -> None:
        """Close HTTP clients held by the chain port and the sink."""
        for resource in (self.chain, self.sink):
            close = getattr(resource, "close", None)
            if callable(close):
                close()


def build_services(
    settings: Settings,
    *,
    store: VerificationStore | None = None,
    chain: ChainQueryPort | None = None,
    sink: RoleNotificationSink | None = None,
) -> Services:
    """Construct every component; pass store/chain/sink to override the defaults."""
    if store is None:
        store = get_store(settings.db_path, settings.contract_ids)
    if chain is None:
        chain = EvmChainQuery(
            settings.contracts,
            search_blocks=settings.search_blocks,
            blocks_per_request=settings.rpc_blocks_per_request,
            timeout_sec=settings.rpc_timeout_sec,
        )
    if sink is None:
        sink = DiscordRoleSink(settings.discord_token, settings.discord_guild_id)
    engine = MatchingEngine(settings, store, chain)
    worker = AutoVerifyWorker(settings, store, engine, sink)
    commands = CommandService(settings, store, engine, sink, chain, worker)
    logger.info(
        "services_built",
        contracts=list(settings.contract_ids),
        chain_name=settings.chain_name,
        db_path=str(settings.db_path),
        auto_verify=settings.auto_verify_enabled,
    )
    return Services(
        settings=settings,
        store=store,
        chain=chain,
        engine=engine,
        sink=sink,
        worker=worker,
        commands=commands,
    )
