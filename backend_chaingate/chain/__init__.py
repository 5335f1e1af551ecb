"""
Chain query port — EVM JSON-RPC lookups for qualifying contract transactions.
"""

from backend_chaingate.chain.models import ChainQueryPort, ChainQueryResult
from backend_chaingate.chain.rpc import EvmChainQuery, EvmRpcClient

__all__ = ["ChainQueryPort", "ChainQueryResult", "EvmChainQuery", "EvmRpcClient"]
