"""
Structured logging for Backend ChainGate.

JSON logs with timestamp, event_type and keyword context (wallet_id, contract_id, ...).
Use get_logger() in all modules.
"""

from backend_chaingate.chaingate_logging.logger import bind_wallet, get_logger

__all__ = ["bind_wallet", "get_logger"]
