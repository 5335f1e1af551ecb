"""
Agent worker package — periodic auto-verification.

Runs batch cycles over pending wallets, evaluates them with the matching engine,
records verifications and triggers role grants and notifications.
"""

from backend_chaingate.agent_worker.runtime import AutoVerifyWorker, CycleResult, CycleStats

__all__ = ["AutoVerifyWorker", "CycleResult", "CycleStats"]
