"""
Matching engine — per (wallet, contract) confirmation checks.
"""

from backend_chaingate.matching.engine import MatchingEngine, MatchOutcome, MatchStatus

__all__ = ["MatchingEngine", "MatchOutcome", "MatchStatus"]
