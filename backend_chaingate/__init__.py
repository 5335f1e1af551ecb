"""
Backend ChainGate — on-chain activity verification for community role gating.

Links a chat identity to a wallet, watches configured contracts for qualifying
transactions, and grants platform roles once enough confirmations are observed.
Modular architecture: chain query, verification store, matching engine,
auto-verify worker, notification sink and API server.
"""

__version__ = "0.1.0"
