"""
Test that chaingate_logging can be imported without circular import and logger works.
"""

from __future__ import annotations


def test_logging_import():
    """Import get_logger from chaingate_logging and use the logger."""
    from backend_chaingate.chaingate_logging import get_logger

    logger = get_logger("test")
    assert logger is not None
    assert hasattr(logger, "info")
    assert hasattr(logger, "debug")
    assert hasattr(logger, "warning")
    assert hasattr(logger, "error")
    # Smoke test: call info (should not raise)
    logger.info("test_message", key="value")


def test_bind_wallet_logger():
    from backend_chaingate.chaingate_logging import bind_wallet

    logger = bind_wallet("0x" + "ab" * 20)
    logger.info("test_bound_message", contract_id="contract1")
