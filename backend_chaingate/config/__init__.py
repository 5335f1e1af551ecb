"""
Configuration management for Backend ChainGate.

Loads and validates settings from environment variables and an optional .env
file. Settings are immutable after startup.
"""

from backend_chaingate.config.settings import (  # noqa: F401
    ContractDefinition,
    Settings,
    load_settings,
)

__all__ = ["ContractDefinition", "Settings", "load_settings"]
