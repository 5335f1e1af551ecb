"""
Notification payloads: direct messages and channel announcements.

Payloads are platform-neutral (title, description, fields, color); the Discord
sink renders them as embeds.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Sequence

from backend_chaingate.config.settings import ContractDefinition

COLOR_SUCCESS = 0x00FF00


@dataclass(frozen=True)
class Notification:
    title: str
    description: str = ""
    fields: tuple[tuple[str, str], ...] = field(default_factory=tuple)
    color: int = COLOR_SUCCESS

    def to_embed(self) -> dict[str, Any]:
        return {
            "title": self.title,
            "description": self.description,
            "color": self.color,
            "fields": [{"name": name, "value": value, "inline": False} for name, value in self.fields],
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }


def mention(identity_id: str) -> str:
    return f"<@{identity_id}>"


def verified_direct_message(
    contract: ContractDefinition,
    tx_hash: str | None,
    chain_name: str,
) -> Notification:
    """DM sent after an automatic verification."""
    fields = [("Contract", contract.display_name)]
    if tx_hash:
        fields.append(("Transaction", f"`{tx_hash[:20]}...`"))
    return Notification(
        title="Verification complete",
        description=f"Your wallet was verified on {chain_name} and your role has been assigned.",
        fields=tuple(fields),
    )


def verification_announcement(
    identity_id: str,
    contracts: Sequence[ContractDefinition],
) -> Notification:
    """Channel announcement for one user's new verifications."""
    return Notification(
        title="New Verification!",
        description=f"{mention(identity_id)} has been verified!",
        fields=(("Contracts", "\n".join(f"✅ {c.display_name}" for c in contracts)),),
    )
