"""
Data models - World snapshot, events and wire payloads.

Wire payloads use camelCase field names; the Python side uses snake_case
through pydantic aliases.
"""

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


class ConnectionState(Enum):
    """Lifecycle state of the world-server connection."""
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    AUTHENTICATING = "authenticating"
    CONNECTED = "connected"
    RECONNECTING = "reconnecting"
    CLOSED = "closed"


class MoveDirection(str, Enum):
    """Grid movement directions."""
    UP = "up"
    DOWN = "down"
    LEFT = "left"
    RIGHT = "right"


class WireModel(BaseModel):
    """Base for everything that crosses the wire."""
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        frozen=True,
    )

    def to_wire(self) -> dict:
        return self.model_dump(by_alias=True, exclude_none=True)


# ==================== World Snapshot ====================

class Position(WireModel):
    x: int
    y: int


class LandParcel(WireModel):
    """A single grid cell and its owner. Unique by (x, y)."""
    x: int
    y: int
    owner_agent_id: Optional[str] = None

    @property
    def key(self) -> tuple[int, int]:
        return (self.x, self.y)


class AgentSummary(WireModel):
    agent_id: str
    name: str = ""
    x: int = 0
    y: int = 0
    status: str = ""


class WorldSnapshot(WireModel):
    """
    The agent's view of the world as of the last server push.

    Replaced wholesale on every world update; never merged.
    """
    grid_width: int = 100
    grid_height: int = 100
    position: Position
    balance_cents: int = 0
    owned_land: list[LandParcel] = []
    nearby_land: list[LandParcel] = []
    nearby_agents: list[AgentSummary] = []
    all_agents: list[AgentSummary] = []

    def parcel_at(self, x: int, y: int) -> Optional[LandParcel]:
        """Find a known (owned or nearby) parcel at the given cell."""
        for parcel in self.nearby_land:
            if parcel.x == x and parcel.y == y:
                return parcel
        for parcel in self.owned_land:
            if parcel.x == x and parcel.y == y:
                return parcel
        return None

    def current_cell_owner(self) -> Optional[str]:
        """Owner of the cell we stand on, "you" for own land, None if unclaimed."""
        x, y = self.position.x, self.position.y
        if any(p.x == x and p.y == y for p in self.owned_land):
            return "you"
        parcel = self.parcel_at(x, y)
        return parcel.owner_agent_id if parcel else None


# ==================== Inbound Payloads ====================

class AuthErrorPayload(WireModel):
    reason: str = "authentication failed"


class LandClaimedPayload(WireModel):
    x: int
    y: int
    agent_id: Optional[str] = None


class LandClaimDeniedPayload(WireModel):
    x: Optional[int] = None
    y: Optional[int] = None
    code: str = "unknown"
    reason: str = ""


class LandTradeCompletePayload(WireModel):
    x: int
    y: int
    from_agent_id: str
    to_agent_id: str
    price_cents: int = 0


class TransferReceivedPayload(WireModel):
    amount_cents: int
    currency: str = "USDC"
    from_agent_id: Optional[str] = None
    from_agent_name: str = "unknown"
    description: str = ""


class ServerCommandPayload(WireModel):
    command: str
    params: Optional[dict[str, Any]] = None


# ==================== Outbound Payloads ====================

class SpendRequest(WireModel):
    """A wallet spend request forwarded to the server."""
    request_id: str
    amount_cents: int
    currency: str = "USDC"
    category: str = "api"
    rail: str = "internal"
    vendor: str = ""
    description: str = ""


# ==================== Local Records ====================

@dataclass
class WorldEvent:
    """A notable occurrence kept in the recent-event log."""
    type: str
    summary: str
    timestamp: float = field(default_factory=time.time)

    def to_dict(self) -> dict:
        return {
            "type": self.type,
            "summary": self.summary,
            "timestamp": self.timestamp,
        }


@dataclass
class ClaimResult:
    """Outcome of a claim-land request."""
    success: bool
    x: Optional[int] = None
    y: Optional[int] = None
    code: str = ""
    reason: str = ""

    @classmethod
    def claimed(cls, x: int, y: int) -> "ClaimResult":
        return cls(success=True, x=x, y=y)

    @classmethod
    def failed(cls, code: str, reason: str, x: Optional[int] = None, y: Optional[int] = None) -> "ClaimResult":
        return cls(success=False, x=x, y=y, code=code, reason=reason)
