"""
Stamn - Autonomous agent client for the Stamn world

A Python package for connecting an LLM-driven agent to the Stamn grid
world: persistent WebSocket session, cached world state, and a periodic
plus event-driven decision loop.
"""

__version__ = "0.1.0"

from .errors import (
    StamnError,
    TransportError,
    ConnectionLostError,
    ProtocolError,
    ActionDenied,
    RequestTimeout,
    ConfigurationError,
    InvalidDirection,
)
from .models import (
    ConnectionState,
    MoveDirection,
    Position,
    LandParcel,
    AgentSummary,
    WorldSnapshot,
    WorldEvent,
    ClaimResult,
    SpendRequest,
)
from .protocol import Frame, encode_frame, decode_frame
from .world_state import WorldStateCache
from .ws_client import ConnectionClient, WorldEventHandler
from .scheduler import ActionScheduler
from .agent_tools import AgentTools, ToolResult
from .decision_engine import (
    Decision,
    DecisionEngine,
    GatewayDecisionEngine,
    OpenAIDecisionEngine,
    AnthropicDecisionEngine,
    create_decision_engine,
)
from .config import ServiceConfig
from .service import AgentService

__all__ = [
    # Errors
    "StamnError",
    "TransportError",
    "ConnectionLostError",
    "ProtocolError",
    "ActionDenied",
    "RequestTimeout",
    "ConfigurationError",
    "InvalidDirection",
    # World model
    "ConnectionState",
    "MoveDirection",
    "Position",
    "LandParcel",
    "AgentSummary",
    "WorldSnapshot",
    "WorldEvent",
    "ClaimResult",
    "SpendRequest",
    # Protocol
    "Frame",
    "encode_frame",
    "decode_frame",
    # Core components
    "WorldStateCache",
    "ConnectionClient",
    "WorldEventHandler",
    "ActionScheduler",
    "AgentTools",
    "ToolResult",
    # Decision engines
    "Decision",
    "DecisionEngine",
    "GatewayDecisionEngine",
    "OpenAIDecisionEngine",
    "AnthropicDecisionEngine",
    "create_decision_engine",
    # Service
    "ServiceConfig",
    "AgentService",
]
