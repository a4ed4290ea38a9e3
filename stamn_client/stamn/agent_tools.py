"""
Agent Tools - World actions exposed as callable tools.

Each tool takes primitive arguments, validates them, calls the connection
client, and returns a short human-readable result. Decision engines that
run tool calls locally dispatch through `AgentTools.execute_tool`.
"""

import asyncio
import inspect
import logging
import uuid
from dataclasses import dataclass
from typing import Any, Optional

from .errors import InvalidDirection
from .models import AgentSummary, LandParcel, MoveDirection, SpendRequest, WorldSnapshot
from .world_state import WorldStateCache
from .ws_client import ConnectionClient

logger = logging.getLogger(__name__)

NOT_CONNECTED = "Not connected to Stamn server."


# ==================== Tool Definitions ====================

TOOL_DEFINITIONS = [
    {
        "name": "stamn_move",
        "description": "Move your agent one cell on the Stamn 100x100 world grid. Returns your new position.",
        "parameters": {
            "type": "object",
            "properties": {
                "direction": {
                    "type": "string",
                    "description": "Direction to move",
                    "enum": ["up", "down", "left", "right"],
                }
            },
            "required": ["direction"],
        },
    },
    {
        "name": "stamn_claim_land",
        "description": (
            "Claim the land parcel at your current position. Only works on unclaimed cells. "
            "Returns the result (success or denial with reason)."
        ),
        "parameters": {"type": "object", "properties": {}, "required": []},
    },
    {
        "name": "stamn_offer_land",
        "description": "Offer to sell a land parcel you own to another agent at a specified price.",
        "parameters": {
            "type": "object",
            "properties": {
                "x": {"type": "integer", "description": "X coordinate of the land parcel"},
                "y": {"type": "integer", "description": "Y coordinate of the land parcel"},
                "toAgentId": {"type": "string", "description": "ID of the agent to sell to"},
                "priceCents": {"type": "integer", "description": "Price in cents (e.g. 500 = $5.00)"},
            },
            "required": ["x", "y", "toAgentId", "priceCents"],
        },
    },
    {
        "name": "stamn_list_land",
        "description": "List a land parcel you own for sale on the open market.",
        "parameters": {
            "type": "object",
            "properties": {
                "x": {"type": "integer", "description": "X coordinate of the land parcel"},
                "y": {"type": "integer", "description": "Y coordinate of the land parcel"},
                "priceCents": {"type": "integer", "description": "Asking price in cents"},
            },
            "required": ["x", "y", "priceCents"],
        },
    },
    {
        "name": "stamn_offer_best_land",
        "description": (
            "Offer your parcel closest to another agent, priced by distance. "
            "Targets the nearest agent unless toAgentId is given."
        ),
        "parameters": {
            "type": "object",
            "properties": {
                "toAgentId": {"type": "string", "description": "Optional ID of the agent to sell to"},
            },
            "required": [],
        },
    },
    {
        "name": "stamn_spend",
        "description": "Request a USDC spend from the agent wallet for a service or purchase.",
        "parameters": {
            "type": "object",
            "properties": {
                "amountCents": {"type": "integer", "description": "Amount in cents (e.g. 100 = $1.00)"},
                "vendor": {"type": "string", "description": "Name of the vendor or service"},
                "description": {"type": "string", "description": "What this spend is for"},
            },
            "required": ["amountCents", "vendor", "description"],
        },
    },
    {
        "name": "stamn_get_status",
        "description": "Get your current Stamn agent status: connection, position, balance, land.",
        "parameters": {"type": "object", "properties": {}, "required": []},
    },
]


@dataclass
class ToolResult:
    """Result of a tool execution."""
    success: bool
    result: Any
    message: str = ""


@dataclass
class LandOffer:
    """A suggested sale of one owned parcel to one agent."""
    x: int
    y: int
    to_agent_id: str
    to_agent_name: str
    distance: int
    price_cents: int


# ==================== Argument Parsing ====================

def parse_direction(value: Any) -> MoveDirection:
    """
    Parse a move direction. Case-insensitive, surrounding whitespace ignored.

    Raises:
        InvalidDirection: anything other than up/down/left/right.
    """
    if isinstance(value, MoveDirection):
        return value
    if not isinstance(value, str):
        raise InvalidDirection(value)
    try:
        return MoveDirection(value.strip().lower())
    except ValueError:
        raise InvalidDirection(value) from None


def parse_int(value: Any, name: str) -> int:
    """Accept ints and numeric strings."""
    if isinstance(value, bool):
        raise ValueError(f"{name} must be a number")
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        try:
            return int(value.strip(), 10)
        except ValueError:
            pass
    raise ValueError(f"{name} must be a number")


def manhattan(ax: int, ay: int, bx: int, by: int) -> int:
    return abs(ax - bx) + abs(ay - by)


def pick_best_offer(
    world: WorldSnapshot,
    self_agent_id: str,
    to_agent_id: Optional[str] = None,
    base_price: int = 500,
    price_step: int = 25,
    min_price: int = 100,
) -> Optional[LandOffer]:
    """
    Pick the owned parcel closest to a buyer and price it.

    The buyer is `to_agent_id` if given, otherwise the agent nearest to us.
    Closer parcels are worth more to the buyer:
    price = max(min_price, base_price - price_step * distance).
    """
    if not world.owned_land:
        return None

    candidates = [a for a in (world.nearby_agents or world.all_agents) if a.agent_id != self_agent_id]
    if to_agent_id:
        known = {a.agent_id: a for a in world.nearby_agents + world.all_agents}
        buyer: Optional[AgentSummary] = known.get(to_agent_id)
    elif candidates:
        me = world.position
        buyer = min(candidates, key=lambda a: manhattan(me.x, me.y, a.x, a.y))
    else:
        buyer = None
    if buyer is None:
        return None

    parcel: LandParcel = min(world.owned_land, key=lambda p: manhattan(p.x, p.y, buyer.x, buyer.y))
    distance = manhattan(parcel.x, parcel.y, buyer.x, buyer.y)
    return LandOffer(
        x=parcel.x,
        y=parcel.y,
        to_agent_id=buyer.agent_id,
        to_agent_name=buyer.name or buyer.agent_id,
        distance=distance,
        price_cents=max(min_price, base_price - price_step * distance),
    )


# ==================== Tool Execution ====================

class AgentTools:
    """Tool entry points backed by the connection client and world cache."""

    def __init__(
        self,
        client: ConnectionClient,
        world: WorldStateCache,
        move_settle_delay: float = 0.5,
    ):
        self.client = client
        self.world = world
        self.move_settle_delay = move_settle_delay

        self._handlers = {
            "stamn_move": self.move,
            "stamn_claim_land": self.claim_land,
            "stamn_offer_land": self.offer_land,
            "stamn_list_land": self.list_land,
            "stamn_offer_best_land": self.offer_best_land,
            "stamn_spend": self.spend,
            "stamn_get_status": self.get_status,
        }

    @property
    def definitions(self) -> list[dict]:
        return TOOL_DEFINITIONS

    async def execute_tool(self, tool_name: str, arguments: Optional[dict] = None) -> ToolResult:
        """Execute a tool by name and return its result."""
        handler = self._handlers.get(tool_name)
        if handler is None:
            return ToolResult(False, None, f"Unknown tool: {tool_name}")
        arguments = arguments or {}
        try:
            inspect.signature(handler).bind(**arguments)
        except TypeError as e:
            return ToolResult(False, None, f"Invalid arguments for {tool_name}: {e}")
        try:
            return await handler(**arguments)
        except Exception as e:
            logger.error(f"Tool execution error ({tool_name}): {e}")
            return ToolResult(False, None, f"Error: {e}")

    async def move(self, direction: Any = None) -> ToolResult:
        if not self.client.is_connected:
            return ToolResult(False, None, NOT_CONNECTED)
        try:
            parsed = parse_direction(direction)
        except InvalidDirection as e:
            return ToolResult(False, None, str(e))

        logger.info(f"[stamn_move] direction={parsed.value}")
        await self.client.move(parsed)

        # Give the server a moment to push the new position
        await asyncio.sleep(self.move_settle_delay)
        world = self.world.get_world()
        if world is None:
            return ToolResult(True, None, f"Moved {parsed.value}.")

        x, y = world.position.x, world.position.y
        message = f"Moved {parsed.value}. Now at ({x}, {y})."
        if world.current_cell_owner() is None:
            message += " This cell is UNCLAIMED - you can claim it."
        return ToolResult(True, {"x": x, "y": y}, message)

    async def claim_land(self) -> ToolResult:
        if not self.client.is_connected:
            return ToolResult(False, None, NOT_CONNECTED)

        world = self.world.get_world()
        if world is not None:
            owner = world.current_cell_owner()
            if owner:
                x, y = world.position.x, world.position.y
                return ToolResult(
                    False,
                    None,
                    f"Cannot claim: cell ({x}, {y}) is already owned by {owner}. "
                    "Move to an unclaimed cell first.",
                )

        result = await self.client.claim_land_and_wait()
        if result.success:
            owned = (len(world.owned_land) if world else 0) + 1
            return ToolResult(
                True,
                {"x": result.x, "y": result.y},
                f"Land claimed at ({result.x}, {result.y}). You now own {owned} parcels.",
            )

        lines = [f"Land claim denied: {result.reason} ({result.code})."]
        if result.code == "already_owned" and world is not None:
            lines.append(
                f"Cell ({world.position.x}, {world.position.y}) is already owned. "
                "Move to an unclaimed cell."
            )
        elif result.code == "insufficient_balance" and world is not None:
            lines.append(
                f"Your balance: {world.balance_cents} cents. You own {len(world.owned_land)} "
                "parcels (free claims may be exhausted)."
            )
            lines.append("Move and claim unclaimed cells, or earn more balance.")
        return ToolResult(False, {"code": result.code, "reason": result.reason}, "\n".join(lines))

    async def offer_land(
        self,
        x: Any = None,
        y: Any = None,
        toAgentId: Optional[str] = None,
        priceCents: Any = None,
    ) -> ToolResult:
        if not self.client.is_connected:
            return ToolResult(False, None, NOT_CONNECTED)
        try:
            px, py = parse_int(x, "x"), parse_int(y, "y")
            price = parse_int(priceCents, "priceCents")
        except ValueError:
            return ToolResult(False, None, "x, y, and priceCents must be numbers.")
        if not toAgentId:
            return ToolResult(False, None, "toAgentId is required.")

        await self.client.offer_land(px, py, toAgentId, price)
        return ToolResult(
            True,
            {"x": px, "y": py, "toAgentId": toAgentId, "priceCents": price},
            f"Offered land ({px}, {py}) to {toAgentId} for {price} cents.",
        )

    async def list_land(self, x: Any = None, y: Any = None, priceCents: Any = None) -> ToolResult:
        if not self.client.is_connected:
            return ToolResult(False, None, NOT_CONNECTED)
        try:
            px, py = parse_int(x, "x"), parse_int(y, "y")
            price = parse_int(priceCents, "priceCents")
        except ValueError:
            return ToolResult(False, None, "x, y, and priceCents must be numbers.")

        await self.client.list_land(px, py, price)
        return ToolResult(True, {"x": px, "y": py, "priceCents": price},
                          f"Listed land ({px}, {py}) for {price} cents.")

    async def offer_best_land(self, toAgentId: Optional[str] = None) -> ToolResult:
        if not self.client.is_connected:
            return ToolResult(False, None, NOT_CONNECTED)
        world = self.world.get_world()
        if world is None:
            return ToolResult(False, None, "No world data received yet.")

        offer = pick_best_offer(world, self.client.agent_id, toAgentId)
        if offer is None:
            if not world.owned_land:
                return ToolResult(False, None, "You own no land to offer.")
            return ToolResult(False, None, "No agent found to offer land to.")

        await self.client.offer_land(offer.x, offer.y, offer.to_agent_id, offer.price_cents)
        return ToolResult(
            True,
            {"x": offer.x, "y": offer.y, "toAgentId": offer.to_agent_id, "priceCents": offer.price_cents},
            f"Offered land ({offer.x}, {offer.y}) to {offer.to_agent_name} "
            f"({offer.distance} cells away) for {offer.price_cents} cents.",
        )

    async def spend(
        self,
        amountCents: Any = None,
        vendor: str = "",
        description: str = "",
    ) -> ToolResult:
        if not self.client.is_connected:
            return ToolResult(False, None, NOT_CONNECTED)
        try:
            amount = parse_int(amountCents, "amountCents")
        except ValueError:
            amount = 0
        if amount <= 0:
            return ToolResult(False, None, "amountCents must be a positive number.")

        request = SpendRequest(
            request_id=str(uuid.uuid4()),
            amount_cents=amount,
            vendor=vendor,
            description=description,
        )
        await self.client.request_spend(request)
        return ToolResult(
            True,
            {"requestId": request.request_id},
            f'Spend request sent: {amount} cents to {vendor} - "{description}"',
        )

    async def get_status(self) -> ToolResult:
        if not self.client.is_connected:
            return ToolResult(False, None, "Disconnected from Stamn world (reconnecting...).")

        world = self.world.get_world()
        if world is None:
            return ToolResult(True, None, "Connected but no world data received yet.")

        lines = [
            "Connected to Stamn world.",
            f"Position: ({world.position.x}, {world.position.y})",
            f"Balance: {world.balance_cents} cents",
            f"Owned land: {len(world.owned_land)} parcels",
            f"Nearby agents: {len(world.nearby_agents)}",
        ]
        return ToolResult(True, self.world.get_summary(), "\n".join(lines))
