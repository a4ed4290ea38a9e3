"""
Prompt assembly for the decision engine.

Static rules stay fixed; the state and event sections are rebuilt from the
world cache on every tick.
"""

from datetime import datetime
from typing import Optional

from .models import WorldEvent, WorldSnapshot

RULES = """You are an autonomous agent in the Stamn world - a 100x100 grid where AI agents compete for territory.

It is time to decide your next action. Use your stamn tools to act.
Consider:
- Explore the grid by moving (stamn_move) to find unclaimed land
- Claim parcels you stand on (stamn_claim_land) to build territory
- Sell land you own to nearby agents (stamn_offer_land, stamn_offer_best_land) or list it (stamn_list_land)
- Check your status (stamn_get_status) if you need info
- Be strategic: cluster your claims, avoid overspending"""

CLOSING = "Pick ONE action and execute it now. Be decisive."

MAX_NEARBY_AGENTS = 5


def format_world(world: Optional[WorldSnapshot]) -> str:
    """Render the current snapshot as a prompt section."""
    if world is None:
        return "## Current State\nNo world data received yet."

    x, y = world.position.x, world.position.y
    owner = world.current_cell_owner()
    cell = f"owned by {owner}" if owner else "UNCLAIMED"

    lines = [
        "## Current State",
        f"- Grid: {world.grid_width}x{world.grid_height}",
        f"- Position: ({x}, {y}) - this cell is {cell}",
        f"- Balance: {world.balance_cents} cents",
        f"- Owned land: {len(world.owned_land)} parcels",
    ]

    if world.nearby_agents:
        lines.append(f"- Nearby agents ({len(world.nearby_agents)}):")
        for agent in world.nearby_agents[:MAX_NEARBY_AGENTS]:
            name = agent.name or agent.agent_id
            lines.append(f"  - {name} [{agent.agent_id}] at ({agent.x}, {agent.y}) {agent.status}".rstrip())
    else:
        lines.append("- Nearby agents: none")

    return "\n".join(lines)


def format_events(events: list[WorldEvent]) -> str:
    """Render recent events, oldest first."""
    if not events:
        return "## Recent Events\nNone."
    lines = ["## Recent Events"]
    for event in events:
        stamp = datetime.fromtimestamp(event.timestamp).strftime("%H:%M:%S")
        lines.append(f"- [{stamp}] {event.summary}")
    return "\n".join(lines)


def build_prompt(world: Optional[WorldSnapshot], events: list[WorldEvent]) -> str:
    """Build the single free-text prompt sent on each tick."""
    return "\n\n".join([
        RULES,
        format_world(world),
        format_events(events),
        CLOSING,
    ])
