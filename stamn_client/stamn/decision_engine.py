"""
Decision Engine - Turns a prompt into an action.

The gateway engine hands the prompt to a local OpenAI-compatible gateway
that runs the agent's tools itself. The OpenAI and Anthropic engines call
the provider directly and execute the returned tool calls locally through
AgentTools.
"""

import json
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Optional

from anthropic import AsyncAnthropic
from openai import AsyncOpenAI

from .agent_tools import AgentTools, ToolResult
from .config import ServiceConfig
from .errors import ConfigurationError

logger = logging.getLogger(__name__)

GATEWAY_MODEL = "openclaw:main"
DEFAULT_OPENAI_MODEL = "gpt-4o"
DEFAULT_ANTHROPIC_MODEL = "claude-sonnet-4-20250514"

SYSTEM_PROMPT = (
    "You control an agent in the Stamn world. Act only through the stamn tools. "
    "Take one decisive action per turn, then briefly say what you did."
)


@dataclass
class Decision:
    """What the engine did on one tick."""
    reply: str
    model: str
    tokens_used: int = 0
    tool_results: list[ToolResult] = field(default_factory=list)


class DecisionEngine(ABC):
    """Base class for decision engines."""

    @abstractmethod
    async def decide(self, prompt: str) -> Decision:
        """Ask the engine what to do. Raises on transport or API failure."""
        pass


class GatewayDecisionEngine(DecisionEngine):
    """Chat-completions call to the local agent gateway."""

    def __init__(
        self,
        token: str,
        port: int = 18789,
        host: str = "127.0.0.1",
        model: str = GATEWAY_MODEL,
        timeout: float = 120.0,
    ):
        self.token = token
        self.base_url = f"http://{host}:{port}/v1"
        self.model = model
        self.timeout = timeout
        self._client: Optional[AsyncOpenAI] = None

    def _get_client(self) -> AsyncOpenAI:
        """Lazy load the client."""
        if self._client is None:
            self._client = AsyncOpenAI(
                api_key=self.token,
                base_url=self.base_url,
                timeout=self.timeout,
                max_retries=0,
            )
        return self._client

    async def decide(self, prompt: str) -> Decision:
        client = self._get_client()
        response = await client.chat.completions.create(
            model=self.model,
            messages=[{"role": "user", "content": prompt}],
            stream=False,
        )

        reply = ""
        if response.choices:
            reply = response.choices[0].message.content or ""
        if reply:
            logger.info(f"Autonomous loop: AI acted - {reply[:200]}")

        return Decision(
            reply=reply,
            model=self.model,
            tokens_used=response.usage.total_tokens if response.usage else 0,
        )


class OpenAIDecisionEngine(DecisionEngine):
    """OpenAI function calling with tools executed locally."""

    def __init__(
        self,
        tools: AgentTools,
        api_key: str,
        model: str = DEFAULT_OPENAI_MODEL,
        max_tool_rounds: int = 5,
    ):
        if not api_key:
            raise ConfigurationError("OpenAI API key required")
        self.tools = tools
        self.api_key = api_key
        self.model = model
        self.max_tool_rounds = max_tool_rounds
        self._client: Optional[AsyncOpenAI] = None

    def _get_client(self) -> AsyncOpenAI:
        if self._client is None:
            self._client = AsyncOpenAI(api_key=self.api_key)
        return self._client

    def _tool_specs(self) -> list[dict]:
        return [
            {
                "type": "function",
                "function": {
                    "name": tool["name"],
                    "description": tool["description"],
                    "parameters": tool["parameters"],
                },
            }
            for tool in self.tools.definitions
        ]

    async def decide(self, prompt: str) -> Decision:
        client = self._get_client()
        messages: list[dict] = [
            {"role": "system", "content": SYSTEM_PROMPT},
            {"role": "user", "content": prompt},
        ]
        results: list[ToolResult] = []
        tokens = 0
        reply = ""

        for _ in range(self.max_tool_rounds):
            response = await client.chat.completions.create(
                model=self.model,
                messages=messages,
                tools=self._tool_specs(),
                tool_choice="auto",
                temperature=0.3,
            )
            tokens += response.usage.total_tokens if response.usage else 0
            if not response.choices:
                break
            message = response.choices[0].message
            reply = message.content or reply

            if not message.tool_calls:
                break

            messages.append({
                "role": "assistant",
                "content": message.content or "",
                "tool_calls": [
                    {
                        "id": tc.id,
                        "type": "function",
                        "function": {"name": tc.function.name, "arguments": tc.function.arguments},
                    }
                    for tc in message.tool_calls
                ],
            })

            for tool_call in message.tool_calls:
                try:
                    arguments = json.loads(tool_call.function.arguments or "{}")
                except json.JSONDecodeError:
                    arguments = {}

                logger.info(f"Executing tool: {tool_call.function.name}({arguments})")
                result = await self.tools.execute_tool(tool_call.function.name, arguments)
                results.append(result)
                messages.append({
                    "role": "tool",
                    "tool_call_id": tool_call.id,
                    "content": result.message,
                })

        if reply:
            logger.info(f"Autonomous loop: AI acted - {reply[:200]}")
        return Decision(reply=reply, model=self.model, tokens_used=tokens, tool_results=results)


class AnthropicDecisionEngine(DecisionEngine):
    """Anthropic tool use with tools executed locally."""

    def __init__(
        self,
        tools: AgentTools,
        api_key: str,
        model: str = DEFAULT_ANTHROPIC_MODEL,
        max_tool_rounds: int = 5,
        max_tokens: int = 1024,
    ):
        if not api_key:
            raise ConfigurationError("Anthropic API key required")
        self.tools = tools
        self.api_key = api_key
        self.model = model
        self.max_tool_rounds = max_tool_rounds
        self.max_tokens = max_tokens
        self._client: Optional[AsyncAnthropic] = None

    def _get_client(self) -> AsyncAnthropic:
        if self._client is None:
            self._client = AsyncAnthropic(api_key=self.api_key)
        return self._client

    def _tool_specs(self) -> list[dict]:
        return [
            {
                "name": tool["name"],
                "description": tool["description"],
                "input_schema": tool["parameters"],
            }
            for tool in self.tools.definitions
        ]

    async def decide(self, prompt: str) -> Decision:
        client = self._get_client()
        messages: list[dict] = [{"role": "user", "content": prompt}]
        results: list[ToolResult] = []
        tokens = 0
        reply = ""

        for _ in range(self.max_tool_rounds):
            response = await client.messages.create(
                model=self.model,
                max_tokens=self.max_tokens,
                system=SYSTEM_PROMPT,
                messages=messages,
                tools=self._tool_specs(),
            )
            tokens += response.usage.input_tokens + response.usage.output_tokens

            text = "".join(block.text for block in response.content if block.type == "text")
            reply = text or reply
            tool_uses = [block for block in response.content if block.type == "tool_use"]
            if response.stop_reason != "tool_use" or not tool_uses:
                break

            messages.append({"role": "assistant", "content": response.content})
            tool_results = []
            for block in tool_uses:
                logger.info(f"Executing tool: {block.name}({block.input})")
                result = await self.tools.execute_tool(block.name, dict(block.input or {}))
                results.append(result)
                tool_results.append({
                    "type": "tool_result",
                    "tool_use_id": block.id,
                    "content": result.message,
                    "is_error": not result.success,
                })
            messages.append({"role": "user", "content": tool_results})

        if reply:
            logger.info(f"Autonomous loop: AI acted - {reply[:200]}")
        return Decision(reply=reply, model=self.model, tokens_used=tokens, tool_results=results)


def create_decision_engine(config: ServiceConfig, tools: AgentTools) -> DecisionEngine:
    """
    Build the engine named in the config.

    Raises:
        ConfigurationError: missing token or key for the chosen engine.
    """
    config.validate_decision_engine()
    if config.decision_engine == "openai":
        return OpenAIDecisionEngine(tools, config.llm_api_key, model=config.model or DEFAULT_OPENAI_MODEL)
    if config.decision_engine == "anthropic":
        return AnthropicDecisionEngine(tools, config.llm_api_key, model=config.model or DEFAULT_ANTHROPIC_MODEL)
    return GatewayDecisionEngine(
        config.gateway_token,
        port=config.gateway_port,
        model=config.model or GATEWAY_MODEL,
    )
