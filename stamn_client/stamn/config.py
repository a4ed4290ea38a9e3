"""
Service configuration, loaded from the environment and an optional .env file.
"""

import os
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

from .errors import ConfigurationError


DEFAULT_SERVER_URL = "wss://api.stamn.com/ws/agent"
DEFAULT_GATEWAY_PORT = 18789
DEFAULT_STATUS_PATH = Path.home() / ".openclaw" / "stamn-status.json"

DECISION_ENGINES = ("gateway", "openai", "anthropic")


@dataclass
class ServiceConfig:
    """Configuration for one agent service."""
    server_url: str = DEFAULT_SERVER_URL
    api_key: str = ""
    agent_id: str = ""
    agent_name: str = ""

    # Decision engine
    decision_engine: str = "gateway"
    gateway_port: int = DEFAULT_GATEWAY_PORT
    gateway_token: str = ""
    model: str = ""
    llm_api_key: str = ""

    # Scheduler (seconds)
    autonomous_interval: float = 60.0
    warmup_delay: float = 10.0
    debounce_window: float = 10.0

    # Connection (seconds)
    heartbeat_interval: float = 15.0
    heartbeat_timeout_multiplier: float = 3.0
    claim_timeout: float = 10.0
    auth_timeout: float = 10.0
    reconnect_base_delay: float = 1.0
    reconnect_max_delay: float = 30.0

    # World state
    max_events: int = 20
    event_ttl: float = 300.0

    # Status export
    status_path: str = str(DEFAULT_STATUS_PATH)
    status_api_port: int = 0  # 0 = disabled

    @property
    def display_name(self) -> str:
        return self.agent_name or self.agent_id

    @classmethod
    def from_env(cls, env_file: Optional[str] = None, **overrides) -> "ServiceConfig":
        """
        Build a config from STAMN_* environment variables.

        Keyword overrides that are not None win over the environment.
        """
        load_dotenv(env_file)

        values: dict = {}
        for f in fields(cls):
            raw = os.getenv(f"STAMN_{f.name.upper()}")
            if raw is None or raw == "":
                continue
            values[f.name] = _coerce(f.name, raw, f.type)

        if "gateway_token" not in values:
            values["gateway_token"] = os.getenv("OPENCLAW_GATEWAY_TOKEN", "")

        if "llm_api_key" not in values:
            engine = overrides.get("decision_engine") or values.get("decision_engine", "gateway")
            if engine == "openai":
                values["llm_api_key"] = os.getenv("OPENAI_API_KEY", "")
            elif engine == "anthropic":
                values["llm_api_key"] = os.getenv("ANTHROPIC_API_KEY", "")

        values.update({k: v for k, v in overrides.items() if v is not None})
        return cls(**values)

    def validate(self) -> None:
        """Raise ConfigurationError when the service cannot start."""
        missing = [name for name in ("api_key", "agent_id") if not getattr(self, name)]
        if missing:
            raise ConfigurationError(
                f"Stamn: {' and '.join(missing)} required. "
                "Set STAMN_API_KEY and STAMN_AGENT_ID (or add them to .env)."
            )
        if not self.server_url:
            raise ConfigurationError("Stamn: server_url required.")
        if self.decision_engine not in DECISION_ENGINES:
            raise ConfigurationError(
                f"Unknown decision engine {self.decision_engine!r}. "
                f"Use one of: {', '.join(DECISION_ENGINES)}"
            )

    def validate_decision_engine(self) -> None:
        """Raise ConfigurationError when the autonomous loop cannot run."""
        if self.decision_engine == "gateway" and not self.gateway_token:
            raise ConfigurationError(
                "Stamn autonomous loop: no gateway token. Set OPENCLAW_GATEWAY_TOKEN "
                "or STAMN_GATEWAY_TOKEN."
            )
        if self.decision_engine in ("openai", "anthropic") and not self.llm_api_key:
            raise ConfigurationError(
                f"Stamn autonomous loop: no {self.decision_engine} API key."
            )


def _coerce(name: str, raw: str, field_type) -> object:
    type_name = field_type if isinstance(field_type, str) else getattr(field_type, "__name__", "str")
    try:
        if type_name == "int":
            return int(raw)
        if type_name == "float":
            return float(raw)
    except ValueError as e:
        raise ConfigurationError(f"STAMN_{name.upper()} must be a {type_name}: {raw!r}") from e
    return raw
