"""
Status file - connection status shared with other processes (e.g. the CLI).

Written on connect/disconnect, removed on stop. Never read back by the
service itself.
"""

import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional, Union

from pydantic import ValidationError

from .models import WireModel

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]


class StatusRecord(WireModel):
    connected: bool
    agent_id: str
    agent_name: Optional[str] = None
    server_url: str
    connected_at: Optional[str] = None
    disconnected_at: Optional[str] = None


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def write_status_file(path: PathLike, status: StatusRecord) -> None:
    """Overwrite the status file. Failures are logged and ignored."""
    path = Path(path)
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(json.dumps(status.to_wire(), indent=2) + "\n", encoding="utf-8")
    except OSError as e:
        logger.debug(f"Could not write status file {path}: {e}")


def read_status_file(path: PathLike) -> Optional[StatusRecord]:
    """Read the status file, or None if it is missing or unreadable."""
    path = Path(path)
    try:
        return StatusRecord.model_validate_json(path.read_text(encoding="utf-8"))
    except (OSError, ValidationError) as e:
        logger.debug(f"Could not read status file {path}: {e}")
        return None


def remove_status_file(path: PathLike) -> None:
    try:
        Path(path).unlink()
    except FileNotFoundError:
        pass
    except OSError as e:
        logger.debug(f"Could not remove status file {path}: {e}")
