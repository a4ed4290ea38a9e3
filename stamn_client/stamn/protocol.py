"""
Wire codec for the Stamn world server.

Frames are JSON text messages of the form {"type": <tag>, "payload": {...}}.
"""

import json
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ValidationError

from .errors import ProtocolError
from .models import (
    AuthErrorPayload,
    LandClaimDeniedPayload,
    LandClaimedPayload,
    LandTradeCompletePayload,
    ServerCommandPayload,
    TransferReceivedPayload,
    WorldSnapshot,
)


class Outbound(str, Enum):
    """Frame types sent to the server."""
    AUTH = "auth"
    HEARTBEAT = "heartbeat"
    MOVE = "move"
    CLAIM_LAND = "claim_land"
    OFFER_LAND = "offer_land"
    LIST_LAND = "list_land"
    SPEND_REQUEST = "spend_request"


class Inbound(str, Enum):
    """Frame types received from the server."""
    AUTH_OK = "auth_ok"
    AUTH_ERROR = "auth_error"
    WORLD_UPDATE = "world_update"
    LAND_CLAIMED = "land_claimed"
    LAND_CLAIM_DENIED = "land_claim_denied"
    LAND_TRADE_COMPLETE = "land_trade_complete"
    TRANSFER_RECEIVED = "transfer_received"
    SERVER_COMMAND = "server_command"
    HEARTBEAT_ACK = "heartbeat_ack"


# Payload model per inbound type (None = no payload expected)
PAYLOAD_MODELS: dict[Inbound, Optional[type[BaseModel]]] = {
    Inbound.AUTH_OK: None,
    Inbound.AUTH_ERROR: AuthErrorPayload,
    Inbound.WORLD_UPDATE: WorldSnapshot,
    Inbound.LAND_CLAIMED: LandClaimedPayload,
    Inbound.LAND_CLAIM_DENIED: LandClaimDeniedPayload,
    Inbound.LAND_TRADE_COMPLETE: LandTradeCompletePayload,
    Inbound.TRANSFER_RECEIVED: TransferReceivedPayload,
    Inbound.SERVER_COMMAND: ServerCommandPayload,
    Inbound.HEARTBEAT_ACK: None,
}


@dataclass
class Frame:
    """A decoded inbound frame."""
    type: Inbound
    payload: Any = None
    raw: dict = field(default_factory=dict)


def encode_frame(frame_type: Outbound, payload: Any = None) -> str:
    """Encode an outbound frame as JSON text."""
    if isinstance(payload, BaseModel):
        payload = payload.model_dump(by_alias=True, exclude_none=True)
    return json.dumps({"type": frame_type.value, "payload": payload or {}})


def decode_frame(raw: Any) -> Frame:
    """
    Decode an inbound frame and validate its payload.

    Raises:
        ProtocolError: the frame is not JSON, has no usable type tag,
            has an unrecognized type, or its payload does not validate.
    """
    if isinstance(raw, (bytes, bytearray)):
        try:
            raw = raw.decode("utf-8")
        except UnicodeDecodeError as e:
            raise ProtocolError(f"Frame is not UTF-8: {e}") from e

    try:
        data = json.loads(raw)
    except (TypeError, json.JSONDecodeError) as e:
        raise ProtocolError(f"Frame is not valid JSON: {e}", raw=str(raw)) from e

    if not isinstance(data, dict):
        raise ProtocolError("Frame is not a JSON object", raw=str(raw))

    tag = data.get("type")
    if not isinstance(tag, str):
        raise ProtocolError("Frame has no type tag", raw=str(raw))

    try:
        frame_type = Inbound(tag)
    except ValueError:
        raise ProtocolError(f"Unrecognized frame type: {tag}", raw=str(raw))

    model = PAYLOAD_MODELS[frame_type]
    payload = data.get("payload")
    if model is not None:
        try:
            payload = model.model_validate(payload if payload is not None else {})
        except ValidationError as e:
            raise ProtocolError(
                f"Invalid {tag} payload: {e.error_count()} error(s)", raw=str(raw)
            ) from e

    return Frame(type=frame_type, payload=payload, raw=data)
