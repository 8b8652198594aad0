"""Relay wire protocol.

JSON text frames, one object per frame, tagged by ``type``:

    identify          client -> relay          {"role": "control" | "display"}
    gate_changed      control -> display       {"is_open": bool}
    queue_snapshot    control -> display       {"queue": [AlertRecord, ...]}
    settings_changed  control -> display       {"settings": {...}}
    skip / clear      control -> display       {}
    force_play        control -> display       {"alert_id": str}
    started           display -> control       {"alert_id": str}
    completed         display -> control       {"alert_id": str}
    full_state        control -> relay,        {"gate_open", "queue", "settings"}
                      relay -> new client
"""

from __future__ import annotations

from enum import Enum
from typing import Annotated, Literal, Union

from pydantic import BaseModel, Field, TypeAdapter, ValidationError

from shared.models.alert import AlertRecord
from shared.models.overlay_settings import OverlayPresentationSettings


class ProtocolError(ValueError):
    """Raised when a frame cannot be decoded into a known message."""


class Role(str, Enum):
    CONTROL = "control"
    DISPLAY = "display"


class Identify(BaseModel):
    type: Literal["identify"] = "identify"
    role: Role


class GateChanged(BaseModel):
    type: Literal["gate_changed"] = "gate_changed"
    is_open: bool


class QueueSnapshot(BaseModel):
    type: Literal["queue_snapshot"] = "queue_snapshot"
    queue: list[AlertRecord] = Field(default_factory=list)


class SettingsChanged(BaseModel):
    type: Literal["settings_changed"] = "settings_changed"
    settings: OverlayPresentationSettings


class Skip(BaseModel):
    type: Literal["skip"] = "skip"


class Clear(BaseModel):
    type: Literal["clear"] = "clear"


class ForcePlay(BaseModel):
    type: Literal["force_play"] = "force_play"
    alert_id: str


class Started(BaseModel):
    type: Literal["started"] = "started"
    alert_id: str


class Completed(BaseModel):
    type: Literal["completed"] = "completed"
    alert_id: str


class FullState(BaseModel):
    type: Literal["full_state"] = "full_state"
    gate_open: bool = True
    queue: list[AlertRecord] = Field(default_factory=list)
    settings: OverlayPresentationSettings = Field(default_factory=OverlayPresentationSettings)


Message = Annotated[
    Union[
        Identify,
        GateChanged,
        QueueSnapshot,
        SettingsChanged,
        Skip,
        Clear,
        ForcePlay,
        Started,
        Completed,
        FullState,
    ],
    Field(discriminator="type"),
]

_MESSAGE_ADAPTER: TypeAdapter[Message] = TypeAdapter(Message)


def encode(message: BaseModel) -> str:
    return message.model_dump_json()


def decode(raw: str | bytes) -> Message:
    """Parse one frame. Raises ProtocolError on malformed JSON or unknown types."""
    try:
        return _MESSAGE_ADAPTER.validate_json(raw)
    except ValidationError as e:
        first = e.errors()[0]
        raise ProtocolError(
            f"Invalid message ({e.error_count()} error(s)): {first['msg']} at {first['loc']}"
        ) from e
