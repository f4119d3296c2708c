from __future__ import annotations

import copy
import json
from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Any, Mapping


class EventType(str, Enum):
    START = "start"
    CONTENT = "content"
    TOOL_CALL = "tool_call"
    CITATION = "citation"
    ERROR = "error"
    END = "end"


class EndStatus(str, Enum):
    COMPLETED = "completed"
    ERROR = "error"
    STOPPED = "stopped"


@dataclass(frozen=True)
class StreamEvent:
    event: EventType
    data: Mapping[str, Any] = field(default_factory=dict)
    # Epoch milliseconds, assigned by StreamSession on emission.
    timestamp: int = 0

    def __post_init__(self) -> None:
        # Payloads are private copies so an emitted event never changes.
        object.__setattr__(self, "data", MappingProxyType(copy.deepcopy(dict(self.data))))

    @property
    def is_terminal(self) -> bool:
        return self.event is EventType.END

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.event.value, "data": copy.deepcopy(dict(self.data)), "timestamp": self.timestamp}

    def format(self) -> str:
        return f"event: {self.event.value}\ndata: {json.dumps(self.to_dict())}\n\n"
