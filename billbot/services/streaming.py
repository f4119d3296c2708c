from __future__ import annotations

from typing import Any

from billbot.errors import BillBotError
from billbot.models.events import EndStatus, EventType, StreamEvent
from billbot.models.session import Citation, ToolCallRecord, utc_now_iso


def start(session_id: str, message_id: str) -> StreamEvent:
    return StreamEvent(
        event=EventType.START,
        data={"session_id": session_id, "message_id": message_id, "timestamp": utc_now_iso()},
    )


def content(text: str, message_id: str) -> StreamEvent:
    return StreamEvent(event=EventType.CONTENT, data={"content": text, "message_id": message_id})


def tool_call(
    record: ToolCallRecord,
    *,
    result: Any = None,
    iteration: int | None = None,
    search_type: str | None = None,
    result_count: int | None = None,
) -> StreamEvent:
    """Emit the current state of a tool call record."""
    data: dict[str, Any] = {
        "id": record.id,
        "name": record.name,
        "arguments": record.arguments,
        "status": record.status.value,
    }
    if result is not None:
        data["result"] = result
    if record.error:
        data["error"] = record.error
    metadata: dict[str, Any] = {}
    if iteration is not None:
        metadata["iteration"] = iteration
    if search_type:
        metadata["search_type"] = search_type
    if result_count is not None:
        metadata["result_count"] = result_count
    if record.duration_ms is not None:
        metadata["duration"] = record.duration_ms
    if metadata:
        data["metadata"] = metadata
    return StreamEvent(event=EventType.TOOL_CALL, data=data)


def citation(item: Citation) -> StreamEvent:
    return StreamEvent(event=EventType.CITATION, data=item.to_dict())


def error(message: str, code: str = "INTERNAL_ERROR", recoverable: bool = False, **kwargs: Any) -> StreamEvent:
    data: dict[str, Any] = {"message": message, "code": code, "recoverable": recoverable}
    data.update({k: v for k, v in kwargs.items() if v is not None})
    return StreamEvent(event=EventType.ERROR, data=data)


def error_from(exc: BillBotError) -> StreamEvent:
    return StreamEvent(event=EventType.ERROR, data=exc.to_event_data())


def end(
    message_id: str,
    status: EndStatus,
    duration_ms: int,
    *,
    total_tokens: int | None = None,
    cost: float | None = None,
) -> StreamEvent:
    data: dict[str, Any] = {
        "message_id": message_id,
        "status": status.value,
        "duration": duration_ms,
    }
    if total_tokens is not None:
        data["total_tokens"] = total_tokens
    if cost is not None:
        data["cost"] = cost
    return StreamEvent(event=EventType.END, data=data)
