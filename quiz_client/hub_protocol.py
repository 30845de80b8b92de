"""
JSON hub protocol framing.
Records are JSON objects terminated by the ASCII record separator (0x1E).
"""
import json
from enum import IntEnum
from typing import Any

RECORD_SEPARATOR = "\x1e"
PROTOCOL_NAME = "json"
PROTOCOL_VERSION = 1


class MessageType(IntEnum):
    INVOCATION = 1
    STREAM_ITEM = 2
    COMPLETION = 3
    STREAM_INVOCATION = 4
    CANCEL_INVOCATION = 5
    PING = 6
    CLOSE = 7


class HubProtocolError(ValueError):
    """A frame could not be decoded."""


def encode(message: dict[str, Any]) -> str:
    """Serialize one message into a framed record."""
    return json.dumps(message, separators=(",", ":")) + RECORD_SEPARATOR


def decode(frame: str | bytes) -> list[dict[str, Any]]:
    """Split a websocket frame into its records.

    Raises:
        HubProtocolError: If a record is not a JSON object
    """
    if isinstance(frame, bytes):
        frame = frame.decode("utf-8")
    messages: list[dict[str, Any]] = []
    for chunk in frame.split(RECORD_SEPARATOR):
        if not chunk.strip():
            continue
        try:
            message = json.loads(chunk)
        except json.JSONDecodeError as exc:
            raise HubProtocolError(f"Invalid hub record: {exc}") from exc
        if not isinstance(message, dict):
            raise HubProtocolError("Hub record is not an object")
        messages.append(message)
    return messages


def handshake_request() -> str:
    return encode({"protocol": PROTOCOL_NAME, "version": PROTOCOL_VERSION})


def invocation(target: str, arguments: list[Any], invocation_id: str | None = None) -> str:
    message: dict[str, Any] = {
        "type": MessageType.INVOCATION,
        "target": target,
        "arguments": arguments,
    }
    if invocation_id is not None:
        message["invocationId"] = invocation_id
    return encode(message)


def ping() -> str:
    return encode({"type": MessageType.PING})


def close() -> str:
    return encode({"type": MessageType.CLOSE})
