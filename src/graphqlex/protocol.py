"""Wire format for the subscription socket.

Every frame is a JSON text message of the shape ``{type, id?, payload?}``.

Client -> Server:
    connection_init   sent once after the socket opens, payload = headers
    start             opens a channel, payload = {query, variables}
    stop              closes a channel the server already started

Server -> Client:
    connection_ack    handshake complete
    ka                keep-alive
    data              payload.data for one channel
    error / subscription_fail   channel failure
    init_fail / subscription_success / connection_error / complete
"""

from __future__ import annotations

import json
from enum import Enum
from typing import Any

from pydantic import BaseModel, ValidationError

SUBPROTOCOL = "graphql-subscriptions"


class MessageType(str, Enum):
    """Known message types."""

    # Client -> Server
    CONNECTION_INIT = "connection_init"
    START = "start"
    STOP = "stop"

    # Server -> Client
    CONNECTION_ACK = "connection_ack"
    CONNECTION_ERROR = "connection_error"
    KEEP_ALIVE = "ka"
    DATA = "data"
    ERROR = "error"
    COMPLETE = "complete"
    INIT_FAIL = "init_fail"
    SUBSCRIPTION_SUCCESS = "subscription_success"
    SUBSCRIPTION_FAIL = "subscription_fail"


FAILURE_TYPES = frozenset({MessageType.ERROR.value, MessageType.SUBSCRIPTION_FAIL.value})


class InvalidFrame(ValueError):
    """A frame that is not a JSON object with a string ``type``."""


class OperationMessage(BaseModel):
    """One frame on the subscription socket.

    ``type`` is kept as a plain string so unknown server types survive
    parsing and can be reported instead of rejected.
    """

    type: str
    id: str | None = None
    payload: Any = None

    def to_json(self) -> str:
        """Serialize to a text frame, omitting absent fields."""
        data: dict[str, Any] = {"type": self.type}
        if self.id is not None:
            data["id"] = self.id
        if self.payload is not None:
            data["payload"] = self.payload
        return json.dumps(data)

    @classmethod
    def from_json(cls, raw: str | bytes) -> OperationMessage:
        """Parse a text frame.

        Raises:
            InvalidFrame: If the frame is not a JSON object with a ``type``.
        """
        try:
            parsed = json.loads(raw)
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            raise InvalidFrame(f"frame is not valid JSON: {e}") from e
        if not isinstance(parsed, dict):
            raise InvalidFrame(f"frame is not a JSON object: {parsed!r}")
        if parsed.get("id") is not None:
            parsed["id"] = str(parsed["id"])
        try:
            return cls.model_validate(parsed)
        except ValidationError as e:
            raise InvalidFrame(f"frame has no message type: {parsed!r}") from e

    @property
    def payload_message(self) -> str:
        """Server-supplied ``payload.message`` text, or an empty string."""
        if isinstance(self.payload, dict):
            return str(self.payload.get("message") or "")
        return ""

    @property
    def payload_data(self) -> Any:
        """The ``payload.data`` value of a data message."""
        if isinstance(self.payload, dict):
            return self.payload.get("data")
        return None

    # =========================================================================
    # Factory methods for outbound messages
    # =========================================================================

    @classmethod
    def connection_init(cls, headers: dict[str, Any] | None = None) -> OperationMessage:
        return cls(type=MessageType.CONNECTION_INIT.value, payload=dict(headers or {}))

    @classmethod
    def start(cls, channel_id: str, query: str, variables: dict[str, Any] | None = None) -> OperationMessage:
        return cls(
            type=MessageType.START.value,
            id=channel_id,
            payload={"query": query, "variables": variables or {}},
        )

    @classmethod
    def stop(cls, channel_id: str) -> OperationMessage:
        return cls(type=MessageType.STOP.value, id=channel_id)
