"""JSON-RPC codec: frames to bytes and back.

The codec is stateless.  ``decode`` classifies a frame by its keys
(``method`` + ``id`` → request, ``method`` alone → notification, ``error`` →
error response, ``result`` → response) and raises
:class:`~mcpc.errors.ProtocolError` for anything else, carrying the
correlation id when one could be recovered so the session can fail the
matching pending call.
"""

from __future__ import annotations

import json
from typing import Any

from pydantic import BaseModel, ValidationError

from mcpc.errors import ProtocolError
from mcpc.protocol.models import (
    JSONRPC_VERSION,
    JsonRpcErrorResponse,
    JsonRpcMessage,
    JsonRpcNotification,
    JsonRpcRequest,
    JsonRpcResponse,
)


class JsonRpcCodec:
    """Encode outgoing envelopes and decode incoming frames."""

    def encode(self, message: BaseModel) -> bytes:
        data = message.model_dump(mode="json", exclude_none=True)
        if isinstance(message, JsonRpcErrorResponse):
            # A null id is meaningful for error responses.
            data["id"] = message.id
        return json.dumps(data, separators=(",", ":"), ensure_ascii=False).encode("utf-8")

    def decode(self, data: bytes | str) -> JsonRpcMessage:
        try:
            raw: Any = json.loads(data)
        except (ValueError, UnicodeDecodeError) as exc:
            raise ProtocolError(f"Malformed frame: {exc}") from exc

        if not isinstance(raw, dict):
            raise ProtocolError(f"Frame must be a JSON object, got {type(raw).__name__}")

        request_id = raw.get("id")
        if not isinstance(request_id, int | str):
            request_id = None

        if raw.get("jsonrpc") != JSONRPC_VERSION:
            raise ProtocolError("Missing or unsupported jsonrpc version", request_id=request_id)

        model: type[BaseModel]
        if "method" in raw:
            model = JsonRpcRequest if "id" in raw else JsonRpcNotification
        elif "error" in raw:
            model = JsonRpcErrorResponse
        elif "result" in raw:
            if not isinstance(raw["result"], dict):
                raise ProtocolError("Response result must be an object", request_id=request_id)
            model = JsonRpcResponse
        else:
            raise ProtocolError("Frame is neither request, notification nor response", request_id=request_id)

        try:
            return model.model_validate(raw)  # type: ignore[return-value]
        except ValidationError as exc:
            raise ProtocolError(f"Invalid {model.__name__}: {exc}", request_id=request_id) from exc
