"""MCP wire protocol: JSON-RPC envelopes, payload models, codec, versions."""

from mcpc.protocol.codec import JsonRpcCodec
from mcpc.protocol.models import (
    CallToolResult,
    ClientCapabilities,
    ContentPart,
    CreateMessageParams,
    CreateMessageResult,
    GetPromptResult,
    Implementation,
    InitializeResult,
    JsonRpcError,
    JsonRpcErrorResponse,
    JsonRpcNotification,
    JsonRpcRequest,
    JsonRpcResponse,
    Prompt,
    PromptArgument,
    ReadResourceResult,
    Resource,
    Root,
    ServerCapabilities,
    TextContent,
    Tool,
)
from mcpc.protocol.versions import SUPPORTED_PROTOCOL_VERSIONS, VersionRange, negotiate_version

__all__ = [
    "SUPPORTED_PROTOCOL_VERSIONS",
    "CallToolResult",
    "ClientCapabilities",
    "ContentPart",
    "CreateMessageParams",
    "CreateMessageResult",
    "GetPromptResult",
    "Implementation",
    "InitializeResult",
    "JsonRpcCodec",
    "JsonRpcError",
    "JsonRpcErrorResponse",
    "JsonRpcNotification",
    "JsonRpcRequest",
    "JsonRpcResponse",
    "Prompt",
    "PromptArgument",
    "ReadResourceResult",
    "Resource",
    "Root",
    "ServerCapabilities",
    "TextContent",
    "Tool",
    "VersionRange",
    "negotiate_version",
]
