"""MCP models: JSON-RPC 2.0 envelopes and protocol payloads.

Envelopes cover the four frame shapes a client sees on the wire.  Payload
models mirror the MCP schema with snake_case attributes and camelCase aliases,
so ``model_validate`` accepts wire data and ``model_dump(by_alias=True)``
produces it.
"""

from __future__ import annotations

from typing import Annotated, Any, Literal

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

RequestId = int | str

JSONRPC_VERSION = "2.0"

# JSON-RPC / MCP error codes
PARSE_ERROR = -32700
INVALID_REQUEST = -32600
METHOD_NOT_FOUND = -32601
INVALID_PARAMS = -32602
INTERNAL_ERROR = -32603

# ---------------------------------------------------------------------------
# JSON-RPC 2.0 envelope
# ---------------------------------------------------------------------------


class JsonRpcRequest(BaseModel):
    """A JSON-RPC 2.0 request message."""

    jsonrpc: Literal["2.0"] = JSONRPC_VERSION
    id: RequestId
    method: str
    params: dict[str, Any] | None = None


class JsonRpcNotification(BaseModel):
    """A JSON-RPC 2.0 notification (no id, no response)."""

    jsonrpc: Literal["2.0"] = JSONRPC_VERSION
    method: str
    params: dict[str, Any] | None = None


class JsonRpcError(BaseModel):
    """A JSON-RPC 2.0 error object."""

    code: int
    message: str
    data: Any = None


class JsonRpcResponse(BaseModel):
    """A successful JSON-RPC 2.0 response."""

    jsonrpc: Literal["2.0"] = JSONRPC_VERSION
    id: RequestId
    result: dict[str, Any] = Field(default_factory=dict)


class JsonRpcErrorResponse(BaseModel):
    """A JSON-RPC 2.0 error response.  ``id`` is null for unparseable requests."""

    jsonrpc: Literal["2.0"] = JSONRPC_VERSION
    id: RequestId | None = None
    error: JsonRpcError


JsonRpcMessage = JsonRpcRequest | JsonRpcNotification | JsonRpcResponse | JsonRpcErrorResponse


# ---------------------------------------------------------------------------
# MCP payload base
# ---------------------------------------------------------------------------


class MCPModel(BaseModel):
    """Base for MCP payloads: camelCase on the wire, unknown keys kept."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="allow",
    )

    def to_wire(self) -> dict[str, Any]:
        """Dump to the camelCase dict sent to the server."""
        return self.model_dump(by_alias=True, exclude_none=True)


class Descriptor(MCPModel):
    """Immutable capability descriptor returned by a list request."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="allow",
        frozen=True,
    )


# ---------------------------------------------------------------------------
# Content parts
# ---------------------------------------------------------------------------


class TextContent(MCPModel):
    type: Literal["text"] = "text"
    text: str


class ImageContent(MCPModel):
    type: Literal["image"] = "image"
    data: str
    mime_type: str


class AudioContent(MCPModel):
    type: Literal["audio"] = "audio"
    data: str
    mime_type: str


class TextResourceContents(MCPModel):
    uri: str
    mime_type: str | None = None
    text: str


class BlobResourceContents(MCPModel):
    uri: str
    mime_type: str | None = None
    blob: str


ResourceContents = TextResourceContents | BlobResourceContents


class EmbeddedResource(MCPModel):
    """Resource contents inlined in a tool or prompt result."""

    type: Literal["resource"] = "resource"
    resource: ResourceContents


class ResourceLink(MCPModel):
    """Reference to a resource the client may read later."""

    type: Literal["resource_link"] = "resource_link"
    uri: str
    name: str = ""
    description: str | None = None
    mime_type: str | None = None


ContentPart = Annotated[
    TextContent | ImageContent | AudioContent | EmbeddedResource | ResourceLink,
    Field(discriminator="type"),
]

SamplingContent = Annotated[
    TextContent | ImageContent | AudioContent,
    Field(discriminator="type"),
]


# ---------------------------------------------------------------------------
# Capability descriptors
# ---------------------------------------------------------------------------


class Tool(Descriptor):
    """A tool definition as returned by ``tools/list``."""

    name: str
    title: str | None = None
    description: str = ""
    input_schema: dict[str, Any] = Field(default_factory=lambda: {"type": "object"})
    output_schema: dict[str, Any] | None = None
    annotations: dict[str, Any] | None = None


class Resource(Descriptor):
    """A resource as returned by ``resources/list``."""

    uri: str
    name: str = ""
    title: str | None = None
    description: str | None = None
    mime_type: str | None = None


class PromptArgument(Descriptor):
    name: str
    description: str | None = None
    required: bool = False


class Prompt(Descriptor):
    """A prompt template as returned by ``prompts/list``."""

    name: str
    title: str | None = None
    description: str | None = None
    arguments: tuple[PromptArgument, ...] = ()

    @property
    def required_arguments(self) -> list[str]:
        return [arg.name for arg in self.arguments if arg.required]


class ListToolsResult(MCPModel):
    tools: list[Tool] = []
    next_cursor: str | None = None


class ListResourcesResult(MCPModel):
    resources: list[Resource] = []
    next_cursor: str | None = None


class ListPromptsResult(MCPModel):
    prompts: list[Prompt] = []
    next_cursor: str | None = None


# ---------------------------------------------------------------------------
# Handshake
# ---------------------------------------------------------------------------


class Implementation(MCPModel):
    """Name and version of a client or server implementation."""

    name: str
    version: str


class ClientCapabilities(MCPModel):
    experimental: dict[str, Any] | None = None
    sampling: dict[str, Any] | None = None
    roots: dict[str, Any] | None = None


class ServerCapabilities(MCPModel):
    experimental: dict[str, Any] | None = None
    logging: dict[str, Any] | None = None
    completions: dict[str, Any] | None = None
    prompts: dict[str, Any] | None = None
    resources: dict[str, Any] | None = None
    tools: dict[str, Any] | None = None


class InitializeResult(MCPModel):
    """The server's reply to ``initialize``.

    ``supported_protocol_versions`` is optional; servers that only send
    ``protocol_version`` are treated as supporting exactly that version.
    """

    protocol_version: str | int
    capabilities: ServerCapabilities = Field(default_factory=ServerCapabilities)
    server_info: Implementation | None = None
    instructions: str | None = None
    supported_protocol_versions: list[str | int] | None = None


# ---------------------------------------------------------------------------
# Call results
# ---------------------------------------------------------------------------


class CallToolResult(MCPModel):
    content: list[ContentPart] = []
    structured_content: dict[str, Any] | None = None
    is_error: bool = False


class ReadResourceResult(MCPModel):
    contents: list[ResourceContents] = []


class PromptMessage(MCPModel):
    role: Literal["user", "assistant"]
    content: ContentPart


class GetPromptResult(MCPModel):
    description: str | None = None
    messages: list[PromptMessage] = []


# ---------------------------------------------------------------------------
# Server-initiated requests and notifications
# ---------------------------------------------------------------------------


class SamplingMessage(MCPModel):
    role: Literal["user", "assistant"]
    content: SamplingContent


class ModelHint(MCPModel):
    name: str | None = None


class ModelPreferences(MCPModel):
    hints: list[ModelHint] | None = None
    cost_priority: float | None = None
    speed_priority: float | None = None
    intelligence_priority: float | None = None


class CreateMessageParams(MCPModel):
    """Parameters of a ``sampling/createMessage`` request."""

    messages: list[SamplingMessage]
    max_tokens: int
    system_prompt: str | None = None
    include_context: Literal["none", "thisServer", "allServers"] | None = None
    temperature: float | None = None
    stop_sequences: list[str] | None = None
    model_preferences: ModelPreferences | None = None
    metadata: dict[str, Any] | None = None


class CreateMessageResult(MCPModel):
    """The client's answer to a sampling request."""

    role: Literal["user", "assistant"] = "assistant"
    content: SamplingContent
    model: str
    stop_reason: str | None = None


class Root(MCPModel):
    uri: str
    name: str | None = None


class ListRootsResult(MCPModel):
    roots: list[Root] = []


LoggingLevel = Literal[
    "debug", "info", "notice", "warning", "error", "critical", "alert", "emergency"
]


class LoggingMessageParams(MCPModel):
    level: LoggingLevel
    logger: str | None = None
    data: Any = None


class ProgressParams(MCPModel):
    progress_token: RequestId
    progress: float
    total: float | None = None
    message: str | None = None
