"""
Type definitions and constants for the nim_proxy package.
This module contains the pydantic schemas for every object on the wire.
"""

from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class ModelDefaults:
    """Default values and limits for the proxy"""

    # Server defaults
    DEFAULT_HOST = "0.0.0.0"
    DEFAULT_PORT = 3000
    DEFAULT_LOG_LEVEL = "INFO"

    # Backend defaults
    DEFAULT_API_BASE = "https://integrate.api.nvidia.com/v1"
    DEFAULT_REQUEST_TIMEOUT = 300.0
    DEFAULT_CONNECT_TIMEOUT = 10.0

    # Outbound request defaults, applied when the caller omits a field
    DEFAULT_TEMPERATURE = 0.7
    DEFAULT_MAX_TOKENS = 2048
    DEFAULT_STREAM = False

    # Model listing
    DEFAULT_MODEL = "gpt-4o"
    MODEL_OWNER = "nvidia-nim-proxy"

    SERVICE_NAME = "OpenAI to NVIDIA NIM Proxy"


class ChatCompletionRequest(BaseModel):
    """Inbound OpenAI-style chat completion request.

    Only presence is checked. Values are not coerced so that malformed
    shapes travel to the backend unchanged and come back as backend errors.
    """

    model_config = ConfigDict(extra="allow")

    model: Any = None
    messages: Any = None
    temperature: Any = None
    max_tokens: Any = None
    stream: Any = None

    @property
    def wants_stream(self) -> bool:
        return bool(self.stream)


class BackendChatRequest(BaseModel):
    """Request body sent to the NIM backend."""

    model: str
    messages: Any = None
    temperature: Any = ModelDefaults.DEFAULT_TEMPERATURE
    max_tokens: Any = ModelDefaults.DEFAULT_MAX_TOKENS
    stream: Any = ModelDefaults.DEFAULT_STREAM


class ResponseMessage(BaseModel):
    role: str = "assistant"
    content: Any = ""


class ChatCompletionChoice(BaseModel):
    index: int
    message: ResponseMessage
    finish_reason: str = "stop"


class Usage(BaseModel):
    model_config = ConfigDict(extra="allow")

    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0


class ChatCompletionResponse(BaseModel):
    id: str
    object: str = "chat.completion"
    created: int
    model: Any = None
    choices: list[ChatCompletionChoice]
    usage: dict[str, Any] = Field(default_factory=lambda: Usage().model_dump())


class ModelCard(BaseModel):
    id: str
    object: str = "model"
    created: int
    owned_by: str = ModelDefaults.MODEL_OWNER


class ModelList(BaseModel):
    object: str = "list"
    data: list[ModelCard]


class HealthResponse(BaseModel):
    status: str = "ok"
    service: str = ModelDefaults.SERVICE_NAME
    api_key_set: bool
    api_base: str

