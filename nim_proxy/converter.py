"""
Request and response translation between the OpenAI schema and NIM.
"""

import logging
import time

from pydantic import ValidationError

from .client import ModelMapping
from .errors import BackendResponseError
from .types import (
    BackendChatRequest,
    ChatCompletionChoice,
    ChatCompletionRequest,
    ChatCompletionResponse,
    ModelCard,
    ModelDefaults,
    ModelList,
    ResponseMessage,
    Usage,
)

logger = logging.getLogger(__name__)


def _or_default(value, default):
    return default if value is None else value


def build_backend_request(
    request: ChatCompletionRequest, mapping: ModelMapping
) -> BackendChatRequest:
    """Convert an inbound request into the body sent to the backend.

    Only model, messages, temperature, max_tokens and stream are forwarded.
    Absent or null optional fields get the backend defaults.
    """
    return BackendChatRequest(
        model=mapping.resolve(request.model),
        messages=request.messages,
        temperature=_or_default(request.temperature, ModelDefaults.DEFAULT_TEMPERATURE),
        max_tokens=_or_default(request.max_tokens, ModelDefaults.DEFAULT_MAX_TOKENS),
        stream=_or_default(request.stream, ModelDefaults.DEFAULT_STREAM),
    )


def _convert_choice(position: int, choice) -> ChatCompletionChoice:
    if not isinstance(choice, dict):
        raise BackendResponseError(f"Invalid choice at position {position} in backend response")

    message = choice.get("message")
    if not isinstance(message, dict):
        message = {}

    index = choice.get("index")
    return ChatCompletionChoice(
        index=index if isinstance(index, int) else position,
        message=ResponseMessage(
            role=message.get("role") or "assistant",
            content=message.get("content") or "",
        ),
        finish_reason=choice.get("finish_reason") or "stop",
    )


def convert_backend_response(data, requested_model) -> ChatCompletionResponse:
    """Reshape a buffered backend response into the OpenAI response schema.

    The reported model is the one the caller asked for, not the backend's.
    """
    if not isinstance(data, dict) or not isinstance(data.get("choices"), list):
        raise BackendResponseError()

    now = time.time()
    usage = data.get("usage")
    try:
        return ChatCompletionResponse(
            id=f"chatcmpl-{int(now * 1000)}",
            created=int(now),
            model=requested_model,
            choices=[_convert_choice(i, choice) for i, choice in enumerate(data["choices"])],
            usage=usage if isinstance(usage, dict) else Usage().model_dump(),
        )
    except ValidationError as e:
        raise BackendResponseError() from e


def build_model_list(mapping: ModelMapping) -> ModelList:
    """Describe every caller-facing model, in mapping order."""
    created = int(time.time())
    return ModelList(data=[ModelCard(id=model_id, created=created) for model_id in mapping])
